"""Reservation HTTP endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from ..actors import Actor
from ..dependencies import get_actor, get_repository, get_reservation_manager
from ..errors import PermissionDenied
from ..repository import InventoryRepository
from ..reservations import ReservationManager
from ..schemas import (
    AssignmentResponse,
    ReservationConfirmation,
    ReservationCreate,
    ReservationResponse,
    SweepResponse,
)

router = APIRouter(prefix="/reservations", tags=["reservations"])


@router.post("", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    payload: ReservationCreate,
    actor: Actor = Depends(get_actor),
    manager: ReservationManager = Depends(get_reservation_manager),
) -> ReservationResponse:
    reservation = await manager.reserve(
        payload.item_id,
        payload.team_id,
        payload.quantity,
        actor,
        reserved_until=payload.reserved_until,
        request_id=payload.request_id,
        notes=payload.notes,
    )
    return ReservationResponse.model_validate(reservation)


@router.get("", response_model=list[ReservationResponse])
async def list_reservations(
    team_id: str | None = Query(default=None, alias="teamId"),
    item_id: int | None = Query(default=None, alias="itemId"),
    status_value: str | None = Query(default=None, alias="status"),
    repository: InventoryRepository = Depends(get_repository),
) -> list[ReservationResponse]:
    reservations = await repository.list_reservations(team_id=team_id, item_id=item_id, status=status_value)
    return [ReservationResponse.model_validate(reservation) for reservation in reservations]


@router.post("/sweep", response_model=SweepResponse)
async def sweep_reservations(
    actor: Actor = Depends(get_actor),
    manager: ReservationManager = Depends(get_reservation_manager),
) -> SweepResponse:
    if not actor.is_staff:
        raise PermissionDenied("Only managers and directors can trigger a reservation sweep")
    expired = await manager.sweep_expired()
    return SweepResponse(expired=expired, count=len(expired))


@router.post("/{reservation_id}/confirm", response_model=ReservationConfirmation)
async def confirm_reservation(
    reservation_id: int,
    actor: Actor = Depends(get_actor),
    manager: ReservationManager = Depends(get_reservation_manager),
) -> ReservationConfirmation:
    reservation, assignment = await manager.confirm(reservation_id, actor)
    return ReservationConfirmation(
        reservation=ReservationResponse.model_validate(reservation),
        assignment=AssignmentResponse.model_validate(assignment),
    )


@router.post("/{reservation_id}/cancel", response_model=ReservationResponse)
async def cancel_reservation(
    reservation_id: int,
    actor: Actor = Depends(get_actor),
    manager: ReservationManager = Depends(get_reservation_manager),
) -> ReservationResponse:
    reservation = await manager.cancel(reservation_id, actor)
    return ReservationResponse.model_validate(reservation)
