"""Per-team views of outstanding stock."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from ..assignments import AssignmentManager
from ..dependencies import get_assignment_manager, get_reservation_manager
from ..reservations import ReservationManager
from ..schemas import AssignmentResponse, ReservationResponse

router = APIRouter(prefix="/teams", tags=["teams"])


@router.get("/{team_id}/assignments", response_model=list[AssignmentResponse])
async def list_team_assignments(
    team_id: str,
    manager: AssignmentManager = Depends(get_assignment_manager),
) -> list[AssignmentResponse]:
    return [AssignmentResponse.model_validate(a) for a in await manager.list_active(team_id=team_id)]


@router.get("/{team_id}/reservations", response_model=list[ReservationResponse])
async def list_team_reservations(
    team_id: str,
    status_value: str | None = Query(default="held", alias="status"),
    manager: ReservationManager = Depends(get_reservation_manager),
) -> list[ReservationResponse]:
    reservations = await manager.list_for_team(team_id, status=status_value)
    return [ReservationResponse.model_validate(r) for r in reservations]
