"""Assignment HTTP endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from ..actors import Actor
from ..assignments import AssignmentManager
from ..dependencies import get_actor, get_assignment_manager
from ..schemas import AssignmentCreate, AssignmentResponse

router = APIRouter(prefix="/assignments", tags=["assignments"])


@router.post("", response_model=AssignmentResponse, status_code=status.HTTP_201_CREATED)
async def create_assignment(
    payload: AssignmentCreate,
    actor: Actor = Depends(get_actor),
    manager: AssignmentManager = Depends(get_assignment_manager),
) -> AssignmentResponse:
    assignment = await manager.assign(payload.item_id, payload.team_id, payload.quantity, actor, notes=payload.notes)
    return AssignmentResponse.model_validate(assignment)


@router.get("", response_model=list[AssignmentResponse])
async def list_active_assignments(
    team_id: str | None = Query(default=None, alias="teamId"),
    item_id: int | None = Query(default=None, alias="itemId"),
    manager: AssignmentManager = Depends(get_assignment_manager),
) -> list[AssignmentResponse]:
    assignments = await manager.list_active(team_id=team_id, item_id=item_id)
    return [AssignmentResponse.model_validate(assignment) for assignment in assignments]


@router.post("/{assignment_id}/return", response_model=AssignmentResponse)
async def return_assignment(
    assignment_id: int,
    actor: Actor = Depends(get_actor),
    manager: AssignmentManager = Depends(get_assignment_manager),
) -> AssignmentResponse:
    assignment = await manager.return_assignment(assignment_id, actor)
    return AssignmentResponse.model_validate(assignment)
