"""Maintenance HTTP endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Body, Depends, Query, status

from ..actors import Actor
from ..dependencies import get_actor, get_maintenance_scheduler
from ..maintenance import DueItem, MaintenanceScheduler
from ..schemas import (
    AutoScheduleResponse,
    MaintenanceComplete,
    MaintenanceCreate,
    MaintenanceDueEntry,
    MaintenanceDueResponse,
    MaintenanceResponse,
    MaintenanceScheduledEntry,
)

router = APIRouter(prefix="/maintenance", tags=["maintenance"])


def _due_entry(due: DueItem) -> MaintenanceDueEntry:
    return MaintenanceDueEntry(
        item_id=due.item.id,
        name=due.item.name,
        next_maintenance=due.item.next_maintenance,
        days_until_due=due.days_until_due,
        overdue=due.overdue,
    )


@router.post("", response_model=MaintenanceResponse, status_code=status.HTTP_201_CREATED)
async def schedule_maintenance(
    payload: MaintenanceCreate,
    actor: Actor = Depends(get_actor),
    scheduler: MaintenanceScheduler = Depends(get_maintenance_scheduler),
) -> MaintenanceResponse:
    log = await scheduler.schedule(payload.item_id, payload.maintenance_type, actor, notes=payload.notes)
    return MaintenanceResponse.model_validate(log)


@router.get("/due", response_model=MaintenanceDueResponse)
async def maintenance_due(
    days_ahead: int = Query(default=30, ge=0, le=365, alias="daysAhead"),
    overdue_only: bool = Query(default=False, alias="overdueOnly"),
    scheduler: MaintenanceScheduler = Depends(get_maintenance_scheduler),
) -> MaintenanceDueResponse:
    overdue, due_soon = await scheduler.due_for_maintenance(days_ahead=days_ahead, overdue_only=overdue_only)
    return MaintenanceDueResponse(
        overdue=[_due_entry(entry) for entry in overdue],
        due_soon=[_due_entry(entry) for entry in due_soon],
    )


@router.post("/{log_id}/complete", response_model=MaintenanceResponse)
async def complete_maintenance(
    log_id: int,
    payload: MaintenanceComplete | None = Body(default=None),
    actor: Actor = Depends(get_actor),
    scheduler: MaintenanceScheduler = Depends(get_maintenance_scheduler),
) -> MaintenanceResponse:
    body = payload or MaintenanceComplete()
    log = await scheduler.complete(log_id, actor, performed_at=body.performed_at, notes=body.notes)
    return MaintenanceResponse.model_validate(log)


@router.post("/auto-schedule", response_model=AutoScheduleResponse)
async def auto_schedule_maintenance(
    actor: Actor = Depends(get_actor),
    scheduler: MaintenanceScheduler = Depends(get_maintenance_scheduler),
) -> AutoScheduleResponse:
    scheduled = await scheduler.auto_schedule(actor)
    return AutoScheduleResponse(
        scheduled=[
            MaintenanceScheduledEntry(
                item_id=entry.item.id,
                name=entry.item.name,
                previous=entry.previous,
                next_maintenance=entry.next_maintenance,
            )
            for entry in scheduled
        ],
        count=len(scheduled),
    )
