"""Consumption HTTP endpoints."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query, status

from ..actors import Actor
from ..consumption import ConsumptionTracker
from ..dependencies import get_actor, get_consumption_tracker
from ..schemas import (
    BulkConsumptionCreate,
    BulkConsumptionLine,
    BulkConsumptionResponse,
    ConsumptionCreate,
    ConsumptionResponse,
    ConsumptionStatsResponse,
)

router = APIRouter(prefix="/consumption", tags=["consumption"])


@router.post("", response_model=ConsumptionResponse, status_code=status.HTTP_201_CREATED)
async def log_consumption(
    payload: ConsumptionCreate,
    actor: Actor = Depends(get_actor),
    tracker: ConsumptionTracker = Depends(get_consumption_tracker),
) -> ConsumptionResponse:
    log = await tracker.consume(
        payload.item_id,
        payload.team_id,
        payload.quantity,
        actor,
        consumption_date=payload.consumption_date,
        consumption_type=payload.consumption_type,
        request_id=payload.request_id,
        notes=payload.notes,
    )
    return ConsumptionResponse.model_validate(log)


@router.post("/bulk", response_model=BulkConsumptionResponse)
async def log_bulk_consumption(
    payload: BulkConsumptionCreate,
    actor: Actor = Depends(get_actor),
    tracker: ConsumptionTracker = Depends(get_consumption_tracker),
) -> BulkConsumptionResponse:
    results = await tracker.consume_bulk(payload.lines, actor)
    lines = [
        BulkConsumptionLine(
            index=result.index,
            item_id=result.item_id,
            success=result.success,
            consumption=ConsumptionResponse.model_validate(result.log) if result.log is not None else None,
            code=result.error.code if result.error is not None else None,
            detail=result.error.message if result.error is not None else None,
        )
        for result in results
    ]
    succeeded = sum(1 for line in lines if line.success)
    return BulkConsumptionResponse(results=lines, succeeded=succeeded, failed=len(lines) - succeeded)


@router.get("", response_model=list[ConsumptionResponse])
async def consumption_history(
    item_id: int | None = Query(default=None, alias="itemId"),
    team_id: str | None = Query(default=None, alias="teamId"),
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = Query(default=200, ge=1, le=1000),
    tracker: ConsumptionTracker = Depends(get_consumption_tracker),
) -> list[ConsumptionResponse]:
    logs = await tracker.history(item_id=item_id, team_id=team_id, start=start, end=end, limit=limit)
    return [ConsumptionResponse.model_validate(log) for log in logs]


@router.get("/items/{item_id}/stats", response_model=ConsumptionStatsResponse)
async def consumption_stats(
    item_id: int,
    since: datetime | None = None,
    tracker: ConsumptionTracker = Depends(get_consumption_tracker),
) -> ConsumptionStatsResponse:
    stats = await tracker.stats(item_id, since=since)
    return ConsumptionStatsResponse.model_validate(stats, from_attributes=True)
