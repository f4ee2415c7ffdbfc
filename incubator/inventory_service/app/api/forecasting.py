"""Replenishment forecast endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from ..actors import Actor
from ..dependencies import get_actor, get_forecaster
from ..errors import PermissionDenied
from ..forecasting import ReplenishmentForecaster
from ..schemas import AutoRequestCreate, AutoRequestResponse, ForecastReport

router = APIRouter(prefix="/forecasting", tags=["forecasting"])


@router.get("", response_model=ForecastReport)
async def forecast_report(
    look_ahead_days: int | None = Query(default=None, ge=1, le=365, alias="lookAheadDays"),
    forecaster: ReplenishmentForecaster = Depends(get_forecaster),
) -> ForecastReport:
    return await forecaster.report(look_ahead_days=look_ahead_days)


@router.post("/auto-requests", response_model=AutoRequestResponse)
async def auto_create_requests(
    payload: AutoRequestCreate,
    actor: Actor = Depends(get_actor),
    forecaster: ReplenishmentForecaster = Depends(get_forecaster),
) -> AutoRequestResponse:
    if not payload.dry_run and not actor.is_staff:
        raise PermissionDenied("Only managers and directors can create replenishment drafts")
    return await forecaster.auto_create(
        actor,
        team_id=payload.team_id,
        dry_run=payload.dry_run,
        item_ids=payload.item_ids,
    )
