"""Replenishment forecasting from consumption history."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Sequence

from incubator.common import JsonCache, ServiceSettings

from . import events
from .actors import Actor
from .errors import NoTargetTeam
from .metrics import FORECAST_BUILD_SECONDS, FORECAST_CACHE_EVENTS_TOTAL, FORECAST_DRAFTS_CREATED_TOTAL
from .models import InventoryItem, utcnow
from .repository import InventoryRepository
from .schemas import (
    AutoRequestOutcome,
    AutoRequestResponse,
    ForecastEntry,
    ForecastReport,
    RequestCreate,
    RequestItemCreate,
)
from .workflow import RequestWorkflow

_LOGGER = logging.getLogger(__name__)

URGENCY_RANK = {"high": 0, "medium": 1, "low": 2}
RECOMMENDATIONS = {"high": "reorder_now", "medium": "reorder_soon", "low": "monitor"}
DRAFT_PRIORITY = {"high": "urgent", "medium": "high", "low": "medium"}
SUGGESTION_HORIZON_DAYS = 30

_REPORT_KEY = "report:default"


@dataclass
class ConsumptionRate:
    avg_daily: float
    history_days: int
    uses_fallback: bool


def consumption_rate(
    item: InventoryItem,
    totals: dict[int, tuple[int, int, datetime, datetime]],
) -> ConsumptionRate:
    """Average daily consumption over the span of logged history.

    The span counts calendar days from the oldest to the newest log inclusive,
    so five units logged on each of four consecutive days averages to five.
    """

    if item.id in totals:
        total, _count, oldest, newest = totals[item.id]
        span = max((newest.date() - oldest.date()).days + 1, 1)
        return ConsumptionRate(avg_daily=total / span, history_days=span, uses_fallback=False)
    if item.typical_consumption_rate:
        return ConsumptionRate(avg_daily=item.typical_consumption_rate / 7, history_days=0, uses_fallback=True)
    return ConsumptionRate(avg_daily=0.0, history_days=0, uses_fallback=False)


def classify_urgency(days_until_reorder: int | None, *, below_minimum: bool, look_ahead_days: int) -> str:
    if days_until_reorder is None:
        return "high" if below_minimum else "low"
    if days_until_reorder <= 7:
        return "high"
    if days_until_reorder <= 14 or days_until_reorder <= look_ahead_days:
        return "medium"
    return "low"


def suggested_quantity(item: InventoryItem, avg_daily: float) -> int:
    if item.reorder_quantity:
        return item.reorder_quantity
    if avg_daily > 0:
        return max(math.ceil(avg_daily * SUGGESTION_HORIZON_DAYS), 1)
    return max((item.min_stock_level or 0) * 2, 1)


def build_entry(item: InventoryItem, rate: ConsumptionRate, *, look_ahead_days: int) -> ForecastEntry:
    minimum = item.min_stock_level or 0
    below_minimum = item.available_quantity < minimum
    days = None
    if rate.avg_daily > 0:
        days = math.floor((item.available_quantity - minimum) / rate.avg_daily)
    urgency = classify_urgency(days, below_minimum=below_minimum, look_ahead_days=look_ahead_days)
    return ForecastEntry(
        item_id=item.id,
        name=item.name,
        available_quantity=item.available_quantity,
        min_stock_level=minimum,
        avg_daily_consumption=round(rate.avg_daily, 3),
        history_days=rate.history_days,
        uses_fallback_rate=rate.uses_fallback,
        days_until_reorder=days,
        urgency=urgency,
        recommendation=RECOMMENDATIONS[urgency],
        suggested_quantity=suggested_quantity(item, rate.avg_daily),
        below_minimum=below_minimum,
    )


def _sort_key(entry: ForecastEntry) -> tuple[int, float, int]:
    days = entry.days_until_reorder if entry.days_until_reorder is not None else math.inf
    return URGENCY_RANK[entry.urgency], days, entry.item_id


class ReplenishmentForecaster:
    """Builds the replenishment report and turns shortfalls into draft requests."""

    def __init__(
        self,
        repository: InventoryRepository,
        settings: ServiceSettings,
        *,
        cache: JsonCache | None = None,
        workflow: RequestWorkflow | None = None,
    ) -> None:
        self.repository = repository
        self.session = repository.session
        self.settings = settings
        self.cache = cache
        self.workflow = workflow or RequestWorkflow(repository, settings)

    async def report(self, *, look_ahead_days: int | None = None, now: datetime | None = None) -> ForecastReport:
        """Return the forecast report. Only the default report goes through the cache."""

        cacheable = self.cache is not None and look_ahead_days is None and now is None
        if cacheable:
            cached = await self.cache.get(_REPORT_KEY)
            if cached is not None:
                FORECAST_CACHE_EVENTS_TOTAL.labels(result="hit").inc()
                return ForecastReport.model_validate(cached)
            FORECAST_CACHE_EVENTS_TOTAL.labels(result="miss").inc()

        report = await self._build(look_ahead_days or self.settings.forecast_look_ahead_days, now or utcnow())
        if cacheable:
            await self.cache.set(_REPORT_KEY, report.model_dump(mode="json", by_alias=True))
        return report

    async def _build(self, look_ahead_days: int, now: datetime) -> ForecastReport:
        started = time.perf_counter()
        since = now - timedelta(days=self.settings.forecast_window_days)
        candidates = await self.repository.list_forecast_candidates()
        totals = await self.repository.consumption_totals(since=since)
        entries = [
            build_entry(item, consumption_rate(item, totals), look_ahead_days=look_ahead_days) for item in candidates
        ]
        entries.sort(key=_sort_key)
        FORECAST_BUILD_SECONDS.observe(time.perf_counter() - started)
        return ForecastReport(
            generated_at=now,
            window_days=self.settings.forecast_window_days,
            look_ahead_days=look_ahead_days,
            items=entries,
        )

    async def auto_create(
        self,
        actor: Actor,
        *,
        team_id: str | None = None,
        dry_run: bool = True,
        item_ids: Sequence[int] | None = None,
        now: datetime | None = None,
    ) -> AutoRequestResponse:
        """Draft replenishment requests for items below their minimum stock.

        Drafts are never submitted. Without ``team_id`` each item goes to the
        team of the most recent request that named it; items with no such team
        are reported as skipped with ``no_target_team``.
        """

        report = await self._build(self.settings.forecast_look_ahead_days, now or utcnow())
        wanted = set(item_ids) if item_ids is not None else None
        created: list[AutoRequestOutcome] = []
        skipped: list[AutoRequestOutcome] = []

        for entry in report.items:
            if not entry.below_minimum:
                continue
            if wanted is not None and entry.item_id not in wanted:
                continue
            target = team_id or await self.repository.latest_team_for_item(entry.item_id)
            outcome = AutoRequestOutcome(
                item_id=entry.item_id,
                name=entry.name,
                team_id=target,
                suggested_quantity=entry.suggested_quantity,
            )
            if target is None:
                error = NoTargetTeam(f"No team supplied or inferable for item {entry.item_id}")
                outcome.code = error.code
                outcome.detail = error.message
                skipped.append(outcome)
                continue
            if not dry_run:
                item = await self.repository.get_item(entry.item_id)
                request = await self.workflow.create_request(
                    RequestCreate(
                        team_id=target,
                        title=f"Replenish {entry.name}",
                        description=(
                            f"Available {entry.available_quantity} is below minimum {entry.min_stock_level}; "
                            f"average daily consumption {entry.avg_daily_consumption}."
                        ),
                        priority=DRAFT_PRIORITY[entry.urgency],
                        is_consumable_request=bool(item and item.is_consumable),
                        items=[RequestItemCreate(inventory_item_id=entry.item_id, quantity=entry.suggested_quantity)],
                    ),
                    actor,
                    notes="generated by replenishment forecaster",
                )
                outcome.request_id = request.id
                outcome.request_number = request.request_number
            created.append(outcome)

        if not dry_run and created:
            FORECAST_DRAFTS_CREATED_TOTAL.inc(len(created))
            events.queue_event(
                self.session,
                events.FORECAST_DRAFTS_CREATED,
                {"requestIds": [outcome.request_id for outcome in created]},
            )
            _LOGGER.info("Forecaster drafted %d replenishment request(s)", len(created))
        return AutoRequestResponse(dry_run=dry_run, created=created, skipped=skipped)


class ForecastCacheInvalidator:
    """Drops the cached default report whenever available stock or consumption changes."""

    topics = (
        events.CONSUMPTION_LOGGED,
        events.ASSIGNMENT_CREATED,
        events.ASSIGNMENT_RETURNED,
        events.RESERVATION_PLACED,
        events.RESERVATION_CANCELLED,
        events.RESERVATION_EXPIRED,
        events.MAINTENANCE_SCHEDULED,
        events.MAINTENANCE_COMPLETED,
        events.ITEM_RECEIVED,
        events.ITEM_LOW_STOCK,
        events.ITEM_OUT_OF_STOCK,
        events.FORECAST_DRAFTS_CREATED,
    )

    def __init__(self, cache: JsonCache) -> None:
        self._cache = cache

    async def handle(self, topic: str, message: dict[str, Any]) -> None:
        await self._cache.delete(_REPORT_KEY)
        _LOGGER.debug("Forecast cache invalidated by %s", topic)
