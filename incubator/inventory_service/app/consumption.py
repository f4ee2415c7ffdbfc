"""Consumption tracking for consumable stock. Consumption is never credited back."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from . import events
from .actors import Actor
from .errors import InventoryError, NotFound
from .ledger import Ledger
from .metrics import INVENTORY_CONSUMPTION_UNITS_TOTAL
from .models import ConsumptionLog, ensure_utc, utcnow
from .repository import InventoryRepository
from .schemas import ConsumptionCreate

_LOGGER = logging.getLogger(__name__)


@dataclass
class BulkLineResult:
    index: int
    item_id: int
    log: ConsumptionLog | None = None
    error: InventoryError | None = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class ConsumptionStats:
    item_id: int
    total_consumed: int
    distributions: int
    average_per_distribution: float
    first_consumed_at: datetime | None
    last_consumed_at: datetime | None


class ConsumptionTracker:
    """Debits consumable stock and keeps the append-only consumption log."""

    def __init__(self, repository: InventoryRepository, ledger: Ledger | None = None) -> None:
        self.repository = repository
        self.session = repository.session
        self.ledger = ledger or Ledger(repository)

    async def consume(
        self,
        item_id: int,
        team_id: str,
        quantity: int,
        distributor: Actor,
        *,
        consumption_date: datetime | None = None,
        consumption_type: str = "manual",
        request_id: int | None = None,
        notes: str | None = None,
    ) -> ConsumptionLog:
        if request_id is not None and not await self.repository.request_exists(request_id):
            raise NotFound(f"Material request {request_id} not found")
        reference = f"request:{request_id}" if request_id is not None else f"team:{team_id}"
        async with self.session.begin_nested():
            await self.ledger.consume(item_id, quantity, actor_id=distributor.actor_id, reference=reference)
            log = await self.repository.add_consumption(
                item_id=item_id,
                team_id=team_id,
                quantity=quantity,
                distributed_by=distributor.actor_id,
                consumption_date=ensure_utc(consumption_date) if consumption_date else utcnow(),
                consumption_type=consumption_type,
                request_id=request_id,
                notes=notes,
            )
        INVENTORY_CONSUMPTION_UNITS_TOTAL.labels(consumption_type=consumption_type).inc(quantity)
        events.queue_event(
            self.session,
            events.CONSUMPTION_LOGGED,
            {
                "consumptionId": log.id,
                "itemId": item_id,
                "teamId": team_id,
                "quantity": quantity,
                "consumptionType": consumption_type,
            },
        )
        return log

    async def consume_bulk(self, lines: Sequence[ConsumptionCreate], distributor: Actor) -> list[BulkLineResult]:
        """Log each line on its own; one rejected line does not undo the others."""

        results: list[BulkLineResult] = []
        for index, line in enumerate(lines):
            try:
                log = await self.consume(
                    line.item_id,
                    line.team_id,
                    line.quantity,
                    distributor,
                    consumption_date=line.consumption_date,
                    consumption_type=line.consumption_type,
                    request_id=line.request_id,
                    notes=line.notes,
                )
            except InventoryError as exc:
                results.append(BulkLineResult(index=index, item_id=line.item_id, error=exc))
                continue
            results.append(BulkLineResult(index=index, item_id=line.item_id, log=log))
        failed = sum(1 for result in results if not result.success)
        if failed:
            _LOGGER.info("Bulk consumption: %d of %d line(s) rejected", failed, len(results))
        return results

    async def history(
        self,
        *,
        item_id: int | None = None,
        team_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 200,
    ) -> list[ConsumptionLog]:
        return await self.repository.list_consumption(
            item_id=item_id,
            team_id=team_id,
            start=ensure_utc(start) if start else None,
            end=ensure_utc(end) if end else None,
            limit=limit,
        )

    async def stats(self, item_id: int, *, since: datetime | None = None) -> ConsumptionStats:
        if await self.repository.get_item(item_id) is None:
            raise NotFound(f"Inventory item {item_id} not found")
        totals = await self.repository.consumption_totals(item_id=item_id, since=ensure_utc(since) if since else None)
        if item_id not in totals:
            return ConsumptionStats(item_id, 0, 0, 0.0, None, None)
        total, count, oldest, newest = totals[item_id]
        return ConsumptionStats(
            item_id=item_id,
            total_consumed=total,
            distributions=count,
            average_per_distribution=round(total / count, 2),
            first_consumed_at=oldest,
            last_consumed_at=newest,
        )
