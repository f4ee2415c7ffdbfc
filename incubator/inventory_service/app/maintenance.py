"""Maintenance holds on fixed assets."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from . import events
from .actors import Actor
from .errors import InvalidTransition, NotFound, PermissionDenied
from .ledger import Ledger
from .models import InventoryItem, MaintenanceLog, ensure_utc, utcnow
from .repository import InventoryRepository

_LOGGER = logging.getLogger(__name__)


@dataclass
class ScheduledItem:
    item: InventoryItem
    previous: datetime | None
    next_maintenance: datetime


@dataclass
class DueItem:
    item: InventoryItem
    days_until_due: int
    overdue: bool


class MaintenanceScheduler:
    """Opens and closes maintenance windows through the ledger's hold primitives."""

    def __init__(self, repository: InventoryRepository, ledger: Ledger | None = None) -> None:
        self.repository = repository
        self.session = repository.session
        self.ledger = ledger or Ledger(repository)

    async def schedule(
        self,
        item_id: int,
        maintenance_type: str,
        actor: Actor,
        *,
        notes: str | None = None,
    ) -> MaintenanceLog:
        async with self.session.begin_nested():
            await self.ledger.place_hold(item_id, actor_id=actor.actor_id, reference=f"maintenance:{maintenance_type}")
            log = await self.repository.create_maintenance_log(
                item_id=item_id,
                maintenance_type=maintenance_type,
                scheduled_by=actor.actor_id,
                started_at=utcnow(),
                notes=notes,
            )
        _LOGGER.info("Item %s placed under %s maintenance by %s", item_id, maintenance_type, actor.actor_id)
        events.queue_event(
            self.session,
            events.MAINTENANCE_SCHEDULED,
            {"maintenanceId": log.id, "itemId": item_id, "maintenanceType": maintenance_type},
        )
        return log

    async def complete(
        self,
        log_id: int,
        actor: Actor,
        *,
        performed_at: datetime | None = None,
        notes: str | None = None,
    ) -> MaintenanceLog:
        log = await self.repository.get_maintenance_log(log_id)
        if log is None:
            raise NotFound(f"Maintenance log {log_id} not found")
        if log.performed_at is not None:
            raise InvalidTransition(f"Maintenance {log_id} was already completed")
        performed = ensure_utc(performed_at) if performed_at else utcnow()

        async with self.session.begin_nested():
            item = await self.ledger.lift_hold(log.item_id, actor_id=actor.actor_id, reference=f"maintenance:{log_id}")
            next_due = None
            if item.maintenance_interval:
                next_due = performed + timedelta(days=item.maintenance_interval)
            item.last_maintenance = performed
            item.next_maintenance = next_due
            log.performed_at = performed
            log.performed_by = actor.actor_id
            log.next_maintenance = next_due
            if notes:
                log.notes = f"{log.notes}\n{notes}" if log.notes else notes
            await self.session.flush()
        _LOGGER.info("Maintenance %s on item %s completed; next due %s", log_id, log.item_id, next_due)
        events.queue_event(
            self.session,
            events.MAINTENANCE_COMPLETED,
            {
                "maintenanceId": log.id,
                "itemId": log.item_id,
                "nextMaintenance": next_due.isoformat() if next_due else None,
            },
        )
        return log

    async def due_for_maintenance(
        self,
        *,
        days_ahead: int = 30,
        overdue_only: bool = False,
        now: datetime | None = None,
    ) -> tuple[list[DueItem], list[DueItem]]:
        """Return ``(overdue, due_soon)`` for items with a next maintenance date."""

        current = now or utcnow()
        until = current if overdue_only else current + timedelta(days=days_ahead)
        overdue: list[DueItem] = []
        due_soon: list[DueItem] = []
        for item in await self.repository.list_items_due_for_maintenance(until):
            delta = (item.next_maintenance - current).total_seconds() / 86400
            if delta < 0:
                overdue.append(DueItem(item, days_until_due=math.floor(delta), overdue=True))
            else:
                due_soon.append(DueItem(item, days_until_due=math.ceil(delta), overdue=False))
        return overdue, due_soon

    async def auto_schedule(self, actor: Actor, *, now: datetime | None = None) -> list[ScheduledItem]:
        """Derive ``next_maintenance`` for every item with a maintenance interval.

        Serviced items are due one interval after ``last_maintenance``; items
        never serviced and never scheduled are due one interval from now.
        Items whose date is already right are left alone.
        """

        if not actor.is_staff:
            raise PermissionDenied("Only managers and directors can auto-schedule maintenance")
        current = now or utcnow()
        scheduled: list[ScheduledItem] = []
        for item in await self.repository.list_items_with_maintenance_interval():
            interval = timedelta(days=item.maintenance_interval)
            if item.last_maintenance is not None:
                due = item.last_maintenance + interval
            elif item.next_maintenance is None:
                due = current + interval
            else:
                continue
            if item.next_maintenance == due:
                continue
            scheduled.append(ScheduledItem(item=item, previous=item.next_maintenance, next_maintenance=due))
            item.next_maintenance = due
        await self.session.flush()
        if scheduled:
            _LOGGER.info("Auto-scheduled maintenance for %d item(s) by %s", len(scheduled), actor.actor_id)
        return scheduled
