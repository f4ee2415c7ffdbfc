"""Domain event queueing and publishing for the inventory service.

Services queue events on the session while they work. Nothing leaves the
process until the surrounding transaction has committed, at which point the
dependency layer hands the queue to :class:`InventoryEventPublisher`.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from incubator.common import EventProducer

_LOGGER = logging.getLogger(__name__)
_PENDING_KEY = "inventory.pending_events"

ASSIGNMENT_CREATED = "assignment.created"
ASSIGNMENT_RETURNED = "assignment.returned"
RESERVATION_PLACED = "reservation.placed"
RESERVATION_CANCELLED = "reservation.cancelled"
RESERVATION_EXPIRED = "reservation.expired"
CONSUMPTION_LOGGED = "consumption.logged"
ITEM_LOW_STOCK = "item.low_stock"
ITEM_OUT_OF_STOCK = "item.out_of_stock"
ITEM_RECEIVED = "item.received"
MAINTENANCE_SCHEDULED = "maintenance.scheduled"
MAINTENANCE_COMPLETED = "maintenance.completed"
REQUEST_SUBMITTED = "request.submitted"
REQUEST_APPROVED = "request.approved"
REQUEST_PARTIALLY_APPROVED = "request.partially_approved"
REQUEST_DECLINED = "request.declined"
REQUEST_DELIVERED = "request.delivered"
FORECAST_DRAFTS_CREATED = "forecast.drafts_created"


def _pending(session: AsyncSession) -> list[tuple[str, dict[str, Any]]]:
    return session.info.setdefault(_PENDING_KEY, [])


def queue_event(session: AsyncSession, topic: str, payload: dict[str, Any]) -> None:
    """Queue an event to be published once the session's transaction commits."""

    _pending(session).append((topic, payload))


def event_mark(session: AsyncSession) -> int:
    return len(_pending(session))


def discard_events_since(session: AsyncSession, mark: int) -> None:
    """Drop events queued after ``mark`` (used when a savepoint rolls back)."""

    del _pending(session)[mark:]


def pending_events(session: AsyncSession) -> list[tuple[str, dict[str, Any]]]:
    return list(_pending(session))


def drain_events(session: AsyncSession) -> list[tuple[str, dict[str, Any]]]:
    events = list(_pending(session))
    _pending(session).clear()
    return events


class InventoryEventPublisher:
    """Publishes committed domain events through the configured producer."""

    def __init__(self, producer: EventProducer | None) -> None:
        self._producer = producer

    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        if self._producer is None:
            return
        envelope = {
            "eventType": topic,
            "occurredAt": datetime.now(timezone.utc).isoformat(),
            **payload,
        }
        try:
            await self._producer.send(topic, envelope)
        except Exception:  # noqa: BLE001 - the transaction already committed
            _LOGGER.exception("Failed to publish %s", topic)

    async def publish_committed(self, session: AsyncSession) -> int:
        """Publish and clear everything the session queued. Returns the count."""

        events = drain_events(session)
        for topic, payload in events:
            await self.publish(topic, payload)
        return len(events)
