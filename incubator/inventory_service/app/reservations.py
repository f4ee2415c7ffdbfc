"""Reservations: short-lived holds that either convert to assignments or lapse.

A hold is claimed exactly once. ``confirm``, ``cancel`` and the expiry sweep
all move a reservation out of ``held`` with a compare-and-set UPDATE, and only
the caller whose UPDATE matched performs the ledger side effect. A confirm that
still sees the hold as ``held`` therefore always beats a lagging sweep, even
past ``reserved_until``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from incubator.common import ServiceSettings

from . import events
from .actors import Actor
from .assignments import assignment_payload
from .errors import InvalidHoldPeriod, InvalidTransition, NotFound
from .ledger import Ledger
from .metrics import INVENTORY_RESERVATIONS_EXPIRED_TOTAL
from .models import InventoryReservation, ensure_utc, utcnow
from .repository import InventoryRepository

_LOGGER = logging.getLogger(__name__)


def reservation_payload(reservation: InventoryReservation) -> dict[str, object]:
    return {
        "reservationId": reservation.id,
        "itemId": reservation.item_id,
        "teamId": reservation.team_id,
        "quantity": reservation.quantity,
        "status": reservation.status,
        "reservedUntil": reservation.reserved_until.isoformat(),
    }


class ReservationManager:
    """Places, confirms, cancels and expires reservation holds."""

    def __init__(
        self,
        repository: InventoryRepository,
        settings: ServiceSettings,
        ledger: Ledger | None = None,
    ) -> None:
        self.repository = repository
        self.session = repository.session
        self.settings = settings
        self.ledger = ledger or Ledger(repository)

    def _resolve_expiry(self, reserved_until: datetime | None, now: datetime) -> datetime:
        if reserved_until is None:
            return now + timedelta(minutes=self.settings.reservation_default_hold_minutes)
        expiry = ensure_utc(reserved_until)
        if expiry <= now:
            raise InvalidHoldPeriod("reservedUntil must be in the future")
        if expiry > now + timedelta(hours=self.settings.reservation_max_hold_hours):
            raise InvalidHoldPeriod(
                f"Reservations may be held for at most {self.settings.reservation_max_hold_hours} hours"
            )
        return expiry

    async def reserve(
        self,
        item_id: int,
        team_id: str,
        quantity: int,
        actor: Actor,
        *,
        reserved_until: datetime | None = None,
        request_id: int | None = None,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> InventoryReservation:
        current = now or utcnow()
        expiry = self._resolve_expiry(reserved_until, current)
        if request_id is not None and not await self.repository.request_exists(request_id):
            raise NotFound(f"Material request {request_id} not found")
        async with self.session.begin_nested():
            await self.ledger.reserve(item_id, quantity, actor_id=actor.actor_id, reference=f"team:{team_id}")
            reservation = await self.repository.create_reservation(
                item_id=item_id,
                team_id=team_id,
                quantity=quantity,
                reserved_by=actor.actor_id,
                reserved_until=expiry,
                status="held",
                request_id=request_id,
                notes=notes,
            )
        _LOGGER.info("Reserved %s x item %s for team %s until %s", quantity, item_id, team_id, expiry.isoformat())
        events.queue_event(self.session, events.RESERVATION_PLACED, {"reservation": reservation_payload(reservation)})
        return reservation

    async def _require(self, reservation_id: int) -> InventoryReservation:
        reservation = await self.repository.get_reservation(reservation_id)
        if reservation is None:
            raise NotFound(f"Reservation {reservation_id} not found")
        return reservation

    async def cancel(self, reservation_id: int, actor: Actor) -> InventoryReservation:
        reservation = await self._require(reservation_id)
        async with self.session.begin_nested():
            claimed = await self.repository.claim_reservation(
                reservation_id, new_status="cancelled", resolved_at=utcnow()
            )
            if not claimed:
                current = await self._require(reservation_id)
                raise InvalidTransition(f"Reservation {reservation_id} is already {current.status}")
            await self.ledger.release(
                reservation.item_id,
                reservation.quantity,
                bucket="reserved",
                actor_id=actor.actor_id,
                reference=f"reservation:{reservation_id}",
            )
        _LOGGER.info("Reservation %s cancelled by %s", reservation_id, actor.actor_id)
        cancelled = await self._require(reservation_id)
        events.queue_event(self.session, events.RESERVATION_CANCELLED, {"reservation": reservation_payload(cancelled)})
        return cancelled

    async def confirm(self, reservation_id: int, actor: Actor, *, notes: str | None = None):
        """Convert a held reservation into an active assignment.

        Returns ``(reservation, assignment)``.
        """

        reservation = await self._require(reservation_id)
        async with self.session.begin_nested():
            claimed = await self.repository.claim_reservation(
                reservation_id, new_status="confirmed", resolved_at=utcnow()
            )
            if not claimed:
                current = await self._require(reservation_id)
                raise InvalidTransition(f"Reservation {reservation_id} is already {current.status}")
            await self.ledger.convert_reservation(
                reservation.item_id,
                reservation.quantity,
                actor_id=actor.actor_id,
                reference=f"reservation:{reservation_id}",
            )
            assignment = await self.repository.create_assignment(
                item_id=reservation.item_id,
                team_id=reservation.team_id,
                quantity=reservation.quantity,
                assigned_by=actor.actor_id,
                assigned_at=utcnow(),
                reservation_id=reservation_id,
                notes=notes or reservation.notes,
            )
            reservation = await self._require(reservation_id)
            reservation.assignment_id = assignment.id
            await self.session.flush()
        _LOGGER.info("Reservation %s confirmed as assignment %s", reservation_id, assignment.id)
        events.queue_event(self.session, events.ASSIGNMENT_CREATED, {"assignment": assignment_payload(assignment)})
        return reservation, assignment

    async def sweep_expired(self, now: datetime | None = None) -> list[int]:
        """Release every hold whose expiry has passed. Safe to run concurrently with confirm."""

        current = now or utcnow()
        expired: list[int] = []
        for reservation_id in await self.repository.list_expired_reservation_ids(current):
            reservation = await self._require(reservation_id)
            async with self.session.begin_nested():
                claimed = await self.repository.claim_reservation(
                    reservation_id, new_status="expired", resolved_at=current
                )
                if not claimed:
                    continue
                await self.ledger.release(
                    reservation.item_id,
                    reservation.quantity,
                    bucket="reserved",
                    actor_id="system",
                    reference=f"reservation:{reservation_id}",
                )
            expired.append(reservation_id)
            reservation = await self._require(reservation_id)
            events.queue_event(self.session, events.RESERVATION_EXPIRED, {"reservation": reservation_payload(reservation)})
        if expired:
            INVENTORY_RESERVATIONS_EXPIRED_TOTAL.inc(len(expired))
            _LOGGER.info("Expired %d reservation(s)", len(expired))
        return expired

    async def list_for_team(self, team_id: str, *, status: str | None = "held") -> list[InventoryReservation]:
        return await self.repository.list_reservations(team_id=team_id, status=status)
