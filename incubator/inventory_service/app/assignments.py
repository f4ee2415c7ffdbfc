"""Assignments: long-lived, returnable checkouts of stock to a team."""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from . import events
from .actors import Actor
from .errors import AlreadyReturned, DuplicateAssignment, NotFound
from .ledger import Ledger
from .models import InventoryAssignment, utcnow
from .repository import InventoryRepository

_LOGGER = logging.getLogger(__name__)


def assignment_payload(assignment: InventoryAssignment) -> dict[str, object]:
    return {
        "assignmentId": assignment.id,
        "itemId": assignment.item_id,
        "teamId": assignment.team_id,
        "quantity": assignment.quantity,
        "requestItemId": assignment.request_item_id,
        "reservationId": assignment.reservation_id,
    }


class AssignmentManager:
    """Checks items out to teams and takes them back."""

    def __init__(self, repository: InventoryRepository, ledger: Ledger | None = None) -> None:
        self.repository = repository
        self.session = repository.session
        self.ledger = ledger or Ledger(repository)

    async def assign(
        self,
        item_id: int,
        team_id: str,
        quantity: int,
        actor: Actor,
        *,
        request_item_id: int | None = None,
        notes: str | None = None,
    ) -> InventoryAssignment:
        if request_item_id is not None:
            existing = await self.repository.get_assignment_for_request_item(request_item_id)
            if existing is not None:
                raise DuplicateAssignment(
                    f"Request item {request_item_id} is already realized by assignment {existing.id}"
                )
        reference = f"request_item:{request_item_id}" if request_item_id is not None else f"team:{team_id}"
        mark = events.event_mark(self.session)
        try:
            async with self.session.begin_nested():
                await self.ledger.commit_assignment(item_id, quantity, actor_id=actor.actor_id, reference=reference)
                assignment = await self.repository.create_assignment(
                    item_id=item_id,
                    team_id=team_id,
                    quantity=quantity,
                    assigned_by=actor.actor_id,
                    assigned_at=utcnow(),
                    request_item_id=request_item_id,
                    notes=notes,
                )
        except IntegrityError as exc:
            events.discard_events_since(self.session, mark)
            # Lost a race with another realization of the same request item.
            raise DuplicateAssignment(f"Request item {request_item_id} is already realized") from exc
        _LOGGER.info("Assigned %s x item %s to team %s", quantity, item_id, team_id)
        events.queue_event(self.session, events.ASSIGNMENT_CREATED, {"assignment": assignment_payload(assignment)})
        return assignment

    async def return_assignment(self, assignment_id: int, actor: Actor) -> InventoryAssignment:
        """Credit the assigned quantity back. A second return raises :class:`AlreadyReturned`."""

        async with self.session.begin_nested():
            assignment = await self.repository.get_assignment(assignment_id, for_update=True)
            if assignment is None:
                raise NotFound(f"Assignment {assignment_id} not found")
            if assignment.returned_at is not None:
                raise AlreadyReturned(f"Assignment {assignment_id} was returned at {assignment.returned_at.isoformat()}")
            returned_at = utcnow()
            claimed = await self.repository.mark_assignment_returned(
                assignment_id, returned_at=returned_at, returned_by=actor.actor_id
            )
            if not claimed:
                raise AlreadyReturned(f"Assignment {assignment_id} was already returned")
            await self.ledger.release(
                assignment.item_id,
                assignment.quantity,
                bucket="assigned",
                actor_id=actor.actor_id,
                reference=f"assignment:{assignment_id}",
            )
        assignment = await self.repository.get_assignment(assignment_id)
        _LOGGER.info("Assignment %s returned by %s", assignment_id, actor.actor_id)
        events.queue_event(self.session, events.ASSIGNMENT_RETURNED, {"assignment": assignment_payload(assignment)})
        return assignment

    async def list_active(self, *, team_id: str | None = None, item_id: int | None = None) -> list[InventoryAssignment]:
        return await self.repository.list_active_assignments(team_id=team_id, item_id=item_id)
