"""Material request workflow.

Review axis::

    draft -> submitted -> pending_review -> approved | partially_approved | declined
    draft | submitted | pending_review -> cancelled

Delivery axis (only once approved or partially approved)::

    not_ordered -> ordered -> delivered

Approval levels are decided in ascending order. An approve decision may only
keep or lower each item's granted quantity; a decline declines every item.
After the final level (level 1 for quick-approval requests) the request is
finalized: each granted item linked to an inventory item is realized against
the ledger in its own savepoint. Items that still conflict after the retry are
flagged ``needs_review`` and the request stays in ``pending_review`` until a
re-review decision at the final level.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable

from incubator.common import ServiceSettings

from . import events
from .actors import Actor
from .assignments import AssignmentManager
from .consumption import ConsumptionTracker
from .errors import (
    LEDGER_CONFLICTS,
    InvalidQuantity,
    InvalidTransition,
    InventoryError,
    NotFound,
    PermissionDenied,
)
from .ledger import Ledger
from .metrics import REQUEST_FINALIZE_CONFLICTS_TOTAL, REQUEST_TRANSITIONS_TOTAL
from .models import ApprovalStep, MaterialRequest, RequestHistory, RequestItem, utcnow
from .repository import InventoryRepository
from .schemas import ApprovalStepCreate, DecisionCreate, RequestCreate, RequestItemCreate
from .sequences import insert_with_request_number

_LOGGER = logging.getLogger(__name__)

DRAFT = "draft"
SUBMITTED = "submitted"
PENDING_REVIEW = "pending_review"
APPROVED = "approved"
PARTIALLY_APPROVED = "partially_approved"
DECLINED = "declined"
CANCELLED = "cancelled"

CANCELLABLE = frozenset({DRAFT, SUBMITTED, PENDING_REVIEW})
DELIVERABLE = frozenset({APPROVED, PARTIALLY_APPROVED})
DELIVERY_SEQUENCE = ("not_ordered", "ordered", "delivered")

DEFAULT_APPROVER_ROLE = "manager"

_STATUS_TOPICS = {
    APPROVED: events.REQUEST_APPROVED,
    PARTIALLY_APPROVED: events.REQUEST_PARTIALLY_APPROVED,
    DECLINED: events.REQUEST_DECLINED,
}


def classify(items: Iterable[RequestItem]) -> str:
    """Terminal status implied by the items' granted quantities."""

    items = list(items)
    if items and all(item.approved_quantity == item.quantity for item in items):
        return APPROVED
    if all(item.approved_quantity == 0 for item in items):
        return DECLINED
    return PARTIALLY_APPROVED


def item_status(item: RequestItem) -> str:
    if item.approved_quantity == 0:
        return "declined"
    if item.approved_quantity == item.quantity:
        return "approved"
    return "partial"


def request_payload(request: MaterialRequest) -> dict[str, Any]:
    return {
        "requestId": request.id,
        "requestNumber": request.request_number,
        "teamId": request.team_id,
        "status": request.status,
        "deliveryStatus": request.delivery_status,
        "items": [
            {
                "requestItemId": item.id,
                "inventoryItemId": item.inventory_item_id,
                "quantity": item.quantity,
                "approvedQuantity": item.approved_quantity,
                "distributedQuantity": item.distributed_quantity,
            }
            for item in request.items
        ],
    }


class RequestWorkflow:
    """Drives material requests through review and realizes approved items."""

    def __init__(
        self,
        repository: InventoryRepository,
        settings: ServiceSettings,
        *,
        assignments: AssignmentManager | None = None,
        consumption: ConsumptionTracker | None = None,
    ) -> None:
        self.repository = repository
        self.session = repository.session
        self.settings = settings
        ledger = Ledger(repository)
        self.assignments = assignments or AssignmentManager(repository, ledger)
        self.consumption = consumption or ConsumptionTracker(repository, ledger)

    # Queries

    async def get_request(self, request_id: int) -> MaterialRequest:
        request = await self.repository.get_request(request_id)
        if request is None:
            raise NotFound(f"Request {request_id} not found")
        return request

    async def list_requests(self, **filters: Any) -> tuple[list[MaterialRequest], int]:
        return await self.repository.list_requests(**filters)

    # Commands

    async def create_request(self, payload: RequestCreate, actor: Actor, *, notes: str | None = None) -> MaterialRequest:
        items = [await self._build_item(line) for line in payload.items]
        chain = payload.approval_chain or [ApprovalStepCreate(approver_role=DEFAULT_APPROVER_ROLE)]
        now = utcnow()

        async def insert(number: str) -> MaterialRequest:
            request = MaterialRequest(
                request_number=number,
                team_id=payload.team_id,
                requested_by=actor.actor_id,
                title=payload.title,
                description=payload.description,
                priority=payload.priority,
                is_consumable_request=payload.is_consumable_request,
                requires_quick_approval=payload.requires_quick_approval,
                status=DRAFT,
                delivery_status=DELIVERY_SEQUENCE[0],
                items=[RequestItem(**fields) for fields in items],
                steps=[
                    ApprovalStep(approval_level=level, approver_id=step.approver_id, approver_role=step.approver_role)
                    for level, step in enumerate(chain, start=1)
                ],
                history=[
                    RequestHistory(
                        action="created",
                        actor_id=actor.actor_id,
                        new_value=DRAFT,
                        notes=notes,
                        created_at=now,
                    )
                ],
            )
            return await self.repository.add_request(request)

        request = await insert_with_request_number(self.repository, now, insert)
        _LOGGER.info("Created request %s for team %s", request.request_number, request.team_id)
        return request

    async def add_item(self, request_id: int, payload: RequestItemCreate, actor: Actor) -> MaterialRequest:
        request = await self._lock(request_id)
        self._require_requester(request, actor)
        if request.status != DRAFT:
            raise InvalidTransition(f"Items can only be added to draft requests, not {request.status}")
        fields = await self._build_item(payload)
        item = await self.repository.add_request_item(request, **fields)
        await self._record(request, "item_added", actor, new_value={"requestItemId": item.id, "quantity": item.quantity})
        return await self.get_request(request_id)

    async def submit(self, request_id: int, actor: Actor) -> MaterialRequest:
        request = await self._lock(request_id)
        self._require_requester(request, actor)
        if request.status != DRAFT:
            raise InvalidTransition(f"Only draft requests can be submitted, not {request.status}")
        if not request.items:
            raise InvalidTransition("A request needs at least one item before submission")

        now = utcnow()
        await self._transition(request, SUBMITTED, actor)
        request.submitted_at = now
        if not request.requires_quick_approval:
            await self._transition(request, PENDING_REVIEW, actor)
            request.review_started_at = now
        await self.session.flush()
        events.queue_event(self.session, events.REQUEST_SUBMITTED, {"request": request_payload(request)})
        return await self.get_request(request_id)

    async def cancel(self, request_id: int, actor: Actor, *, reason: str | None = None) -> MaterialRequest:
        request = await self._lock(request_id)
        self._require_requester(request, actor)
        if request.status not in CANCELLABLE:
            raise InvalidTransition(f"Requests in {request.status} cannot be cancelled")
        if any(item.distributed_quantity > 0 for item in request.items):
            raise InvalidTransition("Request already has distributed items and cannot be cancelled")
        await self._transition(request, CANCELLED, actor, notes=reason)
        request.cancelled_at = utcnow()
        await self.session.flush()
        return await self.get_request(request_id)

    async def delegate(self, request_id: int, level: int, delegate_to: str, actor: Actor) -> MaterialRequest:
        request = await self._lock(request_id)
        self._require_reviewable(request)
        step = self._step(request, level)
        if not (self._can_decide(step, actor) or actor.is_director):
            raise PermissionDenied(f"{actor.actor_id} cannot delegate approval level {level}")
        if level in self._decided_levels(request):
            raise InvalidTransition(f"Approval level {level} has already been decided")
        previous = step.delegated_to
        step.delegated_to = delegate_to
        await self.repository.add_approval(
            request,
            approval_level=level,
            approver_id=actor.actor_id,
            decision="delegated",
            comments=f"delegated to {delegate_to}",
            decided_at=utcnow(),
        )
        await self._record(
            request,
            "delegated",
            actor,
            old_value={"level": level, "delegatedTo": previous},
            new_value={"level": level, "delegatedTo": delegate_to},
        )
        return await self.get_request(request_id)

    async def decide(self, request_id: int, level: int, decision: DecisionCreate, actor: Actor) -> MaterialRequest:
        request = await self._lock(request_id)
        self._require_reviewable(request)
        step = self._step(request, level)
        if actor.actor_id == request.requested_by:
            raise PermissionDenied("Requesters cannot approve their own requests")
        if not self._can_decide(step, actor):
            raise PermissionDenied(f"{actor.actor_id} is not an approver for level {level}")

        final_level = self._final_level(request)
        decided = self._decided_levels(request)
        re_review = self._in_re_review(request)
        if re_review:
            if level != final_level:
                raise InvalidTransition(f"Flagged items are re-reviewed at level {final_level}")
        else:
            if request.requires_quick_approval and level != 1:
                raise InvalidTransition("Quick-approval requests are decided at level 1 only")
            expected = next((s.approval_level for s in request.steps if s.approval_level not in decided), None)
            if expected is None or level != expected:
                raise InvalidTransition(f"Approval level {level} cannot be decided now (next level: {expected})")

        open_items = [item for item in request.items if item.distributed_quantity == 0]
        if decision.decision == "approved":
            grants = self._validate_grants(request, open_items, decision.granted or {}, has_prior=bool(decided))
        else:
            grants = {item.id: 0 for item in open_items}

        for item in open_items:
            item.approved_quantity = grants[item.id]
            item.status = item_status(item)
        await self.repository.add_approval(
            request,
            approval_level=level,
            approver_id=actor.actor_id,
            decision=decision.decision,
            granted_json=json.dumps({str(key): value for key, value in grants.items()}),
            comments=decision.comments,
            decided_at=utcnow(),
        )
        await self._record(
            request,
            "decision",
            actor,
            new_value={"level": level, "decision": decision.decision, "granted": grants},
            notes=decision.comments,
        )
        await self.session.flush()

        if decision.decision == "declined":
            await self._close(request, actor)
        elif level == final_level:
            await self._finalize(request, actor)
        return await self.get_request(request_id)

    async def update_delivery(self, request_id: int, delivery_status: str, actor: Actor) -> MaterialRequest:
        if not actor.is_staff:
            raise PermissionDenied("Only managers and directors update delivery status")
        request = await self._lock(request_id)
        if request.status not in DELIVERABLE:
            raise InvalidTransition(f"Delivery cannot advance while the request is {request.status}")
        if delivery_status not in DELIVERY_SEQUENCE:
            raise InvalidTransition(f"Unknown delivery status {delivery_status}")
        current = DELIVERY_SEQUENCE.index(request.delivery_status)
        if DELIVERY_SEQUENCE.index(delivery_status) != current + 1:
            raise InvalidTransition(f"Delivery cannot move from {request.delivery_status} to {delivery_status}")

        previous = request.delivery_status
        request.delivery_status = delivery_status
        if delivery_status == "ordered":
            request.ordered_at = utcnow()
        else:
            request.delivered_at = utcnow()
        await self._record(request, "delivery_status_changed", actor, old_value=previous, new_value=delivery_status)
        await self.session.flush()
        if delivery_status == "delivered":
            events.queue_event(self.session, events.REQUEST_DELIVERED, {"request": request_payload(request)})
        return await self.get_request(request_id)

    # Finalize

    async def _finalize(self, request: MaterialRequest, actor: Actor) -> None:
        attempts = 1 + self.settings.finalize_retry_attempts
        conflicts: list[dict[str, Any]] = []
        for item in request.items:
            if item.approved_quantity == 0 or item.distributed_quantity > 0:
                item.needs_review = False
                continue
            if item.inventory_item_id is None:
                # Catalog-less items are granted for procurement; nothing to allocate.
                item.needs_review = False
                continue
            error: InventoryError | None = None
            for attempt in range(1, attempts + 1):
                mark = events.event_mark(self.session)
                try:
                    async with self.session.begin_nested():
                        await self._realize(request, item, actor)
                    error = None
                    break
                except LEDGER_CONFLICTS as exc:
                    events.discard_events_since(self.session, mark)
                    error = exc
                    _LOGGER.info(
                        "Finalize of %s item %s conflicted (attempt %d/%d): %s",
                        request.request_number,
                        item.id,
                        attempt,
                        attempts,
                        exc.message,
                    )
            if error is None:
                item.distributed_quantity = item.approved_quantity
                item.needs_review = False
            else:
                item.needs_review = True
                conflicts.append({"requestItemId": item.id, "code": error.code, "detail": error.message})
        await self.session.flush()

        if conflicts:
            REQUEST_FINALIZE_CONFLICTS_TOTAL.inc(len(conflicts))
            old_status = request.status
            if request.status != PENDING_REVIEW:
                request.status = PENDING_REVIEW
                request.review_started_at = request.review_started_at or utcnow()
                REQUEST_TRANSITIONS_TOTAL.labels(status=PENDING_REVIEW).inc()
            await self._record(
                request,
                "finalize_conflict",
                actor,
                old_value=old_status,
                new_value={"status": PENDING_REVIEW, "conflicts": conflicts},
            )
            await self.session.flush()
            _LOGGER.warning(
                "Request %s kept in review: %d item(s) could not be allocated",
                request.request_number,
                len(conflicts),
            )
            return
        await self._close(request, actor)

    async def _realize(self, request: MaterialRequest, item: RequestItem, actor: Actor) -> None:
        if request.is_consumable_request:
            await self.consumption.consume(
                item.inventory_item_id,
                request.team_id,
                item.approved_quantity,
                actor,
                consumption_type="quick_request" if request.requires_quick_approval else "standard_request",
                request_id=request.id,
                notes=f"{request.request_number}: {item.item_name}",
            )
        else:
            await self.assignments.assign(
                item.inventory_item_id,
                request.team_id,
                item.approved_quantity,
                actor,
                request_item_id=item.id,
                notes=request.request_number,
            )

    async def _close(self, request: MaterialRequest, actor: Actor) -> None:
        for item in request.items:
            item.needs_review = False
        status = classify(request.items)
        await self._transition(request, status, actor)
        request.decided_at = utcnow()
        await self.session.flush()
        events.queue_event(self.session, _STATUS_TOPICS[status], {"request": request_payload(request)})

    # Helpers

    async def _lock(self, request_id: int) -> MaterialRequest:
        request = await self.repository.lock_request(request_id)
        if request is None:
            raise NotFound(f"Request {request_id} not found")
        return request

    async def _build_item(self, line: RequestItemCreate) -> dict[str, Any]:
        if line.quantity <= 0:
            raise InvalidQuantity(f"Requested quantity must be positive, got {line.quantity}")
        name = line.item_name
        if line.inventory_item_id is not None:
            inventory_item = await self.repository.get_item(line.inventory_item_id)
            if inventory_item is None:
                raise NotFound(f"Inventory item {line.inventory_item_id} not found")
            name = name or inventory_item.name
        return {
            "inventory_item_id": line.inventory_item_id,
            "item_name": name,
            "quantity": line.quantity,
            "approved_quantity": 0,
            "distributed_quantity": 0,
            "status": "pending",
            "notes": line.notes,
        }

    @staticmethod
    def _require_requester(request: MaterialRequest, actor: Actor) -> None:
        if actor.actor_id != request.requested_by:
            raise PermissionDenied("Only the requester may change this request")

    @staticmethod
    def _require_reviewable(request: MaterialRequest) -> None:
        if request.status == PENDING_REVIEW:
            return
        if request.status == SUBMITTED and request.requires_quick_approval:
            return
        raise InvalidTransition(f"Request {request.request_number} is not under review ({request.status})")

    @staticmethod
    def _step(request: MaterialRequest, level: int) -> ApprovalStep:
        for step in request.steps:
            if step.approval_level == level:
                return step
        raise NotFound(f"Request {request.request_number} has no approval level {level}")

    @staticmethod
    def _can_decide(step: ApprovalStep, actor: Actor) -> bool:
        if step.delegated_to is not None and actor.actor_id == step.delegated_to:
            return True
        if step.approver_id is not None:
            return actor.actor_id == step.approver_id
        return actor.role == step.approver_role or actor.is_director

    @staticmethod
    def _final_level(request: MaterialRequest) -> int:
        if request.requires_quick_approval:
            return 1
        return max(step.approval_level for step in request.steps)

    @staticmethod
    def _decided_levels(request: MaterialRequest) -> set[int]:
        return {
            approval.approval_level
            for approval in request.approvals
            if approval.decision in ("approved", "declined")
        }

    def _in_re_review(self, request: MaterialRequest) -> bool:
        return self._final_level(request) in self._decided_levels(request) and any(
            item.needs_review for item in request.items
        )

    @staticmethod
    def _validate_grants(
        request: MaterialRequest,
        open_items: list[RequestItem],
        granted: dict[int, int],
        *,
        has_prior: bool,
    ) -> dict[int, int]:
        by_id = {item.id: item for item in open_items}
        unknown = set(granted) - set(by_id)
        if unknown:
            raise InvalidQuantity(
                f"Items {sorted(unknown)} are not open items of request {request.request_number}"
            )
        grants: dict[int, int] = {}
        for item in open_items:
            ceiling = item.approved_quantity if has_prior else item.quantity
            value = granted.get(item.id, ceiling)
            if value < 0:
                raise InvalidQuantity(f"Granted quantity for item {item.id} cannot be negative")
            if value > ceiling:
                if has_prior and item.approved_quantity == 0:
                    raise InvalidTransition(f"Item {item.id} was declined at an earlier level")
                raise InvalidQuantity(f"Granted quantity for item {item.id} cannot exceed {ceiling}")
            grants[item.id] = value
        return grants

    async def _transition(self, request: MaterialRequest, status: str, actor: Actor, *, notes: str | None = None) -> None:
        previous = request.status
        request.status = status
        REQUEST_TRANSITIONS_TOTAL.labels(status=status).inc()
        await self._record(request, "status_changed", actor, old_value=previous, new_value=status, notes=notes)
        _LOGGER.info("Request %s: %s -> %s by %s", request.request_number, previous, status, actor.actor_id)

    async def _record(
        self,
        request: MaterialRequest,
        action: str,
        actor: Actor,
        *,
        old_value: Any = None,
        new_value: Any = None,
        notes: str | None = None,
    ) -> None:
        await self.repository.add_history(
            request,
            action=action,
            actor_id=actor.actor_id,
            old_value=_encode(old_value),
            new_value=_encode(new_value),
            notes=notes,
            created_at=utcnow(),
        )


def _encode(value: Any) -> str | None:
    if value is None or isinstance(value, str):
        return value
    return json.dumps(value, default=str, sort_keys=True)
