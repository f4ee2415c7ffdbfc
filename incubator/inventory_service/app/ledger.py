"""Inventory ledger: the only code path that mutates item quantities.

Every primitive runs inside its own SAVEPOINT of the caller's transaction. The
item row is re-read under ``FOR UPDATE`` before anything is checked, the
component columns are adjusted, and ``available_quantity`` and ``status`` are
recomputed from them. ``available_quantity`` is stored but never adjusted on
its own.
"""

from __future__ import annotations

import logging
from typing import Callable, Literal

from incubator.common.tracing import domain_span, get_tracer

from . import events
from .errors import InsufficientStock, InvalidQuantity, InvalidTransition, InventoryError, ItemUnavailable, NotFound
from .metrics import INVENTORY_LEDGER_OPERATIONS_TOTAL, INVENTORY_LEDGER_REJECTIONS_TOTAL, INVENTORY_STOCK_ALERTS_TOTAL
from .models import InventoryItem
from .repository import InventoryRepository

_LOGGER = logging.getLogger(__name__)
_TRACER = get_tracer(__name__)

Bucket = Literal["assigned", "reserved"]

STATUS_AVAILABLE = "available"
STATUS_LOW_STOCK = "low_stock"
STATUS_OUT_OF_STOCK = "out_of_stock"
STATUS_MAINTENANCE = "maintenance"

_ALERT_TOPICS = {
    STATUS_LOW_STOCK: events.ITEM_LOW_STOCK,
    STATUS_OUT_OF_STOCK: events.ITEM_OUT_OF_STOCK,
}


def expected_available(item: InventoryItem) -> int:
    if item.maintenance_hold:
        return 0
    return item.total_quantity - item.assigned_quantity - item.reserved_quantity - item.consumed_quantity


def derive_status(item: InventoryItem) -> str:
    if item.maintenance_hold:
        return STATUS_MAINTENANCE
    if item.available_quantity <= 0:
        return STATUS_OUT_OF_STOCK
    if item.min_stock_level is not None and item.available_quantity < item.min_stock_level:
        return STATUS_LOW_STOCK
    return STATUS_AVAILABLE


def recompute(item: InventoryItem) -> None:
    """Refresh the stored available quantity and status label from the component columns."""

    available = expected_available(item)
    if available < 0:
        raise InsufficientStock(
            f"Ledger for item {item.id} would go negative",
            item_id=item.id,
            requested=-available,
            available=0,
        )
    item.available_quantity = available
    item.status = derive_status(item)


def item_snapshot(item: InventoryItem) -> dict[str, object]:
    return {
        "itemId": item.id,
        "name": item.name,
        "sku": item.sku,
        "totalQuantity": item.total_quantity,
        "availableQuantity": item.available_quantity,
        "minStockLevel": item.min_stock_level,
        "status": item.status,
    }


class Ledger:
    """Quantity primitives over :class:`InventoryItem` rows."""

    def __init__(self, repository: InventoryRepository) -> None:
        self.repository = repository
        self.session = repository.session

    async def reserve(self, item_id: int, quantity: int, *, actor_id: str | None = None, reference: str | None = None) -> InventoryItem:
        def mutate(item: InventoryItem) -> None:
            self._require_available(item, quantity)
            item.reserved_quantity += quantity

        return await self._apply("reserve", item_id, quantity, mutate, debit=True, actor_id=actor_id, reference=reference)

    async def commit_assignment(
        self, item_id: int, quantity: int, *, actor_id: str | None = None, reference: str | None = None
    ) -> InventoryItem:
        def mutate(item: InventoryItem) -> None:
            self._require_available(item, quantity)
            item.assigned_quantity += quantity

        return await self._apply("assign", item_id, quantity, mutate, debit=True, actor_id=actor_id, reference=reference)

    async def release(
        self,
        item_id: int,
        quantity: int,
        *,
        bucket: Bucket,
        actor_id: str | None = None,
        reference: str | None = None,
    ) -> InventoryItem:
        if bucket not in ("assigned", "reserved"):
            raise ValueError(f"unknown ledger bucket {bucket!r}")
        column = f"{bucket}_quantity"

        def mutate(item: InventoryItem) -> None:
            held = getattr(item, column)
            if quantity > held:
                raise InsufficientStock(
                    f"Cannot release {quantity} from {held} {bucket} units of item {item.id}",
                    item_id=item.id,
                    requested=quantity,
                    available=held,
                )
            setattr(item, column, held - quantity)

        operation = "release_assignment" if bucket == "assigned" else "release_reservation"
        return await self._apply(operation, item_id, quantity, mutate, debit=False, actor_id=actor_id, reference=reference)

    async def consume(self, item_id: int, quantity: int, *, actor_id: str | None = None, reference: str | None = None) -> InventoryItem:
        def mutate(item: InventoryItem) -> None:
            self._require_available(item, quantity)
            item.consumed_quantity += quantity

        return await self._apply("consume", item_id, quantity, mutate, debit=True, actor_id=actor_id, reference=reference)

    async def convert_reservation(
        self, item_id: int, quantity: int, *, actor_id: str | None = None, reference: str | None = None
    ) -> InventoryItem:
        """Move held units from the reserved bucket to the assigned bucket."""

        def mutate(item: InventoryItem) -> None:
            if quantity > item.reserved_quantity:
                raise InsufficientStock(
                    f"Item {item.id} holds only {item.reserved_quantity} reserved units",
                    item_id=item.id,
                    requested=quantity,
                    available=item.reserved_quantity,
                )
            item.reserved_quantity -= quantity
            item.assigned_quantity += quantity

        return await self._apply(
            "convert_reservation", item_id, quantity, mutate, debit=True, actor_id=actor_id, reference=reference
        )

    async def receive(self, item_id: int, quantity: int, *, actor_id: str | None = None, reference: str | None = None) -> InventoryItem:
        def mutate(item: InventoryItem) -> None:
            item.total_quantity += quantity

        return await self._apply("receive", item_id, quantity, mutate, debit=False, actor_id=actor_id, reference=reference)

    async def place_hold(self, item_id: int, *, actor_id: str | None = None, reference: str | None = None) -> InventoryItem:
        def mutate(item: InventoryItem) -> None:
            if item.maintenance_hold:
                raise ItemUnavailable(f"Item {item.id} is already under maintenance")
            item.maintenance_hold = True

        return await self._apply("hold", item_id, None, mutate, debit=False, actor_id=actor_id, reference=reference)

    async def lift_hold(self, item_id: int, *, actor_id: str | None = None, reference: str | None = None) -> InventoryItem:
        def mutate(item: InventoryItem) -> None:
            if not item.maintenance_hold:
                raise InvalidTransition(f"Item {item.id} is not under maintenance")
            item.maintenance_hold = False

        return await self._apply("lift_hold", item_id, None, mutate, debit=False, actor_id=actor_id, reference=reference)

    @staticmethod
    def _require_available(item: InventoryItem, quantity: int) -> None:
        if quantity > item.available_quantity:
            raise InsufficientStock(
                f"Requested {quantity} of item {item.id} but only {item.available_quantity} available",
                item_id=item.id,
                requested=quantity,
                available=item.available_quantity,
            )

    async def _apply(
        self,
        operation: str,
        item_id: int,
        quantity: int | None,
        mutate: Callable[[InventoryItem], None],
        *,
        debit: bool,
        actor_id: str | None,
        reference: str | None,
    ) -> InventoryItem:
        with domain_span(_TRACER, f"ledger.{operation}", item_id=item_id, quantity=quantity, actor_id=actor_id):
            try:
                if quantity is not None and quantity <= 0:
                    raise InvalidQuantity(f"Quantity must be positive, got {quantity}")
                async with self.session.begin_nested():
                    item = await self.repository.lock_item(item_id)
                    if item is None:
                        raise NotFound(f"Inventory item {item_id} not found")
                    if debit and item.maintenance_hold:
                        raise ItemUnavailable(f"Item {item_id} is under maintenance")
                    previous_available = item.available_quantity
                    previous_status = item.status
                    mutate(item)
                    recompute(item)
                    await self.session.flush()
                    await self.repository.add_movement(
                        item_id=item.id,
                        movement_type=operation,
                        quantity=quantity if quantity is not None else abs(item.available_quantity - previous_available),
                        previous_available=previous_available,
                        new_available=item.available_quantity,
                        actor_id=actor_id,
                        reference=reference,
                    )
            except InventoryError as exc:
                INVENTORY_LEDGER_REJECTIONS_TOTAL.labels(operation=operation, reason=exc.code).inc()
                _LOGGER.info("Ledger %s rejected for item %s: %s", operation, item_id, exc.message)
                raise

        INVENTORY_LEDGER_OPERATIONS_TOTAL.labels(operation=operation).inc()
        _LOGGER.debug(
            "Ledger %s item=%s qty=%s available %s -> %s",
            operation,
            item_id,
            quantity,
            previous_available,
            item.available_quantity,
        )
        if item.status != previous_status and item.status in _ALERT_TOPICS:
            INVENTORY_STOCK_ALERTS_TOTAL.labels(status=item.status).inc()
            events.queue_event(self.session, _ALERT_TOPICS[item.status], {"item": item_snapshot(item)})
        return item
