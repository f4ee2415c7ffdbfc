"""Inventory item registration and restocking."""

from __future__ import annotations

from . import events
from .actors import Actor
from .errors import InvalidTransition, NotFound
from .ledger import Ledger, item_snapshot
from .models import InventoryItem, LedgerMovement
from .repository import InventoryRepository
from .schemas import ItemCreate


class InventoryCatalog:
    def __init__(self, repository: InventoryRepository, ledger: Ledger | None = None) -> None:
        self.repository = repository
        self.session = repository.session
        self.ledger = ledger or Ledger(repository)

    async def create_item(self, payload: ItemCreate, actor: Actor) -> InventoryItem:
        if payload.sku and await self.repository.find_item_by_sku(payload.sku) is not None:
            raise InvalidTransition(f"An item with SKU {payload.sku} already exists")
        fields = payload.model_dump(exclude={"total_quantity"})
        item = await self.repository.create_item(
            **fields,
            total_quantity=0,
            available_quantity=0,
            status="out_of_stock",
        )
        if payload.total_quantity > 0:
            item = await self.ledger.receive(
                item.id, payload.total_quantity, actor_id=actor.actor_id, reference="initial_stock"
            )
        await self.session.flush()
        return item

    async def receive(self, item_id: int, quantity: int, actor: Actor, *, reference: str | None = None) -> InventoryItem:
        item = await self.ledger.receive(item_id, quantity, actor_id=actor.actor_id, reference=reference)
        events.queue_event(self.session, events.ITEM_RECEIVED, {"item": item_snapshot(item), "quantity": quantity})
        return item

    async def get_item(self, item_id: int) -> InventoryItem:
        item = await self.repository.get_item(item_id)
        if item is None:
            raise NotFound(f"Inventory item {item_id} not found")
        return item

    async def movements(self, item_id: int, *, limit: int = 100) -> list[LedgerMovement]:
        await self.get_item(item_id)
        return await self.repository.list_movements(item_id, limit=limit)
