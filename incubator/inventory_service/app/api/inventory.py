"""Inventory item HTTP endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from ..actors import Actor
from ..catalog import InventoryCatalog
from ..dependencies import get_actor, get_catalog, get_repository
from ..repository import InventoryRepository
from ..schemas import ItemCreate, ItemListResponse, ItemResponse, MovementResponse, StockReceive

router = APIRouter(prefix="/inventory", tags=["inventory"])


@router.post("", response_model=ItemResponse, status_code=status.HTTP_201_CREATED)
async def create_inventory_item(
    payload: ItemCreate,
    actor: Actor = Depends(get_actor),
    catalog: InventoryCatalog = Depends(get_catalog),
) -> ItemResponse:
    item = await catalog.create_item(payload, actor)
    return ItemResponse.model_validate(item)


@router.get("", response_model=ItemListResponse)
async def list_inventory_items(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    category: str | None = None,
    status_value: str | None = Query(default=None, alias="status"),
    is_consumable: bool | None = Query(default=None, alias="isConsumable"),
    repository: InventoryRepository = Depends(get_repository),
) -> ItemListResponse:
    items, total = await repository.list_items(
        category=category,
        status=status_value,
        is_consumable=is_consumable,
        limit=limit,
        offset=offset,
    )
    return ItemListResponse(items=[ItemResponse.model_validate(item) for item in items], total=total)


@router.get("/{item_id}", response_model=ItemResponse)
async def get_inventory_item(item_id: int, catalog: InventoryCatalog = Depends(get_catalog)) -> ItemResponse:
    return ItemResponse.model_validate(await catalog.get_item(item_id))


@router.post("/{item_id}/receive", response_model=ItemResponse)
async def receive_stock(
    item_id: int,
    payload: StockReceive,
    actor: Actor = Depends(get_actor),
    catalog: InventoryCatalog = Depends(get_catalog),
) -> ItemResponse:
    item = await catalog.receive(item_id, payload.quantity, actor, reference=payload.reference)
    return ItemResponse.model_validate(item)


@router.get("/{item_id}/movements", response_model=list[MovementResponse])
async def list_item_movements(
    item_id: int,
    limit: int = Query(default=100, ge=1, le=500),
    catalog: InventoryCatalog = Depends(get_catalog),
) -> list[MovementResponse]:
    movements = await catalog.movements(item_id, limit=limit)
    return [MovementResponse.model_validate(movement) for movement in movements]
