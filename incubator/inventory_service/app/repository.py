"""Data access helpers for the inventory service."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import Select, and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    ApprovalStep,
    ConsumptionLog,
    InventoryAssignment,
    InventoryItem,
    InventoryReservation,
    LedgerMovement,
    MaintenanceLog,
    MaterialRequest,
    RequestApproval,
    RequestHistory,
    RequestItem,
    RequestTemplate,
)


class InventoryRepository:
    """Persistence utilities for items, ledger records and material requests."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # Items

    async def create_item(self, **fields: Any) -> InventoryItem:
        item = InventoryItem(**fields)
        self.session.add(item)
        await self.session.flush()
        await self.session.refresh(item, attribute_names=["created_at", "updated_at"])
        return item

    async def get_item(self, item_id: int) -> InventoryItem | None:
        return await self.session.get(InventoryItem, item_id, populate_existing=True)

    async def lock_item(self, item_id: int) -> InventoryItem | None:
        """Re-read the item row under ``FOR UPDATE``, discarding any stale identity-map copy."""

        result = await self.session.execute(
            select(InventoryItem)
            .where(InventoryItem.id == item_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_item_by_sku(self, sku: str) -> InventoryItem | None:
        result = await self.session.execute(select(InventoryItem).where(InventoryItem.sku == sku))
        return result.scalar_one_or_none()

    async def list_items(
        self,
        *,
        category: str | None = None,
        status: str | None = None,
        is_consumable: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[InventoryItem], int]:
        filters = []
        if category is not None:
            filters.append(InventoryItem.category == category)
        if status is not None:
            filters.append(InventoryItem.status == status)
        if is_consumable is not None:
            filters.append(InventoryItem.is_consumable.is_(is_consumable))

        base: Select[tuple[InventoryItem]] = select(InventoryItem).order_by(InventoryItem.name, InventoryItem.id)
        count: Select[tuple[int]] = select(func.count(InventoryItem.id))
        if filters:
            clause = and_(*filters)
            base = base.where(clause)
            count = count.where(clause)

        total = (await self.session.execute(count)).scalar_one()
        result = await self.session.execute(base.offset(offset).limit(limit))
        return list(result.scalars()), total

    async def list_forecast_candidates(self) -> list[InventoryItem]:
        result = await self.session.execute(
            select(InventoryItem)
            .where(
                InventoryItem.min_stock_level.is_not(None),
                (InventoryItem.is_consumable.is_(True)) | (InventoryItem.is_frequently_distributed.is_(True)),
            )
            .order_by(InventoryItem.id)
        )
        return list(result.scalars())

    async def list_items_due_for_maintenance(self, until: datetime) -> list[InventoryItem]:
        result = await self.session.execute(
            select(InventoryItem)
            .where(InventoryItem.next_maintenance.is_not(None), InventoryItem.next_maintenance <= until)
            .order_by(InventoryItem.next_maintenance, InventoryItem.id)
        )
        return list(result.scalars())

    async def list_items_with_maintenance_interval(self) -> list[InventoryItem]:
        result = await self.session.execute(
            select(InventoryItem)
            .where(InventoryItem.maintenance_interval.is_not(None), InventoryItem.maintenance_interval > 0)
            .order_by(InventoryItem.id)
        )
        return list(result.scalars())

    # Ledger journal

    async def add_movement(self, **fields: Any) -> LedgerMovement:
        movement = LedgerMovement(**fields)
        self.session.add(movement)
        await self.session.flush()
        return movement

    async def list_movements(self, item_id: int, *, limit: int = 100) -> list[LedgerMovement]:
        result = await self.session.execute(
            select(LedgerMovement)
            .where(LedgerMovement.item_id == item_id)
            .order_by(LedgerMovement.id.desc())
            .limit(limit)
        )
        return list(result.scalars())

    # Assignments

    async def create_assignment(self, **fields: Any) -> InventoryAssignment:
        assignment = InventoryAssignment(**fields)
        self.session.add(assignment)
        await self.session.flush()
        return assignment

    async def get_assignment(self, assignment_id: int, *, for_update: bool = False) -> InventoryAssignment | None:
        stmt = (
            select(InventoryAssignment)
            .where(InventoryAssignment.id == assignment_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_assignment_for_request_item(self, request_item_id: int) -> InventoryAssignment | None:
        result = await self.session.execute(
            select(InventoryAssignment).where(InventoryAssignment.request_item_id == request_item_id)
        )
        return result.scalar_one_or_none()

    async def mark_assignment_returned(self, assignment_id: int, *, returned_at: datetime, returned_by: str) -> bool:
        """Stamp the return only if the assignment is still active."""

        result = await self.session.execute(
            update(InventoryAssignment)
            .where(InventoryAssignment.id == assignment_id, InventoryAssignment.returned_at.is_(None))
            .values(returned_at=returned_at, returned_by=returned_by)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_active_assignments(
        self,
        *,
        team_id: str | None = None,
        item_id: int | None = None,
    ) -> list[InventoryAssignment]:
        stmt = select(InventoryAssignment).where(InventoryAssignment.returned_at.is_(None))
        if team_id is not None:
            stmt = stmt.where(InventoryAssignment.team_id == team_id)
        if item_id is not None:
            stmt = stmt.where(InventoryAssignment.item_id == item_id)
        result = await self.session.execute(stmt.order_by(InventoryAssignment.assigned_at, InventoryAssignment.id))
        return list(result.scalars())

    async def sum_active_assignments(self, item_id: int) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(InventoryAssignment.quantity), 0)).where(
                InventoryAssignment.item_id == item_id,
                InventoryAssignment.returned_at.is_(None),
            )
        )
        return int(result.scalar_one())

    # Reservations

    async def create_reservation(self, **fields: Any) -> InventoryReservation:
        reservation = InventoryReservation(**fields)
        self.session.add(reservation)
        await self.session.flush()
        await self.session.refresh(reservation, attribute_names=["created_at"])
        return reservation

    async def get_reservation(self, reservation_id: int) -> InventoryReservation | None:
        result = await self.session.execute(
            select(InventoryReservation)
            .where(InventoryReservation.id == reservation_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def claim_reservation(self, reservation_id: int, *, new_status: str, resolved_at: datetime) -> bool:
        """Compare-and-set ``held -> new_status``. Returns False when someone else got there first."""

        result = await self.session.execute(
            update(InventoryReservation)
            .where(InventoryReservation.id == reservation_id, InventoryReservation.status == "held")
            .values(status=new_status, resolved_at=resolved_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_reservations(
        self,
        *,
        team_id: str | None = None,
        item_id: int | None = None,
        status: str | None = None,
    ) -> list[InventoryReservation]:
        stmt = select(InventoryReservation)
        if team_id is not None:
            stmt = stmt.where(InventoryReservation.team_id == team_id)
        if item_id is not None:
            stmt = stmt.where(InventoryReservation.item_id == item_id)
        if status is not None:
            stmt = stmt.where(InventoryReservation.status == status)
        result = await self.session.execute(stmt.order_by(InventoryReservation.reserved_until, InventoryReservation.id))
        return list(result.scalars())

    async def list_expired_reservation_ids(self, now: datetime) -> list[int]:
        result = await self.session.execute(
            select(InventoryReservation.id)
            .where(InventoryReservation.status == "held", InventoryReservation.reserved_until <= now)
            .order_by(InventoryReservation.reserved_until, InventoryReservation.id)
        )
        return list(result.scalars())

    async def sum_held_reservations(self, item_id: int) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(InventoryReservation.quantity), 0)).where(
                InventoryReservation.item_id == item_id,
                InventoryReservation.status == "held",
            )
        )
        return int(result.scalar_one())

    # Consumption

    async def add_consumption(self, **fields: Any) -> ConsumptionLog:
        log = ConsumptionLog(**fields)
        self.session.add(log)
        await self.session.flush()
        return log

    async def list_consumption(
        self,
        *,
        item_id: int | None = None,
        team_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 200,
    ) -> list[ConsumptionLog]:
        stmt = select(ConsumptionLog)
        if item_id is not None:
            stmt = stmt.where(ConsumptionLog.item_id == item_id)
        if team_id is not None:
            stmt = stmt.where(ConsumptionLog.team_id == team_id)
        if start is not None:
            stmt = stmt.where(ConsumptionLog.consumption_date >= start)
        if end is not None:
            stmt = stmt.where(ConsumptionLog.consumption_date <= end)
        result = await self.session.execute(
            stmt.order_by(ConsumptionLog.consumption_date.desc(), ConsumptionLog.id.desc()).limit(limit)
        )
        return list(result.scalars())

    async def consumption_totals(
        self,
        *,
        item_id: int | None = None,
        since: datetime | None = None,
    ) -> dict[int, tuple[int, int, datetime, datetime]]:
        """Return ``{item_id: (total, count, oldest, newest)}`` for logged consumption."""

        stmt = select(
            ConsumptionLog.item_id,
            func.sum(ConsumptionLog.quantity),
            func.count(ConsumptionLog.id),
            func.min(ConsumptionLog.consumption_date),
            func.max(ConsumptionLog.consumption_date),
        ).group_by(ConsumptionLog.item_id)
        if item_id is not None:
            stmt = stmt.where(ConsumptionLog.item_id == item_id)
        if since is not None:
            stmt = stmt.where(ConsumptionLog.consumption_date >= since)
        rows = (await self.session.execute(stmt)).all()
        return {row[0]: (int(row[1]), int(row[2]), row[3], row[4]) for row in rows}

    async def consumption_dates(self, item_id: int, *, since: datetime | None = None) -> list[datetime]:
        stmt = select(ConsumptionLog.consumption_date).where(ConsumptionLog.item_id == item_id)
        if since is not None:
            stmt = stmt.where(ConsumptionLog.consumption_date >= since)
        result = await self.session.execute(stmt.order_by(ConsumptionLog.consumption_date))
        return list(result.scalars())

    # Maintenance

    async def create_maintenance_log(self, **fields: Any) -> MaintenanceLog:
        log = MaintenanceLog(**fields)
        self.session.add(log)
        await self.session.flush()
        return log

    async def get_maintenance_log(self, log_id: int) -> MaintenanceLog | None:
        return await self.session.get(MaintenanceLog, log_id, populate_existing=True)

    async def list_maintenance_logs(self, item_id: int) -> list[MaintenanceLog]:
        result = await self.session.execute(
            select(MaintenanceLog).where(MaintenanceLog.item_id == item_id).order_by(MaintenanceLog.id.desc())
        )
        return list(result.scalars())

    # Material requests

    async def add_request(self, request: MaterialRequest) -> MaterialRequest:
        self.session.add(request)
        await self.session.flush()
        await self.session.refresh(request, attribute_names=["created_at", "updated_at"])
        return request

    async def get_request(self, request_id: int) -> MaterialRequest | None:
        result = await self.session.execute(
            select(MaterialRequest)
            .where(MaterialRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def request_exists(self, request_id: int) -> bool:
        result = await self.session.execute(select(MaterialRequest.id).where(MaterialRequest.id == request_id))
        return result.scalar_one_or_none() is not None

    async def lock_request(self, request_id: int) -> MaterialRequest | None:
        result = await self.session.execute(
            select(MaterialRequest)
            .where(MaterialRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_requests(
        self,
        *,
        team_id: str | None = None,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[MaterialRequest], int]:
        filters = []
        if team_id is not None:
            filters.append(MaterialRequest.team_id == team_id)
        if status is not None:
            filters.append(MaterialRequest.status == status)

        base: Select[tuple[MaterialRequest]] = select(MaterialRequest).order_by(
            MaterialRequest.created_at.desc(), MaterialRequest.id.desc()
        )
        count: Select[tuple[int]] = select(func.count(MaterialRequest.id))
        if filters:
            clause = and_(*filters)
            base = base.where(clause)
            count = count.where(clause)

        total = (await self.session.execute(count)).scalar_one()
        result = await self.session.execute(base.offset(offset).limit(limit))
        return list(result.scalars().unique()), total

    async def latest_request_number(self, prefix: str) -> str | None:
        result = await self.session.execute(
            select(MaterialRequest.request_number)
            .where(MaterialRequest.request_number.like(f"{prefix}%"))
            .order_by(func.length(MaterialRequest.request_number).desc(), MaterialRequest.request_number.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def latest_team_for_item(self, item_id: int) -> str | None:
        result = await self.session.execute(
            select(MaterialRequest.team_id)
            .join(RequestItem, RequestItem.request_id == MaterialRequest.id)
            .where(RequestItem.inventory_item_id == item_id)
            .order_by(MaterialRequest.created_at.desc(), MaterialRequest.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def add_request_item(self, request: MaterialRequest, **fields: Any) -> RequestItem:
        item = RequestItem(request=request, **fields)
        self.session.add(item)
        await self.session.flush()
        return item

    async def add_approval(self, request: MaterialRequest, **fields: Any) -> RequestApproval:
        approval = RequestApproval(request=request, **fields)
        self.session.add(approval)
        await self.session.flush()
        return approval

    async def add_history(self, request: MaterialRequest, **fields: Any) -> RequestHistory:
        entry = RequestHistory(request=request, **fields)
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def list_steps(self, request_id: int) -> Sequence[ApprovalStep]:
        result = await self.session.execute(
            select(ApprovalStep).where(ApprovalStep.request_id == request_id).order_by(ApprovalStep.approval_level)
        )
        return list(result.scalars())

    # Request templates

    async def add_template(self, **fields: Any) -> RequestTemplate:
        template = RequestTemplate(**fields)
        self.session.add(template)
        await self.session.flush()
        await self.session.refresh(template, attribute_names=["created_at", "updated_at"])
        return template

    async def get_template(self, template_id: int) -> RequestTemplate | None:
        return await self.session.get(RequestTemplate, template_id)

    async def find_template(self, created_by: str, name: str) -> RequestTemplate | None:
        result = await self.session.execute(
            select(RequestTemplate).where(RequestTemplate.created_by == created_by, RequestTemplate.name == name)
        )
        return result.scalar_one_or_none()

    async def list_templates(
        self,
        *,
        visible_to: str,
        category: str | None = None,
        mine_only: bool = False,
    ) -> list[RequestTemplate]:
        stmt = select(RequestTemplate)
        if mine_only:
            stmt = stmt.where(RequestTemplate.created_by == visible_to)
        else:
            stmt = stmt.where(RequestTemplate.is_public.is_(True) | (RequestTemplate.created_by == visible_to))
        if category is not None:
            stmt = stmt.where(RequestTemplate.category == category)
        result = await self.session.execute(stmt.order_by(RequestTemplate.name, RequestTemplate.id))
        return list(result.scalars())

    async def delete_template(self, template: RequestTemplate) -> None:
        await self.session.delete(template)
        await self.session.flush()
