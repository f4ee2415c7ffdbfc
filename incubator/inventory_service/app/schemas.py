"""Pydantic schemas for the inventory service."""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Priority = Literal["low", "medium", "high", "urgent"]
MaintenanceType = Literal["scheduled", "repair", "inspection", "cleaning"]
ConsumptionType = Literal["manual", "standard_request", "quick_request"]
Decision = Literal["approved", "declined"]
DeliveryStatus = Literal["not_ordered", "ordered", "delivered"]


# Items


class ItemCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    sku: str | None = Field(default=None, max_length=64)
    barcode: str | None = Field(default=None, max_length=128)
    category: str | None = Field(default=None, max_length=64)
    is_consumable: bool = Field(default=False, alias="isConsumable")
    is_frequently_distributed: bool = Field(default=False, alias="isFrequentlyDistributed")
    total_quantity: int = Field(default=0, ge=0, alias="totalQuantity")
    min_stock_level: int | None = Field(default=None, ge=0, alias="minStockLevel")
    reorder_quantity: int | None = Field(default=None, ge=1, alias="reorderQuantity")
    typical_consumption_rate: int | None = Field(default=None, ge=0, alias="typicalConsumptionRate")
    maintenance_interval: int | None = Field(default=None, ge=1, alias="maintenanceInterval")
    purchase_date: date | None = Field(default=None, alias="purchaseDate")
    warranty_expiry: date | None = Field(default=None, alias="warrantyExpiry")

    model_config = ConfigDict(populate_by_name=True)


class ItemResponse(BaseModel):
    id: int
    name: str
    sku: str | None
    barcode: str | None
    category: str | None
    is_consumable: bool = Field(alias="isConsumable")
    is_frequently_distributed: bool = Field(alias="isFrequentlyDistributed")
    total_quantity: int = Field(alias="totalQuantity")
    available_quantity: int = Field(alias="availableQuantity")
    reserved_quantity: int = Field(alias="reservedQuantity")
    assigned_quantity: int = Field(alias="assignedQuantity")
    consumed_quantity: int = Field(alias="consumedQuantity")
    min_stock_level: int | None = Field(alias="minStockLevel")
    reorder_quantity: int | None = Field(alias="reorderQuantity")
    typical_consumption_rate: int | None = Field(alias="typicalConsumptionRate")
    maintenance_interval: int | None = Field(alias="maintenanceInterval")
    maintenance_hold: bool = Field(alias="maintenanceHold")
    purchase_date: date | None = Field(alias="purchaseDate")
    warranty_expiry: date | None = Field(alias="warrantyExpiry")
    last_maintenance: datetime | None = Field(alias="lastMaintenance")
    next_maintenance: datetime | None = Field(alias="nextMaintenance")
    status: str
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class ItemListResponse(BaseModel):
    items: list[ItemResponse]
    total: int


class StockReceive(BaseModel):
    quantity: int
    reference: str | None = Field(default=None, max_length=128)


class MovementResponse(BaseModel):
    id: int
    item_id: int = Field(alias="itemId")
    movement_type: str = Field(alias="movementType")
    quantity: int
    previous_available: int = Field(alias="previousAvailable")
    new_available: int = Field(alias="newAvailable")
    actor_id: str | None = Field(alias="actorId")
    reference: str | None
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


# Assignments and reservations


class AssignmentCreate(BaseModel):
    item_id: int = Field(alias="itemId")
    team_id: str = Field(alias="teamId", min_length=1, max_length=64)
    quantity: int
    notes: str | None = None

    model_config = ConfigDict(populate_by_name=True)


class AssignmentResponse(BaseModel):
    id: int
    item_id: int = Field(alias="itemId")
    team_id: str = Field(alias="teamId")
    quantity: int
    assigned_by: str = Field(alias="assignedBy")
    assigned_at: datetime = Field(alias="assignedAt")
    returned_at: datetime | None = Field(alias="returnedAt")
    returned_by: str | None = Field(alias="returnedBy")
    request_item_id: int | None = Field(alias="requestItemId")
    reservation_id: int | None = Field(alias="reservationId")
    notes: str | None

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class ReservationCreate(BaseModel):
    item_id: int = Field(alias="itemId")
    team_id: str = Field(alias="teamId", min_length=1, max_length=64)
    quantity: int
    reserved_until: datetime | None = Field(default=None, alias="reservedUntil")
    request_id: int | None = Field(default=None, alias="requestId")
    notes: str | None = None

    model_config = ConfigDict(populate_by_name=True)


class ReservationResponse(BaseModel):
    id: int
    item_id: int = Field(alias="itemId")
    team_id: str = Field(alias="teamId")
    quantity: int
    reserved_by: str = Field(alias="reservedBy")
    reserved_until: datetime = Field(alias="reservedUntil")
    status: str
    assignment_id: int | None = Field(alias="assignmentId")
    request_id: int | None = Field(alias="requestId")
    notes: str | None
    created_at: datetime = Field(alias="createdAt")
    resolved_at: datetime | None = Field(alias="resolvedAt")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class ReservationConfirmation(BaseModel):
    reservation: ReservationResponse
    assignment: AssignmentResponse


class SweepResponse(BaseModel):
    expired: list[int]
    count: int


# Consumption


class ConsumptionCreate(BaseModel):
    item_id: int = Field(alias="itemId")
    team_id: str = Field(alias="teamId", min_length=1, max_length=64)
    quantity: int
    consumption_date: datetime | None = Field(default=None, alias="consumptionDate")
    consumption_type: ConsumptionType = Field(default="manual", alias="consumptionType")
    request_id: int | None = Field(default=None, alias="requestId")
    notes: str | None = None

    model_config = ConfigDict(populate_by_name=True)


class ConsumptionResponse(BaseModel):
    id: int
    item_id: int = Field(alias="itemId")
    team_id: str = Field(alias="teamId")
    quantity: int
    distributed_by: str = Field(alias="distributedBy")
    consumption_date: datetime = Field(alias="consumptionDate")
    consumption_type: str = Field(alias="consumptionType")
    request_id: int | None = Field(alias="requestId")
    notes: str | None

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class BulkConsumptionCreate(BaseModel):
    lines: list[ConsumptionCreate] = Field(min_length=1)


class BulkConsumptionLine(BaseModel):
    index: int
    item_id: int = Field(alias="itemId")
    success: bool
    consumption: ConsumptionResponse | None = None
    code: str | None = None
    detail: str | None = None

    model_config = ConfigDict(populate_by_name=True)


class BulkConsumptionResponse(BaseModel):
    results: list[BulkConsumptionLine]
    succeeded: int
    failed: int


class ConsumptionStatsResponse(BaseModel):
    item_id: int = Field(alias="itemId")
    total_consumed: int = Field(alias="totalConsumed")
    distributions: int
    average_per_distribution: float = Field(alias="averagePerDistribution")
    first_consumed_at: datetime | None = Field(alias="firstConsumedAt")
    last_consumed_at: datetime | None = Field(alias="lastConsumedAt")

    model_config = ConfigDict(populate_by_name=True)


# Maintenance


class MaintenanceCreate(BaseModel):
    item_id: int = Field(alias="itemId")
    maintenance_type: MaintenanceType = Field(default="scheduled", alias="maintenanceType")
    notes: str | None = None

    model_config = ConfigDict(populate_by_name=True)


class MaintenanceComplete(BaseModel):
    performed_at: datetime | None = Field(default=None, alias="performedAt")
    notes: str | None = None

    model_config = ConfigDict(populate_by_name=True)


class MaintenanceResponse(BaseModel):
    id: int
    item_id: int = Field(alias="itemId")
    maintenance_type: str = Field(alias="maintenanceType")
    scheduled_by: str = Field(alias="scheduledBy")
    started_at: datetime = Field(alias="startedAt")
    performed_at: datetime | None = Field(alias="performedAt")
    performed_by: str | None = Field(alias="performedBy")
    next_maintenance: datetime | None = Field(alias="nextMaintenance")
    notes: str | None

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class MaintenanceDueEntry(BaseModel):
    item_id: int = Field(alias="itemId")
    name: str
    next_maintenance: datetime = Field(alias="nextMaintenance")
    days_until_due: int = Field(alias="daysUntilDue")
    overdue: bool

    model_config = ConfigDict(populate_by_name=True)


class MaintenanceDueResponse(BaseModel):
    overdue: list[MaintenanceDueEntry]
    due_soon: list[MaintenanceDueEntry] = Field(alias="dueSoon")

    model_config = ConfigDict(populate_by_name=True)


class MaintenanceScheduledEntry(BaseModel):
    item_id: int = Field(alias="itemId")
    name: str
    previous: datetime | None
    next_maintenance: datetime = Field(alias="nextMaintenance")

    model_config = ConfigDict(populate_by_name=True)


class AutoScheduleResponse(BaseModel):
    scheduled: list[MaintenanceScheduledEntry]
    count: int


# Material requests


class RequestItemCreate(BaseModel):
    inventory_item_id: int | None = Field(default=None, alias="inventoryItemId")
    item_name: str | None = Field(default=None, alias="itemName", max_length=255)
    quantity: int
    notes: str | None = None

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def _require_reference(self) -> "RequestItemCreate":
        if self.inventory_item_id is None and not self.item_name:
            raise ValueError("either inventoryItemId or itemName is required")
        return self


class ApprovalStepCreate(BaseModel):
    approver_id: str | None = Field(default=None, alias="approverId", max_length=64)
    approver_role: str | None = Field(default=None, alias="approverRole", max_length=32)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("approver_role")
    @classmethod
    def _normalize_role(cls, value: str | None) -> str | None:
        return value.strip().lower() if value else value

    @model_validator(mode="after")
    def _exactly_one(self) -> "ApprovalStepCreate":
        if (self.approver_id is None) == (self.approver_role is None):
            raise ValueError("an approval step names either approverId or approverRole")
        return self


class RequestCreate(BaseModel):
    team_id: str = Field(alias="teamId", min_length=1, max_length=64)
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    priority: Priority = "medium"
    is_consumable_request: bool = Field(default=False, alias="isConsumableRequest")
    requires_quick_approval: bool = Field(default=False, alias="requiresQuickApproval")
    items: list[RequestItemCreate] = Field(default_factory=list)
    approval_chain: list[ApprovalStepCreate] | None = Field(default=None, alias="approvalChain")

    model_config = ConfigDict(populate_by_name=True)


class RequestItemResponse(BaseModel):
    id: int
    inventory_item_id: int | None = Field(alias="inventoryItemId")
    item_name: str = Field(alias="itemName")
    quantity: int
    approved_quantity: int = Field(alias="approvedQuantity")
    distributed_quantity: int = Field(alias="distributedQuantity")
    status: str
    needs_review: bool = Field(alias="needsReview")
    notes: str | None

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class ApprovalStepResponse(BaseModel):
    approval_level: int = Field(alias="approvalLevel")
    approver_id: str | None = Field(alias="approverId")
    approver_role: str | None = Field(alias="approverRole")
    delegated_to: str | None = Field(alias="delegatedTo")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class ApprovalResponse(BaseModel):
    id: int
    approval_level: int = Field(alias="approvalLevel")
    approver_id: str = Field(alias="approverId")
    decision: str
    granted: dict[int, int] | None
    comments: str | None
    decided_at: datetime = Field(alias="decidedAt")

    model_config = ConfigDict(populate_by_name=True)


class HistoryResponse(BaseModel):
    id: int
    action: str
    actor_id: str = Field(alias="actorId")
    old_value: str | None = Field(alias="oldValue")
    new_value: str | None = Field(alias="newValue")
    notes: str | None
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class RequestResponse(BaseModel):
    id: int
    request_number: str = Field(alias="requestNumber")
    team_id: str = Field(alias="teamId")
    requested_by: str = Field(alias="requestedBy")
    title: str
    description: str | None
    priority: str
    is_consumable_request: bool = Field(alias="isConsumableRequest")
    requires_quick_approval: bool = Field(alias="requiresQuickApproval")
    status: str
    delivery_status: str = Field(alias="deliveryStatus")
    submitted_at: datetime | None = Field(alias="submittedAt")
    review_started_at: datetime | None = Field(alias="reviewStartedAt")
    decided_at: datetime | None = Field(alias="decidedAt")
    cancelled_at: datetime | None = Field(alias="cancelledAt")
    ordered_at: datetime | None = Field(alias="orderedAt")
    delivered_at: datetime | None = Field(alias="deliveredAt")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")
    items: list[RequestItemResponse]
    approval_chain: list[ApprovalStepResponse] = Field(alias="approvalChain")
    approvals: list[ApprovalResponse]
    history: list[HistoryResponse]

    model_config = ConfigDict(populate_by_name=True)


class RequestListResponse(BaseModel):
    items: list[RequestResponse]
    total: int


class DecisionCreate(BaseModel):
    decision: Decision
    granted: dict[int, int] | None = None
    comments: str | None = None


class DelegateCreate(BaseModel):
    delegate_to: str = Field(alias="delegateTo", min_length=1, max_length=64)
    comments: str | None = None

    model_config = ConfigDict(populate_by_name=True)


class DeliveryUpdate(BaseModel):
    delivery_status: DeliveryStatus = Field(alias="deliveryStatus")

    model_config = ConfigDict(populate_by_name=True)


# Forecasting


class ForecastEntry(BaseModel):
    item_id: int = Field(alias="itemId")
    name: str
    available_quantity: int = Field(alias="availableQuantity")
    min_stock_level: int = Field(alias="minStockLevel")
    avg_daily_consumption: float = Field(alias="avgDailyConsumption")
    history_days: int = Field(alias="historyDays")
    uses_fallback_rate: bool = Field(alias="usesFallbackRate")
    days_until_reorder: int | None = Field(alias="daysUntilReorder")
    urgency: str
    recommendation: str
    suggested_quantity: int = Field(alias="suggestedQuantity")
    below_minimum: bool = Field(alias="belowMinimum")

    model_config = ConfigDict(populate_by_name=True)


class ForecastReport(BaseModel):
    generated_at: datetime = Field(alias="generatedAt")
    window_days: int = Field(alias="windowDays")
    look_ahead_days: int = Field(alias="lookAheadDays")
    items: list[ForecastEntry]

    model_config = ConfigDict(populate_by_name=True)


class AutoRequestCreate(BaseModel):
    team_id: str | None = Field(default=None, alias="teamId", max_length=64)
    dry_run: bool = Field(default=True, alias="dryRun")
    item_ids: list[int] | None = Field(default=None, alias="itemIds")

    model_config = ConfigDict(populate_by_name=True)


class AutoRequestOutcome(BaseModel):
    item_id: int = Field(alias="itemId")
    name: str
    team_id: str | None = Field(alias="teamId")
    suggested_quantity: int = Field(alias="suggestedQuantity")
    request_id: int | None = Field(default=None, alias="requestId")
    request_number: str | None = Field(default=None, alias="requestNumber")
    code: str | None = None
    detail: str | None = None

    model_config = ConfigDict(populate_by_name=True)


class AutoRequestResponse(BaseModel):
    dry_run: bool = Field(alias="dryRun")
    created: list[AutoRequestOutcome]
    skipped: list[AutoRequestOutcome]

    model_config = ConfigDict(populate_by_name=True)


# Request templates


class TemplateCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    category: str | None = Field(default=None, max_length=64)
    items: list[RequestItemCreate] = Field(min_length=1)
    is_public: bool = Field(default=False, alias="isPublic")

    model_config = ConfigDict(populate_by_name=True)


class TemplateResponse(BaseModel):
    id: int
    name: str
    description: str | None
    category: str | None
    items: list[RequestItemCreate]
    is_public: bool = Field(alias="isPublic")
    created_by: str = Field(alias="createdBy")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


class TemplateRequestCreate(BaseModel):
    """Overrides applied when a template becomes a draft request."""

    team_id: str = Field(alias="teamId", min_length=1, max_length=64)
    title: str | None = Field(default=None, max_length=255)
    description: str | None = None
    priority: Priority = "medium"
    is_consumable_request: bool = Field(default=False, alias="isConsumableRequest")
    requires_quick_approval: bool = Field(default=False, alias="requiresQuickApproval")
    approval_chain: list[ApprovalStepCreate] | None = Field(default=None, alias="approvalChain")

    model_config = ConfigDict(populate_by_name=True)
