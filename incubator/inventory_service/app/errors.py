"""Domain errors raised by the inventory service."""

from __future__ import annotations

from fastapi import status


class InventoryError(Exception):
    """Base class for domain failures with a stable code and HTTP status."""

    code = "inventory_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidQuantity(InventoryError):
    code = "invalid_quantity"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class InsufficientStock(InventoryError):
    code = "insufficient_stock"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, *, item_id: int | None = None, requested: int = 0, available: int = 0) -> None:
        super().__init__(message)
        self.item_id = item_id
        self.requested = requested
        self.available = available


class ItemUnavailable(InventoryError):
    code = "item_unavailable"
    status_code = status.HTTP_409_CONFLICT


class AlreadyReturned(InventoryError):
    code = "already_returned"
    status_code = status.HTTP_409_CONFLICT


class DuplicateAssignment(InventoryError):
    code = "duplicate_assignment"
    status_code = status.HTTP_409_CONFLICT


class NotFound(InventoryError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class InvalidTransition(InventoryError):
    code = "invalid_transition"
    status_code = status.HTTP_409_CONFLICT


class PermissionDenied(InventoryError):
    code = "permission_denied"
    status_code = status.HTTP_403_FORBIDDEN


class NoTargetTeam(InventoryError):
    code = "no_target_team"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class InvalidHoldPeriod(InventoryError):
    code = "invalid_hold_period"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


# Failures the workflow treats as transient ledger conflicts during finalize.
LEDGER_CONFLICTS: tuple[type[InventoryError], ...] = (InsufficientStock, ItemUnavailable)
