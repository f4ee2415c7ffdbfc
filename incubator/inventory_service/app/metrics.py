"""Prometheus metrics for the inventory service."""

from __future__ import annotations

from typing import Final

from prometheus_client import Counter, Histogram


INVENTORY_LEDGER_OPERATIONS_TOTAL: Final = Counter(
    "inventory_ledger_operations_total",
    "Number of ledger primitives applied.",
    labelnames=("operation",),
)

INVENTORY_LEDGER_REJECTIONS_TOTAL: Final = Counter(
    "inventory_ledger_rejections_total",
    "Number of ledger primitives rejected before mutation.",
    labelnames=("operation", "reason"),
)

INVENTORY_STOCK_ALERTS_TOTAL: Final = Counter(
    "inventory_stock_alerts_total",
    "Number of items crossing into low or out of stock.",
    labelnames=("status",),
)

INVENTORY_RESERVATIONS_EXPIRED_TOTAL: Final = Counter(
    "inventory_reservations_expired_total",
    "Number of reservation holds released by the expiry sweep.",
)

INVENTORY_CONSUMPTION_UNITS_TOTAL: Final = Counter(
    "inventory_consumption_units_total",
    "Units of consumable stock logged as consumed.",
    labelnames=("consumption_type",),
)

REQUEST_TRANSITIONS_TOTAL: Final = Counter(
    "request_transitions_total",
    "Number of material request status transitions.",
    labelnames=("status",),
)

REQUEST_FINALIZE_CONFLICTS_TOTAL: Final = Counter(
    "request_finalize_conflicts_total",
    "Request items flagged for re-review after a ledger conflict at finalize.",
)

FORECAST_BUILD_SECONDS: Final = Histogram(
    "forecast_build_seconds",
    "Latency to compute the replenishment forecast.",
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
)

FORECAST_CACHE_EVENTS_TOTAL: Final = Counter(
    "forecast_cache_events_total",
    "Forecast report cache lookups by result.",
    labelnames=("result",),
)

FORECAST_DRAFTS_CREATED_TOTAL: Final = Counter(
    "forecast_drafts_created_total",
    "Draft material requests created by the forecaster.",
)
