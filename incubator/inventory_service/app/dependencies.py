"""Dependency helpers for the inventory service."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import cast

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from incubator.common import JsonCache, ServiceSettings, lifespan_session

from .actors import ROLE_DIRECTOR, ROLE_MANAGER, ROLE_MEMBER, ROLE_TEAM_LEAD, Actor
from .assignments import AssignmentManager
from .catalog import InventoryCatalog
from .consumption import ConsumptionTracker
from .events import InventoryEventPublisher
from .forecasting import ReplenishmentForecaster
from .maintenance import MaintenanceScheduler
from .repository import InventoryRepository
from .reservations import ReservationManager
from .templates import RequestTemplateLibrary
from .workflow import RequestWorkflow

KNOWN_ROLES = frozenset({ROLE_MANAGER, ROLE_DIRECTOR, ROLE_TEAM_LEAD, ROLE_MEMBER})


def get_event_publisher_optional(request: Request) -> InventoryEventPublisher | None:
    publisher = getattr(request.app.state, "event_publisher", None)
    if publisher is None:
        return None
    if hasattr(publisher, "publish_committed"):
        return cast(InventoryEventPublisher, publisher)
    return None


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    """Yield a session; queued domain events are published only after it commits."""

    session_factory: async_sessionmaker[AsyncSession] = request.app.state.session_factory
    async with lifespan_session(session_factory) as session:
        yield session
    publisher = get_event_publisher_optional(request)
    if publisher is not None:
        await publisher.publish_committed(session)


def get_repository(session: AsyncSession = Depends(get_session)) -> InventoryRepository:
    return InventoryRepository(session)


def get_service_settings(request: Request) -> ServiceSettings:
    return cast(ServiceSettings, request.app.state.settings)


def get_forecast_cache(request: Request) -> JsonCache | None:
    cache = getattr(request.app.state, "forecast_cache", None)
    if cache is None:
        return None
    return cast(JsonCache, cache)


def get_actor(
    actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
    role: str | None = Header(default=None, alias="X-Actor-Role"),
) -> Actor:
    """Identity asserted by the upstream gateway; it is trusted as-is."""

    if not actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-Actor-Id header")
    resolved_role = (role or ROLE_MEMBER).strip().lower()
    if resolved_role not in KNOWN_ROLES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown actor role {role!r}")
    return Actor(actor_id=actor_id, role=resolved_role)


def get_catalog(repository: InventoryRepository = Depends(get_repository)) -> InventoryCatalog:
    return InventoryCatalog(repository)


def get_assignment_manager(repository: InventoryRepository = Depends(get_repository)) -> AssignmentManager:
    return AssignmentManager(repository)


def get_reservation_manager(
    repository: InventoryRepository = Depends(get_repository),
    settings: ServiceSettings = Depends(get_service_settings),
) -> ReservationManager:
    return ReservationManager(repository, settings)


def get_consumption_tracker(repository: InventoryRepository = Depends(get_repository)) -> ConsumptionTracker:
    return ConsumptionTracker(repository)


def get_maintenance_scheduler(repository: InventoryRepository = Depends(get_repository)) -> MaintenanceScheduler:
    return MaintenanceScheduler(repository)


def get_workflow(
    repository: InventoryRepository = Depends(get_repository),
    settings: ServiceSettings = Depends(get_service_settings),
) -> RequestWorkflow:
    return RequestWorkflow(repository, settings)


def get_forecaster(
    repository: InventoryRepository = Depends(get_repository),
    settings: ServiceSettings = Depends(get_service_settings),
    cache: JsonCache | None = Depends(get_forecast_cache),
) -> ReplenishmentForecaster:
    return ReplenishmentForecaster(repository, settings, cache=cache)


def get_template_library(
    repository: InventoryRepository = Depends(get_repository),
    workflow: RequestWorkflow = Depends(get_workflow),
) -> RequestTemplateLibrary:
    return RequestTemplateLibrary(repository, workflow)
