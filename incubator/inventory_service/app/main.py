from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from incubator.common import (
    DEFAULT_APP_NAME,
    EventConsumer,
    EventProducer,
    JsonCache,
    ServiceSettings,
    build_app,
    close_redis_connections,
    configure_logging,
    create_engine,
    dispose_engines,
    get_session_factory,
    resolve_database_url,
    resolve_redis,
)

from .api.assignments import router as assignments_router
from .api.consumption import router as consumption_router
from .api.forecasting import router as forecasting_router
from .api.health import router as health_router
from .api.inventory import router as inventory_router
from .api.maintenance import router as maintenance_router
from .api.requests import router as requests_router
from .api.reservations import router as reservations_router
from .api.teams import router as teams_router
from .api.templates import router as templates_router
from .errors import InventoryError
from .events import InventoryEventPublisher
from .forecasting import ForecastCacheInvalidator
from .models import Base
from .sweeper import ReservationSweeper

SERVICE_NAME = "Inventory Service"
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./inventory_service.db"


async def _handle_inventory_error(request: Request, exc: InventoryError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


def create_app(settings: ServiceSettings | None = None) -> FastAPI:
    """Create the Inventory Service FastAPI application."""

    resolved_settings = settings or ServiceSettings()
    if resolved_settings.app_name == DEFAULT_APP_NAME:
        resolved_settings = resolved_settings.model_copy(update={"app_name": SERVICE_NAME})
    configure_logging(resolved_settings)
    database_url = resolve_database_url(resolved_settings, DEFAULT_DATABASE_URL)
    session_factory = get_session_factory(database_url)
    redis_client = resolve_redis(resolved_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        producer: EventProducer | None = None
        cache_consumer: EventConsumer | None = None
        sweeper: ReservationSweeper | None = None
        app.state.session_factory = session_factory
        try:
            if resolved_settings.database_create_schema:
                async with create_engine(database_url).begin() as conn:
                    await conn.run_sync(Base.metadata.create_all)
            producer = EventProducer(bootstrap_servers=resolved_settings.kafka_bootstrap_servers)
            await producer.connect()
            publisher = InventoryEventPublisher(producer)
            app.state.event_publisher = publisher

            forecast_cache = None
            if redis_client is not None:
                forecast_cache = JsonCache(
                    redis_client,
                    ttl_seconds=resolved_settings.forecast_cache_ttl_seconds,
                    namespace="inventory:forecast",
                )
                invalidator = ForecastCacheInvalidator(forecast_cache)
                cache_consumer = EventConsumer(invalidator.topics, invalidator.handle)
                await cache_consumer.start()
            app.state.forecast_cache = forecast_cache

            sweeper = ReservationSweeper(session_factory, resolved_settings, publisher)
            await sweeper.start()
            app.state.reservation_sweeper = sweeper
            yield
        finally:
            app.state.session_factory = None  # type: ignore[assignment]
            app.state.event_publisher = None
            app.state.forecast_cache = None
            app.state.reservation_sweeper = None
            if sweeper is not None:
                await sweeper.stop()
            if cache_consumer is not None:
                await cache_consumer.stop()
            if producer is not None:
                await producer.close()
            await dispose_engines()
            if redis_client is not None:
                await close_redis_connections()

    app = build_app(resolved_settings, lifespan=lifespan)
    app.add_exception_handler(InventoryError, _handle_inventory_error)
    app.include_router(health_router)
    app.include_router(inventory_router)
    app.include_router(assignments_router)
    app.include_router(reservations_router)
    app.include_router(consumption_router)
    app.include_router(maintenance_router)
    app.include_router(requests_router)
    app.include_router(templates_router)
    app.include_router(forecasting_router)
    app.include_router(teams_router)
    return app


app = create_app()
