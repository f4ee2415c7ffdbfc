import asyncio
from datetime import timedelta
from typing import Any

import pytest
from prometheus_client import REGISTRY

from incubator.common import (
    EventConsumer,
    InMemoryBroker,
    JsonCache,
    ServiceSettings,
    create_engine,
    dispose_engines,
    get_session_factory,
    lifespan_session,
)
from incubator.inventory_service.app import events
from incubator.inventory_service.app.actors import Actor
from incubator.inventory_service.app.catalog import InventoryCatalog
from incubator.inventory_service.app.consumption import ConsumptionTracker
from incubator.inventory_service.app.forecasting import (
    ForecastCacheInvalidator,
    ReplenishmentForecaster,
    classify_urgency,
)
from incubator.inventory_service.app.models import Base, utcnow
from incubator.inventory_service.app.repository import InventoryRepository
from incubator.inventory_service.app.reservations import ReservationManager
from incubator.inventory_service.app.schemas import ItemCreate, RequestCreate, RequestItemCreate
from incubator.inventory_service.app.workflow import RequestWorkflow

_MANAGER = Actor(actor_id="mgr-1", role="manager")


def _run(coro):
    return asyncio.run(coro)


def _settings(**overrides: Any) -> ServiceSettings:
    values: dict[str, Any] = {
        "enable_metrics": False,
        "enable_tracing": False,
        "forecast_window_days": 90,
        "forecast_look_ahead_days": 30,
    }
    values.update(overrides)
    return ServiceSettings(**values)


async def _prepare_factory(tmp_path):
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'forecast.db'}"
    engine = create_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return get_session_factory(database_url)


async def _create_item(session, **fields: Any) -> int:
    item = await InventoryCatalog(InventoryRepository(session)).create_item(ItemCreate(**fields), _MANAGER)
    return item.id


async def _seed(session) -> dict[str, int]:
    """Four days of five-a-day snack consumption plus two comparison items."""

    snacks = await _create_item(session, name="Snacks", isConsumable=True, totalQuantity=40, minStockLevel=2)
    tracker = ConsumptionTracker(InventoryRepository(session))
    base = utcnow().replace(hour=12, minute=0, second=0, microsecond=0) - timedelta(days=1)
    for days_ago in range(4):
        await tracker.consume(snacks, "team-a", 5, _MANAGER, consumption_date=base - timedelta(days=days_ago))

    tape = await _create_item(
        session,
        name="Tape",
        isFrequentlyDistributed=True,
        totalQuantity=100,
        minStockLevel=5,
        typicalConsumptionRate=14,
    )
    filters = await _create_item(session, name="Coffee filters", isConsumable=True, totalQuantity=3, minStockLevel=10)
    await _create_item(session, name="Laptop", totalQuantity=4)
    return {"snacks": snacks, "tape": tape, "filters": filters}


class _MemoryRedis:
    def __init__(self) -> None:
        self.store: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self.store.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> None:
        self.store[key] = value

    async def delete(self, key: str) -> None:
        self.store.pop(key, None)


def test_report_ranks_items_by_urgency(tmp_path) -> None:
    async def body() -> None:
        factory = await _prepare_factory(tmp_path)
        async with lifespan_session(factory) as session:
            ids = await _seed(session)
            report = await ReplenishmentForecaster(InventoryRepository(session), _settings()).report()

            assert [entry.item_id for entry in report.items] == [ids["snacks"], ids["filters"], ids["tape"]]
            snacks, filters, tape = report.items

            assert snacks.available_quantity == 20
            assert snacks.avg_daily_consumption == pytest.approx(5.0)
            assert snacks.history_days == 4
            assert snacks.days_until_reorder == 3
            assert snacks.urgency == "high"
            assert snacks.recommendation == "reorder_now"
            assert snacks.suggested_quantity == 150
            assert snacks.below_minimum is False

            assert filters.days_until_reorder is None
            assert filters.below_minimum is True
            assert filters.urgency == "high"
            assert filters.suggested_quantity == 20

            assert tape.uses_fallback_rate is True
            assert tape.avg_daily_consumption == pytest.approx(2.0)
            assert tape.days_until_reorder == 47
            assert tape.urgency == "low"
            assert tape.recommendation == "monitor"
        await dispose_engines()

    _run(body())


@pytest.mark.parametrize(
    ("days", "below_minimum", "look_ahead", "expected"),
    [
        (None, False, 30, "low"),
        (None, True, 30, "high"),
        (0, True, 30, "high"),
        (7, False, 30, "high"),
        (8, False, 30, "medium"),
        (14, False, 10, "medium"),
        (25, False, 30, "medium"),
        (25, False, 20, "low"),
    ],
)
def test_classify_urgency(days, below_minimum, look_ahead, expected) -> None:
    assert classify_urgency(days, below_minimum=below_minimum, look_ahead_days=look_ahead) == expected


def test_auto_create_dry_run_and_commit(tmp_path) -> None:
    async def body() -> None:
        factory = await _prepare_factory(tmp_path)
        async with lifespan_session(factory) as session:
            repository = InventoryRepository(session)
            ids = await _seed(session)
            forecaster = ReplenishmentForecaster(repository, _settings())

            preview = await forecaster.auto_create(_MANAGER)
            assert preview.dry_run is True
            assert preview.created == []
            assert [(outcome.item_id, outcome.code) for outcome in preview.skipped] == [
                (ids["filters"], "no_target_team")
            ]

            planned = await forecaster.auto_create(_MANAGER, team_id="team-x")
            assert [outcome.item_id for outcome in planned.created] == [ids["filters"]]
            assert planned.created[0].request_id is None
            requests, total = await repository.list_requests()
            assert total == 0

            result = await forecaster.auto_create(_MANAGER, team_id="team-x", dry_run=False)
            outcome = result.created[0]
            assert outcome.request_number is not None
            request = await RequestWorkflow(repository, _settings()).get_request(outcome.request_id)
            assert request.status == "draft"
            assert request.team_id == "team-x"
            assert request.priority == "urgent"
            assert [(item.inventory_item_id, item.quantity) for item in request.items] == [(ids["filters"], 20)]
            assert request.history[0].notes == "generated by replenishment forecaster"

            topics = [topic for topic, _payload in events.pending_events(session)]
            assert events.FORECAST_DRAFTS_CREATED in topics
        await dispose_engines()

    _run(body())


def test_auto_create_infers_team_from_request_history(tmp_path) -> None:
    async def body() -> None:
        factory = await _prepare_factory(tmp_path)
        async with lifespan_session(factory) as session:
            repository = InventoryRepository(session)
            ids = await _seed(session)
            await RequestWorkflow(repository, _settings()).create_request(
                RequestCreate(
                    team_id="team-q",
                    title="Filters for the kitchen",
                    items=[RequestItemCreate(inventory_item_id=ids["filters"], quantity=2)],
                ),
                _MANAGER,
            )

            result = await ReplenishmentForecaster(repository, _settings()).auto_create(
                _MANAGER, item_ids=[ids["filters"], ids["snacks"]]
            )
            assert result.skipped == []
            assert [(outcome.item_id, outcome.team_id) for outcome in result.created] == [(ids["filters"], "team-q")]
        await dispose_engines()

    _run(body())


def test_default_report_is_cached_until_invalidated(tmp_path) -> None:
    async def body() -> None:
        factory = await _prepare_factory(tmp_path)
        backend = _MemoryRedis()
        cache = JsonCache(backend, ttl_seconds=60, namespace="inventory:forecast")
        async with lifespan_session(factory) as session:
            repository = InventoryRepository(session)
            ids = await _seed(session)
            forecaster = ReplenishmentForecaster(repository, _settings(), cache=cache)

            hits_before = REGISTRY.get_sample_value("forecast_cache_events_total", {"result": "hit"}) or 0.0
            first = await forecaster.report()
            assert "inventory:forecast:report:default" in backend.store

            await ConsumptionTracker(repository).consume(ids["snacks"], "team-a", 10, _MANAGER)
            cached = await forecaster.report()
            assert cached.items[0].available_quantity == first.items[0].available_quantity == 20
            hits_after = REGISTRY.get_sample_value("forecast_cache_events_total", {"result": "hit"}) or 0.0
            assert hits_after - hits_before == 1

            custom = await forecaster.report(look_ahead_days=10)
            assert custom.look_ahead_days == 10
            assert next(e for e in custom.items if e.item_id == ids["snacks"]).available_quantity == 10

            await ForecastCacheInvalidator(cache).handle(events.CONSUMPTION_LOGGED, {})
            assert backend.store == {}
            fresh = await forecaster.report()
            assert next(e for e in fresh.items if e.item_id == ids["snacks"]).available_quantity == 10
        await dispose_engines()

    _run(body())


@pytest.mark.parametrize(
    "topic",
    [
        events.ASSIGNMENT_CREATED,
        events.ASSIGNMENT_RETURNED,
        events.RESERVATION_PLACED,
        events.RESERVATION_CANCELLED,
        events.RESERVATION_EXPIRED,
        events.MAINTENANCE_SCHEDULED,
        events.MAINTENANCE_COMPLETED,
    ],
)
def test_stock_movements_invalidate_cached_report(topic) -> None:
    async def body() -> None:
        backend = _MemoryRedis()
        cache = JsonCache(backend, ttl_seconds=60, namespace="inventory:forecast")
        await cache.set("report:default", {"items": []})
        assert backend.store
        broker = InMemoryBroker()
        invalidator = ForecastCacheInvalidator(cache)
        consumer = EventConsumer(invalidator.topics, invalidator.handle, broker=broker)
        await consumer.start()
        try:
            await broker.publish(topic, {"eventType": topic})
        finally:
            await consumer.stop()
        assert backend.store == {}

    _run(body())


def test_reservations_queue_events_that_invalidate_the_forecast(tmp_path) -> None:
    async def body() -> None:
        factory = await _prepare_factory(tmp_path)
        async with lifespan_session(factory) as session:
            repository = InventoryRepository(session)
            ids = await _seed(session)
            manager = ReservationManager(repository, _settings())
            reservation = await manager.reserve(ids["snacks"], "team-a", 4, _MANAGER)
            await manager.cancel(reservation.id, _MANAGER)

            topics = [topic for topic, _payload in events.pending_events(session)]
            assert topics.count(events.RESERVATION_PLACED) == 1
            assert topics.count(events.RESERVATION_CANCELLED) == 1
            assert events.RESERVATION_PLACED in ForecastCacheInvalidator.topics
            assert events.RESERVATION_CANCELLED in ForecastCacheInvalidator.topics
        await dispose_engines()

    _run(body())
