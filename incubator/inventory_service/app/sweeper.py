"""Periodic background release of expired reservation holds."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from incubator.common import ServiceSettings, lifespan_session

from .events import InventoryEventPublisher
from .repository import InventoryRepository
from .reservations import ReservationManager

_LOGGER = logging.getLogger(__name__)


class ReservationSweeper:
    """Runs :meth:`ReservationManager.sweep_expired` every ``interval`` seconds."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: ServiceSettings,
        publisher: InventoryEventPublisher | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings
        self._publisher = publisher
        self._interval = settings.reservation_sweep_interval_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> list[int]:
        async with lifespan_session(self._session_factory) as session:
            manager = ReservationManager(InventoryRepository(session), self._settings)
            expired = await manager.sweep_expired()
        if self._publisher is not None:
            await self._publisher.publish_committed(session)
        return expired

    async def start(self) -> None:
        if self._interval <= 0 or self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="reservation-sweeper")
        _LOGGER.info("Reservation sweeper started (every %.1fs)", self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        _LOGGER.info("Reservation sweeper stopped")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.run_once()
            except Exception:  # noqa: BLE001 - keep sweeping on the next tick
                _LOGGER.exception("Reservation sweep failed")
