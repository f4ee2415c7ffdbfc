"""In-process publish/subscribe broker with Kafka-shaped producer and consumer."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Sequence

_LOGGER = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Awaitable[None]]


class InMemoryBroker:
    """Topic dispatcher shared by producers and consumers in one process."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: Handler) -> None:
        self._subscribers[topic].append(handler)

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        handlers = self._subscribers.get(topic)
        if handlers and handler in handlers:
            handlers.remove(handler)
            if not handlers:
                self._subscribers.pop(topic, None)

    async def publish(self, topic: str, message: dict[str, Any]) -> None:
        # Copy so handlers may unsubscribe while being dispatched.
        for handler in list(self._subscribers.get(topic, [])):
            try:
                await handler(message)
            except Exception:  # noqa: BLE001 - one subscriber must not starve the others
                _LOGGER.exception("Subscriber for %s failed", topic)


_BROKER = InMemoryBroker()


def get_broker() -> InMemoryBroker:
    return _BROKER


class EventProducer:
    """Producer facade; ``bootstrap_servers`` is kept for a real Kafka transport."""

    def __init__(self, *, bootstrap_servers: str | None = None, broker: InMemoryBroker | None = None) -> None:
        self.bootstrap_servers = bootstrap_servers
        self._broker = broker or _BROKER
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._connected = True

    async def send(self, topic: str, value: dict[str, Any]) -> None:
        if not self._connected:
            raise RuntimeError("Producer not connected")
        await self._broker.publish(topic, value)

    async def close(self) -> None:
        self._connected = False


class EventConsumer:
    """Subscribes a single handler to a set of topics."""

    def __init__(
        self,
        topics: Sequence[str],
        handler: Callable[[str, dict[str, Any]], Awaitable[None]],
        *,
        broker: InMemoryBroker | None = None,
    ) -> None:
        self._topics = list(topics)
        self._handler = handler
        self._broker = broker or _BROKER
        self._registrations: list[tuple[str, Handler]] = []
        self._started = False

    async def start(self) -> None:
        if self._started:
            return
        for topic in self._topics:
            async def _callback(message: dict[str, Any], current_topic: str = topic) -> None:
                await self._handler(current_topic, message)

            self._broker.subscribe(topic, _callback)
            self._registrations.append((topic, _callback))
        self._started = True

    async def stop(self) -> None:
        if not self._started:
            return
        for topic, callback in self._registrations:
            self._broker.unsubscribe(topic, callback)
        self._registrations.clear()
        self._started = False
