"""Request number generation: ``REQ-<year>-<4-digit sequence>``, monotonic per year."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import IntegrityError

from .repository import InventoryRepository

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

REQUEST_PREFIX = "REQ"
MAX_ATTEMPTS = 5


def format_request_number(year: int, sequence: int) -> str:
    return f"{REQUEST_PREFIX}-{year}-{sequence:04d}"


def parse_sequence(request_number: str) -> int:
    try:
        return int(request_number.rsplit("-", 1)[1])
    except (IndexError, ValueError):
        return 0


async def next_request_number(repository: InventoryRepository, now: datetime) -> str:
    """Scan the highest number issued this year and return the next one."""

    prefix = f"{REQUEST_PREFIX}-{now.year}-"
    latest = await repository.latest_request_number(prefix)
    sequence = parse_sequence(latest) + 1 if latest else 1
    return format_request_number(now.year, sequence)


async def insert_with_request_number(
    repository: InventoryRepository,
    now: datetime,
    insert: Callable[[str], Awaitable[T]],
) -> T:
    """Run ``insert`` with a fresh request number, retrying on a duplicate.

    Each attempt runs in its own savepoint; a unique-constraint conflict from a
    concurrent creator rolls back that savepoint and the scan is repeated.
    """

    for attempt in range(1, MAX_ATTEMPTS + 1):
        number = await next_request_number(repository, now)
        try:
            async with repository.session.begin_nested():
                return await insert(number)
        except IntegrityError:
            if attempt == MAX_ATTEMPTS:
                raise
            _LOGGER.warning("Request number %s already taken, retrying (attempt %d)", number, attempt)
    raise RuntimeError("unreachable")
