from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

from opentelemetry import trace

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

T = TypeVar("T")


class CacheState(str, Enum):
    EMPTY = "empty"
    BUILDING = "building"
    READY = "ready"


@dataclass
class _Entry(Generic[T]):
    value: T
    stored_at: float


class ReadThroughCache(Generic[T]):
    """Single-slot TTL cache whose rebuilds are coalesced.

    Callers arriving while a build is in flight await that same build, so a
    burst of readers right after expiry triggers one rebuild, not one each.
    A failed build is handed to every waiter and nothing is cached.
    """

    def __init__(
        self,
        build: Callable[[], Awaitable[T]],
        *,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._build = build
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entry: _Entry[T] | None = None
        self._in_flight: asyncio.Future[T] | None = None
        self._generation = 0

    @property
    def state(self) -> CacheState:
        if self._in_flight is not None:
            return CacheState.BUILDING
        if self._entry is not None:
            return CacheState.READY
        return CacheState.EMPTY

    def invalidate(self) -> None:
        """Drop the entry and detach any in-flight build from the slot.

        A build already running still answers its own waiters, but its result
        is not stored and the next reader starts a fresh build.
        """
        self._generation += 1
        self._entry = None
        self._in_flight = None

    async def get(self, *, bypass: bool = False) -> tuple[T, bool]:
        """Return ``(value, refreshed)``; ``refreshed`` is True for the caller that started a build."""
        entry = self._entry
        if not bypass and entry is not None and self._clock() - entry.stored_at < self._ttl_seconds:
            return entry.value, False

        started = False
        if self._in_flight is None:
            logger.info("cache miss, starting rebuild bypass=%s", bypass)
            self._in_flight = asyncio.ensure_future(self._run_build(self._generation))
            started = True
        else:
            logger.info("queuing concurrent request on in-flight rebuild")

        # Shielded so one cancelled reader does not cancel the build for the rest.
        value = await asyncio.shield(self._in_flight)
        return value, started

    async def _run_build(self, generation: int) -> T:
        try:
            with tracer.start_as_current_span("cache.rebuild"):
                value = await self._build()
        except BaseException:
            if generation == self._generation:
                self._entry = None
            raise
        else:
            if generation == self._generation:
                self._entry = _Entry(value=value, stored_at=self._clock())
            else:
                logger.info("discarding rebuild invalidated while in flight generation=%s", generation)
            return value
        finally:
            if generation == self._generation:
                self._in_flight = None
