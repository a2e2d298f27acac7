"""Connection pool with per-route idle sets, a global cap and keep-alive expiry."""

import asyncio
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional

from .config import PoolConfig
from .exceptions import PoolTimeoutError
from .logging_config import get_logger
from .models import Route
from .transport import Connection, Connector

logger = get_logger(__name__)


@dataclass
class PoolEntry:
    """A pooled connection and its bookkeeping."""

    route: Route
    connection: Connection
    created_at: float
    last_used: float
    leased: bool = False

    def is_expired(self, keep_alive: float, now: float) -> bool:
        """Check if this entry has been idle for at least ``keep_alive`` seconds."""
        return now - self.last_used >= keep_alive


class ConnectionPool:
    """
    Pool of reusable connections keyed by route.

    Features:
    - LIFO reuse of idle connections per route (warmest socket first)
    - Keep-alive expiry, enforced on every access and by ``evict_expired()``
    - Global cap on idle plus leased connections; the oldest idle entry across
      all routes is evicted to make room, otherwise callers wait up to
      ``acquire_timeout``
    - Each entry is leased to at most one call at a time
    - Closing happens outside the lock
    """

    def __init__(
        self,
        config: PoolConfig,
        connector: Connector,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.config = config
        self.connector = connector
        self.clock = clock or time.monotonic
        self._idle: dict[Route, deque[PoolEntry]] = {}
        self._total = 0
        self._leased = 0
        self._closed = False
        self._condition = asyncio.Condition()

    async def acquire(self, route: Route) -> PoolEntry:
        """
        Lease a connection for ``route``.

        Raises:
            PoolTimeoutError: the pool stayed at its cap for ``acquire_timeout``
            TransportError: opening a new connection failed
        """
        to_close: list[PoolEntry] = []
        try:
            async with self._condition:
                if self._closed:
                    raise RuntimeError("Connection pool is closed")

                entry = self._take_idle(route, to_close)
                if entry is not None:
                    logger.debug(
                        "Reusing pooled connection",
                        connection_id=entry.connection.id,
                        route=str(route),
                    )
                    return entry

                if self._total >= self.config.max_total_connections:
                    evicted = self._evict_oldest_idle()
                    if evicted is not None:
                        to_close.append(evicted)
                    else:
                        await self._wait_for_capacity(route, to_close)
                        entry = self._take_idle(route, to_close)
                        if entry is not None:
                            return entry

                # Reserve the slot before connecting outside the lock.
                self._total += 1
                self._leased += 1
        finally:
            await self._close_entries(to_close)

        try:
            connection = await self.connector.connect(route)
        except BaseException:
            async with self._condition:
                self._total -= 1
                self._leased -= 1
                self._condition.notify()
            raise

        now = self.clock()
        return PoolEntry(route, connection, created_at=now, last_used=now, leased=True)

    async def release(self, entry: PoolEntry, healthy: bool = True) -> None:
        """
        Return a leased entry. Healthy entries go back to the idle set when
        there is room and start their keep-alive window; everything else is
        closed.
        """
        if not entry.leased:
            raise ValueError(f"Connection {entry.connection.id} is not leased")

        close = False
        async with self._condition:
            entry.leased = False
            self._leased -= 1
            idle = self._idle.get(entry.route, ())

            if (
                healthy
                and not self._closed
                and not entry.connection.closed
                and len(idle) < self.config.max_idle_per_route
            ):
                entry.last_used = self.clock()
                self._idle.setdefault(entry.route, deque()).append(entry)
            else:
                self._total -= 1
                close = True
            self._condition.notify()

        if close:
            logger.debug(
                "Closing released connection",
                connection_id=entry.connection.id,
                route=str(entry.route),
                healthy=healthy,
            )
            await entry.connection.aclose()

    async def evict_expired(self) -> int:
        """Close every idle entry past its keep-alive. Returns how many were closed."""
        to_close: list[PoolEntry] = []
        async with self._condition:
            now = self.clock()
            remaining: dict[Route, deque[PoolEntry]] = {}
            for route, idle in self._idle.items():
                fresh: deque[PoolEntry] = deque()
                for entry in idle:
                    if entry.is_expired(self.config.keep_alive, now):
                        to_close.append(entry)
                    else:
                        fresh.append(entry)
                if fresh:
                    remaining[route] = fresh
            self._idle = remaining
            self._total -= len(to_close)
            if to_close:
                self._condition.notify(len(to_close))
        await self._close_entries(to_close)
        return len(to_close)

    async def close(self) -> None:
        """Close all idle connections and refuse further leases."""
        async with self._condition:
            self._closed = True
            to_close = [e for idle in self._idle.values() for e in idle]
            self._idle.clear()
            self._total -= len(to_close)
            self._condition.notify_all()
        await self._close_entries(to_close)

    def stats(self) -> dict:
        """Pool statistics for monitoring."""
        return {
            "total": self._total,
            "leased": self._leased,
            "idle": sum(len(idle) for idle in self._idle.values()),
            "routes": {str(route): len(idle) for route, idle in self._idle.items()},
            "max_total_connections": self.config.max_total_connections,
            "max_idle_per_route": self.config.max_idle_per_route,
        }

    def _take_idle(self, route: Route, to_close: list[PoolEntry]) -> Optional[PoolEntry]:
        idle = self._idle.get(route)
        now = self.clock()
        taken: Optional[PoolEntry] = None
        while idle:
            entry = idle.pop()
            if entry.is_expired(self.config.keep_alive, now) or entry.connection.closed:
                self._total -= 1
                to_close.append(entry)
                continue
            entry.leased = True
            self._leased += 1
            taken = entry
            break
        if idle is not None and not idle:
            del self._idle[route]
        return taken

    def _evict_oldest_idle(self) -> Optional[PoolEntry]:
        oldest: Optional[PoolEntry] = None
        for idle in self._idle.values():
            if idle and (oldest is None or idle[0].last_used < oldest.last_used):
                oldest = idle[0]
        if oldest is None:
            return None
        idle = self._idle[oldest.route]
        idle.popleft()
        if not idle:
            del self._idle[oldest.route]
        self._total -= 1
        logger.debug(
            "Evicting idle connection to make room",
            connection_id=oldest.connection.id,
            route=str(oldest.route),
        )
        return oldest

    async def _wait_for_capacity(self, route: Route, to_close: list[PoolEntry]) -> None:
        def has_capacity() -> bool:
            return (
                self._closed
                or self._total < self.config.max_total_connections
                or any(self._idle.values())
            )

        try:
            await asyncio.wait_for(
                self._condition.wait_for(has_capacity), timeout=self.config.acquire_timeout
            )
        except asyncio.TimeoutError as e:
            raise PoolTimeoutError(
                f"No connection for {route} within {self.config.acquire_timeout}s - "
                f"all {self.config.max_total_connections} connections are leased",
                route=route,
            ) from e

        if self._closed:
            raise RuntimeError("Connection pool is closed")
        if self._total >= self.config.max_total_connections and not self._idle.get(route):
            evicted = self._evict_oldest_idle()
            if evicted is None:
                raise PoolTimeoutError(
                    f"No connection for {route} - pool is at capacity", route=route
                )
            to_close.append(evicted)

    async def _close_entries(self, entries: list[PoolEntry]) -> None:
        for entry in entries:
            logger.debug(
                "Closing pooled connection",
                connection_id=entry.connection.id,
                route=str(entry.route),
            )
            await entry.connection.aclose()
