"""Bounded pool of upstream connections.

Callers lease a member with :meth:`ConnectionPool.checkout` and return it
exactly once with :meth:`ConnectionPool.checkin`, reporting whether the
connection is still healthy. Unhealthy members are closed and replaced on
demand. At most ``max_count`` connections are alive at any time and a member
is never leased to two callers at once.
"""

from __future__ import annotations

import time
import uuid
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from apipool.core import async_runtime
from apipool.core.errors import PoolError, PoolUnavailableError
from apipool.core.logging import get_logger


if TYPE_CHECKING:
    from types import TracebackType

    from apipool.http.connection import TransportConnection


logger = get_logger(__name__)

ConnectionFactory = Callable[[], Awaitable["TransportConnection"]]


@dataclass(eq=False)
class PooledConnection:
    """A pool member: one transport connection plus lease bookkeeping."""

    connection: TransportConnection
    member_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    created_at: float = field(default_factory=time.monotonic)
    lease_token: str | None = None
    use_count: int = 0

    @property
    def age_seconds(self) -> float:
        return time.monotonic() - self.created_at

    @property
    def is_leased(self) -> bool:
        return self.lease_token is not None


@dataclass(frozen=True)
class PoolStats:
    """Point-in-time counters of a pool."""

    name: str
    max_count: int
    idle: int
    leased: int
    created: int
    discarded: int

    @property
    def live(self) -> int:
        return self.idle + self.leased


class ConnectionPool:
    """Bounded set of reusable connections created by ``factory``."""

    def __init__(
        self,
        name: str,
        factory: ConnectionFactory,
        *,
        max_count: int = 10,
        init_count: int = 0,
        checkout_timeout: float = 5.0,
    ) -> None:
        if max_count < 1:
            raise ValueError("max_count must be at least 1")
        if not 0 <= init_count <= max_count:
            raise ValueError("init_count must be between 0 and max_count")

        self.name = name
        self.max_count = max_count
        self.init_count = init_count
        self.checkout_timeout = checkout_timeout
        self._factory = factory
        # One slot per lease; a member is created only when no idle one is left,
        # so idle + leased never exceeds max_count
        self._slots = async_runtime.create_semaphore(max_count)
        self._idle: deque[PooledConnection] = deque()
        self._leased: dict[str, PooledConnection] = {}
        self._created = 0
        self._discarded = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> None:
        """Open ``init_count`` connections ahead of the first checkout."""
        for _ in range(self.init_count - len(self._idle)):
            self._idle.append(await self._create())
        logger.info(
            "pool_started",
            pool=self.name,
            max_count=self.max_count,
            init_count=self.init_count,
        )

    async def checkout(self, timeout: float | None = None) -> PooledConnection:
        """Lease a member, waiting at most ``timeout`` seconds for a free slot.

        Raises:
            PoolUnavailableError: If no member became free in time or the pool
                is stopped.
            UpstreamConnectionError: If a new member could not be opened.
            TunnelFailedError: If a new member could not tunnel through the
                proxy.
        """
        wait = self.checkout_timeout if timeout is None else timeout
        if self._closed:
            raise PoolUnavailableError(
                f"Pool {self.name!r} is stopped", pool_name=self.name, timeout=wait
            )

        try:
            with async_runtime.fail_after(wait):
                await self._slots.acquire()
        except async_runtime.TimeoutError as exc:
            logger.warning(
                "pool_checkout_timeout",
                pool=self.name,
                timeout=wait,
                leased=len(self._leased),
            )
            raise PoolUnavailableError(
                f"No connection available in pool {self.name!r} within {wait}s",
                pool_name=self.name,
                timeout=wait,
            ) from exc

        try:
            if self._closed:
                raise PoolUnavailableError(
                    f"Pool {self.name!r} is stopped", pool_name=self.name, timeout=wait
                )
            member = await self._take_idle()
            if member is None:
                member = await self._create()
        except BaseException:
            self._slots.release()
            raise

        member.lease_token = uuid.uuid4().hex
        member.use_count += 1
        self._leased[member.lease_token] = member
        logger.debug(
            "pool_checkout",
            pool=self.name,
            member=member.member_id,
            use_count=member.use_count,
        )
        return member

    async def checkin(self, member: PooledConnection, healthy: bool) -> None:
        """Return a leased member; ``healthy=False`` discards its connection.

        Raises:
            PoolError: If ``member`` is not currently leased from this pool.
        """
        token = member.lease_token
        if token is None or self._leased.get(token) is not member:
            raise PoolError(
                f"Connection {member.member_id} is not checked out from pool "
                f"{self.name!r}"
            )
        del self._leased[token]
        member.lease_token = None

        try:
            if not healthy:
                await self._discard(member, reason="unhealthy")
            elif self._closed:
                await self._discard(member, reason="pool_stopped")
            elif not member.connection.is_reusable:
                await self._discard(member, reason="closed_by_peer")
            else:
                self._idle.append(member)
                logger.debug("pool_checkin", pool=self.name, member=member.member_id)
        finally:
            self._slots.release()

    @asynccontextmanager
    async def lease(self, timeout: float | None = None) -> AsyncIterator[PooledConnection]:
        """Scoped checkout; the member is checked in on every exit path.

        It is reported healthy only when the block completes without raising.
        """
        member = await self.checkout(timeout)
        healthy = False
        try:
            yield member
            healthy = True
        finally:
            with async_runtime.shielded():
                await self.checkin(member, healthy=healthy)

    def stats(self) -> PoolStats:
        return PoolStats(
            name=self.name,
            max_count=self.max_count,
            idle=len(self._idle),
            leased=len(self._leased),
            created=self._created,
            discarded=self._discarded,
        )

    async def aclose(self) -> None:
        """Stop the pool: close idle members now and leased ones at checkin."""
        if self._closed:
            return
        self._closed = True

        # Leased members are closed when their holders check them in
        with async_runtime.shielded():
            while self._idle:
                await self._discard(self._idle.popleft(), reason="pool_stopped")

        logger.info(
            "pool_stopped",
            pool=self.name,
            still_leased=len(self._leased),
            **self._counters(),
        )

    async def _take_idle(self) -> PooledConnection | None:
        while self._idle:
            member = self._idle.popleft()
            if member.connection.is_reusable:
                return member
            await self._discard(member, reason="expired")
        return None

    async def _create(self) -> PooledConnection:
        connection = await self._factory()
        self._created += 1
        member = PooledConnection(connection=connection)
        logger.debug(
            "pool_member_created",
            pool=self.name,
            member=member.member_id,
            endpoint=str(connection.endpoint),
        )
        return member

    async def _discard(self, member: PooledConnection, reason: str) -> None:
        self._discarded += 1
        logger.debug(
            "pool_member_discarded",
            pool=self.name,
            member=member.member_id,
            reason=reason,
        )
        await member.connection.aclose()

    def _counters(self) -> dict[str, int]:
        return {"created": self._created, "discarded": self._discarded}

    async def __aenter__(self) -> ConnectionPool:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        stats = self.stats()
        return (
            f"<ConnectionPool {self.name!r} idle={stats.idle} leased={stats.leased} "
            f"max={self.max_count}>"
        )
