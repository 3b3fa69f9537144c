"""Public entry points: start a pool, send requests, stop the pool."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from functools import partial
from typing import TYPE_CHECKING, Any

from apipool.config import Settings, get_settings
from apipool.core.logging import get_logger, setup_logging
from apipool.http.connection import open_upstream
from apipool.http.executor import RequestExecutor
from apipool.http.models import HeaderList, RequestBody, Response
from apipool.http.pool import ConnectionPool, PoolStats


if TYPE_CHECKING:
    from types import TracebackType

    import httpcore


logger = get_logger(__name__)


class UpstreamClient:
    """A started pool together with the executor that uses it.

    Returned by :func:`start_pool`; every request made through it shares the
    same bounded set of upstream connections.
    """

    def __init__(
        self, settings: Settings, pool: ConnectionPool, executor: RequestExecutor
    ) -> None:
        self.settings = settings
        self.pool = pool
        self.executor = executor

    @property
    def closed(self) -> bool:
        return self.pool.closed

    async def get(self, path: str) -> Response:
        return await self.executor.get(path)

    async def post(
        self, path: str, headers: HeaderList = (), body: RequestBody = b""
    ) -> Response:
        return await self.executor.post(path, headers, body)

    def stats(self) -> PoolStats:
        return self.pool.stats()

    async def aclose(self) -> None:
        await self.pool.aclose()

    async def __aenter__(self) -> UpstreamClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        return f"<UpstreamClient {self.settings.api_server_endpoint} {self.pool!r}>"


async def start_pool(
    settings: Settings | None = None,
    *,
    configure_logging: bool = False,
    network_backend: httpcore.AsyncNetworkBackend | None = None,
) -> UpstreamClient:
    """Start a connection pool for the configured upstream API.

    Args:
        settings: Client settings (defaults to :func:`get_settings`)
        configure_logging: Also apply ``settings.logging`` to the process
        network_backend: httpcore network backend used to open connections

    Raises:
        UpstreamConnectionError: If a prewarmed connection cannot be opened.
        TunnelFailedError: If a prewarmed connection cannot tunnel through
            the proxy.
    """
    if settings is None:
        settings = get_settings()
    if configure_logging:
        setup_logging(
            json_logs=settings.logging.json_logs, log_level=settings.logging.level
        )

    pool_settings = settings.keepalive_pool
    pool = ConnectionPool(
        pool_settings.name,
        partial(open_upstream, settings, network_backend=network_backend),
        max_count=pool_settings.max_count,
        init_count=pool_settings.init_count,
        checkout_timeout=pool_settings.checkout_timeout,
    )
    try:
        await pool.start()
    except BaseException:
        await pool.aclose()
        raise

    logger.info(
        "upstream_client_started",
        pool=pool_settings.name,
        endpoint=settings.api_server_endpoint,
        proxy=settings.api_proxy_server_endpoint,
    )
    executor = RequestExecutor(
        pool,
        timeout=settings.http_timeout_seconds,
        checkout_timeout=pool_settings.checkout_timeout,
    )
    return UpstreamClient(settings, pool, executor)


async def stop_pool(client: UpstreamClient) -> None:
    """Stop ``client``'s pool; connections still leased close on checkin."""
    await client.aclose()


async def get(client: UpstreamClient, path: str) -> Response:
    return await client.get(path)


async def post(
    client: UpstreamClient,
    path: str,
    headers: HeaderList = (),
    body: RequestBody = b"",
) -> Response:
    return await client.post(path, headers, body)


@asynccontextmanager
async def pool_context(
    settings: Settings | None = None, **kwargs: Any
) -> AsyncIterator[UpstreamClient]:
    """Run a block with a started pool and stop it on exit."""
    client = await start_pool(settings, **kwargs)
    try:
        yield client
    finally:
        await stop_pool(client)


__all__ = [
    "UpstreamClient",
    "get",
    "open_upstream",
    "pool_context",
    "post",
    "start_pool",
    "stop_pool",
]
