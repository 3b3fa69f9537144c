"""A single persistent upstream connection on top of httpcore.

One :class:`TransportConnection` owns exactly one network stream, either
direct to the upstream or tunneled through a forward proxy with ``CONNECT``.
Requests are issued without blocking and answered through
:meth:`TransportConnection.await_response`; request bodies may be streamed in
chunks with :meth:`TransportConnection.stream_chunk`.
"""

from __future__ import annotations

import asyncio
import ssl
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import anyio
import httpcore
import httpx

from apipool.core import async_runtime
from apipool.core.errors import (
    InvalidRequestError,
    RequestTimeoutError,
    TransportError,
    TunnelFailedError,
    UpstreamConnectionError,
)
from apipool.core.logging import get_logger
from apipool.http.endpoint import parse_endpoint
from apipool.http.models import Endpoint, HeaderList, Response, Transport


if TYPE_CHECKING:
    from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

    from apipool.config.settings import ConnectionOptions, Settings


logger = get_logger(__name__)

# Exceptions httpcore raises for a broken or misbehaving peer
_TRANSPORT_ERRORS = (
    httpcore.NetworkError,
    httpcore.ProtocolError,
    httpcore.TimeoutException,
    httpcore.ConnectionNotAvailable,
)

_NO_BODY_STATUSES = frozenset({204, 304})


def response_has_body(method: str, status: int, headers: httpx.Headers) -> bool:
    """Return whether a response to ``method`` is followed by a body."""
    method = method.upper()
    if method == "HEAD" or 100 <= status < 200 or status in _NO_BODY_STATUSES:
        return False
    if method == "CONNECT" and 200 <= status < 300:
        return False
    return headers.get("content-length", "").strip() != "0"


def create_ssl_context(options: ConnectionOptions) -> ssl.SSLContext:
    """Create an SSL context from connection options."""
    context = ssl.create_default_context()

    if not options.verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

    if options.ca_bundle:
        ca_path = Path(options.ca_bundle)
        if ca_path.exists():
            context.load_verify_locations(ca_path)
            logger.debug("ca_bundle_loaded", path=str(ca_path))
        else:
            logger.warning("ca_bundle_not_found", path=str(ca_path))

    if options.client_cert:
        cert_path = Path(options.client_cert)
        key_path = Path(options.client_key) if options.client_key else cert_path
        if cert_path.exists() and key_path.exists():
            context.load_cert_chain(cert_path, key_path)
            logger.debug("client_certificate_loaded", path=str(cert_path))
        else:
            logger.warning(
                "client_certificate_not_found",
                cert_path=str(cert_path),
                key_path=str(key_path),
            )

    context.set_alpn_protocols(["h2", "http/1.1"] if options.http2 else ["http/1.1"])
    return context


def _origin(endpoint: Endpoint) -> httpcore.Origin:
    return httpcore.Origin(
        scheme=endpoint.transport.scheme.encode("ascii"),
        host=endpoint.host.encode("ascii"),
        port=endpoint.port,
    )


def _timeouts(timeout: float | None) -> dict[str, float | None]:
    return {"connect": timeout, "read": timeout, "write": timeout, "pool": timeout}


async def _iter_body(
    receiver: MemoryObjectReceiveStream[bytes],
) -> AsyncIterator[bytes]:
    async with receiver:
        async for chunk in receiver:
            yield chunk


@dataclass(eq=False)
class RequestHandle:
    """An in-flight request on a :class:`TransportConnection`."""

    method: str
    path: str
    task: asyncio.Task[httpcore.Response]
    body_sender: MemoryObjectSendStream[bytes] | None = None
    body_closed: bool = field(default=False)

    @property
    def streaming(self) -> bool:
        return self.body_sender is not None

    async def abort(self) -> None:
        """Close the body channel and cancel the request if still running."""
        if self.body_sender is not None and not self.body_closed:
            self.body_closed = True
            await self.body_sender.aclose()
        if not self.task.done():
            self.task.cancel()
        await asyncio.wait({self.task})
        if not self.task.cancelled():
            # Mark the outcome as retrieved; the caller already has the error
            self.task.exception()


class TransportConnection:
    """One live connection to one endpoint, used by one request at a time."""

    def __init__(
        self,
        endpoint: Endpoint,
        connection: httpcore.AsyncConnectionInterface,
        options: ConnectionOptions,
        *,
        via_proxy: Endpoint | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.options = options
        self.via_proxy = via_proxy
        self._connection = connection
        self._active: RequestHandle | None = None
        self._closed = False
        self._broken = False

    @classmethod
    async def open(
        cls,
        endpoint: Endpoint,
        options: ConnectionOptions,
        *,
        network_backend: httpcore.AsyncNetworkBackend | None = None,
    ) -> TransportConnection:
        """Connect to ``endpoint`` and wait until the handshake completes.

        Raises:
            UpstreamConnectionError: If the endpoint refuses, is unreachable,
                or the TCP/TLS handshake times out.
        """
        backend = network_backend or httpcore.AnyIOBackend()
        stream: httpcore.AsyncNetworkStream | None = None
        try:
            stream = await backend.connect_tcp(
                endpoint.host, endpoint.port, timeout=options.connect_timeout
            )
            if endpoint.transport is Transport.TLS:
                stream = await stream.start_tls(
                    create_ssl_context(options),
                    server_hostname=endpoint.host,
                    timeout=options.connect_timeout,
                )
        except (httpcore.NetworkError, httpcore.TimeoutException) as exc:
            if stream is not None:
                with async_runtime.shielded():
                    await stream.aclose()
            logger.warning(
                "upstream_connection_failed",
                endpoint=str(endpoint),
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise UpstreamConnectionError(
                f"Failed to connect to {endpoint}: {exc}",
                host=endpoint.host,
                port=endpoint.port,
                cause=exc,
            ) from exc

        try:
            connection = cls(endpoint, cls._bind(endpoint, stream, options), options)
        except BaseException:
            with async_runtime.shielded():
                await stream.aclose()
            raise
        logger.debug(
            "upstream_connection_opened",
            endpoint=str(endpoint),
            http_version=connection.http_version,
        )
        return connection

    @staticmethod
    def _bind(
        endpoint: Endpoint,
        stream: httpcore.AsyncNetworkStream,
        options: ConnectionOptions,
    ) -> httpcore.AsyncConnectionInterface:
        ssl_object = stream.get_extra_info("ssl_object")
        if ssl_object is not None and ssl_object.selected_alpn_protocol() == "h2":
            return httpcore.AsyncHTTP2Connection(
                origin=_origin(endpoint),
                stream=stream,
                keepalive_expiry=options.keepalive_expiry,
            )
        return httpcore.AsyncHTTP11Connection(
            origin=_origin(endpoint),
            stream=stream,
            keepalive_expiry=options.keepalive_expiry,
        )

    @property
    def http_version(self) -> str:
        if isinstance(self._connection, httpcore.AsyncHTTP11Connection):
            return "HTTP/1.1"
        return "HTTP/2"

    @property
    def is_closed(self) -> bool:
        return self._closed or self._connection.is_closed()

    @property
    def is_reusable(self) -> bool:
        """Whether the connection can serve another request after this one."""
        return (
            not self._closed
            and not self._broken
            and self._active is None
            and not self._connection.is_closed()
            and not self._connection.has_expired()
        )

    async def tunnel_connect(
        self, target: Endpoint, options: ConnectionOptions
    ) -> None:
        """Turn this proxy connection into a tunnel to ``target``.

        Sends ``CONNECT host:port`` and requires a 200 response without a body.
        On success every later request on this connection reaches ``target``.

        Raises:
            TunnelFailedError: If the proxy answers with another status, a
                body, or the exchange fails.
            UpstreamConnectionError: If the TLS handshake with ``target`` fails.
        """
        proxy = self.endpoint
        authority = f"{target.host}:{target.port}".encode("ascii")
        request = httpcore.Request(
            method=b"CONNECT",
            url=httpcore.URL(
                scheme=proxy.transport.scheme.encode("ascii"),
                host=proxy.host.encode("ascii"),
                port=proxy.port,
                target=authority,
            ),
            headers=[(b"Host", authority)],
            extensions={"timeout": _timeouts(options.connect_timeout)},
        )

        try:
            response = await self._connection.handle_async_request(request)
        except _TRANSPORT_ERRORS as exc:
            await self.aclose()
            raise TunnelFailedError(
                f"Proxy CONNECT to {target} via {proxy} failed: {exc}", cause=exc
            ) from exc

        headers = httpx.Headers(response.headers)
        if response.status != 200 or response_has_body(
            "CONNECT", response.status, headers
        ):
            reason = response.extensions.get("reason_phrase", b"").decode(
                "ascii", errors="ignore"
            )
            logger.warning(
                "tunnel_failed",
                proxy=str(proxy),
                target=str(target),
                status=response.status,
                reason=reason,
            )
            await self.aclose()
            raise TunnelFailedError(
                f"Proxy CONNECT to {target} via {proxy} failed: "
                f"{response.status} {reason}".rstrip(),
                status=response.status,
                reason=reason,
            )

        stream: httpcore.AsyncNetworkStream = response.extensions["network_stream"]
        if target.transport is Transport.TLS:
            try:
                stream = await stream.start_tls(
                    create_ssl_context(options),
                    server_hostname=target.host,
                    timeout=options.connect_timeout,
                )
            except (httpcore.NetworkError, httpcore.TimeoutException) as exc:
                await self.aclose()
                raise UpstreamConnectionError(
                    f"TLS handshake with {target} via {proxy} failed: {exc}",
                    host=target.host,
                    port=target.port,
                    cause=exc,
                ) from exc

        self._connection = self._bind(target, stream, options)
        self.endpoint = target
        self.options = options
        self.via_proxy = proxy
        logger.debug("tunnel_established", proxy=str(proxy), target=str(target))

    def request(
        self,
        method: str,
        path: str,
        headers: HeaderList = (),
        body: bytes | None = None,
        *,
        stream: bool = False,
    ) -> RequestHandle:
        """Issue a request and return its handle without waiting.

        With ``stream=True`` the body is left open and must be written with
        :meth:`stream_chunk`, the last call passing ``is_final=True``.
        Otherwise ``body`` (if any) is sent and the request is finished.

        Raises:
            TransportError: If the connection is closed or already busy.
            InvalidRequestError: If ``path`` contains non-ASCII characters.
        """
        if self._closed:
            raise TransportError(f"Connection to {self.endpoint} is closed")
        if self._active is not None:
            raise TransportError(
                f"Connection to {self.endpoint} already has a request in flight"
            )
        if not path.isascii():
            raise InvalidRequestError(
                f"Request path must be ASCII (percent-encoded): {path!r}"
            )

        content: bytes | AsyncIterator[bytes] | None = None
        sender: MemoryObjectSendStream[bytes] | None = None
        if stream:
            sender, receiver = async_runtime.memory_object_stream()
            content = _iter_body(receiver)
        elif body is not None:
            content = bytes(body)

        raw_request = httpcore.Request(
            method=method.upper().encode("ascii"),
            url=httpcore.URL(
                scheme=self.endpoint.transport.scheme.encode("ascii"),
                host=self.endpoint.host.encode("ascii"),
                port=self.endpoint.port,
                target=path.encode("ascii"),
            ),
            headers=self._prepare_headers(headers, body, stream),
            content=content,
        )
        task = async_runtime.create_task(
            self._send(raw_request), name=f"apipool {method} {path}"
        )
        handle = RequestHandle(
            method=method.upper(), path=path, task=task, body_sender=sender
        )
        self._active = handle
        return handle

    def _prepare_headers(
        self, headers: HeaderList, body: bytes | None, stream: bool
    ) -> list[tuple[bytes, bytes]]:
        prepared = [
            (name.encode("latin-1"), value.encode("latin-1")) for name, value in headers
        ]
        names = {name.lower() for name, _ in prepared}
        if b"host" not in names:
            prepared.insert(0, (b"Host", self.endpoint.authority.encode("ascii")))
        if b"content-length" in names or b"transfer-encoding" in names:
            return prepared
        if stream:
            prepared.append((b"Transfer-Encoding", b"chunked"))
        elif body is not None:
            prepared.append((b"Content-Length", str(len(body)).encode("ascii")))
        return prepared

    async def _send(self, request: httpcore.Request) -> httpcore.Response:
        try:
            return await self._connection.handle_async_request(request)
        except _TRANSPORT_ERRORS as exc:
            self._broken = True
            raise TransportError(
                f"{request.method.decode()} {request.url.target.decode()} "
                f"on {self.endpoint} failed: {exc}",
                cause=exc,
            ) from exc

    async def stream_chunk(
        self, handle: RequestHandle, data: bytes, *, is_final: bool
    ) -> None:
        """Append ``data`` to a streamed request body; ``is_final`` closes it."""
        if handle.body_sender is None or handle.body_closed:
            raise TransportError(
                f"Request body of {handle.method} {handle.path} is not open"
            )
        if handle.task.done():
            self._broken = True
            error = None if handle.task.cancelled() else handle.task.exception()
            raise TransportError(
                f"{handle.method} {handle.path} ended before its body was complete",
                cause=error,
            )

        try:
            if data:
                await handle.body_sender.send(bytes(data))
        except (anyio.BrokenResourceError, anyio.ClosedResourceError) as exc:
            self._broken = True
            raise TransportError(
                f"Request body of {handle.method} {handle.path} was abandoned",
                cause=exc,
            ) from exc

        if is_final:
            handle.body_closed = True
            await handle.body_sender.aclose()

    async def await_response(
        self, handle: RequestHandle, timeout: float | None
    ) -> Response:
        """Wait for the response to ``handle``.

        Headers and body are awaited separately, each within ``timeout``
        seconds. A response framed without a body resolves with ``b""``.

        Raises:
            RequestTimeoutError: If headers or body do not arrive in time.
            TransportError: If the connection fails underneath the request.
        """
        try:
            try:
                with async_runtime.fail_after(timeout):
                    raw = await handle.task
            except async_runtime.TimeoutError as exc:
                raise RequestTimeoutError(
                    f"No response to {handle.method} {handle.path} "
                    f"from {self.endpoint} within {timeout}s",
                    phase="headers",
                    timeout=timeout,
                    cause=exc,
                ) from exc

            headers = httpx.Headers(raw.headers)
            try:
                with async_runtime.fail_after(timeout):
                    # Draining a bodiless response completes the HTTP/1.1
                    # exchange so the connection returns to idle
                    content = await raw.aread()
            except async_runtime.TimeoutError as exc:
                raise RequestTimeoutError(
                    f"Body of {handle.method} {handle.path} from {self.endpoint} "
                    f"not received within {timeout}s",
                    phase="body",
                    timeout=timeout,
                    cause=exc,
                ) from exc
            except _TRANSPORT_ERRORS as exc:
                raise TransportError(
                    f"Reading body of {handle.method} {handle.path} failed: {exc}",
                    cause=exc,
                ) from exc
            finally:
                with async_runtime.shielded():
                    await raw.aclose()
        except BaseException:
            self._broken = True
            raise

        self._active = None
        body = content if response_has_body(handle.method, raw.status, headers) else b""
        return Response(status=raw.status, headers=headers, body=body)

    async def aclose(self) -> None:
        """Abort any in-flight request and close the network stream."""
        if self._closed:
            return
        self._closed = True

        handle, self._active = self._active, None
        with async_runtime.shielded():
            if handle is not None:
                await handle.abort()
            try:
                await self._connection.aclose()
            except _TRANSPORT_ERRORS as exc:
                logger.debug(
                    "upstream_connection_close_failed",
                    endpoint=str(self.endpoint),
                    error=str(exc),
                )
        logger.debug("upstream_connection_closed", endpoint=str(self.endpoint))

    def __repr__(self) -> str:
        via = f" via {self.via_proxy}" if self.via_proxy else ""
        return f"<TransportConnection {self.endpoint}{via}>"


async def open_connection(
    endpoint: Endpoint | str,
    options: ConnectionOptions,
    *,
    network_backend: httpcore.AsyncNetworkBackend | None = None,
) -> TransportConnection:
    """Open a direct connection to ``endpoint`` (a URI or parsed endpoint)."""
    if isinstance(endpoint, str):
        endpoint = parse_endpoint(endpoint)
    return await TransportConnection.open(
        endpoint, options, network_backend=network_backend
    )


async def open_upstream(
    settings: Settings,
    *,
    network_backend: httpcore.AsyncNetworkBackend | None = None,
) -> TransportConnection:
    """Open a connection to the configured API, through the proxy if one is set."""
    target = parse_endpoint(settings.api_server_endpoint)
    if settings.api_proxy_server_endpoint is None:
        return await TransportConnection.open(
            target, settings.api_server_conn_opts, network_backend=network_backend
        )

    connection = await open_connection(
        settings.api_proxy_server_endpoint,
        settings.api_proxy_server_conn_opts,
        network_backend=network_backend,
    )
    try:
        await connection.tunnel_connect(target, settings.api_server_conn_opts)
    except BaseException:
        await connection.aclose()
        raise
    return connection


__all__ = [
    "RequestHandle",
    "TransportConnection",
    "create_ssl_context",
    "open_connection",
    "open_upstream",
    "response_has_body",
]
