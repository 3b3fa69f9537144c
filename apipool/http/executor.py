"""GET/POST on top of pooled connections.

Every call checks a connection out, issues the request, awaits the response
and checks the connection back in exactly once. The connection is reported
unhealthy whenever the call raises, and the raised exception reaches the
caller unchanged after the connection has been returned.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

from apipool.core.errors import InvalidRequestError
from apipool.core.logging import get_logger
from apipool.http.models import (
    FormBody,
    HeaderList,
    JsonBody,
    MultipartBody,
    MultipartPart,
    RequestBody,
    Response,
)
from apipool.http.multipart import MULTIPART_FORM_DATA, MultipartStreamEncoder


if TYPE_CHECKING:
    from apipool.http.connection import TransportConnection
    from apipool.http.pool import ConnectionPool


logger = get_logger(__name__)

DEFAULT_TIMEOUT = 5.0


def encode_form(fields: Mapping[str, str]) -> bytes:
    """Serialize ``fields`` as ``application/x-www-form-urlencoded``."""
    return urlencode(list(fields.items())).encode("ascii")


def encode_json(value: Any) -> bytes:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def encode_raw(body: Any) -> bytes:
    """Flatten a bytes-like body, or a sequence of bytes chunks, to bytes."""
    if isinstance(body, bytes | bytearray | memoryview):
        return bytes(body)
    if isinstance(body, Sequence) and not isinstance(body, str):
        if all(isinstance(chunk, bytes | bytearray | memoryview) for chunk in body):
            return b"".join(body)
    raise InvalidRequestError(f"Unsupported request body type: {type(body).__name__}")


def with_multipart_content_type(
    headers: HeaderList, content_type: str
) -> list[tuple[str, str]]:
    """Replace the bare ``multipart/form-data`` content-type with ``content_type``.

    The rewritten header goes first; the order of the others is kept.

    Raises:
        InvalidRequestError: If there is no content-type header or its value
            is not exactly ``multipart/form-data``.
    """
    for index, (name, value) in enumerate(headers):
        if name.lower() != "content-type":
            continue
        if value != MULTIPART_FORM_DATA:
            raise InvalidRequestError(
                f"Multipart body requires content-type {MULTIPART_FORM_DATA!r}, "
                f"got {value!r}"
            )
        rest = [*headers[:index], *headers[index + 1 :]]
        return [("content-type", content_type), *rest]

    raise InvalidRequestError(
        f"Multipart body requires a content-type header of {MULTIPART_FORM_DATA!r}"
    )


class RequestExecutor:
    """Runs requests on connections leased from a :class:`ConnectionPool`."""

    def __init__(
        self,
        pool: ConnectionPool,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        checkout_timeout: float | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            pool: Pool the connections are leased from
            timeout: Seconds to wait for response headers, and again for the body
            checkout_timeout: Seconds to wait for a free connection
                (defaults to the pool's own checkout timeout)
        """
        self.pool = pool
        self.timeout = timeout
        self.checkout_timeout = checkout_timeout

    @asynccontextmanager
    async def _connection(
        self, method: str, path: str
    ) -> AsyncIterator[TransportConnection]:
        async with self.pool.lease(self.checkout_timeout) as member:
            try:
                yield member.connection
            except Exception as exc:
                logger.warning(
                    "upstream_request_failed",
                    method=method,
                    path=path,
                    member=member.member_id,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                raise

    async def get(self, path: str) -> Response:
        """Plain GET without extra headers or body."""
        async with self._connection("GET", path) as connection:
            handle = connection.request("GET", path)
            return await connection.await_response(handle, self.timeout)

    async def post(
        self, path: str, headers: HeaderList = (), body: RequestBody = b""
    ) -> Response:
        """POST ``body``, encoded according to its kind.

        Raw bytes are sent as-is, :class:`FormBody` is url-encoded,
        :class:`JsonBody` is serialized to JSON and :class:`MultipartBody` is
        streamed part by part (``headers`` must then carry
        ``content-type: multipart/form-data``).
        """
        if isinstance(body, FormBody):
            return await self.post(path, headers, encode_form(body.fields))
        if isinstance(body, JsonBody):
            return await self.post(path, headers, encode_json(body.value))
        if isinstance(body, MultipartBody):
            return await self._post_multipart(path, headers, body.parts)

        payload = encode_raw(body)
        async with self._connection("POST", path) as connection:
            handle = connection.request("POST", path, headers, payload)
            return await connection.await_response(handle, self.timeout)

    async def _post_multipart(
        self, path: str, headers: HeaderList, parts: Sequence[MultipartPart]
    ) -> Response:
        encoder = MultipartStreamEncoder()
        request_headers = with_multipart_content_type(headers, encoder.content_type)

        async with self._connection("POST", path) as connection:
            handle = connection.request("POST", path, request_headers, stream=True)
            await encoder.stream(connection, handle, parts)
            return await connection.await_response(handle, self.timeout)
