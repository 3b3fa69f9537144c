"""Streaming ``multipart/form-data`` encoder.

Parts are framed the way they go on the wire::

    \\r\\n--<boundary>\\r\\n
    content-disposition: form-data; name="field"\\r\\n
    <extra headers>\\r\\n
    \\r\\n
    <payload>

and the body ends with ``\\r\\n--<boundary>--\\r\\n``. Each part is written as
one non-final chunk, the closing delimiter as the final one.
"""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING

from apipool.core import async_runtime
from apipool.core.errors import FileReadError
from apipool.core.logging import get_logger
from apipool.http.models import (
    Disposition,
    FieldPart,
    FilePart,
    HeaderList,
    InlinePart,
    MultipartPart,
)


if TYPE_CHECKING:
    from collections.abc import Sequence

    from apipool.http.connection import RequestHandle, TransportConnection


logger = get_logger(__name__)

MULTIPART_FORM_DATA = "multipart/form-data"

# 48 random bytes render as 64 URL-safe characters
_BOUNDARY_ENTROPY = 48


def generate_boundary() -> str:
    """Return a fresh random boundary token."""
    return secrets.token_urlsafe(_BOUNDARY_ENTROPY)


def encode_disposition(disposition: Disposition) -> str:
    return disposition.encode()


def part_delimiter(boundary: str, headers: HeaderList) -> bytes:
    """Delimiter plus header block that precedes a part's payload."""
    lines = [f"\r\n--{boundary}\r\n"]
    lines.extend(f"{name}: {value}\r\n" for name, value in headers)
    lines.append("\r\n")
    return "".join(lines).encode("utf-8")


def closing_delimiter(boundary: str) -> bytes:
    return f"\r\n--{boundary}--\r\n".encode("ascii")


class MultipartStreamEncoder:
    """Frames an ordered list of parts under one boundary."""

    def __init__(self, boundary: str | None = None) -> None:
        self.boundary = boundary or generate_boundary()

    @property
    def content_type(self) -> str:
        return f"{MULTIPART_FORM_DATA};boundary={self.boundary}"

    async def encode_part(self, part: MultipartPart) -> bytes:
        """Return the framed chunk for one part.

        Raises:
            FileReadError: If a file part cannot be read.
        """
        if isinstance(part, FilePart):
            try:
                payload = await async_runtime.read_file_bytes(part.path)
            except OSError as exc:
                raise FileReadError(
                    f"Cannot read multipart file {part.path}: {exc}",
                    path=part.path,
                    cause=exc,
                ) from exc
            headers = [("content-disposition", encode_disposition(part.disposition))]
            headers.extend(part.headers)
        elif isinstance(part, InlinePart):
            payload = part.payload
            headers = [("content-disposition", encode_disposition(part.disposition))]
            headers.extend(part.headers)
        elif isinstance(part, FieldPart):
            payload = part.value
            disposition = Disposition("form-data", [("name", part.name)])
            headers = [("content-disposition", encode_disposition(disposition))]
        else:
            raise TypeError(f"Unsupported multipart part: {part!r}")

        return part_delimiter(self.boundary, headers) + bytes(payload)

    async def stream(
        self,
        connection: TransportConnection,
        handle: RequestHandle,
        parts: Sequence[MultipartPart],
    ) -> None:
        """Write every part, then the closing delimiter, onto ``handle``.

        A failure leaves the request body truncated; the connection must not
        be reused afterwards.
        """
        for part in parts:
            chunk = await self.encode_part(part)
            await connection.stream_chunk(handle, chunk, is_final=False)
        await connection.stream_chunk(
            handle, closing_delimiter(self.boundary), is_final=True
        )
        logger.debug(
            "multipart_body_streamed",
            path=handle.path,
            parts=len(parts),
        )
