"""Value types exchanged between the executor, transport and encoder."""

from __future__ import annotations

import json as jsonlib
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from os import PathLike
from typing import Any, TypeAlias

import httpx


class Transport(str, Enum):
    """Connection transport selected by the endpoint scheme."""

    PLAIN = "plain"
    TLS = "tls"

    @property
    def scheme(self) -> str:
        return "https" if self is Transport.TLS else "http"

    @property
    def default_port(self) -> int:
        return 443 if self is Transport.TLS else 80


@dataclass(frozen=True)
class Endpoint:
    """A connectable upstream: transport, host and port."""

    transport: Transport
    host: str
    port: int

    @property
    def authority(self) -> str:
        """Host header value, omitting the scheme's default port."""
        if self.port == self.transport.default_port:
            return self.host
        return f"{self.host}:{self.port}"

    def __str__(self) -> str:
        return f"{self.transport.scheme}://{self.host}:{self.port}"


HeaderList: TypeAlias = Sequence[tuple[str, str]]


@dataclass(frozen=True)
class Disposition:
    """``content-disposition`` type plus ordered parameters."""

    type: str
    params: Sequence[tuple[str, str]] = ()

    def encode(self) -> str:
        """Render as ``<type>; key="value"...``.

        Values are emitted verbatim: quotes and backslashes are not escaped.
        """
        return self.type + "".join(f'; {key}="{value}"' for key, value in self.params)


@dataclass(frozen=True)
class FilePart:
    """Multipart part whose payload is the full content of a file."""

    path: str | PathLike[str]
    disposition: Disposition
    headers: HeaderList = ()


@dataclass(frozen=True)
class InlinePart:
    """Multipart part with an in-memory payload and explicit disposition."""

    name: str
    payload: bytes
    disposition: Disposition
    headers: HeaderList = ()


@dataclass(frozen=True)
class FieldPart:
    """Simple ``form-data`` field."""

    name: str
    value: bytes


MultipartPart: TypeAlias = FilePart | InlinePart | FieldPart


@dataclass(frozen=True)
class FormBody:
    """Key/value pairs sent as ``application/x-www-form-urlencoded``."""

    fields: Mapping[str, str]


@dataclass(frozen=True)
class JsonBody:
    """Any JSON-serializable value."""

    value: Any


@dataclass(frozen=True)
class MultipartBody:
    """Ordered multipart parts streamed as ``multipart/form-data``."""

    parts: Sequence[MultipartPart]


RawBody: TypeAlias = bytes | bytearray | memoryview | Sequence[bytes]
RequestBody: TypeAlias = RawBody | FormBody | JsonBody | MultipartBody


@dataclass
class Response:
    """Status, ordered headers and the full body of an upstream response."""

    status: int
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: bytes = b""

    @property
    def is_success(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        return jsonlib.loads(self.body)
