"""HTTP layer: endpoints, transport connections, pooling and request execution."""

from apipool.http.connection import (
    RequestHandle,
    TransportConnection,
    open_connection,
    open_upstream,
    response_has_body,
)
from apipool.http.endpoint import parse_endpoint
from apipool.http.executor import RequestExecutor
from apipool.http.models import (
    Disposition,
    Endpoint,
    FieldPart,
    FilePart,
    FormBody,
    InlinePart,
    JsonBody,
    MultipartBody,
    Response,
    Transport,
)
from apipool.http.multipart import MultipartStreamEncoder
from apipool.http.pool import ConnectionPool, PooledConnection, PoolStats


__all__ = [
    "ConnectionPool",
    "Disposition",
    "Endpoint",
    "FieldPart",
    "FilePart",
    "FormBody",
    "InlinePart",
    "JsonBody",
    "MultipartBody",
    "MultipartStreamEncoder",
    "PoolStats",
    "PooledConnection",
    "RequestExecutor",
    "RequestHandle",
    "Response",
    "Transport",
    "TransportConnection",
    "open_connection",
    "open_upstream",
    "parse_endpoint",
    "response_has_body",
]
