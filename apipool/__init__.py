"""Pooled, keep-alive client for a single upstream HTTP API."""

from apipool.client import (
    UpstreamClient,
    get,
    open_upstream,
    pool_context,
    post,
    start_pool,
    stop_pool,
)
from apipool.config import Settings
from apipool.core.errors import (
    ApiPoolError,
    PoolUnavailableError,
    RequestTimeoutError,
    TransportError,
    TunnelFailedError,
    UpstreamConnectionError,
)
from apipool.http.models import (
    Disposition,
    FieldPart,
    FilePart,
    FormBody,
    InlinePart,
    JsonBody,
    MultipartBody,
    Response,
)


__version__ = "0.1.0"

__all__ = [
    "ApiPoolError",
    "Disposition",
    "FieldPart",
    "FilePart",
    "FormBody",
    "InlinePart",
    "JsonBody",
    "MultipartBody",
    "PoolUnavailableError",
    "RequestTimeoutError",
    "Response",
    "Settings",
    "TransportError",
    "TunnelFailedError",
    "UpstreamClient",
    "UpstreamConnectionError",
    "get",
    "open_upstream",
    "pool_context",
    "post",
    "start_pool",
    "stop_pool",
]
