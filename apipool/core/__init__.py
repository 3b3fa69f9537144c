"""Core abstractions shared by the pool, transport and executor."""

from apipool.core.errors import (
    ApiPoolError,
    ConfigurationError,
    FileReadError,
    InvalidRequestError,
    MalformedEndpointError,
    PoolError,
    PoolUnavailableError,
    RequestTimeoutError,
    TransportError,
    TunnelFailedError,
    UpstreamConnectionError,
)


__all__ = [
    "ApiPoolError",
    "ConfigurationError",
    "FileReadError",
    "InvalidRequestError",
    "MalformedEndpointError",
    "PoolError",
    "PoolUnavailableError",
    "RequestTimeoutError",
    "TransportError",
    "TunnelFailedError",
    "UpstreamConnectionError",
]
