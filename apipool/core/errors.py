"""Core error types for the pooled upstream client."""

from __future__ import annotations

from pathlib import Path


class ApiPoolError(Exception):
    """Base exception for all pooled client errors."""

    def __init__(self, message: str, cause: BaseException | None = None):
        """Initialize with a message and optional cause.

        Args:
            message: The error message
            cause: The underlying exception that caused this error
        """
        super().__init__(message)
        self.cause = cause
        if cause:
            self.__cause__ = cause


class ConfigurationError(ApiPoolError):
    """Raised when configuration loading or validation fails."""


class MalformedEndpointError(ApiPoolError, ValueError):
    """Raised when an endpoint URI cannot be parsed."""

    def __init__(self, message: str, uri: str | None = None):
        super().__init__(message)
        self.uri = uri


class UpstreamConnectionError(ApiPoolError):
    """Raised when a connection to an endpoint cannot be established."""

    def __init__(
        self,
        message: str,
        host: str | None = None,
        port: int | None = None,
        cause: BaseException | None = None,
    ):
        """Initialize with a message, target address, and cause.

        Args:
            message: The error message
            host: The host that failed to connect
            port: The port that failed to connect
            cause: The underlying exception
        """
        super().__init__(message, cause)
        self.host = host
        self.port = port


class TunnelFailedError(ApiPoolError):
    """Raised when a proxy CONNECT does not end in a clean 200 response."""

    def __init__(
        self,
        message: str,
        status: int | None = None,
        reason: str = "",
        cause: BaseException | None = None,
    ):
        super().__init__(message, cause)
        self.status = status
        self.reason = reason


class PoolError(ApiPoolError):
    """Raised when the checkout/checkin protocol is misused."""


class PoolUnavailableError(ApiPoolError):
    """Raised when no pool member became available within the checkout wait."""

    def __init__(
        self,
        message: str,
        pool_name: str | None = None,
        timeout: float | None = None,
    ):
        super().__init__(message)
        self.pool_name = pool_name
        self.timeout = timeout


class TransportError(ApiPoolError):
    """Connection-level failure of an in-flight request."""


class RequestTimeoutError(ApiPoolError, TimeoutError):
    """Raised when awaiting response headers or body exceeds the timeout."""

    def __init__(
        self,
        message: str,
        phase: str,
        timeout: float | None = None,
        cause: BaseException | None = None,
    ):
        """Initialize with a message, the awaited phase, and timeout value.

        Args:
            message: The error message
            phase: Either ``"headers"`` or ``"body"``
            timeout: The timeout value in seconds
            cause: The underlying exception
        """
        super().__init__(message, cause)
        self.phase = phase
        self.timeout = timeout


class FileReadError(ApiPoolError):
    """Raised when a file-backed multipart part cannot be read."""

    def __init__(
        self, message: str, path: str | Path, cause: BaseException | None = None
    ):
        super().__init__(message, cause)
        self.path = path


class InvalidRequestError(ApiPoolError, ValueError):
    """Raised when a request cannot be built from the given arguments."""


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
