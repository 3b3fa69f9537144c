"""Abstraction layer for the async primitives used by the pool and transport.

The helpers lean on ``anyio`` for timeouts, cancellation shielding and
in-memory channels while request issuance still runs on ``asyncio`` tasks, so
callers import these utilities from this module only.
"""

from __future__ import annotations

import asyncio
import math
from builtins import TimeoutError as BuiltinTimeoutError
from collections.abc import Coroutine
from contextlib import AbstractContextManager
from os import PathLike
from typing import Any, TypeVar

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream


_T = TypeVar("_T")


class AsyncRuntime:
    """Facade around the active async backend."""

    TimeoutError = BuiltinTimeoutError

    def create_task(
        self,
        coro: Coroutine[Any, Any, _T],
        *,
        name: str | None = None,
    ) -> asyncio.Task[_T]:
        """Create a background task using the active runtime."""
        return asyncio.create_task(coro, name=name)

    def fail_after(
        self, timeout: float | None
    ) -> AbstractContextManager[anyio.CancelScope]:
        """Return a scope raising ``TimeoutError`` once ``timeout`` elapses."""
        return anyio.fail_after(timeout)

    def shielded(self) -> anyio.CancelScope:
        """Return a cancel scope that outside cancellation cannot interrupt."""
        return anyio.CancelScope(shield=True)

    def create_semaphore(self, value: int) -> anyio.Semaphore:
        """Return a new semaphore instance."""
        return anyio.Semaphore(value)

    def memory_object_stream(
        self, max_buffer_size: float = math.inf
    ) -> tuple[MemoryObjectSendStream[bytes], MemoryObjectReceiveStream[bytes]]:
        """Return connected send/receive streams for in-memory byte chunks."""
        return anyio.create_memory_object_stream[bytes](max_buffer_size)

    async def read_file_bytes(self, path: str | PathLike[str]) -> bytes:
        """Read a whole file without blocking the event loop."""
        return await anyio.Path(path).read_bytes()


runtime = AsyncRuntime()


def create_task(
    coro: Coroutine[Any, Any, _T],
    *,
    name: str | None = None,
) -> asyncio.Task[_T]:
    """Proxy helper for ``AsyncRuntime.create_task``."""
    return runtime.create_task(coro, name=name)


def fail_after(timeout: float | None) -> AbstractContextManager[anyio.CancelScope]:
    """Return a runtime-managed deadline scope."""
    return runtime.fail_after(timeout)


def shielded() -> anyio.CancelScope:
    """Return a runtime-managed shielded cancel scope."""
    return runtime.shielded()


def create_semaphore(value: int) -> anyio.Semaphore:
    """Return a runtime-managed semaphore."""
    return runtime.create_semaphore(value)


def memory_object_stream(
    max_buffer_size: float = math.inf,
) -> tuple[MemoryObjectSendStream[bytes], MemoryObjectReceiveStream[bytes]]:
    """Return runtime-managed memory object streams."""
    return runtime.memory_object_stream(max_buffer_size)


async def read_file_bytes(path: str | PathLike[str]) -> bytes:
    """Read a whole file via the runtime."""
    return await runtime.read_file_bytes(path)


TimeoutError = AsyncRuntime.TimeoutError
