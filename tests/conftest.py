"""Shared test fixtures for apipool tests.

Fixtures keep every test isolated from the developer's environment: no
``APIPOOL__*`` variables, no ``.env`` file and no config file leak in.
"""

import os
from collections.abc import Callable, Iterator
from functools import partial
from pathlib import Path
from typing import Any

import pytest

from apipool.config.settings import (
    CONFIG_FILE_ENV,
    ENV_PREFIX,
    ConnectionOptions,
    Settings,
    get_settings,
)
from apipool.http.connection import open_connection
from apipool.http.pool import ConnectionPool
from tests.helpers.network import ScriptedBackend, ScriptedStream, http_response


API_ENDPOINT = "http://api.test:8080"


@pytest.fixture(autouse=True)
def isolated_environment(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> Iterator[None]:
    """Drop apipool variables from the environment and work in an empty dir."""
    for key in list(os.environ):
        if key.upper().startswith(ENV_PREFIX) or key == CONFIG_FILE_ENV:
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    """Build settings for the test upstream with keyword overrides."""

    def factory(**overrides: Any) -> Settings:
        values: dict[str, Any] = {"api_server_endpoint": API_ENDPOINT}
        values.update(overrides)
        return Settings(**values)

    return factory


@pytest.fixture
def settings(make_settings: Callable[..., Settings]) -> Settings:
    return make_settings()


@pytest.fixture
def ok_backend() -> ScriptedBackend:
    """Backend whose connections answer two requests with ``200 ok``."""
    return ScriptedBackend(
        lambda: ScriptedStream([http_response(body=b"ok"), http_response(body=b"ok")])
    )


@pytest.fixture
def make_pool() -> Callable[..., ConnectionPool]:
    """Build an unstarted pool whose members connect through ``backend``."""

    def factory(backend: ScriptedBackend, **kwargs: Any) -> ConnectionPool:
        connect: Callable[[], Any] = partial(
            open_connection,
            API_ENDPOINT,
            ConnectionOptions(),
            network_backend=backend,
        )
        kwargs.setdefault("max_count", 2)
        return ConnectionPool("test", connect, **kwargs)

    return factory

