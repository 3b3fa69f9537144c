import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from apipool.core.errors import ConfigurationError
from apipool.core.logging import get_logger
from apipool.http.endpoint import parse_endpoint


__all__ = [
    "ConnectionOptions",
    "LoggingSettings",
    "PoolSettings",
    "Settings",
    "get_settings",
]

ENV_PREFIX = "APIPOOL__"
CONFIG_FILE_ENV = "APIPOOL_CONFIG_FILE"


class ConnectionOptions(BaseModel):
    """Options applied when opening one transport connection."""

    connect_timeout: float = Field(
        default=10.0, gt=0, description="TCP/TLS handshake timeout in seconds"
    )
    verify: bool = Field(default=True, description="Enable TLS verification")
    ca_bundle: str | None = Field(default=None, description="Path to CA bundle file")
    client_cert: str | None = Field(
        default=None, description="Path to client certificate file"
    )
    client_key: str | None = Field(default=None, description="Path to client key file")
    http2: bool = Field(
        default=False, description="Offer HTTP/2 via ALPN on TLS connections"
    )
    keepalive_expiry: float | None = Field(
        default=None, description="Idle seconds after which the connection expires"
    )


class PoolSettings(BaseModel):
    """Bounds of the keep-alive connection pool."""

    name: str = Field(default="apipool", description="Pool identifier used in logs")
    max_count: int = Field(default=10, ge=1, description="Maximum live connections")
    init_count: int = Field(
        default=0, ge=0, description="Connections opened when the pool starts"
    )
    checkout_timeout: float = Field(
        default=5.0, gt=0, description="Seconds to wait for a free connection"
    )

    @model_validator(mode="after")
    def check_bounds(self) -> "PoolSettings":
        if self.init_count > self.max_count:
            raise ValueError(
                f"init_count ({self.init_count}) cannot exceed max_count ({self.max_count})"
            )
        return self


class LoggingSettings(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    json_logs: bool = Field(default=False, description="Render logs as JSON")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        upper_v = v.upper()
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if upper_v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper_v


class Settings(BaseSettings):
    """
    Configuration of the pooled upstream client.

    Settings are loaded from environment variables (prefix ``APIPOOL__``),
    a .env file, and optionally a TOML file passed to :meth:`from_config`.
    Environment variables take precedence over TOML values.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )

    api_server_endpoint: str = Field(
        description="Upstream API endpoint, e.g. https://api.example.com",
    )
    api_server_conn_opts: ConnectionOptions = Field(
        default_factory=ConnectionOptions,
        description="Connection options for the upstream API",
    )
    api_proxy_server_endpoint: str | None = Field(
        default=None,
        description="Optional forward proxy reached with HTTP CONNECT",
    )
    api_proxy_server_conn_opts: ConnectionOptions = Field(
        default_factory=ConnectionOptions,
        description="Connection options for the forward proxy",
    )
    keepalive_pool: PoolSettings = Field(
        default_factory=PoolSettings,
        description="Connection pool bounds",
    )
    http_timeout: int = Field(
        default=5000,
        gt=0,
        description="Response await timeout in milliseconds",
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Logging configuration",
    )

    @field_validator("api_server_endpoint", "api_proxy_server_endpoint")
    @classmethod
    def validate_endpoint(cls, v: str | None) -> str | None:
        if v is not None:
            parse_endpoint(v)
        return v

    @property
    def http_timeout_seconds(self) -> float:
        return self.http_timeout / 1000

    @classmethod
    def load_toml_config(cls, toml_path: Path) -> dict[str, Any]:
        """Load configuration from a TOML file."""
        try:
            with toml_path.open("rb") as f:
                return tomllib.load(f)
        except OSError as e:
            raise ConfigurationError(
                f"Cannot read TOML config file {toml_path}: {e}", cause=e
            ) from e
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(
                f"Invalid TOML syntax in {toml_path}: {e}", cause=e
            ) from e

    @classmethod
    def _environment_keys(cls) -> set[str]:
        keys = {key.upper() for key in os.environ}
        env_file = cls.model_config.get("env_file")
        if isinstance(env_file, str | Path) and Path(env_file).is_file():
            encoding = cls.model_config.get("env_file_encoding")
            dotenv = dotenv_values(env_file, encoding=encoding)
            keys.update(key.upper() for key in dotenv)
        return keys

    @classmethod
    def from_config(
        cls,
        config_path: Path | str | None = None,
        **kwargs: Any,
    ) -> "Settings":
        """Create Settings from a TOML file, the environment and overrides."""
        if config_path is None:
            config_path_env = os.environ.get(CONFIG_FILE_ENV)
            if config_path_env:
                config_path = Path(config_path_env)

        if isinstance(config_path, str):
            config_path = Path(config_path)

        config_data: dict[str, Any] = {}
        if config_path is not None:
            config_data = cls.load_toml_config(config_path)
            logger.info("config_file_loaded", path=str(config_path))

        # Keys set in the environment or the dotenv file win over the TOML file
        env_keys = cls._environment_keys()
        file_values = {
            key: value
            for key, value in config_data.items()
            if not any(
                env_key == f"{ENV_PREFIX}{key.upper()}"
                or env_key.startswith(f"{ENV_PREFIX}{key.upper()}__")
                for env_key in env_keys
            )
        }

        return cls(**{**file_values, **kwargs})


logger = get_logger(__name__)


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings loaded once from the environment and config file."""
    return Settings.from_config()
