"""Tests for settings loading from keywords, environment and TOML files."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from apipool.config.settings import CONFIG_FILE_ENV, Settings, get_settings
from apipool.core.errors import ConfigurationError


def write_config(path: Path, content: str) -> Path:
    path.write_text(content, encoding="utf-8")
    return path


@pytest.mark.unit
def test_defaults() -> None:
    settings = Settings(api_server_endpoint="https://api.example.com")

    assert settings.api_proxy_server_endpoint is None
    assert settings.keepalive_pool.name == "apipool"
    assert settings.keepalive_pool.max_count == 10
    assert settings.keepalive_pool.init_count == 0
    assert settings.http_timeout == 5000
    assert settings.http_timeout_seconds == 5.0
    assert settings.api_server_conn_opts.verify is True
    assert settings.logging.level == "INFO"


@pytest.mark.unit
def test_api_server_endpoint_is_required() -> None:
    with pytest.raises(ValidationError):
        Settings()  # type: ignore[call-arg]


@pytest.mark.unit
@pytest.mark.parametrize(
    "field", ["api_server_endpoint", "api_proxy_server_endpoint"]
)
def test_malformed_endpoints_are_rejected(field: str) -> None:
    values = {"api_server_endpoint": "https://api.example.com", field: "ftp://nope"}

    with pytest.raises(ValidationError, match="Unsupported endpoint scheme"):
        Settings(**values)


@pytest.mark.unit
def test_init_count_cannot_exceed_max_count() -> None:
    with pytest.raises(ValidationError, match="init_count"):
        Settings(
            api_server_endpoint="https://api.example.com",
            keepalive_pool={"max_count": 2, "init_count": 3},
        )


@pytest.mark.unit
def test_log_level_is_normalized_and_validated() -> None:
    settings = Settings(
        api_server_endpoint="https://api.example.com", logging={"level": "debug"}
    )
    assert settings.logging.level == "DEBUG"

    with pytest.raises(ValidationError, match="Invalid log level"):
        Settings(
            api_server_endpoint="https://api.example.com", logging={"level": "loud"}
        )


@pytest.mark.unit
def test_environment_with_prefix_and_nested_delimiter(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("APIPOOL__API_SERVER_ENDPOINT", "https://env.example.com")
    monkeypatch.setenv("APIPOOL__KEEPALIVE_POOL__MAX_COUNT", "4")
    monkeypatch.setenv("APIPOOL__API_SERVER_CONN_OPTS__VERIFY", "false")
    monkeypatch.setenv("APIPOOL__HTTP_TIMEOUT", "2500")

    settings = Settings()  # type: ignore[call-arg]

    assert settings.api_server_endpoint == "https://env.example.com"
    assert settings.keepalive_pool.max_count == 4
    assert settings.api_server_conn_opts.verify is False
    assert settings.http_timeout_seconds == 2.5


@pytest.mark.unit
def test_from_config_reads_toml(tmp_path: Path) -> None:
    config = write_config(
        tmp_path / "apipool.toml",
        """
api_server_endpoint = "https://toml.example.com:8443"
api_proxy_server_endpoint = "http://proxy.example.com:3128"
http_timeout = 750

[keepalive_pool]
name = "billing"
max_count = 3
init_count = 1

[api_server_conn_opts]
http2 = true
""",
    )

    settings = Settings.from_config(config)

    assert settings.api_server_endpoint == "https://toml.example.com:8443"
    assert settings.api_proxy_server_endpoint == "http://proxy.example.com:3128"
    assert settings.keepalive_pool.name == "billing"
    assert settings.keepalive_pool.init_count == 1
    assert settings.api_server_conn_opts.http2 is True
    assert settings.http_timeout_seconds == 0.75


@pytest.mark.unit
def test_environment_wins_over_toml(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    config = write_config(
        tmp_path / "apipool.toml",
        """
api_server_endpoint = "https://toml.example.com"
http_timeout = 750

[keepalive_pool]
max_count = 3
""",
    )
    monkeypatch.setenv("APIPOOL__HTTP_TIMEOUT", "9000")
    monkeypatch.setenv("APIPOOL__KEEPALIVE_POOL__MAX_COUNT", "7")

    settings = Settings.from_config(config)

    assert settings.api_server_endpoint == "https://toml.example.com"
    assert settings.http_timeout == 9000
    assert settings.keepalive_pool.max_count == 7


@pytest.mark.unit
def test_dotenv_file_wins_over_toml(tmp_path: Path) -> None:
    config = write_config(
        tmp_path / "apipool.toml",
        """
api_server_endpoint = "https://toml.example.com"
http_timeout = 750

[keepalive_pool]
max_count = 3
""",
    )
    write_config(
        tmp_path / ".env",
        "APIPOOL__HTTP_TIMEOUT=9000\nAPIPOOL__KEEPALIVE_POOL__MAX_COUNT=7\n",
    )

    settings = Settings.from_config(config)

    assert settings.api_server_endpoint == "https://toml.example.com"
    assert settings.http_timeout == 9000
    assert settings.keepalive_pool.max_count == 7


@pytest.mark.unit
def test_keyword_overrides_win_over_everything(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    config = write_config(
        tmp_path / "apipool.toml", 'api_server_endpoint = "https://toml.example.com"\n'
    )
    monkeypatch.setenv("APIPOOL__API_SERVER_ENDPOINT", "https://env.example.com")

    settings = Settings.from_config(
        config, api_server_endpoint="https://kw.example.com"
    )

    assert settings.api_server_endpoint == "https://kw.example.com"


@pytest.mark.unit
def test_config_file_from_environment_variable(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    config = write_config(
        tmp_path / "custom.toml", 'api_server_endpoint = "http://file.example.com"\n'
    )
    monkeypatch.setenv(CONFIG_FILE_ENV, str(config))

    assert get_settings().api_server_endpoint == "http://file.example.com"
    assert get_settings() is get_settings()


@pytest.mark.unit
def test_missing_config_file_raises(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="Cannot read"):
        Settings.from_config(tmp_path / "absent.toml")


@pytest.mark.unit
def test_invalid_toml_raises(tmp_path: Path) -> None:
    config = write_config(tmp_path / "broken.toml", "api_server_endpoint = \n")

    with pytest.raises(ConfigurationError, match="Invalid TOML") as exc_info:
        Settings.from_config(config)

    assert exc_info.value.cause is not None
