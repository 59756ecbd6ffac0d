"""Configuration loading for the RCON client."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from srcrcon.client import DEFAULT_PORT
from srcrcon.errors import RconError

if TYPE_CHECKING:
    from collections.abc import Mapping

CONFIG_DIR = Path.home() / ".config" / "srcrcon"
CONFIG_FILE = CONFIG_DIR / "config.toml"
HISTORY_FILE = CONFIG_DIR / "history"


class ConfigError(RconError):
    """Raised when the configuration file is malformed."""


@dataclass(frozen=True)
class ServerConfig:
    """Configuration for a single game server."""

    name: str
    host: str
    port: int = DEFAULT_PORT
    password: str | None = field(default=None, repr=False)
    password_env: str | None = None
    timeout: float | None = None

    def resolve_password(
        self, environ: Mapping[str, str] | None = None
    ) -> str | None:
        """Return the effective password.

        The environment variable named by password_env wins over a literal
        password; None means the server needs no authentication.
        """
        if environ is None:
            environ = os.environ
        if self.password_env and environ.get(self.password_env):
            return environ[self.password_env]
        return self.password


@dataclass(frozen=True)
class AppConfig:
    """Top-level application configuration."""

    default_server: str | None = None
    servers: dict[str, ServerConfig] = field(default_factory=dict)


def load_config(path: Path = CONFIG_FILE) -> AppConfig:
    """Load and parse the configuration file.

    Returns an empty configuration if no config file exists.
    """
    if not path.exists():
        return AppConfig()

    try:
        with path.open("rb") as f:
            raw = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        msg = f"Invalid TOML in {path}: {e}"
        raise ConfigError(msg) from e

    defaults = raw.get("defaults", {})
    servers: dict[str, ServerConfig] = {}
    for key, val in raw.get("servers", {}).items():
        servers[key] = _parse_server(key, val)

    return AppConfig(
        default_server=_typed(defaults, "server", str, "defaults"),
        servers=servers,
    )


def _parse_server(key: str, raw: dict[str, Any]) -> ServerConfig:
    """Parse one [servers.<key>] table."""
    section = f"servers.{key}"
    host = _typed(raw, "host", str, section)
    if host is None:
        msg = f"Missing required key 'host' in [{section}]"
        raise ConfigError(msg)

    port = _typed(raw, "port", int, section)
    timeout = _typed(raw, "timeout", (int, float), section)
    if timeout is not None and timeout <= 0:
        msg = (
            f"Invalid value for 'timeout' in [{section}]:"
            f" must be greater than 0, got {timeout!r}"
        )
        raise ConfigError(msg)
    return ServerConfig(
        name=_typed(raw, "name", str, section) or key,
        host=host,
        port=DEFAULT_PORT if port is None else port,
        password=_typed(raw, "password", str, section),
        password_env=_typed(raw, "password_env", str, section),
        timeout=None if timeout is None else float(timeout),
    )


def _typed(
    raw: dict[str, Any],
    key: str,
    expected: type | tuple[type, ...],
    section: str,
) -> Any:  # noqa: ANN401
    """Fetch an optional key, checking its TOML type."""
    value = raw.get(key)
    if value is None:
        return None
    # bool is an int subclass, but never a valid port or timeout
    if isinstance(value, bool) or not isinstance(value, expected):
        msg = f"Invalid value for '{key}' in [{section}]: {value!r}"
        raise ConfigError(msg)
    return value


def ensure_config_dir() -> None:
    """Create the config directory if it does not exist."""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
