"""Configuration loading from YAML files and the environment."""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, TypeVar

import yaml

from galibot.errors import ConfigError

T = TypeVar("T")


def _dataclass_from_dict(cls: type[T], data: dict[str, Any]) -> T:
    """Create a dataclass instance from a dictionary.

    Unknown keys are rejected so typos in the config file surface at startup.

    Args:
        cls: The dataclass type to instantiate
        data: Dictionary with field values

    Returns:
        Instance of the dataclass with values from dict (or defaults)

    Raises:
        ConfigError: If the dictionary has keys the dataclass does not define
    """
    if not isinstance(data, dict):
        raise ConfigError(f"Section for {cls.__name__} must be a mapping")
    names = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - names)
    if unknown:
        raise ConfigError(f"Unknown {cls.__name__} option(s): {', '.join(unknown)}")
    return cls(**{name: data[name] for name in names if name in data})


def _dataclass_to_dict(obj: Any) -> dict[str, Any]:
    """Convert a dataclass instance to a dictionary, recursing into nested ones."""
    result = {}
    for f in fields(obj):
        value = getattr(obj, f.name)
        if hasattr(value, "__dataclass_fields__"):
            result[f.name] = _dataclass_to_dict(value)
        else:
            result[f.name] = value
    return result


@dataclass
class TransportConfig:
    """Multi-device bridge connection settings."""

    base_url: str = "http://localhost:8080"
    api_token: str | None = None
    request_timeout: float = 10.0
    poll_timeout: float = 25.0  # Long-poll wait for inbound events


@dataclass
class DatabaseConfig:
    """Credential store (PostgreSQL) settings."""

    host: str = "localhost"
    port: int = 5432
    name: str = "galibot"
    user: str = "galibot"
    password: str = ""
    sslmode: str = "disable"
    device_key: str = "default"  # Row key of this process's credential
    pool_min_size: int = 1
    pool_max_size: int = 2
    command_timeout: float = 10.0


@dataclass
class LifecycleConfig:
    """Connect, pairing and reconnect timing."""

    connect_timeout_seconds: float = 30.0
    pairing_timeout_seconds: float = 180.0
    pairing_retry_delay_seconds: float = 5.0
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 60.0
    backoff_factor: float = 2.0
    backoff_jitter: float = 0.2


@dataclass
class HandlersConfig:
    """Built-in handler settings."""

    reply_prefix: str = "Received: "


# Environment variables used by the container deployment
_ENV_OVERRIDES: dict[str, tuple[str, str, type]] = {
    "DB_HOST": ("database", "host", str),
    "DB_PORT": ("database", "port", int),
    "DB_NAME": ("database", "name", str),
    "DB_USER": ("database", "user", str),
    "DB_PASSWORD": ("database", "password", str),
    "GALIBOT_TRANSPORT_URL": ("transport", "base_url", str),
    "GALIBOT_TRANSPORT_TOKEN": ("transport", "api_token", str),
}


@dataclass
class Config:
    """Main configuration container."""

    transport: TransportConfig = field(default_factory=TransportConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    lifecycle: LifecycleConfig = field(default_factory=LifecycleConfig)
    handlers: HandlersConfig = field(default_factory=HandlersConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """Create Config from dictionary.

        Args:
            data: Configuration dictionary

        Returns:
            Config instance
        """
        return cls(
            transport=_dataclass_from_dict(TransportConfig, data.get("transport", {})),
            database=_dataclass_from_dict(DatabaseConfig, data.get("database", {})),
            lifecycle=_dataclass_from_dict(LifecycleConfig, data.get("lifecycle", {})),
            handlers=_dataclass_from_dict(HandlersConfig, data.get("handlers", {})),
        )

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Config":
        """Load configuration from YAML file.

        Args:
            path: Path to YAML configuration file

        Returns:
            Config instance
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)

    @classmethod
    def default(cls) -> "Config":
        """Create default configuration.

        Returns:
            Config instance with default values
        """
        return cls()

    def apply_environment(self, environ: Mapping[str, str] | None = None) -> None:
        """Overlay settings from environment variables.

        Args:
            environ: Variables to read (defaults to os.environ)

        Raises:
            ConfigError: If a variable holds a value of the wrong type
        """
        if environ is None:
            environ = os.environ
        for variable, (section, option, kind) in _ENV_OVERRIDES.items():
            raw = environ.get(variable)
            if raw is None or raw == "":
                continue
            try:
                value = kind(raw)
            except ValueError as e:
                raise ConfigError(f"Invalid value for {variable}: {raw!r}") from e
            setattr(getattr(self, section), option, value)

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary.

        Returns:
            Configuration as dictionary
        """
        return _dataclass_to_dict(self)

    def save_yaml(self, path: str | Path) -> None:
        """Save configuration to YAML file.

        Args:
            path: Path to save configuration
        """
        path = Path(path)
        with open(path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False)
