"""Tests for configuration loading."""

import tempfile
from pathlib import Path

import pytest

from galibot.config import (
    Config,
    DatabaseConfig,
    HandlersConfig,
    LifecycleConfig,
    TransportConfig,
)
from galibot.errors import ConfigError


class TestConfig:
    """Tests for Config class."""

    def test_default_config(self) -> None:
        """Test creating default configuration."""
        config = Config.default()

        assert config.transport.base_url == TransportConfig().base_url
        assert config.database.port == 5432
        assert config.lifecycle.backoff_max_seconds == LifecycleConfig().backoff_max_seconds
        assert config.handlers.reply_prefix == "Received: "

    def test_from_dict(self) -> None:
        """Test creating config from dictionary."""
        data = {
            "transport": {"base_url": "http://bridge:9000", "api_token": "secret"},
            "database": {"host": "db", "name": "bots"},
            "lifecycle": {"backoff_base_seconds": 0.5},
        }

        config = Config.from_dict(data)

        assert config.transport.base_url == "http://bridge:9000"
        assert config.transport.api_token == "secret"
        assert config.database.host == "db"
        assert config.database.name == "bots"
        assert config.database.user == DatabaseConfig().user
        assert config.lifecycle.backoff_base_seconds == 0.5

    def test_from_dict_unknown_option(self) -> None:
        """Test that typos in option names are rejected."""
        with pytest.raises(ConfigError, match="Unknown DatabaseConfig option"):
            Config.from_dict({"database": {"hots": "db"}})

    def test_from_dict_section_not_mapping(self) -> None:
        """Test that a scalar section is rejected."""
        with pytest.raises(ConfigError, match="must be a mapping"):
            Config.from_dict({"transport": "http://bridge"})

    def test_from_yaml(self) -> None:
        """Test loading config from YAML file."""
        yaml_content = """
transport:
  base_url: "http://127.0.0.1:8080"
  poll_timeout: 10.0

database:
  host: postgres
  port: 5433
  password: hunter2

handlers:
  reply_prefix: "Echo: "
"""
        with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
            f.write(yaml_content)
            f.flush()

            config = Config.from_yaml(f.name)

        assert config.transport.base_url == "http://127.0.0.1:8080"
        assert config.transport.poll_timeout == 10.0
        assert config.database.host == "postgres"
        assert config.database.port == 5433
        assert config.database.password == "hunter2"
        assert config.handlers.reply_prefix == "Echo: "

        Path(f.name).unlink()

    def test_from_yaml_not_found(self) -> None:
        """Test loading config from non-existent file."""
        with pytest.raises(FileNotFoundError):
            Config.from_yaml("/nonexistent/path.yaml")

    def test_to_dict(self) -> None:
        """Test converting config to dictionary."""
        data = Config.default().to_dict()

        assert set(data) == {"transport", "database", "lifecycle", "handlers"}
        assert data["database"]["port"] == DatabaseConfig().port
        assert data["handlers"] == {"reply_prefix": HandlersConfig().reply_prefix}

    def test_save_yaml(self) -> None:
        """Test saving config to YAML file."""
        config = Config.default()
        config.lifecycle.connect_timeout_seconds = 12.5

        with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
            temp_path = f.name

        config.save_yaml(temp_path)

        loaded = Config.from_yaml(temp_path)
        assert loaded.lifecycle.connect_timeout_seconds == 12.5
        assert loaded == config

        Path(temp_path).unlink()

    def test_empty_yaml(self) -> None:
        """Test loading empty YAML uses defaults."""
        with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
            f.write("")
            f.flush()

            config = Config.from_yaml(f.name)

        assert config == Config.default()

        Path(f.name).unlink()


class TestApplyEnvironment:
    """Tests for environment variable overrides."""

    def test_database_variables(self) -> None:
        """Test DB_* variables override database settings."""
        config = Config.default()
        config.apply_environment(
            {
                "DB_HOST": "postgres",
                "DB_PORT": "6543",
                "DB_NAME": "galidb",
                "DB_USER": "gali",
                "DB_PASSWORD": "pw",
            }
        )

        assert config.database.host == "postgres"
        assert config.database.port == 6543
        assert config.database.name == "galidb"
        assert config.database.user == "gali"
        assert config.database.password == "pw"

    def test_transport_variables(self) -> None:
        """Test GALIBOT_TRANSPORT_* variables override transport settings."""
        config = Config.default()
        config.apply_environment(
            {"GALIBOT_TRANSPORT_URL": "http://bridge", "GALIBOT_TRANSPORT_TOKEN": "tok"}
        )

        assert config.transport.base_url == "http://bridge"
        assert config.transport.api_token == "tok"

    def test_empty_values_ignored(self) -> None:
        """Test that empty variables keep the configured value."""
        config = Config.default()
        config.database.host = "from-file"
        config.apply_environment({"DB_HOST": "", "UNRELATED": "x"})

        assert config.database.host == "from-file"

    def test_invalid_port(self) -> None:
        """Test that a non-numeric DB_PORT is a configuration error."""
        config = Config.default()
        with pytest.raises(ConfigError, match="DB_PORT"):
            config.apply_environment({"DB_PORT": "five"})

    def test_reads_os_environ_by_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that os.environ is used when no mapping is given."""
        monkeypatch.setenv("DB_NAME", "fromenv")
        config = Config.default()
        config.apply_environment()

        assert config.database.name == "fromenv"
