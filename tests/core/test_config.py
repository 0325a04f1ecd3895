"""
Tests for the configuration system.

Covers:
- Pydantic model validation
- YAML loading with environment variable substitution
- Config file watching and hot reload
- Environment variable overrides
- Config change diffing
"""

from __future__ import annotations

import os
import tempfile
import threading
import time
from pathlib import Path
from unittest.mock import patch

import pytest

from piezomon.core.config import (
    SystemConfig,
    ServerConfig,
    SessionsConfig,
    MetricsConfig,
    HistoryConfig,
    DemoConfig,
    PiezomonConfig,
    ConfigChange,
    ConfigLoader,
    Config,
)


# =============================================================================
# Pydantic Model Validation Tests
# =============================================================================


class TestSystemConfig:
    """Tests for SystemConfig validation."""

    def test_default_values(self):
        config = SystemConfig()
        assert config.name == "piezomon"
        assert config.log_level == "INFO"

    def test_log_level_normalized(self):
        """Log level is upper-cased."""
        assert SystemConfig(log_level="debug").log_level == "DEBUG"

    def test_invalid_log_level_raises(self):
        with pytest.raises(ValueError):
            SystemConfig(log_level="chatty")


class TestServerConfig:
    """Tests for ServerConfig validation."""

    def test_default_values(self):
        """Default values are sensible."""
        config = ServerConfig()
        assert config.host == "0.0.0.0"
        assert config.port == 3000
        assert config.ping_interval_seconds == 30.0
        assert config.send_timeout_seconds == 5.0

    def test_port_bounds(self):
        """Port must be valid."""
        assert ServerConfig(port=1).port == 1
        assert ServerConfig(port=65535).port == 65535

        with pytest.raises(ValueError):
            ServerConfig(port=0)

        with pytest.raises(ValueError):
            ServerConfig(port=65536)


class TestSessionsConfig:
    """Tests for SessionsConfig validation."""

    def test_default_values(self):
        config = SessionsConfig()
        assert config.device_client_types == ["device", "esp8266"]
        assert config.device_user_agent_markers == ["ESP8266"]
        assert config.liveness_timeout_seconds == 60.0
        assert config.sweep_interval_seconds == 30.0

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValueError):
            SessionsConfig(liveness_timeout_seconds=0)


class TestMetricsConfig:
    """Tests for MetricsConfig validation."""

    def test_battery_energy_capacity(self):
        """3.7 V x 4800 mAh is 63936 J."""
        assert MetricsConfig().battery_energy_capacity == pytest.approx(63936.0)

    @pytest.mark.parametrize("model", ["accumulating", "capacitive"])
    def test_valid_energy_models(self, model):
        assert MetricsConfig(energy_model=model).energy_model == model

    def test_invalid_energy_model_raises(self):
        with pytest.raises(ValueError):
            MetricsConfig(energy_model="perpetual")

    def test_capacitance_must_be_positive(self):
        with pytest.raises(ValueError):
            MetricsConfig(capacitance_farads=0.0)


class TestHistoryConfig:
    """Tests for HistoryConfig validation."""

    def test_default_values(self):
        config = HistoryConfig()
        assert config.short_capacity == 50
        assert config.long_capacity == 288
        assert config.long_interval_seconds == 300.0

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            HistoryConfig(short_capacity=0)


class TestDemoConfig:
    """Tests for DemoConfig validation."""

    def test_default_values(self):
        config = DemoConfig()
        assert config.enabled is True
        assert config.tick_interval_seconds == 2.0
        assert config.voltage_min == 2.8
        assert config.voltage_max == 3.6
        assert config.event_probability == 0.2
        assert config.initial_voltage == 3.2
        assert config.initial_event_count == 24
        assert config.initial_energy == 0.0123

    def test_voltage_band_order(self):
        with pytest.raises(ValueError):
            DemoConfig(voltage_min=3.6, voltage_max=2.8)

    def test_energy_band_order(self):
        with pytest.raises(ValueError):
            DemoConfig(energy_gain_min=0.01, energy_gain_max=0.001)

    def test_probability_bounds(self):
        assert DemoConfig(event_probability=1.0).event_probability == 1.0

        with pytest.raises(ValueError):
            DemoConfig(event_probability=1.5)


class TestPiezomonConfig:
    """Tests for complete PiezomonConfig."""

    def test_default_config(self):
        """Default config creates all subsections."""
        config = PiezomonConfig()
        assert config.system is not None
        assert config.server is not None
        assert config.sessions is not None
        assert config.metrics is not None
        assert config.history is not None
        assert config.demo is not None


# =============================================================================
# ConfigLoader Tests
# =============================================================================


class TestConfigLoader:
    """Tests for ConfigLoader."""

    @pytest.fixture
    def loader(self):
        return ConfigLoader()

    @pytest.fixture
    def temp_yaml_file(self):
        """Create a temporary YAML file."""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            f.write("system:\n  name: test\n  log_level: DEBUG\n")
            f.flush()
            yield Path(f.name)
        os.unlink(f.name)

    def test_load_yaml_file(self, loader, temp_yaml_file):
        data = loader.load_yaml(temp_yaml_file)
        assert data["system"]["name"] == "test"
        assert data["system"]["log_level"] == "DEBUG"

    def test_load_yaml_missing_file(self, loader):
        """Missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            loader.load_yaml(Path("/nonexistent/config.yaml"))

    def test_load_yaml_rejects_non_mapping(self, loader, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- one\n- two\n")

        with pytest.raises(ValueError):
            loader.load_yaml(path)

    def test_env_var_substitution(self, loader, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("server:\n  host: ${TEST_RELAY_HOST}\n")

        with patch.dict(os.environ, {"TEST_RELAY_HOST": "10.0.0.5"}):
            data = loader.load_yaml(path)

        assert data["server"]["host"] == "10.0.0.5"

    def test_env_var_with_default(self, loader, tmp_path):
        """Environment variable with default value."""
        path = tmp_path / "config.yaml"
        path.write_text("server:\n  port: ${TEST_RELAY_PORT:-3000}\n")

        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("TEST_RELAY_PORT", None)
            assert loader.load_yaml(path)["server"]["port"] == 3000

        with patch.dict(os.environ, {"TEST_RELAY_PORT": "8080"}):
            assert loader.load_yaml(path)["server"]["port"] == 8080

    def test_env_var_unset_no_default(self, loader, tmp_path):
        """Unset env var without default keeps placeholder."""
        path = tmp_path / "config.yaml"
        path.write_text("key: ${NONEXISTENT_VAR_12345}\n")

        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("NONEXISTENT_VAR_12345", None)
            data = loader.load_yaml(path)

        assert data["key"] == "${NONEXISTENT_VAR_12345}"

    def test_merge_configs(self, loader):
        """Deep merge of config dictionaries."""
        base = {
            "system": {"name": "base", "log_level": "INFO"},
            "demo": {"enabled": True},
        }
        override = {
            "system": {"log_level": "DEBUG"},
            "demo": {"tick_interval_seconds": 1.0},
        }

        merged = loader.merge(base, override)

        assert merged["system"]["name"] == "base"
        assert merged["system"]["log_level"] == "DEBUG"
        assert merged["demo"]["enabled"] is True
        assert merged["demo"]["tick_interval_seconds"] == 1.0

    def test_merge_overwrites_non_dict_with_dict(self, loader):
        merged = loader.merge({"config": "simple_string"}, {"config": {"nested": "value"}})
        assert merged["config"]["nested"] == "value"

    def test_apply_env_overrides(self, loader):
        """Underscores after the section name stay in the key."""
        config = {"sessions": {"liveness_timeout_seconds": 60.0}}

        with patch.dict(os.environ, {"PIEZOMON_SESSIONS_LIVENESS_TIMEOUT_SECONDS": "90"}):
            updated = loader.apply_env_overrides(config)

        assert updated["sessions"]["liveness_timeout_seconds"] == 90

    def test_env_override_creates_section(self, loader):
        with patch.dict(os.environ, {"PIEZOMON_METRICS_ENERGY_MODEL": "capacitive"}):
            updated = loader.apply_env_overrides({})

        assert updated["metrics"]["energy_model"] == "capacitive"

    def test_parse_value_boolean(self, loader):
        assert loader._parse_value("true") is True
        assert loader._parse_value("Yes") is True
        assert loader._parse_value("false") is False
        assert loader._parse_value("no") is False

    def test_parse_value_numbers(self, loader):
        assert loader._parse_value("42") == 42
        assert loader._parse_value("3.14") == 3.14
        assert loader._parse_value("-10") == -10
        assert loader._parse_value("1e-3") == 0.001

    def test_parse_value_string(self, loader):
        """Non-numeric values remain strings."""
        assert loader._parse_value("hello") == "hello"
        assert loader._parse_value("ws://relay.local:3000") == "ws://relay.local:3000"


# =============================================================================
# Config Class Tests
# =============================================================================


class TestConfig:
    """Tests for main Config class."""

    @pytest.fixture
    def temp_config_file(self, tmp_path):
        path = tmp_path / "piezomon.yaml"
        path.write_text("""
system:
  name: test_relay
  log_level: DEBUG

server:
  port: 8080

demo:
  tick_interval_seconds: 1.0
""")
        return path

    def test_load_from_file(self, temp_config_file):
        config = Config.load(temp_config_file)

        assert config.system.name == "test_relay"
        assert config.system.log_level == "DEBUG"
        assert config.server.port == 8080
        assert config.demo.tick_interval_seconds == 1.0
        assert config.source_path == temp_config_file

    def test_construct_from_dict(self):
        config = Config({"metrics": {"energy_model": "capacitive"}})

        assert config.metrics.energy_model == "capacitive"
        assert config.source_path is None

    def test_default_config(self):
        config = Config.default()

        assert config.system.name == "piezomon"
        assert config.server.port == 3000
        assert config.demo.enabled is True

    def test_missing_keys_fall_back_to_typed_defaults(self, temp_config_file):
        """Keys missing from the file resolve to model defaults."""
        config = Config.load(temp_config_file)

        assert config.sessions.liveness_timeout_seconds == 60.0
        assert config.server.ping_interval_seconds == 30.0

    def test_update_merges_overrides(self, temp_config_file):
        """Command line overrides merge into the loaded file."""
        config = Config.load(temp_config_file)

        config.update({"server": {"port": "4000"}, "demo": {"enabled": False}})

        assert config.server.port == 4000
        assert config.demo.enabled is False
        assert config.demo.tick_interval_seconds == 1.0
        assert config.system.name == "test_relay"

    def test_successive_updates_accumulate(self):
        config = Config.default()

        config.update({"system": {"log_level": "ERROR"}})
        config.update({"history": {"short_capacity": 20}})

        assert config.system.log_level == "ERROR"
        assert config.history.short_capacity == 20

    def test_update_invalid_keeps_previous(self, temp_config_file):
        config = Config.load(temp_config_file)

        with pytest.raises(ValueError):
            config.update({"metrics": {"energy_model": "perpetual"}})

        assert config.metrics.energy_model == "accumulating"
        assert config.server.port == 8080

    def test_invalid_update_is_not_reapplied_on_reload(self, temp_config_file):
        config = Config.load(temp_config_file)
        with pytest.raises(ValueError):
            config.update({"metrics": {"energy_model": "perpetual"}})

        config.reload()

        assert config.metrics.energy_model == "accumulating"

    def test_reload_keeps_command_line_overrides(self, temp_config_file):
        """Overrides such as --no-demo and --port survive a file reload."""
        config = Config.load(temp_config_file)
        config.update({"server": {"port": 4000}, "demo": {"enabled": False}})

        temp_config_file.write_text(
            temp_config_file.read_text().replace(
                "tick_interval_seconds: 1.0", "tick_interval_seconds: 0.5"
            )
        )
        changes = config.reload()

        assert config.demo.tick_interval_seconds == 0.5
        assert config.demo.enabled is False
        assert config.server.port == 4000
        assert [c.path for c in changes] == ["demo.tick_interval_seconds"]

    def test_reload_config(self, temp_config_file):
        """Reload returns the changed paths."""
        config = Config.load(temp_config_file)

        temp_config_file.write_text(
            temp_config_file.read_text().replace("port: 8080", "port: 9090")
        )
        changes = config.reload()

        assert config.server.port == 9090
        assert [c.path for c in changes] == ["server.port"]
        assert changes[0].old_value == 8080
        assert changes[0].new_value == 9090

    def test_reload_invalid_keeps_previous(self, temp_config_file):
        config = Config.load(temp_config_file)
        temp_config_file.write_text("server:\n  port: 0\n")

        with pytest.raises(ValueError):
            config.reload()

        assert config.server.port == 8080

    def test_file_change_with_bad_yaml_is_logged(self, temp_config_file, caplog):
        config = Config.load(temp_config_file)
        temp_config_file.write_text("server: [unclosed\n")

        config._on_file_change(temp_config_file)

        assert config.server.port == 8080
        assert "reload failed" in caplog.text

    def test_validate_config(self):
        config = Config.default()
        assert config.validate() == []

    def test_config_without_source_path(self):
        config = Config({"system": {"name": "test"}})

        with pytest.raises(ValueError):
            config.enable_hot_reload()

        assert config.reload() == []

    def test_config_with_invalid_data(self):
        with pytest.raises(ValueError):
            Config({"demo": {"event_probability": 2.0}})

    def test_config_diff(self):
        config = Config({})

        old_data = {"demo": {"enabled": True, "tick_interval_seconds": 2.0}}
        new_data = {"demo": {"enabled": True, "tick_interval_seconds": 0.5}}

        changes = config._diff(old_data, new_data)

        assert len(changes) == 1
        assert changes[0].path == "demo.tick_interval_seconds"
        assert changes[0].old_value == 2.0
        assert changes[0].new_value == 0.5

    def test_typed_accessors(self):
        config = Config.default()

        assert isinstance(config.typed, PiezomonConfig)
        assert isinstance(config.system, SystemConfig)
        assert isinstance(config.server, ServerConfig)
        assert isinstance(config.sessions, SessionsConfig)
        assert isinstance(config.metrics, MetricsConfig)
        assert isinstance(config.history, HistoryConfig)
        assert isinstance(config.demo, DemoConfig)


class TestHotReload:
    """Tests for watchdog-driven reload."""

    def test_hot_reload_invokes_callback(self, tmp_path):
        path = tmp_path / "piezomon.yaml"
        path.write_text("demo:\n  tick_interval_seconds: 2.0\n")
        config = Config.load(path)

        received: list[list[ConfigChange]] = []
        done = threading.Event()

        def on_change(changes):
            received.append(changes)
            if config.demo.tick_interval_seconds == 0.5:
                done.set()

        config.enable_hot_reload(on_change)
        try:
            time.sleep(0.2)
            path.write_text("demo:\n  tick_interval_seconds: 0.5\n")
            assert done.wait(timeout=5.0)
        finally:
            config.disable_hot_reload()

        assert config.demo.tick_interval_seconds == 0.5
        assert received


class TestConfigChange:
    """Tests for ConfigChange dataclass."""

    def test_config_change_attributes(self):
        change = ConfigChange(
            path="system.log_level",
            old_value="INFO",
            new_value="DEBUG",
            timestamp=time.time(),
        )

        assert change.path == "system.log_level"
        assert change.old_value == "INFO"
        assert change.new_value == "DEBUG"
        assert change.timestamp > 0
