"""
Configuration system for Piezomon.

Provides YAML-based configuration with:
- Deep-merged overrides that survive reloads
- Environment variable overrides
- Hot reload support
- Pydantic validation
"""

from __future__ import annotations

import logging
import os
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from watchdog.events import FileModifiedEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

ENERGY_MODELS = ("accumulating", "capacitive")


# ============================================================================
# Typed Configuration Models
# ============================================================================


class SystemConfig(BaseModel):
    """Top-level system configuration."""

    name: str = "piezomon"
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level '{v}'")
        return level


class ServerConfig(BaseModel):
    """Configuration for the relay's HTTP/WebSocket listener."""

    host: str = "0.0.0.0"
    port: int = Field(default=3000, ge=1, le=65535)
    ping_interval_seconds: float = Field(default=30.0, ge=1.0)
    send_timeout_seconds: float = Field(default=5.0, gt=0.0)


class SessionsConfig(BaseModel):
    """Connection classification and device liveness."""

    device_client_types: list[str] = Field(default_factory=lambda: ["device", "esp8266"])
    device_user_agent_markers: list[str] = Field(default_factory=lambda: ["ESP8266"])
    liveness_timeout_seconds: float = Field(default=60.0, gt=0.0)
    sweep_interval_seconds: float = Field(default=30.0, gt=0.0)


class MetricsConfig(BaseModel):
    """Battery, capacitor and energy-model constants."""

    battery_capacity_mah: float = Field(default=4800.0, gt=0.0)
    battery_voltage: float = Field(default=3.7, gt=0.0)
    capacitance_farads: float = Field(default=0.0022, gt=0.0)
    runtime_factor: float = Field(default=4000.0, ge=0.0)
    energy_model: str = "accumulating"  # accumulating | capacitive

    @field_validator("energy_model")
    @classmethod
    def validate_energy_model(cls, v: str) -> str:
        if v not in ENERGY_MODELS:
            raise ValueError(f"Energy model must be one of {ENERGY_MODELS}, got '{v}'")
        return v

    @property
    def battery_energy_capacity(self) -> float:
        """Nominal battery energy in joules."""
        return self.battery_voltage * self.battery_capacity_mah / 1000 * 3600


class HistoryConfig(BaseModel):
    """Sizes of the short chart window and the long history."""

    short_capacity: int = Field(default=50, ge=1)
    long_capacity: int = Field(default=288, ge=1)
    long_interval_seconds: float = Field(default=300.0, ge=0.0)


class DemoConfig(BaseModel):
    """Synthetic data generation while no device is attached."""

    enabled: bool = True
    tick_interval_seconds: float = Field(default=2.0, gt=0.0)
    voltage_min: float = 2.8
    voltage_max: float = 3.6
    voltage_step: float = Field(default=0.2, ge=0.0)
    event_probability: float = Field(default=0.2, ge=0.0, le=1.0)
    energy_gain_min: float = Field(default=0.0008, ge=0.0)
    energy_gain_max: float = Field(default=0.002, ge=0.0)
    drain_per_tick: float = Field(default=0.0001, ge=0.0)
    initial_voltage: float = 3.2
    initial_event_count: int = Field(default=24, ge=0)
    initial_energy: float = Field(default=0.0123, ge=0.0)

    @model_validator(mode="after")
    def validate_bands(self) -> DemoConfig:
        if self.voltage_min > self.voltage_max:
            raise ValueError("voltage_min must not exceed voltage_max")
        if self.energy_gain_min > self.energy_gain_max:
            raise ValueError("energy_gain_min must not exceed energy_gain_max")
        return self


class PiezomonConfig(BaseModel):
    """Complete Piezomon configuration."""

    system: SystemConfig = Field(default_factory=SystemConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    sessions: SessionsConfig = Field(default_factory=SessionsConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    demo: DemoConfig = Field(default_factory=DemoConfig)


# ============================================================================
# Configuration Change Tracking
# ============================================================================


@dataclass
class ConfigChange:
    """Represents a configuration change."""

    path: str  # Dot-notation path
    old_value: Any
    new_value: Any
    timestamp: float


# ============================================================================
# Configuration Loader
# ============================================================================


class ConfigLoader:
    """Loads configuration from YAML files."""

    ENV_PREFIX = "PIEZOMON_"

    # ${VAR} or ${VAR:-default}
    ENV_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")

    def load_yaml(self, path: Path) -> dict[str, Any]:
        """Load single YAML file with env var substitution."""
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        content = self._substitute_env_vars(path.read_text())
        data = yaml.safe_load(content) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        return data

    def merge(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Deep merge override into base."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self.merge(result[key], value)
            else:
                result[key] = value

        return result

    def _substitute_env_vars(self, content: str) -> str:
        def replacer(match: re.Match) -> str:
            value = os.environ.get(match.group(1))
            if value is not None:
                return value
            if match.group(2) is not None:
                return match.group(2)
            return match.group(0)

        return self.ENV_PATTERN.sub(replacer, content)

    def apply_env_overrides(self, config: dict[str, Any]) -> dict[str, Any]:
        """
        Apply environment variable overrides.

        The first segment after the prefix names the section, the rest
        is the key, so underscores inside keys survive:

        PIEZOMON_SESSIONS_LIVENESS_TIMEOUT_SECONDS=90
            -> sessions.liveness_timeout_seconds = 90
        """
        for key, value in os.environ.items():
            if not key.startswith(self.ENV_PREFIX):
                continue

            section, _, field_name = key[len(self.ENV_PREFIX) :].lower().partition("_")
            if not section or not field_name:
                continue

            target = config.setdefault(section, {})
            if isinstance(target, dict):
                target[field_name] = self._parse_value(value)

        return config

    def _parse_value(self, value: str) -> Any:
        """Parse string value to appropriate type."""
        if value.lower() in ("true", "yes"):
            return True
        if value.lower() in ("false", "no"):
            return False

        try:
            if "." in value or "e" in value.lower():
                return float(value)
            return int(value)
        except ValueError:
            pass

        return value


# ============================================================================
# Configuration Watcher
# ============================================================================


class ConfigWatcher:
    """Watches config files for changes."""

    def __init__(self, paths: list[Path]):
        self._paths = paths
        self._observer = Observer()
        self._callbacks: list[Callable[[Path], None]] = []
        self._started = False

    def start(self) -> None:
        """Start watching for changes."""
        if self._started:
            return

        handler = _ConfigFileHandler(self._on_change)
        for path in self._paths:
            watch_path = path.parent if path.is_file() else path
            self._observer.schedule(handler, str(watch_path), recursive=False)

        self._observer.start()
        self._started = True

    def stop(self) -> None:
        """Stop watching."""
        if not self._started:
            return

        self._observer.stop()
        self._observer.join()
        self._started = False

    def add_callback(self, callback: Callable[[Path], None]) -> None:
        self._callbacks.append(callback)

    def _on_change(self, path: Path) -> None:
        for callback in self._callbacks:
            callback(path)


class _ConfigFileHandler(FileSystemEventHandler):
    """File system event handler for config changes."""

    def __init__(self, callback: Callable[[Path], None]):
        self._callback = callback

    def on_modified(self, event: FileModifiedEvent) -> None:
        if event.is_directory:
            return
        if str(event.src_path).endswith((".yaml", ".yml")):
            self._callback(Path(event.src_path))


# ============================================================================
# Main Configuration Class
# ============================================================================


class Config:
    """
    Configuration container with hot reload support.

    Usage:
        config = Config.load(Path("config/default.yaml"))
        config.update({"server": {"port": 8080}})

        timeout = config.sessions.liveness_timeout_seconds
    """

    def __init__(self, data: dict[str, Any], source_path: Path | None = None):
        self._data = data
        self._source_path = source_path
        self._loader = ConfigLoader()
        self._overrides: dict[str, Any] = {}
        self._watcher: ConfigWatcher | None = None
        self._change_callbacks: list[Callable[[list[ConfigChange]], None]] = []

        self._typed = PiezomonConfig.model_validate(data)

    @classmethod
    def load(cls, path: Path) -> Config:
        """Load configuration from YAML file."""
        loader = ConfigLoader()
        data = loader.load_yaml(path)
        data = loader.apply_env_overrides(data)
        return cls(data, source_path=path)

    @classmethod
    def default(cls) -> Config:
        """Create configuration with all defaults (env overrides still apply)."""
        return cls(ConfigLoader().apply_env_overrides({}))

    @property
    def source_path(self) -> Path | None:
        return self._source_path

    @property
    def typed(self) -> PiezomonConfig:
        """The validated configuration tree."""
        return self._typed

    def update(self, overrides: dict[str, Any]) -> None:
        """
        Deep-merge overrides on top of the loaded data.

        The overrides are remembered and re-applied after every reload.
        Nothing changes if the merged result is invalid.
        """
        data = self._loader.merge(self._data, overrides)
        self._typed = PiezomonConfig.model_validate(data)
        self._data = data
        self._overrides = self._loader.merge(self._overrides, overrides)

    def reload(self) -> list[ConfigChange]:
        """Reload from disk, return list of changes."""
        if not self._source_path:
            return []

        old_data = self._data
        new_data = self._loader.apply_env_overrides(self._loader.load_yaml(self._source_path))
        new_data = self._loader.merge(new_data, self._overrides)
        new_typed = PiezomonConfig.model_validate(new_data)

        self._data = new_data
        self._typed = new_typed
        return self._diff(old_data, new_data)

    def enable_hot_reload(
        self, callback: Callable[[list[ConfigChange]], None] | None = None
    ) -> None:
        """Enable file watching for automatic reload."""
        if not self._source_path:
            raise ValueError("Cannot enable hot reload without a source path")

        if callback:
            self._change_callbacks.append(callback)

        if self._watcher:
            return

        self._watcher = ConfigWatcher([self._source_path])
        self._watcher.add_callback(self._on_file_change)
        self._watcher.start()

    def disable_hot_reload(self) -> None:
        if self._watcher:
            self._watcher.stop()
            self._watcher = None

    def validate(self) -> list[str]:
        """Validate configuration, return list of errors."""
        try:
            PiezomonConfig.model_validate(self._data)
        except ValueError as e:
            return [str(e)]
        return []

    def _on_file_change(self, path: Path) -> None:
        if path.resolve() != self._source_path.resolve():
            return
        try:
            changes = self.reload()
        except (ValueError, yaml.YAMLError) as e:
            logger.warning(f"Keeping previous configuration, reload failed: {e}")
            return
        if not changes:
            return
        for callback in self._change_callbacks:
            callback(changes)

    def _diff(
        self, old: dict[str, Any], new: dict[str, Any], prefix: str = ""
    ) -> list[ConfigChange]:
        """Calculate differences between two config dicts."""
        changes: list[ConfigChange] = []
        now = time.time()

        for key in set(old) | set(new):
            path = f"{prefix}.{key}" if prefix else key
            old_val = old.get(key)
            new_val = new.get(key)

            if old_val == new_val:
                continue

            if isinstance(old_val, dict) and isinstance(new_val, dict):
                changes.extend(self._diff(old_val, new_val, path))
            else:
                changes.append(ConfigChange(path, old_val, new_val, now))

        return changes

    # ========================================================================
    # Typed Accessors
    # ========================================================================

    @property
    def system(self) -> SystemConfig:
        return self._typed.system

    @property
    def server(self) -> ServerConfig:
        return self._typed.server

    @property
    def sessions(self) -> SessionsConfig:
        return self._typed.sessions

    @property
    def metrics(self) -> MetricsConfig:
        return self._typed.metrics

    @property
    def history(self) -> HistoryConfig:
        return self._typed.history

    @property
    def demo(self) -> DemoConfig:
        return self._typed.demo
