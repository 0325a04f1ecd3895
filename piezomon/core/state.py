"""
System state for Piezomon.

SystemState is the single owner of every piece of mutable data: the
current mode, the latest reading, the statistics, both history buffers
and the session registry. It is created per server (or per test), never
stored at module level.
"""

from __future__ import annotations

from typing import Any

from piezomon.core.config import HistoryConfig, MetricsConfig
from piezomon.core.history import GatedHistoryBuffer, HistoryBuffer, SeriesPoint, iso_timestamp
from piezomon.core.metrics import AggregateStats, MetricsEngine
from piezomon.core.readings import Mode, Reading
from piezomon.core.sessions import SessionRegistry


class SystemState:
    """Everything the relay knows, in one place."""

    def __init__(
        self,
        metrics_config: MetricsConfig | None = None,
        history_config: HistoryConfig | None = None,
        now: float = 0.0,
    ):
        metrics_config = metrics_config or MetricsConfig()
        history_config = history_config or HistoryConfig()

        self.mode = Mode.DEMO
        self.latest = Reading.zero(Mode.DEMO)
        self.metrics = MetricsEngine(metrics_config.battery_energy_capacity, now=now)
        self.short_history = HistoryBuffer(history_config.short_capacity)
        self.long_history = GatedHistoryBuffer(
            capacity=history_config.long_capacity,
            min_interval=history_config.long_interval_seconds,
        )
        self.registry = SessionRegistry()

    @property
    def stats(self) -> AggregateStats:
        return self.metrics.stats

    def ingest(self, reading: Reading, now: float) -> dict[str, Any]:
        """Run a reading through statistics and history, return the snapshot."""
        stats = self.metrics.apply_reading(reading, now)
        self.latest = reading

        point = SeriesPoint(
            timestamp=now,
            voltage=reading.voltage,
            energy=reading.energy,
            power=stats.power,
            event_count=reading.event_count,
        )
        self.short_history.push(point)
        self.long_history.push(point, now)

        return self.snapshot()

    def reset_energy(self) -> None:
        """Zero accumulated and current energy (live cold start)."""
        self.metrics.reset_energy()
        self.latest = self.latest.with_energy(0.0)

    def reset_all(self, now: float) -> None:
        """Clear statistics, both buffers and the current reading."""
        self.metrics.reset(now)
        self.short_history.clear()
        self.long_history.clear()
        self.latest = Reading.zero(self.mode)

    def snapshot(self) -> dict[str, Any]:
        """Current reading plus insights, ready for a data message."""
        data = self.latest.to_dict()
        data["mode"] = self.mode.value
        insights = self.stats.to_dict()
        insights["timeSeriesData"] = self.short_history.to_dict()
        data["insights"] = insights
        return data

    def history(self) -> dict[str, list[Any]]:
        return self.long_history.to_dict()

    def status(self) -> dict[str, Any]:
        last_seen = self.registry.device_last_seen
        return {
            "deviceConnected": self.registry.device_connected,
            "deviceLastSeen": iso_timestamp(last_seen) if last_seen is not None else None,
        }
