"""
Metrics engine for Piezomon.

Turns a stream of readings into running statistics: accumulated
energy, average energy per trigger event, peak voltage, instantaneous
power and an estimate of how full the battery would be.

All state is kept at full precision. Rounding belongs to the wire
format (see AggregateStats.to_dict), never to the stored values.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

from piezomon.core.readings import Reading

TOTAL_ENERGY_PRECISION = 4
AVG_ENERGY_PRECISION = 6
PEAK_VOLTAGE_PRECISION = 2
POWER_PRECISION = 6
CHARGE_PRECISION = 2


@dataclass(frozen=True)
class AggregateStats:
    """Derived statistics over all readings since the last reset."""

    total_energy: float = 0.0
    avg_energy_per_event: float = 0.0
    peak_voltage: float = 0.0
    power: float = 0.0
    charge_fraction: float = 0.0
    last_update: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalEnergy": round(self.total_energy, TOTAL_ENERGY_PRECISION),
            "avgEnergyPerEvent": round(self.avg_energy_per_event, AVG_ENERGY_PRECISION),
            "peakVoltage": round(self.peak_voltage, PEAK_VOLTAGE_PRECISION),
            "power": round(self.power, POWER_PRECISION),
            "chargeFraction": round(self.charge_fraction, CHARGE_PRECISION),
        }


def compute_stats(
    stats: AggregateStats,
    previous_energy: float,
    reading: Reading,
    now: float,
    capacity: float,
) -> AggregateStats:
    """
    Fold one reading into the statistics.

    Args:
        stats: Statistics before this reading
        previous_energy: Energy of the previously applied reading
        reading: The new reading
        now: Time of the update (seconds)
        capacity: Battery energy capacity (joules)

    Returns:
        New AggregateStats; the input is not modified.
    """
    dt = now - stats.last_update
    energy_delta = max(0.0, reading.energy - previous_energy)
    total_energy = stats.total_energy + energy_delta

    if reading.event_count > 0:
        avg = total_energy / reading.event_count
    else:
        avg = 0.0

    power = energy_delta / dt if dt > 0 else 0.0
    charge = min(1.0, max(0.0, total_energy / capacity)) if capacity > 0 else 0.0

    return AggregateStats(
        total_energy=total_energy,
        avg_energy_per_event=avg,
        peak_voltage=max(stats.peak_voltage, reading.voltage),
        power=power,
        charge_fraction=charge,
        last_update=now,
    )


class MetricsEngine:
    """Owns the single AggregateStats instance and the energy baseline."""

    def __init__(self, capacity: float, now: float = 0.0):
        self._capacity = capacity
        self._stats = AggregateStats(last_update=now)
        self._previous_energy = 0.0

    @property
    def stats(self) -> AggregateStats:
        return self._stats

    @property
    def previous_energy(self) -> float:
        return self._previous_energy

    @property
    def capacity(self) -> float:
        return self._capacity

    def apply_reading(self, reading: Reading, now: float) -> AggregateStats:
        """Update statistics with a new reading and return them."""
        self._stats = compute_stats(
            self._stats, self._previous_energy, reading, now, self._capacity
        )
        self._previous_energy = reading.energy
        return self._stats

    def rebase(self, energy: float) -> None:
        """Take energy as the baseline for the next delta, stats untouched."""
        self._previous_energy = energy

    def reset(self, now: float) -> None:
        """Clear every statistic."""
        self._stats = AggregateStats(last_update=now)
        self._previous_energy = 0.0

    def reset_energy(self) -> None:
        """Zero accumulated energy only; peak and timing survive."""
        self._stats = replace(
            self._stats,
            total_energy=0.0,
            avg_energy_per_event=0.0,
            charge_fraction=0.0,
        )
        self._previous_energy = 0.0
