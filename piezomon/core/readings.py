"""
Reading model for Piezomon.

A Reading is an immutable snapshot of the harvester: terminal voltage,
the number of trigger events seen so far, stored energy and the
runtime that energy would buy. Readings come either from the device or
from the demo generator; both share this type.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any


class Mode(str, Enum):
    """Process-wide data source mode."""

    LIVE = "live"
    DEMO = "demo"


class EnergyModel(str, Enum):
    """How synthetic energy is derived from one tick to the next."""

    ACCUMULATING = "accumulating"
    CAPACITIVE = "capacitive"


# Decimal places used when values leave the process
VOLTAGE_PRECISION = 2
ENERGY_PRECISION = 4
RUNTIME_PRECISION = 1


def capacitor_energy(voltage: float, capacitance: float) -> float:
    """Energy stored in a capacitor, E = 1/2 * C * V^2 (joules)."""
    return 0.5 * capacitance * voltage * voltage


def estimate_runtime(energy: float, runtime_factor: float) -> float:
    """Runtime estimate proportional to the stored energy."""
    return max(0.0, energy) * runtime_factor


@dataclass(frozen=True)
class Reading:
    """Immutable harvester reading."""

    voltage: float
    event_count: int
    energy: float
    estimated_runtime: float
    mode: Mode

    @classmethod
    def zero(cls, mode: Mode) -> Reading:
        """An all-zero reading, used after a full reset."""
        return cls(voltage=0.0, event_count=0, energy=0.0, estimated_runtime=0.0, mode=mode)

    def with_energy(self, energy: float) -> Reading:
        return replace(self, energy=energy)

    def with_mode(self, mode: Mode) -> Reading:
        return replace(self, mode=mode)

    def to_dict(self) -> dict[str, Any]:
        """Wire representation, rounded for transmission."""
        return {
            "voltage": round(self.voltage, VOLTAGE_PRECISION),
            "eventCount": self.event_count,
            "energy": round(self.energy, ENERGY_PRECISION),
            "estimatedRuntime": round(self.estimated_runtime, RUNTIME_PRECISION),
            "mode": self.mode.value,
        }
