"""
Demo data generator for Piezomon.

Produces plausible harvester readings while no device is attached:
a voltage random walk inside a fixed band, occasional trigger events
that add a burst of energy, and an energy figure derived by the
configured energy model.
"""

from __future__ import annotations

import logging
import random

from piezomon.core.config import DemoConfig, MetricsConfig
from piezomon.core.readings import (
    EnergyModel,
    Mode,
    Reading,
    capacitor_energy,
    estimate_runtime,
)

logger = logging.getLogger(__name__)


class DemoGenerator:
    """
    Synthetic reading source.

    The generator keeps its own running state, so after a device leaves
    the next tick continues from the last synthetic reading rather than
    from the device's values.
    """

    def __init__(
        self,
        config: DemoConfig | None = None,
        metrics_config: MetricsConfig | None = None,
        rng: random.Random | None = None,
    ):
        self._config = config or DemoConfig()
        self._metrics_config = metrics_config or MetricsConfig()
        self._energy_model = EnergyModel(self._metrics_config.energy_model)
        self._rng = rng or random.Random()

        self._voltage = self._config.initial_voltage
        self._event_count = self._config.initial_event_count
        self._energy = self._config.initial_energy
        self._ticks = 0

    @property
    def energy_model(self) -> EnergyModel:
        return self._energy_model

    @property
    def ticks(self) -> int:
        return self._ticks

    @property
    def last_reading(self) -> Reading:
        return self._reading()

    def update_config(self, config: DemoConfig) -> None:
        """Swap generation parameters, keeping the running state."""
        self._config = config
        self._voltage = min(config.voltage_max, max(config.voltage_min, self._voltage))
        logger.info("Demo generator configuration updated")

    def next_reading(self) -> Reading:
        """Advance one tick and return the new reading."""
        cfg = self._config
        rng = self._rng

        step = (rng.random() - 0.5) * cfg.voltage_step
        self._voltage = min(cfg.voltage_max, max(cfg.voltage_min, self._voltage + step))

        gain = 0.0
        if rng.random() < cfg.event_probability:
            self._event_count += 1
            gain = rng.uniform(cfg.energy_gain_min, cfg.energy_gain_max)

        if self._energy_model == EnergyModel.CAPACITIVE:
            self._energy = capacitor_energy(self._voltage, self._metrics_config.capacitance_farads)
        else:
            self._energy = max(0.0, self._energy + gain - cfg.drain_per_tick)

        self._ticks += 1
        return self._reading()

    def _reading(self) -> Reading:
        return Reading(
            voltage=self._voltage,
            event_count=self._event_count,
            energy=self._energy,
            estimated_runtime=estimate_runtime(self._energy, self._metrics_config.runtime_factor),
            mode=Mode.DEMO,
        )
