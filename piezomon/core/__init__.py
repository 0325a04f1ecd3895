"""Core modules for Piezomon."""

from piezomon.core.readings import Mode, Reading, EnergyModel
from piezomon.core.metrics import AggregateStats, MetricsEngine
from piezomon.core.history import HistoryBuffer, GatedHistoryBuffer, SeriesPoint
from piezomon.core.sessions import ConnectionRole, Session, SessionRegistry
from piezomon.core.state import SystemState
from piezomon.core.mode import ModeController, ModeTransition

__all__ = [
    "Mode",
    "Reading",
    "EnergyModel",
    "AggregateStats",
    "MetricsEngine",
    "HistoryBuffer",
    "GatedHistoryBuffer",
    "SeriesPoint",
    "ConnectionRole",
    "Session",
    "SessionRegistry",
    "SystemState",
    "ModeController",
    "ModeTransition",
]
