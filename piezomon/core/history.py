"""
History buffers for Piezomon.

Two bounded series are kept: a short window fed on every update for
live charts, and a long, down-sampled series for historical queries
(288 points at 5-minute resolution covers a day).

Points are stored as whole records, so the parallel sequences handed
to readers can never drift out of index alignment.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

SHORT_CAPACITY = 50
LONG_CAPACITY = 288
LONG_INTERVAL_SECONDS = 5 * 60


def iso_timestamp(ts: float) -> str:
    """Format a UNIX timestamp as ISO-8601 UTC with millisecond precision."""
    dt = datetime.fromtimestamp(ts, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class SeriesPoint:
    """One sample across every series."""

    timestamp: float
    voltage: float
    energy: float
    power: float
    event_count: int = 0


class HistoryBuffer:
    """
    Fixed-capacity FIFO of SeriesPoints.

    Pushing beyond capacity drops the oldest point. Reads always return
    the retained points in chronological order.
    """

    def __init__(self, capacity: int, include_event_count: bool = False):
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._include_event_count = include_event_count
        self._points: deque[SeriesPoint] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def last_timestamp(self) -> float | None:
        return self._points[-1].timestamp if self._points else None

    def __len__(self) -> int:
        return len(self._points)

    def push(self, point: SeriesPoint) -> bool:
        """Append a point, evicting the oldest if over capacity."""
        self._points.append(point)
        return True

    def points(self) -> list[SeriesPoint]:
        return list(self._points)

    def clear(self) -> None:
        self._points.clear()

    def series(self) -> dict[str, list[Any]]:
        """Parallel, index-aligned sequences at full precision."""
        data: dict[str, list[Any]] = {
            "timestamps": [p.timestamp for p in self._points],
            "voltage": [p.voltage for p in self._points],
            "energy": [p.energy for p in self._points],
            "power": [p.power for p in self._points],
        }
        if self._include_event_count:
            data["eventCount"] = [p.event_count for p in self._points]
        return data

    def to_dict(self) -> dict[str, list[Any]]:
        """Wire representation: ISO timestamps and rounded values."""
        data: dict[str, list[Any]] = {
            "timestamps": [iso_timestamp(p.timestamp) for p in self._points],
            "voltage": [round(p.voltage, 2) for p in self._points],
            "energy": [round(p.energy, 4) for p in self._points],
            "power": [round(p.power, 6) for p in self._points],
        }
        if self._include_event_count:
            data["eventCount"] = [p.event_count for p in self._points]
        return data


class GatedHistoryBuffer(HistoryBuffer):
    """HistoryBuffer that accepts at most one point per interval."""

    def __init__(
        self,
        capacity: int = LONG_CAPACITY,
        min_interval: float = LONG_INTERVAL_SECONDS,
        include_event_count: bool = True,
    ):
        super().__init__(capacity, include_event_count=include_event_count)
        self._min_interval = min_interval

    @property
    def min_interval(self) -> float:
        return self._min_interval

    def push(self, point: SeriesPoint, now: float | None = None) -> bool:
        """
        Append the point if the interval since the last one has elapsed.

        Args:
            point: Sample to store
            now: Gate time; defaults to the point's own timestamp

        Returns:
            True if the point was retained.
        """
        now = point.timestamp if now is None else now
        last = self.last_timestamp
        if last is not None and now - last < self._min_interval:
            return False
        return super().push(point)
