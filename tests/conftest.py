"""Pytest configuration and fixtures."""

import pytest
from unittest.mock import AsyncMock

from piezomon.core.readings import Mode, Reading
from piezomon.core.sessions import ConnectionRole, Session


class FakeClock:
    """Manually advanced clock for simulated time."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


def make_session(role: ConnectionRole, connected_at: float = 0.0) -> Session:
    """Session backed by an AsyncMock socket."""
    return Session(role=role, connection=AsyncMock(), connected_at=connected_at)


@pytest.fixture
def viewer():
    return make_session(ConnectionRole.VIEWER)


@pytest.fixture
def device():
    return make_session(ConnectionRole.DEVICE)


def make_reading(
    voltage: float = 3.3,
    event_count: int = 1,
    energy: float = 0.002,
    mode: Mode = Mode.LIVE,
) -> Reading:
    return Reading(
        voltage=voltage,
        event_count=event_count,
        energy=energy,
        estimated_runtime=energy * 4000,
        mode=mode,
    )


def sent_messages(session: Session) -> list[dict]:
    """All messages sent to a mock-backed session, in order."""
    return [call.args[0] for call in session.connection.send_json.call_args_list]
