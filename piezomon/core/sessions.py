"""
Session registry for Piezomon.

Every inbound connection is classified exactly once, as the device or
as a viewer, and the role travels with the Session object from then on.
At most one device session is tracked; a newer device replaces the
older one without closing it (closing is the transport's job).
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from piezomon.core.config import SessionsConfig

logger = logging.getLogger(__name__)

CLIENT_TYPE_HEADER = "x-client-type"


class ConnectionRole(str, Enum):
    """Role of a connection, fixed at connect time."""

    DEVICE = "device"
    VIEWER = "viewer"


@dataclass(eq=False)
class Session:
    """
    One connected client.

    Sessions compare by identity, so the same socket can never be
    registered twice and two sockets never collapse into one entry.
    """

    role: ConnectionRole
    connection: Any
    connected_at: float
    last_seen: float | None = None
    open: bool = True
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])

    @property
    def is_device(self) -> bool:
        return self.role == ConnectionRole.DEVICE

    async def send_json(self, message: dict[str, Any]) -> None:
        await self.connection.send_json(message)

    def close(self) -> None:
        """Mark the session as no longer able to receive."""
        self.open = False

    def __repr__(self) -> str:
        return f"Session({self.role.value}:{self.id})"


def classify(headers: Mapping[str, str], config: SessionsConfig | None = None) -> ConnectionRole:
    """
    Decide the role of a new connection from its handshake headers.

    A device announces itself through the x-client-type header or a
    User-Agent carrying a device marker. Anything else is a viewer.
    """
    config = config or SessionsConfig()
    lowered = {k.lower(): v for k, v in headers.items()}

    client_type = lowered.get(CLIENT_TYPE_HEADER, "").strip().lower()
    if client_type and client_type in {t.lower() for t in config.device_client_types}:
        return ConnectionRole.DEVICE

    user_agent = lowered.get("user-agent", "")
    if any(marker in user_agent for marker in config.device_user_agent_markers):
        return ConnectionRole.DEVICE

    return ConnectionRole.VIEWER


class SessionRegistry:
    """Tracks the single device session and the set of viewers."""

    def __init__(self):
        self._device: Session | None = None
        self._viewers: set[Session] = set()
        self._device_last_seen: float | None = None

    @property
    def device(self) -> Session | None:
        return self._device

    @property
    def viewers(self) -> frozenset[Session]:
        return frozenset(self._viewers)

    @property
    def viewer_count(self) -> int:
        return len(self._viewers)

    @property
    def device_connected(self) -> bool:
        return self._device is not None and self._device.open

    @property
    def device_last_seen(self) -> float | None:
        """Last time any device was heard from; kept after it leaves."""
        return self._device_last_seen

    def register(self, session: Session) -> Session | None:
        """Register by role. Returns a replaced device session, if any."""
        if session.is_device:
            return self.register_device(session)
        self.register_viewer(session)
        return None

    def register_device(self, session: Session) -> Session | None:
        """Make session the active device, returning the one it replaced."""
        previous = self._device
        self._device = session
        self.touch_device(session, session.connected_at)

        if previous is not None and previous is not session:
            logger.info(f"Device {session} replaced stale {previous}")
            return previous
        return None

    def register_viewer(self, session: Session) -> None:
        self._viewers.add(session)

    def unregister(self, session: Session) -> bool:
        """
        Remove a session from whichever role it holds.

        Returns True only when the active device was removed. Calling this
        twice, or for a device that was already replaced, is a no-op.
        """
        if session is self._device:
            self._device = None
            return True
        self._viewers.discard(session)
        return False

    def is_active_device(self, session: Session) -> bool:
        return session is self._device

    def touch_device(self, session: Session, now: float) -> bool:
        """Record that the active device was seen at `now`."""
        if session is not self._device:
            return False
        session.last_seen = now
        self._device_last_seen = now
        return True

    def stale_device(self, now: float, timeout: float) -> Session | None:
        """Return the device if it has been silent for longer than timeout."""
        device = self._device
        if device is None or device.last_seen is None:
            return None
        if now - device.last_seen > timeout:
            return device
        return None
