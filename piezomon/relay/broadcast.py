"""
Broadcast coordinator for Piezomon.

Fans envelopes out to every viewer. Delivery is best effort: each send
runs concurrently under a timeout, and a failure on one viewer is
logged without affecting the rest. Closed sessions are skipped here;
only the connection handler removes them from the registry.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from piezomon.core.protocol import data_message, status_message
from piezomon.core.sessions import Session, SessionRegistry

logger = logging.getLogger(__name__)


class BroadcastCoordinator:
    """Sends messages to viewer sessions."""

    def __init__(self, registry: SessionRegistry, send_timeout: float = 5.0):
        self._registry = registry
        self._send_timeout = send_timeout
        self._failures = 0

    @property
    def failures(self) -> int:
        """Number of sends that raised or timed out."""
        return self._failures

    async def send(self, session: Session, message: dict[str, Any]) -> bool:
        """Send to one session. Returns False if skipped or failed."""
        if not session.open:
            return False

        try:
            await asyncio.wait_for(session.send_json(message), timeout=self._send_timeout)
            return True
        except asyncio.TimeoutError:
            self._failures += 1
            logger.warning(f"Send to {session} timed out after {self._send_timeout}s")
        except Exception as e:
            self._failures += 1
            logger.warning(f"Send to {session} failed: {e}")
        return False

    async def broadcast(self, message: dict[str, Any]) -> int:
        """Send message to all viewers. Returns the number delivered."""
        viewers = [s for s in self._registry.viewers if s.open]
        if not viewers:
            return 0

        results = await asyncio.gather(*(self.send(s, message) for s in viewers))
        return sum(results)

    async def broadcast_data(self, snapshot: dict[str, Any]) -> int:
        return await self.broadcast(data_message(snapshot))

    async def broadcast_status(self, status: dict[str, Any]) -> int:
        return await self.broadcast(status_message(status))
