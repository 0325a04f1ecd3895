"""
Mode controller for Piezomon.

The live/demo state machine:

    DEMO --device registers--> LIVE   (cold start: energy zeroed)
    LIVE --device closes/errors/times out--> DEMO   (values kept)
    any  --viewer asks "live", no device--> LIVE   (full reset)
    any  --viewer asks "demo"--> DEMO   (values kept)

Every method mutates state synchronously and reports what happened, so
the caller can decide which messages to send afterwards.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from piezomon.core.readings import Mode
from piezomon.core.sessions import Session
from piezomon.core.state import SystemState

logger = logging.getLogger(__name__)

LIVENESS_TIMEOUT_SECONDS = 60.0


@dataclass(frozen=True)
class ModeTransition:
    """Outcome of a mode-affecting event."""

    previous: Mode
    current: Mode
    reason: str
    reset: bool = False
    replaced: Session | None = None

    @property
    def changed(self) -> bool:
        return self.previous != self.current


class ModeController:
    """Decides the mode on device and viewer events."""

    def __init__(self, state: SystemState, liveness_timeout: float = LIVENESS_TIMEOUT_SECONDS):
        self._state = state
        self._liveness_timeout = liveness_timeout

    @property
    def mode(self) -> Mode:
        return self._state.mode

    @property
    def demo_active(self) -> bool:
        return self._state.mode == Mode.DEMO

    @property
    def liveness_timeout(self) -> float:
        return self._liveness_timeout

    def _set_mode(self, mode: Mode, reason: str, reset: bool = False,
                  replaced: Session | None = None) -> ModeTransition:
        previous = self._state.mode
        self._state.mode = mode
        if previous != mode:
            logger.info(f"Mode {previous.value} -> {mode.value} ({reason})")
        return ModeTransition(previous, mode, reason, reset=reset, replaced=replaced)

    # ========================================================================
    # Device events
    # ========================================================================

    def device_connected(self, session: Session, now: float) -> ModeTransition:
        """Register a device and enter LIVE, zeroing energy on a cold start."""
        replaced = self._state.registry.register_device(session)
        self._state.registry.touch_device(session, now)

        cold = self._state.mode != Mode.LIVE
        if cold:
            self._state.reset_energy()

        return self._set_mode(Mode.LIVE, "device connected", reset=cold, replaced=replaced)

    def accept_reading(self, session: Session, now: float) -> bool:
        """
        Admit a reading from a device session.

        Readings from a replaced session are refused. A reading from the
        active device brings a viewer-forced DEMO back to LIVE.
        """
        if not self._state.registry.touch_device(session, now):
            logger.debug(f"Ignoring reading from stale {session}")
            return False

        if self._state.mode != Mode.LIVE:
            self._set_mode(Mode.LIVE, "device reading")
        return True

    def device_lost(self, session: Session, reason: str) -> ModeTransition | None:
        """
        Handle close or error on a device session.

        Returns None when the session was not the active device.
        """
        if not self._state.registry.unregister(session):
            return None
        return self._set_mode(Mode.DEMO, reason)

    def sweep(self, now: float) -> ModeTransition | None:
        """Drop the device if it has been silent past the liveness timeout."""
        stale = self._state.registry.stale_device(now, self._liveness_timeout)
        if stale is None:
            return None

        logger.warning(
            f"Device {stale} timed out after {now - stale.last_seen:.0f}s of silence"
        )
        stale.close()
        return self.device_lost(stale, "device timeout")

    # ========================================================================
    # Viewer requests
    # ========================================================================

    def request_mode(self, mode: Mode, now: float) -> ModeTransition:
        """Apply a viewer's explicit mode request."""
        if mode == Mode.DEMO:
            return self._set_mode(Mode.DEMO, "viewer request")

        if self._state.registry.device_connected:
            return self._set_mode(Mode.LIVE, "viewer request")

        # Clean slate while waiting for a device
        transition = self._set_mode(Mode.LIVE, "viewer request", reset=True)
        self._state.reset_all(now)
        return transition
