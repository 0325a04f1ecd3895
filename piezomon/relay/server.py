"""
Relay server for Piezomon.

Provides:
- WebSocket endpoint shared by the device and the dashboards
- Demo data ticks while no device is attached
- Device liveness supervision
- Health and status REST routes

All state mutation happens synchronously on the event loop; sends are
awaited only after the mutation is complete.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any, Callable

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from piezomon import __version__
from piezomon.core.config import DemoConfig, PiezomonConfig
from piezomon.core.mode import ModeController
from piezomon.core.protocol import (
    PING_MESSAGE,
    MalformedMessage,
    data_message,
    decode_device_message,
    decode_viewer_message,
    history_message,
    mode_change_message,
    status_message,
)
from piezomon.core.readings import Mode
from piezomon.core.sessions import ConnectionRole, Session, classify
from piezomon.core.state import SystemState
from piezomon.demo.generator import DemoGenerator
from piezomon.relay.broadcast import BroadcastCoordinator

logger = logging.getLogger(__name__)


class RelayServer:
    """
    Telemetry relay between one device and many dashboards.

    The clock and random source are injectable so tests can drive
    ticks and sweeps through simulated time.
    """

    def __init__(
        self,
        config: PiezomonConfig | None = None,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
    ):
        self._config = config or PiezomonConfig()
        self._clock = clock

        self._state = SystemState(
            metrics_config=self._config.metrics,
            history_config=self._config.history,
            now=clock(),
        )
        self._controller = ModeController(
            self._state,
            liveness_timeout=self._config.sessions.liveness_timeout_seconds,
        )
        self._generator = DemoGenerator(self._config.demo, self._config.metrics, rng=rng)
        self._rebase_on_demo()
        self._broadcaster = BroadcastCoordinator(
            self._state.registry,
            send_timeout=self._config.server.send_timeout_seconds,
        )

        self._app = FastAPI(
            title="Piezomon Relay",
            description="Piezoelectric harvester telemetry relay",
            version=__version__,
        )
        self._running = False
        self._demo_task: asyncio.Task | None = None
        self._liveness_task: asyncio.Task | None = None
        self._server: uvicorn.Server | None = None
        self._server_task: asyncio.Task | None = None

        self._setup_routes()

    @property
    def app(self) -> FastAPI:
        return self._app

    @property
    def state(self) -> SystemState:
        return self._state

    @property
    def controller(self) -> ModeController:
        return self._controller

    @property
    def generator(self) -> DemoGenerator:
        return self._generator

    @property
    def broadcaster(self) -> BroadcastCoordinator:
        return self._broadcaster

    def _setup_routes(self) -> None:
        self._app.get("/health")(self._health_check)
        self._app.get("/api/status")(self._get_status)
        self._app.websocket("/ws")(self._websocket_endpoint)
        # Firmware connects to the root path
        self._app.websocket("/")(self._websocket_endpoint)

    # ========================================================================
    # REST
    # ========================================================================

    async def _health_check(self) -> dict[str, Any]:
        return {
            "status": "healthy",
            "running": self._running,
            "viewers": self._state.registry.viewer_count,
            "device_connected": self._state.registry.device_connected,
            "mode": self._state.mode.value,
        }

    async def _get_status(self) -> dict[str, Any]:
        return {
            "status": "ok",
            "data": self._state.snapshot(),
            "device": self._state.status(),
            "timestamp": self._clock(),
        }

    # ========================================================================
    # WebSocket
    # ========================================================================

    async def _websocket_endpoint(self, websocket: WebSocket) -> None:
        """Classify the connection once, then serve it until it closes."""
        role = classify(websocket.headers, self._config.sessions)
        await websocket.accept()

        session = Session(role=role, connection=websocket, connected_at=self._clock())
        client = websocket.client.host if websocket.client else "unknown"
        logger.info(f"{role.value.capitalize()} connected from {client} as {session}")

        close_reason = "disconnected"
        try:
            if role == ConnectionRole.DEVICE:
                await self.on_device_connected(session)
                await self._device_loop(websocket, session)
            else:
                await self.on_viewer_connected(session)
                await self._viewer_loop(websocket, session)
        except WebSocketDisconnect:
            pass
        except Exception as e:
            close_reason = "error"
            logger.error(f"Connection error on {session}: {e}")
        finally:
            session.close()
            await self.on_session_closed(session, close_reason)

    async def _receive(self, websocket: WebSocket, timeout: float | None = None) -> str | bytes:
        if timeout is None:
            message = await websocket.receive()
        else:
            message = await asyncio.wait_for(websocket.receive(), timeout=timeout)

        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(message.get("code", 1000))
        if message.get("text") is not None:
            return message["text"]
        return message.get("bytes") or b""

    async def _device_loop(self, websocket: WebSocket, session: Session) -> None:
        while True:
            data = await self._receive(websocket)
            await self.handle_device_message(session, data)

    async def _viewer_loop(self, websocket: WebSocket, session: Session) -> None:
        ping_interval = self._config.server.ping_interval_seconds
        while True:
            try:
                data = await self._receive(websocket, timeout=ping_interval)
            except asyncio.TimeoutError:
                await self._broadcaster.send(session, PING_MESSAGE)
                continue
            await self.handle_viewer_message(session, data)

    # ========================================================================
    # Connection events
    # ========================================================================

    async def on_device_connected(self, session: Session) -> None:
        transition = self._controller.device_connected(session, self._clock())
        if transition.replaced is not None:
            transition.replaced.close()
        if transition.reset:
            logger.info("Live cold start: accumulated energy reset")
        await self._broadcaster.broadcast_status(self._state.status())

    async def on_viewer_connected(self, session: Session) -> None:
        self._state.registry.register_viewer(session)
        send = self._broadcaster.send
        await send(session, data_message(self._state.snapshot()))
        await send(session, history_message(self._state.history()))
        await send(session, status_message(self._state.status()))

    async def on_session_closed(self, session: Session, reason: str = "disconnected") -> None:
        if session.is_device:
            transition = self._controller.device_lost(session, f"device {reason}")
            if transition is None:
                logger.debug(f"Stale {session} closed")
                return
            self._rebase_on_demo()
            logger.info(f"Device {reason}, falling back to demo mode")
            await self._broadcaster.broadcast_status(self._state.status())
        else:
            self._state.registry.unregister(session)
            logger.info(f"Viewer {session} {reason}")

    # ========================================================================
    # Messages
    # ========================================================================

    async def handle_device_message(
        self, session: Session, data: str | bytes
    ) -> dict[str, Any] | None:
        """Decode, aggregate and broadcast one device reading."""
        try:
            reading = decode_device_message(data, self._config.metrics)
        except MalformedMessage as e:
            logger.warning(f"Dropping malformed message from {session}: {e}")
            return None

        now = self._clock()
        was_demo = self._controller.demo_active
        if not self._controller.accept_reading(session, now):
            return None
        if was_demo:
            # Demo energy is not this device's baseline
            self._state.metrics.rebase(reading.energy)

        snapshot = self._state.ingest(reading, now)
        logger.debug(f"Reading from {session}: {reading}")
        await self._broadcaster.broadcast_data(snapshot)
        return snapshot

    async def handle_viewer_message(self, session: Session, data: str | bytes) -> None:
        try:
            command = decode_viewer_message(data)
        except MalformedMessage as e:
            logger.warning(f"Dropping malformed message from {session}: {e}")
            return

        if command.kind == "mode" and command.mode is not None:
            await self.request_mode(session, command.mode)
        elif command.kind == "getHistory":
            await self._broadcaster.send(session, history_message(self._state.history()))
        elif command.kind == "unknown":
            logger.debug(f"Ignoring unknown message type from {session}")

    async def request_mode(self, session: Session, mode: Mode) -> None:
        """Apply a viewer's mode switch and acknowledge it to that viewer only."""
        logger.info(f"{session} requested {mode.value} mode")
        transition = self._controller.request_mode(mode, self._clock())
        if transition.current == Mode.DEMO:
            self._rebase_on_demo()

        await self._broadcaster.send(session, mode_change_message(transition.current))
        if transition.reset:
            await self._broadcaster.send(session, data_message(self._state.snapshot()))

    # ========================================================================
    # Periodic work
    # ========================================================================

    async def demo_tick(self) -> dict[str, Any] | None:
        """Generate and broadcast one synthetic reading if in demo mode."""
        if not self._controller.demo_active:
            return None

        reading = self._generator.next_reading()
        snapshot = self._state.ingest(reading, self._clock())
        await self._broadcaster.broadcast_data(snapshot)
        return snapshot

    async def liveness_sweep(self) -> bool:
        """Drop a silent device. Returns True if one was dropped."""
        device = self._state.registry.device
        transition = self._controller.sweep(self._clock())
        if transition is None:
            return False
        self._rebase_on_demo()

        if device is not None:
            try:
                await device.connection.close(code=1001)
            except Exception as e:
                logger.debug(f"Closing timed-out {device} failed: {e}")

        await self._broadcaster.broadcast_status(self._state.status())
        return True

    def _rebase_on_demo(self) -> None:
        """Continue energy accounting from the generator's own energy."""
        self._state.metrics.rebase(self._generator.last_reading.energy)

    def apply_demo_config(self, config: DemoConfig) -> None:
        self._config.demo = config
        self._generator.update_config(config)

    async def _demo_loop(self) -> None:
        while self._running:
            # Re-read each tick so a reloaded interval takes effect
            await asyncio.sleep(self._config.demo.tick_interval_seconds)
            try:
                await self.demo_tick()
            except Exception as e:
                logger.error(f"Demo tick failed: {e}")

    async def _liveness_loop(self) -> None:
        interval = self._config.sessions.sweep_interval_seconds
        while self._running:
            await asyncio.sleep(interval)
            try:
                await self.liveness_sweep()
            except Exception as e:
                logger.error(f"Liveness sweep failed: {e}")

    # ========================================================================
    # Server Control
    # ========================================================================

    async def start(self, serve: bool = True) -> None:
        """Start timers and, unless serve is False, the uvicorn listener."""
        if self._running:
            return
        self._running = True

        if self._config.demo.enabled:
            self._demo_task = asyncio.create_task(self._demo_loop())
            logger.info("Demo mode started")
        self._liveness_task = asyncio.create_task(self._liveness_loop())

        if serve:
            self._server = uvicorn.Server(self._uvicorn_config())
            self._server_task = asyncio.create_task(self._server.serve())

    async def stop(self) -> None:
        """Stop timers and the listener."""
        self._running = False

        for task in (self._demo_task, self._liveness_task):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._demo_task = None
        self._liveness_task = None

        if self._server:
            self._server.should_exit = True
            if self._server_task:
                try:
                    await asyncio.wait_for(self._server_task, timeout=5.0)
                except asyncio.TimeoutError:
                    self._server_task.cancel()
                except asyncio.CancelledError:
                    pass
            self._server = None
            self._server_task = None

    def run(self) -> None:
        """Run server synchronously (for standalone use)."""
        asyncio.run(self._serve_forever())

    async def _serve_forever(self) -> None:
        await self.start(serve=False)
        try:
            await uvicorn.Server(self._uvicorn_config()).serve()
        finally:
            await self.stop()

    def _uvicorn_config(self) -> uvicorn.Config:
        return uvicorn.Config(
            self._app,
            host=self._config.server.host,
            port=self._config.server.port,
            log_level=self._config.system.log_level.lower(),
        )
