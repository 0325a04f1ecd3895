"""
Dashboard-side viewer client for Piezomon.

Connects to the relay, keeps the most recent data, status, history and
mode, and reconnects after a fixed delay whenever the connection fails
or closes. Rendering is left to whoever consumes the callbacks.

Run with: python -m piezomon.client.viewer ws://localhost:3000/ws
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import Any, Awaitable, Callable

import websockets

logger = logging.getLogger(__name__)

RECONNECT_DELAY_SECONDS = 3.0


class ViewerClient:
    """Reconnecting consumer of the relay's viewer feed."""

    def __init__(
        self,
        url: str,
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
        on_message: Callable[[dict[str, Any]], Awaitable[None]] | None = None,
    ):
        self._url = url
        self._reconnect_delay = reconnect_delay
        self._on_message = on_message
        self._running = False
        self._ws: Any = None

        self.connected = False
        self.connect_attempts = 0
        self.data: dict[str, Any] | None = None
        self.status: dict[str, Any] | None = None
        self.history: dict[str, Any] | None = None
        self.mode: str | None = None

    @property
    def url(self) -> str:
        return self._url

    async def run(self) -> None:
        """Connect and consume until stop() is called."""
        self._running = True

        while self._running:
            self.connect_attempts += 1
            try:
                async with websockets.connect(self._url) as ws:
                    self._ws = ws
                    self.connected = True
                    logger.info(f"Connected to {self._url}")
                    await ws.send(json.dumps({"type": "getHistory"}))

                    async for raw in ws:
                        await self._dispatch(raw)
                        if not self._running:
                            break
            except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
                logger.warning(f"Connection to {self._url} failed: {e}")
            finally:
                self._ws = None
                if self.connected:
                    logger.info("Connection closed")
                self.connected = False

            if self._running:
                await asyncio.sleep(self._reconnect_delay)

    def stop(self) -> None:
        self._running = False

    async def request_mode(self, mode: str) -> bool:
        """Ask the relay to switch to "live" or "demo"."""
        if self._ws is None:
            logger.error("Cannot switch mode: not connected")
            return False
        await self._ws.send(json.dumps({"type": "mode", "mode": mode}))
        return True

    async def _dispatch(self, raw: str | bytes) -> None:
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring undecodable message from relay")
            return
        if not isinstance(message, dict):
            return

        msg_type = message.get("type")
        if msg_type == "data":
            self.data = message.get("data")
            if self.data:
                self.mode = self.data.get("mode", self.mode)
        elif msg_type == "status":
            self.status = {k: v for k, v in message.items() if k != "type"}
        elif msg_type == "history":
            self.history = message.get("data")
        elif msg_type == "mode_change":
            self.mode = message.get("mode")
        elif msg_type == "ping" and self._ws is not None:
            await self._ws.send(json.dumps({"type": "pong"}))

        if self._on_message:
            await self._on_message(message)


def main() -> None:
    """CLI entry point: log the relay feed to the console."""
    parser = argparse.ArgumentParser(
        prog="piezomon-viewer",
        description="Follow a Piezomon relay from the command line",
    )
    parser.add_argument("url", nargs="?", default="ws://localhost:3000/ws")
    parser.add_argument(
        "--reconnect-delay",
        type=float,
        default=RECONNECT_DELAY_SECONDS,
        help="Seconds to wait before reconnecting",
    )
    parser.add_argument("--mode", choices=("live", "demo"), help="Request a mode on connect")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    client: ViewerClient

    async def on_message(message: dict[str, Any]) -> None:
        msg_type = message.get("type")
        if msg_type == "data":
            data = message["data"]
            insights = data.get("insights", {})
            print(
                f"[{data.get('mode')}] {data.get('voltage')} V  "
                f"events={data.get('eventCount')}  energy={data.get('energy')} J  "
                f"total={insights.get('totalEnergy')} J  power={insights.get('power')} W"
            )
        elif msg_type == "status":
            print(f"device connected={message.get('deviceConnected')} "
                  f"last seen={message.get('deviceLastSeen')}")
        elif msg_type == "history":
            print(f"history: {len(message['data'].get('timestamps', []))} points")
            if args.mode:
                await client.request_mode(args.mode)
        elif msg_type == "mode_change":
            print(f"mode -> {message.get('mode')}")

    client = ViewerClient(args.url, reconnect_delay=args.reconnect_delay, on_message=on_message)
    try:
        asyncio.run(client.run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
