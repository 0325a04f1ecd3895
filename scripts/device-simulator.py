#!/usr/bin/env python3
"""
Harvester device simulator for Piezomon testing.

Connects to the relay as the device (x-client-type: device) and sends
readings the way the harvester firmware does, so the live path can be
exercised without hardware.

Usage:
    ./scripts/device-simulator.py [--url URL] [--scenario SCENARIO]

Scenarios:
    traffic     - Regular trigger events with a slowly charging store (default)
    idle        - No trigger events, voltage sagging
    burst       - Dense events, energy climbing quickly
    minimal     - Only voltage and event count; the relay derives energy
    silent      - Connect, send one reading, then stay quiet (liveness timeout)

Example:
    # Drive the live dashboard with normal traffic
    ./scripts/device-simulator.py

    # Check that the relay drops a silent device after 60 s
    ./scripts/device-simulator.py --scenario silent
"""

from __future__ import annotations

import argparse
import asyncio
import json
import random
import sys
from dataclasses import dataclass
from typing import Iterator

import websockets


@dataclass
class HarvesterState:
    """What the firmware would report."""

    voltage: float = 3.0
    event_count: int = 0
    energy: float = 0.0

    def to_message(self, include_energy: bool = True) -> dict:
        message = {
            "voltage": round(self.voltage, 3),
            "eventCount": self.event_count,
        }
        if include_energy:
            message["energy"] = round(self.energy, 6)
            message["estimatedRuntime"] = round(self.energy * 4000, 1)
        return message


def run_scenario(event_probability: float, sag: float) -> Iterator[HarvesterState]:
    state = HarvesterState()
    while True:
        if random.random() < event_probability:
            state.event_count += 1
            state.energy += random.uniform(0.0008, 0.002)
            state.voltage = min(3.6, state.voltage + random.uniform(0.02, 0.08))
        state.voltage = max(2.8, state.voltage - sag + random.gauss(0, 0.01))
        yield state


SCENARIOS = {
    "traffic": dict(event_probability=0.3, sag=0.01),
    "idle": dict(event_probability=0.0, sag=0.02),
    "burst": dict(event_probability=0.9, sag=0.0),
    "minimal": dict(event_probability=0.3, sag=0.01),
    "silent": dict(event_probability=0.3, sag=0.01),
}


async def simulate(url: str, scenario: str, interval: float, count: int | None) -> None:
    readings = run_scenario(**SCENARIOS[scenario])
    headers = {"x-client-type": "device"}

    async with websockets.connect(url, additional_headers=headers) as ws:
        print(f"Connected to {url} as device, scenario '{scenario}'")
        sent = 0
        for state in readings:
            message = state.to_message(include_energy=scenario != "minimal")
            await ws.send(json.dumps(message))
            sent += 1
            print(f"  sent {message}")

            if scenario == "silent":
                print("Going quiet; the relay should time this device out")
                await ws.wait_closed()
                return
            if count is not None and sent >= count:
                return
            await asyncio.sleep(interval)


def main() -> int:
    parser = argparse.ArgumentParser(description="Piezomon device simulator")
    parser.add_argument("--url", default="ws://localhost:3000/ws", help="Relay WebSocket URL")
    parser.add_argument(
        "--scenario",
        choices=sorted(SCENARIOS),
        default="traffic",
        help="Reading pattern to send",
    )
    parser.add_argument("--interval", type=float, default=2.0, help="Seconds between readings")
    parser.add_argument("--count", type=int, default=None, help="Stop after N readings")
    args = parser.parse_args()

    try:
        asyncio.run(simulate(args.url, args.scenario, args.interval, args.count))
    except KeyboardInterrupt:
        pass
    except (OSError, websockets.exceptions.WebSocketException) as e:
        print(f"Simulator stopped: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
