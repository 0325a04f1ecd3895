"""
Piezomon entry point.

Run with: python -m piezomon
Or: piezomon (if installed)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

from piezomon import __version__
from piezomon.core.config import ENERGY_MODELS, Config, ConfigChange
from piezomon.relay.server import RelayServer

logger = logging.getLogger("piezomon")


RELOADABLE_SECTION = "demo"
# Decides whether the demo loop runs at all
RESTART_ONLY = {"demo.enabled"}


def split_reloadable(changes: list[ConfigChange]) -> tuple[list[ConfigChange], list[ConfigChange]]:
    """Partition changes into live-applied demo generator settings and the rest."""
    applied: list[ConfigChange] = []
    ignored: list[ConfigChange] = []
    for change in changes:
        section = change.path.split(".", 1)[0]
        if section == RELOADABLE_SECTION and change.path not in RESTART_ONLY:
            applied.append(change)
        else:
            ignored.append(change)
    return applied, ignored


async def run_relay(config: Config, watch_config: bool = False) -> None:
    """Run the relay until SIGINT/SIGTERM."""
    print(f"⚡ Starting Piezomon v{__version__}")
    print("=" * 40)

    server = RelayServer(config=config.typed)
    loop = asyncio.get_running_loop()

    if watch_config:
        def on_config_change(changes: list[ConfigChange]) -> None:
            applied, ignored = split_reloadable(changes)
            for change in applied:
                logger.info(f"Config {change.path}: {change.old_value!r} -> {change.new_value!r}")
            for change in ignored:
                logger.warning(f"Config {change.path} changed; restart to apply it")
            if applied:
                # Watchdog calls back on its own thread
                loop.call_soon_threadsafe(server.apply_demo_config, config.demo)

        config.enable_hot_reload(on_config_change)
        print(f"👀 Watching {config.source_path} for demo setting changes")

    shutdown_event = asyncio.Event()

    def signal_handler():
        print("\n🛑 Shutting down...")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    await server.start()

    print(f"📡 WebSocket relay listening on ws://{config.server.host}:{config.server.port}/ws")
    print(f"🎛️  Demo mode: {'enabled' if config.demo.enabled else 'disabled'}"
          f" ({config.metrics.energy_model} energy model)")
    print("Press Ctrl+C to stop")
    print()

    await shutdown_event.wait()

    await server.stop()
    config.disable_hot_reload()

    print("👋 Shutdown complete")


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="piezomon",
        description="Real-time telemetry relay for a piezoelectric harvester",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Configuration file path",
    )
    parser.add_argument(
        "-p", "--port",
        type=int,
        default=None,
        help="Listen port (overrides config and PORT)",
    )
    parser.add_argument(
        "--energy-model",
        choices=ENERGY_MODELS,
        default=None,
        help="How demo energy is derived",
    )
    parser.add_argument(
        "--no-demo",
        action="store_true",
        help="Do not synthesize readings while no device is attached",
    )
    parser.add_argument(
        "--watch-config",
        action="store_true",
        help="Reload demo generator settings (including tick interval) when the "
        "config file changes; other sections need a restart",
    )

    args = parser.parse_args()

    config_paths = [
        args.config,
        Path("config/default.yaml"),
        Path.home() / ".config/piezomon/config.yaml",
    ]

    config = None
    for path in config_paths:
        if path and path.exists():
            print(f"Loading config from: {path}")
            config = Config.load(path)
            break

    if config is None:
        print("No config file found, using defaults")
        config = Config.default()

    overrides: dict = {}
    port = args.port or os.environ.get("PORT")
    if port:
        overrides.setdefault("server", {})["port"] = port
    if args.energy_model:
        overrides.setdefault("metrics", {})["energy_model"] = args.energy_model
    if args.no_demo:
        overrides.setdefault("demo", {})["enabled"] = False

    try:
        config.update(overrides)
    except ValueError as e:
        print(f"Invalid command line override: {e}")
        sys.exit(1)

    errors = config.validate()
    if errors:
        print("Configuration errors:")
        for error in errors:
            print(f"  - {error}")
        sys.exit(1)

    if args.watch_config and config.source_path is None:
        print("--watch-config needs a config file")
        sys.exit(1)

    logging.basicConfig(
        level=config.system.log_level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    try:
        asyncio.run(run_relay(config, watch_config=args.watch_config))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
