"""WebSocket relay between the device and the dashboards."""

from piezomon.relay.broadcast import BroadcastCoordinator
from piezomon.relay.server import RelayServer

__all__ = ["BroadcastCoordinator", "RelayServer"]
