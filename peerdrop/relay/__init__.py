"""Signaling relay: client registry, router and websocket server."""

from .config import (
    RelayConfig,
)
from .registry import (
    ClientRegistry,
    ClientSession,
    PeerSummary,
)
from .router import (
    RelayRouter,
)
from .server import (
    RelayServer,
)

__all__ = [
    "ClientRegistry",
    "ClientSession",
    "PeerSummary",
    "RelayConfig",
    "RelayRouter",
    "RelayServer",
]
