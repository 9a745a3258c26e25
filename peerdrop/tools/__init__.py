from .loopback import (
    LoopbackDataChannel,
    LoopbackNetwork,
    LoopbackPeerConnection,
    MemorySignalConnection,
)

__all__ = [
    "LoopbackDataChannel",
    "LoopbackNetwork",
    "LoopbackPeerConnection",
    "MemorySignalConnection",
]
