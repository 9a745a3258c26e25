"""Local-network file drop: a signaling relay and peer-to-peer transfers."""

from importlib.metadata import version as __version

from peerdrop.client import (
    ClientConfig,
    DirectorySink,
    DropClient,
    LoggingTransferEvents,
)
from peerdrop.relay import (
    RelayConfig,
    RelayServer,
)
from peerdrop.transfer import (
    OutgoingFile,
    TransferConfig,
)
from peerdrop.utils.logging import (
    setup_logging,
)

# Initialize logging configuration
setup_logging()

__version__ = __version("peerdrop")

__all__ = [
    "ClientConfig",
    "DirectorySink",
    "DropClient",
    "LoggingTransferEvents",
    "OutgoingFile",
    "RelayConfig",
    "RelayServer",
    "TransferConfig",
]
