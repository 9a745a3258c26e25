from .config import (
    ClientConfig,
)
from .drop_client import (
    DropClient,
)
from .events import (
    DirectorySink,
    LoggingTransferEvents,
)

__all__ = [
    "ClientConfig",
    "DirectorySink",
    "DropClient",
    "LoggingTransferEvents",
]
