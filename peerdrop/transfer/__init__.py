from .config import (
    TransferConfig,
)
from .manifest import (
    FileEntry,
    TransferManifest,
    sanitize_filename,
)
from .progress import (
    Direction,
    ProgressTracker,
)
from .receiver import (
    ReceivedFile,
    TransferFailure,
    TransferReceiver,
)
from .sender import (
    OutgoingFile,
    send_files,
)

__all__ = [
    "Direction",
    "FileEntry",
    "OutgoingFile",
    "ProgressTracker",
    "ReceivedFile",
    "TransferConfig",
    "TransferFailure",
    "TransferManifest",
    "TransferReceiver",
    "sanitize_filename",
    "send_files",
]
