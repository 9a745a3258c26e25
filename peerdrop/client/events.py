"""
Ready-made ``ITransferEvents`` sinks for headless clients.
"""

from collections.abc import (
    Sequence,
)
import logging
import math
import os
from pathlib import (
    Path,
)
from typing import (
    Any,
)

import trio

from peerdrop.abc import (
    ITransferEvents,
)
from peerdrop.custom_types import (
    TPeerId,
)
from peerdrop.negotiation.session import (
    IncomingTransferRequest,
    NegotiationFailure,
)
from peerdrop.relay.registry import (
    PeerSummary,
)
from peerdrop.transfer.manifest import (
    TransferManifest,
    sanitize_filename,
)
from peerdrop.transfer.progress import (
    Direction,
)
from peerdrop.transfer.receiver import (
    ReceivedFile,
    TransferFailure,
)

logger = logging.getLogger(__name__)


class LoggingTransferEvents(ITransferEvents):
    """
    Logs every event. Incoming transfers are declined unless ``auto_accept``
    is set.
    """

    def __init__(self, auto_accept: bool = False) -> None:
        self.auto_accept = auto_accept
        self.peers: tuple[PeerSummary, ...] = ()

    def on_peers_changed(self, peers: Sequence[PeerSummary]) -> None:
        self.peers = tuple(peers)
        names = ", ".join(f"{p.display_name} ({p.id})" for p in self.peers)
        logger.info("Peers: %s", names or "none")

    def on_transfer_request(self, request: IncomingTransferRequest) -> None:
        logger.info(
            "%s wants to send %d file(s), %d bytes: %s",
            request.peer_id,
            len(request.manifest),
            request.manifest.total_size,
            ", ".join(entry.safe_name for entry in request.manifest),
        )
        if self.auto_accept:
            request.accept()
        else:
            logger.info("Declining transfer from %s", request.peer_id)
            request.decline()

    def on_progress(
        self, peer_id: TPeerId, percentage: int, direction: Direction
    ) -> None:
        logger.debug("%s %s: %d%%", direction.value, peer_id, percentage)

    def on_file_received(self, peer_id: TPeerId, received: ReceivedFile) -> None:
        logger.info(
            "Received %s (%d bytes) from %s", received.name, received.size, peer_id
        )

    def on_batch_complete(
        self,
        peer_id: TPeerId,
        manifest: TransferManifest,
        direction: Direction,
    ) -> None:
        logger.info(
            "Batch of %d file(s) %s %s complete",
            len(manifest),
            "to" if direction is Direction.SEND else "from",
            peer_id,
        )

    def on_negotiation_failed(self, failure: NegotiationFailure) -> None:
        logger.warning(
            "Could not connect to %s: %s", failure.peer_id, failure.reason
        )
        failure.dismiss()

    def on_transfer_failed(self, failure: TransferFailure) -> None:
        logger.warning(
            "Transfer with %s failed (%s): %s",
            failure.peer_id,
            failure.file_name or "no file",
            failure.reason,
        )


def unique_path(directory: Path, name: str) -> Path:
    """
    First free path for ``name`` in ``directory``: ``name``, then
    ``stem (1).ext``, ``stem (2).ext`` and so on.
    """
    candidate = directory / name
    stem, dot, suffix = name.rpartition(".")
    if not dot or not stem:
        stem, suffix = name, ""
    n = 1
    while candidate.exists():
        candidate = directory / (f"{stem} ({n})" + (f".{suffix}" if suffix else ""))
        n += 1
    return candidate


class DirectorySink(LoggingTransferEvents):
    """
    Writes every received file into ``directory``; never overwrites.

    Callbacks run on the trio loop, so received files are queued and ``run``
    writes them from a worker thread. Start ``run`` next to the client.
    """

    def __init__(
        self, directory: str | os.PathLike[str], auto_accept: bool = False
    ) -> None:
        super().__init__(auto_accept=auto_accept)
        self.directory = Path(directory)
        self.saved: list[Path] = []
        self._send_channel, self._receive_channel = trio.open_memory_channel[
            ReceivedFile
        ](math.inf)

    def on_file_received(self, peer_id: TPeerId, received: ReceivedFile) -> None:
        super().on_file_received(peer_id, received)
        try:
            self._send_channel.send_nowait(received)
        except trio.ClosedResourceError:
            logger.error("Dropped %s: the sink is closed", received.name)

    async def run(self, *, task_status: Any = trio.TASK_STATUS_IGNORED) -> None:
        """Write queued files until ``aclose`` is called."""
        task_status.started()
        async with self._receive_channel:
            async for received in self._receive_channel:
                path = await trio.to_thread.run_sync(self._save, received)
                if path is not None:
                    self.saved.append(path)
                    logger.info("Saved %s", path)

    async def aclose(self) -> None:
        """Stop queueing; ``run`` returns once every queued file is written."""
        await self._send_channel.aclose()

    def _save(self, received: ReceivedFile) -> Path | None:
        name = sanitize_filename(received.name)
        path = self.directory / name
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            path = unique_path(self.directory, name)
            # "x": never clobber a file that appeared since the check
            with open(path, "xb") as f:
                f.write(received.data)
        except OSError as e:
            logger.error("Could not save %s: %s", path, e)
            return None
        return path
