"""
Receiving side of the transfer protocol.

The receiver reassembles each file from its chunks using the sizes declared
by ``start``; a file is handed to the UI only once all of its bytes arrived.
Anything that breaks the protocol abandons the whole batch and discards the
partial file.
"""

from dataclasses import (
    dataclass,
    field,
)
import json
import logging
from typing import (
    Any,
)

from peerdrop.abc import (
    IDataChannel,
    ITransferEvents,
)
from peerdrop.custom_types import (
    TPeerId,
)

from .config import (
    END_MESSAGE_TYPE,
    START_MESSAGE_TYPE,
)
from .exceptions import (
    ChannelClosedError,
    ManifestError,
    SizeMismatchError,
    TransferError,
    TransferProtocolError,
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

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReceivedFile:
    name: str
    original_name: str
    data: bytes
    mime_type: str = ""

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class TransferFailure:
    peer_id: TPeerId
    file_name: str | None
    reason: str


@dataclass
class TransferState:
    manifest: TransferManifest
    current_file_index: int = 0
    bytes_received_for_current_file: int = 0
    assembled_chunks: list[bytes] = field(default_factory=list)

    @property
    def current_entry(self) -> FileEntry | None:
        if self.current_file_index >= len(self.manifest):
            return None
        return self.manifest[self.current_file_index]

    @property
    def is_complete(self) -> bool:
        return self.current_file_index >= len(self.manifest)

    def reset_current(self) -> None:
        self.bytes_received_for_current_file = 0
        self.assembled_chunks = []


class TransferReceiver:
    """
    Consumes the messages of one peer channel.

    ``handle_message`` and ``handle_close`` are synchronous so the protocol
    can be driven message by message; ``run`` pumps a channel into them.
    """

    def __init__(
        self,
        peer_id: TPeerId,
        events: ITransferEvents | None = None,
        advisory_manifest: TransferManifest | None = None,
    ) -> None:
        self.peer_id = peer_id
        self.events = events
        self.advisory_manifest = advisory_manifest
        self.state: TransferState | None = None
        self._tracker: ProgressTracker | None = None
        # Set after a failure; the rest of the abandoned batch is dropped
        self._abandoned = False
        # Batches that completed or failed
        self.batches_finished = 0

    @property
    def in_progress(self) -> bool:
        return self.state is not None

    def handle_message(self, message: bytes | str) -> None:
        if isinstance(message, str):
            self._handle_control(message)
        else:
            self._handle_chunk(bytes(message))

    def handle_close(self) -> None:
        if self.state is not None:
            self._fail(ChannelClosedError("Channel closed before the batch finished"))

    async def run(self, channel: IDataChannel, *, close_when_done: bool = False) -> None:
        """
        Receive until the channel closes.

        With ``close_when_done`` the receiver closes the channel itself once
        a batch has completed or failed, which tells the sender every byte
        was consumed.
        """
        while True:
            try:
                message = await channel.receive()
            except ChannelClosedError:
                break
            self.handle_message(message)
            if close_when_done and self.batches_finished:
                logger.debug("Closing channel %s after the batch", channel.label)
                await channel.close()
                return
        self.handle_close()

    # -------------------------- control messages --------------------------

    def _handle_control(self, text: str) -> None:
        try:
            data: Any = json.loads(text)
        except json.JSONDecodeError:
            logger.warning("Ignoring non-JSON text message from %s", self.peer_id)
            return
        except RecursionError:
            logger.warning("Ignoring deeply nested text message from %s", self.peer_id)
            return
        msg_type = data.get("type") if isinstance(data, dict) else None
        if msg_type == START_MESSAGE_TYPE:
            self._handle_start(data)
        elif msg_type == END_MESSAGE_TYPE:
            self._handle_end()
        else:
            logger.debug(
                "Ignoring unknown control message %r from %s", msg_type, self.peer_id
            )

    def _handle_start(self, data: dict[str, Any]) -> None:
        if self.state is not None:
            self._fail(
                TransferProtocolError("New batch started before the previous finished")
            )
        try:
            manifest = self._with_advisory_types(
                TransferManifest.from_files_list(data.get("files"))
            )
        except ManifestError as e:
            self._abandoned = True
            self._report_failure(None, f"Invalid manifest: {e}")
            return

        logger.info(
            "Receiving %d file(s), %d bytes, from %s",
            len(manifest),
            manifest.total_size,
            self.peer_id,
        )
        self.state = TransferState(manifest=manifest)
        self._tracker = ProgressTracker(manifest.total_size)
        self._abandoned = False
        self._finalize_ready_files()

    def _handle_end(self) -> None:
        if self.state is not None:
            self._fail(
                SizeMismatchError("End of batch before all declared bytes arrived")
            )

    def _with_advisory_types(self, manifest: TransferManifest) -> TransferManifest:
        # ``start`` carries no mime types; borrow them from the offer if the
        # two manifests describe the same files
        advisory = self.advisory_manifest
        if advisory is None or len(advisory) != len(manifest):
            return manifest
        if any(a.name != m.name or a.size != m.size for a, m in zip(advisory, manifest)):
            return manifest
        return TransferManifest(
            FileEntry(m.name, m.size, m.mime_type or a.mime_type)
            for a, m in zip(advisory, manifest)
        )

    # -------------------------- chunks --------------------------

    def _handle_chunk(self, chunk: bytes) -> None:
        state = self.state
        if state is None:
            if self._abandoned:
                logger.debug(
                    "Dropping %d byte chunk of abandoned batch from %s",
                    len(chunk),
                    self.peer_id,
                )
                return
            self._abandoned = True
            self._report_failure(None, "Chunk received before start")
            return

        entry = state.current_entry
        # Invariant: zero-size and complete files are finalized eagerly
        assert entry is not None
        if state.bytes_received_for_current_file + len(chunk) > entry.size:
            self._fail(
                SizeMismatchError(
                    f"Chunk overflows {entry.name}: "
                    f"{state.bytes_received_for_current_file + len(chunk)} > "
                    f"{entry.size} bytes"
                )
            )
            return

        state.assembled_chunks.append(chunk)
        state.bytes_received_for_current_file += len(chunk)
        assert self._tracker is not None
        percentage = self._tracker.advance(len(chunk))
        if self.events is not None:
            self.events.on_progress(self.peer_id, percentage, Direction.RECEIVE)
        self._finalize_ready_files()

    def _finalize_ready_files(self) -> None:
        state = self.state
        assert state is not None
        while (entry := state.current_entry) is not None:
            if state.bytes_received_for_current_file != entry.size:
                return
            received = ReceivedFile(
                name=sanitize_filename(entry.name),
                original_name=entry.name,
                data=b"".join(state.assembled_chunks),
                mime_type=entry.mime_type,
            )
            logger.debug(
                "Received %s (%d bytes) from %s",
                received.name,
                received.size,
                self.peer_id,
            )
            state.reset_current()
            state.current_file_index += 1
            if self.events is not None:
                self.events.on_file_received(self.peer_id, received)

        manifest = state.manifest
        self.state = None
        self._tracker = None
        self.batches_finished += 1
        logger.info("Batch of %d file(s) from %s complete", len(manifest), self.peer_id)
        if self.events is not None:
            self.events.on_progress(self.peer_id, 100, Direction.RECEIVE)
            self.events.on_batch_complete(self.peer_id, manifest, Direction.RECEIVE)

    # -------------------------- failures --------------------------

    def _fail(self, error: TransferError) -> None:
        state = self.state
        entry = state.current_entry if state is not None else None
        if state is not None:
            state.reset_current()
        self.state = None
        self._tracker = None
        self._abandoned = True
        self._report_failure(entry.name if entry is not None else None, str(error))

    def _report_failure(self, file_name: str | None, reason: str) -> None:
        self.batches_finished += 1
        logger.warning(
            "Transfer from %s failed (%s): %s",
            self.peer_id,
            file_name or "no file",
            reason,
        )
        if self.events is not None:
            self.events.on_transfer_failed(
                TransferFailure(peer_id=self.peer_id, file_name=file_name, reason=reason)
            )
