"""
Sending side of the transfer protocol.

One batch is a ``start`` control message followed by the binary chunks of
every file, in manifest order. Chunk boundaries carry no framing; the
receiver relies on the declared sizes and the channel's ordering.
"""

from collections.abc import (
    AsyncIterator,
    Callable,
    Iterable,
)
from dataclasses import (
    dataclass,
)
import json
import logging
import os
from pathlib import (
    Path,
)

import trio

from peerdrop.abc import (
    IDataChannel,
    ITransferEvents,
)
from peerdrop.custom_types import (
    TPeerId,
)

from .chunker import (
    chunk_bytes,
    read_file_chunks,
)
from .config import (
    END_MESSAGE_TYPE,
    TransferConfig,
)
from .exceptions import (
    BackpressureTimeoutError,
    ChannelClosedError,
    SizeMismatchError,
)
from .manifest import (
    FileEntry,
    TransferManifest,
)
from .progress import (
    Direction,
    ProgressTracker,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutgoingFile:
    """A file queued for sending: its manifest entry and where bytes come from."""

    entry: FileEntry
    open_chunks: Callable[[int], AsyncIterator[bytes]]

    @classmethod
    def from_path(cls, path: str | os.PathLike[str]) -> "OutgoingFile":
        path = Path(path)
        entry = FileEntry.for_path(path, path.stat().st_size)
        return cls(entry, lambda chunk_size: read_file_chunks(path, chunk_size))

    @classmethod
    def from_bytes(
        cls, name: str, data: bytes, mime_type: str = ""
    ) -> "OutgoingFile":
        async def _chunks(chunk_size: int) -> AsyncIterator[bytes]:
            for chunk in chunk_bytes(data, chunk_size):
                yield chunk

        return cls(FileEntry(name, len(data), mime_type), _chunks)


def manifest_for(files: Iterable[OutgoingFile]) -> TransferManifest:
    return TransferManifest(f.entry for f in files)


async def _wait_writable(channel: IDataChannel, config: TransferConfig) -> None:
    if channel.buffered_amount <= config.max_buffered_amount:
        return
    logger.debug(
        "Channel %s buffered %d bytes, waiting for it to drain",
        channel.label,
        channel.buffered_amount,
    )
    with trio.move_on_after(config.buffered_amount_low_timeout) as scope:
        await channel.wait_buffered_amount_low(config.max_buffered_amount)
    if scope.cancelled_caught:
        raise BackpressureTimeoutError(
            f"Channel {channel.label} did not drain below "
            f"{config.max_buffered_amount} bytes within "
            f"{config.buffered_amount_low_timeout}s"
        )


async def _drain(channel: IDataChannel, config: TransferConfig) -> None:
    with trio.move_on_after(config.buffered_amount_low_timeout) as scope:
        await channel.wait_buffered_amount_low(0)
    if scope.cancelled_caught:
        raise BackpressureTimeoutError(
            f"Channel {channel.label} did not drain within "
            f"{config.buffered_amount_low_timeout}s"
        )


async def send_files(
    channel: IDataChannel,
    files: Iterable[OutgoingFile],
    *,
    peer_id: TPeerId,
    events: ITransferEvents | None = None,
    config: TransferConfig | None = None,
) -> TransferManifest:
    """
    Send one batch over an open channel.

    Returns once every byte has left the channel's outgoing buffer.

    :raises BackpressureTimeoutError: if the channel stays congested
    :raises SizeMismatchError: if a file yields more or fewer bytes than its
        manifest entry declares
    :raises ChannelClosedError: if the channel closes mid-batch
    """
    config = config or TransferConfig()
    files = list(files)
    manifest = manifest_for(files)
    tracker = ProgressTracker(manifest.total_size)

    logger.info(
        "Sending %d file(s), %d bytes, to %s",
        len(manifest),
        manifest.total_size,
        peer_id,
    )
    await channel.send(json.dumps(manifest.to_start_message()))

    for outgoing in files:
        entry = outgoing.entry
        sent = 0
        async for chunk in outgoing.open_chunks(config.chunk_size):
            sent += len(chunk)
            if sent > entry.size:
                raise SizeMismatchError(
                    f"{entry.name} grew past its declared size of {entry.size} bytes"
                )
            await _wait_writable(channel, config)
            await channel.send(chunk)
            percentage = tracker.advance(len(chunk))
            if events is not None:
                events.on_progress(peer_id, percentage, Direction.SEND)
        if sent != entry.size:
            raise SizeMismatchError(
                f"{entry.name} yielded {sent} bytes, declared {entry.size}"
            )
        logger.debug("Sent %s (%d bytes) to %s", entry.name, sent, peer_id)

    await _drain(channel, config)
    if config.send_end_marker:
        try:
            await channel.send(json.dumps({"type": END_MESSAGE_TYPE}))
            await _drain(channel, config)
        except ChannelClosedError:
            # The receiver closes as soon as the last declared byte arrives
            logger.debug(
                "Channel %s closed by %s before the end marker", channel.label, peer_id
            )

    if events is not None:
        events.on_progress(peer_id, tracker.complete(), Direction.SEND)
        events.on_batch_complete(peer_id, manifest, Direction.SEND)
    logger.info("Batch of %d file(s) sent to %s", len(manifest), peer_id)
    return manifest


async def wait_for_peer_close(
    channel: IDataChannel, config: TransferConfig | None = None
) -> bool:
    """
    Wait for the receiver to close ``channel`` once it has consumed the batch.

    An empty outgoing buffer only means the bytes left this side; the
    receiver's close is what confirms it read them. Returns False if the
    channel is still open after ``close_timeout``.
    """
    config = config or TransferConfig()
    with trio.move_on_after(config.close_timeout):
        while True:
            try:
                await channel.receive()
            except ChannelClosedError:
                logger.debug("Receiver closed channel %s", channel.label)
                return True
            logger.debug("Ignoring message from receiver on %s", channel.label)
    logger.warning(
        "Channel %s still open %ss after the batch was sent",
        channel.label,
        config.close_timeout,
    )
    return False
