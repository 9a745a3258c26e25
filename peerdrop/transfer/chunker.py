"""
File chunking utilities.

Files are split into fixed-size chunks, the unit of transmission over the
peer channel. Only the last chunk of a file may be shorter than the chunk
size; an empty file has no chunks at all.
"""

from collections.abc import AsyncIterator
import os

import trio

from .config import DEFAULT_CHUNK_SIZE


def _check_chunk_size(chunk_size: int) -> None:
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")


def chunk_bytes(data: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> list[bytes]:
    """
    Split bytes into fixed-size chunks.

    Args:
        data: Data to chunk
        chunk_size: Size of each chunk in bytes

    Returns:
        List of chunks

    Example:
        >>> chunks = chunk_bytes(b"x" * 25, chunk_size=16)
        >>> [len(c) for c in chunks]
        [16, 9]

    """
    _check_chunk_size(chunk_size)
    view = memoryview(data)
    return [
        bytes(view[offset : offset + chunk_size])
        for offset in range(0, len(data), chunk_size)
    ]


async def read_file_chunks(
    file_path: str | os.PathLike[str], chunk_size: int = DEFAULT_CHUNK_SIZE
) -> AsyncIterator[bytes]:
    """
    Stream a file in chunks; blocking reads run in a worker thread.

    A chunk is only read when the consumer asks for the next one, so a
    consumer that waits on backpressure also stops the reads.
    """
    _check_chunk_size(chunk_size)
    async with await trio.open_file(file_path, "rb") as f:
        while True:
            chunk = await f.read(chunk_size)
            if not chunk:
                break
            yield chunk


def estimate_chunk_count(file_size: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> int:
    """
    Number of chunks a file of ``file_size`` bytes is split into.

    Example:
        >>> estimate_chunk_count(0)
        0
        >>> estimate_chunk_count(25, chunk_size=16)
        2

    """
    if file_size < 0:
        raise ValueError(f"file_size must be non-negative, got {file_size}")
    _check_chunk_size(chunk_size)
    return (file_size + chunk_size - 1) // chunk_size


__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "chunk_bytes",
    "estimate_chunk_count",
    "read_file_chunks",
]
