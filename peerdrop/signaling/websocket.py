from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any

import trio
from trio_websocket import ConnectionClosed, WebSocketConnection

from peerdrop.abc import ISignalConnection

from .exceptions import SignalConnectionClosed

logger = logging.getLogger(__name__)


@dataclass
class SignalConnectionStats:
    """Statistics for a signaling connection."""

    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    messages_sent: int = 0
    messages_received: int = 0
    bytes_sent: int = 0
    bytes_received: int = 0
    last_activity: datetime | None = None

    def record_sent(self, size: int) -> None:
        self.messages_sent += 1
        self.bytes_sent += size
        self.last_activity = datetime.now(timezone.utc)

    def record_received(self, size: int) -> None:
        self.messages_received += 1
        self.bytes_received += size
        self.last_activity = datetime.now(timezone.utc)


class WebSocketSignalConnection(ISignalConnection):
    """
    ``ISignalConnection`` over a trio-websocket connection.

    Sends are serialized with a lock so that messages to one peer keep their
    send order even when several tasks write concurrently.
    """

    def __init__(self, ws_connection: WebSocketConnection | Any) -> None:
        self._ws = ws_connection
        self._write_lock = trio.Lock()
        self._closed = False
        self.stats = SignalConnectionStats()

    @property
    def is_closed(self) -> bool:
        return self._closed or self._ws.closed is not None

    def get_remote_address(self) -> tuple[str, int] | None:
        remote = getattr(self._ws, "remote", None)
        address = getattr(remote, "address", None)
        port = getattr(remote, "port", None)
        if address is None or port is None:
            return None
        return (str(address), int(port))

    async def send_message(self, message: str) -> None:
        if self._closed:
            raise SignalConnectionClosed("Signaling connection is closed")
        async with self._write_lock:
            try:
                await self._ws.send_message(message)
            except ConnectionClosed as e:
                self._closed = True
                raise SignalConnectionClosed(f"Signaling connection closed: {e}") from e
        self.stats.record_sent(len(message))

    async def receive_message(self) -> str:
        if self._closed:
            raise SignalConnectionClosed("Signaling connection is closed")
        try:
            message = await self._ws.get_message()
        except ConnectionClosed as e:
            self._closed = True
            raise SignalConnectionClosed(f"Signaling connection closed: {e}") from e
        if isinstance(message, bytes):
            message = message.decode("utf-8", errors="replace")
        self.stats.record_received(len(message))
        return message

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._ws.aclose()
        except Exception as e:
            logger.debug("Error while closing signaling websocket: %s", e)

    def __repr__(self) -> str:
        return f"<WebSocketSignalConnection remote={self.get_remote_address()}>"
