"""
Client end of the signaling protocol.
"""

from collections.abc import (
    AsyncIterator,
    Callable,
)
from contextlib import (
    asynccontextmanager,
)
import logging
from typing import (
    Any,
)

import trio
from trio_websocket import (
    open_websocket_url,
)

from peerdrop.abc import (
    ISignalConnection,
)
from peerdrop.custom_types import (
    SignalHandlerFn,
    TPeerId,
)
from peerdrop.relay.registry import (
    PeerSummary,
)

from .envelope import (
    ROUTABLE_TYPES,
    MessageType,
    SignalingEnvelope,
    parse_relay_envelope,
)
from .exceptions import (
    MalformedEnvelopeError,
    SignalConnectionClosed,
    SignalingError,
)
from .websocket import (
    WebSocketSignalConnection,
)

logger = logging.getLogger(__name__)

PeersChangedFn = Callable[[tuple[PeerSummary, ...]], None]


def _parse_peers(raw_peers: Any) -> tuple[PeerSummary, ...]:
    if not isinstance(raw_peers, list):
        raise MalformedEnvelopeError("updatePeers.peers must be a list")
    peers = []
    for item in raw_peers:
        if not isinstance(item, dict):
            raise MalformedEnvelopeError("updatePeers entries must be objects")
        peer_id, name = item.get("id"), item.get("deviceName")
        if not isinstance(peer_id, str) or not isinstance(name, str):
            raise MalformedEnvelopeError(f"Invalid peer entry: {item!r}")
        peers.append(PeerSummary(id=TPeerId(peer_id), display_name=name))
    return tuple(peers)


class SignalingClient:
    """
    Talks to the relay over one ``ISignalConnection``.

    ``run`` reads messages in order and awaits the handler registered for
    each forwarded type before reading the next one, so messages from one
    peer are processed in the order that peer sent them.
    """

    def __init__(self, connection: ISignalConnection) -> None:
        self.connection = connection
        self.local_id: TPeerId | None = None
        self.device_name: str | None = None
        self.peers: tuple[PeerSummary, ...] = ()
        self._handlers: dict[MessageType, SignalHandlerFn] = {}
        self._peers_changed: PeersChangedFn | None = None
        self._welcomed = trio.Event()
        self._peers_event = trio.Event()

    def set_handler(self, msg_type: MessageType, handler: SignalHandlerFn) -> None:
        if msg_type not in ROUTABLE_TYPES:
            raise SignalingError(f"{msg_type.value} messages are not forwarded")
        self._handlers[msg_type] = handler

    def on_peers_changed(self, callback: PeersChangedFn | None) -> None:
        self._peers_changed = callback

    @property
    def remote_peers(self) -> tuple[PeerSummary, ...]:
        """Connected peers other than this client."""
        return tuple(peer for peer in self.peers if peer.id != self.local_id)

    def find_peer(self, id_or_name: str) -> PeerSummary | None:
        for peer in self.remote_peers:
            if peer.id == id_or_name or peer.display_name == id_or_name:
                return peer
        return None

    async def send(
        self, msg_type: MessageType, payload: dict[str, Any], target_id: TPeerId
    ) -> None:
        """
        Ask the relay to forward a message to ``target_id``.

        :raises SignalConnectionClosed: if the relay connection is gone
        """
        envelope = SignalingEnvelope(type=msg_type, payload=payload, target_id=target_id)
        logger.debug("Sending %s to %s", msg_type.value, target_id)
        await self.connection.send_message(envelope.to_wire())

    async def wait_welcome(self) -> TPeerId:
        await self._welcomed.wait()
        assert self.local_id is not None
        return self.local_id

    async def wait_peers_changed(self) -> tuple[PeerSummary, ...]:
        await self._peers_event.wait()
        return self.peers

    async def run(self) -> None:
        """Process relay messages until the connection closes."""
        while True:
            try:
                raw = await self.connection.receive_message()
            except SignalConnectionClosed:
                logger.info("Relay connection closed")
                return
            try:
                envelope = parse_relay_envelope(raw)
            except MalformedEnvelopeError as e:
                logger.warning("Dropped malformed message from relay: %s", e)
                continue
            await self._dispatch(envelope)

    async def _dispatch(self, envelope: SignalingEnvelope) -> None:
        payload = envelope.payload
        if envelope.type is MessageType.WELCOME:
            self.local_id = TPeerId(payload["id"])
            self.device_name = payload["deviceName"]
            logger.info("Joined relay as %s (%s)", self.device_name, self.local_id)
            self._welcomed.set()
        elif envelope.type is MessageType.UPDATE_PEERS:
            try:
                self.peers = _parse_peers(payload["peers"])
            except MalformedEnvelopeError as e:
                logger.warning("Dropped malformed peer list: %s", e)
                return
            logger.debug("Peer list now has %d peer(s)", len(self.peers))
            self._peers_event.set()
            self._peers_event = trio.Event()
            if self._peers_changed is not None:
                self._peers_changed(self.remote_peers)
        else:
            assert envelope.sender_id is not None
            handler = self._handlers.get(envelope.type)
            if handler is None:
                logger.debug(
                    "No handler for %s from %s", envelope.type.value, envelope.sender_id
                )
                return
            await handler(TPeerId(envelope.sender_id), payload)

    async def close(self) -> None:
        await self.connection.close()


@asynccontextmanager
async def open_signaling_client(url: str) -> AsyncIterator[SignalingClient]:
    """
    Connect to the relay at ``url`` (``ws://host:port``).

    The caller runs ``client.run()`` in a nursery of its own.
    """
    async with open_websocket_url(url) as ws:
        client = SignalingClient(WebSocketSignalConnection(ws))
        try:
            yield client
        finally:
            await client.close()
