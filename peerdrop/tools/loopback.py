"""
In-memory transports.

``MemorySignalConnection`` pairs stand in for websocket connections to the
relay, and ``LoopbackNetwork`` hands out peer connections whose data
channels are trio memory channels with a real buffered-amount model: bytes
count as buffered from ``send`` until the remote side ``receive``s them.
Used by the test suite and handy for trying the client without a network.
"""

from collections.abc import (
    Iterator,
)
import itertools
import logging
import math

import trio

from peerdrop.abc import (
    IDataChannel,
    IPeerConnection,
    ISignalConnection,
)
from peerdrop.custom_types import (
    CandidateHandlerFn,
)
from peerdrop.negotiation.exceptions import (
    NegotiationError,
)
from peerdrop.sdp import (
    IceCandidate,
    SessionDescription,
)
from peerdrop.signaling.exceptions import (
    SignalConnectionClosed,
)
from peerdrop.transfer.exceptions import (
    ChannelClosedError,
)

logger = logging.getLogger(__name__)

_TOKEN_ATTRIBUTE = "a=loopback-token:"


class MemorySignalConnection(ISignalConnection):
    def __init__(
        self,
        send_channel: trio.MemorySendChannel[str],
        receive_channel: trio.MemoryReceiveChannel[str],
        name: str = "",
    ) -> None:
        self.name = name
        self._send_channel = send_channel
        self._receive_channel = receive_channel
        self.closed = False

    @classmethod
    def pair(
        cls, names: tuple[str, str] = ("a", "b")
    ) -> tuple["MemorySignalConnection", "MemorySignalConnection"]:
        """Two connected ends; what one sends the other receives."""
        a_to_b_send, a_to_b_receive = trio.open_memory_channel[str](math.inf)
        b_to_a_send, b_to_a_receive = trio.open_memory_channel[str](math.inf)
        return (
            cls(a_to_b_send, b_to_a_receive, names[0]),
            cls(b_to_a_send, a_to_b_receive, names[1]),
        )

    async def send_message(self, message: str) -> None:
        if self.closed:
            raise SignalConnectionClosed(f"{self.name} is closed")
        try:
            await self._send_channel.send(message)
        except (trio.BrokenResourceError, trio.ClosedResourceError) as e:
            raise SignalConnectionClosed(f"{self.name}: peer is gone") from e

    async def receive_message(self) -> str:
        try:
            return await self._receive_channel.receive()
        except (trio.EndOfChannel, trio.ClosedResourceError) as e:
            self.closed = True
            raise SignalConnectionClosed(f"{self.name} is closed") from e

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self._send_channel.aclose()
        await self._receive_channel.aclose()

    def __repr__(self) -> str:
        return f"<MemorySignalConnection {self.name}>"


class _Notifier:
    """Wakes every waiter on each state change."""

    def __init__(self) -> None:
        self._event = trio.Event()

    def notify(self) -> None:
        self._event.set()
        self._event = trio.Event()

    async def wait(self) -> None:
        await self._event.wait()


def _message_size(data: bytes | str) -> int:
    return len(data.encode("utf-8")) if isinstance(data, str) else len(data)


class LoopbackDataChannel(IDataChannel):
    def __init__(self, label: str) -> None:
        self.label = label
        self._peer: LoopbackDataChannel | None = None
        self._send_channel: trio.MemorySendChannel[bytes | str] | None = None
        self._receive_channel: trio.MemoryReceiveChannel[bytes | str] | None = None
        self._buffered = 0
        self._open = False
        self._closed = False
        self._changed = _Notifier()

    @classmethod
    def connect(
        cls, a: "LoopbackDataChannel", b: "LoopbackDataChannel"
    ) -> None:
        a_to_b_send, a_to_b_receive = trio.open_memory_channel[bytes | str](math.inf)
        b_to_a_send, b_to_a_receive = trio.open_memory_channel[bytes | str](math.inf)
        a._attach(b, a_to_b_send, b_to_a_receive)
        b._attach(a, b_to_a_send, a_to_b_receive)

    def _attach(
        self,
        peer: "LoopbackDataChannel",
        send_channel: trio.MemorySendChannel[bytes | str],
        receive_channel: trio.MemoryReceiveChannel[bytes | str],
    ) -> None:
        self._peer = peer
        self._send_channel = send_channel
        self._receive_channel = receive_channel
        if not self._closed:
            self._open = True
        self._changed.notify()

    @property
    def is_open(self) -> bool:
        return self._open and not self._closed

    @property
    def buffered_amount(self) -> int:
        return self._buffered

    async def wait_open(self) -> None:
        # Succeeds for a channel that opened and was closed since; queued
        # messages are still readable
        while not self._open:
            if self._closed:
                raise ChannelClosedError(f"Channel {self.label} closed before opening")
            await self._changed.wait()

    async def send(self, data: bytes | str) -> None:
        if not self.is_open or self._send_channel is None:
            raise ChannelClosedError(f"Channel {self.label} is not open")
        self._buffered += _message_size(data)
        try:
            await self._send_channel.send(data)
        except (trio.BrokenResourceError, trio.ClosedResourceError) as e:
            raise ChannelClosedError(f"Channel {self.label} closed") from e

    async def wait_buffered_amount_low(self, threshold: int) -> None:
        while self._buffered > threshold:
            if self._closed:
                raise ChannelClosedError(f"Channel {self.label} closed")
            await self._changed.wait()

    async def receive(self) -> bytes | str:
        if self._receive_channel is None:
            raise ChannelClosedError(f"Channel {self.label} was never opened")
        try:
            data = await self._receive_channel.receive()
        except (trio.EndOfChannel, trio.ClosedResourceError) as e:
            raise ChannelClosedError(f"Channel {self.label} closed") from e
        if self._peer is not None:
            self._peer._delivered(_message_size(data))
        return data

    def _delivered(self, size: int) -> None:
        self._buffered -= size
        self._changed.notify()

    def _remote_closed(self) -> None:
        # Messages already queued towards us stay readable
        self._closed = True
        self._changed.notify()

    async def close(self) -> None:
        if self._closed and self._send_channel is None:
            return
        self._closed = True
        if self._send_channel is not None:
            await self._send_channel.aclose()
            self._send_channel = None
        if self._peer is not None:
            self._peer._remote_closed()
        self._changed.notify()

    def __repr__(self) -> str:
        return (
            f"<LoopbackDataChannel {self.label} open={self.is_open} "
            f"buffered={self._buffered}>"
        )


class LoopbackPeerConnection(IPeerConnection):
    """
    Peer connection that "connects" to the loopback connection named by the
    token in the remote description, once both sides have set both
    descriptions.
    """

    def __init__(self, network: "LoopbackNetwork", token: str) -> None:
        self.network = network
        self.token = token
        self.applied_candidates: list[IceCandidate] = []
        self.closed = False
        self._local_description: SessionDescription | None = None
        self._remote_description: SessionDescription | None = None
        self._peer: LoopbackPeerConnection | None = None
        self._candidate_handler: CandidateHandlerFn | None = None
        self._channel: LoopbackDataChannel | None = None
        self._incoming_channel: LoopbackDataChannel | None = None
        self._connected = False
        self._changed = _Notifier()

    @property
    def remote_description(self) -> SessionDescription | None:
        return self._remote_description

    @property
    def local_description(self) -> SessionDescription | None:
        return self._local_description

    def _check_open(self) -> None:
        if self.closed:
            raise NegotiationError(f"Peer connection {self.token} is closed")

    def _description(self, sdp_type: str) -> SessionDescription:
        sdp = (
            "v=0\r\n"
            f"o=- {self.token} 0 IN IP4 127.0.0.1\r\n"
            "s=-\r\n"
            f"{_TOKEN_ATTRIBUTE}{self.token}\r\n"
        )
        return SessionDescription(type=sdp_type, sdp=sdp)

    def create_data_channel(self, label: str) -> IDataChannel:
        self._check_open()
        self._channel = LoopbackDataChannel(label)
        return self._channel

    async def accept_data_channel(self) -> IDataChannel:
        while self._incoming_channel is None:
            self._check_open()
            await self._changed.wait()
        return self._incoming_channel

    async def create_offer(self) -> SessionDescription:
        self._check_open()
        await trio.lowlevel.checkpoint()
        return self._description("offer")

    async def create_answer(self) -> SessionDescription:
        self._check_open()
        if self._remote_description is None or self._remote_description.type != "offer":
            raise NegotiationError("Cannot create an answer without a remote offer")
        await trio.lowlevel.checkpoint()
        return self._description("answer")

    async def set_local_description(self, description: SessionDescription) -> None:
        self._check_open()
        self._local_description = description
        for candidate in self.network.local_candidates(self):
            if self._candidate_handler is not None:
                await self._candidate_handler(candidate)
        self._maybe_connect()

    async def set_remote_description(self, description: SessionDescription) -> None:
        self._check_open()
        await trio.lowlevel.checkpoint()
        token = _parse_token(description.sdp)
        peer = self.network.lookup(token)
        if peer is None:
            raise NegotiationError(f"No loopback peer connection with token {token}")
        self._remote_description = description
        self._peer = peer
        self._maybe_connect()

    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        self._check_open()
        if self._remote_description is None:
            raise NegotiationError("Candidate added before the remote description")
        await trio.lowlevel.checkpoint()
        self.applied_candidates.append(candidate)

    def on_ice_candidate(self, handler: CandidateHandlerFn | None) -> None:
        self._candidate_handler = handler

    def _ready(self) -> bool:
        return (
            self._local_description is not None
            and self._remote_description is not None
            and self._peer is not None
            and not self._peer.closed
            and self._peer._peer is self
            and self._peer._local_description is not None
            and self._peer._remote_description is not None
        )

    def _maybe_connect(self) -> None:
        if self._connected or not self._ready() or self.network.hold_channels:
            return
        peer = self._peer
        assert peer is not None
        initiator, responder = (self, peer) if self._channel is not None else (peer, self)
        if initiator._channel is None:
            logger.debug("Loopback %s connected without a data channel", self.token)
            return
        responder._incoming_channel = LoopbackDataChannel(initiator._channel.label)
        LoopbackDataChannel.connect(initiator._channel, responder._incoming_channel)
        self._connected = peer._connected = True
        self._changed.notify()
        peer._changed.notify()
        logger.debug("Loopback %s <-> %s connected", initiator.token, responder.token)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for channel in (self._channel, self._incoming_channel):
            if channel is not None:
                await channel.close()
        self.network.forget(self)
        self._changed.notify()

    def __repr__(self) -> str:
        return f"<LoopbackPeerConnection {self.token}>"


def _parse_token(sdp: str) -> str:
    for line in sdp.splitlines():
        if line.startswith(_TOKEN_ATTRIBUTE):
            return line[len(_TOKEN_ATTRIBUTE) :].strip()
    raise NegotiationError("Session description carries no loopback token")


class LoopbackNetwork:
    """
    Factory and directory of loopback peer connections.

    Pass ``create_peer_connection`` wherever a peer connection factory is
    expected. With ``hold_channels`` set, negotiation completes but no data
    channel ever opens.
    """

    def __init__(self, candidates_per_description: int = 1) -> None:
        self.candidates_per_description = candidates_per_description
        self.hold_channels = False
        self.peer_connections: list[LoopbackPeerConnection] = []
        self._live: dict[str, LoopbackPeerConnection] = {}
        self._tokens: Iterator[int] = itertools.count(1)

    def create_peer_connection(self) -> LoopbackPeerConnection:
        pc = LoopbackPeerConnection(self, f"pc{next(self._tokens)}")
        self.peer_connections.append(pc)
        self._live[pc.token] = pc
        return pc

    def lookup(self, token: str) -> LoopbackPeerConnection | None:
        return self._live.get(token)

    def forget(self, pc: LoopbackPeerConnection) -> None:
        self._live.pop(pc.token, None)

    def local_candidates(self, pc: LoopbackPeerConnection) -> list[IceCandidate]:
        return [
            IceCandidate(
                candidate=(
                    f"candidate:{pc.token}{i} 1 udp 2122260223 127.0.0.1 "
                    f"{50000 + i} typ host"
                ),
                sdp_mid="0",
                sdp_mline_index=0,
            )
            for i in range(self.candidates_per_description)
        ]
