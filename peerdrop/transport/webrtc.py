"""
aiortc adapters for the peer connection interfaces.

aiortc runs on asyncio; every coroutine is bridged with
``trio_asyncio.aio_as_trio``, so these classes must be used inside
``trio_asyncio.open_loop()``. aiortc callbacks run on the same thread as
trio and talk to trio through memory channels and events.

aiortc gathers all ICE candidates while applying a local description and
embeds them in the SDP; it never trickles candidates, so handlers passed to
``on_ice_candidate`` are not called.
"""

from collections.abc import (
    Callable,
    Iterable,
    Mapping,
)
import logging
import math
from typing import (
    Any,
)

from aiortc import (
    RTCConfiguration,
    RTCDataChannel,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import (
    candidate_from_sdp,
)
import trio
from trio_asyncio import (
    aio_as_trio,
)

from peerdrop.abc import (
    IDataChannel,
    IPeerConnection,
)
from peerdrop.custom_types import (
    CandidateHandlerFn,
)
from peerdrop.negotiation.config import (
    DEFAULT_ICE_SERVERS,
)
from peerdrop.sdp import (
    IceCandidate,
    SessionDescription,
)
from peerdrop.transfer.exceptions import (
    ChannelClosedError,
)

from .exceptions import (
    WebRTCError,
)

logger = logging.getLogger(__name__)


class AiortcDataChannel(IDataChannel):
    def __init__(self, channel: RTCDataChannel) -> None:
        self._channel = channel
        self.label = channel.label
        self._opened = trio.Event()
        self._closed = trio.Event()
        self._state_changed = trio.Event()
        self._send_channel, self._receive_channel = trio.open_memory_channel[
            bytes | str
        ](math.inf)

        channel.on("open", self._on_open)
        channel.on("message", self._on_message)
        channel.on("close", self._on_close)
        channel.on("bufferedamountlow", self._on_buffered_amount_low)
        if channel.readyState == "open":
            self._opened.set()
        elif channel.readyState == "closed":
            self._on_close()

    def _notify(self) -> None:
        self._state_changed.set()
        self._state_changed = trio.Event()

    def _on_open(self) -> None:
        logger.debug("Data channel %s open", self.label)
        self._opened.set()
        self._notify()

    def _on_message(self, message: bytes | str) -> None:
        try:
            self._send_channel.send_nowait(message)
        except trio.ClosedResourceError:
            logger.debug("Dropped message on closed channel %s", self.label)

    def _on_close(self) -> None:
        if self._closed.is_set():
            return
        logger.debug("Data channel %s closed", self.label)
        self._closed.set()
        # Queued messages stay readable until the receiver drains them
        self._send_channel.close()
        self._notify()

    def _on_buffered_amount_low(self) -> None:
        self._notify()

    @property
    def is_open(self) -> bool:
        return self._channel.readyState == "open"

    @property
    def buffered_amount(self) -> int:
        return self._channel.bufferedAmount

    async def wait_open(self) -> None:
        while not self._opened.is_set():
            if self._closed.is_set():
                raise ChannelClosedError(f"Channel {self.label} closed before opening")
            await self._state_changed.wait()

    async def send(self, data: bytes | str) -> None:
        if not self.is_open:
            raise ChannelClosedError(
                f"Channel {self.label} is {self._channel.readyState}, not open"
            )
        self._channel.send(data)
        # Let the asyncio side flush
        await trio.lowlevel.checkpoint()

    async def wait_buffered_amount_low(self, threshold: int) -> None:
        while self._channel.bufferedAmount > threshold:
            if self._closed.is_set():
                raise ChannelClosedError(f"Channel {self.label} closed")
            self._channel.bufferedAmountLowThreshold = threshold
            await self._state_changed.wait()

    async def receive(self) -> bytes | str:
        try:
            return await self._receive_channel.receive()
        except (trio.EndOfChannel, trio.ClosedResourceError) as e:
            raise ChannelClosedError(f"Channel {self.label} closed") from e

    async def close(self) -> None:
        if self._channel.readyState not in ("closing", "closed"):
            self._channel.close()
        self._on_close()


def _to_rtc_description(description: SessionDescription) -> RTCSessionDescription:
    return RTCSessionDescription(sdp=description.sdp, type=description.type)


def _from_rtc_description(
    description: RTCSessionDescription | None,
) -> SessionDescription | None:
    if description is None:
        return None
    return SessionDescription(type=description.type, sdp=description.sdp)


def build_configuration(ice_servers: Iterable[Mapping[str, Any]]) -> RTCConfiguration:
    return RTCConfiguration(
        iceServers=[
            RTCIceServer(
                urls=server["urls"],
                username=server.get("username"),
                credential=server.get("credential"),
            )
            for server in ice_servers
        ]
    )


class AiortcPeerConnection(IPeerConnection):
    def __init__(self, configuration: RTCConfiguration | None = None) -> None:
        self._pc = RTCPeerConnection(configuration=configuration)
        self._incoming: AiortcDataChannel | None = None
        self._incoming_event = trio.Event()
        self._candidate_handler: CandidateHandlerFn | None = None
        self._closed = False
        self._pc.on("datachannel", self._on_datachannel)
        self._pc.on("connectionstatechange", self._on_connection_state_change)

    @classmethod
    def factory(
        cls, ice_servers: Iterable[Mapping[str, Any]] = DEFAULT_ICE_SERVERS
    ) -> Callable[[], "AiortcPeerConnection"]:
        ice_servers = tuple(ice_servers)
        return lambda: cls(build_configuration(ice_servers))

    def _on_datachannel(self, channel: RTCDataChannel) -> None:
        logger.debug("Remote peer announced data channel %s", channel.label)
        self._incoming = AiortcDataChannel(channel)
        self._incoming_event.set()

    def _on_connection_state_change(self) -> None:
        logger.debug("Peer connection state: %s", self._pc.connectionState)

    @property
    def local_description(self) -> SessionDescription | None:
        return _from_rtc_description(self._pc.localDescription)

    @property
    def remote_description(self) -> SessionDescription | None:
        return _from_rtc_description(self._pc.remoteDescription)

    def create_data_channel(self, label: str) -> IDataChannel:
        return AiortcDataChannel(self._pc.createDataChannel(label, ordered=True))

    async def accept_data_channel(self) -> IDataChannel:
        await self._incoming_event.wait()
        assert self._incoming is not None
        return self._incoming

    async def create_offer(self) -> SessionDescription:
        try:
            offer = await aio_as_trio(self._pc.createOffer())
        except Exception as e:
            raise WebRTCError(f"Failed to create offer: {e}") from e
        return SessionDescription(type=offer.type, sdp=offer.sdp)

    async def create_answer(self) -> SessionDescription:
        try:
            answer = await aio_as_trio(self._pc.createAnswer())
        except Exception as e:
            raise WebRTCError(f"Failed to create answer: {e}") from e
        return SessionDescription(type=answer.type, sdp=answer.sdp)

    async def set_local_description(self, description: SessionDescription) -> None:
        try:
            await aio_as_trio(
                self._pc.setLocalDescription(_to_rtc_description(description))
            )
        except Exception as e:
            raise WebRTCError(f"Failed to set local description: {e}") from e

    async def set_remote_description(self, description: SessionDescription) -> None:
        try:
            await aio_as_trio(
                self._pc.setRemoteDescription(_to_rtc_description(description))
            )
        except Exception as e:
            raise WebRTCError(f"Failed to set remote description: {e}") from e

    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        sdp = candidate.candidate
        if not sdp:
            # End-of-candidates marker
            return
        if sdp.startswith("candidate:"):
            sdp = sdp[len("candidate:") :]
        try:
            rtc_candidate = candidate_from_sdp(sdp)
            rtc_candidate.sdpMid = candidate.sdp_mid
            rtc_candidate.sdpMLineIndex = candidate.sdp_mline_index
            await aio_as_trio(self._pc.addIceCandidate(rtc_candidate))
        except Exception as e:
            raise WebRTCError(f"Failed to add ICE candidate: {e}") from e

    def on_ice_candidate(self, handler: CandidateHandlerFn | None) -> None:
        self._candidate_handler = handler

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._incoming is not None:
            await self._incoming.close()
        try:
            await aio_as_trio(self._pc.close())
        except RuntimeError as e:
            # The asyncio loop may already be gone during shutdown
            logger.debug("Error while closing peer connection: %s", e)
