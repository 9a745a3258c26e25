from abc import (
    ABC,
    abstractmethod,
)
from collections.abc import (
    Sequence,
)
from typing import (
    TYPE_CHECKING,
)

from peerdrop.custom_types import (
    CandidateHandlerFn,
    TPeerId,
)
from peerdrop.sdp import (
    IceCandidate,
    SessionDescription,
)

if TYPE_CHECKING:
    from peerdrop.negotiation.session import (
        IncomingTransferRequest,
        NegotiationFailure,
    )
    from peerdrop.relay.registry import (
        PeerSummary,
    )
    from peerdrop.transfer.manifest import (
        TransferManifest,
    )
    from peerdrop.transfer.progress import (
        Direction,
    )
    from peerdrop.transfer.receiver import (
        ReceivedFile,
        TransferFailure,
    )


class Closer(ABC):
    @abstractmethod
    async def close(self) -> None: ...


# -------------------------- signaling interface --------------------------


class ISignalConnection(Closer):
    """
    One ordered, reliable text-message connection between a client and the
    relay.

    The relay holds one per connected client; a client holds one towards the
    relay. Messages are delivered in send order.
    """

    @abstractmethod
    async def send_message(self, message: str) -> None:
        """
        Send one text message.

        :raises SignalConnectionClosed: if the connection is closed
        """

    @abstractmethod
    async def receive_message(self) -> str:
        """
        Wait for the next text message.

        :raises SignalConnectionClosed: once the connection is closed
        """


# -------------------------- peer channel interface --------------------------


class IDataChannel(Closer):
    """
    Ordered, reliable, full-duplex message channel between two peers.

    ``send`` only hands the message to the outgoing buffer; the amount still
    queued is exposed as ``buffered_amount`` so writers can respect
    backpressure.
    """

    label: str

    @property
    @abstractmethod
    def is_open(self) -> bool: ...

    @abstractmethod
    async def wait_open(self) -> None:
        """
        Block until the channel is open.

        :raises ChannelClosedError: if the channel closes before opening
        """

    @abstractmethod
    async def send(self, data: bytes | str) -> None:
        """
        Queue a binary or text message for sending.

        :raises ChannelClosedError: if the channel is not open
        """

    @property
    @abstractmethod
    def buffered_amount(self) -> int:
        """Bytes accepted by ``send`` but not yet handed to the network."""

    @abstractmethod
    async def wait_buffered_amount_low(self, threshold: int) -> None:
        """
        Block until ``buffered_amount`` is at or below ``threshold``.

        :raises ChannelClosedError: if the channel closes while waiting
        """

    @abstractmethod
    async def receive(self) -> bytes | str:
        """
        Wait for the next message.

        :raises ChannelClosedError: once the channel is closed and drained
        """


class IPeerConnection(Closer):
    """
    Negotiation primitive: produces/consumes session descriptions and ICE
    candidates and yields a data channel once the peers are connected.
    """

    @property
    @abstractmethod
    def local_description(self) -> SessionDescription | None:
        """
        The applied local description, including any candidates gathered
        while applying it.
        """

    @property
    @abstractmethod
    def remote_description(self) -> SessionDescription | None: ...

    @abstractmethod
    def create_data_channel(self, label: str) -> IDataChannel:
        """Create the initiator's data channel, open once negotiation completes."""

    @abstractmethod
    async def accept_data_channel(self) -> IDataChannel:
        """Wait for the data channel announced by the remote peer."""

    @abstractmethod
    async def create_offer(self) -> SessionDescription: ...

    @abstractmethod
    async def create_answer(self) -> SessionDescription: ...

    @abstractmethod
    async def set_local_description(self, description: SessionDescription) -> None:
        ...

    @abstractmethod
    async def set_remote_description(
        self, description: SessionDescription
    ) -> None: ...

    @abstractmethod
    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        """
        Apply a remote ICE candidate.

        Only legal once a remote description has been set.
        """

    @abstractmethod
    def on_ice_candidate(self, handler: CandidateHandlerFn | None) -> None:
        """Register the coroutine called for each locally gathered candidate."""


# -------------------------- UI collaborator interface --------------------------


class ITransferEvents(ABC):
    """Events surfaced to the user interface."""

    @abstractmethod
    def on_peers_changed(self, peers: Sequence["PeerSummary"]) -> None: ...

    @abstractmethod
    def on_transfer_request(self, request: "IncomingTransferRequest") -> None:
        """
        An offer arrived. The UI answers through ``request.accept()`` or
        ``request.decline()``, now or later.
        """

    @abstractmethod
    def on_progress(
        self, peer_id: TPeerId, percentage: int, direction: "Direction"
    ) -> None: ...

    @abstractmethod
    def on_file_received(self, peer_id: TPeerId, received: "ReceivedFile") -> None:
        ...

    @abstractmethod
    def on_batch_complete(
        self,
        peer_id: TPeerId,
        manifest: "TransferManifest",
        direction: "Direction",
    ) -> None: ...

    @abstractmethod
    def on_negotiation_failed(self, failure: "NegotiationFailure") -> None: ...

    @abstractmethod
    def on_transfer_failed(self, failure: "TransferFailure") -> None: ...
