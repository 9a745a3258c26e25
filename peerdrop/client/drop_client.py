from collections.abc import (
    Iterable,
)
import logging
import os
from typing import (
    Any,
)
import weakref

import trio

from peerdrop.abc import (
    IDataChannel,
    ITransferEvents,
)
from peerdrop.custom_types import (
    PeerConnectionFactory,
    TPeerId,
)
from peerdrop.negotiation.exceptions import (
    NegotiationError,
)
from peerdrop.negotiation.manager import (
    NegotiationManager,
)
from peerdrop.negotiation.session import (
    NegotiationSession,
    Role,
)
from peerdrop.negotiation.state_machine import (
    NegotiationState,
)
from peerdrop.relay.registry import (
    PeerSummary,
)
from peerdrop.signaling.client import (
    SignalingClient,
)
from peerdrop.signaling.envelope import (
    MessageType,
)
from peerdrop.transfer.exceptions import (
    TransferError,
)
from peerdrop.transfer.receiver import (
    TransferFailure,
    TransferReceiver,
)
from peerdrop.transfer.sender import (
    OutgoingFile,
    manifest_for,
    send_files,
    wait_for_peer_close,
)

from .config import (
    ClientConfig,
)

logger = logging.getLogger(__name__)


class DropClient:
    """
    A peer: joins the relay, negotiates with other peers and moves files.

    The initiator of a session sends, the responder receives. All work runs
    in the nursery opened by ``run``.
    """

    def __init__(
        self,
        signaling: SignalingClient,
        events: ITransferEvents,
        peer_connection_factory: PeerConnectionFactory,
        config: ClientConfig | None = None,
    ) -> None:
        self.config = config or ClientConfig()
        self.config.validate()
        self.signaling = signaling
        self.events = events
        self._peer_connection_factory = peer_connection_factory
        self._negotiation: NegotiationManager | None = None
        self._outgoing: weakref.WeakKeyDictionary[
            NegotiationSession, list[OutgoingFile]
        ] = weakref.WeakKeyDictionary()

    @property
    def local_id(self) -> TPeerId | None:
        return self.signaling.local_id

    @property
    def negotiation(self) -> NegotiationManager:
        if self._negotiation is None:
            raise NegotiationError("Client is not running")
        return self._negotiation

    async def run(self, *, task_status: Any = trio.TASK_STATUS_IGNORED) -> None:
        """
        Serve until the relay connection closes.

        Reports started once the relay has welcomed us. Sessions whose
        channel is already open finish their transfer before ``run`` returns.
        """
        async with trio.open_nursery() as nursery:
            manager = NegotiationManager(
                self.signaling,
                self._peer_connection_factory,
                self.events,
                nursery,
                self._on_channel_open,
                self.config.negotiation,
            )
            self._negotiation = manager
            self.signaling.set_handler(MessageType.OFFER, manager.handle_offer)
            self.signaling.set_handler(MessageType.ANSWER, manager.handle_answer)
            self.signaling.set_handler(MessageType.CANDIDATE, manager.handle_candidate)
            self.signaling.on_peers_changed(self.events.on_peers_changed)

            nursery.start_soon(self._run_signaling, manager)
            await self.signaling.wait_welcome()
            task_status.started(self)

    async def _run_signaling(self, manager: NegotiationManager) -> None:
        await self.signaling.run()
        # Negotiation cannot finish without the relay
        for peer_id, session in list(manager.sessions.items()):
            if session.state is not NegotiationState.CHANNEL_OPEN:
                await manager.close(peer_id)

    async def wait_for_peer(self, id_or_name: str) -> PeerSummary:
        while True:
            peer = self.signaling.find_peer(id_or_name)
            if peer is not None:
                return peer
            await self.signaling.wait_peers_changed()

    def send_files(
        self, peer_id: TPeerId, files: Iterable[OutgoingFile]
    ) -> NegotiationSession:
        """
        Offer ``files`` to ``peer_id``; they are sent once the peer accepts.

        :raises NegotiationError: if a session with the peer is still live
        """
        files = list(files)
        session = self.negotiation.initiate(peer_id, manifest_for(files))
        self._outgoing[session] = files
        return session

    def send_paths(
        self, peer_id: TPeerId, paths: Iterable[str | os.PathLike[str]]
    ) -> NegotiationSession:
        return self.send_files(peer_id, [OutgoingFile.from_path(p) for p in paths])

    async def _on_channel_open(
        self, session: NegotiationSession, channel: IDataChannel
    ) -> None:
        if session.role is Role.INITIATOR:
            await self._send(session, channel)
        else:
            receiver = TransferReceiver(
                session.peer_id, self.events, advisory_manifest=session.manifest
            )
            await receiver.run(channel, close_when_done=True)

    async def _send(self, session: NegotiationSession, channel: IDataChannel) -> None:
        files = self._outgoing.pop(session, [])
        try:
            await send_files(
                channel,
                files,
                peer_id=session.peer_id,
                events=self.events,
                config=self.config.transfer,
            )
            await wait_for_peer_close(channel, self.config.transfer)
        except TransferError as e:
            logger.warning("Sending to %s failed: %s", session.peer_id, e)
            self.events.on_transfer_failed(
                TransferFailure(peer_id=session.peer_id, file_name=None, reason=str(e))
            )
