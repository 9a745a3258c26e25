from collections.abc import (
    Awaitable,
    Callable,
    Iterator,
)
from contextlib import (
    contextmanager,
)
import logging
import math
from typing import (
    TYPE_CHECKING,
    Any,
)

import trio

from peerdrop.abc import (
    IDataChannel,
    ITransferEvents,
)
from peerdrop.custom_types import (
    ChannelOpenHandlerFn,
    PeerConnectionFactory,
    TPeerId,
)
from peerdrop.exceptions import (
    BasePeerdropError,
)
from peerdrop.sdp import (
    IceCandidate,
    SessionDescription,
)
from peerdrop.signaling.envelope import (
    MessageType,
)
from peerdrop.transfer.manifest import (
    TransferManifest,
)

from .config import (
    NegotiationConfig,
)
from .exceptions import (
    NegotiationError,
    NegotiationTimeoutError,
)
from .session import (
    IncomingTransferRequest,
    NegotiationFailure,
    NegotiationSession,
    Role,
)
from .state_machine import (
    NegotiationState,
)

if TYPE_CHECKING:
    from peerdrop.signaling.client import SignalingClient

logger = logging.getLogger(__name__)

TIMEOUT_REASON = "timeout"
CONSENT_TIMEOUT_REASON = "consent timeout"
REPLACED_REASON = "replaced by incoming offer"

NegotiateFn = Callable[[NegotiationSession], Awaitable[IDataChannel | None]]


class NegotiationManager:
    """
    Runs the offer/answer/candidate exchange with every remote peer.

    Each session runs in its own task and cancel scope inside ``nursery``.
    Messages from the relay are fed in through the ``handle_*`` methods,
    which the signaling read loop calls in arrival order.
    """

    def __init__(
        self,
        signaling: "SignalingClient",
        peer_connection_factory: PeerConnectionFactory,
        events: ITransferEvents,
        nursery: trio.Nursery,
        on_channel_open: ChannelOpenHandlerFn,
        config: NegotiationConfig | None = None,
    ) -> None:
        self.config = config or NegotiationConfig()
        self.config.validate()
        self._signaling = signaling
        self._peer_connection_factory = peer_connection_factory
        self._events = events
        self._nursery = nursery
        self._on_channel_open = on_channel_open
        self.sessions: dict[TPeerId, NegotiationSession] = {}

    def get_session(self, peer_id: str) -> NegotiationSession | None:
        return self.sessions.get(TPeerId(peer_id))

    # -------------------------- initiator --------------------------

    def initiate(
        self, peer_id: TPeerId, manifest: TransferManifest
    ) -> NegotiationSession:
        """
        Start negotiating a transfer of ``manifest`` to ``peer_id``.

        :raises NegotiationError: if a session with the peer is still live
        """
        existing = self.sessions.get(peer_id)
        if existing is not None and not existing.closed:
            raise NegotiationError(f"A session with {peer_id} is already in progress")

        session = self._new_session(peer_id, Role.INITIATOR, manifest)
        self._nursery.start_soon(self._run_session, session, self._negotiate_initiator)
        return session

    async def _negotiate_initiator(self, session: NegotiationSession) -> IDataChannel:
        assert session.manifest is not None
        pc = session.peer_connection
        # The responder may hold the offer for up to consent_timeout first
        consent = self.config.consent_timeout
        limit = math.inf if consent is None else consent + self.config.timeout
        with self._deadline(session, limit):
            channel = pc.create_data_channel(self.config.channel_label)
            session.channel = channel
            offer = await pc.create_offer()
            await pc.set_local_description(offer)
            session.machine.transition(NegotiationState.OFFER_CREATED)
            await self._signaling.send(
                MessageType.OFFER,
                {
                    "offer": (pc.local_description or offer).to_dict(),
                    "files": session.manifest.to_offer_files(),
                },
                session.peer_id,
            )
            await self._local_description_sent(session)
            await channel.wait_open()
        return channel

    async def handle_answer(self, peer_id: TPeerId, payload: dict[str, Any]) -> None:
        session = self.sessions.get(peer_id)
        if session is None or session.role is not Role.INITIATOR:
            logger.debug("Dropped answer from %s: no outgoing session", peer_id)
            return
        if session.state is not NegotiationState.OFFER_CREATED:
            logger.debug(
                "Dropped answer from %s: session is %s", peer_id, session.state.name
            )
            return
        try:
            answer = SessionDescription.from_dict(payload.get("answer"))
        except BasePeerdropError as e:
            logger.warning("Dropped malformed answer from %s: %s", peer_id, e)
            return

        # Transition first so a duplicate answer is dropped while this one
        # is being applied
        session.machine.transition(NegotiationState.ANSWER_EXCHANGED)
        try:
            await session.apply_remote_description(answer)
        except (BasePeerdropError, OSError) as e:
            session.fail(f"Could not apply answer: {e}")

    # -------------------------- responder --------------------------

    async def handle_offer(self, peer_id: TPeerId, payload: dict[str, Any]) -> None:
        try:
            offer = SessionDescription.from_dict(payload.get("offer"))
            manifest = TransferManifest.from_files_list(payload.get("files"))
        except BasePeerdropError as e:
            logger.warning("Dropped malformed offer from %s: %s", peer_id, e)
            return

        existing = self.sessions.get(peer_id)
        if existing is not None:
            logger.info("New offer from %s replaces the running session", peer_id)
            if existing.role is Role.INITIATOR:
                self._report_failure(existing, REPLACED_REASON)
            await self.close(peer_id)

        session = self._new_session(peer_id, Role.RESPONDER, manifest)
        session.machine.transition(NegotiationState.OFFER_RECEIVED)
        session.request = IncomingTransferRequest(peer_id, manifest)
        self._nursery.start_soon(
            self._run_session,
            session,
            lambda s: self._negotiate_responder(s, offer),
        )

    async def _negotiate_responder(
        self, session: NegotiationSession, offer: SessionDescription
    ) -> IDataChannel | None:
        request = session.request
        assert request is not None
        self._events.on_transfer_request(request)

        consent_timeout = self.config.consent_timeout
        with trio.move_on_after(
            math.inf if consent_timeout is None else consent_timeout
        ):
            await request.wait()
        if not request.decided:
            request.decline()
            session.machine.transition(NegotiationState.DECLINED)
            self._report_failure(
                session, CONSENT_TIMEOUT_REASON, NegotiationState.OFFER_RECEIVED
            )
            return None
        if not request.accepted:
            logger.info("Transfer from %s declined", session.peer_id)
            session.machine.transition(NegotiationState.DECLINED)
            return None

        pc = session.peer_connection
        with self._deadline(session, self.config.timeout):
            await session.apply_remote_description(offer)
            answer = await pc.create_answer()
            await pc.set_local_description(answer)
            await self._signaling.send(
                MessageType.ANSWER,
                {"answer": (pc.local_description or answer).to_dict()},
                session.peer_id,
            )
            session.machine.transition(NegotiationState.ANSWER_EXCHANGED)
            await self._local_description_sent(session)
            channel = await pc.accept_data_channel()
            session.channel = channel
            await channel.wait_open()
        return channel

    # -------------------------- candidates --------------------------

    async def handle_candidate(self, peer_id: TPeerId, payload: dict[str, Any]) -> None:
        session = self.sessions.get(peer_id)
        if session is None:
            logger.debug("Dropped candidate from %s: no session", peer_id)
            return
        try:
            candidate = IceCandidate.from_dict(payload.get("candidate"))
        except BasePeerdropError as e:
            logger.warning("Dropped malformed candidate from %s: %s", peer_id, e)
            return
        try:
            await session.add_remote_candidate(candidate)
        except (BasePeerdropError, OSError) as e:
            # One bad candidate does not doom the connection
            logger.warning("Could not apply candidate from %s: %s", peer_id, e)

    async def _send_candidate(
        self, session: NegotiationSession, candidate: IceCandidate
    ) -> None:
        if session.closed:
            return
        if not session.local_description_sent:
            session.outgoing_candidates.append(candidate)
            return
        await self._signaling.send(
            MessageType.CANDIDATE, {"candidate": candidate.to_dict()}, session.peer_id
        )

    async def _local_description_sent(self, session: NegotiationSession) -> None:
        while session.outgoing_candidates:
            candidate = session.outgoing_candidates.popleft()
            await self._signaling.send(
                MessageType.CANDIDATE,
                {"candidate": candidate.to_dict()},
                session.peer_id,
            )
        session.local_description_sent = True

    # -------------------------- lifecycle --------------------------

    def _new_session(
        self, peer_id: TPeerId, role: Role, manifest: TransferManifest
    ) -> NegotiationSession:
        session = NegotiationSession(
            peer_id, role, self._peer_connection_factory(), manifest
        )

        async def on_candidate(candidate: IceCandidate) -> None:
            await self._send_candidate(session, candidate)

        session.peer_connection.on_ice_candidate(on_candidate)
        self.sessions[peer_id] = session
        logger.debug("Created %s session with %s", role.value, peer_id)
        return session

    async def _run_session(
        self, session: NegotiationSession, negotiate: NegotiateFn
    ) -> None:
        try:
            with session.cancel_scope:
                try:
                    channel = await negotiate(session)
                except NegotiationTimeoutError:
                    self._report_failure(session, TIMEOUT_REASON)
                    return
                except (BasePeerdropError, OSError) as e:
                    self._report_failure(session, str(e) or type(e).__name__)
                    return
                if channel is None:
                    return
                session.machine.transition(NegotiationState.CHANNEL_OPEN)
                logger.info(
                    "Channel with %s open (%s)", session.peer_id, session.role.value
                )
                await self._on_channel_open(session, channel)
            if session.failure_reason is not None:
                self._report_failure(session, session.failure_reason)
        finally:
            with trio.CancelScope(shield=True):
                await self._discard(session)
            session.done.set()

    @contextmanager
    def _deadline(self, session: NegotiationSession, seconds: float) -> Iterator[None]:
        try:
            with trio.fail_after(seconds):
                yield
        except trio.TooSlowError as e:
            raise NegotiationTimeoutError(
                f"Channel with {session.peer_id} not open after {seconds}s"
            ) from e

    def _report_failure(
        self,
        session: NegotiationSession,
        reason: str,
        state: NegotiationState | None = None,
    ) -> None:
        failed_in = state or session.state
        if not session.machine.is_terminal:
            session.machine.transition(NegotiationState.FAILED)
        logger.warning(
            "Negotiation with %s failed in %s: %s",
            session.peer_id,
            failed_in.name,
            reason,
        )
        self._events.on_negotiation_failed(
            NegotiationFailure(peer_id=session.peer_id, reason=reason, state=failed_in)
        )

    async def _discard(self, session: NegotiationSession) -> None:
        if self.sessions.get(session.peer_id) is session:
            del self.sessions[session.peer_id]
        await session.close()

    async def close(self, peer_id: TPeerId) -> None:
        """Tear down the session with ``peer_id``; later messages are dropped."""
        session = self.sessions.pop(peer_id, None)
        if session is None:
            return
        await session.close()

    async def close_all(self) -> None:
        for peer_id in list(self.sessions):
            await self.close(peer_id)
