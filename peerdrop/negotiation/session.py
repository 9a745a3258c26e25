"""
Per-peer negotiation sessions.

A session lives from the first offer until its channel is handed over (or
negotiation ends). Remote ICE candidates may overtake the description they
belong to; they wait in ``pending_candidates`` and are applied in arrival
order right after the remote description.
"""

from collections import (
    deque,
)
from dataclasses import (
    dataclass,
)
from enum import Enum
import logging

import trio

from peerdrop.abc import (
    IDataChannel,
    IPeerConnection,
)
from peerdrop.custom_types import (
    TPeerId,
)
from peerdrop.sdp import (
    IceCandidate,
    SessionDescription,
)
from peerdrop.transfer.manifest import (
    TransferManifest,
)

from .state_machine import (
    NegotiationState,
    NegotiationStateMachine,
)

logger = logging.getLogger(__name__)


class Role(Enum):
    INITIATOR = "initiator"
    RESPONDER = "responder"


class IncomingTransferRequest:
    """
    An offer waiting for the user's decision.

    The first call to ``accept`` or ``decline`` wins; later calls are ignored.
    """

    def __init__(self, peer_id: TPeerId, manifest: TransferManifest) -> None:
        self.peer_id = peer_id
        self.manifest = manifest
        self._accepted: bool | None = None
        self._decided = trio.Event()

    @property
    def decided(self) -> bool:
        return self._decided.is_set()

    @property
    def accepted(self) -> bool | None:
        return self._accepted

    def accept(self) -> None:
        self._decide(True)

    def decline(self) -> None:
        self._decide(False)

    def _decide(self, accepted: bool) -> None:
        if self._decided.is_set():
            return
        self._accepted = accepted
        self._decided.set()

    async def wait(self) -> bool:
        await self._decided.wait()
        return bool(self._accepted)

    def __repr__(self) -> str:
        return (
            f"<IncomingTransferRequest from {self.peer_id} "
            f"files={len(self.manifest)} accepted={self._accepted}>"
        )


@dataclass
class NegotiationFailure:
    """A failed negotiation, surfaced to the UI. Never fatal to the client."""

    peer_id: TPeerId
    reason: str
    # State the session was in when it failed
    state: NegotiationState
    dismissed: bool = False

    def dismiss(self) -> None:
        self.dismissed = True


class NegotiationSession:
    def __init__(
        self,
        peer_id: TPeerId,
        role: Role,
        peer_connection: IPeerConnection,
        manifest: TransferManifest | None = None,
    ) -> None:
        self.peer_id = peer_id
        self.role = role
        self.peer_connection = peer_connection
        self.manifest = manifest
        self.machine = NegotiationStateMachine(name=peer_id)
        self.request: IncomingTransferRequest | None = None
        self.channel: IDataChannel | None = None

        self.pending_candidates: deque[IceCandidate] = deque()
        # Local candidates gathered before our offer/answer went out
        self.outgoing_candidates: deque[IceCandidate] = deque()
        self.local_description_sent = False

        self.cancel_scope = trio.CancelScope()
        self.failure_reason: str | None = None
        self.closed = False
        self.done = trio.Event()
        self._remote_description_applied = False

    @property
    def state(self) -> NegotiationState:
        return self.machine.state

    @property
    def remote_description_applied(self) -> bool:
        return self._remote_description_applied

    async def apply_remote_description(self, description: SessionDescription) -> None:
        await self.peer_connection.set_remote_description(description)
        # Candidates can keep arriving while earlier ones are applied; the
        # flag flips only once the queue is empty, with no checkpoint between
        while self.pending_candidates:
            await self._apply_candidate(self.pending_candidates.popleft())
        self._remote_description_applied = True

    async def add_remote_candidate(self, candidate: IceCandidate) -> None:
        if self.closed:
            return
        if not self._remote_description_applied:
            self.pending_candidates.append(candidate)
            logger.debug(
                "Queued early candidate from %s (%d pending)",
                self.peer_id,
                len(self.pending_candidates),
            )
            return
        await self._apply_candidate(candidate)

    async def _apply_candidate(self, candidate: IceCandidate) -> None:
        if self.closed:
            return
        await self.peer_connection.add_ice_candidate(candidate)

    def fail(self, reason: str) -> None:
        """Abort the session from outside its task."""
        if self.failure_reason is None:
            self.failure_reason = reason
        self.cancel_scope.cancel()

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.cancel_scope.cancel()
        self.pending_candidates.clear()
        self.outgoing_candidates.clear()
        with trio.CancelScope(shield=True):
            if self.channel is not None:
                await self.channel.close()
            await self.peer_connection.close()
        logger.debug("Closed negotiation session with %s", self.peer_id)

    def __repr__(self) -> str:
        return (
            f"<NegotiationSession peer={self.peer_id} role={self.role.value} "
            f"state={self.state.name}>"
        )
