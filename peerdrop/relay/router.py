import logging

import trio

from peerdrop.abc import (
    ISignalConnection,
)
from peerdrop.signaling.envelope import (
    SignalingEnvelope,
    parse_client_envelope,
    update_peers_envelope,
    welcome_envelope,
)
from peerdrop.signaling.exceptions import (
    MalformedEnvelopeError,
    SignalConnectionClosed,
)

from .config import (
    RelayConfig,
)
from .registry import (
    ClientRegistry,
    ClientSession,
)

logger = logging.getLogger(__name__)


class RelayRouter:
    """
    Routes signaling messages between connected clients and broadcasts
    membership changes.

    Registry mutations and the broadcast that follows them run under one
    lock, so every ``updatePeers`` reflects the registry at the time it was
    computed and two broadcasts never interleave.
    """

    def __init__(
        self, registry: ClientRegistry, config: RelayConfig | None = None
    ) -> None:
        self.registry = registry
        self.config = config or RelayConfig()
        self._membership_lock = trio.Lock()

    async def _deliver(self, session: ClientSession, message: str) -> bool:
        """
        Send ``message`` to one session. Failures are logged and contained so
        one broken client never affects delivery to the others.
        """
        with trio.move_on_after(self.config.send_timeout) as scope:
            try:
                await session.connection.send_message(message)
                return True
            except SignalConnectionClosed:
                logger.debug("Dropped message to %s: connection closed", session.id)
                return False
            except (OSError, trio.BrokenResourceError, trio.ClosedResourceError) as e:
                logger.warning("Failed to deliver message to %s: %s", session.id, e)
                return False
        if scope.cancelled_caught:
            logger.warning(
                "Timed out after %.1fs delivering message to %s",
                self.config.send_timeout,
                session.id,
            )
        return False

    async def _broadcast_locked(self) -> None:
        peers = self.registry.list_peers()
        message = update_peers_envelope(peer.to_dict() for peer in peers).to_wire()
        logger.debug("Broadcasting peer list with %d peer(s)", len(peers))
        for session in self.registry.sessions():
            await self._deliver(session, message)

    async def broadcast_peer_list(self) -> None:
        async with self._membership_lock:
            await self._broadcast_locked()

    async def connect(self, connection: ISignalConnection) -> ClientSession:
        """Register ``connection``, welcome it, then announce it to everyone."""
        async with self._membership_lock:
            session = self.registry.register(connection)
            logger.info("Client %s (%s) connected", session.display_name, session.id)
            welcome = welcome_envelope(session.id, session.display_name)
            await self._deliver(session, welcome.to_wire())
            await self._broadcast_locked()
        return session

    async def disconnect(self, connection: ISignalConnection) -> None:
        async with self._membership_lock:
            session = self.registry.unregister(connection)
            if session is None:
                return
            logger.info(
                "Client %s (%s) disconnected", session.display_name, session.id
            )
            await self._broadcast_locked()

    async def route(self, envelope: SignalingEnvelope, sender: ClientSession) -> bool:
        """
        Forward ``envelope`` to its target with ``senderId`` set to the real
        sender. Returns False when the target is gone; that is an expected
        race, not an error.
        """
        if envelope.target_id is None:
            logger.debug("Dropped %s from %s: no target", envelope.type.value, sender.id)
            return False
        target = self.registry.lookup(envelope.target_id)
        if target is None:
            logger.debug(
                "Dropped %s from %s: target %s is not connected",
                envelope.type.value,
                sender.id,
                envelope.target_id,
            )
            return False
        forwarded = envelope.forwarded(sender.id)
        logger.debug(
            "Routing %s from %s to %s", envelope.type.value, sender.id, target.id
        )
        return await self._deliver(target, forwarded.to_wire())

    async def handle_message(self, raw: str, sender: ClientSession) -> bool:
        """Parse and route one raw client message. Malformed input is dropped."""
        if len(raw) > self.config.max_message_size:
            logger.warning(
                "Dropped %d byte message from %s: exceeds %d bytes",
                len(raw),
                sender.id,
                self.config.max_message_size,
            )
            return False
        try:
            envelope = parse_client_envelope(raw)
        except MalformedEnvelopeError as e:
            logger.warning("Dropped malformed message from %s: %s", sender.id, e)
            return False
        return await self.route(envelope, sender)
