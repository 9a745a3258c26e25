from contextlib import (
    asynccontextmanager,
)

import pytest
import trio

from peerdrop.negotiation.config import (
    NegotiationConfig,
)
from peerdrop.negotiation.exceptions import (
    NegotiationError,
)
from peerdrop.negotiation.manager import (
    CONSENT_TIMEOUT_REASON,
    REPLACED_REASON,
    TIMEOUT_REASON,
    NegotiationManager,
)
from peerdrop.negotiation.session import (
    Role,
)
from peerdrop.negotiation.state_machine import (
    NegotiationState,
)
from peerdrop.relay.config import (
    RelayConfig,
)
from peerdrop.relay.server import (
    RelayServer,
)
from peerdrop.signaling.client import (
    SignalingClient,
)
from peerdrop.signaling.envelope import (
    MessageType,
)
from peerdrop.tools.loopback import (
    MemorySignalConnection,
)
from peerdrop.transfer.manifest import (
    FileEntry,
    TransferManifest,
)

MANIFEST = TransferManifest([FileEntry("a.txt", 3, "text/plain")])


class Peer:
    def __init__(self, signaling, manager, events, opened):
        self.signaling = signaling
        self.manager = manager
        self.events = events
        self.opened = opened

    @property
    def id(self):
        return self.signaling.local_id


@asynccontextmanager
async def two_peers(network, events_a, events_b, config=None, on_open=None):
    """Two managers talking through a real relay over memory connections."""
    server = RelayServer(RelayConfig(port=0))
    async with trio.open_nursery() as nursery:
        peers = []
        for events in (events_a, events_b):
            client_end, relay_end = MemorySignalConnection.pair()
            nursery.start_soon(server.serve_connection, relay_end)
            signaling = SignalingClient(client_end)
            opened = []

            async def record_open(session, channel, opened=opened):
                opened.append((session, channel))
                if on_open is not None:
                    await on_open(session, channel)

            manager = NegotiationManager(
                signaling,
                network.create_peer_connection,
                events,
                nursery,
                record_open,
                config,
            )
            signaling.set_handler(MessageType.OFFER, manager.handle_offer)
            signaling.set_handler(MessageType.ANSWER, manager.handle_answer)
            signaling.set_handler(MessageType.CANDIDATE, manager.handle_candidate)
            nursery.start_soon(signaling.run)
            await signaling.wait_welcome()
            peers.append(Peer(signaling, manager, events, opened))
        yield peers
        nursery.cancel_scope.cancel()


class StubSignaling:
    def __init__(self):
        self.sent = []

    async def send(self, msg_type, payload, target_id):
        self.sent.append((msg_type, payload, target_id))


@pytest.mark.trio
async def test_channel_opens_on_both_sides(loopback_network, recording_events):
    loopback_network.candidates_per_description = 3
    events_a, events_b = recording_events(), recording_events(auto_accept=True)

    async def exchange(session, channel):
        if session.role is Role.INITIATOR:
            await channel.send(b"ping")
            assert await channel.receive() == b"pong"
            # The responder's candidates may trail its answer
            with trio.fail_after(2):
                while len(session.peer_connection.applied_candidates) < 3:
                    await trio.sleep(0.01)
        else:
            assert await channel.receive() == b"ping"
            await channel.send(b"pong")

    async with two_peers(loopback_network, events_a, events_b, on_open=exchange) as (
        a,
        b,
    ):
        session_a = a.manager.initiate(b.id, MANIFEST)
        with trio.fail_after(5):
            await session_a.done.wait()
            while not b.opened or b.manager.sessions:
                await trio.sleep(0.01)

        session_b, _ = b.opened[0]
        assert session_a.machine.history == (
            NegotiationState.IDLE,
            NegotiationState.OFFER_CREATED,
            NegotiationState.ANSWER_EXCHANGED,
            NegotiationState.CHANNEL_OPEN,
        )
        assert session_b.machine.history == (
            NegotiationState.IDLE,
            NegotiationState.OFFER_RECEIVED,
            NegotiationState.ANSWER_EXCHANGED,
            NegotiationState.CHANNEL_OPEN,
        )
        assert session_b.peer_id == a.id
        assert session_b.manifest == MANIFEST
        assert [r.manifest for r in events_b.requests] == [MANIFEST]

        # Every candidate reached the other side, in the order it was sent
        pc_a, pc_b = session_a.peer_connection, session_b.peer_connection
        assert pc_b.applied_candidates == loopback_network.local_candidates(pc_a)
        assert pc_a.applied_candidates == loopback_network.local_candidates(pc_b)

        # Sessions are discarded once the channel handler returns
        assert a.manager.sessions == {}
        assert session_a.closed and session_b.closed
        assert events_a.negotiation_failures == []
        assert events_b.negotiation_failures == []


@pytest.mark.trio
async def test_decline_sends_nothing_and_initiator_times_out(
    loopback_network, recording_events
):
    events_a, events_b = recording_events(), recording_events(auto_accept=False)
    config = NegotiationConfig(timeout=0.5, consent_timeout=0.5)

    async with two_peers(loopback_network, events_a, events_b, config) as (a, b):
        session_a = a.manager.initiate(b.id, MANIFEST)
        with trio.fail_after(5):
            await session_a.done.wait()

        assert len(events_b.requests) == 1
        assert events_b.negotiation_failures == []
        assert b.manager.sessions == {}
        assert b.opened == []

        (failure,) = events_a.negotiation_failures
        assert failure.reason == TIMEOUT_REASON
        assert failure.state is NegotiationState.OFFER_CREATED
        assert failure.peer_id == b.id
        assert session_a.state is NegotiationState.FAILED


@pytest.mark.trio
async def test_consent_timeout_declines(loopback_network, recording_events):
    events_a, events_b = recording_events(), recording_events(auto_accept=None)
    config = NegotiationConfig(timeout=5, consent_timeout=0.2)

    async with two_peers(loopback_network, events_a, events_b, config) as (a, b):
        a.manager.initiate(b.id, MANIFEST)
        with trio.fail_after(5):
            while not events_b.negotiation_failures:
                await trio.sleep(0.01)

        (failure,) = events_b.negotiation_failures
        assert failure.reason == CONSENT_TIMEOUT_REASON
        assert failure.state is NegotiationState.OFFER_RECEIVED
        (request,) = events_b.requests
        assert request.decided and request.accepted is False
        # A late click changes nothing
        request.accept()
        assert request.accepted is False


@pytest.mark.trio
async def test_initiator_waits_for_late_consent(loopback_network, recording_events):
    events_a, events_b = recording_events(), recording_events(auto_accept=None)
    config = NegotiationConfig(timeout=0.3, consent_timeout=2)

    async with two_peers(loopback_network, events_a, events_b, config) as (a, b):
        session_a = a.manager.initiate(b.id, MANIFEST)
        with trio.fail_after(5):
            while not events_b.requests:
                await trio.sleep(0.01)
        # Longer than the initiator's plain timeout
        await trio.sleep(0.5)
        events_b.requests[0].accept()
        with trio.fail_after(5):
            await session_a.done.wait()
            while not b.opened:
                await trio.sleep(0.01)

        assert a.opened and b.opened
        assert NegotiationState.CHANNEL_OPEN in session_a.machine.history
        assert events_a.negotiation_failures == []
        assert events_b.negotiation_failures == []


@pytest.mark.trio
async def test_channel_that_never_opens_times_out(loopback_network, recording_events):
    loopback_network.hold_channels = True
    events_a, events_b = recording_events(), recording_events()
    config = NegotiationConfig(timeout=0.5, consent_timeout=0.5)

    async with two_peers(loopback_network, events_a, events_b, config) as (a, b):
        session_a = a.manager.initiate(b.id, MANIFEST)
        with trio.fail_after(5):
            await session_a.done.wait()
            while not events_b.negotiation_failures:
                await trio.sleep(0.01)

        for events in (events_a, events_b):
            (failure,) = events.negotiation_failures
            assert failure.reason == TIMEOUT_REASON
            assert failure.state is NegotiationState.ANSWER_EXCHANGED
        assert a.opened == [] and b.opened == []


@pytest.mark.trio
async def test_initiate_twice_raises(loopback_network, recording_events):
    async with trio.open_nursery() as nursery:
        manager = NegotiationManager(
            StubSignaling(),
            loopback_network.create_peer_connection,
            recording_events(),
            nursery,
            None,
            NegotiationConfig(timeout=5),
        )
        manager.initiate("peer", MANIFEST)
        with pytest.raises(NegotiationError):
            manager.initiate("peer", MANIFEST)
        nursery.cancel_scope.cancel()


@pytest.mark.trio
async def test_new_offer_replaces_session(loopback_network, recording_events):
    events = recording_events(auto_accept=None)
    remote = loopback_network.create_peer_connection()
    offer = await remote.create_offer()
    payload = {"offer": offer.to_dict(), "files": MANIFEST.to_offer_files()}

    async with trio.open_nursery() as nursery:
        manager = NegotiationManager(
            StubSignaling(),
            loopback_network.create_peer_connection,
            events,
            nursery,
            None,
        )
        await manager.handle_offer("peer", payload)
        first = manager.get_session("peer")
        await manager.handle_offer("peer", payload)
        second = manager.get_session("peer")

        assert first is not second
        assert first.closed and not second.closed
        await trio.sleep(0.05)
        assert len(events.requests) == 2
        assert events.requests[-1] is second.request
        assert events.negotiation_failures == []
        nursery.cancel_scope.cancel()


@pytest.mark.trio
async def test_incoming_offer_reports_replaced_outgoing_session(
    loopback_network, recording_events
):
    events = recording_events(auto_accept=None)
    signaling = StubSignaling()
    remote = loopback_network.create_peer_connection()
    offer = await remote.create_offer()
    payload = {"offer": offer.to_dict(), "files": MANIFEST.to_offer_files()}

    async with trio.open_nursery() as nursery:
        manager = NegotiationManager(
            signaling,
            loopback_network.create_peer_connection,
            events,
            nursery,
            None,
            NegotiationConfig(timeout=5),
        )
        outgoing = manager.initiate("peer", MANIFEST)
        with trio.fail_after(2):
            while not signaling.sent:
                await trio.sleep(0.01)
        await manager.handle_offer("peer", payload)
        with trio.fail_after(2):
            await outgoing.done.wait()

        incoming = manager.get_session("peer")
        assert incoming.role is Role.RESPONDER
        assert outgoing.closed and not incoming.closed
        (failure,) = events.negotiation_failures
        assert failure.peer_id == "peer"
        assert failure.reason == REPLACED_REASON
        assert failure.state is NegotiationState.OFFER_CREATED
        assert outgoing.state is NegotiationState.FAILED
        nursery.cancel_scope.cancel()


@pytest.mark.trio
async def test_messages_for_unknown_or_closed_sessions_are_noops(
    loopback_network, recording_events
):
    events = recording_events(auto_accept=None)
    signaling = StubSignaling()
    async with trio.open_nursery() as nursery:
        manager = NegotiationManager(
            signaling,
            loopback_network.create_peer_connection,
            events,
            nursery,
            None,
            NegotiationConfig(timeout=5),
        )
        await manager.handle_answer("ghost", {"answer": {"type": "answer", "sdp": ""}})
        await manager.handle_candidate("ghost", {"candidate": {"candidate": "c"}})

        session = manager.initiate("peer", MANIFEST)
        with trio.fail_after(2):
            while not signaling.sent:
                await trio.sleep(0.01)
        await manager.close("peer")
        await manager.handle_answer("peer", {"answer": {"type": "answer", "sdp": ""}})
        await manager.handle_candidate("peer", {"candidate": {"candidate": "c"}})
        with trio.fail_after(2):
            await session.done.wait()

        assert session.closed
        assert session.state is NegotiationState.OFFER_CREATED
        assert session.peer_connection.applied_candidates == []
        assert events.negotiation_failures == []
        nursery.cancel_scope.cancel()


@pytest.mark.trio
async def test_malformed_offer_is_dropped(loopback_network, recording_events):
    events = recording_events()
    async with trio.open_nursery() as nursery:
        manager = NegotiationManager(
            StubSignaling(),
            loopback_network.create_peer_connection,
            events,
            nursery,
            None,
        )
        await manager.handle_offer("peer", {"offer": {"type": "offer"}, "files": []})
        await manager.handle_offer(
            "peer",
            {"offer": {"type": "offer", "sdp": ""}, "files": [{"name": "x"}]},
        )
        assert manager.sessions == {}
        assert events.requests == []
