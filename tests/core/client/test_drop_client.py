from contextlib import (
    asynccontextmanager,
)

import pytest
import trio

from peerdrop.client.config import (
    ClientConfig,
)
from peerdrop.client.drop_client import (
    DropClient,
)
from peerdrop.client.events import (
    DirectorySink,
)
from peerdrop.exceptions import (
    ValidationError,
)
from peerdrop.negotiation.config import (
    NegotiationConfig,
)
from peerdrop.negotiation.exceptions import (
    NegotiationError,
)
from peerdrop.negotiation.manager import (
    TIMEOUT_REASON,
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
from peerdrop.tools.loopback import (
    LoopbackDataChannel,
    MemorySignalConnection,
)
from peerdrop.transfer.config import (
    TransferConfig,
)
from peerdrop.transfer.progress import (
    Direction,
)
from peerdrop.transfer.sender import (
    OutgoingFile,
)


@asynccontextmanager
async def drop_clients(network, *events, config=None):
    """Clients joined to one in-memory relay."""
    server = RelayServer(RelayConfig(port=0))
    async with trio.open_nursery() as nursery:
        clients = []
        for sink in events:
            client_end, relay_end = MemorySignalConnection.pair()
            nursery.start_soon(server.serve_connection, relay_end)
            client = DropClient(
                SignalingClient(client_end),
                sink,
                network.create_peer_connection,
                config,
            )
            await nursery.start(client.run)
            clients.append(client)
        yield clients
        nursery.cancel_scope.cancel()


@pytest.mark.trio
async def test_files_reach_the_other_peer(loopback_network, recording_events, tmp_path):
    sender_events = recording_events()
    sink = DirectorySink(tmp_path / "inbox", auto_accept=True)
    config = ClientConfig(transfer=TransferConfig(chunk_size=16))
    photo = tmp_path / "photo.jpg"
    photo.write_bytes(bytes(range(200)))

    async with trio.open_nursery() as nursery:
        await nursery.start(sink.run)
        async with drop_clients(
            loopback_network, sender_events, sink, config=config
        ) as (alice, bob):
            with trio.fail_after(5):
                peer = await alice.wait_for_peer(bob.local_id)
                assert peer.id == bob.local_id
                session = alice.send_files(
                    peer.id,
                    [
                        OutgoingFile.from_path(photo),
                        OutgoingFile.from_bytes("notes.txt", b"see you"),
                    ],
                )
                while len(sink.saved) < 2:
                    await trio.sleep(0.01)
                await session.done.wait()
        await sink.aclose()

    assert [p.name for p in sink.saved] == ["photo.jpg", "notes.txt"]
    assert sink.saved[0].read_bytes() == bytes(range(200))
    assert sink.saved[1].read_bytes() == b"see you"

    ((peer_id, manifest, direction),) = sender_events.batches
    assert peer_id == bob.local_id
    assert direction is Direction.SEND
    assert [e.name for e in manifest] == ["photo.jpg", "notes.txt"]
    assert manifest[0].mime_type == "image/jpeg"
    assert sender_events.percentages(Direction.SEND)[-1] == 100
    assert sender_events.negotiation_failures == []
    assert sender_events.transfer_failures == []


@pytest.mark.trio
async def test_receiver_closes_the_channel_first(
    loopback_network, recording_events, monkeypatch
):
    closed = []
    close = LoopbackDataChannel.close

    async def recording_close(self):
        closed.append(self)
        await close(self)

    monkeypatch.setattr(LoopbackDataChannel, "close", recording_close)
    sender_events, receiver_events = recording_events(), recording_events()

    async with drop_clients(loopback_network, sender_events, receiver_events) as (
        alice,
        bob,
    ):
        session = alice.send_files(
            bob.local_id, [OutgoingFile.from_bytes("a.txt", b"abc")]
        )
        with trio.fail_after(5):
            await session.done.wait()

    # The sender tears down only after the receiver closed its end
    assert len(closed) >= 2
    assert closed[0] is not session.channel
    assert session.channel in closed
    assert [f.data for _, f in receiver_events.files] == [b"abc"]
    assert sender_events.transfer_failures == []
    assert receiver_events.transfer_failures == []

@pytest.mark.trio
async def test_peers_are_announced(loopback_network, recording_events):
    events_a, events_b = recording_events(), recording_events()
    async with drop_clients(loopback_network, events_a, events_b) as (alice, bob):
        with trio.fail_after(5):
            while not events_a.peer_lists or not events_a.peer_lists[-1]:
                await trio.sleep(0.01)
        (peer,) = events_a.peer_lists[-1]
        assert peer.id == bob.local_id
        assert alice.signaling.find_peer(peer.display_name).id == bob.local_id


@pytest.mark.trio
async def test_declined_offer_times_out(loopback_network, recording_events):
    sender_events = recording_events()
    receiver_events = recording_events(auto_accept=False)
    config = ClientConfig(
        negotiation=NegotiationConfig(timeout=0.5, consent_timeout=0.5)
    )

    async with drop_clients(
        loopback_network, sender_events, receiver_events, config=config
    ) as (alice, bob):
        session = alice.send_files(
            bob.local_id, [OutgoingFile.from_bytes("a.txt", b"abc")]
        )
        with trio.fail_after(5):
            await session.done.wait()

    (failure,) = sender_events.negotiation_failures
    assert failure.reason == TIMEOUT_REASON
    assert receiver_events.files == []
    assert len(receiver_events.requests) == 1


@pytest.mark.trio
async def test_one_live_session_per_peer(loopback_network, recording_events):
    events_a, events_b = recording_events(), recording_events(auto_accept=None)
    async with drop_clients(loopback_network, events_a, events_b) as (alice, bob):
        alice.send_files(bob.local_id, [OutgoingFile.from_bytes("a", b"a")])
        with pytest.raises(NegotiationError):
            alice.send_files(bob.local_id, [OutgoingFile.from_bytes("b", b"b")])


def test_not_running(loopback_network, recording_events):
    client_end, _ = MemorySignalConnection.pair()
    client = DropClient(
        SignalingClient(client_end),
        recording_events(),
        loopback_network.create_peer_connection,
    )
    with pytest.raises(NegotiationError):
        client.send_files("peer", [])


def test_invalid_config(loopback_network, recording_events):
    client_end, _ = MemorySignalConnection.pair()
    with pytest.raises(ValidationError):
        DropClient(
            SignalingClient(client_end),
            recording_events(),
            loopback_network.create_peer_connection,
            ClientConfig(relay_url="http://example.com"),
        )
