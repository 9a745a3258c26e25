import json

import pytest
import trio

from peerdrop.exceptions import (
    ValidationError,
)
from peerdrop.relay.config import (
    RelayConfig,
)
from peerdrop.relay.server import (
    RelayServer,
)
from peerdrop.signaling.client import (
    open_signaling_client,
)
from peerdrop.signaling.envelope import (
    MessageType,
)
from peerdrop.tools.loopback import (
    MemorySignalConnection,
)


async def _receive_json(conn):
    with trio.fail_after(2):
        return json.loads(await conn.receive_message())


@pytest.mark.trio
async def test_serve_connection_lifecycle():
    server = RelayServer(RelayConfig(port=0))
    client_a, relay_a = MemorySignalConnection.pair()
    client_b, relay_b = MemorySignalConnection.pair()

    async with trio.open_nursery() as nursery:
        nursery.start_soon(server.serve_connection, relay_a)
        welcome_a = await _receive_json(client_a)
        assert welcome_a["type"] == "welcome"
        assert (await _receive_json(client_a))["type"] == "updatePeers"

        nursery.start_soon(server.serve_connection, relay_b)
        welcome_b = await _receive_json(client_b)
        peers = (await _receive_json(client_a))["peers"]
        assert {p["id"] for p in peers} == {welcome_a["id"], welcome_b["id"]}
        await _receive_json(client_b)

        await client_a.send_message(
            json.dumps(
                {
                    "type": "answer",
                    "targetId": welcome_b["id"],
                    "answer": {"type": "answer", "sdp": "v=0"},
                }
            )
        )
        answer = await _receive_json(client_b)
        assert answer["type"] == "answer"
        assert answer["senderId"] == welcome_a["id"]

        # Malformed input does not cost the sender its connection
        await client_a.send_message("garbage")
        await client_a.send_message("[" * 30000 + "]" * 30000)
        await client_a.send_message(
            json.dumps(
                {"type": "candidate", "targetId": welcome_b["id"], "candidate": {}}
            )
        )
        candidate = await _receive_json(client_b)
        assert candidate["type"] == "candidate"
        assert candidate["senderId"] == welcome_a["id"]

        await client_b.close()
        peers = (await _receive_json(client_a))["peers"]
        assert [p["id"] for p in peers] == [welcome_a["id"]]
        assert len(server.registry) == 1

        await client_a.close()
        with trio.fail_after(2):
            while len(server.registry):
                await trio.sleep(0.01)


@pytest.mark.trio
async def test_relay_over_websocket():
    server = RelayServer(RelayConfig(host="127.0.0.1", port=0))
    async with trio.open_nursery() as nursery:
        await nursery.start(server.serve)
        url = f"ws://127.0.0.1:{server.port}"

        async with open_signaling_client(url) as alice, open_signaling_client(
            url
        ) as bob:
            nursery.start_soon(alice.run)
            nursery.start_soon(bob.run)
            with trio.fail_after(5):
                alice_id = await alice.wait_welcome()
                bob_id = await bob.wait_welcome()
                while {p.id for p in alice.peers} != {alice_id, bob_id}:
                    await alice.wait_peers_changed()

            received = trio.Event()
            got = {}

            async def on_candidate(peer_id, payload):
                got["sender"] = peer_id
                got["payload"] = payload
                received.set()

            bob.set_handler(MessageType.CANDIDATE, on_candidate)
            await alice.send(
                MessageType.CANDIDATE,
                {"candidate": {"candidate": "candidate:1", "sdpMid": "0"}},
                bob_id,
            )
            with trio.fail_after(5):
                await received.wait()
            assert got["sender"] == alice_id
            assert got["payload"]["candidate"]["candidate"] == "candidate:1"
            assert alice.find_peer(bob.device_name).id == bob_id

        nursery.cancel_scope.cancel()


def test_invalid_config_rejected():
    with pytest.raises(ValidationError):
        RelayServer(RelayConfig(port=70000))
    with pytest.raises(ValidationError):
        RelayServer(RelayConfig(name_pool=("a", "a")))
