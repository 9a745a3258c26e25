import itertools
import random

import pytest

from peerdrop.relay.config import (
    DEFAULT_NAME_POOL,
)
from peerdrop.relay.exceptions import (
    RegistryError,
)
from peerdrop.relay.registry import (
    ClientRegistry,
    PeerSummary,
)


def _counting_ids():
    counter = itertools.count(1)
    return lambda: f"id{next(counter)}"


def test_register_assigns_id_and_pool_name(recording_connection):
    registry = ClientRegistry(rng=random.Random(0))
    session = registry.register(recording_connection("a"))

    assert session.id
    assert session.display_name in DEFAULT_NAME_POOL
    assert registry.lookup(session.id) is session
    assert session.id in registry
    assert len(registry) == 1


def test_ids_are_unique(recording_connection):
    registry = ClientRegistry()
    sessions = [registry.register(recording_connection()) for _ in range(20)]
    assert len({s.id for s in sessions}) == 20


def test_display_names_distinct_past_pool_exhaustion(recording_connection):
    registry = ClientRegistry(name_pool=("Red", "Blue"), rng=random.Random(1))
    sessions = [registry.register(recording_connection()) for _ in range(5)]

    names = [s.display_name for s in sessions]
    assert len(set(names)) == 5
    assert set(names[:2]) == {"Red", "Blue"}
    assert names[2:] == ["User3", "User4", "User5"]


def test_fallback_name_skips_names_in_use(recording_connection):
    registry = ClientRegistry(name_pool=())
    first = recording_connection("first")
    registry.register(first)
    registry.register(recording_connection())
    registry.register(recording_connection())
    assert [p.display_name for p in registry.list_peers()] == [
        "User1",
        "User2",
        "User3",
    ]

    registry.unregister(first)
    # len + 1 == 3 is taken, so the next free number is used
    assert registry.register(recording_connection()).display_name == "User4"


def test_freed_pool_name_is_reused(recording_connection):
    registry = ClientRegistry(name_pool=("Only",))
    conn = recording_connection()
    registry.register(conn)
    assert registry.register(recording_connection()).display_name == "User2"

    registry.unregister(conn)
    assert registry.register(recording_connection()).display_name == "Only"


def test_unregister_is_idempotent(recording_connection):
    registry = ClientRegistry()
    conn = recording_connection()
    session = registry.register(conn)

    assert registry.unregister(conn) is session
    assert registry.unregister(conn) is None
    assert registry.lookup(session.id) is None
    assert registry.list_peers() == ()


def test_unregister_unknown_connection(recording_connection):
    registry = ClientRegistry()
    assert registry.unregister(recording_connection()) is None


def test_list_peers_in_registration_order(recording_connection):
    registry = ClientRegistry(id_factory=_counting_ids())
    for _ in range(3):
        registry.register(recording_connection())

    peers = registry.list_peers()
    assert [p.id for p in peers] == ["id1", "id2", "id3"]
    assert all(isinstance(p, PeerSummary) for p in peers)


def test_peer_summary_wire_form():
    assert PeerSummary(id="abc", display_name="Gold Lion").to_dict() == {
        "id": "abc",
        "deviceName": "Gold Lion",
    }


def test_id_collision_is_fatal(recording_connection):
    registry = ClientRegistry(id_factory=lambda: "same")
    registry.register(recording_connection())
    with pytest.raises(RegistryError):
        registry.register(recording_connection())
    assert len(registry) == 1


def test_duplicate_connection_rejected(recording_connection):
    registry = ClientRegistry()
    conn = recording_connection()
    registry.register(conn)
    with pytest.raises(RegistryError):
        registry.register(conn)
