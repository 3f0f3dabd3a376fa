"""Tests for room membership bookkeeping."""

import asyncio

import pytest

from duocall.modules.rooms import PeerRegistry, RoomDirectory

from conftest import FakeConnection


def _peer(registry, name):
    peer = registry.register(FakeConnection())
    registry.assign_identity(peer, name)
    return peer


def test_room_created_on_first_member_and_deleted_when_empty():
    registry = PeerRegistry()
    directory = RoomDirectory()
    alice, bob = _peer(registry, "alice"), _peer(registry, "bob")

    assert directory.add_member(alice, "abc") == 0
    assert directory.add_member(bob, "abc") == 1
    assert directory.room_count("abc") == 2

    assert directory.remove_member(alice) == "abc"
    assert "abc" in directory.rooms
    assert directory.remove_member(bob) == "abc"
    assert "abc" not in directory.rooms


def test_peer_belongs_to_at_most_one_room():
    registry = PeerRegistry()
    directory = RoomDirectory()
    alice = _peer(registry, "alice")
    directory.add_member(alice, "abc")

    with pytest.raises(ValueError):
        directory.add_member(alice, "xyz")


def test_remove_member_is_idempotent():
    registry = PeerRegistry()
    directory = RoomDirectory()
    alice = _peer(registry, "alice")
    directory.add_member(alice, "abc")

    assert directory.remove_member(alice) == "abc"
    assert directory.remove_member(alice) is None
    assert alice.room_id is None


def test_roster_and_room_list():
    registry = PeerRegistry()
    directory = RoomDirectory()
    alice, bob = _peer(registry, "alice"), _peer(registry, "bob")
    directory.add_member(alice, "abc")
    directory.add_member(bob, "abc")

    assert [(e.id, e.name) for e in directory.roster("abc")] == [
        (alice.peer_id, "alice"), (bob.peer_id, "bob"),
    ]
    assert directory.roster("missing") == []

    rooms = directory.get_room_list()
    assert rooms == [{
        "room_id": "abc",
        "peer_count": 2,
        "peers": [{"id": alice.peer_id, "name": "alice"}, {"id": bob.peer_id, "name": "bob"}],
    }]


def test_capacity():
    registry = PeerRegistry()
    directory = RoomDirectory(capacity=1)
    assert not directory.is_full("abc")

    directory.add_member(_peer(registry, "alice"), "abc")
    assert directory.is_full("abc")
    assert not RoomDirectory().is_full("abc")


def test_room_lock_entries_are_released():
    directory = RoomDirectory()
    order = []

    async def worker(tag):
        async with directory.locked("abc"):
            order.append(f"{tag}-in")
            await asyncio.sleep(0)
            order.append(f"{tag}-out")

    async def scenario():
        await asyncio.gather(worker("a"), worker("b"))

    asyncio.run(scenario())

    assert order == ["a-in", "a-out", "b-in", "b-out"]
    assert directory._locks == {}


def test_assign_identity_defaults_and_truncation():
    registry = PeerRegistry()
    peer = registry.register(FakeConnection())

    registry.assign_identity(peer, "   ")
    first_id = peer.peer_id
    assert peer.name == f"Guest-{first_id[:4]}"

    registry.assign_identity(peer, "  a-very-long-name  ", max_name_length=6)
    assert peer.name == "a-very"
    assert peer.peer_id == first_id
