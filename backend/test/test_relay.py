"""Tests for the room-scoped signaling relay."""

import asyncio
import json

from starlette.websockets import WebSocketState

from duocall.modules.rooms import RoomDirectory, SignalRelay
from duocall.modules.shared import MessageKind, messages

from conftest import FakeConnection


def join_frame(room_id, name=None):
    frame = {"type": "join", "roomId": room_id}
    if name is not None:
        frame["payload"] = {"name": name}
    return json.dumps(frame)


OFFER = {"type": "offer", "sdp": "v=0\r\no=- 1 1 IN IP4 0.0.0.0\r\n"}


def test_first_peer_in_empty_room(relay):
    async def scenario():
        conn = FakeConnection()
        alice = relay.connect(conn)
        await relay.handle_frame(alice, join_frame("abc", "alice"))
        return conn, alice

    conn, alice = asyncio.run(scenario())

    assert conn.kinds() == ["welcome", "room-peers", "roster"]
    assert conn.sent[0]["payload"] == {"id": alice.peer_id, "name": "alice"}
    assert conn.sent[1] == {"type": "room-peers", "roomId": "abc", "payload": {"count": 0}}
    assert conn.sent[2]["payload"]["roster"] == [{"id": alice.peer_id, "name": "alice"}]
    assert relay.directory.room_count("abc") == 1


def test_second_peer_join_notifies_existing_member_only(relay):
    async def scenario():
        a_conn, b_conn = FakeConnection(), FakeConnection()
        alice, bob = relay.connect(a_conn), relay.connect(b_conn)
        await relay.handle_frame(alice, join_frame("abc", "alice"))
        a_conn.clear()
        await relay.handle_frame(bob, join_frame("abc", "bob"))
        return a_conn, b_conn, alice, bob

    a_conn, b_conn, alice, bob = asyncio.run(scenario())

    assert a_conn.kinds() == ["peer-joined", "roster"]
    assert b_conn.kinds() == ["welcome", "room-peers", "roster"]
    assert b_conn.of("room-peers")[0]["payload"] == {"count": 1}
    expected = [{"id": alice.peer_id, "name": "alice"}, {"id": bob.peer_id, "name": "bob"}]
    assert a_conn.of("roster")[0]["payload"]["roster"] == expected
    assert b_conn.of("roster")[0]["payload"]["roster"] == expected


def test_offer_relayed_to_other_member_unchanged(relay):
    async def scenario():
        a_conn, b_conn = FakeConnection(), FakeConnection()
        alice, bob = relay.connect(a_conn), relay.connect(b_conn)
        await relay.handle_frame(alice, join_frame("abc"))
        await relay.handle_frame(bob, join_frame("abc"))
        a_conn.clear()
        b_conn.clear()
        await relay.handle_frame(alice, json.dumps({"type": "offer", "roomId": "abc", "payload": OFFER}))
        return a_conn, b_conn

    a_conn, b_conn = asyncio.run(scenario())

    assert a_conn.sent == []
    assert b_conn.sent == [{"type": "offer", "roomId": "abc", "payload": OFFER}]


def test_disconnect_notifies_remaining_member(relay):
    async def scenario():
        a_conn, b_conn = FakeConnection(), FakeConnection()
        alice, bob = relay.connect(a_conn), relay.connect(b_conn)
        await relay.handle_frame(alice, join_frame("abc", "alice"))
        await relay.handle_frame(bob, join_frame("abc", "bob"))
        a_conn.clear()
        await relay.disconnect(bob)
        return a_conn, alice

    a_conn, alice = asyncio.run(scenario())

    assert a_conn.kinds() == ["peer-left", "roster"]
    assert a_conn.sent[1]["payload"]["roster"] == [{"id": alice.peer_id, "name": "alice"}]
    assert relay.directory.room_count("abc") == 1
    assert len(relay.registry) == 1


def test_last_member_leaving_deletes_room(relay):
    async def scenario():
        alice = relay.connect(FakeConnection())
        await relay.handle_frame(alice, join_frame("abc"))
        await relay.disconnect(alice)

    asyncio.run(scenario())

    assert relay.directory.rooms == {}
    assert len(relay.registry) == 0


def test_non_member_cannot_relay(relay):
    async def scenario():
        a_conn, b_conn, c_conn = FakeConnection(), FakeConnection(), FakeConnection()
        alice, bob, carol = relay.connect(a_conn), relay.connect(b_conn), relay.connect(c_conn)
        await relay.handle_frame(alice, join_frame("abc"))
        await relay.handle_frame(bob, join_frame("abc"))
        a_conn.clear()
        b_conn.clear()
        await relay.handle_frame(carol, json.dumps({"type": "offer", "roomId": "abc", "payload": OFFER}))
        delivered = await relay.relay(MessageKind.ANSWER, "abc", {}, carol)
        return a_conn, b_conn, c_conn, delivered

    a_conn, b_conn, c_conn, delivered = asyncio.run(scenario())

    assert delivered == 0
    assert a_conn.sent == []
    assert b_conn.sent == []
    assert c_conn.sent == []


def test_broadcast_excludes_sender(relay):
    async def scenario():
        conns = [FakeConnection() for _ in range(3)]
        peers = [relay.connect(c) for c in conns]
        for peer in peers:
            await relay.handle_frame(peer, join_frame("abc"))
        for conn in conns:
            conn.clear()
        await relay.handle_frame(peers[0], json.dumps({"type": "ice-candidate", "roomId": "abc",
                                                       "payload": {"candidate": "c1"}}))
        return conns

    conns = asyncio.run(scenario())

    assert conns[0].sent == []
    assert conns[1].kinds() == ["ice-candidate"]
    assert conns[2].kinds() == ["ice-candidate"]


def test_broken_member_does_not_block_others(relay):
    async def scenario():
        a_conn, b_conn, c_conn = FakeConnection(), FakeConnection(fail=True), FakeConnection()
        alice, bob, carol = relay.connect(a_conn), relay.connect(b_conn), relay.connect(c_conn)
        for peer in (alice, bob, carol):
            await relay.handle_frame(peer, join_frame("abc"))
        c_conn.clear()
        return await relay.relay(MessageKind.OFFER, "abc", OFFER, alice), c_conn

    delivered, c_conn = asyncio.run(scenario())

    assert delivered == 1
    assert c_conn.sent == [{"type": "offer", "roomId": "abc", "payload": OFFER}]


def test_closed_connection_is_skipped(relay):
    async def scenario():
        a_conn, b_conn = FakeConnection(), FakeConnection()
        alice, bob = relay.connect(a_conn), relay.connect(b_conn)
        await relay.handle_frame(alice, join_frame("abc"))
        await relay.handle_frame(bob, join_frame("abc"))
        b_conn.clear()
        b_conn.client_state = WebSocketState.DISCONNECTED
        return await relay.broadcast("abc", messages.peer_left("abc"), except_peer=alice), b_conn

    delivered, b_conn = asyncio.run(scenario())

    assert delivered == 0
    assert b_conn.sent == []


def test_leave_is_idempotent(relay):
    async def scenario():
        a_conn, b_conn = FakeConnection(), FakeConnection()
        alice, bob = relay.connect(a_conn), relay.connect(b_conn)
        await relay.handle_frame(alice, join_frame("abc"))
        await relay.handle_frame(bob, join_frame("abc"))
        a_conn.clear()
        first = await relay.leave(bob)
        second = await relay.leave(bob)
        await relay.disconnect(bob)
        return first, second, a_conn

    first, second, a_conn = asyncio.run(scenario())

    assert first == "abc"
    assert second is None
    assert a_conn.kinds() == ["peer-left", "roster"]


def test_client_leave_frame_is_relayed_then_applied(relay):
    async def scenario():
        a_conn, b_conn = FakeConnection(), FakeConnection()
        alice, bob = relay.connect(a_conn), relay.connect(b_conn)
        await relay.handle_frame(alice, join_frame("abc"))
        await relay.handle_frame(bob, join_frame("abc"))
        a_conn.clear()
        b_conn.clear()
        await relay.handle_frame(bob, '{"type": "leave", "roomId": "abc"}')
        return a_conn, b_conn, bob

    a_conn, b_conn, bob = asyncio.run(scenario())

    assert a_conn.kinds() == ["leave", "peer-left", "roster"]
    assert b_conn.sent == []
    assert bob.room_id is None


def test_join_other_room_switches_rooms(relay):
    async def scenario():
        a_conn, b_conn = FakeConnection(), FakeConnection()
        alice, bob = relay.connect(a_conn), relay.connect(b_conn)
        await relay.handle_frame(alice, join_frame("abc"))
        await relay.handle_frame(bob, join_frame("abc"))
        first_id = alice.peer_id
        a_conn.clear()
        b_conn.clear()
        await relay.handle_frame(alice, join_frame("xyz"))
        return a_conn, b_conn, alice, first_id

    a_conn, b_conn, alice, first_id = asyncio.run(scenario())

    assert b_conn.kinds() == ["peer-left", "roster"]
    assert a_conn.kinds() == ["welcome", "room-peers", "roster"]
    assert a_conn.of("room-peers")[0]["roomId"] == "xyz"
    assert alice.room_id == "xyz"
    assert alice.peer_id == first_id
    assert relay.directory.room_count("abc") == 1


def test_rejoining_same_room_is_a_no_op(relay):
    async def scenario():
        conn = FakeConnection()
        alice = relay.connect(conn)
        await relay.handle_frame(alice, join_frame("abc"))
        conn.clear()
        await relay.handle_frame(alice, join_frame("abc"))
        return conn

    conn = asyncio.run(scenario())

    assert conn.sent == []
    assert relay.directory.room_count("abc") == 1


def test_full_room_rejects_join(small_relay):
    async def scenario():
        conns = [FakeConnection() for _ in range(3)]
        peers = [small_relay.connect(c) for c in conns]
        for peer in peers:
            await small_relay.handle_frame(peer, join_frame("abc"))
        return conns, peers

    conns, peers = asyncio.run(scenario())

    assert conns[2].sent == []
    assert peers[2].room_id is None
    assert small_relay.directory.room_count("abc") == 2


def test_names_are_trimmed_and_defaulted(small_relay):
    async def scenario():
        a_conn, b_conn = FakeConnection(), FakeConnection()
        alice, bob = small_relay.connect(a_conn), small_relay.connect(b_conn)
        await small_relay.handle_frame(alice, join_frame("abc", "  alexandria  "))
        await small_relay.handle_frame(bob, join_frame("abc"))
        return alice, bob

    alice, bob = asyncio.run(scenario())

    assert alice.name == "alexandr"
    assert bob.name == f"Guest-{bob.peer_id[:4]}"


def test_malformed_and_server_only_frames_are_ignored(relay):
    async def scenario():
        a_conn, b_conn = FakeConnection(), FakeConnection()
        alice, bob = relay.connect(a_conn), relay.connect(b_conn)
        await relay.handle_frame(alice, join_frame("abc"))
        await relay.handle_frame(bob, join_frame("abc"))
        a_conn.clear()
        b_conn.clear()
        for raw in ("garbage", "[]", '{"type": "nope"}', '{"type": "join"}',
                    '{"type": "peer-left", "roomId": "abc"}', '{"type": "roster", "roomId": "abc"}'):
            await relay.handle_frame(alice, raw)
        return a_conn, b_conn, alice

    a_conn, b_conn, alice = asyncio.run(scenario())

    assert a_conn.sent == []
    assert b_conn.sent == []
    assert alice.room_id == "abc"


def test_rooms_do_not_leak_into_each_other():
    relay = SignalRelay(directory=RoomDirectory())

    async def scenario():
        conns = [FakeConnection() for _ in range(4)]
        peers = [relay.connect(c) for c in conns]
        for peer, room in zip(peers, ("abc", "abc", "xyz", "xyz")):
            await relay.handle_frame(peer, join_frame(room))
        for conn in conns:
            conn.clear()
        await relay.handle_frame(peers[0], json.dumps({"type": "offer", "roomId": "abc", "payload": OFFER}))
        return conns

    conns = asyncio.run(scenario())

    assert conns[1].kinds() == ["offer"]
    assert conns[2].sent == []
    assert conns[3].sent == []


class InterleavingConnection(FakeConnection):
    """Yields to the event loop on every send so concurrent joins and leaves interleave.

    Each roster is also compared with the room's membership at the moment it is sent.
    """

    def __init__(self, relay):
        super().__init__()
        self.relay = relay
        self.rosters = []

    async def send_text(self, text):
        frame = json.loads(text)
        if frame["type"] == "roster":
            current = [e.model_dump() for e in self.relay.directory.roster(frame["roomId"])]
            self.rosters.append((frame["payload"]["roster"], current))
        await asyncio.sleep(0)
        await super().send_text(text)


def test_concurrent_joins_and_leaves_produce_consistent_rosters(relay):
    async def scenario():
        conns = [InterleavingConnection(relay) for _ in range(8)]
        peers = [relay.connect(c) for c in conns]

        await asyncio.gather(*(
            relay.handle_frame(p, join_frame("abc", f"peer{i}")) for i, p in enumerate(peers[:4])
        ))
        await asyncio.gather(
            *(relay.handle_frame(p, join_frame("abc", f"peer{i + 4}")) for i, p in enumerate(peers[4:])),
            relay.disconnect(peers[0]),
            relay.handle_frame(peers[1], json.dumps({"type": "leave", "roomId": "abc"})),
            relay.leave(peers[2]),
        )
        return conns, peers

    conns, peers = asyncio.run(scenario())

    known = {p.peer_id for p in peers}
    final = [e.model_dump() for e in relay.directory.roster("abc")]
    assert {e["id"] for e in final} == {p.peer_id for p in peers[3:]}

    for conn, peer in zip(conns, peers):
        assert conn.rosters, "every peer receives at least one roster"
        for sent, membership in conn.rosters:
            ids = [e["id"] for e in sent]
            assert sent == membership
            assert len(ids) == len(set(ids))
            assert set(ids) <= known
            assert peer.peer_id in ids

    for conn in conns[3:]:
        assert conn.rosters[-1][0] == final
