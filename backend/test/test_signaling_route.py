"""End-to-end tests for the /ws signaling endpoint and the HTTP API."""

import json

from fastapi.testclient import TestClient

from duocall.app import app


def _join(ws, room_id, name):
    ws.send_text(json.dumps({"type": "join", "roomId": room_id, "payload": {"name": name}}))


def test_two_party_call_setup_over_websocket():
    offer = {"type": "offer", "sdp": "v=0"}
    answer = {"type": "answer", "sdp": "v=0"}

    with TestClient(app) as client:
        with client.websocket_connect("/ws") as alice:
            _join(alice, "route-abc", "alice")
            welcome = alice.receive_json()
            assert welcome["type"] == "welcome"
            assert welcome["payload"]["name"] == "alice"
            assert alice.receive_json()["payload"] == {"count": 0}
            assert alice.receive_json()["type"] == "roster"

            with client.websocket_connect("/ws") as bob:
                _join(bob, "route-abc", "bob")
                assert bob.receive_json()["type"] == "welcome"
                assert bob.receive_json() == {"type": "room-peers", "roomId": "route-abc", "payload": {"count": 1}}
                assert len(bob.receive_json()["payload"]["roster"]) == 2

                assert alice.receive_json()["type"] == "peer-joined"
                assert len(alice.receive_json()["payload"]["roster"]) == 2

                alice.send_text(json.dumps({"type": "offer", "roomId": "route-abc", "payload": offer}))
                assert bob.receive_json() == {"type": "offer", "roomId": "route-abc", "payload": offer}

                bob.send_text(json.dumps({"type": "answer", "roomId": "route-abc", "payload": answer}))
                assert alice.receive_json() == {"type": "answer", "roomId": "route-abc", "payload": answer}

            assert alice.receive_json()["type"] == "peer-left"
            roster = alice.receive_json()
            assert roster["payload"]["roster"] == [{"id": welcome["payload"]["id"], "name": "alice"}]


def test_malformed_frame_does_not_close_connection():
    with TestClient(app) as client:
        with client.websocket_connect("/ws") as ws:
            ws.send_text("this is not json")
            ws.send_text('{"type": "unknown"}')
            _join(ws, "route-malformed", "carol")
            assert ws.receive_json()["type"] == "welcome"


def test_rooms_endpoint_lists_active_rooms():
    with TestClient(app) as client:
        with client.websocket_connect("/ws") as ws:
            _join(ws, "route-list", "dave")
            ws.receive_json()
            ws.receive_json()
            ws.receive_json()

            rooms = client.get("/api/rooms").json()["rooms"]
            entry = next(r for r in rooms if r["room_id"] == "route-list")
            assert entry["peer_count"] == 1
            assert entry["peers"][0]["name"] == "dave"

            health = client.get("/api/health").json()
            assert health["status"] == "ok"
            assert health["rooms"] >= 1


def test_root_and_ice_servers():
    with TestClient(app) as client:
        assert client.get("/").json()["status"] == "ok"

        servers = client.get("/api/ice-servers").json()
        assert {"urls": "stun:stun.l.google.com:19302"} in servers
