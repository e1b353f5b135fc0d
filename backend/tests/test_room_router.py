"""HTTP and WebSocket surface, driven through FastAPI's TestClient."""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from main import app
from services.session_registry import session_registry


@pytest.fixture
def client(fake_fs, monkeypatch):
    monkeypatch.setattr(session_registry, "_firestore_provider", lambda: fake_fs)
    # Entering the client keeps one event loop alive for every request.
    with TestClient(app) as c:
        yield c


def _local_game(client, npcs=2):
    resp = client.post("/api/local", json={"player_name": "Host"})
    assert resp.status_code == 201
    room_id, host_id = resp.json()["room_id"], resp.json()["player_id"]
    if npcs:
        resp = client.post(f"/api/rooms/{room_id}/npcs?playerId={host_id}", json={"count": npcs})
        assert resp.status_code == 200
    return room_id, host_id


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["service"] == "hentaito-online"


class TestLocalGame:

    def test_full_round_with_npcs(self, client):
        room_id, host_id = _local_game(client)
        base = f"/api/rooms/{room_id}"

        view = client.post(f"{base}/start?playerId={host_id}", json={}).json()
        assert view["phase"] == "SETTING"
        assert view["players"][host_id]["secret_number"] is not None
        npc_ids = [pid for pid in view["player_order"] if pid != host_id]
        assert all(view["players"][pid]["secret_number"] is None for pid in npc_ids)

        theme = view["theme_candidates"][0]
        view = client.post(f"{base}/theme?playerId={host_id}", json={"theme": theme}).json()
        assert view["phase"] == "GAME"
        assert view["current_theme"]["text"] == theme["text"]

        guesses = {pid: 50 for pid in npc_ids}
        resp = client.post(f"{base}/votes?playerId={host_id}", json={"guesses": guesses, "memo": "mid"})
        assert resp.status_code == 200
        view = resp.json()
        assert view["phase"] == "RESULT"
        assert all(view["players"][pid]["secret_number"] is not None for pid in npc_ids)
        assert len(view["round_results"]) == 3

        view = client.post(f"{base}/next-round?playerId={host_id}").json()
        assert view["phase"] == "SETTING"
        assert view["round_count"] == 1

    def test_force_progress_scores_partial_table(self, client):
        room_id, host_id = _local_game(client)
        base = f"/api/rooms/{room_id}"
        view = client.post(f"{base}/start?playerId={host_id}", json={}).json()
        client.post(f"{base}/theme?playerId={host_id}", json={"theme": view["theme_candidates"][1]})

        view = client.post(f"{base}/force?playerId={host_id}").json()
        assert view["phase"] == "RESULT"

    def test_error_statuses(self, client):
        room_id, host_id = _local_game(client)
        base = f"/api/rooms/{room_id}"
        npc_id = client.get(f"{base}?playerId={host_id}").json()["player_order"][1]

        assert client.post(f"{base}/start?playerId={npc_id}", json={}).status_code == 403
        assert client.post(f"{base}/votes?playerId={host_id}", json={"guesses": {}}).status_code == 409
        assert client.get(f"{base}?playerId=ghost").status_code == 404
        assert client.post(f"{base}/color?playerId={host_id}", json={"color": "#123456"}).status_code == 400

    @pytest.mark.parametrize("name", ["", "   ", "ElevenChars"])
    def test_bad_names(self, client, name):
        assert client.post("/api/local", json={"player_name": name}).status_code == 400

    def test_leave_ends_local_game(self, client):
        room_id, host_id = _local_game(client, npcs=0)
        assert client.post(f"/api/rooms/{room_id}/leave?playerId={host_id}").status_code == 204
        assert client.get(f"/api/rooms/{room_id}?playerId={host_id}").status_code == 404


class TestNetworkedRooms:

    def test_create_join_and_guest_restrictions(self, client, fake_fs):
        resp = client.post("/api/rooms", json={"host_name": "Alice", "room_id": "4321"})
        assert resp.status_code == 201
        host_id = resp.json()["player_id"]

        assert client.post("/api/rooms", json={"host_name": "Zed", "room_id": "4321"}).status_code == 409
        assert client.post("/api/rooms", json={"host_name": "Zed", "room_id": "43"}).status_code == 400
        assert client.post("/api/rooms/9999/join", json={"player_name": "Bob"}).status_code == 404

        resp = client.post("/api/rooms/4321/join", json={"player_name": "Bob"})
        assert resp.status_code == 200
        bob_id = resp.json()["player_id"]
        assert set(fake_fs.docs["4321"]["players"]) == {host_id, bob_id}

        assert client.post(f"/api/rooms/4321/start?playerId={bob_id}", json={}).status_code == 403
        view = client.post(f"/api/rooms/4321/start?playerId={host_id}", json={}).json()
        assert view["phase"] == "SETTING"
        assert client.post("/api/rooms/4321/join", json={"player_name": "Late"}).status_code == 409

        assert client.delete("/api/rooms/4321").status_code == 204
        assert "4321" not in fake_fs.docs


class TestWebSocket:

    def test_state_ping_and_errors(self, client):
        room_id, host_id = _local_game(client)

        with client.websocket_connect(f"/ws/{room_id}?playerId={host_id}") as ws:
            first = ws.receive_json()
            assert first["type"] == "state"
            assert first["state"]["phase"] == "LOBBY"

            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

            ws.send_json({"type": "vote", "data": {"guesses": {"x": "high"}}})
            error = ws.receive_json()
            assert error["type"] == "error"
            assert error["code"] == "INVALID_GUESS"

            ws.send_json({"type": "memo", "data": {"text": "hi"}})
            assert ws.receive_json()["code"] == "WRONG_PHASE"

            ws.send_json({"type": "dance"})
            assert ws.receive_json()["code"] == "UNKNOWN_TYPE"

            ws.send_text("not json")
            assert ws.receive_json()["code"] == "PARSE_ERROR"

    def test_state_pushed_on_change(self, client):
        room_id, host_id = _local_game(client)

        with client.websocket_connect(f"/ws/{room_id}?playerId={host_id}") as ws:
            assert ws.receive_json()["state"]["phase"] == "LOBBY"
            client.post(f"/api/rooms/{room_id}/start?playerId={host_id}", json={})
            pushed = ws.receive_json()
            assert pushed["type"] == "state"
            assert pushed["state"]["phase"] == "SETTING"

    def test_unknown_player_rejected(self, client):
        room_id, _ = _local_game(client, npcs=0)
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect(f"/ws/{room_id}?playerId=ghost") as ws:
                ws.receive_json()
