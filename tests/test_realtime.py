import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from dind_backend.api.lifespan.modules.realtime import RealtimeAdapter
from dind_backend.api.main import create_app
from dind_backend.api.realtime.hub import CLOSE_GOING_AWAY, CLOSE_TRY_AGAIN_LATER, ConnectionHub

from .conftest import FakeAdapter, spec


@pytest.fixture
def realtime_app(test_settings):
    def factory(_settings, app):
        hub = ConnectionHub("/ws")
        app.state.realtime_hub = hub
        return [
            spec(FakeAdapter("database")),
            spec(RealtimeAdapter(hub, app), mandatory=False),
        ]

    return create_app(test_settings, specs_factory=factory)


def test_ping_pong(realtime_app):
    with TestClient(realtime_app) as client:
        with client.websocket_connect("/ws") as ws:
            welcome = ws.receive_json()
            assert welcome["event"] == "connected"
            assert welcome["client_id"]

            ws.send_json({"event": "ping"})
            assert ws.receive_json()["event"] == "pong"


def test_room_messages_reach_members(realtime_app):
    with TestClient(realtime_app) as client:
        with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
            alice.receive_json()
            bob.receive_json()

            alice.send_json({"event": "join-room", "room": "general"})
            assert alice.receive_json()["members"] == 1
            bob.send_json({"event": "join-room", "room": "general"})
            assert bob.receive_json()["members"] == 2

            alice.send_json({"event": "send-message", "room": "general", "message": "hi"})
            for ws in (alice, bob):
                message = ws.receive_json()
                assert message["event"] == "new-message"
                assert message["message"] == "hi"

            bob.send_json({"event": "get-stats"})
            stats = bob.receive_json()
            assert stats["connected_clients"] == 2
            assert stats["active_rooms"] == 1

            bob.send_json({"event": "leave-room", "room": "general"})
            assert bob.receive_json()["event"] == "left-room"
            bob.send_json({"event": "send-message", "room": "general", "message": "still here?"})
            assert bob.receive_json()["event"] == "error"


def test_invalid_messages_get_errors(realtime_app):
    with TestClient(realtime_app) as client:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()

            ws.send_text("not json")
            assert ws.receive_json()["message"] == "Invalid JSON"

            ws.send_json({"event": "dance"})
            assert ws.receive_json()["event"] == "error"


def test_realtime_dependency_reported(realtime_app):
    with TestClient(realtime_app) as client:
        response = client.get("/health/dependencies/realtime")
        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "connected"
        assert data["metadata"]["path"] == "/ws"
        assert data["metadata"]["accepting"] is True

    assert realtime_app.state.realtime_hub.accepting is False


def test_rejects_clients_when_not_accepting():
    app = FastAPI()
    hub = ConnectionHub("/ws")
    hub.initialize(app)
    hub._accepting = False

    client = TestClient(app)
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws"):
            pass
    assert exc.value.code == CLOSE_TRY_AGAIN_LATER


def test_initialize_mounts_route_once():
    app = FastAPI()
    hub = ConnectionHub("/ws")
    hub.initialize(app)
    hub.initialize(app)

    assert [r.path for r in app.routes].count("/ws") == 1


class FakeSocket:
    def __init__(self):
        self.closed_with = None

    async def close(self, code=1000):
        self.closed_with = code


@pytest.mark.asyncio
async def test_close_all_uses_going_away():
    hub = ConnectionHub("/ws")
    hub.initialize(FastAPI())
    sockets = {"a": FakeSocket(), "b": FakeSocket()}
    hub._clients.update(sockets)

    closed = await hub.close_all()

    assert closed == 2
    assert {s.closed_with for s in sockets.values()} == {CLOSE_GOING_AWAY}
    assert hub.connected_client_count == 0
    assert not hub.accepting
