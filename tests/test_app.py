import asyncio
import os
import signal
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient
from fastapi.websockets import WebSocketState

from app import _on_reaper_done, app, lifespan
from routers.signaling import apply_sweep, hub, reaper, registry, rooms


@pytest.fixture()
def client():
    with TestClient(app) as test_client:
        yield test_client


def connect(ws) -> str:
    ready = ws.receive_json()
    assert ready["event"] == "connection:ready"
    return ready["data"]["socketId"]


class TestSignalingEndpoint:
    def test_connection_is_registered(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            connection_id = connect(ws)
            ws.send_json({"event": "room:join", "data": {"roomId": "registered-check"}})
            assert ws.receive_json()["event"] == "room:joined"
            assert connection_id in registry
            assert connection_id in hub
        assert connection_id not in registry
        assert connection_id not in hub
        assert "registered-check" not in rooms

    def test_malformed_frames(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            connect(ws)
            ws.send_text("not json")
            reply = ws.receive_json()
            assert reply["event"] == "error"
            assert reply["data"]["code"] == "InvalidMessage"

            ws.send_json({"data": {"roomId": "x"}})
            assert ws.receive_json()["data"]["code"] == "InvalidMessage"

            ws.send_json({"event": "room:join", "data": {"roomId": "  "}})
            assert ws.receive_json()["data"]["code"] == "InvalidRoom"

    def test_demo_scenario(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws1:
            c1 = connect(ws1)
            ws1.send_json({"event": "room:join", "data": {"roomId": "E2E-Demo"}})
            joined = ws1.receive_json()
            assert joined["event"] == "room:joined"
            assert joined["data"]["roomInfo"]["roomId"] == "e2e-demo"

            with client.websocket_connect("/ws") as ws2:
                c2 = connect(ws2)
                ws2.send_json({"event": "room:join", "data": {"roomId": "e2e-demo "}})
                assert ws2.receive_json()["event"] == "room:joined"
                peer = ws2.receive_json()
                assert peer["event"] == "user:joined"
                assert peer["data"]["socketId"] == c1
                assert peer["data"]["roomInfo"]["userCount"] == 2

                peer = ws1.receive_json()
                assert peer["event"] == "user:joined"
                assert peer["data"]["socketId"] == c2

                ws1.send_json({"event": "outgoing:call", "data": {"to": c2, "offer": "X"}})
                call = ws2.receive_json()
                assert call["event"] == "incoming:call"
                assert call["data"]["from"] == c1
                assert call["data"]["offer"] == "X"

                ws2.send_json({"event": "call:accepted", "data": {"to": c1, "answer": "Y"}})
                accepted = ws1.receive_json()
                assert accepted["event"] == "call:accepted"
                assert accepted["data"]["from"] == c2
                assert accepted["data"]["answer"] == "Y"

                ws1.send_json({"event": "ice:candidate", "data": {"to": c2, "candidate": None}})
                ws1.send_json({"event": "ice:candidate", "data": {"to": c2, "candidate": "cand"}})
                ice = ws2.receive_json()
                assert ice == {"event": "ice:candidate", "data": {"candidate": "cand", "from": c1}}

            left = ws1.receive_json()
            assert left["event"] == "user:disconnected"
            assert left["data"]["socketId"] == c2
            assert left["data"]["roomId"] == "e2e-demo"
            assert rooms.members("e2e-demo") == [c1]

        assert "e2e-demo" not in rooms

    def test_third_client_rejected(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws1, client.websocket_connect("/ws") as ws2, \
                client.websocket_connect("/ws") as ws3:
            for ws in (ws1, ws2, ws3):
                connect(ws)
            ws1.send_json({"event": "room:join", "data": {"roomId": "crowded"}})
            ws1.receive_json()
            ws2.send_json({"event": "room:join", "data": {"roomId": "crowded"}})
            ws2.receive_json()
            ws3.send_json({"event": "room:join", "data": {"roomId": "CROWDED"}})
            reply = ws3.receive_json()
            assert reply == {"event": "error", "data": {"message": "Room is full", "code": "RoomFull"}}
            assert len(rooms.members("crowded")) == 2


class TestIdleEviction:
    def test_idle_socket_is_evicted_and_peer_told_once(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws1, client.websocket_connect("/ws") as ws2:
            c1 = connect(ws1)
            c2 = connect(ws2)
            ws1.send_json({"event": "room:join", "data": {"roomId": "idle-room"}})
            ws1.receive_json()
            ws2.send_json({"event": "room:join", "data": {"roomId": "idle-room"}})
            ws2.receive_json()
            ws2.receive_json()
            ws1.receive_json()

            registry.get(c1).last_activity -= reaper.threshold + 1
            result = reaper.sweep()
            assert result.evicted == [c1]
            client.portal.call(apply_sweep, result)

            notice = ws2.receive_json()
            assert notice["event"] == "user:disconnected"
            assert notice["data"]["socketId"] == c1
            assert notice["data"]["reason"] == "inactive"
            assert notice["data"]["userCount"] == 1

            with pytest.raises(WebSocketDisconnect) as excinfo:
                ws1.receive_json()
            assert excinfo.value.code == 4000
            assert c1 not in registry
            assert c1 not in hub
            assert rooms.members("idle-room") == [c2]

            # Next frame for c2 is this reply, not a second departure notice
            ws2.send_text("not json")
            assert ws2.receive_json()["event"] == "error"


class TestReaperCrash:
    async def test_crash_terminates_process(self, monkeypatch) -> None:
        killed = []
        monkeypatch.setattr(os, "kill", lambda pid, sig: killed.append((pid, sig)))

        async def failing_sweep():
            raise RuntimeError("sweep failed")

        task = asyncio.create_task(failing_sweep())
        await asyncio.gather(task, return_exceptions=True)
        _on_reaper_done(task)
        assert killed == [(os.getpid(), signal.SIGTERM)]

    async def test_cancel_is_not_a_crash(self, monkeypatch) -> None:
        killed = []
        monkeypatch.setattr(os, "kill", lambda pid, sig: killed.append((pid, sig)))

        task = asyncio.create_task(asyncio.sleep(60))
        await asyncio.sleep(0)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        _on_reaper_done(task)
        assert killed == []


class TestLifespan:
    async def test_shutdown_notifies_and_closes(self) -> None:
        websocket = MagicMock()
        websocket.client_state = WebSocketState.CONNECTED
        websocket.send_json = AsyncMock()
        websocket.close = AsyncMock()
        hub.add("shutdown-check", websocket)

        async with lifespan(app):
            assert reaper.running

        assert not reaper.running
        frame = websocket.send_json.await_args.args[0]
        assert frame["event"] == "server:shutdown"
        assert "timestamp" in frame["data"]
        websocket.close.assert_awaited_once_with(code=1001, reason="Server shutting down")
        assert "shutdown-check" not in hub
