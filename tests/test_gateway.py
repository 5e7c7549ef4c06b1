import asyncio
import time

import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from stoat.config import GatewayConfig
from stoat.gateway.connection import CLOSE_SLOW_CONSUMER, Connection
from stoat.gateway.registry import SessionRegistry, SessionState


def _reload_config():
    import stoat.config as _cfg
    _cfg._reload_all()


def _register(tc: TestClient, username: str = "alice") -> tuple[str, int]:
    resp = tc.post("/api/v1/auth/register", json={"username": username, "password": "password123"})
    assert resp.status_code == 201
    return resp.json()["token"], resp.json()["user_id"]


class GatewayClient:
    """Test-side session: buffers event frames read while waiting for control frames."""

    def __init__(self, ws):
        self.ws = ws
        self.pending = []

    def identify(self, token: str) -> dict:
        assert self.ws.receive_json()["type"] == "hello"
        self.ws.send_json({"type": "identify", "d": {"token": token}})
        ready = self.ws.receive_json()
        assert ready["type"] == "ready"
        self.sync()
        return ready

    def sync(self) -> None:
        """Round-trip a heartbeat. Identify (presence included) has finished once it returns."""
        self.ws.send_json({"type": "heartbeat"})
        while True:
            frame = self.ws.receive_json()
            if frame["type"] == "heartbeat_ack":
                return
            self.pending.append(frame)

    def next(self, frame_type: str = "event") -> dict:
        for i, frame in enumerate(self.pending):
            if frame["type"] == frame_type:
                return self.pending.pop(i)
        while True:
            frame = self.ws.receive_json()
            if frame["type"] == frame_type:
                return frame
            if frame["type"] != "heartbeat_ack":
                self.pending.append(frame)

    def expect_close(self, code: int) -> None:
        with pytest.raises(WebSocketDisconnect) as exc:
            while True:
                self.ws.receive_json()
        assert exc.value.code == code


def _kind(frame: dict) -> tuple[str, str]:
    return frame["d"]["entity_kind"], frame["d"]["operation"]


class TestHandshake:
    def test_hello(self, app):
        with TestClient(app) as tc:
            with tc.websocket_connect("/gateway") as ws:
                data = ws.receive_json()
                assert data == {"type": "hello", "d": {"heartbeat_interval": 45000}}

    def test_first_frame_must_identify(self, app):
        with TestClient(app) as tc:
            with tc.websocket_connect("/gateway") as ws:
                ws.receive_json()
                ws.send_json({"type": "heartbeat"})
                GatewayClient(ws).expect_close(4003)

    def test_garbage_frame(self, app):
        with TestClient(app) as tc:
            with tc.websocket_connect("/gateway") as ws:
                ws.receive_json()
                ws.send_text("{not json")
                GatewayClient(ws).expect_close(4002)

    def test_bad_token(self, app):
        with TestClient(app) as tc:
            with tc.websocket_connect("/gateway") as ws:
                ws.receive_json()
                ws.send_json({"type": "identify", "d": {"token": "stoat_sess_nope"}})
                GatewayClient(ws).expect_close(4004)

    def test_missing_token(self, app):
        with TestClient(app) as tc:
            with tc.websocket_connect("/gateway") as ws:
                ws.receive_json()
                ws.send_json({"type": "identify", "d": "token"})
                GatewayClient(ws).expect_close(4004)

    def test_ready(self, app):
        with TestClient(app) as tc:
            token, uid = _register(tc)
            h = {"Authorization": f"Bearer {token}"}
            sid = tc.post("/api/v1/servers", headers=h, json={"name": "Test"}).json()["server_id"]
            with tc.websocket_connect("/gateway") as ws:
                ready = GatewayClient(ws).identify(token)
                assert ready["d"]["user_id"] == uid
                assert ready["d"]["server_ids"] == [sid]
                assert ready["d"]["session_id"].startswith("sess_")
                assert tc.get("/api/v1/users/@me", headers=h).json()["presence"] == "online"
            assert tc.get("/api/v1/users/@me", headers=h).json()["presence"] == "offline"

    def test_double_identify(self, app):
        with TestClient(app) as tc:
            token, _ = _register(tc)
            with tc.websocket_connect("/gateway") as ws:
                gw = GatewayClient(ws)
                gw.identify(token)
                ws.send_json({"type": "identify", "d": {"token": token}})
                gw.expect_close(4005)

    def test_session_limit(self, app, monkeypatch):
        monkeypatch.setenv("STOAT_LIMIT_MAX_SESSIONS_PER_USER", "1")
        _reload_config()
        with TestClient(app) as tc:
            token, _ = _register(tc)
            with tc.websocket_connect("/gateway") as first:
                GatewayClient(first).identify(token)
                with tc.websocket_connect("/gateway") as second:
                    second.receive_json()
                    second.send_json({"type": "identify", "d": {"token": token}})
                    GatewayClient(second).expect_close(4006)

    def test_logout_closes_only_sessions_of_that_token(self, app):
        with TestClient(app) as tc:
            t1, _ = _register(tc)
            t2 = tc.post(
                "/api/v1/auth/login", json={"username": "alice", "password": "password123"},
            ).json()["token"]
            h2 = {"Authorization": f"Bearer {t2}"}
            with tc.websocket_connect("/gateway") as ws2:
                gw2 = GatewayClient(ws2)
                gw2.identify(t2)
                with tc.websocket_connect("/gateway") as ws1:
                    gw1 = GatewayClient(ws1)
                    gw1.identify(t1)
                    r = tc.post("/api/v1/auth/logout", headers={"Authorization": f"Bearer {t1}"})
                    assert r.status_code == 204
                    gw1.expect_close(4004)
                gw2.sync()
                assert tc.get("/api/v1/users/@me", headers=h2).json()["presence"] == "online"
            assert tc.get("/api/v1/users/@me", headers=h2).json()["presence"] == "offline"

    def test_heartbeat_timeout(self, app, monkeypatch):
        monkeypatch.setenv("STOAT_GATEWAY_HEARTBEAT_INTERVAL_MS", "100")
        _reload_config()
        with TestClient(app) as tc:
            token, _ = _register(tc)
            with tc.websocket_connect("/gateway") as ws:
                gw = GatewayClient(ws)
                gw.identify(token)
                gw.expect_close(4007)


class TestDelivery:
    def test_own_server_events(self, app):
        with TestClient(app) as tc:
            token, uid = _register(tc)
            h = {"Authorization": f"Bearer {token}"}
            with tc.websocket_connect("/gateway") as ws:
                gw = GatewayClient(ws)
                gw.identify(token)
                sid = tc.post("/api/v1/servers", headers=h, json={"name": "Test"}).json()["server_id"]

                frame = gw.next()
                assert frame["seq"] == 1
                assert _kind(frame) == ("server", "created")
                assert frame["d"]["server_id"] == sid
                assert frame["d"]["resource"]["owner_id"] == uid

                channels = tc.get(f"/api/v1/servers/{sid}/channels", headers=h).json()["channels"]
                tc.post(
                    f"/api/v1/channels/{channels[0]['channel_id']}/messages",
                    headers=h, json={"content": "hi"},
                )
                frame = gw.next()
                assert frame["seq"] == 2
                assert _kind(frame) == ("message", "created")
                assert frame["d"]["resource"]["content"] == "hi"

    def test_join_and_kick(self, app):
        with TestClient(app) as tc:
            owner_token, _ = _register(tc, "alice")
            bob_token, bob = _register(tc, "bob")
            ho = {"Authorization": f"Bearer {owner_token}"}
            hb = {"Authorization": f"Bearer {bob_token}"}
            sid = tc.post("/api/v1/servers", headers=ho, json={"name": "Test"}).json()["server_id"]
            code = tc.post(f"/api/v1/servers/{sid}/invites", headers=ho, json={}).json()["code"]

            with tc.websocket_connect("/gateway") as ws:
                gw = GatewayClient(ws)
                assert gw.identify(bob_token)["d"]["server_ids"] == []

                assert tc.post(f"/api/v1/invites/{code}/join", headers=hb).status_code == 201
                frame = gw.next()
                assert _kind(frame) == ("member", "created")
                assert frame["d"]["resource"]["user_id"] == bob

                tc.patch(f"/api/v1/servers/{sid}", headers=ho, json={"name": "Renamed"})
                assert _kind(gw.next()) == ("server", "updated")

                assert tc.delete(f"/api/v1/servers/{sid}/members/{bob}", headers=ho).status_code == 204
                assert _kind(gw.next()) == ("member", "deleted")

                tc.patch(f"/api/v1/servers/{sid}", headers=ho, json={"name": "Again"})
                gw.sync()
                assert gw.pending == []

    def test_presence_fan_out(self, app):
        with TestClient(app) as tc:
            alice_token, alice = _register(tc, "alice")
            bob_token, bob = _register(tc, "bob")
            ha = {"Authorization": f"Bearer {alice_token}"}
            sid = tc.post("/api/v1/servers", headers=ha, json={"name": "Test"}).json()["server_id"]
            code = tc.post(f"/api/v1/servers/{sid}/invites", headers=ha, json={}).json()["code"]
            tc.post(f"/api/v1/invites/{code}/join", headers={"Authorization": f"Bearer {bob_token}"})

            with tc.websocket_connect("/gateway") as bob_ws:
                bob_gw = GatewayClient(bob_ws)
                bob_gw.identify(bob_token)
                frame = bob_gw.next()
                assert _kind(frame) == ("user", "updated")
                assert frame["d"]["resource"]["user_id"] == bob
                assert frame["d"]["resource"]["presence"] == "online"

                with tc.websocket_connect("/gateway") as alice_ws:
                    alice_gw = GatewayClient(alice_ws)
                    alice_gw.identify(alice_token)
                    frame = bob_gw.next()
                    assert frame["d"]["resource"]["user_id"] == alice
                    assert frame["d"]["resource"]["presence"] == "online"

                    alice_ws.send_json({"type": "presence_update", "d": {"status": "busy"}})
                    assert bob_gw.next()["d"]["resource"]["presence"] == "busy"

                    alice_ws.send_json({"type": "presence_update", "d": {"status": "offline"}})
                    err = alice_gw.next("error")
                    assert err["d"]["code"] == "INVALID_ARGUMENT"

                frame = bob_gw.next()
                assert frame["d"]["resource"]["user_id"] == alice
                assert frame["d"]["resource"]["presence"] == "offline"


class FakeWebSocket:
    def __init__(self):
        self.sent = []
        self.closed_with = None

    async def send_json(self, data):
        self.sent.append(data)

    async def close(self, code=1000, reason=""):
        self.closed_with = code


async def test_full_outbox_evicts_session():
    ws = FakeWebSocket()
    conn = Connection(ws, SessionRegistry(), repo=None, gateway=GatewayConfig(send_queue_max=2))
    conn.state = SessionState.SUBSCRIBED
    envelope = {"entity_kind": "server", "operation": "updated", "server_id": 1, "resource": {}}

    assert conn.enqueue(envelope)
    assert conn.enqueue(envelope)
    assert not conn.enqueue(envelope)
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert ws.closed_with == CLOSE_SLOW_CONSUMER
    assert conn.state is SessionState.CLOSED
    assert conn.seq == 2
    assert not conn.enqueue(envelope)


async def test_kick_during_identify_is_not_resubscribed(app, repo, make_user, monkeypatch):
    import stoat.gateway.connection as connection
    from stoat.auth.service import create_user
    from stoat.db.engine import get_session_factory
    from stoat.membership import add_member
    from stoat.resources import channels, members, messages, servers

    owner = await make_user("owner")
    async with get_session_factory()() as session:
        bob, token = await create_user(session, "bob", "password123")
        await session.commit()
    sid = (await servers.create_server(repo, owner, "Test")).server_id
    async with repo.reading() as db:
        await add_member(db, sid, bob.id)
        await db.commit()
    await repo.bus.drain()

    real_member_server_ids = connection.member_server_ids

    async def kicked_after_read(db, user_id):
        stale = await real_member_server_ids(db, user_id)
        await members.kick_member(repo, owner, sid, bob.id)
        await repo.bus.drain()
        return stale

    monkeypatch.setattr(connection, "member_server_ids", kicked_after_read)

    ws = FakeWebSocket()
    registry = app.state.registry
    conn = Connection(ws, registry, repo)
    await conn._handle_identify({"token": token})
    try:
        assert conn.state is SessionState.SUBSCRIBED
        assert sid not in conn.server_ids
        assert conn not in registry.sessions_for_server(sid)
        assert ws.sent[0]["type"] == "ready"
        assert ws.sent[0]["d"]["server_ids"] == []

        general = (await channels.list_channels(repo, owner, sid))[0].channel_id
        await messages.create_message(repo, owner, general, "secret")
        await repo.bus.drain()
        for _ in range(3):
            await asyncio.sleep(0)
        assert not [
            f for f in ws.sent
            if f["type"] == "event" and f["d"]["entity_kind"] == "message"
        ]
    finally:
        await conn._teardown()


async def test_heartbeat_timeout_measured_from_last_heartbeat():
    ws = FakeWebSocket()
    conn = Connection(
        ws, SessionRegistry(), repo=None,
        gateway=GatewayConfig(heartbeat_interval_ms=200, heartbeat_timeout_factor=2.0),
    )
    conn.state = SessionState.SUBSCRIBED
    conn.last_heartbeat = time.monotonic()
    task = asyncio.create_task(conn._heartbeat_monitor())

    # A heartbeat early in the window pushes the deadline to a full timeout after it
    await asyncio.sleep(0.1)
    conn.last_heartbeat = heartbeat_at = time.monotonic()
    await asyncio.wait_for(task, 1.0)
    detected = time.monotonic() - heartbeat_at

    assert ws.closed_with == 4007
    assert 0.4 <= detected < 0.6
