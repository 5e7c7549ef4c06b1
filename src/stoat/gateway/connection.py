"""WebSocket connection handler: one client session from hello to close."""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
import time
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

from stoat.auth.service import get_user_by_token
from stoat.config import GatewayConfig, config
from stoat.errors import StoatError
from stoat.gateway import events
from stoat.gateway.registry import SessionRegistry, SessionState
from stoat.membership import member_server_ids
from stoat.models.users import PRESENCE_STATES
from stoat.resources import users
from stoat.resources.base import Repository

log = logging.getLogger(__name__)

# Strong references for fire-and-forget tasks to prevent GC
_background_tasks: set[asyncio.Task] = set()

# Close codes
CLOSE_UNKNOWN_ERROR = 4000
CLOSE_DECODE_ERROR = 4002
CLOSE_NOT_AUTHENTICATED = 4003
CLOSE_AUTH_FAILED = 4004
CLOSE_ALREADY_AUTHENTICATED = 4005
CLOSE_RATE_LIMITED = 4006
CLOSE_SESSION_TIMEOUT = 4007
CLOSE_SLOW_CONSUMER = 4008
CLOSE_SERVER_FULL = 4012
CLOSE_GOING_AWAY = 1001

# Presence a client may set; "offline" is only ever set by disconnect.
_CLIENT_PRESENCE = PRESENCE_STATES - {"offline"}


class Connection:
    def __init__(
        self,
        ws: WebSocket,
        registry: SessionRegistry,
        repo: Repository,
        gateway: GatewayConfig | None = None,
    ) -> None:
        cfg = gateway or config.gateway
        self.ws = ws
        self.registry = registry
        self.repo = repo
        self.heartbeat_interval_ms = cfg.heartbeat_interval_ms
        self.heartbeat_timeout = cfg.heartbeat_interval_ms / 1000 * cfg.heartbeat_timeout_factor
        self.identify_timeout = cfg.identify_timeout_s
        self.session_id = "sess_" + secrets.token_hex(12)
        self.user_id: int = 0
        self.token: str = ""
        self.state = SessionState.CONNECTED
        self.server_ids: set[int] = set()
        self.seq: int = 0
        self.last_heartbeat: float = 0.0
        self._outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=cfg.send_queue_max)
        self._writer: asyncio.Task | None = None
        self._registered = False
        self._closed = False
        self._send_lock = asyncio.Lock()

    # --- Outbound ---

    async def send_json(self, data: dict[str, Any]) -> None:
        async with self._send_lock:
            if self._closed:
                return
            try:
                await self.ws.send_json(data)
            except Exception:
                log.debug("Gateway: send failed for session %s", self.session_id)
                self._closed = True

    def enqueue(self, envelope: dict[str, Any]) -> bool:
        """Queue an event frame without blocking. A full queue evicts this session."""
        if self._closed or self.state is SessionState.CLOSED:
            return False
        frame = {**events.dispatch(envelope), "seq": self.seq + 1}
        try:
            self._outbox.put_nowait(frame)
        except asyncio.QueueFull:
            log.warning(
                "Gateway: evicting slow consumer user %d (session %s)", self.user_id, self.session_id,
            )
            self._closed = True
            task = asyncio.create_task(self.close(CLOSE_SLOW_CONSUMER, "SLOW_CONSUMER"))
            _background_tasks.add(task)
            task.add_done_callback(_background_tasks.discard)
            return False
        self.seq += 1
        return True

    async def _write_loop(self) -> None:
        while not self._closed:
            frame = await self._outbox.get()
            await self.send_json(frame)

    async def close(self, code: int, reason: str = "") -> None:
        if self.state is SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED
        self._closed = True
        try:
            await self.ws.close(code=code, reason=reason)
        except Exception:
            log.debug("Gateway: close(%d) failed for session %s", code, self.session_id)

    # --- Lifecycle ---

    async def run(self) -> None:
        try:
            await self.ws.accept()
            await self.send_json(events.hello(self.heartbeat_interval_ms))

            try:
                raw = await asyncio.wait_for(self.ws.receive_text(), timeout=self.identify_timeout)
            except asyncio.TimeoutError:
                await self.close(CLOSE_NOT_AUTHENTICATED, "NOT_AUTHENTICATED")
                return

            msg = _decode(raw)
            if msg is None:
                await self.close(CLOSE_DECODE_ERROR, "DECODE_ERROR")
                return
            if msg.get("type") != "identify":
                await self.close(CLOSE_NOT_AUTHENTICATED, "NOT_AUTHENTICATED")
                return

            data = msg.get("d")
            await self._handle_identify(data if isinstance(data, dict) else {})
            if self.state is not SessionState.SUBSCRIBED:
                return

            self.last_heartbeat = time.monotonic()
            heartbeat_task = asyncio.create_task(self._heartbeat_monitor())
            try:
                await self._message_loop()
            finally:
                heartbeat_task.cancel()
                try:
                    await heartbeat_task
                except asyncio.CancelledError:
                    pass

        except WebSocketDisconnect:
            pass
        except Exception:
            log.exception("Connection error for user %d", self.user_id)
            await self.close(CLOSE_UNKNOWN_ERROR, "UNKNOWN_ERROR")
        finally:
            await self._teardown()

    async def _teardown(self) -> None:
        self._closed = True
        self.state = SessionState.CLOSED
        last = await self.registry.unregister(self) if self._registered else False
        if self._writer is not None:
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass
        if last:
            try:
                await users.disconnect_presence(self.repo, self.user_id, self.registry)
            except Exception:
                log.exception("Gateway: presence cleanup failed for user %d", self.user_id)

    async def _handle_identify(self, data: dict[str, Any]) -> None:
        token = data.get("token")
        if not isinstance(token, str) or not token:
            await self.close(CLOSE_AUTH_FAILED, "AUTH_FAILED")
            return

        async with self.repo.reading() as db:
            user = await get_user_by_token(db, token)
        if user is None:
            await self.close(CLOSE_AUTH_FAILED, "AUTH_FAILED")
            return

        self.user_id = user.id
        self.token = token
        self.state = SessionState.AUTHENTICATED
        rejection = await self.registry.register(self)
        if rejection is not None:
            if rejection == "server_full":
                await self.close(CLOSE_SERVER_FULL, "SERVER_FULL")
            else:
                await self.close(CLOSE_RATE_LIMITED, "RATE_LIMITED")
            return
        self._registered = True

        # Registered first: a join committed after this query reaches us as a
        # member created event, and a removal is recorded for subscribe to skip.
        async with self.repo.reading() as db:
            server_ids = await member_server_ids(db, user.id)
        await self.registry.subscribe(self, server_ids)

        # Events fanned out from here on wait in the outbox until the writer
        # starts, so ready is always the first frame.
        await self.send_json(events.ready(
            session_id=self.session_id,
            user_id=user.id,
            display_name=user.display_name or user.username,
            server_ids=sorted(self.server_ids),
            heartbeat_interval=self.heartbeat_interval_ms,
        ))
        self._writer = asyncio.create_task(self._write_loop(), name=f"gateway-writer-{self.session_id}")

        await users.connect_presence(self.repo, user.id)

    async def _heartbeat_monitor(self) -> None:
        while not self._closed:
            # Wake at the deadline of the most recent heartbeat
            remaining = self.last_heartbeat + self.heartbeat_timeout - time.monotonic()
            if remaining <= 0:
                log.info("Gateway: heartbeat timeout for session %s", self.session_id)
                await self.close(CLOSE_SESSION_TIMEOUT, "SESSION_TIMEOUT")
                return
            await asyncio.sleep(remaining)

    async def _message_loop(self) -> None:
        while not self._closed:
            try:
                raw = await self.ws.receive_text()
            except WebSocketDisconnect:
                return

            msg = _decode(raw)
            if msg is None:
                await self.close(CLOSE_DECODE_ERROR, "DECODE_ERROR")
                return

            msg_type = msg.get("type")
            data = msg.get("d")
            if not isinstance(data, dict):
                data = {}

            if msg_type == "heartbeat":
                self.last_heartbeat = time.monotonic()
                await self.send_json(events.heartbeat_ack())

            elif msg_type == "identify":
                await self.close(CLOSE_ALREADY_AUTHENTICATED, "ALREADY_AUTHENTICATED")
                return

            elif msg_type == "presence_update":
                await self._handle_presence(data)

            # Unknown types are ignored

    async def _handle_presence(self, data: dict[str, Any]) -> None:
        status = data.get("status")
        if status not in _CLIENT_PRESENCE:
            await self.send_json(events.error("INVALID_ARGUMENT", "Unknown presence status."))
            return
        try:
            await users.set_presence(self.repo, self.user_id, status)
        except StoatError as exc:
            await self.send_json(events.error(exc.code, exc.message))


def _decode(raw: str) -> dict[str, Any] | None:
    try:
        msg = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return None
    return msg if isinstance(msg, dict) else None
