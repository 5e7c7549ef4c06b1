"""Domain events and gateway frame constructors.

Control frames are dicts of the form {"type": ..., "d": {...}}.  Domain events
travel to sessions inside an "event" frame whose "d" is the event envelope; the
Connection adds "seq" when it queues the frame.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# --- Entity kinds ---

SERVER = "server"
CHANNEL = "channel"
MESSAGE = "message"
MEMBER = "member"
INVITE = "invite"
USER = "user"

ENTITY_KINDS = frozenset({SERVER, CHANNEL, MESSAGE, MEMBER, INVITE, USER})

# --- Operations ---

CREATED = "created"
UPDATED = "updated"
DELETED = "deleted"

OPERATIONS = frozenset({CREATED, UPDATED, DELETED})


@dataclass(frozen=True)
class DomainEvent:
    """Immutable record of one committed mutation, scoped to one server."""

    entity_kind: str
    operation: str
    server_id: int
    resource: dict[str, Any] = field(default_factory=dict)
    # Users allowed to receive the event; None means every subscribed session
    audience: frozenset[int] | None = None

    def __post_init__(self) -> None:
        if self.entity_kind not in ENTITY_KINDS:
            raise ValueError(f"unknown entity kind: {self.entity_kind!r}")
        if self.operation not in OPERATIONS:
            raise ValueError(f"unknown operation: {self.operation!r}")

    def envelope(self) -> dict[str, Any]:
        return {
            "entity_kind": self.entity_kind,
            "operation": self.operation,
            "server_id": self.server_id,
            "resource": self.resource,
        }


def _event(event_type: str, data: dict[str, Any]) -> dict[str, Any]:
    return {"type": event_type, "d": data}


# --- Control ---

def hello(heartbeat_interval: int) -> dict[str, Any]:
    return _event("hello", {"heartbeat_interval": heartbeat_interval})


def heartbeat_ack() -> dict[str, Any]:
    return {"type": "heartbeat_ack"}


def ready(
    session_id: str,
    user_id: int,
    display_name: str | None,
    server_ids: list[int],
    heartbeat_interval: int,
) -> dict[str, Any]:
    return _event("ready", {
        "session_id": session_id,
        "user_id": user_id,
        "display_name": display_name,
        "server_ids": server_ids,
        "heartbeat_interval": heartbeat_interval,
    })


def error(code: str, message: str) -> dict[str, Any]:
    return _event("error", {"code": code, "message": message})


# --- Dispatch ---

def dispatch(envelope: dict[str, Any]) -> dict[str, Any]:
    return _event("event", envelope)
