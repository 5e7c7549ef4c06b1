"""Users: profile reads and updates, and presence driven by gateway sessions.

Presence writes for one user are sequenced by a per-user lock.  A user goes
offline only when the registry holds no session for them at the time the
disconnect write runs, so the last session to leave wins.
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from stoat.db.models import User
from stoat.errors import InvalidArgument, NotFound
from stoat.gateway import events
from stoat.gateway.registry import SessionRegistry
from stoat.membership import member_server_ids
from stoat.models.users import PRESENCE_STATES, UserResponse
from stoat.patch import UserPatch
from stoat.resources.base import Repository
from stoat.validators import check_length

log = logging.getLogger(__name__)

OFFLINE = "offline"
ONLINE = "online"
INVISIBLE = "invisible"


def user_response(user: User, *, public: bool = True) -> UserResponse:
    """Public views show an invisible user as offline."""
    presence = user.presence
    if public and presence == INVISIBLE:
        presence = OFFLINE
    return UserResponse(
        user_id=user.id,
        username=user.username,
        display_name=user.display_name,
        presence=presence,
        created_at=user.created_at,
    )


async def _load(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFound("User not found.")
    return user


async def _announce(repo: Repository, db: AsyncSession, user: User) -> None:
    """Publish one user updated event to every server the user belongs to."""
    snapshot = user_response(user)
    for server_id in sorted(await member_server_ids(db, user.id)):
        async with repo.server_locks.hold(server_id):
            await repo.publish(events.USER, events.UPDATED, server_id, snapshot)


async def get_user(repo: Repository, user_id: int, viewer_id: int | None = None) -> UserResponse:
    async with repo.reading() as db:
        user = await _load(db, user_id)
        return user_response(user, public=viewer_id != user_id)


async def update_user(repo: Repository, principal_id: int, patch: UserPatch) -> UserResponse:
    changes = patch.changes()
    if changes.get("display_name") is not None:
        changes["display_name"] = check_length(
            "display_name", changes["display_name"].strip(),
            min_attr="display_name_min", max_attr="display_name_max",
        )
    if "presence" in changes and changes["presence"] not in PRESENCE_STATES - {OFFLINE}:
        raise InvalidArgument("Unknown presence status.", fields=["presence"])

    async with repo.writing_user(principal_id) as db:
        user = await _load(db, principal_id)
        changed = {k: v for k, v in changes.items() if getattr(user, k) != v}
        for field, value in changed.items():
            setattr(user, field, value)
        await db.commit()
        if changed:
            await _announce(repo, db, user)
        return user_response(user, public=False)


async def set_presence(repo: Repository, user_id: int, presence: str) -> UserResponse:
    return await update_user(repo, user_id, UserPatch(presence=presence))


async def connect_presence(repo: Repository, user_id: int) -> None:
    """Mark *user_id* online when their first session comes up."""
    async with repo.writing_user(user_id) as db:
        user = await _load(db, user_id)
        if user.presence != OFFLINE:
            return
        user.presence = ONLINE
        await db.commit()
        await _announce(repo, db, user)


async def disconnect_presence(repo: Repository, user_id: int, registry: SessionRegistry) -> None:
    """Mark *user_id* offline unless another session registered in the meantime."""
    async with repo.writing_user(user_id) as db:
        if registry.has_user(user_id):
            return
        user = await _load(db, user_id)
        if user.presence == OFFLINE:
            return
        user.presence = OFFLINE
        await db.commit()
        await _announce(repo, db, user)
    log.debug("User %d went offline", user_id)
