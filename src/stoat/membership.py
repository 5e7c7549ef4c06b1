"""Membership store: which users belong to which servers, with which role tags."""

from __future__ import annotations

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from stoat.db.engine import dialect_insert
from stoat.db.models import Member, Server
from stoat.ids import now_ms

ROLE_OWNER = "owner"
ROLE_ADMIN = "admin"


async def get_membership(db: AsyncSession, server_id: int, user_id: int) -> Member | None:
    result = await db.execute(
        select(Member).where(Member.server_id == server_id, Member.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def member_server_ids(db: AsyncSession, user_id: int) -> set[int]:
    """Servers *user_id* can see: every server it owns or holds a membership in."""
    result = await db.execute(
        select(Server.id)
        .outerjoin(Member, (Member.server_id == Server.id) & (Member.user_id == user_id))
        .where(or_(Server.owner_id == user_id, Member.user_id == user_id))
    )
    return set(result.scalars().all())


async def add_member(
    db: AsyncSession,
    server_id: int,
    user_id: int,
    roles: list[str] | None = None,
) -> bool:
    """Insert the (server, user) membership. Returns False if it already existed."""
    result = await db.execute(
        dialect_insert(Member.__table__)
        .values(server_id=server_id, user_id=user_id, roles=list(roles or []), joined_at=now_ms())
        .on_conflict_do_nothing()
    )
    return result.rowcount == 1


async def remove_member(db: AsyncSession, server_id: int, user_id: int) -> bool:
    result = await db.execute(
        delete(Member).where(Member.server_id == server_id, Member.user_id == user_id)
    )
    return result.rowcount == 1
