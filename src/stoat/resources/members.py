"""Members: leave, kick, role assignment, listing."""

from __future__ import annotations

import logging

from sqlalchemy import select

from stoat.config import config
from stoat.db.models import Member
from stoat.errors import Conflict, Forbidden, InvalidArgument, NotFound
from stoat.gateway import events
from stoat.membership import ROLE_ADMIN, ROLE_OWNER, get_membership, remove_member
from stoat.models.members import MemberResponse
from stoat.permissions import KICK_MEMBERS, LEAVE_SERVER, MANAGE_ROLES, VIEW_SERVER, authorize
from stoat.resources.base import Repository
from stoat.validators import check_range

log = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100


def member_response(member: Member) -> MemberResponse:
    return MemberResponse(
        server_id=member.server_id,
        user_id=member.user_id,
        roles=list(member.roles or []),
        joined_at=member.joined_at,
    )


def _check_roles(roles: list[str]) -> list[str]:
    """Deduplicate *roles*, keeping order. The owner tag is never assignable."""
    lim = config.limits
    cleaned: list[str] = []
    for role in roles:
        role = role.strip().lower()
        if not role or len(role) > lim.role_tag_max:
            raise InvalidArgument(
                f"Role tags must be 1 to {lim.role_tag_max} characters.", fields=["roles"]
            )
        if role == ROLE_OWNER:
            raise InvalidArgument("The owner role is assigned by ownership transfer.", fields=["roles"])
        if role not in cleaned:
            cleaned.append(role)
    if len(cleaned) > lim.roles_per_member_max:
        raise InvalidArgument(
            f"A member can hold at most {lim.roles_per_member_max} roles.", fields=["roles"]
        )
    return cleaned


async def leave_server(repo: Repository, principal_id: int, server_id: int) -> MemberResponse:
    async with repo.writing(server_id) as db:
        server = await authorize(db, principal_id, server_id, LEAVE_SERVER)
        if server.owner_id == principal_id:
            raise Conflict("The owner cannot leave; transfer ownership first.")
        member = await get_membership(db, server_id, principal_id)
        snapshot = member_response(member)
        await remove_member(db, server_id, principal_id)
        await db.commit()
        await repo.publish(events.MEMBER, events.DELETED, server_id, snapshot)
    log.debug("User %d left server %d", principal_id, server_id)
    return snapshot


async def kick_member(
    repo: Repository, principal_id: int, server_id: int, user_id: int,
) -> MemberResponse:
    """Remove another member. Admins may kick plain members, the owner anyone."""
    async with repo.writing(server_id) as db:
        server = await authorize(db, principal_id, server_id, KICK_MEMBERS)
        if user_id == principal_id:
            raise InvalidArgument("Use leave to remove yourself.", fields=["user_id"])
        if user_id == server.owner_id:
            raise Conflict("The owner cannot be kicked.")
        target = await get_membership(db, server_id, user_id)
        if target is None:
            raise NotFound("Member not found.")
        if principal_id != server.owner_id and ROLE_ADMIN in (target.roles or []):
            raise Forbidden("Only the owner can kick an admin.")
        snapshot = member_response(target)
        await remove_member(db, server_id, user_id)
        await db.commit()
        await repo.publish(events.MEMBER, events.DELETED, server_id, snapshot)
    log.info("User %d kicked from server %d by user %d", user_id, server_id, principal_id)
    return snapshot


async def set_member_roles(
    repo: Repository, principal_id: int, server_id: int, user_id: int, roles: list[str],
) -> MemberResponse:
    roles = _check_roles(roles)
    async with repo.writing(server_id) as db:
        server = await authorize(db, principal_id, server_id, MANAGE_ROLES)
        target = await get_membership(db, server_id, user_id)
        if target is None:
            raise NotFound("Member not found.")
        if user_id == server.owner_id:
            raise Conflict("The owner's roles cannot be changed.")
        target.roles = roles
        await db.commit()
        snapshot = member_response(target)
        await repo.publish(events.MEMBER, events.UPDATED, server_id, snapshot)
    return snapshot


async def list_members(
    repo: Repository,
    principal_id: int,
    server_id: int,
    after: int | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
) -> tuple[list[MemberResponse], str | None]:
    """A page of members ordered by user id, and the cursor for the next page."""
    limit = check_range("limit", limit, ge=1, max_attr="page_limit_members")
    async with repo.reading() as db:
        await authorize(db, principal_id, server_id, VIEW_SERVER)
        query = select(Member).where(Member.server_id == server_id)
        if after is not None:
            query = query.where(Member.user_id > after)
        rows = (await db.execute(query.order_by(Member.user_id).limit(limit))).scalars().all()
    items = [member_response(m) for m in rows]
    cursor = str(items[-1].user_id) if len(items) == limit else None
    return items, cursor
