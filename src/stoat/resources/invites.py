"""Invites: create, redeem, revoke, preview."""

from __future__ import annotations

import logging

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from stoat.db.models import Channel, Invite, Member, Server
from stoat.errors import Conflict, NotFound
from stoat.gateway import events
from stoat.ids import generate_invite_code, normalize_invite_code, now_ms, snowflake, snowflake_time
from stoat.membership import add_member, get_membership
from stoat.models.invites import InvitePreviewResponse, InviteResponse
from stoat.models.members import MemberResponse
from stoat.permissions import CREATE_INVITE, MANAGE_INVITES, REVOKE_INVITE, authorize, roles_grant
from stoat.resources.base import Repository
from stoat.resources.members import member_response
from stoat.validators import check_range

log = logging.getLogger(__name__)

_CODE_ATTEMPTS = 5
DEFAULT_PAGE_SIZE = 50


def invite_response(invite: Invite) -> InviteResponse:
    return InviteResponse(
        code=invite.code,
        server_id=invite.server_id,
        creator_id=invite.creator_id,
        uses=invite.uses,
        max_uses=invite.max_uses,
        expires_at=invite.expires_at,
        created_at=invite.created_at,
    )


def _usable(invite: Invite) -> None:
    """Raise ``Conflict`` if *invite* can no longer be redeemed."""
    if invite.expires_at is not None and invite.expires_at <= now_ms():
        raise Conflict("Invite has expired.")
    if invite.max_uses is not None and invite.uses >= invite.max_uses:
        raise Conflict("Invite has reached its maximum uses.")


async def _find(db: AsyncSession, code: str) -> Invite:
    invite = (await db.execute(select(Invite).where(Invite.code == code))).scalar_one_or_none()
    if invite is None:
        raise NotFound("Invite not found.")
    return invite


async def _invite_server_id(repo: Repository, code: str) -> int:
    async with repo.reading() as db:
        return (await _find(db, code)).server_id


async def _invite_audience(db: AsyncSession, server: Server, creator_id: int) -> frozenset[int]:
    """Users who may see invite codes: the owner, invite managers and the creator."""
    rows = (await db.execute(select(Member).where(Member.server_id == server.id))).scalars().all()
    managers = {m.user_id for m in rows if roles_grant(m.roles, MANAGE_INVITES)}
    return frozenset(managers | {server.owner_id, creator_id})


async def _unused_code(db: AsyncSession) -> str:
    for _ in range(_CODE_ATTEMPTS):
        code = generate_invite_code()
        taken = (await db.execute(select(Invite.id).where(Invite.code == code))).first()
        if taken is None:
            return code
    raise Conflict("Could not allocate an invite code, try again.")


async def create_invite(
    repo: Repository,
    principal_id: int,
    server_id: int,
    max_uses: int | None = None,
    max_age: int | None = None,
) -> InviteResponse:
    """Create an invite. *max_uses* None means unlimited; *max_age* is in seconds."""
    if max_uses is not None:
        check_range("max_uses", max_uses, ge=1, max_attr="invite_max_uses_max")
    if max_age is not None:
        check_range("max_age", max_age, ge=1, max_attr="invite_max_age_max")
    async with repo.writing(server_id) as db:
        server = await authorize(db, principal_id, server_id, CREATE_INVITE)
        invite_id = await snowflake()
        now = snowflake_time(invite_id)
        invite = Invite(
            id=invite_id,
            code=await _unused_code(db),
            server_id=server_id,
            creator_id=principal_id,
            uses=0,
            max_uses=max_uses,
            expires_at=now + max_age * 1000 if max_age is not None else None,
            created_at=now,
        )
        db.add(invite)
        await db.commit()
        snapshot = invite_response(invite)
        audience = await _invite_audience(db, server, principal_id)
        await repo.publish(events.INVITE, events.CREATED, server_id, snapshot, audience)
    return snapshot


async def redeem_invite(repo: Repository, principal_id: int, code: str) -> MemberResponse:
    """Join the invite's server. Exactly ``max_uses`` redemptions ever succeed."""
    code = normalize_invite_code(code)
    server_id = await _invite_server_id(repo, code)
    async with repo.writing(server_id) as db:
        invite = await _find(db, code)
        _usable(invite)
        server = await db.get(Server, server_id)
        if server is None:
            raise NotFound("Invite not found.")
        if server.owner_id == principal_id or await get_membership(db, server_id, principal_id):
            raise Conflict("You are already a member of this server.")
        if not await add_member(db, server_id, principal_id):
            raise Conflict("You are already a member of this server.")
        result = await db.execute(
            update(Invite)
            .where(
                Invite.id == invite.id,
                or_(Invite.max_uses.is_(None), Invite.uses < Invite.max_uses),
            )
            .values(uses=Invite.uses + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise Conflict("Invite has reached its maximum uses.")
        await db.commit()
        member = await get_membership(db, server_id, principal_id)
        snapshot = member_response(member)
        await repo.publish(events.MEMBER, events.CREATED, server_id, snapshot)
    log.debug("User %d joined server %d via invite %s", principal_id, server_id, code)
    return snapshot


async def revoke_invite(repo: Repository, principal_id: int, code: str) -> InviteResponse:
    """Delete an invite. Allowed for its creator or an invite manager."""
    code = normalize_invite_code(code)
    server_id = await _invite_server_id(repo, code)
    async with repo.writing(server_id) as db:
        invite = await _find(db, code)
        server = await authorize(
            db, principal_id, server_id, REVOKE_INVITE, resource_owner_id=invite.creator_id,
        )
        snapshot = invite_response(invite)
        audience = await _invite_audience(db, server, invite.creator_id)
        await db.delete(invite)
        await db.commit()
        await repo.publish(events.INVITE, events.DELETED, server_id, snapshot, audience)
    return snapshot


async def preview_invite(repo: Repository, code: str) -> InvitePreviewResponse:
    """Public summary of an invite's server. Needs no membership."""
    code = normalize_invite_code(code)
    async with repo.reading() as db:
        invite = await _find(db, code)
        _usable(invite)
        server = await db.get(Server, invite.server_id)
        member_count = (await db.execute(
            select(func.count()).select_from(Member).where(Member.server_id == server.id)
        )).scalar_one()
        channel_count = (await db.execute(
            select(func.count()).select_from(Channel).where(Channel.server_id == server.id)
        )).scalar_one()
        return InvitePreviewResponse(
            code=invite.code,
            server_id=server.id,
            server_name=server.name,
            member_count=member_count,
            channel_count=channel_count,
            uses=invite.uses,
            max_uses=invite.max_uses,
            expires_at=invite.expires_at,
        )


async def list_invites(
    repo: Repository,
    principal_id: int,
    server_id: int,
    after: str | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
) -> tuple[list[InviteResponse], str | None]:
    """A page of invites ordered by code, and the cursor for the next page."""
    limit = check_range("limit", limit, ge=1, max_attr="page_limit_invites")
    async with repo.reading() as db:
        await authorize(db, principal_id, server_id, MANAGE_INVITES)
        query = select(Invite).where(Invite.server_id == server_id)
        if after is not None:
            query = query.where(Invite.code > normalize_invite_code(after))
        rows = (await db.execute(query.order_by(Invite.code).limit(limit))).scalars().all()
    items = [invite_response(i) for i in rows]
    cursor = items[-1].code if len(items) == limit else None
    return items, cursor
