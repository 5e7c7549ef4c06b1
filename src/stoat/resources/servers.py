"""Servers: create, update, delete, ownership transfer and reads."""

from __future__ import annotations

import logging

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from stoat.db.models import Channel, Invite, Member, Message, Server
from stoat.errors import InvalidArgument, NotFound
from stoat.gateway import events
from stoat.ids import snowflake, snowflake_time
from stoat.membership import ROLE_OWNER, add_member, get_membership, member_server_ids
from stoat.models.channels import ChannelResponse
from stoat.models.servers import ServerResponse
from stoat.patch import ServerPatch
from stoat.permissions import (
    DELETE_SERVER,
    MANAGE_SERVER,
    TRANSFER_OWNERSHIP,
    VIEW_SERVER,
    authorize,
)
from stoat.resources.base import Repository
from stoat.validators import check_length

log = logging.getLogger(__name__)

DEFAULT_CHANNEL_NAME = "general"


def channel_response(channel: Channel) -> ChannelResponse:
    return ChannelResponse(
        channel_id=channel.id,
        server_id=channel.server_id,
        name=channel.name,
        description=channel.description,
        type=channel.type,
        position=channel.position,
        created_at=channel.created_at,
    )


async def server_response(db: AsyncSession, server: Server) -> ServerResponse:
    member_count = (await db.execute(
        select(func.count()).select_from(Member).where(Member.server_id == server.id)
    )).scalar_one()
    channels = (await db.execute(
        select(Channel).where(Channel.server_id == server.id).order_by(Channel.position, Channel.id)
    )).scalars().all()
    return ServerResponse(
        server_id=server.id,
        owner_id=server.owner_id,
        name=server.name,
        description=server.description,
        created_at=server.created_at,
        member_count=member_count,
        channels=[channel_response(c) for c in channels],
    )


def _check_name(name: str | None) -> str:
    if name is None:
        raise InvalidArgument("name may not be null.", fields=["name"])
    return check_length("name", name.strip(), min_attr="server_name_min", max_attr="server_name_max")


def _check_description(description: str | None) -> str | None:
    if description is None:
        return None
    return check_length("description", description, max_attr="server_description_max")


async def create_server(
    repo: Repository, principal_id: int, name: str, description: str | None = None,
) -> ServerResponse:
    """Create a server owned by *principal_id*, with its owner membership and a
    "general" text channel at position 0, in one commit."""
    name = _check_name(name)
    description = _check_description(description)
    server_id = await snowflake()
    async with repo.writing(server_id) as db:
        server = Server(
            id=server_id, owner_id=principal_id, name=name, description=description,
            created_at=snowflake_time(server_id),
        )
        db.add(server)
        await db.flush()
        await add_member(db, server_id, principal_id, [ROLE_OWNER])
        general_id = await snowflake()
        db.add(Channel(
            id=general_id,
            server_id=server_id,
            name=DEFAULT_CHANNEL_NAME,
            type="text",
            position=0,
            created_at=snowflake_time(general_id),
        ))
        await db.commit()
        snapshot = await server_response(db, server)
        await repo.publish(events.SERVER, events.CREATED, server_id, snapshot)
    log.debug("Server %d created by user %d", server_id, principal_id)
    return snapshot


async def update_server(
    repo: Repository, principal_id: int, server_id: int, patch: ServerPatch,
) -> ServerResponse:
    changes = patch.changes()
    if "name" in changes:
        changes["name"] = _check_name(changes["name"])
    if "description" in changes:
        changes["description"] = _check_description(changes["description"])
    async with repo.writing(server_id) as db:
        server = await authorize(db, principal_id, server_id, MANAGE_SERVER)
        for field, value in changes.items():
            setattr(server, field, value)
        await db.commit()
        snapshot = await server_response(db, server)
        if changes:
            await repo.publish(events.SERVER, events.UPDATED, server_id, snapshot)
    return snapshot


async def delete_server(repo: Repository, principal_id: int, server_id: int) -> ServerResponse:
    async with repo.writing(server_id) as db:
        server = await authorize(db, principal_id, server_id, DELETE_SERVER)
        snapshot = await server_response(db, server)
        channel_ids = select(Channel.id).where(Channel.server_id == server_id)
        await db.execute(delete(Message).where(Message.channel_id.in_(channel_ids)))
        await db.execute(delete(Channel).where(Channel.server_id == server_id))
        await db.execute(delete(Invite).where(Invite.server_id == server_id))
        await db.execute(delete(Member).where(Member.server_id == server_id))
        await db.delete(server)
        await db.commit()
        await repo.publish(events.SERVER, events.DELETED, server_id, snapshot)
    log.debug("Server %d deleted by user %d", server_id, principal_id)
    return snapshot


async def transfer_ownership(
    repo: Repository, principal_id: int, server_id: int, new_owner_id: int,
) -> ServerResponse:
    """Hand the server to an existing member. The "owner" role tag moves with it."""
    async with repo.writing(server_id) as db:
        server = await authorize(db, principal_id, server_id, TRANSFER_OWNERSHIP)
        if new_owner_id == server.owner_id:
            raise InvalidArgument("User already owns this server.", fields=["user_id"])
        target = await get_membership(db, server_id, new_owner_id)
        if target is None:
            raise NotFound("Member not found.")
        previous = await get_membership(db, server_id, server.owner_id)
        if previous is not None:
            previous.roles = [r for r in previous.roles if r != ROLE_OWNER]
        target.roles = [ROLE_OWNER] + [r for r in target.roles if r != ROLE_OWNER]
        server.owner_id = new_owner_id
        await db.commit()
        snapshot = await server_response(db, server)
        await repo.publish(events.SERVER, events.UPDATED, server_id, snapshot)
    log.info("Server %d ownership transferred to user %d", server_id, new_owner_id)
    return snapshot


async def list_servers(repo: Repository, principal_id: int) -> list[ServerResponse]:
    async with repo.reading() as db:
        ids = await member_server_ids(db, principal_id)
        if not ids:
            return []
        servers = (await db.execute(
            select(Server).where(Server.id.in_(ids)).order_by(Server.id)
        )).scalars().all()
        return [await server_response(db, s) for s in servers]


async def get_server(repo: Repository, principal_id: int, server_id: int) -> ServerResponse:
    async with repo.reading() as db:
        server = await authorize(db, principal_id, server_id, VIEW_SERVER)
        return await server_response(db, server)
