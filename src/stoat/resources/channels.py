"""Channels: ordered, densely positioned per server."""

from __future__ import annotations

import logging

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from stoat.db.models import Channel, Message
from stoat.errors import InvalidArgument, NotFound
from stoat.gateway import events
from stoat.ids import snowflake, snowflake_time
from stoat.models.channels import ChannelResponse
from stoat.patch import ChannelPatch
from stoat.permissions import MANAGE_CHANNELS, VIEW_SERVER, authorize
from stoat.resources.base import Repository
from stoat.resources.servers import channel_response
from stoat.validators import check_length

log = logging.getLogger(__name__)

CHANNEL_TYPES = ("text", "voice")


def _check_name(name: str | None) -> str:
    if name is None:
        raise InvalidArgument("name may not be null.", fields=["name"])
    return check_length("name", name.strip(), min_attr="channel_name_min", max_attr="channel_name_max")


def _check_description(description: str | None) -> str | None:
    if description is None:
        return None
    return check_length("description", description, max_attr="channel_description_max")


async def channel_server_id(repo: Repository, channel_id: int) -> int:
    """Owning server of *channel_id*, read outside the server lock."""
    async with repo.reading() as db:
        server_id = (await db.execute(
            select(Channel.server_id).where(Channel.id == channel_id)
        )).scalar_one_or_none()
    if server_id is None:
        raise NotFound("Channel not found.")
    return server_id


async def load_channel(db: AsyncSession, server_id: int, channel_id: int) -> Channel:
    """Re-read *channel_id* under the lock; it may have moved or been deleted since lookup."""
    channel = await db.get(Channel, channel_id)
    if channel is None or channel.server_id != server_id:
        raise NotFound("Channel not found.")
    return channel


async def _ordered(db: AsyncSession, server_id: int) -> list[Channel]:
    return list((await db.execute(
        select(Channel).where(Channel.server_id == server_id).order_by(Channel.position, Channel.id)
    )).scalars().all())


def _move(siblings: list[Channel], moved: Channel, target_pos: int) -> None:
    """Re-index *siblings* so positions are 0, 1, 2, ... with *moved* at *target_pos*."""
    others = [c for c in siblings if c.id != moved.id]
    others.insert(target_pos, moved)
    for i, channel in enumerate(others):
        if channel.position != i:
            channel.position = i


async def create_channel(
    repo: Repository,
    principal_id: int,
    server_id: int,
    name: str,
    description: str | None = None,
    type: str = "text",
) -> ChannelResponse:
    name = _check_name(name)
    description = _check_description(description)
    if type not in CHANNEL_TYPES:
        raise InvalidArgument("Unknown channel type.", fields=["type"])
    async with repo.writing(server_id) as db:
        await authorize(db, principal_id, server_id, MANAGE_CHANNELS)
        position = (await db.execute(
            select(func.count()).select_from(Channel).where(Channel.server_id == server_id)
        )).scalar_one()
        channel_id = await snowflake()
        channel = Channel(
            id=channel_id,
            server_id=server_id,
            name=name,
            description=description,
            type=type,
            position=position,
            created_at=snowflake_time(channel_id),
        )
        db.add(channel)
        await db.commit()
        snapshot = channel_response(channel)
        await repo.publish(events.CHANNEL, events.CREATED, server_id, snapshot)
    return snapshot


async def update_channel(
    repo: Repository, principal_id: int, channel_id: int, patch: ChannelPatch,
) -> ChannelResponse:
    changes = patch.changes()
    if "name" in changes:
        changes["name"] = _check_name(changes["name"])
    if "description" in changes:
        changes["description"] = _check_description(changes["description"])
    position = changes.pop("position", None)

    server_id = await channel_server_id(repo, channel_id)
    async with repo.writing(server_id) as db:
        await authorize(db, principal_id, server_id, MANAGE_CHANNELS)
        channel = await load_channel(db, server_id, channel_id)
        for field, value in changes.items():
            setattr(channel, field, value)
        if position is not None:
            siblings = await _ordered(db, server_id)
            if not isinstance(position, int) or not 0 <= position < len(siblings):
                raise InvalidArgument(
                    f"position must be between 0 and {len(siblings) - 1}.", fields=["position"]
                )
            _move(siblings, channel, position)
        await db.commit()
        snapshot = channel_response(channel)
        if changes or position is not None:
            await repo.publish(events.CHANNEL, events.UPDATED, server_id, snapshot)
    return snapshot


async def delete_channel(repo: Repository, principal_id: int, channel_id: int) -> ChannelResponse:
    """Delete a channel and its messages, closing the gap in positions."""
    server_id = await channel_server_id(repo, channel_id)
    async with repo.writing(server_id) as db:
        await authorize(db, principal_id, server_id, MANAGE_CHANNELS)
        channel = await load_channel(db, server_id, channel_id)
        snapshot = channel_response(channel)
        await db.execute(delete(Message).where(Message.channel_id == channel_id))
        await db.delete(channel)
        await db.flush()
        await db.execute(
            update(Channel)
            .where(Channel.server_id == server_id, Channel.position > snapshot.position)
            .values(position=Channel.position - 1)
        )
        await db.commit()
        await repo.publish(events.CHANNEL, events.DELETED, server_id, snapshot)
    log.debug("Channel %d deleted from server %d", channel_id, server_id)
    return snapshot


async def list_channels(repo: Repository, principal_id: int, server_id: int) -> list[ChannelResponse]:
    async with repo.reading() as db:
        await authorize(db, principal_id, server_id, VIEW_SERVER)
        return [channel_response(c) for c in await _ordered(db, server_id)]


async def get_channel(repo: Repository, principal_id: int, channel_id: int) -> ChannelResponse:
    async with repo.reading() as db:
        channel = await db.get(Channel, channel_id)
        if channel is None:
            raise NotFound("Channel not found.")
        await authorize(db, principal_id, channel.server_id, VIEW_SERVER)
        return channel_response(channel)
