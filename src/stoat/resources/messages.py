"""Messages: post, edit (author only), delete (author or moderator), history."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stoat.db.models import Channel, Message
from stoat.errors import Forbidden, NotFound
from stoat.gateway import events
from stoat.ids import now_ms, snowflake, snowflake_time
from stoat.models.messages import MessageResponse
from stoat.permissions import DELETE_MESSAGE, SEND_MESSAGES, VIEW_SERVER, authorize
from stoat.resources.base import Repository
from stoat.resources.channels import channel_server_id, load_channel
from stoat.validators import check_length, check_range

DEFAULT_PAGE_SIZE = 50


def message_response(message: Message, server_id: int) -> MessageResponse:
    return MessageResponse(
        message_id=message.id,
        channel_id=message.channel_id,
        server_id=server_id,
        author_id=message.author_id,
        content=message.content,
        created_at=message.created_at,
        edited_at=message.edited_at,
    )


def _check_content(content: str) -> str:
    return check_length(
        "content", content, min_attr="message_content_min", max_attr="message_content_max"
    )


async def _message_server_id(repo: Repository, message_id: int) -> int:
    async with repo.reading() as db:
        server_id = (await db.execute(
            select(Channel.server_id)
            .join(Message, Message.channel_id == Channel.id)
            .where(Message.id == message_id)
        )).scalar_one_or_none()
    if server_id is None:
        raise NotFound("Message not found.")
    return server_id


async def _load_message(db: AsyncSession, server_id: int, message_id: int) -> Message:
    message = await db.get(Message, message_id)
    if message is None:
        raise NotFound("Message not found.")
    await load_channel(db, server_id, message.channel_id)
    return message


async def create_message(
    repo: Repository, principal_id: int, channel_id: int, content: str,
) -> MessageResponse:
    content = _check_content(content)
    server_id = await channel_server_id(repo, channel_id)
    async with repo.writing(server_id) as db:
        await authorize(db, principal_id, server_id, SEND_MESSAGES)
        await load_channel(db, server_id, channel_id)
        message_id = await snowflake()
        message = Message(
            id=message_id,
            channel_id=channel_id,
            author_id=principal_id,
            content=content,
            created_at=snowflake_time(message_id),
        )
        db.add(message)
        await db.commit()
        snapshot = message_response(message, server_id)
        await repo.publish(events.MESSAGE, events.CREATED, server_id, snapshot)
    return snapshot


async def edit_message(
    repo: Repository, principal_id: int, message_id: int, content: str,
) -> MessageResponse:
    """Replace the content of a message. Only its author may edit it."""
    content = _check_content(content)
    server_id = await _message_server_id(repo, message_id)
    async with repo.writing(server_id) as db:
        await authorize(db, principal_id, server_id, VIEW_SERVER)
        message = await _load_message(db, server_id, message_id)
        if message.author_id != principal_id:
            raise Forbidden("Only the author can edit a message.")
        message.content = content
        message.edited_at = now_ms()
        await db.commit()
        snapshot = message_response(message, server_id)
        await repo.publish(events.MESSAGE, events.UPDATED, server_id, snapshot)
    return snapshot


async def delete_message(repo: Repository, principal_id: int, message_id: int) -> MessageResponse:
    server_id = await _message_server_id(repo, message_id)
    async with repo.writing(server_id) as db:
        message = await db.get(Message, message_id)
        if message is None:
            raise NotFound("Message not found.")
        await authorize(db, principal_id, server_id, DELETE_MESSAGE, resource_owner_id=message.author_id)
        await load_channel(db, server_id, message.channel_id)
        snapshot = message_response(message, server_id)
        await db.delete(message)
        await db.commit()
        await repo.publish(events.MESSAGE, events.DELETED, server_id, snapshot)
    return snapshot


async def list_messages(
    repo: Repository,
    principal_id: int,
    channel_id: int,
    before: int | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
) -> list[MessageResponse]:
    """Up to *limit* messages older than *before*, oldest first."""
    limit = check_range("limit", limit, ge=1, max_attr="page_limit_messages")
    async with repo.reading() as db:
        channel = await db.get(Channel, channel_id)
        if channel is None:
            raise NotFound("Channel not found.")
        await authorize(db, principal_id, channel.server_id, VIEW_SERVER)
        query = select(Message).where(Message.channel_id == channel_id)
        if before is not None:
            query = query.where(Message.id < before)
        rows = (await db.execute(query.order_by(Message.id.desc()).limit(limit))).scalars().all()
        return [message_response(m, channel.server_id) for m in reversed(rows)]


async def get_message(repo: Repository, principal_id: int, message_id: int) -> MessageResponse:
    async with repo.reading() as db:
        message = await db.get(Message, message_id)
        if message is None:
            raise NotFound("Message not found.")
        channel = await db.get(Channel, message.channel_id)
        await authorize(db, principal_id, channel.server_id, VIEW_SERVER)
        return message_response(message, channel.server_id)
