from fastapi import APIRouter, Depends, Query, Response

from stoat.api.deps import get_current_user, get_repo
from stoat.db.models import User
from stoat.models.messages import (
    EditMessageRequest,
    MessageListResponse,
    MessageResponse,
    SendMessageRequest,
)
from stoat.resources import messages
from stoat.resources.base import Repository

router = APIRouter(prefix="/api/v1", tags=["messages"])


@router.get("/channels/{channel_id}/messages")
async def list_messages(
    channel_id: int,
    before: int | None = None,
    limit: int = Query(default=messages.DEFAULT_PAGE_SIZE),
    repo: Repository = Depends(get_repo),
    user: User = Depends(get_current_user),
) -> MessageListResponse:
    return MessageListResponse(
        messages=await messages.list_messages(repo, user.id, channel_id, before=before, limit=limit)
    )


@router.post("/channels/{channel_id}/messages", status_code=201)
async def send_message(
    channel_id: int,
    body: SendMessageRequest,
    repo: Repository = Depends(get_repo),
    user: User = Depends(get_current_user),
) -> MessageResponse:
    return await messages.create_message(repo, user.id, channel_id, body.content)


@router.get("/messages/{message_id}")
async def get_message(
    message_id: int,
    repo: Repository = Depends(get_repo),
    user: User = Depends(get_current_user),
) -> MessageResponse:
    return await messages.get_message(repo, user.id, message_id)


@router.patch("/messages/{message_id}")
async def edit_message(
    message_id: int,
    body: EditMessageRequest,
    repo: Repository = Depends(get_repo),
    user: User = Depends(get_current_user),
) -> MessageResponse:
    return await messages.edit_message(repo, user.id, message_id, body.content)


@router.delete("/messages/{message_id}", status_code=204)
async def delete_message(
    message_id: int,
    repo: Repository = Depends(get_repo),
    user: User = Depends(get_current_user),
):
    await messages.delete_message(repo, user.id, message_id)
    return Response(status_code=204)
