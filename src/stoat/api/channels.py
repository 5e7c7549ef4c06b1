from fastapi import APIRouter, Depends, Response

from stoat.api.deps import get_current_user, get_repo
from stoat.db.models import User
from stoat.models.channels import (
    ChannelListResponse,
    ChannelResponse,
    CreateChannelRequest,
    UpdateChannelRequest,
)
from stoat.resources import channels
from stoat.resources.base import Repository

router = APIRouter(prefix="/api/v1", tags=["channels"])


@router.get("/servers/{server_id}/channels")
async def list_channels(
    server_id: int,
    repo: Repository = Depends(get_repo),
    user: User = Depends(get_current_user),
) -> ChannelListResponse:
    return ChannelListResponse(channels=await channels.list_channels(repo, user.id, server_id))


@router.post("/servers/{server_id}/channels", status_code=201)
async def create_channel(
    server_id: int,
    body: CreateChannelRequest,
    repo: Repository = Depends(get_repo),
    user: User = Depends(get_current_user),
) -> ChannelResponse:
    return await channels.create_channel(
        repo, user.id, server_id, body.name, description=body.description, type=body.type,
    )


@router.get("/channels/{channel_id}")
async def get_channel(
    channel_id: int,
    repo: Repository = Depends(get_repo),
    user: User = Depends(get_current_user),
) -> ChannelResponse:
    return await channels.get_channel(repo, user.id, channel_id)


@router.patch("/channels/{channel_id}")
async def update_channel(
    channel_id: int,
    body: UpdateChannelRequest,
    repo: Repository = Depends(get_repo),
    user: User = Depends(get_current_user),
) -> ChannelResponse:
    return await channels.update_channel(repo, user.id, channel_id, body.to_patch())


@router.delete("/channels/{channel_id}", status_code=204)
async def delete_channel(
    channel_id: int,
    repo: Repository = Depends(get_repo),
    user: User = Depends(get_current_user),
):
    await channels.delete_channel(repo, user.id, channel_id)
    return Response(status_code=204)
