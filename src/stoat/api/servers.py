from fastapi import APIRouter, Depends, Response

from stoat.api.deps import get_current_user, get_repo
from stoat.db.models import User
from stoat.models.servers import (
    CreateServerRequest,
    ServerListResponse,
    ServerResponse,
    TransferOwnershipRequest,
    UpdateServerRequest,
)
from stoat.resources import servers
from stoat.resources.base import Repository

router = APIRouter(prefix="/api/v1/servers", tags=["servers"])


@router.get("")
async def list_servers(
    repo: Repository = Depends(get_repo),
    user: User = Depends(get_current_user),
) -> ServerListResponse:
    return ServerListResponse(servers=await servers.list_servers(repo, user.id))


@router.post("", status_code=201)
async def create_server(
    body: CreateServerRequest,
    repo: Repository = Depends(get_repo),
    user: User = Depends(get_current_user),
) -> ServerResponse:
    return await servers.create_server(repo, user.id, body.name, body.description)


@router.get("/{server_id}")
async def get_server(
    server_id: int,
    repo: Repository = Depends(get_repo),
    user: User = Depends(get_current_user),
) -> ServerResponse:
    return await servers.get_server(repo, user.id, server_id)


@router.patch("/{server_id}")
async def update_server(
    server_id: int,
    body: UpdateServerRequest,
    repo: Repository = Depends(get_repo),
    user: User = Depends(get_current_user),
) -> ServerResponse:
    return await servers.update_server(repo, user.id, server_id, body.to_patch())


@router.delete("/{server_id}", status_code=204)
async def delete_server(
    server_id: int,
    repo: Repository = Depends(get_repo),
    user: User = Depends(get_current_user),
):
    await servers.delete_server(repo, user.id, server_id)
    return Response(status_code=204)


@router.put("/{server_id}/owner")
async def transfer_ownership(
    server_id: int,
    body: TransferOwnershipRequest,
    repo: Repository = Depends(get_repo),
    user: User = Depends(get_current_user),
) -> ServerResponse:
    return await servers.transfer_ownership(repo, user.id, server_id, body.user_id)
