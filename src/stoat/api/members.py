from fastapi import APIRouter, Depends, Query, Response

from stoat.api.deps import get_current_user, get_repo
from stoat.db.models import User
from stoat.models.members import MemberListResponse, MemberResponse, SetRolesRequest
from stoat.resources import members
from stoat.resources.base import Repository

router = APIRouter(prefix="/api/v1/servers/{server_id}/members", tags=["members"])


@router.get("")
async def list_members(
    server_id: int,
    after: int | None = None,
    limit: int = Query(default=members.DEFAULT_PAGE_SIZE),
    repo: Repository = Depends(get_repo),
    user: User = Depends(get_current_user),
) -> MemberListResponse:
    items, cursor = await members.list_members(repo, user.id, server_id, after=after, limit=limit)
    return MemberListResponse(items=items, cursor=cursor)


@router.delete("/@me", status_code=204)
async def leave_server(
    server_id: int,
    repo: Repository = Depends(get_repo),
    user: User = Depends(get_current_user),
):
    await members.leave_server(repo, user.id, server_id)
    return Response(status_code=204)


@router.delete("/{user_id}", status_code=204)
async def kick_member(
    server_id: int,
    user_id: int,
    repo: Repository = Depends(get_repo),
    user: User = Depends(get_current_user),
):
    await members.kick_member(repo, user.id, server_id, user_id)
    return Response(status_code=204)


@router.put("/{user_id}/roles")
async def set_roles(
    server_id: int,
    user_id: int,
    body: SetRolesRequest,
    repo: Repository = Depends(get_repo),
    user: User = Depends(get_current_user),
) -> MemberResponse:
    return await members.set_member_roles(repo, user.id, server_id, user_id, body.roles)
