from fastapi import APIRouter, Depends, Query, Response

from stoat.api.deps import get_current_user, get_repo
from stoat.db.models import User
from stoat.models.invites import (
    CreateInviteRequest,
    InviteListResponse,
    InvitePreviewResponse,
    InviteResponse,
)
from stoat.models.members import MemberResponse
from stoat.resources import invites
from stoat.resources.base import Repository

router = APIRouter(prefix="/api/v1", tags=["invites"])


@router.get("/servers/{server_id}/invites")
async def list_invites(
    server_id: int,
    after: str | None = None,
    limit: int = Query(default=invites.DEFAULT_PAGE_SIZE),
    repo: Repository = Depends(get_repo),
    user: User = Depends(get_current_user),
) -> InviteListResponse:
    items, cursor = await invites.list_invites(repo, user.id, server_id, after=after, limit=limit)
    return InviteListResponse(invites=items, cursor=cursor)


@router.post("/servers/{server_id}/invites", status_code=201)
async def create_invite(
    server_id: int,
    body: CreateInviteRequest,
    repo: Repository = Depends(get_repo),
    user: User = Depends(get_current_user),
) -> InviteResponse:
    return await invites.create_invite(
        repo, user.id, server_id, max_uses=body.max_uses, max_age=body.max_age,
    )


@router.get("/invites/{code}")
async def preview_invite(code: str, repo: Repository = Depends(get_repo)) -> InvitePreviewResponse:
    return await invites.preview_invite(repo, code)


@router.delete("/invites/{code}", status_code=204)
async def revoke_invite(
    code: str,
    repo: Repository = Depends(get_repo),
    user: User = Depends(get_current_user),
):
    await invites.revoke_invite(repo, user.id, code)
    return Response(status_code=204)


@router.post("/invites/{code}/join", status_code=201)
async def join_server(
    code: str,
    repo: Repository = Depends(get_repo),
    user: User = Depends(get_current_user),
) -> MemberResponse:
    return await invites.redeem_invite(repo, user.id, code)
