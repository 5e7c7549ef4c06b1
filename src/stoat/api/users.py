from fastapi import APIRouter, Depends

from stoat.api.deps import get_current_user, get_repo
from stoat.db.models import User
from stoat.models.users import UpdateUserRequest, UserResponse
from stoat.resources import users
from stoat.resources.base import Repository

router = APIRouter(prefix="/api/v1/users", tags=["users"])


@router.get("/@me")
async def get_me(
    repo: Repository = Depends(get_repo),
    user: User = Depends(get_current_user),
) -> UserResponse:
    return await users.get_user(repo, user.id, viewer_id=user.id)


@router.patch("/@me")
async def update_me(
    body: UpdateUserRequest,
    repo: Repository = Depends(get_repo),
    user: User = Depends(get_current_user),
) -> UserResponse:
    return await users.update_user(repo, user.id, body.to_patch())


@router.get("/{user_id}")
async def get_user(
    user_id: int,
    repo: Repository = Depends(get_repo),
    user: User = Depends(get_current_user),
) -> UserResponse:
    return await users.get_user(repo, user_id, viewer_id=user.id)
