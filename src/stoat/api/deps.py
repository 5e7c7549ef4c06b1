from collections.abc import AsyncGenerator

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from stoat.auth.service import get_user_by_token
from stoat.db.engine import get_session_factory
from stoat.db.models import User
from stoat.errors import Unauthenticated
from stoat.gateway.registry import SessionRegistry
from stoat.resources.base import Repository


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    factory = get_session_factory()
    async with factory() as session:
        yield session


def get_repo(request: Request) -> Repository:
    return request.app.state.repo


async def get_current_user(
    db: AsyncSession = Depends(get_db),
    authorization: str | None = Header(default=None),
) -> User:
    if not authorization or not authorization.startswith("Bearer "):
        raise Unauthenticated("Invalid authorization header.")
    user = await get_user_by_token(db, authorization[7:])
    if user is None:
        raise Unauthenticated("Session token expired or invalid.")
    return user


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry
