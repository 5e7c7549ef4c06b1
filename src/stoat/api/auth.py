import logging

from fastapi import APIRouter, Depends, Header, Response
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from stoat.api.deps import get_current_user, get_db, get_registry, get_repo
from stoat.auth.service import authenticate, create_session, create_user, revoke_session
from stoat.db.models import User
from stoat.errors import Conflict, Unauthenticated
from stoat.gateway.connection import CLOSE_AUTH_FAILED
from stoat.gateway.registry import SessionRegistry
from stoat.models.auth import LoginRequest, LoginResponse, RegisterRequest, RegisterResponse
from stoat.resources import users
from stoat.resources.base import Repository

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


@router.post("/register", status_code=201)
async def register(body: RegisterRequest, db: AsyncSession = Depends(get_db)) -> RegisterResponse:
    existing = await db.execute(select(User).where(User.username == body.username))
    if existing.scalar_one_or_none() is not None:
        raise Conflict("Username already taken.")
    try:
        user, token = await create_user(db, body.username, body.password, body.display_name)
        await db.commit()
    except IntegrityError:
        # Lost a race with a concurrent registration of the same name
        await db.rollback()
        raise Conflict("Username already taken.")
    return RegisterResponse(user_id=user.id, token=token)


@router.post("/login")
async def login(body: LoginRequest, db: AsyncSession = Depends(get_db)) -> LoginResponse:
    user = await authenticate(db, body.username, body.password)
    if user is None:
        raise Unauthenticated("Invalid username or password.")
    token = await create_session(db, user.id)
    await db.commit()
    return LoginResponse(token=token, user_id=user.id, display_name=user.display_name)


@router.post("/logout", status_code=204)
async def logout(
    authorization: str | None = Header(default=None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    repo: Repository = Depends(get_repo),
    registry: SessionRegistry = Depends(get_registry),
):
    """Revoke the calling token and end the gateway sessions identified with it."""
    token = authorization[7:]
    await revoke_session(db, token)
    await db.commit()

    for session in registry.sessions_for_user(user.id):
        if session.token != token:
            continue
        await registry.unregister(session)
        await session.close(CLOSE_AUTH_FAILED, "AUTH_FAILED")
    # Offline only once no other session of this user is live
    await users.disconnect_presence(repo, user.id, registry)
    log.debug("User %d logged out", user.id)
    return Response(status_code=204)
