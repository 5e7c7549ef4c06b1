import secrets

from argon2 import PasswordHasher
from argon2.exceptions import VerifyMismatchError
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from stoat.config import config
from stoat.db.models import AuthSession, User
from stoat.ids import now_ms, snowflake

_ph = PasswordHasher()
_DUMMY_HASH = _ph.hash("__dummy__")

TOKEN_PREFIX = "stoat_sess_"
_DAY_MS = 24 * 60 * 60 * 1000


def hash_password(password: str) -> str:
    return _ph.hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    try:
        return _ph.verify(password_hash, password)
    except VerifyMismatchError:
        return False


def generate_token() -> str:
    return TOKEN_PREFIX + secrets.token_urlsafe(48)


async def create_user(
    db: AsyncSession,
    username: str,
    password: str,
    display_name: str | None = None,
) -> tuple[User, str]:
    user = User(
        id=await snowflake(),
        username=username,
        display_name=display_name or username,
        presence="offline",
        password_hash=hash_password(password),
        created_at=now_ms(),
    )
    db.add(user)
    await db.flush()

    token = await create_session(db, user.id)
    return user, token


async def authenticate(
    db: AsyncSession, username: str, password: str
) -> User | None:
    result = await db.execute(select(User).where(User.username == username))
    user = result.scalar_one_or_none()
    if user is None or user.password_hash is None:
        # Perform dummy hash verification to prevent timing attacks
        verify_password(_DUMMY_HASH, password)
        return None
    if not verify_password(user.password_hash, password):
        return None
    return user


async def create_session(db: AsyncSession, user_id: int) -> str:
    token = generate_token()
    now = now_ms()
    db.add(AuthSession(
        token=token,
        user_id=user_id,
        created_at=now,
        expires_at=now + config.auth.session_ttl_days * _DAY_MS,
    ))
    await db.flush()
    return token


async def get_user_by_token(db: AsyncSession, token: str) -> User | None:
    result = await db.execute(
        select(User)
        .join(AuthSession, AuthSession.user_id == User.id)
        .where(AuthSession.token == token, AuthSession.expires_at > now_ms())
    )
    return result.scalar_one_or_none()


async def cleanup_expired_sessions(db: AsyncSession) -> None:
    """Delete all expired sessions."""
    await db.execute(delete(AuthSession).where(AuthSession.expires_at <= now_ms()))
    await db.commit()


async def revoke_session(db: AsyncSession, token: str) -> bool:
    """Delete the session for *token*. Returns False if there was none."""
    result = await db.execute(delete(AuthSession).where(AuthSession.token == token))
    return result.rowcount == 1
