"""Actions, the role table and the permission decision procedure.

Decision order for ``(principal, server, action)``:

1. the server owner is allowed everything;
2. a principal with no membership row is denied;
3. otherwise the member's role tags must intersect the roles the action requires
   (an empty requirement means any member).

Owner-or-role actions (deleting a message, revoking an invite) are a two-clause
OR: the principal authored the resource, or the role check for the paired
management action passes.
"""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from stoat.db.models import Server
from stoat.errors import Forbidden, NotFound
from stoat.membership import ROLE_ADMIN, ROLE_OWNER, get_membership

# --- Actions ---

VIEW_SERVER        = "view_server"
SEND_MESSAGES      = "send_messages"
LEAVE_SERVER       = "leave_server"
MANAGE_CHANNELS    = "manage_channels"
CREATE_INVITE      = "create_invite"
MANAGE_INVITES     = "manage_invites"
MANAGE_MESSAGES    = "manage_messages"
KICK_MEMBERS       = "kick_members"
MANAGE_SERVER      = "manage_server"
MANAGE_ROLES       = "manage_roles"
DELETE_SERVER      = "delete_server"
TRANSFER_OWNERSHIP = "transfer_ownership"
DELETE_MESSAGE     = "delete_message"
REVOKE_INVITE      = "revoke_invite"

_STAFF = frozenset({ROLE_OWNER, ROLE_ADMIN})
_OWNER_ONLY = frozenset({ROLE_OWNER})

ROLE_REQUIREMENTS: dict[str, frozenset[str]] = {
    VIEW_SERVER:        frozenset(),
    SEND_MESSAGES:      frozenset(),
    LEAVE_SERVER:       frozenset(),
    MANAGE_CHANNELS:    _STAFF,
    CREATE_INVITE:      _STAFF,
    MANAGE_INVITES:     _STAFF,
    MANAGE_MESSAGES:    _STAFF,
    KICK_MEMBERS:       _STAFF,
    MANAGE_SERVER:      _OWNER_ONLY,
    MANAGE_ROLES:       _OWNER_ONLY,
    DELETE_SERVER:      _OWNER_ONLY,
    TRANSFER_OWNERSHIP: _OWNER_ONLY,
}

# action -> management action whose role check is the second clause of the OR
OWNER_OR_ROLE: dict[str, str] = {
    DELETE_MESSAGE: MANAGE_MESSAGES,
    REVOKE_INVITE:  MANAGE_INVITES,
}


def roles_grant(roles: Iterable[str], action: str) -> bool:
    """Return True if *roles* satisfy the role requirement of *action*."""
    required = ROLE_REQUIREMENTS[action]
    if not required:
        return True
    return bool(required.intersection(roles))


def evaluate(
    principal_id: int,
    owner_id: int,
    roles: Iterable[str] | None,
    action: str,
    resource_owner_id: int | None = None,
) -> bool:
    """Pure decision. *roles* is None when the principal has no membership row."""
    if principal_id == owner_id:
        return True
    if roles is None:
        return False
    roles = frozenset(roles)
    if action in OWNER_OR_ROLE:
        authored = resource_owner_id is not None and resource_owner_id == principal_id
        return authored or roles_grant(roles, OWNER_OR_ROLE[action])
    return roles_grant(roles, action)


async def can_perform(
    db: AsyncSession,
    principal_id: int,
    server_id: int,
    action: str,
    resource_owner_id: int | None = None,
) -> bool:
    server = await db.get(Server, server_id)
    if server is None:
        return False
    member = await get_membership(db, server_id, principal_id)
    return evaluate(
        principal_id,
        server.owner_id,
        member.roles if member is not None else None,
        action,
        resource_owner_id,
    )


async def authorize(
    db: AsyncSession,
    principal_id: int,
    server_id: int,
    action: str,
    *,
    resource_owner_id: int | None = None,
) -> Server:
    """Load the server and check *action*, raising the error the caller should report.

    Servers the principal cannot see (absent, or neither owner nor member) raise
    ``NotFound``; visible servers where the action is denied raise ``Forbidden``.
    """
    server = await db.get(Server, server_id)
    if server is None:
        raise NotFound("Server not found.")
    member = await get_membership(db, server_id, principal_id)
    if member is None and server.owner_id != principal_id:
        raise NotFound("Server not found.")
    roles = member.roles if member is not None else None
    if not evaluate(principal_id, server.owner_id, roles, action, resource_owner_id):
        raise Forbidden("You lack the required permissions.")
    return server
