from pydantic import BaseModel

from stoat.models.base import StoatModel


class MemberResponse(StoatModel):
    server_id: int
    user_id: int
    roles: list[str]
    joined_at: int


class MemberListResponse(StoatModel):
    items: list[MemberResponse]
    cursor: str | None = None


class SetRolesRequest(BaseModel):
    roles: list[str]
