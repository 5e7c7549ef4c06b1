from pydantic import BaseModel

from stoat.models.base import StoatModel


class CreateInviteRequest(BaseModel):
    max_uses: int | None = None
    max_age: int | None = None  # seconds


class InviteResponse(StoatModel):
    code: str
    server_id: int
    creator_id: int
    uses: int
    max_uses: int | None = None
    expires_at: int | None = None
    created_at: int


class InviteListResponse(StoatModel):
    invites: list[InviteResponse]
    cursor: str | None = None


class InvitePreviewResponse(StoatModel):
    code: str
    server_id: int
    server_name: str
    member_count: int
    channel_count: int
    uses: int
    max_uses: int | None = None
    expires_at: int | None = None
