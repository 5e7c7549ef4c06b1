from pydantic import BaseModel

from stoat.models.base import StoatModel
from stoat.models.channels import ChannelResponse
from stoat.patch import ServerPatch


class ServerResponse(StoatModel):
    server_id: int
    owner_id: int
    name: str
    description: str | None = None
    created_at: int
    member_count: int
    channels: list[ChannelResponse] = []


class ServerListResponse(StoatModel):
    servers: list[ServerResponse]


class CreateServerRequest(BaseModel):
    name: str
    description: str | None = None


class UpdateServerRequest(BaseModel):
    name: str | None = None
    description: str | None = None

    def to_patch(self) -> ServerPatch:
        return ServerPatch(**self.model_dump(exclude_unset=True))


class TransferOwnershipRequest(BaseModel):
    user_id: int
