from typing import Literal

from pydantic import BaseModel

from stoat.models.base import StoatModel
from stoat.patch import ChannelPatch


class ChannelResponse(StoatModel):
    channel_id: int
    server_id: int
    name: str
    description: str | None = None
    type: str
    position: int
    created_at: int


class ChannelListResponse(StoatModel):
    channels: list[ChannelResponse]


class CreateChannelRequest(BaseModel):
    name: str
    description: str | None = None
    type: Literal["text", "voice"] = "text"


class UpdateChannelRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    position: int | None = None

    def to_patch(self) -> ChannelPatch:
        return ChannelPatch(**self.model_dump(exclude_unset=True))
