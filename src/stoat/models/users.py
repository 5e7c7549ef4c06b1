from typing import Literal

from pydantic import BaseModel

from stoat.models.base import StoatModel
from stoat.patch import UserPatch

Presence = Literal["online", "idle", "busy", "invisible", "offline"]
PRESENCE_STATES: frozenset[str] = frozenset({"online", "idle", "busy", "invisible", "offline"})


class UserResponse(StoatModel):
    user_id: int
    username: str
    display_name: str | None
    presence: Presence
    created_at: int


class UpdateUserRequest(BaseModel):
    display_name: str | None = None
    presence: Literal["online", "idle", "busy", "invisible"] | None = None

    def to_patch(self) -> UserPatch:
        return UserPatch(**self.model_dump(exclude_unset=True))
