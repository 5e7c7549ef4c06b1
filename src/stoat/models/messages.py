from pydantic import BaseModel

from stoat.models.base import StoatModel


class MessageResponse(StoatModel):
    message_id: int
    channel_id: int
    server_id: int
    author_id: int
    content: str
    created_at: int
    edited_at: int | None = None


class MessageListResponse(StoatModel):
    messages: list[MessageResponse]


class SendMessageRequest(BaseModel):
    content: str


class EditMessageRequest(BaseModel):
    content: str
