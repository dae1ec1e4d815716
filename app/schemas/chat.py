from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Web chat payloads use camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class ChatMessageRequest(CamelModel):
    session_id: int
    content: str

    @field_validator("content")
    @classmethod
    def strip_content(cls, value: str) -> str:
        return value.strip()


class SessionResponse(CamelModel):
    session_id: int
    state: str
    client_id: int


class SessionCheckResponse(CamelModel):
    active: bool
    session_id: Optional[int] = None
    state: Optional[str] = None


class ChatMessageResponse(CamelModel):
    ok: bool = True
    reply: Optional[str] = None
    state: Optional[str] = None


class MessageItem(CamelModel):
    id: int
    role: str
    content: str
    created_at: datetime


class MessageListResponse(CamelModel):
    messages: list[MessageItem]


class EscalatedSessionItem(CamelModel):
    session_id: int
    state: str
    channel: str
    started_at: datetime
    client_name: str
    external_id: str
    last_message: Optional[str] = None
    last_activity: Optional[datetime] = None


class EscalatedSessionListResponse(CamelModel):
    sessions: list[EscalatedSessionItem]
