from __future__ import annotations

from pydantic import BaseModel, Field

SUPPORTED_MESSAGE_TYPES: frozenset[str] = frozenset({"chat", "image"})


class MediaIn(BaseModel):
    mime_type: str
    data: str | None = None
    url: str | None = None


class InboundMessage(BaseModel):
    id: str
    chat_id: str
    chat_name: str | None = None
    author: str | None = None
    from_me: bool = False
    timestamp: int | None = None
    type: str = "chat"
    body: str = ""
    media: MediaIn | None = None
    self_id: str | None = None
    source: str = "whatsapp"


class ReadyEvent(BaseModel):
    self_id: str = Field(min_length=1)


class SessionOut(BaseModel):
    ready: bool
    self_id: str | None


class QueuedOut(BaseModel):
    status: str
    task_id: str | None
