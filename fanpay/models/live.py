from datetime import datetime
from typing import Any

from beanie import Document, Indexed
from pydantic import Field

from fanpay.store.types import new_id


class LiveSession(Document):
    id: str = Field(default_factory=new_id)
    is_live: bool = False
    title: str | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None

    class Settings:
        name = "live_sessions"


class LiveChatMessage(Document):
    live_id: Indexed(str)
    sender_user_id: str | None = None  # None = system-authored
    message: str
    type: str = "chat"
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "live_chat"
