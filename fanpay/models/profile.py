from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field


class Profile(Document):
    """Public member profile; only the display name is read here."""
    user_id: Indexed(str, unique=True)
    display_name: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "profiles"
