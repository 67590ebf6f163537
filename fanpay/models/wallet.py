from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field


class Wallet(Document):
    """Coin balance per user; only ever changed with atomic $inc.

    ``applied_keys`` holds the most recent step keys applied to this wallet so
    a retried purchase or transfer cannot apply the same change twice.
    """
    user_id: Indexed(str, unique=True)
    coins: int = 0
    purchased_coins: int = 0
    gifted_coins: int = 0
    received_coins: int = 0
    vip_tier: str | None = None
    applied_keys: list[str] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "wallets"
