from datetime import datetime

from beanie import Document
from pydantic import Field
from pymongo import ASCENDING, IndexModel


class CoinPurchase(Document):
    """One credited purchase; both unique indexes reject a replay."""
    provider: str
    provider_order_id: str
    user_id: str
    coins: int
    amount_usd_cents: int
    idempotency_key: str
    applied: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "coin_purchases"
        indexes = [
            IndexModel([("idempotency_key", ASCENDING)], unique=True),
            IndexModel([("provider", ASCENDING), ("provider_order_id", ASCENDING)], unique=True),
        ]
