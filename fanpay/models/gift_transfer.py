from datetime import datetime

from beanie import Document
from pydantic import Field
from pymongo import ASCENDING, IndexModel

from fanpay.store.types import new_id


class GiftTransfer(Document):
    """Coin-to-coin gift. The unique (from_user_id, idempotency_key) index is the dedupe guard."""
    id: str = Field(default_factory=new_id)
    from_user_id: str
    to_user_id: str
    stream_id: str | None = None
    gift_type: str = ""
    coins: int
    idempotency_key: str
    applied: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "gift_transfers"
        indexes = [
            IndexModel([("from_user_id", ASCENDING), ("idempotency_key", ASCENDING)], unique=True),
        ]
