from datetime import datetime

from beanie import Document
from pydantic import Field
from pymongo import ASCENDING, DESCENDING, IndexModel

from fanpay.store.types import new_id


class WalletTransactionDoc(Document):
    id: str = Field(default_factory=new_id)
    user_id: str
    kind: str  # purchase, gift_sent, gift_received
    coins: int  # positive = credit, negative = debit
    balance_after: int
    reference_id: str | None = None
    idempotency_key: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "wallet_transactions"
        indexes = [
            IndexModel([("user_id", ASCENDING), ("created_at", DESCENDING)]),
            IndexModel([("kind", ASCENDING), ("created_at", ASCENDING)]),
        ]
