from datetime import datetime

from beanie import Document
from pydantic import Field
from pymongo import ASCENDING, DESCENDING, IndexModel

from fanpay.store.types import GiftContext, GiftStatus, RecordKind, new_id


class GiftLedgerEntry(Document):
    """Gift / coin-purchase record; status moves pending -> paid|canceled once."""
    id: str = Field(default_factory=new_id)
    kind: RecordKind
    amount: int  # minor units
    currency: str = "usd"
    source: str = ""
    context: GiftContext | None = None
    post_id: str | None = None
    stream_id: str | None = None
    user_id: str | None = None
    recipient_user_id: str | None = None
    is_anonymous: bool = False
    sku: str | None = None
    coins: int | None = None
    provider: str = "stripe"
    status: GiftStatus = GiftStatus.pending
    idempotency_key: str | None = None
    provider_session_id: str | None = None
    provider_payment_intent_id: str | None = None
    provider_event_id: str | None = None
    paid_via: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    paid_at: datetime | None = None
    canceled_at: datetime | None = None

    class Settings:
        name = "gift_ledger"
        indexes = [
            IndexModel([("user_id", ASCENDING), ("created_at", DESCENDING)]),
            IndexModel([("provider_session_id", ASCENDING)]),
            IndexModel(
                [("provider_event_id", ASCENDING)],
                unique=True,
                partialFilterExpression={"provider_event_id": {"$type": "string"}},
            ),
        ]
