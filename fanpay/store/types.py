"""Contracts exchanged with the ledger store."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.utcnow()


class GiftStatus(str, Enum):
    pending = "pending"
    paid = "paid"
    canceled = "canceled"


class RecordKind(str, Enum):
    coin_purchase = "coin_purchase"
    gift = "gift"


class GiftContext(str, Enum):
    post = "post"
    live = "live"


class GiftRecord(BaseModel):
    """One monetary or coin movement. Never deleted."""

    id: str = Field(default_factory=new_id)
    kind: RecordKind
    amount: int  # minor units: cents for usd, whole coins for coins
    currency: str = "usd"  # "usd" | "coins"
    source: str = ""
    context: GiftContext | None = None  # gifts only
    post_id: str | None = None
    stream_id: str | None = None
    user_id: str | None = None  # buyer / gifter; None for anonymous gifts
    recipient_user_id: str | None = None
    is_anonymous: bool = False
    sku: str | None = None
    coins: int | None = None  # coins credited on paid (coin purchases)
    provider: str = "stripe"  # "stripe" | "coins"
    status: GiftStatus = GiftStatus.pending
    idempotency_key: str | None = None
    provider_session_id: str | None = None
    provider_payment_intent_id: str | None = None
    provider_event_id: str | None = None
    paid_via: str | None = None  # "webhook" | "finalize" | "coins"
    created_at: datetime = Field(default_factory=utcnow)
    paid_at: datetime | None = None
    canceled_at: datetime | None = None

    def public(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "amount": self.amount,
            "currency": self.currency,
            "source": self.source,
            "context": self.context.value if self.context else None,
            "post_id": self.post_id,
            "stream_id": self.stream_id,
            "status": self.status.value,
            "sku": self.sku,
            "coins": self.coins,
            "created_at": self.created_at.isoformat(),
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
        }


class CoinPackage(BaseModel):
    platform: str = "web"
    sku: str
    price_usd_cents: int
    coins: int
    is_active: bool = True


class MonetizationSettings(BaseModel):
    enable_post_gifts: bool = True
    allow_custom_amount: bool = True
    allow_anonymous_gifts: bool = False
    min_gift_cents: int = 100
    max_gift_cents: int = 20000
    currency: str = "usd"


class LiveState(BaseModel):
    is_live: bool = False
    live_id: str | None = None
    title: str | None = None
    started_at: datetime | None = None


class WalletSnapshot(BaseModel):
    user_id: str
    coins: int = 0
    purchased_coins: int = 0
    gifted_coins: int = 0
    received_coins: int = 0
    vip_tier: str | None = None


class WalletTransaction(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    kind: str  # "purchase" | "gift_sent" | "gift_received"
    coins: int  # signed
    balance_after: int
    reference_id: str | None = None
    idempotency_key: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class SendGiftResult(BaseModel):
    gift_id: str
    from_user_id: str
    to_user_id: str
    stream_id: str | None = None
    gift_type: str = ""
    coins: int
    duplicate: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class CoinPurchaseResult(BaseModel):
    user_id: str
    coins: int
    provider_order_id: str
    duplicate: bool = False
    balance: int


class RollupResult(BaseModel):
    month_start: str
    members: int
    tiers: dict[str, int] = Field(default_factory=dict)
    cleared: int = 0  # wallets whose tier lapsed
