from datetime import datetime
from typing import Any

from beanie import Document
from pydantic import Field


class AuditLog(Document):
    """Append-only trail of checkout, reconcile and coin-gift state changes."""
    user_id: str | None = None  # None for webhook-driven and cron events
    event_type: str  # checkout_created, gift_paid, gift_canceled, coin_gift_sent, vip_rollup
    entity_type: str  # gift, coin_purchase, wallet
    entity_id: str | None = None  # ledger record id, coin gift id or rollup month
    request_id: str | None = None  # joins the row to the request's structured logs
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "audit_logs"
        indexes = [
            [("entity_type", 1), ("entity_id", 1), ("created_at", 1)],
            [("event_type", 1), ("created_at", -1)],
            "request_id",
        ]
