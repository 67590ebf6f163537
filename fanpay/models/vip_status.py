from datetime import datetime

from beanie import Document
from pydantic import Field
from pymongo import ASCENDING, IndexModel


class VipMonthlyStatus(Document):
    user_id: str
    month_start: str  # YYYY-MM-01
    tier: str | None = None
    monthly_spent_coins: int = 0
    computed_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "vip_monthly_status"
        indexes = [IndexModel([("user_id", ASCENDING), ("month_start", ASCENDING)], unique=True)]
