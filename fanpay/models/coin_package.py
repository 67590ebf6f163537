from beanie import Document
from pymongo import ASCENDING, IndexModel


class CoinPackageDoc(Document):
    platform: str = "web"
    sku: str
    price_usd_cents: int
    coins: int
    is_active: bool = True

    class Settings:
        name = "coin_packages"
        indexes = [IndexModel([("platform", ASCENDING), ("sku", ASCENDING)], unique=True)]
