import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from fanpay.core.config import get_settings
from fanpay.models.audit_log import AuditLog
from fanpay.models.coin_package import CoinPackageDoc
from fanpay.models.coin_purchase import CoinPurchase
from fanpay.models.feed import FeedComment, FeedPost
from fanpay.models.gift_ledger import GiftLedgerEntry
from fanpay.models.gift_transfer import GiftTransfer
from fanpay.models.live import LiveChatMessage, LiveSession
from fanpay.models.monetization import GiftPreset, MonetizationSettingsDoc
from fanpay.models.profile import Profile
from fanpay.models.vip_status import VipMonthlyStatus
from fanpay.models.wallet import Wallet
from fanpay.models.wallet_transaction import WalletTransactionDoc

DOCUMENT_MODELS = [
    GiftLedgerEntry,
    CoinPackageDoc,
    CoinPurchase,
    GiftTransfer,
    Wallet,
    WalletTransactionDoc,
    VipMonthlyStatus,
    MonetizationSettingsDoc,
    GiftPreset,
    Profile,
    FeedPost,
    FeedComment,
    LiveSession,
    LiveChatMessage,
    AuditLog,
]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


async def init_db() -> None:
    """No-op for the memory backend."""
    settings = get_settings()
    if settings.store_backend != "mongo":
        return
    kwargs = {}
    if _use_tls(settings.mongodb_uri):
        kwargs["tlsCAFile"] = certifi.where()
        kwargs["tlsDisableOCSPEndpointCheck"] = True
    client = AsyncIOMotorClient(settings.mongodb_uri, **kwargs)
    database = client[settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
