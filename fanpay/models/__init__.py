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

__all__ = [
    "AuditLog",
    "CoinPackageDoc",
    "CoinPurchase",
    "FeedComment",
    "FeedPost",
    "GiftLedgerEntry",
    "GiftTransfer",
    "LiveChatMessage",
    "LiveSession",
    "GiftPreset",
    "MonetizationSettingsDoc",
    "Profile",
    "VipMonthlyStatus",
    "Wallet",
    "WalletTransactionDoc",
]
