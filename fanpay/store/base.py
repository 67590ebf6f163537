from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from fanpay.core.config import get_settings
from fanpay.store.types import (
    CoinPackage,
    CoinPurchaseResult,
    GiftRecord,
    LiveState,
    MonetizationSettings,
    RollupResult,
    SendGiftResult,
    WalletSnapshot,
    WalletTransaction,
)


class StoreError(Exception):
    """The backing store rejected or failed an operation."""


class InsufficientCoinsError(StoreError):
    pass


class LedgerStore(ABC):
    """Named operations on the external store. Callers never see its schema."""

    # Gift / transaction ledger

    @abstractmethod
    async def insert_gift(self, record: GiftRecord) -> GiftRecord:
        ...

    @abstractmethod
    async def get_gift(self, gift_id: str) -> GiftRecord | None:
        ...

    @abstractmethod
    async def get_gift_by_session(self, session_id: str) -> GiftRecord | None:
        ...

    @abstractmethod
    async def set_gift_session(self, gift_id: str, session_id: str) -> None:
        ...

    @abstractmethod
    async def mark_gift_paid(
        self,
        gift_id: str,
        *,
        event_id: str | None,
        payment_intent_id: str | None,
        paid_at: datetime,
        via: str,
    ) -> GiftRecord | None:
        """Compare-and-set pending -> paid. None when the record was not pending."""
        ...

    @abstractmethod
    async def mark_gift_canceled(self, gift_id: str, canceled_at: datetime) -> bool:
        """Compare-and-set pending -> canceled. False when the record was not pending."""
        ...

    @abstractmethod
    async def list_gifts(self, user_id: str, limit: int, offset: int) -> list[GiftRecord]:
        ...

    # Catalog / policy

    @abstractmethod
    async def get_coin_package(self, platform: str, sku: str) -> CoinPackage | None:
        """Active package only."""
        ...

    @abstractmethod
    async def get_monetization_settings(self) -> MonetizationSettings:
        ...

    @abstractmethod
    async def list_gift_presets(self) -> list[int]:
        ...

    # Community surfaces touched by side effects

    @abstractmethod
    async def post_exists(self, post_id: str) -> bool:
        ...

    @abstractmethod
    async def get_display_name(self, user_id: str) -> str | None:
        ...

    @abstractmethod
    async def get_live_state(self) -> LiveState:
        ...

    @abstractmethod
    async def insert_live_chat(
        self,
        live_id: str,
        sender_user_id: str | None,
        message: str,
        metadata: dict[str, Any],
    ) -> None:
        ...

    @abstractmethod
    async def insert_feed_comment(self, post_id: str, user_id: str, content: str, is_gift: bool = False) -> None:
        ...

    # Wallet (transactional, idempotency-keyed)

    @abstractmethod
    async def send_gift(
        self,
        *,
        from_user_id: str,
        to_user_id: str,
        stream_id: str | None,
        gift_type: str,
        coins: int,
        idempotency_key: str,
    ) -> SendGiftResult:
        """Debit sender, credit recipient. A repeated key returns the first result with duplicate=True."""
        ...

    @abstractmethod
    async def finalize_coin_purchase(
        self,
        *,
        provider: str,
        provider_order_id: str,
        user_id: str,
        coins: int,
        amount_usd_cents: int,
        idempotency_key: str,
    ) -> CoinPurchaseResult:
        """Credit purchased coins once per idempotency key / provider order."""
        ...

    @abstractmethod
    async def get_wallet(self, user_id: str) -> WalletSnapshot:
        ...

    @abstractmethod
    async def list_wallet_transactions(self, user_id: str, limit: int, offset: int) -> list[WalletTransaction]:
        ...

    @abstractmethod
    async def run_monthly_rollup(self, month_start: datetime) -> RollupResult:
        ...

    # Audit

    @abstractmethod
    async def append_audit(
        self,
        user_id: str | None,
        event_type: str,
        entity_type: str,
        entity_id: str | None,
        metadata: dict[str, Any],
        request_id: str | None = None,
    ) -> None:
        ...


def vip_tier_for(coins_spent: int) -> str | None:
    s = get_settings()
    for tier, floor in (
        ("diamond", s.vip_diamond_coins),
        ("gold", s.vip_gold_coins),
        ("silver", s.vip_silver_coins),
        ("bronze", s.vip_bronze_coins),
    ):
        if coins_spent >= floor:
            return tier
    return None


_store: LedgerStore | None = None


def get_store() -> LedgerStore:
    """Process-wide store selected by STORE_BACKEND."""
    global _store
    if _store is None:
        settings = get_settings()
        if settings.store_backend == "memory":
            from fanpay.store.memory import MemoryLedgerStore
            _store = MemoryLedgerStore()
        else:
            from fanpay.store.mongo import MongoLedgerStore
            _store = MongoLedgerStore()
    return _store


def reset_store() -> None:
    global _store
    _store = None
