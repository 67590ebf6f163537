"""Process-local store for development and tests.

Each operation runs without awaiting in between reads and writes, so on a
single event loop every call is atomic just like the store's RPCs.
"""

from collections import defaultdict
from datetime import datetime
from typing import Any

from fanpay.core.config import get_settings
from fanpay.store.base import InsufficientCoinsError, LedgerStore, vip_tier_for
from fanpay.store.types import (
    CoinPackage,
    CoinPurchaseResult,
    GiftRecord,
    GiftStatus,
    LiveState,
    MonetizationSettings,
    RollupResult,
    SendGiftResult,
    WalletSnapshot,
    WalletTransaction,
    new_id,
    utcnow,
)


class MemoryLedgerStore(LedgerStore):
    def __init__(self) -> None:
        s = get_settings()
        self.gifts: dict[str, GiftRecord] = {}
        self.packages: dict[tuple[str, str], CoinPackage] = {}
        self.monetization = MonetizationSettings(
            enable_post_gifts=s.gifts_enabled,
            allow_custom_amount=s.allow_custom_gift_amount,
            allow_anonymous_gifts=s.allow_anonymous_gifts,
            min_gift_cents=s.min_gift_cents,
            max_gift_cents=s.max_gift_cents,
            currency=s.gift_currency,
        )
        self.presets: list[int] = list(s.gift_presets)
        self.posts: set[str] = set()
        self.display_names: dict[str, str] = {}
        self.live = LiveState()
        self.live_chat: list[dict[str, Any]] = []
        self.feed_comments: list[dict[str, Any]] = []
        self.wallets: dict[str, WalletSnapshot] = {}
        self.transactions: list[WalletTransaction] = []
        self.gift_results: dict[tuple[str, str], SendGiftResult] = {}
        self.purchases: dict[str, CoinPurchaseResult] = {}
        self.purchase_orders: dict[tuple[str, str], str] = {}
        self.vip: dict[tuple[str, str], str | None] = {}
        self.audit: list[dict[str, Any]] = []

    # Seeding helpers

    def add_coin_package(self, package: CoinPackage) -> None:
        self.packages[(package.platform, package.sku)] = package

    def add_post(self, post_id: str) -> None:
        self.posts.add(post_id)

    def set_display_name(self, user_id: str, name: str) -> None:
        self.display_names[user_id] = name

    def set_live(self, live_id: str | None, title: str | None = None) -> None:
        if live_id:
            self.live = LiveState(is_live=True, live_id=live_id, title=title, started_at=utcnow())
        else:
            self.live = LiveState()

    def credit_coins(self, user_id: str, coins: int) -> None:
        wallet = self._wallet(user_id)
        wallet.coins += coins

    # Ledger

    async def insert_gift(self, record: GiftRecord) -> GiftRecord:
        self.gifts[record.id] = record.model_copy()
        return record

    async def get_gift(self, gift_id: str) -> GiftRecord | None:
        rec = self.gifts.get(gift_id)
        return rec.model_copy() if rec else None

    async def get_gift_by_session(self, session_id: str) -> GiftRecord | None:
        for rec in self.gifts.values():
            if rec.provider_session_id == session_id:
                return rec.model_copy()
        return None

    async def set_gift_session(self, gift_id: str, session_id: str) -> None:
        rec = self.gifts.get(gift_id)
        if rec:
            rec.provider_session_id = session_id

    async def mark_gift_paid(
        self,
        gift_id: str,
        *,
        event_id: str | None,
        payment_intent_id: str | None,
        paid_at: datetime,
        via: str,
    ) -> GiftRecord | None:
        rec = self.gifts.get(gift_id)
        if rec is None or rec.status != GiftStatus.pending:
            return None
        rec.status = GiftStatus.paid
        rec.provider_event_id = event_id
        rec.provider_payment_intent_id = payment_intent_id or rec.provider_payment_intent_id
        rec.paid_at = paid_at
        rec.paid_via = via
        return rec.model_copy()

    async def mark_gift_canceled(self, gift_id: str, canceled_at: datetime) -> bool:
        rec = self.gifts.get(gift_id)
        if rec is None or rec.status != GiftStatus.pending:
            return False
        rec.status = GiftStatus.canceled
        rec.canceled_at = canceled_at
        return True

    async def list_gifts(self, user_id: str, limit: int, offset: int) -> list[GiftRecord]:
        rows = sorted(
            (r for r in self.gifts.values() if r.user_id == user_id),
            key=lambda r: r.created_at,
            reverse=True,
        )
        return [r.model_copy() for r in rows[offset:offset + limit]]

    # Catalog / policy

    async def get_coin_package(self, platform: str, sku: str) -> CoinPackage | None:
        pkg = self.packages.get((platform, sku))
        if pkg is None or not pkg.is_active:
            return None
        return pkg

    async def get_monetization_settings(self) -> MonetizationSettings:
        return self.monetization.model_copy()

    async def list_gift_presets(self) -> list[int]:
        return list(self.presets)

    async def post_exists(self, post_id: str) -> bool:
        return post_id in self.posts

    async def get_display_name(self, user_id: str) -> str | None:
        return self.display_names.get(user_id)

    async def get_live_state(self) -> LiveState:
        return self.live.model_copy()

    async def insert_live_chat(
        self,
        live_id: str,
        sender_user_id: str | None,
        message: str,
        metadata: dict[str, Any],
    ) -> None:
        self.live_chat.append(
            {
                "id": new_id(),
                "live_id": live_id,
                "sender_user_id": sender_user_id,
                "message": message,
                "type": "system" if sender_user_id is None else "chat",
                "metadata": dict(metadata),
                "created_at": utcnow(),
            }
        )

    async def insert_feed_comment(self, post_id: str, user_id: str, content: str, is_gift: bool = False) -> None:
        self.feed_comments.append(
            {"id": new_id(), "post_id": post_id, "user_id": user_id, "content": content, "is_gift": is_gift}
        )

    # Wallet

    def _wallet(self, user_id: str) -> WalletSnapshot:
        if user_id not in self.wallets:
            self.wallets[user_id] = WalletSnapshot(user_id=user_id)
        return self.wallets[user_id]

    def _append_tx(self, user_id: str, kind: str, coins: int, reference_id: str | None, key: str | None) -> None:
        self.transactions.append(
            WalletTransaction(
                user_id=user_id,
                kind=kind,
                coins=coins,
                balance_after=self._wallet(user_id).coins,
                reference_id=reference_id,
                idempotency_key=key,
            )
        )

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
        existing = self.gift_results.get((from_user_id, idempotency_key))
        if existing is not None:
            return existing.model_copy(update={"duplicate": True})
        if coins <= 0:
            raise InsufficientCoinsError("coins must be positive")
        sender = self._wallet(from_user_id)
        if sender.coins < coins:
            raise InsufficientCoinsError("Insufficient coins")
        recipient = self._wallet(to_user_id)
        sender.coins -= coins
        sender.gifted_coins += coins
        recipient.coins += coins
        recipient.received_coins += coins
        result = SendGiftResult(
            gift_id=new_id(),
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            stream_id=stream_id,
            gift_type=gift_type,
            coins=coins,
        )
        self.gift_results[(from_user_id, idempotency_key)] = result
        self._append_tx(from_user_id, "gift_sent", -coins, result.gift_id, idempotency_key)
        self._append_tx(to_user_id, "gift_received", coins, result.gift_id, idempotency_key)
        return result

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
        key = self.purchase_orders.get((provider, provider_order_id)) or idempotency_key
        existing = self.purchases.get(key)
        if existing is not None:
            return existing.model_copy(update={"duplicate": True, "balance": self._wallet(existing.user_id).coins})
        wallet = self._wallet(user_id)
        wallet.coins += coins
        wallet.purchased_coins += coins
        result = CoinPurchaseResult(
            user_id=user_id,
            coins=coins,
            provider_order_id=provider_order_id,
            balance=wallet.coins,
        )
        self.purchases[idempotency_key] = result
        self.purchase_orders[(provider, provider_order_id)] = idempotency_key
        self._append_tx(user_id, "purchase", coins, provider_order_id, idempotency_key)
        return result

    async def get_wallet(self, user_id: str) -> WalletSnapshot:
        return self._wallet(user_id).model_copy()

    async def list_wallet_transactions(self, user_id: str, limit: int, offset: int) -> list[WalletTransaction]:
        rows = [t for t in reversed(self.transactions) if t.user_id == user_id]
        return [t.model_copy() for t in rows[offset:offset + limit]]

    async def run_monthly_rollup(self, month_start: datetime) -> RollupResult:
        if month_start.month == 12:
            month_end = month_start.replace(year=month_start.year + 1, month=1)
        else:
            month_end = month_start.replace(month=month_start.month + 1)
        spent: dict[str, int] = defaultdict(int)
        for tx in self.transactions:
            if tx.kind == "gift_sent" and month_start <= tx.created_at < month_end:
                spent[tx.user_id] += -tx.coins
        label = month_start.strftime("%Y-%m-01")
        tiers: dict[str, int] = defaultdict(int)
        for user_id, coins in spent.items():
            tier = vip_tier_for(coins)
            self.vip[(user_id, label)] = tier
            self._wallet(user_id).vip_tier = tier
            if tier:
                tiers[tier] += 1
        cleared = 0
        for user_id, wallet in self.wallets.items():
            if user_id not in spent and wallet.vip_tier is not None:
                wallet.vip_tier = None
                cleared += 1
        return RollupResult(month_start=label, members=len(spent), tiers=dict(tiers), cleared=cleared)

    async def append_audit(
        self,
        user_id: str | None,
        event_type: str,
        entity_type: str,
        entity_id: str | None,
        metadata: dict[str, Any],
        request_id: str | None = None,
    ) -> None:
        self.audit.append(
            {
                "user_id": user_id,
                "event_type": event_type,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "metadata": dict(metadata),
                "request_id": request_id,
                "created_at": utcnow(),
            }
        )
