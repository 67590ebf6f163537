"""Beanie-backed store.

No multi-document transactions: every state change is a single-document
atomic update (status-guarded compare-and-set or keyed $inc), and replays are
rejected by unique indexes on the idempotency keys. Purchases and transfers
are flagged applied last, so a retry of an unfinished one picks up where the
earlier attempt stopped.
"""

from datetime import datetime
from typing import Any

from beanie import UpdateResponse
from beanie.operators import Inc, NotIn, Push, Set
from pymongo.errors import DuplicateKeyError

from fanpay.core.config import get_settings
from fanpay.core.logging import get_logger
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
)

log = get_logger(__name__)


def _record(doc: GiftLedgerEntry) -> GiftRecord:
    return GiftRecord.model_validate(doc.model_dump())


def _snapshot(doc: Wallet | None, user_id: str) -> WalletSnapshot:
    if doc is None:
        return WalletSnapshot(user_id=user_id)
    return WalletSnapshot(
        user_id=doc.user_id,
        coins=doc.coins,
        purchased_coins=doc.purchased_coins,
        gifted_coins=doc.gifted_coins,
        received_coins=doc.received_coins,
        vip_tier=doc.vip_tier,
    )


APPLIED_KEYS_KEPT = 500


async def _ensure_wallet(user_id: str) -> None:
    if await Wallet.find_one(Wallet.user_id == user_id):
        return
    try:
        await Wallet(user_id=user_id).insert()
    except DuplicateKeyError:
        # Another first write created it
        pass


async def _apply_to_wallet(
    user_id: str, changes: dict, key: str, min_coins: int | None = None
) -> Wallet | None:
    """Atomic $inc applied at most once per ``key``.

    The key is pushed in the same update as the $inc, so a retry after a crash
    cannot double-apply. Returns None when the guard did not match: either the
    key was already applied or the balance is below ``min_coins``.
    """
    await _ensure_wallet(user_id)
    filters = [Wallet.user_id == user_id, Wallet.applied_keys != key]
    if min_coins is not None:
        filters.append(Wallet.coins >= min_coins)
    return await Wallet.find_one(*filters).update(
        Inc(changes),
        Push({Wallet.applied_keys: {"$each": [key], "$slice": -APPLIED_KEYS_KEPT}}),
        Set({Wallet.updated_at: datetime.utcnow()}),
        response_type=UpdateResponse.NEW_DOCUMENT,
    )


async def _record_transaction(key: str, **fields: Any) -> None:
    # Keyed _id; a resumed operation rewrites nothing
    try:
        await WalletTransactionDoc(id=key, **fields).insert()
    except DuplicateKeyError:
        pass


def _gift_result(transfer: GiftTransfer, duplicate: bool) -> SendGiftResult:
    return SendGiftResult(
        gift_id=transfer.id,
        from_user_id=transfer.from_user_id,
        to_user_id=transfer.to_user_id,
        stream_id=transfer.stream_id,
        gift_type=transfer.gift_type,
        coins=transfer.coins,
        duplicate=duplicate,
        created_at=transfer.created_at,
    )


class MongoLedgerStore(LedgerStore):
    # Ledger

    async def insert_gift(self, record: GiftRecord) -> GiftRecord:
        await GiftLedgerEntry(**record.model_dump()).insert()
        return record

    async def get_gift(self, gift_id: str) -> GiftRecord | None:
        doc = await GiftLedgerEntry.get(gift_id)
        return _record(doc) if doc else None

    async def get_gift_by_session(self, session_id: str) -> GiftRecord | None:
        doc = await GiftLedgerEntry.find_one(GiftLedgerEntry.provider_session_id == session_id)
        return _record(doc) if doc else None

    async def set_gift_session(self, gift_id: str, session_id: str) -> None:
        await GiftLedgerEntry.find_one(GiftLedgerEntry.id == gift_id).update(
            Set({GiftLedgerEntry.provider_session_id: session_id})
        )

    async def mark_gift_paid(
        self,
        gift_id: str,
        *,
        event_id: str | None,
        payment_intent_id: str | None,
        paid_at: datetime,
        via: str,
    ) -> GiftRecord | None:
        changes: dict = {
            GiftLedgerEntry.status: GiftStatus.paid.value,
            GiftLedgerEntry.provider_event_id: event_id,
            GiftLedgerEntry.paid_at: paid_at,
            GiftLedgerEntry.paid_via: via,
        }
        if payment_intent_id:
            changes[GiftLedgerEntry.provider_payment_intent_id] = payment_intent_id
        try:
            doc = await GiftLedgerEntry.find_one(
                GiftLedgerEntry.id == gift_id,
                GiftLedgerEntry.status == GiftStatus.pending.value,
            ).update(Set(changes), response_type=UpdateResponse.NEW_DOCUMENT)
        except DuplicateKeyError:
            # provider_event_id already stamped on another record
            log.warning("gift_event_id_conflict", gift_id=gift_id, event_id=event_id)
            return None
        return _record(doc) if doc else None

    async def mark_gift_canceled(self, gift_id: str, canceled_at: datetime) -> bool:
        doc = await GiftLedgerEntry.find_one(
            GiftLedgerEntry.id == gift_id,
            GiftLedgerEntry.status == GiftStatus.pending.value,
        ).update(
            Set({GiftLedgerEntry.status: GiftStatus.canceled.value, GiftLedgerEntry.canceled_at: canceled_at}),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )
        return doc is not None

    async def list_gifts(self, user_id: str, limit: int, offset: int) -> list[GiftRecord]:
        docs = (
            await GiftLedgerEntry.find(GiftLedgerEntry.user_id == user_id)
            .sort(-GiftLedgerEntry.created_at)
            .skip(offset)
            .limit(limit)
            .to_list()
        )
        return [_record(d) for d in docs]

    # Catalog / policy

    async def get_coin_package(self, platform: str, sku: str) -> CoinPackage | None:
        doc = await CoinPackageDoc.find_one(
            CoinPackageDoc.platform == platform,
            CoinPackageDoc.sku == sku,
            CoinPackageDoc.is_active == True,  # noqa: E712
        )
        if not doc:
            return None
        return CoinPackage(
            platform=doc.platform,
            sku=doc.sku,
            price_usd_cents=doc.price_usd_cents,
            coins=doc.coins,
            is_active=doc.is_active,
        )

    async def get_monetization_settings(self) -> MonetizationSettings:
        s = get_settings()
        out = MonetizationSettings(
            enable_post_gifts=s.gifts_enabled,
            allow_custom_amount=s.allow_custom_gift_amount,
            allow_anonymous_gifts=s.allow_anonymous_gifts,
            min_gift_cents=s.min_gift_cents,
            max_gift_cents=s.max_gift_cents,
            currency=s.gift_currency,
        )
        row = await MonetizationSettingsDoc.find_one()
        if row:
            overrides = row.model_dump(exclude={"id", "revision_id"}, exclude_none=True)
            out = out.model_copy(update=overrides)
        return out

    async def list_gift_presets(self) -> list[int]:
        rows = await GiftPreset.find(GiftPreset.is_active == True).sort(+GiftPreset.sort_order).to_list()  # noqa: E712
        if not rows:
            return list(get_settings().gift_presets)
        return [r.amount_cents for r in rows]

    async def post_exists(self, post_id: str) -> bool:
        return await FeedPost.get(post_id) is not None

    async def get_display_name(self, user_id: str) -> str | None:
        profile = await Profile.find_one(Profile.user_id == user_id)
        return profile.display_name if profile else None

    async def get_live_state(self) -> LiveState:
        live = await LiveSession.find(LiveSession.is_live == True).sort(-LiveSession.started_at).first_or_none()  # noqa: E712
        if not live:
            return LiveState()
        return LiveState(is_live=True, live_id=live.id, title=live.title, started_at=live.started_at)

    async def insert_live_chat(
        self,
        live_id: str,
        sender_user_id: str | None,
        message: str,
        metadata: dict[str, Any],
    ) -> None:
        await LiveChatMessage(
            live_id=live_id,
            sender_user_id=sender_user_id,
            message=message,
            type="system" if sender_user_id is None else "chat",
            metadata=metadata,
        ).insert()

    async def insert_feed_comment(self, post_id: str, user_id: str, content: str, is_gift: bool = False) -> None:
        await FeedComment(post_id=post_id, user_id=user_id, content=content, is_gift=is_gift).insert()

    # Wallet

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
        transfer = GiftTransfer(
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            stream_id=stream_id,
            gift_type=gift_type,
            coins=coins,
            idempotency_key=idempotency_key,
        )
        try:
            await transfer.insert()
        except DuplicateKeyError:
            existing = await GiftTransfer.find_one(
                GiftTransfer.from_user_id == from_user_id,
                GiftTransfer.idempotency_key == idempotency_key,
            )
            if existing is None:
                raise
            if existing.applied:
                return _gift_result(existing, duplicate=True)
            # An earlier attempt stopped part way; finish the remaining steps
            log.warning("gift_transfer_resumed", gift_id=existing.id, from_user_id=from_user_id)
            transfer = existing
        return await self._apply_transfer(transfer)

    async def _apply_transfer(self, transfer: GiftTransfer) -> SendGiftResult:
        coins = transfer.coins
        debit_key = f"gift:{transfer.id}:debit"
        credit_key = f"gift:{transfer.id}:credit"

        sender = await _apply_to_wallet(
            transfer.from_user_id,
            {Wallet.coins: -coins, Wallet.gifted_coins: coins},
            debit_key,
            min_coins=coins,
        )
        if sender is None:
            sender = await Wallet.find_one(Wallet.user_id == transfer.from_user_id)
            if sender is None or debit_key not in sender.applied_keys:
                # Never debited, so the key is free for a later funded attempt
                await GiftTransfer.find_one(
                    GiftTransfer.id == transfer.id,
                    GiftTransfer.applied == False,  # noqa: E712
                ).delete()
                raise InsufficientCoinsError("Insufficient coins")

        recipient = await _apply_to_wallet(
            transfer.to_user_id,
            {Wallet.coins: coins, Wallet.received_coins: coins},
            credit_key,
        )
        if recipient is None:
            recipient = await Wallet.find_one(Wallet.user_id == transfer.to_user_id)

        await _record_transaction(
            debit_key,
            user_id=transfer.from_user_id,
            kind="gift_sent",
            coins=-coins,
            balance_after=sender.coins,
            reference_id=transfer.id,
            idempotency_key=transfer.idempotency_key,
            created_at=transfer.created_at,
        )
        await _record_transaction(
            credit_key,
            user_id=transfer.to_user_id,
            kind="gift_received",
            coins=coins,
            balance_after=recipient.coins if recipient else coins,
            reference_id=transfer.id,
            idempotency_key=transfer.idempotency_key,
            created_at=transfer.created_at,
        )
        # Only the caller that flips applied reports a new gift
        flipped = await GiftTransfer.find_one(
            GiftTransfer.id == transfer.id,
            GiftTransfer.applied == False,  # noqa: E712
        ).update(Set({GiftTransfer.applied: True}), response_type=UpdateResponse.NEW_DOCUMENT)
        return _gift_result(transfer, duplicate=flipped is None)

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
        purchase = CoinPurchase(
            provider=provider,
            provider_order_id=provider_order_id,
            user_id=user_id,
            coins=coins,
            amount_usd_cents=amount_usd_cents,
            idempotency_key=idempotency_key,
        )
        try:
            await purchase.insert()
        except DuplicateKeyError:
            existing = await CoinPurchase.find_one(CoinPurchase.idempotency_key == idempotency_key)
            if existing is None:
                existing = await CoinPurchase.find_one(
                    CoinPurchase.provider == provider,
                    CoinPurchase.provider_order_id == provider_order_id,
                )
            if existing is None:
                raise
            if existing.applied:
                wallet = await Wallet.find_one(Wallet.user_id == existing.user_id)
                return CoinPurchaseResult(
                    user_id=existing.user_id,
                    coins=existing.coins,
                    provider_order_id=existing.provider_order_id,
                    duplicate=True,
                    balance=wallet.coins if wallet else 0,
                )
            log.warning("coin_purchase_resumed", purchase_id=str(existing.id), user_id=existing.user_id)
            purchase = existing

        key = f"purchase:{purchase.id}"
        wallet = await _apply_to_wallet(
            purchase.user_id,
            {Wallet.coins: purchase.coins, Wallet.purchased_coins: purchase.coins},
            key,
        )
        if wallet is None:
            wallet = await Wallet.find_one(Wallet.user_id == purchase.user_id)
        balance = wallet.coins if wallet else purchase.coins
        await _record_transaction(
            key,
            user_id=purchase.user_id,
            kind="purchase",
            coins=purchase.coins,
            balance_after=balance,
            reference_id=purchase.provider_order_id,
            idempotency_key=purchase.idempotency_key,
            created_at=purchase.created_at,
        )
        flipped = await CoinPurchase.find_one(
            CoinPurchase.id == purchase.id,
            CoinPurchase.applied == False,  # noqa: E712
        ).update(Set({CoinPurchase.applied: True}), response_type=UpdateResponse.NEW_DOCUMENT)
        return CoinPurchaseResult(
            user_id=purchase.user_id,
            coins=purchase.coins,
            provider_order_id=purchase.provider_order_id,
            duplicate=flipped is None,
            balance=balance,
        )

    async def get_wallet(self, user_id: str) -> WalletSnapshot:
        return _snapshot(await Wallet.find_one(Wallet.user_id == user_id), user_id)

    async def list_wallet_transactions(self, user_id: str, limit: int, offset: int) -> list[WalletTransaction]:
        docs = (
            await WalletTransactionDoc.find(WalletTransactionDoc.user_id == user_id)
            .sort(-WalletTransactionDoc.created_at)
            .skip(offset)
            .limit(limit)
            .to_list()
        )
        return [WalletTransaction.model_validate(d.model_dump()) for d in docs]

    async def run_monthly_rollup(self, month_start: datetime) -> RollupResult:
        if month_start.month == 12:
            month_end = month_start.replace(year=month_start.year + 1, month=1)
        else:
            month_end = month_start.replace(month=month_start.month + 1)
        rows = await WalletTransactionDoc.find(
            WalletTransactionDoc.kind == "gift_sent",
            WalletTransactionDoc.created_at >= month_start,
            WalletTransactionDoc.created_at < month_end,
        ).aggregate([{"$group": {"_id": "$user_id", "spent": {"$sum": "$coins"}}}]).to_list()

        label = month_start.strftime("%Y-%m-01")
        tiers: dict[str, int] = {}
        for row in rows:
            user_id = row["_id"]
            spent = -int(row["spent"])
            tier = vip_tier_for(spent)
            await VipMonthlyStatus.find_one(
                VipMonthlyStatus.user_id == user_id,
                VipMonthlyStatus.month_start == label,
            ).upsert(
                Set({VipMonthlyStatus.tier: tier, VipMonthlyStatus.monthly_spent_coins: spent,
                     VipMonthlyStatus.computed_at: datetime.utcnow()}),
                on_insert=VipMonthlyStatus(user_id=user_id, month_start=label, tier=tier, monthly_spent_coins=spent),
            )
            await Wallet.find_one(Wallet.user_id == user_id).update(Set({Wallet.vip_tier: tier}))
            if tier:
                tiers[tier] = tiers.get(tier, 0) + 1

        spenders = [row["_id"] for row in rows]
        lapsed = [NotIn(Wallet.user_id, spenders), Wallet.vip_tier != None]  # noqa: E711
        cleared = await Wallet.find(*lapsed).count()
        if cleared:
            await Wallet.find(*lapsed).update_many(Set({Wallet.vip_tier: None}))
        return RollupResult(month_start=label, members=len(rows), tiers=tiers, cleared=cleared)

    async def append_audit(
        self,
        user_id: str | None,
        event_type: str,
        entity_type: str,
        entity_id: str | None,
        metadata: dict[str, Any],
        request_id: str | None = None,
    ) -> None:
        await AuditLog(
            user_id=user_id,
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            metadata=metadata,
            request_id=request_id,
        ).insert()
