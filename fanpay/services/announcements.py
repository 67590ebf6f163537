"""Best-effort community side effects of a gift: live chat rows and feed comments.

Every function here swallows and logs its own failures; the ledger mutation
that triggered it has already been committed.
"""

from fanpay.core.logging import get_logger
from fanpay.store.base import LedgerStore
from fanpay.store.types import GiftContext, GiftRecord, GiftStatus, RecordKind, utcnow

log = get_logger(__name__)

ANONYMOUS_NAME = "Anonymous"


def format_amount(record: GiftRecord) -> str:
    if record.currency == "coins":
        return f"{record.amount:,} coins"
    return f"${record.amount / 100:.2f}"


async def gifter_name(store: LedgerStore, user_id: str | None, anonymous: bool = False) -> str:
    if anonymous or not user_id:
        return ANONYMOUS_NAME
    name = await store.get_display_name(user_id)
    return (name or "").strip() or ANONYMOUS_NAME


async def announce_paid_gift(store: LedgerStore, record: GiftRecord) -> None:
    """System chat message in the active live session for a paid, non-post gift."""
    if record.kind != RecordKind.gift or record.context != GiftContext.live:
        return
    try:
        live = await store.get_live_state()
        if not live.is_live or not live.live_id:
            log.info("gift_announce_skipped", gift_id=record.id, reason="not_live")
            return
        name = await gifter_name(store, record.user_id, record.is_anonymous)
        await store.insert_live_chat(
            live.live_id,
            None,
            f"🎁 {name} gifted {format_amount(record)}!",
            {"event": "gift", "gift_id": record.id, "amount_cents": record.amount, "currency": record.currency},
        )
    except Exception:
        log.exception("gift_side_effect_failed", gift_id=record.id, effect="live_chat")


async def announce_coin_gift_live(store: LedgerStore, stream_id: str, user_id: str, coins: int, gift_id: str) -> None:
    try:
        name = await gifter_name(store, user_id)
        await store.insert_live_chat(
            stream_id,
            user_id,
            f"🎁 {name} gifted {coins:,} coins!",
            {"event": "gift", "gift_id": gift_id, "coins": coins},
        )
    except Exception:
        log.exception("gift_side_effect_failed", gift_id=gift_id, effect="live_chat")


async def announce_coin_gift_post(
    store: LedgerStore,
    post_id: str,
    user_id: str,
    recipient_id: str,
    coins: int,
    gift_id: str,
) -> None:
    """Gift comment on the post plus a mirrored, already-paid ledger record."""
    try:
        name = await gifter_name(store, user_id)
        await store.insert_feed_comment(post_id, user_id, f"🎁 {name} gifted {coins:,} coins!", is_gift=True)
        now = utcnow()
        await store.insert_gift(
            GiftRecord(
                kind=RecordKind.gift,
                amount=coins,
                currency="coins",
                source="coin_gift",
                context=GiftContext.post,
                post_id=post_id,
                user_id=user_id,
                recipient_user_id=recipient_id,
                provider="coins",
                status=GiftStatus.paid,
                idempotency_key=f"coins:{gift_id}",
                paid_via="coins",
                created_at=now,
                paid_at=now,
            )
        )
    except Exception:
        log.exception("gift_side_effect_failed", gift_id=gift_id, effect="post_comment")
