"""Coin-to-coin gifts (no payment provider involved)."""

import math

from fanpay.core.audit import log_event
from fanpay.core.config import get_settings
from fanpay.core.exceptions import BadRequestError
from fanpay.core.logging import get_logger
from fanpay.core.security import require_idempotency_key
from fanpay.services.announcements import announce_coin_gift_live, announce_coin_gift_post
from fanpay.store.base import InsufficientCoinsError, LedgerStore

log = get_logger(__name__)


def whole_coins(value: float | int | None) -> int:
    """Truncate toward zero; anything that is not a positive whole amount is rejected."""
    if value is None or isinstance(value, bool):
        raise BadRequestError("Invalid coins")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise BadRequestError("Invalid coins")
    if not math.isfinite(number) or number <= 0:
        raise BadRequestError("Invalid coins")
    coins = math.trunc(number)
    if coins <= 0:
        raise BadRequestError("Invalid coins")
    return coins


async def send_coin_gift(
    store: LedgerStore,
    *,
    user_id: str,
    stream_id: str | None,
    post_id: str | None,
    gift_type: str,
    coins: float | int | None,
    idempotency_key: str | None,
) -> dict:
    stream_id = (stream_id or "").strip() or None
    post_id = (post_id or "").strip() or None
    if not stream_id and not post_id:
        raise BadRequestError("Missing stream_id or post_id")
    amount = whole_coins(coins)
    key = require_idempotency_key(idempotency_key)

    # Single-streamer mode: every gift goes to the owner, whatever the client asked for
    recipient_id = get_settings().require_owner()

    try:
        gift = await store.send_gift(
            from_user_id=user_id,
            to_user_id=recipient_id,
            stream_id=stream_id,
            gift_type=(gift_type or "").strip(),
            coins=amount,
            idempotency_key=key,
        )
    except InsufficientCoinsError as e:
        raise BadRequestError(str(e) or "Insufficient coins") from e

    if gift.duplicate:
        log.info("coin_gift_duplicate", gift_id=gift.gift_id, idempotency_key=key)
    else:
        log.info("coin_gift_sent", gift_id=gift.gift_id, coins=amount, stream_id=stream_id, post_id=post_id)
        await log_event(user_id, "coin_gift_sent", "wallet", gift.gift_id, {"coins": amount, "to_user_id": recipient_id})
        if stream_id:
            await announce_coin_gift_live(store, stream_id, user_id, amount, gift.gift_id)
        if post_id:
            await announce_coin_gift_post(store, post_id, user_id, recipient_id, amount, gift.gift_id)

    wallet = await store.get_wallet(user_id)
    return {
        "ok": True,
        "gift": gift.model_dump(mode="json"),
        "wallet": wallet.model_dump(mode="json"),
        "post_id": post_id,
    }
