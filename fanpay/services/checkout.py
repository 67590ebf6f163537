"""Checkout initiation: coin packages (sku) and USD gifts (amount_cents).

A pending ledger record is written before Stripe is contacted; the session
metadata carries its id so the webhook and the finalize call can find it.
"""

from urllib.parse import quote

from fanpay.core.audit import log_event
from fanpay.core.config import get_settings
from fanpay.core.exceptions import (
    AppError,
    BadRequestError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
)
from fanpay.core.logging import get_logger
from fanpay.core.security import generate_idempotency_key, safe_return_path
from fanpay.services.rate_limit import checkout_key, get_checkout_limiter
from fanpay.services.stripe_client import CHECKOUT_SESSION_ID_PLACEHOLDER, CheckoutSession, StripeGateway
from fanpay.store.base import LedgerStore
from fanpay.store.types import GiftContext, GiftRecord, RecordKind, utcnow

log = get_logger(__name__)

WEB_PLATFORM = "web"


def format_usd(cents: int) -> str:
    return f"${cents / 100:.2f}"


async def validate_gift_amount(store: LedgerStore, amount_cents: int) -> None:
    """Presets always pass; anything else needs custom amounts enabled and must sit inside [min, max]."""
    if amount_cents <= 0:
        raise BadRequestError("Invalid amount.")
    ms = await store.get_monetization_settings()
    presets = await store.list_gift_presets()
    if amount_cents in presets:
        return
    if not ms.allow_custom_amount:
        raise BadRequestError("Custom amount is disabled.")
    if amount_cents < ms.min_gift_cents or amount_cents > ms.max_gift_cents:
        raise BadRequestError(
            f"Amount must be between {format_usd(ms.min_gift_cents)} and {format_usd(ms.max_gift_cents)}",
            details={"min_cents": ms.min_gift_cents, "max_cents": ms.max_gift_cents},
        )


async def _open_session(
    store: LedgerStore,
    gateway: StripeGateway,
    record: GiftRecord,
    *,
    product_name: str,
    success_url: str,
    cancel_url: str,
    metadata: dict[str, str],
) -> CheckoutSession:
    try:
        session = await gateway.create_checkout_session(
            amount_cents=record.amount,
            currency=record.currency,
            product_name=product_name,
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
            client_reference_id=record.user_id,
            idempotency_key=record.idempotency_key,
        )
    except AppError:
        # No session exists for this record, so nothing can ever pay it
        await store.mark_gift_canceled(record.id, utcnow())
        raise
    await store.set_gift_session(record.id, session.id)
    log.info(
        "checkout_created",
        record_id=record.id,
        session_id=session.id,
        kind=record.kind.value,
        amount=record.amount,
    )
    await log_event(
        record.user_id,
        "checkout_created",
        record.kind.value,
        record.id,
        {"session_id": session.id, "amount": record.amount, "currency": record.currency},
    )
    return session


async def create_coin_checkout(
    store: LedgerStore,
    gateway: StripeGateway,
    *,
    user_id: str,
    client_ip: str,
    sku: str,
) -> dict:
    get_checkout_limiter().check(checkout_key(user_id, client_ip))

    sku = sku.strip()
    if not sku:
        raise BadRequestError("Missing sku")
    pack = await store.get_coin_package(WEB_PLATFORM, sku)
    if pack is None:
        raise NotFoundError("Package not found")
    if pack.price_usd_cents <= 0:
        log.error("coin_package_invalid", sku=sku, price_usd_cents=pack.price_usd_cents)
        raise AppError("Invalid package price", code="INVALID_PACKAGE")
    if pack.coins <= 0:
        raise AppError("Invalid package coins", code="INVALID_PACKAGE")

    key = generate_idempotency_key("web:coins")
    record = GiftRecord(
        kind=RecordKind.coin_purchase,
        amount=pack.price_usd_cents,
        currency="usd",
        source="web_checkout",
        user_id=user_id,
        sku=pack.sku,
        coins=pack.coins,
        idempotency_key=key,
    )
    await store.insert_gift(record)

    base = get_settings().site_base_url
    query = f"sku={quote(pack.sku)}&session_id={CHECKOUT_SESSION_ID_PLACEHOLDER}"
    metadata = {
        "type": RecordKind.coin_purchase.value,
        "record_id": record.id,
        "user_id": user_id,
        "sku": pack.sku,
        "coins": str(pack.coins),
        "idempotency_key": key,
    }
    session = await _open_session(
        store,
        gateway,
        record,
        product_name=f"Coins ({pack.coins:,})",
        success_url=f"{base}/wallet?coins=success&{query}",
        cancel_url=f"{base}/wallet?coins=cancel&{query}",
        metadata=metadata,
    )
    return {
        "url": session.url,
        "session_id": session.id,
        "idempotency_key": key,
        "record_id": record.id,
    }


async def create_gift_checkout(
    store: LedgerStore,
    gateway: StripeGateway,
    *,
    user_id: str | None,
    client_ip: str,
    amount_cents: int,
    return_path: str | None,
    post_id: str | None,
    anonymous: bool = False,
) -> dict:
    get_checkout_limiter().check(checkout_key(user_id, client_ip))

    ms = await store.get_monetization_settings()
    if not ms.enable_post_gifts:
        raise ForbiddenError("Gifting is currently disabled.")
    if user_id is None and not ms.allow_anonymous_gifts:
        raise UnauthorizedError("Unauthorized")
    await validate_gift_amount(store, amount_cents)
    path = safe_return_path(return_path)

    pid = (post_id or "").strip() or None
    if pid and not await store.post_exists(pid):
        raise NotFoundError("Post not found.")

    key = generate_idempotency_key("web:gift")
    record = GiftRecord(
        kind=RecordKind.gift,
        amount=amount_cents,
        currency=ms.currency.lower(),
        source="post_gift" if pid else "live_gift",
        context=GiftContext.post if pid else GiftContext.live,
        post_id=pid,
        user_id=user_id,
        is_anonymous=anonymous or user_id is None,
        idempotency_key=key,
    )
    await store.insert_gift(record)

    base = get_settings().site_base_url
    sep = "&" if "?" in path else "?"
    tail = f"gift_id={quote(record.id)}"
    if pid:
        tail += f"&post_id={quote(pid)}"
    tail += f"&session_id={CHECKOUT_SESSION_ID_PLACEHOLDER}"
    metadata = {
        "type": RecordKind.gift.value,
        "record_id": record.id,
        "post_id": pid or "",
        "gifter_user_id": user_id or "",
        "idempotency_key": key,
    }
    session = await _open_session(
        store,
        gateway,
        record,
        product_name="Gift",
        success_url=f"{base}{path}{sep}gift=success&{tail}",
        cancel_url=f"{base}{path}{sep}gift=cancel&{tail}",
        metadata=metadata,
    )
    return {
        "url": session.url,
        "session_id": session.id,
        "idempotency_key": key,
        "record_id": record.id,
    }
