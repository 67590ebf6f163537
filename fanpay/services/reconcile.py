"""Apply Stripe outcomes to the gift ledger exactly once.

The webhook (server-pushed) and the finalize call (client-pulled) both end in
``apply_paid``; whichever arrives first wins the status-guarded update and the
other becomes a no-op. Coin credit goes through the store's idempotency-keyed
RPC before the status flips, so a retry after a partial failure never
double-credits.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from fanpay.core.audit import log_event
from fanpay.core.exceptions import BadRequestError, ForbiddenError, NotFoundError, UnauthorizedError
from fanpay.core.logging import get_logger
from fanpay.services.announcements import announce_paid_gift
from fanpay.services.stripe_client import StripeGateway, payment_intent_id
from fanpay.store.base import LedgerStore
from fanpay.store.types import GiftRecord, GiftStatus, RecordKind, utcnow

log = get_logger(__name__)

COMPLETED_EVENTS = frozenset({"checkout.session.completed", "checkout.session.async_payment_succeeded"})
EXPIRED_EVENTS = frozenset({"checkout.session.expired", "checkout.session.async_payment_failed"})
PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"


class Outcome(str, Enum):
    applied = "applied"
    duplicate = "duplicate"
    canceled = "canceled"
    awaiting_payment = "awaiting_payment"
    ignored = "ignored"


@dataclass
class ReconcileResult:
    outcome: Outcome
    record_id: str | None = None

    def body(self) -> dict[str, Any]:
        out: dict[str, Any] = {"ok": True, "outcome": self.outcome.value}
        if self.record_id:
            out["record_id"] = self.record_id
        if self.outcome == Outcome.duplicate:
            out["duplicate"] = True
        return out


def _metadata(obj: dict[str, Any]) -> dict[str, Any]:
    meta = obj.get("metadata")
    return meta if isinstance(meta, dict) else {}


async def _find_record(store: LedgerStore, obj: dict[str, Any], session_id: str | None) -> GiftRecord | None:
    record_id = str(_metadata(obj).get("record_id") or "").strip()
    if record_id:
        record = await store.get_gift(record_id)
        if record:
            return record
    if session_id:
        return await store.get_gift_by_session(session_id)
    return None


async def apply_paid(
    store: LedgerStore,
    record: GiftRecord,
    *,
    event_id: str | None,
    payment_intent: str | None,
    amount_received: int | None,
    via: str,
) -> ReconcileResult:
    if event_id and record.provider_event_id == event_id:
        log.info("webhook_duplicate", record_id=record.id, event_id=event_id)
        return ReconcileResult(Outcome.duplicate, record.id)
    if record.status == GiftStatus.paid:
        log.info("gift_already_paid", record_id=record.id, via=via, paid_via=record.paid_via)
        return ReconcileResult(Outcome.duplicate, record.id)
    if record.status == GiftStatus.canceled:
        log.warning("gift_paid_after_cancel", record_id=record.id, via=via, event_id=event_id)
        return ReconcileResult(Outcome.canceled, record.id)

    if amount_received is not None and amount_received != record.amount:
        log.warning("gift_amount_mismatch", record_id=record.id, expected=record.amount, received=amount_received)

    if record.kind == RecordKind.coin_purchase:
        if not record.user_id or not record.coins:
            log.error("coin_purchase_record_invalid", record_id=record.id)
            return ReconcileResult(Outcome.ignored, record.id)
        result = await store.finalize_coin_purchase(
            provider="stripe",
            provider_order_id=payment_intent or record.provider_session_id or record.id,
            user_id=record.user_id,
            coins=record.coins,
            amount_usd_cents=amount_received or record.amount,
            idempotency_key=record.idempotency_key or f"stripe:record:{record.id}",
        )
        log.info(
            "coins_credited",
            record_id=record.id,
            user_id=record.user_id,
            coins=record.coins,
            duplicate=result.duplicate,
            balance=result.balance,
        )

    updated = await store.mark_gift_paid(
        record.id,
        event_id=event_id,
        payment_intent_id=payment_intent,
        paid_at=utcnow(),
        via=via,
    )
    if updated is None:
        # Lost the race to the other path
        log.info("gift_already_paid", record_id=record.id, via=via, raced=True)
        return ReconcileResult(Outcome.duplicate, record.id)

    log.info("gift_paid", record_id=record.id, kind=record.kind.value, via=via, event_id=event_id)
    await log_event(
        record.user_id,
        "gift_paid",
        record.kind.value,
        record.id,
        {"via": via, "event_id": event_id, "payment_intent_id": payment_intent, "amount": record.amount},
    )
    await announce_paid_gift(store, updated)
    return ReconcileResult(Outcome.applied, record.id)


async def cancel_pending(store: LedgerStore, record: GiftRecord, reason: str) -> ReconcileResult:
    if not await store.mark_gift_canceled(record.id, utcnow()):
        log.info("gift_cancel_skipped", record_id=record.id, status=record.status.value, reason=reason)
        return ReconcileResult(Outcome.ignored, record.id)
    log.info("gift_canceled", record_id=record.id, reason=reason)
    await log_event(record.user_id, "gift_canceled", record.kind.value, record.id, {"reason": reason})
    return ReconcileResult(Outcome.canceled, record.id)


async def handle_event(store: LedgerStore, event: dict[str, Any]) -> ReconcileResult:
    """Dispatch a verified Stripe event. Unknown types are acknowledged and ignored."""
    event_type = str(event.get("type") or "")
    event_id = str(event.get("id") or "") or None
    data = event.get("data") if isinstance(event.get("data"), dict) else {}
    obj = data.get("object") if isinstance(data.get("object"), dict) else {}
    log.info("webhook_received", type=event_type, event_id=event_id)

    if event_type in COMPLETED_EVENTS:
        session_id = str(obj.get("id") or "") or None
        record = await _find_record(store, obj, session_id)
        if record is None:
            log.warning("webhook_record_missing", event_id=event_id, session_id=session_id)
            return ReconcileResult(Outcome.ignored)
        if obj.get("payment_status") != "paid":
            log.info("webhook_awaiting_payment", record_id=record.id, payment_status=obj.get("payment_status"))
            return ReconcileResult(Outcome.awaiting_payment, record.id)
        return await apply_paid(
            store,
            record,
            event_id=event_id,
            payment_intent=payment_intent_id(obj.get("payment_intent")),
            amount_received=obj.get("amount_total"),
            via="webhook",
        )

    if event_type == PAYMENT_INTENT_SUCCEEDED:
        record = await _find_record(store, obj, None)
        if record is None:
            return ReconcileResult(Outcome.ignored)
        return await apply_paid(
            store,
            record,
            event_id=event_id,
            payment_intent=str(obj.get("id") or "") or None,
            amount_received=obj.get("amount_received") or obj.get("amount"),
            via="webhook",
        )

    if event_type in EXPIRED_EVENTS:
        record = await _find_record(store, obj, str(obj.get("id") or "") or None)
        if record is None:
            return ReconcileResult(Outcome.ignored)
        return await cancel_pending(store, record, event_type)

    return ReconcileResult(Outcome.ignored)


async def finalize_session(
    store: LedgerStore,
    gateway: StripeGateway,
    *,
    user_id: str | None,
    session_id: str,
) -> ReconcileResult:
    """Client fallback for when the return redirect beats the webhook. Safe to call repeatedly."""
    sid = (session_id or "").strip()
    if not sid:
        raise BadRequestError("Missing session_id")
    if not sid.startswith("cs_"):
        raise BadRequestError("Invalid session_id")

    record = await store.get_gift_by_session(sid)
    if record is not None:
        _check_owner(record, user_id)
        if record.status == GiftStatus.paid:
            return ReconcileResult(Outcome.duplicate, record.id)

    log.info("finalize_start", session_id=sid)
    session = await gateway.retrieve_checkout_session(sid)
    if record is None:
        record = await _find_record(store, session, None)
        if record is None:
            raise NotFoundError("Checkout not found")
        _check_owner(record, user_id)

    client_ref = str(session.get("client_reference_id") or "").strip()
    if client_ref and client_ref != user_id:
        raise ForbiddenError("Session does not belong to current user")

    payment_status = str(session.get("payment_status") or "").strip()
    if payment_status != "paid":
        status = payment_status or str(session.get("status") or "") or "unknown"
        raise BadRequestError(f"Not paid ({status})")

    result = await apply_paid(
        store,
        record,
        event_id=None,
        payment_intent=payment_intent_id(session.get("payment_intent")),
        amount_received=session.get("amount_total"),
        via="finalize",
    )
    log.info("finalize_ok", session_id=sid, record_id=record.id, outcome=result.outcome.value)
    return result


async def finalize_payment_intent(
    store: LedgerStore,
    gateway: StripeGateway,
    *,
    user_id: str | None,
    payment_intent_id: str,
) -> ReconcileResult:
    """Finalize from a PaymentIntent id; the record is found through the intent's metadata."""
    pid = (payment_intent_id or "").strip()
    if not pid.startswith("pi_"):
        raise BadRequestError("Invalid payment_intent_id")

    log.info("finalize_start", payment_intent_id=pid)
    intent = await gateway.retrieve_payment_intent(pid)
    status = str(intent.get("status") or "") or "unknown"
    if status != "succeeded":
        raise BadRequestError(f"Not succeeded ({status})")

    record = await _find_record(store, intent, None)
    if record is None:
        raise NotFoundError("Checkout not found")
    _check_owner(record, user_id)
    meta_user = str(_metadata(intent).get("user_id") or "").strip()
    if meta_user and meta_user != user_id:
        raise ForbiddenError("Session does not belong to current user")

    result = await apply_paid(
        store,
        record,
        event_id=None,
        payment_intent=pid,
        amount_received=intent.get("amount_received"),
        via="finalize",
    )
    log.info("finalize_ok", payment_intent_id=pid, record_id=record.id, outcome=result.outcome.value)
    return result


def _check_owner(record: GiftRecord, user_id: str | None) -> None:
    if record.user_id is None:
        return
    if user_id is None:
        raise UnauthorizedError("Unauthorized")
    if record.user_id != user_id:
        raise ForbiddenError("Session does not belong to current user")
