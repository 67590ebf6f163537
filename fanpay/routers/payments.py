from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import ORJSONResponse

from fanpay.core.exceptions import AppError
from fanpay.core.logging import get_logger
from fanpay.deps import get_ledger_store
from fanpay.services import reconcile
from fanpay.services.stripe_client import StripeGateway, get_payment_gateway
from fanpay.store.base import LedgerStore

router = APIRouter()
log = get_logger(__name__)


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None, alias="Stripe-Signature"),
    store: LedgerStore = Depends(get_ledger_store),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    """Stripe webhook. Any non-2xx makes Stripe redeliver, so duplicates are expected and answered 200."""
    body = await request.body()
    try:
        event = gateway.verify_event(body, stripe_signature or "")
    except AppError as e:
        log.warning("webhook_rejected", error=e.message)
        return ORJSONResponse({"ok": False, "error": e.message}, status_code=e.status_code)

    try:
        result = await reconcile.handle_event(store, event)
    except Exception:
        log.exception("webhook_handler_failed", event_id=event.get("id"), type=event.get("type"))
        return ORJSONResponse({"ok": False, "error": "Webhook handler failed"}, status_code=500)
    return result.body()
