from fastapi import APIRouter, Depends, Request
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel, Field

from fanpay.core.exceptions import AppError, BadRequestError, UnauthorizedError
from fanpay.core.logging import get_logger
from fanpay.deps import (
    CurrentUser,
    client_ip,
    get_ledger_store,
    get_optional_user,
    require_same_origin,
)
from fanpay.services import checkout as checkout_service
from fanpay.services import reconcile
from fanpay.services.stripe_client import StripeGateway, get_payment_gateway
from fanpay.store.base import LedgerStore

router = APIRouter()
log = get_logger(__name__)


class CreateCheckoutRequest(BaseModel):
    sku: str | None = None  # coin package
    amount_cents: int | None = None  # gift, e.g. 500 for $5.00
    return_path: str | None = None
    post_id: str | None = None
    anonymous: bool = False


class FinalizeRequest(BaseModel):
    session_id: str = Field(default="")
    payment_intent_id: str | None = None


@router.post("/sessions", dependencies=[Depends(require_same_origin)])
async def create_checkout_session(
    body: CreateCheckoutRequest,
    request: Request,
    user: CurrentUser | None = Depends(get_optional_user),
    store: LedgerStore = Depends(get_ledger_store),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    """Open a Stripe Checkout session for a coin package or a gift; returns url, session_id, idempotency_key."""
    ip = client_ip(request)
    if body.sku is not None and body.amount_cents is not None:
        raise BadRequestError("Send either sku or amount_cents, not both")
    if body.sku is not None:
        if user is None:
            raise UnauthorizedError("Unauthorized")
        return await checkout_service.create_coin_checkout(store, gateway, user_id=user.id, client_ip=ip, sku=body.sku)
    if body.amount_cents is None:
        raise BadRequestError("Missing sku or amount_cents")
    return await checkout_service.create_gift_checkout(
        store,
        gateway,
        user_id=user.id if user else None,
        client_ip=ip,
        amount_cents=body.amount_cents,
        return_path=body.return_path,
        post_id=body.post_id,
        anonymous=body.anonymous,
    )


@router.post("/finalize")
async def finalize_checkout(
    body: FinalizeRequest,
    user: CurrentUser | None = Depends(get_optional_user),
    store: LedgerStore = Depends(get_ledger_store),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    """Client fallback after the success redirect; idempotent with the webhook.

    Takes the Checkout ``session_id`` or, for flows that only know the
    PaymentIntent, a ``payment_intent_id``. The session wins when both are sent.
    """
    user_id = user.id if user else None
    session_id = (body.session_id or "").strip()
    intent_id = (body.payment_intent_id or "").strip()
    try:
        if session_id:
            result = await reconcile.finalize_session(store, gateway, user_id=user_id, session_id=session_id)
        elif intent_id:
            result = await reconcile.finalize_payment_intent(
                store, gateway, user_id=user_id, payment_intent_id=intent_id
            )
        else:
            raise BadRequestError("Missing session_id or payment_intent_id")
    except AppError as e:
        return ORJSONResponse({"ok": False, "error": e.message}, status_code=e.status_code)
    except Exception:
        log.exception("finalize_failed", session_id=session_id or None, payment_intent_id=intent_id or None)
        return ORJSONResponse({"ok": False, "error": "Finalize failed"}, status_code=500)
    if result.outcome == reconcile.Outcome.canceled:
        return ORJSONResponse({"ok": False, "error": "Checkout was canceled"}, status_code=409)
    return result.body()
