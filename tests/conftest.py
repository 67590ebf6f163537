import hashlib
import hmac
import os
import time
from typing import Any, AsyncGenerator

import orjson
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# In-process store and fixed payment config for every test
os.environ["STORE_BACKEND"] = "memory"
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ["STRIPE_SECRET_KEY"] = "sk_test_fanpay"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_fanpay"
os.environ["SITE_URL"] = "https://fans.example"
os.environ["OWNER_PROFILE_ID"] = "owner-1"
os.environ["CRON_SECRET"] = "cron-secret"

from fanpay.core.exceptions import BadRequestError  # noqa: E402
from fanpay.core.security import create_session_token  # noqa: E402
from fanpay.services.rate_limit import get_checkout_limiter  # noqa: E402
from fanpay.services.stripe_client import CheckoutSession, StripeGateway, get_payment_gateway  # noqa: E402
from fanpay.store.base import get_store, reset_store  # noqa: E402
from fanpay.store.types import CoinPackage  # noqa: E402

SITE = "https://fans.example"
WEBHOOK_SECRET = "whsec_test_fanpay"


class FakeGateway(StripeGateway):
    """Stripe without the network. Signature verification stays real."""

    def __init__(self, store=None):
        super().__init__("sk_test_fanpay", WEBHOOK_SECRET)
        self.store = store
        self.created: list[dict[str, Any]] = []
        self.sessions: dict[str, dict[str, Any]] = {}
        self.fail_create: Exception | None = None
        self.payment_intents: dict[str, dict[str, Any]] = {}
        self.retrieve_calls = 0

    async def create_checkout_session(self, **kwargs) -> CheckoutSession:
        call = dict(kwargs)
        if self.store is not None:
            record = self.store.gifts.get(kwargs["metadata"]["record_id"])
            call["record_status_at_call"] = record.status.value if record else None
        self.created.append(call)
        if self.fail_create is not None:
            raise self.fail_create
        session_id = f"cs_test_{len(self.created)}"
        self.sessions[session_id] = {
            "id": session_id,
            "object": "checkout.session",
            "status": "open",
            "payment_status": "unpaid",
            "amount_total": kwargs["amount_cents"],
            "client_reference_id": kwargs.get("client_reference_id"),
            "metadata": dict(kwargs["metadata"]),
            "payment_intent": None,
        }
        return CheckoutSession(id=session_id, url=f"https://checkout.stripe.test/c/{session_id}")

    def mark_paid(self, session_id: str, payment_intent: str | None = None) -> dict[str, Any]:
        session = self.sessions[session_id]
        session["status"] = "complete"
        session["payment_status"] = "paid"
        intent = {
            "id": payment_intent or f"pi_{session_id}",
            "object": "payment_intent",
            "status": "succeeded",
            "amount_received": session["amount_total"],
            "metadata": dict(session["metadata"]),
        }
        self.payment_intents[intent["id"]] = intent
        session["payment_intent"] = intent
        return session

    async def retrieve_checkout_session(self, session_id: str) -> dict[str, Any]:
        self.retrieve_calls += 1
        return self.sessions[session_id]

    async def retrieve_payment_intent(self, payment_intent_id: str) -> dict[str, Any]:
        self.retrieve_calls += 1
        if payment_intent_id not in self.payment_intents:
            raise BadRequestError("Invalid payment_intent_id")
        return self.payment_intents[payment_intent_id]


def auth_headers(user_id: str, origin: bool = True) -> dict[str, str]:
    headers = {"Authorization": f"Bearer {create_session_token({'user_id': user_id})}"}
    if origin:
        headers["Origin"] = SITE
    return headers


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.".encode() + payload
    sig = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"


def stripe_event(event_id: str, event_type: str, obj: dict[str, Any]) -> bytes:
    return orjson.dumps(
        {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "data": {"object": obj},
        }
    )


def completed_session(session: dict[str, Any], payment_intent: str = "pi_123") -> dict[str, Any]:
    out = dict(session)
    out["status"] = "complete"
    out["payment_status"] = "paid"
    out["payment_intent"] = payment_intent
    return out


@pytest.fixture
def store():
    reset_store()
    get_checkout_limiter().reset()
    s = get_store()
    s.add_coin_package(CoinPackage(sku="coins_500", price_usd_cents=499, coins=500))
    s.add_coin_package(CoinPackage(sku="coins_retired", price_usd_cents=999, coins=1100, is_active=False))
    s.add_post("post-1")
    s.set_display_name("user-1", "Jess")
    yield s
    reset_store()


@pytest.fixture
def gateway(store):
    from fanpay.main import app
    gw = FakeGateway(store)
    app.dependency_overrides[get_payment_gateway] = lambda: gw
    yield gw
    app.dependency_overrides.pop(get_payment_gateway, None)


@pytest_asyncio.fixture
async def client(store, gateway) -> AsyncGenerator[AsyncClient, None]:
    from fanpay.main import app
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url=SITE,
    ) as ac:
        yield ac
