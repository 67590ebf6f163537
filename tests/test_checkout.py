"""Checkout initiation over HTTP against the in-memory store."""

import pytest

from fanpay.core.exceptions import UpstreamError
from fanpay.store.types import GiftStatus, RecordKind

from conftest import SITE, auth_headers

pytestmark = pytest.mark.asyncio


async def test_coin_checkout_writes_pending_record_before_provider_call(client, store, gateway):
    r = await client.post("/v1/checkout/sessions", json={"sku": "coins_500"}, headers=auth_headers("user-1"))
    assert r.status_code == 200
    body = r.json()
    assert body["url"].startswith("https://checkout.stripe.test/")
    assert body["session_id"] == "cs_test_1"
    assert body["idempotency_key"].startswith("web:coins:")

    assert len(gateway.created) == 1
    call = gateway.created[0]
    assert call["record_status_at_call"] == "pending"
    assert call["amount_cents"] == 499
    assert call["client_reference_id"] == "user-1"
    assert call["idempotency_key"] == body["idempotency_key"]
    assert call["metadata"]["record_id"] == body["record_id"]
    assert call["metadata"]["coins"] == "500"
    assert call["success_url"] == f"{SITE}/wallet?coins=success&sku=coins_500&session_id={{CHECKOUT_SESSION_ID}}"

    record = store.gifts[body["record_id"]]
    assert record.kind == RecordKind.coin_purchase
    assert record.status == GiftStatus.pending
    assert record.provider_session_id == "cs_test_1"
    assert record.coins == 500


async def test_coin_checkout_unknown_or_inactive_sku(client, store, gateway):
    for sku in ("coins_nope", "coins_retired"):
        r = await client.post("/v1/checkout/sessions", json={"sku": sku}, headers=auth_headers("user-1"))
        assert r.status_code == 404
        assert r.json()["error"]["message"] == "Package not found"
    assert store.gifts == {}
    assert gateway.created == []


async def test_coin_checkout_requires_user(client, store):
    r = await client.post("/v1/checkout/sessions", json={"sku": "coins_500"}, headers={"Origin": SITE})
    assert r.status_code == 401
    assert store.gifts == {}


async def test_foreign_origin_rejected_without_side_effects(client, store, gateway):
    headers = auth_headers("user-1", origin=False)
    headers["Origin"] = "https://evil.example"
    r = await client.post("/v1/checkout/sessions", json={"sku": "coins_500"}, headers=headers)
    assert r.status_code == 403
    assert store.gifts == {}
    assert gateway.created == []


async def test_missing_origin_rejected(client, store):
    r = await client.post(
        "/v1/checkout/sessions",
        json={"sku": "coins_500"},
        headers=auth_headers("user-1", origin=False),
    )
    assert r.status_code == 403


async def test_referer_under_site_is_accepted(client, gateway):
    headers = auth_headers("user-1", origin=False)
    headers["Referer"] = f"{SITE}/wallet"
    r = await client.post("/v1/checkout/sessions", json={"sku": "coins_500"}, headers=headers)
    assert r.status_code == 200


async def test_sku_and_amount_together_rejected(client, store):
    r = await client.post(
        "/v1/checkout/sessions",
        json={"sku": "coins_500", "amount_cents": 500},
        headers=auth_headers("user-1"),
    )
    assert r.status_code == 400
    assert store.gifts == {}


async def test_gift_checkout_post_context(client, store, gateway):
    r = await client.post(
        "/v1/checkout/sessions",
        json={"amount_cents": 500, "post_id": "post-1", "return_path": "/community"},
        headers=auth_headers("user-1"),
    )
    assert r.status_code == 200
    record = store.gifts[r.json()["record_id"]]
    assert record.kind == RecordKind.gift
    assert record.context.value == "post"
    assert record.amount == 500
    assert record.currency == "usd"
    call = gateway.created[0]
    assert call["success_url"] == (
        f"{SITE}/community?gift=success&gift_id={record.id}&post_id=post-1&session_id={{CHECKOUT_SESSION_ID}}"
    )
    assert call["cancel_url"].startswith(f"{SITE}/community?gift=cancel&")


async def test_gift_checkout_without_post_is_live_context(client, store):
    r = await client.post(
        "/v1/checkout/sessions",
        json={"amount_cents": 300, "return_path": "/live?tab=chat"},
        headers=auth_headers("user-1"),
    )
    assert r.status_code == 200
    record = store.gifts[r.json()["record_id"]]
    assert record.context.value == "live"
    assert record.post_id is None


async def test_gift_checkout_unknown_post(client, store):
    r = await client.post(
        "/v1/checkout/sessions",
        json={"amount_cents": 500, "post_id": "missing"},
        headers=auth_headers("user-1"),
    )
    assert r.status_code == 404
    assert store.gifts == {}


@pytest.mark.parametrize("amount", [50, 99, 20001, 99999900])
async def test_gift_amount_outside_bounds(client, store, amount):
    r = await client.post("/v1/checkout/sessions", json={"amount_cents": amount}, headers=auth_headers("user-1"))
    assert r.status_code == 400
    err = r.json()["error"]
    assert err["message"] == "Amount must be between $1.00 and $200.00"
    assert err["details"] == {"min_cents": 100, "max_cents": 20000}
    assert store.gifts == {}


async def test_gift_amount_zero_or_negative(client):
    for amount in (0, -500):
        r = await client.post("/v1/checkout/sessions", json={"amount_cents": amount}, headers=auth_headers("user-1"))
        assert r.status_code == 400
        assert r.json()["error"]["message"] == "Invalid amount."


async def test_custom_amount_disabled_allows_presets_only(client, store):
    store.monetization.allow_custom_amount = False
    r = await client.post("/v1/checkout/sessions", json={"amount_cents": 700}, headers=auth_headers("user-1"))
    assert r.status_code == 400
    assert r.json()["error"]["message"] == "Custom amount is disabled."
    r = await client.post("/v1/checkout/sessions", json={"amount_cents": 1000}, headers=auth_headers("user-1"))
    assert r.status_code == 200


async def test_gifting_disabled(client, store):
    store.monetization.enable_post_gifts = False
    r = await client.post("/v1/checkout/sessions", json={"amount_cents": 500}, headers=auth_headers("user-1"))
    assert r.status_code == 403
    assert r.json()["error"]["message"] == "Gifting is currently disabled."


async def test_anonymous_gift_needs_policy(client, store):
    r = await client.post("/v1/checkout/sessions", json={"amount_cents": 500}, headers={"Origin": SITE})
    assert r.status_code == 401

    store.monetization.allow_anonymous_gifts = True
    r = await client.post("/v1/checkout/sessions", json={"amount_cents": 500}, headers={"Origin": SITE})
    assert r.status_code == 200
    record = store.gifts[r.json()["record_id"]]
    assert record.user_id is None
    assert record.is_anonymous


@pytest.mark.parametrize(
    "path",
    ["//evil.example/x", "https://evil.example", "community", "/\\evil.example", "/a\nb"],
)
async def test_return_path_must_be_relative(client, store, path):
    r = await client.post(
        "/v1/checkout/sessions",
        json={"amount_cents": 500, "return_path": path},
        headers=auth_headers("user-1"),
    )
    assert r.status_code == 400
    assert r.json()["error"]["message"] == "Invalid return path"
    assert store.gifts == {}


async def test_provider_failure_cancels_pending_record(client, store, gateway):
    gateway.fail_create = UpstreamError("Payment provider error")
    r = await client.post("/v1/checkout/sessions", json={"sku": "coins_500"}, headers=auth_headers("user-1"))
    assert r.status_code == 502
    (record,) = store.gifts.values()
    assert record.status == GiftStatus.canceled
    assert record.provider_session_id is None


async def test_unconfigured_payments_fail_fast(client, store, monkeypatch):
    from fanpay.core.config import get_settings
    from fanpay.main import app
    from fanpay.services.stripe_client import get_payment_gateway

    app.dependency_overrides.pop(get_payment_gateway, None)
    monkeypatch.setattr(get_settings(), "stripe_secret_key", "")
    r = await client.post("/v1/checkout/sessions", json={"sku": "coins_500"}, headers=auth_headers("user-1"))
    assert r.status_code == 500
    assert r.json()["error"]["message"] == "Missing STRIPE_SECRET_KEY"
    assert store.gifts == {}
