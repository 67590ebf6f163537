import pytest

from fanpay.store.types import GiftStatus

from conftest import auth_headers, completed_session, sign_payload, stripe_event

pytestmark = pytest.mark.asyncio


async def _checkout(client, user_id="user-1"):
    r = await client.post("/v1/checkout/sessions", json={"sku": "coins_500"}, headers=auth_headers(user_id))
    assert r.status_code == 200
    return r.json()


async def _finalize(client, session_id, user_id="user-1"):
    return await client.post(
        "/v1/checkout/finalize",
        json={"session_id": session_id},
        headers=auth_headers(user_id, origin=False),
    )


async def test_finalize_credits_once_and_is_repeatable(client, store, gateway):
    body = await _checkout(client)
    gateway.mark_paid(body["session_id"], "pi_fin")

    r = await _finalize(client, body["session_id"])
    assert r.status_code == 200
    assert r.json() == {"ok": True, "outcome": "applied", "record_id": body["record_id"]}
    record = store.gifts[body["record_id"]]
    assert record.status == GiftStatus.paid
    assert record.paid_via == "finalize"
    assert record.provider_payment_intent_id == "pi_fin"
    assert store.wallets["user-1"].coins == 500

    calls = gateway.retrieve_calls
    r = await _finalize(client, body["session_id"])
    assert r.status_code == 200
    assert r.json()["duplicate"] is True
    assert gateway.retrieve_calls == calls
    assert store.wallets["user-1"].coins == 500


async def test_webhook_after_finalize_is_noop(client, store, gateway):
    body = await _checkout(client)
    session = gateway.mark_paid(body["session_id"], "pi_race")
    await _finalize(client, body["session_id"])

    payload = stripe_event("evt_late", "checkout.session.completed", completed_session(session, "pi_race"))
    r = await client.post(
        "/v1/stripe/webhook",
        content=payload,
        headers={"Stripe-Signature": sign_payload(payload)},
    )
    assert r.status_code == 200
    assert r.json()["outcome"] == "duplicate"
    assert store.wallets["user-1"].coins == 500
    assert store.gifts[body["record_id"]].paid_via == "finalize"


async def test_finalize_after_webhook_is_noop(client, store, gateway):
    body = await _checkout(client)
    session = gateway.mark_paid(body["session_id"], "pi_race")
    payload = stripe_event("evt_first", "checkout.session.completed", completed_session(session, "pi_race"))
    await client.post("/v1/stripe/webhook", content=payload, headers={"Stripe-Signature": sign_payload(payload)})

    r = await _finalize(client, body["session_id"])
    assert r.status_code == 200
    assert r.json()["outcome"] == "duplicate"
    assert store.wallets["user-1"].coins == 500
    assert store.gifts[body["record_id"]].provider_event_id == "evt_first"


async def test_finalize_unpaid_session(client, store, gateway):
    body = await _checkout(client)
    r = await _finalize(client, body["session_id"])
    assert r.status_code == 400
    assert r.json() == {"ok": False, "error": "Not paid (unpaid)"}
    assert store.gifts[body["record_id"]].status == GiftStatus.pending


@pytest.mark.parametrize("session_id", ["", "   ", "pi_123", "not-a-session"])
async def test_finalize_rejects_malformed_session_id(client, store, session_id):
    r = await _finalize(client, session_id)
    assert r.status_code == 400
    assert r.json()["ok"] is False


async def test_finalize_other_users_session(client, store, gateway):
    body = await _checkout(client, "user-1")
    gateway.mark_paid(body["session_id"])
    r = await _finalize(client, body["session_id"], user_id="user-2")
    assert r.status_code == 403
    assert r.json() == {"ok": False, "error": "Session does not belong to current user"}
    assert store.gifts[body["record_id"]].status == GiftStatus.pending


async def test_finalize_requires_user_for_owned_record(client, store, gateway):
    body = await _checkout(client)
    gateway.mark_paid(body["session_id"])
    r = await client.post("/v1/checkout/finalize", json={"session_id": body["session_id"]})
    assert r.status_code == 401


async def test_finalize_client_reference_mismatch(client, store, gateway):
    body = await _checkout(client)
    session = gateway.mark_paid(body["session_id"])
    session["client_reference_id"] = "someone-else"
    r = await _finalize(client, body["session_id"])
    assert r.status_code == 403
    assert store.gifts[body["record_id"]].status == GiftStatus.pending


async def test_finalize_unknown_checkout(client, store, gateway):
    gateway.sessions["cs_orphan"] = {
        "id": "cs_orphan",
        "payment_status": "paid",
        "client_reference_id": "user-1",
        "metadata": {},
    }
    r = await _finalize(client, "cs_orphan")
    assert r.status_code == 404
    assert r.json() == {"ok": False, "error": "Checkout not found"}


async def test_finalize_canceled_checkout(client, store, gateway):
    body = await _checkout(client)
    session = gateway.sessions[body["session_id"]]
    payload = stripe_event("evt_exp", "checkout.session.expired", dict(session))
    await client.post("/v1/stripe/webhook", content=payload, headers={"Stripe-Signature": sign_payload(payload)})

    gateway.mark_paid(body["session_id"])
    r = await _finalize(client, body["session_id"])
    assert r.status_code == 409
    assert r.json()["ok"] is False
    assert "user-1" not in store.wallets


async def _finalize_intent(client, payment_intent_id, user_id="user-1"):
    return await client.post(
        "/v1/checkout/finalize",
        json={"payment_intent_id": payment_intent_id},
        headers=auth_headers(user_id, origin=False),
    )


async def test_finalize_by_payment_intent(client, store, gateway):
    body = await _checkout(client)
    gateway.mark_paid(body["session_id"], "pi_direct")

    r = await _finalize_intent(client, "pi_direct")
    assert r.status_code == 200
    assert r.json() == {"ok": True, "outcome": "applied", "record_id": body["record_id"]}
    record = store.gifts[body["record_id"]]
    assert record.status == GiftStatus.paid
    assert record.provider_payment_intent_id == "pi_direct"
    assert store.wallets["user-1"].coins == 500

    r = await _finalize_intent(client, "pi_direct")
    assert r.json()["duplicate"] is True
    r = await _finalize(client, body["session_id"])
    assert r.json()["duplicate"] is True
    assert store.wallets["user-1"].coins == 500


async def test_finalize_payment_intent_not_succeeded(client, store, gateway):
    body = await _checkout(client)
    gateway.mark_paid(body["session_id"], "pi_slow")
    gateway.payment_intents["pi_slow"]["status"] = "processing"

    r = await _finalize_intent(client, "pi_slow")
    assert r.status_code == 400
    assert r.json() == {"ok": False, "error": "Not succeeded (processing)"}
    assert store.gifts[body["record_id"]].status == GiftStatus.pending
    assert "user-1" not in store.wallets


@pytest.mark.parametrize("payment_intent_id", ["cs_test_1", "ch_123", "123"])
async def test_finalize_rejects_malformed_payment_intent_id(client, store, gateway, payment_intent_id):
    r = await _finalize_intent(client, payment_intent_id)
    assert r.status_code == 400
    assert r.json() == {"ok": False, "error": "Invalid payment_intent_id"}
    assert gateway.retrieve_calls == 0


async def test_finalize_needs_session_or_payment_intent(client, store):
    r = await client.post("/v1/checkout/finalize", json={}, headers=auth_headers("user-1", origin=False))
    assert r.status_code == 400
    assert r.json() == {"ok": False, "error": "Missing session_id or payment_intent_id"}


async def test_finalize_payment_intent_of_other_user(client, store, gateway):
    body = await _checkout(client, "user-1")
    gateway.mark_paid(body["session_id"], "pi_theirs")
    r = await _finalize_intent(client, "pi_theirs", user_id="user-2")
    assert r.status_code == 403
    assert store.gifts[body["record_id"]].status == GiftStatus.pending


async def test_finalize_payment_intent_without_record(client, store, gateway):
    gateway.payment_intents["pi_orphan"] = {"id": "pi_orphan", "status": "succeeded", "metadata": {}}
    r = await _finalize_intent(client, "pi_orphan")
    assert r.status_code == 404
    assert r.json() == {"ok": False, "error": "Checkout not found"}


async def test_finalize_unexpected_failure_keeps_error_shape(client, store, gateway, monkeypatch):
    body = await _checkout(client)
    gateway.mark_paid(body["session_id"])

    async def broken(*args, **kwargs):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(store, "mark_gift_paid", broken)
    r = await _finalize(client, body["session_id"])
    assert r.status_code == 500
    assert r.json() == {"ok": False, "error": "Finalize failed"}
