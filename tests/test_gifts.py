"""Coin gifts: idempotent wallet debit, owner as recipient, community side effects."""

import pytest

from fanpay.core.exceptions import BadRequestError
from fanpay.services.gifts import whole_coins
from fanpay.store.types import GiftStatus

from conftest import auth_headers


async def _send(client, user_id="user-1", **body):
    payload = {"gift_type": "rose", "idempotency_key": "gift-key-1", **body}
    return await client.post("/v1/gifts/send", json=payload, headers=auth_headers(user_id))


async def test_same_key_debits_once(client, store):
    store.credit_coins("user-1", 1000)
    first = await _send(client, stream_id="live-1", coins=100)
    second = await _send(client, stream_id="live-1", coins=100)
    assert first.status_code == 200
    assert second.status_code == 200
    assert first.json()["wallet"]["coins"] == 900
    assert second.json()["wallet"]["coins"] == 900
    assert second.json()["gift"]["duplicate"] is True
    assert second.json()["gift"]["gift_id"] == first.json()["gift"]["gift_id"]
    assert store.wallets["owner-1"].coins == 100
    assert len(store.live_chat) == 1


async def test_recipient_is_always_owner(client, store):
    store.credit_coins("user-1", 500)
    r = await _send(client, stream_id="live-1", coins=50, to_user_id="user-9")
    assert r.status_code == 200
    assert r.json()["gift"]["to_user_id"] == "owner-1"
    assert "user-9" not in store.wallets
    assert store.wallets["owner-1"].received_coins == 50


async def test_fractional_coins_are_truncated(client, store):
    store.credit_coins("user-1", 500)
    r = await _send(client, stream_id="live-1", coins=10.9)
    assert r.status_code == 200
    assert r.json()["gift"]["coins"] == 10
    assert store.wallets["user-1"].coins == 490


@pytest.mark.parametrize("coins", [0, 0.5, -3, None])
async def test_invalid_coin_amounts(client, store, coins):
    store.credit_coins("user-1", 500)
    r = await _send(client, stream_id="live-1", coins=coins)
    assert r.status_code == 400
    assert r.json()["error"]["message"] == "Invalid coins"
    assert store.wallets["user-1"].coins == 500


def test_whole_coins():
    assert whole_coins(7) == 7
    assert whole_coins(7.99) == 7
    with pytest.raises(BadRequestError):
        whole_coins(float("inf"))
    with pytest.raises(BadRequestError):
        whole_coins(True)


async def test_missing_target(client, store):
    store.credit_coins("user-1", 500)
    r = await _send(client, coins=10)
    assert r.status_code == 400
    assert r.json()["error"]["message"] == "Missing stream_id or post_id"


async def test_missing_idempotency_key(client, store):
    store.credit_coins("user-1", 500)
    r = await _send(client, stream_id="live-1", coins=10, idempotency_key="  ")
    assert r.status_code == 400
    assert r.json()["error"]["message"] == "Missing idempotency_key"


async def test_insufficient_coins(client, store):
    store.credit_coins("user-1", 5)
    r = await _send(client, stream_id="live-1", coins=10)
    assert r.status_code == 400
    assert store.wallets["user-1"].coins == 5
    assert store.live_chat == []


async def test_requires_login(client, store):
    r = await client.post("/v1/gifts/send", json={"stream_id": "live-1", "coins": 10, "idempotency_key": "k"})
    assert r.status_code == 401


async def test_post_gift_adds_comment_and_mirror_record(client, store):
    store.credit_coins("user-1", 2000)
    r = await _send(client, post_id="post-1", coins=1500)
    assert r.status_code == 200
    assert r.json()["post_id"] == "post-1"

    assert len(store.feed_comments) == 1
    comment = store.feed_comments[0]
    assert comment["post_id"] == "post-1"
    assert comment["content"] == "🎁 Jess gifted 1,500 coins!"
    assert comment["is_gift"] is True

    (mirror,) = store.gifts.values()
    assert mirror.status == GiftStatus.paid
    assert mirror.currency == "coins"
    assert mirror.amount == 1500
    assert mirror.recipient_user_id == "owner-1"

    await _send(client, post_id="post-1", coins=1500)
    assert len(store.feed_comments) == 1
    assert len(store.gifts) == 1


async def test_side_effect_failure_keeps_gift(client, store, monkeypatch):
    store.credit_coins("user-1", 500)

    async def broken(*args, **kwargs):
        raise RuntimeError("comments down")

    monkeypatch.setattr(store, "insert_feed_comment", broken)
    r = await _send(client, post_id="post-1", coins=100)
    assert r.status_code == 200
    assert store.wallets["user-1"].coins == 400
    assert store.wallets["owner-1"].coins == 100


async def test_gift_list_and_wallet_transactions(client, store):
    store.credit_coins("user-1", 500)
    await _send(client, post_id="post-1", coins=100)

    r = await client.get("/v1/gifts", headers=auth_headers("user-1"))
    assert r.status_code == 200
    items = r.json()["items"]
    assert len(items) == 1
    assert items[0]["currency"] == "coins"
    assert "idempotency_key" not in items[0]

    r = await client.get("/v1/wallet/transactions", headers=auth_headers("user-1"))
    assert r.status_code == 200
    page = r.json()
    assert page["limit"] == 50
    assert [t["kind"] for t in page["items"]] == ["gift_sent"]
    assert page["items"][0]["coins"] == -100
    assert page["items"][0]["balance_after"] == 400


async def test_transactions_page_reports_next_offset(client, store):
    store.credit_coins("user-1", 500)
    for i in range(3):
        await _send(client, stream_id="live-1", coins=10, idempotency_key=f"k-{i}")

    r = await client.get("/v1/wallet/transactions?limit=2", headers=auth_headers("user-1"))
    page = r.json()
    assert len(page["items"]) == 2
    assert page["next_offset"] == 2
    assert page["items"][0]["balance_after"] == 470

    r = await client.get("/v1/wallet/transactions?limit=2&offset=2", headers=auth_headers("user-1"))
    page = r.json()
    assert len(page["items"]) == 1
    assert page["next_offset"] is None
