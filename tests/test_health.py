from fastapi.testclient import TestClient

from fanpay.main import app


def test_health():
    with TestClient(app) as c:
        r = c.get("/health")
        assert r.status_code == 200
        assert r.json() == {"status": "ok"}
        assert r.headers.get("X-Request-ID")


def test_legacy_gift_endpoint_is_gone():
    with TestClient(app) as c:
        r = c.post("/v1/gift", json={"amount": 5})
        assert r.status_code == 410
        assert r.json()["error"]["code"] == "GONE"
