import pytest

from fanpay.core.exceptions import BadRequestError, ForbiddenError
from fanpay.core.security import (
    create_session_token,
    generate_idempotency_key,
    is_origin_allowed,
    load_session_token,
    safe_return_path,
    verify_cron_secret,
)

SITE = "https://fans.example"


@pytest.mark.parametrize(
    "raw,expected",
    [
        (None, "/"),
        ("", "/"),
        ("  ", "/"),
        ("/community", "/community"),
        ("/live?tab=chat", "/live?tab=chat"),
    ],
)
def test_safe_return_path_accepts_relative(raw, expected):
    assert safe_return_path(raw) == expected


@pytest.mark.parametrize(
    "raw",
    ["//evil.example", "https://evil.example/x", "javascript:alert(1)", "evil", "/\\evil", "/x\ty"],
)
def test_safe_return_path_rejects(raw):
    with pytest.raises(BadRequestError):
        safe_return_path(raw)


def test_origin_check():
    assert is_origin_allowed(SITE, None, [SITE])
    assert is_origin_allowed(None, f"{SITE}/wallet?x=1", [SITE])
    assert not is_origin_allowed(None, f"{SITE}.evil.example/", [SITE])
    assert not is_origin_allowed("https://evil.example", None, [SITE])
    assert not is_origin_allowed(None, None, [SITE])


def test_session_token_round_trip():
    token = create_session_token({"user_id": "user-1"})
    assert load_session_token(token) == {"user_id": "user-1"}
    assert load_session_token(token + "x") is None


def test_idempotency_keys_are_scoped_and_unique():
    a = generate_idempotency_key("web:gift")
    b = generate_idempotency_key("web:gift")
    assert a.startswith("web:gift:")
    assert a != b


def test_cron_secret():
    verify_cron_secret("s3cret", "s3cret")
    with pytest.raises(ForbiddenError):
        verify_cron_secret("nope", "s3cret")
    with pytest.raises(ForbiddenError):
        verify_cron_secret("anything", "")


def test_log_redaction():
    from fanpay.core.logging import redact_secrets

    out = redact_secrets(None, "info", {"event": "x", "stripe_signature": "t=1,v1=abc", "session_id": "cs_1"})
    assert out["stripe_signature"] == "[redacted]"
    assert out["session_id"] == "cs_1"
