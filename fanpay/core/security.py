import hashlib
import hmac
import uuid
from typing import Any
from urllib.parse import urlsplit

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from fanpay.core.config import get_settings
from fanpay.core.exceptions import BadRequestError, ForbiddenError

SESSION_MAX_AGE = 7 * 24 * 3600


def get_session_serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(
        settings.secret_key,
        salt="fanpay-session",
        signer_kwargs={"key_derivation": "hmac", "digest_method": hashlib.sha256},
    )


def create_session_token(payload: dict[str, Any]) -> str:
    """Sign a session payload issued by the auth provider callback."""
    return get_session_serializer().dumps(payload)


def load_session_token(value: str, max_age_seconds: int = SESSION_MAX_AGE) -> dict[str, Any] | None:
    serializer = get_session_serializer()
    try:
        return serializer.loads(value, max_age=max_age_seconds)
    except (BadSignature, SignatureExpired):
        return None


def generate_idempotency_key(scope: str) -> str:
    """Fresh key namespaced by operation, e.g. ``web:coins:<uuid>``."""
    return f"{scope}:{uuid.uuid4()}"


def require_idempotency_key(key: str | None) -> str:
    if not key or not key.strip():
        raise BadRequestError("Missing idempotency_key")
    return key.strip()


def verify_cron_secret(provided: str | None, secret: str) -> None:
    if not secret or not provided or not hmac.compare_digest(provided.strip(), secret):
        raise ForbiddenError("Forbidden")


def is_origin_allowed(origin: str | None, referer: str | None, allowed_bases: list[str]) -> bool:
    """Origin must equal a known base; Referer must be the base or live under it."""
    origin = (origin or "").strip()
    referer = (referer or "").strip()
    for base in allowed_bases:
        if origin and origin == base:
            return True
        if referer and (referer == base or referer.startswith(f"{base}/")):
            return True
    return False


def safe_return_path(raw: str | None, default: str = "/") -> str:
    """Accept only same-origin relative paths; reject anything that could leave the site."""
    path = (raw or "").strip()
    if not path:
        return default
    if not path.startswith("/") or path.startswith("//") or "\\" in path:
        raise BadRequestError("Invalid return path")
    parts = urlsplit(path)
    if parts.scheme or parts.netloc:
        raise BadRequestError("Invalid return path")
    if any(ord(c) < 32 for c in path):
        raise BadRequestError("Invalid return path")
    return path
