"""Shared FastAPI dependencies."""

from fastapi import Request
from pydantic import BaseModel

from fanpay.core.config import get_settings
from fanpay.core.exceptions import ConfigurationError, ForbiddenError, UnauthorizedError
from fanpay.core.logging import bind_user_id
from fanpay.core.security import is_origin_allowed, load_session_token
from fanpay.store.base import LedgerStore, get_store

SESSION_COOKIE_NAME = "fanpay_session"


class CurrentUser(BaseModel):
    id: str


def _session_token(request: Request) -> str | None:
    auth = request.headers.get("authorization", "").strip()
    if auth.lower().startswith("bearer "):
        return auth[7:].strip() or None
    return request.cookies.get(SESSION_COOKIE_NAME)


async def get_optional_user(request: Request) -> CurrentUser | None:
    """Dependency: user from cookie or bearer token, None when signed out. A bad token is still an error."""
    token = _session_token(request)
    if not token:
        return None
    payload = load_session_token(token)
    if not payload:
        raise UnauthorizedError("Invalid or expired session")
    user_id = str(payload.get("user_id") or "").strip()
    if not user_id:
        raise UnauthorizedError("Invalid session")
    bind_user_id(user_id)
    return CurrentUser(id=user_id)


async def get_current_user(request: Request) -> CurrentUser:
    user = await get_optional_user(request)
    if user is None:
        raise UnauthorizedError("Not authenticated")
    return user


async def require_same_origin(request: Request) -> None:
    """Dependency: Origin or Referer must match SITE_URL."""
    base = get_settings().site_base_url
    if not base:
        raise ConfigurationError("Missing SITE_URL")
    if not is_origin_allowed(request.headers.get("origin"), request.headers.get("referer"), [base]):
        raise ForbiddenError("Forbidden")


def client_ip(request: Request) -> str:
    """Client address for rate limiting.

    X-Forwarded-For is read only when TRUSTED_PROXY_HOPS is set, and then from
    the right: each trusted proxy appends one entry, so anything further left
    was written by the caller.
    """
    peer = request.client.host if request.client else ""
    hops = get_settings().trusted_proxy_hops
    if hops <= 0:
        return peer
    parts = [p.strip() for p in request.headers.get("x-forwarded-for", "").split(",") if p.strip()]
    if len(parts) >= hops:
        return parts[-hops]
    real = request.headers.get("x-real-ip", "").strip()
    return real or peer


def get_ledger_store() -> LedgerStore:
    return get_store()
