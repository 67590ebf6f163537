"""Audit trail for checkout and gift state changes."""

from typing import Any

import structlog

from fanpay.core.logging import get_logger

log = get_logger(__name__)


async def log_event(
    user_id: str | None,
    event_type: str,
    entity_type: str,
    entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> None:
    """Append one audit row tagged with the current request id.

    Called after the ledger write it describes, so a failure here is logged
    and dropped rather than surfaced to the caller.
    """
    from fanpay.store.base import get_store
    request_id = structlog.contextvars.get_contextvars().get("request_id")
    try:
        await get_store().append_audit(
            user_id,
            event_type,
            entity_type,
            entity_id,
            metadata or {},
            request_id=request_id,
        )
    except Exception:
        log.exception("audit_write_failed", event_type=event_type, entity_type=entity_type, entity_id=entity_id)
