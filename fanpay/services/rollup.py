"""Monthly VIP tier rollup."""

from datetime import datetime, timedelta

from fanpay.core.audit import log_event
from fanpay.core.exceptions import BadRequestError
from fanpay.core.logging import get_logger
from fanpay.store.base import LedgerStore
from fanpay.store.types import RollupResult

log = get_logger(__name__)


def month_start(now: datetime | None = None) -> datetime:
    now = now or datetime.utcnow()
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def previous_month_start(now: datetime | None = None) -> datetime:
    """First instant of the last fully closed month."""
    return month_start(month_start(now) - timedelta(days=1))


def parse_month(value: str) -> datetime:
    """``YYYY-MM`` to the first day of that month."""
    try:
        return datetime.strptime(value.strip(), "%Y-%m")
    except ValueError:
        raise BadRequestError("Invalid month") from None


async def run_vip_rollup(store: LedgerStore, when: datetime | None = None) -> RollupResult:
    """Roll up the month containing ``when``; by default the month that just closed."""
    start = month_start(when) if when else previous_month_start()
    log.info("vip_rollup_start", month_start=start.date().isoformat())
    result = await store.run_monthly_rollup(start)
    log.info(
        "vip_rollup_done",
        month_start=result.month_start,
        members=result.members,
        tiers=result.tiers,
        cleared=result.cleared,
    )
    await log_event(None, "vip_rollup", "wallet", result.month_start, result.model_dump())
    return result
