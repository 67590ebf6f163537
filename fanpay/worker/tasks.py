"""ARQ job definitions."""

from typing import Any

from arq.connections import RedisSettings

from fanpay.core.config import get_settings
from fanpay.core.logging import configure_logging, get_logger
from fanpay.services.rollup import run_vip_rollup
from fanpay.store.base import get_store

log = get_logger(__name__)


async def vip_monthly_rollup(ctx: dict[str, Any]) -> dict[str, Any]:
    """Cron job on the 1st: recompute VIP tiers from the month that just closed."""
    job_id = ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else None
    log.info("job_start", job="vip_monthly_rollup", job_id=job_id)
    try:
        result = await run_vip_rollup(get_store())
    except Exception as e:
        log.exception("job_failed", job="vip_monthly_rollup", job_id=job_id, reason=str(e))
        raise
    log.info("job_done", job="vip_monthly_rollup", job_id=job_id)
    return result.model_dump()


async def startup(ctx: dict) -> None:
    from fanpay.db.init import init_db
    configure_logging(debug=get_settings().debug)
    await init_db()


async def shutdown(ctx: dict) -> None:
    pass


def get_redis_settings() -> RedisSettings:
    from urllib.parse import urlparse
    s = get_settings()
    u = urlparse(s.redis_url)
    return RedisSettings(
        host=u.hostname or "localhost",
        port=u.port or 6379,
        password=u.password,
        database=int(u.path.lstrip("/")) if u.path.lstrip("/") else 0,
    )
