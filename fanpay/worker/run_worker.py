"""Run ARQ worker. Usage: python -m fanpay.worker.run_worker"""

from arq import run_worker
from arq.cron import cron

from fanpay.worker.tasks import get_redis_settings, shutdown, startup, vip_monthly_rollup


class WorkerSettings:
    redis_settings = get_redis_settings()
    functions = [vip_monthly_rollup]
    cron_jobs = [
        cron(vip_monthly_rollup, day=1, hour=0, minute=5, second=0),  # 00:05 UTC on the 1st
    ]
    on_startup = startup
    on_shutdown = shutdown


if __name__ == "__main__":
    run_worker(WorkerSettings)
