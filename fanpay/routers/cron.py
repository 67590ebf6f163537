from fastapi import APIRouter, Depends, Header, Query

from fanpay.core.config import get_settings
from fanpay.core.security import verify_cron_secret
from fanpay.deps import get_ledger_store
from fanpay.services.rollup import parse_month, run_vip_rollup
from fanpay.store.base import LedgerStore

router = APIRouter()


@router.post("/vip-rollup")
async def vip_rollup(
    month: str | None = Query(None, description="YYYY-MM; defaults to the last closed month"),
    x_cron_secret: str | None = Header(None, alias="X-Cron-Secret"),
    store: LedgerStore = Depends(get_ledger_store),
):
    """External scheduler hook; the arq worker runs the same rollup on the 1st of each month."""
    verify_cron_secret(x_cron_secret, get_settings().cron_secret)
    result = await run_vip_rollup(store, when=parse_month(month) if month else None)
    return {"ok": True, "result": result.model_dump()}
