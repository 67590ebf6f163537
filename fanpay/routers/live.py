from fastapi import APIRouter, Depends

from fanpay.deps import get_ledger_store
from fanpay.store.base import LedgerStore

router = APIRouter()


@router.get("/state")
async def live_state(store: LedgerStore = Depends(get_ledger_store)):
    state = await store.get_live_state()
    return state.model_dump(mode="json")
