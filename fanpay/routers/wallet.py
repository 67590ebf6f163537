from fastapi import APIRouter, Depends, Query

from fanpay.core.pagination import MAX_PAGE_SIZE, Page, build_page, clamp_page
from fanpay.deps import CurrentUser, get_current_user, get_ledger_store
from fanpay.store.base import LedgerStore
from fanpay.store.types import WalletTransaction

router = APIRouter()


@router.get("")
async def wallet_balance(
    user: CurrentUser = Depends(get_current_user),
    store: LedgerStore = Depends(get_ledger_store),
):
    """Return current coin balance and lifetime totals."""
    wallet = await store.get_wallet(user.id)
    return wallet.model_dump(mode="json")


@router.get("/transactions", response_model=Page[WalletTransaction])
async def wallet_transactions(
    user: CurrentUser = Depends(get_current_user),
    store: LedgerStore = Depends(get_ledger_store),
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
):
    """Return wallet transactions for current user (newest first)."""
    limit, offset = clamp_page(limit, offset)
    rows = await store.list_wallet_transactions(user.id, limit + 1, offset)
    return build_page(rows, limit, offset)
