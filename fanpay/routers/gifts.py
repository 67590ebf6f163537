from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from fanpay.core.exceptions import GoneError
from fanpay.core.pagination import MAX_PAGE_SIZE, Page, build_page, clamp_page
from fanpay.deps import CurrentUser, get_current_user, get_ledger_store
from fanpay.services import gifts as gifts_service
from fanpay.store.base import LedgerStore

router = APIRouter()
legacy_router = APIRouter()


class SendGiftRequest(BaseModel):
    stream_id: str | None = None
    post_id: str | None = None
    gift_type: str = ""
    coins: float | None = None
    idempotency_key: str | None = None
    to_user_id: str | None = None  # ignored: the owner always receives


@router.post("/send")
async def send_gift(
    body: SendGiftRequest,
    user: CurrentUser = Depends(get_current_user),
    store: LedgerStore = Depends(get_ledger_store),
):
    """Spend coins on a gift to the owner; idempotent per idempotency_key."""
    return await gifts_service.send_coin_gift(
        store,
        user_id=user.id,
        stream_id=body.stream_id,
        post_id=body.post_id,
        gift_type=body.gift_type,
        coins=body.coins,
        idempotency_key=body.idempotency_key,
    )


@router.get("", response_model=Page[dict])
async def list_gifts(
    user: CurrentUser = Depends(get_current_user),
    store: LedgerStore = Depends(get_ledger_store),
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
):
    """Caller's gift and purchase records (newest first)."""
    limit, offset = clamp_page(limit, offset)
    records = await store.list_gifts(user.id, limit + 1, offset)
    return build_page([r.public() for r in records], limit, offset)


@legacy_router.post("")
async def legacy_gift():
    raise GoneError("Legacy gifting has been removed. Use coin gifting via POST /v1/gifts/send.")
