"""Offset pages for newest-first history lists (wallet transactions, gift records)."""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")

MAX_PAGE_SIZE = 200


class Page(BaseModel, Generic[T]):
    items: list[T]
    limit: int
    offset: int
    next_offset: int | None = None  # None on the last page


def clamp_page(limit: int, offset: int, max_limit: int = MAX_PAGE_SIZE) -> tuple[int, int]:
    limit = max(1, min(limit, max_limit))
    offset = max(0, offset)
    return limit, offset


def build_page(rows: list[T], limit: int, offset: int) -> Page[T]:
    """``rows`` is the store's answer to a ``limit + 1`` query; the extra row only signals more."""
    has_more = len(rows) > limit
    return Page(
        items=rows[:limit],
        limit=limit,
        offset=offset,
        next_offset=offset + limit if has_more else None,
    )
