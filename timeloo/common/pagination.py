"""Page-number pagination for list endpoints (applications, notifications)."""

from __future__ import annotations

import math
from typing import Any, Sequence

from fastapi import Query
from pydantic import BaseModel
from sqlalchemy import Select, func
from sqlalchemy.ext.asyncio import AsyncSession

from timeloo.common.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE


class PaginationParams:
    """Query parameters ``page`` (1-based) and ``page_size``; use with ``Depends()``."""

    def __init__(
        self,
        page: int = Query(default=1, ge=1),
        page_size: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    ) -> None:
        self.page = page
        self.page_size = page_size

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class PaginationMeta(BaseModel):
    page: int
    page_size: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, params: PaginationParams, total: int) -> "PaginationMeta":
        pages = math.ceil(total / params.page_size) if total else 0
        return cls(
            page=params.page,
            page_size=params.page_size,
            total=total,
            total_pages=pages,
            has_next=params.page < pages,
            has_prev=params.page > 1,
        )


async def paginate(
    db: AsyncSession,
    query: Select,
    params: PaginationParams,
) -> tuple[Sequence[Any], PaginationMeta]:
    """Return one page of ORM rows from ``query`` and its metadata."""
    total = (
        await db.execute(query.with_only_columns(func.count()).order_by(None))
    ).scalar_one()
    page = await db.execute(query.offset(params.offset).limit(params.page_size))
    return page.scalars().all(), PaginationMeta.build(params, total)
