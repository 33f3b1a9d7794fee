"""Page/page_size pagination for leave and off-day listings."""

from __future__ import annotations

import math
from typing import Any, Callable, Generic, Optional, Sequence, TypeVar

from fastapi import Query
from pydantic import BaseModel
from sqlalchemy import Select, func
from sqlalchemy.ext.asyncio import AsyncSession

from mess_backend.common.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

T = TypeVar("T")


# ── FastAPI dependency ──────────────────────────────────────────────

class PaginationParams:
    """Inject via ``Depends()`` on list endpoints; construct directly in services/tests."""

    def __init__(
        self,
        page: int = Query(default=1, ge=1, description="Page number (1-indexed)"),
        page_size: int = Query(
            default=DEFAULT_PAGE_SIZE,
            ge=1,
            le=MAX_PAGE_SIZE,
            description=f"Items per page (max {MAX_PAGE_SIZE})",
        ),
    ) -> None:
        self.page = page
        self.page_size = page_size

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


# ── Response envelope ───────────────────────────────────────────────

class PaginationMeta(BaseModel):
    page: int
    page_size: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, params: PaginationParams, total: int) -> "PaginationMeta":
        total_pages = math.ceil(total / params.page_size) if total else 0
        return cls(
            page=params.page,
            page_size=params.page_size,
            total=total,
            total_pages=total_pages,
            has_next=params.page < total_pages,
            has_prev=params.page > 1,
        )


class PaginatedResponse(BaseModel, Generic[T]):
    """``{"data": [...], "meta": {...}}``"""

    data: Sequence[T]
    meta: PaginationMeta


# ── Query helper ────────────────────────────────────────────────────

async def paginate(
    session: AsyncSession,
    query: Select,
    params: PaginationParams,
    *,
    transform: Optional[Callable[[Any], Any]] = None,
) -> PaginatedResponse:
    """Run *query* for one page and count the full result.

    The caller owns ordering. Each ORM row goes through *transform*
    (typically ``SomeOut.model_validate``) when given.
    """
    count_query = query.with_only_columns(func.count(), maintain_column_froms=True).order_by(None)
    total: int = (await session.execute(count_query)).scalar_one()

    result = await session.execute(query.offset(params.offset).limit(params.page_size))
    rows = result.scalars().unique().all()

    return PaginatedResponse(
        data=[transform(row) for row in rows] if transform else rows,
        meta=PaginationMeta.build(params, total),
    )
