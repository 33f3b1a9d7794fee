"""Mess off-day router — owners declare and cancel mess-wide closures."""


import uuid
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from mess_backend.auth.dependencies import require_role
from mess_backend.auth.models import User
from mess_backend.common.clock import Clock, get_clock
from mess_backend.common.constants import OffDayStatus, UserRole
from mess_backend.common.pagination import PaginatedResponse, PaginationParams
from mess_backend.database import get_db
from mess_backend.mess.schemas import (
    OffDayCancelRequest,
    OffDayCreate,
    OffDayOut,
    OffDayStatsOut,
    OffDayUpdate,
)
from mess_backend.mess.service import OffDayService

router = APIRouter(prefix="", tags=["off-days"])


# ── GET / ───────────────────────────────────────────────────────────

@router.get("", response_model=PaginatedResponse[OffDayOut])
async def list_off_days(
    mess_id: uuid.UUID = Query(...),
    when: Optional[Literal["upcoming", "past"]] = Query(None),
    status: Optional[OffDayStatus] = Query(None),
    pagination: PaginationParams = Depends(),
    user: User = Depends(require_role(UserRole.mess_owner)),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    return await OffDayService.list_off_days(
        db, clock, user, mess_id, pagination, when=when, status=status,
    )


# ── GET /stats ──────────────────────────────────────────────────────

@router.get("/stats", response_model=OffDayStatsOut)
async def off_day_stats(
    mess_id: uuid.UUID = Query(...),
    user: User = Depends(require_role(UserRole.mess_owner)),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    return await OffDayService.get_off_day_stats(db, clock, user, mess_id)


# ── POST / ──────────────────────────────────────────────────────────

@router.post("", response_model=OffDayOut, status_code=201)
async def create_off_day(
    body: OffDayCreate,
    user: User = Depends(require_role(UserRole.mess_owner)),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Declare a single off day or a range; past dates are rejected."""
    return await OffDayService.create_off_day(db, clock, user, body)


# ── PUT /{id} ───────────────────────────────────────────────────────

@router.put("/{off_day_id}", response_model=OffDayOut)
async def update_off_day(
    off_day_id: uuid.UUID,
    body: OffDayUpdate,
    user: User = Depends(require_role(UserRole.mess_owner)),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Move or re-scope an active off day; its kind is fixed."""
    return await OffDayService.update_off_day(db, clock, user, off_day_id, body)


# ── PUT /{id}/cancel ────────────────────────────────────────────────

@router.put("/{off_day_id}/cancel", response_model=OffDayOut)
async def cancel_off_day(
    off_day_id: uuid.UUID,
    body: OffDayCancelRequest,
    user: User = Depends(require_role(UserRole.mess_owner)),
    db: AsyncSession = Depends(get_db),
):
    return await OffDayService.cancel_off_day(db, user, off_day_id, body.reason)
