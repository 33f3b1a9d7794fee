"""Leave routers — member submissions and mess-owner review.

All endpoints require authentication. Owner endpoints enforce the
mess_owner role and, per request, authority over the leave's mess.
"""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from mess_backend.auth.dependencies import get_current_user, require_role
from mess_backend.auth.models import User
from mess_backend.common.clock import Clock, get_clock
from mess_backend.common.constants import LeaveStatus, UserRole
from mess_backend.common.pagination import PaginatedResponse, PaginationParams
from mess_backend.common.rate_limit import limiter
from mess_backend.config import settings
from mess_backend.database import get_db
from mess_backend.leave.schemas import (
    LeaveApproveRequest,
    LeaveCancelRequest,
    LeaveEndDateUpdate,
    LeavePreviewOut,
    LeavePreviewRequest,
    LeaveRejectRequest,
    LeaveRequestCreate,
    LeaveRequestOut,
    LeaveStatsOut,
)
from mess_backend.leave.service import LeaveService

router = APIRouter(prefix="", tags=["leave"])
owner_router = APIRouter(prefix="", tags=["leave-review"])


# ═════════════════════════════════════════════════════════════════════
# Member
# ═════════════════════════════════════════════════════════════════════


# ── POST /preview ───────────────────────────────────────────────────

@router.post("/preview", response_model=LeavePreviewOut)
@limiter.limit(settings.PREVIEW_RATE_LIMIT)
async def preview_leave(
    request: Request,
    body: LeavePreviewRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Estimate savings / extension for a leave without submitting it."""
    return await LeaveService.preview(db, clock, user, body)


# ── POST / ──────────────────────────────────────────────────────────

@router.post("", response_model=LeaveRequestOut, status_code=201)
async def create_leave(
    body: LeaveRequestCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Submit a leave request. Auto-approved when every plan allows it."""
    return await LeaveService.create_leave(db, clock, user, body)


# ── GET / ───────────────────────────────────────────────────────────

@router.get("", response_model=PaginatedResponse[LeaveRequestOut])
async def my_leaves(
    status: Optional[LeaveStatus] = Query(None),
    pagination: PaginationParams = Depends(),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The authenticated member's leave requests, newest first."""
    return await LeaveService.list_my_leaves(db, user, pagination, status=status)


# ── GET /{id} ───────────────────────────────────────────────────────

@router.get("/{leave_id}", response_model=LeaveRequestOut)
async def get_my_leave(
    leave_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.get_leave(db, user, leave_id)


# ── PUT /{id}/extend ────────────────────────────────────────────────

@router.put("/{leave_id}/extend", response_model=LeaveRequestOut)
async def update_end_date(
    leave_id: uuid.UUID,
    body: LeaveEndDateUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Move the end date of a pending or approved leave."""
    return await LeaveService.update_end_date(db, clock, user, leave_id, body)


# ── PUT /{id}/cancel ────────────────────────────────────────────────

@router.put("/{leave_id}/cancel", response_model=LeaveRequestOut)
async def cancel_leave(
    leave_id: uuid.UUID,
    body: LeaveCancelRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Cancel a leave; any subscription extension it granted is reversed."""
    return await LeaveService.cancel_leave(db, clock, user, leave_id, body.reason)


# ═════════════════════════════════════════════════════════════════════
# Mess owner
# ═════════════════════════════════════════════════════════════════════


# ── GET / ───────────────────────────────────────────────────────────

@owner_router.get("", response_model=PaginatedResponse[LeaveRequestOut])
async def mess_leaves(
    status: Optional[LeaveStatus] = Query(None),
    mess_id: Optional[uuid.UUID] = Query(None),
    pagination: PaginationParams = Depends(),
    user: User = Depends(require_role(UserRole.mess_owner)),
    db: AsyncSession = Depends(get_db),
):
    """Leave requests of the caller's messes, filterable by status."""
    return await LeaveService.list_mess_leaves(
        db, user, pagination, mess_id=mess_id, status=status,
    )


# ── GET /stats ──────────────────────────────────────────────────────

@owner_router.get("/stats", response_model=LeaveStatsOut)
async def leave_stats(
    mess_id: Optional[uuid.UUID] = Query(None),
    user: User = Depends(require_role(UserRole.mess_owner)),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    return await LeaveService.get_stats(db, clock, user, mess_id=mess_id)


# ── GET /{id} ───────────────────────────────────────────────────────

@owner_router.get("/{leave_id}", response_model=LeaveRequestOut)
async def mess_leave_detail(
    leave_id: uuid.UUID,
    user: User = Depends(require_role(UserRole.mess_owner)),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.get_leave(db, user, leave_id)


# ── PUT /{id}/approve ───────────────────────────────────────────────

@owner_router.put("/{leave_id}/approve", response_model=LeaveRequestOut)
async def approve_leave(
    leave_id: uuid.UUID,
    body: LeaveApproveRequest,
    user: User = Depends(require_role(UserRole.mess_owner)),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Approve a pending leave and apply its subscription extensions."""
    return await LeaveService.approve_leave(db, clock, user, leave_id, remarks=body.remarks)


# ── PUT /{id}/reject ────────────────────────────────────────────────

@owner_router.put("/{leave_id}/reject", response_model=LeaveRequestOut)
async def reject_leave(
    leave_id: uuid.UUID,
    body: LeaveRejectRequest,
    user: User = Depends(require_role(UserRole.mess_owner)),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    return await LeaveService.reject_leave(db, clock, user, leave_id, body.reason)
