"""Leave ORM models: LeaveRequest, its plan links, and the extension ledger."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mess_backend.common.constants import LeaveStatus
from mess_backend.common.models import utcnow
from mess_backend.database import Base
from mess_backend.mess.models import MealPlan

leave_request_plans = sa.Table(
    "leave_request_plans",
    Base.metadata,
    sa.Column(
        "leave_request_id",
        UUID(as_uuid=True),
        sa.ForeignKey("leave_requests.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    sa.Column(
        "meal_plan_id",
        UUID(as_uuid=True),
        sa.ForeignKey("meal_plans.id"),
        primary_key=True,
    ),
)


class LeaveRequest(Base):
    __tablename__ = "leave_requests"
    __table_args__ = (
        sa.Index("ix_leave_requests_user_start", "user_id", "start_date"),
        sa.Index("ix_leave_requests_mess_status", "mess_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False
    )
    mess_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("messes.id"), nullable=False
    )
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    # First submitted end date; never rewritten by edits
    original_end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    meal_types: Mapped[list] = mapped_column(JSONB, nullable=False)
    start_date_meal_types: Mapped[list] = mapped_column(JSONB, nullable=False)
    end_date_meal_types: Mapped[list] = mapped_column(JSONB, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    status: Mapped[LeaveStatus] = mapped_column(
        sa.Enum(LeaveStatus, name="leave_status"),
        default=LeaveStatus.pending,
    )
    # Bumped on every end-date edit; part of the ledger idempotency key
    revision: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=1)

    # Computed outputs
    requested_days: Mapped[int] = mapped_column(sa.Integer, default=0)
    processed_days: Mapped[int] = mapped_column(sa.Integer, default=0)
    ignored_days: Mapped[int] = mapped_column(sa.Integer, default=0)
    total_meals_missed: Mapped[int] = mapped_column(sa.Integer, default=0)
    meal_breakdown: Mapped[dict] = mapped_column(JSONB, nullable=False)
    plan_wise_breakdown: Mapped[list] = mapped_column(JSONB, nullable=False)
    estimated_savings: Mapped[Decimal] = mapped_column(
        sa.Numeric(10, 2), default=Decimal("0")
    )
    extend_subscription: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    extension_meals: Mapped[int] = mapped_column(sa.Integer, default=0)
    extension_days: Mapped[int] = mapped_column(sa.Integer, default=0)
    deduction_eligible_meals: Mapped[int] = mapped_column(sa.Integer, default=0)
    deduction_eligible_days: Mapped[int] = mapped_column(sa.Integer, default=0)
    non_deduction_meals: Mapped[int] = mapped_column(sa.Integer, default=0)

    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id")
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True)
    )
    approval_remarks: Mapped[Optional[str]] = mapped_column(sa.Text)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True)
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, onupdate=utcnow,
        server_default=sa.func.now(),
    )

    # Relationships
    meal_plans: Mapped[list[MealPlan]] = relationship(
        secondary=leave_request_plans, lazy="selectin",
    )
    extension_entries: Mapped[list[ExtensionTrackingEntry]] = relationship(
        back_populates="leave_request",
        lazy="selectin",
        order_by="ExtensionTrackingEntry.revision",
    )

    @property
    def meal_plan_ids(self) -> list[uuid.UUID]:
        return [p.id for p in self.meal_plans]

    @property
    def active_extension_entries(self) -> list[ExtensionTrackingEntry]:
        return [e for e in self.extension_entries if e.reversed_at is None]

    @property
    def display_status(self) -> LeaveStatus:
        if self.status == LeaveStatus.approved and self.active_extension_entries:
            return LeaveStatus.extended
        return self.status


class ExtensionTrackingEntry(Base):
    """Append-only audit record of one subscription-end-date change.

    An entry is never edited except to stamp ``reversed_at`` when the
    leave is cancelled or the entry is superseded by a re-application.
    """

    __tablename__ = "leave_extension_entries"
    __table_args__ = (
        sa.UniqueConstraint(
            "leave_request_id", "meal_plan_id", "revision",
            name="uq_leave_extension_revision",
        ),
        sa.Index("ix_leave_extension_membership", "membership_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    leave_request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("leave_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    meal_plan_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("meal_plans.id"), nullable=False
    )
    membership_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("memberships.id"), nullable=False
    )
    revision: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    original_subscription_end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    new_subscription_end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    extension_meals: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    # new_subscription_end_date - original_subscription_end_date, in days
    extension_days: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    applied_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False
    )
    reversed_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True)
    )

    # Relationships
    leave_request: Mapped[LeaveRequest] = relationship(back_populates="extension_entries")
