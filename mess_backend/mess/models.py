"""Mess ORM models: Mess, MealPlan, Membership, MessOffDay."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mess_backend.common.constants import (
    MealType,
    MembershipStatus,
    OffDayKind,
    OffDayStatus,
    PricingPeriod,
)
from mess_backend.common.models import utcnow
from mess_backend.database import Base


class Mess(Base):
    __tablename__ = "messes"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    owner_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False
    )
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=sa.func.now()
    )

    # Relationships
    meal_plans: Mapped[list[MealPlan]] = relationship(back_populates="mess")


class MealPlan(Base):
    """A purchasable plan. Read-only from the leave engine's point of view."""

    __tablename__ = "meal_plans"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    mess_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("messes.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    meals_per_day: Mapped[int] = mapped_column(sa.Integer, default=3)

    # mealOptions
    has_breakfast: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    has_lunch: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    has_dinner: Mapped[bool] = mapped_column(sa.Boolean, default=True)

    # pricing
    pricing_amount: Mapped[Decimal] = mapped_column(sa.Numeric(10, 2), default=Decimal("0"))
    pricing_period: Mapped[PricingPeriod] = mapped_column(
        sa.Enum(PricingPeriod, name="pricing_period"), default=PricingPeriod.monthly,
    )

    # leaveRules
    notice_hours: Mapped[int] = mapped_column(sa.Integer, default=2)
    require_two_hour_notice: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    min_consecutive_days: Mapped[int] = mapped_column(sa.Integer, default=1)
    leave_limits_enabled: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    max_leave_meals_enabled: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    max_leave_meals: Mapped[int] = mapped_column(sa.Integer, default=0)
    extend_subscription: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    auto_approval: Mapped[bool] = mapped_column(sa.Boolean, default=False)

    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=sa.func.now()
    )

    # Relationships
    mess: Mapped[Mess] = relationship(back_populates="meal_plans")

    @property
    def meal_types(self) -> list[MealType]:
        """Meal types served by this plan, in serving order."""
        flags = (
            (MealType.breakfast, self.has_breakfast),
            (MealType.lunch, self.has_lunch),
            (MealType.dinner, self.has_dinner),
        )
        return [t for t, enabled in flags if enabled]


class Membership(Base):
    """A user's enrollment in one meal plan.

    ``subscription_end_date`` and ``leave_extension_meals`` are projections
    of the extension ledger; only ``ExtensionLedger`` writes them.
    """

    __tablename__ = "memberships"
    __table_args__ = (
        sa.Index("ix_memberships_user_plan", "user_id", "meal_plan_id"),
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
    meal_plan_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("meal_plans.id"), nullable=False
    )
    status: Mapped[MembershipStatus] = mapped_column(
        sa.Enum(MembershipStatus, name="membership_status"),
        default=MembershipStatus.pending,
    )
    subscription_start_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    subscription_end_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    # End date before any leave extension; the ledger's baseline.
    base_subscription_end_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    payment_amount: Mapped[Decimal] = mapped_column(sa.Numeric(10, 2), default=Decimal("0"))
    leave_extension_meals: Mapped[int] = mapped_column(sa.Integer, default=0)
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, onupdate=utcnow,
        server_default=sa.func.now(),
    )

    # Optimistic locking: a concurrent writer bumps the version first
    __mapper_args__ = {"version_id_col": version}

    # Relationships
    meal_plan: Mapped[MealPlan] = relationship()


class MessOffDay(Base):
    """Mess-wide closure. ``kind`` selects which date columns are meaningful."""

    __tablename__ = "mess_off_days"
    __table_args__ = (
        sa.Index("ix_mess_off_days_mess_status", "mess_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    mess_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("messes.id"), nullable=False
    )
    kind: Mapped[OffDayKind] = mapped_column(
        sa.Enum(OffDayKind, name="off_day_kind"), nullable=False,
    )
    # single
    off_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    meal_types: Mapped[Optional[list]] = mapped_column(JSONB)
    # range
    range_start_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    range_end_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    start_date_meal_types: Mapped[Optional[list]] = mapped_column(JSONB)
    end_date_meal_types: Mapped[Optional[list]] = mapped_column(JSONB)

    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    status: Mapped[OffDayStatus] = mapped_column(
        sa.Enum(OffDayStatus, name="off_day_status"), default=OffDayStatus.active,
    )
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id")
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, onupdate=utcnow,
        server_default=sa.func.now(),
    )

    @property
    def first_date(self) -> Optional[date]:
        return self.off_date if self.kind == OffDayKind.single else self.range_start_date

    @property
    def last_date(self) -> Optional[date]:
        return self.off_date if self.kind == OffDayKind.single else self.range_end_date
