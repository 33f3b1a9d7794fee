"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Request  → request bodies (write)
  - *Out                → response bodies (read)
  - *Brief              → compact embedded representations
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from mess_backend.common.constants import LeaveStatus, MealType
from mess_backend.config import settings


# ═════════════════════════════════════════════════════════════════════
# Embedded / shared
# ═════════════════════════════════════════════════════════════════════


class MealPlanBrief(BaseModel):
    """Minimal meal plan info embedded in leave responses."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    meals_per_day: int
    extend_subscription: bool = False


class PeriodOut(BaseModel):
    start_date: date
    end_date: date
    days: int


class SubscriptionPeriodOut(BaseModel):
    start_date: date
    end_date: date
    new_end_date: Optional[date] = None


class PlanBreakdownOut(BaseModel):
    """Per-plan outcome of the leave computation."""

    plan_id: uuid.UUID
    plan_name: str
    extend_subscription: bool
    requested_days: int
    processed_days: int
    ignored_days: int
    overlap_period: Optional[PeriodOut] = None
    subscription_period: Optional[SubscriptionPeriodOut] = None
    meal_breakdown: dict[MealType, int]
    requested_meals: int
    eligible_days: int
    eligible_meals: int
    deduction_eligible_days: int
    deduction_eligible_meals: int
    extend_eligible_days: int
    extend_eligible_meals: int
    estimated_savings: Decimal
    rate: Decimal
    reasons: list[str] = []


# ═════════════════════════════════════════════════════════════════════
# Leave Request — Create / Preview
# ═════════════════════════════════════════════════════════════════════


class LeavePreviewRequest(BaseModel):
    """Payload for estimating a leave before submitting it."""

    meal_plan_ids: list[uuid.UUID] = Field(..., min_length=1)
    start_date: date = Field(..., description="First day of leave (inclusive)")
    end_date: date = Field(..., description="Last day of leave (inclusive)")
    meal_types: Optional[list[MealType]] = Field(
        default=None,
        description="Meals skipped on middle days. Omitted means every meal.",
    )
    start_date_meal_types: Optional[list[MealType]] = Field(
        default=None,
        description="Meals skipped on the first day. Omitted means the middle selection.",
    )
    end_date_meal_types: Optional[list[MealType]] = Field(
        default=None,
        description="Meals skipped on the last day. Omitted means the middle selection.",
    )

    @field_validator("meal_plan_ids")
    @classmethod
    def unique_plans(cls, v: list[uuid.UUID]) -> list[uuid.UUID]:
        return list(dict.fromkeys(v))

    @model_validator(mode="after")
    def validate_dates(self) -> "LeavePreviewRequest":
        if self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date.")
        if (self.end_date - self.start_date).days > settings.MAX_LEAVE_SPAN_DAYS:
            raise ValueError(
                f"Leave request cannot span more than {settings.MAX_LEAVE_SPAN_DAYS} days."
            )
        return self


class LeaveRequestCreate(LeavePreviewRequest):
    """Payload for submitting a leave request."""

    reason: Optional[str] = Field(None, max_length=1000)


class LeaveEndDateUpdate(BaseModel):
    """Payload for moving the end date of a pending or approved leave."""

    new_end_date: date
    reason: Optional[str] = Field(None, max_length=1000)


# ═════════════════════════════════════════════════════════════════════
# Leave Request — Response
# ═════════════════════════════════════════════════════════════════════


class LeavePreviewOut(BaseModel):
    """Computed estimate — identical numbers to what a submission persists."""

    requested_days: int
    processed_days: int
    ignored_days: int
    total_meals_missed: int
    meal_breakdown: dict[MealType, int]
    estimated_savings: Decimal
    extend_subscription: bool
    extension_meals: int
    extension_days: int
    deduction_eligible_meals: int
    deduction_eligible_days: int
    non_deduction_meals: int
    auto_approvable: bool
    plans: list[PlanBreakdownOut]


class ExtensionEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    meal_plan_id: uuid.UUID
    membership_id: uuid.UUID
    revision: int
    original_subscription_end_date: date
    new_subscription_end_date: date
    extension_meals: int
    extension_days: int
    applied_at: datetime
    reversed_at: Optional[datetime] = None


class LeaveRequestOut(BaseModel):
    """Full leave request response."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    mess_id: uuid.UUID
    start_date: date
    end_date: date
    original_end_date: date
    meal_types: list[MealType]
    start_date_meal_types: list[MealType]
    end_date_meal_types: list[MealType]
    reason: Optional[str] = None
    status: LeaveStatus
    display_status: LeaveStatus
    revision: int

    requested_days: int
    processed_days: int
    ignored_days: int
    total_meals_missed: int
    meal_breakdown: dict[MealType, int]
    plan_wise_breakdown: list[PlanBreakdownOut]
    estimated_savings: Decimal
    extend_subscription: bool
    extension_meals: int
    extension_days: int
    deduction_eligible_meals: int
    deduction_eligible_days: int
    non_deduction_meals: int

    approved_by: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    approval_remarks: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    meal_plans: list[MealPlanBrief] = []
    extension_entries: list[ExtensionEntryOut] = []


# ═════════════════════════════════════════════════════════════════════
# Leave Approve / Reject / Cancel
# ═════════════════════════════════════════════════════════════════════


class LeaveApproveRequest(BaseModel):
    """Payload for approving a leave request."""

    remarks: Optional[str] = Field(None, max_length=500)


class LeaveRejectRequest(BaseModel):
    """Payload for rejecting a leave request."""

    reason: str = Field(..., min_length=5, max_length=500)


class LeaveCancelRequest(BaseModel):
    """Payload for cancelling a leave request."""

    reason: Optional[str] = Field(None, max_length=500)


# ═════════════════════════════════════════════════════════════════════
# Stats
# ═════════════════════════════════════════════════════════════════════


class LeaveStatsOut(BaseModel):
    """Counts of a mess's leave requests."""

    total: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    cancelled: int = 0
    this_week: int = 0
    this_month: int = 0
