"""Enums and constants for the mess leave service — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    member = "member"
    mess_owner = "mess_owner"
    admin = "admin"


# ── Meals ───────────────────────────────────────────────────────────

class MealType(str, enum.Enum):
    breakfast = "breakfast"
    lunch = "lunch"
    dinner = "dinner"


ALL_MEAL_TYPES: tuple[MealType, ...] = (
    MealType.breakfast,
    MealType.lunch,
    MealType.dinner,
)


class PricingPeriod(str, enum.Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    quarterly = "quarterly"
    yearly = "yearly"


# ── Membership ──────────────────────────────────────────────────────

class MembershipStatus(str, enum.Enum):
    pending = "pending"
    active = "active"
    inactive = "inactive"
    suspended = "suspended"


# Memberships a leave request may be filed against
LEAVE_ELIGIBLE_MEMBERSHIP_STATUSES = (MembershipStatus.active, MembershipStatus.pending)


# ── Leave ───────────────────────────────────────────────────────────

class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    # Display alias of approved once an extension is on the ledger; never stored.
    extended = "extended"
    cancelled = "cancelled"


# Requests that still block a new, overlapping request for the same plan
OPEN_LEAVE_STATUSES = (LeaveStatus.pending, LeaveStatus.approved)


# ── Off days ────────────────────────────────────────────────────────

class OffDayKind(str, enum.Enum):
    single = "single"
    range = "range"


class OffDayStatus(str, enum.Enum):
    active = "active"
    cancelled = "cancelled"


# ── Policy reasons (stable prefixes, shown to users) ────────────────

REASON_NO_OVERLAP = "No overlap with subscription period"
REASON_NO_SUBSCRIPTION = "No active subscription for plan"
REASON_NOTICE_PERIOD = "Fails notice period"
REASON_MIN_CONSECUTIVE = "Below minimum consecutive days"
REASON_MEAL_CAP = "Capped by maxLeaveMeals"

BLOCKING_REASON_PREFIXES = (REASON_NOTICE_PERIOD, REASON_MIN_CONSECUTIVE)


# ── Role hierarchy ──────────────────────────────────────────────────

ROLE_HIERARCHY: dict[UserRole, set[UserRole]] = {
    UserRole.admin: {UserRole.admin, UserRole.mess_owner, UserRole.member},
    UserRole.mess_owner: {UserRole.mess_owner, UserRole.member},
    UserRole.member: {UserRole.member},
}

# ── Misc constants ──────────────────────────────────────────────────

DATE_FORMAT = "%d/%m/%Y"          # Display format: 19/02/2026
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50
