"""Leave computation engine — pure functions, no I/O, no ambient clock.

Pipeline per selected plan:
  - Overlap: clamp the leave window to the subscription window
  - Off-day suppression: mess-wide closures by date and meal type
  - Meal selection: boundary-day vs middle-day rules, minus suppressed meals
  - Plan rules: notice period, minimum consecutive days, meal cap
  - Proration: eligible meals → monetary credit or subscription extension

Preview and the persisting paths both call ``compute_leave``, so the same
inputs always produce the same numbers.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Literal, Optional, Sequence, Union

from mess_backend.common.constants import (
    ALL_MEAL_TYPES,
    BLOCKING_REASON_PREFIXES,
    REASON_MEAL_CAP,
    REASON_MIN_CONSECUTIVE,
    REASON_NO_OVERLAP,
    REASON_NO_SUBSCRIPTION,
    REASON_NOTICE_PERIOD,
    MealType,
)

TWO_PLACES = Decimal("0.01")


def round2(value: Decimal) -> Decimal:
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def inclusive_days(start: date, end: date) -> int:
    """Number of calendar days in ``[start, end]``; 0 when end < start."""
    return max(0, (end - start).days + 1)


def ceil_div(meals: int, meals_per_day: int) -> int:
    return math.ceil(meals / meals_per_day) if meals > 0 else 0


# ── Overlap ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Overlap:
    """Leave window clamped to one subscription window."""

    start: date
    end: date
    days: int
    # Requested end lies beyond the subscription's last day
    clamped: bool
    subscription_start: date
    subscription_end: date

    @property
    def is_empty(self) -> bool:
        return self.days == 0


def compute_overlap(
    leave_start: date,
    leave_end: date,
    subscription_start: Optional[date] = None,
    subscription_end: Optional[date] = None,
) -> Overlap:
    """Clamp ``[leave_start, leave_end]`` to the subscription window.

    An unset subscription boundary defaults to the leave's own boundary.
    """
    sub_start = subscription_start or leave_start
    sub_end = subscription_end or leave_end
    eff_start = max(leave_start, sub_start)
    eff_end = min(leave_end, sub_end)
    return Overlap(
        start=eff_start,
        end=eff_end,
        days=inclusive_days(eff_start, eff_end),
        clamped=leave_end > sub_end,
        subscription_start=sub_start,
        subscription_end=sub_end,
    )


# ── Off-day suppression ─────────────────────────────────────────────


@dataclass(frozen=True)
class SingleOffDay:
    day: date
    meal_types: frozenset[MealType] = frozenset(ALL_MEAL_TYPES)
    kind: Literal["single"] = "single"


@dataclass(frozen=True)
class RangedOffDay:
    start: date
    end: date
    start_meal_types: frozenset[MealType] = frozenset(ALL_MEAL_TYPES)
    end_meal_types: frozenset[MealType] = frozenset(ALL_MEAL_TYPES)
    kind: Literal["range"] = "range"


OffDayRecord = Union[SingleOffDay, RangedOffDay]
SuppressionIndex = dict[date, set[MealType]]


def _ranged_meals_for(record: RangedOffDay, day: date) -> Iterable[MealType]:
    # Same boundary-day rule as leave requests: first day uses the start
    # selection, last day the end selection, every day between is fully closed.
    if day == record.start:
        return record.start_meal_types
    if day == record.end:
        return record.end_meal_types
    return ALL_MEAL_TYPES


def build_suppression_index(
    records: Iterable[OffDayRecord],
    window_start: date,
    window_end: date,
) -> SuppressionIndex:
    """Map each date in ``[window_start, window_end]`` to its closed meal types."""
    index: SuppressionIndex = {}
    for record in records:
        if isinstance(record, SingleOffDay):
            if window_start <= record.day <= window_end:
                index.setdefault(record.day, set()).update(record.meal_types)
        elif isinstance(record, RangedOffDay):
            day = max(record.start, window_start)
            last = min(record.end, window_end)
            while day <= last:
                index.setdefault(day, set()).update(_ranged_meals_for(record, day))
                day += timedelta(days=1)
        else:
            raise TypeError(f"Unknown off-day record: {record!r}")
    return index


# ── Meal selection ──────────────────────────────────────────────────


@dataclass(frozen=True)
class MealSelection:
    """Which meals the member skips on the first, last, and middle days."""

    start_day: frozenset[MealType]
    end_day: frozenset[MealType]
    middle: frozenset[MealType]

    @classmethod
    def from_request(
        cls,
        meal_types: Optional[Sequence[MealType]],
        start_date_meal_types: Optional[Sequence[MealType]] = None,
        end_date_meal_types: Optional[Sequence[MealType]] = None,
    ) -> "MealSelection":
        """Apply defaults: no middle selection means every meal; an omitted
        boundary selection follows the middle one. Explicit empty lists stay empty."""
        middle = frozenset(meal_types) if meal_types else frozenset(ALL_MEAL_TYPES)
        return cls(
            start_day=middle if start_date_meal_types is None else frozenset(start_date_meal_types),
            end_day=middle if end_date_meal_types is None else frozenset(end_date_meal_types),
            middle=middle,
        )


@dataclass
class MissedMeals:
    breakdown: dict[MealType, int] = field(
        default_factory=lambda: {t: 0 for t in ALL_MEAL_TYPES}
    )
    by_date: dict[date, list[MealType]] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.breakdown.values())


def select_missed_meals(
    overlap: Overlap,
    plan_meal_types: Sequence[MealType],
    selection: MealSelection,
    suppression: Optional[SuppressionIndex] = None,
) -> MissedMeals:
    """Count the meals forgone on each overlap day.

    When the requested end lies past the subscription, the subscription's
    last covered day is not the member's chosen end day, so it is counted
    with the middle selection. A single-day overlap only uses the start-day
    selection.
    """
    suppression = suppression or {}
    missed = MissedMeals()
    for d in range(overlap.days):
        day = overlap.start + timedelta(days=d)
        is_first = d == 0
        is_last = d == overlap.days - 1
        is_middle = not is_first and (not is_last or overlap.clamped)
        closed = suppression.get(day, set())
        for meal in plan_meal_types:
            take_start = is_first and meal in selection.start_day
            take_end = (
                not overlap.clamped
                and is_last
                and overlap.days > 1
                and meal in selection.end_day
            )
            take_middle = is_middle and meal in selection.middle
            if not (take_start or take_end or take_middle):
                continue
            if meal in closed:
                continue
            missed.breakdown[meal] += 1
            missed.by_date.setdefault(day, []).append(meal)
    return missed


# ── Plan rules ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class LeaveRules:
    meals_per_day: int = 3
    notice_hours: int = 2
    require_notice: bool = False
    min_consecutive_days: int = 1
    leave_limits_enabled: bool = False
    max_leave_meals_enabled: bool = False
    max_leave_meals: int = 0
    extend_subscription: bool = False
    auto_approval: bool = False

    @property
    def caps_meals(self) -> bool:
        return self.leave_limits_enabled and self.max_leave_meals_enabled


@dataclass
class RuleOutcome:
    eligible_meals: int
    eligible_days: int
    reasons: list[str] = field(default_factory=list)

    @property
    def blocking(self) -> bool:
        return any(r.startswith(BLOCKING_REASON_PREFIXES) for r in self.reasons)


def apply_meal_cap(meals: int, rules: LeaveRules) -> int:
    """Clamp *meals* to the plan's ``maxLeaveMeals`` when limits are on."""
    if not rules.caps_meals:
        return meals
    return min(meals, max(0, rules.max_leave_meals))


def evaluate_rules(
    requested_meals: int,
    overlap_days: int,
    rules: LeaveRules,
    *,
    leave_starts_at: datetime,
    now: datetime,
) -> RuleOutcome:
    """Apply the plan's leave policy to the raw missed-meal count.

    Notice and minimum-day failures are blocking: they are reported as
    reasons and zero the plan's benefit later, but never raise.
    """
    outcome = RuleOutcome(eligible_meals=requested_meals, eligible_days=overlap_days)

    if rules.require_notice:
        notice_hours = max(1, rules.notice_hours)
        if leave_starts_at < now + timedelta(hours=notice_hours):
            outcome.reasons.append(f"{REASON_NOTICE_PERIOD} ({notice_hours}h required)")

    min_days = max(1, rules.min_consecutive_days)
    if overlap_days < min_days:
        outcome.reasons.append(f"{REASON_MIN_CONSECUTIVE} ({min_days})")

    capped = apply_meal_cap(requested_meals, rules)
    if capped < requested_meals:
        outcome.eligible_meals = capped
        outcome.eligible_days = ceil_div(capped, rules.meals_per_day)
        outcome.reasons.append(f"{REASON_MEAL_CAP} ({rules.max_leave_meals})")

    return outcome


# ── Proration ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class Proration:
    per_meal_rate: Decimal
    extension_meals: int = 0
    extension_days: int = 0
    deduction_meals: int = 0
    deduction_days: int = 0
    estimated_savings: Decimal = Decimal("0.00")


def per_meal_rate(
    amount: Decimal,
    subscription_start: date,
    subscription_end: date,
    meals_per_day: int,
) -> Decimal:
    subscription_days = max(1, inclusive_days(subscription_start, subscription_end))
    return Decimal(amount) / subscription_days / meals_per_day


def prorate(
    outcome: RuleOutcome,
    rules: LeaveRules,
    rate: Decimal,
) -> Proration:
    """Turn eligible meals into an extension or a credit, never both."""
    if outcome.blocking:
        return Proration(per_meal_rate=rate)
    if rules.extend_subscription:
        return Proration(
            per_meal_rate=rate,
            extension_meals=outcome.eligible_meals,
            extension_days=ceil_div(outcome.eligible_meals, rules.meals_per_day),
        )
    return Proration(
        per_meal_rate=rate,
        deduction_meals=outcome.eligible_meals,
        deduction_days=outcome.eligible_days,
        estimated_savings=round2(rate * outcome.eligible_meals),
    )


def extension_end_date(
    original_end: date,
    requested_end: date,
    extension_days: int,
) -> date:
    """New subscription end: extend from the later of the subscription end
    and the leave's requested end, so the gap between them is not counted twice."""
    anchor = requested_end if requested_end > original_end else original_end
    return anchor + timedelta(days=extension_days)


# ── Per-plan and request-level results ──────────────────────────────


@dataclass(frozen=True)
class SubscriptionWindow:
    start: Optional[date]
    end: Optional[date]
    payment_amount: Optional[Decimal] = None


@dataclass(frozen=True)
class PlanInput:
    plan_id: uuid.UUID
    plan_name: str
    rules: LeaveRules
    meal_types: tuple[MealType, ...]
    pricing_amount: Decimal = Decimal("0")
    # None when the member holds no active/pending membership for the plan
    subscription: Optional[SubscriptionWindow] = None


@dataclass
class PlanBreakdown:
    plan_id: uuid.UUID
    plan_name: str
    extend_subscription: bool
    requested_days: int
    overlap: Optional[Overlap] = None
    new_subscription_end: Optional[date] = None
    meal_breakdown: dict[MealType, int] = field(
        default_factory=lambda: {t: 0 for t in ALL_MEAL_TYPES}
    )
    requested_meals: int = 0
    eligible_days: int = 0
    eligible_meals: int = 0
    deduction_eligible_days: int = 0
    deduction_eligible_meals: int = 0
    extend_eligible_days: int = 0
    extend_eligible_meals: int = 0
    estimated_savings: Decimal = Decimal("0.00")
    rate: Decimal = Decimal("0.00")
    blocking: bool = False
    auto_approval: bool = False
    reasons: list[str] = field(default_factory=list)

    @property
    def processed_days(self) -> int:
        return self.overlap.days if self.overlap else 0

    @property
    def ignored_days(self) -> int:
        return max(0, self.requested_days - self.processed_days)

    def to_dict(self) -> dict:
        """JSON-safe snapshot stored on the leave request."""
        overlap = self.overlap
        return {
            "plan_id": str(self.plan_id),
            "plan_name": self.plan_name,
            "extend_subscription": self.extend_subscription,
            "requested_days": self.requested_days,
            "processed_days": self.processed_days,
            "ignored_days": self.ignored_days,
            "overlap_period": {
                "start_date": overlap.start.isoformat(),
                "end_date": overlap.end.isoformat(),
                "days": overlap.days,
            } if overlap and not overlap.is_empty else None,
            "subscription_period": {
                "start_date": overlap.subscription_start.isoformat(),
                "end_date": overlap.subscription_end.isoformat(),
                "new_end_date": (
                    self.new_subscription_end.isoformat()
                    if self.new_subscription_end else None
                ),
            } if overlap else None,
            "meal_breakdown": {t.value: n for t, n in self.meal_breakdown.items()},
            "requested_meals": self.requested_meals,
            "eligible_days": self.eligible_days,
            "eligible_meals": self.eligible_meals,
            "deduction_eligible_days": self.deduction_eligible_days,
            "deduction_eligible_meals": self.deduction_eligible_meals,
            "extend_eligible_days": self.extend_eligible_days,
            "extend_eligible_meals": self.extend_eligible_meals,
            "estimated_savings": str(self.estimated_savings),
            "rate": str(self.rate),
            "reasons": list(self.reasons),
        }


@dataclass
class LeaveComputation:
    requested_days: int
    plans: list[PlanBreakdown]

    @property
    def processed_days(self) -> int:
        return max((p.processed_days for p in self.plans), default=0)

    @property
    def ignored_days(self) -> int:
        return max(0, self.requested_days - self.processed_days)

    @property
    def meal_breakdown(self) -> dict[MealType, int]:
        totals = {t: 0 for t in ALL_MEAL_TYPES}
        for plan in self.plans:
            for meal, count in plan.meal_breakdown.items():
                totals[meal] += count
        return totals

    @property
    def total_meals_missed(self) -> int:
        return sum(self.meal_breakdown.values())

    @property
    def extension_meals(self) -> int:
        return sum(p.extend_eligible_meals for p in self.plans)

    @property
    def extension_days(self) -> int:
        return sum(p.extend_eligible_days for p in self.plans)

    @property
    def extend_subscription(self) -> bool:
        return self.extension_meals > 0

    @property
    def deduction_eligible_meals(self) -> int:
        return sum(p.deduction_eligible_meals for p in self.plans)

    @property
    def deduction_eligible_days(self) -> int:
        return max((p.deduction_eligible_days for p in self.plans), default=0)

    @property
    def non_deduction_meals(self) -> int:
        """Missed meals that earned neither a credit nor an extension."""
        return sum(
            p.requested_meals - p.deduction_eligible_meals - p.extend_eligible_meals
            for p in self.plans
        )

    @property
    def estimated_savings(self) -> Decimal:
        return round2(sum((p.estimated_savings for p in self.plans), Decimal("0")))

    @property
    def any_blocking(self) -> bool:
        return any(p.blocking for p in self.plans)

    @property
    def auto_approvable(self) -> bool:
        """Every selected plan auto-approves and none failed a blocking rule."""
        return bool(self.plans) and all(
            p.auto_approval and not p.blocking for p in self.plans
        )


def compute_plan(
    plan: PlanInput,
    *,
    leave_start: date,
    leave_end: date,
    selection: MealSelection,
    suppression: SuppressionIndex,
    leave_starts_at: datetime,
    now: datetime,
) -> PlanBreakdown:
    result = PlanBreakdown(
        plan_id=plan.plan_id,
        plan_name=plan.plan_name,
        extend_subscription=plan.rules.extend_subscription,
        requested_days=inclusive_days(leave_start, leave_end),
        auto_approval=plan.rules.auto_approval,
    )
    if plan.subscription is None:
        result.reasons.append(REASON_NO_SUBSCRIPTION)
        return result

    overlap = compute_overlap(
        leave_start, leave_end, plan.subscription.start, plan.subscription.end,
    )
    result.overlap = overlap
    if overlap.is_empty:
        result.reasons.append(REASON_NO_OVERLAP)
        return result

    missed = select_missed_meals(overlap, plan.meal_types, selection, suppression)
    result.meal_breakdown = missed.breakdown
    result.requested_meals = missed.total

    outcome = evaluate_rules(
        missed.total,
        overlap.days,
        plan.rules,
        leave_starts_at=leave_starts_at,
        now=now,
    )
    result.eligible_meals = outcome.eligible_meals
    result.eligible_days = outcome.eligible_days
    result.reasons.extend(outcome.reasons)
    result.blocking = outcome.blocking

    amount = plan.subscription.payment_amount or plan.pricing_amount or Decimal("0")
    rate = per_meal_rate(
        amount,
        overlap.subscription_start,
        overlap.subscription_end,
        plan.rules.meals_per_day,
    )
    proration = prorate(outcome, plan.rules, rate)
    result.rate = round2(rate)
    result.extend_eligible_meals = proration.extension_meals
    result.extend_eligible_days = proration.extension_days
    result.deduction_eligible_meals = proration.deduction_meals
    result.deduction_eligible_days = proration.deduction_days
    result.estimated_savings = proration.estimated_savings
    if proration.extension_days > 0:
        result.new_subscription_end = extension_end_date(
            overlap.subscription_end, leave_end, proration.extension_days,
        )
    return result


def compute_leave(
    plans: Sequence[PlanInput],
    *,
    leave_start: date,
    leave_end: date,
    selection: MealSelection,
    off_days: Iterable[OffDayRecord],
    leave_starts_at: datetime,
    now: datetime,
) -> LeaveComputation:
    """Run the full pipeline for every selected plan and aggregate."""
    suppression = build_suppression_index(off_days, leave_start, leave_end)
    return LeaveComputation(
        requested_days=inclusive_days(leave_start, leave_end),
        plans=[
            compute_plan(
                plan,
                leave_start=leave_start,
                leave_end=leave_end,
                selection=selection,
                suppression=suppression,
                leave_starts_at=leave_starts_at,
                now=now,
            )
            for plan in plans
        ],
    )
