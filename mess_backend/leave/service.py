"""Leave service layer — preview, submission, edits, approvals, cancellation.

Business logic:
  - Preview and submission run the same computation pipeline
  - Duplicate detection: one open leave per plan per date
  - Auto-approval when every selected plan allows it and no plan is blocked
  - End-date edits re-run the pipeline against the leave's first recorded
    subscription end, then re-apply or reverse ledger entries
  - Cancellation reverses every extension and zeroes the savings
  - Status transitions and ledger writes share one unit of work
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mess_backend.auth.models import User
from mess_backend.common.audit import ENTITY_LEAVE_REQUEST, create_audit_entry
from mess_backend.common.clock import Clock
from mess_backend.common.constants import (
    ALL_MEAL_TYPES,
    LEAVE_ELIGIBLE_MEMBERSHIP_STATUSES,
    OPEN_LEAVE_STATUSES,
    LeaveStatus,
    MealType,
    UserRole,
)
from mess_backend.common.exceptions import (
    ConflictError,
    ForbiddenException,
    InvalidTransitionError,
    LedgerError,
    NotFoundException,
    ValidationException,
)
from mess_backend.common.pagination import PaginatedResponse, PaginationParams, paginate
from mess_backend.common.unit_of_work import UnitOfWork
from mess_backend.config import settings
from mess_backend.leave.calculator import (
    LeaveComputation,
    LeaveRules,
    MealSelection,
    PlanInput,
    SubscriptionWindow,
    compute_leave,
)
from mess_backend.leave.ledger import ExtensionLedger
from mess_backend.leave.models import LeaveRequest, leave_request_plans
from mess_backend.leave.schemas import (
    LeaveEndDateUpdate,
    LeavePreviewOut,
    LeavePreviewRequest,
    LeaveRequestCreate,
    LeaveRequestOut,
    LeaveStatsOut,
    PlanBreakdownOut,
)
from mess_backend.mess.models import MealPlan, Membership
from mess_backend.mess.service import MessService, OffDayService

logger = logging.getLogger(__name__)

AUTO_APPROVAL_REMARKS = "Auto-approved"

# Columns written from a LeaveComputation
COMPUTED_FIELDS = (
    "requested_days",
    "processed_days",
    "ignored_days",
    "total_meals_missed",
    "meal_breakdown",
    "plan_wise_breakdown",
    "estimated_savings",
    "extend_subscription",
    "extension_meals",
    "extension_days",
    "deduction_eligible_meals",
    "deduction_eligible_days",
    "non_deduction_meals",
)

APPROVAL_FIELDS = ("status", "approved_by", "approved_at", "approval_remarks")


def _ordered(selection: frozenset[MealType]) -> list[str]:
    return [t.value for t in ALL_MEAL_TYPES if t in selection]


# ═════════════════════════════════════════════════════════════════════
# LeaveService
# ═════════════════════════════════════════════════════════════════════


class LeaveService:
    """Async leave operations for members and mess owners."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _rules_for(plan: MealPlan) -> LeaveRules:
        return LeaveRules(
            meals_per_day=max(1, plan.meals_per_day or settings.DEFAULT_MEALS_PER_DAY),
            notice_hours=max(1, plan.notice_hours or settings.DEFAULT_NOTICE_HOURS),
            require_notice=bool(plan.require_two_hour_notice),
            min_consecutive_days=max(1, plan.min_consecutive_days or 1),
            leave_limits_enabled=bool(plan.leave_limits_enabled),
            max_leave_meals_enabled=bool(plan.max_leave_meals_enabled),
            max_leave_meals=plan.max_leave_meals or 0,
            extend_subscription=bool(plan.extend_subscription),
            auto_approval=bool(plan.auto_approval),
        )

    @staticmethod
    async def _load_plans(db: AsyncSession, plan_ids: Sequence[uuid.UUID]) -> list[MealPlan]:
        """Active plans in request order; all must belong to one mess."""
        result = await db.execute(
            select(MealPlan).where(MealPlan.id.in_(plan_ids), MealPlan.is_active.is_(True))
        )
        by_id = {p.id: p for p in result.scalars().all()}
        for plan_id in plan_ids:
            if plan_id not in by_id:
                raise NotFoundException("MealPlan", str(plan_id))
        plans = [by_id[i] for i in plan_ids]
        if len({p.mess_id for p in plans}) > 1:
            raise ValidationException(
                {"meal_plan_ids": ["All meal plans must belong to the same mess."]}
            )
        return plans

    @staticmethod
    async def _load_memberships(
        db: AsyncSession,
        user_id: uuid.UUID,
        plan_ids: Sequence[uuid.UUID],
    ) -> dict[uuid.UUID, Membership]:
        """Active/pending membership per plan; the latest-ending one wins."""
        result = await db.execute(
            select(Membership).where(
                Membership.user_id == user_id,
                Membership.meal_plan_id.in_(plan_ids),
                Membership.status.in_(LEAVE_ELIGIBLE_MEMBERSHIP_STATUSES),
            )
        )
        chosen: dict[uuid.UUID, Membership] = {}
        for m in result.scalars().all():
            current = chosen.get(m.meal_plan_id)
            if current is None or (m.subscription_end_date or date.min) > (
                current.subscription_end_date or date.min
            ):
                chosen[m.meal_plan_id] = m
        return chosen

    @staticmethod
    def _plan_inputs(
        plans: Sequence[MealPlan],
        memberships: dict[uuid.UUID, Membership],
        anchors: dict[uuid.UUID, date],
    ) -> list[PlanInput]:
        inputs = []
        for plan in plans:
            membership = memberships.get(plan.id)
            window = None
            if membership is not None:
                window = SubscriptionWindow(
                    start=membership.subscription_start_date,
                    end=anchors.get(plan.id) or membership.subscription_end_date,
                    payment_amount=membership.payment_amount,
                )
            inputs.append(
                PlanInput(
                    plan_id=plan.id,
                    plan_name=plan.name,
                    rules=LeaveService._rules_for(plan),
                    meal_types=tuple(plan.meal_types),
                    pricing_amount=plan.pricing_amount or Decimal("0"),
                    subscription=window,
                )
            )
        return inputs

    @staticmethod
    async def _compute(
        db: AsyncSession,
        clock: Clock,
        *,
        user_id: uuid.UUID,
        plans: Sequence[MealPlan],
        start: date,
        end: date,
        selection: MealSelection,
        anchors: Optional[dict[uuid.UUID, date]] = None,
    ) -> tuple[LeaveComputation, dict[uuid.UUID, Membership]]:
        memberships = await LeaveService._load_memberships(db, user_id, [p.id for p in plans])
        off_days = await OffDayService.records_for_window(db, plans[0].mess_id, start, end)
        computation = compute_leave(
            LeaveService._plan_inputs(plans, memberships, anchors or {}),
            leave_start=start,
            leave_end=end,
            selection=selection,
            off_days=off_days,
            leave_starts_at=clock.start_of_day(start),
            now=clock.now(),
        )
        return computation, memberships

    @staticmethod
    async def _check_duplicate(
        db: AsyncSession,
        user_id: uuid.UUID,
        plan_ids: Sequence[uuid.UUID],
        start: date,
        end: date,
        *,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        query = (
            select(LeaveRequest.id)
            .join(leave_request_plans, leave_request_plans.c.leave_request_id == LeaveRequest.id)
            .where(
                LeaveRequest.user_id == user_id,
                LeaveRequest.status.in_(OPEN_LEAVE_STATUSES),
                LeaveRequest.start_date <= end,
                LeaveRequest.end_date >= start,
                leave_request_plans.c.meal_plan_id.in_(plan_ids),
            )
        )
        if exclude_id is not None:
            query = query.where(LeaveRequest.id != exclude_id)
        clash = (await db.execute(query.limit(1))).scalar()
        if clash is not None:
            raise ConflictError(
                "dates",
                f"{start.isoformat()}..{end.isoformat()}",
                "An overlapping leave request already exists for one of the selected plans.",
            )

    @staticmethod
    def _store_computation(leave: LeaveRequest, computation: LeaveComputation) -> None:
        leave.requested_days = computation.requested_days
        leave.processed_days = computation.processed_days
        leave.ignored_days = computation.ignored_days
        leave.total_meals_missed = computation.total_meals_missed
        leave.meal_breakdown = {t.value: n for t, n in computation.meal_breakdown.items()}
        leave.plan_wise_breakdown = [p.to_dict() for p in computation.plans]
        leave.estimated_savings = computation.estimated_savings
        leave.extend_subscription = computation.extend_subscription
        leave.extension_meals = computation.extension_meals
        leave.extension_days = computation.extension_days
        leave.deduction_eligible_meals = computation.deduction_eligible_meals
        leave.deduction_eligible_days = computation.deduction_eligible_days
        leave.non_deduction_meals = computation.non_deduction_meals

    @staticmethod
    def _stored_selection(leave: LeaveRequest) -> MealSelection:
        return MealSelection(
            start_day=frozenset(MealType(v) for v in leave.start_date_meal_types),
            end_day=frozenset(MealType(v) for v in leave.end_date_meal_types),
            middle=frozenset(MealType(v) for v in leave.meal_types),
        )

    @staticmethod
    async def _apply_extensions(
        db: AsyncSession,
        uow: UnitOfWork,
        clock: Clock,
        leave: LeaveRequest,
        memberships: dict[uuid.UUID, Membership],
        *,
        reapply: bool = False,
    ) -> None:
        """Push ledger entries for every plan the stored breakdown extends."""
        ledger = ExtensionLedger(db, uow, clock)
        for item in leave.plan_wise_breakdown:
            plan_id = uuid.UUID(item["plan_id"])
            days = item["extend_eligible_days"]
            if days <= 0:
                if reapply:
                    await ledger.reverse(leave, plan_id=plan_id)
                continue
            membership = memberships.get(plan_id)
            if membership is None:
                raise LedgerError(
                    f"No active subscription for plan {plan_id}; extension cannot be applied."
                )
            apply = ledger.reapply if reapply else ledger.apply
            await apply(
                leave,
                plan_id,
                membership.id,
                extension_meals=item["extend_eligible_meals"],
                extension_days=days,
            )

    @staticmethod
    def _mark_approved(
        uow: UnitOfWork,
        leave: LeaveRequest,
        now: datetime,
        *,
        approver_id: Optional[uuid.UUID],
        remarks: Optional[str],
    ) -> None:
        uow.restore_attrs(leave, *APPROVAL_FIELDS)
        leave.status = LeaveStatus.approved
        leave.approved_by = approver_id
        leave.approved_at = now
        leave.approval_remarks = remarks

    @staticmethod
    async def _get_leave(db: AsyncSession, leave_id: uuid.UUID) -> LeaveRequest:
        result = await db.execute(select(LeaveRequest).where(LeaveRequest.id == leave_id))
        leave = result.scalars().first()
        if leave is None:
            raise NotFoundException("LeaveRequest", str(leave_id))
        return leave

    @staticmethod
    async def _assert_can_view(db: AsyncSession, user: User, leave: LeaveRequest) -> None:
        if leave.user_id == user.id:
            return
        await MessService.assert_can_manage(db, user, leave.mess_id)

    @staticmethod
    def _build_response(leave: LeaveRequest) -> LeaveRequestOut:
        return LeaveRequestOut.model_validate(leave)

    @staticmethod
    def _build_preview(computation: LeaveComputation) -> LeavePreviewOut:
        return LeavePreviewOut(
            requested_days=computation.requested_days,
            processed_days=computation.processed_days,
            ignored_days=computation.ignored_days,
            total_meals_missed=computation.total_meals_missed,
            meal_breakdown=computation.meal_breakdown,
            estimated_savings=computation.estimated_savings,
            extend_subscription=computation.extend_subscription,
            extension_meals=computation.extension_meals,
            extension_days=computation.extension_days,
            deduction_eligible_meals=computation.deduction_eligible_meals,
            deduction_eligible_days=computation.deduction_eligible_days,
            non_deduction_meals=computation.non_deduction_meals,
            auto_approvable=computation.auto_approvable,
            plans=[PlanBreakdownOut.model_validate(p.to_dict()) for p in computation.plans],
        )

    # ─────────────────────────────────────────────────────────────────
    # Preview
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def preview(
        db: AsyncSession,
        clock: Clock,
        user: User,
        data: LeavePreviewRequest,
    ) -> LeavePreviewOut:
        """Estimate a leave without persisting anything."""
        plans = await LeaveService._load_plans(db, data.meal_plan_ids)
        selection = MealSelection.from_request(
            data.meal_types, data.start_date_meal_types, data.end_date_meal_types,
        )
        computation, _ = await LeaveService._compute(
            db, clock,
            user_id=user.id,
            plans=plans,
            start=data.start_date,
            end=data.end_date,
            selection=selection,
        )
        return LeaveService._build_preview(computation)

    # ─────────────────────────────────────────────────────────────────
    # Create
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def create_leave(
        db: AsyncSession,
        clock: Clock,
        user: User,
        data: LeaveRequestCreate,
    ) -> LeaveRequestOut:
        """Submit a leave. Policy failures never reject the request: they are
        recorded per plan and keep it pending for manual review."""
        plans = await LeaveService._load_plans(db, data.meal_plan_ids)
        await LeaveService._check_duplicate(
            db, user.id, [p.id for p in plans], data.start_date, data.end_date,
        )

        selection = MealSelection.from_request(
            data.meal_types, data.start_date_meal_types, data.end_date_meal_types,
        )
        computation, memberships = await LeaveService._compute(
            db, clock,
            user_id=user.id,
            plans=plans,
            start=data.start_date,
            end=data.end_date,
            selection=selection,
        )

        leave = LeaveRequest(
            id=uuid.uuid4(),
            user_id=user.id,
            mess_id=plans[0].mess_id,
            start_date=data.start_date,
            end_date=data.end_date,
            original_end_date=data.end_date,
            meal_types=_ordered(selection.middle),
            start_date_meal_types=_ordered(selection.start_day),
            end_date_meal_types=_ordered(selection.end_day),
            reason=data.reason,
            status=LeaveStatus.pending,
            revision=1,
            meal_plans=plans,
            extension_entries=[],
        )
        LeaveService._store_computation(leave, computation)

        async with UnitOfWork(db, f"create leave {leave.id}") as uow:
            db.add(leave)
            await db.flush()
            if computation.auto_approvable:
                LeaveService._mark_approved(
                    uow, leave, clock.now(), approver_id=None, remarks=AUTO_APPROVAL_REMARKS,
                )
                await LeaveService._apply_extensions(db, uow, clock, leave, memberships)

        await create_audit_entry(
            db,
            action="create",
            entity_type=ENTITY_LEAVE_REQUEST,
            entity_id=leave.id,
            actor_id=user.id,
            new_values={
                "status": leave.status.value,
                "start_date": leave.start_date.isoformat(),
                "end_date": leave.end_date.isoformat(),
                "estimated_savings": str(leave.estimated_savings),
                "extension_days": leave.extension_days,
            },
        )
        logger.info(
            "Leave %s submitted by %s (%s..%s): %s",
            leave.id, user.id, leave.start_date, leave.end_date, leave.status.value,
        )
        return LeaveService._build_response(leave)

    # ─────────────────────────────────────────────────────────────────
    # Edit end date
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def update_end_date(
        db: AsyncSession,
        clock: Clock,
        user: User,
        leave_id: uuid.UUID,
        data: LeaveEndDateUpdate,
    ) -> LeaveRequestOut:
        """Move the end date of an open leave and re-run the pipeline.

        Meals are recomputed against the first subscription end this leave
        recorded, so an extension already granted never counts as coverage.
        """
        leave = await LeaveService._get_leave(db, leave_id)
        if leave.user_id != user.id:
            raise ForbiddenException("You can only edit your own leave requests.")
        if leave.status not in OPEN_LEAVE_STATUSES:
            raise InvalidTransitionError("Leave request", leave.status.value)

        new_end = data.new_end_date
        if new_end < leave.start_date:
            raise ValidationException({"new_end_date": ["End date cannot be before start date."]})
        if new_end == leave.end_date:
            raise ValidationException({"new_end_date": ["End date is unchanged."]})
        if (new_end - leave.start_date).days > settings.MAX_LEAVE_SPAN_DAYS:
            raise ValidationException(
                {"new_end_date": [
                    f"Leave request cannot span more than {settings.MAX_LEAVE_SPAN_DAYS} days."
                ]}
            )

        plans = list(leave.meal_plans)
        await LeaveService._check_duplicate(
            db, user.id, [p.id for p in plans], leave.start_date, new_end, exclude_id=leave.id,
        )

        anchors: dict[uuid.UUID, date] = {}
        for plan in plans:
            first_end = ExtensionLedger.first_original_end(leave, plan.id)
            if first_end is not None:
                anchors[plan.id] = first_end
        computation, memberships = await LeaveService._compute(
            db, clock,
            user_id=leave.user_id,
            plans=plans,
            start=leave.start_date,
            end=new_end,
            selection=LeaveService._stored_selection(leave),
            anchors=anchors,
        )

        old_values = {
            "status": leave.status.value,
            "end_date": leave.end_date.isoformat(),
            "revision": leave.revision,
        }
        was_approved = leave.status == LeaveStatus.approved

        async with UnitOfWork(db, f"edit leave {leave.id}") as uow:
            uow.restore_attrs(leave, "end_date", "revision", "reason", *COMPUTED_FIELDS)
            leave.end_date = new_end
            leave.revision += 1
            if data.reason:
                leave.reason = data.reason
            LeaveService._store_computation(leave, computation)

            if computation.auto_approvable:
                LeaveService._mark_approved(
                    uow, leave, clock.now(), approver_id=None, remarks=AUTO_APPROVAL_REMARKS,
                )
                await LeaveService._apply_extensions(
                    db, uow, clock, leave, memberships, reapply=True,
                )
            else:
                if was_approved:
                    await ExtensionLedger(db, uow, clock).reverse(leave)
                uow.restore_attrs(leave, *APPROVAL_FIELDS)
                leave.status = LeaveStatus.pending
                leave.approved_by = None
                leave.approved_at = None
                leave.approval_remarks = None

        await create_audit_entry(
            db,
            action="update",
            entity_type=ENTITY_LEAVE_REQUEST,
            entity_id=leave.id,
            actor_id=user.id,
            old_values=old_values,
            new_values={
                "status": leave.status.value,
                "end_date": leave.end_date.isoformat(),
                "revision": leave.revision,
            },
        )
        logger.info(
            "Leave %s end date moved to %s (revision %s): %s",
            leave.id, new_end, leave.revision, leave.status.value,
        )
        return LeaveService._build_response(leave)

    # ─────────────────────────────────────────────────────────────────
    # Cancel
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def cancel_leave(
        db: AsyncSession,
        clock: Clock,
        user: User,
        leave_id: uuid.UUID,
        reason: Optional[str] = None,
    ) -> LeaveRequestOut:
        """Cancel an open leave, reversing any subscription extension."""
        leave = await LeaveService._get_leave(db, leave_id)
        await LeaveService._assert_can_view(db, user, leave)
        if leave.status not in OPEN_LEAVE_STATUSES:
            raise InvalidTransitionError("Leave request", leave.status.value)

        old_status = leave.status.value
        async with UnitOfWork(db, f"cancel leave {leave.id}") as uow:
            await ExtensionLedger(db, uow, clock).reverse(leave)
            uow.restore_attrs(leave, "status", "estimated_savings", "cancelled_at")
            leave.status = LeaveStatus.cancelled
            leave.estimated_savings = Decimal("0")
            leave.cancelled_at = clock.now()

        await create_audit_entry(
            db,
            action="cancel",
            entity_type=ENTITY_LEAVE_REQUEST,
            entity_id=leave.id,
            actor_id=user.id,
            old_values={"status": old_status},
            new_values={"status": LeaveStatus.cancelled.value, "reason": reason},
        )
        logger.info("Leave %s cancelled by %s", leave.id, user.id)
        return LeaveService._build_response(leave)

    # ─────────────────────────────────────────────────────────────────
    # Approve / Reject
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def approve_leave(
        db: AsyncSession,
        clock: Clock,
        approver: User,
        leave_id: uuid.UUID,
        *,
        remarks: Optional[str] = None,
    ) -> LeaveRequestOut:
        """Approve a pending leave and apply the extensions computed at submission."""
        leave = await LeaveService._get_leave(db, leave_id)
        await MessService.assert_can_manage(db, approver, leave.mess_id)
        if leave.status != LeaveStatus.pending:
            raise InvalidTransitionError("Leave request", leave.status.value)

        memberships = await LeaveService._load_memberships(
            db, leave.user_id, leave.meal_plan_ids,
        )
        async with UnitOfWork(db, f"approve leave {leave.id}") as uow:
            LeaveService._mark_approved(
                uow, leave, clock.now(), approver_id=approver.id, remarks=remarks,
            )
            await LeaveService._apply_extensions(db, uow, clock, leave, memberships)

        await create_audit_entry(
            db,
            action="approve",
            entity_type=ENTITY_LEAVE_REQUEST,
            entity_id=leave.id,
            actor_id=approver.id,
            old_values={"status": LeaveStatus.pending.value},
            new_values={"status": LeaveStatus.approved.value, "remarks": remarks},
        )
        logger.info("Leave %s approved by %s", leave.id, approver.id)
        return LeaveService._build_response(leave)

    @staticmethod
    async def reject_leave(
        db: AsyncSession,
        clock: Clock,
        approver: User,
        leave_id: uuid.UUID,
        reason: str,
    ) -> LeaveRequestOut:
        leave = await LeaveService._get_leave(db, leave_id)
        await MessService.assert_can_manage(db, approver, leave.mess_id)
        if leave.status != LeaveStatus.pending:
            raise InvalidTransitionError("Leave request", leave.status.value)

        leave.status = LeaveStatus.rejected
        leave.approved_by = approver.id
        leave.approved_at = clock.now()
        leave.approval_remarks = reason
        await db.flush()

        await create_audit_entry(
            db,
            action="reject",
            entity_type=ENTITY_LEAVE_REQUEST,
            entity_id=leave.id,
            actor_id=approver.id,
            old_values={"status": LeaveStatus.pending.value},
            new_values={"status": LeaveStatus.rejected.value, "reason": reason},
        )
        logger.info("Leave %s rejected by %s", leave.id, approver.id)
        return LeaveService._build_response(leave)

    # ─────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_leave(db: AsyncSession, user: User, leave_id: uuid.UUID) -> LeaveRequestOut:
        leave = await LeaveService._get_leave(db, leave_id)
        await LeaveService._assert_can_view(db, user, leave)
        return LeaveService._build_response(leave)

    @staticmethod
    async def list_my_leaves(
        db: AsyncSession,
        user: User,
        params: PaginationParams,
        *,
        status: Optional[LeaveStatus] = None,
    ) -> PaginatedResponse[LeaveRequestOut]:
        query = (
            select(LeaveRequest)
            .where(LeaveRequest.user_id == user.id)
            .order_by(LeaveRequest.created_at.desc())
        )
        if status:
            query = query.where(LeaveRequest.status == status)
        return await paginate(db, query, params, transform=LeaveService._build_response)

    @staticmethod
    async def _mess_scope(
        db: AsyncSession, user: User, mess_id: Optional[uuid.UUID],
    ) -> Optional[list[uuid.UUID]]:
        """Mess ids a listing may cover; ``None`` means unrestricted (admin)."""
        if mess_id is not None:
            await MessService.assert_can_manage(db, user, mess_id)
            return [mess_id]
        return await MessService.managed_mess_ids(db, user)

    @staticmethod
    async def list_mess_leaves(
        db: AsyncSession,
        user: User,
        params: PaginationParams,
        *,
        mess_id: Optional[uuid.UUID] = None,
        status: Optional[LeaveStatus] = None,
    ) -> PaginatedResponse[LeaveRequestOut]:
        """Leave requests of the messes *user* manages, newest first."""
        scope = await LeaveService._mess_scope(db, user, mess_id)
        query = select(LeaveRequest).order_by(LeaveRequest.created_at.desc())
        if scope is not None:
            query = query.where(LeaveRequest.mess_id.in_(scope))
        if status:
            query = query.where(LeaveRequest.status == status)
        return await paginate(db, query, params, transform=LeaveService._build_response)

    @staticmethod
    async def get_stats(
        db: AsyncSession,
        clock: Clock,
        user: User,
        *,
        mess_id: Optional[uuid.UUID] = None,
    ) -> LeaveStatsOut:
        scope = await LeaveService._mess_scope(db, user, mess_id)

        def scoped(query):
            return query if scope is None else query.where(LeaveRequest.mess_id.in_(scope))

        rows = await db.execute(
            scoped(select(LeaveRequest.status, func.count()).group_by(LeaveRequest.status))
        )
        stats = LeaveStatsOut()
        for status, count in rows.all():
            stats.total += count
            if status != LeaveStatus.extended:
                setattr(stats, status.value, count)

        today = clock.today()
        week_start = clock.start_of_day(today - timedelta(days=today.weekday()))
        month_start = clock.start_of_day(today.replace(day=1))
        for field, since in (("this_week", week_start), ("this_month", month_start)):
            count = await db.execute(
                scoped(
                    select(func.count()).select_from(LeaveRequest).where(
                        LeaveRequest.created_at >= since.astimezone(timezone.utc)
                    )
                )
            )
            setattr(stats, field, count.scalar_one())
        return stats
