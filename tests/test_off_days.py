"""Mess off-day tests — creation, edits, conflicts, cancellation, listings,
stats, and their effect on leave computation."""

from __future__ import annotations

import uuid
from datetime import date

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from mess_backend.common.audit import ENTITY_OFF_DAY, entity_history
from mess_backend.common.constants import MealType, OffDayKind, OffDayStatus, UserRole
from mess_backend.common.exceptions import (
    ConflictError,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from mess_backend.common.pagination import PaginationParams
from mess_backend.leave.schemas import LeavePreviewRequest
from mess_backend.leave.service import LeaveService
from mess_backend.mess.schemas import OffDayCreate, OffDayUpdate
from mess_backend.mess.service import OffDayService
from tests.conftest import seed_membership, seed_mess, seed_off_day, seed_plan, seed_user


def _single(mess, day: date, meals=None) -> OffDayCreate:
    return OffDayCreate(mess_id=mess.id, off_date=day, meal_types=meals, reason="Festival")


def _range(mess, start: date, end: date, **kwargs) -> OffDayCreate:
    return OffDayCreate(
        mess_id=mess.id,
        kind=OffDayKind.range,
        start_date=start,
        end_date=end,
        reason="Renovation",
        **kwargs,
    )


class TestCreateOffDay:

    async def test_single_defaults_to_all_meals(self, db: AsyncSession, clock, owner, mess):
        out = await OffDayService.create_off_day(db, clock, owner, _single(mess, date(2026, 3, 5)))
        assert out.kind == OffDayKind.single
        assert out.meal_types == [MealType.breakfast, MealType.lunch, MealType.dinner]
        assert out.status == OffDayStatus.active

    async def test_range(self, db: AsyncSession, clock, owner, mess):
        out = await OffDayService.create_off_day(
            db, clock, owner,
            _range(
                mess, date(2026, 3, 9), date(2026, 3, 11),
                start_date_meal_types=[MealType.dinner],
                end_date_meal_types=[MealType.breakfast],
            ),
        )
        assert out.range_start_date == date(2026, 3, 9)
        assert out.range_end_date == date(2026, 3, 11)
        assert out.start_date_meal_types == [MealType.dinner]

    async def test_today_is_allowed(self, db: AsyncSession, clock, owner, mess):
        out = await OffDayService.create_off_day(db, clock, owner, _single(mess, date(2026, 3, 1)))
        assert out.off_date == date(2026, 3, 1)

    async def test_past_date_rejected(self, db: AsyncSession, clock, owner, mess):
        with pytest.raises(ValidationException):
            await OffDayService.create_off_day(db, clock, owner, _single(mess, date(2026, 2, 28)))

    async def test_overlap_conflicts(self, db: AsyncSession, clock, owner, mess):
        await OffDayService.create_off_day(db, clock, owner, _single(mess, date(2026, 3, 11)))
        with pytest.raises(ConflictError):
            await OffDayService.create_off_day(
                db, clock, owner, _range(mess, date(2026, 3, 10), date(2026, 3, 12)),
            )

    async def test_cancelled_day_can_be_declared_again(self, db: AsyncSession, clock, owner, mess):
        first = await OffDayService.create_off_day(db, clock, owner, _single(mess, date(2026, 3, 11)))
        await OffDayService.cancel_off_day(db, owner, first.id, "Festival moved")
        again = await OffDayService.create_off_day(db, clock, owner, _single(mess, date(2026, 3, 11)))
        assert again.id != first.id

    async def test_other_owner_forbidden(self, db: AsyncSession, clock, mess):
        rival = await seed_user(db, role=UserRole.mess_owner, first_name="Rival")
        await seed_mess(db, rival, name="Rival Mess")
        with pytest.raises(ForbiddenException):
            await OffDayService.create_off_day(db, clock, rival, _single(mess, date(2026, 3, 5)))

    def test_range_requires_both_dates(self):
        with pytest.raises(ValueError):
            OffDayCreate(
                mess_id=uuid.uuid4(),
                kind=OffDayKind.range,
                start_date=date(2026, 3, 9),
                reason="Renovation",
            )

    def test_single_requires_date(self):
        with pytest.raises(ValueError):
            OffDayCreate(mess_id=uuid.uuid4(), reason="Festival")


class TestCancelOffDay:

    async def test_cancel(self, db: AsyncSession, clock, owner, mess):
        created = await OffDayService.create_off_day(db, clock, owner, _single(mess, date(2026, 3, 5)))
        out = await OffDayService.cancel_off_day(db, owner, created.id)
        assert out.status == OffDayStatus.cancelled

    async def test_cancel_twice_rejected(self, db: AsyncSession, clock, owner, mess):
        created = await OffDayService.create_off_day(db, clock, owner, _single(mess, date(2026, 3, 5)))
        await OffDayService.cancel_off_day(db, owner, created.id)
        with pytest.raises(ValidationException):
            await OffDayService.cancel_off_day(db, owner, created.id)

    async def test_cancel_unknown(self, db: AsyncSession, owner):
        with pytest.raises(NotFoundException):
            await OffDayService.cancel_off_day(db, owner, uuid.uuid4())


class TestUpdateOffDay:

    async def test_move_single_and_change_meals(self, db: AsyncSession, clock, owner, mess):
        created = await OffDayService.create_off_day(db, clock, owner, _single(mess, date(2026, 3, 5)))
        out = await OffDayService.update_off_day(
            db, clock, owner, created.id,
            OffDayUpdate(off_date=date(2026, 3, 7), meal_types=[MealType.dinner], reason="Holi"),
        )
        assert out.off_date == date(2026, 3, 7)
        assert out.meal_types == [MealType.dinner]
        assert out.reason == "Holi"

        history = await entity_history(db, ENTITY_OFF_DAY, created.id)
        assert [e.action for e in history] == ["create", "update"]

    async def test_reason_only_keeps_dates(self, db: AsyncSession, clock, owner, mess):
        created = await OffDayService.create_off_day(
            db, clock, owner, _range(mess, date(2026, 3, 9), date(2026, 3, 11)),
        )
        out = await OffDayService.update_off_day(
            db, clock, owner, created.id, OffDayUpdate(reason="Kitchen repairs"),
        )
        assert (out.range_start_date, out.range_end_date) == (date(2026, 3, 9), date(2026, 3, 11))
        assert out.reason == "Kitchen repairs"

    async def test_range_can_shrink_within_itself(self, db: AsyncSession, clock, owner, mess):
        created = await OffDayService.create_off_day(
            db, clock, owner, _range(mess, date(2026, 3, 9), date(2026, 3, 11)),
        )
        out = await OffDayService.update_off_day(
            db, clock, owner, created.id, OffDayUpdate(end_date=date(2026, 3, 10)),
        )
        assert out.range_end_date == date(2026, 3, 10)

    async def test_move_into_other_off_day_conflicts(self, db: AsyncSession, clock, owner, mess):
        await OffDayService.create_off_day(db, clock, owner, _single(mess, date(2026, 3, 7)))
        created = await OffDayService.create_off_day(db, clock, owner, _single(mess, date(2026, 3, 5)))
        with pytest.raises(ConflictError):
            await OffDayService.update_off_day(
                db, clock, owner, created.id, OffDayUpdate(off_date=date(2026, 3, 7)),
            )

    async def test_move_into_past_rejected(self, db: AsyncSession, clock, owner, mess):
        created = await OffDayService.create_off_day(db, clock, owner, _single(mess, date(2026, 3, 5)))
        with pytest.raises(ValidationException):
            await OffDayService.update_off_day(
                db, clock, owner, created.id, OffDayUpdate(off_date=date(2026, 2, 27)),
            )

    async def test_range_end_before_start_rejected(self, db: AsyncSession, clock, owner, mess):
        created = await OffDayService.create_off_day(
            db, clock, owner, _range(mess, date(2026, 3, 9), date(2026, 3, 11)),
        )
        with pytest.raises(ValidationException):
            await OffDayService.update_off_day(
                db, clock, owner, created.id, OffDayUpdate(end_date=date(2026, 3, 8)),
            )

    async def test_fields_of_other_kind_rejected(self, db: AsyncSession, clock, owner, mess):
        created = await OffDayService.create_off_day(db, clock, owner, _single(mess, date(2026, 3, 5)))
        with pytest.raises(ValidationException) as exc:
            await OffDayService.update_off_day(
                db, clock, owner, created.id, OffDayUpdate(end_date=date(2026, 3, 6)),
            )
        assert "end_date" in exc.value.errors

    async def test_cancelled_cannot_be_updated(self, db: AsyncSession, clock, owner, mess):
        created = await OffDayService.create_off_day(db, clock, owner, _single(mess, date(2026, 3, 5)))
        await OffDayService.cancel_off_day(db, owner, created.id)
        with pytest.raises(ValidationException):
            await OffDayService.update_off_day(
                db, clock, owner, created.id, OffDayUpdate(reason="Changed plans"),
            )

    async def test_other_owner_forbidden(self, db: AsyncSession, clock, owner, mess):
        created = await OffDayService.create_off_day(db, clock, owner, _single(mess, date(2026, 3, 5)))
        rival = await seed_user(db, role=UserRole.mess_owner, first_name="Rival")
        with pytest.raises(ForbiddenException):
            await OffDayService.update_off_day(
                db, clock, rival, created.id, OffDayUpdate(reason="Not mine"),
            )

    async def test_moved_off_day_changes_leave_preview(
        self, db: AsyncSession, clock, owner, member, mess,
    ):
        plan = await seed_plan(db, mess)
        await seed_membership(db, member, plan)
        created = await OffDayService.create_off_day(db, clock, owner, _single(mess, date(2026, 3, 20)))
        request = LeavePreviewRequest(
            meal_plan_ids=[plan.id],
            start_date=date(2026, 3, 10),
            end_date=date(2026, 3, 12),
        )
        before = await LeaveService.preview(db, clock, member, request)
        assert before.total_meals_missed == 9

        await OffDayService.update_off_day(
            db, clock, owner, created.id, OffDayUpdate(off_date=date(2026, 3, 11)),
        )
        after = await LeaveService.preview(db, clock, member, request)
        assert after.total_meals_missed == 6


class TestListOffDays:

    async def test_upcoming_and_past(self, db: AsyncSession, clock, owner, mess):
        await seed_off_day(db, mess, off_date=date(2026, 2, 20), meal_types=["lunch"])
        await seed_off_day(db, mess, start=date(2026, 2, 27), end=date(2026, 3, 2))
        await OffDayService.create_off_day(db, clock, owner, _single(mess, date(2026, 3, 5)))
        params = PaginationParams(page=1, page_size=50)

        upcoming = await OffDayService.list_off_days(db, clock, owner, mess.id, params, when="upcoming")
        past = await OffDayService.list_off_days(db, clock, owner, mess.id, params, when="past")
        everything = await OffDayService.list_off_days(db, clock, owner, mess.id, params)

        # A range still running today counts as upcoming
        assert [o.range_start_date or o.off_date for o in upcoming.data] == [
            date(2026, 2, 27), date(2026, 3, 5),
        ]
        assert [o.off_date for o in past.data] == [date(2026, 2, 20)]
        assert everything.meta.total == 3

    async def test_status_filter(self, db: AsyncSession, clock, owner, mess):
        created = await OffDayService.create_off_day(db, clock, owner, _single(mess, date(2026, 3, 5)))
        await OffDayService.create_off_day(db, clock, owner, _single(mess, date(2026, 3, 6)))
        await OffDayService.cancel_off_day(db, owner, created.id)
        params = PaginationParams(page=1, page_size=50)

        active = await OffDayService.list_off_days(
            db, clock, owner, mess.id, params, status=OffDayStatus.active,
        )
        assert [o.off_date for o in active.data] == [date(2026, 3, 6)]


class TestOffDayStats:

    async def test_counts(self, db: AsyncSession, clock, owner, mess):
        await seed_off_day(db, mess, off_date=date(2026, 2, 20))
        await seed_off_day(db, mess, start=date(2026, 2, 27), end=date(2026, 3, 2))
        await OffDayService.create_off_day(db, clock, owner, _single(mess, date(2026, 3, 5)))
        dropped = await OffDayService.create_off_day(db, clock, owner, _single(mess, date(2026, 3, 6)))
        await OffDayService.cancel_off_day(db, owner, dropped.id)

        stats = await OffDayService.get_off_day_stats(db, clock, owner, mess.id)
        assert stats.total == 4
        assert stats.active == 3
        assert stats.cancelled == 1
        # The running range and 03-05; cancelled and finished ones are excluded
        assert stats.upcoming == 2

    async def test_other_mess_not_counted(self, db: AsyncSession, clock, owner, mess):
        rival = await seed_user(db, role=UserRole.mess_owner, first_name="Rival")
        rival_mess = await seed_mess(db, rival, name="Rival Mess")
        await seed_off_day(db, rival_mess, off_date=date(2026, 3, 5))

        stats = await OffDayService.get_off_day_stats(db, clock, owner, mess.id)
        assert stats.total == 0
        assert stats.upcoming == 0

    async def test_other_owner_forbidden(self, db: AsyncSession, clock, mess):
        rival = await seed_user(db, role=UserRole.mess_owner, first_name="Rival")
        with pytest.raises(ForbiddenException):
            await OffDayService.get_off_day_stats(db, clock, rival, mess.id)


class TestOffDaysInComputation:

    async def test_ranged_closure_suppresses_boundary_meals(
        self, db: AsyncSession, clock, owner, member, mess,
    ):
        """Dinner closed on the 9th, all day on the 10th, breakfast on the 11th."""
        plan = await seed_plan(db, mess)
        await seed_membership(db, member, plan)
        await OffDayService.create_off_day(
            db, clock, owner,
            _range(
                mess, date(2026, 3, 9), date(2026, 3, 11),
                start_date_meal_types=[MealType.dinner],
                end_date_meal_types=[MealType.breakfast],
            ),
        )

        preview = await LeaveService.preview(
            db, clock, member,
            LeavePreviewRequest(
                meal_plan_ids=[plan.id],
                start_date=date(2026, 3, 10),
                end_date=date(2026, 3, 12),
            ),
        )
        assert preview.meal_breakdown == {
            MealType.breakfast: 1, MealType.lunch: 2, MealType.dinner: 2,
        }
        assert preview.total_meals_missed == 5
