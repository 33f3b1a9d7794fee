"""Mess service layer — ownership checks and off-day management.

Business logic:
  - Mess-owner authority over a mess (admins manage every mess)
  - Single and ranged off days: no past dates, no two active closures on one date
  - Conversion of stored off days into the leave engine's suppression records
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, timedelta, timezone
from typing import Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from mess_backend.auth.models import User
from mess_backend.common.audit import ENTITY_OFF_DAY, create_audit_entry
from mess_backend.common.clock import Clock
from mess_backend.common.constants import (
    ALL_MEAL_TYPES,
    MealType,
    OffDayKind,
    OffDayStatus,
    UserRole,
)
from mess_backend.common.exceptions import (
    ConflictError,
    ForbiddenException,
    InvalidTransitionError,
    NotFoundException,
    ValidationException,
)
from mess_backend.common.pagination import PaginatedResponse, PaginationParams, paginate
from mess_backend.leave.calculator import OffDayRecord, RangedOffDay, SingleOffDay
from mess_backend.mess.models import Mess, MessOffDay
from mess_backend.mess.schemas import OffDayCreate, OffDayOut, OffDayStatsOut, OffDayUpdate

logger = logging.getLogger(__name__)


def _meal_set(values: Optional[list]) -> frozenset[MealType]:
    """Stored selection → engine selection; unset means the whole day."""
    if values is None:
        return frozenset(ALL_MEAL_TYPES)
    return frozenset(MealType(v) for v in values)


def _meal_list(values: Optional[list[MealType]]) -> Optional[list[str]]:
    return None if values is None else [MealType(v).value for v in values]


# ═════════════════════════════════════════════════════════════════════
# MessService
# ═════════════════════════════════════════════════════════════════════


class MessService:
    """Mess lookups and owner authority."""

    @staticmethod
    async def get_mess(db: AsyncSession, mess_id: uuid.UUID) -> Mess:
        result = await db.execute(
            select(Mess).where(Mess.id == mess_id, Mess.is_active.is_(True))
        )
        mess = result.scalars().first()
        if mess is None:
            raise NotFoundException("Mess", str(mess_id))
        return mess

    @staticmethod
    async def assert_can_manage(db: AsyncSession, user: User, mess_id: uuid.UUID) -> Mess:
        """Return the mess if *user* owns it (or is an admin), else 403."""
        mess = await MessService.get_mess(db, mess_id)
        if user.role != UserRole.admin and mess.owner_id != user.id:
            raise ForbiddenException("You do not manage this mess.")
        return mess

    @staticmethod
    async def managed_mess_ids(db: AsyncSession, user: User) -> Optional[list[uuid.UUID]]:
        """Mess ids *user* may manage; ``None`` means every mess (admin)."""
        if user.role == UserRole.admin:
            return None
        result = await db.execute(
            select(Mess.id).where(Mess.owner_id == user.id, Mess.is_active.is_(True))
        )
        return [row[0] for row in result.all()]


# ═════════════════════════════════════════════════════════════════════
# OffDayService
# ═════════════════════════════════════════════════════════════════════


class OffDayService:
    """Mess-wide closures and their suppression records."""

    # ─────────────────────────────────────────────────────────────────
    # Engine adapters
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def to_record(off_day: MessOffDay) -> OffDayRecord:
        if off_day.kind == OffDayKind.single:
            return SingleOffDay(day=off_day.off_date, meal_types=_meal_set(off_day.meal_types))
        return RangedOffDay(
            start=off_day.range_start_date,
            end=off_day.range_end_date,
            start_meal_types=_meal_set(off_day.start_date_meal_types),
            end_meal_types=_meal_set(off_day.end_date_meal_types),
        )

    @staticmethod
    def _overlapping(
        mess_id: uuid.UUID,
        start: date,
        end: date,
        exclude_id: Optional[uuid.UUID] = None,
    ):
        query = select(MessOffDay).where(
            MessOffDay.mess_id == mess_id,
            MessOffDay.status == OffDayStatus.active,
            or_(
                and_(
                    MessOffDay.kind == OffDayKind.single,
                    MessOffDay.off_date >= start,
                    MessOffDay.off_date <= end,
                ),
                and_(
                    MessOffDay.kind == OffDayKind.range,
                    MessOffDay.range_start_date <= end,
                    MessOffDay.range_end_date >= start,
                ),
            ),
        )
        if exclude_id is not None:
            query = query.where(MessOffDay.id != exclude_id)
        return query

    @staticmethod
    async def records_for_window(
        db: AsyncSession,
        mess_id: uuid.UUID,
        start: date,
        end: date,
    ) -> list[OffDayRecord]:
        """Active off days of *mess_id* touching ``[start, end]``."""
        result = await db.execute(OffDayService._overlapping(mess_id, start, end))
        return [OffDayService.to_record(o) for o in result.scalars().all()]

    # ─────────────────────────────────────────────────────────────────
    # Lookups / guards
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _get_off_day(db: AsyncSession, off_day_id: uuid.UUID) -> MessOffDay:
        result = await db.execute(select(MessOffDay).where(MessOffDay.id == off_day_id))
        off_day = result.scalars().first()
        if off_day is None:
            raise NotFoundException("MessOffDay", str(off_day_id))
        return off_day

    @staticmethod
    async def _assert_dates_free(
        db: AsyncSession,
        mess_id: uuid.UUID,
        first: date,
        last: date,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        """409 if another active off day of the mess touches ``[first, last]``."""
        result = await db.execute(
            OffDayService._overlapping(mess_id, first, last, exclude_id=exclude_id)
        )
        clash = result.scalars().first()
        if clash is not None:
            taken = max(first, clash.first_date)
            raise ConflictError(
                "off_date",
                taken.isoformat(),
                f"An off day already exists for {taken.isoformat()}.",
            )

    # ─────────────────────────────────────────────────────────────────
    # Create / Update / Cancel
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def create_off_day(
        db: AsyncSession,
        clock: Clock,
        user: User,
        data: OffDayCreate,
    ) -> OffDayOut:
        await MessService.assert_can_manage(db, user, data.mess_id)

        if data.kind == OffDayKind.single:
            first = last = data.off_date
        else:
            first, last = data.start_date, data.end_date

        if first < clock.today():
            raise ValidationException({"dates": ["Off day cannot be in the past."]})

        await OffDayService._assert_dates_free(db, data.mess_id, first, last)

        off_day = MessOffDay(
            mess_id=data.mess_id,
            kind=data.kind,
            reason=data.reason,
            status=OffDayStatus.active,
            created_by=user.id,
        )
        if data.kind == OffDayKind.single:
            off_day.off_date = data.off_date
            off_day.meal_types = _meal_list(data.meal_types) or [t.value for t in ALL_MEAL_TYPES]
        else:
            off_day.range_start_date = data.start_date
            off_day.range_end_date = data.end_date
            off_day.start_date_meal_types = _meal_list(data.start_date_meal_types)
            off_day.end_date_meal_types = _meal_list(data.end_date_meal_types)
        db.add(off_day)
        await db.flush()

        await create_audit_entry(
            db,
            action="create",
            entity_type=ENTITY_OFF_DAY,
            entity_id=off_day.id,
            actor_id=user.id,
            new_values={
                "kind": data.kind.value,
                "first_date": first.isoformat(),
                "last_date": last.isoformat(),
            },
        )
        logger.info("Off day %s created for mess %s (%s..%s)", off_day.id, data.mess_id, first, last)
        return OffDayOut.model_validate(off_day)

    @staticmethod
    async def update_off_day(
        db: AsyncSession,
        clock: Clock,
        user: User,
        off_day_id: uuid.UUID,
        data: OffDayUpdate,
    ) -> OffDayOut:
        """Edit dates, meal selections or reason of an active off day.

        Moved dates must not start in the past or collide with another
        active off day of the same mess.
        """
        off_day = await OffDayService._get_off_day(db, off_day_id)
        await MessService.assert_can_manage(db, user, off_day.mess_id)

        if off_day.status != OffDayStatus.active:
            raise InvalidTransitionError("Off day", off_day.status.value)

        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        if off_day.kind == OffDayKind.single:
            misplaced = {"start_date", "end_date", "start_date_meal_types", "end_date_meal_types"}
            first = last = changes.get("off_date") or off_day.off_date
        else:
            misplaced = {"off_date", "meal_types"}
            first = changes.get("start_date") or off_day.range_start_date
            last = changes.get("end_date") or off_day.range_end_date
        wrong = sorted(misplaced & changes.keys())
        if wrong:
            raise ValidationException(
                {name: [f"Not applicable to a {off_day.kind.value} off day."] for name in wrong}
            )
        if first > last:
            raise ValidationException({"dates": ["start_date must be on or before end_date."]})

        old_first, old_last = off_day.first_date, off_day.last_date
        if (first, last) != (old_first, old_last):
            if first < clock.today():
                raise ValidationException({"dates": ["Off day cannot be in the past."]})
            await OffDayService._assert_dates_free(
                db, off_day.mess_id, first, last, exclude_id=off_day.id,
            )

        if off_day.kind == OffDayKind.single:
            off_day.off_date = first
            if "meal_types" in changes:
                off_day.meal_types = _meal_list(data.meal_types) or [t.value for t in ALL_MEAL_TYPES]
        else:
            off_day.range_start_date = first
            off_day.range_end_date = last
            if "start_date_meal_types" in changes:
                off_day.start_date_meal_types = _meal_list(data.start_date_meal_types)
            if "end_date_meal_types" in changes:
                off_day.end_date_meal_types = _meal_list(data.end_date_meal_types)
        if data.reason is not None:
            off_day.reason = data.reason
        await db.flush()

        await create_audit_entry(
            db,
            action="update",
            entity_type=ENTITY_OFF_DAY,
            entity_id=off_day.id,
            actor_id=user.id,
            old_values={"first_date": old_first.isoformat(), "last_date": old_last.isoformat()},
            new_values={
                "first_date": first.isoformat(),
                "last_date": last.isoformat(),
                "fields": sorted(changes),
            },
        )
        logger.info("Off day %s updated (%s..%s)", off_day.id, first, last)
        return OffDayOut.model_validate(off_day)

    @staticmethod
    async def cancel_off_day(
        db: AsyncSession,
        user: User,
        off_day_id: uuid.UUID,
        reason: Optional[str] = None,
    ) -> OffDayOut:
        off_day = await OffDayService._get_off_day(db, off_day_id)
        await MessService.assert_can_manage(db, user, off_day.mess_id)

        if off_day.status == OffDayStatus.cancelled:
            raise InvalidTransitionError("Off day", off_day.status.value)

        off_day.status = OffDayStatus.cancelled
        await db.flush()

        await create_audit_entry(
            db,
            action="cancel",
            entity_type=ENTITY_OFF_DAY,
            entity_id=off_day.id,
            actor_id=user.id,
            old_values={"status": OffDayStatus.active.value},
            new_values={"status": OffDayStatus.cancelled.value, "reason": reason},
        )
        return OffDayOut.model_validate(off_day)

    # ─────────────────────────────────────────────────────────────────
    # List
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def list_off_days(
        db: AsyncSession,
        clock: Clock,
        user: User,
        mess_id: uuid.UUID,
        params: PaginationParams,
        *,
        when: Optional[str] = None,
        status: Optional[OffDayStatus] = None,
    ) -> PaginatedResponse[OffDayOut]:
        """List a mess's off days; *when* is ``upcoming``, ``past`` or ``None`` (all)."""
        await MessService.assert_can_manage(db, user, mess_id)
        today = clock.today()

        first_date = func.coalesce(MessOffDay.off_date, MessOffDay.range_start_date)
        last_date = func.coalesce(MessOffDay.off_date, MessOffDay.range_end_date)

        query = select(MessOffDay).where(MessOffDay.mess_id == mess_id)
        if status:
            query = query.where(MessOffDay.status == status)
        if when == "upcoming":
            query = query.where(last_date >= today).order_by(first_date.asc())
        elif when == "past":
            query = query.where(last_date < today).order_by(first_date.desc())
        else:
            query = query.order_by(first_date.asc())

        return await paginate(db, query, params, transform=OffDayOut.model_validate)

    # ─────────────────────────────────────────────────────────────────
    # Stats
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_off_day_stats(
        db: AsyncSession,
        clock: Clock,
        user: User,
        mess_id: uuid.UUID,
    ) -> OffDayStatsOut:
        """Counts per status, active off days not yet over, and recent declarations."""
        await MessService.assert_can_manage(db, user, mess_id)

        stats = OffDayStatsOut()
        rows = await db.execute(
            select(MessOffDay.status, func.count())
            .where(MessOffDay.mess_id == mess_id)
            .group_by(MessOffDay.status)
        )
        for status, count in rows.all():
            stats.total += count
            setattr(stats, status.value, count)

        today = clock.today()
        last_date = func.coalesce(MessOffDay.off_date, MessOffDay.range_end_date)
        upcoming = await db.execute(
            select(func.count()).select_from(MessOffDay).where(
                MessOffDay.mess_id == mess_id,
                MessOffDay.status == OffDayStatus.active,
                last_date >= today,
            )
        )
        stats.upcoming = upcoming.scalar_one()

        week_start = clock.start_of_day(today - timedelta(days=today.weekday()))
        month_start = clock.start_of_day(today.replace(day=1))
        for field, since in (("this_week", week_start), ("this_month", month_start)):
            count = await db.execute(
                select(func.count()).select_from(MessOffDay).where(
                    MessOffDay.mess_id == mess_id,
                    MessOffDay.created_at >= since.astimezone(timezone.utc),
                )
            )
            setattr(stats, field, count.scalar_one())
        return stats
