"""Extension ledger: subscription-end changes caused by approved leaves.

Membership ``subscription_end_date`` and ``leave_extension_meals`` are a
projection of the ledger::

    subscription_end_date = base_subscription_end_date + Σ extension_days (active entries)
    leave_extension_meals = Σ extension_meals (active entries)

Entries are append-only. Reversal stamps ``reversed_at``; a re-application
after an end-date edit supersedes the previous entries and pushes a new one
keyed by the leave's current revision.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from mess_backend.common.clock import Clock
from mess_backend.common.exceptions import ConflictError, LedgerError
from mess_backend.common.unit_of_work import UnitOfWork
from mess_backend.leave.calculator import extension_end_date
from mess_backend.leave.models import ExtensionTrackingEntry, LeaveRequest
from mess_backend.mess.models import Membership

logger = logging.getLogger(__name__)


class ExtensionLedger:
    """Applies and reverses leave extensions inside one ``UnitOfWork``."""

    def __init__(self, session: AsyncSession, uow: UnitOfWork, clock: Clock) -> None:
        self.session = session
        self.uow = uow
        self.clock = clock

    # ── Apply ───────────────────────────────────────────────────────

    async def apply(
        self,
        leave: LeaveRequest,
        plan_id: uuid.UUID,
        membership_id: uuid.UUID,
        *,
        extension_meals: int,
        extension_days: int,
        original_end: Optional[date] = None,
    ) -> Optional[ExtensionTrackingEntry]:
        """Push one entry for ``(leave, plan, leave.revision)`` and re-project.

        *original_end* overrides the membership's current end date as the
        extension anchor (used on re-application). Returns ``None`` when the
        plan has nothing to extend. Applying an already-applied key returns
        the existing entry unchanged.
        """
        if extension_days <= 0:
            return None

        existing = await self._find_entry(leave.id, plan_id, leave.revision)
        if existing is not None:
            if existing.reversed_at is not None:
                raise LedgerError(
                    f"Extension for leave {leave.id} plan {plan_id} "
                    f"revision {leave.revision} was already reversed."
                )
            logger.info(
                "Extension already applied: leave=%s plan=%s revision=%s",
                leave.id, plan_id, leave.revision,
            )
            return existing

        membership = await self._lock_membership(membership_id)
        if membership.subscription_end_date is None:
            raise LedgerError(f"Membership {membership.id} has no subscription end date.")

        if not await self._active_entries(membership.id):
            # No live extension: the current end is the pre-extension baseline
            self.uow.restore_attrs(membership, "base_subscription_end_date")
            membership.base_subscription_end_date = membership.subscription_end_date

        anchor = original_end or membership.subscription_end_date
        new_end = extension_end_date(anchor, leave.end_date, extension_days)

        entry = ExtensionTrackingEntry(
            leave_request_id=leave.id,
            meal_plan_id=plan_id,
            membership_id=membership.id,
            revision=leave.revision,
            original_subscription_end_date=anchor,
            new_subscription_end_date=new_end,
            extension_meals=extension_meals,
            extension_days=(new_end - anchor).days,
            applied_at=self.clock.now(),
        )
        self.uow.on_rollback(lambda: _discard(leave, entry))
        leave.extension_entries.append(entry)
        self.session.add(entry)

        await self._project(membership)
        logger.info(
            "Extended membership %s: %s -> %s (leave=%s revision=%s meals=%s)",
            membership.id, anchor, new_end, leave.id, leave.revision,
            entry.extension_meals,
        )
        return entry

    async def reapply(
        self,
        leave: LeaveRequest,
        plan_id: uuid.UUID,
        membership_id: uuid.UUID,
        *,
        extension_meals: int,
        extension_days: int,
    ) -> Optional[ExtensionTrackingEntry]:
        """Supersede the plan's active entries and apply at the current revision.

        The new entry extends from the first end date this leave ever
        recorded for the plan, so successive edits never compound.
        """
        first_original = self.first_original_end(leave, plan_id)
        await self.reverse(leave, plan_id=plan_id)
        return await self.apply(
            leave,
            plan_id,
            membership_id,
            extension_meals=extension_meals,
            extension_days=extension_days,
            original_end=first_original,
        )

    # ── Reverse ─────────────────────────────────────────────────────

    async def reverse(
        self,
        leave: LeaveRequest,
        *,
        plan_id: Optional[uuid.UUID] = None,
    ) -> list[ExtensionTrackingEntry]:
        """Reverse the active entries of *leave* (optionally one plan's) and
        re-project the affected memberships."""
        entries = [
            e for e in leave.active_extension_entries
            if plan_id is None or e.meal_plan_id == plan_id
        ]
        if not entries:
            return []

        await self._stamp_reversed(entries)
        for membership_id in {e.membership_id for e in entries}:
            membership = await self._lock_membership(membership_id)
            await self._project(membership)
            logger.info(
                "Reversed extension on membership %s for leave %s: end now %s",
                membership.id, leave.id, membership.subscription_end_date,
            )
        return entries

    # ── Queries ─────────────────────────────────────────────────────

    @staticmethod
    def first_original_end(leave: LeaveRequest, plan_id: uuid.UUID) -> Optional[date]:
        """Earliest-revision original end date this leave recorded for *plan_id*."""
        entries = [e for e in leave.extension_entries if e.meal_plan_id == plan_id]
        if not entries:
            return None
        return min(entries, key=lambda e: e.revision).original_subscription_end_date

    async def _find_entry(
        self, leave_id: uuid.UUID, plan_id: uuid.UUID, revision: int,
    ) -> Optional[ExtensionTrackingEntry]:
        result = await self.session.execute(
            select(ExtensionTrackingEntry).where(
                ExtensionTrackingEntry.leave_request_id == leave_id,
                ExtensionTrackingEntry.meal_plan_id == plan_id,
                ExtensionTrackingEntry.revision == revision,
            )
        )
        return result.scalar_one_or_none()

    async def _active_entries(self, membership_id: uuid.UUID) -> list[ExtensionTrackingEntry]:
        result = await self.session.execute(
            select(ExtensionTrackingEntry).where(
                ExtensionTrackingEntry.membership_id == membership_id,
                ExtensionTrackingEntry.reversed_at.is_(None),
            )
        )
        return list(result.scalars().all())

    async def _lock_membership(self, membership_id: uuid.UUID) -> Membership:
        # Flush first: populate_existing would otherwise discard pending edits
        await self._flush()
        result = await self.session.execute(
            select(Membership)
            .where(Membership.id == membership_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        membership = result.scalar_one_or_none()
        if membership is None:
            raise LedgerError(f"Membership {membership_id} not found.")
        return membership

    # ── Projection ──────────────────────────────────────────────────

    async def _stamp_reversed(self, entries: list[ExtensionTrackingEntry]) -> None:
        now = self.clock.now()
        for entry in entries:
            self.uow.restore_attrs(entry, "reversed_at")
            entry.reversed_at = now
        await self._flush()

    async def _project(self, membership: Membership) -> None:
        """Recompute end date and extension meals from the active entries."""
        await self._flush()
        active = await self._active_entries(membership.id)

        self.uow.restore_attrs(
            membership,
            "base_subscription_end_date",
            "subscription_end_date",
            "leave_extension_meals",
        )
        base = membership.base_subscription_end_date or membership.subscription_end_date
        if base is None:
            raise LedgerError(f"Membership {membership.id} has no subscription end date.")

        membership.base_subscription_end_date = base
        membership.subscription_end_date = base + timedelta(
            days=sum(e.extension_days for e in active)
        )
        membership.leave_extension_meals = sum(e.extension_meals for e in active)
        await self._flush()

    async def _flush(self) -> None:
        try:
            await self.session.flush()
        except StaleDataError as exc:
            raise ConflictError(
                "membership",
                "version",
                "Membership was modified concurrently; retry the request.",
            ) from exc


def _discard(leave: LeaveRequest, entry: ExtensionTrackingEntry) -> None:
    if entry in leave.extension_entries:
        leave.extension_entries.remove(entry)
