"""Unit of work: one leave operation's writes commit together or not at all."""

from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class UnitOfWork:
    """Group the writes of a single lifecycle operation.

    Callers register a compensation *before* each in-memory mutation::

        async with UnitOfWork(db, "cancel leave") as uow:
            old = leave.status
            uow.on_rollback(lambda: setattr(leave, "status", old))
            leave.status = LeaveStatus.cancelled

    On success the session is flushed (the request-scoped session commits
    later). On any error the compensations run newest-first so the ORM
    objects in memory match what the database will hold after rollback,
    and the exception propagates so ``get_db`` rolls the transaction back.
    """

    def __init__(self, session: AsyncSession, label: str = "operation") -> None:
        self.session = session
        self.label = label
        self._compensations: list[Callable[[], None]] = []

    def on_rollback(self, action: Callable[[], None]) -> None:
        self._compensations.append(action)

    def restore_attrs(self, obj: object, *names: str) -> None:
        """Register a compensation restoring the current values of *names* on *obj*."""
        snapshot = {name: getattr(obj, name) for name in names}

        def _restore() -> None:
            for name, value in snapshot.items():
                setattr(obj, name, value)

        self.on_rollback(_restore)

    async def __aenter__(self) -> "UnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            try:
                await self.session.flush()
                return False
            except Exception:
                self._compensate()
                raise
        self._compensate()
        logger.warning("Rolled back %s: %s", self.label, exc)
        return False

    def _compensate(self) -> None:
        while self._compensations:
            action = self._compensations.pop()
            action()
