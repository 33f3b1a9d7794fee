"""Shared test fixtures — async DB, client, clock, auth helpers, factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")

import hashlib
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from mess_backend.common.clock import FixedClock, get_clock
from mess_backend.common.constants import (
    MembershipStatus,
    OffDayKind,
    OffDayStatus,
    UserRole,
)
from mess_backend.config import settings
from mess_backend.database import Base, get_db
from mess_backend.main import create_app

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
import mess_backend.auth.models  # noqa: F401
import mess_backend.common.audit  # noqa: F401
import mess_backend.leave.models  # noqa: F401
import mess_backend.mess.models  # noqa: F401
from mess_backend.auth.models import User, UserSession
from mess_backend.mess.models import MealPlan, Membership, Mess, MessOffDay

# ── SQLite compat: compile PG-specific types to TEXT/BLOB ───────────

from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# Register PG-compatible functions for SQLite
@event.listens_for(engine.sync_engine, "connect")
def _register_sqlite_functions(dbapi_conn, connection_record):
    """Register NOW() and uuid_generate_v4() as SQLite custom functions."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).isoformat(),
    )
    dbapi_conn.create_function(
        "uuid_generate_v4", 0, lambda: str(uuid.uuid4()),
    )

TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)

# 09:00 local on 1 March 2026; every test date is relative to this instant
TEST_NOW = datetime(2026, 3, 1, 9, 0)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from mess_backend.common.rate_limit import limiter

    limiter.reset()
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── Clock ───────────────────────────────────────────────────────────

@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(TEST_NOW)


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app(clock):
    """Create a fresh app instance with DB and clock dependencies overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    application.dependency_overrides[get_clock] = lambda: clock
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Model factories ─────────────────────────────────────────────────

async def seed_user(
    db: AsyncSession,
    *,
    role: UserRole = UserRole.member,
    first_name: str = "Test",
    email: Optional[str] = None,
) -> User:
    user = User(
        id=uuid.uuid4(),
        first_name=first_name,
        last_name="User",
        email=email or f"{uuid.uuid4().hex[:8]}@mess.test",
        role=role,
        is_active=True,
    )
    db.add(user)
    await db.flush()
    return user


async def seed_mess(db: AsyncSession, owner: User, *, name: str = "Annapurna Mess") -> Mess:
    mess = Mess(id=uuid.uuid4(), name=name, owner_id=owner.id, is_active=True)
    db.add(mess)
    await db.flush()
    return mess


async def seed_plan(db: AsyncSession, mess: Mess, **overrides) -> MealPlan:
    """Three meals a day for 3000/month, no leave rules unless overridden."""
    values = dict(
        id=uuid.uuid4(),
        mess_id=mess.id,
        name="Full Board",
        meals_per_day=3,
        has_breakfast=True,
        has_lunch=True,
        has_dinner=True,
        pricing_amount=Decimal("3000"),
        notice_hours=2,
        require_two_hour_notice=False,
        min_consecutive_days=1,
        leave_limits_enabled=False,
        max_leave_meals_enabled=False,
        max_leave_meals=0,
        extend_subscription=False,
        auto_approval=False,
        is_active=True,
    )
    values.update(overrides)
    plan = MealPlan(**values)
    db.add(plan)
    await db.flush()
    return plan


async def seed_membership(
    db: AsyncSession,
    user: User,
    plan: MealPlan,
    *,
    start: date = date(2026, 3, 1),
    end: date = date(2026, 3, 30),
    payment: Decimal = Decimal("3000"),
    status: MembershipStatus = MembershipStatus.active,
) -> Membership:
    """A 30-day subscription by default, so the per-meal rate is 33.33."""
    membership = Membership(
        id=uuid.uuid4(),
        user_id=user.id,
        mess_id=plan.mess_id,
        meal_plan_id=plan.id,
        status=status,
        subscription_start_date=start,
        subscription_end_date=end,
        payment_amount=payment,
        leave_extension_meals=0,
    )
    db.add(membership)
    await db.flush()
    return membership


async def seed_off_day(
    db: AsyncSession,
    mess: Mess,
    *,
    off_date: Optional[date] = None,
    meal_types: Optional[list[str]] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    start_meal_types: Optional[list[str]] = None,
    end_meal_types: Optional[list[str]] = None,
) -> MessOffDay:
    off_day = MessOffDay(
        id=uuid.uuid4(),
        mess_id=mess.id,
        kind=OffDayKind.single if off_date else OffDayKind.range,
        off_date=off_date,
        meal_types=meal_types,
        range_start_date=start,
        range_end_date=end,
        start_date_meal_types=start_meal_types,
        end_date_meal_types=end_meal_types,
        reason="Festival",
        status=OffDayStatus.active,
    )
    db.add(off_day)
    await db.flush()
    return off_day


# ── Auth helpers ────────────────────────────────────────────────────

def create_access_token(
    user_id: uuid.UUID,
    role: UserRole = UserRole.member,
    expired: bool = False,
) -> str:
    """Generate a JWT access token for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRY_HOURS)
    payload = {
        "sub": str(user_id),
        "role": role.value,
        "type": "access",
        "exp": exp,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


async def auth_headers_for(db: AsyncSession, user: User) -> dict[str, str]:
    """Return Bearer auth headers with a valid session persisted in the DB."""
    token = create_access_token(user.id, user.role)
    session = UserSession(
        id=uuid.uuid4(),
        user_id=user.id,
        token_hash=hashlib.sha256(token.encode()).hexdigest(),
        expires_at=datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRY_HOURS),
        is_revoked=False,
    )
    db.add(session)
    await db.flush()
    return {"Authorization": f"Bearer {token}"}


# ── Composite fixtures ──────────────────────────────────────────────

@pytest.fixture
async def owner(db) -> User:
    return await seed_user(db, role=UserRole.mess_owner, first_name="Owner")


@pytest.fixture
async def member(db) -> User:
    return await seed_user(db, first_name="Member")


@pytest.fixture
async def mess(db, owner) -> Mess:
    return await seed_mess(db, owner)
