"""001 – Initial schema: users, messes, plans, memberships, off days, leaves, ledger.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18 10:00:00.000000+05:30
"""

from alembic import op

# Revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    ("user_role", ["member", "mess_owner", "admin"]),
    ("pricing_period", ["daily", "weekly", "monthly", "quarterly", "yearly"]),
    ("membership_status", ["pending", "active", "inactive", "suspended"]),
    ("leave_status", ["pending", "approved", "rejected", "extended", "cancelled"]),
    ("off_day_kind", ["single", "range"]),
    ("off_day_status", ["active", "cancelled"]),
]


def _create_enum(name: str, values: list[str]) -> None:
    vals = ", ".join(f"'{v}'" for v in values)
    op.execute(f"CREATE TYPE {name} AS ENUM ({vals})")


def _drop_enum(name: str) -> None:
    op.execute(f"DROP TYPE IF EXISTS {name}")


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # ── Extensions ────────────────────────────────────────────────────────
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # ── Enum types ────────────────────────────────────────────────────────
    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── 1. users ──────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE users (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            first_name      VARCHAR(100) NOT NULL,
            last_name       VARCHAR(100),
            email           VARCHAR(255) NOT NULL UNIQUE,
            role            user_role NOT NULL DEFAULT 'member',
            is_active       BOOLEAN NOT NULL DEFAULT TRUE,
            created_at      TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # ── 2. user_sessions ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE user_sessions (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id         UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            token_hash      VARCHAR(512) NOT NULL,
            expires_at      TIMESTAMPTZ NOT NULL,
            is_revoked      BOOLEAN NOT NULL DEFAULT FALSE,
            created_at      TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_user_sessions_user_id ON user_sessions (user_id)")
    op.execute("CREATE INDEX ix_user_sessions_token_hash ON user_sessions (token_hash)")

    # ── 3. messes ─────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE messes (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name            VARCHAR(200) NOT NULL,
            owner_id        UUID NOT NULL REFERENCES users(id),
            is_active       BOOLEAN NOT NULL DEFAULT TRUE,
            created_at      TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # ── 4. meal_plans ─────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE meal_plans (
            id                      UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            mess_id                 UUID NOT NULL REFERENCES messes(id),
            name                    VARCHAR(200) NOT NULL,
            meals_per_day           INTEGER NOT NULL DEFAULT 3,
            has_breakfast           BOOLEAN NOT NULL DEFAULT TRUE,
            has_lunch               BOOLEAN NOT NULL DEFAULT TRUE,
            has_dinner              BOOLEAN NOT NULL DEFAULT TRUE,
            pricing_amount          NUMERIC(10, 2) NOT NULL DEFAULT 0,
            pricing_period          pricing_period NOT NULL DEFAULT 'monthly',
            notice_hours            INTEGER NOT NULL DEFAULT 2,
            require_two_hour_notice BOOLEAN NOT NULL DEFAULT FALSE,
            min_consecutive_days    INTEGER NOT NULL DEFAULT 1,
            leave_limits_enabled    BOOLEAN NOT NULL DEFAULT FALSE,
            max_leave_meals_enabled BOOLEAN NOT NULL DEFAULT FALSE,
            max_leave_meals         INTEGER NOT NULL DEFAULT 0,
            extend_subscription     BOOLEAN NOT NULL DEFAULT FALSE,
            auto_approval           BOOLEAN NOT NULL DEFAULT FALSE,
            is_active               BOOLEAN NOT NULL DEFAULT TRUE,
            created_at              TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_meal_plans_mess_id ON meal_plans (mess_id)")

    # ── 5. memberships ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE memberships (
            id                          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id                     UUID NOT NULL REFERENCES users(id),
            mess_id                     UUID NOT NULL REFERENCES messes(id),
            meal_plan_id                UUID NOT NULL REFERENCES meal_plans(id),
            status                      membership_status NOT NULL DEFAULT 'pending',
            subscription_start_date     DATE,
            subscription_end_date       DATE,
            base_subscription_end_date  DATE,
            payment_amount              NUMERIC(10, 2) NOT NULL DEFAULT 0,
            leave_extension_meals       INTEGER NOT NULL DEFAULT 0,
            version                     INTEGER NOT NULL DEFAULT 1,
            created_at                  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at                  TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_memberships_user_plan ON memberships (user_id, meal_plan_id)")

    # ── 6. mess_off_days ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE mess_off_days (
            id                      UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            mess_id                 UUID NOT NULL REFERENCES messes(id),
            kind                    off_day_kind NOT NULL,
            off_date                DATE,
            meal_types              JSONB,
            range_start_date        DATE,
            range_end_date          DATE,
            start_date_meal_types   JSONB,
            end_date_meal_types     JSONB,
            reason                  TEXT,
            status                  off_day_status NOT NULL DEFAULT 'active',
            created_by              UUID REFERENCES users(id),
            created_at              TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at              TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT chk_off_day_shape CHECK (
                (kind = 'single' AND off_date IS NOT NULL)
                OR (kind = 'range' AND range_start_date IS NOT NULL
                    AND range_end_date IS NOT NULL
                    AND range_end_date >= range_start_date)
            )
        )
    """)
    op.execute("CREATE INDEX ix_mess_off_days_mess_status ON mess_off_days (mess_id, status)")

    # ── 7. leave_requests ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_requests (
            id                          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id                     UUID NOT NULL REFERENCES users(id),
            mess_id                     UUID NOT NULL REFERENCES messes(id),
            start_date                  DATE NOT NULL,
            end_date                    DATE NOT NULL,
            original_end_date           DATE NOT NULL,
            meal_types                  JSONB NOT NULL,
            start_date_meal_types       JSONB NOT NULL,
            end_date_meal_types         JSONB NOT NULL,
            reason                      TEXT,
            status                      leave_status NOT NULL DEFAULT 'pending',
            revision                    INTEGER NOT NULL DEFAULT 1,
            requested_days              INTEGER NOT NULL DEFAULT 0,
            processed_days              INTEGER NOT NULL DEFAULT 0,
            ignored_days                INTEGER NOT NULL DEFAULT 0,
            total_meals_missed          INTEGER NOT NULL DEFAULT 0,
            meal_breakdown              JSONB NOT NULL,
            plan_wise_breakdown         JSONB NOT NULL,
            estimated_savings           NUMERIC(10, 2) NOT NULL DEFAULT 0,
            extend_subscription         BOOLEAN NOT NULL DEFAULT FALSE,
            extension_meals             INTEGER NOT NULL DEFAULT 0,
            extension_days              INTEGER NOT NULL DEFAULT 0,
            deduction_eligible_meals    INTEGER NOT NULL DEFAULT 0,
            deduction_eligible_days     INTEGER NOT NULL DEFAULT 0,
            non_deduction_meals         INTEGER NOT NULL DEFAULT 0,
            approved_by                 UUID REFERENCES users(id),
            approved_at                 TIMESTAMPTZ,
            approval_remarks            TEXT,
            cancelled_at                TIMESTAMPTZ,
            created_at                  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at                  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT chk_leave_dates CHECK (end_date >= start_date)
        )
    """)
    op.execute("CREATE INDEX ix_leave_requests_user_start ON leave_requests (user_id, start_date)")
    op.execute("CREATE INDEX ix_leave_requests_mess_status ON leave_requests (mess_id, status)")

    # ── 8. leave_request_plans ────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_request_plans (
            leave_request_id    UUID NOT NULL REFERENCES leave_requests(id) ON DELETE CASCADE,
            meal_plan_id        UUID NOT NULL REFERENCES meal_plans(id),
            PRIMARY KEY (leave_request_id, meal_plan_id)
        )
    """)

    # ── 9. leave_extension_entries ────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_extension_entries (
            id                              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            leave_request_id                UUID NOT NULL REFERENCES leave_requests(id) ON DELETE CASCADE,
            meal_plan_id                    UUID NOT NULL REFERENCES meal_plans(id),
            membership_id                   UUID NOT NULL REFERENCES memberships(id),
            revision                        INTEGER NOT NULL,
            original_subscription_end_date  DATE NOT NULL,
            new_subscription_end_date       DATE NOT NULL,
            extension_meals                 INTEGER NOT NULL,
            extension_days                  INTEGER NOT NULL,
            applied_at                      TIMESTAMPTZ NOT NULL,
            reversed_at                     TIMESTAMPTZ,
            CONSTRAINT uq_leave_extension_revision
                UNIQUE (leave_request_id, meal_plan_id, revision)
        )
    """)
    op.execute("CREATE INDEX ix_leave_extension_membership ON leave_extension_entries (membership_id)")

    # ── 10. audit_trail ───────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            actor_id        UUID REFERENCES users(id),
            action          VARCHAR(50) NOT NULL,
            entity_type     VARCHAR(50) NOT NULL,
            entity_id       UUID NOT NULL,
            old_values      JSONB,
            new_values      JSONB,
            created_at      TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_actor_id ON audit_trail (actor_id)")
    op.execute("CREATE INDEX ix_audit_trail_entity ON audit_trail (entity_type, entity_id)")
    op.execute("CREATE INDEX ix_audit_trail_action ON audit_trail (action)")


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "audit_trail",
        "leave_extension_entries",
        "leave_request_plans",
        "leave_requests",
        "mess_off_days",
        "memberships",
        "meal_plans",
        "messes",
        "user_sessions",
        "users",
    ]
    for table in tables:
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")

    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)
