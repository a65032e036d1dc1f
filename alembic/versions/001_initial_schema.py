"""001 – Initial schema: profiles, roles, leave, notifications, audit.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 10:00:00.000000+00:00
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
    ("app_role", ["admin", "user"]),
    ("leave_status", ["pending", "approved", "rejected"]),
    ("leave_duration_type", ["days", "hours"]),
    ("notification_variant", ["default", "destructive"]),
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

    # ── 1. profiles ───────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE profiles (
            id          VARCHAR(64) PRIMARY KEY,
            name        VARCHAR(200),
            email       VARCHAR(255),
            created_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 2. user_sessions ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE user_sessions (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id     VARCHAR(64) NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            token_hash  VARCHAR(512) NOT NULL,
            expires_at  TIMESTAMPTZ NOT NULL,
            is_revoked  BOOLEAN DEFAULT FALSE,
            created_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_user_sessions_token_hash ON user_sessions (token_hash)")

    # ── 3. user_roles ─────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE user_roles (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id      VARCHAR(64) NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            role         app_role NOT NULL DEFAULT 'user',
            assigned_by  VARCHAR(64) REFERENCES profiles(id),
            assigned_at  TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_user_roles_user_id UNIQUE (user_id)
        )
    """)

    # ── 4. leave_types ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_types (
            id                   UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            label                VARCHAR(100) NOT NULL UNIQUE,
            color                VARCHAR(20) DEFAULT '#3B82F6',
            description          TEXT,
            accrual_rule         VARCHAR(100),
            requires_approval    BOOLEAN DEFAULT TRUE,
            annual_allowance     INTEGER DEFAULT 0,
            carry_forward_limit  INTEGER DEFAULT 0,
            monthly_allowance    NUMERIC(5,1),
            duration_type        leave_duration_type NOT NULL DEFAULT 'days',
            is_active            BOOLEAN DEFAULT TRUE,
            sort_order           INTEGER DEFAULT 0,
            created_at           TIMESTAMPTZ DEFAULT NOW(),
            updated_at           TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 5. leave_balances ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_balances (
            id             UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id        VARCHAR(64) NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            leave_type_id  UUID NOT NULL REFERENCES leave_types(id),
            year           INTEGER NOT NULL,
            allocated      NUMERIC(5,1) DEFAULT 0,
            used           NUMERIC(5,1) DEFAULT 0,
            updated_at     TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_balance UNIQUE (user_id, leave_type_id, year)
        )
    """)

    # ── 6. leave_applied_users ────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_applied_users (
            id               UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id          VARCHAR(64) NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            leave_type_id    UUID NOT NULL REFERENCES leave_types(id),
            start_date       DATE NOT NULL,
            end_date         DATE NOT NULL,
            reason           TEXT,
            is_half_day      BOOLEAN DEFAULT FALSE,
            hours_requested  NUMERIC(4,1),
            status           leave_status NOT NULL DEFAULT 'pending',
            applied_at       TIMESTAMPTZ DEFAULT NOW(),
            approved_by      VARCHAR(64) REFERENCES profiles(id),
            approved_at      TIMESTAMPTZ,
            CONSTRAINT chk_leave_dates CHECK (end_date >= start_date)
        )
    """)
    op.execute(
        "CREATE INDEX ix_leave_applied_users_user_type "
        "ON leave_applied_users (user_id, leave_type_id, start_date)"
    )

    # ── 7. notifications ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE notifications (
            id            UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            recipient_id  VARCHAR(64) NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            variant       notification_variant NOT NULL DEFAULT 'default',
            title         VARCHAR(200) NOT NULL,
            message       TEXT NOT NULL,
            entity_type   VARCHAR(50),
            entity_id     VARCHAR(64),
            is_read       BOOLEAN DEFAULT FALSE,
            read_at       TIMESTAMPTZ,
            created_at    TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX ix_notifications_recipient_read "
        "ON notifications (recipient_id, is_read)"
    )

    # ── 8. audit_trail ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            actor_id     VARCHAR(64),
            action       VARCHAR(50) NOT NULL,
            entity_type  VARCHAR(50) NOT NULL,
            entity_id    VARCHAR(64) NOT NULL,
            old_values   JSONB,
            new_values   JSONB,
            created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_actor_id ON audit_trail (actor_id)")
    op.execute(
        "CREATE INDEX ix_audit_trail_entity ON audit_trail (entity_type, entity_id)"
    )

    # Default leave types are seeded through POST /api/v1/leave/types/seed
    # so the catalog stays defined in one place.


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "audit_trail",
        "notifications",
        "leave_applied_users",
        "leave_balances",
        "leave_types",
        "user_roles",
        "user_sessions",
        "profiles",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")

    # Drop enum types
    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)

    op.execute('DROP EXTENSION IF EXISTS "uuid-ossp"')
