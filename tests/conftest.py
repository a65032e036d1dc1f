"""Shared test fixtures — async DB, client, auth helpers, factories.

Reusable across all test modules (auth, roles, leave, notifications, slack).
Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Required settings must exist before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")
os.environ.setdefault("SLACK_NOTIFY_URL", "http://slack.test/functions/v1/slack-notify")
os.environ.setdefault("IDENTITY_JWT_SECRET", "test-identity-secret")
os.environ.setdefault("ADMIN_USER_IDS", '["user_root_admin"]')

import hashlib
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from timeloo.auth.service import create_access_token
from timeloo.common.constants import DurationType, LeaveStatus
from timeloo.config import settings
from timeloo.database import Base, get_db, get_session_factory
from timeloo.main import create_app

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
import timeloo.auth.models  # noqa: F401
import timeloo.common.audit  # noqa: F401
import timeloo.leave.models  # noqa: F401
import timeloo.notifications.models  # noqa: F401
import timeloo.roles.models  # noqa: F401

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
    """Register NOW() as a SQLite custom function."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f"),
    )

TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


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
    from timeloo.common.rate_limit import limiter

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


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependencies overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    application.dependency_overrides[get_session_factory] = lambda: TestSessionFactory
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

ROOT_ADMIN_ID = "user_root_admin"


def _make_profile(
    *,
    id: str | None = None,
    name: str = "Test User",
    email: str | None = None,
    created_at: datetime | None = None,
) -> dict:
    user_id = id or f"user_{uuid.uuid4().hex[:12]}"
    return dict(
        id=user_id,
        name=name,
        email=email or f"{user_id}@timeloo.test",
        created_at=created_at or datetime.now(timezone.utc),
    )


def _make_leave_type(
    *,
    label: str = "Bereavement Leave",
    annual_allowance: int = 5,
    carry_forward_limit: int = 0,
    monthly_allowance: Decimal | None = None,
    duration_type: DurationType = DurationType.days,
    sort_order: int = 0,
    requires_approval: bool = True,
    color: str = "#6B7280",
) -> dict:
    now = datetime.now(timezone.utc)
    return dict(
        id=uuid.uuid4(),
        label=label,
        color=color,
        requires_approval=requires_approval,
        annual_allowance=annual_allowance,
        carry_forward_limit=carry_forward_limit,
        monthly_allowance=monthly_allowance,
        duration_type=duration_type,
        is_active=True,
        sort_order=sort_order,
        created_at=now,
        updated_at=now,
    )


def _make_application(
    *,
    user_id: str,
    leave_type_id: uuid.UUID,
    start_date: date,
    end_date: date | None = None,
    status: LeaveStatus = LeaveStatus.pending,
    is_half_day: bool = False,
    hours_requested: Decimal | None = None,
) -> dict:
    return dict(
        id=uuid.uuid4(),
        user_id=user_id,
        leave_type_id=leave_type_id,
        start_date=start_date,
        end_date=end_date or start_date,
        status=status,
        is_half_day=is_half_day,
        hours_requested=hours_requested,
        applied_at=datetime.now(timezone.utc),
    )


async def _seed_profile(db: AsyncSession, **kwargs):
    from timeloo.auth.models import Profile

    profile = Profile(**_make_profile(**kwargs))
    db.add(profile)
    await db.flush()
    return profile


async def _seed_leave_type(db: AsyncSession, **kwargs):
    from timeloo.leave.models import LeaveType

    leave_type = LeaveType(**_make_leave_type(**kwargs))
    db.add(leave_type)
    await db.flush()
    return leave_type


async def _seed_balance(
    db: AsyncSession,
    user_id: str,
    leave_type_id: uuid.UUID,
    *,
    allocated: Decimal | int = 0,
    used: Decimal | int = 0,
    year: int | None = None,
):
    from timeloo.leave.models import LeaveBalance

    balance = LeaveBalance(
        id=uuid.uuid4(),
        user_id=user_id,
        leave_type_id=leave_type_id,
        year=year or date.today().year,
        allocated=Decimal(allocated),
        used=Decimal(used),
        updated_at=datetime.now(timezone.utc),
    )
    db.add(balance)
    await db.flush()
    return balance


async def _seed_application(db: AsyncSession, **kwargs):
    from timeloo.leave.models import LeaveApplication

    application = LeaveApplication(**_make_application(**kwargs))
    db.add(application)
    await db.flush()
    return application


# ── Auth helpers ────────────────────────────────────────────────────

async def make_auth_headers(db: AsyncSession, user_id: str) -> dict[str, str]:
    """Persist a session for ``user_id`` and return Bearer headers."""
    from timeloo.auth.models import UserSession

    token = create_access_token(user_id)
    db.add(
        UserSession(
            id=uuid.uuid4(),
            user_id=user_id,
            token_hash=hashlib.sha256(token.encode()).hexdigest(),
            expires_at=datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRY_HOURS),
            is_revoked=False,
            created_at=datetime.now(timezone.utc),
        )
    )
    await db.flush()
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def test_user(db):
    """A regular profile with no role row."""
    return await _seed_profile(db, id="user_alice", name="Alice")


@pytest.fixture
async def admin_user(db):
    """A profile listed in ADMIN_USER_IDS."""
    return await _seed_profile(db, id=ROOT_ADMIN_ID, name="Root Admin")


@pytest.fixture
async def auth_headers(db, test_user) -> dict[str, str]:
    return await make_auth_headers(db, test_user.id)


@pytest.fixture
async def admin_headers(db, admin_user) -> dict[str, str]:
    return await make_auth_headers(db, admin_user.id)
