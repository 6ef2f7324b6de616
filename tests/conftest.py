"""Shared test fixtures — async DB, client, fixed clock, factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Settings are read at import time; keep tests off any real database
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("EMAIL_PROVIDER", "mock")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from backend.common.constants import UserRole
from backend.database import Base, get_db, get_session_factory
from backend.main import create_app

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
import backend.common.audit  # noqa: F401
import backend.company.models  # noqa: F401
import backend.core_hr.models  # noqa: F401
import backend.delegation.models  # noqa: F401
import backend.holiday_planning.models  # noqa: F401
import backend.leave.models  # noqa: F401
import backend.notifications.models  # noqa: F401

# ── SQLite compat: compile PG-specific types ────────────────────────

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


# SAVEPOINT support: let SQLAlchemy own BEGIN instead of the sqlite3 driver
@event.listens_for(engine.sync_engine, "connect")
def _sqlite_connect(dbapi_conn, connection_record):
    dbapi_conn.isolation_level = None


@event.listens_for(engine.sync_engine, "begin")
def _sqlite_begin(conn):
    conn.exec_driver_sql("BEGIN")


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
    from backend.common.rate_limit import limiter
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
def session_factory() -> async_sessionmaker[AsyncSession]:
    """The factory bound to the test engine, for code that opens its own sessions."""
    return TestSessionFactory


@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Clock ───────────────────────────────────────────────────────────

class FixedClock:
    """Callable clock whose time tests can move."""

    def __init__(self, moment: datetime) -> None:
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment

    def set(self, moment: datetime) -> None:
        self.moment = moment


@pytest.fixture
def clock() -> FixedClock:
    # Wednesday 10:00 UTC
    return FixedClock(datetime(2026, 3, 11, 10, 0, tzinfo=timezone.utc))


# ── Model factories ─────────────────────────────────────────────────

def _make_department(*, name: str = "Engineering", code: str = "ENG") -> dict:
    return dict(
        id=uuid.uuid4(),
        name=name,
        code=code,
        is_active=True,
        created_at=datetime.now(timezone.utc),
    )


def _make_employee(
    *,
    first_name: str = "Test",
    last_name: str = "User",
    email: Optional[str] = None,
    role: UserRole = UserRole.employee,
    department_id: Optional[uuid.UUID] = None,
    manager_id: Optional[uuid.UUID] = None,
    department_director_id: Optional[uuid.UUID] = None,
    is_active: bool = True,
) -> dict:
    return dict(
        id=uuid.uuid4(),
        employee_code=f"EMP-{uuid.uuid4().hex[:6].upper()}",
        first_name=first_name,
        last_name=last_name,
        email=email or f"{first_name.lower()}.{uuid.uuid4().hex[:4]}@example.com",
        role=role,
        department_id=department_id,
        manager_id=manager_id,
        department_director_id=department_director_id,
        is_active=is_active,
        created_at=datetime.now(timezone.utc),
    )


async def seed_department(db: AsyncSession, **kwargs):
    from backend.core_hr.models import Department

    dept = Department(**_make_department(**kwargs))
    db.add(dept)
    await db.flush()
    return dept


async def seed_employee(db: AsyncSession, **kwargs):
    from backend.core_hr.models import Employee

    emp = Employee(**_make_employee(**kwargs))
    db.add(emp)
    await db.flush()
    return emp


async def seed_leave_type(
    db: AsyncSession,
    *,
    code: str = "NL",
    name: str = "Normal Leave",
    days_allowed: Decimal = Decimal("21"),
    carry_forward: bool = True,
    max_carry_forward: Optional[Decimal] = Decimal("5"),
    carry_forward_percentage: int = 100,
    is_active: bool = True,
):
    from backend.leave.models import LeaveType

    lt = LeaveType(
        id=uuid.uuid4(),
        code=code,
        name=name,
        days_allowed=days_allowed,
        carry_forward=carry_forward,
        max_carry_forward=max_carry_forward,
        carry_forward_percentage=carry_forward_percentage,
        is_active=is_active,
        created_at=datetime.now(timezone.utc),
    )
    db.add(lt)
    await db.flush()
    return lt


async def seed_balance(
    db: AsyncSession,
    user_id: uuid.UUID,
    leave_type_id: uuid.UUID,
    *,
    year: int = 2026,
    entitled: Decimal = Decimal("21"),
    used: Decimal = Decimal("0"),
    pending: Decimal = Decimal("0"),
    carried_forward: Decimal = Decimal("0"),
):
    from backend.leave.models import LeaveBalance

    bal = LeaveBalance(
        id=uuid.uuid4(),
        user_id=user_id,
        leave_type_id=leave_type_id,
        year=year,
        entitled=entitled,
        used=used,
        pending=pending,
        carried_forward=carried_forward,
        available=entitled + carried_forward - used - pending,
    )
    db.add(bal)
    await db.flush()
    return bal


async def seed_holiday(db: AsyncSession, day: date, name: str = "Public Holiday"):
    from backend.company.models import Holiday

    holiday = Holiday(id=uuid.uuid4(), name=name, date=day, is_active=True)
    db.add(holiday)
    await db.flush()
    return holiday


async def seed_setting(db: AsyncSession, key: str, value: str):
    from backend.company.models import CompanySetting

    db.add(CompanySetting(key=key, value=value, category="escalation"))
    await db.flush()


def headers_for(employee) -> dict[str, str]:
    """Gateway identity header for *employee*."""
    return {"X-Employee-Id": str(employee.id)}
