"""001 – Initial schema: directory, leave, approvals, delegation, planning, settings.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18 09:00:00.000000+03:00
"""

from alembic import op
import sqlalchemy as sa

# Revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    (
        "user_role",
        ["employee", "manager", "department_director", "hr", "executive", "admin"],
    ),
    ("leave_status", ["pending", "approved", "rejected", "cancelled"]),
    ("approval_status", ["pending", "approved", "rejected"]),
    ("planning_stage", ["draft", "closed", "locked"]),
    ("plan_status", ["draft", "submitted", "reviewed", "finalized", "locked"]),
    ("plan_priority", ["essential", "preferred", "nice_to_have"]),
    (
        "notification_type",
        [
            "approval_required",
            "leave_requested",
            "leave_approved",
            "leave_rejected",
            "leave_cancelled",
            "holiday_plan",
            "info",
        ],
    ),
]

TABLES_IN_DROP_ORDER = [
    "audit_logs",
    "notifications",
    "holiday_plan_dates",
    "holiday_plans",
    "holiday_planning_windows",
    "approval_delegates",
    "approvals",
    "leave_requests",
    "leave_balances",
    "leave_types",
    "company_settings",
    "holidays",
    "employees",
    "departments",
]


def _create_enum(name: str, values: list[str]) -> None:
    sa.Enum(*values, name=name).create(op.get_bind(), checkfirst=True)


def _drop_enum(name: str) -> None:
    sa.Enum(name=name).drop(op.get_bind(), checkfirst=True)


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── Directory ─────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE departments (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name        VARCHAR(100) NOT NULL UNIQUE,
            code        VARCHAR(20)  NOT NULL UNIQUE,
            is_active   BOOLEAN DEFAULT TRUE,
            created_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    op.execute("""
        CREATE TABLE employees (
            id                      UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_code           VARCHAR(20)  NOT NULL UNIQUE,
            first_name              VARCHAR(100) NOT NULL,
            last_name               VARCHAR(100) NOT NULL,
            email                   VARCHAR(255) NOT NULL UNIQUE,
            position                VARCHAR(150),
            role                    user_role NOT NULL DEFAULT 'employee',
            department_id           UUID REFERENCES departments(id),
            manager_id              UUID REFERENCES employees(id),
            department_director_id  UUID REFERENCES employees(id),
            is_active               BOOLEAN DEFAULT TRUE,
            created_at              TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_employees_manager_id ON employees(manager_id)")
    op.execute(
        "CREATE INDEX ix_employees_department_director_id ON employees(department_director_id)"
    )
    op.execute("CREATE INDEX ix_employees_role_active ON employees(role, is_active)")

    # ── Company calendar and settings ─────────────────────────────────────
    op.execute("""
        CREATE TABLE holidays (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name        VARCHAR(150) NOT NULL,
            date        DATE NOT NULL,
            is_active   BOOLEAN DEFAULT TRUE
        )
    """)
    op.execute("CREATE INDEX ix_holidays_date ON holidays(date)")

    op.execute("""
        CREATE TABLE company_settings (
            key          VARCHAR(100) PRIMARY KEY,
            value        TEXT NOT NULL,
            category     VARCHAR(50),
            description  TEXT,
            updated_at   TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── Leave ─────────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_types (
            id                        UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            code                      VARCHAR(10)  NOT NULL UNIQUE,
            name                      VARCHAR(100) NOT NULL,
            days_allowed              NUMERIC(5,1) NOT NULL DEFAULT 0,
            carry_forward             BOOLEAN DEFAULT FALSE,
            max_carry_forward         NUMERIC(5,1),
            carry_forward_percentage  INTEGER NOT NULL DEFAULT 100,
            is_active                 BOOLEAN DEFAULT TRUE,
            created_at                TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    op.execute("""
        CREATE TABLE leave_balances (
            id               UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id          UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            leave_type_id    UUID NOT NULL REFERENCES leave_types(id),
            year             INTEGER NOT NULL,
            entitled         NUMERIC(5,1) NOT NULL DEFAULT 0,
            used             NUMERIC(5,1) NOT NULL DEFAULT 0,
            pending          NUMERIC(5,1) NOT NULL DEFAULT 0,
            available        NUMERIC(5,1) NOT NULL DEFAULT 0,
            carried_forward  NUMERIC(5,1) NOT NULL DEFAULT 0,
            updated_at       TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_balance_user_type_year UNIQUE (user_id, leave_type_id, year)
        )
    """)

    op.execute("""
        CREATE TABLE leave_requests (
            id                   UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id              UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            leave_type_id        UUID NOT NULL REFERENCES leave_types(id),
            start_date           DATE NOT NULL,
            end_date             DATE NOT NULL,
            total_days           NUMERIC(5,1) NOT NULL,
            reason               TEXT,
            status               leave_status NOT NULL DEFAULT 'pending',
            cancellation_reason  TEXT,
            cancelled_at         TIMESTAMPTZ,
            created_at           TIMESTAMPTZ DEFAULT NOW(),
            updated_at           TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_leave_requests_user_status ON leave_requests(user_id, status)")
    op.execute("CREATE INDEX ix_leave_requests_dates ON leave_requests(start_date, end_date)")

    op.execute("""
        CREATE TABLE approvals (
            id                 UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            leave_request_id   UUID NOT NULL REFERENCES leave_requests(id) ON DELETE CASCADE,
            approver_id        UUID NOT NULL REFERENCES employees(id),
            level              INTEGER NOT NULL DEFAULT 1,
            status             approval_status NOT NULL DEFAULT 'pending',
            comments           TEXT,
            escalated_to_id    UUID REFERENCES employees(id),
            escalated_at       TIMESTAMPTZ,
            escalation_reason  TEXT,
            approved_at        TIMESTAMPTZ,
            created_at         TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_approvals_level_positive CHECK (level >= 1)
        )
    """)
    op.execute("CREATE INDEX ix_approvals_status_created ON approvals(status, created_at)")
    op.execute(
        "CREATE INDEX ix_approvals_request_approver ON approvals(leave_request_id, approver_id)"
    )
    op.execute("""
        CREATE UNIQUE INDEX uq_approvals_one_pending_per_approver
            ON approvals(leave_request_id, approver_id)
            WHERE status = 'pending'
    """)

    # ── Delegation ────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE approval_delegates (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            delegator_id    UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            delegate_id     UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            start_date      DATE NOT NULL,
            end_date        DATE,
            is_active       BOOLEAN DEFAULT TRUE,
            reason          TEXT,
            created_at      TIMESTAMPTZ DEFAULT NOW(),
            deactivated_at  TIMESTAMPTZ,
            CONSTRAINT ck_approval_delegates_range
                CHECK (end_date IS NULL OR end_date >= start_date)
        )
    """)
    op.execute("""
        CREATE INDEX ix_approval_delegates_delegator_active
            ON approval_delegates(delegator_id, is_active)
    """)

    # ── Holiday planning ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE holiday_planning_windows (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            year        INTEGER NOT NULL UNIQUE,
            open_date   DATE NOT NULL,
            close_date  DATE NOT NULL,
            stage       planning_stage NOT NULL DEFAULT 'closed',
            is_active   BOOLEAN DEFAULT FALSE,
            created_at  TIMESTAMPTZ DEFAULT NOW(),
            updated_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    op.execute("""
        CREATE TABLE holiday_plans (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id         UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            window_id       UUID NOT NULL REFERENCES holiday_planning_windows(id),
            year            INTEGER NOT NULL,
            status          plan_status NOT NULL DEFAULT 'draft',
            version         INTEGER NOT NULL DEFAULT 0,
            submitted_at    TIMESTAMPTZ,
            reviewed_at     TIMESTAMPTZ,
            reviewed_by_id  UUID REFERENCES employees(id),
            notes           TEXT,
            created_at      TIMESTAMPTZ DEFAULT NOW(),
            updated_at      TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_holiday_plan_user_year UNIQUE (user_id, year)
        )
    """)

    op.execute("""
        CREATE TABLE holiday_plan_dates (
            id        UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            plan_id   UUID NOT NULL REFERENCES holiday_plans(id) ON DELETE CASCADE,
            date      DATE NOT NULL,
            priority  plan_priority NOT NULL DEFAULT 'preferred',
            reason    VARCHAR(500),
            CONSTRAINT uq_holiday_plan_date UNIQUE (plan_id, date)
        )
    """)

    # ── Notifications and audit ───────────────────────────────────────────
    op.execute("""
        CREATE TABLE notifications (
            id            UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            recipient_id  UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            type          notification_type DEFAULT 'info',
            title         VARCHAR(200) NOT NULL,
            message       TEXT NOT NULL,
            link          VARCHAR(500),
            is_read       BOOLEAN DEFAULT FALSE,
            created_at    TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX ix_notifications_recipient_read ON notifications(recipient_id, is_read)"
    )

    op.execute("""
        CREATE TABLE audit_logs (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id      VARCHAR(64) NOT NULL,
            action       VARCHAR(50) NOT NULL,
            entity_type  VARCHAR(50) NOT NULL,
            entity_id    VARCHAR(200),
            old_values   JSONB,
            new_values   JSONB,
            details      JSONB,
            created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_audit_logs_user_id ON audit_logs(user_id)")
    op.execute("CREATE INDEX ix_audit_logs_entity ON audit_logs(entity_type, entity_id)")
    op.execute("CREATE INDEX ix_audit_logs_created_at ON audit_logs(created_at)")

    # ═════════════════════════════════════════════════════════════════════
    # SEED DATA
    # ═════════════════════════════════════════════════════════════════════

    op.execute("""
        INSERT INTO leave_types
            (code, name, days_allowed, carry_forward, max_carry_forward, carry_forward_percentage)
        VALUES
            ('NL', 'Normal Leave',     21, TRUE,  5,    100),
            ('SL', 'Sick Leave',       10, FALSE, NULL, 100),
            ('WFH', 'Work From Home',   0, FALSE, NULL, 100),
            ('UL', 'Unpaid Leave',      0, FALSE, NULL, 100)
    """)


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    for table in TABLES_IN_DROP_ORDER:
        op.drop_table(table)

    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)

    op.execute('DROP EXTENSION IF EXISTS "uuid-ossp"')
