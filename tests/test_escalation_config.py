"""Escalation settings and runner tests."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import ApprovalStatus, LeaveStatus, UserRole
from backend.common.exceptions import ValidationException
from backend.company.models import CompanySetting
from backend.delegation.models import ApprovalDelegate
from backend.escalation.config import (
    EscalationConfig,
    EscalationConfigService,
    parse_escalation_settings,
)
from backend.escalation.scheduler import EscalationScheduler, run_escalation_cycle
from backend.leave.models import Approval, LeaveRequest
from tests.conftest import (
    seed_employee,
    seed_leave_type,
    seed_setting,
)


class TestParseSettings:

    def test_defaults(self):
        config = parse_escalation_settings({})
        assert config == EscalationConfig()
        assert config.escalation_days_before_auto_approval == 3
        assert config.max_escalation_levels == 3
        assert config.auto_approve_after_max_escalations is False
        assert config.company_timezone == "Europe/Bucharest"

    def test_stored_strings_are_typed(self):
        config = parse_escalation_settings({
            "escalationDaysBeforeAutoApproval": "5",
            "escalationEnabled": "FALSE",
            "autoSkipAbsentApprovers": "true",
            "companyTimezone": "UTC",
        })
        assert config.escalation_days_before_auto_approval == 5
        assert config.escalation_enabled is False
        assert config.auto_skip_absent_approvers is True
        assert config.company_timezone == "UTC"

    def test_garbage_number_keeps_default(self):
        config = parse_escalation_settings({"maxEscalationLevels": "many"})
        assert config.max_escalation_levels == 3

    def test_unknown_keys_ignored(self):
        assert parse_escalation_settings({"somethingElse": "1"}) == EscalationConfig()


class TestConfigService:

    async def test_initialize_keeps_existing_values(self, db: AsyncSession):
        await seed_setting(db, "maxEscalationLevels", "5")
        svc = EscalationConfigService(db)

        await svc.initialize_default_settings()

        keys = (await db.execute(select(CompanySetting.key))).scalars().all()
        assert len(keys) == 7
        config = await svc.get_escalation_config()
        assert config.max_escalation_levels == 5

    async def test_update_persists_changes(self, db: AsyncSession):
        svc = EscalationConfigService(db)

        updated = await svc.update_escalation_config(
            {"escalationDaysBeforeAutoApproval": 4, "autoApproveAfterMaxEscalations": True},
        )

        assert updated.escalation_days_before_auto_approval == 4
        assert updated.auto_approve_after_max_escalations is True
        reread = await svc.get_escalation_config()
        assert reread == updated

    async def test_update_rejects_unknown_key(self, db: AsyncSession):
        with pytest.raises(ValidationException) as exc_info:
            await EscalationConfigService(db).update_escalation_config({"colour": "blue"})
        assert exc_info.value.errors == {"colour": ["Unknown setting."]}

    async def test_update_rejects_non_numeric(self, db: AsyncSession):
        with pytest.raises(ValidationException) as exc_info:
            await EscalationConfigService(db).update_escalation_config(
                {"maxEscalationLevels": "lots"},
            )
        assert exc_info.value.errors["maxEscalationLevels"] == ["Must be a whole number."]

    async def test_update_rejects_out_of_range(self, db: AsyncSession):
        with pytest.raises(ValidationException):
            await EscalationConfigService(db).update_escalation_config(
                {"escalationDaysBeforeAutoApproval": 0},
            )

    async def test_update_rejects_unknown_timezone(self, db: AsyncSession):
        with pytest.raises(ValidationException) as exc_info:
            await EscalationConfigService(db).update_escalation_config(
                {"companyTimezone": "Mars/Olympus"},
            )
        assert "companyTimezone" in exc_info.value.errors


# ═════════════════════════════════════════════════════════════════════
# Runner
# ═════════════════════════════════════════════════════════════════════


async def _stale_setup(db: AsyncSession):
    director = await seed_employee(db, first_name="Dora", role=UserRole.department_director)
    manager = await seed_employee(db, first_name="Mihai", role=UserRole.manager)
    requester = await seed_employee(
        db, manager_id=manager.id, department_director_id=director.id,
    )
    lt = await seed_leave_type(db)
    request = LeaveRequest(
        user_id=requester.id, leave_type_id=lt.id,
        start_date=date(2026, 4, 6), end_date=date(2026, 4, 6),
        total_days=Decimal("1"), status=LeaveStatus.pending,
    )
    db.add(request)
    await db.flush()
    db.add(
        Approval(
            leave_request_id=request.id, approver_id=manager.id, level=1,
            status=ApprovalStatus.pending,
            created_at=datetime(2026, 3, 5, 10, 0, tzinfo=timezone.utc),
        )
    )
    db.add(
        ApprovalDelegate(
            delegator_id=manager.id, delegate_id=director.id,
            start_date=date(2026, 2, 1), end_date=date(2026, 2, 28), is_active=True,
        )
    )
    await db.commit()
    return request, director


class TestEscalationRunner:

    async def test_cycle_seeds_settings_expires_and_escalates(
        self, db: AsyncSession, session_factory, clock,
    ):
        request, director = await _stale_setup(db)

        summary = await run_escalation_cycle(session_factory, clock=clock)

        assert summary.escalated == 1
        async with session_factory() as check:
            keys = (await check.execute(select(CompanySetting.key))).scalars().all()
            assert "escalationEnabled" in keys
            delegation = (await check.execute(select(ApprovalDelegate))).scalars().one()
            assert delegation.is_active is False
            rows = (
                await check.execute(
                    select(Approval).where(Approval.leave_request_id == request.id)
                )
            ).scalars().all()
            assert {r.approver_id for r in rows if r.escalated_to_id is None} == {director.id}

    async def test_scheduler_trigger_records_status(
        self, db: AsyncSession, session_factory, clock,
    ):
        await _stale_setup(db)
        scheduler = EscalationScheduler(session_factory, interval_hours=2, clock=clock)

        summary = await scheduler.trigger()

        status = scheduler.status()
        assert summary.checked == 1
        assert status["run_count"] == 1
        assert status["last_run"] == clock()
        assert status["interval_hours"] == 2
        assert status["is_running"] is False
        assert status["next_run"] is None

    async def test_stop_cancels_loop_and_is_idempotent(self, session_factory, clock):
        scheduler = EscalationScheduler(session_factory, interval_hours=2, clock=clock)

        await scheduler.stop()
        scheduler.start()
        assert scheduler.is_running is True

        await scheduler.stop()
        await scheduler.stop()

        assert scheduler.is_running is False
        assert scheduler.status()["next_run"] is None
