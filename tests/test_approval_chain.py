"""Approval chain resolver tests: chain order, absence, delegation."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import ApprovalStatus, LeaveStatus, UserRole
from backend.delegation.models import ApprovalDelegate
from backend.escalation.chain import ApprovalChainResolver
from backend.escalation.config import EscalationConfig
from backend.leave.models import Approval, LeaveRequest
from tests.conftest import seed_employee, seed_leave_type

TODAY = date(2026, 3, 11)


# ── Helpers ─────────────────────────────────────────────────────────

async def _org(db: AsyncSession):
    """Requester -> manager -> director, plus one HR fallback."""
    hr = await seed_employee(db, first_name="Hilda", role=UserRole.hr)
    director = await seed_employee(db, first_name="Dora", role=UserRole.department_director)
    manager = await seed_employee(
        db, first_name="Mihai", role=UserRole.manager, department_director_id=director.id,
    )
    requester = await seed_employee(
        db, first_name="Rita", manager_id=manager.id, department_director_id=director.id,
    )
    return requester, manager, director, hr


async def _put_on_leave(db: AsyncSession, employee_id: uuid.UUID, leave_type_id: uuid.UUID):
    db.add(
        LeaveRequest(
            user_id=employee_id,
            leave_type_id=leave_type_id,
            start_date=TODAY - timedelta(days=2),
            end_date=TODAY + timedelta(days=2),
            total_days=Decimal("5"),
            status=LeaveStatus.approved,
        )
    )
    await db.flush()


async def _delegate(db: AsyncSession, delegator_id: uuid.UUID, delegate_id: uuid.UUID):
    db.add(
        ApprovalDelegate(
            delegator_id=delegator_id,
            delegate_id=delegate_id,
            start_date=TODAY - timedelta(days=5),
            end_date=TODAY + timedelta(days=5),
            is_active=True,
        )
    )
    await db.flush()


# ═════════════════════════════════════════════════════════════════════
# build_chain
# ═════════════════════════════════════════════════════════════════════


class TestBuildChain:

    async def test_manager_then_director_then_fallback(self, db: AsyncSession, clock):
        requester, manager, director, hr = await _org(db)
        resolver = ApprovalChainResolver(db, clock=clock)

        chain = await resolver.build_chain(requester)
        assert chain == [manager.id, director.id, hr.id]

    async def test_director_equal_to_manager_appears_once(self, db: AsyncSession, clock):
        hr = await seed_employee(db, role=UserRole.hr)
        boss = await seed_employee(db, role=UserRole.department_director)
        requester = await seed_employee(
            db, manager_id=boss.id, department_director_id=boss.id,
        )
        resolver = ApprovalChainResolver(db, clock=clock)

        assert await resolver.build_chain(requester) == [boss.id, hr.id]

    async def test_requester_never_in_own_chain(self, db: AsyncSession, clock):
        hr = await seed_employee(db, first_name="Helen", role=UserRole.hr)
        resolver = ApprovalChainResolver(db, clock=clock)

        chain = await resolver.build_chain(hr)
        assert hr.id not in chain
        assert chain == []

    async def test_inactive_fallback_is_ignored(self, db: AsyncSession, clock):
        await seed_employee(db, role=UserRole.hr, is_active=False)
        exec_ = await seed_employee(db, role=UserRole.executive)
        requester = await seed_employee(db)
        resolver = ApprovalChainResolver(db, clock=clock)

        assert await resolver.build_chain(requester) == [exec_.id]


# ═════════════════════════════════════════════════════════════════════
# Absence
# ═════════════════════════════════════════════════════════════════════


class TestApproverAbsence:

    async def test_on_approved_leave_is_absent(self, db: AsyncSession, clock):
        _, manager, _, _ = await _org(db)
        lt = await seed_leave_type(db)
        await _put_on_leave(db, manager.id, lt.id)
        resolver = ApprovalChainResolver(db, clock=clock)

        assert await resolver.is_approver_absent(manager.id, TODAY) is True

    async def test_pending_leave_does_not_count(self, db: AsyncSession, clock):
        _, manager, _, _ = await _org(db)
        lt = await seed_leave_type(db)
        db.add(
            LeaveRequest(
                user_id=manager.id, leave_type_id=lt.id,
                start_date=TODAY, end_date=TODAY,
                total_days=Decimal("1"), status=LeaveStatus.pending,
            )
        )
        await db.flush()
        resolver = ApprovalChainResolver(db, clock=clock)

        assert await resolver.is_approver_absent(manager.id, TODAY) is False

    async def test_overloaded_approver_is_absent(self, db: AsyncSession, clock):
        requester, manager, _, _ = await _org(db)
        lt = await seed_leave_type(db)
        recent = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)
        for offset in range(11):
            req = LeaveRequest(
                user_id=requester.id, leave_type_id=lt.id,
                start_date=date(2026, 5, 1) + timedelta(days=offset * 2),
                end_date=date(2026, 5, 1) + timedelta(days=offset * 2),
                total_days=Decimal("1"), status=LeaveStatus.pending,
            )
            db.add(req)
            await db.flush()
            db.add(
                Approval(
                    leave_request_id=req.id, approver_id=manager.id, level=1,
                    status=ApprovalStatus.pending, created_at=recent,
                )
            )
        await db.flush()
        resolver = ApprovalChainResolver(db, clock=clock)

        assert await resolver.is_approver_absent(manager.id, TODAY) is True


# ═════════════════════════════════════════════════════════════════════
# resolve_next
# ═════════════════════════════════════════════════════════════════════


class TestResolveNext:

    async def test_from_start_returns_manager(self, db: AsyncSession, clock):
        requester, manager, _, _ = await _org(db)
        resolver = ApprovalChainResolver(db, clock=clock)

        resolution = await resolver.resolve_next(requester.id, None, EscalationConfig())
        assert resolution.approver_id == manager.id
        assert resolution.skipped == []

    async def test_after_manager_returns_director(self, db: AsyncSession, clock):
        requester, manager, director, _ = await _org(db)
        resolver = ApprovalChainResolver(db, clock=clock)

        resolution = await resolver.resolve_next(requester.id, manager.id, EscalationConfig())
        assert resolution.approver_id == director.id

    async def test_absent_manager_without_delegate_is_skipped(self, db: AsyncSession, clock):
        requester, manager, director, _ = await _org(db)
        lt = await seed_leave_type(db)
        await _put_on_leave(db, manager.id, lt.id)
        resolver = ApprovalChainResolver(db, clock=clock)

        resolution = await resolver.resolve_next(requester.id, None, EscalationConfig())
        assert resolution.approver_id == director.id
        assert resolution.skipped == [manager.id]

    async def test_absent_manager_with_delegate_is_substituted(self, db: AsyncSession, clock):
        requester, manager, director, _ = await _org(db)
        deputy = await seed_employee(db, first_name="Dan", role=UserRole.manager)
        lt = await seed_leave_type(db)
        await _put_on_leave(db, manager.id, lt.id)
        await _delegate(db, manager.id, deputy.id)
        resolver = ApprovalChainResolver(db, clock=clock)

        resolution = await resolver.resolve_next(requester.id, None, EscalationConfig())
        assert resolution.approver_id == deputy.id
        assert resolution.delegated_from == manager.id
        assert resolution.skipped == []

    async def test_absent_delegate_falls_through(self, db: AsyncSession, clock):
        requester, manager, director, _ = await _org(db)
        deputy = await seed_employee(db, first_name="Dan", role=UserRole.manager)
        lt = await seed_leave_type(db)
        await _put_on_leave(db, manager.id, lt.id)
        await _put_on_leave(db, deputy.id, lt.id)
        await _delegate(db, manager.id, deputy.id)
        resolver = ApprovalChainResolver(db, clock=clock)

        resolution = await resolver.resolve_next(requester.id, None, EscalationConfig())
        assert resolution.approver_id == director.id

    async def test_auto_skip_disabled_returns_absent_candidate(self, db: AsyncSession, clock):
        requester, manager, _, _ = await _org(db)
        lt = await seed_leave_type(db)
        await _put_on_leave(db, manager.id, lt.id)
        resolver = ApprovalChainResolver(db, clock=clock)

        config = EscalationConfig(auto_skip_absent_approvers=False)
        resolution = await resolver.resolve_next(requester.id, None, config)
        assert resolution.approver_id == manager.id

    async def test_end_of_chain_returns_none(self, db: AsyncSession, clock):
        requester, _, _, hr = await _org(db)
        resolver = ApprovalChainResolver(db, clock=clock)

        resolution = await resolver.resolve_next(requester.id, hr.id, EscalationConfig())
        assert resolution.approver_id is None

    async def test_unknown_requester_returns_none(self, db: AsyncSession, clock):
        resolver = ApprovalChainResolver(db, clock=clock)

        resolution = await resolver.resolve_next(uuid.uuid4(), None, EscalationConfig())
        assert resolution.approver_id is None

    async def test_repeated_resolution_is_stable(self, db: AsyncSession, clock):
        requester, manager, director, _ = await _org(db)
        deputy = await seed_employee(db, first_name="Dan", role=UserRole.manager)
        lt = await seed_leave_type(db)
        await _put_on_leave(db, manager.id, lt.id)
        await _delegate(db, manager.id, deputy.id)
        resolver = ApprovalChainResolver(db, clock=clock)
        config = EscalationConfig()

        first = await resolver.resolve_next(requester.id, None, config)
        second = await resolver.resolve_next(requester.id, None, config)

        assert first == second
        assert (first.approver_id, first.delegated_from) == (deputy.id, manager.id)

    async def test_holder_outside_chain_resumes_after_lineage(self, db: AsyncSession, clock):
        requester, manager, director, _ = await _org(db)
        deputy = await seed_employee(db, first_name="Dan", role=UserRole.manager)
        resolver = ApprovalChainResolver(db, clock=clock)

        resolution = await resolver.resolve_next(
            requester.id, deputy.id, EscalationConfig(), lineage=[manager.id],
        )

        assert resolution.approver_id == director.id
        assert manager.id not in resolution.skipped
