"""Leave request lifecycle tests: apply, approve, reject, cancel."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.common.constants import ApprovalStatus, LeaveStatus, UserRole
from backend.common.exceptions import (
    ForbiddenException,
    InvalidStateException,
    ValidationException,
)
from backend.escalation.service import EscalationService
from backend.leave.balance import LeaveBalanceLedger
from backend.leave.models import Approval, LeaveRequest
from backend.leave.service import LeaveService
from backend.notifications.models import Notification
from tests.conftest import seed_balance, seed_employee, seed_holiday, seed_leave_type

MONDAY = date(2026, 4, 6)
FRIDAY = date(2026, 4, 10)


@pytest.fixture
async def team(db: AsyncSession):
    hr = await seed_employee(db, first_name="Hilda", role=UserRole.hr)
    director = await seed_employee(db, first_name="Dora", role=UserRole.department_director)
    manager = await seed_employee(
        db, first_name="Mihai", role=UserRole.manager, department_director_id=director.id,
    )
    requester = await seed_employee(
        db, first_name="Rita", manager_id=manager.id, department_director_id=director.id,
    )
    lt = await seed_leave_type(db)
    await seed_balance(db, requester.id, lt.id, used=Decimal("5"))
    return requester, manager, director, hr, lt


async def _balance(db: AsyncSession, user_id, leave_type_id):
    return await LeaveBalanceLedger(db).get_balance(user_id, leave_type_id, 2026)


# ═════════════════════════════════════════════════════════════════════
# Apply
# ═════════════════════════════════════════════════════════════════════


class TestCreateRequest:

    async def test_create_marks_pending_and_assigns_manager(self, db, team, clock):
        requester, manager, _, _, lt = team
        svc = LeaveService(db, clock=clock)

        request = await svc.create_request(
            user_id=requester.id, leave_type_id=lt.id,
            start_date=MONDAY, end_date=FRIDAY, reason="Holiday",
        )

        assert request.status == LeaveStatus.pending
        assert request.total_days == Decimal("5")
        assert [a.approver_id for a in request.approvals] == [manager.id]
        assert request.approvals[0].level == 1

        bal = await _balance(db, requester.id, lt.id)
        assert bal.pending == Decimal("5")
        assert bal.available == Decimal("11")

    async def test_holidays_are_not_counted(self, db, team, clock):
        requester, _, _, _, lt = team
        await seed_holiday(db, date(2026, 4, 8))
        svc = LeaveService(db, clock=clock)

        request = await svc.create_request(
            user_id=requester.id, leave_type_id=lt.id, start_date=MONDAY, end_date=FRIDAY,
        )
        assert request.total_days == Decimal("4")

    async def test_weekend_only_range_rejected(self, db, team, clock):
        requester, _, _, _, lt = team
        svc = LeaveService(db, clock=clock)

        with pytest.raises(ValidationException) as exc_info:
            await svc.create_request(
                user_id=requester.id, leave_type_id=lt.id,
                start_date=date(2026, 4, 11), end_date=date(2026, 4, 12),
            )
        assert "no working days" in exc_info.value.errors["start_date"][0]

    async def test_overlapping_request_rejected(self, db, team, clock):
        requester, _, _, _, lt = team
        svc = LeaveService(db, clock=clock)
        await svc.create_request(
            user_id=requester.id, leave_type_id=lt.id, start_date=MONDAY, end_date=FRIDAY,
        )

        with pytest.raises(ValidationException) as exc_info:
            await svc.create_request(
                user_id=requester.id, leave_type_id=lt.id,
                start_date=FRIDAY, end_date=date(2026, 4, 13),
            )
        assert "already have a leave request" in exc_info.value.errors["start_date"][0]

    async def test_end_before_start_rejected(self, db, team, clock):
        requester, _, _, _, lt = team
        svc = LeaveService(db, clock=clock)

        with pytest.raises(ValidationException):
            await svc.create_request(
                user_id=requester.id, leave_type_id=lt.id, start_date=FRIDAY, end_date=MONDAY,
            )

    async def test_other_leave_type_leaves_balance_alone(self, db, team, clock):
        requester, _, _, _, _ = team
        wfh = await seed_leave_type(db, code="WFH", name="Work From Home", carry_forward=False)
        await seed_balance(db, requester.id, wfh.id, entitled=Decimal("0"))
        svc = LeaveService(db, clock=clock)

        await svc.create_request(
            user_id=requester.id, leave_type_id=wfh.id, start_date=MONDAY, end_date=MONDAY,
        )
        bal = await _balance(db, requester.id, wfh.id)
        assert bal.pending == Decimal("0")


# ═════════════════════════════════════════════════════════════════════
# Decisions
# ═════════════════════════════════════════════════════════════════════


class TestDecisions:

    async def test_manager_approval_approves_and_books_days(self, db, team, clock):
        requester, manager, _, _, lt = team
        svc = LeaveService(db, clock=clock)
        request = await svc.create_request(
            user_id=requester.id, leave_type_id=lt.id, start_date=MONDAY, end_date=FRIDAY,
        )

        approved = await svc.approve(request.id, manager.id, comments="Enjoy")

        assert approved.status == LeaveStatus.approved
        assert approved.approvals[0].status == ApprovalStatus.approved
        bal = await _balance(db, requester.id, lt.id)
        assert bal.used == Decimal("10")
        assert bal.pending == Decimal("5")

        notified = (
            await db.execute(
                select(Notification).where(Notification.recipient_id == requester.id)
            )
        ).scalars().all()
        assert any(n.title == "Leave Request Approved" for n in notified)

    async def test_reject_releases_pending(self, db, team, clock):
        requester, manager, _, _, lt = team
        svc = LeaveService(db, clock=clock)
        request = await svc.create_request(
            user_id=requester.id, leave_type_id=lt.id, start_date=MONDAY, end_date=FRIDAY,
        )

        rejected = await svc.reject(request.id, manager.id, comments="Deadline week")

        assert rejected.status == LeaveStatus.rejected
        bal = await _balance(db, requester.id, lt.id)
        assert bal.pending == Decimal("0")
        assert bal.available == Decimal("16")

    async def test_stranger_cannot_approve(self, db, team, clock):
        requester, _, _, _, lt = team
        stranger = await seed_employee(db, role=UserRole.manager)
        svc = LeaveService(db, clock=clock)
        request = await svc.create_request(
            user_id=requester.id, leave_type_id=lt.id, start_date=MONDAY, end_date=FRIDAY,
        )

        with pytest.raises(ForbiddenException):
            await svc.approve(request.id, stranger.id)

    async def test_decided_request_cannot_be_decided_again(self, db, team, clock):
        requester, manager, _, _, lt = team
        svc = LeaveService(db, clock=clock)
        request = await svc.create_request(
            user_id=requester.id, leave_type_id=lt.id, start_date=MONDAY, end_date=FRIDAY,
        )
        await svc.reject(request.id, manager.id)

        with pytest.raises(InvalidStateException):
            await svc.approve(request.id, manager.id)

    async def test_superseded_approver_is_blocked_and_target_decides(self, db, team, clock):
        requester, manager, director, _, lt = team
        svc = LeaveService(db, clock=clock)
        request = await svc.create_request(
            user_id=requester.id, leave_type_id=lt.id, start_date=MONDAY, end_date=FRIDAY,
        )
        original = (
            await db.execute(select(Approval).where(Approval.leave_request_id == request.id))
        ).scalars().one()
        config = await EscalationService(db, clock=clock).get_escalation_config()
        await EscalationService(db, clock=clock).escalate_approval(
            await _loaded_approval(db, original.id), config,
        )

        with pytest.raises(InvalidStateException):
            await svc.approve(request.id, manager.id)

        approved = await svc.approve(request.id, director.id)
        assert approved.status == LeaveStatus.approved

    async def test_pending_approvals_lists_active_rows_only(self, db, team, clock):
        requester, manager, _, _, lt = team
        svc = LeaveService(db, clock=clock)
        request = await svc.create_request(
            user_id=requester.id, leave_type_id=lt.id, start_date=MONDAY, end_date=FRIDAY,
        )

        queue = await svc.get_pending_approvals(manager.id)
        assert [r.id for r in queue] == [request.id]
        assert await svc.get_pending_approvals(requester.id) == []


# ═════════════════════════════════════════════════════════════════════
# Cancellation
# ═════════════════════════════════════════════════════════════════════


class TestCancellation:

    async def test_cancel_pending_releases_pending(self, db, team, clock):
        requester, manager, _, _, lt = team
        svc = LeaveService(db, clock=clock)
        request = await svc.create_request(
            user_id=requester.id, leave_type_id=lt.id, start_date=MONDAY, end_date=FRIDAY,
        )

        cancelled = await svc.cancel(request.id, requester.id, reason="Plans changed")

        assert cancelled.status == LeaveStatus.cancelled
        assert cancelled.cancellation_reason == "Plans changed"
        bal = await _balance(db, requester.id, lt.id)
        assert bal.pending == Decimal("0")
        notified = (
            await db.execute(select(Notification).where(Notification.recipient_id == manager.id))
        ).scalars().all()
        assert any(n.title == "Leave Request Cancelled" for n in notified)

    async def test_cancel_future_approved_returns_used_days(self, db, team, clock):
        requester, manager, _, _, lt = team
        svc = LeaveService(db, clock=clock)
        request = await svc.create_request(
            user_id=requester.id, leave_type_id=lt.id, start_date=MONDAY, end_date=FRIDAY,
        )
        await svc.approve(request.id, manager.id)

        await svc.cancel(request.id, requester.id)

        bal = await _balance(db, requester.id, lt.id)
        assert bal.used == Decimal("5")

    async def test_started_leave_cannot_be_cancelled(self, db, team, clock):
        requester, manager, _, _, lt = team
        svc = LeaveService(db, clock=clock)
        request = await svc.create_request(
            user_id=requester.id, leave_type_id=lt.id,
            start_date=date(2026, 3, 10), end_date=date(2026, 3, 12),
        )
        await svc.approve(request.id, manager.id)

        with pytest.raises(InvalidStateException):
            await svc.cancel(request.id, requester.id)

    async def test_only_owner_can_cancel(self, db, team, clock):
        requester, manager, _, _, lt = team
        svc = LeaveService(db, clock=clock)
        request = await svc.create_request(
            user_id=requester.id, leave_type_id=lt.id, start_date=MONDAY, end_date=FRIDAY,
        )

        with pytest.raises(ForbiddenException):
            await svc.cancel(request.id, manager.id)


async def _loaded_approval(db: AsyncSession, approval_id):
    result = await db.execute(
        select(Approval)
        .where(Approval.id == approval_id)
        .options(
            selectinload(Approval.approver),
            selectinload(Approval.leave_request).selectinload(LeaveRequest.user),
            selectinload(Approval.leave_request).selectinload(LeaveRequest.leave_type),
        )
    )
    return result.scalars().one()
