"""Leave service layer — requests, decisions and balances.

Business logic:
  - Leave application with weekend/holiday exclusion and overlap check
  - Level-1 approver assignment via the escalation engine
  - Approve / reject by the approver holding the active pending approval
  - Cancellation by the requester, releasing pending or used days
  - Ledger updates for the Normal Leave type on every transition
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.common.audit import record_audit
from backend.common.clock import Clock, company_now, to_utc, utc_now
from backend.common.constants import (
    ApprovalStatus,
    AuditAction,
    LeaveStatus,
    NotificationType,
)
from backend.common.exceptions import (
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
    ValidationException,
)
from backend.company.service import CompanyService
from backend.core_hr.service import DirectoryService
from backend.escalation.business_days import count_business_days
from backend.escalation.config import EscalationConfigService
from backend.escalation.service import EscalationService
from backend.leave.balance import LeaveBalanceLedger
from backend.leave.models import Approval, LeaveBalance, LeaveRequest, LeaveType
from backend.notifications.effects import (
    Effect,
    EffectDispatcher,
    EmailEffect,
    NotificationEffect,
)
from backend.notifications.service import approver_link, requester_link
from backend.notifications.templates import leave_decision_email

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════
# LeaveService
# ═════════════════════════════════════════════════════════════════════


class LeaveService:
    """Async leave operations: types, balances, requests, decisions."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        clock: Clock = utc_now,
        dispatcher: Optional[EffectDispatcher] = None,
    ) -> None:
        self.db = db
        self.clock = clock
        self.dispatcher = dispatcher or EffectDispatcher(db)
        self.directory = DirectoryService(db)
        self.ledger = LeaveBalanceLedger(db)
        self.escalation = EscalationService(
            db, clock=clock, dispatcher=self.dispatcher, directory=self.directory,
        )

    # ─────────────────────────────────────────────────────────────────
    # Lookups
    # ─────────────────────────────────────────────────────────────────

    async def get_leave_types(self, *, is_active: Optional[bool] = True) -> Sequence[LeaveType]:
        query = select(LeaveType).order_by(LeaveType.code)
        if is_active is not None:
            query = query.where(LeaveType.is_active.is_(is_active))
        result = await self.db.execute(query)
        return result.scalars().all()

    async def get_balances(self, user_id: uuid.UUID, year: int) -> Sequence[LeaveBalance]:
        result = await self.db.execute(
            select(LeaveBalance)
            .where(LeaveBalance.user_id == user_id, LeaveBalance.year == year)
            .options(selectinload(LeaveBalance.leave_type))
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()

    async def get_request(self, request_id: uuid.UUID) -> LeaveRequest:
        result = await self.db.execute(
            select(LeaveRequest)
            .where(LeaveRequest.id == request_id)
            .options(
                selectinload(LeaveRequest.user),
                selectinload(LeaveRequest.leave_type),
                selectinload(LeaveRequest.approvals),
            )
            .execution_options(populate_existing=True)
        )
        request = result.scalars().first()
        if request is None:
            raise NotFoundException("LeaveRequest", request_id)
        return request

    async def list_requests(
        self,
        user_id: uuid.UUID,
        *,
        status: Optional[LeaveStatus] = None,
    ) -> Sequence[LeaveRequest]:
        query = (
            select(LeaveRequest)
            .where(LeaveRequest.user_id == user_id)
            .options(
                selectinload(LeaveRequest.leave_type),
                selectinload(LeaveRequest.approvals),
            )
            .order_by(LeaveRequest.start_date.desc())
        )
        if status is not None:
            query = query.where(LeaveRequest.status == status)
        result = await self.db.execute(query)
        return result.scalars().all()

    async def get_pending_approvals(self, approver_id: uuid.UUID) -> Sequence[LeaveRequest]:
        """Requests waiting on *approver_id* (active, non-escalated approvals only)."""
        result = await self.db.execute(
            select(LeaveRequest)
            .join(Approval, Approval.leave_request_id == LeaveRequest.id)
            .where(
                Approval.approver_id == approver_id,
                Approval.status == ApprovalStatus.pending,
                Approval.escalated_to_id.is_(None),
                LeaveRequest.status == LeaveStatus.pending,
            )
            .options(
                selectinload(LeaveRequest.leave_type),
                selectinload(LeaveRequest.approvals),
            )
            .order_by(LeaveRequest.created_at)
        )
        return result.scalars().unique().all()

    # ─────────────────────────────────────────────────────────────────
    # Apply
    # ─────────────────────────────────────────────────────────────────

    async def create_request(
        self,
        *,
        user_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        start_date: date,
        end_date: date,
        reason: Optional[str] = None,
    ) -> LeaveRequest:
        """Validate and file a leave request, mark days pending, assign approver."""
        if end_date < start_date:
            raise ValidationException({"end_date": ["End date must be on or after start date."]})
        if start_date.year != end_date.year:
            raise ValidationException(
                {"end_date": ["A leave request cannot span two calendar years."]},
            )

        employee = await self.directory.get_employee(user_id)
        if employee is None or not employee.is_active:
            raise NotFoundException("Employee", user_id)

        leave_type = await self.db.get(LeaveType, leave_type_id)
        if leave_type is None or not leave_type.is_active:
            raise NotFoundException("LeaveType", leave_type_id)

        holidays = await CompanyService(self.db).get_holiday_dates(start_date, end_date)
        total_days = count_business_days(start_date, end_date, holidays)
        if total_days == 0:
            raise ValidationException(
                {"start_date": ["The selected range contains no working days."]},
            )

        overlap = await self.db.execute(
            select(LeaveRequest.id)
            .where(
                LeaveRequest.user_id == user_id,
                LeaveRequest.status.in_([LeaveStatus.pending, LeaveStatus.approved]),
                LeaveRequest.start_date <= end_date,
                LeaveRequest.end_date >= start_date,
            )
            .limit(1)
        )
        if overlap.scalar() is not None:
            raise ValidationException(
                {"start_date": ["You already have a leave request covering these dates."]},
            )

        request = LeaveRequest(
            user_id=user_id,
            leave_type_id=leave_type_id,
            start_date=start_date,
            end_date=end_date,
            total_days=total_days,
            reason=reason,
            status=LeaveStatus.pending,
            created_at=to_utc(self.clock()),
        )
        self.db.add(request)
        await self.db.flush()

        await self.ledger.on_pending(
            user_id, leave_type_id, leave_type.code, request.total_days, start_date.year,
        )
        await record_audit(
            self.db,
            action=AuditAction.create,
            entity_type="leave_request",
            entity_id=request.id,
            actor_id=user_id,
            new_values={
                "leave_type": leave_type.code,
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
                "total_days": total_days,
            },
        )
        logger.info(
            "Leave request %s filed by %s: %s to %s (%d days)",
            request.id, user_id, start_date, end_date, total_days,
        )

        await self.escalation.process_new_leave_request(request.id)
        return await self.get_request(request.id)

    # ─────────────────────────────────────────────────────────────────
    # Decisions
    # ─────────────────────────────────────────────────────────────────

    async def _pending_request(self, request_id: uuid.UUID) -> LeaveRequest:
        request = await self.get_request(request_id)
        if request.status != LeaveStatus.pending:
            raise InvalidStateException(f"Leave request is already {request.status.value}.")
        return request

    @staticmethod
    def _active_approval_for(request: LeaveRequest, approver_id: uuid.UUID) -> Approval:
        rows = [
            a for a in request.approvals
            if a.approver_id == approver_id and a.status == ApprovalStatus.pending
        ]
        if not rows:
            raise ForbiddenException("You are not an approver on this leave request.")
        active = [a for a in rows if a.escalated_to_id is None]
        if not active:
            raise InvalidStateException(
                "This approval has been escalated and can no longer be acted on.",
            )
        return active[0]

    def _decision_effects(
        self,
        request: LeaveRequest,
        decision: str,
        comments: Optional[str],
    ) -> list[Effect]:
        notification_type = (
            NotificationType.leave_approved if decision == "approved"
            else NotificationType.leave_rejected
        )
        effects: list[Effect] = [
            NotificationEffect(
                recipient_id=request.user_id,
                type=notification_type,
                title=f"Leave Request {decision.capitalize()}",
                message=(
                    f"Your {request.leave_type.name} request from {request.start_date} "
                    f"to {request.end_date} was {decision}"
                ),
                link=requester_link(request.id),
            ),
        ]
        if request.user.email:
            effects.append(
                EmailEffect(
                    to=request.user.email,
                    email=leave_decision_email(
                        employee_name=request.user.full_name,
                        leave_type=request.leave_type.name,
                        start_date=request.start_date,
                        end_date=request.end_date,
                        decision=decision,
                        comments=comments,
                        link=requester_link(request.id),
                    ),
                )
            )
        return effects

    async def approve(
        self,
        request_id: uuid.UUID,
        approver_id: uuid.UUID,
        *,
        comments: Optional[str] = None,
    ) -> LeaveRequest:
        """Approve the caller's step; the request is approved once every active step is."""
        request = await self._pending_request(request_id)
        approval = self._active_approval_for(request, approver_id)

        approval.status = ApprovalStatus.approved
        approval.approved_at = to_utc(self.clock())
        approval.comments = comments or approval.comments

        fully_approved = all(
            a.status == ApprovalStatus.approved
            for a in request.approvals
            if a.escalated_to_id is None
        )
        if fully_approved:
            request.status = LeaveStatus.approved
        await self.db.flush()

        effects: list[Effect] = []
        if fully_approved:
            await self.ledger.on_approval(
                request.user_id, request.leave_type_id, request.leave_type.code,
                request.total_days, request.start_date.year,
            )
            effects = self._decision_effects(request, "approved", comments)

        await record_audit(
            self.db,
            action=AuditAction.approve,
            entity_type="leave_request",
            entity_id=request.id,
            actor_id=approver_id,
            old_values={"status": LeaveStatus.pending.value},
            new_values={"status": request.status.value, "level": approval.level},
        )
        logger.info(
            "Approval %s (level %d) on request %s approved by %s",
            approval.id, approval.level, request.id, approver_id,
        )
        await self.dispatcher.dispatch(effects)
        return await self.get_request(request.id)

    async def reject(
        self,
        request_id: uuid.UUID,
        approver_id: uuid.UUID,
        *,
        comments: Optional[str] = None,
    ) -> LeaveRequest:
        request = await self._pending_request(request_id)
        approval = self._active_approval_for(request, approver_id)

        approval.status = ApprovalStatus.rejected
        approval.approved_at = to_utc(self.clock())
        approval.comments = comments or approval.comments
        request.status = LeaveStatus.rejected
        await self.db.flush()

        await self.ledger.on_rejection(
            request.user_id, request.leave_type_id, request.leave_type.code,
            request.total_days, request.start_date.year,
        )
        await record_audit(
            self.db,
            action=AuditAction.reject,
            entity_type="leave_request",
            entity_id=request.id,
            actor_id=approver_id,
            old_values={"status": LeaveStatus.pending.value},
            new_values={"status": LeaveStatus.rejected.value, "comments": comments},
        )
        logger.info("Request %s rejected by %s", request.id, approver_id)
        await self.dispatcher.dispatch(self._decision_effects(request, "rejected", comments))
        return await self.get_request(request.id)

    async def cancel(
        self,
        request_id: uuid.UUID,
        user_id: uuid.UUID,
        *,
        reason: Optional[str] = None,
    ) -> LeaveRequest:
        """Withdraw a pending request, or cancel an approved one that has not started."""
        request = await self.get_request(request_id)
        if request.user_id != user_id:
            raise ForbiddenException("You can only cancel your own leave requests.")

        old_status = request.status
        if old_status == LeaveStatus.approved:
            config = await EscalationConfigService(self.db).get_escalation_config()
            today = company_now(config.company_timezone, self.clock).date()
            if request.start_date <= today:
                raise InvalidStateException("Leave that has already started cannot be cancelled.")
        elif old_status != LeaveStatus.pending:
            raise InvalidStateException(
                f"Cannot cancel a leave request with status '{old_status.value}'.",
            )

        waiting_on = [
            a.approver_id for a in request.approvals
            if a.status == ApprovalStatus.pending and a.escalated_to_id is None
        ]
        request.status = LeaveStatus.cancelled
        request.cancelled_at = to_utc(self.clock())
        request.cancellation_reason = reason
        await self.db.flush()

        ledger_args = (
            request.user_id, request.leave_type_id, request.leave_type.code,
            request.total_days, request.start_date.year,
        )
        if old_status == LeaveStatus.pending:
            await self.ledger.on_rejection(*ledger_args)
        else:
            await self.ledger.on_cancellation(*ledger_args)

        await record_audit(
            self.db,
            action=AuditAction.cancel,
            entity_type="leave_request",
            entity_id=request.id,
            actor_id=user_id,
            old_values={"status": old_status.value},
            new_values={"status": LeaveStatus.cancelled.value, "reason": reason},
        )
        logger.info("Request %s cancelled by requester (was %s)", request.id, old_status.value)

        effects: list[Effect] = []
        for approver_id in waiting_on:
            approver = await self.directory.get_employee(approver_id, with_department=True)
            effects.append(
                NotificationEffect(
                    recipient_id=approver_id,
                    type=NotificationType.leave_cancelled,
                    title="Leave Request Cancelled",
                    message=(
                        f"{request.user.full_name} cancelled the leave request from "
                        f"{request.start_date} to {request.end_date}"
                    ),
                    link=approver_link(approver, request.id),
                )
            )
        await self.dispatcher.dispatch(effects)
        return await self.get_request(request.id)
