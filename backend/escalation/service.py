"""Escalation engine — periodic sweep over stale approvals.

Business logic:
  - Approvals still PENDING after N business days (company timezone,
    weekends and active holidays excluded) move to the next approver
  - Absent approvers are skipped or substituted by their delegate
  - At the escalation ceiling a request can be auto-approved
  - New requests get their level-1 approval here

Each stale approval is handled inside its own SAVEPOINT. Notifications and
emails are collected as effects and dispatched after the row's state change
has been flushed; their failures never undo an escalation.
"""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
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
from backend.company.service import CompanyService
from backend.core_hr.service import DirectoryService
from backend.escalation.business_days import lookback_start, subtract_business_days
from backend.escalation.chain import ApprovalChainResolver
from backend.escalation.config import EscalationConfig, EscalationConfigService
from backend.leave.balance import LeaveBalanceLedger
from backend.leave.models import Approval, LeaveRequest
from backend.notifications.effects import (
    Effect,
    EffectDispatcher,
    EmailEffect,
    NotificationEffect,
)
from backend.notifications.service import approver_link, requester_link
from backend.notifications.templates import escalation_email, leave_decision_email

logger = logging.getLogger(__name__)

AUTO_APPROVAL_COMMENT = "Auto-approved by system after maximum escalations"


class EscalationOutcome(str, enum.Enum):
    escalated = "escalated"
    auto_approved = "auto_approved"
    unresolved = "unresolved"


@dataclass
class EscalationRunSummary:
    """Counters for one sweep."""

    enabled: bool = True
    checked: int = 0
    escalated: int = 0
    auto_approved: int = 0
    unresolved: int = 0
    failed: int = 0

    def record(self, outcome: EscalationOutcome) -> None:
        if outcome is EscalationOutcome.escalated:
            self.escalated += 1
        elif outcome is EscalationOutcome.auto_approved:
            self.auto_approved += 1
        else:
            self.unresolved += 1


# ═════════════════════════════════════════════════════════════════════
# EscalationService
# ═════════════════════════════════════════════════════════════════════


class EscalationService:
    """Escalation sweep and initial approver assignment."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        clock: Clock = utc_now,
        dispatcher: Optional[EffectDispatcher] = None,
        directory: Optional[DirectoryService] = None,
        resolver: Optional[ApprovalChainResolver] = None,
    ) -> None:
        self.db = db
        self.clock = clock
        self.dispatcher = dispatcher or EffectDispatcher(db)
        self.directory = directory or DirectoryService(db)
        self.resolver = resolver or ApprovalChainResolver(
            db, clock=clock, directory=self.directory,
        )
        self.config_service = EscalationConfigService(db)
        self.company = CompanyService(db)
        self.ledger = LeaveBalanceLedger(db)

    async def get_escalation_config(self) -> EscalationConfig:
        return await self.config_service.get_escalation_config()

    # ─────────────────────────────────────────────────────────────────
    # Sweep
    # ─────────────────────────────────────────────────────────────────

    async def escalation_threshold(self, config: EscalationConfig) -> datetime:
        """UTC instant before which a pending approval counts as stale."""
        now = company_now(config.company_timezone, self.clock)
        days = config.escalation_days_before_auto_approval
        holidays = await self.company.get_holiday_dates(
            lookback_start(now, days), now.date(),
        )
        return to_utc(subtract_business_days(now, days, holidays))

    async def find_stale_approvals(self, config: EscalationConfig) -> Sequence[Approval]:
        threshold = await self.escalation_threshold(config)
        result = await self.db.execute(
            select(Approval)
            .join(LeaveRequest, Approval.leave_request_id == LeaveRequest.id)
            .where(
                Approval.status == ApprovalStatus.pending,
                Approval.escalated_to_id.is_(None),
                Approval.created_at <= threshold,
                LeaveRequest.status == LeaveStatus.pending,
            )
            .options(
                selectinload(Approval.approver),
                selectinload(Approval.leave_request).selectinload(LeaveRequest.user),
                selectinload(Approval.leave_request).selectinload(LeaveRequest.leave_type),
            )
            .order_by(Approval.created_at)
        )
        return result.scalars().all()

    async def check_and_escalate_pending_approvals(self) -> EscalationRunSummary:
        """Escalate every stale approval; one failing row never stops the sweep."""
        config = await self.get_escalation_config()
        summary = EscalationRunSummary(enabled=config.escalation_enabled)
        if not config.escalation_enabled:
            logger.info("Escalation is disabled; sweep skipped")
            return summary

        stale = await self.find_stale_approvals(config)
        summary.checked = len(stale)
        logger.info("Found %d approval(s) pending escalation", len(stale))

        for approval in stale:
            approval_id = approval.id
            try:
                async with self.db.begin_nested():
                    outcome, effects = await self.escalate_approval(approval, config)
            except SQLAlchemyError:
                logger.exception("Escalation of approval %s failed", approval_id)
                summary.failed += 1
                continue
            summary.record(outcome)
            await self.dispatcher.dispatch(effects)

        logger.info(
            "Escalation sweep done: checked=%d escalated=%d auto_approved=%d "
            "unresolved=%d failed=%d",
            summary.checked, summary.escalated, summary.auto_approved,
            summary.unresolved, summary.failed,
        )
        return summary

    async def escalate_approval(
        self,
        approval: Approval,
        config: EscalationConfig,
    ) -> tuple[EscalationOutcome, list[Effect]]:
        """Move one stale approval forward; caller owns the transaction."""
        request = approval.leave_request
        resolution = await self.resolver.resolve_escalation(
            request.user_id, approval.approver_id, config,
            lineage=await self._lineage(approval),
        )

        if resolution.approver_id is None:
            if (
                config.auto_approve_after_max_escalations
                and approval.level >= config.max_escalation_levels
            ):
                effects = await self._auto_approve(approval)
                return EscalationOutcome.auto_approved, effects
            logger.info(
                "Cannot escalate approval %s: no higher authority found", approval.id,
            )
            return EscalationOutcome.unresolved, []

        target_id = resolution.approver_id
        now = to_utc(self.clock())
        reason = (
            f"Auto-escalated after {config.escalation_days_before_auto_approval} "
            f"business days of inactivity"
        )
        if resolution.skipped:
            reason += f". Skipped absent approvers: {len(resolution.skipped)}"
        if resolution.delegated_from is not None:
            reason += ". Assigned to delegate of an absent approver"

        approval.escalated_to_id = target_id
        approval.escalated_at = now
        approval.escalation_reason = reason

        existing = (
            await self.db.execute(
                select(Approval).where(
                    Approval.leave_request_id == approval.leave_request_id,
                    Approval.approver_id == target_id,
                    Approval.status == ApprovalStatus.pending,
                )
            )
        ).scalar_one_or_none()
        if existing is None:
            self.db.add(
                Approval(
                    leave_request_id=approval.leave_request_id,
                    approver_id=target_id,
                    level=approval.level + 1,
                    status=ApprovalStatus.pending,
                    comments=f"Escalated from {approval.approver.full_name}",
                    created_at=now,
                )
            )
        elif existing.escalated_to_id is not None:
            # The target's earlier row was superseded; it becomes the active one again
            existing.escalated_to_id = None
            existing.escalated_at = None
            existing.escalation_reason = None
            existing.created_at = now
            logger.info(
                "Re-activated approval %s of %s on request %s",
                existing.id, target_id, approval.leave_request_id,
            )
        else:
            logger.info(
                "Pending approval already exists for approver %s on request %s",
                target_id, approval.leave_request_id,
            )
        await self.db.flush()

        await record_audit(
            self.db,
            action=AuditAction.escalate,
            entity_type="approval",
            entity_id=approval.id,
            old_values={"approver_id": str(approval.approver_id), "level": approval.level},
            new_values={"approver_id": str(target_id), "level": approval.level + 1},
            details={
                "leave_request_id": str(request.id),
                "skipped": [str(s) for s in resolution.skipped],
                "reason": reason,
            },
        )
        logger.info(
            "Escalated approval %s (request %s) from %s to %s",
            approval.id, request.id, approval.approver_id, target_id,
        )

        target = await self.directory.get_employee(target_id, with_department=True)
        requester = request.user
        effects: list[Effect] = [
            NotificationEffect(
                recipient_id=target_id,
                type=NotificationType.approval_required,
                title="Escalated Leave Request Approval Required",
                message=(
                    f"Leave request from {requester.full_name} has been escalated "
                    f"to you for approval"
                ),
                link=approver_link(target, request.id),
            ),
            NotificationEffect(
                recipient_id=request.user_id,
                type=NotificationType.leave_requested,
                title="Leave Request Escalated",
                message="Your leave request has been escalated to a higher authority for approval",
                link=requester_link(request.id),
            ),
        ]
        if target is not None and target.email:
            effects.append(
                EmailEffect(
                    to=target.email,
                    email=escalation_email(
                        employee_name=requester.full_name,
                        leave_type=request.leave_type.name,
                        start_date=request.start_date,
                        end_date=request.end_date,
                        days=request.total_days,
                        escalated_from_name=approval.approver.full_name,
                        escalated_to_name=target.full_name,
                        escalation_reason=reason,
                        link=approver_link(target, request.id),
                    ),
                )
            )
        return EscalationOutcome.escalated, effects

    async def _lineage(self, approval: Approval) -> list[uuid.UUID]:
        """Earlier holders this approval replaced, nearest first."""
        lineage: list[uuid.UUID] = []
        holder, level = approval.approver_id, approval.level
        while True:
            row = (
                await self.db.execute(
                    select(Approval.approver_id, Approval.level)
                    .where(
                        Approval.leave_request_id == approval.leave_request_id,
                        Approval.escalated_to_id == holder,
                        Approval.level < level,
                    )
                    .order_by(Approval.level.desc())
                    .limit(1)
                )
            ).first()
            if row is None:
                return lineage
            holder, level = row.approver_id, row.level
            lineage.append(holder)

    async def _auto_approve(self, approval: Approval) -> list[Effect]:
        request = approval.leave_request
        now = to_utc(self.clock())

        request.status = LeaveStatus.approved
        approval.status = ApprovalStatus.approved
        approval.approved_at = now
        approval.comments = AUTO_APPROVAL_COMMENT
        await self.db.flush()

        await self.ledger.on_approval(
            request.user_id,
            request.leave_type_id,
            request.leave_type.code,
            request.total_days,
            request.start_date.year,
        )
        await record_audit(
            self.db,
            action=AuditAction.auto_approve,
            entity_type="leave_request",
            entity_id=request.id,
            old_values={"status": LeaveStatus.pending.value},
            new_values={"status": LeaveStatus.approved.value, "level": approval.level},
        )
        logger.info(
            "Auto-approved request %s after %d escalation level(s)",
            request.id, approval.level,
        )

        effects: list[Effect] = [
            NotificationEffect(
                recipient_id=request.user_id,
                type=NotificationType.leave_approved,
                title="Leave Request Auto-Approved",
                message=(
                    "Your leave request has been automatically approved after "
                    "reaching maximum escalation levels"
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
                        decision="approved",
                        comments=AUTO_APPROVAL_COMMENT,
                        link=requester_link(request.id),
                    ),
                )
            )
        return effects

    # ─────────────────────────────────────────────────────────────────
    # New requests
    # ─────────────────────────────────────────────────────────────────

    async def process_new_leave_request(self, request_id: uuid.UUID) -> Optional[Approval]:
        """Create the level-1 approval for a freshly submitted request."""
        result = await self.db.execute(
            select(LeaveRequest)
            .where(LeaveRequest.id == request_id)
            .options(selectinload(LeaveRequest.user))
        )
        request = result.scalars().first()
        if request is None:
            logger.error("Leave request %s not found", request_id)
            return None

        config = await self.get_escalation_config()
        approver_id = request.user.manager_id
        if approver_id == request.user_id:
            approver_id = None

        needs_walk = approver_id is None
        if approver_id is not None and config.auto_skip_absent_approvers:
            today = company_now(config.company_timezone, self.clock).date()
            needs_walk = await self.resolver.is_approver_absent(approver_id, today)

        if needs_walk:
            resolution = await self.resolver.resolve_next(request.user_id, None, config)
            if resolution.approver_id is not None:
                if approver_id is not None:
                    logger.info(
                        "Initial approver %s is absent; using %s (skipped %d)",
                        approver_id, resolution.approver_id, len(resolution.skipped),
                    )
                approver_id = resolution.approver_id

        if approver_id is None:
            logger.error("No approver found for leave request %s", request_id)
            return None

        approval = Approval(
            leave_request_id=request.id,
            approver_id=approver_id,
            level=1,
            status=ApprovalStatus.pending,
            created_at=to_utc(self.clock()),
        )
        self.db.add(approval)
        await self.db.flush()

        approver = await self.directory.get_employee(approver_id, with_department=True)
        await self.dispatcher.dispatch([
            NotificationEffect(
                recipient_id=approver_id,
                type=NotificationType.approval_required,
                title="Leave Request Approval Required",
                message=(
                    f"New leave request from {request.user.full_name} "
                    f"requires your approval"
                ),
                link=approver_link(approver, request.id),
            ),
        ])
        return approval
