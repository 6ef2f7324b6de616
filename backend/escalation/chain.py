"""Approval chain resolution — who approves next, skipping absent approvers.

The chain for a requester is an ordered list built per call:

    [manager] -> [department director, if different] -> [HR / executive fallback]

The fallback is the oldest active HR or executive employee who is neither
already in the chain nor the requester. Walking the chain, an absent
candidate is replaced in place by their active delegate when that delegate
is available; otherwise the candidate is recorded as skipped and the walk
moves on.

A stale approval whose holder is absent goes to the holder's own delegate
first; only without one does escalation continue up the chain. A delegate
holding a stale approval is not in the chain, so the walk resumes after the
position of the approver the delegate stood in for.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.clock import Clock, company_now, to_utc, utc_now
from backend.common.constants import (
    FALLBACK_APPROVER_ROLES,
    OVERLOAD_PENDING_THRESHOLD,
    OVERLOAD_WINDOW_DAYS,
    ApprovalStatus,
    LeaveStatus,
)
from backend.core_hr.models import Employee
from backend.core_hr.service import DirectoryService
from backend.delegation.service import DelegationService
from backend.escalation.config import EscalationConfig
from backend.leave.models import Approval, LeaveRequest

logger = logging.getLogger(__name__)


@dataclass
class ChainResolution:
    """Outcome of a chain walk."""

    approver_id: Optional[uuid.UUID]
    skipped: list[uuid.UUID] = field(default_factory=list)
    # Set when ``approver_id`` is a delegate standing in for this candidate
    delegated_from: Optional[uuid.UUID] = None


class ApprovalChainResolver:
    """Computes the next eligible approver for a leave request."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        clock: Clock = utc_now,
        directory: Optional[DirectoryService] = None,
        delegations: Optional[DelegationService] = None,
    ) -> None:
        self.db = db
        self.clock = clock
        self.directory = directory or DirectoryService(db)
        self.delegations = delegations or DelegationService(db)

    # ─────────────────────────────────────────────────────────────────
    # Chain construction
    # ─────────────────────────────────────────────────────────────────

    async def build_chain(self, requester: Employee) -> list[uuid.UUID]:
        """Ordered approver ids for *requester*; never contains the requester."""
        chain: list[uuid.UUID] = []
        for candidate in (requester.manager_id, requester.department_director_id):
            if candidate is not None and candidate != requester.id and candidate not in chain:
                chain.append(candidate)

        fallback = await self.directory.first_active_with_roles(
            FALLBACK_APPROVER_ROLES,
            exclude_ids=[requester.id, *chain],
        )
        if fallback is not None:
            chain.append(fallback.id)
        return chain

    # ─────────────────────────────────────────────────────────────────
    # Availability
    # ─────────────────────────────────────────────────────────────────

    async def is_approver_absent(self, approver_id: uuid.UUID, today: date) -> bool:
        """On approved leave today, or holding too many recent pending approvals."""
        on_leave = await self.db.execute(
            select(LeaveRequest.id)
            .where(
                LeaveRequest.user_id == approver_id,
                LeaveRequest.status == LeaveStatus.approved,
                LeaveRequest.start_date <= today,
                LeaveRequest.end_date >= today,
            )
            .limit(1)
        )
        if on_leave.scalar() is not None:
            logger.debug("Approver %s is on approved leave on %s", approver_id, today)
            return True

        since = to_utc(self.clock()) - timedelta(days=OVERLOAD_WINDOW_DAYS)
        pending_count = await self.db.scalar(
            select(func.count(Approval.id)).where(
                Approval.approver_id == approver_id,
                Approval.status == ApprovalStatus.pending,
                Approval.created_at >= since,
            )
        )
        if (pending_count or 0) > OVERLOAD_PENDING_THRESHOLD:
            logger.debug(
                "Approver %s is overloaded with %d pending approvals",
                approver_id, pending_count,
            )
            return True
        return False

    async def find_delegate(
        self,
        approver_id: uuid.UUID,
        today: date,
        *,
        exclude_ids: tuple[uuid.UUID, ...] = (),
    ) -> Optional[uuid.UUID]:
        """Active, present delegate of *approver_id* on *today*, if any."""
        delegation = await self.delegations.get_active_delegate(approver_id, today)
        if delegation is None or delegation.delegate_id in exclude_ids:
            return None
        delegate = await self.directory.get_employee(delegation.delegate_id)
        if delegate is None or not delegate.is_active:
            return None
        if await self.is_approver_absent(delegate.id, today):
            logger.debug("Delegate %s of %s is also absent", delegate.id, approver_id)
            return None
        return delegate.id

    # ─────────────────────────────────────────────────────────────────
    # Resolution
    # ─────────────────────────────────────────────────────────────────

    async def resolve_next(
        self,
        requester_id: uuid.UUID,
        current_approver_id: Optional[uuid.UUID],
        config: EscalationConfig,
        *,
        lineage: Sequence[uuid.UUID] = (),
    ) -> ChainResolution:
        """Next approver after *current_approver_id* (``None`` walks from the start).

        A holder outside the chain (a delegate) takes the position of the
        first approver in *lineage*, the holders it replaced, nearest first,
        that is in the chain.
        """
        requester = await self.directory.get_employee(requester_id)
        if requester is None:
            logger.warning("Requester %s not found; cannot resolve approver", requester_id)
            return ChainResolution(approver_id=None)

        chain = await self.build_chain(requester)
        start = 0
        anchor = next(
            (i for i in (current_approver_id, *lineage) if i is not None and i in chain), None,
        )
        if anchor is not None:
            start = chain.index(anchor) + 1

        today = company_now(config.company_timezone, self.clock).date()
        excluded = tuple(
            i for i in (requester_id, current_approver_id, *lineage) if i is not None
        )
        skipped: list[uuid.UUID] = []

        for candidate in chain[start:]:
            if candidate in excluded:
                continue
            if not config.auto_skip_absent_approvers:
                return ChainResolution(approver_id=candidate, skipped=skipped)
            if not await self.is_approver_absent(candidate, today):
                return ChainResolution(approver_id=candidate, skipped=skipped)

            delegate_id = await self.find_delegate(candidate, today, exclude_ids=excluded)
            if delegate_id is not None:
                logger.debug("Absent approver %s delegated to %s", candidate, delegate_id)
                return ChainResolution(
                    approver_id=delegate_id, skipped=skipped, delegated_from=candidate,
                )
            logger.debug("Skipping absent approver %s", candidate)
            skipped.append(candidate)

        return ChainResolution(approver_id=None, skipped=skipped)

    async def resolve_escalation(
        self,
        requester_id: uuid.UUID,
        current_approver_id: uuid.UUID,
        config: EscalationConfig,
        *,
        lineage: Sequence[uuid.UUID] = (),
    ) -> ChainResolution:
        """Target for a stale approval held by *current_approver_id*.

        An absent holder with a present delegate hands the approval to that
        delegate; otherwise the walk continues past the holder.
        """
        if config.auto_skip_absent_approvers:
            today = company_now(config.company_timezone, self.clock).date()
            if await self.is_approver_absent(current_approver_id, today):
                delegate_id = await self.find_delegate(
                    current_approver_id, today,
                    exclude_ids=(requester_id, current_approver_id, *lineage),
                )
                if delegate_id is not None:
                    logger.debug(
                        "Stale approval of absent %s goes to delegate %s",
                        current_approver_id, delegate_id,
                    )
                    return ChainResolution(
                        approver_id=delegate_id, delegated_from=current_approver_id,
                    )
        return await self.resolve_next(
            requester_id, current_approver_id, config, lineage=lineage,
        )
