"""Delegation service — grant, list, revoke and look up approval delegates."""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.common.audit import record_audit
from backend.common.constants import DELEGATE_ROLES, AuditAction, UserRole
from backend.common.exceptions import (
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from backend.core_hr.service import DirectoryService
from backend.delegation.models import ApprovalDelegate

logger = logging.getLogger(__name__)


def _ranges_overlap(
    start_a: date, end_a: Optional[date], start_b: date, end_b: Optional[date],
) -> bool:
    """Inclusive overlap test; ``None`` as an end date means open-ended."""
    a_before_b = end_a is not None and end_a < start_b
    b_before_a = end_b is not None and end_b < start_a
    return not (a_before_b or b_before_a)


class DelegationService:
    """Async operations over approval_delegates."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self.directory = DirectoryService(db)

    async def create_delegation(
        self,
        *,
        delegator_id: uuid.UUID,
        delegate_id: uuid.UUID,
        start_date: date,
        end_date: Optional[date] = None,
        reason: Optional[str] = None,
    ) -> ApprovalDelegate:
        """Validate and persist a new delegation of approval authority."""
        if delegator_id == delegate_id:
            raise ValidationException(
                {"delegate_id": ["You cannot delegate to yourself."]},
            )
        if end_date is not None and end_date < start_date:
            raise ValidationException(
                {"end_date": ["End date must be on or after the start date."]},
            )

        delegator = await self.directory.get_employee(delegator_id)
        if delegator is None:
            raise NotFoundException("Employee", delegator_id)
        delegate = await self.directory.get_employee(delegate_id)
        if delegate is None:
            raise NotFoundException("Employee", delegate_id)
        if not delegate.is_active:
            raise ValidationException({"delegate_id": ["Delegate is not active."]})
        if delegate.role not in DELEGATE_ROLES:
            raise ValidationException(
                {"delegate_id": [f"Role '{delegate.role.value}' cannot approve leave."]},
            )

        existing = await self.db.execute(
            select(ApprovalDelegate).where(
                ApprovalDelegate.delegator_id == delegator_id,
                ApprovalDelegate.is_active.is_(True),
            )
        )
        for other in existing.scalars().all():
            if _ranges_overlap(start_date, end_date, other.start_date, other.end_date):
                raise ValidationException(
                    {"start_date": ["An active delegation already covers part of this period."]},
                    detail="Overlapping delegation.",
                )

        delegation = ApprovalDelegate(
            delegator_id=delegator_id,
            delegate_id=delegate_id,
            start_date=start_date,
            end_date=end_date,
            reason=reason,
            is_active=True,
        )
        self.db.add(delegation)
        await self.db.flush()

        await record_audit(
            self.db,
            action=AuditAction.create,
            entity_type="approval_delegate",
            entity_id=delegation.id,
            actor_id=delegator_id,
            new_values={
                "delegate_id": str(delegate_id),
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat() if end_date else None,
            },
        )
        logger.info(
            "Delegation %s created: %s -> %s from %s",
            delegation.id, delegator_id, delegate_id, start_date,
        )
        return delegation

    async def list_delegations(
        self,
        delegator_id: uuid.UUID,
        *,
        active_only: bool = False,
    ) -> Sequence[ApprovalDelegate]:
        query = (
            select(ApprovalDelegate)
            .where(ApprovalDelegate.delegator_id == delegator_id)
            .options(selectinload(ApprovalDelegate.delegate))
            .order_by(ApprovalDelegate.start_date.desc())
        )
        if active_only:
            query = query.where(ApprovalDelegate.is_active.is_(True))
        result = await self.db.execute(query)
        return result.scalars().all()

    async def deactivate_delegation(
        self,
        delegation_id: uuid.UUID,
        *,
        actor_id: uuid.UUID,
    ) -> ApprovalDelegate:
        """Revoke a delegation. Only the delegator or an admin may do so."""
        delegation = await self.db.get(ApprovalDelegate, delegation_id)
        if delegation is None:
            raise NotFoundException("Delegation", delegation_id)

        if actor_id != delegation.delegator_id:
            actor = await self.directory.get_employee(actor_id)
            if actor is None or actor.role != UserRole.admin:
                raise ForbiddenException("Only the delegator or an admin can revoke a delegation.")

        if delegation.is_active:
            delegation.is_active = False
            delegation.deactivated_at = datetime.now(timezone.utc)
            await self.db.flush()
            await record_audit(
                self.db,
                action=AuditAction.deactivate,
                entity_type="approval_delegate",
                entity_id=delegation.id,
                actor_id=actor_id,
                old_values={"is_active": True},
                new_values={"is_active": False},
            )
        return delegation

    async def expire_delegations(self, today: date) -> int:
        """Deactivate every active delegation whose end date is before *today*."""
        result = await self.db.execute(
            update(ApprovalDelegate)
            .where(
                ApprovalDelegate.is_active.is_(True),
                ApprovalDelegate.end_date.is_not(None),
                ApprovalDelegate.end_date < today,
            )
            .values(is_active=False, deactivated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info("Expired %d delegation(s) ending before %s", result.rowcount, today)
        return result.rowcount

    async def get_active_delegate(
        self,
        delegator_id: uuid.UUID,
        on_date: date,
    ) -> Optional[ApprovalDelegate]:
        """The active delegation covering *on_date*, most recent start first."""
        result = await self.db.execute(
            select(ApprovalDelegate)
            .where(
                ApprovalDelegate.delegator_id == delegator_id,
                ApprovalDelegate.is_active.is_(True),
                ApprovalDelegate.start_date <= on_date,
                or_(
                    ApprovalDelegate.end_date.is_(None),
                    ApprovalDelegate.end_date >= on_date,
                ),
            )
            .order_by(ApprovalDelegate.start_date.desc(), ApprovalDelegate.created_at.desc())
            .limit(1)
        )
        return result.scalars().first()
