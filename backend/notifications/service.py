"""Notification service — in-app notification writes and approver link routing."""

from __future__ import annotations

import uuid
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import NotificationType, UserRole
from backend.core_hr.models import Employee
from backend.notifications.models import Notification


# ── Link helpers ────────────────────────────────────────────────────


def approver_link(approver: Optional[Employee], request_id: uuid.UUID) -> str:
    """Dashboard link for an approver: HR desk, executive desk, or manager queue."""
    if approver is not None:
        department_name = approver.department.name if approver.department else ""
        if approver.role == UserRole.hr or (
            approver.role == UserRole.employee and "hr" in department_name.lower()
        ):
            return f"/hr?request={request_id}"
        if approver.role == UserRole.executive:
            return f"/executive?request={request_id}"
    return f"/manager/approvals/{request_id}"


def requester_link(request_id: uuid.UUID) -> str:
    return f"/leave/{request_id}"


# ── Core service ────────────────────────────────────────────────────


class NotificationService:
    """Async notification operations."""

    @staticmethod
    async def create_notification(
        db: AsyncSession,
        *,
        recipient_id: uuid.UUID,
        type: NotificationType = NotificationType.info,
        title: str,
        message: str,
        link: Optional[str] = None,
    ) -> Notification:
        """Create a new notification and flush to DB."""
        notification = Notification(
            recipient_id=recipient_id,
            type=type,
            title=title,
            message=message,
            link=link,
        )
        db.add(notification)
        await db.flush()
        return notification

    @staticmethod
    async def list_for_recipient(
        db: AsyncSession,
        recipient_id: uuid.UUID,
        *,
        unread_only: bool = False,
    ) -> Sequence[Notification]:
        """Notifications for *recipient_id*, newest first."""
        query = (
            select(Notification)
            .where(Notification.recipient_id == recipient_id)
            .order_by(Notification.created_at.desc())
        )
        if unread_only:
            query = query.where(Notification.is_read.is_(False))
        result = await db.execute(query)
        return result.scalars().all()
