"""Notification endpoints — the caller's in-app bell entries."""


from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.core_hr.models import Employee
from backend.database import get_db
from backend.dependencies import get_current_user
from backend.notifications.schemas import NotificationOut
from backend.notifications.service import NotificationService

router = APIRouter(prefix="", tags=["notifications"])


@router.get("", response_model=list[NotificationOut])
async def list_notifications(
    unread_only: bool = Query(False, description="Only unread notifications"),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Notifications for the authenticated user, newest first."""
    return await NotificationService.list_for_recipient(
        db, employee.id, unread_only=unread_only,
    )
