"""Year-end rollover router — preview, execution, status, history."""


import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import UserRole
from backend.common.exceptions import ForbiddenException
from backend.core_hr.models import Employee
from backend.database import get_db
from backend.dependencies import get_current_user, require_role
from backend.rollover.schemas import (
    BulkRolloverRequest,
    BulkRolloverResult,
    RolloverHistoryEntry,
    RolloverPreview,
)
from backend.rollover.service import RolloverService

router = APIRouter(prefix="", tags=["rollover"])

_ROLLOVER_ROLES = (UserRole.hr, UserRole.admin)


@router.get("/preview", response_model=RolloverPreview)
async def preview(
    from_year: int = Query(..., ge=2000, le=2100),
    employee: Employee = Depends(require_role(*_ROLLOVER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Carry-forward per balance with totals; nothing is written."""
    return await RolloverService(db).get_rollover_preview(from_year)


@router.post("/execute", response_model=BulkRolloverResult)
async def execute(
    body: BulkRolloverRequest,
    employee: Employee = Depends(require_role(UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    return await RolloverService(db).execute_bulk_rollover(
        body.from_year, actor_id=employee.id, force=body.force,
    )


@router.get("/status")
async def status(
    from_year: int = Query(..., ge=2000, le=2100),
    employee: Employee = Depends(require_role(*_ROLLOVER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    executed = await RolloverService(db).is_rollover_executed(from_year)
    return {"from_year": from_year, "to_year": from_year + 1, "executed": executed}


@router.get("/history/me", response_model=list[RolloverHistoryEntry])
async def my_history(
    years: int = Query(3, ge=1, le=10),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await RolloverService(db).get_user_rollover_history(employee.id, years)


@router.get("/history/{user_id}", response_model=list[RolloverHistoryEntry])
async def user_history(
    user_id: uuid.UUID,
    years: int = Query(3, ge=1, le=10),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if employee.id != user_id and employee.role not in _ROLLOVER_ROLES:
        raise ForbiddenException("You can only view your own rollover history.")
    return await RolloverService(db).get_user_rollover_history(user_id, years)
