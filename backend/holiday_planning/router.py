"""Holiday planning router — plan editing, submission, review, team analysis."""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import UserRole
from backend.common.exceptions import ForbiddenException
from backend.core_hr.models import Employee
from backend.database import get_db
from backend.dependencies import get_current_user, require_role
from backend.holiday_planning.schemas import (
    DepartmentMemberPlan,
    HolidayPlanOut,
    HolidayPlanUpsert,
    OverlapReport,
    PlannedVsActual,
    PlanningWindowOut,
    PlanReviewRequest,
)
from backend.holiday_planning.service import HolidayPlanningService

router = APIRouter(prefix="", tags=["holiday-planning"])

_MANAGER_ROLES = (
    UserRole.manager, UserRole.department_director, UserRole.hr, UserRole.executive,
)


# ── Windows ─────────────────────────────────────────────────────────

@router.get("/windows/{year}", response_model=PlanningWindowOut)
async def get_window(
    year: int,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await HolidayPlanningService(db).get_current_planning_window(year)


# ── Own plan ────────────────────────────────────────────────────────

@router.get("/plans/me", response_model=Optional[HolidayPlanOut])
async def get_my_plan(
    year: int = Query(...),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await HolidayPlanningService(db).get_user_holiday_plan(employee.id, year)


@router.put("/plans/me", response_model=HolidayPlanOut)
async def save_my_plan(
    body: HolidayPlanUpsert,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Replace the caller's planned dates for the year."""
    return await HolidayPlanningService(db).create_or_update_user_plan(
        employee.id, body.year, body.dates,
    )


@router.post("/plans/me/submit", response_model=HolidayPlanOut)
async def submit_my_plan(
    year: int = Query(...),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await HolidayPlanningService(db).submit_plan(employee.id, year)


@router.get("/plans/me/planned-vs-actual", response_model=PlannedVsActual)
async def planned_vs_actual(
    year: int = Query(...),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await HolidayPlanningService(db).get_planned_vs_actual(employee.id, year)


# ── Review ──────────────────────────────────────────────────────────

@router.post("/plans/{plan_id}/review", response_model=HolidayPlanOut)
async def review_plan(
    plan_id: uuid.UUID,
    body: PlanReviewRequest,
    employee: Employee = Depends(require_role(*_MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    return await HolidayPlanningService(db).review_plan(
        plan_id, employee.id, action=body.action, comments=body.comments,
    )


@router.post("/plans/{plan_id}/finalize", response_model=HolidayPlanOut)
async def finalize_plan(
    plan_id: uuid.UUID,
    employee: Employee = Depends(require_role(*_MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    return await HolidayPlanningService(db).finalize_plan(plan_id, employee.id)


# ── Team analysis ───────────────────────────────────────────────────

@router.get("/team/overlaps", response_model=OverlapReport)
async def team_overlaps(
    year: int = Query(...),
    as_director: bool = Query(False),
    employee: Employee = Depends(require_role(*_MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Overlapping planned dates and coverage gaps across the caller's team."""
    return await HolidayPlanningService(db).detect_overlaps_and_gaps(
        employee.id, year, is_department_director=as_director,
    )


@router.get("/departments/{department_id}/plans", response_model=list[DepartmentMemberPlan])
async def department_plans(
    department_id: uuid.UUID,
    year: int = Query(...),
    employee: Employee = Depends(require_role(*_MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    if employee.role in (UserRole.manager, UserRole.department_director) and (
        employee.department_id != department_id
    ):
        raise ForbiddenException("You can only view plans for your own department.")
    return await HolidayPlanningService(db).get_department_plans(department_id, year)


# ── Maintenance ─────────────────────────────────────────────────────

@router.post("/windows/refresh")
async def refresh_windows(
    employee: Employee = Depends(require_role(UserRole.hr, UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    """Re-stage every planning window against today's date."""
    changed = await HolidayPlanningService(db).update_planning_stages()
    return {"changed": changed}
