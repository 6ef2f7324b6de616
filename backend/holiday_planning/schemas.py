"""Holiday planning Pydantic v2 schemas."""

from __future__ import annotations

import enum
import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from backend.common.constants import PlanningStage, PlanPriority, PlanStatus, RiskLevel


# ═════════════════════════════════════════════════════════════════════
# Windows and plans
# ═════════════════════════════════════════════════════════════════════


class PlanningWindowOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    year: int
    open_date: date
    close_date: date
    stage: PlanningStage
    is_active: bool


class PlanDateIn(BaseModel):
    date: date
    priority: PlanPriority = PlanPriority.preferred
    reason: Optional[str] = Field(None, max_length=500)


class PlanDateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    date: date
    priority: PlanPriority
    reason: Optional[str] = None


class HolidayPlanUpsert(BaseModel):
    year: int = Field(..., ge=2000, le=2100)
    dates: list[PlanDateIn] = []


class PlanReviewAction(str, enum.Enum):
    approve = "approve"
    request_revision = "request_revision"


class PlanReviewRequest(BaseModel):
    action: PlanReviewAction = PlanReviewAction.approve
    comments: Optional[str] = Field(None, max_length=1000)


class HolidayPlanOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    window_id: uuid.UUID
    year: int
    status: PlanStatus
    version: int
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by_id: Optional[uuid.UUID] = None
    notes: Optional[str] = None
    dates: list[PlanDateOut] = []


class DepartmentMemberPlan(BaseModel):
    user_id: uuid.UUID
    name: str
    position: Optional[str] = None
    plan: Optional[HolidayPlanOut] = None


# ═════════════════════════════════════════════════════════════════════
# Team analysis
# ═════════════════════════════════════════════════════════════════════


class PlannerEntry(BaseModel):
    user_id: uuid.UUID
    first_name: str
    last_name: str
    position: Optional[str] = None
    priority: PlanPriority
    reason: Optional[str] = None


class DateOverlap(BaseModel):
    date: date
    users: list[PlannerEntry]
    conflict_level: RiskLevel
    risk_level: RiskLevel


class CoverageGap(BaseModel):
    start_date: date
    end_date: date
    duration: int
    type: str = "EXTENDED_GAP"


class OverlapReport(BaseModel):
    overlaps: list[DateOverlap] = []
    gaps: list[CoverageGap] = []
    team_size: int = 0
    members_with_plans: int = 0
    planning_coverage: float = 0.0


class PlannedDayDetail(BaseModel):
    date: date
    planned: bool = True
    actual: bool
    priority: PlanPriority


class PlannedVsActual(BaseModel):
    planned_days: int
    actual_days: int
    matched_days: int
    variance: int
    details: list[PlannedDayDetail] = []
