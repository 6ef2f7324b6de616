"""Holiday-year planning service — windows, plan lifecycle, team analysis.

Business logic:
  - One planning window per year, staged by the calendar (see ``stages``)
  - Per-user plans hold up to HOLIDAY_PLAN_MAX_DAYS dated entries; a save
    replaces the whole date set and bumps ``version`` by one
  - Submission notifies the direct manager; managers and directors review
  - Overlap / gap detection across a manager's or director's team
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from datetime import date
from typing import Iterable, Optional, Sequence

from sqlalchemy import delete, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.common.audit import record_audit
from backend.common.clock import Clock, to_utc, utc_now
from backend.common.constants import (
    PLANNING_GAP_DAYS,
    AuditAction,
    LeaveStatus,
    NotificationType,
    PlanningStage,
    PlanPriority,
    PlanStatus,
    RiskLevel,
    UserRole,
)
from backend.common.exceptions import (
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
    ValidationException,
)
from backend.config import settings
from backend.core_hr.models import Employee
from backend.core_hr.service import DirectoryService
from backend.holiday_planning.models import (
    HolidayPlan,
    HolidayPlanDate,
    HolidayPlanningWindow,
)
from backend.holiday_planning.schemas import (
    CoverageGap,
    DateOverlap,
    DepartmentMemberPlan,
    HolidayPlanOut,
    OverlapReport,
    PlanDateIn,
    PlannedDayDetail,
    PlannedVsActual,
    PlannerEntry,
    PlanReviewAction,
)
from backend.holiday_planning.stages import (
    EDITABLE_PLAN_STATUSES,
    assert_plan_transition,
    is_window_open,
    next_window_stage,
    window_dates,
)
from backend.leave.models import LeaveRequest
from backend.notifications.effects import (
    Effect,
    EffectDispatcher,
    EmailEffect,
    NotificationEffect,
)
from backend.notifications.templates import holiday_plan_submission_email

logger = logging.getLogger(__name__)

_REVIEWER_ROLES = (UserRole.executive, UserRole.hr, UserRole.admin)


# ── Pure helpers ────────────────────────────────────────────────────


def conflict_level(priorities: Sequence[PlanPriority]) -> RiskLevel:
    """Conflict for one date from the planners' priorities."""
    essential = sum(1 for p in priorities if p == PlanPriority.essential)
    preferred = sum(1 for p in priorities if p == PlanPriority.preferred)
    if essential > 1:
        return RiskLevel.high
    if essential == 1 and preferred > 0:
        return RiskLevel.medium
    if len(priorities) >= 3:
        return RiskLevel.medium
    return RiskLevel.low


def risk_level(planner_count: int) -> RiskLevel:
    if planner_count >= 3:
        return RiskLevel.high
    if planner_count == 2:
        return RiskLevel.medium
    return RiskLevel.low


def coverage_gaps(planned: Iterable[date]) -> list[CoverageGap]:
    """Consecutive team-wide planned dates more than PLANNING_GAP_DAYS apart."""
    ordered = sorted(set(planned))
    gaps = []
    for current, following in zip(ordered, ordered[1:]):
        duration = (following - current).days
        if duration > PLANNING_GAP_DAYS:
            gaps.append(CoverageGap(start_date=current, end_date=following, duration=duration))
    return gaps


def _validate_dates(year: int, dates: Sequence[PlanDateIn]) -> None:
    limit = settings.HOLIDAY_PLAN_MAX_DAYS
    if len(dates) > limit:
        raise ValidationException(
            {"dates": [f"Cannot exceed {limit} holiday days per year"]},
            detail=f"Cannot exceed {limit} holiday days per year",
        )
    errors: list[str] = []
    seen: set[date] = set()
    for index, entry in enumerate(dates):
        if entry.date.year != year:
            errors.append(f"Date at index {index} must be in {year}")
        if entry.date in seen:
            errors.append(f"Duplicate date {entry.date.isoformat()}")
        seen.add(entry.date)
    if errors:
        raise ValidationException({"dates": errors})


def _plan_snapshot(plan: HolidayPlan) -> dict:
    return {
        "status": plan.status.value,
        "version": plan.version,
        "dates": [d.date.isoformat() for d in plan.dates],
    }


# ═════════════════════════════════════════════════════════════════════
# HolidayPlanningService
# ═════════════════════════════════════════════════════════════════════


class HolidayPlanningService:
    """Async holiday planning operations."""

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

    # ─────────────────────────────────────────────────────────────────
    # Windows
    # ─────────────────────────────────────────────────────────────────

    async def _lock_plans(self, window_id: uuid.UUID) -> int:
        result = await self.db.execute(
            update(HolidayPlan)
            .where(
                HolidayPlan.window_id == window_id,
                HolidayPlan.status != PlanStatus.locked,
            )
            .values(status=PlanStatus.locked)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def _apply_stage(self, window: HolidayPlanningWindow) -> bool:
        """Bring *window* in line with the calendar; returns whether it changed."""
        stage = next_window_stage(window.year, self.clock(), window.stage)
        if stage == window.stage:
            return False
        logger.info(
            "Planning window %d: %s -> %s", window.year, window.stage.value, stage.value,
        )
        window.stage = stage
        window.is_active = is_window_open(stage)
        await self.db.flush()
        if stage == PlanningStage.locked:
            locked = await self._lock_plans(window.id)
            logger.info("Locked %d plan(s) for %d", locked, window.year)
        return True

    async def get_current_planning_window(self, year: int) -> HolidayPlanningWindow:
        """Window for *year*, created on first use and re-staged on every read."""
        result = await self.db.execute(
            select(HolidayPlanningWindow).where(HolidayPlanningWindow.year == year)
        )
        window = result.scalars().first()
        if window is None:
            open_date, close_date = window_dates(year)
            stage = next_window_stage(year, self.clock())
            window = HolidayPlanningWindow(
                year=year,
                open_date=open_date,
                close_date=close_date,
                stage=stage,
                is_active=is_window_open(stage),
            )
            self.db.add(window)
            await self.db.flush()
            return window
        await self._apply_stage(window)
        return window

    async def update_planning_stages(self) -> int:
        """Re-stage every window; returns how many changed."""
        result = await self.db.execute(
            select(HolidayPlanningWindow).order_by(HolidayPlanningWindow.year)
        )
        changed = 0
        for window in result.scalars().all():
            changed += int(await self._apply_stage(window))
        return changed

    # ─────────────────────────────────────────────────────────────────
    # Plans
    # ─────────────────────────────────────────────────────────────────

    async def _load_plan(self, *conditions) -> Optional[HolidayPlan]:
        result = await self.db.execute(
            select(HolidayPlan)
            .where(*conditions)
            .options(selectinload(HolidayPlan.dates), selectinload(HolidayPlan.user))
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def get_user_holiday_plan(self, user_id: uuid.UUID, year: int) -> Optional[HolidayPlan]:
        return await self._load_plan(HolidayPlan.user_id == user_id, HolidayPlan.year == year)

    async def _get_or_create_plan(
        self,
        user_id: uuid.UUID,
        year: int,
        window: HolidayPlanningWindow,
    ) -> HolidayPlan:
        plan = await self.get_user_holiday_plan(user_id, year)
        if plan is not None:
            return plan
        self.db.add(
            HolidayPlan(
                user_id=user_id,
                window_id=window.id,
                year=year,
                status=PlanStatus.draft,
                version=0,
            )
        )
        await self.db.flush()
        return await self.get_user_holiday_plan(user_id, year)

    async def _open_window(self, year: int) -> HolidayPlanningWindow:
        window = await self.get_current_planning_window(year)
        if not is_window_open(window.stage):
            raise InvalidStateException(f"Planning window for {year} is not active.")
        return window

    async def create_or_update_user_plan(
        self,
        user_id: uuid.UUID,
        year: int,
        dates: Sequence[PlanDateIn],
    ) -> HolidayPlan:
        """Replace the user's planned dates for *year* in one step."""
        _validate_dates(year, dates)

        window = await self._open_window(year)
        plan = await self._get_or_create_plan(user_id, year, window)
        if plan.status == PlanStatus.locked:
            raise InvalidStateException("Plan is locked and cannot be edited.")
        if plan.status not in EDITABLE_PLAN_STATUSES:
            raise InvalidStateException("Plan has been finalized and cannot be edited.")

        before = _plan_snapshot(plan)
        async with self.db.begin_nested():
            await self.db.execute(
                delete(HolidayPlanDate).where(HolidayPlanDate.plan_id == plan.id)
            )
            if dates:
                await self.db.execute(
                    insert(HolidayPlanDate),
                    [
                        {
                            "id": uuid.uuid4(),
                            "plan_id": plan.id,
                            "date": entry.date,
                            "priority": entry.priority,
                            "reason": entry.reason,
                        }
                        for entry in dates
                    ],
                )
            await self.db.execute(
                update(HolidayPlan)
                .where(HolidayPlan.id == plan.id)
                .values(version=HolidayPlan.version + 1)
                .execution_options(synchronize_session=False)
            )

        plan = await self.get_user_holiday_plan(user_id, year)
        await record_audit(
            self.db,
            action=AuditAction.update if before["version"] else AuditAction.create,
            entity_type="holiday_plan",
            entity_id=plan.id,
            actor_id=user_id,
            old_values=before,
            new_values=_plan_snapshot(plan),
        )
        logger.info(
            "Holiday plan %s saved: %d date(s), version %d",
            plan.id, len(plan.dates), plan.version,
        )
        return plan

    async def submit_plan(self, user_id: uuid.UUID, year: int) -> HolidayPlan:
        """Submit (or re-submit) the plan for review and tell the direct manager."""
        window = await self._open_window(year)
        plan = await self._get_or_create_plan(user_id, year, window)
        before = plan.status
        assert_plan_transition(before, PlanStatus.submitted)

        plan.status = PlanStatus.submitted
        plan.submitted_at = to_utc(self.clock())
        await self.db.flush()

        await record_audit(
            self.db,
            action=AuditAction.submit,
            entity_type="holiday_plan",
            entity_id=plan.id,
            actor_id=user_id,
            old_values={"status": before.value},
            new_values={"status": PlanStatus.submitted.value, "dates": len(plan.dates)},
        )
        logger.info("Holiday plan %s for %d submitted by %s", plan.id, year, user_id)

        await self.dispatcher.dispatch(await self._submission_effects(plan))
        return plan

    async def _submission_effects(self, plan: HolidayPlan) -> list[Effect]:
        owner = plan.user
        manager = await self.directory.get_employee(owner.manager_id)
        if manager is None:
            logger.info("No manager to notify for holiday plan %s", plan.id)
            return []
        link = f"/holiday-planning/review/{plan.id}"
        effects: list[Effect] = [
            NotificationEffect(
                recipient_id=manager.id,
                type=NotificationType.holiday_plan,
                title="Holiday Plan Submitted",
                message=f"{owner.full_name} submitted a holiday plan for {plan.year}",
                link=link,
            ),
        ]
        if manager.email:
            effects.append(
                EmailEffect(
                    to=manager.email,
                    email=holiday_plan_submission_email(
                        employee_name=owner.full_name,
                        manager_name=manager.full_name,
                        year=plan.year,
                        total_days=len(plan.dates),
                        submission_date=plan.submitted_at.date(),
                        link=link,
                    ),
                )
            )
        return effects

    async def _authorize_reviewer(self, plan: HolidayPlan, reviewer_id: uuid.UUID) -> None:
        owner = plan.user
        if reviewer_id in (owner.manager_id, owner.department_director_id):
            return
        reviewer = await self.directory.get_employee(reviewer_id)
        if reviewer is None or reviewer.role not in _REVIEWER_ROLES:
            raise ForbiddenException("You are not allowed to review this holiday plan.")

    async def review_plan(
        self,
        plan_id: uuid.UUID,
        reviewer_id: uuid.UUID,
        *,
        action: PlanReviewAction = PlanReviewAction.approve,
        comments: Optional[str] = None,
    ) -> HolidayPlan:
        """Mark a submitted plan reviewed, or send it back to draft."""
        plan = await self._load_plan(HolidayPlan.id == plan_id)
        if plan is None:
            raise NotFoundException("HolidayPlan", plan_id)
        if plan.status != PlanStatus.submitted:
            raise InvalidStateException(
                f"Plan cannot be reviewed in status {plan.status.value}.",
            )
        await self._authorize_reviewer(plan, reviewer_id)

        target = (
            PlanStatus.reviewed if action == PlanReviewAction.approve else PlanStatus.draft
        )
        assert_plan_transition(plan.status, target)
        plan.status = target
        plan.reviewed_at = to_utc(self.clock())
        plan.reviewed_by_id = reviewer_id
        plan.notes = comments
        await self.db.flush()

        await record_audit(
            self.db,
            action=AuditAction.review,
            entity_type="holiday_plan",
            entity_id=plan.id,
            actor_id=reviewer_id,
            old_values={"status": PlanStatus.submitted.value},
            new_values={"status": target.value, "comments": comments},
        )
        await self.dispatcher.dispatch([
            NotificationEffect(
                recipient_id=plan.user_id,
                type=NotificationType.holiday_plan,
                title=(
                    "Holiday Plan Reviewed" if target == PlanStatus.reviewed
                    else "Holiday Plan Needs Revision"
                ),
                message=comments or f"Your {plan.year} holiday plan was {target.value}",
                link=f"/holiday-planning/{plan.year}",
            ),
        ])
        return plan

    async def finalize_plan(self, plan_id: uuid.UUID, actor_id: uuid.UUID) -> HolidayPlan:
        plan = await self._load_plan(HolidayPlan.id == plan_id)
        if plan is None:
            raise NotFoundException("HolidayPlan", plan_id)
        await self._authorize_reviewer(plan, actor_id)
        assert_plan_transition(plan.status, PlanStatus.finalized)

        plan.status = PlanStatus.finalized
        await self.db.flush()
        await record_audit(
            self.db,
            action=AuditAction.finalize,
            entity_type="holiday_plan",
            entity_id=plan.id,
            actor_id=actor_id,
            old_values={"status": PlanStatus.reviewed.value},
            new_values={"status": PlanStatus.finalized.value},
        )
        logger.info("Holiday plan %s finalized by %s", plan.id, actor_id)
        return plan

    # ─────────────────────────────────────────────────────────────────
    # Team views
    # ─────────────────────────────────────────────────────────────────

    async def _plans_by_user(
        self,
        members: Sequence[Employee],
        year: int,
    ) -> dict[uuid.UUID, HolidayPlan]:
        if not members:
            return {}
        result = await self.db.execute(
            select(HolidayPlan)
            .where(
                HolidayPlan.user_id.in_([m.id for m in members]),
                HolidayPlan.year == year,
            )
            .options(selectinload(HolidayPlan.dates))
        )
        return {plan.user_id: plan for plan in result.scalars().all()}

    async def get_department_plans(
        self,
        department_id: uuid.UUID,
        year: int,
    ) -> list[DepartmentMemberPlan]:
        members = await self.directory.department_members(department_id)
        plans = await self._plans_by_user(members, year)
        return [
            DepartmentMemberPlan(
                user_id=member.id,
                name=member.full_name,
                position=member.position,
                plan=(
                    HolidayPlanOut.model_validate(plans[member.id])
                    if member.id in plans else None
                ),
            )
            for member in members
        ]

    async def detect_overlaps_and_gaps(
        self,
        manager_id: uuid.UUID,
        year: int,
        *,
        is_department_director: bool = False,
    ) -> OverlapReport:
        """Dates planned by more than one team member, plus long uncovered stretches."""
        if is_department_director:
            members = await self.directory.director_reports(manager_id)
        else:
            members = await self.directory.direct_reports(manager_id)
        plans = await self._plans_by_user(members, year)

        by_date: dict[date, list[PlannerEntry]] = defaultdict(list)
        for member in members:
            plan = plans.get(member.id)
            if plan is None:
                continue
            for planned in plan.dates:
                by_date[planned.date].append(
                    PlannerEntry(
                        user_id=member.id,
                        first_name=member.first_name,
                        last_name=member.last_name,
                        position=member.position,
                        priority=planned.priority,
                        reason=planned.reason,
                    )
                )

        overlaps = [
            DateOverlap(
                date=day,
                users=entries,
                conflict_level=conflict_level([e.priority for e in entries]),
                risk_level=risk_level(len(entries)),
            )
            for day, entries in sorted(by_date.items())
            if len(entries) > 1
        ]
        team_size = len(members)
        members_with_plans = len(plans)
        return OverlapReport(
            overlaps=overlaps,
            gaps=coverage_gaps(by_date.keys()),
            team_size=team_size,
            members_with_plans=members_with_plans,
            planning_coverage=(
                members_with_plans / team_size * 100 if team_size else 0.0
            ),
        )

    async def get_planned_vs_actual(self, user_id: uuid.UUID, year: int) -> PlannedVsActual:
        """Compare planned dates against approved leave taken in *year*."""
        plan = await self.get_user_holiday_plan(user_id, year)
        result = await self.db.execute(
            select(LeaveRequest).where(
                LeaveRequest.user_id == user_id,
                LeaveRequest.status == LeaveStatus.approved,
                LeaveRequest.start_date <= date(year, 12, 31),
                LeaveRequest.end_date >= date(year, 1, 1),
            )
        )
        approved = result.scalars().all()
        actual_days = int(sum(r.total_days for r in approved if r.start_date.year == year))

        def on_leave(day: date) -> bool:
            return any(r.start_date <= day <= r.end_date for r in approved)

        planned = plan.dates if plan is not None else []
        details = [
            PlannedDayDetail(date=d.date, actual=on_leave(d.date), priority=d.priority)
            for d in planned
        ]
        return PlannedVsActual(
            planned_days=len(planned),
            actual_days=actual_days,
            matched_days=sum(1 for d in details if d.actual),
            variance=actual_days - len(planned),
            details=details,
        )
