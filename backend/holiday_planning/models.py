"""Holiday-year planning ORM models: window, per-user plan, planned dates."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.common.constants import PlanningStage, PlanPriority, PlanStatus
from backend.database import Base

if TYPE_CHECKING:
    from backend.core_hr.models import Employee


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HolidayPlanningWindow(Base):
    """One row per planning year; stage follows the calendar."""

    __tablename__ = "holiday_planning_windows"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    year: Mapped[int] = mapped_column(sa.Integer, unique=True, nullable=False)
    open_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    close_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    stage: Mapped[PlanningStage] = mapped_column(
        sa.Enum(PlanningStage, name="planning_stage", create_type=False),
        default=PlanningStage.closed,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow,
    )

    # Relationships
    plans: Mapped[list[HolidayPlan]] = relationship(back_populates="window")


class HolidayPlan(Base):
    __tablename__ = "holiday_plans"
    __table_args__ = (
        sa.UniqueConstraint("user_id", "year", name="uq_holiday_plan_user_year"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
    )
    window_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("holiday_planning_windows.id"),
        nullable=False,
    )
    year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    status: Mapped[PlanStatus] = mapped_column(
        sa.Enum(PlanStatus, name="plan_status", create_type=False),
        default=PlanStatus.draft,
        nullable=False,
    )
    # Bumped by exactly one on every date-set replacement
    version: Mapped[int] = mapped_column(sa.Integer, default=0, nullable=False)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    reviewed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    notes: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow,
    )

    # Relationships
    user: Mapped[Employee] = relationship(foreign_keys=[user_id])
    window: Mapped[HolidayPlanningWindow] = relationship(back_populates="plans")
    dates: Mapped[list[HolidayPlanDate]] = relationship(
        back_populates="plan",
        order_by="HolidayPlanDate.date",
        cascade="all, delete-orphan",
    )


class HolidayPlanDate(Base):
    __tablename__ = "holiday_plan_dates"
    __table_args__ = (
        sa.UniqueConstraint("plan_id", "date", name="uq_holiday_plan_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    plan_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("holiday_plans.id", ondelete="CASCADE"),
        nullable=False,
    )
    date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    priority: Mapped[PlanPriority] = mapped_column(
        sa.Enum(PlanPriority, name="plan_priority", create_type=False),
        default=PlanPriority.preferred,
        nullable=False,
    )
    reason: Mapped[Optional[str]] = mapped_column(sa.String(500))

    # Relationships
    plan: Mapped[HolidayPlan] = relationship(back_populates="dates")
