"""Leave ORM models: LeaveType, LeaveBalance, LeaveRequest, Approval."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.common.constants import ApprovalStatus, LeaveStatus
from backend.database import Base

if TYPE_CHECKING:
    from backend.core_hr.models import Employee


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LeaveType(Base):
    __tablename__ = "leave_types"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    code: Mapped[str] = mapped_column(sa.String(10), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    days_allowed: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), default=Decimal("0"), nullable=False,
    )
    carry_forward: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    # None / 0 means "use the company default cap"
    max_carry_forward: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(5, 1))
    carry_forward_percentage: Mapped[int] = mapped_column(
        sa.Integer, default=100, nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow,
    )

    # Relationships
    balances: Mapped[list[LeaveBalance]] = relationship(back_populates="leave_type")
    requests: Mapped[list[LeaveRequest]] = relationship(back_populates="leave_type")


class LeaveBalance(Base):
    """Per (user, leave type, year) ledger row.

    Invariant: ``available == entitled + carried_forward - used - pending``.
    """

    __tablename__ = "leave_balances"
    __table_args__ = (
        sa.UniqueConstraint(
            "user_id", "leave_type_id", "year",
            name="uq_leave_balance_user_type_year",
        ),
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
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("leave_types.id"),
        nullable=False,
    )
    year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    entitled: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), default=Decimal("0"), nullable=False,
    )
    used: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), default=Decimal("0"), nullable=False,
    )
    pending: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), default=Decimal("0"), nullable=False,
    )
    available: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), default=Decimal("0"), nullable=False,
    )
    carried_forward: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), default=Decimal("0"), nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow,
    )

    # Relationships
    user: Mapped[Employee] = relationship(back_populates="leave_balances")
    leave_type: Mapped[LeaveType] = relationship(back_populates="balances")

    @property
    def total_available(self) -> Decimal:
        """Entitlement plus carry-forward before any usage."""
        return self.entitled + self.carried_forward


class LeaveRequest(Base):
    __tablename__ = "leave_requests"

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
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("leave_types.id"),
        nullable=False,
    )
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    total_days: Mapped[Decimal] = mapped_column(sa.Numeric(5, 1), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    status: Mapped[LeaveStatus] = mapped_column(
        sa.Enum(LeaveStatus, name="leave_status", create_type=False),
        default=LeaveStatus.pending,
        nullable=False,
    )
    cancellation_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow,
    )

    # Relationships
    user: Mapped[Employee] = relationship(back_populates="leave_requests")
    leave_type: Mapped[LeaveType] = relationship(back_populates="requests")
    approvals: Mapped[list[Approval]] = relationship(
        back_populates="leave_request", order_by="Approval.level",
    )

    __table_args__ = (
        sa.Index("ix_leave_requests_user_status", "user_id", "status"),
        sa.Index("ix_leave_requests_dates", "start_date", "end_date"),
    )


class Approval(Base):
    """One step of a leave request's approval chain.

    Escalation never mutates ``status``: it stamps ``escalated_to_id`` and
    creates a new row at ``level + 1``.
    """

    __tablename__ = "approvals"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    leave_request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("leave_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    approver_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("employees.id"),
        nullable=False,
    )
    level: Mapped[int] = mapped_column(sa.Integer, default=1, nullable=False)
    status: Mapped[ApprovalStatus] = mapped_column(
        sa.Enum(ApprovalStatus, name="approval_status", create_type=False),
        default=ApprovalStatus.pending,
        nullable=False,
    )
    comments: Mapped[Optional[str]] = mapped_column(sa.Text)
    escalated_to_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    escalated_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    escalation_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    approved_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, nullable=False,
    )

    # Relationships
    leave_request: Mapped[LeaveRequest] = relationship(back_populates="approvals")
    approver: Mapped[Employee] = relationship(foreign_keys=[approver_id])

    __table_args__ = (
        sa.CheckConstraint("level >= 1", name="ck_approvals_level_positive"),
        sa.Index("ix_approvals_status_created", "status", "created_at"),
        sa.Index("ix_approvals_request_approver", "leave_request_id", "approver_id"),
        # At most one pending row per (request, approver)
        sa.Index(
            "uq_approvals_one_pending_per_approver",
            "leave_request_id",
            "approver_id",
            unique=True,
            postgresql_where=sa.text("status = 'pending'"),
            sqlite_where=sa.text("status = 'pending'"),
        ),
    )
