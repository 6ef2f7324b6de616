"""Enums and constants for the leave platform — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Directory / Roles ───────────────────────────────────────────────

class UserRole(str, enum.Enum):
    employee = "employee"
    manager = "manager"
    department_director = "department_director"
    hr = "hr"
    executive = "executive"
    admin = "admin"


# Roles eligible as the final HR/executive fallback in the approval chain
FALLBACK_APPROVER_ROLES: tuple[UserRole, ...] = (UserRole.hr, UserRole.executive)

# Roles allowed to receive delegated approval authority
DELEGATE_ROLES: tuple[UserRole, ...] = (
    UserRole.manager,
    UserRole.department_director,
    UserRole.hr,
    UserRole.executive,
    UserRole.admin,
)


# ── Leave ───────────────────────────────────────────────────────────

class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"


class ApprovalStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


# ── Holiday planning ────────────────────────────────────────────────

class PlanningStage(str, enum.Enum):
    # "draft" doubles as the open stage of a planning window
    draft = "draft"
    closed = "closed"
    locked = "locked"


class PlanStatus(str, enum.Enum):
    draft = "draft"
    submitted = "submitted"
    reviewed = "reviewed"
    finalized = "finalized"
    locked = "locked"


class PlanPriority(str, enum.Enum):
    essential = "essential"
    preferred = "preferred"
    nice_to_have = "nice_to_have"


class RiskLevel(str, enum.Enum):
    high = "high"
    medium = "medium"
    low = "low"


# ── Notifications ───────────────────────────────────────────────────

class NotificationType(str, enum.Enum):
    approval_required = "approval_required"
    leave_requested = "leave_requested"
    leave_approved = "leave_approved"
    leave_rejected = "leave_rejected"
    leave_cancelled = "leave_cancelled"
    holiday_plan = "holiday_plan"
    info = "info"


# ── Audit actions ───────────────────────────────────────────────────

class AuditAction(str, enum.Enum):
    create = "create"
    update = "update"
    approve = "approve"
    reject = "reject"
    cancel = "cancel"
    escalate = "escalate"
    auto_approve = "auto_approve"
    submit = "submit"
    review = "review"
    finalize = "finalize"
    rollover = "rollover"
    bulk_rollover = "bulk_rollover"
    deactivate = "deactivate"


# ── Misc constants ──────────────────────────────────────────────────

SYSTEM_ACTOR = "SYSTEM"
DEFAULT_COMPANY_TIMEZONE = "Europe/Bucharest"
# Approver is treated as absent when holding more than this many recent pending approvals
OVERLOAD_PENDING_THRESHOLD = 10
OVERLOAD_WINDOW_DAYS = 7
# Planned dates further apart than this are reported as a coverage gap
PLANNING_GAP_DAYS = 7
DEFAULT_MAX_CARRY_FORWARD = 5
DATE_FORMAT = "%d %B %Y"
