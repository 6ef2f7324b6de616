"""Common module — shared utilities for the leave approval platform."""

from backend.common.audit import AuditLog, record_audit
from backend.common.clock import Clock, company_now, resolve_timezone, to_utc, utc_now
from backend.common.constants import (
    DATE_FORMAT,
    ApprovalStatus,
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
    AppException,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
    ValidationException,
    register_exception_handlers,
)

__all__ = [
    # Audit
    "AuditLog",
    "record_audit",
    # Clock
    "Clock",
    "company_now",
    "resolve_timezone",
    "to_utc",
    "utc_now",
    # Constants / Enums
    "ApprovalStatus",
    "AuditAction",
    "LeaveStatus",
    "NotificationType",
    "PlanningStage",
    "PlanPriority",
    "PlanStatus",
    "RiskLevel",
    "UserRole",
    "DATE_FORMAT",
    # Exceptions
    "AppException",
    "ForbiddenException",
    "InvalidStateException",
    "NotFoundException",
    "ValidationException",
    "register_exception_handlers",
]
