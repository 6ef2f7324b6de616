"""Escalation settings and sweep Pydantic v2 schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class EscalationConfigOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    escalation_days_before_auto_approval: int
    escalation_enabled: bool
    require_signature_for_denial: bool
    auto_skip_absent_approvers: bool
    auto_approve_after_max_escalations: bool
    max_escalation_levels: int
    company_timezone: str


class EscalationConfigUpdate(BaseModel):
    """Partial update keyed by stored setting name, e.g. ``maxEscalationLevels``."""

    settings: dict[str, Any] = Field(..., min_length=1)


class EscalationRunOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    enabled: bool
    checked: int
    escalated: int
    auto_approved: int
    unresolved: int
    failed: int


class SchedulerStatusOut(BaseModel):
    enabled: bool
    is_running: bool = False
    interval_hours: Optional[float] = None
    run_count: int = 0
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
