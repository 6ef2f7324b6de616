"""Year-end rollover Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from decimal import Decimal

from pydantic import BaseModel, Field


class RolloverResult(BaseModel):
    """Carry-forward computed for one (user, leave type) balance."""

    user_id: uuid.UUID
    leave_type_id: uuid.UUID
    year: int
    entitled: Decimal
    used: Decimal
    unused: Decimal
    carried_forward: Decimal
    lost: Decimal
    reason: str


class RolloverSummary(BaseModel):
    total_users: int
    total_days_carried_forward: Decimal
    total_days_lost: Decimal
    avg_carry_forward: Decimal


class RolloverPreview(BaseModel):
    from_year: int
    to_year: int
    already_executed: bool = False
    summary: RolloverSummary
    details: list[RolloverResult] = []


class BulkRolloverRequest(BaseModel):
    from_year: int = Field(..., ge=2000, le=2100)
    force: bool = Field(False, description="Run even if a rollover into the next year exists")


class BulkRolloverResult(BaseModel):
    from_year: int
    to_year: int
    successful: int
    failed: int
    results: list[RolloverResult] = []


class RolloverHistoryEntry(BaseModel):
    year: int
    leave_type: str
    leave_type_code: str
    entitled: Decimal
    carried_forward: Decimal
    total_available: Decimal
    used: Decimal
    remaining: Decimal
