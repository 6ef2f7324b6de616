"""Delegation Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class DelegationCreate(BaseModel):
    delegate_id: uuid.UUID
    start_date: date
    end_date: Optional[date] = Field(None, description="Omit for an open-ended delegation")
    reason: Optional[str] = Field(None, max_length=500)

    @model_validator(mode="after")
    def _check_range(self) -> "DelegationCreate":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class DelegationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    delegator_id: uuid.UUID
    delegate_id: uuid.UUID
    start_date: date
    end_date: Optional[date] = None
    is_active: bool
    reason: Optional[str] = None
    created_at: datetime
    deactivated_at: Optional[datetime] = None
