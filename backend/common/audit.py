"""Append-only audit log model and best-effort async writer."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import Column, DateTime, Index, String
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from backend.common.constants import SYSTEM_ACTOR, AuditAction
from backend.database import Base

logger = logging.getLogger(__name__)


# ── Immutable audit-log table ───────────────────────────────────────

class AuditLog(Base):
    """Immutable log of every significant data change."""

    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    # Free-form: an employee UUID string or "SYSTEM" for scheduled jobs
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    old_values = Column(JSONB, nullable=True)
    new_values = Column(JSONB, nullable=True)
    details = Column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_audit_logs_user_id", "user_id"),
        Index("ix_audit_logs_entity", "entity_type", "entity_id"),
        Index("ix_audit_logs_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<AuditLog {self.action} {self.entity_type}"
            f"/{self.entity_id} by {self.user_id}>"
        )


# ── Helper to create an entry ───────────────────────────────────────

async def record_audit(
    session: AsyncSession,
    *,
    action: AuditAction,
    entity_type: str,
    entity_id: Any = None,
    actor_id: Any = None,
    old_values: Optional[dict[str, Any]] = None,
    new_values: Optional[dict[str, Any]] = None,
    details: Optional[dict[str, Any]] = None,
) -> Optional[AuditLog]:
    """
    Append an audit-log entry inside a SAVEPOINT.

    Failures are logged and swallowed: an audit write never aborts the
    operation that triggered it.

    Args:
        session: Async SQLAlchemy session.
        action: What happened (approve, escalate, rollover, ...).
        entity_type: e.g. "leave_request", "holiday_plan".
        entity_id: Identifier of the affected entity (stringified).
        actor_id: Employee performing the action; ``None`` means the system.
        old_values: Previous state (JSON-serialisable).
        new_values: New state (JSON-serialisable).
        details: Extra context.
    """
    entry = AuditLog(
        user_id=str(actor_id) if actor_id is not None else SYSTEM_ACTOR,
        action=action.value,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        old_values=old_values,
        new_values=new_values,
        details=details,
    )
    try:
        async with session.begin_nested():
            session.add(entry)
    except SQLAlchemyError:
        logger.warning(
            "Audit write failed for %s %s/%s", action.value, entity_type, entity_id,
            exc_info=True,
        )
        return None
    return entry
