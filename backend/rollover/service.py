"""Year-end leave rollover — carry-forward preview, execution, history.

Business logic:
  - Only active employees and active leave types flagged ``carry_forward``
    take part
  - ``unused = max(0, entitled + carried_forward - used)``
  - ``eligible = unused * carry_forward_percentage / 100``
  - ``carried = min(eligible, max_carry_forward)`` with the company default
    cap when the type sets none; ``lost = unused - carried``
  - Execution upserts the (user, type, year + 1) balance row and audits it;
    a failed row is logged and reported, never raised
"""

from __future__ import annotations

import logging
import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.audit import record_audit
from backend.common.clock import Clock, utc_now
from backend.common.constants import DEFAULT_MAX_CARRY_FORWARD, AuditAction
from backend.common.exceptions import (
    InvalidStateException,
    NotFoundException,
    ValidationException,
)
from backend.core_hr.models import Employee
from backend.leave.models import LeaveBalance, LeaveType
from backend.rollover.schemas import (
    BulkRolloverResult,
    RolloverHistoryEntry,
    RolloverPreview,
    RolloverResult,
    RolloverSummary,
)

logger = logging.getLogger(__name__)

_TENTH = Decimal("0.1")
_ZERO = Decimal("0")


def _round(value: Decimal) -> Decimal:
    """Balances are stored with one decimal place."""
    return Decimal(value).quantize(_TENTH, rounding=ROUND_HALF_UP)


def compute_carry_forward(
    *,
    entitled: Decimal,
    carried_forward: Decimal,
    used: Decimal,
    max_carry_forward: Optional[Decimal],
    percentage: Optional[int],
) -> tuple[Decimal, Decimal, Decimal, str]:
    """Return ``(unused, carried, lost, reason)`` for one balance row."""
    cap = Decimal(max_carry_forward) if max_carry_forward else Decimal(DEFAULT_MAX_CARRY_FORWARD)
    pct = 100 if percentage is None else percentage

    unused = max(_ZERO, Decimal(entitled) + Decimal(carried_forward) - Decimal(used))
    eligible = _round(unused * Decimal(pct) / Decimal(100))
    carried = min(eligible, cap)
    lost = _round(unused - carried)

    if eligible > cap:
        reason = f"Exceeded maximum carry forward limit of {cap.normalize():f} days"
    elif pct < 100:
        reason = f"Only {pct}% of unused days can be carried forward"
    else:
        reason = "Full unused balance carried forward"
    return _round(unused), carried, lost, reason


def summarize(results: Sequence[RolloverResult]) -> RolloverSummary:
    total_cf = sum((r.carried_forward for r in results), _ZERO)
    total_lost = sum((r.lost for r in results), _ZERO)
    avg = (total_cf / len(results)) if results else _ZERO
    return RolloverSummary(
        total_users=len({r.user_id for r in results}),
        total_days_carried_forward=total_cf,
        total_days_lost=total_lost,
        avg_carry_forward=avg.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP),
    )


# ═════════════════════════════════════════════════════════════════════
# RolloverService
# ═════════════════════════════════════════════════════════════════════


class RolloverService:
    def __init__(self, db: AsyncSession, *, clock: Clock = utc_now) -> None:
        self.db = db
        self.clock = clock

    # ─────────────────────────────────────────────────────────────────
    # Calculation (read-only)
    # ─────────────────────────────────────────────────────────────────

    async def calculate_year_end_rollover(
        self, from_year: int, to_year: Optional[int] = None,
    ) -> list[RolloverResult]:
        """Compute carry-forward for every eligible balance of *from_year*.

        *to_year* defaults to the following year and must come after
        *from_year*. Nothing is written.
        """
        to_year = from_year + 1 if to_year is None else to_year
        if to_year <= from_year:
            raise ValidationException({"to_year": ["Must be after from_year."]})
        logger.debug("Calculating rollover %d -> %d", from_year, to_year)
        result = await self.db.execute(
            select(LeaveBalance, LeaveType)
            .join(LeaveType, LeaveBalance.leave_type_id == LeaveType.id)
            .join(Employee, LeaveBalance.user_id == Employee.id)
            .where(
                LeaveBalance.year == from_year,
                Employee.is_active.is_(True),
                LeaveType.is_active.is_(True),
                LeaveType.carry_forward.is_(True),
            )
            .order_by(Employee.last_name, Employee.first_name, LeaveType.code)
        )

        results: list[RolloverResult] = []
        for balance, leave_type in result.all():
            unused, carried, lost, reason = compute_carry_forward(
                entitled=balance.entitled,
                carried_forward=balance.carried_forward,
                used=balance.used,
                max_carry_forward=leave_type.max_carry_forward,
                percentage=leave_type.carry_forward_percentage,
            )
            results.append(RolloverResult(
                user_id=balance.user_id,
                leave_type_id=leave_type.id,
                year=from_year,
                entitled=balance.entitled,
                used=balance.used,
                unused=unused,
                carried_forward=carried,
                lost=lost,
                reason=reason,
            ))
        return results

    async def get_rollover_preview(
        self, from_year: int, to_year: Optional[int] = None,
    ) -> RolloverPreview:
        to_year = from_year + 1 if to_year is None else to_year
        results = await self.calculate_year_end_rollover(from_year, to_year)
        return RolloverPreview(
            from_year=from_year,
            to_year=to_year,
            already_executed=await self.is_rollover_executed(from_year),
            summary=summarize(results),
            details=results,
        )

    async def is_rollover_executed(self, from_year: int) -> bool:
        """True once any balance in ``from_year + 1`` carries days forward."""
        count = await self.db.scalar(
            select(func.count())
            .select_from(LeaveBalance)
            .where(
                LeaveBalance.year == from_year + 1,
                LeaveBalance.carried_forward > 0,
            )
        )
        return bool(count)

    # ─────────────────────────────────────────────────────────────────
    # Execution
    # ─────────────────────────────────────────────────────────────────

    async def _upsert_target_balance(
        self,
        user_id: uuid.UUID,
        leave_type: LeaveType,
        to_year: int,
        carried_forward: Decimal,
    ) -> None:
        existing = await self.db.scalar(
            select(LeaveBalance.id).where(
                LeaveBalance.user_id == user_id,
                LeaveBalance.leave_type_id == leave_type.id,
                LeaveBalance.year == to_year,
            )
        )
        if existing is not None:
            await self.db.execute(
                update(LeaveBalance)
                .where(LeaveBalance.id == existing)
                .values(
                    carried_forward=carried_forward,
                    available=(
                        LeaveBalance.entitled + carried_forward
                        - LeaveBalance.used - LeaveBalance.pending
                    ),
                )
                .execution_options(synchronize_session=False)
            )
            return

        entitled = Decimal(leave_type.days_allowed or 0)
        self.db.add(LeaveBalance(
            user_id=user_id,
            leave_type_id=leave_type.id,
            year=to_year,
            entitled=entitled,
            used=_ZERO,
            pending=_ZERO,
            carried_forward=carried_forward,
            available=entitled + carried_forward,
        ))
        await self.db.flush()

    async def execute_rollover(
        self,
        user_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        from_year: int,
        carried_forward: Decimal,
        *,
        actor_id: Any = None,
    ) -> bool:
        """Write *carried_forward* into the ``from_year + 1`` balance.

        Returns False (and logs) when the write fails; the surrounding
        transaction stays usable.
        """
        leave_type = await self.db.get(LeaveType, leave_type_id)
        if leave_type is None:
            raise NotFoundException("LeaveType", leave_type_id)

        to_year = from_year + 1
        carried_forward = _round(carried_forward)
        try:
            async with self.db.begin_nested():
                await self._upsert_target_balance(
                    user_id, leave_type, to_year, carried_forward,
                )
        except SQLAlchemyError:
            logger.error(
                "Rollover failed for user=%s type=%s %s->%s",
                user_id, leave_type.code, from_year, to_year,
                exc_info=True,
            )
            return False

        await record_audit(
            self.db,
            action=AuditAction.rollover,
            entity_type="leave_balance",
            entity_id=f"{user_id}-{leave_type_id}-{to_year}",
            actor_id=actor_id,
            new_values={"carried_forward": str(carried_forward)},
            details={
                "from_year": from_year,
                "to_year": to_year,
                "leave_type": leave_type.code,
            },
        )
        return True

    async def execute_bulk_rollover(
        self,
        from_year: int,
        *,
        actor_id: Any = None,
        force: bool = False,
    ) -> BulkRolloverResult:
        """Run the rollover for every eligible balance of *from_year*.

        Refuses to run twice unless *force* is set.
        """
        if not force and await self.is_rollover_executed(from_year):
            raise InvalidStateException(
                f"Rollover from {from_year} to {from_year + 1} has already been executed.",
            )

        results = await self.calculate_year_end_rollover(from_year)
        successful = failed = 0
        for item in results:
            ok = await self.execute_rollover(
                item.user_id, item.leave_type_id, from_year, item.carried_forward,
                actor_id=actor_id,
            )
            if ok:
                successful += 1
            else:
                failed += 1

        summary = summarize(results)
        await record_audit(
            self.db,
            action=AuditAction.bulk_rollover,
            entity_type="leave_balance",
            entity_id=f"{from_year}-{from_year + 1}",
            actor_id=actor_id,
            details={
                "successful": successful,
                "failed": failed,
                "total_days_carried_forward": str(summary.total_days_carried_forward),
                "total_days_lost": str(summary.total_days_lost),
                "forced": force,
            },
        )
        logger.info(
            "Bulk rollover %s->%s: %d successful, %d failed",
            from_year, from_year + 1, successful, failed,
        )
        return BulkRolloverResult(
            from_year=from_year,
            to_year=from_year + 1,
            successful=successful,
            failed=failed,
            results=results,
        )

    # ─────────────────────────────────────────────────────────────────
    # History
    # ─────────────────────────────────────────────────────────────────

    async def get_user_rollover_history(
        self, user_id: uuid.UUID, years: int = 3,
    ) -> list[RolloverHistoryEntry]:
        since = self.clock().year - years
        result = await self.db.execute(
            select(LeaveBalance, LeaveType)
            .join(LeaveType, LeaveBalance.leave_type_id == LeaveType.id)
            .where(
                LeaveBalance.user_id == user_id,
                LeaveBalance.year >= since,
                LeaveBalance.carried_forward > 0,
            )
            .order_by(LeaveBalance.year.desc(), LeaveType.name)
            .execution_options(populate_existing=True)
        )
        return [
            RolloverHistoryEntry(
                year=balance.year,
                leave_type=leave_type.name,
                leave_type_code=leave_type.code,
                entitled=balance.entitled,
                carried_forward=balance.carried_forward,
                total_available=balance.total_available,
                used=balance.used,
                remaining=balance.available,
            )
            for balance, leave_type in result.all()
        ]
