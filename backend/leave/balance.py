"""Leave balance ledger — pending / approval / rejection / cancellation updates.

Only the Normal Leave type code (``settings.NORMAL_LEAVE_CODE``) is deducted
from a balance; every other code is tracked on the request alone and leaves
the ledger untouched.

Each mutation is a single ``UPDATE ... SET col = col +/- :days`` so concurrent
approve/reject calls on the same (user, leave type, year) row cannot lose
updates. A missing balance row makes the call a silent no-op: rows are
created at year-end rollover or by the balance initialiser, never here.

Approval increments ``used`` but leaves ``pending`` as is; that mirrors
the behaviour the product currently ships and is pinned by tests.
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.config import settings
from backend.leave.models import LeaveBalance

logger = logging.getLogger(__name__)


def _clamped_decrement(column, days: Decimal):
    """SQL expression for ``max(0, column - days)`` portable across backends."""
    return case((column - days < 0, Decimal("0")), else_=column - days)


def _available(entitled, carried_forward, used, pending):
    return entitled + carried_forward - used - pending


class LeaveBalanceLedger:
    """Atomic balance-row updates keyed by (user, leave type, year)."""

    def __init__(self, db: AsyncSession, *, normal_leave_code: Optional[str] = None) -> None:
        self.db = db
        self.normal_leave_code = normal_leave_code or settings.NORMAL_LEAVE_CODE

    def _tracks(self, leave_type_code: str) -> bool:
        return leave_type_code == self.normal_leave_code

    async def _apply(
        self,
        user_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
        *,
        used=None,
        pending=None,
    ) -> bool:
        used_expr = LeaveBalance.used if used is None else used
        pending_expr = LeaveBalance.pending if pending is None else pending
        values = {
            "available": _available(
                LeaveBalance.entitled, LeaveBalance.carried_forward,
                used_expr, pending_expr,
            ),
        }
        if used is not None:
            values["used"] = used
        if pending is not None:
            values["pending"] = pending

        # SET clauses are evaluated against the pre-update row on both
        # PostgreSQL and SQLite, so "available" sees the old used/pending
        # columns combined with the new expressions.
        result = await self.db.execute(
            update(LeaveBalance)
            .where(
                LeaveBalance.user_id == user_id,
                LeaveBalance.leave_type_id == leave_type_id,
                LeaveBalance.year == year,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.debug(
                "No balance row for user=%s type=%s year=%s; ledger untouched",
                user_id, leave_type_id, year,
            )
            return False
        return True

    # ─────────────────────────────────────────────────────────────────
    # Public operations
    # ─────────────────────────────────────────────────────────────────

    async def on_pending(
        self,
        user_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        leave_type_code: str,
        days: Decimal,
        year: int,
    ) -> bool:
        """A request entered the approval chain: ``pending += days``."""
        if not self._tracks(leave_type_code):
            return False
        days = Decimal(days)
        return await self._apply(
            user_id, leave_type_id, year, pending=LeaveBalance.pending + days,
        )

    async def on_approval(
        self,
        user_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        leave_type_code: str,
        days: Decimal,
        year: int,
    ) -> bool:
        """A request was approved: ``used += days`` (pending is not released)."""
        if not self._tracks(leave_type_code):
            return False
        days = Decimal(days)
        return await self._apply(
            user_id, leave_type_id, year, used=LeaveBalance.used + days,
        )

    async def on_rejection(
        self,
        user_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        leave_type_code: str,
        days: Decimal,
        year: int,
    ) -> bool:
        """A pending request was rejected or withdrawn: ``pending -= days`` (floor 0)."""
        if not self._tracks(leave_type_code):
            return False
        days = Decimal(days)
        return await self._apply(
            user_id, leave_type_id, year,
            pending=_clamped_decrement(LeaveBalance.pending, days),
        )

    async def on_cancellation(
        self,
        user_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        leave_type_code: str,
        days: Decimal,
        year: int,
    ) -> bool:
        """An approved request was cancelled: ``used -= days`` (floor 0)."""
        if not self._tracks(leave_type_code):
            return False
        days = Decimal(days)
        return await self._apply(
            user_id, leave_type_id, year,
            used=_clamped_decrement(LeaveBalance.used, days),
        )

    async def get_balance(
        self,
        user_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
    ) -> Optional[LeaveBalance]:
        result = await self.db.execute(
            select(LeaveBalance)
            .where(
                LeaveBalance.user_id == user_id,
                LeaveBalance.leave_type_id == leave_type_id,
                LeaveBalance.year == year,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()
