"""Pure state transitions for planning windows and holiday plans.

Nothing here touches the database or reads the wall clock; callers pass
``now`` in so the rules can be exercised for any date.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from backend.common.constants import PlanningStage, PlanStatus
from backend.common.exceptions import InvalidStateException

# Planning for year N is open from October to December of year N-1
OPEN_MONTHS = range(10, 13)

PLAN_TRANSITIONS: dict[PlanStatus, frozenset[PlanStatus]] = {
    PlanStatus.draft: frozenset({PlanStatus.submitted, PlanStatus.locked}),
    PlanStatus.submitted: frozenset({
        PlanStatus.submitted, PlanStatus.reviewed, PlanStatus.draft, PlanStatus.locked,
    }),
    PlanStatus.reviewed: frozenset({
        PlanStatus.submitted, PlanStatus.finalized, PlanStatus.locked,
    }),
    PlanStatus.finalized: frozenset({PlanStatus.locked}),
    PlanStatus.locked: frozenset(),
}

# Plans whose date set may still be replaced
EDITABLE_PLAN_STATUSES = frozenset({
    PlanStatus.draft, PlanStatus.submitted, PlanStatus.reviewed,
})


def window_dates(year: int) -> tuple[date, date]:
    """Open and close dates of the window that plans *year*."""
    return date(year - 1, 10, 1), date(year - 1, 12, 31)


def next_window_stage(
    year: int,
    now: datetime,
    current: Optional[PlanningStage] = None,
) -> PlanningStage:
    """Stage the window for *year* should be in at *now*.

    LOCKED is terminal. A window locks once its year is over, opens (DRAFT)
    during October to December of the preceding year, and is CLOSED at any
    other time.
    """
    if current == PlanningStage.locked or now.year > year:
        return PlanningStage.locked
    if year == now.year + 1 and now.month in OPEN_MONTHS:
        return PlanningStage.draft
    return PlanningStage.closed


def is_window_open(stage: PlanningStage) -> bool:
    return stage == PlanningStage.draft


def can_transition(current: PlanStatus, target: PlanStatus) -> bool:
    return target in PLAN_TRANSITIONS[current]


def assert_plan_transition(current: PlanStatus, target: PlanStatus) -> None:
    if not can_transition(current, target):
        raise InvalidStateException(
            f"Holiday plan cannot move from {current.value} to {target.value}.",
        )
