"""Escalation router — settings, cron-triggered sweep, scheduler status."""


import dataclasses

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import UserRole
from backend.common.rate_limit import limiter
from backend.core_hr.models import Employee
from backend.database import get_db, get_session_factory
from backend.dependencies import require_role, verify_cron_secret
from backend.escalation.config import EscalationConfigService
from backend.escalation.scheduler import run_escalation_cycle
from backend.escalation.schemas import (
    EscalationConfigOut,
    EscalationConfigUpdate,
    EscalationRunOut,
    SchedulerStatusOut,
)

router = APIRouter(prefix="", tags=["escalation"])


# ── Settings ────────────────────────────────────────────────────────

@router.get("/config", response_model=EscalationConfigOut)
async def get_config(
    employee: Employee = Depends(require_role(UserRole.hr, UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    config = await EscalationConfigService(db).get_escalation_config()
    return dataclasses.asdict(config)


@router.put("/config", response_model=EscalationConfigOut)
async def update_config(
    body: EscalationConfigUpdate,
    employee: Employee = Depends(require_role(UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    config = await EscalationConfigService(db).update_escalation_config(
        body.settings, actor_id=employee.id,
    )
    return dataclasses.asdict(config)


# ── Sweep ───────────────────────────────────────────────────────────

@router.post("/run", response_model=EscalationRunOut, dependencies=[Depends(verify_cron_secret)])
@limiter.limit("10/minute")
async def run_escalation(
    request: Request,
    session_factory=Depends(get_session_factory),
):
    """Run one escalation sweep (called by the external cron)."""
    scheduler = getattr(request.app.state, "escalation_scheduler", None)
    if scheduler is not None:
        return await scheduler.trigger()
    return await run_escalation_cycle(session_factory)


@router.get("/scheduler/status", response_model=SchedulerStatusOut)
async def scheduler_status(
    request: Request,
    employee: Employee = Depends(require_role(UserRole.hr, UserRole.admin)),
):
    scheduler = getattr(request.app.state, "escalation_scheduler", None)
    if scheduler is None:
        return SchedulerStatusOut(enabled=False)
    return SchedulerStatusOut(enabled=True, **scheduler.status())
