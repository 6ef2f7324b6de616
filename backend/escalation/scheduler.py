"""Escalation runner and optional in-process scheduler.

``run_escalation_cycle`` is the single entry point used by the cron
endpoint, the CLI script and the in-process loop: it opens its own session,
seeds missing escalation settings, expires lapsed delegations, runs one
sweep and commits.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.common.clock import Clock, company_now, utc_now
from backend.delegation.service import DelegationService
from backend.escalation.config import EscalationConfigService
from backend.escalation.service import EscalationRunSummary, EscalationService

logger = logging.getLogger(__name__)


async def run_escalation_cycle(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    clock: Clock = utc_now,
) -> EscalationRunSummary:
    async with session_factory() as session:
        try:
            config_service = EscalationConfigService(session)
            await config_service.initialize_default_settings()
            config = await config_service.get_escalation_config()
            await DelegationService(session).expire_delegations(
                company_now(config.company_timezone, clock).date(),
            )
            summary = await EscalationService(
                session, clock=clock,
            ).check_and_escalate_pending_approvals()
            await session.commit()
        except Exception:
            await session.rollback()
            raise
    return summary


class EscalationScheduler:
    """Runs the sweep on a fixed interval inside the API process."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        interval_hours: float = 6.0,
        clock: Clock = utc_now,
    ) -> None:
        self.session_factory = session_factory
        self.interval = timedelta(hours=interval_hours)
        self.clock = clock
        self.run_count = 0
        self.last_run: Optional[datetime] = None
        self.last_summary: Optional[EscalationRunSummary] = None
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            logger.info("Escalation scheduler is already running")
            return
        logger.info("Starting escalation scheduler every %s", self.interval)
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            logger.info("Escalation scheduler is not running")
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Escalation scheduler stopped")

    async def trigger(self) -> EscalationRunSummary:
        """Run one sweep now and record it in the scheduler status."""
        self.run_count += 1
        logger.info("Escalation check #%d starting", self.run_count)
        summary = await run_escalation_cycle(self.session_factory, clock=self.clock)
        self.last_run = self.clock()
        self.last_summary = summary
        return summary

    async def _loop(self) -> None:
        while True:
            try:
                await self.trigger()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Escalation check #%d failed", self.run_count)
            await asyncio.sleep(self.interval.total_seconds())

    def status(self) -> dict[str, Any]:
        return {
            "is_running": self.is_running,
            "interval_hours": self.interval.total_seconds() / 3600,
            "run_count": self.run_count,
            "last_run": self.last_run,
            "next_run": (
                self.last_run + self.interval
                if self.is_running and self.last_run is not None
                else None
            ),
        }
