#!/usr/bin/env python3
"""Leave approvals cron wrapper — escalation sweep and year-end rollover.

Designed to run the escalation sweep every few hours:
    0 */6 * * *

Usage:
    python scripts/run_escalation.py sweep                       # one escalation sweep
    python scripts/run_escalation.py rollover-preview 2026       # carry-forward preview
    python scripts/run_escalation.py rollover-execute 2026       # write 2027 balances
    python scripts/run_escalation.py rollover-execute 2026 --force

Reads DATABASE_URL and friends from .env at the project root.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# ── Path setup ────────────────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from dotenv import load_dotenv

load_dotenv(PROJECT_ROOT / ".env")

from backend.common.exceptions import AppException  # noqa: E402
from backend.config import configure_logging  # noqa: E402
from backend.database import async_session_factory, engine  # noqa: E402
from backend.escalation.scheduler import run_escalation_cycle  # noqa: E402
from backend.rollover.service import RolloverService  # noqa: E402

logger = logging.getLogger("run_escalation")


# ══════════════════════════════════════════════════════════════════════
# Commands
# ══════════════════════════════════════════════════════════════════════


async def cmd_sweep(args: argparse.Namespace) -> int:
    summary = await run_escalation_cycle(async_session_factory)
    logger.info(
        "Sweep done: checked=%d escalated=%d auto_approved=%d unresolved=%d failed=%d",
        summary.checked, summary.escalated, summary.auto_approved,
        summary.unresolved, summary.failed,
    )
    return 1 if summary.failed else 0


async def cmd_rollover_preview(args: argparse.Namespace) -> int:
    async with async_session_factory() as session:
        preview = await RolloverService(session).get_rollover_preview(args.from_year)
    print(json.dumps(preview.model_dump(mode="json"), indent=2))
    return 0


async def cmd_rollover_execute(args: argparse.Namespace) -> int:
    async with async_session_factory() as session:
        try:
            result = await RolloverService(session).execute_bulk_rollover(
                args.from_year, force=args.force,
            )
            await session.commit()
        except AppException as exc:
            await session.rollback()
            logger.error("Rollover refused: %s", exc.detail)
            return 1
    logger.info(
        "Rollover %d->%d: %d successful, %d failed",
        result.from_year, result.to_year, result.successful, result.failed,
    )
    return 1 if result.failed else 0


COMMANDS = {
    "sweep": cmd_sweep,
    "rollover-preview": cmd_rollover_preview,
    "rollover-execute": cmd_rollover_execute,
}


async def _run(args: argparse.Namespace) -> int:
    try:
        return await COMMANDS[args.command](args)
    finally:
        await engine.dispose()


def main():
    parser = argparse.ArgumentParser(
        description="Leave approvals — escalation sweep and year-end rollover",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Cron schedule (recommended):
    0 */6 * * *     sweep
    0 2 2 1 *       rollover-execute <previous year>
""",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("sweep", help="Escalate stale approvals once")

    preview = sub.add_parser("rollover-preview", help="Show carry-forward without writing")
    preview.add_argument("from_year", type=int)

    execute = sub.add_parser("rollover-execute", help="Carry unused days into the next year")
    execute.add_argument("from_year", type=int)
    execute.add_argument("--force", action="store_true",
                         help="Run even if a rollover into the next year exists")

    args = parser.parse_args()
    configure_logging(args.log_level)
    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
