"""Shared FastAPI dependencies — caller identity, RBAC, cron secret.

Authentication happens upstream: the gateway forwards the authenticated
employee id in the ``X-Employee-Id`` header.
"""

from __future__ import annotations

import hmac
import uuid
from typing import Callable, Optional

from fastapi import Depends, Header
from fastapi.exceptions import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import UserRole
from backend.common.exceptions import ForbiddenException
from backend.config import settings
from backend.core_hr.models import Employee
from backend.core_hr.service import DirectoryService
from backend.database import get_db

# Role hierarchy — each role implicitly includes the roles listed for it
_ROLE_HIERARCHY: dict[UserRole, set[UserRole]] = {
    UserRole.admin: set(UserRole),
    UserRole.executive: {UserRole.executive, UserRole.employee},
    UserRole.hr: {UserRole.hr, UserRole.employee},
    UserRole.department_director: {
        UserRole.department_director, UserRole.manager, UserRole.employee,
    },
    UserRole.manager: {UserRole.manager, UserRole.employee},
    UserRole.employee: {UserRole.employee},
}


# ── Core dependency ─────────────────────────────────────────────────

async def get_current_user(
    x_employee_id: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
) -> Employee:
    """Resolve the forwarded employee id to an active Employee."""
    if not x_employee_id:
        raise HTTPException(status_code=401, detail="Missing X-Employee-Id header.")
    try:
        employee_id = uuid.UUID(x_employee_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid X-Employee-Id header.")

    employee = await DirectoryService(db).get_employee(employee_id, with_department=True)
    if employee is None or not employee.is_active:
        raise HTTPException(status_code=401, detail="User account is inactive or not found.")
    return employee


# ── Role-based dependency ───────────────────────────────────────────

def require_role(*allowed_roles: UserRole) -> Callable:
    """Return a FastAPI dependency that enforces role membership.

    Respects hierarchy — e.g. admin can access manager endpoints.
    """

    async def _check(employee: Employee = Depends(get_current_user)) -> Employee:
        effective_roles = _ROLE_HIERARCHY.get(employee.role, {employee.role})
        if not effective_roles.intersection(set(allowed_roles)):
            raise ForbiddenException(
                detail=(
                    f"Role '{employee.role.value}' is not permitted. "
                    f"Required: {[r.value for r in allowed_roles]}."
                ),
            )
        return employee

    return _check


# ── Cron secret ─────────────────────────────────────────────────────

async def verify_cron_secret(x_cron_secret: Optional[str] = Header(None)) -> None:
    """Reject scheduler calls without the shared secret (open when none is configured)."""
    if not settings.CRON_SECRET:
        return
    if not x_cron_secret or not hmac.compare_digest(x_cron_secret, settings.CRON_SECRET):
        raise HTTPException(status_code=401, detail="Invalid cron secret.")
