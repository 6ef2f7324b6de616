"""Directory service — read-only employee / org-chart lookups for the approval core."""

from __future__ import annotations

import uuid
from typing import Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.common.constants import UserRole
from backend.core_hr.models import Employee


class DirectoryService:
    """Async lookups over the employees table."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_employee(
        self,
        employee_id: Optional[uuid.UUID],
        *,
        with_department: bool = False,
    ) -> Optional[Employee]:
        if employee_id is None:
            return None
        query = select(Employee).where(Employee.id == employee_id)
        if with_department:
            query = query.options(selectinload(Employee.department))
        result = await self.db.execute(query)
        return result.scalars().first()

    async def first_active_with_roles(
        self,
        roles: Iterable[UserRole],
        *,
        exclude_ids: Iterable[uuid.UUID] = (),
    ) -> Optional[Employee]:
        """First active employee holding one of *roles*, oldest record first."""
        query = (
            select(Employee)
            .where(
                Employee.role.in_(list(roles)),
                Employee.is_active.is_(True),
            )
            .order_by(Employee.created_at, Employee.employee_code)
            .limit(1)
        )
        excluded = [i for i in exclude_ids if i is not None]
        if excluded:
            query = query.where(Employee.id.not_in(excluded))
        result = await self.db.execute(query)
        return result.scalars().first()

    async def direct_reports(self, manager_id: uuid.UUID) -> Sequence[Employee]:
        result = await self.db.execute(
            select(Employee)
            .where(Employee.manager_id == manager_id, Employee.is_active.is_(True))
            .order_by(Employee.last_name, Employee.first_name)
        )
        return result.scalars().all()

    async def director_reports(self, director_id: uuid.UUID) -> Sequence[Employee]:
        result = await self.db.execute(
            select(Employee)
            .where(
                Employee.department_director_id == director_id,
                Employee.is_active.is_(True),
            )
            .order_by(Employee.last_name, Employee.first_name)
        )
        return result.scalars().all()

    async def department_members(self, department_id: uuid.UUID) -> Sequence[Employee]:
        result = await self.db.execute(
            select(Employee)
            .where(
                Employee.department_id == department_id,
                Employee.is_active.is_(True),
            )
            .order_by(Employee.last_name, Employee.first_name)
        )
        return result.scalars().all()
