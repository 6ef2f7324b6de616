"""Company calendar and settings lookups."""

from __future__ import annotations

from datetime import date
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.company.models import CompanySetting, Holiday


class CompanyService:
    """Async access to the holiday calendar and the company_settings table."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_holiday_dates(self, from_date: date, to_date: date) -> set[date]:
        """Active holiday dates in the inclusive range."""
        result = await self.db.execute(
            select(Holiday.date).where(
                Holiday.date >= from_date,
                Holiday.date <= to_date,
                Holiday.is_active.is_(True),
            )
        )
        return set(result.scalars().all())

    async def get_settings(self, keys: Iterable[str]) -> dict[str, str]:
        result = await self.db.execute(
            select(CompanySetting).where(CompanySetting.key.in_(list(keys)))
        )
        return {s.key: s.value for s in result.scalars().all()}

    async def upsert_setting(
        self,
        key: str,
        value: str,
        *,
        category: Optional[str] = None,
        description: Optional[str] = None,
        overwrite: bool = True,
    ) -> CompanySetting:
        """Insert *key* or, when *overwrite* is set, replace its value."""
        setting = await self.db.get(CompanySetting, key)
        if setting is None:
            setting = CompanySetting(
                key=key, value=value, category=category, description=description,
            )
            self.db.add(setting)
        elif overwrite:
            setting.value = value
        await self.db.flush()
        return setting
