"""Delegation service tests: create, overlap, revoke, expiry, lookup."""

from __future__ import annotations

import uuid
from datetime import date

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import UserRole
from backend.common.exceptions import (
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from backend.delegation.service import DelegationService
from tests.conftest import seed_employee


@pytest.fixture
async def pair(db: AsyncSession):
    delegator = await seed_employee(db, first_name="Mihai", role=UserRole.manager)
    delegate = await seed_employee(db, first_name="Dan", role=UserRole.manager)
    return delegator, delegate


class TestCreateDelegation:

    async def test_create_and_lookup(self, db: AsyncSession, pair):
        delegator, delegate = pair
        svc = DelegationService(db)

        created = await svc.create_delegation(
            delegator_id=delegator.id, delegate_id=delegate.id,
            start_date=date(2026, 3, 1), end_date=date(2026, 3, 20), reason="Vacation",
        )

        assert created.is_active is True
        found = await svc.get_active_delegate(delegator.id, date(2026, 3, 11))
        assert found.id == created.id
        assert await svc.get_active_delegate(delegator.id, date(2026, 3, 21)) is None

    async def test_open_ended_delegation_covers_future(self, db: AsyncSession, pair):
        delegator, delegate = pair
        svc = DelegationService(db)
        await svc.create_delegation(
            delegator_id=delegator.id, delegate_id=delegate.id, start_date=date(2026, 3, 1),
        )

        found = await svc.get_active_delegate(delegator.id, date(2027, 1, 1))
        assert found is not None
        assert found.end_date is None

    async def test_self_delegation_rejected(self, db: AsyncSession, pair):
        delegator, _ = pair

        with pytest.raises(ValidationException) as exc_info:
            await DelegationService(db).create_delegation(
                delegator_id=delegator.id, delegate_id=delegator.id, start_date=date(2026, 3, 1),
            )
        assert exc_info.value.errors["delegate_id"] == ["You cannot delegate to yourself."]

    async def test_plain_employee_cannot_be_delegate(self, db: AsyncSession, pair):
        delegator, _ = pair
        clerk = await seed_employee(db, role=UserRole.employee)

        with pytest.raises(ValidationException) as exc_info:
            await DelegationService(db).create_delegation(
                delegator_id=delegator.id, delegate_id=clerk.id, start_date=date(2026, 3, 1),
            )
        assert "cannot approve leave" in exc_info.value.errors["delegate_id"][0]

    async def test_inactive_delegate_rejected(self, db: AsyncSession, pair):
        delegator, _ = pair
        gone = await seed_employee(db, role=UserRole.manager, is_active=False)

        with pytest.raises(ValidationException):
            await DelegationService(db).create_delegation(
                delegator_id=delegator.id, delegate_id=gone.id, start_date=date(2026, 3, 1),
            )

    async def test_overlapping_delegation_rejected(self, db: AsyncSession, pair):
        delegator, delegate = pair
        other = await seed_employee(db, role=UserRole.hr)
        svc = DelegationService(db)
        await svc.create_delegation(
            delegator_id=delegator.id, delegate_id=delegate.id,
            start_date=date(2026, 3, 1), end_date=date(2026, 3, 20),
        )

        with pytest.raises(ValidationException) as exc_info:
            await svc.create_delegation(
                delegator_id=delegator.id, delegate_id=other.id,
                start_date=date(2026, 3, 15), end_date=date(2026, 3, 25),
            )
        assert exc_info.value.detail == "Overlapping delegation."

    async def test_unknown_delegate_is_not_found(self, db: AsyncSession, pair):
        delegator, _ = pair
        with pytest.raises(NotFoundException):
            await DelegationService(db).create_delegation(
                delegator_id=delegator.id, delegate_id=uuid.uuid4(), start_date=date(2026, 3, 1),
            )


class TestRevokeAndExpire:

    async def test_delegator_can_revoke(self, db: AsyncSession, pair):
        delegator, delegate = pair
        svc = DelegationService(db)
        created = await svc.create_delegation(
            delegator_id=delegator.id, delegate_id=delegate.id, start_date=date(2026, 3, 1),
        )

        revoked = await svc.deactivate_delegation(created.id, actor_id=delegator.id)

        assert revoked.is_active is False
        assert revoked.deactivated_at is not None
        assert await svc.get_active_delegate(delegator.id, date(2026, 3, 11)) is None

    async def test_admin_can_revoke(self, db: AsyncSession, pair):
        delegator, delegate = pair
        admin = await seed_employee(db, role=UserRole.admin)
        svc = DelegationService(db)
        created = await svc.create_delegation(
            delegator_id=delegator.id, delegate_id=delegate.id, start_date=date(2026, 3, 1),
        )

        revoked = await svc.deactivate_delegation(created.id, actor_id=admin.id)
        assert revoked.is_active is False

    async def test_others_cannot_revoke(self, db: AsyncSession, pair):
        delegator, delegate = pair
        svc = DelegationService(db)
        created = await svc.create_delegation(
            delegator_id=delegator.id, delegate_id=delegate.id, start_date=date(2026, 3, 1),
        )

        with pytest.raises(ForbiddenException):
            await svc.deactivate_delegation(created.id, actor_id=delegate.id)

    async def test_expire_deactivates_only_past_delegations(self, db: AsyncSession, pair):
        delegator, delegate = pair
        svc = DelegationService(db)
        await svc.create_delegation(
            delegator_id=delegator.id, delegate_id=delegate.id,
            start_date=date(2026, 2, 1), end_date=date(2026, 2, 28),
        )
        current = await svc.create_delegation(
            delegator_id=delegator.id, delegate_id=delegate.id,
            start_date=date(2026, 3, 1), end_date=date(2026, 3, 31),
        )

        expired = await svc.expire_delegations(date(2026, 3, 11))

        assert expired == 1
        active = await svc.list_delegations(delegator.id, active_only=True)
        assert [d.id for d in active] == [current.id]
