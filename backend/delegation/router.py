"""Delegation router — managers hand over approval authority for a period."""


import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import DELEGATE_ROLES
from backend.core_hr.models import Employee
from backend.database import get_db
from backend.delegation.schemas import DelegationCreate, DelegationOut
from backend.delegation.service import DelegationService
from backend.dependencies import require_role

router = APIRouter(prefix="", tags=["delegations"])


@router.post("", response_model=DelegationOut, status_code=201)
async def create_delegation(
    body: DelegationCreate,
    employee: Employee = Depends(require_role(*DELEGATE_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Delegate the caller's approvals; overlapping active delegations are rejected."""
    return await DelegationService(db).create_delegation(
        delegator_id=employee.id,
        delegate_id=body.delegate_id,
        start_date=body.start_date,
        end_date=body.end_date,
        reason=body.reason,
    )


@router.get("", response_model=list[DelegationOut])
async def list_delegations(
    active_only: bool = Query(False),
    employee: Employee = Depends(require_role(*DELEGATE_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    return await DelegationService(db).list_delegations(employee.id, active_only=active_only)


@router.delete("/{delegation_id}", response_model=DelegationOut)
async def deactivate_delegation(
    delegation_id: uuid.UUID,
    employee: Employee = Depends(require_role(*DELEGATE_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Deactivate (never delete) a delegation."""
    return await DelegationService(db).deactivate_delegation(delegation_id, actor_id=employee.id)
