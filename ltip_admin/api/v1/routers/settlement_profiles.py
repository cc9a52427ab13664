from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ltip_admin.api import deps
from ltip_admin.core.errors import to_http_exception
from ltip_admin.db.session import get_db
from ltip_admin.schemas.transfers import (
    SettlementProfileOut,
    SettlementProfileUpsert,
    SettlementProfileVerification,
)
from ltip_admin.services import settlement_profiles, share_transfers
from ltip_admin.services.errors import LedgerError

router = APIRouter(prefix="/settlement-profiles", tags=["settlement-profiles"])


@router.get("", response_model=list[SettlementProfileOut], summary="List settlement profiles")
async def list_profiles(
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> list[SettlementProfileOut]:
    profiles = await settlement_profiles.list_settlement_profiles(db, ctx)
    return [settlement_profiles.profile_out(profile) for profile in profiles]


@router.get("/{employee_id}", response_model=SettlementProfileOut, summary="Get an employee's settlement profile")
async def get_profile(
    employee_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> SettlementProfileOut:
    profile = await share_transfers.get_settlement_profile(db, ctx, employee_id)
    if not profile:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Settlement profile not found")
    return settlement_profiles.profile_out(profile)


@router.put(
    "/{employee_id}",
    response_model=SettlementProfileOut,
    summary="Create or update an employee's settlement accounts",
)
async def upsert_profile(
    employee_id: UUID,
    payload: SettlementProfileUpsert,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    actor_id: UUID | None = Depends(deps.get_actor_id),
    db: AsyncSession = Depends(get_db),
) -> SettlementProfileOut:
    profile = await settlement_profiles.upsert_settlement_profile(
        db, ctx, employee_id, payload, actor_id=actor_id
    )
    return settlement_profiles.profile_out(profile)


@router.post(
    "/{employee_id}/verification",
    response_model=SettlementProfileOut,
    summary="Mark a settlement profile verified or rejected",
)
async def verify_profile(
    employee_id: UUID,
    payload: SettlementProfileVerification,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    actor_id: UUID | None = Depends(deps.get_actor_id),
    db: AsyncSession = Depends(get_db),
) -> SettlementProfileOut:
    try:
        profile = await settlement_profiles.verify_settlement_profile(
            db, ctx, employee_id, payload.verification_status, actor_id=actor_id
        )
    except LedgerError as exc:
        raise to_http_exception(exc) from exc
    return settlement_profiles.profile_out(profile)
