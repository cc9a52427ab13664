from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ltip_admin.api import deps
from ltip_admin.models.settlement_profile import SettlementProfile
from ltip_admin.models.types import mask_identifier
from ltip_admin.schemas.transfers import SettlementProfileOut, SettlementProfileUpsert, VerificationStatus
from ltip_admin.services.audit import model_snapshot, record_audit_log
from ltip_admin.services.errors import NotFound, SettlementProfileIncomplete
from ltip_admin.services.share_transfers import get_settlement_profile, missing_settlement_fields

logger = logging.getLogger(__name__)

ENCRYPTED_FIELDS = ("broker_account_number", "investor_number", "investment_account_number", "iban")
# editing any of these sends the profile back to pending
IDENTIFIER_FIELDS = ("broker_custodian_name",) + ENCRYPTED_FIELDS


def masked_snapshot(profile: SettlementProfile) -> dict[str, Any]:
    snapshot = model_snapshot(profile, exclude=ENCRYPTED_FIELDS)
    snapshot.update({name: mask_identifier(getattr(profile, name)) for name in ENCRYPTED_FIELDS})
    return snapshot


def profile_out(profile: SettlementProfile) -> SettlementProfileOut:
    return SettlementProfileOut(
        id=profile.id,
        employee_id=profile.employee_id,
        broker_custodian_name=profile.broker_custodian_name,
        broker_account_number=mask_identifier(profile.broker_account_number),
        investor_number=mask_identifier(profile.investor_number),
        investment_account_number=mask_identifier(profile.investment_account_number),
        iban=mask_identifier(profile.iban),
        bank_name=profile.bank_name,
        verification_status=profile.verification_status,
        verified_at=profile.verified_at,
        missing_fields=missing_settlement_fields(profile),
    )


async def list_settlement_profiles(db: AsyncSession, ctx: deps.TenantContext) -> list[SettlementProfile]:
    stmt = select(SettlementProfile).where(SettlementProfile.org_id == ctx.org_id)
    return list((await db.execute(stmt)).scalars().all())


async def upsert_settlement_profile(
    db: AsyncSession,
    ctx: deps.TenantContext,
    employee_id: UUID,
    payload: SettlementProfileUpsert,
    *,
    actor_id=None,
) -> SettlementProfile:
    """Create or edit an employee's settlement accounts.

    New profiles start pending. Changing an account identifier on a verified
    profile sends it back to pending until it is verified again.
    """
    profile = await get_settlement_profile(db, ctx, employee_id)
    changes = payload.model_dump(exclude_unset=True)
    if profile is None:
        profile = SettlementProfile(
            id=uuid4(),
            org_id=ctx.org_id,
            employee_id=employee_id,
            verification_status=VerificationStatus.PENDING.value,
            verified_at=None,
        )
        for name in SettlementProfileUpsert.model_fields:
            setattr(profile, name, changes.get(name))
        old_snapshot = None
        action = "settlement_profile.created"
    else:
        old_snapshot = masked_snapshot(profile)
        touched = [name for name in IDENTIFIER_FIELDS if name in changes and changes[name] != getattr(profile, name)]
        for name, value in changes.items():
            setattr(profile, name, value)
        if touched:
            profile.verification_status = VerificationStatus.PENDING.value
            profile.verified_at = None
        action = "settlement_profile.updated"

    db.add(profile)
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action=action,
        resource_type="settlement_profile",
        resource_id=str(profile.id),
        old_value=old_snapshot,
        new_value=masked_snapshot(profile),
    )
    await db.commit()
    return profile


async def verify_settlement_profile(
    db: AsyncSession,
    ctx: deps.TenantContext,
    employee_id: UUID,
    verification_status: VerificationStatus,
    *,
    actor_id=None,
) -> SettlementProfile:
    profile = await get_settlement_profile(db, ctx, employee_id)
    if profile is None:
        raise NotFound("Settlement profile not found", employee_id=str(employee_id))
    if verification_status == VerificationStatus.VERIFIED:
        missing = missing_settlement_fields(profile)
        if missing:
            raise SettlementProfileIncomplete(employee_id=employee_id, missing_fields=missing)

    old_snapshot = masked_snapshot(profile)
    profile.verification_status = verification_status.value
    profile.verified_at = (
        datetime.now(timezone.utc) if verification_status == VerificationStatus.VERIFIED else None
    )
    db.add(profile)
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action=f"settlement_profile.{verification_status.value}",
        resource_type="settlement_profile",
        resource_id=str(profile.id),
        old_value=old_snapshot,
        new_value=masked_snapshot(profile),
    )
    await db.commit()
    logger.info("Settlement profile for employee %s marked %s", employee_id, verification_status.value)
    return profile
