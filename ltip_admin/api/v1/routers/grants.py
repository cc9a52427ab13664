from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ltip_admin.api import deps
from ltip_admin.core.errors import to_http_exception
from ltip_admin.db.session import get_db
from ltip_admin.schemas.ltip import GrantAcceptance, GrantCreate, GrantOut
from ltip_admin.schemas.vesting import (
    AccelerationRequest,
    EventClosureRequest,
    GenerateEventsRequest,
    GenerationResult,
    GrantForfeitResult,
    GrantRollup,
    VestingEventOut,
)
from ltip_admin.services import allocation, ledger_stats, vesting_events, vesting_schedule
from ltip_admin.services.errors import LedgerError

router = APIRouter(prefix="/grants", tags=["grants"])


@router.get("", response_model=list[GrantOut], summary="List grants")
async def list_grants(
    plan_id: UUID | None = Query(None),
    employee_id: UUID | None = Query(None),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> list[GrantOut]:
    grants = await allocation.list_grants(db, ctx, plan_id=plan_id, employee_id=employee_id)
    return [GrantOut.model_validate(grant) for grant in grants]


@router.post(
    "",
    response_model=GrantOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a grant and materialize its vesting events",
)
async def create_grant(
    payload: GrantCreate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    actor_id: UUID | None = Depends(deps.get_actor_id),
    db: AsyncSession = Depends(get_db),
) -> GrantOut:
    try:
        grant = await allocation.create_grant(db, ctx, payload, actor_id=actor_id)
    except LedgerError as exc:
        raise to_http_exception(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return GrantOut.model_validate(grant)


@router.post(
    "/vesting-events/generate",
    response_model=GenerationResult,
    summary="Backfill vesting events for active grants without any",
)
async def generate_missing_events(
    payload: GenerateEventsRequest,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> GenerationResult:
    return await vesting_schedule.generate_missing_vesting_events(db, ctx, payload.grant_ids)


@router.get("/{grant_id}", response_model=GrantOut, summary="Get a grant")
async def get_grant(
    grant_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> GrantOut:
    grant = await allocation.get_grant(db, ctx, grant_id)
    if not grant:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Grant not found")
    return GrantOut.model_validate(grant)


@router.delete(
    "/{grant_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a grant with no settled events",
)
async def delete_grant(
    grant_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    actor_id: UUID | None = Depends(deps.get_actor_id),
    db: AsyncSession = Depends(get_db),
) -> None:
    try:
        await allocation.delete_grant(db, ctx, grant_id, actor_id=actor_id)
    except LedgerError as exc:
        raise to_http_exception(exc) from exc


@router.post(
    "/{grant_id}/acceptance",
    response_model=GrantOut,
    summary="Record the employee's contract acceptance",
)
async def accept_grant(
    grant_id: UUID,
    payload: GrantAcceptance,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    actor_id: UUID | None = Depends(deps.get_actor_id),
    db: AsyncSession = Depends(get_db),
) -> GrantOut:
    try:
        grant = await allocation.record_employee_acceptance(
            db, ctx, grant_id, payload.accepted_at, actor_id=actor_id
        )
    except LedgerError as exc:
        raise to_http_exception(exc) from exc
    return GrantOut.model_validate(grant)


@router.post(
    "/{grant_id}/forfeit",
    response_model=GrantForfeitResult,
    summary="Forfeit every open vesting event of a grant",
)
async def forfeit_grant(
    grant_id: UUID,
    payload: EventClosureRequest,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    actor_id: UUID | None = Depends(deps.get_actor_id),
    db: AsyncSession = Depends(get_db),
) -> GrantForfeitResult:
    try:
        count = await vesting_events.forfeit_grant(db, ctx, grant_id, payload.reason, actor_id=actor_id)
    except LedgerError as exc:
        raise to_http_exception(exc) from exc
    return GrantForfeitResult(grant_id=grant_id, forfeited_events=count)


@router.post(
    "/{grant_id}/accelerate",
    response_model=VestingEventOut,
    status_code=status.HTTP_201_CREATED,
    summary="Pull a percentage of the open tranches forward into a due acceleration event",
)
async def accelerate_grant(
    grant_id: UUID,
    payload: AccelerationRequest,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    actor_id: UUID | None = Depends(deps.get_actor_id),
    db: AsyncSession = Depends(get_db),
) -> VestingEventOut:
    try:
        event = await vesting_events.accelerate_grant(
            db,
            ctx,
            grant_id,
            payload.percentage,
            payload.reason,
            as_of=payload.as_of,
            actor_id=actor_id,
        )
    except LedgerError as exc:
        raise to_http_exception(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return VestingEventOut.model_validate(event)


@router.get(
    "/{grant_id}/vesting-events",
    response_model=list[VestingEventOut],
    summary="List a grant's vesting events",
)
async def list_grant_events(
    grant_id: UUID,
    as_of: date | None = Query(None),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> list[VestingEventOut]:
    events = await vesting_events.list_events(db, ctx, grant_id=grant_id, as_of=as_of)
    return [VestingEventOut.model_validate(event) for event in events]


@router.get(
    "/{grant_id}/rollup",
    response_model=GrantRollup,
    summary="Vested, unvested and excluded shares of a grant",
)
async def grant_rollup(
    grant_id: UUID,
    as_of: date | None = Query(None),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> GrantRollup:
    try:
        return await ledger_stats.get_grant_rollup(db, ctx, grant_id, as_of)
    except LedgerError as exc:
        raise to_http_exception(exc) from exc
