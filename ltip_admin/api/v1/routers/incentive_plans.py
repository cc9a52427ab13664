from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ltip_admin.api import deps
from ltip_admin.core.errors import to_http_exception
from ltip_admin.db.session import get_db
from ltip_admin.schemas.ltip import IncentivePlanCreate, IncentivePlanOut, IncentivePlanResize
from ltip_admin.services import allocation
from ltip_admin.services.errors import LedgerError

router = APIRouter(prefix="/incentive-plans", tags=["incentive-plans"])


@router.get("", response_model=list[IncentivePlanOut], summary="List incentive plans")
async def list_plans(
    pool_id: UUID | None = Query(None),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> list[IncentivePlanOut]:
    plans = await allocation.list_plans(db, ctx, pool_id=pool_id)
    return [IncentivePlanOut.model_validate(plan) for plan in plans]


@router.post(
    "",
    response_model=IncentivePlanOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create an incentive plan drawing from a pool",
)
async def create_plan(
    payload: IncentivePlanCreate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    actor_id: UUID | None = Depends(deps.get_actor_id),
    db: AsyncSession = Depends(get_db),
) -> IncentivePlanOut:
    try:
        plan = await allocation.create_plan(db, ctx, payload, actor_id=actor_id)
    except LedgerError as exc:
        raise to_http_exception(exc) from exc
    return IncentivePlanOut.model_validate(plan)


@router.get("/{plan_id}", response_model=IncentivePlanOut, summary="Get an incentive plan")
async def get_plan(
    plan_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> IncentivePlanOut:
    plan = await allocation.get_plan(db, ctx, plan_id)
    if not plan:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Plan not found")
    return IncentivePlanOut.model_validate(plan)


@router.patch(
    "/{plan_id}/allocation",
    response_model=IncentivePlanOut,
    summary="Resize an incentive plan",
)
async def resize_plan(
    plan_id: UUID,
    payload: IncentivePlanResize,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    actor_id: UUID | None = Depends(deps.get_actor_id),
    db: AsyncSession = Depends(get_db),
) -> IncentivePlanOut:
    try:
        plan = await allocation.resize_plan(
            db, ctx, plan_id, payload.total_shares_allocated, actor_id=actor_id
        )
    except LedgerError as exc:
        raise to_http_exception(exc) from exc
    return IncentivePlanOut.model_validate(plan)


@router.delete(
    "/{plan_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an incentive plan with no grants",
)
async def delete_plan(
    plan_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    actor_id: UUID | None = Depends(deps.get_actor_id),
    db: AsyncSession = Depends(get_db),
) -> None:
    try:
        await allocation.delete_plan(db, ctx, plan_id, actor_id=actor_id)
    except LedgerError as exc:
        raise to_http_exception(exc) from exc
