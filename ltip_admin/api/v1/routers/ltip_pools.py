from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ltip_admin.api import deps
from ltip_admin.core.errors import to_http_exception
from ltip_admin.db.session import get_db
from ltip_admin.schemas.ltip import LtipPoolCreate, LtipPoolOut, LtipPoolResize
from ltip_admin.services import allocation
from ltip_admin.services.errors import LedgerError

router = APIRouter(prefix="/ltip-pools", tags=["ltip-pools"])


@router.get("", response_model=list[LtipPoolOut], summary="List LTIP pools")
async def list_pools(
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> list[LtipPoolOut]:
    pools = await allocation.list_pools(db, ctx)
    return [LtipPoolOut.model_validate(pool) for pool in pools]


@router.post(
    "",
    response_model=LtipPoolOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create an LTIP pool",
)
async def create_pool(
    payload: LtipPoolCreate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    actor_id: UUID | None = Depends(deps.get_actor_id),
    db: AsyncSession = Depends(get_db),
) -> LtipPoolOut:
    pool = await allocation.create_pool(db, ctx, payload, actor_id=actor_id)
    return LtipPoolOut.model_validate(pool)


@router.get("/{pool_id}", response_model=LtipPoolOut, summary="Get an LTIP pool")
async def get_pool(
    pool_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> LtipPoolOut:
    pool = await allocation.get_pool(db, ctx, pool_id)
    if not pool:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Pool not found")
    return LtipPoolOut.model_validate(pool)


@router.patch(
    "/{pool_id}/allocation",
    response_model=LtipPoolOut,
    summary="Resize an LTIP pool",
)
async def resize_pool(
    pool_id: UUID,
    payload: LtipPoolResize,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    actor_id: UUID | None = Depends(deps.get_actor_id),
    db: AsyncSession = Depends(get_db),
) -> LtipPoolOut:
    try:
        pool = await allocation.resize_pool(
            db, ctx, pool_id, payload.total_shares_allocated, actor_id=actor_id
        )
    except LedgerError as exc:
        raise to_http_exception(exc) from exc
    return LtipPoolOut.model_validate(pool)


@router.delete(
    "/{pool_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an unused LTIP pool",
)
async def delete_pool(
    pool_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    actor_id: UUID | None = Depends(deps.get_actor_id),
    db: AsyncSession = Depends(get_db),
) -> None:
    try:
        await allocation.delete_pool(db, ctx, pool_id, actor_id=actor_id)
    except LedgerError as exc:
        raise to_http_exception(exc) from exc
