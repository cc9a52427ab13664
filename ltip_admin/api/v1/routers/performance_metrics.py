from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ltip_admin.api import deps
from ltip_admin.db.session import get_db
from ltip_admin.schemas.vesting import PerformanceMetricCreate, PerformanceMetricOut
from ltip_admin.services import vesting_templates

router = APIRouter(prefix="/performance-metrics", tags=["performance-metrics"])


@router.get("", response_model=list[PerformanceMetricOut], summary="List performance metrics")
async def list_metrics(
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> list[PerformanceMetricOut]:
    metrics = await vesting_templates.list_metrics(db, ctx)
    return [PerformanceMetricOut.model_validate(metric) for metric in metrics]


@router.post(
    "",
    response_model=PerformanceMetricOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a performance metric",
)
async def create_metric(
    payload: PerformanceMetricCreate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    actor_id: UUID | None = Depends(deps.get_actor_id),
    db: AsyncSession = Depends(get_db),
) -> PerformanceMetricOut:
    metric = await vesting_templates.create_metric(db, ctx, payload, actor_id=actor_id)
    return PerformanceMetricOut.model_validate(metric)


@router.get("/{metric_id}", response_model=PerformanceMetricOut, summary="Get a performance metric")
async def get_metric(
    metric_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> PerformanceMetricOut:
    metric = await vesting_templates.get_metric(db, ctx, metric_id)
    if not metric:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Performance metric not found")
    return PerformanceMetricOut.model_validate(metric)
