from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ltip_admin.api import deps
from ltip_admin.core.errors import to_http_exception
from ltip_admin.db.session import get_db
from ltip_admin.schemas.vesting import (
    VestingMilestoneOut,
    VestingScheduleCreate,
    VestingScheduleDetail,
    VestingScheduleOut,
)
from ltip_admin.services import vesting_templates
from ltip_admin.services.errors import LedgerError

router = APIRouter(prefix="/vesting-schedules", tags=["vesting-schedules"])


def _detail(schedule, milestones) -> VestingScheduleDetail:
    return VestingScheduleDetail(
        **VestingScheduleOut.model_validate(schedule).model_dump(),
        milestones=[VestingMilestoneOut.model_validate(milestone) for milestone in milestones],
    )


@router.get("", response_model=list[VestingScheduleOut], summary="List vesting schedule templates")
async def list_schedules(
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> list[VestingScheduleOut]:
    schedules = await vesting_templates.list_schedule_templates(db, ctx)
    return [VestingScheduleOut.model_validate(schedule) for schedule in schedules]


@router.post(
    "",
    response_model=VestingScheduleDetail,
    status_code=status.HTTP_201_CREATED,
    summary="Create a vesting schedule template with its milestones",
)
async def create_schedule(
    payload: VestingScheduleCreate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    actor_id: UUID | None = Depends(deps.get_actor_id),
    db: AsyncSession = Depends(get_db),
) -> VestingScheduleDetail:
    try:
        schedule, milestones = await vesting_templates.create_schedule_template(
            db, ctx, payload, actor_id=actor_id
        )
    except LedgerError as exc:
        raise to_http_exception(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return _detail(schedule, milestones)


@router.get("/{schedule_id}", response_model=VestingScheduleDetail, summary="Get a vesting schedule template")
async def get_schedule(
    schedule_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> VestingScheduleDetail:
    found = await vesting_templates.get_schedule_template(db, ctx, schedule_id)
    if not found:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Vesting schedule not found")
    return _detail(*found)
