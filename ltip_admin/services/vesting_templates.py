from __future__ import annotations

import logging
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ltip_admin.api import deps
from ltip_admin.models.performance_metric import PerformanceMetric
from ltip_admin.models.vesting_schedule import VestingMilestone, VestingSchedule
from ltip_admin.schemas.vesting import PerformanceMetricCreate, VestingScheduleCreate
from ltip_admin.services.audit import model_snapshot, record_audit_log
from ltip_admin.services.errors import NotFound
from ltip_admin.services.vesting_schedule import MilestoneSpec, ScheduleParameters, validate_parameters

logger = logging.getLogger(__name__)


# Performance metrics


async def list_metrics(db: AsyncSession, ctx: deps.TenantContext) -> list[PerformanceMetric]:
    stmt = select(PerformanceMetric).where(PerformanceMetric.org_id == ctx.org_id).order_by(PerformanceMetric.name)
    return list((await db.execute(stmt)).scalars().all())


async def get_metric(
    db: AsyncSession, ctx: deps.TenantContext, metric_id: UUID
) -> PerformanceMetric | None:
    stmt = select(PerformanceMetric).where(
        PerformanceMetric.id == metric_id, PerformanceMetric.org_id == ctx.org_id
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def create_metric(
    db: AsyncSession,
    ctx: deps.TenantContext,
    payload: PerformanceMetricCreate,
    *,
    actor_id=None,
) -> PerformanceMetric:
    metric = PerformanceMetric(
        id=uuid4(),
        org_id=ctx.org_id,
        name=payload.name,
        description=payload.description,
        metric_type=payload.metric_type,
        unit_of_measure=payload.unit_of_measure,
        target_value=payload.target_value,
        actual_value=None,
        is_achieved=False,
        achieved_at=None,
        confirmation_notes=None,
    )
    db.add(metric)
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="performance_metric.created",
        resource_type="performance_metric",
        resource_id=str(metric.id),
        new_value=model_snapshot(metric),
    )
    await db.commit()
    return metric


# Schedule templates


def template_parameters(payload: VestingScheduleCreate) -> ScheduleParameters:
    """Reject a template whose milestones or periodic terms could never materialize."""
    orders = [milestone.sequence_order for milestone in payload.milestones]
    if len(orders) != len(set(orders)):
        raise ValueError("Milestone sequence_order values must be unique")
    params = ScheduleParameters(
        duration_months=payload.total_duration_months,
        cliff_months=payload.cliff_months,
        frequency=payload.vesting_frequency.value,
        milestones=tuple(
            MilestoneSpec(
                sequence_order=milestone.sequence_order,
                vesting_percentage=milestone.vesting_percentage,
                months_from_start=milestone.months_from_start,
                milestone_type=milestone.milestone_type.value,
                performance_metric_id=milestone.performance_metric_id,
            )
            for milestone in sorted(payload.milestones, key=lambda m: m.sequence_order)
        ),
        source="template",
    )
    validate_parameters(params)
    return params


async def list_schedule_templates(db: AsyncSession, ctx: deps.TenantContext) -> list[VestingSchedule]:
    stmt = select(VestingSchedule).where(VestingSchedule.org_id == ctx.org_id).order_by(VestingSchedule.name)
    return [schedule for schedule in (await db.execute(stmt)).scalars().all() if schedule.is_template]


async def get_schedule_template(
    db: AsyncSession, ctx: deps.TenantContext, schedule_id: UUID
) -> tuple[VestingSchedule, list[VestingMilestone]] | None:
    stmt = select(VestingSchedule).where(
        VestingSchedule.id == schedule_id, VestingSchedule.org_id == ctx.org_id
    )
    schedule = (await db.execute(stmt)).scalar_one_or_none()
    if schedule is None:
        return None
    milestone_stmt = select(VestingMilestone).where(
        VestingMilestone.org_id == ctx.org_id,
        VestingMilestone.vesting_schedule_id == schedule.id,
    )
    milestones = sorted(
        (await db.execute(milestone_stmt)).scalars().all(),
        key=lambda m: m.sequence_order,
    )
    return schedule, milestones


async def create_schedule_template(
    db: AsyncSession,
    ctx: deps.TenantContext,
    payload: VestingScheduleCreate,
    *,
    actor_id=None,
) -> tuple[VestingSchedule, list[VestingMilestone]]:
    template_parameters(payload)
    metric_ids = list(
        dict.fromkeys(m.performance_metric_id for m in payload.milestones if m.performance_metric_id)
    )
    if metric_ids:
        stmt = select(PerformanceMetric).where(
            PerformanceMetric.org_id == ctx.org_id, PerformanceMetric.id.in_(metric_ids)
        )
        found = {metric.id for metric in (await db.execute(stmt)).scalars().all()}
        missing = [str(mid) for mid in metric_ids if mid not in found]
        if missing:
            raise NotFound("Performance metric not found", performance_metric_ids=missing)

    schedule = VestingSchedule(
        id=uuid4(),
        org_id=ctx.org_id,
        name=payload.name,
        description=payload.description,
        schedule_type=payload.schedule_type.value,
        total_duration_months=payload.total_duration_months,
        cliff_months=payload.cliff_months,
        vesting_frequency=payload.vesting_frequency.value,
        is_template=True,
    )
    db.add(schedule)
    milestones = []
    for item in sorted(payload.milestones, key=lambda m: m.sequence_order):
        milestone = VestingMilestone(
            id=uuid4(),
            org_id=ctx.org_id,
            vesting_schedule_id=schedule.id,
            milestone_type=item.milestone_type.value,
            sequence_order=item.sequence_order,
            vesting_percentage=item.vesting_percentage,
            months_from_start=item.months_from_start,
            performance_metric_id=item.performance_metric_id,
            target_value=item.target_value,
            actual_value=None,
            is_achieved=False,
            achieved_at=None,
        )
        db.add(milestone)
        milestones.append(milestone)

    new_value = model_snapshot(schedule)
    new_value["milestones"] = [model_snapshot(milestone) for milestone in milestones]
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="vesting_schedule.created",
        resource_type="vesting_schedule",
        resource_id=str(schedule.id),
        new_value=new_value,
    )
    await db.commit()
    logger.info("Created vesting schedule template %s with %s milestones", schedule.id, len(milestones))
    return schedule, milestones
