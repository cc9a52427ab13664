from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ltip_admin.api import deps
from ltip_admin.models.grant import Grant
from ltip_admin.models.incentive_plan import IncentivePlan
from ltip_admin.models.ltip_pool import LtipPool
from ltip_admin.models.performance_metric import GrantPerformanceMetric, PerformanceMetric
from ltip_admin.models.vesting_event import VestingEvent
from ltip_admin.models.vesting_schedule import VestingSchedule
from ltip_admin.schemas.ltip import (
    GrantCreate,
    GrantStatus,
    IncentivePlanCreate,
    LtipPoolCreate,
    PlanType,
    PoolStatus,
)
from ltip_admin.services import vesting_schedule
from ltip_admin.services.audit import model_snapshot, record_audit_log
from ltip_admin.services.errors import (
    BelowConsumedFloor,
    GrantHasSettledEvents,
    InsufficientPlanCapacity,
    InsufficientPoolCapacity,
    NotFound,
    PlanInUse,
    PoolInUse,
)

logger = logging.getLogger(__name__)

SETTLED_EVENT_STATUSES = ("vested", "exercised", "transferred")


# Pure capacity arithmetic


def check_plan_capacity(requested: int, pool_available: int, *, pool_id=None) -> None:
    if requested > pool_available:
        raise InsufficientPoolCapacity(requested=requested, available=pool_available, pool_id=pool_id)


def check_plan_resize(
    new_total: int,
    *,
    current_total: int,
    shares_granted: int,
    pool_available: int,
    pool_id=None,
) -> None:
    if new_total < shares_granted:
        raise BelowConsumedFloor(requested=new_total, floor=shares_granted, resource="plan")
    # the plan's own allocation returns to the pool before the new total is drawn
    headroom = pool_available + current_total
    if new_total > headroom:
        raise InsufficientPoolCapacity(requested=new_total, available=headroom, pool_id=pool_id)


def check_pool_resize(new_total: int, *, shares_used: int) -> None:
    if new_total < shares_used:
        raise BelowConsumedFloor(requested=new_total, floor=shares_used, resource="pool")


def check_grant_capacity(requested: int, plan_available: int, *, plan_id=None) -> None:
    if requested > plan_available:
        raise InsufficientPlanCapacity(requested=requested, available=plan_available, plan_id=plan_id)


def _pool_status(pool: LtipPool, available: int) -> str:
    if pool.status == PoolStatus.INACTIVE.value:
        return pool.status
    if available <= 0 and int(pool.total_shares_allocated) > 0:
        return PoolStatus.EXHAUSTED.value
    return PoolStatus.ACTIVE.value


# Loaders


async def get_pool(db: AsyncSession, ctx: deps.TenantContext, pool_id: UUID) -> LtipPool | None:
    stmt = select(LtipPool).where(LtipPool.id == pool_id, LtipPool.org_id == ctx.org_id)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_plan(db: AsyncSession, ctx: deps.TenantContext, plan_id: UUID) -> IncentivePlan | None:
    stmt = select(IncentivePlan).where(IncentivePlan.id == plan_id, IncentivePlan.org_id == ctx.org_id)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_grant(db: AsyncSession, ctx: deps.TenantContext, grant_id: UUID) -> Grant | None:
    stmt = select(Grant).where(Grant.id == grant_id, Grant.org_id == ctx.org_id)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def list_pools(db: AsyncSession, ctx: deps.TenantContext) -> list[LtipPool]:
    stmt = select(LtipPool).where(LtipPool.org_id == ctx.org_id).order_by(LtipPool.pool_code)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def list_plans(
    db: AsyncSession, ctx: deps.TenantContext, *, pool_id: UUID | None = None
) -> list[IncentivePlan]:
    stmt = select(IncentivePlan).where(IncentivePlan.org_id == ctx.org_id)
    if pool_id is not None:
        stmt = stmt.where(IncentivePlan.ltip_pool_id == pool_id)
    result = await db.execute(stmt.order_by(IncentivePlan.plan_code))
    return list(result.scalars().all())


async def list_grants(
    db: AsyncSession,
    ctx: deps.TenantContext,
    *,
    plan_id: UUID | None = None,
    employee_id: UUID | None = None,
) -> list[Grant]:
    stmt = select(Grant).where(Grant.org_id == ctx.org_id)
    if plan_id is not None:
        stmt = stmt.where(Grant.plan_id == plan_id)
    if employee_id is not None:
        stmt = stmt.where(Grant.employee_id == employee_id)
    result = await db.execute(stmt.order_by(Grant.grant_date.desc()))
    return list(result.scalars().all())


async def _require_pool(db: AsyncSession, ctx: deps.TenantContext, pool_id: UUID) -> LtipPool:
    pool = await get_pool(db, ctx, pool_id)
    if pool is None:
        raise NotFound("Pool not found", pool_id=str(pool_id))
    return pool


async def _require_plan(db: AsyncSession, ctx: deps.TenantContext, plan_id: UUID) -> IncentivePlan:
    plan = await get_plan(db, ctx, plan_id)
    if plan is None:
        raise NotFound("Plan not found", plan_id=str(plan_id))
    return plan


async def _require_grant(db: AsyncSession, ctx: deps.TenantContext, grant_id: UUID) -> Grant:
    grant = await get_grant(db, ctx, grant_id)
    if grant is None:
        raise NotFound("Grant not found", grant_id=str(grant_id))
    return grant


async def _require_schedule(
    db: AsyncSession, ctx: deps.TenantContext, schedule_id: UUID | None
) -> None:
    if schedule_id is None:
        return
    stmt = select(VestingSchedule).where(
        VestingSchedule.org_id == ctx.org_id, VestingSchedule.id == schedule_id
    )
    if (await db.execute(stmt)).scalar_one_or_none() is None:
        raise NotFound("Vesting schedule not found", vesting_schedule_id=str(schedule_id))


async def _plans_for_pool(db: AsyncSession, ctx: deps.TenantContext, pool_id: UUID) -> list[IncentivePlan]:
    stmt = select(IncentivePlan).where(
        IncentivePlan.org_id == ctx.org_id, IncentivePlan.ltip_pool_id == pool_id
    )
    return list((await db.execute(stmt)).scalars().all())


async def _grants_for_plan(db: AsyncSession, ctx: deps.TenantContext, plan_id: UUID) -> list[Grant]:
    stmt = select(Grant).where(Grant.org_id == ctx.org_id, Grant.plan_id == plan_id)
    return list((await db.execute(stmt)).scalars().all())


async def _pool_available(db: AsyncSession, ctx: deps.TenantContext, pool: LtipPool) -> int:
    used = sum(int(plan.total_shares_allocated) for plan in await _plans_for_pool(db, ctx, pool.id))
    return int(pool.total_shares_allocated) - used


# Derived counters


async def recompute_pool(db: AsyncSession, ctx: deps.TenantContext, pool: LtipPool) -> LtipPool:
    plans = await _plans_for_pool(db, ctx, pool.id)
    used = sum(int(plan.total_shares_allocated) for plan in plans)
    available = int(pool.total_shares_allocated) - used
    pool.shares_used = used
    pool.shares_available = available
    pool.status = _pool_status(pool, available)
    db.add(pool)
    return pool


async def recompute_plan(db: AsyncSession, ctx: deps.TenantContext, plan: IncentivePlan) -> IncentivePlan:
    grants = await _grants_for_plan(db, ctx, plan.id)
    granted = sum(int(grant.total_shares) for grant in grants)
    plan.shares_granted = granted
    plan.shares_available = int(plan.total_shares_allocated) - granted
    db.add(plan)
    return plan


# Pools


async def create_pool(
    db: AsyncSession,
    ctx: deps.TenantContext,
    payload: LtipPoolCreate,
    *,
    actor_id=None,
) -> LtipPool:
    pool = LtipPool(
        id=uuid4(),
        org_id=ctx.org_id,
        pool_code=payload.pool_code,
        pool_name=payload.pool_name,
        description=payload.description,
        pool_type=payload.pool_type.value,
        total_shares_allocated=payload.total_shares_allocated,
        shares_used=0,
        shares_available=payload.total_shares_allocated,
        status=PoolStatus.ACTIVE.value,
    )
    pool.status = _pool_status(pool, payload.total_shares_allocated)
    db.add(pool)
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="ltip_pool.created",
        resource_type="ltip_pool",
        resource_id=str(pool.id),
        new_value=model_snapshot(pool),
    )
    await db.commit()
    await db.refresh(pool)
    return pool


async def resize_pool(
    db: AsyncSession,
    ctx: deps.TenantContext,
    pool_id: UUID,
    new_total: int,
    *,
    actor_id=None,
) -> LtipPool:
    pool = await _require_pool(db, ctx, pool_id)
    used = int(pool.total_shares_allocated) - await _pool_available(db, ctx, pool)
    check_pool_resize(new_total, shares_used=used)

    old_snapshot = model_snapshot(pool)
    pool.total_shares_allocated = new_total
    await recompute_pool(db, ctx, pool)
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="ltip_pool.resized",
        resource_type="ltip_pool",
        resource_id=str(pool.id),
        old_value=old_snapshot,
        new_value=model_snapshot(pool),
    )
    await db.commit()
    await db.refresh(pool)
    return pool


async def delete_pool(
    db: AsyncSession,
    ctx: deps.TenantContext,
    pool_id: UUID,
    *,
    actor_id=None,
) -> None:
    pool = await _require_pool(db, ctx, pool_id)
    plans = await _plans_for_pool(db, ctx, pool.id)
    if plans:
        raise PoolInUse(pool_id=pool.id, plan_count=len(plans))
    old_snapshot = model_snapshot(pool)
    await db.delete(pool)
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="ltip_pool.deleted",
        resource_type="ltip_pool",
        resource_id=str(pool_id),
        old_value=old_snapshot,
    )
    await db.commit()


# Plans


async def create_plan(
    db: AsyncSession,
    ctx: deps.TenantContext,
    payload: IncentivePlanCreate,
    *,
    actor_id=None,
) -> IncentivePlan:
    pool = await _require_pool(db, ctx, payload.ltip_pool_id)
    await _require_schedule(db, ctx, payload.vesting_schedule_id)
    available = await _pool_available(db, ctx, pool)
    check_plan_capacity(payload.total_shares_allocated, available, pool_id=pool.id)

    plan = IncentivePlan(
        id=uuid4(),
        org_id=ctx.org_id,
        ltip_pool_id=pool.id,
        plan_code=payload.plan_code,
        plan_name=payload.plan_name,
        description=payload.description,
        plan_type=payload.plan_type.value,
        vesting_schedule_type=payload.vesting_schedule_type.value,
        vesting_config=payload.vesting_config.model_dump(mode="json") if payload.vesting_config else None,
        vesting_schedule_id=payload.vesting_schedule_id,
        exercise_price=payload.exercise_price,
        total_shares_allocated=payload.total_shares_allocated,
        shares_granted=0,
        shares_available=payload.total_shares_allocated,
        start_date=payload.start_date,
        end_date=payload.end_date,
        status="active",
        approval_status="approved",
        approved_at=datetime.now(timezone.utc),
    )
    db.add(plan)
    await db.flush()
    await recompute_pool(db, ctx, pool)
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="incentive_plan.created",
        resource_type="incentive_plan",
        resource_id=str(plan.id),
        new_value=model_snapshot(plan),
    )
    await db.commit()
    await db.refresh(plan)
    logger.info(
        "Plan %s drew %s shares from pool %s (%s remaining)",
        plan.plan_code,
        plan.total_shares_allocated,
        pool.pool_code,
        pool.shares_available,
    )
    return plan


async def resize_plan(
    db: AsyncSession,
    ctx: deps.TenantContext,
    plan_id: UUID,
    new_total: int,
    *,
    actor_id=None,
) -> IncentivePlan:
    plan = await _require_plan(db, ctx, plan_id)
    pool = await _require_pool(db, ctx, plan.ltip_pool_id)
    granted = sum(int(grant.total_shares) for grant in await _grants_for_plan(db, ctx, plan.id))
    pool_available = await _pool_available(db, ctx, pool)
    check_plan_resize(
        new_total,
        current_total=int(plan.total_shares_allocated),
        shares_granted=granted,
        pool_available=pool_available,
        pool_id=pool.id,
    )

    old_snapshot = model_snapshot(plan)
    plan.total_shares_allocated = new_total
    await recompute_plan(db, ctx, plan)
    await db.flush()
    await recompute_pool(db, ctx, pool)
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="incentive_plan.resized",
        resource_type="incentive_plan",
        resource_id=str(plan.id),
        old_value=old_snapshot,
        new_value=model_snapshot(plan),
    )
    await db.commit()
    await db.refresh(plan)
    return plan


async def delete_plan(
    db: AsyncSession,
    ctx: deps.TenantContext,
    plan_id: UUID,
    *,
    actor_id=None,
) -> None:
    plan = await _require_plan(db, ctx, plan_id)
    grants = await _grants_for_plan(db, ctx, plan.id)
    if grants:
        raise PlanInUse(plan_id=plan.id, grant_count=len(grants))
    pool = await _require_pool(db, ctx, plan.ltip_pool_id)
    old_snapshot = model_snapshot(plan)
    await db.delete(plan)
    await db.flush()
    await recompute_pool(db, ctx, pool)
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="incentive_plan.deleted",
        resource_type="incentive_plan",
        resource_id=str(plan_id),
        old_value=old_snapshot,
    )
    await db.commit()


# Grants


def _generate_grant_number(grant_date) -> str:
    return f"GR-{grant_date:%Y%m%d}-{uuid4().hex[:6].upper()}"


async def _require_metrics(
    db: AsyncSession, ctx: deps.TenantContext, metric_ids: list[UUID]
) -> None:
    if not metric_ids:
        return
    stmt = select(PerformanceMetric).where(
        PerformanceMetric.org_id == ctx.org_id, PerformanceMetric.id.in_(metric_ids)
    )
    found = {metric.id for metric in (await db.execute(stmt)).scalars().all()}
    missing = [str(mid) for mid in metric_ids if mid not in found]
    if missing:
        raise NotFound("Performance metric not found", performance_metric_ids=missing)


async def create_grant(
    db: AsyncSession,
    ctx: deps.TenantContext,
    payload: GrantCreate,
    *,
    actor_id=None,
) -> Grant:
    plan = await _require_plan(db, ctx, payload.plan_id)
    granted = sum(int(grant.total_shares) for grant in await _grants_for_plan(db, ctx, plan.id))
    check_grant_capacity(
        payload.total_shares,
        int(plan.total_shares_allocated) - granted,
        plan_id=plan.id,
    )
    metric_ids = list(dict.fromkeys(payload.performance_metric_ids))
    await _require_metrics(db, ctx, metric_ids)
    await _require_schedule(db, ctx, payload.vesting_schedule_id)

    exercise_price = payload.exercise_price
    if exercise_price is None and plan.plan_type == PlanType.ESOP.value:
        exercise_price = plan.exercise_price

    status = payload.status.value
    if payload.employee_acceptance_at is not None and status == GrantStatus.PENDING_SIGNATURE.value:
        status = GrantStatus.ACTIVE.value

    grant = Grant(
        id=uuid4(),
        org_id=ctx.org_id,
        plan_id=plan.id,
        employee_id=payload.employee_id,
        grant_number=payload.grant_number or _generate_grant_number(payload.grant_date),
        grant_date=payload.grant_date,
        vesting_start_date=payload.vesting_start_date or payload.grant_date,
        total_shares=payload.total_shares,
        exercise_price=exercise_price,
        status=status,
        employee_acceptance_at=payload.employee_acceptance_at,
        vesting_schedule_id=payload.vesting_schedule_id,
        notes=payload.notes,
    )

    # raises before staging anything when the schedule cannot be built
    events = await vesting_schedule.materialize_events(db, ctx, grant, plan)
    db.add(grant)
    for metric_id in metric_ids:
        db.add(
            GrantPerformanceMetric(
                id=uuid4(),
                org_id=ctx.org_id,
                grant_id=grant.id,
                performance_metric_id=metric_id,
            )
        )
    await db.flush()
    await recompute_plan(db, ctx, plan)
    snapshot = model_snapshot(grant)
    snapshot["vesting_events"] = [
        {
            "sequence_number": event.sequence_number,
            "vesting_date": event.vesting_date.isoformat(),
            "shares_to_vest": int(event.shares_to_vest),
            "event_type": event.event_type,
        }
        for event in events
    ]
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="grant.created",
        resource_type="grant",
        resource_id=str(grant.id),
        new_value=snapshot,
    )
    await db.commit()
    await db.refresh(grant)
    return grant


async def delete_grant(
    db: AsyncSession,
    ctx: deps.TenantContext,
    grant_id: UUID,
    *,
    actor_id=None,
) -> None:
    grant = await _require_grant(db, ctx, grant_id)
    event_stmt = select(VestingEvent).where(
        VestingEvent.org_id == ctx.org_id, VestingEvent.grant_id == grant.id
    )
    events = list((await db.execute(event_stmt)).scalars().all())
    settled = [event for event in events if event.status in SETTLED_EVENT_STATUSES]
    if settled:
        raise GrantHasSettledEvents(grant_id=grant.id, settled_events=len(settled))

    plan = await _require_plan(db, ctx, grant.plan_id)
    link_stmt = select(GrantPerformanceMetric).where(
        GrantPerformanceMetric.org_id == ctx.org_id, GrantPerformanceMetric.grant_id == grant.id
    )
    links = list((await db.execute(link_stmt)).scalars().all())

    old_snapshot = model_snapshot(grant)
    for event in events:
        await db.delete(event)
    for link in links:
        await db.delete(link)
    await db.delete(grant)
    await db.flush()
    await recompute_plan(db, ctx, plan)
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="grant.deleted",
        resource_type="grant",
        resource_id=str(grant_id),
        old_value=old_snapshot,
    )
    await db.commit()


async def record_employee_acceptance(
    db: AsyncSession,
    ctx: deps.TenantContext,
    grant_id: UUID,
    accepted_at: datetime | None = None,
    *,
    actor_id=None,
) -> Grant:
    grant = await _require_grant(db, ctx, grant_id)
    old_snapshot = model_snapshot(grant)
    grant.employee_acceptance_at = accepted_at or datetime.now(timezone.utc)
    if grant.status in (GrantStatus.DRAFT.value, GrantStatus.PENDING_SIGNATURE.value):
        grant.status = GrantStatus.ACTIVE.value
    db.add(grant)
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="grant.accepted",
        resource_type="grant",
        resource_id=str(grant.id),
        old_value=old_snapshot,
        new_value=model_snapshot(grant),
    )
    await db.commit()
    await db.refresh(grant)
    return grant
