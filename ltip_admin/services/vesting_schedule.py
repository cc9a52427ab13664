from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Sequence
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ltip_admin.api import deps
from ltip_admin.core.settings import settings
from ltip_admin.models.grant import Grant
from ltip_admin.models.incentive_plan import IncentivePlan
from ltip_admin.models.vesting_event import VestingEvent
from ltip_admin.models.vesting_schedule import VestingMilestone, VestingSchedule
from ltip_admin.schemas.vesting import GenerationResult, VestingEventType

logger = logging.getLogger(__name__)

FREQUENCY_MONTHS = {"monthly": 1, "quarterly": 3, "annually": 12}

_PLAN_EVENT_TYPES = {
    "time_based": VestingEventType.TIME_BASED.value,
    "performance_based": VestingEventType.PERFORMANCE.value,
    "hybrid": VestingEventType.HYBRID.value,
}


@dataclass(frozen=True)
class MilestoneSpec:
    sequence_order: int
    vesting_percentage: Decimal
    months_from_start: int
    milestone_type: str = "time"
    milestone_id: UUID | None = None
    performance_metric_id: UUID | None = None


@dataclass(frozen=True)
class ScheduleParameters:
    duration_months: int
    cliff_months: int
    frequency: str
    milestones: tuple[MilestoneSpec, ...] = ()
    source: str = "defaults"


@dataclass(frozen=True)
class PlannedEvent:
    sequence_number: int
    vesting_date: date
    shares_to_vest: int
    cumulative_shares_vested: int
    event_type: str
    performance_metric_id: UUID | None = None
    vesting_milestone_id: UUID | None = None


def add_months(start: date, months: int) -> date:
    """Calendar month arithmetic, clamping the day to the target month's length."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(start.day, last_day))


def frequency_months(frequency: str | None) -> int:
    key = (frequency or "annually").lower()
    if key not in FREQUENCY_MONTHS:
        raise ValueError(f"Unsupported vesting frequency: {frequency}")
    return FREQUENCY_MONTHS[key]


def default_parameters() -> ScheduleParameters:
    return ScheduleParameters(
        duration_months=settings.default_vesting_duration_months,
        cliff_months=settings.default_cliff_months,
        frequency=settings.default_vesting_frequency,
    )


def parameters_from_config(config: dict) -> ScheduleParameters:
    defaults = default_parameters()
    duration = config.get("duration_months")
    cliff = config.get("cliff_months")
    return ScheduleParameters(
        duration_months=int(duration) if duration is not None else defaults.duration_months,
        cliff_months=int(cliff) if cliff is not None else defaults.cliff_months,
        frequency=config.get("frequency") or defaults.frequency,
        source="plan_config",
    )


def parameters_from_template(
    schedule: VestingSchedule,
    milestones: Iterable[VestingMilestone] = (),
    *,
    source: str = "template",
) -> ScheduleParameters:
    specs = tuple(
        MilestoneSpec(
            sequence_order=int(m.sequence_order),
            vesting_percentage=Decimal(m.vesting_percentage),
            months_from_start=int(m.months_from_start),
            milestone_type=m.milestone_type or "time",
            milestone_id=m.id,
            performance_metric_id=m.performance_metric_id,
        )
        for m in sorted(milestones, key=lambda m: m.sequence_order)
    )
    return ScheduleParameters(
        duration_months=int(schedule.total_duration_months),
        cliff_months=int(schedule.cliff_months or 0),
        frequency=schedule.vesting_frequency or "annually",
        milestones=specs,
        source=source,
    )


def validate_parameters(params: ScheduleParameters) -> None:
    if params.milestones:
        for milestone in params.milestones:
            if not Decimal("0") <= milestone.vesting_percentage <= Decimal("100"):
                raise ValueError(
                    f"Milestone {milestone.sequence_order} percentage must be between 0 and 100 "
                    f"(got {milestone.vesting_percentage})"
                )
        total_pct = sum((m.vesting_percentage for m in params.milestones), Decimal("0"))
        if total_pct != Decimal("100"):
            raise ValueError(f"Milestone percentages must total 100 (got {total_pct})")
        return
    if params.duration_months <= 0:
        raise ValueError("Vesting duration must be at least one month")
    if params.cliff_months < 0 or params.cliff_months > params.duration_months:
        raise ValueError("Cliff must be between zero and the vesting duration")
    frequency_months(params.frequency)


def _periodic_event_type(schedule_type: str | None) -> str:
    return _PLAN_EVENT_TYPES.get(schedule_type or "time_based", VestingEventType.TIME_BASED.value)


def _config_schedule(
    total_shares: int,
    start_date: date,
    params: ScheduleParameters,
    schedule_type: str | None,
) -> list[PlannedEvent]:
    duration = params.duration_months
    cliff = params.cliff_months
    step = frequency_months(params.frequency)
    periodic_type = _periodic_event_type(schedule_type)

    events: list[PlannedEvent] = []
    cumulative = 0

    cliff_shares = 0
    if cliff > 0:
        cliff_shares = total_shares * cliff // duration
        cumulative = cliff_shares
        events.append(
            PlannedEvent(
                sequence_number=1,
                vesting_date=add_months(start_date, cliff),
                shares_to_vest=cliff_shares,
                cumulative_shares_vested=cumulative,
                event_type=VestingEventType.CLIFF.value,
            )
        )

    remaining_months = duration - cliff
    periods = -(-remaining_months // step) if remaining_months > 0 else 0
    if periods == 0:
        if events:
            # cliff spans the whole duration
            last = events[-1]
            events[-1] = PlannedEvent(
                sequence_number=last.sequence_number,
                vesting_date=last.vesting_date,
                shares_to_vest=total_shares,
                cumulative_shares_vested=total_shares,
                event_type=last.event_type,
            )
        return events

    remaining_shares = total_shares - cliff_shares
    per_period = remaining_shares // periods
    for index in range(1, periods + 1):
        offset = min(cliff + index * step, duration)
        shares = per_period
        if index == periods:
            shares = remaining_shares - per_period * (periods - 1)
        cumulative += shares
        events.append(
            PlannedEvent(
                sequence_number=len(events) + 1,
                vesting_date=add_months(start_date, offset),
                shares_to_vest=shares,
                cumulative_shares_vested=cumulative,
                event_type=periodic_type,
            )
        )
    return events


def _milestone_event_type(milestone: MilestoneSpec, schedule_type: str | None) -> str:
    kind = (milestone.milestone_type or "").lower()
    if kind == "cliff":
        return VestingEventType.CLIFF.value
    if kind == "performance" or milestone.performance_metric_id is not None:
        if schedule_type == "hybrid":
            return VestingEventType.HYBRID.value
        return VestingEventType.PERFORMANCE.value
    return _periodic_event_type(schedule_type)


def _milestone_schedule(
    total_shares: int,
    start_date: date,
    milestones: Sequence[MilestoneSpec],
    schedule_type: str | None,
) -> list[PlannedEvent]:
    events: list[PlannedEvent] = []
    allocated = 0
    last_index = len(milestones) - 1
    for index, milestone in enumerate(milestones):
        if index == last_index:
            shares = total_shares - allocated
        else:
            shares = int(Decimal(total_shares) * milestone.vesting_percentage // Decimal(100))
        allocated += shares
        events.append(
            PlannedEvent(
                sequence_number=index + 1,
                vesting_date=add_months(start_date, milestone.months_from_start),
                shares_to_vest=shares,
                cumulative_shares_vested=allocated,
                event_type=_milestone_event_type(milestone, schedule_type),
                performance_metric_id=milestone.performance_metric_id,
                vesting_milestone_id=milestone.milestone_id,
            )
        )
    return events


def build_schedule(
    total_shares: int,
    start_date: date,
    params: ScheduleParameters,
    schedule_type: str | None = "time_based",
) -> list[PlannedEvent]:
    """Expand vesting parameters into ordered events whose shares sum to ``total_shares``.

    Per-event shares are floored; the final event absorbs the remainder so the
    schedule never rounds up past the grant total.
    """
    if total_shares < 0:
        raise ValueError("total_shares cannot be negative")
    validate_parameters(params)
    if params.milestones:
        return _milestone_schedule(total_shares, start_date, params.milestones, schedule_type)
    return _config_schedule(total_shares, start_date, params, schedule_type)


async def _load_template(
    db: AsyncSession, ctx: deps.TenantContext, schedule_id: UUID | None, *, source: str
) -> ScheduleParameters | None:
    if schedule_id is None:
        return None
    stmt = select(VestingSchedule).where(
        VestingSchedule.id == schedule_id, VestingSchedule.org_id == ctx.org_id
    )
    result = await db.execute(stmt)
    schedule = result.scalar_one_or_none()
    if schedule is None:
        return None
    milestone_stmt = select(VestingMilestone).where(
        VestingMilestone.vesting_schedule_id == schedule.id,
        VestingMilestone.org_id == ctx.org_id,
    )
    milestone_result = await db.execute(milestone_stmt)
    return parameters_from_template(schedule, milestone_result.scalars().all(), source=source)


async def resolve_parameters(
    db: AsyncSession, ctx: deps.TenantContext, grant: Grant, plan: IncentivePlan
) -> ScheduleParameters:
    """Grant template, then plan template, then plan config, then configured defaults."""
    params = await _load_template(db, ctx, grant.vesting_schedule_id, source="grant_template")
    if params is not None:
        return params
    params = await _load_template(db, ctx, plan.vesting_schedule_id, source="plan_template")
    if params is not None:
        return params
    if plan.vesting_config:
        return parameters_from_config(plan.vesting_config)
    return default_parameters()


def planned_to_model(
    ctx: deps.TenantContext, grant: Grant, planned: PlannedEvent
) -> VestingEvent:
    return VestingEvent(
        id=uuid4(),
        org_id=ctx.org_id,
        grant_id=grant.id,
        employee_id=grant.employee_id,
        sequence_number=planned.sequence_number,
        vesting_date=planned.vesting_date,
        shares_to_vest=planned.shares_to_vest,
        cumulative_shares_vested=planned.cumulative_shares_vested,
        event_type=planned.event_type,
        status="pending",
        performance_metric_id=planned.performance_metric_id,
        vesting_milestone_id=planned.vesting_milestone_id,
        performance_condition_met=False,
        performance_notes=None,
        exercise_price=grant.exercise_price,
        total_exercise_cost=None,
        processed_at=None,
        processed_by=None,
    )


async def materialize_events(
    db: AsyncSession, ctx: deps.TenantContext, grant: Grant, plan: IncentivePlan
) -> list[VestingEvent]:
    """Stage the grant's full event batch on ``db``; the caller commits."""
    params = await resolve_parameters(db, ctx, grant, plan)
    planned = build_schedule(
        int(grant.total_shares),
        grant.vesting_start_date,
        params,
        plan.vesting_schedule_type,
    )
    events = [planned_to_model(ctx, grant, item) for item in planned]
    for event in events:
        db.add(event)
    logger.info(
        "Materialized %s vesting events for grant %s from %s",
        len(events),
        grant.id,
        params.source,
    )
    return events


async def generate_missing_vesting_events(
    db: AsyncSession,
    ctx: deps.TenantContext,
    grant_ids: list[UUID] | None = None,
) -> GenerationResult:
    """Backfill events for active grants that have none."""
    stmt = select(Grant).where(Grant.org_id == ctx.org_id, Grant.status == "active")
    if grant_ids:
        stmt = stmt.where(Grant.id.in_(grant_ids))
    grants = (await db.execute(stmt)).scalars().all()

    outcome = GenerationResult(total_grants=len(grants))
    for grant in grants:
        existing_stmt = select(VestingEvent).where(
            VestingEvent.org_id == ctx.org_id, VestingEvent.grant_id == grant.id
        )
        if (await db.execute(existing_stmt)).scalars().first() is not None:
            outcome.skipped += 1
            continue
        plan_stmt = select(IncentivePlan).where(
            IncentivePlan.id == grant.plan_id, IncentivePlan.org_id == ctx.org_id
        )
        plan = (await db.execute(plan_stmt)).scalar_one_or_none()
        if plan is None:
            outcome.errors += 1
            outcome.error_details.append(f"Grant {grant.grant_number}: plan not found")
            continue
        try:
            await materialize_events(db, ctx, grant, plan)
        except ValueError as exc:
            outcome.errors += 1
            outcome.error_details.append(f"Grant {grant.grant_number}: {exc}")
            continue
        outcome.processed += 1

    if outcome.processed:
        await db.commit()
    return outcome
