from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterable
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ltip_admin.api import deps
from ltip_admin.core.settings import settings
from ltip_admin.models.grant import Grant
from ltip_admin.models.performance_metric import GrantPerformanceMetric, PerformanceMetric
from ltip_admin.models.vesting_event import VestingEvent
from ltip_admin.models.vesting_schedule import VestingMilestone
from ltip_admin.schemas.ltip import GrantStatus
from ltip_admin.schemas.vesting import (
    PERFORMANCE_EVENT_TYPES,
    MetricConfirmation,
    VestingEventStatus,
    VestingEventType,
)
from ltip_admin.services.audit import model_snapshot, record_audit_log
from ltip_admin.services.errors import (
    AccelerationNotApplicable,
    ContractNotSigned,
    ExerciseNotApplicable,
    ExerciseRequired,
    IncompleteMetricConfirmation,
    InvalidEventTransition,
    NotFound,
    PerformanceNotConfirmed,
)

logger = logging.getLogger(__name__)

PENDING = VestingEventStatus.PENDING.value
DUE = VestingEventStatus.DUE.value
VESTED = VestingEventStatus.VESTED.value
EXERCISED = VestingEventStatus.EXERCISED.value
TRANSFERRED = VestingEventStatus.TRANSFERRED.value
FORFEITED = VestingEventStatus.FORFEITED.value
CANCELLED = VestingEventStatus.CANCELLED.value

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING: frozenset({DUE, FORFEITED, CANCELLED}),
    DUE: frozenset({VESTED, FORFEITED, CANCELLED}),
    VESTED: frozenset({EXERCISED, TRANSFERRED}),
    EXERCISED: frozenset(),
    # only when the transfer that settled the event is voided
    TRANSFERRED: frozenset({VESTED}),
    FORFEITED: frozenset(),
    CANCELLED: frozenset(),
}

OPEN_STATUSES = (PENDING, DUE)


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def ensure_transition(event: VestingEvent, target: str) -> None:
    if not can_transition(event.status, target):
        raise InvalidEventTransition(event_id=event.id, current=event.status, target=target)


def requires_exercise(grant: Grant) -> bool:
    return grant.exercise_price is not None


def is_due(event: VestingEvent, as_of: date) -> bool:
    return event.status == PENDING and event.vesting_date <= as_of


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def get_event(db: AsyncSession, ctx: deps.TenantContext, event_id: UUID) -> VestingEvent | None:
    stmt = select(VestingEvent).where(VestingEvent.id == event_id, VestingEvent.org_id == ctx.org_id)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def _require_event(db: AsyncSession, ctx: deps.TenantContext, event_id: UUID) -> VestingEvent:
    event = await get_event(db, ctx, event_id)
    if event is None:
        raise NotFound("Vesting event not found", event_id=str(event_id))
    return event


async def _require_grant(db: AsyncSession, ctx: deps.TenantContext, grant_id: UUID) -> Grant:
    stmt = select(Grant).where(Grant.id == grant_id, Grant.org_id == ctx.org_id)
    grant = (await db.execute(stmt)).scalar_one_or_none()
    if grant is None:
        raise NotFound("Grant not found", grant_id=str(grant_id))
    return grant


async def sweep_due_events(
    db: AsyncSession, ctx: deps.TenantContext, as_of: date | None = None
) -> int:
    """Flip every pending event whose vesting date has passed to due.

    Safe to run any number of times: only pending rows dated on or before
    ``as_of`` are touched.
    """
    as_of_date = as_of or date.today()
    stmt = select(VestingEvent).where(
        VestingEvent.org_id == ctx.org_id,
        VestingEvent.status == PENDING,
        VestingEvent.vesting_date <= as_of_date,
    )
    events = (await db.execute(stmt)).scalars().all()
    for event in events:
        event.status = DUE
        db.add(event)
    if events:
        await db.commit()
        logger.info("Due sweep moved %s vesting events to due as of %s", len(events), as_of_date)
    return len(events)


async def list_events(
    db: AsyncSession,
    ctx: deps.TenantContext,
    *,
    grant_id: UUID | None = None,
    employee_id: UUID | None = None,
    status: str | None = None,
    as_of: date | None = None,
) -> list[VestingEvent]:
    if settings.vesting_sweep_on_read:
        await sweep_due_events(db, ctx, as_of)
    stmt = select(VestingEvent).where(VestingEvent.org_id == ctx.org_id)
    if grant_id is not None:
        stmt = stmt.where(VestingEvent.grant_id == grant_id)
    if employee_id is not None:
        stmt = stmt.where(VestingEvent.employee_id == employee_id)
    if status is not None:
        stmt = stmt.where(VestingEvent.status == status)
    stmt = stmt.order_by(VestingEvent.vesting_date, VestingEvent.sequence_number)
    events = (await db.execute(stmt)).scalars().all()
    return sorted(events, key=lambda e: (e.vesting_date, e.grant_id.hex, e.sequence_number))


async def attached_metric_ids(
    db: AsyncSession, ctx: deps.TenantContext, event: VestingEvent
) -> list[UUID]:
    """Primary metric of the event followed by every metric linked to its grant."""
    metric_ids: list[UUID] = []
    if event.performance_metric_id is not None:
        metric_ids.append(event.performance_metric_id)
    stmt = select(GrantPerformanceMetric).where(
        GrantPerformanceMetric.org_id == ctx.org_id,
        GrantPerformanceMetric.grant_id == event.grant_id,
    )
    for link in (await db.execute(stmt)).scalars().all():
        if link.performance_metric_id not in metric_ids:
            metric_ids.append(link.performance_metric_id)
    return metric_ids


def check_confirmations(
    event: VestingEvent,
    metric_ids: list[UUID],
    confirmations: Iterable[MetricConfirmation] | None,
) -> dict[UUID, MetricConfirmation]:
    """Return confirmations keyed by metric id, or raise if any attached metric is unconfirmed."""
    presented = list(confirmations or [])
    if not presented:
        raise PerformanceNotConfirmed(event_id=event.id, required_metric_ids=metric_ids)
    confirmed = {item.performance_metric_id: item for item in presented if item.confirmed}
    missing = [metric_id for metric_id in metric_ids if metric_id not in confirmed]
    if missing:
        raise IncompleteMetricConfirmation(
            event_id=event.id,
            required_metric_ids=metric_ids,
            missing_metric_ids=missing,
        )
    return {metric_id: confirmed[metric_id] for metric_id in metric_ids}


async def _apply_confirmations(
    db: AsyncSession,
    ctx: deps.TenantContext,
    event: VestingEvent,
    confirmed: dict[UUID, MetricConfirmation],
    notes: str | None,
    achieved_at: datetime,
) -> None:
    if confirmed:
        stmt = select(PerformanceMetric).where(
            PerformanceMetric.org_id == ctx.org_id,
            PerformanceMetric.id.in_(list(confirmed)),
        )
        for metric in (await db.execute(stmt)).scalars().all():
            confirmation = confirmed[metric.id]
            metric.is_achieved = True
            metric.achieved_at = achieved_at
            if confirmation.actual_value is not None:
                metric.actual_value = confirmation.actual_value
            metric.confirmation_notes = confirmation.notes or notes
            db.add(metric)

    if event.vesting_milestone_id is None:
        return
    stmt = select(VestingMilestone).where(
        VestingMilestone.id == event.vesting_milestone_id,
        VestingMilestone.org_id == ctx.org_id,
    )
    milestone = (await db.execute(stmt)).scalar_one_or_none()
    if milestone is None:
        return
    milestone.is_achieved = True
    milestone.achieved_at = achieved_at
    source = confirmed.get(milestone.performance_metric_id) if milestone.performance_metric_id else None
    if source is None and confirmed:
        source = next(iter(confirmed.values()))
    if source is not None and source.actual_value is not None:
        milestone.actual_value = source.actual_value
    db.add(milestone)


async def settle_event(
    db: AsyncSession,
    ctx: deps.TenantContext,
    event_id: UUID,
    confirmations: list[MetricConfirmation] | None = None,
    notes: str | None = None,
    *,
    as_of: date | None = None,
    actor_id=None,
) -> VestingEvent:
    """Move a due event to vested.

    Checks run in order and nothing is written when one fails: the event must
    be due, the grant contract must be accepted, and performance or hybrid
    events must carry a positive confirmation for every attached metric.
    """
    event = await _require_event(db, ctx, event_id)
    if is_due(event, as_of or date.today()):
        event.status = DUE
        db.add(event)
        await db.commit()
    # transferred -> vested is reserved for voided transfers
    if event.status != DUE:
        raise InvalidEventTransition(event_id=event.id, current=event.status, target=VESTED)

    grant = await _require_grant(db, ctx, event.grant_id)
    if grant.employee_acceptance_at is None:
        raise ContractNotSigned(grant_id=grant.id)

    confirmed: dict[UUID, MetricConfirmation] = {}
    gated = False
    if event.event_type in PERFORMANCE_EVENT_TYPES:
        metric_ids = await attached_metric_ids(db, ctx, event)
        if metric_ids:
            confirmed = check_confirmations(event, metric_ids, confirmations)
            gated = True

    old_snapshot = model_snapshot(event)
    now = _now()
    await _apply_confirmations(db, ctx, event, confirmed, notes, now)
    event.status = VESTED
    event.processed_at = now
    event.processed_by = actor_id
    event.performance_condition_met = gated
    if notes or confirmed:
        event.performance_notes = notes or "; ".join(
            item.notes for item in confirmed.values() if item.notes
        ) or None
    db.add(event)
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="vesting_event.vested",
        resource_type="vesting_event",
        resource_id=str(event.id),
        old_value=old_snapshot,
        new_value=model_snapshot(event),
    )
    await db.commit()
    await db.refresh(event)
    return event


async def confirm_performance_metrics(
    db: AsyncSession,
    ctx: deps.TenantContext,
    event_id: UUID,
    confirmations: list[MetricConfirmation],
    notes: str | None = None,
    *,
    as_of: date | None = None,
    actor_id=None,
) -> VestingEvent:
    if not confirmations:
        event = await _require_event(db, ctx, event_id)
        raise PerformanceNotConfirmed(
            event_id=event.id,
            required_metric_ids=await attached_metric_ids(db, ctx, event),
        )
    return await settle_event(
        db,
        ctx,
        event_id,
        confirmations,
        notes,
        as_of=as_of,
        actor_id=actor_id,
    )


async def exercise_event(
    db: AsyncSession,
    ctx: deps.TenantContext,
    event_id: UUID,
    *,
    actor_id=None,
) -> VestingEvent:
    event = await _require_event(db, ctx, event_id)
    ensure_transition(event, EXERCISED)
    grant = await _require_grant(db, ctx, event.grant_id)
    if not requires_exercise(grant):
        raise ExerciseNotApplicable(grant_id=grant.id)

    old_snapshot = model_snapshot(event)
    price = Decimal(event.exercise_price if event.exercise_price is not None else grant.exercise_price)
    event.exercise_price = price
    event.total_exercise_cost = price * int(event.shares_to_vest)
    event.status = EXERCISED
    event.processed_at = _now()
    event.processed_by = actor_id
    db.add(event)
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="vesting_event.exercised",
        resource_type="vesting_event",
        resource_id=str(event.id),
        old_value=old_snapshot,
        new_value=model_snapshot(event),
    )
    await db.commit()
    await db.refresh(event)
    return event


async def transfer_event(
    db: AsyncSession,
    ctx: deps.TenantContext,
    event_id: UUID,
    *,
    actor_id=None,
):
    from ltip_admin.services import share_transfers

    event = await _require_event(db, ctx, event_id)
    ensure_transition(event, TRANSFERRED)
    grant = await _require_grant(db, ctx, event.grant_id)
    if requires_exercise(grant):
        raise ExerciseRequired(grant_id=grant.id)
    return await share_transfers.process_transfer(db, ctx, event.id, actor_id=actor_id)


async def _close_event(
    db: AsyncSession,
    ctx: deps.TenantContext,
    event_id: UUID,
    target: str,
    reason: str | None,
    actor_id,
) -> VestingEvent:
    event = await _require_event(db, ctx, event_id)
    ensure_transition(event, target)
    old_snapshot = model_snapshot(event)
    event.status = target
    event.processed_at = _now()
    event.processed_by = actor_id
    db.add(event)
    new_snapshot = model_snapshot(event)
    if reason:
        new_snapshot["reason"] = reason
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action=f"vesting_event.{target}",
        resource_type="vesting_event",
        resource_id=str(event.id),
        old_value=old_snapshot,
        new_value=new_snapshot,
    )
    await db.commit()
    await db.refresh(event)
    return event


async def forfeit_event(
    db: AsyncSession,
    ctx: deps.TenantContext,
    event_id: UUID,
    reason: str | None = None,
    *,
    actor_id=None,
) -> VestingEvent:
    return await _close_event(db, ctx, event_id, FORFEITED, reason, actor_id)


async def cancel_event(
    db: AsyncSession,
    ctx: deps.TenantContext,
    event_id: UUID,
    reason: str | None = None,
    *,
    actor_id=None,
) -> VestingEvent:
    return await _close_event(db, ctx, event_id, CANCELLED, reason, actor_id)


async def forfeit_grant(
    db: AsyncSession,
    ctx: deps.TenantContext,
    grant_id: UUID,
    reason: str | None = None,
    *,
    actor_id=None,
) -> int:
    """Forfeit every open event of a departing employee's grant; returns the count."""
    grant = await _require_grant(db, ctx, grant_id)
    stmt = select(VestingEvent).where(
        VestingEvent.org_id == ctx.org_id,
        VestingEvent.grant_id == grant.id,
        VestingEvent.status.in_(OPEN_STATUSES),
    )
    events = (await db.execute(stmt)).scalars().all()
    now = _now()
    for event in events:
        event.status = FORFEITED
        event.processed_at = now
        event.processed_by = actor_id
        db.add(event)

    old_snapshot = model_snapshot(grant)
    grant.status = GrantStatus.FORFEITED.value
    db.add(grant)
    new_snapshot = model_snapshot(grant)
    new_snapshot["forfeited_events"] = len(events)
    if reason:
        new_snapshot["reason"] = reason
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="grant.forfeited",
        resource_type="grant",
        resource_id=str(grant.id),
        old_value=old_snapshot,
        new_value=new_snapshot,
    )
    await db.commit()
    return len(events)


def split_acceleration(open_shares: Iterable[int], percentage: Decimal) -> list[int]:
    """Shares each open tranche gives up, floored per tranche."""
    return [int(Decimal(shares) * percentage // Decimal(100)) for shares in open_shares]


async def accelerate_grant(
    db: AsyncSession,
    ctx: deps.TenantContext,
    grant_id: UUID,
    percentage: Decimal,
    reason: str | None = None,
    *,
    as_of: date | None = None,
    actor_id=None,
) -> VestingEvent:
    """Pull a percentage of a grant's open tranches forward into one due event.

    Every pending or due tranche gives up a floored share of its count. The
    shares taken become an acceleration event dated ``as_of``, so the grant's
    events still sum to its total. Tranches left with nothing are cancelled.
    """
    percentage = Decimal(percentage)
    if not Decimal("0") < percentage <= Decimal("100"):
        raise ValueError("Acceleration percentage must be above 0 and at most 100")
    grant = await _require_grant(db, ctx, grant_id)
    stmt = select(VestingEvent).where(
        VestingEvent.org_id == ctx.org_id,
        VestingEvent.grant_id == grant.id,
    )
    events = sorted(
        (await db.execute(stmt)).scalars().all(),
        key=lambda e: (e.vesting_date, e.sequence_number),
    )
    open_events = [event for event in events if event.status in OPEN_STATUSES]
    taken = split_acceleration((int(event.shares_to_vest) for event in open_events), percentage)
    accelerated = sum(taken)
    if accelerated == 0:
        raise AccelerationNotApplicable(
            grant_id=grant.id,
            open_shares=sum(int(event.shares_to_vest) for event in open_events),
            percentage=percentage,
        )

    now = _now()
    reduced: list[str] = []
    for event, shares in zip(open_events, taken):
        if not shares:
            continue
        event.shares_to_vest = int(event.shares_to_vest) - shares
        if event.shares_to_vest == 0:
            event.status = CANCELLED
            event.processed_at = now
            event.processed_by = actor_id
        reduced.append(str(event.id))

    acceleration = VestingEvent(
        id=uuid4(),
        org_id=ctx.org_id,
        grant_id=grant.id,
        employee_id=grant.employee_id,
        sequence_number=max((int(event.sequence_number) for event in events), default=0) + 1,
        vesting_date=as_of or date.today(),
        shares_to_vest=accelerated,
        cumulative_shares_vested=0,
        event_type=VestingEventType.ACCELERATION.value,
        status=DUE,
        performance_condition_met=False,
        performance_notes=reason,
        exercise_price=grant.exercise_price,
    )
    events.append(acceleration)
    cumulative = 0
    for event in sorted(events, key=lambda e: (e.vesting_date, e.sequence_number)):
        cumulative += int(event.shares_to_vest)
        event.cumulative_shares_vested = cumulative
        db.add(event)

    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="grant.accelerated",
        resource_type="grant",
        resource_id=str(grant.id),
        new_value={
            "percentage": str(percentage),
            "accelerated_shares": accelerated,
            "acceleration_event_id": str(acceleration.id),
            "reduced_event_ids": reduced,
            "reason": reason,
        },
    )
    await db.commit()
    logger.info(
        "Accelerated %s shares of grant %s into event %s",
        accelerated,
        grant.id,
        acceleration.id,
    )
    return acceleration
