from __future__ import annotations

from collections import defaultdict
from datetime import date
from typing import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ltip_admin.api import deps
from ltip_admin.models.grant import Grant
from ltip_admin.models.incentive_plan import IncentivePlan
from ltip_admin.models.ltip_pool import LtipPool
from ltip_admin.models.portfolio import Portfolio
from ltip_admin.models.vesting_event import VestingEvent
from ltip_admin.schemas.transfers import PortfolioType
from ltip_admin.schemas.vesting import (
    CompanyLedgerStats,
    GrantRollup,
    LedgerDiscrepancy,
    VestingEventStats,
    VestingEventStatus,
)
from ltip_admin.services.errors import NotFound
from ltip_admin.services.vesting_events import sweep_due_events

VESTED_STATUSES = {
    VestingEventStatus.VESTED.value,
    VestingEventStatus.EXERCISED.value,
    VestingEventStatus.TRANSFERRED.value,
}
UNVESTED_STATUSES = {VestingEventStatus.PENDING.value, VestingEventStatus.DUE.value}
EXCLUDED_STATUSES = {VestingEventStatus.FORFEITED.value, VestingEventStatus.CANCELLED.value}


def build_event_stats(events: Iterable[VestingEvent]) -> VestingEventStats:
    events_by_status: dict[str, int] = defaultdict(int)
    shares_by_status: dict[str, int] = defaultdict(int)
    events_by_type: dict[str, int] = defaultdict(int)
    total_events = 0
    total_shares = 0
    processed = 0
    for event in events:
        shares = int(event.shares_to_vest)
        total_events += 1
        total_shares += shares
        events_by_status[event.status] += 1
        shares_by_status[event.status] += shares
        events_by_type[event.event_type] += 1
        if event.processed_at is not None:
            processed += 1
    return VestingEventStats(
        total_events=total_events,
        total_shares=total_shares,
        events_by_status=dict(events_by_status),
        shares_by_status=dict(shares_by_status),
        events_by_type=dict(events_by_type),
        processed_events=processed,
    )


def _split_shares(events: Iterable[VestingEvent]) -> tuple[int, int, int, int]:
    scheduled = vested = unvested = excluded = 0
    for event in events:
        shares = int(event.shares_to_vest)
        scheduled += shares
        if event.status in VESTED_STATUSES:
            vested += shares
        elif event.status in UNVESTED_STATUSES:
            unvested += shares
        elif event.status in EXCLUDED_STATUSES:
            excluded += shares
    return scheduled, vested, unvested, excluded


def build_grant_rollup(grant: Grant, events: Iterable[VestingEvent]) -> GrantRollup:
    scheduled, vested, unvested, excluded = _split_shares(
        event for event in events if event.grant_id == grant.id
    )
    return GrantRollup(
        grant_id=grant.id,
        total_shares=int(grant.total_shares),
        scheduled_shares=scheduled,
        vested_shares=vested,
        unvested_shares=unvested,
        excluded_shares=excluded,
    )


def _discrepancy(resource_type: str, resource_id: UUID, field: str, expected: int, actual: int):
    if expected == actual:
        return None
    return LedgerDiscrepancy(
        resource_type=resource_type,
        resource_id=resource_id,
        field=field,
        expected=expected,
        actual=actual,
    )


def reconcile(
    pools: Iterable[LtipPool],
    plans: Iterable[IncentivePlan],
    grants: Iterable[Grant],
    events: Iterable[VestingEvent],
) -> list[LedgerDiscrepancy]:
    """Every parent counter whose children no longer sum to it."""
    plans = list(plans)
    grants = list(grants)
    plan_totals: dict[UUID, int] = defaultdict(int)
    for plan in plans:
        plan_totals[plan.ltip_pool_id] += int(plan.total_shares_allocated)
    grant_totals: dict[UUID, int] = defaultdict(int)
    for grant in grants:
        grant_totals[grant.plan_id] += int(grant.total_shares)
    event_totals: dict[UUID, int] = defaultdict(int)
    for event in events:
        event_totals[event.grant_id] += int(event.shares_to_vest)

    found: list[LedgerDiscrepancy | None] = []
    for pool in pools:
        used = plan_totals[pool.id]
        found.append(_discrepancy("ltip_pool", pool.id, "shares_used", used, int(pool.shares_used)))
        found.append(
            _discrepancy(
                "ltip_pool",
                pool.id,
                "shares_available",
                int(pool.total_shares_allocated) - used,
                int(pool.shares_available),
            )
        )
    for plan in plans:
        granted = grant_totals[plan.id]
        found.append(_discrepancy("incentive_plan", plan.id, "shares_granted", granted, int(plan.shares_granted)))
        found.append(
            _discrepancy(
                "incentive_plan",
                plan.id,
                "shares_available",
                int(plan.total_shares_allocated) - granted,
                int(plan.shares_available),
            )
        )
    for grant in grants:
        found.append(
            _discrepancy("grant", grant.id, "total_shares", int(grant.total_shares), event_totals[grant.id])
        )
    return [item for item in found if item is not None]


def build_company_stats(
    as_of: date,
    pools: Iterable[LtipPool],
    plans: Iterable[IncentivePlan],
    grants: Iterable[Grant],
    events: Iterable[VestingEvent],
    portfolios: Iterable[Portfolio] = (),
) -> CompanyLedgerStats:
    pools = list(pools)
    plans = list(plans)
    grants = list(grants)
    events = list(events)
    _, vested, unvested, excluded = _split_shares(events)

    company_available = 0
    employee_total = 0
    for portfolio in portfolios:
        if portfolio.portfolio_type == PortfolioType.COMPANY_RESERVED.value:
            company_available += int(portfolio.available_shares)
        elif portfolio.portfolio_type == PortfolioType.EMPLOYEE_VESTED.value:
            employee_total += int(portfolio.total_shares)

    return CompanyLedgerStats(
        as_of=as_of,
        pools_total_allocated=sum(int(p.total_shares_allocated) for p in pools),
        pools_used=sum(int(p.shares_used) for p in pools),
        pools_available=sum(int(p.shares_available) for p in pools),
        plans_total_allocated=sum(int(p.total_shares_allocated) for p in plans),
        plans_granted=sum(int(p.shares_granted) for p in plans),
        plans_available=sum(int(p.shares_available) for p in plans),
        grants_total_shares=sum(int(g.total_shares) for g in grants),
        vested_shares=vested,
        unvested_shares=unvested,
        excluded_shares=excluded,
        company_reserved_available=company_available,
        employee_vested_total=employee_total,
        events=build_event_stats(events),
        discrepancies=reconcile(pools, plans, grants, events),
    )


async def _all(db: AsyncSession, model, ctx: deps.TenantContext) -> list:
    stmt = select(model).where(model.org_id == ctx.org_id)
    return list((await db.execute(stmt)).scalars().all())


async def get_company_stats(
    db: AsyncSession, ctx: deps.TenantContext, as_of: date | None = None
) -> CompanyLedgerStats:
    as_of_date = as_of or date.today()
    await sweep_due_events(db, ctx, as_of_date)
    return build_company_stats(
        as_of_date,
        await _all(db, LtipPool, ctx),
        await _all(db, IncentivePlan, ctx),
        await _all(db, Grant, ctx),
        await _all(db, VestingEvent, ctx),
        await _all(db, Portfolio, ctx),
    )


async def get_grant_rollup(
    db: AsyncSession, ctx: deps.TenantContext, grant_id: UUID, as_of: date | None = None
) -> GrantRollup:
    await sweep_due_events(db, ctx, as_of)
    stmt = select(Grant).where(Grant.id == grant_id, Grant.org_id == ctx.org_id)
    grant = (await db.execute(stmt)).scalar_one_or_none()
    if grant is None:
        raise NotFound("Grant not found", grant_id=str(grant_id))
    event_stmt = select(VestingEvent).where(
        VestingEvent.org_id == ctx.org_id, VestingEvent.grant_id == grant.id
    )
    events = (await db.execute(event_stmt)).scalars().all()
    return build_grant_rollup(grant, events)
