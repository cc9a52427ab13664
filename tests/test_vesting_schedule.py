from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from ltip_admin.models import VestingEvent
from ltip_admin.services import vesting_schedule
from ltip_admin.services.vesting_schedule import MilestoneSpec, ScheduleParameters, add_months, build_schedule
from conftest import make_event, make_grant, make_milestone, make_plan, make_pool, make_schedule


def test_add_months_clamps_to_month_end():
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)
    assert add_months(date(2024, 2, 29), 12) == date(2025, 2, 28)
    assert add_months(date(2024, 11, 15), 3) == date(2025, 2, 15)


def test_monthly_schedule_with_cliff():
    start = date(2024, 1, 15)
    params = ScheduleParameters(duration_months=48, cliff_months=12, frequency="monthly")

    events = build_schedule(1200, start, params)

    assert len(events) == 37
    cliff = events[0]
    assert cliff.event_type == "cliff"
    assert cliff.shares_to_vest == 300
    assert cliff.vesting_date == date(2025, 1, 15)
    monthly = events[1:]
    assert all(event.event_type == "time_based" for event in monthly)
    assert all(event.shares_to_vest == 25 for event in monthly)
    assert monthly[0].vesting_date == date(2025, 2, 15)
    assert monthly[-1].vesting_date == date(2028, 1, 15)
    assert sum(event.shares_to_vest for event in events) == 1200
    assert events[-1].cumulative_shares_vested == 1200
    assert [event.sequence_number for event in events] == list(range(1, 38))


def test_last_event_absorbs_truncation_remainder():
    params = ScheduleParameters(duration_months=48, cliff_months=12, frequency="monthly")

    events = build_schedule(1000, date(2024, 1, 1), params)

    assert events[0].shares_to_vest == 250
    assert {event.shares_to_vest for event in events[1:-1]} == {20}
    assert events[-1].shares_to_vest == 50
    assert sum(event.shares_to_vest for event in events) == 1000


def test_quarterly_schedule_without_cliff():
    params = ScheduleParameters(duration_months=12, cliff_months=0, frequency="quarterly")

    events = build_schedule(10, date(2024, 1, 1), params)

    assert [event.shares_to_vest for event in events] == [2, 2, 2, 4]
    assert [event.vesting_date for event in events] == [
        date(2024, 4, 1),
        date(2024, 7, 1),
        date(2024, 10, 1),
        date(2025, 1, 1),
    ]


def test_uneven_final_period_is_capped_at_duration():
    params = ScheduleParameters(duration_months=10, cliff_months=0, frequency="quarterly")

    events = build_schedule(100, date(2024, 1, 1), params)

    assert len(events) == 4
    assert events[-1].vesting_date == date(2024, 11, 1)
    assert sum(event.shares_to_vest for event in events) == 100


def test_cliff_spanning_whole_duration_vests_everything_at_once():
    params = ScheduleParameters(duration_months=12, cliff_months=12, frequency="monthly")

    events = build_schedule(500, date(2024, 1, 1), params)

    assert len(events) == 1
    assert events[0].event_type == "cliff"
    assert events[0].shares_to_vest == 500


def test_performance_plan_emits_performance_events():
    params = ScheduleParameters(duration_months=24, cliff_months=0, frequency="annually")

    events = build_schedule(100, date(2024, 1, 1), params, "performance_based")

    assert [event.event_type for event in events] == ["performance", "performance"]


def test_invalid_parameters_are_rejected():
    with pytest.raises(ValueError, match="Cliff"):
        build_schedule(100, date(2024, 1, 1), ScheduleParameters(12, 13, "monthly"))
    with pytest.raises(ValueError, match="Unsupported vesting frequency"):
        build_schedule(100, date(2024, 1, 1), ScheduleParameters(12, 0, "weekly"))
    with pytest.raises(ValueError, match="at least one month"):
        build_schedule(100, date(2024, 1, 1), ScheduleParameters(0, 0, "monthly"))


def test_milestones_floor_each_tranche_and_last_takes_remainder():
    metric_id = uuid4()
    milestones = (
        MilestoneSpec(1, Decimal("33.33"), 12),
        MilestoneSpec(2, Decimal("33.33"), 24),
        MilestoneSpec(3, Decimal("33.34"), 36, milestone_type="performance", performance_metric_id=metric_id),
    )
    params = ScheduleParameters(48, 12, "annually", milestones=milestones)

    events = build_schedule(100, date(2024, 1, 1), params, "hybrid")

    assert [event.shares_to_vest for event in events] == [33, 33, 34]
    assert [event.event_type for event in events] == ["hybrid", "hybrid", "hybrid"]
    assert events[2].performance_metric_id == metric_id
    assert events[2].vesting_date == date(2027, 1, 1)


def test_time_milestones_on_time_plan_keep_plan_type():
    milestones = (
        MilestoneSpec(1, Decimal("25"), 12, milestone_type="cliff"),
        MilestoneSpec(2, Decimal("75"), 24),
    )
    events = build_schedule(
        1000, date(2024, 1, 1), ScheduleParameters(24, 12, "annually", milestones=milestones)
    )
    assert [(event.event_type, event.shares_to_vest) for event in events] == [
        ("cliff", 250),
        ("time_based", 750),
    ]


def test_milestones_must_total_one_hundred():
    milestones = (MilestoneSpec(1, Decimal("60"), 12), MilestoneSpec(2, Decimal("30"), 24))
    with pytest.raises(ValueError, match="must total 100"):
        build_schedule(100, date(2024, 1, 1), ScheduleParameters(24, 0, "annually", milestones=milestones))


@pytest.mark.parametrize(
    "percentages",
    [("-20", "120"), ("150", "-50")],
)
def test_milestone_percentage_outside_bounds_is_rejected(percentages):
    # both pairs total 100
    milestones = tuple(
        MilestoneSpec(index + 1, Decimal(pct), 12 * (index + 1)) for index, pct in enumerate(percentages)
    )
    with pytest.raises(ValueError, match="between 0 and 100"):
        build_schedule(100, date(2024, 1, 1), ScheduleParameters(24, 0, "annually", milestones=milestones))


@pytest.mark.asyncio
async def test_resolution_prefers_grant_template(fake_db, tenant_ctx):
    grant_template = make_schedule(duration=36, cliff=6, frequency="quarterly")
    plan_template = make_schedule(duration=24, cliff=0, frequency="monthly")
    pool = make_pool()
    plan = make_plan(
        pool=pool,
        vesting_schedule_id=plan_template.id,
        vesting_config={"duration_months": 12, "cliff_months": 0, "frequency": "monthly"},
    )
    grant = make_grant(plan=plan, vesting_schedule_id=grant_template.id)
    fake_db.seed(grant_template, plan_template)

    params = await vesting_schedule.resolve_parameters(fake_db, tenant_ctx, grant, plan)

    assert params.source == "grant_template"
    assert (params.duration_months, params.cliff_months, params.frequency) == (36, 6, "quarterly")


@pytest.mark.asyncio
async def test_resolution_falls_back_through_plan_template_config_and_defaults(fake_db, tenant_ctx):
    plan_template = make_schedule(duration=24, cliff=0, frequency="monthly")
    fake_db.seed(plan_template)
    pool = make_pool()

    plan = make_plan(pool=pool, vesting_schedule_id=plan_template.id)
    params = await vesting_schedule.resolve_parameters(fake_db, tenant_ctx, make_grant(plan=plan), plan)
    assert params.source == "plan_template"
    assert params.duration_months == 24

    plan = make_plan(pool=pool, vesting_config={"duration_months": 12, "frequency": "quarterly"})
    params = await vesting_schedule.resolve_parameters(fake_db, tenant_ctx, make_grant(plan=plan), plan)
    assert params.source == "plan_config"
    assert (params.duration_months, params.cliff_months, params.frequency) == (12, 12, "quarterly")

    plan = make_plan(pool=pool)
    params = await vesting_schedule.resolve_parameters(fake_db, tenant_ctx, make_grant(plan=plan), plan)
    assert params.source == "defaults"
    assert (params.duration_months, params.cliff_months, params.frequency) == (48, 12, "annually")


@pytest.mark.asyncio
async def test_template_milestones_link_events_to_milestones(fake_db, tenant_ctx):
    schedule = make_schedule()
    first = make_milestone(schedule=schedule, order=1, percentage="40", months=12)
    second = make_milestone(schedule=schedule, order=2, percentage="60", months=24)
    fake_db.seed(schedule, second, first)
    pool = make_pool()
    plan = make_plan(pool=pool)
    grant = make_grant(plan=plan, total=1000, vesting_schedule_id=schedule.id)

    events = await vesting_schedule.materialize_events(fake_db, tenant_ctx, grant, plan)

    assert [event.vesting_milestone_id for event in events] == [first.id, second.id]
    assert [event.shares_to_vest for event in events] == [400, 600]
    assert all(event.status == "pending" for event in events)
    assert all(event.employee_id == grant.employee_id for event in events)


@pytest.mark.asyncio
async def test_generate_missing_events_skips_grants_that_have_them(fake_db, tenant_ctx):
    pool = make_pool()
    plan = make_plan(pool=pool)
    covered = make_grant(plan=plan, total=480)
    uncovered = make_grant(plan=plan, total=480)
    unsigned = make_grant(plan=plan, total=480, accepted=False)
    fake_db.seed(pool, plan, covered, uncovered, unsigned, make_event(grant=covered, shares=480))

    result = await vesting_schedule.generate_missing_vesting_events(fake_db, tenant_ctx)

    assert result.total_grants == 2
    assert result.processed == 1
    assert result.skipped == 1
    assert result.errors == 0
    generated = [event for event in fake_db.all(VestingEvent) if event.grant_id == uncovered.id]
    assert sum(event.shares_to_vest for event in generated) == 480
    assert fake_db.commits == 1


@pytest.mark.asyncio
async def test_generate_missing_events_reports_orphaned_grants(fake_db, tenant_ctx):
    pool = make_pool()
    plan = make_plan(pool=pool)
    orphan = make_grant(plan=plan)
    fake_db.seed(orphan)

    result = await vesting_schedule.generate_missing_vesting_events(fake_db, tenant_ctx, [orphan.id])

    assert result.errors == 1
    assert "plan not found" in result.error_details[0]
    assert fake_db.commits == 0
