from datetime import date
from decimal import Decimal

import pytest

from ltip_admin.models import AuditLog, VestingEvent
from ltip_admin.schemas.vesting import MetricConfirmation
from ltip_admin.services import allocation, vesting_events
from ltip_admin.services.errors import (
    AccelerationNotApplicable,
    ContractNotSigned,
    ExerciseNotApplicable,
    ExerciseRequired,
    IncompleteMetricConfirmation,
    InvalidEventTransition,
    PerformanceNotConfirmed,
)
from conftest import (
    link_metric,
    make_event,
    make_grant,
    make_metric,
    make_milestone,
    make_plan,
    make_pool,
    make_schedule,
)

AS_OF = date(2025, 6, 1)


def _grant(**overrides):
    pool = make_pool()
    plan = make_plan(pool=pool)
    return make_grant(plan=plan, **overrides)


def test_transition_table():
    assert vesting_events.can_transition("pending", "due")
    assert vesting_events.can_transition("due", "vested")
    assert vesting_events.can_transition("vested", "transferred")
    assert vesting_events.can_transition("transferred", "vested")
    assert not vesting_events.can_transition("pending", "vested")
    assert not vesting_events.can_transition("vested", "forfeited")
    assert not vesting_events.can_transition("exercised", "transferred")
    assert not vesting_events.can_transition("cancelled", "due")


@pytest.mark.asyncio
async def test_sweep_is_idempotent(fake_db, tenant_ctx):
    grant = _grant()
    past = make_event(grant=grant, vesting_date=date(2025, 1, 15))
    today = make_event(grant=grant, vesting_date=AS_OF, sequence_number=2)
    future = make_event(grant=grant, vesting_date=date(2026, 1, 15), sequence_number=3)
    fake_db.seed(grant, past, today, future)

    assert await vesting_events.sweep_due_events(fake_db, tenant_ctx, AS_OF) == 2
    assert await vesting_events.sweep_due_events(fake_db, tenant_ctx, AS_OF) == 0

    assert past.status == "due"
    assert today.status == "due"
    assert future.status == "pending"
    assert fake_db.commits == 1


@pytest.mark.asyncio
async def test_list_events_sweeps_and_orders_by_date(fake_db, tenant_ctx):
    grant = _grant()
    later = make_event(grant=grant, vesting_date=date(2026, 1, 15), sequence_number=2)
    earlier = make_event(grant=grant, vesting_date=date(2025, 1, 15))
    fake_db.seed(grant, later, earlier)

    events = await vesting_events.list_events(fake_db, tenant_ctx, grant_id=grant.id, as_of=AS_OF)

    assert events == [earlier, later]
    assert earlier.status == "due"
    due_only = await vesting_events.list_events(fake_db, tenant_ctx, status="due", as_of=AS_OF)
    assert due_only == [earlier]


@pytest.mark.asyncio
async def test_settle_requires_signed_contract_then_succeeds(fake_db, tenant_ctx):
    grant = _grant(accepted=False)
    event = make_event(grant=grant, status="due")
    fake_db.seed(grant, event)

    with pytest.raises(ContractNotSigned):
        await vesting_events.settle_event(fake_db, tenant_ctx, event.id, as_of=AS_OF)
    assert event.status == "due"

    await allocation.record_employee_acceptance(fake_db, tenant_ctx, grant.id)
    settled = await vesting_events.settle_event(fake_db, tenant_ctx, event.id, as_of=AS_OF)

    assert settled.status == "vested"
    assert settled.processed_at is not None
    assert settled.performance_condition_met is False
    assert fake_db.all(AuditLog)[-1].action == "vesting_event.vested"


@pytest.mark.asyncio
async def test_settle_sweeps_a_past_pending_event_first(fake_db, tenant_ctx):
    grant = _grant()
    event = make_event(grant=grant, vesting_date=date(2025, 1, 15))
    fake_db.seed(grant, event)

    settled = await vesting_events.settle_event(fake_db, tenant_ctx, event.id, as_of=AS_OF)

    assert settled.status == "vested"


@pytest.mark.asyncio
async def test_settle_rejects_future_and_settled_events(fake_db, tenant_ctx):
    grant = _grant()
    future = make_event(grant=grant, vesting_date=date(2026, 1, 15))
    transferred = make_event(grant=grant, status="transferred", sequence_number=2)
    fake_db.seed(grant, future, transferred)

    with pytest.raises(InvalidEventTransition) as exc_info:
        await vesting_events.settle_event(fake_db, tenant_ctx, future.id, as_of=AS_OF)
    assert exc_info.value.details["current_status"] == "pending"

    with pytest.raises(InvalidEventTransition):
        await vesting_events.settle_event(fake_db, tenant_ctx, transferred.id, as_of=AS_OF)
    assert transferred.status == "transferred"


def _performance_setup(fake_db):
    grant = _grant()
    primary = make_metric(name="Revenue")
    extra = make_metric(name="Retention")
    schedule = make_schedule()
    milestone = make_milestone(
        schedule=schedule,
        order=1,
        percentage="100",
        months=12,
        milestone_type="performance",
        performance_metric_id=primary.id,
    )
    event = make_event(
        grant=grant,
        status="due",
        event_type="performance",
        performance_metric_id=primary.id,
        vesting_milestone_id=milestone.id,
    )
    fake_db.seed(grant, primary, extra, schedule, milestone, event, link_metric(grant, extra))
    return event, primary, extra, milestone


@pytest.mark.asyncio
async def test_performance_event_without_confirmations_is_rejected(fake_db, tenant_ctx):
    event, primary, extra, _ = _performance_setup(fake_db)

    with pytest.raises(PerformanceNotConfirmed) as exc_info:
        await vesting_events.settle_event(fake_db, tenant_ctx, event.id, as_of=AS_OF)

    assert exc_info.type is PerformanceNotConfirmed
    assert sorted(exc_info.value.details["required_metric_ids"]) == sorted([str(primary.id), str(extra.id)])
    assert event.status == "due"


@pytest.mark.asyncio
async def test_one_unconfirmed_metric_changes_nothing(fake_db, tenant_ctx):
    event, primary, extra, milestone = _performance_setup(fake_db)
    confirmations = [
        MetricConfirmation(performance_metric_id=primary.id, confirmed=True, actual_value=Decimal("1200000")),
        MetricConfirmation(performance_metric_id=extra.id, confirmed=False),
    ]

    with pytest.raises(IncompleteMetricConfirmation) as exc_info:
        await vesting_events.settle_event(fake_db, tenant_ctx, event.id, confirmations, as_of=AS_OF)

    assert exc_info.value.details["missing_metric_ids"] == [str(extra.id)]
    assert event.status == "due"
    assert primary.is_achieved is False
    assert primary.actual_value is None
    assert milestone.is_achieved is False
    assert fake_db.commits == 0


@pytest.mark.asyncio
async def test_full_confirmation_vests_and_marks_metrics(fake_db, tenant_ctx):
    event, primary, extra, milestone = _performance_setup(fake_db)
    confirmations = [
        MetricConfirmation(performance_metric_id=primary.id, confirmed=True, actual_value=Decimal("1200000")),
        MetricConfirmation(performance_metric_id=extra.id, confirmed=True, notes="Retention above 90%"),
    ]

    settled = await vesting_events.confirm_performance_metrics(
        fake_db, tenant_ctx, event.id, confirmations, "FY24 board review", as_of=AS_OF
    )

    assert settled.status == "vested"
    assert settled.performance_condition_met is True
    assert settled.performance_notes == "FY24 board review"
    assert primary.is_achieved is True
    assert primary.actual_value == Decimal("1200000")
    assert extra.is_achieved is True
    assert extra.confirmation_notes == "Retention above 90%"
    assert milestone.is_achieved is True
    assert milestone.actual_value == Decimal("1200000")


@pytest.mark.asyncio
async def test_confirm_with_empty_list_is_rejected(fake_db, tenant_ctx):
    event, *_ = _performance_setup(fake_db)

    with pytest.raises(PerformanceNotConfirmed):
        await vesting_events.confirm_performance_metrics(fake_db, tenant_ctx, event.id, [], as_of=AS_OF)
    assert event.status == "due"


@pytest.mark.asyncio
async def test_exercise_records_cost(fake_db, tenant_ctx):
    grant = _grant(exercise_price=Decimal("2.50"))
    event = make_event(grant=grant, status="vested", shares=100)
    fake_db.seed(grant, event)

    exercised = await vesting_events.exercise_event(fake_db, tenant_ctx, event.id)

    assert exercised.status == "exercised"
    assert exercised.total_exercise_cost == Decimal("250.00")


@pytest.mark.asyncio
async def test_exercise_rules(fake_db, tenant_ctx):
    plain = _grant()
    option = _grant(exercise_price=Decimal("1.00"))
    vested_plain = make_event(grant=plain, status="vested")
    due_option = make_event(grant=option, status="due")
    fake_db.seed(plain, option, vested_plain, due_option)

    with pytest.raises(ExerciseNotApplicable):
        await vesting_events.exercise_event(fake_db, tenant_ctx, vested_plain.id)
    with pytest.raises(InvalidEventTransition):
        await vesting_events.exercise_event(fake_db, tenant_ctx, due_option.id)


@pytest.mark.asyncio
async def test_transfer_of_option_grant_requires_exercise(fake_db, tenant_ctx):
    grant = _grant(exercise_price=Decimal("1.00"))
    event = make_event(grant=grant, status="vested")
    fake_db.seed(grant, event)

    with pytest.raises(ExerciseRequired):
        await vesting_events.transfer_event(fake_db, tenant_ctx, event.id)
    assert event.status == "vested"


@pytest.mark.asyncio
async def test_forfeit_and_cancel_only_open_events(fake_db, tenant_ctx):
    grant = _grant()
    pending = make_event(grant=grant)
    due = make_event(grant=grant, status="due", sequence_number=2)
    vested = make_event(grant=grant, status="vested", sequence_number=3)
    fake_db.seed(grant, pending, due, vested)

    await vesting_events.forfeit_event(fake_db, tenant_ctx, pending.id, "Left the company")
    await vesting_events.cancel_event(fake_db, tenant_ctx, due.id)
    with pytest.raises(InvalidEventTransition):
        await vesting_events.forfeit_event(fake_db, tenant_ctx, vested.id)

    assert pending.status == "forfeited"
    assert due.status == "cancelled"
    assert vested.status == "vested"
    assert fake_db.all(AuditLog)[0].new_value["reason"] == "Left the company"


@pytest.mark.asyncio
async def test_forfeit_grant_closes_open_events_only(fake_db, tenant_ctx):
    grant = _grant()
    events = [
        make_event(grant=grant, status="pending"),
        make_event(grant=grant, status="due", sequence_number=2),
        make_event(grant=grant, status="vested", sequence_number=3),
    ]
    fake_db.seed(grant, *events)

    count = await vesting_events.forfeit_grant(fake_db, tenant_ctx, grant.id, "Resigned")

    assert count == 2
    assert [event.status for event in events] == ["forfeited", "forfeited", "vested"]
    assert grant.status == "forfeited"


def _tranches(fake_db, grant):
    events = [
        make_event(grant=grant, shares=300, status="vested", sequence_number=1, vesting_date=date(2025, 1, 15)),
        make_event(grant=grant, shares=300, status="due", sequence_number=2, vesting_date=date(2025, 4, 15)),
        make_event(grant=grant, shares=300, sequence_number=3, vesting_date=date(2026, 1, 15)),
        make_event(grant=grant, shares=300, sequence_number=4, vesting_date=date(2027, 1, 15)),
    ]
    fake_db.seed(grant, *events)
    return events


def test_split_acceleration_floors_each_tranche():
    assert vesting_events.split_acceleration([300, 301, 7], Decimal("33")) == [99, 99, 2]
    assert vesting_events.split_acceleration([300], Decimal("100")) == [300]


@pytest.mark.asyncio
async def test_accelerate_grant_pulls_open_tranches_forward(fake_db, tenant_ctx):
    grant = _grant()
    vested, due, later, last = _tranches(fake_db, grant)

    acceleration = await vesting_events.accelerate_grant(
        fake_db, tenant_ctx, grant.id, Decimal("33"), "Good leaver", as_of=AS_OF
    )

    assert acceleration.event_type == "acceleration"
    assert acceleration.status == "due"
    assert acceleration.vesting_date == AS_OF
    assert acceleration.sequence_number == 5
    assert acceleration.shares_to_vest == 297
    assert acceleration.performance_notes == "Good leaver"
    assert (vested.shares_to_vest, due.shares_to_vest, later.shares_to_vest, last.shares_to_vest) == (
        300,
        201,
        201,
        201,
    )
    events = fake_db.all(VestingEvent)
    assert sum(int(e.shares_to_vest) for e in events) == grant.total_shares
    ordered = sorted(events, key=lambda e: (e.vesting_date, e.sequence_number))
    assert [e.cumulative_shares_vested for e in ordered] == [300, 501, 798, 999, 1200]
    [audit] = fake_db.all(AuditLog)
    assert audit.action == "grant.accelerated"
    assert audit.new_value["accelerated_shares"] == 297


@pytest.mark.asyncio
async def test_full_acceleration_cancels_emptied_tranches(fake_db, tenant_ctx):
    grant = _grant()
    vested, due, later, last = _tranches(fake_db, grant)

    acceleration = await vesting_events.accelerate_grant(
        fake_db, tenant_ctx, grant.id, Decimal("100"), as_of=AS_OF
    )

    assert acceleration.shares_to_vest == 900
    assert [e.status for e in (due, later, last)] == ["cancelled"] * 3
    assert [e.shares_to_vest for e in (due, later, last)] == [0, 0, 0]
    assert vested.status == "vested"
    assert sum(int(e.shares_to_vest) for e in fake_db.all(VestingEvent)) == 1200

    settled = await vesting_events.settle_event(fake_db, tenant_ctx, acceleration.id, as_of=AS_OF)
    assert settled.status == "vested"


@pytest.mark.asyncio
async def test_acceleration_without_open_shares_is_rejected(fake_db, tenant_ctx):
    grant = _grant()
    fake_db.seed(grant, make_event(grant=grant, shares=1200, status="vested"))

    with pytest.raises(AccelerationNotApplicable) as exc_info:
        await vesting_events.accelerate_grant(fake_db, tenant_ctx, grant.id, Decimal("50"), as_of=AS_OF)

    assert exc_info.value.details["open_shares"] == 0
    assert len(fake_db.all(VestingEvent)) == 1


@pytest.mark.asyncio
async def test_acceleration_percentage_must_be_positive(fake_db, tenant_ctx):
    grant = _grant()
    _tranches(fake_db, grant)

    with pytest.raises(ValueError, match="above 0"):
        await vesting_events.accelerate_grant(fake_db, tenant_ctx, grant.id, Decimal("0"), as_of=AS_OF)
