from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from ltip_admin.models import AuditLog, Portfolio, SettlementProfile, VestingEvent, VestingMilestone, VestingSchedule
from ltip_admin.schemas.ltip import GrantCreate
from ltip_admin.schemas.transfers import CompanyPortfolioCreate, SettlementProfileUpsert, VerificationStatus
from ltip_admin.schemas.vesting import VestingMilestoneCreate, VestingScheduleCreate
from ltip_admin.services import allocation, settlement_profiles, share_transfers, vesting_templates
from ltip_admin.services.errors import NotFound, PortfolioAlreadyExists, SettlementProfileIncomplete
from conftest import make_event, make_grant, make_metric, make_plan, make_pool

ACCOUNTS = {
    "broker_custodian_name": "Nordic Custody AB",
    "broker_account_number": "BRK-0042",
    "investor_number": "INV-7781",
    "investment_account_number": "ISK-5521",
}


def _milestones(*rows):
    return [
        VestingMilestoneCreate(sequence_order=order, vesting_percentage=Decimal(pct), months_from_start=months)
        for order, pct, months in rows
    ]


def test_create_and_list_performance_metrics(api_client, fake_db):
    response = api_client.post(
        "/api/v1/performance-metrics",
        json={"name": "ARR growth", "metric_type": "financial", "target_value": "25.5"},
    )

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["name"] == "ARR growth"
    assert data["is_achieved"] is False

    listed = api_client.get("/api/v1/performance-metrics").json()["data"]
    assert [metric["id"] for metric in listed] == [data["id"]]
    assert api_client.get(f"/api/v1/performance-metrics/{uuid4()}").status_code == 404


@pytest.mark.asyncio
async def test_schedule_template_with_milestones_drives_grant_events(fake_db, tenant_ctx):
    payload = VestingScheduleCreate(
        name="Back-loaded",
        total_duration_months=36,
        cliff_months=0,
        milestones=_milestones((2, "60", 36), (1, "40", 12)),
    )

    schedule, milestones = await vesting_templates.create_schedule_template(fake_db, tenant_ctx, payload)

    assert [m.sequence_order for m in milestones] == [1, 2]
    assert len(fake_db.all(VestingMilestone)) == 2
    assert fake_db.all(AuditLog)[-1].action == "vesting_schedule.created"

    pool = make_pool(total=1000, used=500)
    plan = make_plan(pool=pool, total=500)
    fake_db.seed(pool, plan)
    await allocation.create_grant(
        fake_db,
        tenant_ctx,
        GrantCreate(
            plan_id=plan.id,
            employee_id=uuid4(),
            grant_date=date(2024, 3, 1),
            total_shares=100,
            vesting_schedule_id=schedule.id,
        ),
    )
    events = sorted(fake_db.all(VestingEvent), key=lambda e: e.sequence_number)
    assert [e.shares_to_vest for e in events] == [40, 60]
    assert [e.vesting_milestone_id for e in events] == [m.id for m in milestones]


@pytest.mark.asyncio
async def test_schedule_template_milestones_must_total_one_hundred(fake_db, tenant_ctx):
    payload = VestingScheduleCreate(name="Short", milestones=_milestones((1, "50", 12), (2, "40", 24)))

    with pytest.raises(ValueError, match="must total 100"):
        await vesting_templates.create_schedule_template(fake_db, tenant_ctx, payload)

    assert fake_db.all(VestingSchedule) == []
    assert fake_db.all(VestingMilestone) == []


@pytest.mark.asyncio
async def test_schedule_template_rejects_duplicate_order_and_unknown_metric(fake_db, tenant_ctx):
    duplicate = VestingScheduleCreate(name="Dup", milestones=_milestones((1, "50", 12), (1, "50", 24)))
    with pytest.raises(ValueError, match="unique"):
        await vesting_templates.create_schedule_template(fake_db, tenant_ctx, duplicate)

    foreign_metric = make_metric(org_id="other-co")
    fake_db.seed(foreign_metric)
    gated = VestingScheduleCreate(
        name="Gated",
        schedule_type="performance_based",
        milestones=[
            VestingMilestoneCreate(
                sequence_order=1,
                vesting_percentage=Decimal("100"),
                months_from_start=12,
                milestone_type="performance",
                performance_metric_id=foreign_metric.id,
            )
        ],
    )
    with pytest.raises(NotFound):
        await vesting_templates.create_schedule_template(fake_db, tenant_ctx, gated)
    assert fake_db.all(VestingSchedule) == []


def test_schedule_template_endpoints(api_client, fake_db):
    response = api_client.post(
        "/api/v1/vesting-schedules",
        json={
            "name": "Standard",
            "total_duration_months": 48,
            "cliff_months": 12,
            "vesting_frequency": "quarterly",
            "milestones": [
                {"sequence_order": 1, "vesting_percentage": "25", "months_from_start": 12},
                {"sequence_order": 2, "vesting_percentage": "75", "months_from_start": 48},
            ],
        },
    )

    assert response.status_code == 201
    data = response.json()["data"]
    assert len(data["milestones"]) == 2

    detail = api_client.get(f"/api/v1/vesting-schedules/{data['id']}").json()["data"]
    assert [m["sequence_order"] for m in detail["milestones"]] == [1, 2]
    listed = api_client.get("/api/v1/vesting-schedules").json()["data"]
    assert [item["name"] for item in listed] == ["Standard"]


def test_schedule_template_bad_milestones_are_rejected_over_http(api_client, fake_db):
    out_of_range = api_client.post(
        "/api/v1/vesting-schedules",
        json={
            "name": "Broken",
            "milestones": [
                {"sequence_order": 1, "vesting_percentage": "-20", "months_from_start": 12},
                {"sequence_order": 2, "vesting_percentage": "120", "months_from_start": 24},
            ],
        },
    )
    assert out_of_range.status_code == 422

    short = api_client.post(
        "/api/v1/vesting-schedules",
        json={
            "name": "Short",
            "milestones": [{"sequence_order": 1, "vesting_percentage": "90", "months_from_start": 12}],
        },
    )
    assert short.status_code == 400
    assert fake_db.all(VestingSchedule) == []


@pytest.mark.asyncio
async def test_settlement_profile_lifecycle(fake_db, tenant_ctx):
    employee_id = uuid4()

    profile = await settlement_profiles.upsert_settlement_profile(
        fake_db, tenant_ctx, employee_id, SettlementProfileUpsert(**ACCOUNTS)
    )
    assert profile.verification_status == "pending"
    created = fake_db.all(AuditLog)[-1]
    assert created.action == "settlement_profile.created"
    assert created.new_value["investment_account_number"] == "****5521"
    assert "ISK-5521" not in str(created.new_value)

    verified = await settlement_profiles.verify_settlement_profile(
        fake_db, tenant_ctx, employee_id, VerificationStatus.VERIFIED
    )
    assert verified.verification_status == "verified"
    assert verified.verified_at is not None

    await settlement_profiles.upsert_settlement_profile(
        fake_db, tenant_ctx, employee_id, SettlementProfileUpsert(bank_name="Nordbank")
    )
    assert profile.verification_status == "verified"

    await settlement_profiles.upsert_settlement_profile(
        fake_db, tenant_ctx, employee_id, SettlementProfileUpsert(investment_account_number="ISK-9000")
    )
    assert profile.verification_status == "pending"
    assert profile.verified_at is None
    assert len(fake_db.all(SettlementProfile)) == 1


@pytest.mark.asyncio
async def test_incomplete_profile_cannot_be_verified(fake_db, tenant_ctx):
    employee_id = uuid4()
    await settlement_profiles.upsert_settlement_profile(
        fake_db, tenant_ctx, employee_id, SettlementProfileUpsert(broker_custodian_name="Nordic Custody AB")
    )

    with pytest.raises(SettlementProfileIncomplete) as exc_info:
        await settlement_profiles.verify_settlement_profile(
            fake_db, tenant_ctx, employee_id, VerificationStatus.VERIFIED
        )
    assert "investor_number" in exc_info.value.details["missing_fields"]

    rejected = await settlement_profiles.verify_settlement_profile(
        fake_db, tenant_ctx, employee_id, VerificationStatus.REJECTED
    )
    assert rejected.verification_status == "rejected"

    with pytest.raises(NotFound):
        await settlement_profiles.verify_settlement_profile(
            fake_db, tenant_ctx, uuid4(), VerificationStatus.VERIFIED
        )


def test_settlement_profile_endpoints_mask_identifiers(api_client, fake_db):
    employee_id = uuid4()

    response = api_client.put(f"/api/v1/settlement-profiles/{employee_id}", json=ACCOUNTS)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["investment_account_number"] == "****5521"
    assert data["broker_account_number"] == "****0042"
    assert data["verification_status"] == "pending"
    assert data["missing_fields"] == []

    verified = api_client.post(
        f"/api/v1/settlement-profiles/{employee_id}/verification",
        json={"verification_status": "verified"},
    )
    assert verified.status_code == 200
    assert verified.json()["data"]["verification_status"] == "verified"

    undecided = api_client.post(
        f"/api/v1/settlement-profiles/{employee_id}/verification",
        json={"verification_status": "pending"},
    )
    assert undecided.status_code == 422
    assert api_client.get(f"/api/v1/settlement-profiles/{uuid4()}").status_code == 404


@pytest.mark.asyncio
async def test_company_portfolio_is_created_once(fake_db, tenant_ctx):
    portfolio = await share_transfers.create_company_portfolio(
        fake_db,
        tenant_ctx,
        CompanyPortfolioCreate(portfolio_number="CO-RESERVE", total_shares=1000, locked_shares=100),
    )

    assert portfolio.portfolio_type == "company_reserved"
    assert (portfolio.total_shares, portfolio.available_shares, portfolio.locked_shares) == (1000, 900, 100)
    assert await share_transfers.get_company_portfolio(fake_db, tenant_ctx) is portfolio

    with pytest.raises(PortfolioAlreadyExists):
        await share_transfers.create_company_portfolio(
            fake_db, tenant_ctx, CompanyPortfolioCreate(portfolio_number="CO-2", total_shares=10)
        )
    assert len(fake_db.all(Portfolio)) == 1


def test_company_portfolio_endpoint(api_client, fake_db):
    body = {"portfolio_number": "CO-RESERVE", "total_shares": 500}

    created = api_client.post("/api/v1/portfolios/company", json=body)
    assert created.status_code == 201
    assert created.json()["data"]["available_shares"] == 500

    again = api_client.post("/api/v1/portfolios/company", json=body)
    assert again.status_code == 409
    assert again.json()["code"] == "portfolio_already_exists"

    locked_over_total = api_client.post(
        "/api/v1/portfolios/company", json={"portfolio_number": "CO-X", "total_shares": 5, "locked_shares": 6}
    )
    assert locked_over_total.status_code == 422


@pytest.mark.asyncio
async def test_set_up_ledger_then_transfer(fake_db, tenant_ctx):
    pool = make_pool()
    plan = make_plan(pool=pool)
    grant = make_grant(plan=plan)
    event = make_event(grant=grant, status="vested", shares=100)
    fake_db.seed(grant, event)

    await share_transfers.create_company_portfolio(
        fake_db, tenant_ctx, CompanyPortfolioCreate(portfolio_number="CO-RESERVE", total_shares=1000)
    )
    await settlement_profiles.upsert_settlement_profile(
        fake_db, tenant_ctx, grant.employee_id, SettlementProfileUpsert(**ACCOUNTS)
    )
    await settlement_profiles.verify_settlement_profile(
        fake_db, tenant_ctx, grant.employee_id, VerificationStatus.VERIFIED
    )

    result = await share_transfers.process_transfer(fake_db, tenant_ctx, event.id)

    assert result.reconciliation_required is False
    assert result.source.available_shares == 900
    assert result.settlement_account == "****5521"


def test_accelerate_endpoint_creates_due_event(api_client, fake_db):
    plan = make_plan(pool=make_pool())
    grant = make_grant(plan=plan, total=400)
    fake_db.seed(
        grant,
        make_event(grant=grant, shares=200, sequence_number=1, vesting_date=date(2099, 1, 15)),
        make_event(grant=grant, shares=200, sequence_number=2, vesting_date=date(2100, 1, 15)),
    )

    response = api_client.post(
        f"/api/v1/grants/{grant.id}/accelerate",
        json={"percentage": "50", "reason": "Change of control", "as_of": "2025-06-01"},
    )

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["event_type"] == "acceleration"
    assert data["status"] == "due"
    assert data["shares_to_vest"] == 200
    assert sum(int(e.shares_to_vest) for e in fake_db.all(VestingEvent)) == 400

    over = api_client.post(f"/api/v1/grants/{grant.id}/accelerate", json={"percentage": "150"})
    assert over.status_code == 422
