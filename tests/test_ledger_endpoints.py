from datetime import date
from uuid import uuid4

from ltip_admin.models import IncentivePlan, LtipPool, ShareTransfer
from conftest import make_event, make_grant, make_plan, make_pool, make_portfolio, make_transfer


def test_create_and_list_pools(api_client, fake_db):
    response = api_client.post(
        "/api/v1/ltip-pools",
        json={"pool_code": "GEN", "pool_name": "General", "total_shares_allocated": 1000},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["code"] == "created"
    assert body["data"]["shares_available"] == 1000
    assert len(fake_db.all(LtipPool)) == 1

    listed = api_client.get("/api/v1/ltip-pools").json()["data"]
    assert [pool["pool_code"] for pool in listed] == ["GEN"]


def test_plan_over_pool_capacity_returns_shortfall(api_client, fake_db):
    pool = make_pool(total=1000)
    fake_db.seed(pool)

    response = api_client.post(
        "/api/v1/incentive-plans",
        json={
            "ltip_pool_id": str(pool.id),
            "plan_code": "RSU-24",
            "plan_name": "RSU 2024",
            "total_shares_allocated": 1200,
        },
    )

    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "insufficient_pool_capacity"
    assert body["details"]["shortfall"] == 200
    assert fake_db.all(IncentivePlan) == []


def test_esop_plan_without_price_fails_validation(api_client, fake_db):
    pool = make_pool(total=1000)
    fake_db.seed(pool)

    response = api_client.post(
        "/api/v1/incentive-plans",
        json={
            "ltip_pool_id": str(pool.id),
            "plan_code": "ESOP-24",
            "plan_name": "Options 2024",
            "plan_type": "ESOP",
            "total_shares_allocated": 100,
        },
    )

    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"


def test_delete_pool_in_use_is_conflict(api_client, fake_db):
    pool = make_pool(total=1000, used=100)
    fake_db.seed(pool, make_plan(pool=pool, total=100))

    response = api_client.delete(f"/api/v1/ltip-pools/{pool.id}")

    assert response.status_code == 409
    assert response.json()["details"]["plan_count"] == 1


def test_delete_unused_pool_returns_empty_envelope(api_client, fake_db):
    pool = make_pool(total=1000)
    fake_db.seed(pool)

    response = api_client.delete(f"/api/v1/ltip-pools/{pool.id}")

    assert response.status_code == 200
    assert response.json()["data"] is None
    assert fake_db.all(LtipPool) == []


def test_unknown_event_is_not_found(api_client):
    response = api_client.get(f"/api/v1/vesting-events/{uuid4()}")

    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


def test_settle_unsigned_grant_is_conflict(api_client, fake_db):
    plan = make_plan(pool=make_pool())
    grant = make_grant(plan=plan, accepted=False)
    event = make_event(grant=grant, status="due", vesting_date=date(2024, 1, 15))
    fake_db.seed(grant, event)

    response = api_client.post(f"/api/v1/vesting-events/{event.id}/settle", json={})

    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "contract_not_signed"
    assert body["details"]["grant_id"] == str(grant.id)
    assert event.status == "due"


def test_invalid_actor_header_is_rejected(api_client, fake_db):
    plan = make_plan(pool=make_pool())
    grant = make_grant(plan=plan)
    event = make_event(grant=grant, status="due")
    fake_db.seed(grant, event)

    response = api_client.post(
        f"/api/v1/vesting-events/{event.id}/settle",
        json={},
        headers={"X-Actor-ID": "not-a-uuid"},
    )

    assert response.status_code == 400
    assert event.status == "due"


def test_delete_transfer_reports_reverted_event(api_client, fake_db):
    plan = make_plan(pool=make_pool())
    grant = make_grant(plan=plan)
    event = make_event(grant=grant, status="transferred")
    company = make_portfolio(total=1000, available=900)
    employee = make_portfolio(portfolio_type="employee_vested", employee_id=grant.employee_id, total=100, available=100)
    transfer = make_transfer(event=event, source=company, destination=employee)
    fake_db.seed(grant, event, company, employee, transfer)

    response = api_client.delete(f"/api/v1/share-transfers/{transfer.id}")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["event_reverted"] is True
    assert data["located_by"] == "back_reference"
    assert data["balances_reversed"] is False
    assert fake_db.all(ShareTransfer) == []


def test_ledger_stats_endpoint(api_client, fake_db):
    pool = make_pool(total=1000, used=0)
    fake_db.seed(pool)

    response = api_client.get("/api/v1/ledger/stats", params={"as_of": "2025-06-01"})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["as_of"] == "2025-06-01"
    assert data["pools_total_allocated"] == 1000
    assert data["discrepancies"] == []
