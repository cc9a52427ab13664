from uuid import UUID

from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
import pytest

from ltip_admin.api import deps
from ltip_admin.core.settings import settings
from ltip_admin.core.tenant import normalize_org_id


@pytest.fixture(autouse=True)
def _base_env(monkeypatch):
    monkeypatch.setattr(settings, "default_org_id", "default")
    yield


def _build_app() -> FastAPI:
    app = FastAPI()

    @app.get("/ctx")
    async def ctx_route(
        ctx: deps.TenantContext = Depends(deps.get_tenant_context),
        actor_id: UUID | None = Depends(deps.get_actor_id),
    ):
        return {"org_id": ctx.org_id, "actor_id": str(actor_id) if actor_id else None}

    return app


def test_single_mode_uses_default_org(monkeypatch):
    monkeypatch.setattr(settings, "tenancy_mode", "single")
    monkeypatch.setattr(settings, "default_org_id", "single-org")
    client = TestClient(_build_app())
    resp = client.get("/ctx", headers={"X-Tenant-ID": "ignored"})
    assert resp.status_code == 200
    assert resp.json()["org_id"] == "single-org"


def test_multi_mode_requires_header(monkeypatch):
    monkeypatch.setattr(settings, "tenancy_mode", "multi")
    client = TestClient(_build_app())
    resp = client.get("/ctx")
    assert resp.status_code == 400
    assert "Tenant resolution failed" in resp.json()["detail"]


def test_multi_mode_normalizes_header(monkeypatch):
    monkeypatch.setattr(settings, "tenancy_mode", "multi")
    client = TestClient(_build_app())
    resp = client.get("/ctx", headers={"X-Tenant-ID": " Acme-Nordic "})
    assert resp.status_code == 200
    assert resp.json()["org_id"] == "acme-nordic"


def test_multi_mode_rejects_malformed_header(monkeypatch):
    monkeypatch.setattr(settings, "tenancy_mode", "multi")
    client = TestClient(_build_app())
    resp = client.get("/ctx", headers={"X-Tenant-ID": "acme corp"})
    assert resp.status_code == 400


def test_actor_header_is_parsed():
    client = TestClient(_build_app())
    actor = "6f1c2a9e-3b4d-4c5e-8f70-91a2b3c4d5e6"
    resp = client.get("/ctx", headers={"X-Actor-ID": actor})
    assert resp.json()["actor_id"] == actor


def test_normalize_org_id_bounds():
    assert normalize_org_id("  Org_1 ") == "org_1"
    with pytest.raises(ValueError):
        normalize_org_id("a")
    with pytest.raises(ValueError):
        normalize_org_id("-leading-dash")
