import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from app.api import deps
from app.core import tenant
from app.core.errors import register_exception_handlers
from app.core.settings import settings


def _build_app() -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/ctx")
    async def ctx_route(ctx: deps.TenantContext = Depends(deps.get_tenant_context)):
        return {"org_id": ctx.org_id}

    return app


@pytest.fixture
def multi_tenant(monkeypatch):
    monkeypatch.setattr(settings, "tenancy_mode", "multi")
    monkeypatch.setattr(settings, "allowed_tenant_hosts_raw", "")
    return TestClient(_build_app())


def test_single_mode_ignores_header(monkeypatch):
    monkeypatch.setattr(settings, "tenancy_mode", "single")
    monkeypatch.setattr(settings, "default_org_id", "lender-mx")
    client = TestClient(_build_app())

    resp = client.get("/ctx", headers={"X-Tenant-ID": "someone-else"})

    assert resp.status_code == 200
    assert resp.json()["org_id"] == "lender-mx"


def test_multi_mode_without_tenant_is_rejected(multi_tenant):
    resp = multi_tenant.get("/ctx")

    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == "bad_request"
    assert "Tenant resolution failed" in body["message"]


def test_multi_mode_header(multi_tenant):
    resp = multi_tenant.get("/ctx", headers={"X-Tenant-ID": "credito-norte"})

    assert resp.json()["org_id"] == "credito-norte"


def test_multi_mode_rejects_malformed_header(multi_tenant):
    resp = multi_tenant.get("/ctx", headers={"X-Tenant-ID": "Bad Tenant!"})

    assert resp.status_code == 400


def test_multi_mode_subdomain(multi_tenant):
    resp = multi_tenant.get("/ctx", headers={"host": "credito-norte.lend.example"})

    assert resp.status_code == 200
    assert resp.json()["org_id"] == "credito-norte"


def test_subdomain_ignored_for_unlisted_host(monkeypatch):
    monkeypatch.setattr(settings, "tenancy_mode", "multi")
    monkeypatch.setattr(settings, "allowed_tenant_hosts_raw", "acme.lend.example")
    client = TestClient(_build_app())

    assert client.get("/ctx", headers={"host": "other.lend.example"}).status_code == 400
    assert client.get("/ctx", headers={"host": "acme.lend.example"}).json()["org_id"] == "acme"


@pytest.mark.parametrize(
    "host,expected",
    [
        ("acme.lend.example", "acme"),
        ("ACME.lend.example:8443", "acme"),
        ("lend.example", None),
        ("-bad.lend.example", None),
    ],
)
def test_tenant_from_host(host, expected):
    assert tenant.tenant_from_host(host) == expected


def test_normalize_org_id():
    assert tenant.normalize_org_id("  Credito_MX ") == "credito_mx"
    with pytest.raises(ValueError):
        tenant.normalize_org_id("x")
    with pytest.raises(ValueError):
        tenant.normalize_org_id("has space")
