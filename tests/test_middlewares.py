import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from app.core import context
from app.core import limiter as limiter_module
from app.middlewares.request_context import RequestContextMiddleware
from app.middlewares.security_headers import SecurityHeadersMiddleware
from app.middlewares.trust_proxies import TrustedProxiesMiddleware, client_from_forwarded


def _build_app(**security_kwargs) -> FastAPI:
    app = FastAPI()
    app.add_middleware(TrustedProxiesMiddleware, proxies_count=1)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, **security_kwargs)

    @app.get("/api/v1/staff/echo")
    async def staff_echo(request: Request):
        return {
            "request_id": context.get_request_id(),
            "tenant_id": context.get_tenant_id(),
            "client": request.client.host if request.client else None,
        }

    @app.get("/public")
    async def public():
        return {"ok": True}

    return app


@pytest.fixture
def client() -> TestClient:
    return TestClient(_build_app())


def test_request_id_generated_and_echoed(client):
    resp = client.get("/api/v1/staff/echo")

    request_id = resp.headers["x-request-id"]
    assert len(request_id) == 36
    assert resp.json()["request_id"] == request_id


def test_plain_request_id_is_reused(client):
    resp = client.get("/api/v1/staff/echo", headers={"X-Request-ID": "trace-42.a"})

    assert resp.headers["x-request-id"] == "trace-42.a"


def test_unsafe_request_id_is_replaced(client):
    supplied = "forged id " + "x" * 80
    resp = client.get("/api/v1/staff/echo", headers={"X-Request-ID": supplied})

    assert resp.headers["x-request-id"] != supplied
    assert resp.json()["request_id"] == resp.headers["x-request-id"]


def test_tenant_header_bound_to_context(client):
    resp = client.get("/api/v1/staff/echo", headers={"X-Tenant-ID": "credito-norte"})

    assert resp.json()["tenant_id"] == "credito-norte"
    assert context.get_tenant_id() == "-"


def test_staff_paths_are_not_cacheable(client):
    staff = client.get("/api/v1/staff/echo")
    public = client.get("/public")

    assert staff.headers["cache-control"] == "no-store"
    assert "cache-control" not in public.headers
    assert public.headers["x-frame-options"] == "DENY"


def test_hsts_toggle():
    with_hsts = TestClient(_build_app(enable_hsts=True)).get("/public")
    without = TestClient(_build_app(enable_hsts=False)).get("/public")

    assert "strict-transport-security" in with_hsts.headers
    assert "strict-transport-security" not in without.headers


def test_forwarded_client_is_used(client):
    resp = client.get("/api/v1/staff/echo", headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.2"})

    assert resp.json()["client"] == "203.0.113.7"


@pytest.mark.parametrize(
    "value,proxies,expected",
    [
        ("203.0.113.7, 10.0.0.2", 1, "203.0.113.7"),
        ("198.51.100.1, 203.0.113.7, 10.0.0.2", 1, "203.0.113.7"),
        ("198.51.100.1, 203.0.113.7, 10.0.0.2", 2, "198.51.100.1"),
        ("10.0.0.2", 1, None),
        ("not-an-ip, 10.0.0.2", 1, None),
        ("203.0.113.7, 10.0.0.2", 0, None),
    ],
)
def test_client_from_forwarded(value, proxies, expected):
    assert client_from_forwarded(value, proxies) == expected


def test_rate_limit_key_is_tenant_scoped(monkeypatch):
    monkeypatch.setattr(limiter_module.settings, "default_org_id", "default")
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(b"x-tenant-id", b"credito-norte")],
        "client": ("203.0.113.7", 443),
    }

    assert limiter_module.tenant_scoped_key(Request(scope)) == "credito-norte:203.0.113.7"
    assert limiter_module.tenant_scoped_key(Request({**scope, "headers": []})) == "default:203.0.113.7"
