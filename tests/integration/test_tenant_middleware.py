# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Integration tests for tenant database routing.

Runs a FastAPI application with TenantDatabaseMiddleware over the
in-memory server, engine and directory fakes.
"""

import pytest
from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
from fastapi.testclient import TestClient

from hrms_tenancy.api.dependencies import get_tenant_context
from hrms_tenancy.api.middleware import TenantDatabaseMiddleware, TenantRequestContext
from hrms_tenancy.core.naming import physical_database_name

TENANT_ID = "11111111-1111-1111-1111-111111111111"
OTHER_TENANT_ID = "22222222-2222-2222-2222-222222222222"
INACTIVE_TENANT_ID = "33333333-3333-3333-3333-333333333333"

TENANT_DB = physical_database_name(TENANT_ID, "employee")
OTHER_DB = physical_database_name(OTHER_TENANT_ID, "employee")


class ActiveConnectionRecorder:
    """Outermost ASGI layer noting the active connection once a request is done."""

    def __init__(self, app, pool, seen):
        self.app = app
        self.pool = pool
        self.seen = seen

    async def __call__(self, scope, receive, send):
        try:
            await self.app(scope, receive, send)
        finally:
            if scope["type"] == "http":
                self.seen.append(self.pool.active_connection())


@pytest.fixture
def seen():
    return []


@pytest.fixture
def app(pool, directory, settings, server, seen):
    server.databases.update({TENANT_DB, OTHER_DB})
    app = FastAPI()
    app.add_middleware(
        TenantDatabaseMiddleware,
        get_pool=lambda: pool,
        get_directory=lambda: directory,
        settings=settings,
    )
    app.add_middleware(ActiveConnectionRecorder, pool=pool, seen=seen)

    @app.get("/api/whoami")
    async def whoami(context: TenantRequestContext = Depends(get_tenant_context)):
        active = pool.active_connection()
        return {
            "tenant_id": context.tenant_id,
            "database": context.database_name,
            "active_database": active.database_name,
        }

    @app.post("/api/employees")
    async def create_employee(context: TenantRequestContext = Depends(get_tenant_context)):
        return {"tenant_id": context.tenant_id}

    @app.get("/api/explode")
    async def explode():
        raise RuntimeError("handler failure")

    @app.get("/api/failure")
    async def failure(context: TenantRequestContext = Depends(get_tenant_context)):
        return JSONResponse(status_code=500, content={"detail": "upstream unavailable"})

    @app.get("/health")
    async def health():
        return {"active_database": pool.active_connection().database_name}

    return app


@pytest.fixture
def client(app):
    with TestClient(app, raise_server_exceptions=False) as client:
        yield client


@pytest.mark.integration
class TestIdentifierSources:
    def test_client_id_header(self, client):
        response = client.get("/api/whoami", headers={"HRMS-Client-ID": TENANT_ID})

        assert response.status_code == 200
        assert response.json() == {
            "tenant_id": TENANT_ID,
            "database": TENANT_DB,
            "active_database": TENANT_DB,
        }

    def test_client_id_header_wins_over_domain(self, client):
        response = client.get(
            "/api/whoami",
            headers={"HRMS-Client-ID": TENANT_ID, "X-Tenant-Domain": "globex.example.com"},
        )
        assert response.json()["tenant_id"] == TENANT_ID

    def test_domain_header(self, client):
        response = client.get("/api/whoami", headers={"X-Tenant-Domain": "globex.example.com"})
        assert response.json()["database"] == OTHER_DB

    def test_tenant_id_header(self, client):
        response = client.get("/api/whoami", headers={"X-Tenant-ID": OTHER_TENANT_ID})
        assert response.json()["tenant_id"] == OTHER_TENANT_ID

    def test_query_parameter(self, client):
        response = client.get("/api/whoami", params={"tenant_id": TENANT_ID})
        assert response.json()["tenant_id"] == TENANT_ID

    def test_json_body(self, client):
        response = client.post("/api/employees", json={"tenant_id": TENANT_ID, "name": "Ann"})
        assert response.status_code == 200
        assert response.json() == {"tenant_id": TENANT_ID}

    def test_invalid_json_body_is_ignored(self, client):
        response = client.post(
            "/api/employees",
            content=b"{not json",
            headers={"content-type": "application/json"},
        )
        assert response.status_code == 400

    def test_subdomain(self, client, directory):
        response = client.get("/api/whoami", headers={"host": "acme.hrms.local"})

        assert directory.identifiers == ["acme"]
        assert response.status_code == 404

    @pytest.mark.parametrize("host", ["www.hrms.local", "localhost:8000", "127.0.0.1", "hrms"])
    def test_hosts_without_tenant(self, client, directory, host):
        response = client.get("/api/whoami", headers={"host": host})

        assert response.status_code == 400
        assert directory.identifiers == []


@pytest.mark.integration
class TestRejections:
    def test_missing_identifier(self, client):
        response = client.get("/api/whoami")

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error_code"]
        assert body["phase"] == "identify"
        assert body["service"] == "employee"
        assert "timestamp" in body

    def test_unknown_tenant(self, client):
        response = client.get(
            "/api/whoami", headers={"HRMS-Client-ID": "99999999-9999-9999-9999-999999999999"}
        )
        assert response.status_code == 404
        assert response.json()["message"] == "Tenant not found"

    def test_inactive_tenant(self, client):
        response = client.get("/api/whoami", headers={"HRMS-Client-ID": INACTIVE_TENANT_ID})
        assert response.status_code == 403

    def test_database_not_provisioned_here(self, client, server):
        server.databases.discard(TENANT_DB)

        response = client.get("/api/whoami", headers={"HRMS-Client-ID": TENANT_ID})

        assert response.status_code == 404
        body = response.json()
        assert body["message"] == "Tenant database not found on employee service"
        assert TENANT_DB not in response.text

    def test_verification_mismatch(self, client, engine_factory):
        engine_factory.mismatched[TENANT_DB] = OTHER_DB

        response = client.get("/api/whoami", headers={"HRMS-Client-ID": TENANT_ID})

        assert response.status_code == 500
        assert response.json()["phase"] == "verify_connection"
        assert TENANT_DB not in response.text
        assert OTHER_DB not in response.text

    def test_unreachable_database(self, client, engine_factory):
        engine_factory.unreachable.add(TENANT_DB)

        response = client.get("/api/whoami", headers={"HRMS-Client-ID": TENANT_ID})

        assert response.status_code == 500
        assert response.json()["message"] == "Database connection failed"


@pytest.mark.integration
class TestRestoration:
    def test_entry_released_after_request(self, client, pool, engine_factory):
        client.get("/api/whoami", headers={"HRMS-Client-ID": TENANT_ID})

        assert pool.get_entry(TENANT_ID) is None
        assert engine_factory.built_for(TENANT_DB)[0].disposed

    def test_restored_after_handler_exception(self, client, pool, engine_factory):
        response = client.get("/api/explode", headers={"HRMS-Client-ID": TENANT_ID})

        assert response.status_code == 500
        assert pool.get_entry(TENANT_ID) is None
        assert engine_factory.built_for(TENANT_DB)[0].disposed

    def test_consecutive_requests_route_independently(self, client):
        first = client.get("/api/whoami", headers={"HRMS-Client-ID": TENANT_ID})
        second = client.get("/api/whoami", headers={"HRMS-Client-ID": OTHER_TENANT_ID})

        assert first.json()["active_database"] == TENANT_DB
        assert second.json()["active_database"] == OTHER_DB

    def test_public_path_stays_on_central(self, client, directory):
        response = client.get("/health", headers={"HRMS-Client-ID": TENANT_ID})

        assert response.status_code == 200
        assert response.json() == {"active_database": "hrms"}
        assert directory.identifiers == []

    def test_central_active_after_request(self, client, seen):
        response = client.get("/api/whoami", headers={"HRMS-Client-ID": TENANT_ID})

        assert response.json()["active_database"] == TENANT_DB
        assert seen[-1].is_central

    def test_central_active_after_handler_exception(self, client, seen):
        response = client.get("/api/explode", headers={"HRMS-Client-ID": TENANT_ID})

        assert response.status_code == 500
        assert seen[-1].is_central

    def test_central_active_after_handler_returns_500(self, client, pool, seen):
        response = client.get("/api/failure", headers={"HRMS-Client-ID": TENANT_ID})

        assert response.status_code == 500
        assert response.json() == {"detail": "upstream unavailable"}
        assert seen[-1].is_central
        assert pool.get_entry(TENANT_ID) is None

    def test_central_active_after_rejection(self, client, engine_factory, seen):
        engine_factory.mismatched[TENANT_DB] = OTHER_DB

        response = client.get("/api/whoami", headers={"HRMS-Client-ID": TENANT_ID})

        assert response.status_code == 500
        assert seen[-1].is_central
