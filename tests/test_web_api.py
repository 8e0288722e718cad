"""Tests for FastAPI web API.

Uses TestClient with an injected orchestrator and an in-memory tenant
settings store.
"""

import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from storeapp_builder import __version__
from storeapp_builder.builds.orchestrator import BuildOrchestrator, create_orchestrator
from storeapp_builder.tenants.store import InMemoryTenantSettingsStore
from storeapp_builder.tenants.vault import ConfigVault, TenantConfigService
from storeapp_builder.types import BuildArtifact
from web.app import create_app

TENANT = {"X-Tenant-ID": "tenant1"}
OTHER_TENANT = {"X-Tenant-ID": "tenant2"}
BUILD_INPUT = {"appName": "Acme Shop", "storeUrl": "http://localhost:3000"}


class SlowStrategy:
    """Strategy that keeps running until its job is cancelled."""

    name = "local"

    def is_available(self, config):
        return True

    async def attempt(self, ctx):
        ctx.report(40, "Working...")
        for _ in range(500):
            ctx.check_cancelled()
            await asyncio.sleep(0.01)
        return BuildArtifact(download_url="/apks/tenant1/slow.apk")


def wait_for_status(client, build_id, headers=TENANT, timeout=5.0):
    """Poll a build until it reaches a terminal status."""
    deadline = time.monotonic() + timeout
    while True:
        data = client.get(f"/builds/{build_id}/status", headers=headers).json()
        if data["status"] in ("success", "failed") or time.monotonic() > deadline:
            return data
        time.sleep(0.01)


@pytest.fixture
def tenant_store() -> InMemoryTenantSettingsStore:
    return InMemoryTenantSettingsStore({"tenant1": {}})


@pytest.fixture
def make_client(settings, tenant_store):
    """Return a factory for test clients sharing settings and tenant store."""
    clients = []

    def factory(orchestrator=None):
        service = TenantConfigService(tenant_store, ConfigVault("web-test-secret"))
        app = create_app(
            settings,
            orchestrator=orchestrator or create_orchestrator(settings),
            config_service=service,
        )
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield factory

    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    return make_client()


class TestHealthEndpoints:
    """Tests for health endpoints."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "version": __version__}

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["name"] == "Storefront App Builder API"


class TestConfigEndpoint:
    """Tests for the configuration endpoint."""

    def test_no_secrets(self, client, settings):
        response = client.get("/config")
        assert response.status_code == 200
        data = response.json()
        assert data["cloud_configured"] is False
        assert data["public_url_prefix"] == "/apks"
        assert "cloud_api_token" not in data
        assert "encryption_key" not in data


class TestBuildEndpoints:
    """Tests for build endpoints."""

    def test_tenant_header_required(self, client):
        response = client.post("/builds", json=BUILD_INPUT)
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "tenant_required"

    def test_invalid_input(self, client):
        response = client.post("/builds", json={"storeUrl": "ftp://x"}, headers=TENANT)
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "validation"

    def test_simulated_build(self, client, settings):
        response = client.post("/builds", json=BUILD_INPUT, headers=TENANT)
        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "pending"
        assert data["build_id"].startswith("build-tenant1-")

        status = wait_for_status(client, data["build_id"])

        assert status["status"] == "success"
        assert status["progress"] == 100
        assert status["is_simulated"] is True
        assert status["download_url"] == settings.simulated_artifact_url

    def test_list_builds(self, client):
        build_id = client.post("/builds", json=BUILD_INPUT, headers=TENANT).json()[
            "build_id"
        ]
        wait_for_status(client, build_id)

        own = client.get("/builds", headers=TENANT).json()
        other = client.get("/builds", headers=OTHER_TENANT).json()

        assert [job["build_id"] for job in own] == [build_id]
        assert other == []

    def test_status_hidden_from_other_tenants(self, client):
        build_id = client.post("/builds", json=BUILD_INPUT, headers=TENANT).json()[
            "build_id"
        ]

        response = client.get(f"/builds/{build_id}/status", headers=OTHER_TENANT)

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "build_not_found"
        wait_for_status(client, build_id)

    def test_unknown_build(self, client):
        response = client.get("/builds/build-missing/status", headers=TENANT)
        assert response.status_code == 404

    def test_cancel(self, make_client, registry):
        client = make_client(BuildOrchestrator(registry, [SlowStrategy()]))
        build_id = client.post("/builds", json=BUILD_INPUT, headers=TENANT).json()[
            "build_id"
        ]
        deadline = time.monotonic() + 5
        while (
            client.get(f"/builds/{build_id}/status", headers=TENANT).json()["status"]
            != "building"
            and time.monotonic() < deadline
        ):
            time.sleep(0.01)

        response = client.post(f"/builds/{build_id}/cancel", headers=TENANT)
        assert response.status_code == 200
        assert response.json() == {"build_id": build_id, "cancelled": True}

        status = client.get(f"/builds/{build_id}/status", headers=TENANT).json()
        assert status["status"] == "failed"
        assert status["error_code"] == "cancelled"

        again = client.post(f"/builds/{build_id}/cancel", headers=TENANT)
        assert again.status_code == 409
        assert again.json()["detail"]["code"] == "build_not_running"

    def test_serves_published_packages(self, client, publisher):
        url = publisher.publish_bytes("tenant1", "shop-debug.apk", b"APK")

        response = client.get(url)

        assert response.status_code == 200
        assert response.content == b"APK"


class TestAppConfigEndpoints:
    """Tests for tenant build settings endpoints."""

    def test_empty(self, client):
        response = client.get("/app-config", headers=TENANT)
        assert response.status_code == 200
        assert response.json() == {"tenant_id": "tenant1", "config": None}

    def test_save_and_read(self, client, tenant_store):
        config = {"appName": "Acme Shop", "primaryColor": "#112233"}

        response = client.post("/app-config", json=config, headers=TENANT)
        assert response.status_code == 200
        assert response.json() == {"tenant_id": "tenant1", "config": config}

        stored = tenant_store.get_settings("tenant1")["appBuilder"]
        assert "encryptedData" in stored

        response = client.get("/app-config", headers=TENANT)
        assert response.json()["config"] == config

    def test_unknown_tenant(self, client):
        response = client.post(
            "/app-config", json={"appName": "X"}, headers={"X-Tenant-ID": "ghost"}
        )
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "tenant_not_found"
