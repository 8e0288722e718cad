"""Tests for builds/cloud.py module.

Uses respx to mock the CI builds API.
"""

import json

import httpx
import pytest
import respx

from storeapp_builder.builds.cloud import CloudBuildClient, CloudBuildState, poll_progress
from storeapp_builder.builds.errors import (
    ArtifactError,
    BuildCancelledError,
    ExternalServiceError,
)
from storeapp_builder.builds.models import BuildConfig
from storeapp_builder.builds.orchestrator import BuildContext

API_URL = "https://ci.example.com/builds"


@pytest.fixture
def cloud(publisher) -> CloudBuildClient:
    return CloudBuildClient(
        api_url=API_URL,
        api_token="token-123",
        app_id="app-456",
        publisher=publisher,
        poll_interval=0,
        max_attempts=3,
    )


@pytest.fixture
def config() -> BuildConfig:
    return BuildConfig.parse(
        {"appName": "Shop", "storeUrl": "https://shop.example.com", "appVersion": "2.0.0"}
    )


def status_response(status: str, build_status: str | None = None, artefacts=None):
    return httpx.Response(
        200,
        json={
            "build": {
                "_id": "cb-1",
                "status": status,
                "buildStatus": build_status,
                "artefacts": artefacts or [],
            }
        },
    )


class TestCloudBuildState:
    """Tests for CloudBuildState parsing."""

    def test_nested_payload(self):
        state = CloudBuildState.from_payload(
            {"build": {"status": "finished", "buildStatus": "success"}}
        )
        assert state.finished
        assert state.succeeded

    def test_flat_payload(self):
        state = CloudBuildState.from_payload({"status": "building"})
        assert not state.finished
        assert state.artefacts == []

    def test_missing_status(self):
        with pytest.raises(ExternalServiceError):
            CloudBuildState.from_payload({"build": {}})

    def test_poll_progress_is_capped(self):
        assert poll_progress(0) == 30
        assert poll_progress(5) == 40
        assert poll_progress(59) == 90


class TestAvailability:
    """Tests for credential gating."""

    def test_unconfigured_client_is_unavailable(self, publisher, config):
        client = CloudBuildClient(API_URL, None, None, publisher)
        assert not client.is_available(config)

    def test_configured_client_is_available(self, cloud, config):
        assert cloud.is_available(config)


class TestTrigger:
    """Tests for triggering builds."""

    @pytest.mark.asyncio
    async def test_trigger_sends_workflow_and_variables(self, cloud, config):
        with respx.mock:
            route = respx.post(API_URL).mock(
                return_value=httpx.Response(200, json={"buildId": "cb-1"})
            )
            cloud_build_id = await cloud.trigger("tenant1", config)

        assert cloud_build_id == "cb-1"
        request = route.calls.last.request
        assert request.headers["x-auth-token"] == "token-123"
        body = json.loads(request.content)
        assert body["appId"] == "app-456"
        assert body["workflowId"] == "android-build"
        assert body["branch"] == "main"
        variables = body["environment"]["variables"]
        assert variables["TENANT_ID"] == "tenant1"
        assert variables["APP_NAME"] == "Shop"
        assert variables["PACKAGE_ID"] == "com.storeapp.shop.tenant1"
        assert variables["STORE_URL"] == "https://shop.example.com"
        assert variables["APP_VERSION"] == "2.0.0"

    @pytest.mark.asyncio
    async def test_ios_workflow(self, cloud):
        config = BuildConfig.parse({"storeUrl": "https://shop.example.com", "platform": "ios"})
        with respx.mock:
            route = respx.post(API_URL).mock(
                return_value=httpx.Response(200, json={"buildId": "cb-2"})
            )
            await cloud.trigger("tenant1", config)

        assert json.loads(route.calls.last.request.content)["workflowId"] == "ios-build"

    @pytest.mark.asyncio
    async def test_trigger_http_error(self, cloud, config):
        with respx.mock:
            respx.post(API_URL).mock(return_value=httpx.Response(401, text="bad token"))
            with pytest.raises(ExternalServiceError) as exc_info:
                await cloud.trigger("tenant1", config)

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_trigger_without_build_id(self, cloud, config):
        with respx.mock:
            respx.post(API_URL).mock(return_value=httpx.Response(200, json={}))
            with pytest.raises(ExternalServiceError, match="buildId"):
                await cloud.trigger("tenant1", config)

    @pytest.mark.asyncio
    async def test_trigger_network_error(self, cloud, config):
        with respx.mock:
            respx.post(API_URL).mock(side_effect=httpx.ConnectError("refused"))
            with pytest.raises(ExternalServiceError):
                await cloud.trigger("tenant1", config)


class TestPoll:
    """Tests for polling."""

    @pytest.mark.asyncio
    async def test_poll_until_success(self, cloud):
        seen: list[int] = []
        with respx.mock:
            respx.get(f"{API_URL}/cb-1").mock(
                side_effect=[
                    status_response("building"),
                    status_response("finished", "success"),
                ]
            )
            state = await cloud.poll("cb-1", on_progress=lambda a, s: seen.append(a))

        assert state.succeeded
        assert seen == [0]

    @pytest.mark.asyncio
    async def test_poll_failed_build(self, cloud):
        with respx.mock:
            respx.get(f"{API_URL}/cb-1").mock(
                return_value=status_response("finished", "failed")
            )
            with pytest.raises(ExternalServiceError, match="failed"):
                await cloud.poll("cb-1")

    @pytest.mark.asyncio
    async def test_transient_errors_count_as_attempts(self, cloud):
        with respx.mock:
            respx.get(f"{API_URL}/cb-1").mock(
                side_effect=[
                    httpx.Response(503),
                    httpx.ConnectError("reset"),
                    status_response("finished", "success"),
                ]
            )
            state = await cloud.poll("cb-1")

        assert state.succeeded

    @pytest.mark.asyncio
    async def test_poll_timeout(self, cloud):
        with respx.mock:
            route = respx.get(f"{API_URL}/cb-1").mock(
                return_value=status_response("building")
            )
            with pytest.raises(ExternalServiceError) as exc_info:
                await cloud.poll("cb-1")

        assert exc_info.value.code == "cloud_timeout"
        assert route.call_count == 3

    @pytest.mark.asyncio
    async def test_poll_stops_on_cancellation(self, cloud):
        def cancelled() -> None:
            raise BuildCancelledError("build-1")

        with respx.mock(assert_all_called=False) as respx_mock:
            route = respx_mock.get(f"{API_URL}/cb-1").mock(
                return_value=status_response("building")
            )
            with pytest.raises(BuildCancelledError):
                await cloud.poll("cb-1", check_cancelled=cancelled)

        assert route.call_count == 0


class TestFetchArtifacts:
    """Tests for artefact downloads."""

    @pytest.mark.asyncio
    async def test_downloads_packages_only(self, cloud, settings):
        state = CloudBuildState(
            status="finished",
            build_status="success",
            artefacts=[
                {"name": "build.log", "url": "https://files.example.com/build.log"},
                {"name": "app-release.aab", "url": "https://files.example.com/app.aab"},
                {"name": "app-release.apk", "url": "https://files.example.com/app.apk"},
                {"name": "Runner.ipa", "url": "https://files.example.com/Runner.ipa"},
            ],
        )
        with respx.mock(assert_all_called=False) as respx_mock:
            log_route = respx_mock.get("https://files.example.com/build.log")
            respx_mock.get("https://files.example.com/app.aab").mock(
                return_value=httpx.Response(200, content=b"aab")
            )
            respx_mock.get("https://files.example.com/app.apk").mock(
                return_value=httpx.Response(200, content=b"apk")
            )
            respx_mock.get("https://files.example.com/Runner.ipa").mock(
                return_value=httpx.Response(200, content=b"ipa")
            )
            download_url, ios_url = await cloud.fetch_artifacts("tenant1", state)

        assert download_url == "/apks/tenant1/app-release.apk"
        assert ios_url == "/apks/tenant1/Runner.ipa"
        assert not log_route.called
        tenant_dir = settings.artifacts_dir / "apks" / "tenant1"
        assert (tenant_dir / "app-release.apk").read_bytes() == b"apk"

    @pytest.mark.asyncio
    async def test_no_packages(self, cloud):
        state = CloudBuildState(
            status="finished",
            build_status="success",
            artefacts=[{"name": "build.log", "url": "https://files.example.com/log"}],
        )
        with pytest.raises(ArtifactError):
            await cloud.fetch_artifacts("tenant1", state)


class TestCancelAndRefresh:
    """Best-effort operations never raise."""

    @pytest.mark.asyncio
    async def test_cancel(self, cloud):
        with respx.mock:
            route = respx.post(f"{API_URL}/cb-1/cancel").mock(
                return_value=httpx.Response(200, json={})
            )
            assert await cloud.cancel("cb-1") is True
        assert route.called

    @pytest.mark.asyncio
    async def test_cancel_failure_is_swallowed(self, cloud):
        with respx.mock:
            respx.post(f"{API_URL}/cb-1/cancel").mock(return_value=httpx.Response(500))
            assert await cloud.cancel("cb-1") is False

    @pytest.mark.asyncio
    async def test_refresh_failure_returns_none(self, cloud):
        with respx.mock:
            respx.get(f"{API_URL}/cb-1").mock(side_effect=httpx.ConnectError("down"))
            assert await cloud.refresh("cb-1") is None


class TestAttempt:
    """Tests for the full cloud strategy."""

    @pytest.mark.asyncio
    async def test_attempt_success(self, cloud, config, registry):
        job = registry.create("tenant1")
        job.mark_building("Preparing build configuration...", progress=10)
        ctx = BuildContext(job=job, config=config, registry=registry)

        with respx.mock:
            respx.post(API_URL).mock(
                return_value=httpx.Response(200, json={"buildId": "cb-1"})
            )
            respx.get(f"{API_URL}/cb-1").mock(
                return_value=status_response(
                    "finished",
                    "success",
                    [{"name": "shop.apk", "url": "https://files.example.com/shop.apk"}],
                )
            )
            respx.get("https://files.example.com/shop.apk").mock(
                return_value=httpx.Response(200, content=b"apk")
            )
            artifact = await cloud.attempt(ctx)

        assert artifact.download_url == "/apks/tenant1/shop.apk"
        assert job.cloud_build_id == "cb-1"
        assert job.progress == 90

    @pytest.mark.asyncio
    async def test_attempt_timeout_cancels_remote_build(self, cloud, config, registry):
        job = registry.create("tenant1")
        job.mark_building("Preparing build configuration...", progress=10)
        ctx = BuildContext(job=job, config=config, registry=registry)

        with respx.mock:
            respx.post(API_URL).mock(
                return_value=httpx.Response(200, json={"buildId": "cb-1"})
            )
            respx.get(f"{API_URL}/cb-1").mock(return_value=status_response("queued"))
            cancel_route = respx.post(f"{API_URL}/cb-1/cancel").mock(
                return_value=httpx.Response(200, json={})
            )
            with pytest.raises(ExternalServiceError):
                await cloud.attempt(ctx)

        assert cancel_route.called

    @pytest.mark.asyncio
    async def test_cancel_during_trigger_cancels_remote_build(
        self, cloud, config, registry
    ):
        job = registry.create("tenant1")
        job.mark_building("Preparing build configuration...", progress=10)
        ctx = BuildContext(job=job, config=config, registry=registry)

        def cancel_then_accept(request):
            job.mark_failed("Build cancelled by user", code="cancelled")
            return httpx.Response(200, json={"buildId": "cb-1"})

        with respx.mock(assert_all_called=False) as respx_mock:
            respx_mock.post(API_URL).mock(side_effect=cancel_then_accept)
            status_route = respx_mock.get(f"{API_URL}/cb-1")
            cancel_route = respx_mock.post(f"{API_URL}/cb-1/cancel").mock(
                return_value=httpx.Response(200, json={})
            )
            with pytest.raises(BuildCancelledError):
                await cloud.attempt(ctx)

        assert cancel_route.called
        assert not status_route.called
        assert job.cloud_build_id == "cb-1"
        assert registry.get(job.build_id).cloud_build_id == "cb-1"
