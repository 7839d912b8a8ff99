"""Tests for the HTTP proxy."""

import json
import re

import httpx
import pytest
from fastapi.testclient import TestClient

from vizom.server import create_app
from vizom.services.caching import CachingService
from vizom.services.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from vizom.services.client import DeepSeekClient, DeepSeekConfig
from vizom.services.resilience import ResilienceService
from vizom.services.retry import RetryConfig, RetryHandler
from tests.conftest import FakeDeepSeek, analysis_payload, chart_payload


def build_client(fake: FakeDeepSeek, failure_threshold: int = 5, max_retries: int = 3) -> DeepSeekClient:
    async def no_sleep(delay: float) -> None:
        return None

    return DeepSeekClient(
        DeepSeekConfig(api_key="sk-test"),
        resilience=ResilienceService(
            CircuitBreaker("deepseek", CircuitBreakerConfig(failure_threshold=failure_threshold)),
            RetryHandler(RetryConfig(max_retries=max_retries), sleep_func=no_sleep),
        ),
        caching=CachingService(),
        http_client=fake.http_client(),
    )


@pytest.fixture
def fake():
    return FakeDeepSeek(json.dumps(chart_payload()))


@pytest.fixture
def api(fake):
    with TestClient(create_app(build_client(fake))) as test_client:
        yield test_client


class TestRoutes:
    """Happy paths."""

    def test_health(self, api):
        response = api.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "service": "vizom"}

    def test_generate(self, api):
        response = api.post(
            "/api/generate",
            json={"prompt": "Monthly sales for 2024", "chartType": "line", "templateId": "sales"},
        )

        body = response.json()
        assert response.status_code == 200
        assert body["success"] is True
        assert body["chartConfig"] == chart_payload()
        assert body["metadata"]["cached"] is False
        assert re.fullmatch(r"ds-1-\d+", body["metadata"]["requestId"])

    def test_generate_twice_hits_cache(self, api, fake):
        api.post("/api/generate", json={"prompt": "Monthly sales for 2024"})
        response = api.post("/api/generate", json={"prompt": "Monthly sales for 2024"})

        assert response.json()["metadata"]["cached"] is True
        assert fake.calls == 1

    def test_analyze(self):
        fake = FakeDeepSeek(json.dumps(analysis_payload()))
        with TestClient(create_app(build_client(fake))) as api:
            response = api.post("/api/analyze", json={"prompt": "Quarterly revenue by region"})

        assert response.status_code == 200
        assert response.json()["analysis"] == analysis_payload()

    def test_metrics(self, api):
        api.post("/api/generate", json={"prompt": "Monthly sales for 2024"})

        metrics = api.get("/metrics").json()

        assert metrics["requests"] == 1
        assert metrics["circuit_breaker"]["state"] == "CLOSED"
        assert metrics["config"]["api_key_configured"] is True


class TestErrors:
    """Errors rendered as {error, code, requestId}."""

    def test_invalid_prompt(self, api, fake):
        response = api.post("/api/generate", json={"prompt": "hi"})

        body = response.json()
        assert response.status_code == 400
        assert body["code"] == "BAD_REQUEST"
        assert body["error"].startswith("Invalid prompt")
        assert body["requestId"].startswith("ds-1-")
        assert fake.calls == 0

    def test_missing_prompt(self, api):
        response = api.post("/api/generate", json={})

        assert response.status_code == 400

    def test_upstream_status_is_forwarded(self):
        fake = FakeDeepSeek(httpx.Response(401, json={"error": {"message": "bad key"}}))
        with TestClient(create_app(build_client(fake))) as api:
            response = api.post("/api/generate", json={"prompt": "Monthly sales for 2024"})

        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHORIZED"

    def test_open_circuit_is_service_unavailable(self):
        fake = FakeDeepSeek(httpx.Response(500, json={"error": {"message": "down"}}))
        client = build_client(fake, failure_threshold=1, max_retries=0)

        with TestClient(create_app(client)) as api:
            first = api.post("/api/generate", json={"prompt": "Monthly sales for 2024"})
            second = api.post("/api/generate", json={"prompt": "Monthly sales for 2024"})

        assert first.status_code == 500
        assert first.json()["code"] == "MAX_RETRIES_EXCEEDED"
        assert second.status_code == 503
        assert second.json()["code"] == "CIRCUIT_BREAKER_OPEN"
        assert second.json()["requestId"].startswith("ds-2-")
        assert fake.calls == 1


class TestCors:
    """Cross-origin access for the browser frontend."""

    def test_preflight_allowed_origin(self, fake):
        app = create_app(build_client(fake), allow_origins=["http://localhost:3000"])
        with TestClient(app) as api:
            response = api.options(
                "/api/generate",
                headers={
                    "Origin": "http://localhost:3000",
                    "Access-Control-Request-Method": "POST",
                    "Access-Control-Request-Headers": "Content-Type",
                },
            )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "http://localhost:3000"

    def test_wildcard_by_default(self, api):
        response = api.get("/health", headers={"Origin": "http://example.com"})

        assert response.headers["access-control-allow-origin"] == "*"


class TestLifespan:
    """Startup and shutdown hooks."""

    def test_cache_sweep_runs_while_serving(self, fake):
        client = build_client(fake)

        with TestClient(create_app(client)):
            assert client.caching.cache.is_running

        assert not client.caching.cache.is_running
