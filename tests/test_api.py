"""HTTP-level tests for the proxy application."""

import pytest
from fastapi.testclient import TestClient

from aiproxy.app.main import create_app
from aiproxy.app.providers.base import Completion

ENDPOINT = "/v1/ai/complete"


@pytest.fixture
def client(settings, stub_provider):
    app = create_app(settings, provider=stub_provider)
    with TestClient(app) as test_client:
        yield test_client


class TestCompleteEndpoint:
    def test_success_envelope(self, client, stub_provider):
        resp = client.post(ENDPOINT, json={"prompt": "Hello", "maxTokens": 10, "temperature": 0.2})

        assert resp.status_code == 200
        data = resp.json()
        assert data["ok"] is True
        assert data["text"] == "echo: Hello"
        assert data["meta"]["model"] == "stub-model"
        assert data["meta"]["latencyMs"] >= 0
        assert stub_provider.calls[0].max_tokens == 10
        assert stub_provider.calls[0].temperature == 0.2

    def test_validation_failure(self, client, stub_provider):
        resp = client.post(ENDPOINT, json={"prompt": "   "})

        assert resp.status_code == 400
        assert resp.json() == {"ok": False, "error": "prompt must not be empty", "code": 400}
        assert stub_provider.call_count == 0

    def test_malformed_json(self, client):
        resp = client.post(
            ENDPOINT, content=b"{prompt:", headers={"Content-Type": "application/json"}
        )

        assert resp.status_code == 400
        assert resp.json()["ok"] is False
        assert resp.json()["code"] == 400

    def test_rate_limited_with_retry_after(self, client, stub_provider):
        for _ in range(3):
            assert client.post(ENDPOINT, json={"prompt": "Hi"}).status_code == 200

        resp = client.post(ENDPOINT, json={"prompt": "Hi"})

        assert resp.status_code == 429
        data = resp.json()
        assert data["ok"] is False
        assert data["code"] == 429
        retry_after = int(resp.headers["Retry-After"])
        assert 1 <= retry_after <= 60
        assert stub_provider.call_count == 3

    def test_body_client_key_is_ignored(self, client):
        for i in range(3):
            client.post(ENDPOINT, json={"prompt": "Hi", "clientKey": f"spoof-{i}"})

        resp = client.post(ENDPOINT, json={"prompt": "Hi", "clientKey": "spoof-new"})
        assert resp.status_code == 429

    def test_oversized_body(self, settings, stub_provider):
        settings.max_body_bytes = 64
        app = create_app(settings, provider=stub_provider)

        with TestClient(app) as client:
            resp = client.post(ENDPOINT, json={"prompt": "x" * 100})

        assert resp.status_code == 400
        assert resp.json()["ok"] is False
        assert stub_provider.call_count == 0

    def test_oversized_chunked_body(self, settings, stub_provider):
        settings.max_body_bytes = 100
        app = create_app(settings, provider=stub_provider)

        def chunks():
            yield b'{"prompt": "'
            yield b"x" * 500
            yield b'"}'

        with TestClient(app) as client:
            resp = client.post(
                ENDPOINT, content=chunks(), headers={"Content-Type": "application/json"}
            )

        assert resp.status_code == 400
        data = resp.json()
        assert data["ok"] is False
        assert data["code"] == 400
        assert "too large" in data["error"]
        assert "X-Request-ID" in resp.headers
        assert stub_provider.call_count == 0

    def test_prompt_with_lone_surrogate(self, client, stub_provider):
        resp = client.post(
            ENDPOINT,
            content=b'{"prompt": "hi \\ud800 there"}',
            headers={"Content-Type": "application/json"},
        )

        assert resp.status_code == 400
        assert resp.json() == {"ok": False, "error": "prompt must be valid UTF-8 text", "code": 400}
        assert stub_provider.call_count == 0

    def test_upstream_failure_hides_details(self, settings, stub_provider_class, status_error,
                                            secret_api_key):
        provider = stub_provider_class([status_error(401)])
        app = create_app(settings, provider=provider)

        with TestClient(app) as client:
            resp = client.post(ENDPOINT, json={"prompt": "Hi"})

        assert resp.status_code == 502
        assert secret_api_key not in resp.text
        assert "stub.invalid" not in resp.text

    def test_upstream_timeout(self, settings, stub_provider_class, connect_error):
        provider = stub_provider_class([connect_error() for _ in range(3)])
        app = create_app(settings, provider=provider)

        with TestClient(app) as client:
            resp = client.post(ENDPOINT, json={"prompt": "Hi"})

        assert resp.status_code == 504
        assert resp.json()["code"] == 504

    def test_request_id_header(self, client):
        resp = client.post(ENDPOINT, json={"prompt": "Hi"}, headers={"X-Request-ID": "abc-123"})
        assert resp.headers["X-Request-ID"] == "abc-123"

    def test_get_not_allowed(self, client):
        assert client.get(ENDPOINT).status_code == 405


class TestClientKey:
    def test_forwarded_for_ignored_by_default(self, client):
        for i in range(3):
            client.post(ENDPOINT, json={"prompt": "Hi"}, headers={"X-Forwarded-For": f"1.2.3.{i}"})

        resp = client.post(ENDPOINT, json={"prompt": "Hi"}, headers={"X-Forwarded-For": "9.9.9.9"})
        assert resp.status_code == 429

    def test_forwarded_for_trusted(self, settings, stub_provider):
        settings.trust_forwarded_for = True
        app = create_app(settings, provider=stub_provider)

        with TestClient(app) as client:
            for _ in range(3):
                client.post(
                    ENDPOINT, json={"prompt": "Hi"}, headers={"X-Forwarded-For": "1.1.1.1, 10.0.0.1"}
                )
            limited = client.post(
                ENDPOINT, json={"prompt": "Hi"}, headers={"X-Forwarded-For": "1.1.1.1"}
            )
            other = client.post(
                ENDPOINT, json={"prompt": "Hi"}, headers={"X-Forwarded-For": "2.2.2.2"}
            )

        assert limited.status_code == 429
        assert other.status_code == 200


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")

        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["components"]["rate_limiter"]["backend"] == "InMemoryRateLimiter"
        assert data["components"]["provider"] == {"status": "ok", "name": "stub"}

    def test_health_degraded_when_provider_down(self, settings, stub_provider_class):
        class DownProvider(stub_provider_class):
            async def health_check(self, timeout: float = 2.0) -> bool:
                return False

        app = create_app(settings, provider=DownProvider([Completion(text="x", model="m")]))

        with TestClient(app) as client:
            data = client.get("/health").json()

        assert data["status"] == "degraded"
        assert data["components"]["provider"]["status"] == "error"
