"""Tests for provider implementations and the provider factory."""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest
from httpx import Response

from aiproxy.app.providers.factory import create_provider, create_provider_client
from aiproxy.app.providers.mock import MockProvider
from aiproxy.app.providers.openai_compat import OpenAICompatibleProvider
from aiproxy.app.providers.openai_sdk import OpenAISDKProvider
from aiproxy.app.providers.retry import MalformedResponseError

BASE_URL = "https://api.example.com/v1"


@pytest.fixture
def http_provider(secret_api_key):
    return OpenAICompatibleProvider(base_url=BASE_URL, api_key=secret_api_key, model="test-model")


class TestOpenAICompatibleProvider:
    """Test the httpx-based provider against a mocked upstream."""

    @pytest.mark.asyncio
    async def test_complete_parses_content(
        self, respx_mock, http_provider, request_factory, secret_api_key
    ):
        route = respx_mock.post(f"{BASE_URL}/chat/completions").mock(
            return_value=Response(200, json={
                "id": "x",
                "model": "test-model-2024",
                "choices": [{"message": {"role": "assistant", "content": "Hello!"}}],
            })
        )

        completion = await http_provider.complete(request_factory(prompt="Hi", max_tokens=32))

        assert completion.text == "Hello!"
        assert completion.model == "test-model-2024"
        sent = route.calls.last.request
        assert sent.headers["Authorization"] == f"Bearer {secret_api_key}"
        body = json.loads(sent.content)
        assert body["model"] == "test-model"
        assert body["messages"] == [{"role": "user", "content": "Hi"}]
        assert body["max_tokens"] == 32
        assert body["temperature"] == 0.5

    @pytest.mark.asyncio
    async def test_missing_model_falls_back_to_configured(
        self, respx_mock, http_provider, request_factory
    ):
        respx_mock.post(f"{BASE_URL}/chat/completions").mock(
            return_value=Response(200, json={"choices": [{"message": {"content": "ok"}}]})
        )

        completion = await http_provider.complete(request_factory())

        assert completion.model == "test-model"

    @pytest.mark.asyncio
    async def test_error_status_raises(self, respx_mock, http_provider, request_factory):
        respx_mock.post(f"{BASE_URL}/chat/completions").mock(return_value=Response(503))

        with pytest.raises(httpx.HTTPStatusError):
            await http_provider.complete(request_factory())

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [{"choices": []}, {"choices": [{"message": {}}]}, {"choices": [{"message": {"content": 3}}]}],
    )
    async def test_malformed_payload(self, respx_mock, http_provider, request_factory, payload):
        respx_mock.post(f"{BASE_URL}/chat/completions").mock(return_value=Response(200, json=payload))

        with pytest.raises(MalformedResponseError):
            await http_provider.complete(request_factory())

    @pytest.mark.asyncio
    async def test_non_json_body(self, respx_mock, http_provider, request_factory):
        respx_mock.post(f"{BASE_URL}/chat/completions").mock(
            return_value=Response(200, text="<html>oops</html>")
        )

        with pytest.raises(MalformedResponseError):
            await http_provider.complete(request_factory())

    @pytest.mark.asyncio
    async def test_uses_shared_client(self, respx_mock, secret_api_key, request_factory):
        respx_mock.post(f"{BASE_URL}/chat/completions").mock(
            return_value=Response(200, json={"choices": [{"message": {"content": "pooled"}}]})
        )

        async with httpx.AsyncClient() as shared:
            provider = OpenAICompatibleProvider(BASE_URL, secret_api_key, "m", http_client=shared)
            completion = await provider.complete(request_factory())
            assert provider.http_client is shared
            assert not shared.is_closed

        assert completion.text == "pooled"

    @pytest.mark.asyncio
    async def test_health_check(self, respx_mock, http_provider):
        respx_mock.get(f"{BASE_URL}/models").mock(return_value=Response(200, json={"data": []}))
        assert await http_provider.health_check() is True

    @pytest.mark.asyncio
    async def test_health_check_unreachable(self, respx_mock, http_provider):
        respx_mock.get(f"{BASE_URL}/models").mock(side_effect=httpx.ConnectError("refused"))
        assert await http_provider.health_check() is False

    def test_repr_hides_api_key(self, http_provider, secret_api_key):
        assert secret_api_key not in repr(http_provider)
        assert "api.example.com" in repr(http_provider)


class TestOpenAISDKProvider:
    """Test the SDK-backed provider with a mocked AsyncOpenAI client."""

    @pytest.fixture
    def sdk_client(self):
        client = MagicMock()
        client.chat.completions.create = AsyncMock()
        return client

    @pytest.fixture
    def sdk_provider(self, sdk_client, secret_api_key):
        return OpenAISDKProvider(BASE_URL, secret_api_key, "gpt-test", client=sdk_client)

    @pytest.mark.asyncio
    async def test_complete(self, sdk_provider, sdk_client, request_factory):
        sdk_client.chat.completions.create.return_value = SimpleNamespace(
            model="gpt-test-0613",
            choices=[SimpleNamespace(message=SimpleNamespace(content="From the SDK"))],
        )

        completion = await sdk_provider.complete(request_factory(prompt="Hi"))

        assert completion.text == "From the SDK"
        assert completion.model == "gpt-test-0613"
        kwargs = sdk_client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "gpt-test"
        assert kwargs["messages"] == [{"role": "user", "content": "Hi"}]
        assert kwargs["stream"] is False

    @pytest.mark.asyncio
    async def test_empty_choices_is_malformed(self, sdk_provider, sdk_client, request_factory):
        sdk_client.chat.completions.create.return_value = SimpleNamespace(model="m", choices=[])

        with pytest.raises(MalformedResponseError):
            await sdk_provider.complete(request_factory())

    @pytest.mark.asyncio
    async def test_sdk_errors_propagate(self, sdk_provider, sdk_client, request_factory):
        sdk_client.chat.completions.create.side_effect = openai.APIConnectionError(
            request=httpx.Request("POST", BASE_URL)
        )

        with pytest.raises(openai.APIConnectionError):
            await sdk_provider.complete(request_factory())

    def test_builds_sdk_client_without_retries(self, secret_api_key):
        provider = OpenAISDKProvider(BASE_URL, secret_api_key, "gpt-test")
        assert provider._client.max_retries == 0


class TestMockProvider:
    @pytest.mark.asyncio
    async def test_echoes_prompt(self, request_factory):
        provider = MockProvider(min_delay=0, max_delay=0)

        completion = await provider.complete(request_factory(prompt="ping pong"))

        assert completion.text == "Mock response to: ping pong"
        assert completion.model == "mock-model"

    @pytest.mark.asyncio
    async def test_failure_rate(self, request_factory):
        provider = MockProvider(min_delay=0, max_delay=0, failure_rate=1.0)

        with pytest.raises(httpx.ConnectError):
            await provider.complete(request_factory())


class TestProviderFactory:
    def test_mock_backend(self, settings):
        provider = create_provider(settings)
        assert isinstance(provider, MockProvider)

    @pytest.mark.parametrize(
        "backend,expected", [("http", OpenAICompatibleProvider), ("openai", OpenAISDKProvider)]
    )
    def test_real_backends(self, settings, backend, expected):
        settings.provider_backend = backend
        settings.provider_api_key = "sk-configured"

        assert isinstance(create_provider(settings), expected)

    def test_real_backend_requires_api_key(self, settings):
        settings.provider_backend = "http"
        settings.provider_api_key = ""

        with pytest.raises(RuntimeError, match="No API key"):
            create_provider(settings)

    def test_provider_client_uses_settings(self, settings):
        client = create_provider_client(settings)

        assert isinstance(client.provider, MockProvider)
        assert client.timeout == settings.provider_timeout_seconds
        assert client.policy.max_retries == settings.provider_max_retries
        assert client.policy.base_delay == settings.retry_base_delay

    def test_injected_provider_wins(self, settings, stub_provider):
        client = create_provider_client(settings, provider=stub_provider)
        assert client.provider is stub_provider
