"""Shared fixtures for the proxy test suite."""

import asyncio
import logging
from typing import Any, List, Optional

import httpx
import pytest

from aiproxy.app.core.config import Settings
from aiproxy.app.providers.base import BaseProvider, Completion
from aiproxy.app.providers.client import ProviderClient
from aiproxy.app.providers.retry import RetryPolicy
from aiproxy.app.schemas import AIRequest
from aiproxy.app.services.proxy import ProxyService
from aiproxy.app.services.rate_limit import InMemoryRateLimiter, RateLimiter
from aiproxy.app.services.validator import RequestValidator

SECRET_API_KEY = "sk-test-secret-do-not-leak"


class StubProvider(BaseProvider):
    """Provider that replays scripted outcomes and counts calls.

    Each entry of ``outcomes`` is either a ``Completion`` to return or an
    exception to raise. Once the script runs out, the prompt is echoed.
    """

    name = "stub"

    def __init__(self, outcomes: Optional[List[Any]] = None, delay: float = 0.0):
        super().__init__("http://stub.invalid/v1", SECRET_API_KEY, "stub-model")
        self.outcomes = list(outcomes or [])
        self.delay = delay
        self.calls: List[AIRequest] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def complete(self, request: AIRequest) -> Completion:
        self.calls.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome is None:
            outcome = Completion(text=f"echo: {request.prompt}", model=self.model)
        return outcome

    async def health_check(self, timeout: float = 2.0) -> bool:
        return True


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def http_status_error(status_code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "http://stub.invalid/v1/chat/completions")
    response = httpx.Response(status_code, request=request)
    return httpx.HTTPStatusError(f"HTTP {status_code}", request=request, response=response)


def network_error() -> httpx.ConnectError:
    return httpx.ConnectError(
        "Connection refused",
        request=httpx.Request("POST", "http://stub.invalid/v1/chat/completions"),
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        provider_backend="mock",
        rate_limit_ceiling=3,
        rate_limit_window_seconds=60.0,
        provider_timeout_seconds=5.0,
        provider_max_retries=2,
        retry_base_delay=0.001,
        retry_max_delay=0.005,
        max_prompt_chars=100,
        max_tokens_ceiling=1000,
        default_max_tokens=256,
        default_temperature=0.7,
    )


@pytest.fixture
def stub_provider_class():
    return StubProvider


@pytest.fixture
def stub_provider() -> StubProvider:
    return StubProvider()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fast_policy() -> RetryPolicy:
    return RetryPolicy(max_retries=2, base_delay=0.001, max_delay=0.005)


@pytest.fixture
def make_service(settings, fake_clock, fast_policy):
    """Build a ProxyService around a provider with a fake-clock limiter."""

    def _make(provider: BaseProvider, ceiling: Optional[int] = None) -> ProxyService:
        backend = InMemoryRateLimiter(
            ceiling=ceiling or settings.rate_limit_ceiling,
            window_seconds=settings.rate_limit_window_seconds,
            clock=fake_clock,
        )
        return ProxyService(
            validator=RequestValidator(settings),
            rate_limiter=RateLimiter(backend),
            provider_client=ProviderClient(provider, policy=fast_policy, timeout=5.0),
        )

    return _make


@pytest.fixture
def request_factory():
    def _make(prompt: str = "Hello", max_tokens: int = 64, temperature: float = 0.5) -> AIRequest:
        return AIRequest(prompt=prompt, max_tokens=max_tokens, temperature=temperature)

    return _make


@pytest.fixture
def secret_api_key() -> str:
    return SECRET_API_KEY


@pytest.fixture
def aiproxy_logs(caplog):
    """caplog that also sees records from the non-propagating aiproxy logger."""
    logger = logging.getLogger("aiproxy")
    logger.addHandler(caplog.handler)
    caplog.set_level(logging.DEBUG, logger="aiproxy")
    yield caplog
    logger.removeHandler(caplog.handler)


@pytest.fixture
def status_error():
    return http_status_error


@pytest.fixture
def connect_error():
    return network_error
