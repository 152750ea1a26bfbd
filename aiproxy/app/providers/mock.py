"""Mock provider for local development.

Simulates AI responses without making external API calls, so the proxy can
be run and load tested without a vendor account.

Enable by setting environment variable:
    AIPROXY_PROVIDER_BACKEND=mock
"""

import asyncio
import random
from typing import Any, Optional

import httpx

from aiproxy.app.providers.base import BaseProvider, Completion
from aiproxy.app.schemas import AIRequest


class MockProvider(BaseProvider):
    """Mock AI provider that returns simulated responses.

    Features:
    - Simulates response delays (configurable)
    - Echoes the prompt so responses are predictable
    - Configurable transient failure rate for exercising retries
    """

    name = "mock"

    def __init__(
        self,
        base_url: str = "http://mock.provider",
        api_key: str = "mock-key",
        model: str = "mock-model",
        http_client: Optional[Any] = None,
        timeout: float = 30.0,
        min_delay: float = 0.05,
        max_delay: float = 0.2,
        failure_rate: float = 0.0,
    ):
        """Initialize the mock provider.

        Args:
            min_delay: Minimum response delay in seconds
            max_delay: Maximum response delay in seconds
            failure_rate: Probability of a simulated network failure (0-1)
        """
        super().__init__(base_url, api_key, model, http_client, timeout)
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.failure_rate = failure_rate

    def _generate_content(self, prompt: str, max_tokens: int) -> str:
        words = prompt.split()
        echoed = " ".join(words[:max_tokens])
        return f"Mock response to: {echoed}"

    async def complete(self, request: AIRequest) -> Completion:
        await asyncio.sleep(random.uniform(self.min_delay, self.max_delay))

        if random.random() < self.failure_rate:
            raise httpx.ConnectError("Simulated provider failure")

        return Completion(
            text=self._generate_content(request.prompt, request.max_tokens),
            model=self.model,
        )

    async def health_check(self, timeout: float = 2.0) -> bool:
        return True
