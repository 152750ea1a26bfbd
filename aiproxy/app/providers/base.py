from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from aiproxy.app.schemas import AIRequest


@dataclass(frozen=True)
class Completion:
    """Raw result of one successful upstream call."""
    text: str
    model: str


class BaseProvider(ABC):
    """Base class for AI providers.

    Subclasses can accept an external httpx.AsyncClient for connection pooling,
    or create their own if not provided.

    The API key is only ever placed in outbound request headers. It is kept
    out of ``repr`` so that providers can be logged safely.
    """

    name: str = "provider"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0
    ):
        """Initialize the provider.

        Args:
            base_url: The API base URL
            api_key: The API key for authentication
            model: Model identifier sent upstream
            http_client: Optional shared HTTP client for connection pooling
            timeout: Request timeout in seconds
        """
        self._http_client = http_client
        self.base_url = base_url.rstrip('/')
        self._api_key = api_key
        self.model = model
        self.timeout = timeout

    def __repr__(self) -> str:
        return f"{type(self).__name__}(base_url={self.base_url!r}, model={self.model!r})"

    @property
    def http_client(self) -> Optional[httpx.AsyncClient]:
        """Get the HTTP client, if one was provided."""
        return self._http_client

    def _build_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json"
        }

    @asynccontextmanager
    async def _client_context(self) -> AsyncIterator[httpx.AsyncClient]:
        """Yield the shared client, or a per-call client that is closed afterwards."""
        if self._http_client is not None:
            yield self._http_client
            return
        client = httpx.AsyncClient(timeout=self.timeout)
        try:
            yield client
        finally:
            await client.aclose()

    def _get_endpoint_url(self, endpoint: str) -> str:
        return f"{self.base_url}{endpoint}"

    def _build_payload(self, request: AIRequest) -> Dict[str, Any]:
        """Build an OpenAI-style chat completion payload."""
        return {
            "model": self.model,
            "messages": [{"role": "user", "content": request.prompt}],
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
        }

    @abstractmethod
    async def complete(self, request: AIRequest) -> Completion:
        """Send one completion request upstream.

        Implementations perform exactly one attempt and let errors propagate;
        timeouts and retries are handled by ``ProviderClient``.

        Raises:
            httpx.HTTPError, openai.OpenAIError: On transport or upstream errors
            MalformedResponseError: If the upstream payload cannot be read
        """

    @abstractmethod
    async def health_check(self, timeout: float = 2.0) -> bool:
        """Check if the provider is reachable.

        Args:
            timeout: Request timeout in seconds (default: 2.0)

        Returns:
            True if the provider is healthy, False otherwise
        """
