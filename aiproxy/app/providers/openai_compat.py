from typing import Any, Dict, Optional

import httpx

from aiproxy.app.providers.base import BaseProvider, Completion
from aiproxy.app.providers.retry import MalformedResponseError
from aiproxy.app.schemas import AIRequest


class OpenAICompatibleProvider(BaseProvider):
    """Provider for any API that speaks the OpenAI ``/chat/completions`` format.

    If http_client is provided, it will be used for all requests (connection reuse).
    If not, a new client is created per request.
    """

    name = "openai_compat"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0
    ):
        super().__init__(base_url, api_key, model, http_client, timeout)

    async def complete(self, request: AIRequest) -> Completion:
        """Send a non-streaming chat completion request.

        Raises:
            httpx.HTTPStatusError: If the API returns an error status
            httpx.TransportError: On connection problems or timeouts
            MalformedResponseError: If the response has no usable content
        """
        url = self._get_endpoint_url("/chat/completions")

        async with self._client_context() as client:
            resp = await client.post(
                url, headers=self._build_headers(), json=self._build_payload(request)
            )
            resp.raise_for_status()
            try:
                data = resp.json()
            except ValueError as e:
                raise MalformedResponseError("Upstream response is not JSON") from e

        return self._parse_completion(data)

    def _parse_completion(self, data: Dict[str, Any]) -> Completion:
        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise MalformedResponseError("Upstream response has no message content") from e
        if not isinstance(text, str):
            raise MalformedResponseError("Upstream message content is not text")
        model = data.get("model") if isinstance(data, dict) else None
        return Completion(text=text, model=model if isinstance(model, str) else self.model)

    async def health_check(self, timeout: float = 2.0) -> bool:
        """Calls the /models endpoint with a short timeout."""
        try:
            url = self._get_endpoint_url("/models")
            async with self._client_context() as client:
                resp = await client.get(url, headers=self._build_headers(), timeout=timeout)
                return resp.status_code == 200
        except httpx.HTTPError:
            return False
