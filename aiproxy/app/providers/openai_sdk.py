from typing import Optional

import httpx
from openai import AsyncOpenAI, OpenAIError

from aiproxy.app.providers.base import BaseProvider, Completion
from aiproxy.app.providers.retry import MalformedResponseError
from aiproxy.app.schemas import AIRequest


class OpenAISDKProvider(BaseProvider):
    """Provider backed by the official ``openai`` SDK.

    The SDK's own retries are disabled; ``ProviderClient`` owns the retry
    budget and the overall deadline.
    """

    name = "openai"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        client: Optional[AsyncOpenAI] = None,
    ):
        super().__init__(base_url, api_key, model, http_client, timeout)
        self._client = client or AsyncOpenAI(
            api_key=api_key,
            base_url=self.base_url,
            timeout=timeout,
            max_retries=0,
            http_client=http_client,
        )

    async def complete(self, request: AIRequest) -> Completion:
        response = await self._client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": request.prompt}],
            max_tokens=request.max_tokens,
            temperature=request.temperature,
            stream=False,
        )

        if not response.choices:
            raise MalformedResponseError("Upstream response has no choices")
        text = response.choices[0].message.content
        if text is None:
            raise MalformedResponseError("Upstream message content is empty")
        return Completion(text=text, model=response.model or self.model)

    async def health_check(self, timeout: float = 2.0) -> bool:
        try:
            await self._client.with_options(timeout=timeout).models.list()
            return True
        except OpenAIError:
            return False
