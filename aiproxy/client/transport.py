"""Transport used by the client wrapper to reach the proxy."""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import httpx
import pydantic

from aiproxy.app.core.logging import get_logger
from aiproxy.app.schemas import FailureEnvelope, ResponseEnvelope
from aiproxy.app.services.envelope import decode_envelope

logger = get_logger(__name__)

DEFAULT_ENDPOINT = "/v1/ai/complete"


@dataclass(frozen=True)
class TransportResponse:
    envelope: ResponseEnvelope
    retry_after: Optional[int] = None


class ProxyTransport(Protocol):
    async def send(self, payload: Dict[str, Any]) -> TransportResponse:
        """Send one wire request and return the decoded envelope.

        Raises:
            httpx.HTTPError: If the proxy cannot be reached
        """
        ...


def build_request_payload(
    prompt: str,
    max_tokens: Optional[int] = None,
    temperature: Optional[float] = None,
) -> Dict[str, Any]:
    """Build the wire request, leaving unset options to the proxy defaults."""
    payload: Dict[str, Any] = {"prompt": prompt}
    if max_tokens is not None:
        payload["maxTokens"] = max_tokens
    if temperature is not None:
        payload["temperature"] = temperature
    return payload


def parse_retry_after(value: Optional[str]) -> Optional[int]:
    """Parse a ``Retry-After`` header given in seconds."""
    if value is None:
        return None
    value = value.strip()
    if not value.isdigit():
        return None
    return int(value)


class HttpProxyTransport:
    """Posts wire requests to a running proxy with httpx."""

    def __init__(
        self,
        base_url: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
        endpoint: str = DEFAULT_ENDPOINT,
    ):
        self.url = f"{base_url.rstrip('/')}{endpoint}"
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def send(self, payload: Dict[str, Any]) -> TransportResponse:
        resp = await self._client.post(self.url, json=payload)
        retry_after = parse_retry_after(resp.headers.get("retry-after"))
        try:
            envelope = decode_envelope(resp.content)
        except pydantic.ValidationError:
            logger.warning(f"Proxy answered {resp.status_code} without an envelope")
            # Whatever sits in front of the proxy answered instead; treat as a bad gateway.
            envelope = FailureEnvelope(
                error="Unexpected response from the AI service",
                code=502,
            )
        return TransportResponse(envelope=envelope, retry_after=retry_after)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
