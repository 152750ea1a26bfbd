"""Provider factory.

Builds the configured upstream provider and the ``ProviderClient`` wrapping
it. Nothing here is a module-level singleton; the application lifespan owns
the instances it creates.
"""

from enum import Enum
from typing import Dict, Optional, Type

import httpx

from aiproxy.app.core.config import Settings, settings as default_settings
from aiproxy.app.core.logging import get_logger
from aiproxy.app.providers.base import BaseProvider
from aiproxy.app.providers.client import ProviderClient
from aiproxy.app.providers.mock import MockProvider
from aiproxy.app.providers.openai_compat import OpenAICompatibleProvider
from aiproxy.app.providers.openai_sdk import OpenAISDKProvider
from aiproxy.app.providers.retry import RetryPolicy

logger = get_logger(__name__)


class ProviderType(str, Enum):
    HTTP = "http"
    OPENAI = "openai"
    MOCK = "mock"


_PROVIDER_REGISTRY: Dict[ProviderType, Type[BaseProvider]] = {
    ProviderType.HTTP: OpenAICompatibleProvider,
    ProviderType.OPENAI: OpenAISDKProvider,
    ProviderType.MOCK: MockProvider,
}


def create_provider(
    settings: Optional[Settings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> BaseProvider:
    """Create the provider selected by ``provider_backend``.

    Raises:
        RuntimeError: If a real backend is selected without an API key
    """
    settings = settings or default_settings
    provider_type = ProviderType(settings.provider_backend)
    provider_class = _PROVIDER_REGISTRY[provider_type]

    if provider_type is not ProviderType.MOCK and not settings.provider_api_key:
        raise RuntimeError(
            f"No API key configured for provider backend '{provider_type.value}'"
        )

    provider = provider_class(
        base_url=settings.provider_base_url,
        api_key=settings.provider_api_key,
        model=settings.provider_model,
        http_client=http_client,
        timeout=settings.provider_timeout_seconds,
    )
    logger.info(f"Created provider {provider!r}", extra={"provider": provider.name})
    return provider


def create_provider_client(
    settings: Optional[Settings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    provider: Optional[BaseProvider] = None,
) -> ProviderClient:
    """Create a ``ProviderClient`` with the configured timeout and retry bound.

    Args:
        settings: Settings to read the policy from
        http_client: Shared HTTP client handed to the provider
        provider: Use this provider instead of building one from settings
    """
    settings = settings or default_settings
    policy = RetryPolicy(
        max_retries=settings.provider_max_retries,
        base_delay=settings.retry_base_delay,
        max_delay=settings.retry_max_delay,
    )
    return ProviderClient(
        provider or create_provider(settings, http_client),
        policy=policy,
        timeout=settings.provider_timeout_seconds,
    )
