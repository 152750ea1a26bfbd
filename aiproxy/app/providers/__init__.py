"""AI providers package for the proxy.

This package provides:
- Base provider interface (BaseProvider)
- Provider implementations (OpenAICompatibleProvider, OpenAISDKProvider, MockProvider)
- Provider client with deadline and bounded retry (ProviderClient)
- Retry policy and failure classification (RetryPolicy, classify_exception)
- Factory helpers (create_provider, create_provider_client)
"""

from aiproxy.app.providers.base import BaseProvider, Completion
from aiproxy.app.providers.client import ProviderClient
from aiproxy.app.providers.factory import (
    ProviderType,
    create_provider,
    create_provider_client,
)
from aiproxy.app.providers.mock import MockProvider
from aiproxy.app.providers.openai_compat import OpenAICompatibleProvider
from aiproxy.app.providers.openai_sdk import OpenAISDKProvider
from aiproxy.app.providers.retry import (
    MalformedResponseError,
    RetryPolicy,
    classify_exception,
)

__all__ = [
    # Base
    "BaseProvider",
    "Completion",
    # Providers
    "OpenAICompatibleProvider",
    "OpenAISDKProvider",
    "MockProvider",
    # Client
    "ProviderClient",
    # Factory
    "ProviderType",
    "create_provider",
    "create_provider_client",
    # Retry
    "MalformedResponseError",
    "RetryPolicy",
    "classify_exception",
]
