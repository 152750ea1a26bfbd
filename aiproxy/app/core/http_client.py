"""Shared HTTP client management for connection pooling.

The client is created in the application lifespan and shared by the
upstream provider so connections to the AI vendor are reused.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx

from aiproxy.app.core.config import Settings, settings as default_settings


def create_http_client(settings: Settings = default_settings) -> httpx.AsyncClient:
    """Create an HTTP client configured from settings.

    The read timeout is left to the provider deadline; only connection
    establishment and pool acquisition are bounded here.
    """
    limits = httpx.Limits(
        max_connections=settings.httpx_max_connections,
        max_keepalive_connections=settings.httpx_max_keepalive_connections,
        keepalive_expiry=settings.httpx_keepalive_expiry,
    )
    timeout = httpx.Timeout(
        settings.provider_timeout_seconds,
        connect=settings.httpx_connect_timeout,
        pool=settings.httpx_pool_timeout,
    )
    return httpx.AsyncClient(timeout=timeout, limits=limits)


@asynccontextmanager
async def init_http_client(
    settings: Settings = default_settings,
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Create the HTTP client for the application lifespan and close it on exit.

    Use in the FastAPI lifespan:

        async with init_http_client() as client:
            yield
    """
    client = create_http_client(settings)
    try:
        yield client
    finally:
        await client.aclose()
