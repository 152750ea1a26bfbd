"""FastAPI dependencies shared by the API routers."""

from fastapi import Request

from aiproxy.app.core.config import Settings
from aiproxy.app.services.proxy import ProxyService

UNKNOWN_CLIENT = "unknown"


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_proxy_service(request: Request) -> ProxyService:
    """Get the proxy service created in the application lifespan.

    Raises:
        RuntimeError: If the lifespan has not run
    """
    service = getattr(request.app.state, "proxy_service", None)
    if service is None:
        raise RuntimeError("Proxy service not initialized. Ensure lifespan context is active.")
    return service


def get_client_key(request: Request) -> str:
    """Derive the rate limit identity of the caller from the transport.

    The peer address is used unless ``trust_forwarded_for`` is set, in which
    case the first ``X-Forwarded-For`` hop wins. Nothing in the request body
    is ever consulted.
    """
    settings = get_settings(request)
    if settings.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_CLIENT
