from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from aiproxy.app.api.proxy import router as proxy_router
from aiproxy.app.core.config import Settings, settings as default_settings
from aiproxy.app.core.http_client import init_http_client
from aiproxy.app.core.logging import get_log_context, get_logger, setup_logging
from aiproxy.app.exceptions import InternalError
from aiproxy.app.middleware.request_id import RequestIdMiddleware, get_request_id
from aiproxy.app.middleware.request_size import RequestSizeLimitMiddleware
from aiproxy.app.providers.base import BaseProvider
from aiproxy.app.providers.factory import create_provider_client
from aiproxy.app.services.envelope import envelope_to_dict, failure_envelope
from aiproxy.app.services.proxy import ProxyService
from aiproxy.app.services.rate_limit import RateLimiter
from aiproxy.app.services.validator import RequestValidator


def create_app(
    settings: Optional[Settings] = None,
    provider: Optional[BaseProvider] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to use instead of the environment-loaded ones
        provider: Upstream provider to use instead of the configured backend
        rate_limiter: Rate limiter to use instead of one built from settings

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or default_settings
    setup_logging()
    logger = get_logger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Build the request pipeline on startup and tear it down on shutdown."""
        async with init_http_client(settings) as http_client:
            limiter = rate_limiter or RateLimiter.from_settings(settings)
            provider_client = create_provider_client(settings, http_client, provider=provider)
            app.state.proxy_service = ProxyService(
                validator=RequestValidator(settings),
                rate_limiter=limiter,
                provider_client=provider_client,
            )
            await limiter.start()

            logger.info(
                "Application startup complete",
                extra=get_log_context(
                    provider=provider_client.provider.name,
                    rate_limit_backend=type(limiter.backend).__name__,
                    debug_mode=settings.debug,
                ),
            )
            try:
                yield
            finally:
                await limiter.stop()
                app.state.proxy_service = None
                logger.info("Application shutdown complete")

    app = FastAPI(
        title="AI Request Proxy",
        description="Validating, rate limited proxy in front of an AI provider",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.proxy_service = None

    # Middleware order: last added = first executed.
    # The size limiter must sit inside every BaseHTTPMiddleware, whose task
    # group would otherwise wrap its overflow error.
    app.add_middleware(RequestSizeLimitMiddleware, max_body_size=settings.max_body_bytes)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID", "Retry-After"],
        max_age=600,
    )

    # Request ID middleware for tracing (outermost)
    app.add_middleware(RequestIdMiddleware)

    app.include_router(proxy_router)

    @app.get("/health")
    async def health(request: Request) -> dict[str, Any]:
        """Health check with rate limiter and provider status."""
        service: Optional[ProxyService] = request.app.state.proxy_service
        if service is None:
            return {"status": "starting", "components": {}}

        health_status: dict[str, Any] = {"status": "ok", "components": {}}
        limiter = service.rate_limiter
        health_status["components"]["rate_limiter"] = {
            "status": "ok" if limiter.running else "degraded",
            "backend": type(limiter.backend).__name__,
        }

        provider_name = service.provider_client.provider.name
        try:
            healthy = await service.provider_client.provider.health_check()
        except Exception as e:
            logger.warning(f"Provider health check raised: {type(e).__name__}")
            healthy = False
        health_status["components"]["provider"] = {
            "status": "ok" if healthy else "error",
            "name": provider_name,
        }
        if not healthy or not limiter.running:
            health_status["status"] = "degraded"
        return health_status

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        The client only ever receives the generic internal error envelope;
        details are logged server-side with the request ID.
        """
        request_id = get_request_id(request)
        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra=get_log_context(request_id=request_id, exception_type=type(exc).__name__),
        )
        envelope = failure_envelope(InternalError())
        return JSONResponse(status_code=500, content=envelope_to_dict(envelope))

    return app


# Create the application instance
app = create_app()
