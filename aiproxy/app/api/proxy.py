"""AI proxy endpoint."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from aiproxy.app.api.dependencies import get_client_key, get_proxy_service
from aiproxy.app.middleware.request_id import get_request_id
from aiproxy.app.services.envelope import envelope_to_dict
from aiproxy.app.services.proxy import ProxyService

router = APIRouter()


@router.post("/v1/ai/complete", response_model=None)
async def complete(
    request: Request,
    service: ProxyService = Depends(get_proxy_service),
    client_key: str = Depends(get_client_key),
) -> JSONResponse:
    """Proxy one prompt to the AI provider.

    The body is read raw so that malformed JSON is reported through the
    regular failure envelope rather than a framework validation error.
    The HTTP status mirrors the envelope code; rate limited responses carry
    a ``Retry-After`` header.
    """
    body = await request.body()
    outcome = await service.handle(body, client_key, request_id=get_request_id(request))

    headers = {}
    if outcome.retry_after is not None:
        headers["Retry-After"] = str(outcome.retry_after)

    return JSONResponse(
        status_code=outcome.status_code,
        content=envelope_to_dict(outcome.envelope),
        headers=headers,
    )
