"""Per-request orchestration of validation, admission and the upstream call.

State machine of a single request::

    RECEIVED -> VALIDATING -> REJECTED
                           -> ADMITTING -> RATE_LIMITED
                                        -> CALLING -> SUCCEEDED
                                                   -> FAILED

Each terminal state produces exactly one envelope. The service keeps no
state between requests; everything shared lives in the rate limiter.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from aiproxy.app.core.logging import get_log_context, get_logger
from aiproxy.app.exceptions import InternalError, ProxyError, RateLimitExceededError
from aiproxy.app.providers.client import ProviderClient
from aiproxy.app.schemas import ProviderSuccess, ResponseEnvelope
from aiproxy.app.services.envelope import (
    envelope_for_failure,
    failure_envelope,
    success_envelope,
)
from aiproxy.app.services.rate_limit import Rejected, RateLimiter
from aiproxy.app.services.validator import RequestValidator

logger = get_logger(__name__)


class RequestState(str, Enum):
    RECEIVED = "received"
    VALIDATING = "validating"
    REJECTED = "rejected"
    ADMITTING = "admitting"
    RATE_LIMITED = "rate_limited"
    CALLING = "calling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_STATES = frozenset({
    RequestState.REJECTED,
    RequestState.RATE_LIMITED,
    RequestState.SUCCEEDED,
    RequestState.FAILED,
})


@dataclass(frozen=True)
class ProxyOutcome:
    """Envelope for the client plus transport hints for the HTTP layer."""
    envelope: ResponseEnvelope
    state: RequestState
    retry_after: Optional[int] = None

    @property
    def status_code(self) -> int:
        return 200 if self.envelope.ok else self.envelope.code


class ProxyService:
    """Orchestrates one proxied AI request.

    Components are injected so the same service runs against the in-memory
    or the Redis rate limiter and against any provider.
    """

    def __init__(
        self,
        validator: RequestValidator,
        rate_limiter: RateLimiter,
        provider_client: ProviderClient,
    ):
        self.validator = validator
        self.rate_limiter = rate_limiter
        self.provider_client = provider_client

    async def handle(
        self,
        payload: Any,
        client_key: str,
        request_id: Optional[str] = None,
    ) -> ProxyOutcome:
        """Process one inbound request.

        Args:
            payload: Raw request body or decoded JSON object
            client_key: Transport-derived identity of the caller
            request_id: Correlation id for logs

        Returns:
            The terminal outcome. Never raises for request-level failures.
        """
        started = time.perf_counter()
        try:
            outcome = await self._run(payload, client_key, request_id)
        except ProxyError as e:
            outcome = ProxyOutcome(failure_envelope(e), RequestState.FAILED)
        except Exception:
            logger.exception(
                "Unexpected error while proxying request",
                extra=get_log_context(request_id=request_id, client_key=client_key),
            )
            outcome = ProxyOutcome(failure_envelope(InternalError()), RequestState.FAILED)

        duration_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            f"Request finished: {outcome.state.value}",
            extra=get_log_context(
                request_id=request_id,
                client_key=client_key,
                state=outcome.state.value,
                code=None if outcome.envelope.ok else outcome.envelope.code,
                duration_ms=duration_ms,
            ),
        )
        return outcome

    async def _run(self, payload: Any, client_key: str, request_id: Optional[str]) -> ProxyOutcome:
        # VALIDATING: no quota is spent on malformed requests.
        try:
            request = self.validator.validate(payload)
        except ProxyError as e:
            return ProxyOutcome(failure_envelope(e), RequestState.REJECTED)

        # ADMITTING: the limiter releases its lock before returning.
        decision = await self.rate_limiter.admit(client_key)
        if isinstance(decision, Rejected):
            error = RateLimitExceededError(retry_after=decision.retry_after)
            return ProxyOutcome(
                failure_envelope(error),
                RequestState.RATE_LIMITED,
                retry_after=decision.retry_after,
            )

        # CALLING
        logger.debug(
            "Request admitted, calling provider",
            extra=get_log_context(
                request_id=request_id,
                client_key=client_key,
                provider=self.provider_client.provider.name,
            ),
        )
        result = await self.provider_client.call(request)
        if isinstance(result, ProviderSuccess):
            return ProxyOutcome(success_envelope(result), RequestState.SUCCEEDED)
        return ProxyOutcome(envelope_for_failure(result), RequestState.FAILED)
