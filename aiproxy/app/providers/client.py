"""Upstream call with deadline and bounded retry.

``ProviderClient.call`` never raises for upstream problems: every outcome is
returned as a ``ProviderSuccess`` or a classified ``ProviderFailure``.
"""

import asyncio
from typing import Optional

from aiproxy.app.core.logging import get_logger
from aiproxy.app.providers.base import BaseProvider
from aiproxy.app.providers.retry import RetryPolicy, classify_exception, failure
from aiproxy.app.schemas import (
    AIRequest,
    FailureKind,
    ProviderFailure,
    ProviderResult,
    ProviderSuccess,
)

logger = get_logger(__name__)


class ProviderClient:
    """Calls a provider under one overall deadline.

    All attempts share the deadline. A transient failure is retried after an
    exponential backoff with jitter, unless the retry budget is spent or the
    backoff would run past the deadline; both cases are reported as a
    timeout. Non-transient failures are returned after a single attempt.
    """

    def __init__(
        self,
        provider: BaseProvider,
        policy: Optional[RetryPolicy] = None,
        timeout: float = 30.0,
    ):
        self.provider = provider
        self.policy = policy or RetryPolicy()
        self.timeout = timeout

    async def call(self, request: AIRequest, timeout: Optional[float] = None) -> ProviderResult:
        """Call the provider.

        Args:
            request: Validated request
            timeout: Overall deadline in seconds for all attempts
                (defaults to the client's configured timeout)

        Returns:
            The success payload or the classified failure
        """
        loop = asyncio.get_running_loop()
        started = loop.time()
        deadline = started + (self.timeout if timeout is None else timeout)
        provider_name = self.provider.name

        for attempt in range(self.policy.max_retries + 1):
            remaining = deadline - loop.time()
            if remaining <= 0:
                return self._deadline_exceeded(attempt)

            try:
                completion = await asyncio.wait_for(
                    self.provider.complete(request), timeout=remaining
                )
            except Exception as e:
                result = classify_exception(e)
                if result.kind is FailureKind.INTERNAL:
                    logger.exception(
                        f"Provider {provider_name} raised an unexpected error",
                        extra={"provider": provider_name},
                    )
                    return result
                if not result.retryable:
                    logger.warning(
                        f"Non-retryable provider failure ({result.kind.value}): {type(e).__name__}",
                        extra={"provider": provider_name},
                    )
                    return result
                if attempt >= self.policy.max_retries:
                    logger.warning(
                        f"Max retries ({self.policy.max_retries}) exceeded for {provider_name}: "
                        f"{type(e).__name__} ({result.kind.value})",
                        extra={"provider": provider_name},
                    )
                    return failure(FailureKind.TIMEOUT, retryable=True)

                delay = self.policy.backoff(attempt)
                if loop.time() + delay >= deadline:
                    return self._deadline_exceeded(attempt + 1)

                logger.warning(
                    f"Retry {attempt + 1}/{self.policy.max_retries} for {provider_name} "
                    f"after {type(e).__name__} ({result.kind.value}). Waiting {delay:.2f}s...",
                    extra={"provider": provider_name},
                )
                await asyncio.sleep(delay)
                continue

            latency_ms = int((loop.time() - started) * 1000)
            return ProviderSuccess(text=completion.text, latency_ms=latency_ms, model=completion.model)

        # Only reachable with a negative retry bound.
        return failure(FailureKind.TIMEOUT, retryable=True)

    def _deadline_exceeded(self, attempts: int) -> ProviderFailure:
        logger.warning(
            f"Deadline exceeded for {self.provider.name} after {attempts} attempt(s)",
            extra={"provider": self.provider.name},
        )
        return failure(FailureKind.TIMEOUT, retryable=True)
