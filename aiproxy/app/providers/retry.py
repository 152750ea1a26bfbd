"""Retry policy with exponential backoff for the upstream provider.

This module decides two things for the provider client: whether a failed
attempt is worth repeating, and how long to wait before repeating it.
"""

import asyncio
import random
from dataclasses import dataclass, field
from typing import Callable

import httpx
import openai

from aiproxy.app.schemas import FailureKind, ProviderFailure

# Upstream statuses that indicate a transient condition despite being 4xx.
RETRYABLE_4XX = frozenset({408, 429})

# Fixed, client-safe messages. Upstream error bodies, URLs and headers never
# leave the proxy.
FAILURE_MESSAGES: dict[FailureKind, str] = {
    FailureKind.TIMEOUT: "The AI provider did not respond in time",
    FailureKind.NETWORK: "The AI provider could not be reached",
    FailureKind.SERVER_ERROR: "The AI provider is temporarily unavailable",
    FailureKind.REJECTED: "The AI provider rejected the request",
    FailureKind.BAD_RESPONSE: "The AI provider returned an unusable response",
    FailureKind.INTERNAL: "The AI request failed unexpectedly",
}


class MalformedResponseError(Exception):
    """Raised by providers when the upstream payload has an unexpected shape."""


def failure(kind: FailureKind, retryable: bool) -> ProviderFailure:
    return ProviderFailure(kind=kind, message=FAILURE_MESSAGES[kind], retryable=retryable)


def _classify_status(status_code: int) -> ProviderFailure:
    if status_code >= 500 or status_code in RETRYABLE_4XX:
        return failure(FailureKind.SERVER_ERROR, retryable=True)
    return failure(FailureKind.REJECTED, retryable=False)


def classify_exception(exc: BaseException) -> ProviderFailure:
    """Map an exception raised by a provider to a classified failure.

    Timeouts, network errors, upstream 5xx, 408 and 429 are transient.
    Other upstream 4xx and malformed payloads are not. Anything unknown is
    an internal fault and is never retried.
    """
    # openai.APITimeoutError subclasses APIConnectionError; check it first.
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException, openai.APITimeoutError)):
        return failure(FailureKind.TIMEOUT, retryable=True)
    if isinstance(exc, httpx.HTTPStatusError):
        return _classify_status(exc.response.status_code)
    if isinstance(exc, openai.APIStatusError):
        return _classify_status(exc.status_code)
    if isinstance(exc, (httpx.TransportError, openai.APIConnectionError)):
        return failure(FailureKind.NETWORK, retryable=True)
    if isinstance(exc, MalformedResponseError):
        return failure(FailureKind.BAD_RESPONSE, retryable=False)
    return failure(FailureKind.INTERNAL, retryable=False)


@dataclass
class RetryPolicy:
    """Configuration for retry behavior with exponential backoff.

    Attributes:
        max_retries: Additional attempts after the first one (default: 2)
        base_delay: Initial delay between attempts in seconds (default: 0.25)
        max_delay: Maximum delay between attempts in seconds (default: 4.0)
        exponential_base: Base for exponential calculation (default: 2.0)
        jitter: Randomize each delay within [0, computed delay] (default: True)

    Example:
        >>> policy = RetryPolicy(max_retries=2, base_delay=1.0, jitter=False)
        >>> policy.backoff(attempt=1)
        2.0
    """

    max_retries: int = 2
    base_delay: float = 0.25
    max_delay: float = 4.0
    exponential_base: float = 2.0
    jitter: bool = True
    rng: Callable[[float, float], float] = field(default=random.uniform, repr=False)

    def calculate_delay(self, attempt: int) -> float:
        """Capped exponential delay for a 0-indexed retry attempt.

        delay = min(base_delay * (exponential_base ^ attempt), max_delay)
        """
        delay = self.base_delay * (self.exponential_base ** attempt)
        return min(delay, self.max_delay)

    def backoff(self, attempt: int) -> float:
        """Delay to sleep before retry ``attempt``, with full jitter applied."""
        delay = self.calculate_delay(attempt)
        if self.jitter:
            return self.rng(0.0, delay)
        return delay
