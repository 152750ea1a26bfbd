"""Debounced, cancelable caller for the proxy.

Designed for interactive callers (search-as-you-type, live previews) that
fire many requests in quick succession and only care about the last one.

The wrapper is always in one of three states::

    IDLE --submit--> PENDING --delay elapsed--> IN_FLIGHT --resolved--> IDLE
                     PENDING --submit--> PENDING (timer restarted)
                     IN_FLIGHT --submit--> PENDING (call superseded)
    any --cancel--> IDLE

Every transition out of PENDING or IN_FLIGHT other than resolution bumps a
generation counter; a continuation that wakes up with an old generation
drops its result instead of delivering it.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from aiproxy.app.core.logging import get_logger
from aiproxy.app.schemas import ResponseEnvelope
from aiproxy.client.transport import ProxyTransport, build_request_payload

logger = get_logger(__name__)

DEFAULT_DEBOUNCE_DELAY = 0.2

# Failures worth offering a retry for: quota, upstream timeout, upstream error.
RETRYABLE_CODES = frozenset({429, 502, 504})


class ClientState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    IN_FLIGHT = "in_flight"


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    RETRYABLE = "retryable"
    FATAL = "fatal"


@dataclass(frozen=True)
class ClientOutcome:
    """What a UI needs to render the result of one proxied request."""
    kind: OutcomeKind
    text: Optional[str] = None
    error: Optional[str] = None
    code: Optional[int] = None
    retry_after: Optional[int] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    @property
    def can_retry(self) -> bool:
        return self.kind is OutcomeKind.RETRYABLE


UNREACHABLE = ClientOutcome(
    kind=OutcomeKind.RETRYABLE,
    error="Could not reach the AI service",
)


def interpret(envelope: ResponseEnvelope, retry_after: Optional[int] = None) -> ClientOutcome:
    """Map a response envelope to a UI-facing outcome."""
    if envelope.ok:
        return ClientOutcome(
            kind=OutcomeKind.SUCCESS,
            text=envelope.text,
            meta=envelope.meta.model_dump(by_alias=True),
        )
    kind = OutcomeKind.RETRYABLE if envelope.code in RETRYABLE_CODES else OutcomeKind.FATAL
    return ClientOutcome(
        kind=kind,
        error=envelope.error,
        code=envelope.code,
        retry_after=retry_after if kind is OutcomeKind.RETRYABLE else None,
    )


class DebouncedProxyClient:
    """Collapses bursts of requests into one call carrying the latest arguments.

    ``submit`` returns a future. Every future handed out during one burst
    resolves with the outcome of the single call that the burst produces.
    ``cancel`` guarantees none of them receives that outcome.

    Must be used from a single event loop.
    """

    def __init__(self, transport: ProxyTransport, delay: float = DEFAULT_DEBOUNCE_DELAY):
        self._transport = transport
        self.delay = delay
        self._state = ClientState.IDLE
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self._waiters: List[asyncio.Future] = []
        self._payload: Optional[Dict[str, Any]] = None

    @property
    def state(self) -> ClientState:
        return self._state

    def submit(
        self,
        prompt: str,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> "asyncio.Future[ClientOutcome]":
        """Schedule a request, replacing any request not yet resolved."""
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._waiters.append(future)
        self._payload = build_request_payload(prompt, max_tokens, temperature)

        self._invalidate()
        self._state = ClientState.PENDING
        self._task = asyncio.create_task(self._fire(self._generation, self._payload))
        return future

    def cancel(self) -> bool:
        """Drop the pending or in-flight request.

        Returns:
            True if something was cancelled, False if there was nothing to
            cancel (including when the last call has already resolved)
        """
        if self._state is ClientState.IDLE:
            return False

        self._invalidate()
        waiters, self._waiters = self._waiters, []
        for future in waiters:
            future.cancel()
        self._payload = None
        self._state = ClientState.IDLE
        return True

    async def aclose(self) -> None:
        self.cancel()
        close = getattr(self._transport, "aclose", None)
        if close is not None:
            await close()

    def _invalidate(self) -> None:
        self._generation += 1
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _fire(self, generation: int, payload: Dict[str, Any]) -> None:
        await asyncio.sleep(self.delay)
        if generation != self._generation:
            return

        self._state = ClientState.IN_FLIGHT
        error: Optional[BaseException] = None
        outcome: Optional[ClientOutcome] = None
        try:
            response = await self._transport.send(payload)
            outcome = interpret(response.envelope, response.retry_after)
        except httpx.HTTPError as e:
            logger.warning(f"AI proxy unreachable: {type(e).__name__}")
            outcome = UNREACHABLE
        except Exception as e:
            error = e

        if generation != self._generation:
            return

        waiters, self._waiters = self._waiters, []
        self._task = None
        self._payload = None
        self._state = ClientState.IDLE
        for future in waiters:
            if future.done():
                continue
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(outcome)
