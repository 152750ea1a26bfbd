"""Response envelope construction and wire encoding.

Every response the proxy sends is one of the two envelope shapes. The
functions here are pure and are the only place envelopes are built.
"""

from typing import Union

from pydantic import TypeAdapter

from aiproxy.app.exceptions import (
    InternalError,
    ProxyError,
    UpstreamError,
    UpstreamTimeoutError,
)
from aiproxy.app.schemas import (
    EnvelopeMeta,
    FailureEnvelope,
    FailureKind,
    ProviderFailure,
    ProviderSuccess,
    ResponseEnvelope,
    SuccessEnvelope,
)

_envelope_adapter: TypeAdapter[ResponseEnvelope] = TypeAdapter(ResponseEnvelope)


def success_envelope(result: ProviderSuccess) -> SuccessEnvelope:
    return SuccessEnvelope(
        text=result.text,
        meta=EnvelopeMeta(latency_ms=result.latency_ms, model=result.model),
    )


def failure_envelope(error: ProxyError) -> FailureEnvelope:
    return FailureEnvelope(error=error.message, code=error.status_code)


def error_for_failure(result: ProviderFailure) -> ProxyError:
    """Translate a provider failure into the proxy error it surfaces as.

    Transient failures only reach this point once retries are spent, so they
    surface as timeouts. Failures the provider itself caused surface as
    upstream errors; faults inside the provider code are internal.
    """
    if result.retryable:
        return UpstreamTimeoutError(result.message)
    if result.kind is FailureKind.INTERNAL:
        return InternalError(result.message)
    return UpstreamError(result.message)


def envelope_for_failure(result: ProviderFailure) -> FailureEnvelope:
    return failure_envelope(error_for_failure(result))


def build_envelope(outcome: Union[ProviderSuccess, ProviderFailure, ProxyError]) -> ResponseEnvelope:
    """Map any outcome of a proxied request to its envelope."""
    if isinstance(outcome, ProviderSuccess):
        return success_envelope(outcome)
    if isinstance(outcome, ProviderFailure):
        return envelope_for_failure(outcome)
    return failure_envelope(outcome)


def envelope_to_dict(envelope: ResponseEnvelope) -> dict:
    """Wire representation as a plain dict with camelCase keys."""
    return envelope.model_dump(by_alias=True)


def encode_envelope(envelope: ResponseEnvelope) -> str:
    return envelope.model_dump_json(by_alias=True)


def decode_envelope(raw: Union[str, bytes, dict]) -> ResponseEnvelope:
    """Parse an envelope from wire JSON or a decoded dict.

    Raises:
        pydantic.ValidationError: If the value is neither envelope shape
    """
    if isinstance(raw, dict):
        return _envelope_adapter.validate_python(raw)
    return _envelope_adapter.validate_json(raw)
