"""Tests for response envelopes and their wire format."""

import json

import pydantic
import pytest

from aiproxy.app.exceptions import (
    ErrorKind,
    InternalError,
    RateLimitExceededError,
    UpstreamError,
    UpstreamTimeoutError,
    ValidationError,
    code_for,
)
from aiproxy.app.providers.retry import failure
from aiproxy.app.schemas import (
    FailureEnvelope,
    FailureKind,
    ProviderSuccess,
    SuccessEnvelope,
)
from aiproxy.app.services.envelope import (
    build_envelope,
    decode_envelope,
    encode_envelope,
    envelope_to_dict,
    error_for_failure,
)


class TestErrorCodes:
    @pytest.mark.parametrize(
        "kind,code",
        [
            (ErrorKind.VALIDATION, 400),
            (ErrorKind.RATE_LIMITED, 429),
            (ErrorKind.UPSTREAM_TIMEOUT, 504),
            (ErrorKind.UPSTREAM_ERROR, 502),
            (ErrorKind.INTERNAL, 500),
        ],
    )
    def test_code_for_kind(self, kind, code):
        assert code_for(kind) == code

    def test_rate_limit_error_mentions_retry_after(self):
        error = RateLimitExceededError(retry_after=12)
        assert error.status_code == 429
        assert error.retry_after == 12
        assert "12" in error.message


class TestBuildEnvelope:
    def test_success(self):
        envelope = build_envelope(ProviderSuccess(text="Hi", latency_ms=42, model="m-1"))

        assert isinstance(envelope, SuccessEnvelope)
        assert envelope_to_dict(envelope) == {
            "ok": True,
            "text": "Hi",
            "meta": {"latencyMs": 42, "model": "m-1"},
        }

    @pytest.mark.parametrize(
        "error,code",
        [
            (ValidationError("prompt is required", field="prompt"), 400),
            (RateLimitExceededError(retry_after=3), 429),
            (UpstreamTimeoutError("slow"), 504),
            (UpstreamError("bad"), 502),
            (InternalError("boom"), 500),
        ],
    )
    def test_errors(self, error, code):
        envelope = build_envelope(error)

        assert isinstance(envelope, FailureEnvelope)
        assert envelope_to_dict(envelope) == {"ok": False, "error": error.message, "code": code}

    @pytest.mark.parametrize(
        "kind,retryable,expected",
        [
            (FailureKind.TIMEOUT, True, UpstreamTimeoutError),
            (FailureKind.SERVER_ERROR, True, UpstreamTimeoutError),
            (FailureKind.NETWORK, True, UpstreamTimeoutError),
            (FailureKind.REJECTED, False, UpstreamError),
            (FailureKind.BAD_RESPONSE, False, UpstreamError),
            (FailureKind.INTERNAL, False, InternalError),
        ],
    )
    def test_provider_failures(self, kind, retryable, expected):
        result = failure(kind, retryable)

        assert isinstance(error_for_failure(result), expected)
        assert build_envelope(result).error == result.message


class TestWireFormat:
    def test_success_round_trip(self):
        envelope = build_envelope(ProviderSuccess(text="Hello", latency_ms=7, model="m"))

        encoded = encode_envelope(envelope)

        assert json.loads(encoded)["meta"]["latencyMs"] == 7
        assert decode_envelope(encoded) == envelope

    def test_failure_round_trip(self):
        envelope = build_envelope(UpstreamError("nope"))

        decoded = decode_envelope(encode_envelope(envelope).encode())

        assert isinstance(decoded, FailureEnvelope)
        assert decoded == envelope

    def test_decode_dict(self):
        decoded = decode_envelope({"ok": False, "error": "Too many requests", "code": 429})
        assert decoded.code == 429

    @pytest.mark.parametrize(
        "raw",
        [
            {"ok": True, "text": "missing meta"},
            {"ok": False, "error": "no code"},
            {"ok": True, "text": "x", "meta": {"latencyMs": -1, "model": "m"}},
            {"ok": False, "error": "x", "code": 500, "extra": 1},
        ],
    )
    def test_invalid_shapes_are_rejected(self, raw):
        with pytest.raises(pydantic.ValidationError):
            decode_envelope(raw)
