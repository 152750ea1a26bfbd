"""Services package for the proxy.

This package contains the per-request pipeline:

- RequestValidator: Ordered validation and prompt sanitization
- RateLimiter: Per-client fixed-window admission (in-memory or Redis)
- Envelope builders: The single success/failure wire shape
- ProxyService: Orchestration of the above for one request
"""

from aiproxy.app.services.envelope import (
    build_envelope,
    decode_envelope,
    encode_envelope,
    envelope_for_failure,
    envelope_to_dict,
    failure_envelope,
    success_envelope,
)
from aiproxy.app.services.proxy import ProxyOutcome, ProxyService, RequestState
from aiproxy.app.services.rate_limit import (
    Admission,
    Admitted,
    InMemoryRateLimiter,
    RateLimitBackend,
    RateLimiter,
    RedisRateLimiter,
    Rejected,
)
from aiproxy.app.services.validator import RequestValidator, sanitize_prompt

__all__ = [
    # Validation
    "RequestValidator",
    "sanitize_prompt",
    # Rate limiting
    "Admission",
    "Admitted",
    "Rejected",
    "RateLimitBackend",
    "InMemoryRateLimiter",
    "RedisRateLimiter",
    "RateLimiter",
    # Envelopes
    "build_envelope",
    "decode_envelope",
    "encode_envelope",
    "envelope_for_failure",
    "envelope_to_dict",
    "failure_envelope",
    "success_envelope",
    # Orchestration
    "ProxyOutcome",
    "ProxyService",
    "RequestState",
]
