"""Client-side wrapper for calling the AI proxy.

Provides debouncing, cancellation and interpretation of response envelopes
for applications that call the proxy.
"""

from aiproxy.client.debounce import (
    DEFAULT_DEBOUNCE_DELAY,
    ClientOutcome,
    ClientState,
    DebouncedProxyClient,
    OutcomeKind,
    interpret,
)
from aiproxy.client.transport import (
    HttpProxyTransport,
    ProxyTransport,
    TransportResponse,
    build_request_payload,
)

__all__ = [
    "DEFAULT_DEBOUNCE_DELAY",
    "ClientOutcome",
    "ClientState",
    "DebouncedProxyClient",
    "OutcomeKind",
    "interpret",
    "HttpProxyTransport",
    "ProxyTransport",
    "TransportResponse",
    "build_request_payload",
]
