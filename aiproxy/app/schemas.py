"""Data types shared by the proxy components.

``AIRequest`` and the provider results are internal and never leave the
process. The envelope models are the wire contract returned to clients.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


@dataclass(frozen=True)
class AIRequest:
    """A validated, sanitized request ready to be sent upstream."""
    prompt: str
    max_tokens: int
    temperature: float


class FailureKind(str, Enum):
    """Classification of a failed upstream call."""
    TIMEOUT = "timeout"
    NETWORK = "network"
    SERVER_ERROR = "server_error"
    REJECTED = "rejected"
    BAD_RESPONSE = "bad_response"
    INTERNAL = "internal"


@dataclass(frozen=True)
class ProviderSuccess:
    text: str
    latency_ms: int
    model: str
    ok: bool = True


@dataclass(frozen=True)
class ProviderFailure:
    kind: FailureKind
    message: str
    retryable: bool
    ok: bool = False


ProviderResult = Union[ProviderSuccess, ProviderFailure]


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        frozen=True,
    )


class EnvelopeMeta(_WireModel):
    latency_ms: int = Field(ge=0)
    model: str


class SuccessEnvelope(_WireModel):
    """``{"ok": true, "text": ..., "meta": {"latencyMs": ..., "model": ...}}``"""
    ok: Literal[True] = True
    text: str
    meta: EnvelopeMeta


class FailureEnvelope(_WireModel):
    """``{"ok": false, "error": ..., "code": ...}``"""
    ok: Literal[False] = False
    error: str
    code: int


ResponseEnvelope = Union[SuccessEnvelope, FailureEnvelope]
