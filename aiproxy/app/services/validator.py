"""Inbound request validation.

Checks run in a fixed order and stop at the first violation so the client
always learns about the earliest problem in its payload. Validation is pure:
it never touches the rate limiter or the provider.
"""

import json
import re
from typing import Any, Mapping, Optional

from aiproxy.app.core.config import Settings, settings as default_settings
from aiproxy.app.exceptions import ValidationError
from aiproxy.app.schemas import AIRequest

# C0 and C1 control characters except tab, newline and carriage return.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")


def sanitize_prompt(prompt: str) -> str:
    """Strip control characters and surrounding whitespace."""
    return _CONTROL_CHARS.sub("", prompt).strip()


class RequestValidator:
    """Turns a raw payload into an ``AIRequest`` or raises ``ValidationError``."""

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings or default_settings

    def validate(self, payload: Any) -> AIRequest:
        """Validate a raw payload.

        Args:
            payload: JSON text (``bytes`` or ``str``) or an already decoded
                mapping

        Returns:
            The validated request with defaults applied

        Raises:
            ValidationError: On the first violated constraint
        """
        data = self._parse(payload)
        prompt = self._check_prompt(data.get("prompt"))
        max_tokens = self._check_max_tokens(data.get("maxTokens"))
        temperature = self._check_temperature(data.get("temperature"))

        prompt = sanitize_prompt(prompt)
        self._check_prompt_bounds(prompt)

        return AIRequest(prompt=prompt, max_tokens=max_tokens, temperature=temperature)

    def _parse(self, payload: Any) -> Mapping[str, Any]:
        if isinstance(payload, (bytes, bytearray)):
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError:
                raise ValidationError("Request body must be UTF-8 encoded JSON")
        if isinstance(payload, str):
            # ValueError also covers oversized integer literals.
            try:
                payload = json.loads(payload)
            except (ValueError, RecursionError):
                raise ValidationError("Request body is not valid JSON")
        if not isinstance(payload, Mapping):
            raise ValidationError("Request body must be a JSON object")
        return payload

    def _check_prompt(self, prompt: Any) -> str:
        if prompt is None:
            raise ValidationError("prompt is required", field="prompt")
        if not isinstance(prompt, str):
            raise ValidationError("prompt must be a string", field="prompt")
        try:
            prompt.encode("utf-8")
        except UnicodeEncodeError:
            raise ValidationError("prompt must be valid UTF-8 text", field="prompt")
        self._check_prompt_bounds(prompt.strip())
        return prompt

    def _check_prompt_bounds(self, prompt: str) -> None:
        if not prompt:
            raise ValidationError("prompt must not be empty", field="prompt")
        limit = self._settings.max_prompt_chars
        if len(prompt) > limit:
            raise ValidationError(
                f"prompt must be at most {limit} characters", field="prompt"
            )

    def _check_max_tokens(self, value: Any) -> int:
        if value is None:
            return self._settings.default_max_tokens
        # bool is a subclass of int
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError("maxTokens must be an integer", field="maxTokens")
        ceiling = self._settings.max_tokens_ceiling
        if not 1 <= value <= ceiling:
            raise ValidationError(
                f"maxTokens must be between 1 and {ceiling}", field="maxTokens"
            )
        return value

    def _check_temperature(self, value: Any) -> float:
        if value is None:
            return self._settings.default_temperature
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError("temperature must be a number", field="temperature")
        low = self._settings.temperature_min
        high = self._settings.temperature_max
        # NaN fails every comparison, so it is rejected here too.
        if not low <= value <= high:
            raise ValidationError(
                f"temperature must be between {low} and {high}", field="temperature"
            )
        return float(value)
