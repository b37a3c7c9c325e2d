"""Completion client base class shared by all language-model integrations."""

from __future__ import annotations

import ast
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import ValidationError
from pydantic.type_adapter import TypeAdapter

__all__ = [
    "LLMClient",
    "LLMClientError",
    "LLMRequest",
    "LLMResponseFormatError",
    "LLMRetryError",
    "LLMTransportError",
    "OfflineClient",
    "extract_json_object",
    "parse_structured",
]

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class LLMClientError(RuntimeError):
    """Base error raised for LLM client failures."""


class LLMTransportError(LLMClientError):
    """Raised when the underlying transport fails to return a response."""


class LLMResponseFormatError(LLMClientError):
    """Raised when the model returns payload that cannot be interpreted."""


class LLMRetryError(LLMClientError):
    """Raised after exhausting retries due to repeated transport failures."""


@dataclass(slots=True)
class LLMRequest:
    """Free-text completion request sent to an LLM."""

    prompt: str
    model: Optional[str] = None
    system_prompt: Optional[str] = None
    provider: Optional[str] = None

    def to_payload(self, default_model: str) -> Dict[str, Any]:
        """Render a transport-ready payload for the Responses API."""
        def _message(role: str, text: str) -> Dict[str, Any]:
            return {
                "role": role,
                "content": [
                    {
                        "type": "input_text",
                        "text": text,
                    }
                ],
            }

        messages: list[Dict[str, Any]] = []
        if self.system_prompt:
            messages.append(_message("system", self.system_prompt))
        messages.append(_message("user", self.prompt))

        return {
            "model": self.model or default_model,
            "input": messages,
        }


class LLMClient:
    """High-level helper that sends prompts and returns the model's text."""

    def __init__(self, model: str, *, max_attempts: int = 3, retry_delay: float = 0.5) -> None:
        self._model = model
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay

    @property
    def model(self) -> str:
        """Return the default model name configured for this client."""
        return self._model

    def complete(
        self,
        prompt: str,
        *,
        model: Optional[str] = None,
        system_prompt: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> str:
        """Send ``prompt`` and return the completion text."""
        request = LLMRequest(prompt=prompt, model=model, system_prompt=system_prompt, provider=provider)
        return self.invoke(request)

    def invoke(self, request: LLMRequest) -> str:
        """Invoke the model, retrying transport failures with a fixed delay."""
        attempts = self._max_attempts
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            payload = request.to_payload(self._model)
            try:
                return self._raw_invoke(payload, request.provider)
            except LLMTransportError as error:
                last_error = error
                LOGGER.warning("LLM transport failed (attempt %d/%d): %s", attempt, attempts, error)
                if attempt >= attempts:
                    break
                time.sleep(self._retry_delay)

        error_message = (
            f"Failed to obtain a completion after {attempts} attempt(s) for model "
            f"{request.model or self._model}"
        )
        raise LLMRetryError(error_message) from last_error

    def _raw_invoke(self, payload: Dict[str, Any], provider: Optional[str] = None) -> str:
        """Perform the transport call, routed by the optional ``provider`` hint."""
        raise NotImplementedError("Subclasses must implement _raw_invoke().")


class OfflineClient(LLMClient):
    """Client used without network access; every completion is empty."""

    def __init__(self) -> None:
        super().__init__("offline", max_attempts=1, retry_delay=0.0)

    def _raw_invoke(self, payload: Dict[str, Any], provider: Optional[str] = None) -> str:
        return ""


def extract_json_object(raw_response: str) -> Any:
    """Parse the first JSON object embedded in free-form model output."""
    text = (raw_response or "").strip()
    if not text:
        raise LLMResponseFormatError("Model returned an empty response.")

    text = _normalise_json_string(text)
    candidates = [text]
    repaired = _repair_json_payload(text)
    if repaired and repaired not in candidates:
        candidates.append(_normalise_json_string(repaired))

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            pythonic = _coerce_python_literal(candidate)
            if pythonic is not None:
                return pythonic

    snippet = text[:200]
    raise LLMResponseFormatError(f"Model returned invalid JSON: {snippet}")


def parse_structured(raw_response: str, model: Type[T]) -> T:
    """Extract JSON from ``raw_response`` and validate it against ``model``."""
    data = extract_json_object(raw_response)
    try:
        return TypeAdapter(model).validate_python(data)
    except ValidationError as error:
        raise LLMResponseFormatError(
            f"Model response did not match {getattr(model, '__name__', model)}: {error}"
        ) from error


def _strip_code_fence(payload: str) -> str:
    """Remove Markdown-style code fences that wrap JSON payloads."""
    if not payload.startswith("```"):
        return payload
    fence_header_match = re.match(r"```(?:json)?", payload[:10], re.IGNORECASE)
    if not fence_header_match:
        return payload
    fence_end = payload.find("```", len(fence_header_match.group(0)))
    if fence_end == -1:
        return payload
    content_start = payload.find("\n", len(fence_header_match.group(0)))
    if content_start == -1:
        return payload
    return payload[content_start + 1 : fence_end].strip()


def _normalise_json_string(payload: str) -> str:
    """Normalise typographic quotes and spaces emitted by models."""
    translation = {
        0x201C: '"',
        0x201D: '"',
        0x2018: "'",
        0x2019: "'",
        0x00A0: " ",
        0xFEFF: "",
    }
    return payload.translate(str.maketrans(translation))


def _strip_trailing_commas(payload: str) -> str:
    """Remove trailing commas before closing braces/brackets."""
    return re.sub(r",(\s*[}\]])", r"\1", payload)


def _repair_json_payload(raw: str) -> str | None:
    """Salvage the first balanced JSON object embedded in noisy output."""
    stripped = _strip_code_fence(raw.strip())
    if not stripped:
        return None

    try:
        json.loads(stripped)
    except json.JSONDecodeError:
        pass
    else:
        return stripped

    opening_idx = None
    depth = 0
    in_string = False
    escaped = False
    for index, char in enumerate(stripped):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"' and opening_idx is not None:
            in_string = True
        elif char == "{":
            if opening_idx is None:
                opening_idx = index
            depth += 1
        elif char == "}" and opening_idx is not None:
            depth -= 1
            if depth == 0:
                candidate = stripped[opening_idx : index + 1]
                return _strip_trailing_commas(candidate.strip())
    return None


def _coerce_python_literal(candidate: str) -> Any | None:
    """Fall back to Python literal parsing when JSON decoding fails."""
    try:
        literal = ast.literal_eval(candidate)
    except (SyntaxError, ValueError):
        return None
    if not isinstance(literal, dict):
        return None
    return literal
