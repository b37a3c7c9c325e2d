"""Production client that speaks the OpenAI Responses API."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from .llm_client import LLMClient, LLMResponseFormatError, LLMTransportError

__all__ = ["ProviderEndpoint", "ResponsesClient"]

LOGGER = logging.getLogger(__name__)

DEFAULT_PROVIDER = "default"


@dataclass(frozen=True, slots=True)
class ProviderEndpoint:
    """Responses-compatible endpoint a provider hint routes to."""

    name: str
    base_url: str
    api_key: Optional[str] = None
    model: Optional[str] = None


Transport = Callable[[Dict[str, Any], ProviderEndpoint], str]


class ResponsesClient(LLMClient):
    """Thin adapter around the Responses API returning plain output text.

    Requests carrying a provider hint go to the matching entry of
    ``providers``; unknown hints are logged and sent to the default endpoint.
    """

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: str = "https://api.openai.com/v1/responses",
        model: str = "gpt-5-mini",
        transport: Optional[Transport] = None,
        timeout: float = 120.0,
        max_attempts: int = 3,
        retry_delay: float = 0.5,
        providers: Optional[Mapping[str, ProviderEndpoint]] = None,
    ) -> None:
        super().__init__(model=model, max_attempts=max_attempts, retry_delay=retry_delay)
        self._api_key = api_key or os.getenv("TASKPILOT_API_KEY") or os.getenv("OPENAI_API_KEY")
        self._default_endpoint = ProviderEndpoint(name=DEFAULT_PROVIDER, base_url=base_url, api_key=self._api_key)
        self._providers: Dict[str, ProviderEndpoint] = {
            name.lower(): endpoint for name, endpoint in (providers or {}).items()
        }
        self._timeout = timeout
        self._transport = transport or self._http_transport
        self._warned_providers: set[str] = set()

        if transport is None and not self._api_key:
            raise ValueError("An API key is required when using the default transport.")

    def endpoint_for(self, provider: Optional[str]) -> ProviderEndpoint:
        """Resolve the endpoint serving ``provider``."""
        if not provider:
            return self._default_endpoint
        endpoint = self._providers.get(provider.lower())
        if endpoint is not None:
            return endpoint
        if provider not in self._warned_providers:
            self._warned_providers.add(provider)
            LOGGER.warning(
                "No endpoint configured for provider '%s'; using %s instead.",
                provider,
                self._default_endpoint.base_url,
            )
        return self._default_endpoint

    def _raw_invoke(self, payload: Dict[str, Any], provider: Optional[str] = None) -> str:
        """Send the request over the configured transport."""
        endpoint = self.endpoint_for(provider)
        if endpoint.model and payload.get("model") == self._model:
            payload = {**payload, "model": endpoint.model}
        try:
            raw_response = self._transport(payload, endpoint)
        except LLMTransportError:
            raise
        except OSError as error:
            raise LLMTransportError(f"Transport rejected the request: {error}") from error

        text = self._extract_output_text(raw_response)
        if text is None:
            raise LLMResponseFormatError("Response did not contain output text.")
        return text

    def _http_transport(self, payload: Dict[str, Any], endpoint: ProviderEndpoint) -> str:
        """Default HTTP transport that targets the resolved Responses endpoint."""
        import urllib.error
        import urllib.request

        api_key = endpoint.api_key or self._api_key
        LOGGER.debug("POST %s provider=%s model=%s", endpoint.base_url, endpoint.name, payload.get("model"))
        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(
            endpoint.base_url,
            data=data,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {api_key}",
            },
            method="POST",
        )

        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                raw = response.read()
                status = getattr(response, "status", 200)
        except TimeoutError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError("Completion request timed out.") from error
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            message = error.read().decode("utf-8", errors="ignore")
            raise LLMTransportError(f"HTTP {error.code}: {message}") from error
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"Failed to reach completion endpoint: {error.reason}") from error

        if status >= 400:
            raise LLMTransportError(f"Unexpected HTTP status {status}")

        return raw.decode("utf-8")

    @staticmethod
    def _extract_output_text(raw_response: str) -> Optional[str]:
        """Concatenate the ``output_text`` parts of a Responses API payload."""
        if not raw_response:
            return None

        try:
            data = json.loads(raw_response)
        except json.JSONDecodeError:
            return raw_response

        if not isinstance(data, dict):
            return raw_response

        direct = data.get("output_text")
        if isinstance(direct, str) and direct:
            return direct

        fragments: list[str] = []
        for event in data.get("output") or []:
            if not isinstance(event, dict):
                continue
            for part in event.get("content") or []:
                if isinstance(part, dict) and part.get("type") in {"output_text", "text"}:
                    text = part.get("text")
                    if isinstance(text, str):
                        fragments.append(text)
        if fragments:
            return "".join(fragments)
        return None
