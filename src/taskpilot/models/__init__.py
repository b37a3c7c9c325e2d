"""Convenience exports for Taskpilot completion clients."""

from .llm_client import (
    LLMClient,
    LLMClientError,
    LLMRequest,
    LLMResponseFormatError,
    LLMRetryError,
    LLMTransportError,
    OfflineClient,
    extract_json_object,
    parse_structured,
)
from .responses import ProviderEndpoint, ResponsesClient

__all__ = [
    "LLMClient",
    "LLMClientError",
    "LLMRequest",
    "LLMResponseFormatError",
    "LLMRetryError",
    "LLMTransportError",
    "OfflineClient",
    "ProviderEndpoint",
    "ResponsesClient",
    "extract_json_object",
    "parse_structured",
]
