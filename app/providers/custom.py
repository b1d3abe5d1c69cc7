"""User-defined endpoints described by a :class:`CustomServiceConfig`."""

from __future__ import annotations

from typing import Any

import httpx

from app.domain.models import CustomServiceConfig, NormalizedMessage, NormalizedResponse
from app.providers import anthropic, google, openai
from app.providers.base import ProviderAdapter, ProviderRequest, as_text, message_dicts

REQUEST_FORMATS = frozenset({"openai", "claude", "anthropic", "google", "custom"})
RESPONSE_FORMATS = frozenset({"openai", "claude", "anthropic", "google", "text"})


def build_custom_body(config: CustomServiceConfig, messages: list[NormalizedMessage]) -> dict[str, Any]:
    request_format = config.request_format
    if request_format == "openai":
        return {
            "model": config.model,
            "messages": message_dicts(messages),
            "temperature": config.temperature,
            "max_tokens": config.max_tokens,
            "stream": config.supports_streaming,
        }
    if request_format in {"claude", "anthropic"}:
        return anthropic.build_messages_body(
            config.model,
            messages,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
        )
    if request_format == "google":
        return google.build_generate_body(
            messages, temperature=config.temperature, max_tokens=config.max_tokens
        )
    # "custom" and unrecognized formats share the generic shape.
    return {
        "model": config.model,
        "messages": message_dicts(messages),
        "temperature": config.temperature,
        "max_tokens": config.max_tokens,
    }


def parse_custom_response(config: CustomServiceConfig, data: dict[str, Any]) -> NormalizedResponse:
    response_format = config.response_format
    if response_format == "openai":
        return openai.parse_chat_completion(data, config.model)
    if response_format in {"claude", "anthropic"}:
        return anthropic.parse_message(data, config.model)
    if response_format == "google":
        return google.parse_generate_content(data, config.model)
    return NormalizedResponse(
        text=as_text(data.get("message")) or as_text(data.get("response")),
        model_id=as_text(data.get("model")) or config.model,
        usage=openai.parse_usage(data.get("usage")),
    )


class CustomAdapter(ProviderAdapter):
    name = "custom"
    label = "Custom AI"
    default_model = "custom-model"

    def __init__(
        self,
        config: CustomServiceConfig,
        *,
        service_id: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 60,
    ) -> None:
        super().__init__(
            config.api_key,
            config.endpoint,
            config.model,
            http_client=http_client,
            timeout=timeout,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
        )
        self.config = config
        self.service_id = service_id
        self.label = f"Custom AI ({config.name})"

    def is_configured(self) -> bool:
        return bool(self.api_key) and bool(self.config.endpoint)

    def headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.auth_header_name:
            headers[self.config.auth_header_name] = self.api_key
        else:
            headers["Authorization"] = f"Bearer {self.api_key}"
        headers.update(self.config.headers)
        return headers

    def build_chat_request(self, messages: list[NormalizedMessage]) -> ProviderRequest:
        return ProviderRequest(
            url=self.config.endpoint,
            method=self.config.http_method,
            headers=self.headers(),
            body=build_custom_body(self.config, messages),
        )

    def parse_chat_response(self, data: dict[str, Any]) -> NormalizedResponse:
        return parse_custom_response(self.config, data)


__all__ = [
    "CustomAdapter",
    "REQUEST_FORMATS",
    "RESPONSE_FORMATS",
    "build_custom_body",
    "parse_custom_response",
]
