"""Anthropic messages API."""

from __future__ import annotations

from typing import Any, Sequence

from app.domain.models import NormalizedMessage, NormalizedResponse, TokenUsage
from app.providers.base import ProviderAdapter, ProviderRequest, as_int, as_text, dig


def split_system(messages: Sequence[NormalizedMessage]) -> tuple[str | None, list[dict[str, str]]]:
    """Lift system prompts into the top-level field; the rest keep their order."""

    system_parts = [message.content for message in messages if message.role == "system"]
    conversation = [
        {"role": message.role, "content": message.content}
        for message in messages
        if message.role != "system"
    ]
    return ("\n\n".join(system_parts) if system_parts else None), conversation


def build_messages_body(
    model: str,
    messages: Sequence[NormalizedMessage],
    *,
    max_tokens: int,
    temperature: float | None = None,
) -> dict[str, Any]:
    system, conversation = split_system(messages)
    body: dict[str, Any] = {
        "model": model,
        "max_tokens": max_tokens,
        "messages": conversation,
    }
    if system:
        body["system"] = system
    if temperature is not None:
        body["temperature"] = temperature
    return body


def parse_usage(raw: Any) -> TokenUsage | None:
    if not isinstance(raw, dict):
        return None
    prompt = as_int(raw.get("input_tokens")) or as_int(raw.get("prompt_tokens"))
    completion = as_int(raw.get("output_tokens")) or as_int(raw.get("completion_tokens"))
    return TokenUsage(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=as_int(raw.get("total_tokens")) or prompt + completion,
    )


def parse_message(data: dict[str, Any], fallback_model: str) -> NormalizedResponse:
    blocks = data.get("content")
    text = ""
    if isinstance(blocks, list):
        text = "".join(
            as_text(block.get("text"))
            for block in blocks
            if isinstance(block, dict) and block.get("type", "text") == "text"
        )
    return NormalizedResponse(
        text=text or as_text(data.get("message")),
        model_id=as_text(data.get("model")) or fallback_model,
        usage=parse_usage(dig(data, "usage")),
    )


class AnthropicAdapter(ProviderAdapter):
    name = "anthropic"
    label = "Anthropic"
    default_model = "claude-3-sonnet-20240229"

    def __init__(self, *args, api_version: str = "2023-06-01", **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.api_version = api_version

    def is_configured(self) -> bool:
        return self.api_key.startswith("sk-ant-")

    def build_chat_request(self, messages: list[NormalizedMessage]) -> ProviderRequest:
        return ProviderRequest(
            url=f"{self.base_url}/v1/messages",
            headers={
                "x-api-key": self.api_key,
                "anthropic-version": self.api_version,
                "Content-Type": "application/json",
            },
            body=build_messages_body(
                self.model,
                messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            ),
        )

    def parse_chat_response(self, data: dict[str, Any]) -> NormalizedResponse:
        return parse_message(data, self.model)


__all__ = ["AnthropicAdapter", "build_messages_body", "parse_message", "parse_usage", "split_system"]
