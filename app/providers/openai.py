"""OpenAI chat completions and image generation."""

from __future__ import annotations

from typing import Any

from app.domain.models import ImageOptions, ImageResult, NormalizedMessage, NormalizedResponse, TokenUsage
from app.providers.base import ProviderAdapter, ProviderRequest, as_int, as_list, as_text, dig, message_dicts


def parse_usage(raw: Any) -> TokenUsage | None:
    if not isinstance(raw, dict):
        return None
    prompt = as_int(raw.get("prompt_tokens"))
    completion = as_int(raw.get("completion_tokens"))
    total = as_int(raw.get("total_tokens")) or prompt + completion
    return TokenUsage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


def parse_chat_completion(data: dict[str, Any], fallback_model: str) -> NormalizedResponse:
    text = as_text(dig(data, "choices", 0, "message", "content")) or as_text(data.get("message"))
    return NormalizedResponse(
        text=text,
        model_id=as_text(data.get("model")) or fallback_model,
        usage=parse_usage(data.get("usage")),
    )


class OpenAIAdapter(ProviderAdapter):
    name = "openai"
    label = "OpenAI"
    default_model = "gpt-3.5-turbo"
    supports_images = True

    def is_configured(self) -> bool:
        return self.api_key.startswith("sk-")

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def build_chat_request(self, messages: list[NormalizedMessage]) -> ProviderRequest:
        return ProviderRequest(
            url=f"{self.base_url}/chat/completions",
            headers=self._headers(),
            body={
                "model": self.model,
                "messages": message_dicts(messages),
                "temperature": self.temperature,
                "max_tokens": self.max_tokens,
            },
        )

    def parse_chat_response(self, data: dict[str, Any]) -> NormalizedResponse:
        return parse_chat_completion(data, self.model)

    def build_image_request(self, prompt: str, options: ImageOptions) -> ProviderRequest:
        return ProviderRequest(
            url=f"{self.base_url}/images/generations",
            headers=self._headers(),
            body={
                "model": self._image_model(),
                "prompt": prompt,
                "n": options.count,
                "size": options.size,
                "quality": options.quality,
            },
        )

    def parse_image_response(self, data: dict[str, Any]) -> ImageResult:
        images = []
        for item in as_list(dig(data, "data")):
            if not isinstance(item, dict):
                continue
            if item.get("url"):
                images.append(item["url"])
            elif item.get("b64_json"):
                images.append(f"data:image/png;base64,{item['b64_json']}")
        return ImageResult(images=images, model_id=self._image_model())

    def _image_model(self) -> str:
        return self.model if self.model.startswith("dall-e") else "dall-e-3"


__all__ = ["OpenAIAdapter", "parse_chat_completion", "parse_usage"]
