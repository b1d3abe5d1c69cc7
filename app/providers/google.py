"""Google Generative Language API (Gemini)."""

from __future__ import annotations

from typing import Any, Sequence

from app.domain.models import ImageOptions, ImageResult, NormalizedMessage, NormalizedResponse, TokenUsage
from app.providers.base import ProviderAdapter, ProviderRequest, as_int, as_list, as_text, dig

ASPECT_RATIOS = {
    "1024x1024": "1:1",
    "1024x768": "4:3",
    "768x1024": "3:4",
    "1024x576": "16:9",
    "576x1024": "9:16",
}


def aspect_ratio(size: str) -> str:
    return ASPECT_RATIOS.get(size, "1:1")


def to_contents(messages: Sequence[NormalizedMessage]) -> tuple[list[dict[str, Any]], dict[str, Any] | None]:
    """Gemini speaks ``user``/``model``; system prompts travel as ``systemInstruction``."""

    system_parts = [{"text": message.content} for message in messages if message.role == "system"]
    contents = [
        {
            "role": "model" if message.role == "assistant" else "user",
            "parts": [{"text": message.content}],
        }
        for message in messages
        if message.role != "system"
    ]
    return contents, ({"parts": system_parts} if system_parts else None)


def build_generate_body(
    messages: Sequence[NormalizedMessage],
    *,
    temperature: float,
    max_tokens: int,
) -> dict[str, Any]:
    contents, system_instruction = to_contents(messages)
    body: dict[str, Any] = {
        "contents": contents,
        "generationConfig": {
            "temperature": temperature,
            "maxOutputTokens": max_tokens,
        },
    }
    if system_instruction:
        body["systemInstruction"] = system_instruction
    return body


def parse_usage(raw: Any) -> TokenUsage | None:
    if not isinstance(raw, dict):
        return None
    prompt = as_int(raw.get("promptTokenCount"))
    completion = as_int(raw.get("candidatesTokenCount"))
    return TokenUsage(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=as_int(raw.get("totalTokenCount")) or prompt + completion,
    )


def parse_generate_content(data: dict[str, Any], fallback_model: str) -> NormalizedResponse:
    parts = as_list(dig(data, "candidates", 0, "content", "parts"))
    text = "".join(as_text(part.get("text")) for part in parts if isinstance(part, dict))
    return NormalizedResponse(
        text=text or as_text(data.get("message")),
        model_id=as_text(data.get("modelVersion")) or as_text(data.get("model")) or fallback_model,
        usage=parse_usage(data.get("usageMetadata")),
    )


class GoogleAdapter(ProviderAdapter):
    name = "google"
    label = "Google AI"
    default_model = "gemini-pro"
    supports_images = True

    def is_configured(self) -> bool:
        return self.api_key.startswith("AIza")

    def _endpoint(self, model: str) -> str:
        return f"{self.base_url}/v1beta/models/{model}:generateContent"

    def build_chat_request(self, messages: list[NormalizedMessage]) -> ProviderRequest:
        return ProviderRequest(
            url=self._endpoint(self.model),
            params={"key": self.api_key},
            headers={"Content-Type": "application/json"},
            body=build_generate_body(
                messages, temperature=self.temperature, max_tokens=self.max_tokens
            ),
        )

    def parse_chat_response(self, data: dict[str, Any]) -> NormalizedResponse:
        return parse_generate_content(data, self.model)

    def build_image_request(self, prompt: str, options: ImageOptions) -> ProviderRequest:
        return ProviderRequest(
            url=self._endpoint(self._image_model()),
            params={"key": self.api_key},
            headers={"Content-Type": "application/json"},
            body={
                "contents": [{"parts": [{"text": prompt}]}],
                "generationConfig": {
                    "sampleCount": options.count,
                    "aspectRatio": aspect_ratio(options.size),
                },
            },
        )

    def parse_image_response(self, data: dict[str, Any]) -> ImageResult:
        images = []
        for candidate in as_list(dig(data, "candidates")):
            for part in as_list(dig(candidate, "content", "parts")):
                if not isinstance(part, dict):
                    continue
                if part.get("url"):
                    images.append(part["url"])
                elif dig(part, "inlineData", "data"):
                    mime = dig(part, "inlineData", "mimeType", default="image/png")
                    images.append(f"data:{mime};base64,{part['inlineData']['data']}")
        return ImageResult(images=images, model_id=self._image_model())

    def _image_model(self) -> str:
        return self.model if self.model.startswith("imagen") or "image" in self.model else "imagegeneration"


__all__ = [
    "ASPECT_RATIOS",
    "GoogleAdapter",
    "aspect_ratio",
    "build_generate_body",
    "parse_generate_content",
    "parse_usage",
    "to_contents",
]
