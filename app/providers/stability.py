"""Stability AI text-to-image."""

from __future__ import annotations

from typing import Any

from app.domain.models import ImageOptions, ImageResult
from app.providers.base import ProviderAdapter, ProviderRequest, as_list, dig

ENGINE_ALIASES = {"stable-diffusion-xl": "stable-diffusion-xl-1024-v1-0"}


class StabilityAdapter(ProviderAdapter):
    name = "stability"
    label = "Stability AI"
    default_model = "stable-diffusion-xl-1024-v1-0"
    supports_chat = False
    supports_images = True

    def is_configured(self) -> bool:
        return self.api_key.startswith("sk-")

    @property
    def engine(self) -> str:
        return ENGINE_ALIASES.get(self.model, self.model)

    def build_image_request(self, prompt: str, options: ImageOptions) -> ProviderRequest:
        return ProviderRequest(
            url=f"{self.base_url}/v1/generation/{self.engine}/text-to-image",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            body={
                "text_prompts": self._text_prompts(prompt, options.negative_prompt),
                "width": options.width,
                "height": options.height,
                "samples": options.count,
                "steps": options.steps,
                "cfg_scale": options.cfg_scale,
                "seed": max(options.seed, 0),
            },
        )

    def parse_image_response(self, data: dict[str, Any]) -> ImageResult:
        images = [
            f"data:image/png;base64,{artifact['base64']}"
            for artifact in as_list(dig(data, "artifacts"))
            if isinstance(artifact, dict) and artifact.get("base64")
        ]
        return ImageResult(images=images, model_id=self.model)

    @staticmethod
    def _text_prompts(prompt: str, negative_prompt: str) -> list[dict[str, Any]]:
        prompts: list[dict[str, Any]] = [{"text": prompt, "weight": 1}]
        if negative_prompt:
            prompts.append({"text": negative_prompt, "weight": -1})
        return prompts


__all__ = ["ENGINE_ALIASES", "StabilityAdapter"]
