"""Built-in model catalog."""

from __future__ import annotations

from app.domain.models import ModelDescriptor

BUILTIN_MODELS: tuple[ModelDescriptor, ...] = (
    ModelDescriptor(
        id="gpt-4-turbo",
        name="GPT-4 Turbo",
        provider="openai",
        max_tokens=128000,
        supports_streaming=True,
        description="Latest GPT-4 model with a longer context window",
    ),
    ModelDescriptor(
        id="gpt-4",
        name="GPT-4",
        provider="openai",
        max_tokens=8192,
        supports_streaming=True,
        description="Capable multimodal model",
    ),
    ModelDescriptor(
        id="gpt-3.5-turbo",
        name="GPT-3.5 Turbo",
        provider="openai",
        max_tokens=4096,
        supports_streaming=True,
        description="Fast, inexpensive chat model",
    ),
    ModelDescriptor(
        id="gpt-3.5-turbo-16k",
        name="GPT-3.5 Turbo 16K",
        provider="openai",
        max_tokens=16384,
        supports_streaming=True,
        description="GPT-3.5 with a 16K context window",
    ),
    ModelDescriptor(
        id="claude-3-opus-20240229",
        name="Claude 3 Opus",
        provider="anthropic",
        max_tokens=4096,
        supports_streaming=True,
        description="Most capable Claude model for complex tasks",
    ),
    ModelDescriptor(
        id="claude-3-sonnet-20240229",
        name="Claude 3 Sonnet",
        provider="anthropic",
        max_tokens=4096,
        supports_streaming=True,
        description="Balanced speed and quality",
    ),
    ModelDescriptor(
        id="claude-3-haiku-20240307",
        name="Claude 3 Haiku",
        provider="anthropic",
        max_tokens=4096,
        supports_streaming=True,
        description="Fastest Claude model",
    ),
    ModelDescriptor(
        id="gemini-1.5-pro-latest",
        name="Gemini 1.5 Pro",
        provider="google",
        max_tokens=2097152,
        supports_streaming=True,
        description="Long-context Gemini model",
    ),
    ModelDescriptor(
        id="gemini-pro",
        name="Gemini Pro",
        provider="google",
        max_tokens=32768,
        supports_streaming=True,
        description="General purpose Gemini model",
    ),
    ModelDescriptor(
        id="gemini-pro-vision",
        name="Gemini Pro Vision",
        provider="google",
        max_tokens=16384,
        supports_streaming=False,
        description="Gemini with image understanding",
    ),
    ModelDescriptor(
        id="dall-e-3",
        name="DALL-E 3",
        provider="openai",
        max_tokens=0,
        supports_streaming=False,
        description="OpenAI image generation",
    ),
    ModelDescriptor(
        id="dall-e-2",
        name="DALL-E 2",
        provider="openai",
        max_tokens=0,
        supports_streaming=False,
        description="Previous generation OpenAI image model",
    ),
    ModelDescriptor(
        id="stable-diffusion-xl",
        name="Stable Diffusion XL",
        provider="stability",
        max_tokens=0,
        supports_streaming=False,
        description="Open image generation model",
    ),
)

# First matching prefix wins; unknown models are treated as OpenAI-compatible.
MODEL_PREFIXES: tuple[tuple[str, str], ...] = (
    ("imagegeneration", "google"),
    ("dall-e", "openai"),
    ("gemini", "google"),
    ("imagen", "google"),
    ("claude", "anthropic"),
    ("stable", "stability"),
    ("gpt", "openai"),
    ("sdxl", "stability"),
)


def provider_for_model(model: str) -> str:
    lowered = (model or "").lower()
    for prefix, provider in MODEL_PREFIXES:
        if lowered.startswith(prefix):
            return provider
    return "openai"


def builtin_model_ids() -> set[str]:
    return {model.id for model in BUILTIN_MODELS}


__all__ = ["BUILTIN_MODELS", "MODEL_PREFIXES", "builtin_model_ids", "provider_for_model"]
