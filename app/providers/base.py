"""Shared plumbing for provider adapters.

Every adapter is a pair of pure translations (normalized messages to a wire
request, wire response to :class:`NormalizedResponse`) plus the common
``send``/``generate_image`` flow defined here. The flow fails fast on
configuration and capability problems before touching the network, and wraps
every HTTP or decoding failure in :class:`UpstreamError`. Adapters never retry.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence, TypeVar

import httpx

from app.domain.models import ImageOptions, ImageResult, NormalizedMessage, NormalizedResponse
from app.logging import logger
from app.services.exceptions import CapabilityNotSupported, ProviderNotConfigured, UpstreamError

ERROR_DETAIL_LIMIT = 500

T = TypeVar("T")


@dataclass(slots=True)
class ProviderRequest:
    url: str
    body: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] | None = None
    method: str = "POST"


def dig(data: Any, *path: str | int, default: Any = None) -> Any:
    """Walk nested dicts/lists, returning ``default`` on any missing step."""

    current = data
    for step in path:
        if isinstance(step, int):
            if not isinstance(current, list) or not -len(current) <= step < len(current):
                return default
            current = current[step]
        else:
            if not isinstance(current, dict) or step not in current:
                return default
            current = current[step]
    return default if current is None else current


def as_text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def as_int(value: Any) -> int:
    """Lenient integer read for provider counters; anything unusable is 0."""

    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else 0
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return 0
    return 0


def message_dicts(messages: Sequence[NormalizedMessage]) -> list[dict[str, str]]:
    return [{"role": message.role, "content": message.content} for message in messages]


class ProviderAdapter(ABC):
    name: str = "provider"
    label: str = "Provider"
    default_model: str = ""
    supports_chat: bool = True
    supports_images: bool = False

    def __init__(
        self,
        api_key: str,
        base_url: str,
        model: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 60,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> None:
        self.api_key = api_key or ""
        self.base_url = (base_url or "").rstrip("/")
        self.model = model or self.default_model
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = http_client

    @abstractmethod
    def is_configured(self) -> bool:
        """Structural credential check; never touches the network."""

    async def send(self, messages: Sequence[NormalizedMessage]) -> NormalizedResponse:
        self._require_configured()
        if not self.supports_chat:
            raise CapabilityNotSupported(self.name, f"{self.label} does not support text chat")
        request = self.build_chat_request(list(messages))
        data = await self._dispatch(request)
        return self._parse(self.parse_chat_response, data)

    async def generate_image(self, prompt: str, options: ImageOptions | None = None) -> ImageResult:
        self._require_configured()
        if not self.supports_images:
            raise CapabilityNotSupported(
                self.name, f"{self.label} does not support image generation"
            )
        request = self.build_image_request(prompt, options or ImageOptions())
        data = await self._dispatch(request)
        return self._parse(self.parse_image_response, data)

    def build_chat_request(self, messages: list[NormalizedMessage]) -> ProviderRequest:
        raise NotImplementedError

    def parse_chat_response(self, data: dict[str, Any]) -> NormalizedResponse:
        raise NotImplementedError

    def build_image_request(self, prompt: str, options: ImageOptions) -> ProviderRequest:
        raise NotImplementedError

    def parse_image_response(self, data: dict[str, Any]) -> ImageResult:
        raise NotImplementedError

    # Internal helpers -------------------------------------------------

    def _require_configured(self) -> None:
        if not self.is_configured():
            raise ProviderNotConfigured(
                self.name, f"{self.label} is not configured: missing or malformed credentials"
            )

    def _parse(self, parser: Callable[[dict[str, Any]], T], data: dict[str, Any]) -> T:
        try:
            return parser(data)
        except (ValueError, TypeError, AttributeError) as exc:
            logger.error("provider_unparsable_body", provider=self.name, model=self.model, error=str(exc))
            raise UpstreamError(self.name, f"{self.label} API error: unexpected response shape") from exc

    async def _dispatch(self, request: ProviderRequest) -> dict[str, Any]:
        if self._client is not None:
            return await self._execute(self._client, request)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await self._execute(client, request)

    async def _execute(self, client: httpx.AsyncClient, request: ProviderRequest) -> dict[str, Any]:
        try:
            response = await client.request(
                request.method,
                request.url,
                json=request.body,
                headers=request.headers,
                params=request.params,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code if exc.response is not None else None
            detail = self._error_detail(exc.response) or str(exc)
            logger.error(
                "provider_request_failed",
                provider=self.name,
                model=self.model,
                status_code=status_code,
                detail=detail,
            )
            raise UpstreamError(
                self.name, f"{self.label} API error: {detail}", status_code=status_code
            ) from exc
        except httpx.RequestError as exc:
            logger.error("provider_request_error", provider=self.name, model=self.model, error=str(exc))
            raise UpstreamError(self.name, f"{self.label} API error: {exc}") from exc

        try:
            data = response.json()
        except ValueError as exc:
            logger.error("provider_malformed_body", provider=self.name, model=self.model)
            raise UpstreamError(self.name, f"{self.label} API error: malformed response body") from exc
        if not isinstance(data, dict):
            raise UpstreamError(self.name, f"{self.label} API error: unexpected response shape")
        return data

    @staticmethod
    def _error_detail(response: httpx.Response | None) -> str:
        if response is None:
            return ""
        try:
            payload = response.json()
        except ValueError:
            return response.text[:ERROR_DETAIL_LIMIT]
        for candidate in (
            dig(payload, "error", "message"),
            dig(payload, "error"),
            dig(payload, "message"),
        ):
            if isinstance(candidate, str) and candidate:
                return candidate[:ERROR_DETAIL_LIMIT]
        return response.text[:ERROR_DETAIL_LIMIT]

    def __repr__(self) -> str:
        return f"{type(self).__name__}(model={self.model!r}, base_url={self.base_url!r})"


__all__ = [
    "ProviderAdapter",
    "ProviderRequest",
    "as_int",
    "as_list",
    "as_text",
    "dig",
    "message_dicts",
]
