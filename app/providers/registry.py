"""Resolve provider/model pairs to concrete adapters.

Built-in providers are created from process configuration. Custom services
live in a copy-on-write table: writers build a new dict under a lock and swap
it in, readers grab whatever dict is current. Adapters keep the config they
were built from, so removing a service never disturbs a request in flight.
"""

from __future__ import annotations

import threading
import uuid
from typing import Any, Mapping

import httpx

from app.config import LLMSettings
from app.domain.models import CustomServiceConfig, ModelDescriptor
from app.logging import logger
from app.providers.anthropic import AnthropicAdapter
from app.providers.base import ProviderAdapter
from app.providers.catalog import BUILTIN_MODELS, provider_for_model
from app.providers.custom import REQUEST_FORMATS, RESPONSE_FORMATS, CustomAdapter
from app.providers.google import GoogleAdapter
from app.providers.openai import OpenAIAdapter
from app.providers.stability import StabilityAdapter
from app.services.exceptions import UnsupportedProvider

BUILTIN_ADAPTERS: dict[str, type[ProviderAdapter]] = {
    "openai": OpenAIAdapter,
    "anthropic": AnthropicAdapter,
    "google": GoogleAdapter,
    "stability": StabilityAdapter,
}


class ProviderRegistry:
    def __init__(
        self,
        llm_settings: LLMSettings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.llm_settings = llm_settings or LLMSettings()
        self._http_client = http_client
        self._lock = threading.Lock()
        self._services: Mapping[str, CustomServiceConfig] = {}

    # Resolution -------------------------------------------------------

    def resolve(self, provider: str, model: str) -> ProviderAdapter:
        services = self._services
        service_id = f"{provider}-{model}"
        config = services.get(service_id)
        if config is None and provider in services:
            config = services[provider]
            service_id = provider
        if config is not None:
            return self.custom_adapter(config, service_id)
        return self.builtin(provider, model)

    def resolve_custom(self, service_id: str) -> CustomAdapter | None:
        config = self._services.get(service_id)
        if config is None:
            return None
        return self.custom_adapter(config, service_id)

    def resolve_model(self, model: str, provider: str | None = None) -> ProviderAdapter:
        """Resolve a model id as listed by :meth:`list_models`.

        Registered service ids win over provider inference, so a custom entry
        is never routed to a built-in provider by prefix.
        """

        if provider in (None, "custom"):
            adapter = self.resolve_custom(model)
            if adapter is not None:
                return adapter
        return self.resolve(provider or provider_for_model(model), model)

    def builtin(self, provider: str, model: str) -> ProviderAdapter:
        adapter_cls = BUILTIN_ADAPTERS.get(provider)
        credentials = self.llm_settings.provider(provider)
        if adapter_cls is None or credentials is None:
            raise UnsupportedProvider(provider)

        kwargs: dict[str, Any] = {
            "http_client": self._http_client,
            "timeout": self.llm_settings.request_timeout_seconds,
            "temperature": self.llm_settings.default_temperature,
            "max_tokens": self.llm_settings.default_max_tokens,
        }
        if adapter_cls is AnthropicAdapter:
            kwargs["api_version"] = self.llm_settings.anthropic_version
        return adapter_cls(credentials.api_key_value(), credentials.base_url, model, **kwargs)

    def custom_adapter(self, config: CustomServiceConfig, service_id: str | None = None) -> CustomAdapter:
        return CustomAdapter(
            config,
            service_id=service_id,
            http_client=self._http_client,
            timeout=self.llm_settings.request_timeout_seconds,
        )

    # Custom service table ----------------------------------------------

    def register(self, config: CustomServiceConfig | Mapping[str, Any], service_id: str | None = None) -> str:
        if not isinstance(config, CustomServiceConfig):
            config = CustomServiceConfig.model_validate(dict(config))
        service_id = service_id or f"custom-{uuid.uuid4().hex[:12]}"
        self._warn_unknown_formats(service_id, config)
        with self._lock:
            services = dict(self._services)
            services[service_id] = config
            self._services = services
        logger.info("custom_service_registered", service_id=service_id, name=config.name)
        return service_id

    def update(self, service_id: str, patch: Mapping[str, Any]) -> CustomServiceConfig | None:
        """Merge ``patch`` over the stored config; ``None`` when the id is unknown.

        Raises :class:`pydantic.ValidationError` if the merged config is invalid,
        leaving the stored entry untouched.
        """

        with self._lock:
            current = self._services.get(service_id)
            if current is None:
                return None
            merged = CustomServiceConfig.model_validate({**current.model_dump(), **_by_field_name(patch)})
            services = dict(self._services)
            services[service_id] = merged
            self._services = services
        self._warn_unknown_formats(service_id, merged)
        logger.info("custom_service_updated", service_id=service_id, fields=sorted(patch))
        return merged

    def remove(self, service_id: str) -> bool:
        with self._lock:
            if service_id not in self._services:
                return False
            services = dict(self._services)
            del services[service_id]
            self._services = services
        logger.info("custom_service_removed", service_id=service_id)
        return True

    def get(self, service_id: str) -> CustomServiceConfig | None:
        return self._services.get(service_id)

    def services(self) -> dict[str, CustomServiceConfig]:
        return dict(self._services)

    # Catalog ----------------------------------------------------------

    def list_models(self) -> list[ModelDescriptor]:
        custom_models = [
            ModelDescriptor(
                id=service_id,
                name=config.name or service_id,
                provider="custom",
                max_tokens=config.max_tokens,
                supports_streaming=config.supports_streaming,
                description=config.description or "Custom AI model",
            )
            for service_id, config in self._services.items()
        ]
        return [*BUILTIN_MODELS, *custom_models]

    def list_provider_models(self, provider: str) -> list[ModelDescriptor]:
        return [model for model in self.list_models() if model.provider == provider]

    @staticmethod
    def _warn_unknown_formats(service_id: str, config: CustomServiceConfig) -> None:
        if config.request_format not in REQUEST_FORMATS:
            logger.warning(
                "custom_service_generic_request_format",
                service_id=service_id,
                request_format=config.request_format,
            )
        if config.response_format not in RESPONSE_FORMATS:
            logger.warning(
                "custom_service_generic_response_format",
                service_id=service_id,
                response_format=config.response_format,
            )


def _by_field_name(patch: Mapping[str, Any]) -> dict[str, Any]:
    aliases = {
        field.alias: name for name, field in CustomServiceConfig.model_fields.items() if field.alias
    }
    return {aliases.get(key, key): value for key, value in patch.items()}


__all__ = ["BUILTIN_ADAPTERS", "ProviderRegistry"]
