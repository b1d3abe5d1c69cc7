"""Per-user preferences, AI settings, export/import and connection tests."""

from __future__ import annotations

import math
from typing import Any, Literal, Mapping

from pydantic import BaseModel, ValidationError

from app.domain.models import AISettings, CustomServiceConfig, NormalizedMessage, SettingsBundle, UserPreferences
from app.logging import logger
from app.providers.base import ProviderAdapter
from app.providers.catalog import builtin_model_ids
from app.providers.registry import ProviderRegistry
from app.services.exceptions import InvalidSettings, ProviderError
from app.services.storage import SettingsRepository
from app.utils.datetime import utc_now

SETTINGS_EXPORT_VERSION = "1.0.0"
TEMPERATURE_RANGE = (0.0, 2.0)
MAX_TOKENS_RANGE = (100, 4000)
CONNECTION_TEST_MESSAGE = "Hello, this is a connection test."


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _lookup(raw: Mapping[str, Any], name: str) -> Any:
    if name in raw:
        return raw[name]
    return raw.get(_camel(name))


def _strict_field(model: type[BaseModel], name: str, value: Any, fallback: Any) -> Any:
    if value is None:
        return fallback
    try:
        return getattr(model.model_validate({name: value}, strict=True), name)
    except ValidationError:
        return fallback


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return isinstance(value, int) or math.isfinite(value)


def validate_preferences(raw: Mapping[str, Any], base: UserPreferences | None = None) -> UserPreferences:
    """Keep valid values from ``raw``; anything else falls back to ``base``."""

    base = base or UserPreferences()
    values = {
        name: _strict_field(UserPreferences, name, _lookup(raw, name), getattr(base, name))
        for name in UserPreferences.model_fields
    }
    return UserPreferences(**values)


def validate_ai_settings(
    raw: Mapping[str, Any],
    base: AISettings | None = None,
    known_models: set[str] | None = None,
) -> AISettings:
    base = base or AISettings()
    known_models = known_models if known_models is not None else builtin_model_ids()

    model = _lookup(raw, "default_model")
    temperature = _lookup(raw, "temperature")
    max_tokens = _lookup(raw, "max_tokens")

    values: dict[str, Any] = {
        "default_model": model if isinstance(model, str) and model in known_models else base.default_model,
        "temperature": (
            min(max(float(temperature), TEMPERATURE_RANGE[0]), TEMPERATURE_RANGE[1])
            if _is_number(temperature)
            else base.temperature
        ),
        "max_tokens": (
            int(min(max(max_tokens, MAX_TOKENS_RANGE[0]), MAX_TOKENS_RANGE[1]))
            if _is_number(max_tokens)
            else base.max_tokens
        ),
    }
    for key_field in ("openai_api_key", "claude_api_key", "google_api_key"):
        value = _lookup(raw, key_field)
        values[key_field] = value if isinstance(value, str) else getattr(base, key_field)
    return AISettings(**values)


class SettingsService:
    def __init__(self, repository: SettingsRepository, registry: ProviderRegistry) -> None:
        self.repository = repository
        self.registry = registry

    async def get_user_settings(self, user_id: str) -> UserPreferences:
        bundle = await self._bundle(user_id)
        return bundle.preferences

    async def update_user_settings(self, user_id: str, patch: Mapping[str, Any]) -> UserPreferences:
        def _update(bundle: SettingsBundle) -> UserPreferences:
            bundle.preferences = validate_preferences(patch, base=bundle.preferences)
            return bundle.preferences

        preferences = await self.repository.mutate(user_id, _update)
        logger.info("user_settings_updated", user_id=user_id, fields=sorted(patch))
        return preferences

    async def get_ai_settings(self, user_id: str) -> AISettings:
        bundle = await self._bundle(user_id)
        return bundle.ai

    async def update_ai_settings(self, user_id: str, patch: Mapping[str, Any]) -> AISettings:
        known = self._known_models()

        def _update(bundle: SettingsBundle) -> AISettings:
            bundle.ai = validate_ai_settings(patch, base=bundle.ai, known_models=known)
            return bundle.ai

        ai_settings = await self.repository.mutate(user_id, _update)
        logger.info("ai_settings_updated", user_id=user_id, fields=sorted(patch))
        return ai_settings

    async def reset_settings(
        self, user_id: str, category: Literal["user", "ai"] = "user"
    ) -> UserPreferences | AISettings:
        def _reset(bundle: SettingsBundle) -> UserPreferences | AISettings:
            if category == "ai":
                bundle.ai = AISettings()
                return bundle.ai
            bundle.preferences = UserPreferences()
            return bundle.preferences

        result = await self.repository.mutate(user_id, _reset)
        logger.info("settings_reset", user_id=user_id, category=category)
        return result

    async def export_settings(self, user_id: str) -> dict[str, Any]:
        bundle = await self._bundle(user_id)
        return {
            "user_settings": bundle.preferences.model_dump(),
            "ai_settings": bundle.ai.model_dump(),
            "exported_at": utc_now().isoformat(),
            "version": SETTINGS_EXPORT_VERSION,
        }

    async def import_settings(self, user_id: str, payload: Any) -> SettingsBundle:
        if not isinstance(payload, Mapping):
            raise InvalidSettings("Invalid settings format")
        user_raw = _lookup(payload, "user_settings") or {}
        ai_raw = _lookup(payload, "ai_settings") or {}
        if not isinstance(user_raw, Mapping) or not isinstance(ai_raw, Mapping):
            raise InvalidSettings("Invalid settings format")

        imported = SettingsBundle(
            preferences=validate_preferences(user_raw),
            ai=validate_ai_settings(ai_raw, known_models=self._known_models()),
        )

        def _replace(bundle: SettingsBundle) -> SettingsBundle:
            bundle.preferences = imported.preferences
            bundle.ai = imported.ai
            return bundle.model_copy(deep=True)

        stored = await self.repository.mutate(user_id, _replace)
        logger.info("settings_imported", user_id=user_id)
        return stored

    async def test_connection(self, provider: str) -> dict[str, Any]:
        """Send one test message through a built-in provider or a registered service id."""

        adapter = self.registry.resolve_custom(provider)
        if adapter is None:
            models = self.registry.list_provider_models(provider)
            model = models[0].id if models else ""
            try:
                adapter = self.registry.resolve(provider, model)
            except ProviderError as exc:
                return {"provider": provider, "status": "failed", "error": str(exc)}
        return await self._check_connection(provider, adapter)

    async def test_custom_service(self, config: CustomServiceConfig | Mapping[str, Any]) -> dict[str, Any]:
        try:
            if not isinstance(config, CustomServiceConfig):
                config = CustomServiceConfig.model_validate(dict(config))
        except ValidationError as exc:
            return {"provider": "custom", "status": "failed", "error": str(exc)}
        return await self._check_connection("custom", self.registry.custom_adapter(config))

    def system_info(self) -> dict[str, Any]:
        return {
            "version": SETTINGS_EXPORT_VERSION,
            "supported_languages": list(_literal_values(UserPreferences, "language")),
            "supported_timezones": list(_literal_values(UserPreferences, "timezone")),
            "supported_themes": list(_literal_values(UserPreferences, "theme")),
            "supported_models": self.registry.list_models(),
            "limits": {
                "temperature": TEMPERATURE_RANGE,
                "max_tokens": MAX_TOKENS_RANGE,
            },
        }

    # Internal helpers -------------------------------------------------

    async def _bundle(self, user_id: str) -> SettingsBundle:
        bundle = await self.repository.get(user_id)
        if bundle is None:
            bundle = await self.repository.mutate(user_id, lambda fresh: fresh.model_copy(deep=True))
        return bundle

    def _known_models(self) -> set[str]:
        return {model.id for model in self.registry.list_models()}

    async def _check_connection(self, provider: str, adapter: ProviderAdapter) -> dict[str, Any]:
        if not adapter.is_configured():
            return {"provider": provider, "status": "failed", "error": "Invalid API key format"}
        try:
            response = await adapter.send([NormalizedMessage(role="user", content=CONNECTION_TEST_MESSAGE)])
        except ProviderError as exc:
            logger.warning("connection_test_failed", provider=provider, error=str(exc))
            return {"provider": provider, "status": "failed", "error": f"Connection test failed: {exc}"}
        logger.info("connection_test_succeeded", provider=provider, model=response.model_id)
        return {
            "provider": provider,
            "status": "connected",
            "message": "Connection test successful",
            "model": response.model_id,
        }


def _literal_values(model: type[BaseModel], name: str) -> tuple[Any, ...]:
    annotation = model.model_fields[name].annotation
    return getattr(annotation, "__args__", ())


__all__ = [
    "SettingsService",
    "validate_ai_settings",
    "validate_preferences",
]
