"""Application entrypoint and service wiring."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import httpx

from app.config import GatewaySettings, get_settings
from app.db.session import get_database
from app.logging import configure_logging, logger
from app.providers.registry import ProviderRegistry
from app.services.gateway import AIGateway
from app.services.settings import SettingsService
from app.services.storage import (
    InMemorySettingsRepository,
    InMemorySubscriptionRepository,
    SettingsRepository,
    SqlSettingsRepository,
    SqlSubscriptionRepository,
    SubscriptionRepository,
    TransactionFactory,
)
from app.services.subscriptions import SubscriptionService


@dataclass(slots=True)
class Services:
    gateway: AIGateway
    subscriptions: SubscriptionService
    settings: SettingsService


def build_services(
    registry: ProviderRegistry,
    subscription_repository: SubscriptionRepository,
    settings_repository: SettingsRepository,
    settings: GatewaySettings | None = None,
) -> Services:
    subscriptions = SubscriptionService(subscription_repository, settings=settings)
    return Services(
        gateway=AIGateway(registry, subscriptions),
        subscriptions=subscriptions,
        settings=SettingsService(settings_repository, registry),
    )


def build_sql_services(
    transaction: TransactionFactory,
    registry: ProviderRegistry,
    settings: GatewaySettings | None = None,
) -> Services:
    """Services whose repositories open one ``transaction()`` per ledger or settings call."""

    return build_services(
        registry,
        SqlSubscriptionRepository(transaction),
        SqlSettingsRepository(transaction),
        settings=settings,
    )


def build_in_memory_services(
    registry: ProviderRegistry,
    settings: GatewaySettings | None = None,
) -> Services:
    return build_services(
        registry,
        InMemorySubscriptionRepository(),
        InMemorySettingsRepository(),
        settings=settings,
    )


async def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)

    database = get_database(settings)
    await database.create_schema()

    async with httpx.AsyncClient(timeout=settings.llm.request_timeout_seconds) as client:
        registry = ProviderRegistry(settings.llm, http_client=client)
        services = build_sql_services(database.transaction, registry, settings=settings)
        configured = [
            name
            for name in ("openai", "anthropic", "google", "stability")
            if registry.builtin(name, "").is_configured()
        ]
        logger.info(
            "gateway_ready",
            environment=settings.environment,
            models=len(services.settings.system_info()["supported_models"]),
            configured_providers=configured,
        )
    await database.dispose()


if __name__ == "__main__":
    asyncio.run(main())
