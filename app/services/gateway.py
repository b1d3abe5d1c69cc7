"""Quota-gated entry points for chat and image requests."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Mapping, Sequence, Union

from structlog.contextvars import bound_contextvars

from app.domain.models import (
    ImageOptions,
    ImageResult,
    NormalizedMessage,
    NormalizedResponse,
    UsageCheck,
    UsageKind,
)
from app.logging import logger
from app.providers.registry import ProviderRegistry
from app.services.exceptions import QuotaExceeded
from app.services.subscriptions import SubscriptionService
from app.utils.datetime import utc_now
from app.utils.tokens import estimate_conversation_tokens

MessageInput = Union[NormalizedMessage, Mapping[str, Any]]


def normalize_messages(messages: Sequence[MessageInput]) -> list[NormalizedMessage]:
    return [
        message if isinstance(message, NormalizedMessage) else NormalizedMessage.model_validate(message)
        for message in messages
    ]


class AIGateway:
    def __init__(self, registry: ProviderRegistry, subscriptions: SubscriptionService) -> None:
        self.registry = registry
        self.subscriptions = subscriptions

    async def chat(
        self,
        user_id: str,
        messages: Sequence[MessageInput],
        model: str,
        provider: str | None = None,
    ) -> NormalizedResponse:
        conversation = normalize_messages(messages)
        async with self._reservation(user_id, UsageKind.MESSAGE, 1):
            adapter = self.registry.resolve_model(model, provider)
            response = await adapter.send(conversation)
        await self._commit_tokens(user_id, conversation, response)
        logger.info(
            "chat_completed",
            user_id=user_id,
            provider=adapter.name,
            model=response.model_id,
        )
        return response

    async def custom_chat(
        self,
        user_id: str,
        service_id: str,
        message: str,
        history: Sequence[MessageInput] = (),
    ) -> NormalizedResponse | None:
        """Chat against a registered custom service; ``None`` if the id is unknown."""

        adapter = self.registry.resolve_custom(service_id)
        if adapter is None:
            return None
        conversation = [*normalize_messages(history), NormalizedMessage(role="user", content=message)]
        async with self._reservation(user_id, UsageKind.MESSAGE, 1):
            response = await adapter.send(conversation)
        await self._commit_tokens(user_id, conversation, response)
        logger.info("custom_chat_completed", user_id=user_id, service_id=service_id)
        return response

    async def generate_image(
        self,
        user_id: str,
        prompt: str,
        model: str = "dall-e-3",
        options: ImageOptions | None = None,
        provider: str | None = None,
    ) -> ImageResult:
        options = options or ImageOptions()
        async with self._reservation(user_id, UsageKind.IMAGE, options.count):
            adapter = self.registry.resolve_model(model, provider)
            result = await adapter.generate_image(prompt, options)
        logger.info(
            "image_generated",
            user_id=user_id,
            provider=adapter.name,
            model=result.model_id,
            count=len(result.images),
        )
        return result

    # Internal helpers -------------------------------------------------

    @asynccontextmanager
    async def _reservation(self, user_id: str, kind: UsageKind, amount: int) -> AsyncIterator[UsageCheck]:
        """Hold quota for the duration of a provider call.

        Raises :class:`QuotaExceeded` up front; gives the units back if the
        call fails or is cancelled.
        """

        with bound_contextvars(user_id=user_id, usage_kind=kind.value):
            await self.subscriptions.ensure_subscription(user_id)
            check = await self.subscriptions.try_consume(user_id, kind, amount)
            if not check.can_use:
                raise QuotaExceeded(check)
            reserved_at = utc_now()
            try:
                yield check
            except (Exception, asyncio.CancelledError):
                await asyncio.shield(
                    self.subscriptions.release_usage(user_id, kind, amount, reserved_at=reserved_at)
                )
                logger.info("usage_released", amount=amount)
                raise

    async def _commit_tokens(
        self,
        user_id: str,
        conversation: Sequence[NormalizedMessage],
        response: NormalizedResponse,
    ) -> None:
        if response.usage is not None and response.usage.total_tokens:
            tokens = response.usage.total_tokens
        else:
            tokens = estimate_conversation_tokens(
                (message.content for message in conversation), response.text
            )
        await self.subscriptions.increment_usage(user_id, UsageKind.TOKEN, tokens)


__all__ = ["AIGateway", "normalize_messages"]
