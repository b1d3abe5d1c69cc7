"""Storage ports for subscriptions and user settings.

Consistency contract shared by every implementation:

* reads observe the latest completed write for the same user;
* ``mutate`` runs its callback against the current record with other
  mutations for that user excluded, and persists the callback's changes
  before the exclusion is released. If the callback raises, nothing is
  written.

The in-memory implementations back the tests and single-process setups. The
SQL implementations run each call in its own transaction and take a row lock
(``SELECT ... FOR UPDATE``) for the duration of ``mutate`` only.
"""

from __future__ import annotations

import asyncio
import weakref
from contextlib import AbstractAsyncContextManager
from typing import Callable, Protocol, TypeVar, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.core import SubscriptionRecord, UserSettingsRecord
from app.domain.models import (
    AISettings,
    PlanFeatures,
    PlanTier,
    SettingsBundle,
    Subscription,
    SubscriptionStatus,
    Usage,
    UserPreferences,
)
from app.utils.datetime import ensure_utc

T = TypeVar("T")
R = TypeVar("R", bound=Union[SubscriptionRecord, UserSettingsRecord])

TransactionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class SubscriptionRepository(Protocol):
    async def get(self, user_id: str) -> Subscription | None: ...

    async def create(self, subscription: Subscription) -> Subscription:
        """Insert unless the user already has a record; return the stored one."""

    async def mutate(self, user_id: str, fn: Callable[[Subscription], T]) -> T | None:
        """Apply ``fn`` atomically; ``None`` when the user has no subscription."""


class SettingsRepository(Protocol):
    async def get(self, user_id: str) -> SettingsBundle | None: ...

    async def mutate(self, user_id: str, fn: Callable[[SettingsBundle], T]) -> T:
        """Apply ``fn`` atomically, starting from defaults on first access."""


class _UserLocks:
    """Per-user locks that disappear once no coroutine holds or awaits them."""

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def __call__(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)


class InMemorySubscriptionRepository:
    def __init__(self) -> None:
        self._records: dict[str, Subscription] = {}
        self._lock_for = _UserLocks()

    async def get(self, user_id: str) -> Subscription | None:
        record = self._records.get(user_id)
        return record.model_copy(deep=True) if record else None

    async def create(self, subscription: Subscription) -> Subscription:
        async with self._lock_for(subscription.user_id):
            existing = self._records.get(subscription.user_id)
            if existing is None:
                existing = subscription.model_copy(deep=True)
                self._records[subscription.user_id] = existing
            return existing.model_copy(deep=True)

    async def mutate(self, user_id: str, fn: Callable[[Subscription], T]) -> T | None:
        async with self._lock_for(user_id):
            record = self._records.get(user_id)
            if record is None:
                return None
            working = record.model_copy(deep=True)
            result = fn(working)
            self._records[user_id] = working
            return result


class InMemorySettingsRepository:
    def __init__(self) -> None:
        self._records: dict[str, SettingsBundle] = {}
        self._lock_for = _UserLocks()

    async def get(self, user_id: str) -> SettingsBundle | None:
        record = self._records.get(user_id)
        return record.model_copy(deep=True) if record else None

    async def mutate(self, user_id: str, fn: Callable[[SettingsBundle], T]) -> T:
        async with self._lock_for(user_id):
            record = self._records.get(user_id) or SettingsBundle()
            working = record.model_copy(deep=True)
            result = fn(working)
            self._records[user_id] = working
            return result


class SqlSubscriptionRepository:
    """Subscription storage where every call is its own short transaction.

    ``transaction`` opens a session and commits it on exit (normally
    ``Database.transaction``). Row locks taken by ``mutate`` are released at
    that commit, so nothing stays locked while a provider call is running.
    """

    def __init__(self, transaction: TransactionFactory) -> None:
        self._transaction = transaction

    async def get(self, user_id: str) -> Subscription | None:
        async with self._transaction() as session:
            record = await _load(session, SubscriptionRecord, user_id)
            return _subscription_from_record(record) if record else None

    async def create(self, subscription: Subscription) -> Subscription:
        try:
            async with self._transaction() as session:
                record = await _load(session, SubscriptionRecord, subscription.user_id, for_update=True)
                if record is not None:
                    return _subscription_from_record(record)
                record = SubscriptionRecord(user_id=subscription.user_id)
                _copy_to_record(subscription, record)
                session.add(record)
                await session.flush()
                return subscription.model_copy(deep=True)
        except IntegrityError:
            # Lost an insert race for the same user.
            existing = await self.get(subscription.user_id)
            if existing is None:
                raise
            return existing

    async def mutate(self, user_id: str, fn: Callable[[Subscription], T]) -> T | None:
        async with self._transaction() as session:
            record = await _load(session, SubscriptionRecord, user_id, for_update=True)
            if record is None:
                return None
            subscription = _subscription_from_record(record)
            result = fn(subscription)
            _copy_to_record(subscription, record)
            await session.flush()
            return result


class SqlSettingsRepository:
    def __init__(self, transaction: TransactionFactory) -> None:
        self._transaction = transaction

    async def get(self, user_id: str) -> SettingsBundle | None:
        async with self._transaction() as session:
            record = await _load(session, UserSettingsRecord, user_id)
            return _settings_from_record(record) if record else None

    async def mutate(self, user_id: str, fn: Callable[[SettingsBundle], T]) -> T:
        try:
            return await self._mutate(user_id, fn)
        except IntegrityError:
            # First write for this user raced another insert; the row exists now.
            return await self._mutate(user_id, fn)

    async def _mutate(self, user_id: str, fn: Callable[[SettingsBundle], T]) -> T:
        async with self._transaction() as session:
            record = await _load(session, UserSettingsRecord, user_id, for_update=True)
            bundle = _settings_from_record(record) if record else SettingsBundle()
            result = fn(bundle)
            if record is None:
                record = UserSettingsRecord(user_id=user_id)
                session.add(record)
            record.preferences = bundle.preferences.model_dump()
            record.ai_settings = bundle.ai.model_dump()
            await session.flush()
            return result


async def _load(session: AsyncSession, model: type[R], user_id: str, *, for_update: bool = False) -> R | None:
    stmt = select(model).where(model.user_id == user_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


def _subscription_from_record(record: SubscriptionRecord) -> Subscription:
    return Subscription(
        user_id=record.user_id,
        plan=PlanTier(record.plan),
        status=SubscriptionStatus(record.status),
        features=PlanFeatures.model_validate(record.features),
        usage=Usage(
            messages=record.messages_used or 0,
            images=record.images_used or 0,
            tokens=record.tokens_used or 0,
            last_reset=ensure_utc(record.last_reset),
        ),
        start_date=ensure_utc(record.start_date),
        end_date=ensure_utc(record.end_date),
        canceled_at=ensure_utc(record.canceled_at),
    )


def _copy_to_record(subscription: Subscription, record: SubscriptionRecord) -> None:
    record.plan = subscription.plan.value
    record.status = subscription.status.value
    record.features = subscription.features.model_dump()
    record.messages_used = subscription.usage.messages
    record.images_used = subscription.usage.images
    record.tokens_used = subscription.usage.tokens
    record.last_reset = subscription.usage.last_reset
    record.start_date = subscription.start_date
    record.end_date = subscription.end_date
    record.canceled_at = subscription.canceled_at


def _settings_from_record(record: UserSettingsRecord) -> SettingsBundle:
    return SettingsBundle(
        preferences=UserPreferences.model_validate(record.preferences or {}),
        ai=AISettings.model_validate(record.ai_settings or {}),
    )


__all__ = [
    "InMemorySettingsRepository",
    "InMemorySubscriptionRepository",
    "SettingsRepository",
    "SqlSettingsRepository",
    "SqlSubscriptionRepository",
    "SubscriptionRepository",
]
