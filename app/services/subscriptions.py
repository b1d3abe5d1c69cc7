"""Subscription lifecycle and monthly usage accounting."""

from __future__ import annotations

from datetime import datetime

from app.config import GatewaySettings, get_settings
from app.domain.models import (
    PlanTier,
    Subscription,
    SubscriptionStatus,
    UsageCheck,
    UsageCounter,
    UsageKind,
    UsageStats,
)
from app.logging import logger
from app.services.exceptions import SubscriptionNotFound
from app.services.plans import UNLIMITED, get_plan_features, list_plans
from app.services.storage import SubscriptionRepository
from app.utils.datetime import add_months, ensure_utc, same_month, utc_now


def apply_monthly_rollover(subscription: Subscription, now: datetime) -> bool:
    """Zero the counters when ``now`` falls in a later calendar month than the last reset."""

    usage = subscription.usage
    if same_month(usage.last_reset, now):
        return False
    usage.messages = 0
    usage.images = 0
    usage.tokens = 0
    usage.last_reset = now
    return True


def is_usable(subscription: Subscription, now: datetime) -> bool:
    if subscription.status is not SubscriptionStatus.ACTIVE:
        return False
    end_date = ensure_utc(subscription.end_date)
    return end_date is None or now <= end_date


def evaluate(subscription: Subscription, kind: UsageKind, now: datetime, amount: int = 1) -> UsageCheck:
    """Quota decision for ``amount`` more units; assumes rollover was already applied."""

    if not is_usable(subscription, now):
        return UsageCheck(kind=kind, can_use=False)
    limit = subscription.features.limit_for(kind)
    if limit == UNLIMITED:
        return UsageCheck(kind=kind, can_use=True, remaining=UNLIMITED, limit=UNLIMITED)
    remaining = max(0, limit - subscription.usage.used(kind))
    return UsageCheck(kind=kind, can_use=remaining >= max(amount, 1), remaining=remaining, limit=limit)


class SubscriptionService:
    def __init__(
        self,
        repository: SubscriptionRepository,
        settings: GatewaySettings | None = None,
    ) -> None:
        self.repository = repository
        self.settings = settings or get_settings()

    async def get_subscription(self, user_id: str) -> Subscription | None:
        return await self.repository.get(user_id)

    async def create_subscription(self, user_id: str, plan: PlanTier = PlanTier.FREE) -> Subscription:
        plan = PlanTier(plan)
        now = utc_now()
        subscription = Subscription(
            user_id=user_id,
            plan=plan,
            status=SubscriptionStatus.ACTIVE,
            features=get_plan_features(plan),
            start_date=now,
            end_date=self._period_end(plan, now),
        )
        stored = await self.repository.create(subscription)
        logger.info("subscription_created", user_id=user_id, plan=stored.plan.value)
        return stored

    async def ensure_subscription(self, user_id: str) -> Subscription:
        """Make sure the user always has a subscription record (free by default)."""

        subscription = await self.repository.get(user_id)
        if subscription is not None:
            return subscription
        return await self.create_subscription(user_id)

    async def update_subscription_plan(self, user_id: str, plan: PlanTier) -> Subscription:
        plan = PlanTier(plan)
        now = utc_now()

        def _change(subscription: Subscription) -> Subscription:
            self._refresh(subscription, now)
            subscription.plan = plan
            subscription.status = SubscriptionStatus.ACTIVE
            subscription.features = get_plan_features(plan)
            subscription.end_date = self._period_end(plan, now)
            return subscription.model_copy(deep=True)

        updated = await self.repository.mutate(user_id, _change)
        if updated is None:
            raise SubscriptionNotFound(f"No subscription for user {user_id}.")
        logger.info("subscription_plan_updated", user_id=user_id, plan=plan.value)
        return updated

    async def cancel_subscription(self, user_id: str) -> Subscription:
        """Cancel immediately: status flips and the free tier applies right away."""

        now = utc_now()

        def _cancel(subscription: Subscription) -> Subscription:
            self._refresh(subscription, now)
            subscription.status = SubscriptionStatus.CANCELED
            subscription.canceled_at = now
            subscription.plan = PlanTier.FREE
            subscription.features = get_plan_features(PlanTier.FREE)
            return subscription.model_copy(deep=True)

        canceled = await self.repository.mutate(user_id, _cancel)
        if canceled is None:
            raise SubscriptionNotFound(f"No subscription for user {user_id}.")
        logger.info("subscription_canceled", user_id=user_id)
        return canceled

    async def check_usage_limits(self, user_id: str, kind: UsageKind) -> UsageCheck:
        now = utc_now()

        def _check(subscription: Subscription) -> UsageCheck:
            self._refresh(subscription, now)
            return evaluate(subscription, kind, now)

        check = await self.repository.mutate(user_id, _check)
        return check if check is not None else UsageCheck(kind=kind, can_use=False)

    async def increment_usage(self, user_id: str, kind: UsageKind, amount: int = 1) -> Subscription:
        """Add to a counter without consulting the quota."""

        now = utc_now()

        def _increment(subscription: Subscription) -> Subscription:
            self._refresh(subscription, now)
            subscription.usage.add(kind, amount)
            return subscription.model_copy(deep=True)

        updated = await self.repository.mutate(user_id, _increment)
        if updated is None:
            raise SubscriptionNotFound(f"No subscription for user {user_id}.")
        return updated

    async def try_consume(self, user_id: str, kind: UsageKind, amount: int = 1) -> UsageCheck:
        """Check and increment in one repository mutation.

        The counter only moves when the whole ``amount`` fits under the limit,
        so concurrent callers can never push a user past the quota.
        """

        now = utc_now()

        def _consume(subscription: Subscription) -> UsageCheck:
            self._refresh(subscription, now)
            check = evaluate(subscription, kind, now, amount)
            if not check.can_use:
                return check
            subscription.usage.add(kind, amount)
            if check.limit == UNLIMITED:
                return check
            return check.model_copy(update={"remaining": check.remaining - amount})

        check = await self.repository.mutate(user_id, _consume)
        if check is None:
            return UsageCheck(kind=kind, can_use=False)
        if not check.can_use:
            logger.info(
                "usage_rejected",
                user_id=user_id,
                kind=kind.value,
                remaining=check.remaining,
                limit=check.limit,
            )
        return check

    async def release_usage(
        self,
        user_id: str,
        kind: UsageKind,
        amount: int = 1,
        reserved_at: datetime | None = None,
    ) -> None:
        """Return units reserved by :meth:`try_consume` for a request that did not complete.

        When ``reserved_at`` predates the last counter reset, the units belong
        to a period that has already been zeroed and nothing is returned.
        """

        now = utc_now()

        def _release(subscription: Subscription) -> Subscription:
            self._refresh(subscription, now)
            if reserved_at is not None and ensure_utc(subscription.usage.last_reset) > reserved_at:
                logger.info("usage_release_skipped", user_id=user_id, kind=kind.value, amount=amount)
                return subscription
            subscription.usage.add(kind, -amount)
            return subscription

        await self.repository.mutate(user_id, _release)

    async def get_usage_stats(self, user_id: str) -> UsageStats | None:
        now = utc_now()

        def _stats(subscription: Subscription) -> UsageStats:
            self._refresh(subscription, now)
            features, usage = subscription.features, subscription.usage
            return UsageStats(
                messages=_counter(usage.messages, features.monthly_messages),
                images=_counter(usage.images, features.monthly_images),
                tokens=_counter(usage.tokens, features.max_tokens),
            )

        return await self.repository.mutate(user_id, _stats)

    @staticmethod
    def list_plans() -> list[dict]:
        return list_plans()

    # Internal helpers -------------------------------------------------

    def _period_end(self, plan: PlanTier, now: datetime) -> datetime | None:
        if plan is PlanTier.FREE:
            return None
        return add_months(now, self.settings.subscriptions.billing_period_months)

    @staticmethod
    def _refresh(subscription: Subscription, now: datetime) -> None:
        apply_monthly_rollover(subscription, now)
        end_date = ensure_utc(subscription.end_date)
        if subscription.status is SubscriptionStatus.ACTIVE and end_date and now > end_date:
            subscription.status = SubscriptionStatus.EXPIRED


def _counter(used: int, limit: int) -> UsageCounter:
    remaining = UNLIMITED if limit == UNLIMITED else max(0, limit - used)
    return UsageCounter(used=used, limit=limit, remaining=remaining)


__all__ = [
    "SubscriptionService",
    "apply_monthly_rollover",
    "evaluate",
    "is_usable",
]
