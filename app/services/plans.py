"""Static subscription plan catalog."""

from __future__ import annotations

from app.domain.models import PlanFeatures, PlanTier

UNLIMITED = -1

_PLANS: dict[PlanTier, dict] = {
    PlanTier.FREE: {
        "monthly_messages": 100,
        "monthly_images": 10,
        "max_tokens": 4000,
        "custom_models": 0,
        "priority_support": False,
        "price": 0.0,
    },
    PlanTier.BASIC: {
        "monthly_messages": 1000,
        "monthly_images": 100,
        "max_tokens": 8000,
        "custom_models": 3,
        "priority_support": False,
        "price": 9.99,
    },
    PlanTier.PRO: {
        "monthly_messages": 5000,
        "monthly_images": 500,
        "max_tokens": 16000,
        "custom_models": 10,
        "priority_support": True,
        "price": 29.99,
    },
    PlanTier.ENTERPRISE: {
        "monthly_messages": UNLIMITED,
        "monthly_images": UNLIMITED,
        "max_tokens": 32000,
        "custom_models": UNLIMITED,
        "priority_support": True,
        "price": 99.99,
    },
}

PLAN_NAMES = {
    PlanTier.FREE: "Free",
    PlanTier.BASIC: "Basic",
    PlanTier.PRO: "Pro",
    PlanTier.ENTERPRISE: "Enterprise",
}


def get_plan_features(plan: PlanTier | str) -> PlanFeatures:
    """Return a fresh feature snapshot; unknown plans resolve to the free tier."""

    try:
        tier = PlanTier(plan)
    except ValueError:
        tier = PlanTier.FREE
    return PlanFeatures(**_PLANS[tier])


def list_plans() -> list[dict]:
    return [
        {
            "id": tier.value,
            "name": PLAN_NAMES[tier],
            "features": get_plan_features(tier),
            "price": _PLANS[tier]["price"],
        }
        for tier in PlanTier
    ]


__all__ = ["PLAN_NAMES", "UNLIMITED", "get_plan_features", "list_plans"]
