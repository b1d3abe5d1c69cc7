"""Domain-specific exceptions."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from app.domain.models import UsageCheck


class ServiceError(Exception):
    pass


class ProviderError(ServiceError):
    """Base for failures attributable to one AI provider."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(message)
        self.provider = provider


class ProviderNotConfigured(ProviderError):
    pass


class CapabilityNotSupported(ProviderError):
    pass


class UnsupportedProvider(ProviderError):
    def __init__(self, provider: str) -> None:
        super().__init__(provider, f"Unsupported AI provider: {provider}")


class UpstreamError(ProviderError):
    def __init__(self, provider: str, message: str, status_code: int | None = None) -> None:
        super().__init__(provider, message)
        self.status_code = status_code


class QuotaExceeded(ServiceError):
    def __init__(self, check: "UsageCheck") -> None:
        super().__init__(
            f"Usage limit reached for {check.kind.value}: "
            f"remaining={check.remaining} limit={check.limit}"
        )
        self.check = check


class SubscriptionNotFound(ServiceError):
    pass


class InvalidSettings(ServiceError):
    pass


__all__ = [
    "CapabilityNotSupported",
    "InvalidSettings",
    "ProviderError",
    "ProviderNotConfigured",
    "QuotaExceeded",
    "ServiceError",
    "SubscriptionNotFound",
    "UnsupportedProvider",
    "UpstreamError",
]
