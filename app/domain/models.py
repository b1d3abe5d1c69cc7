"""Pydantic models shared across provider/ledger/application layers."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.utils.datetime import utc_now

Role = Literal["user", "assistant", "system"]
ProviderName = Literal["openai", "anthropic", "google", "stability", "custom"]


class NormalizedMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class NormalizedResponse(BaseModel):
    text: str
    model_id: str
    usage: TokenUsage | None = None


class ImageOptions(BaseModel):
    count: int = Field(default=1, ge=1, le=10)
    size: str = "1024x1024"
    quality: str = "standard"
    negative_prompt: str = ""
    width: int = 1024
    height: int = 1024
    steps: int = 30
    cfg_scale: float = 7
    seed: int = -1


class ImageResult(BaseModel):
    images: list[str]
    model_id: str


class ModelDescriptor(BaseModel):
    id: str
    name: str
    provider: ProviderName
    max_tokens: int
    supports_streaming: bool
    description: str | None = None


class CustomServiceConfig(BaseModel):
    """Declarative description of a user-defined endpoint.

    ``request_format`` and ``response_format`` are plain strings; the custom
    adapter recognises a closed set of values and treats anything else with
    its generic OpenAI-like shape.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True, extra="forbid")

    name: str = Field(min_length=1)
    endpoint: str = ""
    api_key: str = ""
    model: str = "custom-model"
    max_tokens: int = Field(default=2000, ge=1)
    supports_streaming: bool = False
    request_format: str = "openai"
    response_format: str = "openai"
    headers: dict[str, str] = Field(default_factory=dict)
    auth_header_name: str | None = None
    temperature: float = Field(default=0.7, ge=0, le=2)
    http_method: Literal["POST", "GET"] = "POST"
    description: str | None = None

    @field_validator("request_format", "response_format", mode="before")
    @classmethod
    def _normalize_format(cls, value):
        if value is None:
            return "openai"
        return str(value).strip().lower()

    @field_validator("http_method", mode="before")
    @classmethod
    def _upper_method(cls, value):
        return str(value or "POST").upper()


class PlanTier(str, Enum):
    FREE = "free"
    BASIC = "basic"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    CANCELED = "canceled"
    EXPIRED = "expired"
    PENDING = "pending"


class UsageKind(str, Enum):
    MESSAGE = "message"
    IMAGE = "image"
    TOKEN = "token"


class PlanFeatures(BaseModel):
    monthly_messages: int
    monthly_images: int
    max_tokens: int
    custom_models: int
    priority_support: bool
    price: float

    def limit_for(self, kind: UsageKind) -> int:
        if kind is UsageKind.MESSAGE:
            return self.monthly_messages
        if kind is UsageKind.IMAGE:
            return self.monthly_images
        return self.max_tokens


class Usage(BaseModel):
    messages: int = 0
    images: int = 0
    tokens: int = 0
    last_reset: datetime = Field(default_factory=utc_now)

    def used(self, kind: UsageKind) -> int:
        if kind is UsageKind.MESSAGE:
            return self.messages
        if kind is UsageKind.IMAGE:
            return self.images
        return self.tokens

    def add(self, kind: UsageKind, amount: int) -> None:
        if kind is UsageKind.MESSAGE:
            self.messages = max(0, self.messages + amount)
        elif kind is UsageKind.IMAGE:
            self.images = max(0, self.images + amount)
        else:
            self.tokens = max(0, self.tokens + amount)


class Subscription(BaseModel):
    user_id: str
    plan: PlanTier = PlanTier.FREE
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    features: PlanFeatures
    usage: Usage = Field(default_factory=Usage)
    start_date: datetime = Field(default_factory=utc_now)
    end_date: datetime | None = None
    canceled_at: datetime | None = None


class UsageCheck(BaseModel):
    kind: UsageKind
    can_use: bool
    remaining: int | None = None
    limit: int | None = None


class UsageCounter(BaseModel):
    used: int
    limit: int
    remaining: int


class UsageStats(BaseModel):
    messages: UsageCounter
    images: UsageCounter
    tokens: UsageCounter


class UserPreferences(BaseModel):
    language: Literal["zh-CN", "en-US", "ja-JP"] = "zh-CN"
    timezone: Literal["Asia/Shanghai", "Asia/Tokyo", "America/New_York", "Europe/London"] = "Asia/Shanghai"
    auto_save: bool = True
    notifications: bool = True
    theme: Literal["light", "dark", "auto"] = "light"
    font_size: Literal["small", "medium", "large"] = "medium"
    compact_mode: bool = False
    animations: bool = True


class AISettings(BaseModel):
    default_model: str = "gpt-3.5-turbo"
    openai_api_key: str = ""
    claude_api_key: str = ""
    google_api_key: str = ""
    temperature: float = Field(default=0.7, ge=0, le=2)
    max_tokens: int = Field(default=2000, ge=100, le=4000)


class SettingsBundle(BaseModel):
    preferences: UserPreferences = Field(default_factory=UserPreferences)
    ai: AISettings = Field(default_factory=AISettings)


__all__ = [
    "AISettings",
    "CustomServiceConfig",
    "ImageOptions",
    "ImageResult",
    "ModelDescriptor",
    "NormalizedMessage",
    "NormalizedResponse",
    "PlanFeatures",
    "PlanTier",
    "ProviderName",
    "Role",
    "SettingsBundle",
    "Subscription",
    "SubscriptionStatus",
    "TokenUsage",
    "Usage",
    "UsageCheck",
    "UsageCounter",
    "UsageKind",
    "UsageStats",
    "UserPreferences",
]
