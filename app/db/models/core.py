"""SQLAlchemy models for subscriptions and per-user settings."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Enum, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, TimestampMixin
from app.utils.datetime import utc_now


class SubscriptionRecord(TimestampMixin, Base):
    __tablename__ = "subscriptions"
    __table_args__ = (UniqueConstraint("user_id", name="uq_subscriptions_user_id"),)

    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    plan: Mapped[str] = mapped_column(
        Enum("free", "basic", "pro", "enterprise", name="subscription_plan"),
        default="free",
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        Enum("active", "canceled", "expired", "pending", name="subscription_status"),
        default="active",
        nullable=False,
    )
    # Snapshot copied from the plan catalog when the plan was assigned.
    features: Mapped[dict] = mapped_column(JSON, nullable=False)
    messages_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    images_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tokens_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_reset: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    canceled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class UserSettingsRecord(TimestampMixin, Base):
    __tablename__ = "user_settings"
    __table_args__ = (UniqueConstraint("user_id", name="uq_user_settings_user_id"),)

    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    preferences: Mapped[dict] = mapped_column(JSON, nullable=False)
    ai_settings: Mapped[dict] = mapped_column(JSON, nullable=False)


__all__ = ["SubscriptionRecord", "UserSettingsRecord"]
