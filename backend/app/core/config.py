"""Central application configuration powered by Pydantic settings."""

from __future__ import annotations

from typing import List

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.detention.timer import DEFAULT_GRACE_PERIOD_MINUTES, DEFAULT_HOURLY_RATE

load_dotenv()

_ENV_CONFIG = SettingsConfigDict(
    env_file=".env",
    env_file_encoding="utf-8",
    case_sensitive=False,
    extra="ignore",
)


class SMTPSettings(BaseSettings):
    """Outgoing mail server configuration."""

    model_config = _ENV_CONFIG

    host: str | None = Field(default=None, validation_alias="SMTP_HOST")
    port: int = Field(default=587, validation_alias="SMTP_PORT")
    username: str | None = Field(default=None, validation_alias="SMTP_USER")
    password: str | None = Field(default=None, validation_alias="SMTP_PASS")
    from_address: str = Field(default="invoices@dwelltime.app", validation_alias="EMAIL_FROM")


class ConvexSettings(BaseSettings):
    """Connection details for the managed document store."""

    model_config = _ENV_CONFIG

    url: str | None = Field(default=None, validation_alias="CONVEX_URL")
    deploy_key: str | None = Field(default=None, validation_alias="CONVEX_DEPLOY_KEY")
    timeout_seconds: float = Field(default=30.0, validation_alias="CONVEX_TIMEOUT_SECONDS")


class DetentionSettings(BaseSettings):
    """Billing defaults and per-tier limits applied to detention events."""

    model_config = _ENV_CONFIG

    default_grace_period_minutes: int = Field(
        default=DEFAULT_GRACE_PERIOD_MINUTES, validation_alias="DEFAULT_GRACE_PERIOD_MINUTES"
    )
    default_hourly_rate: float = Field(default=DEFAULT_HOURLY_RATE, validation_alias="DEFAULT_HOURLY_RATE")
    geofence_radius_meters: float = Field(default=200.0, validation_alias="GEOFENCE_RADIUS_METERS")
    free_events_per_month: int = Field(default=3, validation_alias="FREE_EVENTS_PER_MONTH")
    photos_per_event_free: int = Field(default=5, validation_alias="PHOTOS_PER_EVENT_FREE")
    photos_per_event_pro: int = Field(default=10, validation_alias="PHOTOS_PER_EVENT_PRO")


class StripeSettings(BaseSettings):
    """Stripe credentials and subscription price identifiers."""

    model_config = _ENV_CONFIG

    secret_key: str | None = Field(default=None, validation_alias="STRIPE_SECRET_KEY")
    webhook_secret: str | None = Field(default=None, validation_alias="STRIPE_WEBHOOK_SECRET")
    price_pro_monthly: str | None = Field(default=None, validation_alias="STRIPE_PRICE_PRO_MONTHLY")
    price_pro_annual: str | None = Field(default=None, validation_alias="STRIPE_PRICE_PRO_ANNUAL")
    price_small_fleet_monthly: str | None = Field(
        default=None, validation_alias="STRIPE_PRICE_SMALL_FLEET_MONTHLY"
    )
    price_small_fleet_annual: str | None = Field(
        default=None, validation_alias="STRIPE_PRICE_SMALL_FLEET_ANNUAL"
    )
    price_fleet_monthly: str | None = Field(default=None, validation_alias="STRIPE_PRICE_FLEET_MONTHLY")
    price_fleet_annual: str | None = Field(default=None, validation_alias="STRIPE_PRICE_FLEET_ANNUAL")
    app_url: str = Field(default="dwelltime://", validation_alias="APP_URL")

    def price_id(self, tier: str, interval: str) -> str | None:
        return getattr(self, f"price_{tier}_{interval}", None)


class ReminderSettings(BaseSettings):
    """Payment follow-up cadence for unpaid invoices."""

    model_config = _ENV_CONFIG

    interval_days: int = Field(default=14, validation_alias="REMINDER_INTERVAL_DAYS")
    max_reminders: int = Field(default=3, validation_alias="REMINDER_MAX_COUNT")


class Settings(BaseSettings):
    """Application settings loaded from the environment with validation."""

    model_config = _ENV_CONFIG

    secret_key: str = Field(default="supersecret", validation_alias="SECRET_KEY")
    algorithm: str = Field(default="HS256", validation_alias="ALGORITHM")
    env: str = Field(default="development", validation_alias="ENV")

    smtp: SMTPSettings = Field(default_factory=SMTPSettings)
    convex: ConvexSettings = Field(default_factory=ConvexSettings)
    detention: DetentionSettings = Field(default_factory=DetentionSettings)
    stripe: StripeSettings = Field(default_factory=StripeSettings)
    reminders: ReminderSettings = Field(default_factory=ReminderSettings)

    @field_validator("env", mode="before")
    @classmethod
    def _normalise_env(cls, value: str | None) -> str:
        if not value:
            return "development"
        return value.lower()

    @model_validator(mode="after")
    def _validate_production_requirements(self) -> "Settings":
        if self.env != "production":
            return self

        missing: List[str] = []
        if not self.convex.url:
            missing.append("CONVEX_URL")
        if not self.secret_key or self.secret_key == "supersecret":
            missing.append("SECRET_KEY")
        if not self.stripe.secret_key:
            missing.append("STRIPE_SECRET_KEY")
        if not self.smtp.host:
            missing.append("SMTP_HOST")
        if not self.smtp.username:
            missing.append("SMTP_USER")
        if not self.smtp.password:
            missing.append("SMTP_PASS")

        if missing:
            required = ", ".join(sorted(set(missing)))
            raise ValueError("Missing required environment variables for production: " + required)
        return self


settings = Settings()
