"""Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from decimal import Decimal
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from quikpik.domain.value_objects import FeeModel, FeeSchedule, Money


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # API
    api_version: str = "0.1.0"
    debug: bool = False

    # Storage
    storage_backend: Literal["memory", "sql"] = "memory"
    database_url: str = "postgresql+asyncpg://quikpik:quikpik_dev_password@db:5432/quikpik"

    # Authentication
    api_key: str = "dev-api-key-change-in-production"

    # Payment webhooks
    webhook_secret: str = "dev-webhook-secret-change-in-production"
    webhook_tolerance_seconds: int = 300
    webhook_event_log_max_entries: int = 10_000
    webhook_event_log_ttl_seconds: int = 86_400

    # Fees
    currency: str = "GBP"
    fee_model: FeeModel = FeeModel.WHOLESALER_FUNDED
    commission_rate: Decimal = Decimal("0.05")
    surcharge_rate: Decimal = Decimal("0.055")
    fixed_surcharge: Decimal = Decimal("0.50")

    # Order lifecycle
    auto_archive_after_hours: int = 24
    archive_sweep_interval_seconds: int = 300

    # Notifications
    email_relay_url: str | None = None
    messaging_relay_url: str | None = None
    notification_timeout: float = 5.0

    # Logging
    log_level: str = "INFO"

    def fee_schedule(self) -> FeeSchedule:
        """Build the fee schedule applied to newly built orders."""
        if self.fee_model == FeeModel.CUSTOMER_FUNDED:
            return FeeSchedule.customer_funded(
                commission_rate=self.commission_rate,
                surcharge_rate=self.surcharge_rate,
                fixed_surcharge=Money.from_decimal(self.fixed_surcharge, self.currency),
            )
        return FeeSchedule.wholesaler_funded(self.commission_rate)


settings = Settings()
