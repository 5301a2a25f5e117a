"""
Application settings and configuration.

Settings are read from environment variables (a .env file is loaded if
present) and fall back to the platform defaults.
"""

import logging
from typing import Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file if present
load_dotenv()


def _env_config(prefix: str = "") -> SettingsConfigDict:
    return SettingsConfigDict(
        env_prefix=prefix,
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )


class ClaimLimits(BaseSettings):
    """Admin-controlled limits that protect chefs from excessive claims."""

    model_config = _env_config("CLAIM_")

    min_amount_cents: int = Field(default=1000, gt=0, description="Smallest claim allowed ($10)")
    max_amount_cents: int = Field(default=500000, gt=0, description="Largest claim allowed ($5,000)")
    max_claims_per_booking: int = Field(
        default=3,
        ge=1,
        validation_alias=AliasChoices("max_claims_per_booking", "CLAIM_MAX_PER_BOOKING"),
    )
    chef_response_deadline_hours: int = Field(
        default=72,
        ge=1,
        validation_alias=AliasChoices("chef_response_deadline_hours", "CHEF_RESPONSE_DEADLINE_HOURS"),
    )
    min_evidence_count: int = Field(
        default=2,
        ge=0,
        validation_alias=AliasChoices("min_evidence_count", "CLAIM_MIN_EVIDENCE"),
    )

    @model_validator(mode="after")
    def _min_below_max(self) -> "ClaimLimits":
        if self.min_amount_cents > self.max_amount_cents:
            raise ValueError("min_amount_cents must not exceed max_amount_cents")
        return self


class GatewaySettings(BaseSettings):
    """Payment gateway configuration settings."""

    model_config = _env_config("GATEWAY_")

    base_url: str = Field(default="", description="Base URL of the payment gateway API")
    api_key: str = Field(default="", description="Secret key for the gateway")
    timeout_seconds: float = Field(default=30.0, gt=0)
    currency: str = Field(default="cad", validation_alias=AliasChoices("currency", "CLAIM_CURRENCY"))
    fee_percent: float = Field(default=0.029, ge=0, description="Processing fee percentage (0.029 = 2.9%)")
    fee_fixed_cents: int = Field(default=30, ge=0, description="Fixed processing fee per charge")

    @field_validator("api_key")
    @classmethod
    def api_key_should_be_set(cls, v):
        if not v:
            logging.warning("Payment gateway key is not set. Set GATEWAY_API_KEY to enable charging.")
        return v


class SchedulerSettings(BaseSettings):
    """Deadline sweeper and capture worker settings."""

    model_config = _env_config()

    sweep_interval_seconds: float = Field(default=3600.0, gt=0)
    capture_workers: int = Field(default=4, ge=1)
    reconcile_after_seconds: float = Field(
        default=900.0,
        gt=0,
        description="Age after which a charge_pending claim is reconciled with the gateway"
    )
    capture_in_background: bool = Field(
        default=True,
        description="Run captures as background tasks instead of awaiting them in the request"
    )


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = _env_config("LOG_")

    level: str = Field(default="INFO")
    format: str = Field(default="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()


class Settings(BaseSettings):
    """Main application settings."""

    model_config = _env_config()

    app_name: str = Field(default="Damage Claim Settlement Engine")
    app_version: str = Field(default="1.0.0")

    limits: ClaimLimits = Field(default_factory=ClaimLimits)
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    notify_webhook_url: Optional[str] = Field(
        default=None,
        description="Webhook that receives notification events (logged only when unset)"
    )
