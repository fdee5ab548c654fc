"""
IAPKit Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Invalid config is rejected when settings are constructed.
"""

import sys
from enum import Enum
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Environment(str, Enum):
    """Receipt verification environment."""

    SANDBOX = "sandbox"
    PRODUCTION = "production"

    @property
    def verify_url(self) -> str:
        """Get the verifyReceipt endpoint for this environment."""
        if self is Environment.SANDBOX:
            return "https://sandbox.itunes.apple.com/verifyReceipt"
        return "https://buy.itunes.apple.com/verifyReceipt"


class FinalizePolicy(str, Enum):
    """When a verified purchase may be finished on the payment queue."""

    ANY_RESPONSE = "any_response"  # Finish whenever a JSON response was decoded
    ONLY_STATUS_ZERO = "only_status_zero"  # Finish only when status == 0


class Settings(BaseSettings):
    """IAPKit settings loaded from IAPKIT_* environment variables."""

    # Receipt verification
    environment: Environment = Environment.SANDBOX
    shared_secret: str | None = None  # Only needed for auto-renewable subscriptions
    verify_timeout_seconds: float = 30.0

    # Local receipt blob written by the platform
    receipt_path: Path = Path("StoreKit/receipt")

    # Reconciliation policy
    finalize_policy: FinalizePolicy = FinalizePolicy.ANY_RESPONSE
    refresh_max_attempts: int = 3
    refresh_backoff_seconds: float = 1.0  # Doubled after every failed attempt
    report_refresh_failures: bool = False

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console
    service_name: str = "iapkit"
    version: str = "0.1.0"

    # Metrics
    metrics_enabled: bool = True

    model_config = SettingsConfigDict(
        env_prefix="IAPKIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate configuration before any verification runs.

        A bad timeout or retry budget would only surface when a purchase is
        already waiting on the queue.
        """
        errors: list[str] = []

        if self.verify_timeout_seconds <= 0:
            errors.append(
                f"IAPKIT_VERIFY_TIMEOUT_SECONDS must be positive, got {self.verify_timeout_seconds}"
            )
        if self.refresh_max_attempts < 1:
            errors.append(
                f"IAPKIT_REFRESH_MAX_ATTEMPTS must be at least 1, got {self.refresh_max_attempts}"
            )
        if self.refresh_backoff_seconds <= 0:
            errors.append(
                f"IAPKIT_REFRESH_BACKOFF_SECONDS must be positive, got {self.refresh_backoff_seconds}"
            )
        if self.shared_secret is not None and not self.shared_secret.strip():
            errors.append("IAPKIT_SHARED_SECRET is set but empty")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - IAPKIT CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def verify_url(self) -> str:
        """Get the verification endpoint for the configured environment."""
        return self.environment.verify_url


# Process-wide settings used for bootstrapping (logging, default engine)
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
