"""
Application configuration.

Loads settings from environment variables and .env file.
All configuration is centralized here. No scattered magic strings.
"""

from decimal import Decimal
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment.

    Attributes:
        project_name: Display name for the API.
        version: Current API version string.
        debug: Enable debug mode. Must be False in production.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        rate_limit_enabled: Toggle slowapi rate limiting.
        rate_limit_default: Default rate limit for all endpoints.
        database_url: SQLAlchemy URL. When unset, an in-memory store is used.
        ledger_base_url: Base URL of the escrow ledger service. When unset,
            an in-memory ledger is used.
        ledger_timeout_seconds: Upper bound for a single blocking ledger call.

    The reputation_*, deadline and fee values are policy knobs handed to
    the pure domain services; see DESIGN.md for the chosen defaults.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    project_name: str = "BarterDesk"
    version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    rate_limit_enabled: bool = True
    rate_limit_default: str = "120/minute"
    max_request_size_bytes: int = 1_048_576  # 1 MB

    database_url: Optional[str] = None

    ledger_base_url: Optional[str] = None
    ledger_api_key: Optional[str] = None
    ledger_timeout_seconds: float = 10.0

    notification_webhook_urls: list[str] = []
    notification_timeout_seconds: float = 5.0

    # Reputation engine
    reputation_initial_score: int = 100
    reputation_balanced_tolerance: Decimal = Decimal("0")
    reputation_overvaluation_threshold: Decimal = Decimal("0.20")
    reputation_balanced_reward: int = 1
    reputation_overvaluation_penalty: int = 10
    reputation_giveaway_policy: Literal["neutral", "penalize"] = "neutral"
    reputation_exempt_api_verified: bool = False

    # Trade lifecycle deadlines
    delivery_confirmation_days: int = 14
    rating_window_days: int = 7
    dispute_response_hours: int = 72
    mediation_response_hours: int = 120
    mediation_round_limit: int = 6
    deadline_sweep_interval_seconds: int = 300
    deadline_sweep_enabled: bool = True

    # Dispute fallback when the respondent never answers
    dispute_default_resolution: Literal[
        "TRADE_UPHELD", "FULL_REFUND", "PARTIAL_REFUND", "TRADE_REVERSAL"
    ] = "PARTIAL_REFUND"
    dispute_default_refund_ratio: Decimal = Decimal("0.5")

    # Escrow
    escrow_payer_rule: Literal["surplus_side", "deficit_side"] = "surplus_side"

    # Platform fees
    flat_escrow_fee_cents: int = 1500
    pro_free_trades_limit: int = 3
    fee_cycle_days: int = 30


settings = Settings()
