"""
Configuration management for Whale Signals.

Uses pydantic-settings to load configuration from environment variables
with sensible defaults for development.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Trade window
    window_hours: float = 24.0
    max_trades: int = 4000  # Newest trades kept per pass

    # Expiry filter
    expiry_grace_minutes: float = 5.0

    # Time decay (exp(-hours / constant); 10h ~ 60% weight at 5h old)
    decay_constant_hours: float = 10.0

    # Flags
    unusual_zscore_threshold: float = 2.0
    concentrated_hhi_threshold: float = 0.35

    # Wallets ranked beyond this are ignored for the pass
    max_wallet_rank: int = 200

    # Composite weights (must sum to 1.0)
    weight_volume: float = 0.15
    weight_rank: float = 0.28
    weight_concentration: float = 0.12
    weight_recency: float = 0.12
    weight_direction: float = 0.08
    weight_alignment: float = 0.25

    # Legacy confidence weights (must sum to 1.0)
    legacy_weight_support: float = 0.32
    legacy_weight_whale_volume: float = 0.25
    legacy_weight_volume: float = 0.18
    legacy_weight_rank: float = 0.15
    legacy_weight_skew: float = 0.10

    # Output
    top_picks: int = 3

    # Data API (trade window + leaderboard loader)
    data_api_url: str = "https://data-api.polymarket.com"
    leaderboard_periods: list[str] = ["Daily", "Weekly", "Monthly", "All Time"]
    leaderboard_limit: int = 50
    trades_page_size: int = 500
    max_retries: int = 3
    request_timeout_seconds: int = 30

    # Rate limiting (requests per 10 seconds)
    rate_limit_requests: int = 180

    # Scheduled recompute (CLI --watch)
    refresh_interval_minutes: int = 5

    # Logging
    log_level: str = "INFO"

    @property
    def composite_weights(self) -> dict[str, float]:
        """Composite factor weights keyed by factor name."""
        return {
            "volume": self.weight_volume,
            "rank": self.weight_rank,
            "concentration": self.weight_concentration,
            "recency": self.weight_recency,
            "direction": self.weight_direction,
            "alignment": self.weight_alignment,
        }

    @property
    def legacy_weights(self) -> dict[str, float]:
        """Legacy confidence weights keyed by component name."""
        return {
            "support": self.legacy_weight_support,
            "whale_volume": self.legacy_weight_whale_volume,
            "volume": self.legacy_weight_volume,
            "rank": self.legacy_weight_rank,
            "skew": self.legacy_weight_skew,
        }


# Global settings instance
settings = Settings()
