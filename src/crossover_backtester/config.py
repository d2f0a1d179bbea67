"""
Backtester configuration using pydantic-settings.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class BacktesterSettings(BaseSettings):
    """Runtime configuration, read from BACKTESTER_* environment variables."""

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"
    json_logs: bool = False

    # Bar cache
    cache_db_path: str = "data/bars.db"

    # Optimization
    max_workers: int | None = None
    optimize_timeout_seconds: float | None = None

    # Capital used when the capital config does not carry an amount
    default_initial_capital: float = 10000.0

    # Upstream providers
    binance_base_url: str = "https://api.binance.com/api/v3"
    binance_kline_limit: int = 1000
    http_timeout_seconds: float = 15.0
    yahoo_intraday_lookback_days: int = 365
    yahoo_daily_lookback_days: int = 5 * 365

    model_config = {"env_prefix": "BACKTESTER_", "env_file": ".env", "extra": "ignore"}


@lru_cache
def get_settings() -> BacktesterSettings:
    """Return the process-wide settings instance."""
    return BacktesterSettings()
