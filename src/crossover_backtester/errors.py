"""Custom exceptions for the crossover backtester"""


class BacktesterError(Exception):
    """Base exception for all backtester errors"""

    pass


class DataUnavailableError(BacktesterError):
    """Raised when no bars can be obtained from cache or network"""

    pass


class InsufficientDataError(BacktesterError):
    """Raised when fewer valid bars remain than a simulation needs"""

    def __init__(self, available: int, required: int) -> None:
        self.available = available
        self.required = required
        super().__init__(
            f"Insufficient data: {available} valid bars, at least {required} required"
        )

    def __reduce__(self):
        return (type(self), (self.available, self.required))


class InvalidParametersError(BacktesterError):
    """Raised when a parameter set, capital config, symbol or timeframe is invalid"""

    pass


class NoViableStrategyError(BacktesterError):
    """Raised when every candidate of a grid search is invalid"""

    pass


class OptimizationTimeoutError(BacktesterError):
    """Raised when an optimization is aborted before any candidate completed"""

    pass


class CacheUnavailableError(BacktesterError):
    """Raised when the bar cache backend cannot be reached"""

    pass


class ProviderError(BacktesterError):
    """Base exception for upstream market-data provider failures"""

    pass


class NetworkError(ProviderError):
    """Raised when network communication with a provider fails"""

    pass


class RateLimitError(ProviderError):
    """Raised when a provider rate limit is exceeded"""

    pass
