"""Persistence — SQLite bar cache."""

from crossover_backtester.persistence.bar_cache import BarCache

__all__ = ["BarCache"]
