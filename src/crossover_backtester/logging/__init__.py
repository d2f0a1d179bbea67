"""Structured logging for crossover backtester."""

from crossover_backtester.logging.logger import get_logger, setup_logging, log_context

__all__ = ["get_logger", "setup_logging", "log_context"]
