"""
Crossover Backtester — Moving-average crossover backtesting and optimization.

Provides:
- Market-data cache with per-timeframe freshness and upstream routing
- Contract economics for leveraged futures instruments
- Deterministic SMA crossover simulation with stop-loss / take-profit exits
- Neighborhood grid search over MA lengths with parallel execution
- Performance metrics (drawdown, win rate, profit factor, Sharpe/Sortino)
"""

__version__ = "1.0.0"
