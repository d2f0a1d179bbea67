"""
GridOptimizer — neighborhood grid search over moving-average lengths.

The search space is a bounded grid around a seed (fast, slow) pair; stop-loss
and take-profit are carried over from the seed unchanged. Candidates that
violate the parameter invariants are skipped, never raised.

Uses ProcessPoolExecutor for parallel simulation; ranking happens once every
worker has finished (or the run was cancelled / timed out).
"""

import os
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ProcessPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd

from crossover_backtester.caching.indicator_cache import IndicatorCache
from crossover_backtester.engine.metrics import MetricsCalculator, PerformanceMetrics
from crossover_backtester.engine.models import (
    DEFAULT_INITIAL_CAPITAL,
    CapitalConfig,
    ParameterSet,
    SimulationResult,
)
from crossover_backtester.engine.simulator import CrossoverSimulator, PositionMode, prepare_bars
from crossover_backtester.errors import (
    InvalidParametersError,
    NoViableStrategyError,
    OptimizationTimeoutError,
)
from crossover_backtester.market_data.contracts import ContractSpec
from crossover_backtester.market_data.models import Bar
from crossover_backtester.logging import get_logger

logger = get_logger(__name__)

# How often a parallel run re-checks its cancel token
_CANCEL_POLL_SECONDS = 0.1


# =============================================================================
# Data Models
# =============================================================================


@dataclass(frozen=True)
class SearchSpace:
    """Shape of the neighborhood explored around a seed parameter set."""

    fast_radius: int = 5
    fast_step: int = 2
    slow_radius: int = 10
    slow_step: int = 5
    min_fast: int = 2

    def candidates(self, seed: ParameterSet) -> list[ParameterSet]:
        """Enumerate the grid in (fast asc, slow asc) order."""
        fast_min = max(self.min_fast, seed.fast_length - self.fast_radius)
        fast_max = seed.fast_length + self.fast_radius
        slow_min = max(fast_max + 1, seed.slow_length - self.slow_radius)
        slow_max = seed.slow_length + self.slow_radius

        return [
            ParameterSet(
                fast_length=fast,
                slow_length=slow,
                stop_loss=seed.stop_loss,
                take_profit=seed.take_profit,
            )
            for fast in range(fast_min, fast_max + 1, self.fast_step)
            for slow in range(slow_min, slow_max + 1, self.slow_step)
        ]


@dataclass(frozen=True)
class RankedCandidate:
    """Shortlist entry: return on initial capital (percent) and its parameters."""

    roi: float
    params: ParameterSet

    def to_dict(self) -> dict[str, Any]:
        return {"roi": round(self.roi, 2), **self.params.to_dict()}


@dataclass
class OptimizationResult:
    """Result of a full grid search."""

    best: SimulationResult
    best_metrics: PerformanceMetrics
    top_n: list[RankedCandidate] = field(default_factory=list)
    all_results: list[SimulationResult] = field(default_factory=list)
    candidates_total: int = 0
    candidates_skipped: int = 0
    timed_out: bool = False
    duration_seconds: float = 0.0
    symbol: str = ""
    timeframe: str = ""

    def param_impact(self) -> dict[str, float]:
        """Absolute correlation of each length parameter with net profit."""
        if len(self.all_results) < 2:
            return {}

        profits = np.array([r.net_profit for r in self.all_results])
        impact: dict[str, float] = {}
        for param in ("fast_length", "slow_length"):
            values = np.array([float(getattr(r.params, param)) for r in self.all_results])
            if values.std() > 0 and profits.std() > 0:
                corr = np.corrcoef(values, profits)[0, 1]
                impact[param] = round(abs(float(corr)), 4)
            else:
                impact[param] = 0.0
        return impact

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "timeframe": self.timeframe,
            "best": {
                "params": self.best.params.to_dict(),
                "metrics": self.best_metrics.to_dict(),
            },
            "top_n": [c.to_dict() for c in self.top_n],
            "candidates_total": self.candidates_total,
            "candidates_evaluated": len(self.all_results),
            "candidates_skipped": self.candidates_skipped,
            "timed_out": self.timed_out,
            "param_impact": self.param_impact(),
            "duration_seconds": round(self.duration_seconds, 2),
        }


# =============================================================================
# Standalone candidate runner (picklable for ProcessPoolExecutor)
# =============================================================================


def _run_candidate(
    params: ParameterSet,
    bars_data: dict[str, list],
    contract_spec: ContractSpec | None,
    capital: CapitalConfig,
    default_initial_capital: float,
    position_mode: PositionMode,
    symbol: str = "",
    timeframe: str = "",
) -> SimulationResult | None:
    """Simulate one candidate in a worker process; None for invalid parameters."""
    sim = CrossoverSimulator(
        params,
        contract_spec=contract_spec,
        capital=capital,
        default_initial_capital=default_initial_capital,
        position_mode=position_mode,
        symbol=symbol,
        timeframe=timeframe,
    )
    try:
        return sim.run(pd.DataFrame(bars_data), prepared=True)
    except InvalidParametersError:
        return None


def rank_results(results: list[SimulationResult]) -> list[SimulationResult]:
    """Descending net profit; ties broken by ascending fast, then slow length."""
    return sorted(
        results,
        key=lambda r: (-r.net_profit, r.params.fast_length, r.params.slow_length),
    )


# =============================================================================
# Optimizer
# =============================================================================


class GridOptimizer:
    """Neighborhood grid optimizer with parallel execution."""

    def __init__(
        self,
        max_workers: int | None = None,
        indicator_cache: IndicatorCache | None = None,
        search_space: SearchSpace | None = None,
        top_n: int = 3,
        default_initial_capital: float = DEFAULT_INITIAL_CAPITAL,
        position_mode: PositionMode = PositionMode.LONG_SHORT,
    ) -> None:
        self.max_workers = max_workers
        self.indicator_cache = indicator_cache
        self.search_space = search_space or SearchSpace()
        self.top_n = top_n
        self.default_initial_capital = default_initial_capital
        self.position_mode = position_mode

    def optimize(
        self,
        bars: pd.DataFrame | list[Bar],
        seed: ParameterSet,
        contract_spec: ContractSpec | None = None,
        capital: CapitalConfig | None = None,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
        max_workers: int | None = None,
        symbol: str = "",
        timeframe: str = "",
    ) -> OptimizationResult:
        """Run the grid search and rank the surviving candidates."""
        start_time = time.perf_counter()
        deadline = time.monotonic() + timeout if timeout is not None else None

        frame = prepare_bars(bars)
        capital = capital or CapitalConfig.default_for(contract_spec, self.default_initial_capital)
        capital.resolve(self.default_initial_capital)

        candidates = self.search_space.candidates(seed)
        workers = max_workers or self.max_workers or os.cpu_count() or 1

        logger.info(
            "Starting optimization",
            symbol=symbol,
            timeframe=timeframe,
            seed_fast=seed.fast_length,
            seed_slow=seed.slow_length,
            candidates=len(candidates),
            bars=len(frame),
            max_workers=workers,
            timeout=timeout,
        )

        if workers > 1 and len(candidates) > 1:
            results, skipped, timed_out = self._run_parallel(
                candidates, frame, contract_spec, capital, workers, deadline, cancel_event, symbol, timeframe,
            )
        else:
            results, skipped, timed_out = self._run_sequential(
                candidates, frame, contract_spec, capital, deadline, cancel_event, symbol, timeframe,
            )

        if not results:
            if timed_out:
                raise OptimizationTimeoutError(
                    f"Optimization aborted before any of {len(candidates)} candidates completed"
                )
            raise NoViableStrategyError(
                f"None of {len(candidates)} candidates around "
                f"({seed.fast_length}, {seed.slow_length}) is a valid parameter set"
            )

        ranked = rank_results(results)
        best = ranked[0]
        opt_result = OptimizationResult(
            best=best,
            best_metrics=MetricsCalculator.calculate(best, frame),
            top_n=[
                RankedCandidate(roi=MetricsCalculator.net_profit_pct(r), params=r.params)
                for r in ranked[: self.top_n]
            ],
            all_results=ranked,
            candidates_total=len(candidates),
            candidates_skipped=skipped,
            timed_out=timed_out,
            duration_seconds=time.perf_counter() - start_time,
            symbol=symbol,
            timeframe=timeframe,
        )

        logger.info(
            "Optimization complete",
            symbol=symbol,
            evaluated=len(results),
            skipped=skipped,
            timed_out=timed_out,
            best_fast=best.params.fast_length,
            best_slow=best.params.slow_length,
            best_net_profit=round(best.net_profit, 2),
            duration_s=round(opt_result.duration_seconds, 2),
        )
        return opt_result

    # =========================================================================
    # Candidate Execution
    # =========================================================================

    def _run_sequential(
        self,
        candidates: list[ParameterSet],
        frame: pd.DataFrame,
        contract_spec: ContractSpec | None,
        capital: CapitalConfig,
        deadline: float | None,
        cancel_event: threading.Event | None,
        symbol: str,
        timeframe: str,
    ) -> tuple[list[SimulationResult], int, bool]:
        """Run candidates in-process, sharing the indicator cache."""
        results: list[SimulationResult] = []
        skipped = 0

        for params in candidates:
            if _should_stop(deadline, cancel_event):
                logger.warning("Optimization stopped early", completed=len(results), total=len(candidates))
                return results, skipped, True

            sim = CrossoverSimulator(
                params,
                contract_spec=contract_spec,
                capital=capital,
                default_initial_capital=self.default_initial_capital,
                position_mode=self.position_mode,
                indicator_cache=self.indicator_cache,
                symbol=symbol,
                timeframe=timeframe,
            )
            try:
                results.append(sim.run(frame, prepared=True))
            except InvalidParametersError as e:
                skipped += 1
                logger.debug("Skipping invalid candidate", params=params.to_dict(), reason=str(e))

        return results, skipped, False

    def _run_parallel(
        self,
        candidates: list[ParameterSet],
        frame: pd.DataFrame,
        contract_spec: ContractSpec | None,
        capital: CapitalConfig,
        max_workers: int,
        deadline: float | None,
        cancel_event: threading.Event | None,
        symbol: str,
        timeframe: str,
    ) -> tuple[list[SimulationResult], int, bool]:
        """
        Fan candidates out over a process pool and collect them all.

        On timeout or cancellation the call returns at once: queued candidates
        are cancelled and never start, while a candidate already running in a
        worker process finishes its own simulation in the background and its
        result is discarded.
        """
        bars_data = frame.to_dict(orient="list")
        results: list[SimulationResult] = []
        skipped = 0
        timed_out = False
        completed_normally = False

        executor = ProcessPoolExecutor(max_workers=min(max_workers, len(candidates)))
        try:
            pending: set[Future] = {
                executor.submit(
                    _run_candidate,
                    params,
                    bars_data,
                    contract_spec,
                    capital,
                    self.default_initial_capital,
                    self.position_mode,
                    symbol,
                    timeframe,
                )
                for params in candidates
            }

            while pending:
                if _should_stop(deadline, cancel_event):
                    timed_out = True
                    logger.warning(
                        "Optimization stopped early",
                        completed=len(results) + skipped,
                        outstanding=len(pending),
                    )
                    break

                wait_for = _CANCEL_POLL_SECONDS if cancel_event is not None else None
                if deadline is not None:
                    remaining = max(0.0, deadline - time.monotonic())
                    wait_for = remaining if wait_for is None else min(wait_for, remaining)

                done, pending = wait(pending, timeout=wait_for, return_when=FIRST_COMPLETED)
                for future in done:
                    result = future.result()
                    if result is None:
                        skipped += 1
                    else:
                        results.append(result)

            completed_normally = not timed_out
        finally:
            # Queued futures are dropped; running ones are not interrupted
            executor.shutdown(wait=completed_normally, cancel_futures=True)

        logger.info(
            "Parallel candidates complete",
            successful=len(results),
            skipped=skipped,
            workers=max_workers,
        )
        return results, skipped, timed_out


def _should_stop(deadline: float | None, cancel_event: threading.Event | None) -> bool:
    if cancel_event is not None and cancel_event.is_set():
        return True
    return deadline is not None and time.monotonic() >= deadline
