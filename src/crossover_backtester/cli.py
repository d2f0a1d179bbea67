"""
Command-line entry point.

Usage:
    crossover-backtester optimize BTCUSDT 1H --fast 10 --slow 20
    crossover-backtester simulate NQ! 15m --fast 9 --slow 21 --stop-loss 20 --take-profit 40
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from crossover_backtester import __version__
from crossover_backtester.config import get_settings
from crossover_backtester.engine.metrics import MetricsCalculator
from crossover_backtester.engine.models import CapitalConfig, CapitalMode, ParameterSet
from crossover_backtester.engine.simulator import PositionMode
from crossover_backtester.engine.system import BacktestSystem
from crossover_backtester.errors import BacktesterError
from crossover_backtester.logging import get_logger, setup_logging

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crossover-backtester",
        description="Moving-average crossover backtesting and parameter search",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--log-level", default=None, help="Override BACKTESTER_LOG_LEVEL")
    parser.add_argument("--no-log-file", action="store_true", help="Log to stderr only")

    sub = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("optimize", "Grid-search MA lengths around a seed parameter set"),
        ("simulate", "Run a single backtest with fixed parameters"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("symbol", help="Instrument, e.g. BTCUSDT or NQ!")
        cmd.add_argument("timeframe", help="1m, 3m, 5m, 15m, 30m, 1H, 2H, 4H or D")
        cmd.add_argument("--fast", type=int, required=True, help="Fast SMA length")
        cmd.add_argument("--slow", type=int, required=True, help="Slow SMA length")
        cmd.add_argument("--stop-loss", type=float, default=5.0,
                         help="Percent for spot instruments, points for futures (0 disables)")
        cmd.add_argument("--take-profit", type=float, default=10.0,
                         help="Percent for spot instruments, points for futures (0 disables)")
        cmd.add_argument("--capital-mode", choices=[m.value for m in CapitalMode], default=None)
        cmd.add_argument("--capital-value", type=float, default=None)
        cmd.add_argument("--long-only", action="store_true", help="Never open short positions")

    opt = sub.choices["optimize"]
    opt.add_argument("--workers", type=int, default=None, help="Process pool size (1 = sequential)")
    opt.add_argument("--timeout", type=float, default=None, help="Abort outstanding candidates after N seconds")

    sim = sub.choices["simulate"]
    sim.add_argument("--trades", action="store_true", help="Include the trade ledger in the output")

    return parser


def _capital_from_args(args: argparse.Namespace) -> CapitalConfig | None:
    if args.capital_mode is None and args.capital_value is None:
        return None
    mode = CapitalMode(args.capital_mode or CapitalMode.FIXED_AMOUNT.value)
    if args.capital_value is None:
        raise BacktesterError(f"--capital-value is required with --capital-mode {mode.value}")
    return CapitalConfig(mode=mode, value=args.capital_value)


async def _run(args: argparse.Namespace) -> dict[str, Any]:
    settings = get_settings()
    params = ParameterSet(
        fast_length=args.fast,
        slow_length=args.slow,
        stop_loss=args.stop_loss,
        take_profit=args.take_profit,
    )
    capital = _capital_from_args(args)
    mode = PositionMode.LONG_ONLY if args.long_only else PositionMode.LONG_SHORT

    system = await BacktestSystem.create(settings, position_mode=mode)
    try:
        if args.command == "optimize":
            if args.workers is not None:
                system.optimizer.max_workers = args.workers
            result = await system.optimize(
                args.symbol, args.timeframe, params, capital_config=capital, timeout=args.timeout,
            )
            return result.to_dict()

        bars = await system.load_bars(args.symbol, args.timeframe)
        result = system.simulate(bars, params, capital, symbol=args.symbol, timeframe=args.timeframe)
        output = {
            "result": result.to_dict(),
            "metrics": MetricsCalculator.calculate(result, bars).to_dict(),
        }
        if args.trades:
            output["trades"] = [t.to_dict() for t in result.trades]
        return output
    finally:
        await system.close()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()

    setup_logging(
        log_level=args.log_level or settings.log_level,
        log_dir=Path(settings.log_dir),
        log_to_file=not args.no_log_file,
        json_logs=settings.json_logs,
    )

    try:
        output = asyncio.run(_run(args))
    except BacktesterError as e:
        logger.error("Command failed", command=args.command, error=str(e), error_type=type(e).__name__)
        print(json.dumps({"error": type(e).__name__, "message": str(e)}), file=sys.stderr)
        return 1

    print(json.dumps(output, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
