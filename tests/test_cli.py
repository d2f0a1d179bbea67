"""Tests for the command-line entry point and settings."""

import json

import pytest

from crossover_backtester import cli
from crossover_backtester.config import BacktesterSettings
from crossover_backtester.engine.models import CapitalConfig, CapitalMode
from crossover_backtester.engine.system import BacktestSystem
from crossover_backtester.errors import BacktesterError, DataUnavailableError
from crossover_backtester.market_data.bar_store import BarStore


class TestParser:

    def test_optimize_arguments(self):
        args = cli.build_parser().parse_args(
            ["optimize", "BTCUSDT", "1H", "--fast", "10", "--slow", "20", "--workers", "1", "--timeout", "30"]
        )
        assert args.command == "optimize"
        assert args.fast == 10
        assert args.slow == 20
        assert args.stop_loss == 5.0
        assert args.take_profit == 10.0
        assert args.workers == 1
        assert args.timeout == 30.0

    def test_simulate_arguments(self):
        args = cli.build_parser().parse_args(
            ["simulate", "NQ!", "15m", "--fast", "9", "--slow", "21", "--stop-loss", "20", "--trades", "--long-only"]
        )
        assert args.command == "simulate"
        assert args.stop_loss == 20.0
        assert args.trades is True
        assert args.long_only is True

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])


class TestCapitalFromArgs:

    def parse(self, *extra):
        return cli.build_parser().parse_args(["simulate", "ES!", "D", "--fast", "5", "--slow", "10", *extra])

    def test_default_is_none(self):
        assert cli._capital_from_args(self.parse()) is None

    def test_contract_count(self):
        capital = cli._capital_from_args(self.parse("--capital-mode", "fixed-contract-count", "--capital-value", "3"))
        assert capital == CapitalConfig(mode=CapitalMode.FIXED_CONTRACT_COUNT, value=3.0)

    def test_value_implies_fixed_amount(self):
        capital = cli._capital_from_args(self.parse("--capital-value", "2500"))
        assert capital.mode == CapitalMode.FIXED_AMOUNT

    def test_mode_without_value(self):
        with pytest.raises(BacktesterError):
            cli._capital_from_args(self.parse("--capital-mode", "percent-of-equity"))


class TestMain:

    def test_reports_errors_as_json(self, monkeypatch, capsys):
        async def failing_run(args):
            raise DataUnavailableError("no bars")

        monkeypatch.setattr(cli, "_run", failing_run)
        code = cli.main(["--no-log-file", "optimize", "BTCUSDT", "1H", "--fast", "10", "--slow", "20"])

        assert code == 1
        err = capsys.readouterr().err.strip().splitlines()[-1]
        assert json.loads(err) == {"error": "DataUnavailableError", "message": "no bars"}

    def test_unsupported_timeframe_reported_as_json(self, monkeypatch, capsys):
        async def create_offline(settings=None, **kwargs):
            return BacktestSystem(bar_store=BarStore(None, {}), settings=settings, **kwargs)

        monkeypatch.setattr(BacktestSystem, "create", create_offline)
        code = cli.main(["--no-log-file", "optimize", "BTCUSDT", "7m", "--fast", "10", "--slow", "20"])

        assert code == 1
        err = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert err["error"] == "InvalidParametersError"
        assert "7m" in err["message"]

    def test_prints_result(self, monkeypatch, capsys):
        async def fake_run(args):
            return {"symbol": args.symbol}

        monkeypatch.setattr(cli, "_run", fake_run)
        code = cli.main(["--no-log-file", "simulate", "ETHUSDT", "4H", "--fast", "5", "--slow", "10"])

        assert code == 0
        assert json.loads(capsys.readouterr().out) == {"symbol": "ETHUSDT"}


class TestSettings:

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("BACKTESTER_MAX_WORKERS", "3")
        monkeypatch.setenv("BACKTESTER_DEFAULT_INITIAL_CAPITAL", "2500")
        settings = BacktesterSettings()
        assert settings.max_workers == 3
        assert settings.default_initial_capital == 2500.0

    def test_defaults(self):
        settings = BacktesterSettings()
        assert settings.cache_db_path == "data/bars.db"
        assert settings.binance_kline_limit == 1000
