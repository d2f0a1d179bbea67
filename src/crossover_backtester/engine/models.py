"""
Crossover backtesting data models — enums, parameters, capital, results.

Defines all data structures shared by the simulator, metrics and optimizer:
- Direction, trade kind and signal enums
- Parameter set with structural validation
- Capital configuration and its resolution per instrument class
- Trade ledger, equity curve and the immutable simulation result
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from crossover_backtester.errors import InvalidParametersError
from crossover_backtester.market_data.contracts import ContractSpec

MIN_VALID_BARS = 10
DEFAULT_INITIAL_CAPITAL = 10000.0


# =============================================================================
# Enums
# =============================================================================


class Direction(str, Enum):
    """Position direction."""

    LONG = "long"
    SHORT = "short"


class TradeKind(str, Enum):
    ENTRY = "entry"
    EXIT = "exit"


class TradeSignal(str, Enum):
    """Reason a trade was generated."""

    STOP_LOSS = "stop-loss"
    TAKE_PROFIT = "take-profit"
    CROSSOVER_REVERSAL = "crossover-reversal"
    CROSSOVER_ENTRY = "crossover-entry"


class CapitalMode(str, Enum):
    """How order size / starting capital is specified."""

    FIXED_AMOUNT = "fixed-amount"
    PERCENT_OF_EQUITY = "percent-of-equity"
    FIXED_CONTRACT_COUNT = "fixed-contract-count"


# =============================================================================
# Parameters
# =============================================================================


@dataclass(frozen=True)
class ParameterSet:
    """
    Strategy parameters.

    stop_loss / take_profit are percent of entry price for unleveraged
    instruments and absolute price points for futures. Zero disables the exit.
    """

    fast_length: int
    slow_length: int
    stop_loss: float = 5.0
    take_profit: float = 10.0

    def validate(self) -> None:
        """Raise InvalidParametersError if the set violates the structural invariants."""
        for name in ("fast_length", "slow_length"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidParametersError(f"{name} must be an integer, got {value!r}")
        if self.fast_length < 2:
            raise InvalidParametersError(f"fast_length must be >= 2, got {self.fast_length}")
        if self.slow_length < 3:
            raise InvalidParametersError(f"slow_length must be >= 3, got {self.slow_length}")
        if self.fast_length >= self.slow_length:
            raise InvalidParametersError(
                f"fast_length ({self.fast_length}) must be below slow_length ({self.slow_length})"
            )
        for name in ("stop_loss", "take_profit"):
            value = getattr(self, name)
            if not math.isfinite(value) or value < 0:
                raise InvalidParametersError(f"{name} must be a finite value >= 0, got {value!r}")

    @property
    def is_valid(self) -> bool:
        try:
            self.validate()
        except InvalidParametersError:
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "fast_length": self.fast_length,
            "slow_length": self.slow_length,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "ParameterSet":
        return cls(
            fast_length=int(d["fast_length"]),
            slow_length=int(d["slow_length"]),
            stop_loss=float(d.get("stop_loss", 5.0)),
            take_profit=float(d.get("take_profit", 10.0)),
        )


# =============================================================================
# Capital
# =============================================================================


@dataclass(frozen=True)
class ResolvedCapital:
    """Capital settings a simulation actually runs with."""

    initial_capital: float
    contract_count: int = 1
    exposure_fraction: float = 1.0


@dataclass(frozen=True)
class CapitalConfig:
    """Tagged capital configuration: {mode, value}."""

    mode: CapitalMode = CapitalMode.FIXED_AMOUNT
    value: float = DEFAULT_INITIAL_CAPITAL

    @classmethod
    def default_for(
        cls,
        contract_spec: ContractSpec | None,
        initial_capital: float = DEFAULT_INITIAL_CAPITAL,
    ) -> "CapitalConfig":
        """Futures default to one contract, everything else to a fixed amount."""
        if contract_spec is not None:
            return cls(mode=CapitalMode.FIXED_CONTRACT_COUNT, value=1)
        return cls(mode=CapitalMode.FIXED_AMOUNT, value=initial_capital)

    def resolve(
        self,
        default_initial_capital: float = DEFAULT_INITIAL_CAPITAL,
    ) -> ResolvedCapital:
        if not math.isfinite(self.value) or self.value <= 0:
            raise InvalidParametersError(f"Capital value must be positive, got {self.value!r}")

        if self.mode == CapitalMode.FIXED_AMOUNT:
            return ResolvedCapital(initial_capital=float(self.value))
        if self.mode == CapitalMode.PERCENT_OF_EQUITY:
            if self.value > 100:
                raise InvalidParametersError(f"Percent of equity must be <= 100, got {self.value}")
            return ResolvedCapital(
                initial_capital=default_initial_capital,
                exposure_fraction=self.value / 100,
            )
        if self.mode == CapitalMode.FIXED_CONTRACT_COUNT:
            contracts = int(self.value)
            if contracts < 1 or contracts != self.value:
                raise InvalidParametersError(f"Contract count must be a whole number >= 1, got {self.value}")
            return ResolvedCapital(initial_capital=default_initial_capital, contract_count=contracts)
        raise InvalidParametersError(f"Unknown capital mode: {self.mode!r}")

    def to_dict(self) -> dict[str, Any]:
        return {"mode": self.mode.value, "value": self.value}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "CapitalConfig":
        try:
            mode = CapitalMode(d.get("mode", CapitalMode.FIXED_AMOUNT.value))
        except ValueError as e:
            raise InvalidParametersError(str(e)) from e
        return cls(mode=mode, value=float(d.get("value", DEFAULT_INITIAL_CAPITAL)))


# =============================================================================
# Simulation state & ledger
# =============================================================================


@dataclass(frozen=True)
class Position:
    """The single open position of a run."""

    direction: Direction
    entry_price: float
    entry_bar_index: int


@dataclass(frozen=True)
class Trade:
    """Single ledger entry; pnl is None for entries."""

    sequence_id: int
    kind: TradeKind
    direction: Direction
    signal: TradeSignal
    price: float
    bar_timestamp: int
    bar_index: int
    pnl: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sequence_id": self.sequence_id,
            "kind": self.kind.value,
            "direction": self.direction.value,
            "signal": self.signal.value,
            "price": round(self.price, 8),
            "pnl": round(self.pnl, 2) if self.pnl is not None else None,
            "bar_timestamp": self.bar_timestamp,
        }


@dataclass(frozen=True)
class EquityPoint:
    """Capital after one simulated bar."""

    bar_timestamp: int
    capital: float


@dataclass(frozen=True)
class SimulationResult:
    """Output of one simulation run. Immutable once produced."""

    params: ParameterSet
    initial_capital: float
    final_capital: float
    net_profit: float
    gross_profit: float
    gross_loss: float
    max_drawdown_abs: float
    peak_capital: float
    winning_trade_count: int
    closed_trade_count: int
    total_bars_held: int
    trades: tuple[Trade, ...] = ()
    equity_curve: tuple[EquityPoint, ...] = ()
    open_position: Position | None = None
    symbol: str = ""
    timeframe: str = ""

    @property
    def closed_trade_pnls(self) -> list[float]:
        return [t.pnl for t in self.trades if t.kind == TradeKind.EXIT and t.pnl is not None]

    @property
    def entry_count(self) -> int:
        return sum(1 for t in self.trades if t.kind == TradeKind.ENTRY)

    @property
    def exit_count(self) -> int:
        return sum(1 for t in self.trades if t.kind == TradeKind.EXIT)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (without heavy time series)."""
        return {
            "symbol": self.symbol,
            "timeframe": self.timeframe,
            **self.params.to_dict(),
            "initial_capital": round(self.initial_capital, 2),
            "final_capital": round(self.final_capital, 2),
            "net_profit": round(self.net_profit, 2),
            "gross_profit": round(self.gross_profit, 2),
            "gross_loss": round(self.gross_loss, 2),
            "max_drawdown_abs": round(self.max_drawdown_abs, 2),
            "winning_trades": self.winning_trade_count,
            "closed_trades": self.closed_trade_count,
            "total_bars_held": self.total_bars_held,
            "position_open": self.open_position is not None,
        }


@dataclass
class SimulationLedger:
    """Mutable per-run accumulator, frozen into a SimulationResult at the end."""

    capital: float
    peak_capital: float
    trades: list[Trade] = field(default_factory=list)
    equity_curve: list[EquityPoint] = field(default_factory=list)
    max_drawdown_abs: float = 0.0
    gross_profit: float = 0.0
    gross_loss: float = 0.0
    winning_trade_count: int = 0
    closed_trade_count: int = 0
    total_bars_held: int = 0

    def record(
        self,
        kind: TradeKind,
        direction: Direction,
        signal: TradeSignal,
        price: float,
        bar_timestamp: int,
        bar_index: int,
        pnl: float | None = None,
    ) -> Trade:
        trade = Trade(
            sequence_id=len(self.trades) + 1,
            kind=kind,
            direction=direction,
            signal=signal,
            price=price,
            bar_timestamp=bar_timestamp,
            bar_index=bar_index,
            pnl=pnl,
        )
        self.trades.append(trade)
        return trade

    def mark_equity(self, bar_timestamp: int) -> None:
        if self.capital > self.peak_capital:
            self.peak_capital = self.capital
        drawdown = self.peak_capital - self.capital
        if drawdown > self.max_drawdown_abs:
            self.max_drawdown_abs = drawdown
        self.equity_curve.append(EquityPoint(bar_timestamp=bar_timestamp, capital=self.capital))
