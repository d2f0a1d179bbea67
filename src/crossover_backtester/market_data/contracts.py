"""
ContractSpecRegistry — tick/point economics of leveraged futures.

The table is a closed enumeration: symbols outside it have no contract spec
and are accounted for with percentage-of-capital PnL.
"""

import math
from dataclasses import dataclass
from enum import Enum


class FuturesContract(str, Enum):
    """Leveraged instruments with fixed contract economics."""

    NQ = "NQ!"
    ES = "ES!"
    YM = "YM!"
    RTY = "RTY!"
    GC = "GC!"
    SIL = "SIL!"
    CL = "CL!"
    NG = "NG!"
    HG = "HG!"
    ZB = "ZB!"
    ZN = "ZN!"
    DX = "DX!"


@dataclass(frozen=True)
class ContractSpec:
    """Per-contract economics: point_value is the currency value of a 1.0 price move."""

    tick_size: float
    tick_value: float
    point_value: float


CONTRACT_SPECS: dict[FuturesContract, ContractSpec] = {
    FuturesContract.NQ: ContractSpec(tick_size=0.25, tick_value=5.0, point_value=20.0),
    FuturesContract.ES: ContractSpec(tick_size=0.25, tick_value=12.5, point_value=50.0),
    FuturesContract.YM: ContractSpec(tick_size=1.0, tick_value=5.0, point_value=5.0),
    FuturesContract.RTY: ContractSpec(tick_size=0.1, tick_value=5.0, point_value=50.0),
    FuturesContract.GC: ContractSpec(tick_size=0.1, tick_value=10.0, point_value=100.0),
    FuturesContract.SIL: ContractSpec(tick_size=0.005, tick_value=5.0, point_value=1000.0),
    FuturesContract.CL: ContractSpec(tick_size=0.01, tick_value=10.0, point_value=1000.0),
    FuturesContract.NG: ContractSpec(tick_size=0.001, tick_value=10.0, point_value=10000.0),
    FuturesContract.HG: ContractSpec(tick_size=0.0005, tick_value=12.5, point_value=25000.0),
    FuturesContract.ZB: ContractSpec(tick_size=0.03125, tick_value=31.25, point_value=1000.0),
    FuturesContract.ZN: ContractSpec(tick_size=0.015625, tick_value=15.625, point_value=1000.0),
    FuturesContract.DX: ContractSpec(tick_size=0.005, tick_value=5.0, point_value=1000.0),
}


def _validate_table() -> None:
    missing = set(FuturesContract) - set(CONTRACT_SPECS)
    if missing:
        raise RuntimeError(f"Contract specs missing for: {sorted(m.value for m in missing)}")
    for contract, spec in CONTRACT_SPECS.items():
        if spec.tick_size <= 0 or spec.point_value <= 0:
            raise RuntimeError(f"Non-positive contract economics for {contract.value}")
        if not math.isclose(spec.tick_size * spec.point_value, spec.tick_value, rel_tol=1e-9):
            raise RuntimeError(
                f"tick_value of {contract.value} does not equal tick_size * point_value"
            )


_validate_table()


def lookup(symbol: str) -> ContractSpec | None:
    """Return the contract spec for a leveraged symbol, or None for unleveraged ones."""
    try:
        contract = FuturesContract(symbol.strip().upper())
    except ValueError:
        return None
    return CONTRACT_SPECS[contract]


def is_leveraged(symbol: str) -> bool:
    return lookup(symbol) is not None
