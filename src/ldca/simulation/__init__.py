"""L-DCA simulation package.

Replays historical candles to evaluate periodic spot or leveraged orders,
with liquidation and rollover-fee bookkeeping, and grid search over
simulation parameters.
"""

from ldca.simulation.engine import LdcaSimulator, simulate
from ldca.simulation.ledger import LeveragedPosition, PositionLedger, liquidation_price_for
from ldca.simulation.models import (
    LdcaConfig,
    LdcaResult,
    LiquidationEvent,
    SellSizeMode,
    SimulatedOrder,
    SweepResult,
)
from ldca.simulation.sweep import ParameterSweep

__all__ = [
    "LdcaConfig",
    "LdcaResult",
    "LdcaSimulator",
    "LeveragedPosition",
    "LiquidationEvent",
    "ParameterSweep",
    "PositionLedger",
    "SellSizeMode",
    "SimulatedOrder",
    "SweepResult",
    "liquidation_price_for",
    "simulate",
]
