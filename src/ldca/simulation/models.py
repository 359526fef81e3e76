"""Data models for the L-DCA simulation engine.

Defines the run configuration, the per-order and per-liquidation audit trail,
the final result, and the parameter-sweep result.

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or fees.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING

from ldca.exceptions import InvalidConfigurationError
from ldca.models import OrderSide, SymbolPair

if TYPE_CHECKING:
    from ldca.simulation.ledger import LeveragedPosition


class SellSizeMode(str, Enum):
    """How ``quote_size`` is interpreted for non-leveraged sell orders.

    BASE: ``quote_size`` is already the base amount to sell each period.
    QUOTE: ``quote_size`` is a quote amount converted at the order price,
        symmetric with buy orders.
    """

    BASE = "base"
    QUOTE = "quote"


@dataclass
class LdcaConfig:
    """Configuration for a single L-DCA simulation run.

    Validated on construction; invalid values raise InvalidConfigurationError
    before any candle is processed.

    Attributes:
        symbol_pair: Traded pair, e.g. BTC/USDT.
        order_side: Side of every periodic order.
        quote_size: Order size in the quote symbol (see SellSizeMode for sells).
        period: Time between two consecutive orders.
        trade_fee: Trading fee as a fraction (0.001 = 0.1%).
        leverage: 1 means spot DCA, anything above opens leveraged positions.
        rollover_fee: Rollover fee per rollover period as a fraction of the
            borrowed amount.
        rollover_period: Time between two rollover fee payments.
        sell_size_mode: Interpretation of quote_size for spot sell orders.
    """

    symbol_pair: SymbolPair
    order_side: OrderSide
    quote_size: Decimal
    period: timedelta
    trade_fee: Decimal = Decimal("0.001")
    leverage: Decimal = Decimal("1")
    rollover_fee: Decimal = Decimal("0")
    rollover_period: timedelta = timedelta(hours=8)
    sell_size_mode: SellSizeMode = SellSizeMode.BASE

    def __post_init__(self) -> None:
        if self.quote_size <= 0:
            raise InvalidConfigurationError(f"quote_size must be positive, got {self.quote_size}")
        if self.period <= timedelta(0):
            raise InvalidConfigurationError(f"period must be positive, got {self.period}")
        if self.trade_fee < 0:
            raise InvalidConfigurationError(f"trade_fee must not be negative, got {self.trade_fee}")
        if self.leverage < 1:
            raise InvalidConfigurationError(f"leverage must not be smaller than 1, got {self.leverage}")
        if self.rollover_fee < 0:
            raise InvalidConfigurationError(f"rollover_fee must not be negative, got {self.rollover_fee}")
        if self.rollover_period <= timedelta(0):
            raise InvalidConfigurationError(
                f"rollover_period must be positive, got {self.rollover_period}"
            )
        if not isinstance(self.order_side, OrderSide):
            raise InvalidConfigurationError(f"Unsupported order side {self.order_side!r}")

    @property
    def use_leverage(self) -> bool:
        """True when orders open leveraged positions instead of spot trades."""
        return self.leverage > Decimal("1")

    @property
    def fee_symbol(self) -> str:
        """Symbol the trading fee is charged in.

        Leveraged positions and spot sells pay in the quote symbol,
        spot buys pay in the base symbol.
        """
        if self.use_leverage or self.order_side == OrderSide.SELL:
            return self.symbol_pair.quote
        return self.symbol_pair.base

    def with_overrides(self, **kwargs: object) -> LdcaConfig:
        """Return a new LdcaConfig with specified fields overridden.

        The copy is validated again.
        """
        return replace(self, **kwargs)

    def to_dict(self) -> dict:
        """Serialize to dict for JSON output (Decimals and periods as strings)."""
        return {
            "symbol_pair": str(self.symbol_pair),
            "order_side": self.order_side.value,
            "quote_size": str(self.quote_size),
            "period": str(self.period),
            "trade_fee": str(self.trade_fee),
            "leverage": str(self.leverage),
            "rollover_fee": str(self.rollover_fee),
            "rollover_period": str(self.rollover_period),
            "sell_size_mode": self.sell_size_mode.value,
        }


@dataclass(frozen=True)
class SimulatedOrder:
    """One simulated periodic order with the balances right after it.

    initial_margin and liquidation_price are None for spot orders.
    """

    timestamp: datetime
    side: OrderSide
    price: Decimal
    base_amount: Decimal
    quote_amount: Decimal
    fee: Decimal
    fee_symbol: str
    base_balance: Decimal
    quote_balance: Decimal
    initial_margin: Decimal | None = None
    liquidation_price: Decimal | None = None

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "side": self.side.value,
            "price": str(self.price),
            "base_amount": str(self.base_amount),
            "quote_amount": str(self.quote_amount),
            "fee": str(self.fee),
            "fee_symbol": self.fee_symbol,
            "base_balance": str(self.base_balance),
            "quote_balance": str(self.quote_balance),
            "initial_margin": str(self.initial_margin) if self.initial_margin is not None else None,
            "liquidation_price": (
                str(self.liquidation_price) if self.liquidation_price is not None else None
            ),
        }


@dataclass(frozen=True)
class LiquidationEvent:
    """A leveraged position removed because a candle crossed its liquidation price.

    Attributes:
        timestamp: Timestamp of the candle that triggered the liquidation.
        trigger_price: Candle low (long) or high (short) that crossed.
        position: The liquidated position; its whole initial margin is lost.
    """

    timestamp: datetime
    trigger_price: Decimal
    position: LeveragedPosition

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "trigger_price": str(self.trigger_price),
            "entry_price": str(self.position.entry_price),
            "liquidation_price": str(self.position.liquidation_price),
            "initial_margin": str(self.position.initial_margin),
        }


@dataclass(frozen=True)
class LdcaResult:
    """Result of one L-DCA simulation. Created once, never mutated.

    Without leverage, total_value, total_invested_amount and the balances of
    sell runs are expressed in the base symbol; every other amount is in the
    quote symbol.

    Attributes:
        final_price: Close price of the last candle.
        final_base_balance: Base balance at the end of the run.
        final_quote_balance: Quote balance at the end of the run; with leverage
            all still-open positions are closed at final_price first.
        fees_paid: Sum of trading fees.
        fee_symbol: Symbol of fees_paid.
        average_order_price: Total quote traded / total base traded.
        total_value: Mark-to-market value; with leverage, value of the
            positions that were still open at the end.
        total_invested_amount: Funds needed to execute the orders; with
            leverage, every initial margin ever committed.
        profit_percent: Profit relative to total_invested_amount. Negative is a loss.
        rollover_fees_paid: Sum of rollover fees (quote symbol).
    """

    final_price: Decimal
    final_base_balance: Decimal
    final_quote_balance: Decimal
    fees_paid: Decimal
    fee_symbol: str
    average_order_price: Decimal
    total_value: Decimal
    total_invested_amount: Decimal
    profit_percent: Decimal
    rollover_fees_paid: Decimal = Decimal("0")
    orders_placed: int = 0
    positions_liquidated: int = 0
    open_positions: int = 0
    orders: tuple[SimulatedOrder, ...] = field(default_factory=tuple)
    liquidations: tuple[LiquidationEvent, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        """Serialize to dict for JSON output.

        Returns:
            Dict with all fields; Decimal values as strings.
        """
        return {
            "final_price": str(self.final_price),
            "final_base_balance": str(self.final_base_balance),
            "final_quote_balance": str(self.final_quote_balance),
            "fees_paid": str(self.fees_paid),
            "fee_symbol": self.fee_symbol,
            "average_order_price": str(self.average_order_price),
            "total_value": str(self.total_value),
            "total_invested_amount": str(self.total_invested_amount),
            "profit_percent": str(self.profit_percent),
            "rollover_fees_paid": str(self.rollover_fees_paid),
            "orders_placed": self.orders_placed,
            "positions_liquidated": self.positions_liquidated,
            "open_positions": self.open_positions,
            "orders": [o.to_dict() for o in self.orders],
            "liquidations": [liq.to_dict() for liq in self.liquidations],
        }


@dataclass
class SweepResult:
    """Result of a parameter sweep over one candle series.

    Attributes:
        param_grid: The parameter grid that was swept (param_name -> list of values).
        results: (params, result_or_None, error_or_None) per combination,
            sorted by profit percent (best first, failures last).
    """

    param_grid: dict[str, list]
    results: list[tuple[dict, LdcaResult | None, str | None]]

    @property
    def best(self) -> tuple[dict, LdcaResult] | None:
        """Best successful combination, or None if every combination failed."""
        for params, result, _ in self.results:
            if result is not None:
                return params, result
        return None

    @property
    def successful_count(self) -> int:
        return sum(1 for _, r, _ in self.results if r is not None)

    def to_dict(self) -> dict:
        """Serialize to dict for JSON output (orders trail omitted)."""

        def _plain(v: object) -> object:
            if isinstance(v, (Decimal, timedelta)):
                return str(v)
            if isinstance(v, Enum):
                return v.value
            return v

        items = []
        for params, result, error in self.results:
            summary = None
            if result is not None:
                summary = result.to_dict()
                summary.pop("orders")
                summary.pop("liquidations")
            items.append(
                {
                    "params": {k: _plain(v) for k, v in params.items()},
                    "result": summary,
                    "error": error,
                }
            )
        return {
            "param_grid": {k: [_plain(v) for v in vals] for k, vals in self.param_grid.items()},
            "results": items,
            "successful_count": self.successful_count,
        }
