"""Leveraged Dollar-Cost-Averaging (L-DCA) replay engine.

Walks a candle series in timestamp order and places a simulated order every
``period``. Without leverage every order is a spot trade that moves the base and
quote balances. With leverage every order opens a LeveragedPosition in a
PositionLedger that charges rollover fees and liquidates positions as later
candles arrive. At the end, still-open positions are closed at the last close
price and the profit is computed.

Orders execute at the candle mid price ``(open + close) / 2``; intrabar
execution is not modelled.

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or fees.
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal

from ldca.exceptions import InvalidConfigurationError, NoOrdersSimulatedError, SanityCheckError
from ldca.logging import get_logger
from ldca.models import Candle, OrderSide, SymbolPair
from ldca.simulation.ledger import LeveragedPosition, PositionLedger, liquidation_price_for
from ldca.simulation.models import (
    LdcaConfig,
    LdcaResult,
    LiquidationEvent,
    SellSizeMode,
    SimulatedOrder,
)

logger = get_logger(__name__)

RoundFn = Callable[[Decimal], Decimal]


@dataclass
class _SimulationState:
    """Running balances of one simulation run."""

    base_balance: Decimal = Decimal("0")
    quote_balance: Decimal = Decimal("0")
    fees_paid: Decimal = Decimal("0")
    rollover_fees_paid: Decimal = Decimal("0")
    total_initial_margin: Decimal = Decimal("0")
    total_base_traded: Decimal = Decimal("0")
    total_quote_traded: Decimal = Decimal("0")
    next_order_time: datetime | None = None  # None: the first candle always orders
    prev_candle_time: datetime | None = None
    orders: list[SimulatedOrder] = field(default_factory=list)
    liquidations: list[LiquidationEvent] = field(default_factory=list)


class LdcaSimulator:
    """Deterministic L-DCA backtest over an in-memory candle series.

    A simulator instance is reusable; every run() builds fresh state and its
    own PositionLedger.

    Args:
        config: Validated run configuration.
        round_fn: Exchange order-size rounding, ``Round(size) -> actualSize``
            in the base symbol. Its errors propagate unchanged.
    """

    def __init__(self, config: LdcaConfig, round_fn: RoundFn) -> None:
        self._config = config
        self._round_fn = round_fn

    @property
    def config(self) -> LdcaConfig:
        return self._config

    def run(self, candles: Sequence[Candle]) -> LdcaResult:
        """Replay the candles and return the final result.

        Args:
            candles: Non-empty candle series in strictly ascending timestamp order.

        Returns:
            LdcaResult with balances, fees, profit and the order/liquidation trail.

        Raises:
            InvalidConfigurationError: If candles are empty or out of order.
            NoOrdersSimulatedError: If no order with a non-zero size was executed.
        """
        _validate_candles(candles)

        config = self._config
        pair = config.symbol_pair
        state = _SimulationState()
        ledger = PositionLedger()

        logger.info(
            "ldca_simulation_starting",
            symbol_pair=str(pair),
            order_side=config.order_side.value,
            quote_size=str(config.quote_size),
            period=str(config.period),
            leverage=str(config.leverage),
            trade_fee=str(config.trade_fee),
            rollover_fee=str(config.rollover_fee),
            candle_count=len(candles),
            start=candles[0].timestamp.isoformat(),
            end=candles[-1].timestamp.isoformat(),
        )

        for candle in candles:
            if config.use_leverage:
                self._apply_ledger(state, ledger, candle)

            if state.next_order_time is None or candle.timestamp >= state.next_order_time:
                price = (candle.open + candle.close) / 2
                if config.use_leverage:
                    order = self._open_leveraged_position(state, ledger, candle, price)
                else:
                    order = self._place_spot_order(state, candle, price)
                state.orders.append(order)
                state.next_order_time = candle.timestamp + config.period

            state.prev_candle_time = candle.timestamp

        final_price = candles[-1].close
        if config.use_leverage:
            result = self._finalize_leveraged(state, ledger, final_price)
        else:
            result = self._finalize_spot(state, final_price)

        logger.info(
            "ldca_simulation_complete",
            symbol_pair=str(pair),
            final_price=str(result.final_price),
            final_base_balance=str(result.final_base_balance),
            final_quote_balance=str(result.final_quote_balance),
            fees_paid=str(result.fees_paid),
            fee_symbol=result.fee_symbol,
            rollover_fees_paid=str(result.rollover_fees_paid),
            average_order_price=str(result.average_order_price),
            total_value=str(result.total_value),
            total_invested_amount=str(result.total_invested_amount),
            profit_percent=str(result.profit_percent),
            orders_placed=result.orders_placed,
            positions_liquidated=result.positions_liquidated,
        )
        return result

    # ──────────────────────────────────────────────
    # Per-candle steps
    # ──────────────────────────────────────────────

    def _apply_ledger(self, state: _SimulationState, ledger: PositionLedger, candle: Candle) -> None:
        config = self._config
        fee, liquidated = ledger.apply_candle(
            candle,
            state.prev_candle_time,
            config.order_side,
            config.rollover_fee,
            config.rollover_period,
        )
        if fee:
            state.quote_balance -= fee
            state.rollover_fees_paid += fee

        trigger_price = candle.low if config.order_side == OrderSide.BUY else candle.high
        for position in liquidated:
            state.liquidations.append(
                LiquidationEvent(
                    timestamp=candle.timestamp,
                    trigger_price=trigger_price,
                    position=position,
                )
            )
            logger.warning(
                "position_liquidated",
                timestamp=candle.timestamp.isoformat(),
                trigger_price=str(trigger_price),
                entry_price=str(position.entry_price),
                liquidation_price=str(position.liquidation_price),
                margin_lost=str(position.initial_margin),
                open_time=position.open_time.isoformat(),
                quote_balance=str(state.quote_balance),
            )

    def _place_spot_order(self, state: _SimulationState, candle: Candle, price: Decimal) -> SimulatedOrder:
        config = self._config
        side = config.order_side

        if side == OrderSide.SELL and config.sell_size_mode == SellSizeMode.BASE:
            intended_base_amount = config.quote_size
        else:
            intended_base_amount = config.quote_size / price

        base_amount = self._round_fn(intended_base_amount)
        quote_amount = base_amount * price

        state.total_base_traded += base_amount
        state.total_quote_traded += quote_amount

        if side == OrderSide.BUY:
            fee = config.trade_fee * base_amount
            state.base_balance += base_amount - fee
            state.quote_balance -= quote_amount
        elif side == OrderSide.SELL:
            fee = config.trade_fee * quote_amount
            state.base_balance -= base_amount
            state.quote_balance += quote_amount - fee
        else:
            raise SanityCheckError(f"Unsupported order side {side!r}")

        state.fees_paid += fee

        logger.info(
            "spot_order_simulated",
            timestamp=candle.timestamp.isoformat(),
            side=side.value,
            price=str(price),
            base_amount=str(base_amount),
            quote_amount=str(quote_amount),
            fee=str(fee),
            fee_symbol=config.fee_symbol,
            base_balance=str(state.base_balance),
            quote_balance=str(state.quote_balance),
        )

        return SimulatedOrder(
            timestamp=candle.timestamp,
            side=side,
            price=price,
            base_amount=base_amount,
            quote_amount=quote_amount,
            fee=fee,
            fee_symbol=config.fee_symbol,
            base_balance=state.base_balance,
            quote_balance=state.quote_balance,
        )

    def _open_leveraged_position(
        self,
        state: _SimulationState,
        ledger: PositionLedger,
        candle: Candle,
        price: Decimal,
    ) -> SimulatedOrder:
        config = self._config
        side = config.order_side

        intended_quote_amount = config.quote_size * config.leverage
        base_amount = self._round_fn(intended_quote_amount / price)
        quote_amount = base_amount * price

        initial_margin = quote_amount / config.leverage
        liquidation_price = liquidation_price_for(price, config.leverage, side)
        fee = config.trade_fee * quote_amount

        state.total_base_traded += base_amount
        state.total_quote_traded += quote_amount
        state.total_initial_margin += initial_margin
        state.fees_paid += fee
        state.quote_balance -= initial_margin + fee

        ledger.add_position(
            LeveragedPosition(
                entry_price=price,
                initial_margin=initial_margin,
                position_base_amount=base_amount,
                position_quote_amount=quote_amount,
                liquidation_price=liquidation_price,
                open_time=candle.timestamp,
            )
        )

        logger.info(
            "leveraged_position_opened",
            timestamp=candle.timestamp.isoformat(),
            side=side.value,
            price=str(price),
            base_amount=str(base_amount),
            position_size=str(quote_amount),
            initial_margin=str(initial_margin),
            liquidation_price=str(liquidation_price),
            fee=str(fee),
            fee_symbol=config.fee_symbol,
            quote_balance=str(state.quote_balance),
            total_initial_margin=str(state.total_initial_margin),
            open_positions=len(ledger),
        )

        return SimulatedOrder(
            timestamp=candle.timestamp,
            side=side,
            price=price,
            base_amount=base_amount,
            quote_amount=quote_amount,
            fee=fee,
            fee_symbol=config.fee_symbol,
            base_balance=state.base_balance,
            quote_balance=state.quote_balance,
            initial_margin=initial_margin,
            liquidation_price=liquidation_price,
        )

    # ──────────────────────────────────────────────
    # Finalization
    # ──────────────────────────────────────────────

    def _average_order_price(self, state: _SimulationState) -> Decimal:
        if state.total_base_traded == 0:
            raise NoOrdersSimulatedError(
                f"No order with a non-zero size was executed in {len(state.orders)} order(s)"
            )
        return state.total_quote_traded / state.total_base_traded

    def _finalize_spot(self, state: _SimulationState, final_price: Decimal) -> LdcaResult:
        config = self._config
        average_order_price = self._average_order_price(state)

        if config.order_side == OrderSide.BUY:
            total_invested = -state.quote_balance
            total_value = state.base_balance * final_price + state.quote_balance
        elif config.order_side == OrderSide.SELL:
            # Expressed in the base symbol
            total_invested = -state.base_balance
            total_value = state.base_balance + state.quote_balance / final_price
        else:
            raise SanityCheckError(f"Unsupported order side {config.order_side!r}")

        if total_invested == 0:
            raise NoOrdersSimulatedError("Total invested amount is zero")

        return LdcaResult(
            final_price=final_price,
            final_base_balance=state.base_balance,
            final_quote_balance=state.quote_balance,
            fees_paid=state.fees_paid,
            fee_symbol=config.fee_symbol,
            average_order_price=average_order_price,
            total_value=total_value,
            total_invested_amount=total_invested,
            profit_percent=Decimal("100") * total_value / total_invested,
            rollover_fees_paid=state.rollover_fees_paid,
            orders_placed=len(state.orders),
            positions_liquidated=len(state.liquidations),
            orders=tuple(state.orders),
            liquidations=tuple(state.liquidations),
        )

    def _finalize_leveraged(
        self,
        state: _SimulationState,
        ledger: PositionLedger,
        final_price: Decimal,
    ) -> LdcaResult:
        config = self._config
        average_order_price = self._average_order_price(state)

        if state.total_initial_margin == 0:
            raise NoOrdersSimulatedError("Total initial margin is zero")

        # Close every open position at the final price
        total_value = Decimal("0")
        open_positions = ledger.positions
        for position in open_positions:
            position_value = position.position_base_amount * final_price
            if config.order_side == OrderSide.BUY:
                position_profit = position_value - position.position_quote_amount
            elif config.order_side == OrderSide.SELL:
                position_profit = position.position_quote_amount - position_value
            else:
                raise SanityCheckError(f"Unsupported order side {config.order_side!r}")

            state.quote_balance += position.initial_margin + position_profit
            total_value += position_value

        # quote_balance is net of every committed margin, so it is the profit itself
        profit_percent = Decimal("100") * state.quote_balance / state.total_initial_margin

        return LdcaResult(
            final_price=final_price,
            final_base_balance=state.base_balance,
            final_quote_balance=state.quote_balance,
            fees_paid=state.fees_paid,
            fee_symbol=config.fee_symbol,
            average_order_price=average_order_price,
            total_value=total_value,
            total_invested_amount=state.total_initial_margin,
            profit_percent=profit_percent,
            rollover_fees_paid=state.rollover_fees_paid,
            orders_placed=len(state.orders),
            positions_liquidated=len(state.liquidations),
            orders=tuple(state.orders),
            liquidations=tuple(state.liquidations),
            open_positions=len(open_positions),
        )


def _validate_candles(candles: Sequence[Candle]) -> None:
    if not candles:
        raise InvalidConfigurationError("Candle series must not be empty")
    for previous, current in zip(candles, candles[1:]):
        if current.timestamp <= previous.timestamp:
            raise InvalidConfigurationError(
                f"Candles must be in strictly ascending order: {current.timestamp.isoformat()} "
                f"follows {previous.timestamp.isoformat()}"
            )


def simulate(
    candles: Sequence[Candle],
    round_fn: RoundFn,
    trade_fee: Decimal,
    symbol_pair: SymbolPair,
    order_side: OrderSide,
    quote_size: Decimal,
    period: timedelta,
    leverage: Decimal = Decimal("1"),
    rollover_fee: Decimal = Decimal("0"),
    rollover_period: timedelta = timedelta(hours=8),
    sell_size_mode: SellSizeMode = SellSizeMode.BASE,
) -> LdcaResult:
    """Run one L-DCA simulation with explicit parameters.

    Convenience wrapper building an LdcaConfig and an LdcaSimulator.

    Raises:
        InvalidConfigurationError: If any parameter or the candle series is invalid.
        NoOrdersSimulatedError: If no order with a non-zero size was executed.
    """
    config = LdcaConfig(
        symbol_pair=symbol_pair,
        order_side=order_side,
        quote_size=quote_size,
        period=period,
        trade_fee=trade_fee,
        leverage=leverage,
        rollover_fee=rollover_fee,
        rollover_period=rollover_period,
        sell_size_mode=sell_size_mode,
    )
    return LdcaSimulator(config, round_fn).run(candles)
