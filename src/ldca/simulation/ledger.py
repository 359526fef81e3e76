"""Open leveraged position bookkeeping for one simulation run.

The ledger owns every open LeveragedPosition of a run. On each candle it first
charges rollover fees that fell due since the previous candle, then removes the
positions whose liquidation price was crossed. Liquidated positions are removed,
not flagged, and their whole initial margin is lost.

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or fees.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from ldca.exceptions import SanityCheckError
from ldca.logging import get_logger
from ldca.models import Candle, OrderSide

logger = get_logger(__name__)


@dataclass
class LeveragedPosition:
    """A single leveraged position opened by a periodic order.

    Only last_rollover_fee_paid_time changes after the position is opened.

    Attributes:
        entry_price: Price the position was opened at.
        initial_margin: Own funds at risk (quote symbol).
        position_base_amount: Position size in the base symbol.
        position_quote_amount: Position size in the quote symbol at entry.
        liquidation_price: Price at which the margin is wiped out.
        open_time: Timestamp of the candle that opened the position.
        last_rollover_fee_paid_time: Due time of the last charged rollover
            fee, None until the first payment.
    """

    entry_price: Decimal
    initial_margin: Decimal
    position_base_amount: Decimal
    position_quote_amount: Decimal
    liquidation_price: Decimal
    open_time: datetime
    last_rollover_fee_paid_time: datetime | None = None

    @property
    def borrowed_amount(self) -> Decimal:
        """Part of the position funded by the exchange (quote symbol)."""
        return self.position_quote_amount - self.initial_margin

    def next_rollover_payment_time(self, rollover_period: timedelta) -> datetime:
        last_paid = self.last_rollover_fee_paid_time
        if last_paid is None:
            return self.open_time + rollover_period
        return last_paid + rollover_period

    def rollover_periods_due(self, now: datetime, rollover_period: timedelta) -> int:
        """Number of rollover boundaries in ``(last paid time or open_time, now]``."""
        last_paid = self.last_rollover_fee_paid_time or self.open_time
        if now <= last_paid:
            return 0
        return (now - last_paid) // rollover_period

    def is_liquidated_by(self, candle: Candle, order_side: OrderSide) -> bool:
        """Check whether the candle's range reaches the liquidation price.

        Raises:
            SanityCheckError: If order_side is not a known OrderSide.
        """
        if order_side == OrderSide.BUY:
            return candle.low <= self.liquidation_price
        if order_side == OrderSide.SELL:
            return candle.high >= self.liquidation_price
        raise SanityCheckError(f"Unsupported order side {order_side!r}")

    def to_dict(self) -> dict:
        return {
            "entry_price": str(self.entry_price),
            "initial_margin": str(self.initial_margin),
            "position_base_amount": str(self.position_base_amount),
            "position_quote_amount": str(self.position_quote_amount),
            "liquidation_price": str(self.liquidation_price),
            "open_time": self.open_time.isoformat(),
            "last_rollover_fee_paid_time": (
                self.last_rollover_fee_paid_time.isoformat()
                if self.last_rollover_fee_paid_time is not None
                else None
            ),
        }


def liquidation_price_for(entry_price: Decimal, leverage: Decimal, order_side: OrderSide) -> Decimal:
    """Liquidation price of a position opened at entry_price.

    Long: entry * (1 - 1/leverage). Short: entry * (1 + 1/leverage).

    Raises:
        SanityCheckError: If order_side is not a known OrderSide.
    """
    if order_side == OrderSide.BUY:
        return entry_price * (Decimal("1") - Decimal("1") / leverage)
    if order_side == OrderSide.SELL:
        return entry_price * (Decimal("1") + Decimal("1") / leverage)
    raise SanityCheckError(f"Unsupported order side {order_side!r}")


class PositionLedger:
    """Owns the open leveraged positions of one simulation run.

    Not shared between runs: every simulation creates its own ledger.
    """

    def __init__(self) -> None:
        self._positions: list[LeveragedPosition] = []

    @property
    def positions(self) -> list[LeveragedPosition]:
        """Snapshot list of currently open positions (in opening order)."""
        return list(self._positions)

    def __len__(self) -> int:
        return len(self._positions)

    def add_position(self, position: LeveragedPosition) -> None:
        """Append a newly opened position. The ledger enforces no cap."""
        self._positions.append(position)

    def apply_candle(
        self,
        candle: Candle,
        prev_candle_time: datetime | None,
        order_side: OrderSide,
        rollover_fee: Decimal,
        rollover_period: timedelta,
    ) -> tuple[Decimal, list[LeveragedPosition]]:
        """Charge due rollover fees, then remove liquidated positions.

        Every rollover boundary ``open_time + k * rollover_period`` passed since
        the last payment and not later than ``candle.timestamp`` is charged
        once, so a candle after a gap pays all missed periods. The paid time
        then moves to the latest boundary reached; applying the same candle
        again charges nothing. Fees are charged before the liquidation check,
        so a position can pay and be liquidated on the same candle.

        Args:
            candle: Candle being processed.
            prev_candle_time: Timestamp of the previous candle, None for the
                first one. Only logged; due fees are derived from each
                position's paid time.
            order_side: Side of all positions in this ledger.
            rollover_fee: Fee fraction per period of the borrowed amount; 0 disables fees.
            rollover_period: Time between rollover payments.

        Returns:
            Tuple of (total rollover fee charged on this candle, liquidated positions).
        """
        fee_charged = Decimal("0")

        if rollover_fee != 0:
            for position in self._positions:
                periods = position.rollover_periods_due(candle.timestamp, rollover_period)
                if periods == 0:
                    continue
                first_due = position.next_rollover_payment_time(rollover_period)
                fee = position.borrowed_amount * rollover_fee * periods
                position.last_rollover_fee_paid_time = first_due + rollover_period * (periods - 1)
                fee_charged += fee
                logger.debug(
                    "rollover_fee_charged",
                    open_time=position.open_time.isoformat(),
                    first_due_time=first_due.isoformat(),
                    paid_until=position.last_rollover_fee_paid_time.isoformat(),
                    periods=periods,
                    since=prev_candle_time.isoformat() if prev_candle_time is not None else None,
                    fee=str(fee),
                )

        liquidated = [p for p in self._positions if p.is_liquidated_by(candle, order_side)]
        if liquidated:
            liquidated_ids = {id(p) for p in liquidated}
            self._positions = [p for p in self._positions if id(p) not in liquidated_ids]

        return fee_charged, liquidated
