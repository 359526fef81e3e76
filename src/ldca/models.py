"""Shared data models for the L-DCA calculator.

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or fees.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum


class OrderSide(str, Enum):
    """Order direction."""

    BUY = "buy"
    SELL = "sell"


@dataclass(frozen=True)
class SymbolPair:
    """Base/quote symbol pair, e.g. BTC/USDT."""

    base: str
    quote: str

    @classmethod
    def parse(cls, value: str) -> "SymbolPair":
        """Parse a ``BASE/QUOTE`` string (ccxt unified spot symbol).

        Raises:
            ValueError: If the string is not in ``BASE/QUOTE`` form.
        """
        parts = value.split("/")
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise ValueError(f"Invalid symbol pair '{value}', expected BASE/QUOTE")
        return cls(base=parts[0].strip().upper(), quote=parts[1].strip().upper())

    def __str__(self) -> str:
        return f"{self.base}/{self.quote}"


@dataclass(frozen=True)
class Candle:
    """A single OHLCV candle.

    Timestamps are timezone-aware UTC datetimes marking the candle open.
    All price and volume fields use Decimal for precision.
    """

    timestamp: datetime
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    base_volume: Decimal = Decimal("0")
    quote_volume: Decimal = Decimal("0")

    @classmethod
    def from_ohlcv_row(cls, row: list) -> "Candle":
        """Build a Candle from a ccxt OHLCV row ``[ms, o, h, l, c, v]``.

        ccxt does not report quote volume, so it is estimated as
        ``base_volume * close``.
        """
        timestamp = datetime.fromtimestamp(row[0] / 1000, tz=timezone.utc)
        close = Decimal(str(row[4]))
        base_volume = Decimal(str(row[5])) if row[5] is not None else Decimal("0")
        return cls(
            timestamp=timestamp,
            open=Decimal(str(row[1])),
            high=Decimal(str(row[2])),
            low=Decimal(str(row[3])),
            close=close,
            base_volume=base_volume,
            quote_volume=base_volume * close,
        )
