"""Shared test fixtures for the L-DCA calculator."""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from ldca.config import AppSettings, DownloadSettings, ExchangeSettings, ReportSettings, SimulationSettings
from ldca.exchange.types import InstrumentInfo, make_size_rounder
from ldca.models import Candle, SymbolPair

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def btc_usdt() -> SymbolPair:
    return SymbolPair("BTC", "USDT")


@pytest.fixture
def candle_factory() -> Callable[..., Candle]:
    """Build one-minute candles relative to 2024-01-01 00:00 UTC.

    ``candle_factory(index, price)`` gives a flat candle (open == close == price)
    with high/low one unit around it unless given explicitly.
    """

    def _make(
        index: int,
        price: str | Decimal,
        low: str | Decimal | None = None,
        high: str | Decimal | None = None,
        close: str | Decimal | None = None,
    ) -> Candle:
        price = Decimal(str(price))
        close_price = Decimal(str(close)) if close is not None else price
        return Candle(
            timestamp=START + timedelta(minutes=index),
            open=price,
            high=Decimal(str(high)) if high is not None else max(price, close_price) + 1,
            low=Decimal(str(low)) if low is not None else min(price, close_price) - 1,
            close=close_price,
            base_volume=Decimal("10"),
            quote_volume=Decimal("10") * close_price,
        )

    return _make


@pytest.fixture
def btc_instrument() -> InstrumentInfo:
    """Spot BTC/USDT lot constraints (5 decimal places)."""
    return InstrumentInfo(
        symbol="BTC/USDT",
        min_qty=Decimal("0.00001"),
        max_qty=Decimal("9000"),
        qty_step=Decimal("0.00001"),
    )


@pytest.fixture
def half_up_rounder(btc_instrument: InstrumentInfo) -> Callable[[Decimal], Decimal]:
    return make_size_rounder(btc_instrument, "half_up")


@pytest.fixture
def mock_settings() -> AppSettings:
    """Return AppSettings with test defaults (no retry delays, small batches)."""
    return AppSettings(
        log_level="DEBUG",
        exchange=ExchangeSettings(exchange_id="binance"),
        download=DownloadSettings(
            timeframe="1m",
            chunk_days=1,
            batch_limit=1000,
            max_retries=3,
            retry_base_delay=0.0,
            fetch_batch_delay=0.0,
        ),
        simulation=SimulationSettings(size_rounding="half_up"),
        report=ReportSettings(output_dir="reports"),
    )
