"""Tests for CcxtExchangeClient and order-size rounding.

All tests use mocked ccxt exchange objects to avoid real API calls.
"""

from decimal import ROUND_HALF_UP, Decimal
from unittest.mock import AsyncMock

import pytest

from ldca.config import ExchangeSettings
from ldca.exceptions import InvalidConfigurationError
from ldca.exchange.ccxt_client import CcxtExchangeClient
from ldca.exchange.types import InstrumentInfo, make_size_rounder, round_to_step


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

MOCK_MARKETS = {
    "BTC/USDT": {
        "id": "BTCUSDT",
        "symbol": "BTC/USDT",
        "base": "BTC",
        "quote": "USDT",
        "type": "spot",
        "spot": True,
        "limits": {
            "amount": {"min": 0.00001, "max": 9000},
            "cost": {"min": 5, "max": None},
        },
        "precision": {
            "amount": 0.00001,
            "price": 0.01,
        },
    },
    "ADA/EUR": {
        "id": "ADAEUR",
        "symbol": "ADA/EUR",
        "base": "ADA",
        "quote": "EUR",
        "type": "spot",
        "spot": True,
        "limits": {
            "amount": {"min": 0.1, "max": None},
            "cost": {"min": None, "max": None},
        },
        "precision": {
            "amount": 0.1,
            "price": 0.0001,
        },
    },
}


@pytest.fixture
def exchange_settings() -> ExchangeSettings:
    return ExchangeSettings(exchange_id="binance")


@pytest.fixture
def client(exchange_settings: ExchangeSettings) -> CcxtExchangeClient:
    """CcxtExchangeClient with mocked markets pre-loaded."""
    client = CcxtExchangeClient(exchange_settings)
    client._markets = MOCK_MARKETS
    return client


# ---------------------------------------------------------------------------
# round_to_step / make_size_rounder
# ---------------------------------------------------------------------------


class TestRoundToStep:
    def test_round_down_to_hundredths(self) -> None:
        assert round_to_step(Decimal("1.2345"), Decimal("0.01")) == Decimal("1.23")

    def test_round_half_up(self) -> None:
        assert round_to_step(Decimal("0.997705"), Decimal("0.00001"), ROUND_HALF_UP) == Decimal("0.99771")

    def test_large_step(self) -> None:
        assert round_to_step(Decimal("17"), Decimal("5")) == Decimal("15")

    def test_value_less_than_step(self) -> None:
        assert round_to_step(Decimal("0.005"), Decimal("0.01")) == Decimal("0")

    def test_zero_step_leaves_value(self) -> None:
        assert round_to_step(Decimal("1.23456789"), Decimal("0")) == Decimal("1.23456789")


class TestMakeSizeRounder:
    @pytest.fixture
    def instrument(self) -> InstrumentInfo:
        return InstrumentInfo(
            symbol="BTC/USDT",
            min_qty=Decimal("0.00001"),
            max_qty=Decimal("10"),
            qty_step=Decimal("0.00001"),
        )

    def test_rounds_down_by_default(self, instrument: InstrumentInfo) -> None:
        assert make_size_rounder(instrument)(Decimal("0.123456")) == Decimal("0.12345")

    def test_half_up(self, instrument: InstrumentInfo) -> None:
        assert make_size_rounder(instrument, "half_up")(Decimal("0.123456")) == Decimal("0.12346")

    def test_clamps_to_max_qty(self, instrument: InstrumentInfo) -> None:
        assert make_size_rounder(instrument)(Decimal("25")) == Decimal("10")

    def test_below_min_qty_becomes_zero(self) -> None:
        instrument = InstrumentInfo(
            symbol="ADA/EUR", min_qty=Decimal("1"), max_qty=Decimal("0"), qty_step=Decimal("0.1")
        )
        rounder = make_size_rounder(instrument)

        assert rounder(Decimal("0.95")) == Decimal("0")
        assert rounder(Decimal("1.05")) == Decimal("1.0")

    def test_unknown_mode_rejected(self, instrument: InstrumentInfo) -> None:
        with pytest.raises(ValueError, match="Unknown rounding mode"):
            make_size_rounder(instrument, "banker")


# ---------------------------------------------------------------------------
# CcxtExchangeClient
# ---------------------------------------------------------------------------


class TestCcxtExchangeClientInit:
    def test_standard_init(self, exchange_settings: ExchangeSettings) -> None:
        client = CcxtExchangeClient(exchange_settings)
        assert client.exchange_id == "binance"
        assert client._exchange.enableRateLimit is True

    def test_exchange_override(self, exchange_settings: ExchangeSettings) -> None:
        client = CcxtExchangeClient(exchange_settings, "KuCoin")
        assert client.exchange_id == "kucoin"

    def test_unknown_exchange_rejected(self, exchange_settings: ExchangeSettings) -> None:
        with pytest.raises(InvalidConfigurationError, match="not supported"):
            CcxtExchangeClient(exchange_settings, "no-such-exchange")

    def test_api_keys_passed_when_configured(self) -> None:
        settings = ExchangeSettings(
            exchange_id="binance",
            api_key="test-key",  # type: ignore[arg-type]
            api_secret="test-secret",  # type: ignore[arg-type]
        )
        client = CcxtExchangeClient(settings)
        assert client._exchange.apiKey == "test-key"
        assert client._exchange.secret == "test-secret"


class TestGetInstrumentInfo:
    @pytest.mark.asyncio
    async def test_btc_instrument_info(self, client: CcxtExchangeClient) -> None:
        info = await client.get_instrument_info("BTC/USDT")
        assert info.symbol == "BTC/USDT"
        assert info.min_qty == Decimal("0.00001")
        assert info.max_qty == Decimal("9000")
        assert info.qty_step == Decimal("0.00001")

    @pytest.mark.asyncio
    async def test_missing_limits_default_to_zero(self, client: CcxtExchangeClient) -> None:
        info = await client.get_instrument_info("ADA/EUR")
        assert info.max_qty == Decimal("0")
        assert info.qty_step == Decimal("0.1")

    @pytest.mark.asyncio
    async def test_unknown_symbol(self, client: CcxtExchangeClient) -> None:
        with pytest.raises(InvalidConfigurationError, match="not found"):
            await client.get_instrument_info("DOGE/XYZ")

    @pytest.mark.asyncio
    async def test_loads_markets_when_empty(self, exchange_settings: ExchangeSettings) -> None:
        client = CcxtExchangeClient(exchange_settings)
        client._exchange.load_markets = AsyncMock(return_value=MOCK_MARKETS)

        info = await client.get_instrument_info("BTC/USDT")

        client._exchange.load_markets.assert_awaited_once()
        assert info.qty_step == Decimal("0.00001")


class TestConnectionLifecycle:
    @pytest.mark.asyncio
    async def test_connect_loads_markets(self, exchange_settings: ExchangeSettings) -> None:
        client = CcxtExchangeClient(exchange_settings)
        client._exchange.load_markets = AsyncMock(return_value=MOCK_MARKETS)
        client._exchange.close = AsyncMock()

        await client.connect()
        await client.close()

        assert client._markets == MOCK_MARKETS
        client._exchange.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_fetch_ohlcv_forwards_arguments(self, client: CcxtExchangeClient) -> None:
        rows = [[1704067200000, 100.0, 101.0, 99.0, 100.5, 12.5]]
        client._exchange.fetch_ohlcv = AsyncMock(return_value=rows)

        result = await client.fetch_ohlcv("BTC/USDT", "1m", since=1704067200000, limit=500)

        assert result == rows
        client._exchange.fetch_ohlcv.assert_awaited_once_with(
            "BTC/USDT", "1m", since=1704067200000, limit=500, params={}
        )


class TestAccountHistory:
    @pytest.mark.asyncio
    async def test_fetch_my_trades_forwards_arguments(self, client: CcxtExchangeClient) -> None:
        trades = [{"id": "1", "symbol": "BTC/USDT", "timestamp": 1704067200000}]
        client._exchange.fetch_my_trades = AsyncMock(return_value=trades)

        result = await client.fetch_my_trades("BTC/USDT", since=1704067200000, limit=100)

        assert result == trades
        client._exchange.fetch_my_trades.assert_awaited_once_with(
            "BTC/USDT", since=1704067200000, limit=100, params={}
        )

    @pytest.mark.asyncio
    async def test_fetch_deposits_all_currencies(self, client: CcxtExchangeClient) -> None:
        client._exchange.fetch_deposits = AsyncMock(return_value=[])

        await client.fetch_deposits(since=1704067200000)

        client._exchange.fetch_deposits.assert_awaited_once_with(
            None, since=1704067200000, limit=None, params={}
        )

    @pytest.mark.asyncio
    async def test_fetch_withdrawals_passes_params(self, client: CcxtExchangeClient) -> None:
        client._exchange.fetch_withdrawals = AsyncMock(return_value=[])

        await client.fetch_withdrawals("BTC", params={"endTime": 1})

        client._exchange.fetch_withdrawals.assert_awaited_once_with(
            "BTC", since=None, limit=None, params={"endTime": 1}
        )
