"""Tests for CandleDownloader chunking, pagination and retry handling."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, call, patch

import ccxt.async_support as ccxt_async
import pytest

from ldca.config import DownloadSettings
from ldca.data.fetcher import CandleDownloader, timeframe_to_timedelta
from ldca.exceptions import CandleDownloadError, SanityCheckError

START = datetime(2024, 1, 1, tzinfo=timezone.utc)
START_MS = int(START.timestamp() * 1000)
MINUTE_MS = 60_000


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_rows(count: int, offset: int = 0) -> list[list]:
    """One-minute OHLCV rows starting at START + offset minutes."""
    return [
        [START_MS + (offset + i) * MINUTE_MS, 100.0 + i, 101.0 + i, 99.0 + i, 100.5 + i, 2.0]
        for i in range(count)
    ]


def _make_exchange(series: list[list]) -> MagicMock:
    """Exchange whose fetch_ohlcv serves ``limit`` rows at or after ``since``."""

    async def _serve(symbol, timeframe="1m", since=None, limit=None, params=None):
        rows = [row for row in series if since is None or row[0] >= since]
        return rows[:limit] if limit else rows

    exchange = MagicMock()
    exchange.fetch_ohlcv = AsyncMock(side_effect=_serve)
    return exchange


@pytest.fixture
def download_settings(mock_settings) -> DownloadSettings:
    return mock_settings.download


# ---------------------------------------------------------------------------
# timeframe_to_timedelta
# ---------------------------------------------------------------------------


class TestTimeframeToTimedelta:
    @pytest.mark.parametrize(
        "timeframe, expected",
        [
            ("1m", timedelta(minutes=1)),
            ("15m", timedelta(minutes=15)),
            ("4h", timedelta(hours=4)),
            ("1d", timedelta(days=1)),
            ("1w", timedelta(weeks=1)),
        ],
    )
    def test_known_timeframes(self, timeframe: str, expected: timedelta) -> None:
        assert timeframe_to_timedelta(timeframe) == expected

    @pytest.mark.parametrize("timeframe", ["1M", "m", "0m", "xh", ""])
    def test_unsupported_timeframes(self, timeframe: str) -> None:
        with pytest.raises(SanityCheckError):
            timeframe_to_timedelta(timeframe)

    def test_downloader_rejects_bad_timeframe(self) -> None:
        with pytest.raises(SanityCheckError):
            CandleDownloader(MagicMock(), DownloadSettings(timeframe="1y"))


# ---------------------------------------------------------------------------
# Chunking and pagination
# ---------------------------------------------------------------------------


class TestDownload:
    @pytest.mark.asyncio
    async def test_two_day_range_in_daily_chunks(self, download_settings) -> None:
        exchange = _make_exchange(_make_rows(3000))
        downloader = CandleDownloader(exchange, download_settings)

        candles = await downloader.download("BTC/USDT", START, START + timedelta(days=2))

        assert len(candles) == 2880
        assert candles[0].timestamp == START
        assert candles[-1].timestamp == START + timedelta(minutes=2879)
        # Two pages of up to 1000 candles per 1440-candle chunk
        assert exchange.fetch_ohlcv.await_count == 4

    @pytest.mark.asyncio
    async def test_pages_advance_past_newest_candle(self, download_settings) -> None:
        exchange = _make_exchange(_make_rows(1440))
        downloader = CandleDownloader(exchange, download_settings)

        await downloader.download("BTC/USDT", START, START + timedelta(days=1))

        since_values = [c.kwargs["since"] for c in exchange.fetch_ohlcv.await_args_list]
        assert since_values == [START_MS, START_MS + 1000 * MINUTE_MS]

    @pytest.mark.asyncio
    async def test_candle_values_are_decimal(self, download_settings) -> None:
        exchange = _make_exchange(_make_rows(1))
        downloader = CandleDownloader(exchange, download_settings)

        candles = await downloader.download("BTC/USDT", START, START + timedelta(minutes=1))

        assert candles[0].open == Decimal("100.0")
        assert candles[0].close == Decimal("100.5")
        assert candles[0].base_volume == Decimal("2.0")

    @pytest.mark.asyncio
    async def test_deduplicates_and_sorts(self, download_settings) -> None:
        rows = _make_rows(3)
        exchange = _make_exchange([rows[2], rows[0], rows[1], rows[1]])
        downloader = CandleDownloader(exchange, download_settings)

        candles = await downloader.download("BTC/USDT", START, START + timedelta(minutes=3))

        assert [c.timestamp for c in candles] == [START + timedelta(minutes=i) for i in range(3)]

    @pytest.mark.asyncio
    async def test_rows_outside_range_dropped(self, download_settings) -> None:
        exchange = _make_exchange(_make_rows(10))
        downloader = CandleDownloader(exchange, download_settings)

        candles = await downloader.download(
            "BTC/USDT", START + timedelta(minutes=2), START + timedelta(minutes=5)
        )

        assert [c.timestamp for c in candles] == [START + timedelta(minutes=i) for i in (2, 3, 4)]

    @pytest.mark.asyncio
    async def test_no_data(self, download_settings) -> None:
        exchange = _make_exchange([])
        downloader = CandleDownloader(exchange, download_settings)

        candles = await downloader.download("BTC/USDT", START, START + timedelta(days=1))

        assert candles == []
        assert exchange.fetch_ohlcv.await_count == 1

    @pytest.mark.asyncio
    async def test_progress_callback_per_chunk(self, download_settings) -> None:
        exchange = _make_exchange(_make_rows(10))
        downloader = CandleDownloader(exchange, download_settings)
        progress = AsyncMock()

        await downloader.download(
            "BTC/USDT", START, START + timedelta(days=2), progress_callback=progress
        )

        assert progress.await_args_list == [call(1, 2), call(2, 2)]


# ---------------------------------------------------------------------------
# Retry behaviour
# ---------------------------------------------------------------------------


class TestRetry:
    @pytest.mark.asyncio
    async def test_network_error_retried(self, download_settings) -> None:
        exchange = MagicMock()
        exchange.fetch_ohlcv = AsyncMock(side_effect=[ccxt_async.NetworkError("timeout"), _make_rows(5)])
        downloader = CandleDownloader(exchange, download_settings)

        candles = await downloader.download("BTC/USDT", START, START + timedelta(minutes=5))

        assert len(candles) == 5
        assert exchange.fetch_ohlcv.await_count == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, download_settings) -> None:
        exchange = MagicMock()
        exchange.fetch_ohlcv = AsyncMock(side_effect=ccxt_async.ExchangeNotAvailable("down"))
        downloader = CandleDownloader(exchange, download_settings)

        with pytest.raises(CandleDownloadError, match="after 3 attempts") as exc_info:
            await downloader.download("BTC/USDT", START, START + timedelta(minutes=5))

        assert isinstance(exc_info.value.__cause__, ccxt_async.ExchangeNotAvailable)
        assert exchange.fetch_ohlcv.await_count == 3

    @pytest.mark.asyncio
    async def test_rate_limit_waits_longer(self) -> None:
        settings = DownloadSettings(chunk_days=1, max_retries=3, retry_base_delay=1.0, fetch_batch_delay=0.0)
        exchange = MagicMock()
        exchange.fetch_ohlcv = AsyncMock(
            side_effect=[
                ccxt_async.RateLimitExceeded("slow down"),
                ccxt_async.NetworkError("timeout"),
                _make_rows(5),
            ]
        )
        downloader = CandleDownloader(exchange, settings)

        with patch("ldca.data.fetcher.asyncio.sleep", new=AsyncMock()) as sleep:
            await downloader.download("BTC/USDT", START, START + timedelta(minutes=5))

        assert [c.args[0] for c in sleep.await_args_list] == [3.0, 2.0, 0.0]

    @pytest.mark.asyncio
    async def test_non_exchange_errors_propagate(self, download_settings) -> None:
        exchange = MagicMock()
        exchange.fetch_ohlcv = AsyncMock(side_effect=KeyError("timestamp"))
        downloader = CandleDownloader(exchange, download_settings)

        with pytest.raises(KeyError):
            await downloader.download("BTC/USDT", START, START + timedelta(minutes=5))

        assert exchange.fetch_ohlcv.await_count == 1

    @pytest.mark.asyncio
    async def test_authentication_error_not_retried(self, download_settings) -> None:
        exchange = MagicMock()
        exchange.fetch_ohlcv = AsyncMock(side_effect=ccxt_async.AuthenticationError("invalid api key"))
        downloader = CandleDownloader(exchange, download_settings)

        with pytest.raises(CandleDownloadError, match="rejected"):
            await downloader.download("BTC/USDT", START, START + timedelta(minutes=5))

        assert exchange.fetch_ohlcv.await_count == 1
