"""Chunked historical candle download with retry and progress logging.

Walks FORWARD from the start time in fixed-size chunks (14 days of 1m candles
by default), paginating inside each chunk with ``since``/``limit``. Candles are
deduplicated by timestamp and returned in ascending order, ready to be fed
into the simulation engine.
"""

import asyncio
import math
import time
from collections.abc import Callable
from datetime import datetime, timedelta

import ccxt.async_support

from ldca.config import DownloadSettings
from ldca.exceptions import CandleDownloadError, ExchangeDataError, SanityCheckError
from ldca.exchange.client import ExchangeClient
from ldca.logging import get_logger
from ldca.models import Candle

logger = get_logger(__name__)

_TIMEFRAME_UNITS = {
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
}


def timeframe_to_timedelta(timeframe: str) -> timedelta:
    """Convert a ccxt timeframe string (``1m``, ``4h``, ``1d``) to a timedelta.

    Raises:
        SanityCheckError: If the timeframe has no known mapping.
    """
    unit = timeframe[-1:]
    amount = timeframe[:-1]
    if unit not in _TIMEFRAME_UNITS or not amount.isdigit() or int(amount) <= 0:
        raise SanityCheckError(f"Unsupported timeframe '{timeframe}'")
    return _TIMEFRAME_UNITS[unit] * int(amount)


def _to_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


class CandleDownloader:
    """Downloads a candle series for one symbol over a time range.

    Usage:
        downloader = CandleDownloader(exchange, settings)
        candles = await downloader.download("BTC/USDT", start, end)
    """

    def __init__(self, exchange: ExchangeClient, settings: DownloadSettings) -> None:
        self._exchange = exchange
        self._settings = settings
        self._step = timeframe_to_timedelta(settings.timeframe)

    async def download(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
        progress_callback: Callable | None = None,
    ) -> list[Candle]:
        """Fetch all candles with ``start <= timestamp < end``.

        Args:
            symbol: ccxt unified symbol, e.g. ``BTC/USDT``.
            start: Inclusive UTC start time.
            end: Exclusive UTC end time.
            progress_callback: Optional async callable ``(chunk, total_chunks)``.

        Raises:
            CandleDownloadError: If a request still fails after all retries.
        """
        started = time.monotonic()
        chunk = timedelta(days=self._settings.chunk_days)
        total_chunks = max(1, math.ceil((end - start) / chunk))

        candles: dict[int, Candle] = {}
        chunk_start = start
        chunk_index = 0
        while chunk_start < end:
            chunk_index += 1
            chunk_end = min(chunk_start + chunk, end)
            rows = await self._fetch_range(symbol, _to_ms(chunk_start), _to_ms(chunk_end))
            for row in rows:
                candles[row[0]] = Candle.from_ohlcv_row(row)

            logger.info(
                "candle_chunk_downloaded",
                symbol=symbol,
                chunk_start=chunk_start.isoformat(),
                chunk_end=chunk_end.isoformat(),
                candles=len(rows),
                progress=f"{chunk_index}/{total_chunks}",
            )
            if progress_callback is not None:
                await progress_callback(chunk_index, total_chunks)
            chunk_start = chunk_end

        result = [candles[ts] for ts in sorted(candles)]
        logger.info(
            "candles_downloaded",
            symbol=symbol,
            candles=len(result),
            total_duration_seconds=round(time.monotonic() - started, 1),
        )
        return result

    async def _fetch_range(self, symbol: str, since_ms: int, until_ms: int) -> list[list]:
        """Walk forward from since_ms to until_ms, one batch per request."""
        step_ms = int(self._step.total_seconds() * 1000)
        rows: list[list] = []
        current = since_ms

        while current < until_ms:
            batch = await self._fetch_with_retry(
                self._exchange.fetch_ohlcv,
                symbol,
                timeframe=self._settings.timeframe,
                since=current,
                limit=self._settings.batch_limit,
            )
            if not batch:
                break

            batch = [r for r in batch if since_ms <= r[0] < until_ms]
            if not batch:
                break
            rows.extend(batch)

            newest_ts = max(r[0] for r in batch)
            if newest_ts < current:
                break  # No progress guard
            current = newest_ts + step_ms

            await asyncio.sleep(self._settings.fetch_batch_delay)

        return rows

    async def _fetch_with_retry(self, fetch_fn: Callable, *args, **kwargs) -> list:
        return await fetch_with_retry(self._settings, CandleDownloadError, fetch_fn, *args, **kwargs)


async def fetch_with_retry(
    settings: DownloadSettings,
    error_cls: type[ExchangeDataError],
    fetch_fn: Callable,
    *args,
    **kwargs,
) -> list:
    """Execute a fetch function with exponential backoff retry.

    Retries up to max_retries times with delays: 1s, 2s, 4s, 8s, ...
    Rate limit errors wait three times longer. Authentication and
    not-supported errors are raised as error_cls at once; any other ccxt
    error is raised as error_cls after the final attempt.
    """
    max_retries = settings.max_retries
    base_delay = settings.retry_base_delay

    for attempt in range(max_retries):
        try:
            return await fetch_fn(*args, **kwargs)
        except (ccxt.async_support.AuthenticationError, ccxt.async_support.NotSupported) as e:
            logger.error("fetch_rejected", error_type=type(e).__name__, error=str(e))
            raise error_cls(f"Exchange rejected the request: {e}") from e
        except ccxt.async_support.BaseError as e:
            if attempt == max_retries - 1:
                logger.error(
                    "fetch_failed_permanently",
                    error=str(e),
                    attempts=max_retries,
                )
                raise error_cls(f"Download failed after {max_retries} attempts: {e}") from e

            delay = base_delay * (2**attempt)

            if isinstance(e, ccxt.async_support.RateLimitExceeded):
                delay *= 3
                logger.warning(
                    "rate_limit_exceeded",
                    attempt=attempt + 1,
                    max_retries=max_retries,
                    delay=delay,
                )
            else:
                logger.warning(
                    "fetch_retry",
                    attempt=attempt + 1,
                    max_retries=max_retries,
                    delay=delay,
                    error=str(e),
                )

            await asyncio.sleep(delay)

    return []
