"""Account history download: executed trades, deposits and withdrawals.

Walks FORWARD through the requested period in ``chunk_days`` windows and
paginates inside each window with ``since``/``limit``, the same way candles
are downloaded. Records are deduplicated by exchange id and returned in
ascending time order, ready for the AccountingLedger. Requires API keys with
read permission.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from ldca.config import DownloadSettings
from ldca.data.fetcher import fetch_with_retry
from ldca.exceptions import AccountHistoryError
from ldca.exchange.client import ExchangeClient
from ldca.logging import get_logger
from ldca.reports.accounting import DepositRecord, TradeRecord, WithdrawalRecord

logger = get_logger(__name__)


def _to_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _record_key(item: dict) -> object:
    if item.get("id"):
        return item.get("symbol") or item.get("currency"), item["id"]
    return item["timestamp"], item.get("symbol") or item.get("currency"), str(item.get("amount"))


@dataclass
class AccountHistory:
    """Records of one account over a period, each list in ascending time order."""

    trades: list[TradeRecord] = field(default_factory=list)
    deposits: list[DepositRecord] = field(default_factory=list)
    withdrawals: list[WithdrawalRecord] = field(default_factory=list)


class AccountHistoryDownloader:
    """Downloads an account's trades and transfers over a time range.

    Usage:
        downloader = AccountHistoryDownloader(exchange, settings)
        history = await downloader.download(start, end, symbols=["BTC/EUR"])
    """

    def __init__(self, exchange: ExchangeClient, settings: DownloadSettings) -> None:
        self._exchange = exchange
        self._settings = settings

    async def download(
        self,
        start: datetime,
        end: datetime,
        symbols: tuple[str, ...] | list[str] = (),
    ) -> AccountHistory:
        """Fetch all records with ``start <= timestamp < end``.

        Args:
            start: Inclusive UTC start time.
            end: Exclusive UTC end time.
            symbols: Markets to download trades for; empty asks the exchange
                for the trades of every market.

        Raises:
            AccountHistoryError: If a request still fails after all retries,
                or the exchange rejects it (missing keys, unsupported call).
        """
        started = time.monotonic()
        since_ms, until_ms = _to_ms(start), _to_ms(end)

        raw_trades: list[dict] = []
        for symbol in symbols or [None]:
            raw_trades.extend(
                await self._fetch_all(self._exchange.fetch_my_trades, symbol, since_ms, until_ms, "trades")
            )
        raw_deposits = await self._fetch_all(self._exchange.fetch_deposits, None, since_ms, until_ms, "deposits")
        raw_withdrawals = await self._fetch_all(
            self._exchange.fetch_withdrawals, None, since_ms, until_ms, "withdrawals"
        )

        history = AccountHistory(
            trades=[TradeRecord.from_ccxt(t) for t in raw_trades],
            deposits=[DepositRecord.from_ccxt(d) for d in raw_deposits],
            withdrawals=[WithdrawalRecord.from_ccxt(w) for w in raw_withdrawals],
        )
        logger.info(
            "account_history_downloaded",
            trades=len(history.trades),
            deposits=len(history.deposits),
            withdrawals=len(history.withdrawals),
            total_duration_seconds=round(time.monotonic() - started, 1),
        )
        return history

    async def _fetch_all(
        self,
        fetch_fn: Callable,
        symbol_or_code: str | None,
        since_ms: int,
        until_ms: int,
        kind: str,
    ) -> list[dict]:
        """Fetch one record kind chunk by chunk; dedupe and sort by timestamp."""
        chunk_ms = int(timedelta(days=self._settings.chunk_days).total_seconds() * 1000)
        records: dict[object, dict] = {}

        chunk_start = since_ms
        while chunk_start < until_ms:
            chunk_end = min(chunk_start + chunk_ms, until_ms)
            rows = await self._fetch_range(fetch_fn, symbol_or_code, chunk_start, chunk_end)
            for row in rows:
                records[_record_key(row)] = row
            logger.debug(
                "account_chunk_downloaded",
                kind=kind,
                symbol=symbol_or_code,
                chunk_start=chunk_start,
                chunk_end=chunk_end,
                records=len(rows),
            )
            chunk_start = chunk_end

        return sorted(records.values(), key=lambda r: r["timestamp"])

    async def _fetch_range(
        self, fetch_fn: Callable, symbol_or_code: str | None, since_ms: int, until_ms: int
    ) -> list[dict]:
        rows: list[dict] = []
        current = since_ms

        while current < until_ms:
            batch = await fetch_with_retry(
                self._settings,
                AccountHistoryError,
                fetch_fn,
                symbol_or_code,
                since=current,
                limit=self._settings.batch_limit,
            )
            batch = [r for r in batch or [] if since_ms <= r["timestamp"] < until_ms]
            if not batch:
                break
            rows.extend(batch)

            newest_ts = max(r["timestamp"] for r in batch)
            if newest_ts < current:
                break  # No progress guard
            current = newest_ts + 1

            await asyncio.sleep(self._settings.fetch_batch_delay)

        return rows
