"""Historical candle and account history download pipelines."""

from ldca.data.account import AccountHistory, AccountHistoryDownloader
from ldca.data.fetcher import CandleDownloader, timeframe_to_timedelta

__all__ = ["AccountHistory", "AccountHistoryDownloader", "CandleDownloader", "timeframe_to_timedelta"]
