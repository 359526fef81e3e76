"""Abstract exchange client interface.

Defines the data contract the calculator needs from an exchange: market
metadata and candles for simulations, account trades and transfers for
accounting. Download, simulation and accounting code depends only on this
interface, keeping ccxt-specific details isolated in the concrete
implementation.
"""

from abc import ABC, abstractmethod

from ldca.exchange.types import InstrumentInfo


class ExchangeClient(ABC):
    """Abstract base class for exchange API clients."""

    @abstractmethod
    async def connect(self) -> None:
        """Initialize connection and load markets/instruments."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Clean up resources (CRITICAL for ccxt async)."""
        ...

    @abstractmethod
    async def get_instrument_info(self, symbol: str) -> InstrumentInfo:
        """Get trading constraints for a symbol (lot size, max quantity)."""
        ...

    @abstractmethod
    async def fetch_ohlcv(
        self,
        symbol: str,
        timeframe: str = "1m",
        since: int | None = None,
        limit: int | None = None,
        params: dict | None = None,
    ) -> list[list]:
        """Fetch OHLCV rows ``[timestamp_ms, open, high, low, close, volume]``."""
        ...

    @abstractmethod
    async def fetch_my_trades(
        self,
        symbol: str | None = None,
        since: int | None = None,
        limit: int | None = None,
        params: dict | None = None,
    ) -> list[dict]:
        """Fetch the account's executed trades (ccxt trade structures). Requires API keys."""
        ...

    @abstractmethod
    async def fetch_deposits(
        self,
        code: str | None = None,
        since: int | None = None,
        limit: int | None = None,
        params: dict | None = None,
    ) -> list[dict]:
        """Fetch the account's deposits (ccxt transaction structures). Requires API keys."""
        ...

    @abstractmethod
    async def fetch_withdrawals(
        self,
        code: str | None = None,
        since: int | None = None,
        limit: int | None = None,
        params: dict | None = None,
    ) -> list[dict]:
        """Fetch the account's withdrawals (ccxt transaction structures). Requires API keys."""
        ...
