"""Exchange client implementation via ccxt async.

Wraps any ccxt.async_support exchange class (binance, kucoin, ...) with
market loading, instrument info extraction, account history access and
async cleanup.
"""

from decimal import Decimal

import ccxt.async_support as ccxt_async

from ldca.config import ExchangeSettings
from ldca.exceptions import InvalidConfigurationError
from ldca.exchange.client import ExchangeClient
from ldca.exchange.types import InstrumentInfo
from ldca.logging import get_logger

logger = get_logger(__name__)


class CcxtExchangeClient(ExchangeClient):
    """Concrete exchange client using ccxt async.

    Args:
        settings: Exchange settings; exchange_id selects the ccxt class.
        exchange_id: Overrides settings.exchange_id when given.

    Raises:
        InvalidConfigurationError: If the exchange id is not supported by ccxt.
    """

    def __init__(self, settings: ExchangeSettings, exchange_id: str | None = None) -> None:
        self._settings = settings
        self._exchange_id = (exchange_id or settings.exchange_id).lower()

        exchange_class = getattr(ccxt_async, self._exchange_id, None)
        if exchange_class is None:
            raise InvalidConfigurationError(f"Exchange '{self._exchange_id}' is not supported by ccxt")

        config: dict = {
            "enableRateLimit": True,
            "options": {
                "defaultType": "spot",
            },
        }
        api_key = settings.api_key.get_secret_value()
        if api_key:
            config["apiKey"] = api_key
            config["secret"] = settings.api_secret.get_secret_value()

        self._exchange = exchange_class(config)
        if settings.sandbox:
            self._exchange.set_sandbox_mode(True)
        self._markets: dict = {}

    @property
    def exchange_id(self) -> str:
        return self._exchange_id

    async def connect(self) -> None:
        """Initialize connection by loading markets."""
        logger.info("connecting_to_exchange", exchange=self._exchange_id, sandbox=self._settings.sandbox)
        await self._load_markets()
        logger.info("exchange_connected", exchange=self._exchange_id, market_count=len(self._markets))

    async def close(self) -> None:
        """Clean up ccxt async resources. CRITICAL: must be called to avoid resource leaks."""
        logger.info("closing_exchange_connection", exchange=self._exchange_id)
        await self._exchange.close()
        logger.info("exchange_connection_closed", exchange=self._exchange_id)

    async def _load_markets(self) -> dict:
        self._markets = await self._exchange.load_markets()
        return self._markets

    async def get_instrument_info(self, symbol: str) -> InstrumentInfo:
        """Extract instrument constraints from cached market data.

        All numeric values are converted to Decimal for precision.

        Raises:
            InvalidConfigurationError: If the symbol is not listed on the exchange.
        """
        if not self._markets:
            await self._load_markets()

        market = self._markets.get(symbol)
        if not market:
            raise InvalidConfigurationError(
                f"Symbol {symbol} not found in {self._exchange_id} markets"
            )

        amount_limits = market.get("limits", {}).get("amount", {})
        precision = market.get("precision", {})

        return InstrumentInfo(
            symbol=symbol,
            min_qty=Decimal(str(amount_limits.get("min") or 0)),
            max_qty=Decimal(str(amount_limits.get("max") or 0)),
            qty_step=Decimal(str(precision.get("amount") or 0)),
        )

    async def fetch_ohlcv(
        self,
        symbol: str,
        timeframe: str = "1m",
        since: int | None = None,
        limit: int | None = None,
        params: dict | None = None,
    ) -> list[list]:
        """Fetch OHLCV rows via ccxt."""
        return await self._exchange.fetch_ohlcv(
            symbol, timeframe, since=since, limit=limit, params=params or {}
        )

    async def fetch_my_trades(
        self,
        symbol: str | None = None,
        since: int | None = None,
        limit: int | None = None,
        params: dict | None = None,
    ) -> list[dict]:
        return await self._exchange.fetch_my_trades(symbol, since=since, limit=limit, params=params or {})

    async def fetch_deposits(
        self,
        code: str | None = None,
        since: int | None = None,
        limit: int | None = None,
        params: dict | None = None,
    ) -> list[dict]:
        return await self._exchange.fetch_deposits(code, since=since, limit=limit, params=params or {})

    async def fetch_withdrawals(
        self,
        code: str | None = None,
        since: int | None = None,
        limit: int | None = None,
        params: dict | None = None,
    ) -> list[dict]:
        return await self._exchange.fetch_withdrawals(code, since=since, limit=limit, params=params or {})
