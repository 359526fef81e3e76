"""Configuration system using pydantic-settings with environment variable loading.

Settings groups configure the environment (exchange access, candle download,
reports). The parameters of a single calculation are read from a JSON file
into SimulationParameters.
"""

import re
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Literal, Self

from pydantic import BaseModel, ConfigDict, SecretStr, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_pascal
from pydantic_settings import BaseSettings, SettingsConfigDict

from ldca.exceptions import InvalidConfigurationError
from ldca.models import OrderSide, SymbolPair
from ldca.simulation.models import LdcaConfig, SellSizeMode

# d.hh:mm:ss or hh:mm:ss, as written in parameter files and CSV reports
_PERIOD_RE = re.compile(r"^(?:(?P<days>\d+)\.)?(?P<hours>\d{1,2}):(?P<minutes>\d{2}):(?P<seconds>\d{2})$")


class ExchangeSettings(BaseSettings):
    """Exchange connection settings. Market data needs no API keys."""

    model_config = SettingsConfigDict(env_prefix="EXCHANGE_")

    exchange_id: str = "binance"  # ccxt exchange id
    api_key: SecretStr = SecretStr("")
    api_secret: SecretStr = SecretStr("")
    sandbox: bool = False


class DownloadSettings(BaseSettings):
    """Historical candle download configuration.

    Candles are requested in chunks so progress can be reported regularly.
    All fields configurable via DOWNLOAD_ environment variable prefix.
    """

    model_config = SettingsConfigDict(env_prefix="DOWNLOAD_")

    timeframe: str = "1m"
    chunk_days: int = 14
    batch_limit: int = 1000  # candles per request
    max_retries: int = 5
    retry_base_delay: float = 1.0
    fetch_batch_delay: float = 0.1


class SimulationSettings(BaseSettings):
    """Simulation defaults applied when the parameter file is silent."""

    model_config = SettingsConfigDict(env_prefix="SIMULATION_")

    sell_size_mode: SellSizeMode = SellSizeMode.BASE
    size_rounding: Literal["down", "half_up"] = "down"


class ReportSettings(BaseSettings):
    """CSV report output configuration."""

    model_config = SettingsConfigDict(env_prefix="REPORT_")

    output_dir: str = "reports"
    include_fee_columns: bool = True


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    exchange: ExchangeSettings = ExchangeSettings()
    download: DownloadSettings = DownloadSettings()
    simulation: SimulationSettings = SimulationSettings()
    report: ReportSettings = ReportSettings()


def parse_period(value: object) -> object:
    """Accept ``d.hh:mm:ss`` / ``hh:mm:ss`` strings in addition to pydantic's formats."""
    if isinstance(value, str):
        match = _PERIOD_RE.match(value.strip())
        if match:
            return timedelta(
                days=int(match.group("days") or 0),
                hours=int(match.group("hours")),
                minutes=int(match.group("minutes")),
                seconds=int(match.group("seconds")),
            )
    return value


class ParametersFile(BaseModel):
    """Base of the JSON parameter files (PascalCase or snake_case keys)."""

    model_config = ConfigDict(alias_generator=to_pascal, populate_by_name=True, frozen=True)

    @classmethod
    def load_from_json(cls, file_path: str | Path) -> Self:
        """Load and validate parameters from a JSON file.

        Raises:
            FileNotFoundError: If the file does not exist.
            InvalidConfigurationError: If the content is not valid parameters.
        """
        path = Path(file_path)
        if not path.is_file():
            raise FileNotFoundError(f"The specified file '{path}' does not exist.")

        try:
            return cls.model_validate_json(path.read_text(encoding="utf-8"))
        except ValidationError as e:
            raise InvalidConfigurationError(f"Invalid parameters in '{path}': {e}") from e


class SimulationParameters(ParametersFile):
    """Parameters of one L-DCA calculation, loaded from a JSON file.

    Keys may be written in snake_case or PascalCase, e.g.::

        {
          "Exchange": "binance",
          "SymbolPair": "BTC/EUR",
          "StartTimeUtc": "2024-01-01 00:00:00",
          "EndTimeUtc": "2025-01-01 00:00:00",
          "Period": "1.00:00:00",
          "QuoteSize": 10.0,
          "OrderSide": "Buy",
          "TradeFeePercent": 0.1,
          "Leverage": 2.0
        }

    buys 10 EUR worth of BTC every day of 2024 with a 0.1% trading fee and 2x
    leverage. Naive timestamps are taken as UTC.
    """

    exchange: str | None = None
    symbol_pair: SymbolPair
    start_time_utc: datetime
    end_time_utc: datetime
    period: timedelta
    quote_size: Decimal
    order_side: OrderSide
    trade_fee_percent: Decimal = Decimal("0.1")
    leverage: Decimal = Decimal("1")
    rollover_fee_percent: Decimal = Decimal("0")
    rollover_period: timedelta = timedelta(hours=8)
    sell_size_mode: SellSizeMode | None = None

    @field_validator("symbol_pair", mode="before")
    @classmethod
    def _parse_symbol_pair(cls, value: object) -> object:
        if isinstance(value, str):
            return SymbolPair.parse(value)
        return value

    @field_validator("order_side", "sell_size_mode", mode="before")
    @classmethod
    def _lowercase_enum(cls, value: object) -> object:
        if isinstance(value, str):
            return value.lower()
        return value

    @field_validator("period", "rollover_period", mode="before")
    @classmethod
    def _parse_period(cls, value: object) -> object:
        return parse_period(value)

    @field_validator("start_time_utc", "end_time_utc")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @field_validator("quote_size")
    @classmethod
    def _positive_size(cls, value: Decimal) -> Decimal:
        if value <= 0:
            raise ValueError("must be a positive number")
        return value

    @field_validator("period", "rollover_period")
    @classmethod
    def _positive_period(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            raise ValueError("must be greater than zero")
        return value

    @field_validator("trade_fee_percent", "rollover_fee_percent")
    @classmethod
    def _non_negative_fee(cls, value: Decimal) -> Decimal:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @field_validator("leverage")
    @classmethod
    def _leverage_at_least_one(cls, value: Decimal) -> Decimal:
        if value < 1:
            raise ValueError("must not be smaller than 1.0")
        return value

    @model_validator(mode="after")
    def _time_range(self) -> "SimulationParameters":
        if self.end_time_utc <= self.start_time_utc:
            raise ValueError("EndTimeUtc must be after StartTimeUtc")
        return self

    def to_config(self, settings: SimulationSettings | None = None) -> LdcaConfig:
        """Build the simulation configuration; percentages become fractions."""
        if settings is None:
            settings = SimulationSettings()
        return LdcaConfig(
            symbol_pair=self.symbol_pair,
            order_side=self.order_side,
            quote_size=self.quote_size,
            period=self.period,
            trade_fee=self.trade_fee_percent / Decimal("100"),
            leverage=self.leverage,
            rollover_fee=self.rollover_fee_percent / Decimal("100"),
            rollover_period=self.rollover_period,
            sell_size_mode=self.sell_size_mode or settings.sell_size_mode,
        )


class AccountingParameters(ParametersFile):
    """Parameters of a monthly accounting summary, loaded from a JSON file::

        {
          "Exchange": "binance",
          "StartDate": "2025-01-01",
          "EndDate": "2025-12-31",
          "Symbols": ["BTC/EUR", "ETH/EUR"]
        }

    covers the whole of 2025. Both dates are inclusive UTC days. Symbols lists
    the markets whose trades are downloaded; leave it empty on exchanges that
    return the trades of all markets at once.
    """

    exchange: str | None = None
    start_date: date
    end_date: date
    symbols: tuple[str, ...] = ()

    @field_validator("symbols")
    @classmethod
    def _parse_symbols(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(str(SymbolPair.parse(symbol)) for symbol in value)

    @model_validator(mode="after")
    def _date_range(self) -> "AccountingParameters":
        if self.end_date < self.start_date:
            raise ValueError("EndDate must not be before StartDate")
        return self

    @property
    def start_time_utc(self) -> datetime:
        return datetime.combine(self.start_date, time(0), tzinfo=timezone.utc)

    @property
    def end_time_utc(self) -> datetime:
        """Exclusive end: midnight after end_date."""
        return datetime.combine(self.end_date + timedelta(days=1), time(0), tzinfo=timezone.utc)
