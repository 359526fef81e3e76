"""High-level entry points for running L-DCA calculations.

Provides run_ldca() for a single calculation, run_leverage_sweep() for
comparing several leverages on one candle download and run_accounting() for
a monthly summary of an exchange account. The calculations read the pair's
lot size to build the order-size rounder and download the candle series; the
accounting run downloads the account history. All of them always close the
exchange connection afterwards.
"""

import json
import time
from collections.abc import Callable
from decimal import Decimal
from pathlib import Path

from ldca.config import AccountingParameters, AppSettings, SimulationParameters
from ldca.data.account import AccountHistoryDownloader
from ldca.data.fetcher import CandleDownloader
from ldca.exceptions import InvalidConfigurationError
from ldca.exchange.ccxt_client import CcxtExchangeClient
from ldca.exchange.client import ExchangeClient
from ldca.exchange.types import make_size_rounder
from ldca.logging import get_logger
from ldca.models import Candle, OrderSide
from ldca.reports.accounting import AccountingLedger
from ldca.reports.budget import BudgetReport
from ldca.simulation.engine import LdcaSimulator
from ldca.simulation.models import LdcaConfig, LdcaResult, SweepResult
from ldca.simulation.sweep import ParameterSweep

logger = get_logger(__name__)


async def load_market_data(
    parameters: SimulationParameters,
    settings: AppSettings,
    exchange: ExchangeClient | None = None,
) -> tuple[list[Candle], Callable[[Decimal], Decimal]]:
    """Download the candle series and build the order-size rounder.

    Args:
        parameters: Run parameters (pair and time range).
        settings: Application settings (exchange, download, rounding mode).
        exchange: Client to use instead of a new CcxtExchangeClient.

    Returns:
        Tuple of (candles, round_fn).
    """
    if exchange is None:
        exchange = CcxtExchangeClient(settings.exchange, parameters.exchange)

    symbol = str(parameters.symbol_pair)
    await exchange.connect()
    try:
        instrument = await exchange.get_instrument_info(symbol)
        round_fn = make_size_rounder(instrument, settings.simulation.size_rounding)
        logger.info(
            "instrument_loaded",
            symbol=symbol,
            qty_step=str(instrument.qty_step),
            max_qty=str(instrument.max_qty),
        )

        downloader = CandleDownloader(exchange, settings.download)
        candles = await downloader.download(symbol, parameters.start_time_utc, parameters.end_time_utc)
    finally:
        await exchange.close()

    if not candles:
        raise InvalidConfigurationError(
            f"No candles available for {symbol} between "
            f"{parameters.start_time_utc.isoformat()} and {parameters.end_time_utc.isoformat()}"
        )
    return candles, round_fn


async def run_ldca(
    parameters: SimulationParameters,
    settings: AppSettings | None = None,
    exchange: ExchangeClient | None = None,
) -> LdcaResult:
    """Run a single L-DCA calculation.

    Args:
        parameters: Run parameters loaded from the parameters file.
        settings: Application settings. Defaults to environment-loaded settings.
        exchange: Exchange client override (tests, custom exchanges).

    Returns:
        The simulation result.
    """
    if settings is None:
        settings = AppSettings()

    config = parameters.to_config(settings.simulation)
    start_time = time.monotonic()

    logger.info(
        "run_ldca_starting",
        symbol_pair=str(config.symbol_pair),
        order_side=config.order_side.value,
        quote_size=str(config.quote_size),
        period=str(config.period),
        leverage=str(config.leverage),
        start=parameters.start_time_utc.isoformat(),
        end=parameters.end_time_utc.isoformat(),
    )

    candles, round_fn = await load_market_data(parameters, settings, exchange)
    result = LdcaSimulator(config, round_fn).run(candles)

    logger.info(
        "run_ldca_complete",
        orders_placed=result.orders_placed,
        positions_liquidated=result.positions_liquidated,
        total_value=str(result.total_value),
        profit_percent=str(result.profit_percent),
        elapsed_seconds=round(time.monotonic() - start_time, 2),
    )
    return result


async def run_leverage_sweep(
    parameters: SimulationParameters,
    leverages: list[Decimal],
    settings: AppSettings | None = None,
    exchange: ExchangeClient | None = None,
) -> SweepResult:
    """Run the calculation once per leverage on a single candle download.

    Failing leverages are recorded in the SweepResult without aborting the
    others.
    """
    if settings is None:
        settings = AppSettings()
    if not leverages:
        raise InvalidConfigurationError("At least one leverage is required for a sweep")

    base_config = parameters.to_config(settings.simulation)
    candles, round_fn = await load_market_data(parameters, settings, exchange)

    sweep = ParameterSweep(round_fn)
    result = sweep.run(candles, base_config, {"leverage": list(leverages)})

    best = result.best
    logger.info(
        "run_leverage_sweep_complete",
        combinations=len(result.results),
        successful=result.successful_count,
        best_leverage=str(best[0]["leverage"]) if best else None,
        best_profit_percent=str(best[1].profit_percent) if best else None,
    )
    return result


async def run_accounting(
    parameters: AccountingParameters,
    settings: AppSettings | None = None,
    exchange: ExchangeClient | None = None,
) -> AccountingLedger:
    """Download an account's history and fill a monthly AccountingLedger.

    Every month from StartDate to EndDate gets a bucket, including months
    without activity.

    Args:
        parameters: Accounting parameters loaded from the parameters file.
        settings: Application settings. Defaults to environment-loaded settings.
        exchange: Exchange client override (tests, custom exchanges).
    """
    if settings is None:
        settings = AppSettings()
    if exchange is None:
        exchange = CcxtExchangeClient(settings.exchange, parameters.exchange)

    logger.info(
        "run_accounting_starting",
        start=parameters.start_date.isoformat(),
        end=parameters.end_date.isoformat(),
        symbols=list(parameters.symbols),
    )

    await exchange.connect()
    try:
        downloader = AccountHistoryDownloader(exchange, settings.download)
        history = await downloader.download(
            parameters.start_time_utc, parameters.end_time_utc, parameters.symbols
        )
    finally:
        await exchange.close()

    ledger = AccountingLedger()
    ledger.open_month(parameters.start_date)

    # Stable sort: on equal timestamps trades go before deposits before withdrawals.
    entries = [
        *((t, ledger.record_trade) for t in history.trades),
        *((d, ledger.record_deposit) for d in history.deposits),
        *((w, ledger.record_withdrawal) for w in history.withdrawals),
    ]
    for record, add in sorted(entries, key=lambda entry: entry[0].timestamp):
        add(record)

    ledger.open_month(parameters.end_date)

    logger.info(
        "run_accounting_complete",
        months=len(ledger.months),
        trades=len(ledger.trades),
        transfers=len(ledger.transfers),
    )
    return ledger


def format_result(config: LdcaConfig, result: LdcaResult) -> str:
    """Human-readable summary of a calculation for console output."""
    base = config.symbol_pair.base
    quote = config.symbol_pair.quote
    lines = [
        f"Final price: {result.final_price} {quote}",
        "",
    ]
    if config.use_leverage:
        lines.extend(
            [
                f"Final balance: {result.final_quote_balance} {quote}.",
                f"Total fees paid: {result.fees_paid} {result.fee_symbol}.",
                f"Total rollover fees paid: {result.rollover_fees_paid} {quote}.",
                f"Total funds needed: {result.total_invested_amount} {quote}",
                f"Positions liquidated: {result.positions_liquidated} of {result.orders_placed}.",
            ]
        )
    else:
        value_symbol = quote if config.order_side == OrderSide.BUY else base
        lines.extend(
            [
                f"Final balance: {result.final_base_balance} {base}, {result.final_quote_balance} {quote}.",
                f"Total fees paid: {result.fees_paid} {result.fee_symbol}.",
                f"Total value: {result.total_value} {value_symbol}",
            ]
        )
    lines.append(f"Average order price: {result.average_order_price} {quote}.")
    lines.append(f"Profit: {result.profit_percent:.3f}%")
    return "\n".join(lines)


def write_json_report(payload: dict, path: str | Path) -> Path:
    """Write a result dict as indented JSON, creating parent directories."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    logger.info("report_written", path=str(target))
    return target


def budget_reports_from_result(config: LdcaConfig, result: LdcaResult) -> list[BudgetReport]:
    """Turn the order trail of a spot run into one BudgetReport per order.

    Values are in the quote symbol: holdings marked at the order price plus
    the (negative) quote spent, so the value equals the running profit.

    Raises:
        InvalidConfigurationError: For leveraged runs, whose balances exclude
            the open positions.
    """
    if config.use_leverage:
        raise InvalidConfigurationError("Budget reports are only available for runs without leverage")
    if not result.orders:
        return []

    base = config.symbol_pair.base
    quote = config.symbol_pair.quote
    start = result.orders[0].timestamp
    initial_budget = {base: Decimal("0"), quote: Decimal("0")}

    reports = []
    fees = Decimal("0")
    for order in result.orders:
        fees += order.fee
        value = order.base_balance * order.price + order.quote_balance
        reports.append(
            BudgetReport(
                start_time=start,
                end_time=order.timestamp,
                primary_asset=quote,
                initial_value=Decimal("0"),
                final_value=value,
                total_profit=value,
                initial_budget=initial_budget,
                final_budget={base: order.base_balance, quote: order.quote_balance},
                fees_paid={order.fee_symbol: fees},
            )
        )
    return reports
