"""Command-line entry point for the L-DCA calculator.

Usage:
    ldca parameters.json
    ldca parameters.json --sweep-leverage 1,2,5,10
    ldca parameters.json --report reports/result.json --budget-csv reports/budget.csv
    ldca parameters.json --budget-csv
    ldca accounting.json --accounting

Environment settings (exchange, download, report) are read from the
environment and .env via AppSettings; the calculation itself is described by
the JSON parameters file.
"""

import argparse
import asyncio
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path

from ldca.config import AccountingParameters, AppSettings, SimulationParameters
from ldca.exceptions import LdcaError
from ldca.logging import get_logger, setup_logging
from ldca.reports.budget import BudgetReportAccumulator
from ldca.runner import (
    budget_reports_from_result,
    format_result,
    run_accounting,
    run_ldca,
    run_leverage_sweep,
    write_json_report,
)
from ldca.simulation.models import LdcaConfig


# Value of a bare --budget-csv. argparse does not pass const through type, so it stays a str.
DEFAULT_BUDGET_CSV = "<output-dir>"


def budget_csv_path(requested: Path | str, output_dir: str, config: LdcaConfig) -> Path:
    """Resolve the budget CSV target; the bare flag names a file in output_dir."""
    if requested != DEFAULT_BUDGET_CSV:
        return Path(requested)
    pair = config.symbol_pair
    return Path(output_dir) / f"budget_{pair.base}_{pair.quote}_{config.order_side.value}.csv"


def _parse_leverages(value: str) -> list[Decimal]:
    try:
        return [Decimal(part.strip()) for part in value.split(",") if part.strip()]
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"Invalid leverage list '{value}', expected e.g. 1,2,5")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ldca",
        description="Calculate the outcome of a (leveraged) dollar-cost-averaging strategy on historical candles.",
    )
    parser.add_argument("parameters", type=Path, help="Path to the JSON parameters file.")
    parser.add_argument(
        "--sweep-leverage",
        type=_parse_leverages,
        default=None,
        metavar="LEVERAGES",
        help="Comma-separated leverages to compare on one candle download, e.g. 1,2,5.",
    )
    parser.add_argument(
        "--report",
        type=Path,
        default=None,
        metavar="PATH",
        help="Write the result (or sweep results) as JSON to PATH.",
    )
    parser.add_argument(
        "--budget-csv",
        type=Path,
        nargs="?",
        const=DEFAULT_BUDGET_CSV,
        default=None,
        metavar="PATH",
        help=(
            "Write a budget CSV with one row per order (runs without leverage only). "
            "Without PATH the file goes to REPORT_OUTPUT_DIR."
        ),
    )
    parser.add_argument(
        "--accounting",
        action="store_true",
        help=(
            "Treat the parameters file as accounting parameters: download the account's trades, "
            "deposits and withdrawals and write the monthly summary CSVs to REPORT_OUTPUT_DIR. "
            "Requires EXCHANGE_API_KEY and EXCHANGE_API_SECRET."
        ),
    )
    return parser


def check_arguments(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    """Reject option combinations argparse cannot express. Exits via parser.error."""
    if args.accounting and (
        args.sweep_leverage is not None or args.report is not None or args.budget_csv is not None
    ):
        parser.error("--accounting cannot be combined with --sweep-leverage, --report or --budget-csv")


async def _run_accounting(args: argparse.Namespace, settings: AppSettings) -> None:
    parameters = AccountingParameters.load_from_json(args.parameters)
    ledger = await run_accounting(parameters, settings)

    exchange_id = (parameters.exchange or settings.exchange.exchange_id).lower()
    paths = ledger.write_reports(
        settings.report.output_dir, exchange_id, parameters.start_date, parameters.end_date
    )
    for name, path in paths.items():
        print(f"{name.capitalize()} written to {path}")


async def run(args: argparse.Namespace) -> int:
    """Run the calculation described by the parsed arguments. Returns the exit code."""
    settings = AppSettings()
    setup_logging(settings.log_level)
    logger = get_logger("ldca.main")

    try:
        if args.accounting:
            await _run_accounting(args, settings)
            return 0

        parameters = SimulationParameters.load_from_json(args.parameters)
        config = parameters.to_config(settings.simulation)

        if args.sweep_leverage:
            sweep = await run_leverage_sweep(parameters, args.sweep_leverage, settings)
            for params, result, error in sweep.results:
                if result is None:
                    print(f"Leverage {params['leverage']}: failed ({error})")
                else:
                    print(f"Leverage {params['leverage']}: profit {result.profit_percent:.3f}%")
            if args.report is not None:
                write_json_report(sweep.to_dict(), args.report)
            return 0

        result = await run_ldca(parameters, settings)
        print(format_result(config, result))

        if args.report is not None:
            write_json_report({"config": config.to_dict(), "result": result.to_dict()}, args.report)

        if args.budget_csv is not None:
            accumulator = BudgetReportAccumulator(settings.report.include_fee_columns)
            for report in budget_reports_from_result(config, result):
                accumulator.add(report)
            accumulator.write_csv(budget_csv_path(args.budget_csv, settings.report.output_dir, config))
    except FileNotFoundError as e:
        logger.error("parameters_file_not_found", error=str(e))
        return 2
    except LdcaError as e:
        logger.error("calculation_failed", error_type=type(e).__name__, error=str(e))
        return 1

    return 0


def main(argv: list[str] | None = None) -> None:
    """Synchronous entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    check_arguments(parser, args)
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
