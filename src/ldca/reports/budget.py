"""Budget report accumulation and CSV rendering.

A trading run produces one BudgetReport per reporting interval. The
accumulator keeps the append-only list of reports and re-renders the whole
table on every update, because a later report may mention an asset that the
earlier ones did not have. Rendering derives the column set from the full
report list each time and keeps no other state, so it is deterministic and
idempotent.

Table layout::

    Report Date Time (UTC),Total Report Period,Value (EUR),Diff last report (EUR),P/L (EUR),Budget Balance BTC,...
    2025-01-01 00:00:00,,1000,0,0,0,1000            <- initial budget (synthetic)
    2025-01-01 01:00:00,01:00:00,1003.5,3.5,3.5,...  <- one row per report
"""

import csv
import io
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path

from ldca.logging import get_logger

logger = get_logger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
SEPARATOR = ","


@dataclass(frozen=True)
class BudgetReport:
    """Budget state of one reporting interval.

    Attributes:
        start_time: Start of the whole run (UTC).
        end_time: Time the report was generated (UTC).
        primary_asset: Asset in which values and profit are expressed.
        initial_value: Value of initial_budget in primary_asset.
        final_value: Value of final_budget in primary_asset.
        total_profit: Profit or loss since start_time in primary_asset.
        initial_budget: Holdings at start_time, asset -> amount.
        final_budget: Holdings at end_time, asset -> amount.
        fees_paid: Fees paid since start_time, asset -> amount.
        total_fees_value: fees_paid expressed in primary_asset, if known.
    """

    start_time: datetime
    end_time: datetime
    primary_asset: str
    initial_value: Decimal
    final_value: Decimal
    total_profit: Decimal
    initial_budget: dict[str, Decimal]
    final_budget: dict[str, Decimal]
    fees_paid: dict[str, Decimal] = field(default_factory=dict)
    total_fees_value: Decimal | None = None


def format_decimal(value: Decimal) -> str:
    """Plain decimal notation, never scientific."""
    return format(value, "f")


def format_period(period: timedelta) -> str:
    """Format as ``hh:mm:ss``, or ``d.hh:mm:ss`` when at least one day long."""
    total_seconds = int(period.total_seconds())
    days, rest = divmod(total_seconds, 86_400)
    hours, rest = divmod(rest, 3_600)
    minutes, seconds = divmod(rest, 60)
    clock = f"{hours:02d}:{minutes:02d}:{seconds:02d}"
    if days >= 1:
        return f"{days}.{clock}"
    return clock


def render_budget_reports(
    reports: list[BudgetReport], include_fee_columns: bool = True
) -> list[list[str]]:
    """Render the cumulative budget table.

    The primary asset is taken from the latest report; the run start and
    initial value from the first one. Cells of assets missing from a
    report are left blank.

    Args:
        reports: All reports so far, in the order they were produced.
        include_fee_columns: Append one "Fees Paid <asset>" column per fee asset.

    Returns:
        Header row followed by the initial-budget row and one row per report.
        Empty input returns only the fixed header columns.
    """
    if not reports:
        return [
            [
                "Report Date Time (UTC)",
                "Total Report Period",
                "Value",
                "Diff last report",
                "P/L",
            ]
        ]

    first = reports[0]
    primary_asset = reports[-1].primary_asset

    asset_names: set[str] = set(first.initial_budget)
    fee_asset_names: set[str] = set()
    for report in reports:
        asset_names.update(report.initial_budget)
        asset_names.update(report.final_budget)
        fee_asset_names.update(report.fees_paid)
    assets = sorted(asset_names)
    fee_assets = sorted(fee_asset_names) if include_fee_columns else []

    header = [
        "Report Date Time (UTC)",
        "Total Report Period",
        f"Value ({primary_asset})",
        f"Diff last report ({primary_asset})",
        f"P/L ({primary_asset})",
    ]
    header.extend(f"Budget Balance {asset}" for asset in assets)
    header.extend(f"Fees Paid {asset}" for asset in fee_assets)

    def _cells(snapshot: dict[str, Decimal], names: list[str]) -> list[str]:
        return [format_decimal(snapshot[n]) if n in snapshot else "" for n in names]

    rows = [header]
    rows.append(
        [
            first.start_time.strftime(TIMESTAMP_FORMAT),
            "",
            format_decimal(first.initial_value),
            "0",
            "0",
            *_cells(first.initial_budget, assets),
            *("" for _ in fee_assets),
        ]
    )

    prev_value = first.initial_value
    for report in reports:
        rows.append(
            [
                report.end_time.strftime(TIMESTAMP_FORMAT),
                format_period(report.end_time - first.start_time),
                format_decimal(report.final_value),
                format_decimal(report.final_value - prev_value),
                format_decimal(report.total_profit),
                *_cells(report.final_budget, assets),
                *_cells(report.fees_paid, fee_assets),
            ]
        )
        prev_value = report.final_value

    return rows


def to_csv(rows: list[list[str]]) -> str:
    """Serialize rendered rows as CSV text, one line per row."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=SEPARATOR, lineterminator="\n")
    writer.writerows(rows)
    return buffer.getvalue()


def format_budget_report(report: BudgetReport) -> str:
    """Human-readable summary of a single budget report for console output."""
    primary = report.primary_asset
    lines = [
        "Budget report:",
        f"  start time: {report.start_time.strftime(TIMESTAMP_FORMAT)} UTC",
        f"  end time: {report.end_time.strftime(TIMESTAMP_FORMAT)} UTC",
        f"  initial value: {format_decimal(report.initial_value)} {primary}",
        f"  final value: {format_decimal(report.final_value)} {primary}",
        f"  profit/loss: {format_decimal(report.total_profit)} {primary}",
    ]
    if report.total_fees_value is not None:
        lines.append(f"  fees value paid: {format_decimal(report.total_fees_value)} {primary}")
    lines.extend(["", "Current budget:", ""])
    for asset, amount in sorted(report.final_budget.items()):
        lines.append(f" {asset}: {format_decimal(amount)}")
    lines.append("")
    return "\n".join(lines) + "\n"


class BudgetReportAccumulator:
    """Append-only list of budget reports with full re-rendering.

    Usage:
        accumulator = BudgetReportAccumulator()
        accumulator.add(report)
        accumulator.write_csv("reports/budget.csv")
    """

    def __init__(self, include_fee_columns: bool = True) -> None:
        self._reports: list[BudgetReport] = []
        self._include_fee_columns = include_fee_columns

    def __len__(self) -> int:
        return len(self._reports)

    @property
    def reports(self) -> list[BudgetReport]:
        return list(self._reports)

    def add(self, report: BudgetReport) -> None:
        self._reports.append(report)
        logger.debug(
            "budget_report_added",
            end_time=report.end_time.isoformat(),
            final_value=str(report.final_value),
            total_profit=str(report.total_profit),
            report_count=len(self._reports),
        )

    def render(self) -> list[list[str]]:
        return render_budget_reports(self._reports, self._include_fee_columns)

    def to_csv(self) -> str:
        return to_csv(self.render())

    def write_csv(self, path: str | Path) -> Path:
        """Render all reports and overwrite the CSV file at path.

        Parent directories are created as needed. I/O errors propagate.
        """
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.to_csv(), encoding="utf-8")
        logger.info("budget_report_written", path=str(target), rows=len(self._reports) + 1)
        return target
