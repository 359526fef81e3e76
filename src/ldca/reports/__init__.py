"""Budget and accounting report rendering."""

from ldca.reports.accounting import (
    AccountingLedger,
    AssetStats,
    DepositRecord,
    TradeRecord,
    TransferRecord,
    WithdrawalRecord,
    format_amount,
)
from ldca.reports.budget import (
    BudgetReport,
    BudgetReportAccumulator,
    format_budget_report,
    format_period,
    render_budget_reports,
    to_csv,
)

__all__ = [
    "AccountingLedger",
    "AssetStats",
    "BudgetReport",
    "BudgetReportAccumulator",
    "DepositRecord",
    "TradeRecord",
    "TransferRecord",
    "WithdrawalRecord",
    "format_amount",
    "format_budget_report",
    "format_period",
    "render_budget_reports",
    "to_csv",
]
