"""Monthly accounting of an exchange account's balance changes.

Trades, deposits and withdrawals are accumulated into per-month, per-asset
statistics. The summary CSV shows one column per month:

    Month / Asset - Type,Jan 2025,Feb 2025,Total
    BTC,,,
      Trading,0.5,-0.1,0.4
      Deposits,1,0,1
      Withdrawals,0,0,0
      Fees,-0.0005,0,-0.0005
      Total balance,1.4995,1.3995,1.3995

Totals sum the monthly diffs, except "Total balance" which is carried from
month to month and reports the last month. Records are also kept for flat
trade and deposit/withdrawal ledgers.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path

from ldca.logging import get_logger
from ldca.models import OrderSide, SymbolPair
from ldca.reports.budget import TIMESTAMP_FORMAT, format_decimal, to_csv

logger = get_logger(__name__)

TRADES_HEADER = ["Time", "Base Symbol", "Quote Symbol", "Side", "Price", "Base Amount", "Quote Amount", "Fee", "Fee Symbol"]
TRANSFERS_HEADER = ["Time", "Type", "ID", "Amount", "Symbol", "Network", "Fee", "Status", "Address", "TxId", "Extra Info"]

_EIGHT_PLACES = Decimal("0.00000001")


def format_amount(value: Decimal) -> str:
    """Format with up to 8 decimal places and no trailing zeros."""
    rounded = value.quantize(_EIGHT_PLACES, rounding=ROUND_HALF_UP)
    if rounded == 0:
        return "0"
    return format(rounded, "f").rstrip("0").rstrip(".")


def _to_decimal(value: object) -> Decimal:
    if value is None:
        return Decimal("0")
    return Decimal(str(value))


def _from_ms(timestamp_ms: int) -> datetime:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)


def _fee_parts(fee: dict | None) -> tuple[Decimal | None, str | None]:
    if not fee or fee.get("cost") is None:
        return None, None
    return Decimal(str(fee["cost"])), fee.get("currency")


@dataclass
class AssetStats:
    """Changes of one asset's balance within one month."""

    total_diff: Decimal = Decimal("0")
    trading_diff: Decimal = Decimal("0")
    fee_diff: Decimal = Decimal("0")
    deposit_diff: Decimal = Decimal("0")
    withdrawal_diff: Decimal = Decimal("0")


@dataclass(frozen=True)
class TradeRecord:
    """An executed trade of the account.

    commission/commission_asset are None when the exchange did not report a fee.
    """

    timestamp: datetime
    symbol_pair: SymbolPair
    side: OrderSide
    price: Decimal
    base_quantity: Decimal
    quote_quantity: Decimal
    commission: Decimal | None = None
    commission_asset: str | None = None

    @classmethod
    def from_ccxt(cls, trade: dict) -> "TradeRecord":
        """Build from a ccxt trade structure (``fetch_my_trades``)."""
        commission, commission_asset = _fee_parts(trade.get("fee"))
        price = _to_decimal(trade.get("price"))
        amount = _to_decimal(trade.get("amount"))
        cost = trade.get("cost")
        return cls(
            timestamp=_from_ms(trade["timestamp"]),
            symbol_pair=SymbolPair.parse(trade["symbol"].split(":")[0]),
            side=OrderSide(trade["side"].lower()),
            price=price,
            base_quantity=amount,
            quote_quantity=_to_decimal(cost) if cost is not None else amount * price,
            commission=commission,
            commission_asset=commission_asset,
        )

    def to_row(self) -> list[str]:
        return [
            self.timestamp.strftime(TIMESTAMP_FORMAT),
            self.symbol_pair.base,
            self.symbol_pair.quote,
            self.side.value.upper(),
            format_decimal(self.price),
            format_decimal(self.base_quantity),
            format_decimal(self.quote_quantity),
            format_decimal(self.commission) if self.commission is not None else "",
            self.commission_asset or "",
        ]


@dataclass(frozen=True)
class TransferRecord:
    """A deposit to or withdrawal from the account.

    For deposits the exchange reports the amount after the fee was taken.
    """

    timestamp: datetime
    asset: str
    amount: Decimal
    fee: Decimal = Decimal("0")
    transfer_id: str = ""
    network: str = ""
    status: str = ""
    address: str = ""
    tx_id: str = ""
    extra_info: str = ""

    transfer_type = ""

    @classmethod
    def from_ccxt(cls, transaction: dict):
        """Build from a ccxt transaction structure (``fetch_deposits`` / ``fetch_withdrawals``)."""
        fee, _ = _fee_parts(transaction.get("fee"))
        return cls(
            timestamp=_from_ms(transaction["timestamp"]),
            asset=transaction["currency"],
            amount=_to_decimal(transaction.get("amount")),
            fee=fee if fee is not None else Decimal("0"),
            transfer_id=str(transaction.get("id") or ""),
            network=transaction.get("network") or "",
            status=transaction.get("status") or "",
            address=transaction.get("address") or "",
            tx_id=transaction.get("txid") or "",
            extra_info=transaction.get("tag") or transaction.get("comment") or "",
        )

    def to_row(self) -> list[str]:
        return [
            self.timestamp.strftime(TIMESTAMP_FORMAT),
            self.transfer_type,
            self.transfer_id,
            format_decimal(self.amount),
            self.asset,
            self.network,
            format_decimal(self.fee),
            self.status,
            self.address,
            self.tx_id,
            self.extra_info,
        ]


@dataclass(frozen=True)
class DepositRecord(TransferRecord):
    transfer_type = "DEPOSIT"


@dataclass(frozen=True)
class WithdrawalRecord(TransferRecord):
    transfer_type = "WITHDRAWAL"


@dataclass
class AccountingLedger:
    """Per-month, per-asset balance statistics of an exchange account.

    Records must be added in chronological order. A record from a new month
    opens a bucket for it, and for every skipped month in between, carrying
    each asset's total_diff forward.

    Usage:
        ledger = AccountingLedger()
        for trade in trades:
            ledger.record_trade(TradeRecord.from_ccxt(trade))
        summary_csv = ledger.summary_csv()
    """

    months: dict[date, dict[str, AssetStats]] = field(default_factory=dict)
    trades: list[TradeRecord] = field(default_factory=list)
    transfers: list[TransferRecord] = field(default_factory=list)

    def record_trade(self, trade: TradeRecord) -> None:
        month = self._month_for(trade.timestamp)
        base_change = trade.base_quantity if trade.side == OrderSide.BUY else -trade.base_quantity
        quote_change = -trade.quote_quantity if trade.side == OrderSide.BUY else trade.quote_quantity

        base_stats = self._stats(month, trade.symbol_pair.base)
        base_stats.total_diff += base_change
        base_stats.trading_diff += base_change

        quote_stats = self._stats(month, trade.symbol_pair.quote)
        quote_stats.total_diff += quote_change
        quote_stats.trading_diff += quote_change

        if trade.commission is not None and trade.commission_asset is not None:
            fee_stats = self._stats(month, trade.commission_asset)
            fee_stats.total_diff -= trade.commission
            fee_stats.fee_diff -= trade.commission

        self.trades.append(trade)

    def record_deposit(self, deposit: DepositRecord) -> None:
        # The fee is listed separately, so the gross amount counts as deposited.
        stats = self._stats(self._month_for(deposit.timestamp), deposit.asset)
        stats.total_diff += deposit.amount
        stats.deposit_diff += deposit.amount + deposit.fee
        stats.fee_diff -= deposit.fee
        self.transfers.append(deposit)

    def record_withdrawal(self, withdrawal: WithdrawalRecord) -> None:
        stats = self._stats(self._month_for(withdrawal.timestamp), withdrawal.asset)
        stats.total_diff -= withdrawal.amount
        stats.withdrawal_diff -= withdrawal.amount
        stats.fee_diff -= withdrawal.fee
        self.transfers.append(withdrawal)

    def open_month(self, when: date) -> None:
        """Open the bucket of the month containing when, like a record would.

        Used to cover the first and last month of a period without activity.
        """
        self._month_for(when)

    def _stats(self, month: date, asset: str) -> AssetStats:
        bucket = self.months[month]
        if asset not in bucket:
            bucket[asset] = AssetStats()
        return bucket[asset]

    def _month_for(self, timestamp: date) -> date:
        """Return the bucket key of the timestamp's month, opening buckets as needed.

        Raises:
            ValueError: If the month precedes the latest bucket.
        """
        key = date(timestamp.year, timestamp.month, 1)
        if key in self.months:
            return key

        if not self.months:
            self.months[key] = {}
            return key

        latest = max(self.months)
        if key < latest:
            raise ValueError(
                f"Record from {timestamp.isoformat()} is older than month {latest:%Y-%m}; "
                "records must be added in chronological order"
            )

        month = latest
        while month < key:
            previous = self.months[month]
            month = date(month.year + month.month // 12, month.month % 12 + 1, 1)
            self.months[month] = {
                asset: AssetStats(total_diff=stats.total_diff) for asset, stats in previous.items()
            }
            logger.debug("accounting_month_opened", month=f"{month:%Y-%m}", assets=len(previous))
        return key

    def render_summary(self) -> list[list[str]]:
        """Render the monthly summary table (see module docstring)."""
        months = sorted(self.months)
        assets = sorted({a for bucket in self.months.values() for a in bucket}, key=str.lower)

        rows = [["Month / Asset - Type", *(m.strftime("%b %Y") for m in months), "Total"]]
        for asset in assets:
            rows.append([asset, *("" for _ in months), ""])

            lines = {
                "  Trading": [],
                "  Deposits": [],
                "  Withdrawals": [],
                "  Fees": [],
                "  Total balance": [],
            }
            totals = AssetStats()
            for month in months:
                stats = self.months[month].get(asset)
                if stats is None:
                    for cells in lines.values():
                        cells.append("")
                    continue

                lines["  Trading"].append(format_amount(stats.trading_diff))
                lines["  Deposits"].append(format_amount(stats.deposit_diff))
                lines["  Withdrawals"].append(format_amount(stats.withdrawal_diff))
                lines["  Fees"].append(format_amount(stats.fee_diff))
                lines["  Total balance"].append(format_amount(stats.total_diff))

                totals.trading_diff += stats.trading_diff
                totals.deposit_diff += stats.deposit_diff
                totals.withdrawal_diff += stats.withdrawal_diff
                totals.fee_diff += stats.fee_diff
                totals.total_diff = stats.total_diff

            lines["  Trading"].append(format_amount(totals.trading_diff))
            lines["  Deposits"].append(format_amount(totals.deposit_diff))
            lines["  Withdrawals"].append(format_amount(totals.withdrawal_diff))
            lines["  Fees"].append(format_amount(totals.fee_diff))
            lines["  Total balance"].append(format_amount(totals.total_diff))

            rows.extend([label, *cells] for label, cells in lines.items())
            rows.append([])

        return rows

    def summary_csv(self) -> str:
        return to_csv(self.render_summary())

    def trades_csv(self) -> str:
        return to_csv([TRADES_HEADER, *(t.to_row() for t in self.trades)])

    def transfers_csv(self) -> str:
        return to_csv([TRANSFERS_HEADER, *(t.to_row() for t in self.transfers)])

    def write_reports(self, output_dir: str | Path, exchange_id: str, start: date, end: date) -> dict[str, Path]:
        """Write the summary, trades and deposits/withdrawals CSV files.

        Files are named ``<exchange>_<report>_<start yyyy-mm>_<end yyyy-mm>.csv``
        and overwritten when they exist.

        Returns:
            Dict mapping report name (summary, trades, transfers) to its path.
        """
        directory = Path(output_dir)
        directory.mkdir(parents=True, exist_ok=True)
        period = f"{start:%Y-%m}_{end:%Y-%m}"

        contents = {
            "summary": (f"{exchange_id}_summary_{period}.csv", self.summary_csv()),
            "trades": (f"{exchange_id}_trades_{period}.csv", self.trades_csv()),
            "transfers": (f"{exchange_id}_deposits_withdrawals_{period}.csv", self.transfers_csv()),
        }
        paths = {}
        for name, (file_name, text) in contents.items():
            path = directory / file_name
            path.write_text(text, encoding="utf-8")
            paths[name] = path
            logger.info("accounting_report_written", report=name, path=str(path))
        return paths
