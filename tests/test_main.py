"""Tests for the command-line entry point."""

import argparse
import json
from datetime import timedelta
from decimal import Decimal
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from ldca.config import ReportSettings
from ldca.main import DEFAULT_BUDGET_CSV, _parse_leverages, budget_csv_path, build_parser, main, run
from ldca.models import OrderSide
from ldca.simulation.engine import LdcaSimulator
from ldca.simulation.models import LdcaConfig

PARAMETERS = {
    "SymbolPair": "BTC/USDT",
    "StartTimeUtc": "2024-01-01T00:00:00",
    "EndTimeUtc": "2024-01-01T00:10:00",
    "Period": "00:05:00",
    "QuoteSize": 100,
    "OrderSide": "Buy",
    "TradeFeePercent": "0.1",
}


@pytest.fixture
def parameters_file(tmp_path: Path) -> Path:
    path = tmp_path / "parameters.json"
    path.write_text(json.dumps(PARAMETERS), encoding="utf-8")
    return path


@pytest.fixture
def spot_result(btc_usdt, candle_factory, half_up_rounder):
    config = LdcaConfig(
        symbol_pair=btc_usdt,
        order_side=OrderSide.BUY,
        quote_size=Decimal("100"),
        period=timedelta(minutes=5),
    )
    return LdcaSimulator(config, half_up_rounder).run([candle_factory(i, 100 + i) for i in range(10)])


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


class TestParser:
    def test_parameters_only(self) -> None:
        args = build_parser().parse_args(["params.json"])

        assert args.parameters == Path("params.json")
        assert args.sweep_leverage is None
        assert args.report is None
        assert args.budget_csv is None

    def test_sweep_leverage_list(self) -> None:
        args = build_parser().parse_args(["params.json", "--sweep-leverage", "1, 2,5.5"])
        assert args.sweep_leverage == [Decimal("1"), Decimal("2"), Decimal("5.5")]

    def test_invalid_leverage_list(self) -> None:
        with pytest.raises(argparse.ArgumentTypeError):
            _parse_leverages("1,x")

    def test_bare_budget_csv_flag(self) -> None:
        args = build_parser().parse_args(["params.json", "--budget-csv"])
        assert args.budget_csv == DEFAULT_BUDGET_CSV

    def test_budget_csv_with_path(self) -> None:
        args = build_parser().parse_args(["params.json", "--budget-csv", "out/budget.csv"])
        assert args.budget_csv == Path("out/budget.csv")

    def test_budget_csv_current_directory(self) -> None:
        args = build_parser().parse_args(["params.json", "--budget-csv", "."])
        assert args.budget_csv == Path(".")
        assert args.budget_csv != DEFAULT_BUDGET_CSV

    def test_accounting_flag(self) -> None:
        args = build_parser().parse_args(["accounting.json", "--accounting"])
        assert args.accounting is True

    def test_accounting_rejects_calculation_options(self) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["accounting.json", "--accounting", "--sweep-leverage", "2"])
        assert exc_info.value.code == 2


class TestBudgetCsvPath:
    def test_default_in_output_dir(self, btc_usdt) -> None:
        config = LdcaConfig(
            symbol_pair=btc_usdt,
            order_side=OrderSide.SELL,
            quote_size=Decimal("1"),
            period=timedelta(days=1),
        )
        assert budget_csv_path(DEFAULT_BUDGET_CSV, "reports", config) == Path(
            "reports/budget_BTC_USDT_sell.csv"
        )

    def test_explicit_path_kept(self, btc_usdt) -> None:
        config = LdcaConfig(
            symbol_pair=btc_usdt,
            order_side=OrderSide.BUY,
            quote_size=Decimal("1"),
            period=timedelta(days=1),
        )
        assert budget_csv_path(Path("x.csv"), "reports", config) == Path("x.csv")

    def test_current_directory_kept(self, btc_usdt) -> None:
        config = LdcaConfig(
            symbol_pair=btc_usdt,
            order_side=OrderSide.BUY,
            quote_size=Decimal("1"),
            period=timedelta(days=1),
        )
        assert budget_csv_path(Path("."), "reports", config) == Path(".")


# ---------------------------------------------------------------------------
# run()
# ---------------------------------------------------------------------------


class TestRun:
    @pytest.mark.asyncio
    async def test_missing_parameters_file(self, tmp_path: Path) -> None:
        args = build_parser().parse_args([str(tmp_path / "missing.json")])
        assert await run(args) == 2

    @pytest.mark.asyncio
    async def test_invalid_parameters(self, tmp_path: Path) -> None:
        path = tmp_path / "parameters.json"
        path.write_text(json.dumps({**PARAMETERS, "Leverage": 0.5}), encoding="utf-8")

        args = build_parser().parse_args([str(path)])
        assert await run(args) == 1

    @pytest.mark.asyncio
    async def test_writes_reports(self, parameters_file: Path, tmp_path: Path, spot_result, capsys) -> None:
        report = tmp_path / "out" / "result.json"
        budget = tmp_path / "out" / "budget.csv"
        args = build_parser().parse_args(
            [str(parameters_file), "--report", str(report), "--budget-csv", str(budget)]
        )

        with patch("ldca.main.run_ldca", new=AsyncMock(return_value=spot_result)):
            assert await run(args) == 0

        assert "Profit:" in capsys.readouterr().out
        payload = json.loads(report.read_text(encoding="utf-8"))
        assert payload["config"]["symbol_pair"] == "BTC/USDT"
        assert payload["result"]["orders_placed"] == 2
        assert len(budget.read_text(encoding="utf-8").splitlines()) == 4

    @pytest.mark.asyncio
    async def test_unknown_exchange(self, tmp_path: Path) -> None:
        path = tmp_path / "parameters.json"
        path.write_text(json.dumps({**PARAMETERS, "Exchange": "no-such-exchange"}), encoding="utf-8")

        args = build_parser().parse_args([str(path)])
        assert await run(args) == 1


# ---------------------------------------------------------------------------
# Accounting
# ---------------------------------------------------------------------------


class TestRunAccounting:
    @pytest.fixture
    def accounting_file(self, tmp_path: Path) -> Path:
        path = tmp_path / "accounting.json"
        path.write_text(
            json.dumps({"Exchange": "kraken", "StartDate": "2024-01-01", "EndDate": "2024-02-29"}),
            encoding="utf-8",
        )
        return path

    @pytest.fixture
    def exchange(self) -> MagicMock:
        deposit = {"id": "d1", "timestamp": 1704103200000, "currency": "EUR", "amount": 500, "status": "ok"}

        async def _serve_deposits(code=None, since=None, limit=None, params=None):
            return [deposit] if since <= deposit["timestamp"] else []

        exchange = MagicMock()
        exchange.connect = AsyncMock()
        exchange.close = AsyncMock()
        exchange.fetch_my_trades = AsyncMock(return_value=[])
        exchange.fetch_deposits = AsyncMock(side_effect=_serve_deposits)
        exchange.fetch_withdrawals = AsyncMock(return_value=[])
        return exchange

    @pytest.mark.asyncio
    async def test_writes_reports_to_output_dir(
        self, accounting_file: Path, tmp_path: Path, mock_settings, exchange: MagicMock, capsys
    ) -> None:
        output_dir = tmp_path / "reports"
        settings = mock_settings.model_copy(update={"report": ReportSettings(output_dir=str(output_dir))})
        args = build_parser().parse_args([str(accounting_file), "--accounting"])

        with (
            patch("ldca.main.AppSettings", return_value=settings),
            patch("ldca.runner.CcxtExchangeClient", return_value=exchange) as client_cls,
        ):
            assert await run(args) == 0

        client_cls.assert_called_once_with(settings.exchange, "kraken")
        exchange.close.assert_awaited_once()
        assert sorted(p.name for p in output_dir.iterdir()) == [
            "kraken_deposits_withdrawals_2024-01_2024-02.csv",
            "kraken_summary_2024-01_2024-02.csv",
            "kraken_trades_2024-01_2024-02.csv",
        ]
        summary = (output_dir / "kraken_summary_2024-01_2024-02.csv").read_text(encoding="utf-8")
        assert summary.splitlines()[0] == "Month / Asset - Type,Jan 2024,Feb 2024,Total"
        assert "Summary written to" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_invalid_accounting_parameters(self, tmp_path: Path) -> None:
        path = tmp_path / "accounting.json"
        path.write_text(json.dumps({"StartDate": "2024-03-01", "EndDate": "2024-01-31"}), encoding="utf-8")

        args = build_parser().parse_args([str(path), "--accounting"])
        assert await run(args) == 1
