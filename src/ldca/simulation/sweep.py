"""Parameter sweep for grid search over L-DCA configurations.

Generates all combinations of parameter values via itertools.product and runs
one simulation per combination against the same candle series. Every run gets
its own PositionLedger, so results are independent of the order they run in.

Memory management: only the best result (highest profit percent) keeps its
order and liquidation trail; the others are compacted after the run.

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or fees.
"""

from collections.abc import Callable, Sequence
from dataclasses import fields, replace
from decimal import Decimal
from itertools import product

from ldca.exceptions import LdcaError
from ldca.logging import get_logger
from ldca.models import Candle
from ldca.simulation.engine import LdcaSimulator, RoundFn
from ldca.simulation.models import LdcaConfig, LdcaResult, SweepResult

logger = get_logger(__name__)

_CONFIG_FIELDS = {f.name for f in fields(LdcaConfig)}


class ParameterSweep:
    """Grid search over LdcaConfig fields for one candle series.

    Args:
        round_fn: Order-size rounding shared by every run.
    """

    def __init__(self, round_fn: RoundFn) -> None:
        self._round_fn = round_fn

    def run(
        self,
        candles: Sequence[Candle],
        base_config: LdcaConfig,
        param_grid: dict[str, list],
        progress_callback: Callable | None = None,
    ) -> SweepResult:
        """Simulate every parameter combination in the grid.

        Combinations whose configuration is invalid or whose run fails with an
        LdcaError are recorded with their error message; the sweep continues.

        Args:
            candles: Candle series shared by all runs.
            base_config: Configuration to override with each combination.
            param_grid: Dict mapping LdcaConfig field names to lists of values.
            progress_callback: Optional callback(current_index, total, params, result).

        Returns:
            SweepResult sorted by profit percent, best first, failures last.

        Raises:
            ValueError: If a param_grid key is not an LdcaConfig field.
        """
        for key in param_grid:
            if key not in _CONFIG_FIELDS:
                raise ValueError(f"Invalid parameter '{key}': not an LdcaConfig field")

        keys = list(param_grid.keys())
        combinations = list(product(*param_grid.values()))
        total = len(combinations)

        logger.info("sweep_starting", parameters=keys, total_combinations=total)

        results: list[tuple[dict, LdcaResult | None, str | None]] = []
        for idx, combo in enumerate(combinations):
            params = dict(zip(keys, combo))

            converted: dict[str, object] = {}
            for k, v in params.items():
                if isinstance(getattr(base_config, k), Decimal) and not isinstance(v, Decimal):
                    converted[k] = Decimal(str(v))
                else:
                    converted[k] = v

            result: LdcaResult | None = None
            error: str | None = None
            try:
                config = base_config.with_overrides(**converted)
                result = LdcaSimulator(config, self._round_fn).run(candles)
            except LdcaError as e:
                error = str(e)
                logger.warning("sweep_combination_failed", params=_loggable(converted), error=error)

            results.append((converted, result, error))

            if progress_callback is not None:
                progress_callback(idx + 1, total, converted, result)

        results.sort(
            key=lambda item: (item[1] is None, -(item[1].profit_percent if item[1] else Decimal("0")))
        )

        # Only the best run keeps its trail
        compacted: list[tuple[dict, LdcaResult | None, str | None]] = []
        for position, (params, result, error) in enumerate(results):
            if result is not None and position > 0:
                result = replace(result, orders=(), liquidations=())
            compacted.append((params, result, error))

        sweep = SweepResult(param_grid=param_grid, results=compacted)
        best = sweep.best
        logger.info(
            "sweep_complete",
            total_combinations=total,
            successful=sweep.successful_count,
            best_params=_loggable(best[0]) if best else None,
            best_profit_percent=str(best[1].profit_percent) if best else None,
        )
        return sweep


def _loggable(params: dict) -> dict:
    return {k: str(v) for k, v in params.items()}
