"""Exchange-specific type definitions and order-size rounding.

All monetary values use Decimal. Never use float for prices, quantities, or fees.
"""

from collections.abc import Callable
from dataclasses import dataclass
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal

ROUNDING_MODES = {
    "down": ROUND_DOWN,
    "half_up": ROUND_HALF_UP,
}


@dataclass
class InstrumentInfo:
    """Trading constraints for an exchange instrument.

    Fetched from the exchange market metadata. Used to build the order-size
    rounding function for simulated orders. Zero means the exchange reports
    no limit.
    """

    symbol: str
    min_qty: Decimal
    max_qty: Decimal
    qty_step: Decimal


def round_to_step(value: Decimal, step: Decimal, rounding: str = ROUND_DOWN) -> Decimal:
    """Round a value to a multiple of step.

    Rounds DOWN by default, which never exceeds the intended order size.
    A non-positive step leaves the value untouched.

    Args:
        value: The raw quantity to round.
        step: The minimum increment (e.g., 0.00001 for BTC).
        rounding: A decimal rounding mode (ROUND_DOWN, ROUND_HALF_UP, ...).

    Returns:
        The value rounded to the step.
    """
    if step <= 0:
        return value
    return (value / step).quantize(Decimal("1"), rounding=rounding) * step


def make_size_rounder(
    instrument: InstrumentInfo, rounding: str = "down"
) -> Callable[[Decimal], Decimal]:
    """Build the ``Round(size) -> actualSize`` function for an instrument.

    Sizes are rounded to the instrument's qty_step and clamped to max_qty
    when the exchange reports one. A size below min_qty would be rejected by
    the exchange, so it becomes zero.

    Args:
        instrument: Exchange constraints of the traded pair.
        rounding: Key of ROUNDING_MODES.

    Raises:
        ValueError: If rounding is not a known mode.
    """
    if rounding not in ROUNDING_MODES:
        raise ValueError(f"Unknown rounding mode '{rounding}', expected one of {sorted(ROUNDING_MODES)}")
    mode = ROUNDING_MODES[rounding]

    def _round(size: Decimal) -> Decimal:
        rounded = round_to_step(size, instrument.qty_step, mode)
        if instrument.max_qty > 0 and rounded > instrument.max_qty:
            return instrument.max_qty
        if rounded < instrument.min_qty:
            return Decimal("0")
        return rounded

    return _round
