"""Exchange client layer -- market metadata and candles via ccxt."""

from ldca.exchange.ccxt_client import CcxtExchangeClient
from ldca.exchange.client import ExchangeClient
from ldca.exchange.types import InstrumentInfo, make_size_rounder, round_to_step

__all__ = [
    "CcxtExchangeClient",
    "ExchangeClient",
    "InstrumentInfo",
    "make_size_rounder",
    "round_to_step",
]
