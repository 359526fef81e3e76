"""Custom exceptions for the L-DCA calculator.

All simulation, reporting and data-collection exceptions live here
to avoid circular imports between modules.
"""


class LdcaError(Exception):
    """Base exception for all calculator errors."""


class InvalidConfigurationError(LdcaError):
    """Raised when run parameters are rejected before a simulation starts."""


class NoOrdersSimulatedError(LdcaError):
    """Raised when a run finishes without any executed order size.

    Averages and profit ratios are undefined in that case; callers must
    supply candles and sizes that produce at least one non-zero order.
    """


class SanityCheckError(LdcaError):
    """Raised when an internal invariant is violated (unsupported side, unknown timeframe)."""


class ExchangeDataError(LdcaError):
    """Raised when data could not be downloaded from the exchange."""


class CandleDownloadError(ExchangeDataError):
    """Raised when historical candles could not be downloaded after all retries."""


class AccountHistoryError(ExchangeDataError):
    """Raised when account trades, deposits or withdrawals could not be downloaded."""
