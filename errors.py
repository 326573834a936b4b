"""
Error kinds raised by the backtest-and-improve loop.

Every error here is fatal to the pass that raised it; nothing is retried.
"""

from typing import Any, Optional


class BacktestError(Exception):
    """Base class for all pipeline faults."""


class DataUnavailable(BacktestError):
    """Market-data fetch or transport failure."""


class CacheCorrupt(BacktestError):
    """A cached candle artifact failed to deserialize."""


class InsufficientData(BacktestError):
    """Fewer candles than the lookback window requires."""


class ModelTransportError(BacktestError):
    """Non-success response or transport failure from the model API."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        self.status_code = status_code
        self.body = body
        detail = message
        if status_code is not None:
            detail = f"{detail} (status {status_code})"
        if body:
            detail = f"{detail}: {body}"
        super().__init__(detail)


class MalformedModelResponse(BacktestError):
    """Model output was not valid JSON or lacked required fields."""

    def __init__(self, message: str, raw_response: str = ""):
        self.raw_response = raw_response
        super().__init__(message)


class LedgerIOError(BacktestError):
    """The prompt history ledger could not be read or written."""


class PromptFileError(BacktestError):
    """The base prompt file is missing or could not be written."""
