from __future__ import annotations

from typing import Optional


class ScalpBotError(Exception):
    """Base class for errors raised by the signal pipeline."""


class InsufficientData(ScalpBotError, ValueError):
    """Candle window is shorter than an indicator needs."""

    def __init__(self, what: str, required: int, available: int):
        super().__init__(f"{what}: need {required} candles, have {available}")
        self.what = what
        self.required = required
        self.available = available


class ApiError(ScalpBotError):
    """Transport or exchange-side failure."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class InvalidInput(ScalpBotError, ValueError):
    """Malformed argument: non-positive price, unknown side, empty window."""


class DispatchError(ScalpBotError):
    """Notification could not be delivered."""
