"""Error taxonomy shared by the calculators, the settlement store and the resolution service."""

from __future__ import annotations

from enum import Enum


class ResolutionErrorCode(str, Enum):
    NOT_FOUND = "not_found"
    MARKET_ALREADY_TERMINAL = "market_already_terminal"
    INVALID_OUTCOME = "invalid_outcome"
    MISSING_ACTUAL_VALUE = "missing_actual_value"
    INVALID_ACTUAL_VALUE = "invalid_actual_value"
    NO_STAKES = "no_stakes"
    SETTLEMENT_FAILED = "settlement_failed"


class SettlementError(Exception):
    """Base class for settlement failures; ``code`` identifies the category."""

    code: ResolutionErrorCode = ResolutionErrorCode.SETTLEMENT_FAILED

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidOutcomeError(SettlementError):
    code = ResolutionErrorCode.INVALID_OUTCOME


class NoStakesError(SettlementError):
    code = ResolutionErrorCode.NO_STAKES


class MarketAlreadyTerminalError(SettlementError):
    """Raised when the market is resolved or void, including when a concurrent commit won."""

    code = ResolutionErrorCode.MARKET_ALREADY_TERMINAL


class SettlementFailedError(SettlementError):
    """Infrastructure failure while writing a settlement; nothing was persisted."""

    code = ResolutionErrorCode.SETTLEMENT_FAILED


__all__ = [
    "InvalidOutcomeError",
    "MarketAlreadyTerminalError",
    "NoStakesError",
    "ResolutionErrorCode",
    "SettlementError",
    "SettlementFailedError",
]
