"""Domain models used by the settlement engine."""

from .models import (
    BetSnapshot,
    MarketSnapshot,
    OutcomeSnapshot,
    PayoutLine,
    PayoutPlan,
    PayoutSummary,
    ResolutionError,
    ResolutionResult,
    TasteMatchDelta,
    TasteMatchPlan,
)

__all__ = [
    "BetSnapshot",
    "MarketSnapshot",
    "OutcomeSnapshot",
    "PayoutLine",
    "PayoutPlan",
    "PayoutSummary",
    "ResolutionError",
    "ResolutionResult",
    "TasteMatchDelta",
    "TasteMatchPlan",
]
