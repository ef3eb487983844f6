"""Pure settlement calculators and their error types."""

from .affinity import compute_taste_match_updates, taste_match_percentage, taste_match_strength
from .errors import (
    InvalidOutcomeError,
    MarketAlreadyTerminalError,
    NoStakesError,
    ResolutionErrorCode,
    SettlementError,
    SettlementFailedError,
)
from .payouts import compute_payouts
from .scoring import compute_trendsetter_points, points_for_bet

__all__ = [
    "InvalidOutcomeError",
    "MarketAlreadyTerminalError",
    "NoStakesError",
    "ResolutionErrorCode",
    "SettlementError",
    "SettlementFailedError",
    "compute_payouts",
    "compute_taste_match_updates",
    "compute_trendsetter_points",
    "points_for_bet",
    "taste_match_percentage",
    "taste_match_strength",
]
