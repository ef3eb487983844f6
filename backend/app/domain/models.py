"""Typed domain representations shared by the settlement calculators, the store and the API."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any


@dataclass(frozen=True, slots=True)
class OutcomeSnapshot:
    outcome_id: str
    market_id: str
    implied_probability: Decimal | None
    total_staked: Decimal


@dataclass(frozen=True, slots=True)
class BetSnapshot:
    """Immutable copy of a placed bet as read by the settlement engine."""

    bet_id: str
    market_id: str
    outcome_id: str
    user_id: str
    stake: Decimal
    implied_probability_at_bet: Decimal
    placed_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class MarketSnapshot:
    """Market, outcomes and bets read together before any settlement math runs."""

    market_id: str
    status: str
    winning_outcome_id: str | None
    outcomes: tuple[OutcomeSnapshot, ...] = ()
    bets: tuple[BetSnapshot, ...] = ()

    @property
    def outcome_ids(self) -> frozenset[str]:
        return frozenset(outcome.outcome_id for outcome in self.outcomes)


@dataclass(frozen=True, slots=True)
class PayoutLine:
    bet_id: str
    user_id: str
    outcome_id: str
    stake: Decimal
    payout: Decimal
    reason: str | None
    won: bool


@dataclass(frozen=True, slots=True)
class PayoutSummary:
    total_pool: Decimal = Decimal("0")
    total_winning_stakes: Decimal = Decimal("0")
    total_payouts: Decimal = Decimal("0")
    winner_count: int = 0
    loser_count: int = 0
    average_winner_payout: Decimal = Decimal("0")

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_pool": self.total_pool,
            "total_winning_stakes": self.total_winning_stakes,
            "total_payouts": self.total_payouts,
            "winner_count": self.winner_count,
            "loser_count": self.loser_count,
            "average_winner_payout": self.average_winner_payout,
        }


@dataclass(frozen=True, slots=True)
class PayoutPlan:
    summary: PayoutSummary
    lines: tuple[PayoutLine, ...] = ()

    @property
    def credited_lines(self) -> tuple[PayoutLine, ...]:
        """Lines that translate into a balance ledger entry."""

        return tuple(line for line in self.lines if line.reason and line.payout > 0)

    @property
    def is_refund(self) -> bool:
        return self.summary.winner_count == 0 and self.summary.total_payouts > 0


@dataclass(frozen=True, slots=True)
class TasteMatchDelta:
    """Increment applied to the unordered pair ``(user_low_id, user_high_id)``."""

    user_low_id: str
    user_high_id: str
    score_delta: float
    shared_correct_calls_delta: int = 1

    @classmethod
    def for_pair(cls, first: str, second: str, score_delta: float) -> TasteMatchDelta:
        low, high = sorted((first, second))
        return cls(user_low_id=low, user_high_id=high, score_delta=score_delta)

    @property
    def pair(self) -> tuple[str, str]:
        return (self.user_low_id, self.user_high_id)


@dataclass(frozen=True, slots=True)
class TasteMatchPlan:
    deltas: frozenset[TasteMatchDelta] = frozenset()
    considered_user_ids: tuple[str, ...] = ()
    skipped_user_ids: tuple[str, ...] = ()


@dataclass(slots=True)
class ResolutionError:
    code: str
    message: str


@dataclass(slots=True)
class ResolutionResult:
    market_id: str
    winning_outcome_id: str
    actual_value: Decimal | None = None
    preview: bool = False
    payout_summary: PayoutSummary = field(default_factory=PayoutSummary)
    payouts: list[PayoutLine] = field(default_factory=list)
    trendsetter_points: dict[str, int] = field(default_factory=dict)
    taste_match_pairs: set[tuple[str, str]] = field(default_factory=set)
    affinity_skipped_user_ids: list[str] = field(default_factory=list)
    balance_user_ids: set[str] = field(default_factory=set)
    refund: bool = False
    resolved_at: datetime | None = None
    success: bool = False
    errors: list[ResolutionError] = field(default_factory=list)

    @property
    def error_codes(self) -> list[str]:
        return [error.code for error in self.errors]
