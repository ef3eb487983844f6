"""DTOs for settlement persistence operations."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal


@dataclass(slots=True)
class LedgerEntryInput:
    user_id: str
    amount: Decimal
    reason: str
    market_id: str
    bet_id: str | None
    created_at: datetime


@dataclass(slots=True)
class TrendsetterAwardInput:
    user_id: str
    market_id: str
    points: int
    created_at: datetime


@dataclass(slots=True)
class MarketResolutionInput:
    market_id: str
    winning_outcome_id: str
    actual_value: Decimal | None
    resolved_at: datetime
    resolved_by: str | None = None
    resolution_source: str | None = None
    resolution_notes: str | None = None


__all__ = [
    "LedgerEntryInput",
    "MarketResolutionInput",
    "TrendsetterAwardInput",
]
