"""Shared repository result types."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal


@dataclass(slots=True)
class TasteMatchRecord:
    """One side of a taste-match edge as seen from ``user_id``."""

    user_id: str
    other_user_id: str
    score: float
    shared_correct_calls: int
    updated_at: datetime


@dataclass(slots=True)
class ResolutionRecord:
    """Persisted outcome of a settled market with ledger totals."""

    market_id: str
    status: str
    winning_outcome_id: str | None
    actual_value: Decimal | None
    resolved_at: datetime | None
    resolved_by: str | None
    resolution_source: str | None
    resolution_notes: str | None
    total_credited: Decimal
    ledger_entry_count: int
    trendsetter_points_awarded: int


__all__ = ["ResolutionRecord", "TasteMatchRecord"]
