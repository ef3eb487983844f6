from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, field_validator

from app.domain import ResolutionResult


class ResolveRequest(BaseModel):
    winning_outcome_id: str = Field(..., min_length=1)
    actual_value: Decimal | None = None
    preview: bool = False
    resolved_by: str | None = None
    resolution_source: str | None = Field(default=None, max_length=50)
    resolution_notes: str | None = None


class PreviewRequest(BaseModel):
    winning_outcome_id: str = Field(..., min_length=1)


class PayoutSummary(BaseModel):
    total_pool: Decimal
    total_winning_stakes: Decimal
    total_payouts: Decimal
    winner_count: int
    loser_count: int
    average_winner_payout: Decimal

    model_config = {"from_attributes": True}


class PayoutLine(BaseModel):
    bet_id: str
    user_id: str
    outcome_id: str
    stake: Decimal
    payout: Decimal
    reason: str | None = None
    won: bool

    model_config = {"from_attributes": True}


class ResolutionErrorItem(BaseModel):
    code: str
    message: str

    model_config = {"from_attributes": True}


class ResolutionResponse(BaseModel):
    market_id: str
    winning_outcome_id: str
    actual_value: Decimal | None = None
    preview: bool = False
    success: bool
    errors: list[ResolutionErrorItem] = Field(default_factory=list)
    payout_summary: PayoutSummary | None = None
    payouts: list[PayoutLine] = Field(default_factory=list)
    trendsetter_points: dict[str, int] = Field(default_factory=dict)
    trendsetter_points_awarded: int = 0
    taste_match_pairs: list[tuple[str, str]] = Field(default_factory=list)
    affinity_skipped_user_ids: list[str] = Field(default_factory=list)
    balance_user_ids: list[str] = Field(default_factory=list)
    refund: bool = False
    resolved_at: datetime | None = None

    @classmethod
    def from_result(cls, result: ResolutionResult) -> "ResolutionResponse":
        return cls(
            market_id=result.market_id,
            winning_outcome_id=result.winning_outcome_id,
            actual_value=result.actual_value,
            preview=result.preview,
            success=result.success,
            errors=[ResolutionErrorItem.model_validate(error) for error in result.errors],
            payout_summary=(
                PayoutSummary.model_validate(result.payout_summary) if result.success else None
            ),
            payouts=[PayoutLine.model_validate(line) for line in result.payouts],
            trendsetter_points=dict(result.trendsetter_points),
            trendsetter_points_awarded=sum(result.trendsetter_points.values()),
            taste_match_pairs=sorted(result.taste_match_pairs),
            affinity_skipped_user_ids=list(result.affinity_skipped_user_ids),
            balance_user_ids=sorted(result.balance_user_ids),
            refund=result.refund,
            resolved_at=result.resolved_at,
        )


class ResolutionDetails(BaseModel):
    market_id: str
    status: str
    winning_outcome_id: str | None = None
    actual_value: Decimal | None = None
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    resolution_source: str | None = None
    resolution_notes: str | None = None
    total_credited: Decimal
    ledger_entry_count: int
    trendsetter_points_awarded: int

    model_config = {"from_attributes": True}


class UserBalance(BaseModel):
    user_id: str
    balance: Decimal
    trendsetter_points: int = 0


class TasteMatch(BaseModel):
    user_id: str
    other_user_id: str
    score: float
    shared_correct_calls: int
    updated_at: datetime
    percentage: str | None = None
    strength: str | None = None

    model_config = {"from_attributes": True}

    @field_validator("score", mode="before")
    @classmethod
    def _coerce_score(cls, value: Any) -> float:
        return float(value)


class TasteMatchList(BaseModel):
    total: int
    items: list[TasteMatch]


class LedgerEntry(BaseModel):
    entry_id: int
    user_id: str
    amount: Decimal
    reason: str
    market_id: str
    bet_id: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class LedgerEntryList(BaseModel):
    total: int
    total_credited: Decimal
    items: list[LedgerEntry]


class BetPayout(BaseModel):
    bet_id: str
    total_credited: Decimal
    entries: list[LedgerEntry] = Field(default_factory=list)
