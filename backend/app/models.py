from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base

# Decimal places stored for currency amounts and for the observed outcome value.
CURRENCY_SCALE = 2
ACTUAL_VALUE_PRECISION = 20
ACTUAL_VALUE_SCALE = 6


class MarketStatus(str, Enum):
    OPEN = "open"
    LOCKED = "locked"
    RESOLVED = "resolved"
    VOID = "void"

    @classmethod
    def resolvable(cls) -> tuple[str, ...]:
        return (cls.OPEN.value, cls.LOCKED.value)

    @classmethod
    def terminal(cls) -> tuple[str, ...]:
        return (cls.RESOLVED.value, cls.VOID.value)


class LedgerReason(str, Enum):
    PAYOUT = "PAYOUT"
    REFUND = "REFUND"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Market(Base):
    __tablename__ = "markets"

    market_id: Mapped[str] = mapped_column(String, primary_key=True)
    title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String, nullable=False, default=MarketStatus.OPEN.value)
    winning_outcome_id: Mapped[str | None] = mapped_column(String, nullable=True)
    actual_value: Mapped[Decimal | None] = mapped_column(
        Numeric(ACTUAL_VALUE_PRECISION, ACTUAL_VALUE_SCALE), nullable=True
    )
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String, nullable=True)
    resolution_source: Mapped[str | None] = mapped_column(String(50), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    outcomes: Mapped[list["Outcome"]] = relationship(
        "Outcome", back_populates="market", cascade="all, delete-orphan"
    )
    bets: Mapped[list["Bet"]] = relationship(
        "Bet", back_populates="market", cascade="all, delete-orphan"
    )


class Outcome(Base):
    __tablename__ = "outcomes"

    outcome_id: Mapped[str] = mapped_column(String, primary_key=True)
    market_id: Mapped[str] = mapped_column(String, ForeignKey("markets.market_id"), nullable=False)
    label: Mapped[str] = mapped_column(String, nullable=False, default="")
    implied_probability: Mapped[Decimal | None] = mapped_column(Numeric(8, 6), nullable=True)
    total_staked: Mapped[Decimal] = mapped_column(Numeric(18, CURRENCY_SCALE), nullable=False, default=Decimal("0"))
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    market: Mapped[Market] = relationship("Market", back_populates="outcomes")


class Bet(Base):
    __tablename__ = "bets"

    bet_id: Mapped[str] = mapped_column(String, primary_key=True)
    market_id: Mapped[str] = mapped_column(String, ForeignKey("markets.market_id"), nullable=False)
    outcome_id: Mapped[str] = mapped_column(String, ForeignKey("outcomes.outcome_id"), nullable=False)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    stake: Mapped[Decimal] = mapped_column(Numeric(18, CURRENCY_SCALE), nullable=False)
    implied_probability_at_bet: Mapped[Decimal] = mapped_column(Numeric(8, 6), nullable=False)
    placed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    market: Mapped[Market] = relationship("Market", back_populates="bets")

    __table_args__ = (Index("ix_bets_market_id", "market_id"),)


class BalanceLedgerEntry(Base):
    __tablename__ = "balance_ledger"

    entry_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, CURRENCY_SCALE), nullable=False)
    reason: Mapped[str] = mapped_column(String(20), nullable=False)
    market_id: Mapped[str] = mapped_column(String, ForeignKey("markets.market_id"), nullable=False)
    bet_id: Mapped[str | None] = mapped_column(String, ForeignKey("bets.bet_id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("market_id", "bet_id", "reason", name="uq_ledger_market_bet_reason"),
        Index("ix_balance_ledger_user_id", "user_id"),
    )


class TrendsetterAward(Base):
    __tablename__ = "trendsetter_awards"

    award_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    market_id: Mapped[str] = mapped_column(String, ForeignKey("markets.market_id"), nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "market_id", name="uq_trendsetter_award_user_market"),
    )


class TasteMatch(Base):
    """Symmetric affinity edge stored once with ``user_low_id < user_high_id``."""

    __tablename__ = "taste_matches"

    user_low_id: Mapped[str] = mapped_column(String, primary_key=True)
    user_high_id: Mapped[str] = mapped_column(String, primary_key=True)
    score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    shared_correct_calls: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (Index("ix_taste_matches_user_high_id", "user_high_id"),)
