"""Read-side queries over settled markets, balances and taste matches."""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import desc, func, or_, select
from sqlalchemy.orm import Session

from app.models import BalanceLedgerEntry, Market, TasteMatch, TrendsetterAward

from .types import ResolutionRecord, TasteMatchRecord


class LedgerRepository:
    """Encapsulate queries over the settlement ledgers."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get_user_balance(self, user_id: str) -> Decimal:
        query = select(func.coalesce(func.sum(BalanceLedgerEntry.amount), 0)).where(
            BalanceLedgerEntry.user_id == user_id
        )
        return Decimal(str(self._session.execute(query).scalar_one()))

    def list_bet_entries(self, bet_id: str) -> list[BalanceLedgerEntry]:
        query = (
            select(BalanceLedgerEntry)
            .where(BalanceLedgerEntry.bet_id == bet_id)
            .order_by(BalanceLedgerEntry.entry_id.asc())
        )
        return list(self._session.execute(query).scalars().all())

    def list_market_entries(self, market_id: str) -> list[BalanceLedgerEntry]:
        query = (
            select(BalanceLedgerEntry)
            .where(BalanceLedgerEntry.market_id == market_id)
            .order_by(BalanceLedgerEntry.entry_id.asc())
        )
        return list(self._session.execute(query).scalars().all())

    def get_user_trendsetter_points(self, user_id: str) -> int:
        query = select(func.coalesce(func.sum(TrendsetterAward.points), 0)).where(
            TrendsetterAward.user_id == user_id
        )
        return int(self._session.execute(query).scalar_one())

    def list_user_taste_matches(self, user_id: str, *, limit: int = 20) -> list[TasteMatchRecord]:
        query = (
            select(TasteMatch)
            .where(or_(TasteMatch.user_low_id == user_id, TasteMatch.user_high_id == user_id))
            .order_by(desc(TasteMatch.score), TasteMatch.user_low_id, TasteMatch.user_high_id)
            .limit(limit)
        )
        records: list[TasteMatchRecord] = []
        for edge in self._session.execute(query).scalars().all():
            other = edge.user_high_id if edge.user_low_id == user_id else edge.user_low_id
            records.append(
                TasteMatchRecord(
                    user_id=user_id,
                    other_user_id=other,
                    score=float(edge.score),
                    shared_correct_calls=edge.shared_correct_calls,
                    updated_at=edge.updated_at,
                )
            )
        return records

    def get_resolution_details(self, market_id: str) -> ResolutionRecord | None:
        market = self._session.get(Market, market_id)
        if market is None or market.winning_outcome_id is None:
            return None

        totals_query = select(
            func.coalesce(func.sum(BalanceLedgerEntry.amount), 0),
            func.count(BalanceLedgerEntry.entry_id),
        ).where(BalanceLedgerEntry.market_id == market_id)
        total_credited, entry_count = self._session.execute(totals_query).one()

        points_query = select(func.coalesce(func.sum(TrendsetterAward.points), 0)).where(
            TrendsetterAward.market_id == market_id
        )
        points = self._session.execute(points_query).scalar_one()

        return ResolutionRecord(
            market_id=market.market_id,
            status=market.status,
            winning_outcome_id=market.winning_outcome_id,
            actual_value=market.actual_value,
            resolved_at=market.resolved_at,
            resolved_by=market.resolved_by,
            resolution_source=market.resolution_source,
            resolution_notes=market.resolution_notes,
            total_credited=Decimal(str(total_credited)),
            ledger_entry_count=int(entry_count),
            trendsetter_points_awarded=int(points),
        )


__all__ = ["LedgerRepository"]
