"""Transactional persistence boundary used by the resolution service."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from app.db import SessionLocal
from app.domain import BetSnapshot, MarketSnapshot, OutcomeSnapshot, TasteMatchDelta
from app.models import (
    BalanceLedgerEntry,
    Market,
    MarketStatus,
    TasteMatch,
    TrendsetterAward,
)
from app.services.settlement.errors import (
    MarketAlreadyTerminalError,
    SettlementError,
    SettlementFailedError,
)

from .settlement_inputs import LedgerEntryInput, MarketResolutionInput, TrendsetterAwardInput

_UPSERT_DIALECTS = {
    "sqlite": sqlite_insert,
    "postgresql": postgresql_insert,
}


def _to_snapshot(market: Market) -> MarketSnapshot:
    outcomes = tuple(
        OutcomeSnapshot(
            outcome_id=outcome.outcome_id,
            market_id=outcome.market_id,
            implied_probability=outcome.implied_probability,
            total_staked=outcome.total_staked,
        )
        for outcome in sorted(market.outcomes, key=lambda item: (item.sort_order, item.outcome_id))
    )
    bets = tuple(
        BetSnapshot(
            bet_id=bet.bet_id,
            market_id=bet.market_id,
            outcome_id=bet.outcome_id,
            user_id=bet.user_id,
            stake=bet.stake,
            implied_probability_at_bet=bet.implied_probability_at_bet,
            placed_at=bet.placed_at,
        )
        for bet in sorted(market.bets, key=lambda item: (item.placed_at, item.bet_id))
    )
    return MarketSnapshot(
        market_id=market.market_id,
        status=market.status,
        winning_outcome_id=market.winning_outcome_id,
        outcomes=outcomes,
        bets=bets,
    )


class SettlementRepository:
    """Read a market snapshot and apply a settlement inside one transaction.

    Every write helper takes the session yielded by :meth:`transaction` so the
    ledger entries, awards, taste-match edges and the market status change
    commit or roll back together.
    """

    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self._session_factory = session_factory or SessionLocal

    # ------------------------------------------------------------------
    # Reads

    def load_market_snapshot(self, market_id: str) -> MarketSnapshot | None:
        with self._session_factory() as session:
            query = (
                select(Market)
                .options(selectinload(Market.outcomes), selectinload(Market.bets))
                .where(Market.market_id == market_id)
            )
            market = session.execute(query).scalar_one_or_none()
            if market is None:
                return None
            return _to_snapshot(market)

    # ------------------------------------------------------------------
    # Transaction scope

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SettlementError:
            session.rollback()
            raise
        except SQLAlchemyError as exc:
            session.rollback()
            raise SettlementFailedError(
                "Settlement could not be written; no changes were applied"
            ) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Writes (all scoped to ``tx``)

    def lock_market_for_resolution(self, tx: Session, market_id: str) -> str:
        """Re-read the market status under a row lock and reject terminal markets."""

        query = select(Market.status).where(Market.market_id == market_id).with_for_update()
        status = tx.execute(query).scalar_one_or_none()
        if status is None:
            raise SettlementFailedError(f"Market {market_id} disappeared during settlement")
        if status in MarketStatus.terminal():
            raise MarketAlreadyTerminalError(f"Market {market_id} is already {status}")
        return status

    def update_market_resolution(self, tx: Session, payload: MarketResolutionInput) -> None:
        # Compare-and-set on status: only one settlement can move the row out of open/locked.
        statement = (
            update(Market)
            .where(
                Market.market_id == payload.market_id,
                Market.status.in_(MarketStatus.resolvable()),
            )
            .values(
                status=MarketStatus.RESOLVED.value,
                winning_outcome_id=payload.winning_outcome_id,
                actual_value=payload.actual_value,
                resolved_at=payload.resolved_at,
                resolved_by=payload.resolved_by,
                resolution_source=payload.resolution_source,
                resolution_notes=payload.resolution_notes,
            )
            .execution_options(synchronize_session=False)
        )
        result = tx.execute(statement)
        if result.rowcount != 1:
            raise MarketAlreadyTerminalError(
                f"Market {payload.market_id} was settled by a concurrent resolution"
            )

    def write_balance_ledger_entries(
        self, tx: Session, entries: Iterable[LedgerEntryInput]
    ) -> None:
        tx.add_all(
            BalanceLedgerEntry(
                user_id=entry.user_id,
                amount=entry.amount,
                reason=entry.reason,
                market_id=entry.market_id,
                bet_id=entry.bet_id,
                created_at=entry.created_at,
            )
            for entry in entries
        )
        tx.flush()

    def write_trendsetter_awards(
        self, tx: Session, awards: Iterable[TrendsetterAwardInput]
    ) -> None:
        tx.add_all(
            TrendsetterAward(
                user_id=award.user_id,
                market_id=award.market_id,
                points=award.points,
                created_at=award.created_at,
            )
            for award in awards
        )
        tx.flush()

    def write_taste_match_deltas(
        self,
        tx: Session,
        deltas: Iterable[TasteMatchDelta],
        *,
        updated_at: datetime,
    ) -> None:
        # Fixed pair order keeps row-lock acquisition consistent across concurrent settlements.
        ordered = sorted(deltas, key=lambda delta: delta.pair)
        if not ordered:
            return

        insert_fn = _UPSERT_DIALECTS.get(tx.get_bind().dialect.name)
        if insert_fn is None:
            self._merge_taste_match_deltas(tx, ordered, updated_at=updated_at)
            return

        for delta in ordered:
            statement = insert_fn(TasteMatch).values(
                user_low_id=delta.user_low_id,
                user_high_id=delta.user_high_id,
                score=delta.score_delta,
                shared_correct_calls=delta.shared_correct_calls_delta,
                updated_at=updated_at,
            )
            statement = statement.on_conflict_do_update(
                index_elements=[TasteMatch.user_low_id, TasteMatch.user_high_id],
                set_={
                    "score": TasteMatch.score + statement.excluded.score,
                    "shared_correct_calls": TasteMatch.shared_correct_calls
                    + statement.excluded.shared_correct_calls,
                    "updated_at": statement.excluded.updated_at,
                },
            )
            tx.execute(statement)

    def _merge_taste_match_deltas(
        self,
        tx: Session,
        deltas: Iterable[TasteMatchDelta],
        *,
        updated_at: datetime,
    ) -> None:
        for delta in deltas:
            edge = tx.get(TasteMatch, delta.pair, with_for_update=True)
            if edge is None:
                edge = TasteMatch(
                    user_low_id=delta.user_low_id,
                    user_high_id=delta.user_high_id,
                    score=0.0,
                    shared_correct_calls=0,
                )
                tx.add(edge)
            edge.score = (edge.score or 0.0) + delta.score_delta
            edge.shared_correct_calls = (edge.shared_correct_calls or 0) + delta.shared_correct_calls_delta
            edge.updated_at = updated_at
        tx.flush()


__all__ = ["SettlementRepository"]
