from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from app.domain import TasteMatchDelta
from app.models import BalanceLedgerEntry, Market, MarketStatus, TasteMatch
from app.repositories import LedgerRepository, SettlementRepository
from app.repositories.settlement_inputs import LedgerEntryInput, MarketResolutionInput
from app.services.settlement import MarketAlreadyTerminalError, SettlementFailedError
from conftest import BASE_TIME, SCENARIO_BETS


def _resolution(market_id: str = "m-1") -> MarketResolutionInput:
    return MarketResolutionInput(
        market_id=market_id,
        winning_outcome_id=f"{market_id}:x",
        actual_value=Decimal("10"),
        resolved_at=BASE_TIME,
        resolution_source="manual",
    )


def test_snapshot_orders_outcomes_and_bets(store, seed_market):
    seed_market(outcomes=("x", "y", "z"), bets=SCENARIO_BETS)

    snapshot = store.load_market_snapshot("m-1")

    assert snapshot.status == MarketStatus.OPEN.value
    assert [outcome.outcome_id for outcome in snapshot.outcomes] == ["m-1:x", "m-1:y", "m-1:z"]
    assert [bet.bet_id for bet in snapshot.bets] == ["bet-a", "bet-b", "bet-c"]
    assert snapshot.bets[1].stake == Decimal("300")
    assert snapshot.bets[1].implied_probability_at_bet == Decimal("0.4")


def test_missing_market_snapshot_is_none(store):
    assert store.load_market_snapshot("nope") is None


def test_update_market_resolution_is_compare_and_set(store, seed_market, session_factory):
    seed_market(bets=SCENARIO_BETS)

    with store.transaction() as tx:
        store.update_market_resolution(tx, _resolution())

    with pytest.raises(MarketAlreadyTerminalError):
        with store.transaction() as tx:
            store.update_market_resolution(tx, _resolution())

    with session_factory() as session:
        market = session.get(Market, "m-1")
        assert market.status == MarketStatus.RESOLVED.value
        assert market.resolution_source == "manual"


def test_lock_rejects_terminal_market(store, seed_market):
    seed_market(status=MarketStatus.VOID.value)

    with pytest.raises(MarketAlreadyTerminalError):
        with store.transaction() as tx:
            store.lock_market_for_resolution(tx, "m-1")


def test_lock_on_missing_market_fails_settlement(store):
    with pytest.raises(SettlementFailedError):
        with store.transaction() as tx:
            store.lock_market_for_resolution(tx, "gone")


def test_duplicate_ledger_entry_rolls_back_transaction(store, seed_market, session_factory):
    seed_market(bets=SCENARIO_BETS)
    entry = LedgerEntryInput(
        user_id="user-a",
        amount=Decimal("150"),
        reason="PAYOUT",
        market_id="m-1",
        bet_id="bet-a",
        created_at=BASE_TIME,
    )

    with pytest.raises(SettlementFailedError) as exc_info:
        with store.transaction() as tx:
            store.update_market_resolution(tx, _resolution())
            store.write_balance_ledger_entries(tx, [entry, entry])

    assert isinstance(exc_info.value.__cause__, IntegrityError)
    with session_factory() as session:
        assert session.get(Market, "m-1").status == MarketStatus.OPEN.value
        assert session.execute(select(BalanceLedgerEntry)).first() is None


def test_taste_match_upsert_increments_existing_edges(store, session_factory):
    deltas = [
        TasteMatchDelta.for_pair("bob", "alice", 0.1),
        TasteMatchDelta.for_pair("carol", "alice", 0.1),
    ]

    with store.transaction() as tx:
        store.write_taste_match_deltas(tx, deltas, updated_at=BASE_TIME)
    with store.transaction() as tx:
        store.write_taste_match_deltas(tx, deltas[:1], updated_at=BASE_TIME)

    with session_factory() as session:
        edges = {
            (edge.user_low_id, edge.user_high_id): (edge.score, edge.shared_correct_calls)
            for edge in session.execute(select(TasteMatch)).scalars()
        }
    assert edges[("alice", "bob")][0] == pytest.approx(0.2)
    assert edges[("alice", "bob")][1] == 2
    assert edges[("alice", "carol")] == (pytest.approx(0.1), 1)


def test_orm_merge_matches_upsert(store, session_factory):
    deltas = [TasteMatchDelta.for_pair("bob", "alice", 0.25)]

    with store.transaction() as tx:
        store._merge_taste_match_deltas(tx, deltas, updated_at=BASE_TIME)
        store._merge_taste_match_deltas(tx, deltas, updated_at=BASE_TIME)

    with session_factory() as session:
        edge = session.get(TasteMatch, ("alice", "bob"))
        assert edge.score == pytest.approx(0.5)
        assert edge.shared_correct_calls == 2


def test_resolution_details_summarise_ledger(service, seed_market, session_factory):
    seed_market(bets=SCENARIO_BETS)
    service.resolve("m-1", "m-1:x", Decimal("42"), resolution_source="box_office_feed")

    with session_factory() as session:
        ledger = LedgerRepository(session)
        details = ledger.get_resolution_details("m-1")
        bet_entries = ledger.list_bet_entries("bet-b")

    assert details.status == MarketStatus.RESOLVED.value
    assert details.total_credited == Decimal("600")
    assert details.ledger_entry_count == 2
    assert details.trendsetter_points_awarded == 45
    assert details.resolution_source == "box_office_feed"
    assert [(entry.amount, entry.reason) for entry in bet_entries] == [(Decimal("450"), "PAYOUT")]


def test_resolution_details_absent_for_open_market(seed_market, session_factory):
    seed_market(bets=SCENARIO_BETS)

    with session_factory() as session:
        assert LedgerRepository(session).get_resolution_details("m-1") is None
        assert LedgerRepository(session).get_resolution_details("missing") is None


def test_repository_defaults_to_global_session_factory():
    from app.db import SessionLocal

    assert SettlementRepository()._session_factory is SessionLocal
