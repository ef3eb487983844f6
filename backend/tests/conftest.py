from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Callable

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from app.core.config import Settings
from app.db import build_db_components, init_db
from app.domain import BetSnapshot, OutcomeSnapshot
from app.models import Bet, Market, MarketStatus, Outcome
from app.repositories import SettlementRepository
from app.services.resolution_service import ResolutionService

BASE_TIME = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_bet(
    bet_id: str,
    user_id: str,
    outcome_id: str,
    stake: str | int,
    probability: str = "0.5",
    *,
    market_id: str = "m-1",
    minutes: int = 0,
) -> BetSnapshot:
    return BetSnapshot(
        bet_id=bet_id,
        market_id=market_id,
        outcome_id=outcome_id,
        user_id=user_id,
        stake=Decimal(str(stake)),
        implied_probability_at_bet=Decimal(probability),
        placed_at=BASE_TIME + timedelta(minutes=minutes),
    )


def make_outcomes(*outcome_ids: str, market_id: str = "m-1") -> list[OutcomeSnapshot]:
    return [
        OutcomeSnapshot(
            outcome_id=outcome_id,
            market_id=market_id,
            implied_probability=None,
            total_staked=Decimal("0"),
        )
        for outcome_id in outcome_ids
    ]


@pytest.fixture
def test_settings(tmp_path, monkeypatch) -> Settings:
    settings = Settings(
        database_url=f"sqlite:///{tmp_path/'settlement.db'}",
        settlement_retry_backoff_seconds="0",
    )
    monkeypatch.setattr("app.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("app.core.config.settings", settings)
    return settings


@pytest.fixture
def db_components(test_settings):
    engine, session_factory = build_db_components(test_settings.resolved_database_url)
    init_db(bind=engine)
    yield engine, session_factory
    engine.dispose()


@pytest.fixture
def session_factory(db_components):
    return db_components[1]


@pytest.fixture
def store(session_factory) -> SettlementRepository:
    return SettlementRepository(session_factory)


@pytest.fixture
def service(store, test_settings) -> ResolutionService:
    return ResolutionService(store, settings=test_settings, clock=lambda: BASE_TIME)


@pytest.fixture
def seed_market(session_factory) -> Callable[..., str]:
    """Insert a market with its outcomes and bets.

    ``bets`` holds ``(bet_id, user_id, outcome_id, stake, probability)`` tuples;
    bets are placed one minute apart in the order given.
    """

    def _seed(
        market_id: str = "m-1",
        *,
        outcomes: tuple[str, ...] = ("x", "y"),
        bets: tuple[tuple[str, str, str, str, str], ...] = (),
        status: str = MarketStatus.OPEN.value,
    ) -> str:
        with session_factory() as session:
            market = Market(market_id=market_id, title=f"Market {market_id}", status=status)
            session.add(market)
            for index, outcome_id in enumerate(outcomes):
                session.add(
                    Outcome(
                        outcome_id=f"{market_id}:{outcome_id}",
                        market_id=market_id,
                        label=outcome_id.upper(),
                        sort_order=index,
                    )
                )
            session.flush()
            for index, (bet_id, user_id, outcome_id, stake, probability) in enumerate(bets):
                session.add(
                    Bet(
                        bet_id=bet_id,
                        market_id=market_id,
                        outcome_id=f"{market_id}:{outcome_id}",
                        user_id=user_id,
                        stake=Decimal(stake),
                        implied_probability_at_bet=Decimal(probability),
                        placed_at=BASE_TIME + timedelta(minutes=index),
                    )
                )
            session.commit()
        return market_id

    return _seed


SCENARIO_BETS = (
    ("bet-a", "user-a", "x", "100", "0.5"),
    ("bet-b", "user-b", "x", "300", "0.4"),
    ("bet-c", "user-c", "y", "200", "0.3"),
)
