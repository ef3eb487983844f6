from __future__ import annotations

from decimal import Decimal

from sqlalchemy.orm import Session

from app.repositories import LedgerRepository
from app.repositories.types import ResolutionRecord, TasteMatchRecord

from .models import BalanceLedgerEntry


def get_resolution_details(session: Session, market_id: str) -> ResolutionRecord | None:
    return LedgerRepository(session).get_resolution_details(market_id)


def get_user_balance(session: Session, user_id: str) -> Decimal:
    return LedgerRepository(session).get_user_balance(user_id)


def get_user_trendsetter_points(session: Session, user_id: str) -> int:
    return LedgerRepository(session).get_user_trendsetter_points(user_id)


def list_user_taste_matches(
    session: Session, user_id: str, *, limit: int = 20
) -> list[TasteMatchRecord]:
    return LedgerRepository(session).list_user_taste_matches(user_id, limit=limit)


def list_bet_entries(session: Session, bet_id: str) -> list[BalanceLedgerEntry]:
    return LedgerRepository(session).list_bet_entries(bet_id)


def list_market_entries(session: Session, market_id: str) -> list[BalanceLedgerEntry]:
    return LedgerRepository(session).list_market_entries(market_id)
