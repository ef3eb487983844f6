"""Repository abstractions for database interactions."""

from .ledger_repository import LedgerRepository
from .settlement_repository import SettlementRepository
from .types import ResolutionRecord, TasteMatchRecord

__all__ = [
    "LedgerRepository",
    "SettlementRepository",
    "ResolutionRecord",
    "TasteMatchRecord",
]
