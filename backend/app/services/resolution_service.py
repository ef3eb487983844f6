"""Market resolution: validate, compute the settlement, and preview or commit it."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_EVEN, Decimal

from loguru import logger

from app.core.config import Settings, get_settings
from app.domain import (
    MarketSnapshot,
    PayoutPlan,
    PayoutSummary,
    ResolutionError,
    ResolutionResult,
    TasteMatchPlan,
)
from app.models import (
    ACTUAL_VALUE_PRECISION,
    ACTUAL_VALUE_SCALE,
    CURRENCY_SCALE,
    MarketStatus,
    utcnow,
)
from app.repositories import SettlementRepository
from app.repositories.settlement_inputs import (
    LedgerEntryInput,
    MarketResolutionInput,
    TrendsetterAwardInput,
)
from app.services.settlement import (
    MarketAlreadyTerminalError,
    NoStakesError,
    ResolutionErrorCode,
    SettlementError,
    SettlementFailedError,
    compute_payouts,
    compute_taste_match_updates,
    compute_trendsetter_points,
)


_ACTUAL_VALUE_QUANTUM = Decimal(1).scaleb(-ACTUAL_VALUE_SCALE)
# Largest magnitude the market row can hold before the decimal point overflows.
_ACTUAL_VALUE_LIMIT = Decimal(10) ** (ACTUAL_VALUE_PRECISION - ACTUAL_VALUE_SCALE)


def _stored_actual_value(value: Decimal) -> Decimal:
    """Round ``value`` to the precision the market row keeps."""

    return Decimal(value).quantize(_ACTUAL_VALUE_QUANTUM, rounding=ROUND_HALF_EVEN)


def _fits_actual_value_column(value: Decimal) -> bool:
    value = Decimal(value)
    if not value.is_finite() or abs(value) >= _ACTUAL_VALUE_LIMIT:
        return False
    return abs(_stored_actual_value(value)) < _ACTUAL_VALUE_LIMIT


@dataclass(frozen=True, slots=True)
class SettlementParameters:
    """Tunable constants consumed by the calculators."""

    quantum: Decimal = Decimal("0.01")
    base_points: int = 10
    max_points_per_bet: int = 100
    probability_floor: Decimal = Decimal("0.01")
    taste_match_increment: float = 0.1
    max_correct_users: int = 200
    resolve_empty_markets: bool = False

    def __post_init__(self) -> None:
        if self.quantum.as_tuple().exponent < -CURRENCY_SCALE:
            raise ValueError(
                f"Payout quantum {self.quantum} is finer than the ledger scale of {CURRENCY_SCALE} places"
            )

    @classmethod
    def from_settings(cls, settings: Settings) -> SettlementParameters:
        return cls(
            quantum=settings.currency_quantum,
            base_points=settings.trendsetter_base_points,
            max_points_per_bet=settings.trendsetter_max_points_per_bet,
            probability_floor=settings.trendsetter_probability_floor,
            taste_match_increment=settings.taste_match_score_increment,
            max_correct_users=settings.taste_match_max_correct_users,
            resolve_empty_markets=settings.resolve_empty_markets,
        )


@dataclass(frozen=True, slots=True)
class SettlementPlan:
    payouts: PayoutPlan
    trendsetter_points: dict[str, int]
    taste_matches: TasteMatchPlan


class ResolutionService:
    """Resolve markets exactly once.

    Preview and commit share :meth:`compute_plan`, so a preview reports the
    same payouts and points a real resolution would write. Commit re-checks
    the market inside the settlement transaction and moves it to ``resolved``
    with a compare-and-set; a concurrent resolution that got there first
    surfaces as ``market_already_terminal``.
    """

    def __init__(
        self,
        store: SettlementRepository | None = None,
        *,
        settings: Settings | None = None,
        parameters: SettlementParameters | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store or SettlementRepository()
        self._parameters = parameters or SettlementParameters.from_settings(
            settings or get_settings()
        )
        self._clock = clock

    @property
    def parameters(self) -> SettlementParameters:
        return self._parameters

    # ------------------------------------------------------------------
    # Public API

    def preview(self, market_id: str, winning_outcome_id: str) -> ResolutionResult:
        return self.resolve(market_id, winning_outcome_id, None, preview_only=True)

    def resolve(
        self,
        market_id: str,
        winning_outcome_id: str,
        actual_value: Decimal | None,
        *,
        preview_only: bool = False,
        resolved_by: str | None = None,
        resolution_source: str | None = None,
        resolution_notes: str | None = None,
    ) -> ResolutionResult:
        logger.info(
            "Resolving market {} with outcome {} (preview={})",
            market_id,
            winning_outcome_id,
            preview_only,
        )
        result = ResolutionResult(
            market_id=market_id,
            winning_outcome_id=winning_outcome_id,
            actual_value=actual_value,
            preview=preview_only,
        )

        snapshot = self._store.load_market_snapshot(market_id)
        if snapshot is None:
            result.errors.append(
                ResolutionError(ResolutionErrorCode.NOT_FOUND.value, f"Market {market_id} not found")
            )
            return result

        errors = self._validate(snapshot, winning_outcome_id, actual_value, preview_only)
        if errors:
            result.errors.extend(errors)
            return result
        if actual_value is not None:
            actual_value = _stored_actual_value(actual_value)
            result.actual_value = actual_value

        try:
            plan = self.compute_plan(snapshot, winning_outcome_id)
        except SettlementError as exc:
            result.errors.append(ResolutionError(exc.code.value, exc.message))
            return result

        self._populate(result, plan)
        if preview_only:
            result.success = True
            logger.info(
                "Preview for market {}: pool={}, winners={}, losers={}",
                market_id,
                plan.payouts.summary.total_pool,
                plan.payouts.summary.winner_count,
                plan.payouts.summary.loser_count,
            )
            return result

        resolved_at = self._clock()
        try:
            self._commit(
                MarketResolutionInput(
                    market_id=market_id,
                    winning_outcome_id=winning_outcome_id,
                    actual_value=actual_value,
                    resolved_at=resolved_at,
                    resolved_by=resolved_by,
                    resolution_source=resolution_source,
                    resolution_notes=resolution_notes,
                ),
                plan,
            )
        except MarketAlreadyTerminalError as exc:
            logger.info("Market {} not settled: {}", market_id, exc.message)
            return ResolutionResult(
                market_id=market_id,
                winning_outcome_id=winning_outcome_id,
                actual_value=actual_value,
                errors=[ResolutionError(exc.code.value, exc.message)],
            )
        except SettlementFailedError:
            logger.exception("Settlement of market {} failed and was rolled back", market_id)
            raise

        result.resolved_at = resolved_at
        result.success = True
        if plan.payouts.is_refund:
            logger.info(
                "Market {} had no stakes on {}; refunded {} bets",
                market_id,
                winning_outcome_id,
                len(plan.payouts.credited_lines),
            )
        logger.info(
            "Market {} resolved: pool={}, payouts={}, winners={}, awards={}, taste_pairs={}",
            market_id,
            plan.payouts.summary.total_pool,
            plan.payouts.summary.total_payouts,
            plan.payouts.summary.winner_count,
            len(plan.trendsetter_points),
            len(plan.taste_matches.deltas),
        )
        return result

    def compute_plan(self, snapshot: MarketSnapshot, winning_outcome_id: str) -> SettlementPlan:
        """Run the three calculators on ``snapshot`` without touching the store."""

        params = self._parameters
        try:
            payouts = compute_payouts(
                snapshot.outcomes,
                snapshot.bets,
                winning_outcome_id,
                quantum=params.quantum,
            )
        except NoStakesError:
            if not params.resolve_empty_markets:
                raise
            payouts = PayoutPlan(summary=PayoutSummary())

        winning_bets = [bet for bet in snapshot.bets if bet.outcome_id == winning_outcome_id]
        points = compute_trendsetter_points(
            winning_bets,
            base_points=params.base_points,
            max_points_per_bet=params.max_points_per_bet,
            probability_floor=params.probability_floor,
        )
        taste_matches = compute_taste_match_updates(
            (bet.user_id for bet in winning_bets),
            score_increment=params.taste_match_increment,
            max_users=params.max_correct_users,
        )
        return SettlementPlan(payouts=payouts, trendsetter_points=points, taste_matches=taste_matches)

    # ------------------------------------------------------------------
    # Helpers

    @staticmethod
    def _validate(
        snapshot: MarketSnapshot,
        winning_outcome_id: str,
        actual_value: Decimal | None,
        preview_only: bool,
    ) -> list[ResolutionError]:
        errors: list[ResolutionError] = []
        if snapshot.status in MarketStatus.terminal():
            errors.append(
                ResolutionError(
                    ResolutionErrorCode.MARKET_ALREADY_TERMINAL.value,
                    f"Market {snapshot.market_id} is already {snapshot.status}",
                )
            )
        if winning_outcome_id not in snapshot.outcome_ids:
            errors.append(
                ResolutionError(
                    ResolutionErrorCode.INVALID_OUTCOME.value,
                    f"Outcome {winning_outcome_id} does not belong to market {snapshot.market_id}",
                )
            )
        if not preview_only and actual_value is None:
            errors.append(
                ResolutionError(
                    ResolutionErrorCode.MISSING_ACTUAL_VALUE.value,
                    "An actual value is required to resolve a market",
                )
            )
        elif actual_value is not None and not _fits_actual_value_column(actual_value):
            errors.append(
                ResolutionError(
                    ResolutionErrorCode.INVALID_ACTUAL_VALUE.value,
                    f"Actual value {actual_value} must be finite and below {_ACTUAL_VALUE_LIMIT}",
                )
            )
        return errors

    @staticmethod
    def _populate(result: ResolutionResult, plan: SettlementPlan) -> None:
        result.payout_summary = plan.payouts.summary
        result.payouts = list(plan.payouts.lines)
        result.trendsetter_points = dict(plan.trendsetter_points)
        result.taste_match_pairs = {delta.pair for delta in plan.taste_matches.deltas}
        result.affinity_skipped_user_ids = list(plan.taste_matches.skipped_user_ids)
        result.balance_user_ids = {line.user_id for line in plan.payouts.credited_lines}
        result.refund = plan.payouts.is_refund

    def _commit(self, resolution: MarketResolutionInput, plan: SettlementPlan) -> None:
        created_at = resolution.resolved_at
        ledger_entries = [
            LedgerEntryInput(
                user_id=line.user_id,
                amount=line.payout,
                reason=line.reason,
                market_id=resolution.market_id,
                bet_id=line.bet_id,
                created_at=created_at,
            )
            for line in plan.payouts.credited_lines
        ]
        awards = [
            TrendsetterAwardInput(
                user_id=user_id,
                market_id=resolution.market_id,
                points=points,
                created_at=created_at,
            )
            for user_id, points in sorted(plan.trendsetter_points.items())
            if points > 0
        ]

        with self._store.transaction() as tx:
            self._store.lock_market_for_resolution(tx, resolution.market_id)
            self._store.update_market_resolution(tx, resolution)
            self._store.write_balance_ledger_entries(tx, ledger_entries)
            self._store.write_trendsetter_awards(tx, awards)
            self._store.write_taste_match_deltas(
                tx, plan.taste_matches.deltas, updated_at=created_at
            )


__all__ = ["ResolutionService", "SettlementParameters", "SettlementPlan"]
