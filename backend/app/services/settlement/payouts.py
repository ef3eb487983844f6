"""Parimutuel payout calculation.

The whole pool is redistributed to bets on the winning outcome in proportion
to their stake. Each payout is rounded half-even to the currency minor unit
and the accumulated rounding remainder is credited to the largest winning
stake, so the credited amounts always add up to the pool exactly. When the
winning outcome attracted no stakes, every bettor is refunded their own stake.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from decimal import ROUND_HALF_EVEN, Decimal

from app.domain import BetSnapshot, OutcomeSnapshot, PayoutLine, PayoutPlan, PayoutSummary
from app.models import LedgerReason

from .errors import InvalidOutcomeError, NoStakesError

ZERO = Decimal("0")
DEFAULT_QUANTUM = Decimal("0.01")


def _quantize(amount: Decimal, quantum: Decimal) -> Decimal:
    return amount.quantize(quantum, rounding=ROUND_HALF_EVEN)


def _remainder_recipient(winning_bets: Sequence[BetSnapshot]) -> str:
    """Largest stake absorbs the rounding remainder; ties go to the smallest bet id."""

    recipient = min(winning_bets, key=lambda bet: (-bet.stake, bet.bet_id))
    return recipient.bet_id


def _refund_plan(bets: Sequence[BetSnapshot], total_pool: Decimal) -> PayoutPlan:
    lines = tuple(
        PayoutLine(
            bet_id=bet.bet_id,
            user_id=bet.user_id,
            outcome_id=bet.outcome_id,
            stake=bet.stake,
            payout=bet.stake,
            reason=LedgerReason.REFUND.value,
            won=False,
        )
        for bet in bets
    )
    summary = PayoutSummary(
        total_pool=total_pool,
        total_winning_stakes=ZERO,
        total_payouts=total_pool,
        winner_count=0,
        loser_count=len(lines),
        average_winner_payout=ZERO,
    )
    return PayoutPlan(summary=summary, lines=lines)


def compute_payouts(
    outcomes: Iterable[OutcomeSnapshot],
    bets: Iterable[BetSnapshot],
    winning_outcome_id: str,
    *,
    quantum: Decimal = DEFAULT_QUANTUM,
) -> PayoutPlan:
    """Return the payout plan for ``winning_outcome_id``.

    Raises :class:`InvalidOutcomeError` when the outcome is not part of the
    market and :class:`NoStakesError` when nothing was staked at all.
    """

    outcome_ids = {outcome.outcome_id for outcome in outcomes}
    if winning_outcome_id not in outcome_ids:
        raise InvalidOutcomeError(
            f"Outcome {winning_outcome_id} does not belong to this market"
        )

    all_bets = list(bets)
    total_pool = sum((bet.stake for bet in all_bets), ZERO)
    if total_pool <= 0:
        raise NoStakesError("Market has no stakes to settle")

    winning_bets = [bet for bet in all_bets if bet.outcome_id == winning_outcome_id]
    total_winning_stakes = sum((bet.stake for bet in winning_bets), ZERO)
    if total_winning_stakes <= 0:
        return _refund_plan(all_bets, total_pool)

    payouts: dict[str, Decimal] = {
        bet.bet_id: _quantize(bet.stake * total_pool / total_winning_stakes, quantum)
        for bet in winning_bets
    }
    remainder = total_pool - sum(payouts.values(), ZERO)
    if remainder:
        payouts[_remainder_recipient(winning_bets)] += remainder

    lines: list[PayoutLine] = []
    for bet in all_bets:
        won = bet.outcome_id == winning_outcome_id
        lines.append(
            PayoutLine(
                bet_id=bet.bet_id,
                user_id=bet.user_id,
                outcome_id=bet.outcome_id,
                stake=bet.stake,
                payout=payouts[bet.bet_id] if won else ZERO,
                reason=LedgerReason.PAYOUT.value if won else None,
                won=won,
            )
        )

    total_payouts = sum(payouts.values(), ZERO)
    winner_count = len(winning_bets)
    summary = PayoutSummary(
        total_pool=total_pool,
        total_winning_stakes=total_winning_stakes,
        total_payouts=total_payouts,
        winner_count=winner_count,
        loser_count=len(all_bets) - winner_count,
        average_winner_payout=_quantize(total_payouts / winner_count, quantum),
    )
    return PayoutPlan(summary=summary, lines=tuple(lines))


__all__ = ["compute_payouts"]
