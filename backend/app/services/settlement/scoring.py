"""Trendsetter points for correct predictions.

A winning bet earns ``base_points / max(p, floor)`` points where ``p`` is the
implied probability of its outcome when the bet was placed, rounded half-even
and clamped per bet. Points of one user on one market are summed so a single
award row is written per (user, market).
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import ROUND_HALF_EVEN, Decimal

from app.domain import BetSnapshot


def points_for_bet(
    implied_probability: Decimal,
    *,
    base_points: int,
    max_points: int,
    probability_floor: Decimal,
) -> int:
    probability = max(Decimal(implied_probability), probability_floor)
    raw = (Decimal(base_points) / probability).to_integral_value(rounding=ROUND_HALF_EVEN)
    return max(0, min(int(raw), max_points))


def compute_trendsetter_points(
    winning_bets: Iterable[BetSnapshot],
    *,
    base_points: int,
    max_points_per_bet: int,
    probability_floor: Decimal,
) -> dict[str, int]:
    points: dict[str, int] = {}
    for bet in winning_bets:
        awarded = points_for_bet(
            bet.implied_probability_at_bet,
            base_points=base_points,
            max_points=max_points_per_bet,
            probability_floor=probability_floor,
        )
        points[bet.user_id] = points.get(bet.user_id, 0) + awarded
    return points


__all__ = ["compute_trendsetter_points", "points_for_bet"]
