"""Pairwise taste-match updates between users who called the same market correctly."""

from __future__ import annotations

from collections.abc import Iterable
from itertools import combinations

from loguru import logger

from app.domain import TasteMatchDelta, TasteMatchPlan

MATCH_THRESHOLD = 0.6


def compute_taste_match_updates(
    correct_user_ids: Iterable[str],
    *,
    score_increment: float,
    max_users: int,
) -> TasteMatchPlan:
    """Return one delta per unordered pair of distinct correct users.

    ``correct_user_ids`` is read in priority order. Only the first ``max_users``
    distinct users are paired, which bounds the update to
    ``max_users * (max_users - 1) / 2`` edges; the remaining users are reported
    in ``skipped_user_ids``.
    """

    ordered: list[str] = []
    seen: set[str] = set()
    for user_id in correct_user_ids:
        if user_id in seen:
            continue
        seen.add(user_id)
        ordered.append(user_id)

    considered = ordered[:max_users]
    skipped = ordered[max_users:]
    if skipped:
        logger.warning(
            "Taste-match cap reached: pairing {} of {} correct users, skipping {}",
            len(considered),
            len(ordered),
            len(skipped),
        )

    deltas = frozenset(
        TasteMatchDelta.for_pair(first, second, score_increment)
        for first, second in combinations(considered, 2)
    )
    return TasteMatchPlan(
        deltas=deltas,
        considered_user_ids=tuple(considered),
        skipped_user_ids=tuple(skipped),
    )


def taste_match_percentage(score: float) -> str:
    """Map a taste-match score onto a 0-100% display value."""

    normalized = max(0.0, min(100.0, (score + 1) * 50))
    return f"{round(normalized)}%"


def taste_match_strength(score: float) -> str:
    if score > 1.5:
        return "Exceptional"
    if score > 1.0:
        return "Strong"
    if score > 0.8:
        return "Good"
    if score > MATCH_THRESHOLD:
        return "Moderate"
    if score > 0.3:
        return "Weak"
    return "Poor"


__all__ = [
    "compute_taste_match_updates",
    "taste_match_percentage",
    "taste_match_strength",
]
