"""Offline comparison helpers: Precision / Recall / F1 @ K and test-user picks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

import pandas as pd

from tower_recs.config import defaults


@dataclass(frozen=True)
class RankingMetrics:
    precision: float
    recall: float
    f1: float
    hits: int


def precision_recall_f1_at_k(recommended: Iterable[int], relevant: Iterable[int], k: int) -> RankingMetrics:
    """Hits among the first `k` recommendations.

    Recall is normalised by ``min(|relevant|, k)`` so a user with many liked
    items is not penalised for the cut-off.
    """
    if k <= 0:
        raise ValueError(f"k must be positive, got {k}")
    relevant = set(relevant)
    top = list(recommended)[:k]
    hits = sum(1 for item in top if item in relevant)
    precision = hits / k
    recall = hits / min(len(relevant), k) if relevant else 0.0
    f1 = 2 * precision * recall / (precision + recall) if precision + recall > 0 else 0.0
    return RankingMetrics(precision, recall, f1, hits)


def most_active_user(ratings: pd.DataFrame, threshold: int = defaults.POSITIVE_THRESHOLD) -> int | None:
    """User with the most ratings >= threshold (first such user on ties)."""
    liked = ratings[ratings["rating"] >= threshold]
    if liked.empty:
        return None
    counts = liked.groupby("user_id", sort=False).size()
    return int(counts.idxmax())


def liked_items(ratings: pd.DataFrame, user_id: int, threshold: int = defaults.POSITIVE_THRESHOLD) -> set[int]:
    mask = (ratings["user_id"] == user_id) & (ratings["rating"] >= threshold)
    return set(ratings.loc[mask, "item_id"].tolist())


def user_history(ratings: pd.DataFrame, user_id: int, limit: int = 10) -> pd.DataFrame:
    """The user's highest-rated items, best first."""
    rows = ratings[ratings["user_id"] == user_id]
    return rows.sort_values("rating", ascending=False, kind="stable").head(limit).reset_index(drop=True)
