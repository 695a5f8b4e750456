# ------------------------------------------------------------
# data/preprocess.py
# ------------------------------------------------------------
"""Helpers that turn normalised rating records into (user, item, label)
training samples for the Two-Tower trainer.

No file parsing happens here: callers hand over records shaped like
``{"user_id": int, "item_id": int, "rating": number}`` (a DataFrame or any
iterable of mappings) and an ``item_id -> genre vector`` mapping.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence

import numpy as np
import pandas as pd

from tower_recs.config import defaults
from tower_recs.errors import ConfigurationError, DataError

log = logging.getLogger(__name__)

_ALIASES = {"userId": "user_id", "itemId": "item_id", "movieId": "item_id", "movie_id": "item_id"}


# ---------------------------------------------------------------------------
# Interaction tables
# ---------------------------------------------------------------------------


def to_frame(interactions: pd.DataFrame | Iterable[Mapping]) -> pd.DataFrame:
    """Normalise records into a frame with ``user_id``, ``item_id``, ``label``.

    ``label`` comes from thresholding ``rating`` (>= POSITIVE_THRESHOLD -> 1)
    or, when there is no ``rating`` column, from an explicit 0/1 ``label``.
    """
    df = interactions.copy() if isinstance(interactions, pd.DataFrame) else pd.DataFrame(list(interactions))
    if df.empty:
        raise DataError("interaction list is empty")
    df = df.rename(columns={k: v for k, v in _ALIASES.items() if k in df.columns})

    missing = {"user_id", "item_id"} - set(df.columns)
    if missing:
        raise DataError(f"interactions missing column(s): {sorted(missing)}")
    if "rating" not in df.columns and "label" not in df.columns:
        raise DataError("interactions need a 'rating' or a 'label' column")

    for col in ("user_id", "item_id"):
        if not pd.api.types.is_integer_dtype(df[col]):
            raise DataError(f"{col} must hold integer ids, got dtype {df[col].dtype}")

    if "rating" in df.columns:
        if df["rating"].isna().any():
            raise DataError("rating column contains missing values")
        df["label"] = (df["rating"] >= defaults.POSITIVE_THRESHOLD).astype("int64")
    elif not df["label"].isin([0, 1]).all():
        raise DataError("label column must contain only 0/1")

    keep = ["user_id", "item_id", "label"] + (["rating"] if "rating" in df.columns else [])
    return df[keep].astype({"user_id": "int64", "item_id": "int64", "label": "int64"}).reset_index(drop=True)


def validate_ids(df: pd.DataFrame, num_users: int, num_items: int) -> None:
    """Reject (never clamp) records whose ids fall outside the embedding tables."""
    for col, bound in (("user_id", num_users), ("item_id", num_items)):
        bad = df[(df[col] < 0) | (df[col] >= bound)]
        if len(bad):
            row = bad.iloc[0]
            raise DataError(
                f"{len(bad)} interaction(s) with {col} outside [0, {bound}); "
                f"first: user_id={row['user_id']} item_id={row['item_id']}"
            )


def build_genre_matrix(
    item_features: Mapping[int, Sequence[float] | Mapping],
    num_items: int,
    num_genres: int,
) -> np.ndarray:
    """Dense (num_items, num_genres) float32 matrix; unknown items stay all-zero."""
    mat = np.zeros((num_items, num_genres), dtype=np.float32)
    for item_id, feats in item_features.items():
        if isinstance(feats, Mapping):
            feats = feats.get("genre_features", feats.get("genres"))
        vec = np.asarray(feats, dtype=np.float32).ravel()
        if vec.shape[0] != num_genres:
            raise ConfigurationError(
                f"item {item_id}: genre vector has length {vec.shape[0]}, expected {num_genres}"
            )
        if not 0 <= int(item_id) < num_items:
            raise DataError(f"item features for id {item_id} outside [0, {num_items})")
        mat[int(item_id)] = vec
    return mat


# ---------------------------------------------------------------------------
# Negative sampling
# ---------------------------------------------------------------------------


@dataclass
class NegativeSample:
    frame: pd.DataFrame
    requested: int
    attempts: int

    @property
    def shortfall(self) -> int:
        return self.requested - len(self.frame)

    @property
    def partial(self) -> bool:
        return self.shortfall > 0


def sample_negatives(
    observed: set[tuple[int, int]],
    num_users: int,
    num_items: int,
    target: int,
    rng: np.random.Generator,
    attempt_factor: int = defaults.NEGATIVE_ATTEMPT_FACTOR,
) -> NegativeSample:
    """Draw up to `target` unseen, distinct (user, item) pairs.

    At most ``target * attempt_factor`` draws are made; running out of budget
    returns fewer negatives and logs the shortfall instead of looping on.
    """
    budget = max(target, 0) * attempt_factor
    users = rng.integers(0, num_users, size=budget)
    items = rng.integers(0, num_items, size=budget)

    picked: set[tuple[int, int]] = set()
    out_u, out_i = [], []
    attempts = 0
    for u, i in zip(users.tolist(), items.tolist()):
        if len(out_u) >= target:
            break
        attempts += 1
        if (u, i) in observed or (u, i) in picked:
            continue
        picked.add((u, i))
        out_u.append(u)
        out_i.append(i)

    frame = pd.DataFrame({"user_id": out_u, "item_id": out_i, "label": 0}, dtype="int64")
    result = NegativeSample(frame=frame, requested=target, attempts=attempts)
    if result.partial:
        log.warning(
            "Partial negative set: %d/%d negatives after %d attempts (shortfall %d)",
            len(frame), target, attempts, result.shortfall,
        )
    else:
        log.info("Sampled %d negatives in %d attempts", len(frame), attempts)
    return result


# ---------------------------------------------------------------------------
# Two-Tower samples
# ---------------------------------------------------------------------------


def prepare_two_tower_samples(
    interactions: pd.DataFrame | Iterable[Mapping],
    num_users: int,
    num_items: int,
    *,
    negative_sampling: bool = True,
    negative_ratio: float = defaults.NEGATIVE_RATIO,
    attempt_factor: int = defaults.NEGATIVE_ATTEMPT_FACTOR,
    rng: np.random.Generator | None = None,
) -> tuple[pd.DataFrame, NegativeSample | None]:
    """Return (samples, negatives) with samples holding user_id/item_id/label.

    With negative sampling the samples are the positive interactions plus
    sampled unseen pairs; without it every rating is kept with its
    thresholded label.
    """
    rng = rng if rng is not None else np.random.default_rng()
    df = to_frame(interactions)
    validate_ids(df, num_users, num_items)

    if not negative_sampling:
        log.info("Using %d rated interactions (%d positive)", len(df), int(df["label"].sum()))
        return df[["user_id", "item_id", "label"]].copy(), None

    pos = df[df["label"] == 1][["user_id", "item_id", "label"]]
    if pos.empty:
        raise DataError("no positive interactions (rating >= %d)" % defaults.POSITIVE_THRESHOLD)
    log.info("Found %d positive interactions", len(pos))

    observed = set(zip(df["user_id"].tolist(), df["item_id"].tolist()))
    target = int(round(len(pos) * negative_ratio))
    neg = sample_negatives(observed, num_users, num_items, target, rng, attempt_factor)

    samples = pd.concat([pos, neg.frame], ignore_index=True)
    log.info("Total training samples: %d", len(samples))
    return samples, neg
