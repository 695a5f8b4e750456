"""MovieLens-shaped synthetic data for demos and smoke tests.

Raw ids are 1-based like the real u.data / u.item files, so the frames go
through `data.encoders.encode_ids` before training.
"""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd

from tower_recs.config.defaults import GENRES, NUM_GENRES, RANDOM_SEED, genre_names

log = logging.getLogger(__name__)

TITLES = [
    "The Matrix", "Inception", "Interstellar", "The Godfather", "Pulp Fiction",
    "Forrest Gump", "Fight Club", "The Shawshank Redemption", "The Dark Knight",
    "Star Wars", "Avatar", "Titanic", "Jurassic Park", "The Avengers", "Black Panther",
    "The Lion King", "Toy Story", "Frozen", "Spirited Away", "The Social Network",
]
COMMON_GENRES = [GENRES.index(g) for g in ("Action", "Comedy", "Documentary", "Drama", "Romance")]


def make_movies(num_items: int = 500, seed: int = RANDOM_SEED) -> pd.DataFrame:
    """Movies with `genres` (0/1 list) and `genre_names`; at least one genre each."""
    rng = np.random.default_rng(seed)
    probs = np.full(NUM_GENRES, 0.15)
    probs[COMMON_GENRES] = 0.4
    flags = (rng.random((num_items, NUM_GENRES)) < probs).astype(int)
    empty = np.flatnonzero(flags.sum(axis=1) == 0)
    flags[empty, rng.integers(0, NUM_GENRES, size=len(empty))] = 1

    rows = []
    for i in range(num_items):
        vec = flags[i].tolist()
        rows.append({
            "item_id": i + 1,
            "title": TITLES[i] if i < len(TITLES) else f"Movie {i + 1}",
            "genres": vec,
            "genre_names": genre_names(vec),
        })
    return pd.DataFrame(rows)


def make_ratings(
    movies: pd.DataFrame,
    num_users: int = 200,
    num_ratings: int = 5000,
    seed: int = RANDOM_SEED,
) -> pd.DataFrame:
    """Ratings driven by 2-4 preferred genres per user.

    Base rating 3, +1.5 for two or more genre matches, +0.5 for one, then
    uniform noise in [-1, 1), rounded and clipped to 1..5.
    """
    rng = np.random.default_rng(seed)
    prefs = [set(rng.integers(0, NUM_GENRES, size=rng.integers(2, 5)).tolist()) for _ in range(num_users)]
    genre_rows = np.asarray(movies["genres"].tolist())
    item_ids = movies["item_id"].to_numpy()

    users = rng.integers(0, num_users, size=num_ratings)
    picks = rng.integers(0, len(movies), size=num_ratings)
    noise = rng.random(num_ratings) - 0.5

    ratings = np.empty(num_ratings, dtype=int)
    for n, (u, m) in enumerate(zip(users, picks)):
        matches = sum(1 for g in np.flatnonzero(genre_rows[m]) if g in prefs[u])
        base = 3.0 + (1.5 if matches >= 2 else 0.5 if matches == 1 else 0.0)
        ratings[n] = int(np.clip(np.round(base + noise[n] * 2), 1, 5))

    df = pd.DataFrame({"user_id": users + 1, "item_id": item_ids[picks], "rating": ratings})
    log.info("Generated %d synthetic ratings for %d users / %d movies", len(df), num_users, len(movies))
    return df
