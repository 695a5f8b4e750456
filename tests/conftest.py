import pytest

from tower_recs.models.two_tower import TowerConfig
from tower_recs.recommender import TwoTowerRecommender


@pytest.fixture
def toy_interactions():
    return [
        {"user_id": 0, "item_id": 0, "label": 1},
        {"user_id": 1, "item_id": 1, "label": 1},
    ]


@pytest.fixture
def toy_features():
    return {0: [1, 0], 1: [0, 1], 2: [1, 1], 3: [0, 0], 4: [1, 0]}


@pytest.fixture
def toy_config():
    return TowerConfig(num_users=3, num_items=5, embedding_dim=4, num_genres=2)


@pytest.fixture
def make_recommender():
    def _make(config, **kwargs):
        kwargs.setdefault("seed", 0)
        kwargs.setdefault("device", "cpu")
        kwargs.setdefault("progress", False)
        return TwoTowerRecommender(config, **kwargs)

    return _make


@pytest.fixture
def genre_preference_data():
    """Even users love genre-0 items, odd users love genre-1 items; everyone rates everything."""
    num_users, num_items = 12, 24
    features = {i: [1, 0] if i % 2 == 0 else [0, 1] for i in range(num_items)}
    ratings = [
        {"user_id": u, "item_id": i, "rating": 5 if (u % 2) == (i % 2) else 1}
        for u in range(num_users)
        for i in range(num_items)
    ]
    return num_users, num_items, ratings, features
