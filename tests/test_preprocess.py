import logging

import numpy as np
import pandas as pd
import pytest

from tower_recs.data.preprocess import (
    build_genre_matrix,
    prepare_two_tower_samples,
    sample_negatives,
    to_frame,
    validate_ids,
)
from tower_recs.errors import ConfigurationError, DataError


def test_ratings_thresholded_into_labels():
    df = to_frame([
        {"userId": 0, "movieId": 1, "rating": 4},
        {"userId": 0, "movieId": 2, "rating": 3.5},
        {"userId": 1, "movieId": 0, "rating": 5},
    ])
    assert df["label"].tolist() == [1, 0, 1]
    assert df["item_id"].tolist() == [1, 2, 0]


def test_explicit_labels_accepted(toy_interactions):
    df = to_frame(toy_interactions)
    assert df["label"].tolist() == [1, 1]


@pytest.mark.parametrize("records", [
    [],
    [{"user_id": 0, "rating": 5}],
    [{"user_id": 0, "item_id": 1}],
    [{"user_id": 0, "item_id": 1, "label": 2}],
    [{"user_id": 0.5, "item_id": 1, "rating": 5}],
])
def test_bad_interactions_rejected(records):
    with pytest.raises(DataError):
        to_frame(records)


def test_out_of_range_ids_rejected_not_clamped():
    df = to_frame([{"user_id": 3, "item_id": 0, "rating": 5}])
    with pytest.raises(DataError, match="user_id"):
        validate_ids(df, num_users=3, num_items=5)
    df = to_frame([{"user_id": 0, "item_id": -1, "rating": 5}])
    with pytest.raises(DataError, match="item_id"):
        validate_ids(df, num_users=3, num_items=5)


def test_genre_matrix_defaults_missing_items_to_zero():
    mat = build_genre_matrix({1: [1, 0, 1], 2: {"genre_features": [0, 1, 0]}}, num_items=4, num_genres=3)
    assert mat.shape == (4, 3)
    assert mat[0].tolist() == [0, 0, 0]
    assert mat[1].tolist() == [1, 0, 1]
    assert mat[2].tolist() == [0, 1, 0]
    assert mat[3].sum() == 0


def test_genre_matrix_length_mismatch_is_config_error():
    with pytest.raises(ConfigurationError):
        build_genre_matrix({0: [1, 0]}, num_items=2, num_genres=3)
    with pytest.raises(DataError):
        build_genre_matrix({5: [1, 0]}, num_items=2, num_genres=2)


@pytest.mark.parametrize("seed", range(10))
def test_negatives_never_hit_observed_pairs(seed):
    rng = np.random.default_rng(seed)
    observed = {(u, i) for u in range(6) for i in range(8) if (u + i) % 3}
    neg = sample_negatives(observed, 6, 8, target=10, rng=rng)
    pairs = list(zip(neg.frame["user_id"], neg.frame["item_id"]))
    assert not set(pairs) & observed
    assert len(pairs) == len(set(pairs))
    assert (neg.frame["label"] == 0).all()
    assert neg.attempts <= 10 * 5


def test_exhausted_budget_reports_partial_set(caplog):
    observed = {(0, 0), (0, 1)}
    with caplog.at_level(logging.WARNING, logger="tower_recs.data.preprocess"):
        neg = sample_negatives(observed, 1, 2, target=3, rng=np.random.default_rng(0))
    assert len(neg.frame) == 0
    assert neg.partial and neg.shortfall == 3
    assert neg.attempts == 15
    assert "Partial negative set" in caplog.text


def test_samples_with_negative_sampling():
    ratings = pd.DataFrame({
        "user_id": [0, 0, 1, 2],
        "item_id": [0, 1, 2, 3],
        "rating": [5, 2, 4, 1],
    })
    samples, neg = prepare_two_tower_samples(ratings, 3, 10, rng=np.random.default_rng(1))
    pos = samples[samples["label"] == 1]
    assert sorted(zip(pos["user_id"], pos["item_id"])) == [(0, 0), (1, 2)]
    assert neg.requested == 2
    # low ratings count as observed: never resampled as negatives
    observed = set(zip(ratings["user_id"], ratings["item_id"]))
    negs = samples[samples["label"] == 0]
    assert not set(zip(negs["user_id"], negs["item_id"])) & observed


def test_samples_without_negative_sampling_keep_all_ratings():
    ratings = [{"user_id": 0, "item_id": 0, "rating": 5}, {"user_id": 1, "item_id": 1, "rating": 2}]
    samples, neg = prepare_two_tower_samples(ratings, 2, 2, negative_sampling=False)
    assert neg is None
    assert samples["label"].tolist() == [1, 0]


def test_no_positive_interactions_is_data_error():
    with pytest.raises(DataError):
        prepare_two_tower_samples([{"user_id": 0, "item_id": 0, "rating": 1}], 1, 1)
