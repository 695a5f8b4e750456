from tower_recs.data.encoders import encode_ids
from tower_recs.data.synthetic import make_movies, make_ratings


def test_synthetic_movies_have_at_least_one_genre():
    movies = make_movies(50, seed=3)
    assert movies["item_id"].tolist() == list(range(1, 51))
    assert all(sum(g) >= 1 and len(g) == 19 for g in movies["genres"])
    assert movies.loc[0, "title"] == "The Matrix"


def test_synthetic_ratings_in_range_and_reproducible():
    movies = make_movies(30, seed=1)
    a = make_ratings(movies, num_users=10, num_ratings=200, seed=1)
    b = make_ratings(movies, num_users=10, num_ratings=200, seed=1)
    assert a.equals(b)
    assert a["rating"].between(1, 5).all()
    assert a["user_id"].between(1, 10).all()
    assert set(a["item_id"]) <= set(movies["item_id"])


def test_encode_ids_is_contiguous_zero_based():
    movies = make_movies(20, seed=0)
    ratings = make_ratings(movies, num_users=8, num_ratings=100, seed=0)
    enc_ratings, enc_movies, u_enc, i_enc = encode_ids(ratings, movies)
    assert enc_movies["item_id"].tolist() == list(range(20))
    assert enc_ratings["user_id"].max() == len(u_enc.classes_) - 1
    assert enc_ratings["user_id"].min() == 0
    assert (i_enc.inverse_transform(enc_ratings["item_id"]) == ratings["item_id"].to_numpy()).all()
