"""Raw MovieLens ids -> dense zero-based ids, plus MLflow-friendly dumps."""
import tempfile, joblib
import pandas as pd
from sklearn.preprocessing import LabelEncoder


def encode_ids(ratings: pd.DataFrame, items: pd.DataFrame):
    """Re-key ratings and items onto contiguous ids.

    The item encoder is fitted on the item catalogue (not on the ratings) so
    unrated movies keep a row; the user encoder on the users seen in ratings.
    Returns (ratings, items, user_encoder, item_encoder).
    """
    u_enc, i_enc = LabelEncoder(), LabelEncoder()
    i_enc.fit(items["item_id"])
    ratings = ratings[ratings["item_id"].isin(i_enc.classes_)].copy()
    ratings["user_id"] = u_enc.fit_transform(ratings["user_id"])
    ratings["item_id"] = i_enc.transform(ratings["item_id"])
    items = items.copy()
    items["item_id"] = i_enc.transform(items["item_id"])
    return ratings, items, u_enc, i_enc


def dump_encoder_tmp(enc: LabelEncoder) -> str:
    tmp = tempfile.NamedTemporaryFile(suffix=".joblib", delete=False)
    joblib.dump(enc, tmp.name)
    return tmp.name
