"""Train the two-tower variants on synthetic MovieLens-style data and compare them.

Run with:
    python -m tower_recs.cli.train_two_tower --arch all --epochs 5
    mlflow ui
"""
import logging
from argparse import ArgumentParser

import mlflow
import pandas as pd

from tower_recs.config import defaults
from tower_recs.config.paths import ARTIFACT_DIR, MLFLOW_EXPERIMENT
from tower_recs.data.encoders import dump_encoder_tmp, encode_ids
from tower_recs.data.synthetic import make_movies, make_ratings
from tower_recs.evaluation.metrics import liked_items, most_active_user, precision_recall_f1_at_k, user_history
from tower_recs.models.two_tower import Architecture, TowerConfig
from tower_recs.recommender import TwoTowerRecommender

log = logging.getLogger(__name__)


def parse_args(argv=None):
    ap = ArgumentParser(description="Train and compare two-tower retrieval models")
    ap.add_argument("--arch", choices=[a.value for a in Architecture] + ["all"], default="all")
    ap.add_argument("--emb_dim", type=int, default=defaults.EMBEDDING_DIM)
    ap.add_argument("--epochs", type=int, default=defaults.EPOCHS)
    ap.add_argument("--batch", type=int, default=defaults.BATCH_SIZE)
    ap.add_argument("--lr", type=float, default=defaults.LEARNING_RATE)
    ap.add_argument("--users", type=int, default=200)
    ap.add_argument("--movies", type=int, default=500)
    ap.add_argument("--ratings", type=int, default=5000)
    ap.add_argument("--top_k", type=int, default=defaults.TOP_K)
    ap.add_argument("--eval_k", type=int, default=defaults.EVAL_K)
    ap.add_argument("--seed", type=int, default=defaults.RANDOM_SEED)
    ap.add_argument("--timeout", type=float, default=None, help="seconds per model")
    ap.add_argument("--save", action="store_true", help="write state dicts under artifacts/")
    return ap.parse_args(argv)


def main(argv=None):
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    args = parse_args(argv)

    movies = make_movies(args.movies, seed=args.seed)
    ratings = make_ratings(movies, num_users=args.users, num_ratings=args.ratings, seed=args.seed)
    ratings, movies, u_enc, i_enc = encode_ids(ratings, movies)
    item_features = dict(zip(movies["item_id"], movies["genres"]))
    titles = movies.set_index("item_id")

    test_user = most_active_user(ratings)
    if test_user is None:
        raise SystemExit("no user with positive ratings; raise --ratings")
    relevant = liked_items(ratings, test_user)
    log.info("Test user %s has %d liked items", u_enc.classes_[test_user], len(relevant))
    hist = user_history(ratings, test_user)
    hist["title"] = hist["item_id"].map(titles["title"])
    print(hist[["title", "rating"]].to_string(index=False))

    archs = list(Architecture) if args.arch == "all" else [Architecture(args.arch)]
    rows = []

    mlflow.set_experiment(MLFLOW_EXPERIMENT)
    with mlflow.start_run():
        mlflow.log_params({"emb_dim": args.emb_dim, "epochs": args.epochs, "batch": args.batch,
                           "lr": args.lr, "seed": args.seed})
        for arch in archs:
            cfg = TowerConfig(num_users=len(u_enc.classes_), num_items=len(i_enc.classes_),
                              embedding_dim=args.emb_dim, architecture=arch)
            with mlflow.start_run(run_name=arch.value, nested=True):
                mlflow.log_params(cfg.to_dict())
                rec = TwoTowerRecommender(cfg, learning_rate=args.lr, seed=args.seed, track=True)
                history = rec.train(ratings, item_features, epochs=args.epochs, batch_size=args.batch,
                                    timeout=args.timeout)
                if not len(history):
                    log.warning("%s finished no epoch; skipping evaluation", arch.value)
                    continue

                recs = rec.recommend(test_user, top_k=args.top_k, similarity="cosine")
                m = precision_recall_f1_at_k([r.item_id for r in recs], relevant, args.eval_k)
                mlflow.log_metrics({f"precision_at_{args.eval_k}": m.precision,
                                    f"recall_at_{args.eval_k}": m.recall, "f1": m.f1})
                if rec.negatives is not None:
                    mlflow.log_metric("negative_shortfall", rec.negatives.shortfall)

                print(f"\n[{arch.value.upper()}] top {args.top_k} for user {u_enc.classes_[test_user]}")
                for r in recs:
                    row = titles.loc[r.item_id]
                    print(f"  {r.score:.4f}  {row['title']}  ({', '.join(row['genre_names'])})")
                rows.append({"model": arch.value, "final_loss": history.loss[-1],
                             "final_acc": history.accuracy[-1], "precision": m.precision,
                             "recall": m.recall, "f1": m.f1})

                if args.save:
                    path = ARTIFACT_DIR / f"two_tower_{arch.value}.pt"
                    rec.save(path)
                    mlflow.log_artifact(str(path), artifact_path="model")

        # dump encoders so inference scripts can recover raw ids
        mlflow.log_artifact(dump_encoder_tmp(u_enc), artifact_path="artifacts")
        mlflow.log_artifact(dump_encoder_tmp(i_enc), artifact_path="artifacts")

    if rows:
        print("\n" + pd.DataFrame(rows).to_string(index=False, float_format="%.4f"))


if __name__ == "__main__":
    main()
