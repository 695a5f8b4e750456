"""Session object owning data, model and training history.

Lifecycle: ``TwoTowerRecommender(config) -> load_data -> train -> recommend
-> dispose``. One instance wraps one model; `train` is guarded so that a
second call while the first is running fails instead of sharing weights.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from pathlib import Path
from typing import Iterable, Mapping, Sequence

import numpy as np
import pandas as pd
import torch
from torch.utils.data import DataLoader

from tower_recs.config import defaults
from tower_recs.data.preprocess import (
    NegativeSample,
    build_genre_matrix,
    prepare_two_tower_samples,
    to_frame,
    validate_ids,
)
from tower_recs.datasets.two_tower import InteractionDataset
from tower_recs.engine.registry import build_model
from tower_recs.engine.train_loop import EpochCallback, TrainingHistory, TrainingState, fit, seed_torch
from tower_recs.errors import (
    ConcurrentTrainingError,
    ConfigurationError,
    DataError,
    ModelNotTrainedError,
)
from tower_recs.evaluation.metrics import RankingMetrics, liked_items, most_active_user, precision_recall_f1_at_k
from tower_recs.models.two_tower import Architecture, TowerConfig, TwoTowerModel
from tower_recs.retrieval.retriever import Recommendation, Retriever

log = logging.getLogger(__name__)


def _positive_int(name: str, value) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ConfigurationError(f"{name} must be a positive int, got {value!r}")


class TwoTowerRecommender:
    def __init__(
        self,
        config: TowerConfig,
        *,
        learning_rate: float = defaults.LEARNING_RATE,
        negative_sampling: bool = True,
        negative_ratio: float = defaults.NEGATIVE_RATIO,
        seed: int | None = None,
        device: str | torch.device | None = None,
        progress: bool = True,
        track: bool = False,
    ):
        if learning_rate <= 0:
            raise ConfigurationError(f"learning_rate must be > 0, got {learning_rate!r}")
        if negative_ratio < 0:
            raise ConfigurationError(f"negative_ratio must be >= 0, got {negative_ratio!r}")
        self.config = config
        self.learning_rate = learning_rate
        self.negative_sampling = negative_sampling
        self.negative_ratio = negative_ratio
        self.seed = seed
        self.device = device or ("cuda" if torch.cuda.is_available() else "cpu")
        self.progress = progress
        self.track = track

        self.state = TrainingState.UNINITIALIZED
        self.model: TwoTowerModel | None = None
        self.history: TrainingHistory | None = None
        self.negatives: NegativeSample | None = None
        self._interactions: pd.DataFrame | None = None
        self._genres: np.ndarray | None = None
        self._retriever: Retriever | None = None

        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._rng = np.random.default_rng(seed)
        self._loader_gen = torch.Generator()
        if seed is not None:
            self._loader_gen.manual_seed(seed)

    # ------------------------------------------------------------------
    @property
    def is_training(self) -> bool:
        return self.state is TrainingState.TRAINING

    @property
    def genre_matrix(self) -> np.ndarray | None:
        return self._genres

    def build(self) -> TwoTowerModel:
        """Create the towers once; a failure leaves the session untouched."""
        if self.model is None:
            if self.seed is not None:
                seed_torch(self.seed)
            model = build_model(self.config).to(self.device)
            self.model = model
            self.state = TrainingState.BUILT
            log.info(
                "Built %s two-tower model | users=%d items=%d dim=%d",
                self.config.architecture.value, self.config.num_users,
                self.config.num_items, self.config.embedding_dim,
            )
        return self.model

    def _stage_data(
        self,
        interactions: pd.DataFrame | Iterable[Mapping] | None,
        item_features: Mapping[int, Sequence[float] | Mapping] | None,
    ) -> tuple[pd.DataFrame, np.ndarray]:
        # validated copies only; nothing on self changes here
        if interactions is None:
            if self._interactions is None:
                raise DataError("no interactions loaded; pass interactions or call load_data first")
            frame = self._interactions
        else:
            frame = to_frame(interactions)
            validate_ids(frame, self.config.num_users, self.config.num_items)
        if item_features is None and self._genres is not None:
            genres = self._genres
        else:
            genres = build_genre_matrix(item_features or {}, self.config.num_items, self.config.num_genres)
        return frame, genres

    def _commit_data(self, frame: pd.DataFrame, genres: np.ndarray) -> None:
        self._interactions, self._genres = frame, genres
        if self._retriever is not None and self.model is not None:
            self._retriever = Retriever(self.model, genres)

    def load_data(
        self,
        interactions: pd.DataFrame | Iterable[Mapping],
        item_features: Mapping[int, Sequence[float] | Mapping] | None = None,
    ) -> None:
        """Replace the interactions; without `item_features` the loaded genres are kept."""
        if interactions is None:
            raise DataError("interactions must not be None")
        frame, genres = self._stage_data(interactions, item_features)
        self._commit_data(frame, genres)
        log.info("Loaded %d interactions, %d items with genre features",
                 len(frame), int(genres.any(axis=1).sum()))

    # ------------------------------------------------------------------
    def train(
        self,
        interactions: pd.DataFrame | Iterable[Mapping] | None = None,
        item_features: Mapping[int, Sequence[float] | Mapping] | None = None,
        epochs: int = defaults.EPOCHS,
        batch_size: int = defaults.BATCH_SIZE,
        *,
        callback: EpochCallback | None = None,
        timeout: float | None = None,
    ) -> TrainingHistory:
        """Fit the model on the given (or previously loaded) interactions.

        Omitting `item_features` keeps the genre matrix already loaded. New
        data is committed only once training has run; a call that fails
        before that leaves the loaded data and the serving model as they were.
        `timeout` (seconds) stops training between batches once elapsed; the
        returned history is then marked `aborted`.
        """
        _positive_int("epochs", epochs)
        _positive_int("batch_size", batch_size)
        if not self._lock.acquire(blocking=False):
            raise ConcurrentTrainingError("a training run is already in progress on this model")
        try:
            frame, genres = self._stage_data(interactions, item_features)
            samples, negatives = prepare_two_tower_samples(
                frame,
                self.config.num_users,
                self.config.num_items,
                negative_sampling=self.negative_sampling,
                negative_ratio=self.negative_ratio,
                rng=self._rng,
            )
            dl = DataLoader(
                InteractionDataset(samples, genres),
                batch_size=batch_size,
                shuffle=True,
                generator=self._loader_gen,
            )
            self.build()

            deadline = time.monotonic() + timeout if timeout is not None else None
            previous = self.state
            self.state = TrainingState.TRAINING
            try:
                history = fit(
                    self.model, dl, epochs=epochs, lr=self.learning_rate, device=self.device,
                    callback=callback, cancel=self._cancel, deadline=deadline,
                    track=self.track, progress=self.progress,
                )
            except BaseException:
                self.state = previous
                raise

            self._commit_data(frame, genres)
            self.negatives = negatives
            self.history = history
            if len(history) or previous is TrainingState.TRAINED:
                self.state = TrainingState.TRAINED
                self._retriever = Retriever(self.model, genres)
            else:
                self.state = previous
            return history
        finally:
            self._cancel.clear()
            self._lock.release()

    async def train_async(self, *args, **kwargs) -> TrainingHistory:
        """`train` in a worker thread so the running event loop stays responsive.

        Cancelling the awaiting task (e.g. `asyncio.wait_for` expiring) sets
        the abort flag, so the worker stops after its current batch.
        """
        try:
            return await asyncio.to_thread(self.train, *args, **kwargs)
        except asyncio.CancelledError:
            self.cancel()
            raise

    def cancel(self) -> None:
        """Ask a running `train` to stop after the current batch.

        The flag is cleared when a run ends, so a cancel requested while idle
        aborts the next `train` call.
        """
        self._cancel.set()

    # ------------------------------------------------------------------
    def _require_trained(self) -> Retriever:
        if self.state is not TrainingState.TRAINED or self._retriever is None:
            raise ModelNotTrainedError(
                f"model is {self.state.value}; call train() successfully before querying"
            )
        return self._retriever

    def recommend(
        self,
        user_id: int,
        candidates: Iterable[int] | None = None,
        top_k: int = defaults.TOP_K,
        similarity: str = "dot",
    ) -> list[Recommendation]:
        retriever = self._require_trained()
        if candidates is None:
            candidates = range(self.config.num_items)
        return retriever.recommend(user_id, candidates, top_k, similarity)

    def get_user_embedding(self, user_id: int) -> np.ndarray:
        return self._require_trained().user_embedding(user_id)

    def get_item_embedding(self, item_id: int, genres: Sequence[float] | None = None) -> np.ndarray:
        return self._require_trained().item_embedding(item_id, genres)

    # ------------------------------------------------------------------
    def save(self, path: str | Path) -> None:
        self._require_trained()
        self.model.save_pretrained(path)

    @classmethod
    def from_pretrained(
        cls,
        path: str | Path,
        item_features: Mapping[int, Sequence[float] | Mapping] | None = None,
        **kwargs,
    ) -> "TwoTowerRecommender":
        model = TwoTowerModel.load_pretrained(path)
        rec = cls(model.config, **kwargs)
        rec.model = model.to(rec.device)
        rec._genres = build_genre_matrix(item_features or {}, model.config.num_items, model.config.num_genres)
        rec._retriever = Retriever(rec.model, rec._genres)
        rec.state = TrainingState.TRAINED
        return rec

    def dispose(self) -> None:
        if self.is_training:
            raise ConcurrentTrainingError("cannot dispose while training is in progress")
        self.model = None
        self.history = None
        self.negatives = None
        self._interactions = None
        self._genres = None
        self._retriever = None
        self.state = TrainingState.UNINITIALIZED


# ---------------------------------------------------------------------------
def compare_architectures(
    ratings: pd.DataFrame,
    item_features: Mapping[int, Sequence[float] | Mapping],
    base: TowerConfig,
    *,
    epochs: int = defaults.EPOCHS,
    batch_size: int = defaults.BATCH_SIZE,
    k: int = defaults.EVAL_K,
    user_id: int | None = None,
    **recommender_kwargs,
) -> dict[str, dict]:
    """Train baseline / MLP / deep on the same ratings and score one user.

    Each entry holds the `TrainingHistory`, the top-`k` `Recommendation`s and
    the `RankingMetrics` against the user's liked items. Defaults to the user
    with the most positive ratings.
    """
    user_id = most_active_user(ratings) if user_id is None else user_id
    if user_id is None:
        raise DataError("no user with positive ratings to evaluate")
    relevant = liked_items(ratings, user_id)

    results: dict[str, dict] = {}
    for arch in Architecture:
        cfg = TowerConfig(**{**base.to_dict(), "architecture": arch})
        rec = TwoTowerRecommender(cfg, **recommender_kwargs)
        log.info("=== Training %s ===", arch.value)
        history = rec.train(ratings, item_features, epochs=epochs, batch_size=batch_size)
        recs = rec.recommend(user_id, top_k=k)
        metrics: RankingMetrics = precision_recall_f1_at_k([r.item_id for r in recs], relevant, k)
        log.info("%s | P@%d %.3f | R@%d %.3f | F1 %.3f", arch.value, k, metrics.precision, k, metrics.recall, metrics.f1)
        results[arch.value] = {"history": history, "recommendations": recs, "metrics": metrics}
        rec.dispose()
    return results
