"""Top-K retrieval straight from the user and item towers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

import numpy as np
import torch

from tower_recs.errors import DataError
from tower_recs.models.scoring import cosine_similarity, dot_score
from tower_recs.models.two_tower import TwoTowerModel

_SIMILARITIES = {"dot": dot_score, "cosine": cosine_similarity}


@dataclass(frozen=True)
class Recommendation:
    item_id: int
    score: float


class Retriever:
    """Read-only scorer over a trained `TwoTowerModel`.

    Calls the towers directly rather than the combined training forward, so
    the user embedding is computed once per query and cached across items.
    """

    def __init__(self, model: TwoTowerModel, genre_matrix: np.ndarray):
        cfg = model.config
        if genre_matrix.shape != (cfg.num_items, cfg.num_genres):
            raise DataError(
                f"genre matrix shape {genre_matrix.shape} != ({cfg.num_items}, {cfg.num_genres})"
            )
        self.model = model
        self.genres = torch.as_tensor(genre_matrix, dtype=torch.float32)

    @property
    def device(self) -> torch.device:
        return next(self.model.parameters()).device

    def _check(self, ids: Iterable[int], bound: int, kind: str) -> None:
        for i in ids:
            if not 0 <= i < bound:
                raise DataError(f"{kind} id {i} outside [0, {bound})")

    # ------------------------------------------------------------------
    @torch.no_grad()
    def _user_vec(self, user_id: int) -> torch.Tensor:
        self._check([user_id], self.model.config.num_users, "user")
        self.model.eval()
        return self.model.encode_user(torch.tensor([user_id], device=self.device))

    @torch.no_grad()
    def _item_vecs(self, item_ids: Sequence[int], genres: torch.Tensor | None = None) -> torch.Tensor:
        self._check(item_ids, self.model.config.num_items, "item")
        self.model.eval()
        ids = torch.tensor(list(item_ids), dtype=torch.long)
        side = self.genres[ids] if genres is None else genres
        return self.model.encode_item(ids.to(self.device), side.to(self.device))

    def user_embedding(self, user_id: int) -> np.ndarray:
        return self._user_vec(user_id)[0].cpu().numpy()

    def item_embedding(self, item_id: int, genres: Sequence[float] | None = None) -> np.ndarray:
        side = None
        if genres is not None:
            side = torch.as_tensor(np.asarray(genres, dtype=np.float32)).reshape(1, -1)
            if side.size(1) != self.model.config.num_genres:
                raise DataError(
                    f"genre vector has length {side.size(1)}, expected {self.model.config.num_genres}"
                )
        return self._item_vecs([item_id], side)[0].cpu().numpy()

    # ------------------------------------------------------------------
    @torch.no_grad()
    def score(self, user_id: int, item_ids: Sequence[int], similarity: str = "dot") -> np.ndarray:
        """Scores for `item_ids` in the given order."""
        if similarity not in _SIMILARITIES:
            raise ValueError(f"similarity must be one of {sorted(_SIMILARITIES)}, got {similarity!r}")
        if not len(item_ids):
            return np.empty(0, dtype=np.float32)
        u = self._user_vec(user_id)
        v = self._item_vecs(item_ids)
        return _SIMILARITIES[similarity](u.expand_as(v), v).cpu().numpy()

    def recommend(
        self,
        user_id: int,
        candidates: Iterable[int],
        top_k: int = 10,
        similarity: str = "dot",
    ) -> list[Recommendation]:
        """Best `top_k` candidates by score, highest first.

        Duplicate candidates count once; exact ties keep candidate order.
        """
        cands = list(dict.fromkeys(int(c) for c in candidates))
        self._check([user_id], self.model.config.num_users, "user")
        if top_k <= 0 or not cands:
            return []
        scores = self.score(user_id, cands, similarity)
        order = np.argsort(-scores, kind="stable")[:top_k]
        return [Recommendation(cands[i], float(scores[i])) for i in order]
