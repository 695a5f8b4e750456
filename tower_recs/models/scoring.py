"""User/item compatibility scores.

`dot_score` is the raw training logit. `cosine_similarity` is a separate,
normalised similarity in [0, 1] used only for ranking and comparison.
"""

from __future__ import annotations

import torch
import torch.nn.functional as F


def _check_pair(u: torch.Tensor, v: torch.Tensor) -> None:
    if u.shape != v.shape:
        raise ValueError(f"embedding shapes differ: {tuple(u.shape)} vs {tuple(v.shape)}")


def dot_score(u: torch.Tensor, v: torch.Tensor) -> torch.Tensor:
    """(B, D) x (B, D) -> (B,) unnormalised dot product."""
    _check_pair(u, v)
    return torch.sum(u * v, dim=-1)


def score_probability(u: torch.Tensor, v: torch.Tensor) -> torch.Tensor:
    return torch.sigmoid(dot_score(u, v))


def cosine_similarity(u: torch.Tensor, v: torch.Tensor, eps: float = 1e-8) -> torch.Tensor:
    """Cosine similarity rescaled from [-1, 1] to [0, 1]."""
    _check_pair(u, v)
    cos = F.cosine_similarity(u, v, dim=-1, eps=eps)
    return (cos + 1.0) / 2.0
