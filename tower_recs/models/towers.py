"""Embedding table and the three tower variants (baseline / MLP / deep)."""

from __future__ import annotations

from typing import Sequence

import torch
import torch.nn as nn

from tower_recs.errors import ConfigurationError, DataError

# ---------------------------------------------------------------------------
# Utilities
# ---------------------------------------------------------------------------


def _require_positive(**values: int) -> None:
    for name, value in values.items():
        if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
            raise ConfigurationError(f"{name} must be a positive int, got {value!r}")


def _he_init(m: nn.Linear) -> None:
    nn.init.kaiming_normal_(m.weight, nonlinearity="relu")
    nn.init.zeros_(m.bias)


def _xavier_init(m: nn.Linear) -> None:
    nn.init.xavier_normal_(m.weight)
    nn.init.zeros_(m.bias)


# ---------------------------------------------------------------------------
class EmbeddingTable(nn.Module):
    """One trainable row per entity id, with bounds-checked lookups."""

    def __init__(self, num_entities: int, dim: int, sparse: bool = False):
        super().__init__()
        _require_positive(num_entities=num_entities, dim=dim)
        self.num_entities = num_entities
        self.dim = dim
        self.embedding = nn.Embedding(num_entities, dim, sparse=sparse)
        nn.init.xavier_normal_(self.embedding.weight)

    @property
    def sparse(self) -> bool:
        return self.embedding.sparse

    def forward(self, ids: torch.Tensor) -> torch.Tensor:
        if ids.numel():
            lo, hi = int(ids.min()), int(ids.max())
            if lo < 0 or hi >= self.num_entities:
                bad = lo if lo < 0 else hi
                raise DataError(f"id {bad} outside [0, {self.num_entities})")
        return self.embedding(ids)

    lookup = forward


# ---------------------------------------------------------------------------
class Tower(nn.Module):
    """Maps entity ids (+ optional side features) to `output_dim` vectors.

    Subclasses differ only in what sits between the embedding lookup and the
    output; every variant returns `(batch, output_dim)`.
    """

    def __init__(self, num_entities: int, output_dim: int, side_dim: int = 0):
        super().__init__()
        _require_positive(num_entities=num_entities, output_dim=output_dim)
        if side_dim < 0:
            raise ConfigurationError(f"side_dim must be >= 0, got {side_dim!r}")
        self.num_entities = num_entities
        self.output_dim = output_dim
        self.side_dim = side_dim

    def _inputs(self, ids: torch.Tensor, side: torch.Tensor | None) -> torch.Tensor:
        x = self.table(ids)
        if not self.side_dim:
            return x
        if side is None:
            side = x.new_zeros(x.size(0), self.side_dim)
        elif side.dim() != 2 or side.size(1) != self.side_dim:
            raise DataError(
                f"side features must have shape (batch, {self.side_dim}), got {tuple(side.shape)}"
            )
        return torch.cat([x, side.to(x.dtype)], dim=-1)

    def regularization_loss(self) -> torch.Tensor:
        return torch.zeros((), device=self.table.embedding.weight.device)


class BaselineTower(Tower):
    """Plain embedding; side features are concatenated and linearly projected."""

    def __init__(self, num_entities: int, output_dim: int, side_dim: int = 0, sparse: bool = False):
        super().__init__(num_entities, output_dim, side_dim)
        self.table = EmbeddingTable(num_entities, output_dim, sparse=sparse)
        self.projection = None
        if side_dim:
            self.projection = nn.Linear(output_dim + side_dim, output_dim)
            _xavier_init(self.projection)

    def forward(self, ids: torch.Tensor, side: torch.Tensor | None = None) -> torch.Tensor:
        x = self._inputs(ids, side)
        return x if self.projection is None else self.projection(x)


class MLPTower(Tower):
    """embedding -> Linear + ReLU -> Linear(output_dim)."""

    def __init__(
        self,
        num_entities: int,
        output_dim: int,
        side_dim: int = 0,
        hidden_dim: int = 64,
        sparse: bool = False,
    ):
        super().__init__(num_entities, output_dim, side_dim)
        _require_positive(hidden_dim=hidden_dim)
        self.table = EmbeddingTable(num_entities, output_dim, sparse=sparse)
        self.hidden = nn.Linear(output_dim + side_dim, hidden_dim)
        self.out = nn.Linear(hidden_dim, output_dim)
        _he_init(self.hidden)
        _xavier_init(self.out)

    def forward(self, ids: torch.Tensor, side: torch.Tensor | None = None) -> torch.Tensor:
        x = self._inputs(ids, side)
        return self.out(torch.relu(self.hidden(x)))


class DeepTower(Tower):
    """Wider embedding (2x output_dim) followed by a stack of ReLU layers.

    Hidden kernels carry an L2 penalty that the trainer adds to the loss
    through `regularization_loss()`; dropout follows the first hidden layer.
    """

    def __init__(
        self,
        num_entities: int,
        output_dim: int,
        side_dim: int = 0,
        hidden_dims: Sequence[int] = (128, 64),
        dropout: float = 0.3,
        l2: float = 0.01,
        bounded: bool = False,
        sparse: bool = False,
    ):
        super().__init__(num_entities, output_dim, side_dim)
        if not hidden_dims:
            raise ConfigurationError("hidden_dims must contain at least one layer width")
        for width in hidden_dims:
            _require_positive(hidden_dim=width)
        if not 0.0 <= dropout < 1.0:
            raise ConfigurationError(f"dropout must be in [0, 1), got {dropout!r}")
        if l2 < 0:
            raise ConfigurationError(f"l2 must be >= 0, got {l2!r}")
        self.l2 = l2
        self.bounded = bounded
        self.table = EmbeddingTable(num_entities, output_dim * 2, sparse=sparse)

        layers: list[nn.Module] = []
        in_dim = output_dim * 2 + side_dim
        for i, width in enumerate(hidden_dims):
            linear = nn.Linear(in_dim, width)
            _he_init(linear)
            layers += [linear, nn.ReLU()]
            if i == 0 and dropout > 0:
                layers.append(nn.Dropout(dropout))
            in_dim = width
        self.mlp = nn.Sequential(*layers)
        self.out = nn.Linear(in_dim, output_dim)
        _xavier_init(self.out)

    def forward(self, ids: torch.Tensor, side: torch.Tensor | None = None) -> torch.Tensor:
        x = self.out(self.mlp(self._inputs(ids, side)))
        return torch.tanh(x) if self.bounded else x

    def regularization_loss(self) -> torch.Tensor:
        penalty = super().regularization_loss()
        if not self.l2:
            return penalty
        for m in self.mlp:
            if isinstance(m, nn.Linear):
                penalty = penalty + m.weight.pow(2).sum()
        return self.l2 * penalty
