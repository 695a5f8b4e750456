"""Two-Tower retrieval model: independent user / item towers + dot-product scorer."""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from pathlib import Path

import torch
import torch.nn as nn

from tower_recs.config import defaults
from tower_recs.errors import ConfigurationError
from tower_recs.models.scoring import dot_score
from tower_recs.models.towers import BaselineTower, DeepTower, MLPTower, Tower


class Architecture(str, enum.Enum):
    BASELINE = "baseline"
    MLP = "mlp"
    DEEP = "deep"

    @classmethod
    def parse(cls, value: "Architecture | str") -> "Architecture":
        try:
            return cls(value.lower() if isinstance(value, str) else value)
        except ValueError:
            choices = ", ".join(a.value for a in cls)
            raise ConfigurationError(f"unknown architecture {value!r} (choose from {choices})") from None


@dataclass
class TowerConfig:
    num_users: int
    num_items: int
    embedding_dim: int = defaults.EMBEDDING_DIM
    num_genres: int = defaults.NUM_GENRES
    architecture: Architecture | str = Architecture.BASELINE
    hidden_dim: int = defaults.MLP_HIDDEN_DIM
    deep_hidden_dims: tuple[int, ...] = field(default=defaults.DEEP_HIDDEN_DIMS)
    dropout: float = defaults.DEEP_DROPOUT
    l2: float = defaults.DEEP_L2
    bounded_output: bool = False
    sparse: bool = False

    def __post_init__(self):
        self.architecture = Architecture.parse(self.architecture)
        for name in ("num_users", "num_items", "embedding_dim", "num_genres", "hidden_dim"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise ConfigurationError(f"{name} must be a positive int, got {value!r}")
        self.deep_hidden_dims = tuple(self.deep_hidden_dims)

    def to_dict(self) -> dict:
        d = asdict(self)
        d["architecture"] = self.architecture.value
        return d


# ---------------------------------------------------------------------------
def _build_tower(cfg: TowerConfig, num_entities: int, side_dim: int) -> Tower:
    if cfg.architecture is Architecture.BASELINE:
        return BaselineTower(num_entities, cfg.embedding_dim, side_dim, sparse=cfg.sparse)
    if cfg.architecture is Architecture.MLP:
        return MLPTower(
            num_entities, cfg.embedding_dim, side_dim, hidden_dim=cfg.hidden_dim, sparse=cfg.sparse
        )
    return DeepTower(
        num_entities,
        cfg.embedding_dim,
        side_dim,
        hidden_dims=cfg.deep_hidden_dims,
        dropout=cfg.dropout,
        l2=cfg.l2,
        bounded=cfg.bounded_output,
        sparse=cfg.sparse,
    )


class TwoTowerModel(nn.Module):
    """User tower on ids only; item tower on ids + genre flags."""

    def __init__(self, config: TowerConfig):
        super().__init__()
        self.config = config
        self.user_tower = _build_tower(config, config.num_users, side_dim=0)
        self.item_tower = _build_tower(config, config.num_items, side_dim=config.num_genres)

    @property
    def embedding_dim(self) -> int:
        return self.config.embedding_dim

    def encode_user(self, user: torch.Tensor) -> torch.Tensor:
        return self.user_tower(user)

    def encode_item(self, item: torch.Tensor, genres: torch.Tensor | None = None) -> torch.Tensor:
        return self.item_tower(item, genres)

    def forward(self, user, item, genres=None):
        # logits, BCEWithLogitsLoss applies the sigmoid
        return dot_score(self.encode_user(user), self.encode_item(item, genres))

    def regularization_loss(self) -> torch.Tensor:
        return self.user_tower.regularization_loss() + self.item_tower.regularization_loss()

    # ---------------------------------------------------------------------
    def save_pretrained(self, path: str | Path):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        torch.save({"config": self.config.to_dict(), "state": self.state_dict()}, path)

    @classmethod
    def load_pretrained(cls, path: str | Path) -> "TwoTowerModel":
        blob = torch.load(path, map_location="cpu")
        cfg = blob["config"]
        cfg["deep_hidden_dims"] = tuple(cfg["deep_hidden_dims"])
        model = cls(TowerConfig(**cfg))
        model.load_state_dict(blob["state"])
        model.eval()
        return model
