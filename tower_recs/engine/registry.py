"""Simple factory so callers and CLI scripts stay tiny."""
from tower_recs.models.two_tower import Architecture, TowerConfig, TwoTowerModel


def build_model(config: TowerConfig) -> TwoTowerModel:
    return TwoTowerModel(config)


def create_model(name: str, **kwargs) -> TwoTowerModel:
    """`create_model("mlp", num_users=..., num_items=..., embedding_dim=...)`."""
    return build_model(TowerConfig(architecture=Architecture.parse(name), **kwargs))
