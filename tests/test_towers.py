import pytest
import torch

from tower_recs.engine.registry import build_model, create_model
from tower_recs.errors import ConfigurationError, DataError
from tower_recs.models.towers import BaselineTower, DeepTower, EmbeddingTable, MLPTower
from tower_recs.models.two_tower import Architecture, TowerConfig, TwoTowerModel


@pytest.mark.parametrize("arch", list(Architecture))
@pytest.mark.parametrize("dim,users,items,genres", [(1, 1, 1, 1), (8, 5, 7, 3), (32, 20, 50, 19)])
def test_towers_emit_embedding_dim(arch, dim, users, items, genres):
    model = build_model(TowerConfig(users, items, dim, genres, arch)).eval()
    u = model.encode_user(torch.arange(users))
    v = model.encode_item(torch.arange(items), torch.ones(items, genres))
    assert u.shape == (users, dim)
    assert v.shape == (items, dim)
    assert model(torch.zeros(3, dtype=torch.long), torch.zeros(3, dtype=torch.long),
                 torch.zeros(3, genres)).shape == (3,)


def test_create_model_by_name():
    model = create_model("MLP", num_users=4, num_items=6, embedding_dim=8, num_genres=2)
    assert isinstance(model.user_tower, MLPTower)
    assert model.config.architecture is Architecture.MLP


@pytest.mark.parametrize("kwargs", [
    {"num_users": 0, "num_items": 5},
    {"num_users": 3, "num_items": -1},
    {"num_users": 3, "num_items": 5, "embedding_dim": 0},
    {"num_users": 3, "num_items": 5, "num_genres": 0},
    {"num_users": 3, "num_items": 5, "architecture": "transformer"},
])
def test_bad_config_fails_fast(kwargs):
    with pytest.raises(ConfigurationError):
        TowerConfig(**kwargs)


def test_deep_tower_rejects_bad_layers():
    with pytest.raises(ConfigurationError):
        DeepTower(5, 4, hidden_dims=(16, 0))
    with pytest.raises(ConfigurationError):
        DeepTower(5, 4, dropout=1.0)
    with pytest.raises(ConfigurationError):
        MLPTower(5, 4, hidden_dim=-2)


def test_embedding_table_rejects_out_of_range_ids():
    table = EmbeddingTable(3, 4)
    assert table.lookup(torch.tensor([0, 2])).shape == (2, 4)
    with pytest.raises(DataError):
        table(torch.tensor([3]))
    with pytest.raises(DataError):
        table(torch.tensor([-1]))


def test_baseline_user_tower_is_raw_embedding():
    tower = BaselineTower(4, 3)
    ids = torch.tensor([1, 3])
    assert torch.equal(tower(ids), tower.table.embedding.weight[ids])
    assert tower.projection is None


def test_item_tower_checks_side_feature_width():
    tower = BaselineTower(4, 3, side_dim=2)
    with pytest.raises(DataError):
        tower(torch.tensor([0]), torch.zeros(1, 5))
    # missing genres behave like an all-zero vector
    ids = torch.tensor([1])
    assert torch.allclose(tower(ids), tower(ids, torch.zeros(1, 2)))


def test_deep_tower_regularization_and_bounds():
    tower = DeepTower(5, 4, side_dim=2, bounded=True)
    assert tower.regularization_loss().item() > 0
    out = tower.eval()(torch.arange(5), torch.ones(5, 2))
    assert out.abs().max() <= 1.0
    assert DeepTower(5, 4, l2=0.0).regularization_loss().item() == 0.0


def test_save_and_load_pretrained(tmp_path):
    model = build_model(TowerConfig(3, 5, 4, 2, "deep")).eval()
    path = tmp_path / "m" / "model.pt"
    model.save_pretrained(path)
    loaded = TwoTowerModel.load_pretrained(path)
    ids = torch.arange(5)
    genres = torch.ones(5, 2)
    assert torch.allclose(model.encode_item(ids, genres), loaded.encode_item(ids, genres))
    assert loaded.config.deep_hidden_dims == model.config.deep_hidden_dims
