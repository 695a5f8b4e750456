import pytest
import torch

from tower_recs.models.scoring import cosine_similarity, dot_score, score_probability


def test_dot_score_is_unnormalised_batch_dot():
    u = torch.tensor([[1.0, 2.0], [3.0, 0.0]])
    v = torch.tensor([[2.0, 2.0], [1.0, 5.0]])
    assert dot_score(u, v).tolist() == [6.0, 3.0]
    assert torch.allclose(score_probability(u, v), torch.sigmoid(torch.tensor([6.0, 3.0])))


def test_cosine_similarity_is_rescaled_to_unit_interval():
    u = torch.tensor([[1.0, 0.0], [1.0, 0.0], [1.0, 0.0]])
    v = torch.tensor([[2.0, 0.0], [-3.0, 0.0], [0.0, 4.0]])
    assert torch.allclose(cosine_similarity(u, v), torch.tensor([1.0, 0.0, 0.5]))


def test_shape_mismatch_rejected():
    with pytest.raises(ValueError):
        dot_score(torch.zeros(2, 3), torch.zeros(2, 4))
