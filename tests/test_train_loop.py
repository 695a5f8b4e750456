import math
import threading

import pandas as pd
import pytest
import torch
from torch.utils.data import DataLoader

from tower_recs.datasets.two_tower import InteractionDataset
from tower_recs.engine.registry import build_model
from tower_recs.engine.train_loop import fit, make_optimizers
from tower_recs.errors import BatchExecutionError
from tower_recs.models.two_tower import TowerConfig


def _loader(batch_size=2):
    df = pd.DataFrame({"user_id": [0, 1, 2, 0], "item_id": [0, 1, 2, 3], "label": [1, 1, 0, 0]})
    genres = torch.eye(5, 2).numpy()
    return DataLoader(InteractionDataset(df, genres), batch_size=batch_size, shuffle=True,
                      generator=torch.Generator().manual_seed(0))


def _model(**kw):
    torch.manual_seed(0)
    return build_model(TowerConfig(num_users=3, num_items=5, embedding_dim=4, num_genres=2, **kw))


def test_history_has_one_entry_per_epoch():
    history = fit(_model(), _loader(), epochs=3, device="cpu", progress=False)
    assert history.epoch == [1, 2, 3]
    assert len(history.loss) == len(history.accuracy) == len(history.auc) == 3
    assert all(loss >= 0 and math.isfinite(loss) for loss in history.loss)
    assert all(0.0 <= acc <= 1.0 for acc in history.accuracy)
    assert history.records()[0][0] == 1


def test_callback_runs_after_each_epoch():
    calls = []
    fit(_model(), _loader(), epochs=2, device="cpu", progress=False,
        callback=lambda ep, total, msg: calls.append((ep, total, msg)))
    assert [c[:2] for c in calls] == [(1, 2), (2, 2)]
    assert calls[0][2].startswith("Epoch 1/2")


def test_failing_batch_is_skipped():
    model = _model()
    real = model.forward
    n = {"calls": 0}

    def flaky(*args, **kwargs):
        n["calls"] += 1
        if n["calls"] == 1:
            raise RuntimeError("boom")
        return real(*args, **kwargs)

    model.forward = flaky
    history = fit(model, _loader(batch_size=1), epochs=1, device="cpu", progress=False)
    assert history.skipped_batches == 1
    assert len(history) == 1


def test_epoch_with_only_failing_batches_raises():
    model = _model()

    def broken(*args, **kwargs):
        raise RuntimeError("boom")

    model.forward = broken
    with pytest.raises(BatchExecutionError) as err:
        fit(model, _loader(), epochs=2, device="cpu", progress=False)
    assert err.value.epoch == 1
    assert isinstance(err.value.cause, RuntimeError)


def test_cancel_event_stops_between_batches():
    cancel = threading.Event()

    def stop_after_first(ep, total, msg):
        cancel.set()

    history = fit(_model(), _loader(), epochs=5, device="cpu", progress=False,
                  callback=stop_after_first, cancel=cancel)
    assert history.aborted
    assert len(history) == 1


def test_expired_deadline_records_nothing():
    history = fit(_model(), _loader(), epochs=3, device="cpu", progress=False, deadline=0.0)
    assert history.aborted
    assert len(history) == 0


def test_sparse_embeddings_get_sparse_adam():
    model = _model(sparse=True)
    optims = make_optimizers(model, 1e-3)
    assert [type(o).__name__ for o in optims] == ["Adam", "SparseAdam"]
    history = fit(model, _loader(), epochs=1, device="cpu", progress=False)
    assert math.isfinite(history.loss[0])


def test_deep_model_includes_l2_penalty_in_loss():
    history = fit(_model(architecture="deep"), _loader(), epochs=1, device="cpu", progress=False)
    assert history.loss[0] > 0
