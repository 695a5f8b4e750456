"""Mini-batch training for Two-Tower models (BCE on dot-product logits)."""
from __future__ import annotations

import enum
import logging
import math
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional, Sequence

import mlflow
import torch
from sklearn.metrics import roc_auc_score
from torch.utils.data import DataLoader
from tqdm import tqdm

from tower_recs.errors import BatchExecutionError

log = logging.getLogger(__name__)

EpochCallback = Callable[[int, int, str], None]


class TrainingState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    BUILT = "built"
    TRAINING = "training"
    TRAINED = "trained"


@dataclass
class TrainingHistory:
    """Per-epoch averages; the only training artifact besides the weights."""

    epoch: list[int] = field(default_factory=list)
    loss: list[float] = field(default_factory=list)
    accuracy: list[float] = field(default_factory=list)
    auc: list[float] = field(default_factory=list)
    skipped_batches: int = 0
    aborted: bool = False

    def __len__(self) -> int:
        return len(self.loss)

    def record(self, epoch: int, loss: float, accuracy: float, auc: float) -> None:
        self.epoch.append(epoch)
        self.loss.append(loss)
        self.accuracy.append(accuracy)
        self.auc.append(auc)

    def records(self) -> list[tuple[int, float, float]]:
        return list(zip(self.epoch, self.loss, self.accuracy))


# ---------------------------------------------------------------------------


def seed_torch(seed: int) -> None:
    torch.manual_seed(seed)
    torch.cuda.manual_seed_all(seed)


def make_optimizers(model: torch.nn.Module, lr: float) -> list[torch.optim.Optimizer]:
    """Adam for dense parameters, SparseAdam for sparse embedding tables."""
    sparse = [m.weight for m in model.modules() if isinstance(m, torch.nn.Embedding) and m.sparse]
    sparse_ids = {id(p) for p in sparse}
    dense = [p for p in model.parameters() if id(p) not in sparse_ids]

    optims: list[torch.optim.Optimizer] = []
    if dense:
        optims.append(torch.optim.Adam(dense, lr=lr))
    if sparse:
        optims.append(torch.optim.SparseAdam(sparse, lr=lr))
    return optims


@contextmanager
def _batch_scope(batch: dict, device) -> Iterator[dict]:
    # batch tensors never outlive the step, whichever way it exits
    moved = {k: v.to(device) for k, v in batch.items()}
    try:
        yield moved
    finally:
        moved.clear()
        batch.clear()


def _step(model, batch, criterion, optims: Sequence[torch.optim.Optimizer] = ()):
    model.train(bool(optims))
    logits = model(batch["user"], batch["item"], batch.get("genres"))
    loss = criterion(logits, batch["label"]) + model.regularization_loss()
    if optims:
        for o in optims:
            o.zero_grad()
        loss.backward()
        for o in optims:
            o.step()
    return loss.detach(), torch.sigmoid(logits).detach(), batch["label"].detach()


def _should_stop(cancel: Optional[threading.Event], deadline: Optional[float]) -> bool:
    if cancel is not None and cancel.is_set():
        return True
    return deadline is not None and time.monotonic() >= deadline


def _auc(labels: list[float], preds: list[float]) -> float:
    if len(set(labels)) < 2:
        return math.nan
    return float(roc_auc_score(labels, preds))


def fit(model,
        dl: DataLoader,
        epochs: int = 5,
        lr: float = 1e-3,
        criterion: torch.nn.Module | None = None,
        device: str | torch.device = "cuda" if torch.cuda.is_available() else "cpu",
        *,
        callback: EpochCallback | None = None,
        cancel: threading.Event | None = None,
        deadline: float | None = None,
        track: bool = False,
        progress: bool = True) -> TrainingHistory:
    """Train `model` in place and return its per-epoch history.

    A batch that raises is logged and skipped; an epoch where every batch
    fails re-raises the last `BatchExecutionError`. `cancel` and `deadline`
    (a `time.monotonic()` value) are checked between batches; when either
    trips, the unfinished epoch is dropped and the history is marked aborted.
    """
    criterion = criterion or torch.nn.BCEWithLogitsLoss()
    model.to(device)
    optims = make_optimizers(model, lr)
    history = TrainingHistory()

    for ep in range(epochs):
        losses, preds, lbls = [], [], []
        correct = 0
        last_err: BatchExecutionError | None = None
        pbar = tqdm(dl, desc=f"Epoch {ep+1}/{epochs}", disable=not progress, leave=False)
        for b_idx, batch in enumerate(pbar):
            if _should_stop(cancel, deadline):
                history.aborted = True
                break
            with _batch_scope(batch, device) as b:
                try:
                    loss, p, y = _step(model, b, criterion, optims)
                except Exception as exc:
                    last_err = BatchExecutionError(ep + 1, b_idx, exc)
                    log.warning("%s; skipping batch", last_err, exc_info=exc)
                    history.skipped_batches += 1
                    continue
                losses.append(loss.cpu().item())
                correct += int(((p >= 0.5).float() == y).sum().item())
                preds.extend(p.cpu().tolist())
                lbls.extend(y.cpu().tolist())
            pbar.set_postfix(loss=f"{losses[-1]:.4f}")
        pbar.close()

        if history.aborted:
            log.warning("Training aborted during epoch %d/%d", ep + 1, epochs)
            break
        if not losses:
            if last_err is None:
                raise BatchExecutionError(ep + 1, 0, RuntimeError("data loader produced no batches"))
            log.error("Every batch of epoch %d failed", ep + 1)
            raise last_err

        avg_loss = sum(losses) / len(losses)
        acc = correct / len(lbls)
        auc = _auc(lbls, preds)
        history.record(ep + 1, avg_loss, acc, auc)

        if track:
            mlflow.log_metric("train_loss", avg_loss, step=ep)
            mlflow.log_metric("train_acc", acc, step=ep)
            if not math.isnan(auc):
                mlflow.log_metric("train_auc", auc, step=ep)

        msg = f"Epoch {ep+1}/{epochs} | loss {avg_loss:.4f} | acc {acc:.4f} | AUC {auc:.4f}"
        log.info(msg)
        if callback is not None:
            callback(ep + 1, epochs, msg)

    return history
