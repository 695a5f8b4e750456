"""Exception hierarchy shared by every tower_recs component."""


class TowerRecsError(Exception):
    """Base class for all library errors."""


class ConfigurationError(TowerRecsError, ValueError):
    """Invalid model or tower configuration (raised at build time)."""


class DataError(TowerRecsError, ValueError):
    """Interaction or feature data that cannot be trained or scored on."""


class BatchExecutionError(TowerRecsError, RuntimeError):
    """A single training batch failed. Recoverable: the batch is skipped."""

    def __init__(self, epoch: int, batch_idx: int, cause: BaseException):
        super().__init__(f"batch {batch_idx} of epoch {epoch} failed: {cause!r}")
        self.epoch = epoch
        self.batch_idx = batch_idx
        self.cause = cause


class ModelNotTrainedError(TowerRecsError, RuntimeError):
    """Inference requested before a successful training call."""


class ConcurrentTrainingError(TowerRecsError, RuntimeError):
    """`train` called while another training run owns the model."""
