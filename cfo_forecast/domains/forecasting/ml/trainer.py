"""
Trainer for the forecasting MLP

- train_model: fit with per-epoch metric reporting and cooperative cancellation
- architecture_search: short runs over candidate widths, keep the lowest loss

The "accuracy" reported per epoch is a heuristic for the UI,
max(0, 100 * (1 - mae / mean(targets))), not a statistical measure.
"""

import math
import threading
import logging
from dataclasses import dataclass, field, asdict
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np
import tensorflow as tf

from cfo_forecast.config import MDL
from cfo_forecast.domains.forecasting.ml.models import build_mlp_model, release_model
from cfo_forecast.shared.exceptions import (
    InsufficientDataError,
    InvalidParameterError,
    TrainingCancelledError
)

logger = logging.getLogger(__name__)

EpochCallback = Callable[[int, Dict], None]


class CancellationToken:
    """Set from another thread to stop a training run after the current epoch."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class EpochMetrics:
    epoch: int
    loss: float
    mae: float
    accuracy: float
    val_loss: Optional[float] = None

    def to_dict(self) -> Dict:
        # NaN/inf -> None; bare NaN tokens break JSON.parse on the dashboard
        data = {
            key: (None if isinstance(value, float) and not math.isfinite(value) else value)
            for key, value in asdict(self).items()
        }
        if self.val_loss is None:
            data.pop('val_loss')
        return data


@dataclass
class TrainingRun:
    """Outcome of one fit call."""

    history: List[EpochMetrics] = field(default_factory=list)

    @property
    def epochs_completed(self) -> int:
        return len(self.history)

    @property
    def final_loss(self) -> float:
        if not self.history:
            return math.inf
        loss = self.history[-1].loss
        return math.inf if math.isnan(loss) else loss


@dataclass
class CandidateResult:
    name: str
    units: int
    loss: float

    def to_dict(self) -> Dict:
        return {'name': self.name, 'units': self.units,
                'loss': None if math.isinf(self.loss) else self.loss}


@dataclass
class SearchResult:
    best: CandidateResult
    results: List[CandidateResult]


def pseudo_accuracy(mae: float, targets_mean: float) -> float:
    """max(0, 100 * (1 - mae/mean)); 0 when the mean is 0 or not finite."""
    if not targets_mean or not math.isfinite(targets_mean) or not math.isfinite(mae):
        return 0.0
    return max(0.0, 100.0 * (1.0 - mae / targets_mean))


class EpochMetricsCallback(tf.keras.callbacks.Callback):
    """
    Collects EpochMetrics and forwards them to a plain callable.

    The callable sees every epoch, in order, before the next epoch starts.
    Throttling for UI updates belongs to the caller.
    """

    def __init__(self, targets_mean: float, on_epoch_end: Optional[EpochCallback] = None,
                 cancel_token: Optional[CancellationToken] = None):
        super().__init__()
        self.targets_mean = targets_mean
        self.user_callback = on_epoch_end
        self.cancel_token = cancel_token
        self.history: List[EpochMetrics] = []

    def on_epoch_end(self, epoch, logs=None):
        logs = logs or {}
        loss = float(logs.get('loss', math.nan))
        mae = float(logs.get('mae', math.nan))
        val_loss = logs.get('val_loss')

        metrics = EpochMetrics(
            epoch=epoch + 1,
            loss=loss,
            mae=mae,
            accuracy=round(pseudo_accuracy(mae, self.targets_mean), 2),
            val_loss=float(val_loss) if val_loss is not None else None
        )
        self.history.append(metrics)

        if self.user_callback is not None:
            self.user_callback(epoch, metrics.to_dict())

        if self.cancel_token is not None and self.cancel_token.cancelled:
            logger.info(f"Cancellation requested - stopping after epoch {epoch + 1}")
            self.model.stop_training = True


def _validation_split_for(n_samples: int, validation_split: float) -> float:
    """Keras refuses a split that leaves either side empty; drop it then."""
    if validation_split <= 0:
        return 0.0
    split_at = int(math.floor(n_samples * (1.0 - validation_split)))
    if split_at == 0 or split_at == n_samples:
        return 0.0
    return validation_split


def train_model(model, X, y, on_epoch_end: Optional[EpochCallback] = None,
                epochs: int = MDL.EP, initial_epoch: int = 0,
                validation_split: float = MDL.VAL_SPLIT, batch_size: int = MDL.BATCH,
                cancel_token: Optional[CancellationToken] = None,
                model_name: str = 'model') -> TrainingRun:
    """
    Train `model` in place.

    X...............[samples, lookback] normalized windows
    y...............[samples] normalized targets
    on_epoch_end....callable(epoch_index, {loss, mae, val_loss?, accuracy})
    epochs..........number of epochs to run in this call
    initial_epoch...epoch index to resume from (epoch numbers continue)

    Raises:
        InsufficientDataError: X is empty
        TrainingCancelledError: cancel_token was set during the run
    """

    xs = np.asarray(X, dtype='float32')
    ys = np.asarray(y, dtype='float32').reshape(-1, 1)

    if xs.size == 0 or xs.shape[0] == 0:
        raise InsufficientDataError(required=1, available=0)

    if xs.shape[0] != ys.shape[0]:
        raise InvalidParameterError('y', ys.shape[0], f"Expected {xs.shape[0]} targets")

    if epochs < 1:
        raise InvalidParameterError('epochs', epochs, 'Must be at least 1')

    xs = xs.reshape(xs.shape[0], -1)
    n_samples = xs.shape[0]

    split = _validation_split_for(n_samples, validation_split)
    if split != validation_split:
        logger.info(f"Validation split disabled ({n_samples} windows is too few for {validation_split})")

    callback = EpochMetricsCallback(
        targets_mean=float(np.mean(ys)),
        on_epoch_end=on_epoch_end,
        cancel_token=cancel_token
    )

    logger.info(f"Training model: {n_samples} windows, {epochs} epochs (from {initial_epoch})")

    model.fit(
        x               = xs,
        y               = ys,
        epochs          = initial_epoch + epochs,
        initial_epoch   = initial_epoch,
        batch_size      = min(batch_size, n_samples),
        validation_split= split,
        shuffle         = True,
        verbose         = 0,
        callbacks       = [callback]
    )

    del xs, ys

    run = TrainingRun(history=callback.history)

    if cancel_token is not None and cancel_token.cancelled:
        raise TrainingCancelledError(model_name, epochs_completed=run.epochs_completed)

    logger.info(f"Model trained: final loss {run.final_loss:.6f}")

    return run


def architecture_search(X, y, candidates: Sequence[Dict] = MDL.CANDIDATES,
                        short_epochs: int = MDL.SEARCH_EP, learning_rate: float = MDL.LR,
                        on_candidate: Optional[Callable[[CandidateResult], None]] = None,
                        cancel_token: Optional[CancellationToken] = None) -> SearchResult:
    """
    Train each candidate width briefly and keep the lowest final loss.

    Every candidate model is released before the next one is built.
    Ties go to the earlier candidate; a NaN loss counts as +inf.
    """

    if not candidates:
        raise InvalidParameterError('candidates', candidates, 'At least one candidate is required')

    xs = np.asarray(X, dtype='float32')
    if xs.size == 0 or xs.shape[0] == 0:
        raise InsufficientDataError(required=1, available=0)

    lookback = int(xs.reshape(xs.shape[0], -1).shape[1])

    results: List[CandidateResult] = []
    best: Optional[CandidateResult] = None

    logger.info(f"--- STARTING ARCHITECTURE SEARCH ({len(candidates)} candidates) ---")

    for index, config in enumerate(candidates):
        units = int(config['units'])
        name = config.get('name') or f"candidate_{index + 1}"

        model = build_mlp_model(lookback=lookback, units=units, learning_rate=learning_rate)
        try:
            run = train_model(model, xs, y, epochs=short_epochs, cancel_token=cancel_token,
                              model_name=f"search:{name}")
        finally:
            release_model(model)

        result = CandidateResult(name=name, units=units, loss=run.final_loss)
        results.append(result)
        logger.info(f"Tested {name} ({units} units): loss {result.loss:.6f}")

        if on_candidate is not None:
            on_candidate(result)

        if best is None or result.loss < best.loss:
            best = result

    logger.info(f"🏆 WINNER: {best.name} model ({best.units} units)")

    return SearchResult(best=best, results=results)
