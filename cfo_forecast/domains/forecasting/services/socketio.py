"""
SocketIO Progress Reporter for forecast training

Receives the trainer's per-epoch metrics and emits them over SocketIO so the
dashboard can show live epoch updates, loss values and ETA estimates.

Events (room `forecast_<model_name>`):
- forecast_training_progress: started / completed / failed
- forecast_training_metrics: reported epochs (every Nth, plus first and last)
- forecast_search_candidate: one per architecture-search candidate
"""

import time
import logging
from typing import Any, List, Optional

logger = logging.getLogger(__name__)


def format_duration(seconds: float) -> str:
    seconds = int(seconds)
    if seconds >= 3600:
        return f"{seconds // 3600}h {(seconds % 3600) // 60}m"
    elif seconds >= 60:
        return f"{seconds // 60}m {seconds % 60}s"
    return f"{seconds}s"


class SocketIOProgressReporter:
    """
    Callable passed to train_model() as on_epoch_end.

    Every epoch is recorded; only every `report_every`-th epoch (and the
    first and last) is emitted to keep socket traffic down.
    """

    def __init__(
        self,
        socketio: Any,
        model_name: str,
        total_epochs: int,
        category: str = '',
        report_every: int = 5
    ):
        """
        Args:
            socketio: SocketIO instance for emitting events (None disables emission)
            model_name: Stored model name (used for room targeting)
            total_epochs: Epochs of the full training run
            category: Target category being trained
            report_every: Emit every Nth epoch
        """
        self.socketio = socketio
        self.model_name = model_name
        self.total_epochs = total_epochs
        self.category = category
        self.report_every = max(1, report_every)
        self.room = f"forecast_{model_name}"
        self.training_start_time: Optional[float] = None
        self.last_epoch_time: Optional[float] = None
        self.epoch_times: List[float] = []

    def _emit(self, event: str, payload: dict) -> None:
        if not self.socketio:
            return
        try:
            self.socketio.emit(event, payload, room=self.room)
        except Exception as e:
            logger.error(f"Failed to emit {event}: {e}")

    def started(self, phase: str = 'training') -> None:
        self.training_start_time = time.time()
        self.last_epoch_time = self.training_start_time
        self._emit('forecast_training_progress', {
            'model_name': self.model_name,
            'category': self.category,
            'status': f'{phase}_started',
            'total_epochs': self.total_epochs,
            'progress_percent': 0
        })
        logger.info(f"🚀 {phase} started for {self.model_name} ({self.category}, {self.total_epochs} epochs)")

    def candidate(self, result) -> None:
        """Report one architecture-search candidate (a CandidateResult)."""
        self._emit('forecast_search_candidate', {
            'model_name': self.model_name,
            **result.to_dict(),
            'message': f"Tested {result.name}: loss {result.loss:.4f}"
        })

    def __call__(self, epoch: int, metrics: dict) -> None:
        now = time.time()
        if self.last_epoch_time is None:
            self.last_epoch_time = now
        self.epoch_times.append(now - self.last_epoch_time)
        self.last_epoch_time = now

        epoch_number = epoch + 1
        is_reported = (
            epoch_number == 1
            or epoch_number % self.report_every == 0
            or epoch_number >= self.total_epochs
        )
        if not is_reported:
            return

        # Weighted average, recent epochs count more
        weights = list(range(1, len(self.epoch_times) + 1))
        avg_epoch_time = sum(t * w for t, w in zip(self.epoch_times, weights)) / sum(weights)
        remaining = max(0, self.total_epochs - epoch_number)
        eta_seconds = int(avg_epoch_time * remaining)

        self._emit('forecast_training_metrics', {
            'timestamp': time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime()),
            'model_name': self.model_name,
            'category': self.category,
            'epoch': epoch_number,
            'total_epochs': self.total_epochs,
            'loss': metrics.get('loss'),
            'mae': metrics.get('mae'),
            'val_loss': metrics.get('val_loss'),
            'accuracy': metrics.get('accuracy'),
            'eta_seconds': eta_seconds,
            'eta_formatted': format_duration(eta_seconds),
            'progress_percent': int(epoch_number / max(1, self.total_epochs) * 100)
        })

        logger.debug(f"📊 Epoch {epoch_number}/{self.total_epochs} - loss: {metrics.get('loss')}")

    def completed(self, summary: Optional[dict] = None) -> None:
        duration = time.time() - self.training_start_time if self.training_start_time else 0
        self._emit('forecast_training_progress', {
            'model_name': self.model_name,
            'category': self.category,
            'status': 'training_completed',
            'progress_percent': 100,
            'epochs_completed': len(self.epoch_times),
            'training_duration': round(duration, 2),
            'training_duration_formatted': format_duration(duration),
            **(summary or {})
        })
        logger.info(f"✅ {self.model_name} training completed in {format_duration(duration)}")

    def failed(self, error: str, error_code: Optional[str] = None) -> None:
        self._emit('forecast_training_progress', {
            'model_name': self.model_name,
            'category': self.category,
            'status': 'training_failed',
            'error': error,
            'error_code': error_code
        })
