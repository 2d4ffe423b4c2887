"""
Forecast Service
End-to-end flow behind the forecast panel

This service handles:
- Category extraction from yearly records
- Optional architecture search, then a full training run
- Fit evaluation and metadata assembly
- Atomic save of the trained bundle (only after a successful run)
- Forecasting with stored models, listing, deleting, export and import
- One active training run per model name, with cancellation
"""

import logging
import math
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from cfo_forecast.config import MDL, settings
from cfo_forecast.domains.forecasting.data.records import observations_from_records
from cfo_forecast.domains.forecasting.data.sequences import TrainingData, prepare_training_data
from cfo_forecast.domains.forecasting.ml.evaluation import evaluate_fit, metrics_to_serializable
from cfo_forecast.domains.forecasting.ml.forecaster import forecast_from_handle
from cfo_forecast.domains.forecasting.ml.metadata import Hyperparameters, ModelMetadata, utc_now_iso
from cfo_forecast.domains.forecasting.ml.models import build_mlp_model, release_model
from cfo_forecast.domains.forecasting.ml.persistence import ModelHandle, ModelStore, validate_model_name
from cfo_forecast.domains.forecasting.ml.trainer import CancellationToken, architecture_search, train_model
from cfo_forecast.domains.forecasting.services.socketio import SocketIOProgressReporter
from cfo_forecast.shared.exceptions import (
    ForecastException,
    InvalidParameterError,
    ModelNotFoundError,
    TrainingInProgressError
)

logger = logging.getLogger(__name__)


class ForecastService:
    """
    Trains, stores and serves one MLP per model name.

    A model name usually maps to one category of one dataset, e.g.
    'civil-status-single'. Training the same name twice at once is refused.
    """

    def __init__(self, store: ModelStore, socketio: Optional[Any] = None,
                 progress_every: Optional[int] = None):
        self.store = store
        self.socketio = socketio
        self.progress_every = progress_every or settings.PROGRESS_EVERY
        self._locks: Dict[str, threading.Lock] = {}
        self._tokens: Dict[str, CancellationToken] = {}
        self._guard = threading.Lock()

    # ------------------------------------------------------------------
    # Re-entrancy guard / cancellation
    # ------------------------------------------------------------------

    def _claim(self, name: str) -> CancellationToken:
        with self._guard:
            lock = self._locks.setdefault(name, threading.Lock())
            if not lock.acquire(blocking=False):
                raise TrainingInProgressError(name)
            token = CancellationToken()
            self._tokens[name] = token
            return token

    def _release(self, name: str) -> None:
        with self._guard:
            self._tokens.pop(name, None)
            lock = self._locks.get(name)
            if lock is not None and lock.locked():
                lock.release()

    def is_training(self, name: str) -> bool:
        with self._guard:
            lock = self._locks.get(name)
            return bool(lock and lock.locked())

    def cancel(self, name: str) -> bool:
        """Ask a running job to stop after its current epoch. False if none runs."""
        with self._guard:
            token = self._tokens.get(name)
        if token is None:
            return False
        token.cancel()
        logger.info(f"🛑 Cancellation requested for '{name}'")
        return True

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def prepare(self, records: Iterable[dict], category: str,
                lookback: int = MDL.LOOKBACK) -> TrainingData:
        """Records -> windows, failing before any model is built."""
        observations = observations_from_records(records, category)
        return prepare_training_data(observations, lookback)

    def train(self, name: str, records: Iterable[dict], category: str,
              on_epoch_end: Optional[Callable[[int, Dict], None]] = None,
              **options) -> Dict[str, Any]:
        """
        Train synchronously and return the result payload.

        Options: lookback, epochs, search, units, learning_rate, horizon,
        candidates, search_epochs.

        Raises:
            TrainingInProgressError: `name` is already training
            InsufficientDataError / ValidationError: bad records or parameters
            TrainingCancelledError: cancelled through cancel(name)
        """
        validate_model_name(name)
        data = self.prepare(records, category, options.get('lookback', MDL.LOOKBACK))
        token = self._claim(name)
        try:
            return self._run_training(name, category, data, token, on_epoch_end, **options)
        finally:
            self._release(name)

    def train_async(self, name: str, records: Iterable[dict], category: str,
                    **options) -> threading.Thread:
        """
        Start training in a background thread; progress goes out over SocketIO.

        Validation and the in-progress check happen before the thread starts,
        so those errors still reach the caller.
        """
        validate_model_name(name)
        data = self.prepare(records, category, options.get('lookback', MDL.LOOKBACK))
        token = self._claim(name)

        def run():
            try:
                self._run_training(name, category, data, token, None, **options)
            except ForecastException as e:
                logger.warning(f"Background training for '{name}' stopped: {e.message}")
            except Exception as e:
                logger.error(f"❌ Background training for '{name}' failed: {e}", exc_info=True)
            finally:
                self._release(name)

        training_thread = threading.Thread(target=run, name=f"forecast-train-{name}")
        training_thread.daemon = True
        training_thread.start()
        logger.info(f"🚀 TRAINING THREAD STARTED for '{name}' ({category})")
        return training_thread

    def _run_training(self, name: str, category: str, data: TrainingData,
                      token: CancellationToken,
                      on_epoch_end: Optional[Callable[[int, Dict], None]] = None,
                      lookback: int = MDL.LOOKBACK, epochs: int = MDL.EP,
                      search: bool = False, units: Optional[int] = None,
                      learning_rate: float = MDL.LR,
                      horizon: int = MDL.HORIZON,
                      candidates: Sequence[Dict] = MDL.CANDIDATES,
                      search_epochs: int = MDL.SEARCH_EP) -> Dict[str, Any]:
        if epochs < 1:
            raise InvalidParameterError('epochs', epochs, 'Must be at least 1')
        if horizon < 1:
            raise InvalidParameterError('horizon', horizon, 'Must be at least 1')

        reporter = SocketIOProgressReporter(
            self.socketio, name, total_epochs=epochs, category=category,
            report_every=self.progress_every
        )

        def epoch_end(epoch: int, metrics: Dict) -> None:
            reporter(epoch, metrics)
            if on_epoch_end is not None:
                on_epoch_end(epoch, metrics)

        model = None
        try:
            search_results = []
            if search:
                reporter.started(phase='search')
                result = architecture_search(
                    data.X, data.y, candidates=candidates, short_epochs=search_epochs,
                    learning_rate=learning_rate, on_candidate=reporter.candidate,
                    cancel_token=token
                )
                units = result.best.units
                search_results = [r.to_dict() for r in result.results]
            units = int(units or MDL.N)

            reporter.started()
            model = build_mlp_model(lookback=lookback, units=units, learning_rate=learning_rate)
            run = train_model(model, data.X, data.y, on_epoch_end=epoch_end, epochs=epochs,
                              cancel_token=token, model_name=name)

            fit = metrics_to_serializable(evaluate_fit(model, data))

            metadata = ModelMetadata(
                target_category=category,
                hyperparameters=Hyperparameters(units=units, learning_rate=learning_rate,
                                                lookback=lookback),
                normalization=data.bounds,
                training_history=[m.to_dict() for m in run.history],
                total_epochs_trained=run.epochs_completed,
                last_updated=utc_now_iso(),
                name=name,
                architecture_search=search_results
            )

            self.store.save(model, metadata, name)

            forecast = forecast_from_handle(ModelHandle(model=model, metadata=metadata),
                                            data.observations, horizon)
        except ForecastException as e:
            reporter.failed(e.message, e.error_code)
            raise
        except Exception as e:
            reporter.failed(str(e))
            raise
        finally:
            if model is not None:
                release_model(model)

        summary = {
            'final_loss': run.final_loss if math.isfinite(run.final_loss) else None,
            'accuracy': metadata.last_accuracy,
            'units': units
        }
        reporter.completed(summary)

        return {
            'success': True,
            'model_name': name,
            'metadata': metadata.to_dict(),
            'fit': fit,
            'forecast': forecast.to_dict()
        }

    # ------------------------------------------------------------------
    # Forecasting / management
    # ------------------------------------------------------------------

    def load(self, name: str) -> ModelHandle:
        handle = self.store.load(name)
        if handle is None:
            raise ModelNotFoundError(name)
        return handle

    def forecast(self, name: str, records: Iterable[dict], horizon: int = MDL.HORIZON,
                 category: Optional[str] = None) -> Dict[str, Any]:
        """
        Forecast with the stored model.

        Category, lookback and bounds all come from the stored metadata. A
        different `category` is refused since the bounds would not fit it.

        Raises:
            InvalidParameterError: `category` differs from the trained one
        """
        handle = self.load(name)
        try:
            handle.metadata.require_forecast_context(name)
            target = handle.metadata.target_category
            if category and category.strip() != target:
                raise InvalidParameterError(
                    'category', category, f"Model '{name}' was trained on '{target}'")
            observations = observations_from_records(records, target)
            result = forecast_from_handle(handle, observations, horizon)
        finally:
            release_model(handle.model)

        return {
            'success': True,
            'model_name': name,
            'forecast': result.to_dict()
        }

    def get_model(self, name: str) -> Dict[str, Any]:
        handle = self.load(name)
        try:
            return {'success': True, 'trained': True, 'metadata': handle.metadata.to_dict()}
        finally:
            release_model(handle.model)

    def list_models(self) -> List[Dict[str, Any]]:
        return self.store.list_models()

    def delete(self, name: str) -> bool:
        if self.is_training(name):
            raise TrainingInProgressError(name)
        deleted = self.store.delete(name)
        if not deleted:
            raise ModelNotFoundError(name)
        return True

    def export(self, name: str) -> bytes:
        handle = self.load(name)
        try:
            return self.store.export_archive(handle)
        finally:
            release_model(handle.model)

    def import_model(self, name: str, topology, weights, metadata=None,
                     replacement: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Import exported files and store them under `name`."""
        validate_model_name(name)
        if self.is_training(name):
            raise TrainingInProgressError(name)

        handle = self.store.import_from_files(topology, weights, metadata=metadata,
                                              replacement=replacement, name=name)
        try:
            self.store.save(handle.model, handle.metadata, name)
        finally:
            release_model(handle.model)

        logger.info(f"✅ Model '{name}' imported (verified bounds: {handle.metadata.bounds_verified})")
        return {'success': True, 'model_name': name, 'metadata': handle.metadata.to_dict()}
