"""
Evaluation module
In-sample fit metrics for a trained category model.

Metrics are computed on denormalized values over the training windows.
They describe how well the model reproduces the history it saw; they are
not out-of-sample estimates.
"""

import math
import logging
from typing import Dict

import numpy as np
from sklearn.metrics import mean_absolute_error, mean_squared_error, r2_score

from cfo_forecast.domains.forecasting.data.sequences import denormalize
from cfo_forecast.domains.forecasting.ml.models import predict_next
from cfo_forecast.domains.forecasting.ml.trainer import pseudo_accuracy

logger = logging.getLogger(__name__)


# =============================================================================
# METRIC FUNCTIONS
# =============================================================================

def mae(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """Mean Absolute Error"""
    return float(mean_absolute_error(y_true, y_pred))


def rmse(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """Root Mean Squared Error"""
    return float(np.sqrt(mean_squared_error(y_true, y_pred)))


def mape(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """Mean Absolute Percentage Error in percent, zero actuals skipped"""
    mask = y_true != 0
    if not np.any(mask):
        return 0.0
    return float(np.mean(np.abs((y_true[mask] - y_pred[mask]) / y_true[mask])) * 100)


def r2(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """Coefficient of determination; NaN for fewer than two points"""
    if len(y_true) < 2:
        return math.nan
    return float(r2_score(y_true, y_pred))


# =============================================================================
# MODEL FIT
# =============================================================================

def evaluate_fit(model, training_data) -> Dict[str, float]:
    """
    Compare model predictions against the training targets.

    Args:
        model: trained Keras model
        training_data: TrainingData the model was fitted on

    Returns:
        dict with mae, rmse, mape, r2 (real units) and the heuristic accuracy
    """
    bounds = training_data.bounds
    y_norm = np.asarray(training_data.y, dtype=float)
    pred_norm = predict_next(model, training_data.X)

    actual = denormalize(y_norm, bounds.min, bounds.max)
    predicted = np.maximum(0, np.round(denormalize(pred_norm, bounds.min, bounds.max)))

    metrics = {
        'mae': mae(actual, predicted),
        'rmse': rmse(actual, predicted),
        'mape': mape(actual, predicted),
        'r2': r2(actual, predicted),
        'accuracy': round(pseudo_accuracy(mae(actual, predicted), float(np.mean(actual))), 2),
    }

    logger.info(
        f"Fit metrics - MAE: {metrics['mae']:.2f}, RMSE: {metrics['rmse']:.2f}, "
        f"MAPE: {metrics['mape']:.2f}%, accuracy: {metrics['accuracy']:.2f}%"
    )

    return metrics


def metrics_to_serializable(metrics: Dict[str, float]) -> Dict:
    """NaN/inf -> None so the dict survives JSON encoding."""
    return {
        key: (None if isinstance(value, float) and not math.isfinite(value) else value)
        for key, value in metrics.items()
    }
