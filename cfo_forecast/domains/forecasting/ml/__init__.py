"""
ML module - model, training, forecasting and persistence

- build_mlp_model: the per-category feed-forward network
- train_model / architecture_search: training loop and width search
- recursive_forecast / forecast_from_handle: multi-year projection
- ModelStore: local bundle persistence with export/import
"""

from .models import build_mlp_model, release_model, predict_next
from .trainer import train_model, architecture_search, CancellationToken, pseudo_accuracy
from .forecaster import recursive_forecast, merge_history_and_forecast, forecast_from_handle
from .metadata import ModelMetadata, Hyperparameters
from .persistence import ModelStore, ModelHandle

__all__ = [
    'build_mlp_model',
    'release_model',
    'predict_next',
    'train_model',
    'architecture_search',
    'CancellationToken',
    'pseudo_accuracy',
    'recursive_forecast',
    'merge_history_and_forecast',
    'forecast_from_handle',
    'ModelMetadata',
    'Hyperparameters',
    'ModelStore',
    'ModelHandle'
]
