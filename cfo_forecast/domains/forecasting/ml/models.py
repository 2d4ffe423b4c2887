"""
MLP model definition

One small feed-forward network per category:
Dense(units, relu) -> Dropout -> Dense(units/2, relu) -> Dropout -> Dense(1)
trained with Adam on mean squared error, MAE tracked as auxiliary metric.
"""

import gc
import logging
from typing import Sequence

import numpy as np
import tensorflow as tf

from cfo_forecast.config import MDL

logger = logging.getLogger(__name__)


def build_mlp_model(lookback: int = MDL.LOOKBACK, units: int = MDL.N,
                    learning_rate: float = MDL.LR, dropout: float = MDL.DROPOUT):
    """
    Build and compile the forecasting MLP.

    lookback........Input width (one feature per year)
    units...........Neurons in the first hidden layer; the second has half
    learning_rate...Adam learning rate
    dropout.........Dropout rate after each hidden layer
    """

    model = tf.keras.Sequential()

    model.add(tf.keras.Input(shape=(lookback,)))

    model.add(tf.keras.layers.Dense(units, activation='relu'))
    model.add(tf.keras.layers.Dropout(dropout))

    model.add(tf.keras.layers.Dense(max(1, units // 2), activation='relu'))
    model.add(tf.keras.layers.Dropout(dropout))

    # Output layer, no activation
    model.add(tf.keras.layers.Dense(1))

    compile_model(model, learning_rate)

    logger.debug(f"Built MLP lookback={lookback} units={units} lr={learning_rate}")

    return model


def compile_model(model, learning_rate: float = MDL.LR):
    """Attach the fixed training procedure (Adam + MSE, MAE metric)."""
    model.compile(
        optimizer=tf.keras.optimizers.Adam(learning_rate=learning_rate),
        loss=tf.keras.losses.MeanSquaredError(),
        metrics=[tf.keras.metrics.MeanAbsoluteError(name='mae')])
    return model


def model_lookback(model) -> int:
    """Input width baked into the model topology."""
    return int(model.inputs[0].shape[-1])


def model_units(model) -> int:
    """Width of the first hidden layer."""
    dense = [layer for layer in model.layers if isinstance(layer, tf.keras.layers.Dense)]
    return int(dense[0].units) if dense else 0


def predict_next(model, windows: Sequence[Sequence[float]]) -> np.ndarray:
    """Predict one normalized value per window. Dropout is inactive here."""
    xs = np.asarray(windows, dtype='float32')
    xs = xs.reshape(xs.shape[0], -1)
    preds = model.predict(xs, verbose=0)
    result = np.asarray(preds, dtype=float).reshape(-1)
    del xs, preds
    return result


def release_model(model) -> None:
    """
    Free a model that is no longer needed (e.g. a losing search candidate).

    Only drops the reference and collects. The Keras session is process-wide
    and other names may be training in background threads, so it is left alone.
    """
    del model
    gc.collect()
