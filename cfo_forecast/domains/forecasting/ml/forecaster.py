"""
Recursive multi-step forecasting

The model predicts one year ahead from the last `lookback` normalized
values. Each normalized prediction is pushed back into the window to
predict the following year.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from cfo_forecast.domains.forecasting.data.sequences import (
    NormalizationBounds,
    denormalize,
    last_window,
    normalize_with_bounds,
    sort_by_year
)
from cfo_forecast.domains.forecasting.ml.models import predict_next
from cfo_forecast.shared.exceptions import ForecastWindowError, InvalidParameterError

logger = logging.getLogger(__name__)


@dataclass
class ForecastPoint:
    year: int
    historical_value: Optional[float] = None
    forecast_value: Optional[float] = None

    def to_dict(self) -> Dict:
        return {
            'year': self.year,
            'historicalValue': self.historical_value,
            'forecastValue': self.forecast_value,
        }


@dataclass
class ForecastResult:
    category: str
    lookback: int
    horizon: int
    verified: bool
    points: List[ForecastPoint] = field(default_factory=list)

    @property
    def forecast_points(self) -> List[ForecastPoint]:
        return [p for p in self.points if p.historical_value is None]

    def to_dict(self) -> Dict:
        return {
            'category': self.category,
            'lookback': self.lookback,
            'horizon': self.horizon,
            'verified': self.verified,
            'points': [p.to_dict() for p in self.points],
        }


def recursive_forecast(model, window: Sequence[float], horizon: int,
                       bounds: NormalizationBounds, start_year: int,
                       lookback: Optional[int] = None) -> List[ForecastPoint]:
    """
    Predict `horizon` years starting at `start_year`.

    window....normalized seed values, oldest first (not modified)
    lookback..expected window length, from the model metadata

    Forecast values are denormalized with the training bounds, rounded
    and floored at 0 (they are population counts).
    """
    if lookback is not None and len(window) != lookback:
        raise ForecastWindowError(expected=lookback, actual=len(window))
    if horizon < 1:
        raise InvalidParameterError('horizon', horizon, 'Must be at least 1')

    current = [float(v) for v in window]
    points = []

    for step in range(1, horizon + 1):
        pred = float(predict_next(model, [current])[0])
        real_value = denormalize(pred, bounds.min, bounds.max)

        points.append(ForecastPoint(
            year=start_year + step - 1,
            forecast_value=float(max(0, round(real_value)))
        ))

        # Feed the normalized prediction back, matching the training scale
        current = current[1:] + [pred]

    return points


def merge_history_and_forecast(observations: List[dict],
                               forecast_points: List[ForecastPoint]) -> List[ForecastPoint]:
    """
    Single chart series: history first, then forecast.

    The last historical year also carries its value as forecastValue so the
    forecast line starts where the history line ends.
    """
    ordered = sort_by_year(observations)
    merged = []
    for index, obs in enumerate(ordered):
        is_last = index == len(ordered) - 1
        value = float(obs['value'])
        merged.append(ForecastPoint(
            year=int(obs['year']),
            historical_value=value,
            forecast_value=value if is_last and forecast_points else None
        ))
    merged.extend(forecast_points)
    return merged


def forecast_from_handle(handle, observations: List[dict], horizon: int) -> ForecastResult:
    """
    Forecast a stored model against the observed history of its category.

    Lookback and bounds come from the model metadata only.

    Raises:
        MissingMetadataError: metadata lacks lookback or bounds
        InsufficientDataError: fewer observations than the lookback
    """
    metadata = handle.metadata
    metadata.require_forecast_context()

    lookback = metadata.lookback
    bounds = metadata.normalization

    ordered = sort_by_year(observations)
    normalized = normalize_with_bounds(ordered, bounds)
    seed = last_window(normalized, lookback)
    start_year = int(ordered[-1]['year']) + 1

    points = recursive_forecast(handle.model, seed, horizon, bounds, start_year, lookback=lookback)

    if not metadata.bounds_verified:
        logger.warning(f"Forecast for '{metadata.target_category}' uses unverified bounds")

    logger.info(f"📈 Forecast {metadata.target_category}: {start_year}-{start_year + horizon - 1}")

    return ForecastResult(
        category=metadata.target_category,
        lookback=lookback,
        horizon=horizon,
        verified=metadata.bounds_verified,
        points=merge_history_and_forecast(ordered, points)
    )
