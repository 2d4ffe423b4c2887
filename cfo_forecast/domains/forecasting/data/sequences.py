"""
Sequence preparation for univariate yearly series

Sorts observations, min-max normalizes them and slices the normalized series
into sliding windows (past `lookback` years -> next year).
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

import numpy as np

from cfo_forecast.shared.exceptions import (
    DuplicateYearError,
    InsufficientDataError,
    InvalidParameterError
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NormalizationBounds:
    """Min/max captured from the training series of one category."""

    min: float
    max: float

    def __post_init__(self):
        if self.max < self.min:
            raise InvalidParameterError('normalization', f"min={self.min}, max={self.max}",
                                        'max must be >= min')

    @property
    def span(self) -> float:
        return self.max - self.min

    def to_dict(self) -> Dict[str, float]:
        return {'min': self.min, 'max': self.max}


@dataclass
class TrainingData:
    """Everything a training run needs for one category."""

    observations: List[dict]
    normalized: List[dict]
    bounds: NormalizationBounds
    lookback: int
    X: np.ndarray
    y: np.ndarray
    years: List[int] = field(default_factory=list)

    @property
    def n_samples(self) -> int:
        return int(self.X.shape[0])


def sort_by_year(observations: List[dict]) -> List[dict]:
    """
    Stable ascending sort by year.

    Duplicate years are rejected: two values for the same year give no
    defined ordering for the sliding windows.
    """
    counts = Counter(int(o['year']) for o in observations)
    duplicates = [year for year, count in counts.items() if count > 1]
    if duplicates:
        raise DuplicateYearError(duplicates)

    return sorted(observations, key=lambda o: int(o['year']))


def normalize(observations: List[dict], key: str = 'value') -> Dict:
    """
    Min-max normalize `key` across all observations.

    Args:
        observations: Sorted observations
        key: Field holding the raw value

    Returns:
        dict: {
            'normalized': observations copied with an added 'normalized' field,
            'min': float,
            'max': float
        }
        A flat series (max == min) normalizes every entry to 0.
    """
    if not observations:
        raise InsufficientDataError(required=1, available=0)

    values = np.asarray([float(o[key]) for o in observations], dtype=float)
    v_min = float(values.min())
    v_max = float(values.max())

    if v_max == v_min:
        logger.warning(f"Flat series (all values = {v_min}); normalized values are all 0")
        scaled = np.zeros_like(values)
    else:
        scaled = (values - v_min) / (v_max - v_min)

    normalized = [
        {**o, 'normalized': float(s)}
        for o, s in zip(observations, scaled)
    ]

    return {'normalized': normalized, 'min': v_min, 'max': v_max}


def denormalize(norm_value, v_min: float, v_max: float):
    """Inverse of normalize: norm_value * (max - min) + min."""
    return norm_value * (v_max - v_min) + v_min


def normalize_with_bounds(observations: List[dict], bounds: NormalizationBounds,
                          key: str = 'value') -> List[dict]:
    """Scale observations with bounds captured earlier (never recomputed)."""
    span = bounds.span
    return [
        {**o, 'normalized': 0.0 if span == 0 else (float(o[key]) - bounds.min) / span}
        for o in observations
    ]


def build_sequences(normalized_series: List[dict], lookback: int) -> Tuple[List[List[float]], List[float]]:
    """
    Sliding windows with stride 1.

    For i in lookback..n-1: window = values[i-lookback:i], target = values[i].
    Returns empty lists when len(series) <= lookback.
    """
    if lookback < 1:
        raise InvalidParameterError('lookback', lookback, 'Must be at least 1')

    values = [d['normalized'] for d in normalized_series]
    X = []
    y = []

    for i in range(lookback, len(values)):
        X.append(values[i - lookback:i])
        y.append(values[i])

    return X, y


def require_training_rows(available: int, lookback: int) -> None:
    """Fail fast when the series cannot yield a single training window."""
    required = lookback + 1
    if available < required:
        raise InsufficientDataError(required=required, available=available, lookback=lookback)


def last_window(normalized_series: List[dict], lookback: int) -> List[float]:
    """Trailing `lookback` normalized values used to seed a forecast."""
    if len(normalized_series) < lookback:
        raise InsufficientDataError(required=lookback, available=len(normalized_series),
                                    lookback=lookback)
    return [d['normalized'] for d in normalized_series[-lookback:]]


def prepare_training_data(observations: List[dict], lookback: int) -> TrainingData:
    """
    Sort, normalize and window one category series.

    Raises:
        DuplicateYearError: same year twice
        InsufficientDataError: fewer than lookback + 1 observations
    """
    ordered = sort_by_year(observations)
    require_training_rows(len(ordered), lookback)

    result = normalize(ordered)
    X, y = build_sequences(result['normalized'], lookback)

    logger.info(
        f"Prepared {len(X)} windows from {len(ordered)} observations "
        f"(lookback={lookback}, min={result['min']}, max={result['max']})"
    )

    return TrainingData(
        observations=ordered,
        normalized=result['normalized'],
        bounds=NormalizationBounds(result['min'], result['max']),
        lookback=lookback,
        X=np.asarray(X, dtype='float32').reshape(len(X), lookback),
        y=np.asarray(y, dtype='float32'),
        years=[int(o['year']) for o in ordered]
    )
