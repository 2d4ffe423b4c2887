"""
Model metadata

Stored next to the weights of every model bundle. It carries everything
needed to forecast without the raw training data: the target category,
the lookback baked into the topology and the normalization bounds.

Older dashboard exports wrote a flat layout, e.g.
{"targetStatus": "Single", "lookback": 3, "min": 0, "max": 1000, "trainedAt": ...};
from_dict() accepts both shapes.
"""

import math
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from cfo_forecast.config import MDL
from cfo_forecast.domains.forecasting.data.sequences import NormalizationBounds
from cfo_forecast.shared.exceptions import ImportValidationError, MissingMetadataError

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


@dataclass
class Hyperparameters:
    units: int
    learning_rate: float
    lookback: int

    def to_dict(self) -> Dict[str, Any]:
        return {'units': self.units, 'learningRate': self.learning_rate, 'lookback': self.lookback}


@dataclass
class ModelMetadata:
    target_category: str
    hyperparameters: Hyperparameters
    normalization: Optional[NormalizationBounds]
    training_history: List[Dict[str, Any]] = field(default_factory=list)
    total_epochs_trained: int = 0
    last_updated: str = field(default_factory=utc_now_iso)
    name: Optional[str] = None
    bounds_verified: bool = True
    architecture_search: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def lookback(self) -> int:
        return self.hyperparameters.lookback

    @property
    def last_accuracy(self) -> Optional[float]:
        if not self.training_history:
            return None
        return self.training_history[-1].get('accuracy')

    def missing_fields(self) -> List[str]:
        """Fields without which a forecast cannot be denormalized."""
        missing = []
        if not self.target_category:
            missing.append('targetCategory')
        if not self.hyperparameters.lookback:
            missing.append('lookback')
        if self.normalization is None:
            missing.extend(['min', 'max'])
        return missing

    def require_forecast_context(self, model_name: Optional[str] = None) -> None:
        missing = self.missing_fields()
        if missing:
            raise MissingMetadataError(model_name or self.name or self.target_category or 'unknown',
                                       missing)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'targetCategory': self.target_category,
            'hyperparameters': self.hyperparameters.to_dict(),
            'normalization': self.normalization.to_dict() if self.normalization else None,
            'trainingHistory': [_finite_entry(entry) for entry in self.training_history],
            'totalEpochsTrained': self.total_epochs_trained,
            'lastUpdated': self.last_updated,
            'boundsVerified': self.bounds_verified,
            'architectureSearch': list(self.architecture_search),
        }

    def summary(self) -> Dict[str, Any]:
        """Short form for model listings."""
        return {
            'name': self.name,
            'targetCategory': self.target_category,
            'lookback': self.lookback,
            'units': self.hyperparameters.units,
            'totalEpochsTrained': self.total_epochs_trained,
            'lastUpdated': self.last_updated,
            'accuracy': self.last_accuracy,
            'boundsVerified': self.bounds_verified,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ModelMetadata':
        """
        Parse current or legacy metadata.

        Missing bounds stay None (forecasting will refuse); they are never
        filled with defaults.
        """
        if not isinstance(data, dict):
            raise ImportValidationError('Metadata must be a JSON object')

        hp = data.get('hyperparameters') or {}
        lookback = hp.get('lookback', data.get('lookback'))
        units = hp.get('units', data.get('units', MDL.N))
        learning_rate = hp.get('learningRate', data.get('learningRate', MDL.LR))

        norm = data.get('normalization') or {}
        v_min = norm.get('min', data.get('min'))
        v_max = norm.get('max', data.get('max'))
        bounds = None
        if _is_number(v_min) and _is_number(v_max):
            bounds = NormalizationBounds(float(v_min), float(v_max))
        elif v_min is not None or v_max is not None:
            logger.warning(f"Ignoring unusable normalization bounds min={v_min!r} max={v_max!r}")

        history = [_history_entry(entry) for entry in data.get('trainingHistory') or []]

        return cls(
            target_category=data.get('targetCategory') or data.get('targetStatus') or '',
            hyperparameters=Hyperparameters(
                units=int(units),
                learning_rate=float(learning_rate),
                lookback=int(lookback) if lookback is not None else 0
            ),
            normalization=bounds,
            training_history=history,
            total_epochs_trained=int(data.get('totalEpochsTrained', len(history)) or 0),
            last_updated=data.get('lastUpdated') or data.get('trainedAt') or utc_now_iso(),
            name=data.get('name'),
            bounds_verified=bool(data.get('boundsVerified', True)),
            architecture_search=list(data.get('architectureSearch') or []),
        )


def replacement_metadata(replacement: Dict[str, Any], name: Optional[str] = None,
                         units: int = MDL.N) -> ModelMetadata:
    """
    Metadata typed in by the user for an import that came without a file.

    Requires targetCategory, lookback, min and max. The bounds are not the
    ones the model was trained with, so the result is marked unverified.
    """
    replacement = replacement or {}
    required = ('targetCategory', 'lookback', 'min', 'max')
    missing = [key for key in required if replacement.get(key) in (None, '')]
    if missing:
        raise MissingMetadataError(name or replacement.get('targetCategory') or 'imported', missing)

    metadata = ModelMetadata.from_dict({
        'name': name,
        'targetCategory': replacement['targetCategory'],
        'hyperparameters': {
            'units': replacement.get('units', units),
            'learningRate': replacement.get('learningRate', MDL.LR),
            'lookback': replacement['lookback'],
        },
        'normalization': {'min': replacement['min'], 'max': replacement['max']},
    })
    if metadata.normalization is None:
        raise MissingMetadataError(name or metadata.target_category, ['min', 'max'])
    metadata.bounds_verified = False
    return metadata


def _is_number(value) -> bool:
    if isinstance(value, bool):
        return False
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


def _finite_entry(entry: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of a history entry with NaN/inf replaced by None."""
    return {
        key: (None if isinstance(value, float) and not math.isfinite(value) else value)
        for key, value in entry.items()
    }


def _history_entry(entry: Dict[str, Any]) -> Dict[str, Any]:
    # Older logs stored epoch and accuracy as strings
    epoch = entry.get('epoch')
    try:
        epoch = int(epoch)
    except (TypeError, ValueError):
        pass
    accuracy = entry.get('accuracy')
    try:
        accuracy = float(accuracy)
    except (TypeError, ValueError):
        accuracy = None
    result = dict(entry)
    result['epoch'] = epoch
    result['accuracy'] = accuracy
    return result
