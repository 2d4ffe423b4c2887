"""Pydantic schemas for forecasting API requests"""
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from typing import Any, Dict, List, Optional

from cfo_forecast.config import MDL, Limits
from cfo_forecast.shared.exceptions import ValidationError


class RecordsPayload(BaseModel):
    """Yearly category records as served by the document store"""
    records: List[Dict[str, Any]] = Field(
        min_length=1,
        description="One mapping per year: {YEAR: 1988, Single: 27561, ...}"
    )

    model_config = {"extra": "ignore"}


class TrainRequest(RecordsPayload):
    """
    Schema for POST /train/<name>.

    `units` is ignored when `search` is set; the search picks it.
    """
    category: str = Field(
        min_length=1,
        max_length=100,
        description="Category key to train on"
    )
    lookback: int = Field(
        default=MDL.LOOKBACK,
        ge=Limits.LOOKBACK_MIN,
        le=Limits.LOOKBACK_MAX,
        description="Past years per input window (1-20)"
    )
    epochs: int = Field(
        default=MDL.EP,
        ge=Limits.EPOCHS_MIN,
        le=Limits.EPOCHS_MAX,
        description="Training epochs (1-5000)"
    )
    units: Optional[int] = Field(
        default=None,
        ge=Limits.UNITS_MIN,
        le=Limits.UNITS_MAX,
        description="Neurons in the first hidden layer (2-1024)"
    )
    learningRate: float = Field(
        default=MDL.LR,
        gt=0.0,
        le=1.0,
        description="Adam learning rate"
    )
    search: bool = Field(
        default=False,
        description="Run the architecture search before training"
    )
    horizon: int = Field(
        default=MDL.HORIZON,
        ge=Limits.HORIZON_MIN,
        le=Limits.HORIZON_MAX,
        description="Years to forecast after training (1-50)"
    )
    runAsync: bool = Field(
        default=False,
        alias='async',
        description="Train in the background and report over SocketIO"
    )

    model_config = {"extra": "ignore", "populate_by_name": True}

    @field_validator('category')
    @classmethod
    def strip_category(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Category must not be blank")
        return v

    def training_options(self) -> Dict[str, Any]:
        return {
            'lookback': self.lookback,
            'epochs': self.epochs,
            'units': self.units,
            'learning_rate': self.learningRate,
            'search': self.search,
            'horizon': self.horizon,
        }


class PredictRequest(RecordsPayload):
    """Schema for POST /predict/<name>"""
    horizon: int = Field(
        default=MDL.HORIZON,
        ge=Limits.HORIZON_MIN,
        le=Limits.HORIZON_MAX,
        description="Years to forecast (1-50)"
    )
    category: Optional[str] = Field(
        default=None,
        max_length=100,
        description="Optional; must match the category the model was trained on"
    )


class ReplacementMetadata(BaseModel):
    """
    Hand-entered metadata for an import without a metadata file.

    Sent as multipart form fields next to the uploaded files.
    """
    targetCategory: str = Field(min_length=1, max_length=100)
    lookback: int = Field(ge=Limits.LOOKBACK_MIN, le=Limits.LOOKBACK_MAX)
    min: float
    max: float
    units: Optional[int] = Field(default=None, ge=Limits.UNITS_MIN, le=Limits.UNITS_MAX)

    model_config = {"extra": "ignore"}

    @field_validator('max')
    @classmethod
    def max_not_below_min(cls, v, info):
        v_min = info.data.get('min')
        if v_min is not None and v < v_min:
            raise ValueError("max must be >= min")
        return v


def _format_errors(e: PydanticValidationError) -> List[Dict[str, Any]]:
    return [
        {'field': '.'.join(str(p) for p in err['loc']), 'message': err['msg']}
        for err in e.errors()
    ]


def validate_request(schema, data: Optional[dict]):
    """
    Validate a request body against a schema.

    Raises:
        ValidationError: with one entry per invalid field in details
    """
    try:
        return schema.model_validate(data or {})
    except PydanticValidationError as e:
        errors = _format_errors(e)
        message = "Invalid request parameters: " + "; ".join(
            f"{err['field']}: {err['message']}" for err in errors)
        raise ValidationError(message, error_code='INVALID_REQUEST', details={'errors': errors})


def replacement_from_form(form) -> Optional[Dict[str, Any]]:
    """
    Replacement metadata from multipart form fields, or None when none were sent.
    """
    fields = {key: form.get(key) for key in ('targetCategory', 'lookback', 'min', 'max', 'units')}
    if all(value in (None, '') for value in fields.values()):
        return None
    present = {key: value for key, value in fields.items() if value not in (None, '')}
    return validate_request(ReplacementMetadata, present).model_dump(exclude_none=True)
