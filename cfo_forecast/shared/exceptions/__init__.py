"""Custom exceptions for error handling"""
from cfo_forecast.shared.exceptions.errors import (
    ForecastException,
    ValidationError,
    InvalidParameterError,
    DuplicateYearError,
    ForecastWindowError,
    InsufficientDataError,
    MissingMetadataError,
    ModelNotFoundError,
    ImportValidationError,
    TrainingInProgressError,
    TrainingCancelledError
)

__all__ = [
    'ForecastException',
    'ValidationError',
    'InvalidParameterError',
    'DuplicateYearError',
    'ForecastWindowError',
    'InsufficientDataError',
    'MissingMetadataError',
    'ModelNotFoundError',
    'ImportValidationError',
    'TrainingInProgressError',
    'TrainingCancelledError'
]
