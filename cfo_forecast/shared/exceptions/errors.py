"""Custom exceptions for the forecasting backend.

This module provides the exception hierarchy for the forecasting pipeline:
preparing yearly observations, training per-category models, forecasting
and managing stored model bundles.

Exception Hierarchy:
    ForecastException (base)
    ├── ValidationError
    │   ├── InvalidParameterError
    │   ├── DuplicateYearError
    │   └── ForecastWindowError
    ├── InsufficientDataError
    ├── MissingMetadataError
    ├── ModelNotFoundError
    ├── ImportValidationError
    ├── TrainingInProgressError
    └── TrainingCancelledError
"""

from typing import Dict, List, Optional, Any, Iterable


class ForecastException(Exception):
    """Base exception for all forecasting operations.

    All custom exceptions inherit from this base class, providing consistent
    error handling with rich context information and actionable suggestions.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for client handling
        details: Additional error context (dict)
        original_exception: Original exception if this is a wrapper
        suggestions: List of actionable suggestions for resolving the error
        status_code: HTTP status the API layer answers with
    """

    status_code = 500

    def __init__(
        self,
        message: str,
        error_code: str = "FORECAST_ERROR",
        details: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        suggestions: Optional[List[str]] = None
    ):
        """Initialize ForecastException.

        Args:
            message: Human-readable error message
            error_code: Machine-readable error identifier
            details: Additional context information
            original_exception: Original exception if wrapping another error
            suggestions: List of suggested actions to resolve the error
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.original_exception = original_exception
        self.suggestions = suggestions or []

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response.

        Returns:
            Dictionary suitable for JSON serialization containing error details
        """
        result = {
            "success": False,
            "error": self.message,
            "error_code": self.error_code,
            "details": self.details
        }
        if self.suggestions:
            result["suggestions"] = self.suggestions
        return result


# ============================================================================
# Validation Errors
# ============================================================================

class ValidationError(ForecastException):
    """Base class for validation errors.

    Raised when input parameters or observations fail validation checks.
    """

    status_code = 400

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault('error_code', 'VALIDATION_ERROR')
        super().__init__(message, **kwargs)


class InvalidParameterError(ValidationError):
    """Raised when a parameter value is invalid or out of range.

    Example:
        raise InvalidParameterError('lookback', 0, 'Must be at least 1')
    """

    def __init__(
        self,
        parameter: str,
        value: Any,
        reason: Optional[str] = None,
        **kwargs
    ):
        message = f"Invalid value for parameter '{parameter}': {value}"
        if reason:
            message += f" - {reason}"
        kwargs.setdefault('error_code', 'INVALID_PARAMETER')
        kwargs.setdefault('details', {}).update({
            'parameter': parameter,
            'value': str(value),
            'reason': reason
        })
        super().__init__(message, **kwargs)


class DuplicateYearError(ValidationError):
    """Raised when the same year appears more than once in a series.

    Example:
        raise DuplicateYearError([2016, 2018])
    """

    def __init__(self, years: Iterable[int], **kwargs):
        years = sorted(set(years))
        message = f"Duplicate years in observations: {', '.join(str(y) for y in years)}"
        kwargs.setdefault('error_code', 'DUPLICATE_YEAR')
        kwargs.setdefault('details', {}).update({'years': years})
        kwargs.setdefault('suggestions', [
            "Keep a single record per year for the category",
            "Check the source collection for repeated year documents"
        ])
        super().__init__(message, **kwargs)


class ForecastWindowError(ValidationError):
    """Raised when the seed window does not match the model's lookback.

    Example:
        raise ForecastWindowError(expected=3, actual=2)
    """

    def __init__(self, expected: int, actual: int, **kwargs):
        message = f"Forecast window has {actual} values but the model expects {expected}"
        kwargs.setdefault('error_code', 'FORECAST_WINDOW_MISMATCH')
        kwargs.setdefault('details', {}).update({
            'expected_lookback': expected,
            'actual_length': actual
        })
        super().__init__(message, **kwargs)


# ============================================================================
# Data / Model Lifecycle Errors
# ============================================================================

class InsufficientDataError(ForecastException):
    """Raised when a series is too short for the requested lookback.

    Example:
        raise InsufficientDataError(required=4, available=3, lookback=3)
    """

    status_code = 422

    def __init__(
        self,
        required: int,
        available: int,
        lookback: Optional[int] = None,
        **kwargs
    ):
        message = f"Data too short ({available} rows) - at least {required} rows are required"
        if lookback is not None:
            message += f" for lookback of {lookback}"
        kwargs.setdefault('error_code', 'INSUFFICIENT_DATA')
        kwargs.setdefault('details', {}).update({
            'required_rows': required,
            'available_rows': available,
            'lookback': lookback
        })
        kwargs.setdefault('suggestions', [
            "Reduce the lookback window",
            "Add more yearly records for the category"
        ])
        super().__init__(message, **kwargs)
        self.required = required
        self.available = available


class MissingMetadataError(ForecastException):
    """Raised when a model has no recoverable normalization context.

    Forecasting is blocked rather than guessing bounds.

    Example:
        raise MissingMetadataError('civil-status-mlp', ['min', 'max'])
    """

    status_code = 409

    def __init__(self, model_name: str, missing: Optional[List[str]] = None, **kwargs):
        missing = missing or []
        message = f"Model '{model_name}' has no usable metadata"
        if missing:
            message += f" (missing: {', '.join(missing)})"
        kwargs.setdefault('error_code', 'MISSING_METADATA')
        kwargs.setdefault('details', {}).update({
            'model_name': model_name,
            'missing_fields': missing
        })
        kwargs.setdefault('suggestions', [
            "Import the metadata file exported with the model",
            "Supply targetCategory, lookback, min and max explicitly"
        ])
        super().__init__(message, **kwargs)


class ModelNotFoundError(ForecastException):
    """Raised when no trained model exists for a name.

    Expected on first run; the API answers with an untrained state.

    Example:
        raise ModelNotFoundError('civil-status-mlp')
    """

    status_code = 404

    def __init__(self, model_name: str, **kwargs):
        message = f"No trained model found: {model_name}"
        kwargs.setdefault('error_code', 'MODEL_NOT_FOUND')
        kwargs.setdefault('details', {}).update({'model_name': model_name})
        super().__init__(message, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["trained"] = False
        return result


class ImportValidationError(ForecastException):
    """Raised when uploaded model files are incomplete or unreadable.

    Example:
        raise ImportValidationError('Missing weights file', missing=['weights'])
    """

    status_code = 400

    def __init__(self, reason: str, missing: Optional[List[str]] = None, **kwargs):
        message = f"Model import rejected: {reason}"
        kwargs.setdefault('error_code', 'IMPORT_VALIDATION_ERROR')
        kwargs.setdefault('details', {}).update({
            'reason': reason,
            'missing_files': missing or []
        })
        kwargs.setdefault('suggestions', [
            "Select the topology .json and the weights file together",
            "Re-export the model if the files were modified"
        ])
        super().__init__(message, **kwargs)


class TrainingInProgressError(ForecastException):
    """Raised when a training run is already active for a model name.

    Example:
        raise TrainingInProgressError('civil-status-mlp')
    """

    status_code = 409

    def __init__(self, model_name: str, **kwargs):
        message = f"Training already in progress for model '{model_name}'"
        kwargs.setdefault('error_code', 'TRAINING_IN_PROGRESS')
        kwargs.setdefault('details', {}).update({'model_name': model_name})
        kwargs.setdefault('suggestions', [
            "Wait for the current run to finish or cancel it"
        ])
        super().__init__(message, **kwargs)


class TrainingCancelledError(ForecastException):
    """Raised when a training run is stopped through its cancellation token.

    Example:
        raise TrainingCancelledError('civil-status-mlp', epochs_completed=12)
    """

    status_code = 409

    def __init__(self, model_name: str, epochs_completed: int = 0, **kwargs):
        message = f"Training cancelled for model '{model_name}' after {epochs_completed} epochs"
        kwargs.setdefault('error_code', 'TRAINING_CANCELLED')
        kwargs.setdefault('details', {}).update({
            'model_name': model_name,
            'epochs_completed': epochs_completed
        })
        super().__init__(message, **kwargs)
