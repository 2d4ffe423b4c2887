"""
Common utilities and imports for forecasting API routes.

This module contains shared helpers used across the forecasting
sub-blueprints: logger setup, access to the app-wide ForecastService and
the JSON error response for ForecastException.
"""

import logging
from flask import request, jsonify, current_app

from cfo_forecast.shared.exceptions import ForecastException
from cfo_forecast.domains.forecasting.services.forecast_service import ForecastService


# Logger setup
def get_logger(name: str) -> logging.Logger:
    """Get a module logger; handlers and level come from the app factory."""
    return logging.getLogger(name)


def get_service() -> ForecastService:
    """The ForecastService created by the app factory."""
    return current_app.extensions['forecast_service']


def error_response(e: ForecastException):
    """JSON body + status code for a typed forecasting error."""
    if e.status_code >= 500:
        logging.getLogger(__name__).error(f"❌ {e.error_code}: {e.message}")
    else:
        logging.getLogger(__name__).warning(f"{e.error_code}: {e.message}")
    return jsonify(e.to_dict()), e.status_code


__all__ = [
    'request', 'jsonify', 'current_app', 'logging',
    'get_logger', 'get_service', 'error_response',
]
