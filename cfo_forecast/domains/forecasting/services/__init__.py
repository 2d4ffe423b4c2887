"""Forecasting services - training orchestration and progress reporting"""

from .forecast_service import ForecastService
from .socketio import SocketIOProgressReporter

__all__ = ['ForecastService', 'SocketIOProgressReporter']
