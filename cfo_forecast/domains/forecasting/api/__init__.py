"""
Forecasting API Blueprint Aggregator

This module aggregates the forecasting sub-blueprints into a single parent blueprint.
The sub-blueprints are:
- training_routes: categories, train, cancel, predict
- model_routes: list, get, delete, export, import of stored models
"""

from flask import Blueprint

# Import sub-blueprints
from .training_routes import bp as training_bp
from .model_routes import bp as model_bp

# Create parent blueprint
bp = Blueprint('forecast', __name__)

# Register all sub-blueprints (without additional prefix - routes stay at /api/forecast/*)
bp.register_blueprint(training_bp)
bp.register_blueprint(model_bp)

forecast_bp = bp

__all__ = ['bp', 'forecast_bp']
