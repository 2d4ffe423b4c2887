"""Blueprint registration for Flask app"""


def register_blueprints(app):
    """Register all blueprints with the Flask app"""
    from cfo_forecast.domains.forecasting.api import forecast_bp

    app.register_blueprint(forecast_bp, url_prefix='/api/forecast')
