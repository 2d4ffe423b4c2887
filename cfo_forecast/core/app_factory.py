"""Application factory for Flask app"""
import logging
from datetime import datetime as dat
from typing import Any, Dict, Optional
from flask import Flask, jsonify, request
from flask_socketio import SocketIO
from flask_cors import CORS

from cfo_forecast import __version__
from cfo_forecast.config import settings
from cfo_forecast.core.socketio_handlers import register_socketio_handlers
from cfo_forecast.domains.forecasting.ml.persistence import ModelStore
from cfo_forecast.domains.forecasting.services.forecast_service import ForecastService
from cfo_forecast.shared.exceptions import ForecastException

socketio = SocketIO()
cors = CORS()

# Configure logging level from environment (default: INFO for production)
# Set LOG_LEVEL=DEBUG in .env for verbose logging during development
_log_level = getattr(logging, settings.LOG_LEVEL, logging.INFO)
logging.basicConfig(
    level=_log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Suppress noisy third-party loggers (they flood logs with INFO level messages)
logging.getLogger('tensorflow').setLevel(logging.WARNING)
logging.getLogger('absl').setLevel(logging.WARNING)
logging.getLogger('werkzeug').setLevel(logging.WARNING)


def create_app(config: Optional[Dict[str, Any]] = None):
    """
    Application factory function

    Args:
        config: overrides applied to app.config, e.g. {'MODEL_STORE_DIR': tmp_path}
                or {'TESTING': True}

    Returns:
        (app, socketio)
    """
    app = Flask(__name__)

    app.config['MAX_CONTENT_LENGTH'] = settings.MAX_CONTENT_LENGTH
    app.config['MODEL_STORE_DIR'] = settings.MODEL_STORE_DIR
    app.config['PROGRESS_EVERY'] = settings.PROGRESS_EVERY
    if config:
        app.config.update(config)

    # CORS origins from environment (default: "*")
    # Set CORS_ORIGINS=https://dashboard.example.org,http://localhost:5173 in production
    _cors_origins = settings.CORS_ORIGINS
    _origins = _cors_origins.split(',') if _cors_origins != '*' else '*'

    # Initialize SocketIO
    socketio.init_app(app,
                      cors_allowed_origins=_origins,
                      async_mode='threading',
                      logger=False,
                      engineio_logger=False,
                      ping_timeout=60,
                      ping_interval=25,
                      transports=['polling', 'websocket'],
                      always_connect=True)
    app.extensions['socketio'] = socketio

    cors.init_app(app, resources={
        r"/*": {
            "origins": _origins,
            "methods": ["GET", "POST", "DELETE", "OPTIONS"],
            "allow_headers": ["Content-Type", "Accept", "Origin", "X-Requested-With"],
            "expose_headers": ["Content-Disposition", "Content-Length"],
            "max_age": 3600
        }
    })

    register_socketio_handlers(socketio)

    store = ModelStore(app.config['MODEL_STORE_DIR'])
    app.extensions['model_store'] = store
    app.extensions['forecast_service'] = ForecastService(
        store, socketio=socketio, progress_every=app.config['PROGRESS_EVERY'])
    logger.info(f"Model store at {store.root}")

    from cfo_forecast.core.blueprints import register_blueprints
    register_blueprints(app)

    @app.errorhandler(ForecastException)
    def forecast_error(error):
        logger.error(f"Unhandled forecast error ({error.status_code}): {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(400)
    def bad_request(error):
        logger.error(f"Bad request (400): {error}")
        return jsonify({'success': False, 'error': 'Bad Request', 'message': str(error)}), 400

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'success': False, 'error': 'Not Found', 'message': f'No route for {request.path}'}), 404

    @app.errorhandler(413)
    def payload_too_large(error):
        logger.error(f"Payload too large (413): {error}")
        return jsonify({'success': False, 'error': 'Payload Too Large', 'message': 'Request entity is too large'}), 413

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"Internal server error (500): {error}")
        return jsonify({'success': False, 'error': 'Internal Server Error', 'message': str(error)}), 500

    @app.route('/health')
    def health():
        return jsonify(status="ok"), 200

    @app.route('/')
    def index():
        return jsonify({
            'status': 'online',
            'message': 'Forecast service is running',
            'version': __version__,
            'timestamp': str(dat.now()),
            'models': len(store.list_models())
        })

    return app, socketio
