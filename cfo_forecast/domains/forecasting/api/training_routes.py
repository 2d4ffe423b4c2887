"""
Training routes for forecasting API.

Contains 4 endpoints:
- categories POST
- train/<name> POST
- cancel/<name> POST
- predict/<name> POST
"""

from flask import Blueprint

from .common import request, jsonify, get_logger, get_service, error_response
from .schemas import PredictRequest, RecordsPayload, TrainRequest, validate_request

from cfo_forecast.domains.forecasting.data.records import category_options
from cfo_forecast.shared.exceptions import ForecastException

bp = Blueprint('forecast_training', __name__)
logger = get_logger(__name__)


@bp.route('/categories', methods=['POST'])
def list_categories():
    """Numeric category keys present in the posted records."""
    try:
        payload = validate_request(RecordsPayload, request.get_json(silent=True))
        categories = category_options(payload.records)

        return jsonify({
            'success': True,
            'categories': categories,
            'record_count': len(payload.records)
        })

    except ForecastException as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error in list_categories: {str(e)}")
        return jsonify({'success': False, 'error': str(e)}), 500


@bp.route('/train/<name>', methods=['POST'])
def train_model(name):
    """
    Train a model for one category and store it under `name`.

    With "async": true the run continues in the background and the
    response only confirms the start; progress arrives over SocketIO in
    room forecast_<name>.
    """
    try:
        payload = validate_request(TrainRequest, request.get_json(silent=True))
        service = get_service()

        if payload.runAsync:
            service.train_async(name, payload.records, payload.category,
                                **payload.training_options())
            return jsonify({
                'success': True,
                'model_name': name,
                'message': f'Training started for {name} ({payload.category})',
                'note': 'Training is running in background, listen for SocketIO events for progress',
                'room': f'forecast_{name}'
            }), 202

        result = service.train(name, payload.records, payload.category,
                               **payload.training_options())
        return jsonify(result)

    except ForecastException as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error in train_model for {name}: {str(e)}", exc_info=True)
        return jsonify({'success': False, 'error': str(e)}), 500


@bp.route('/cancel/<name>', methods=['POST'])
def cancel_training(name):
    """Stop a running job after its current epoch."""
    try:
        cancelled = get_service().cancel(name)
        if not cancelled:
            return jsonify({
                'success': False,
                'error': f'No training in progress for {name}'
            }), 404

        return jsonify({
            'success': True,
            'model_name': name,
            'message': 'Cancellation requested'
        })

    except Exception as e:
        logger.error(f"Error in cancel_training for {name}: {str(e)}")
        return jsonify({'success': False, 'error': str(e)}), 500


@bp.route('/predict/<name>', methods=['POST'])
def predict(name):
    """Forecast `horizon` years with the stored model."""
    try:
        payload = validate_request(PredictRequest, request.get_json(silent=True))
        result = get_service().forecast(name, payload.records, horizon=payload.horizon,
                                        category=payload.category)
        return jsonify(result)

    except ForecastException as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error in predict for {name}: {str(e)}", exc_info=True)
        return jsonify({'success': False, 'error': str(e)}), 500
