"""
Model routes for forecasting API.

Contains 5 endpoints for stored models:
- models GET
- models/<name> GET
- models/<name> DELETE
- models/<name>/export GET
- models/<name>/import POST
"""

import io
import os
import tempfile
from datetime import datetime
from flask import Blueprint, send_file
from werkzeug.utils import secure_filename

from .common import request, jsonify, get_logger, get_service, error_response
from .schemas import replacement_from_form

from cfo_forecast.domains.forecasting.ml.persistence import classify_upload
from cfo_forecast.shared.exceptions import ForecastException, ImportValidationError

bp = Blueprint('forecast_models', __name__)
logger = get_logger(__name__)


@bp.route('/models', methods=['GET'])
def list_models():
    """Summaries of every stored model."""
    try:
        models = get_service().list_models()
        return jsonify({
            'success': True,
            'models': models,
            'count': len(models)
        })

    except Exception as e:
        logger.error(f"Error listing models: {str(e)}")
        return jsonify({'success': False, 'error': str(e)}), 500


@bp.route('/models/<name>', methods=['GET'])
def get_model(name):
    """Metadata of one model; 404 with trained=false before first training."""
    try:
        return jsonify(get_service().get_model(name))

    except ForecastException as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error loading model {name}: {str(e)}")
        return jsonify({'success': False, 'error': str(e)}), 500


@bp.route('/models/<name>', methods=['DELETE'])
def delete_model(name):
    try:
        get_service().delete(name)
        return jsonify({
            'success': True,
            'model_name': name,
            'message': f'Model {name} deleted'
        })

    except ForecastException as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error deleting model {name}: {str(e)}")
        return jsonify({'success': False, 'error': str(e)}), 500


@bp.route('/models/<name>/export', methods=['GET'])
def export_model(name):
    """Download topology, weights and metadata as one zip."""
    try:
        archive = get_service().export(name)
        timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")

        return send_file(
            io.BytesIO(archive),
            as_attachment=True,
            download_name=f'{name}_{timestamp}.zip',
            mimetype='application/zip'
        )

    except ForecastException as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error exporting model {name}: {str(e)}")
        return jsonify({'success': False, 'error': str(e)}), 500


def _uploaded_files():
    """
    Uploaded files keyed by role.

    Explicit fields (topology / weights / metadata) win; anything sent under
    'files' is sorted by name the way the dashboard picker did.
    """
    files = {role: request.files.get(role) for role in ('topology', 'weights', 'metadata')}

    loose = [f for f in request.files.getlist('files') if f and f.filename]
    if loose:
        by_name = {f.filename: f for f in loose}
        for role, filename in classify_upload(list(by_name)).items():
            if filename and not files.get(role):
                files[role] = by_name[filename]

    return {role: f for role, f in files.items() if f and f.filename}


@bp.route('/models/<name>/import', methods=['POST'])
def import_model(name):
    """
    Import an exported model under `name`.

    Multipart fields: topology (.json), weights (.h5), metadata (.json,
    optional). Without metadata the form must carry targetCategory,
    lookback, min and max; forecasts from such a model are unverified.
    """
    try:
        files = _uploaded_files()
        missing = [role for role in ('topology', 'weights') if role not in files]
        if missing:
            raise ImportValidationError(f"Missing {' and '.join(missing)} file", missing=missing)

        replacement = replacement_from_form(request.form)

        with tempfile.TemporaryDirectory() as temp_dir:
            paths = {}
            for role, storage in files.items():
                filename = secure_filename(storage.filename) or role
                path = os.path.join(temp_dir, f'{role}_{filename}')
                storage.save(path)
                paths[role] = path

            result = get_service().import_model(
                name,
                topology=paths['topology'],
                weights=paths['weights'],
                metadata=paths.get('metadata'),
                replacement=replacement
            )

        return jsonify(result), 201

    except ForecastException as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error importing model {name}: {str(e)}", exc_info=True)
        return jsonify({'success': False, 'error': str(e)}), 500
