"""
Tests for the forecasting HTTP API

Covers status codes and response shapes of every /api/forecast route.
Training runs use a few epochs and a small network to stay fast.
"""

import io
import zipfile
import pytest
from unittest.mock import MagicMock, patch

from cfo_forecast.shared.exceptions import TrainingInProgressError

BASE = '/api/forecast'


def _train_body(records, **overrides):
    body = {'records': records, 'category': 'Single', 'epochs': 3, 'units': 8, 'horizon': 3}
    body.update(overrides)
    return body


@pytest.fixture
def trained(client, sample_records):
    """Client with 'civil-single' already trained."""
    response = client.post(f'{BASE}/train/civil-single', json=_train_body(sample_records))
    assert response.status_code == 200
    return client


def _export_files(client, name='civil-single'):
    response = client.get(f'{BASE}/models/{name}/export')
    with zipfile.ZipFile(io.BytesIO(response.data)) as zf:
        return {n: zf.read(n) for n in zf.namelist()}


class TestHealth:
    """Tests for app-level routes."""

    def test_health(self, client):
        """Test the health check."""
        response = client.get('/health')
        assert response.status_code == 200
        assert response.get_json() == {'status': 'ok'}

    def test_index(self, client):
        """Test the index reports the service and model count."""
        data = client.get('/').get_json()
        assert data['status'] == 'online'
        assert data['models'] == 0

    def test_unknown_route(self, client):
        """Test unknown paths answer with JSON 404."""
        response = client.get(f'{BASE}/nope')
        assert response.status_code == 404
        assert response.get_json()['success'] is False


class TestCategoriesRoute:
    """Tests for POST /categories."""

    def test_lists_categories(self, client, sample_records):
        """Test numeric category keys are returned."""
        response = client.post(f'{BASE}/categories', json={'records': sample_records})
        data = response.get_json()
        assert response.status_code == 200
        assert 'Single' in data['categories']
        assert 'YEAR' not in data['categories']
        assert data['record_count'] == len(sample_records)

    def test_missing_records(self, client):
        """Test an empty body is a validation error."""
        response = client.post(f'{BASE}/categories', json={})
        assert response.status_code == 400
        assert response.get_json()['error_code'] == 'INVALID_REQUEST'


class TestTrainRoute:
    """Tests for POST /train/<name>."""

    def test_train(self, client, sample_records):
        """Test a synchronous run returns metadata and forecast."""
        response = client.post(f'{BASE}/train/civil-single', json=_train_body(sample_records))
        data = response.get_json()

        assert response.status_code == 200
        assert data['metadata']['targetCategory'] == 'Single'
        assert data['metadata']['totalEpochsTrained'] == 3
        assert data['forecast']['points'][-1]['year'] == 2023

    def test_invalid_parameters(self, client, sample_records):
        """Test out-of-range parameters are rejected with field details."""
        response = client.post(f'{BASE}/train/civil-single',
                               json=_train_body(sample_records, lookback=0))
        data = response.get_json()
        assert response.status_code == 400
        assert data['details']['errors'][0]['field'] == 'lookback'

    def test_unknown_category(self, client, sample_records):
        """Test a category missing from the records is a 400."""
        response = client.post(f'{BASE}/train/civil-single',
                               json=_train_body(sample_records, category='Cohabiting'))
        assert response.status_code == 400

    def test_insufficient_data(self, client, sample_records):
        """Test a series shorter than lookback + 1 is a 422."""
        response = client.post(f'{BASE}/train/civil-single',
                               json=_train_body(sample_records[:3], lookback=3))
        data = response.get_json()
        assert response.status_code == 422
        assert data['details'] == {'required_rows': 4, 'available_rows': 3, 'lookback': 3}

    def test_duplicate_years(self, client, sample_records):
        """Test repeated years are a 400."""
        records = sample_records + [dict(sample_records[-1])]
        response = client.post(f'{BASE}/train/civil-single', json=_train_body(records))
        assert response.status_code == 400
        assert response.get_json()['error_code'] == 'DUPLICATE_YEAR'

    def test_invalid_model_name(self, client, sample_records):
        """Test names outside the allowed pattern are refused."""
        response = client.post(f'{BASE}/train/.hidden', json=_train_body(sample_records))
        assert response.status_code == 400

    def test_in_progress(self, app, client, sample_records):
        """Test a second run for the same name is a 409."""
        service = app.extensions['forecast_service']
        with patch.object(service, 'train', side_effect=TrainingInProgressError('civil-single')):
            response = client.post(f'{BASE}/train/civil-single', json=_train_body(sample_records))
        assert response.status_code == 409
        assert response.get_json()['error_code'] == 'TRAINING_IN_PROGRESS'

    def test_async_start(self, app, client, sample_records):
        """Test "async": true answers 202 and hands off to the background runner."""
        service = app.extensions['forecast_service']
        with patch.object(service, 'train_async', return_value=MagicMock()) as mock_async:
            response = client.post(f'{BASE}/train/civil-single',
                                   json=_train_body(sample_records, **{'async': True}))
        assert response.status_code == 202
        assert response.get_json()['room'] == 'forecast_civil-single'
        assert mock_async.call_args.kwargs['epochs'] == 3

    def test_cancel_idle(self, client):
        """Test cancelling when nothing runs is a 404."""
        response = client.post(f'{BASE}/cancel/civil-single')
        assert response.status_code == 404


class TestPredictRoute:
    """Tests for POST /predict/<name>."""

    def test_predict_untrained(self, client, sample_records):
        """Test an untrained model answers 404 with trained=false."""
        response = client.post(f'{BASE}/predict/civil-single', json={'records': sample_records})
        data = response.get_json()
        assert response.status_code == 404
        assert data['trained'] is False

    def test_predict(self, trained, sample_records):
        """Test a stored model forecasts the requested horizon."""
        response = trained.post(f'{BASE}/predict/civil-single',
                                json={'records': sample_records, 'horizon': 5})
        data = response.get_json()
        assert response.status_code == 200
        future = [p for p in data['forecast']['points'] if p['historicalValue'] is None]
        assert [p['year'] for p in future] == [2021, 2022, 2023, 2024, 2025]
        assert data['forecast']['verified'] is True

    def test_predict_other_category(self, trained, sample_records):
        """Test asking a Single model for Divorced is a 400."""
        response = trained.post(f'{BASE}/predict/civil-single',
                                json={'records': sample_records, 'category': 'Divorced'})
        data = response.get_json()
        assert response.status_code == 400
        assert data['error_code'] == 'INVALID_PARAMETER'
        assert data['details']['parameter'] == 'category'

    def test_horizon_limit(self, trained, sample_records):
        """Test a horizon above the limit is rejected."""
        response = trained.post(f'{BASE}/predict/civil-single',
                                json={'records': sample_records, 'horizon': 500})
        assert response.status_code == 400


class TestModelRoutes:
    """Tests for /models routes."""

    def test_get_untrained(self, client):
        """Test GET on an unknown name is a 404 with trained=false."""
        response = client.get(f'{BASE}/models/civil-single')
        assert response.status_code == 404
        assert response.get_json()['trained'] is False

    def test_get_and_list(self, trained):
        """Test a trained model shows up in detail and listing."""
        detail = trained.get(f'{BASE}/models/civil-single').get_json()
        assert detail['trained'] is True
        assert detail['metadata']['name'] == 'civil-single'

        listing = trained.get(f'{BASE}/models').get_json()
        assert listing['count'] == 1
        assert listing['models'][0]['targetCategory'] == 'Single'

    def test_delete(self, trained):
        """Test delete removes the model; a second delete is a 404."""
        assert trained.delete(f'{BASE}/models/civil-single').status_code == 200
        assert trained.get(f'{BASE}/models/civil-single').status_code == 404
        assert trained.delete(f'{BASE}/models/civil-single').status_code == 404

    def test_export(self, trained):
        """Test the export is a zip of the three files."""
        response = trained.get(f'{BASE}/models/civil-single/export')
        assert response.status_code == 200
        assert response.mimetype == 'application/zip'
        assert sorted(_export_files(trained)) == [
            'civil-single-metadata.json', 'model.json', 'model.weights.h5'
        ]


class TestImportRoute:
    """Tests for POST /models/<name>/import."""

    def test_import_with_metadata(self, trained):
        """Test importing an export under a new name."""
        files = _export_files(trained)
        response = trained.post(f'{BASE}/models/copy/import', data={
            'topology': (io.BytesIO(files['model.json']), 'model.json'),
            'weights': (io.BytesIO(files['model.weights.h5']), 'model.weights.h5'),
            'metadata': (io.BytesIO(files['civil-single-metadata.json']), 'civil-single-metadata.json'),
        }, content_type='multipart/form-data')

        assert response.status_code == 201
        assert response.get_json()['metadata']['boundsVerified'] is True
        assert trained.get(f'{BASE}/models/copy').status_code == 200

    def test_import_loose_files(self, trained):
        """Test files sent together under 'files' are sorted by name."""
        files = _export_files(trained)
        response = trained.post(f'{BASE}/models/loose/import', data={
            'files': [
                (io.BytesIO(files['model.json']), 'model.json'),
                (io.BytesIO(files['model.weights.h5']), 'model.weights.h5'),
                (io.BytesIO(files['civil-single-metadata.json']), 'civil-single-metadata.json'),
            ]
        }, content_type='multipart/form-data')
        assert response.status_code == 201

    def test_import_missing_weights(self, trained):
        """Test topology alone is a 400."""
        files = _export_files(trained)
        response = trained.post(f'{BASE}/models/copy/import', data={
            'topology': (io.BytesIO(files['model.json']), 'model.json'),
        }, content_type='multipart/form-data')
        assert response.status_code == 400
        assert response.get_json()['details']['missing_files'] == ['weights']

    def test_import_without_metadata(self, trained):
        """Test an import without metadata or replacement fields is a 409."""
        files = _export_files(trained)
        response = trained.post(f'{BASE}/models/copy/import', data={
            'topology': (io.BytesIO(files['model.json']), 'model.json'),
            'weights': (io.BytesIO(files['model.weights.h5']), 'model.weights.h5'),
        }, content_type='multipart/form-data')
        assert response.status_code == 409
        assert response.get_json()['error_code'] == 'MISSING_METADATA'

    def test_import_with_replacement_fields(self, trained, sample_records):
        """Test hand-entered bounds make an unverified model."""
        files = _export_files(trained)
        response = trained.post(f'{BASE}/models/manual/import', data={
            'topology': (io.BytesIO(files['model.json']), 'model.json'),
            'weights': (io.BytesIO(files['model.weights.h5']), 'model.weights.h5'),
            'targetCategory': 'Single',
            'lookback': '3',
            'min': '20000',
            'max': '60000',
        }, content_type='multipart/form-data')

        assert response.status_code == 201
        assert response.get_json()['metadata']['boundsVerified'] is False

        forecast = trained.post(f'{BASE}/predict/manual', json={'records': sample_records})
        assert forecast.get_json()['forecast']['verified'] is False

    def test_import_invalid_replacement(self, trained):
        """Test replacement bounds with max < min are a 400."""
        files = _export_files(trained)
        response = trained.post(f'{BASE}/models/manual/import', data={
            'topology': (io.BytesIO(files['model.json']), 'model.json'),
            'weights': (io.BytesIO(files['model.weights.h5']), 'model.weights.h5'),
            'targetCategory': 'Single',
            'lookback': '3',
            'min': '500',
            'max': '100',
        }, content_type='multipart/form-data')
        assert response.status_code == 400
