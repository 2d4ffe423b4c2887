"""
Pytest configuration and fixtures for backend tests.

This module provides common fixtures used across all test modules.
"""

import pytest
from unittest.mock import MagicMock

import tensorflow as tf


@pytest.fixture
def app(tmp_path):
    """
    Create Flask app for testing.

    Returns:
        Flask application instance with its model store in a temp directory
    """
    from cfo_forecast.core.app_factory import create_app

    app, _ = create_app({
        'TESTING': True,
        'MODEL_STORE_DIR': str(tmp_path / 'models'),
    })
    # Progress events go to a mock instead of a live server
    app.extensions['forecast_service'].socketio = MagicMock()

    return app


@pytest.fixture
def client(app):
    """
    Create test client.

    Args:
        app: Flask application fixture

    Returns:
        Flask test client
    """
    return app.test_client()


@pytest.fixture
def mock_socketio():
    """
    Mock SocketIO instance.

    Returns:
        Mocked SocketIO object
    """
    mock = MagicMock()
    mock.emit = MagicMock()
    return mock


@pytest.fixture
def model_store(tmp_path):
    """Empty ModelStore rooted in a temp directory."""
    from cfo_forecast.domains.forecasting.ml.persistence import ModelStore
    return ModelStore(tmp_path / 'store')


@pytest.fixture
def forecast_service(model_store, mock_socketio):
    """ForecastService over the temp store, emitting into a mock."""
    from cfo_forecast.domains.forecasting.services.forecast_service import ForecastService
    return ForecastService(model_store, socketio=mock_socketio, progress_every=5)


@pytest.fixture
def worked_example():
    """
    Five yearly observations used across the sequence and forecast tests.

    Returns:
        list of {year, value}
    """
    return [
        {'year': 2015, 'value': 100},
        {'year': 2016, 'value': 120},
        {'year': 2017, 'value': 90},
        {'year': 2018, 'value': 150},
        {'year': 2019, 'value': 130},
    ]


@pytest.fixture
def sample_records():
    """
    Yearly civil-status records shaped like the document store rows.

    Returns:
        list of dicts, 1988-2020, one per year
    """
    records = []
    for i, year in enumerate(range(1988, 2021)):
        records.append({
            'YEAR': year,
            'Single': 27000 + 850 * i + (i % 4) * 300,
            'Married': 16000 + 400 * i - (i % 3) * 250,
            'Widower': 900 + 15 * i,
            'Separated': 300 + 10 * i,
            'Divorced': 120 + 5 * i,
            'Not Reported': 40 + (i % 5),
        })
    return records


@pytest.fixture(autouse=True)
def reset_state():
    """
    Reset global state before each test.

    Seeds TensorFlow so short training runs are repeatable and clears the
    Keras session between tests.
    """
    tf.keras.utils.set_random_seed(42)
    yield
    tf.keras.backend.clear_session()
