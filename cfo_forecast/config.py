"""
Configuration module for the forecasting backend
Contains model defaults and environment-driven settings
"""

import os

from dotenv import load_dotenv

load_dotenv()


class MDL:
    """
    Model configuration class
    Defaults used when a request does not override them
    """

    LOOKBACK = 3

    N = 64

    DROPOUT = 0.2

    LR = 0.001

    EP = 200

    SEARCH_EP = 15

    BATCH = 32

    VAL_SPLIT = 0.2

    HORIZON = 10

    # Architecture search grid, tried in order (first wins ties)
    CANDIDATES = (
        {'name': 'Speed', 'units': 32},
        {'name': 'Balanced', 'units': 64},
        {'name': 'Deep', 'units': 128},
    )


class Limits:
    """Bounds for user-supplied training parameters."""

    LOOKBACK_MIN = 1
    LOOKBACK_MAX = 20

    EPOCHS_MIN = 1
    EPOCHS_MAX = 5000

    UNITS_MIN = 2
    UNITS_MAX = 1024

    HORIZON_MIN = 1
    HORIZON_MAX = 50


# Record keys that never name a forecastable category
YEAR_KEYS = ('Year', 'YEAR', 'year')
NON_CATEGORY_KEYS = YEAR_KEYS + ('total', 'Total', 'TOTAL', 'id')


class Settings:
    """
    Environment settings
    Read once at import; tests patch attributes directly
    """

    def __init__(self):
        self.MODEL_STORE_DIR = os.environ.get('MODEL_STORE_DIR', 'models')

        self.LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

        self.CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*')

        self.PORT = int(os.environ.get('PORT', 8080))

        self.DEBUG = os.environ.get('DEBUG', 'False').lower() == 'true'

        # Emit every Nth epoch over Socket.IO (first and last are always sent)
        self.PROGRESS_EVERY = int(os.environ.get('PROGRESS_EVERY', 5))

        self.MAX_CONTENT_LENGTH = int(os.environ.get('MAX_CONTENT_MB', 50)) * 1024 * 1024


settings = Settings()
