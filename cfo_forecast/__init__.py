"""CFO emigrant statistics forecasting backend."""

__version__ = '1.0.0'
