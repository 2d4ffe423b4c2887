"""Data preparation for the forecasting domain."""
