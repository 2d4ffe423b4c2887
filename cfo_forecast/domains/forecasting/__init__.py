"""
Forecasting domain
Per-category MLP training and recursive yearly forecasts
"""
