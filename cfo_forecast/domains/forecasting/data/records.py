"""
Yearly category records -> observations

The document store keeps one record per year, a flat mapping of
category name -> emigrant count plus a year key, e.g.
{'YEAR': 1988, 'Single': 27561, 'Married': 16342, ...}.
"""

import logging
from typing import Iterable, List

import pandas as pd

from cfo_forecast.config import YEAR_KEYS, NON_CATEGORY_KEYS
from cfo_forecast.shared.exceptions import InvalidParameterError, ValidationError

logger = logging.getLogger(__name__)


def records_to_frame(records: Iterable[dict]) -> pd.DataFrame:
    """Load records into a DataFrame with a normalized integer 'year' column."""
    df = pd.DataFrame(list(records))
    if df.empty:
        raise ValidationError("No records provided", error_code='NO_RECORDS')

    year_col = next((k for k in YEAR_KEYS if k in df.columns), None)
    if year_col is None:
        raise InvalidParameterError('records', 'missing year key',
                                    f"Each record needs one of {list(YEAR_KEYS)}")

    year = pd.to_numeric(df[year_col], errors='coerce')
    if year.isna().any():
        raise InvalidParameterError('records', 'non-numeric year', 'Years must be integers')

    df = df.drop(columns=[k for k in YEAR_KEYS if k in df.columns])
    df.insert(0, 'year', year.astype(int))
    return df


def category_options(records: Iterable[dict]) -> List[str]:
    """Numeric category keys present in the records, in first-seen order."""
    return category_options_from_frame(records_to_frame(records))


def observations_from_records(records: Iterable[dict], category: str) -> List[dict]:
    """
    Extract {year, value} observations for one category.

    Years where the category is absent count as 0, matching how the
    dashboard filled gaps before training.
    """
    df = records_to_frame(records)
    if category not in df.columns:
        raise InvalidParameterError('category', category,
                                    f"Not present in records; available: {category_options_from_frame(df)}")

    coerced = pd.to_numeric(df[category], errors='coerce')
    absent = int(df[category].isna().sum())
    unusable = int(coerced.isna().sum())
    if unusable:
        logger.warning(f"Category '{category}' missing or non-numeric in {unusable} record(s) "
                       f"({unusable - absent} non-numeric); treated as 0")
    values = coerced.fillna(0)

    return [
        {'year': int(year), 'value': float(value)}
        for year, value in zip(df['year'], values)
    ]


def category_options_from_frame(df: pd.DataFrame) -> List[str]:
    return [
        c for c in df.columns
        if c != 'year' and c not in NON_CATEGORY_KEYS and pd.api.types.is_numeric_dtype(df[c])
    ]
