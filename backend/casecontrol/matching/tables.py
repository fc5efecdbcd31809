"""
Table helpers for date normalisation and compact storage.
"""

import logging
from typing import Iterable, List, Optional

import numpy as np
import pandas as pd

from ..core.config import settings

logger = logging.getLogger(__name__)

DATETIME_DTYPE = "datetime64[ns]"


def _present(df: pd.DataFrame, fields: Iterable[str]) -> List[str]:
    columns = []
    for name in fields:
        if name in df.columns and name not in columns:
            columns.append(name)
    return columns


def _to_datetime(values: pd.Series, origin: str) -> pd.Series:
    if pd.api.types.is_datetime64_any_dtype(values):
        converted = values
    elif pd.api.types.is_numeric_dtype(values):
        # Integer day offsets, as written by compress()
        converted = pd.to_datetime(values.astype("float64"), unit="D", origin=pd.Timestamp(origin))
    else:
        converted = pd.to_datetime(values, errors="raise")
    # Same resolution on every path
    return converted.astype(DATETIME_DTYPE)


def convert_dates(
    df: pd.DataFrame,
    date_fields: Optional[Iterable[str]] = None,
    extras: Optional[Iterable[str]] = None,
    origin: Optional[str] = None,
) -> pd.DataFrame:
    """
    Convert date columns from ISO strings or day offsets to datetimes.

    Args:
        df: Input table (not modified)
        date_fields: Column names treated as dates (default: settings.DATE_FIELDS)
        extras: Additional column names to convert
        origin: Origin for integer day offsets (default: settings.DATE_ORIGIN)

    Returns:
        A copy of ``df`` with the date columns that are present converted.

    Raises:
        ValueError: If a date column holds unparseable values.
    """
    fields = list(settings.DATE_FIELDS if date_fields is None else date_fields)
    fields += list(extras or [])
    columns = _present(df, fields)
    if not columns:
        return df

    origin = origin or settings.DATE_ORIGIN
    out = df.copy()
    for column in columns:
        if str(out[column].dtype) != DATETIME_DTYPE:
            logger.debug("Converting date column %s", column)
            out[column] = _to_datetime(out[column], origin)
    return out


def compress(
    df: pd.DataFrame,
    origin: Optional[str] = None,
    date_fields: Optional[Iterable[str]] = None,
    integer_fields: Optional[Iterable[str]] = None,
) -> pd.DataFrame:
    """
    Shrink a table for storage.

    Date columns become integer days since ``origin`` and integer-like columns
    become (nullable) integers. Missing values are preserved.
    """
    origin = origin or settings.DATE_ORIGIN
    date_fields = settings.DATE_FIELDS if date_fields is None else date_fields
    integer_fields = settings.INTEGER_FIELDS if integer_fields is None else integer_fields

    logger.info("compressing...")
    out = df.copy()
    start = pd.Timestamp(origin)
    for column in _present(out, date_fields):
        values = out[column]
        if not pd.api.types.is_datetime64_any_dtype(values):
            if pd.api.types.is_numeric_dtype(values):
                # already day offsets
                continue
            values = pd.to_datetime(values, errors="raise")
        out[column] = (values - start).dt.days.astype("Int64")

    for column in _present(out, integer_fields):
        if pd.api.types.is_integer_dtype(out[column]):
            continue
        values = pd.to_numeric(out[column], errors="raise")
        out[column] = np.trunc(values).astype("Int64")
    return out
