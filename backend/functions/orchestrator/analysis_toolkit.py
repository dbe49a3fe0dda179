"""
Analytics toolkit: deterministic numeric operations over table rows.

Rows are a pandas.DataFrame indexed by a stable row id. Every function here is
pure: inputs are never mutated and results are plain Python numbers or fresh
DataFrames.

Empty inputs return 0 rather than NaN so nothing non-finite reaches the chat.
A 0 from min_of/max_of is therefore indistinguishable from a genuine zero;
callers check the scope count when that matters.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

import numpy as np
import pandas as pd

from schemas import NUMERIC_FIELDS


class OperationError(RuntimeError):
    """Custom exception for operation errors to provide clean, user-facing messages."""
    pass


def require_columns(df: pd.DataFrame, *cols: str) -> None:
    """Raise OperationError if any required columns are missing."""
    missing = [c for c in cols if c not in df.columns]
    if missing:
        available = list(df.columns)[:10]
        raise OperationError(
            f"Missing required column(s): {', '.join(missing)}. "
            f"Available columns: {', '.join(map(str, available))}"
        )


def safe_numeric_cast(series: pd.Series, errors: str = "coerce") -> pd.Series:
    """Safely cast a series to numeric, replacing non-finite values (inf/-inf) with NaN."""
    s = pd.to_numeric(series, errors=errors)
    return s.replace([np.inf, -np.inf], np.nan)


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float, np.integer, np.floating)) and not isinstance(v, (bool, np.bool_))


def _is_string(v: Any) -> bool:
    return isinstance(v, str)


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise OperationError(f"Cannot convert '{value}' to numeric for comparison")


# ============================================================================
# FIELD ELIGIBILITY
# ============================================================================

def is_numeric_field(field: str) -> bool:
    return field in NUMERIC_FIELDS


def validate_numeric_operation(field: str) -> None:
    """Raise OperationError when ``field`` is not eligible for numeric aggregation."""
    if not is_numeric_field(field):
        raise OperationError(f"Cannot perform numeric operation on field: {field}")


# ============================================================================
# AGGREGATION
# ============================================================================

def _numeric_values(df: pd.DataFrame, field: str) -> np.ndarray:
    require_columns(df, field)
    return safe_numeric_cast(df[field]).to_numpy(dtype=float)


def sum_of(df: pd.DataFrame, field: str) -> float:
    """Total of ``field``; 0 for an empty frame."""
    if df.empty:
        return 0
    return float(np.nansum(_numeric_values(df, field)))


def average_of(df: pd.DataFrame, field: str) -> float:
    """Mean of ``field`` over all rows; 0 for an empty frame.

    Defined as sum / row count, like the table footer does it.
    """
    if df.empty:
        return 0
    return sum_of(df, field) / len(df)


def count_of(df: pd.DataFrame) -> int:
    return int(len(df))


def min_of(df: pd.DataFrame, field: str) -> float:
    if df.empty:
        return 0
    values = _numeric_values(df, field)
    if np.isnan(values).all():
        return 0
    return float(np.nanmin(values))


def max_of(df: pd.DataFrame, field: str) -> float:
    if df.empty:
        return 0
    values = _numeric_values(df, field)
    if np.isnan(values).all():
        return 0
    return float(np.nanmax(values))


# ============================================================================
# CONDITIONAL AGGREGATION
# ============================================================================

def condition_mask(df: pd.DataFrame, condition_field: str, operator: str, condition_value: Any) -> pd.Series:
    """Boolean mask for ``condition_field <operator> condition_value``.

    gt/lt/gte/lte compare numerically; eq is strict equality (type-sensitive,
    so 1000 never equals "1000").
    """
    require_columns(df, condition_field)
    series = df[condition_field]

    if operator == "eq":
        if _is_string(condition_value):
            return series.map(lambda v: _is_string(v) and v == condition_value).astype(bool)
        if _is_number(condition_value):
            return series.map(lambda v: _is_number(v) and v == condition_value).astype(bool)
        return series.map(lambda v: v == condition_value).astype(bool)

    if operator not in {"gt", "lt", "gte", "lte"}:
        raise OperationError(f"Unsupported operator: {operator}. Use: eq, gt, gte, lt, lte")

    num_val = _to_float(condition_value)
    numeric = safe_numeric_cast(series)
    if operator == "gt":
        mask = numeric > num_val
    elif operator == "lt":
        mask = numeric < num_val
    elif operator == "gte":
        mask = numeric >= num_val
    else:  # lte
        mask = numeric <= num_val
    return mask.fillna(False).astype(bool)


def sum_where(
    df: pd.DataFrame,
    field: str,
    condition_field: str,
    operator: str,
    condition_value: Any,
) -> float:
    """Sum ``field`` over rows where ``condition_field <operator> condition_value``.

    Example:
        >>> sum_where(df, "averagePricePerM2", "population", "gt", 200000)
    """
    return sum_of(df[condition_mask(df, condition_field, operator, condition_value)], field)


def average_where(
    df: pd.DataFrame,
    field: str,
    condition_field: str,
    operator: str,
    condition_value: Any,
) -> float:
    return average_of(df[condition_mask(df, condition_field, operator, condition_value)], field)


# ============================================================================
# ROW CRITERIA (filters and selectWhere)
# ============================================================================

_STRING_OPERATORS = {"contains", "startsWith", "endsWith"}
_NUMERIC_OPERATORS = {"greaterThan", "lessThan", "greaterThanOrEqual", "lessThanOrEqual"}


def _as_value_list(value: Any) -> list:
    if isinstance(value, (list, tuple, set)):
        return list(value)
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [value]


def _member_mask(series: pd.Series, values: list) -> pd.Series:
    def _matches(cell: Any) -> bool:
        for v in values:
            if _is_number(cell) and _is_number(v) and cell == v:
                return True
            if _is_string(cell) and _is_string(v) and cell.lower() == v.lower():
                return True
        return False

    return series.map(_matches).astype(bool)


def criteria_mask(df: pd.DataFrame, criteria: Dict[str, Any]) -> pd.Series:
    """Boolean mask for one filter/selection criterion.

    Args:
        criteria: dict with keys fieldName, operator, value, secondValue (optional)

    String operators are case-insensitive and only match string cells.
    Numeric operators only match numeric cells. ``between`` is inclusive and
    bounds are used as given (low > high simply matches nothing).
    """
    col = criteria.get("fieldName")
    op = criteria.get("operator")
    value = criteria.get("value")
    second_value: Optional[Any] = criteria.get("secondValue")

    require_columns(df, col)
    series = df[col]

    if op == "equals":
        return series.map(lambda v: v == value and _is_number(v) == _is_number(value)).astype(bool)

    if op in _STRING_OPERATORS:
        needle = str(value).lower()
        if op == "contains":
            test = lambda s: needle in s  # noqa: E731
        elif op == "startsWith":
            test = lambda s: s.startswith(needle)  # noqa: E731
        else:
            test = lambda s: s.endswith(needle)  # noqa: E731
        return series.map(lambda v: _is_string(v) and test(v.lower())).astype(bool)

    if op in _NUMERIC_OPERATORS or op == "between":
        is_num = series.map(_is_number).astype(bool)
        numeric = safe_numeric_cast(series)
        num_val = _to_float(value)
        if op == "greaterThan":
            mask = numeric > num_val
        elif op == "lessThan":
            mask = numeric < num_val
        elif op == "greaterThanOrEqual":
            mask = numeric >= num_val
        elif op == "lessThanOrEqual":
            mask = numeric <= num_val
        else:
            if second_value is None:
                raise OperationError("between requires secondValue")
            mask = (numeric >= num_val) & (numeric <= _to_float(second_value))
        return (mask.fillna(False) & is_num).astype(bool)

    if op == "in":
        return _member_mask(series, _as_value_list(value))
    if op == "notIn":
        return ~_member_mask(series, _as_value_list(value))

    raise OperationError(f"Unsupported operator: {op}")


def filter_rows(df: pd.DataFrame, filters: list) -> pd.DataFrame:
    """Filter rows using a list of criteria (AND logic across filters).

    Example:
        >>> filter_rows(df, [
        ...     {"fieldName": "city", "operator": "startsWith", "value": "A"},
        ...     {"fieldName": "population", "operator": "greaterThan", "value": 200000}
        ... ])
    """
    mask = pd.Series(True, index=df.index)
    for f in filters or []:
        mask &= criteria_mask(df, f)
    return df[mask].copy()
