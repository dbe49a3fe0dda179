"""
Ranking operations: top/bottom N, percentiles, rank assignment and group
comparison.

All sorts are stable (mergesort), so ties keep their original row order.
"""
from __future__ import annotations

from typing import Any, Dict

import numpy as np
import pandas as pd

from analysis_toolkit import (
    OperationError,
    require_columns,
    average_of,
    count_of,
    is_numeric_field,
    max_of,
    min_of,
    safe_numeric_cast,
    sum_of,
)

RANK_NOT_FOUND = 0

COMPARE_OPERATIONS = {"sum", "average", "count", "max", "min"}


def _sorted_by(df: pd.DataFrame, field: str, ascending: bool) -> pd.DataFrame:
    require_columns(df, field)
    key = safe_numeric_cast(df[field])
    order = key.sort_values(ascending=ascending, kind="mergesort", na_position="last").index
    return df.loc[order]


# ============================================================================
# TOP/BOTTOM
# ============================================================================

def get_top_n(df: pd.DataFrame, field: str, n: int) -> pd.DataFrame:
    """Rows with the highest ``field`` values, highest first."""
    return _sorted_by(df, field, ascending=False).head(int(n)).copy()


def get_bottom_n(df: pd.DataFrame, field: str, n: int) -> pd.DataFrame:
    """Rows with the lowest ``field`` values, lowest first."""
    return _sorted_by(df, field, ascending=True).head(int(n)).copy()


# ============================================================================
# PERCENTILES
# ============================================================================

def _percentile_arg(p: Any) -> float:
    try:
        p_float = float(p)
    except (TypeError, ValueError):
        raise OperationError(f"Percentile must be a number, got: {p}")
    if not (0.0 <= p_float <= 100.0):
        raise OperationError(f"Percentile must be between 0 and 100, got: {p_float:g}")
    return p_float


def get_percentile(df: pd.DataFrame, field: str, p: Any) -> float:
    """Linearly interpolated p-th percentile (0-100) of ``field``.

    The fractional index is (p/100) * (len-1) over the ascending values, so
    p=0 is the minimum and p=100 the maximum. Returns 0 for an empty frame.

    Example:
        >>> get_percentile(df, "averagePricePerM2", 75)
    """
    p_float = _percentile_arg(p)
    if df.empty:
        return 0
    require_columns(df, field)
    values = safe_numeric_cast(df[field]).dropna().to_numpy(dtype=float)
    if values.size == 0:
        return 0
    return float(np.percentile(values, p_float))


def get_top_percentile(df: pd.DataFrame, field: str, p: Any) -> pd.DataFrame:
    """Rows at or above the (100 - p)-th percentile."""
    threshold = get_percentile(df, field, 100 - _percentile_arg(p))
    return df[safe_numeric_cast(df[field]) >= threshold].copy()


def get_bottom_percentile(df: pd.DataFrame, field: str, p: Any) -> pd.DataFrame:
    """Rows at or below the p-th percentile."""
    threshold = get_percentile(df, field, p)
    return df[safe_numeric_cast(df[field]) <= threshold].copy()


# ============================================================================
# RANKS
# ============================================================================

def add_rankings(df: pd.DataFrame, field: str, ascending: bool = False) -> pd.DataFrame:
    """Sort by ``field`` and add a 1-based ``rank`` column.

    Ranks are positional: tied values get distinct, sequential ranks.
    """
    ranked = _sorted_by(df, field, ascending=ascending).copy()
    ranked["rank"] = np.arange(1, len(ranked) + 1)
    return ranked


def get_rank_of_value(df: pd.DataFrame, field: str, value: Any, ascending: bool = False) -> int:
    """1-based position of the first row whose ``field`` equals ``value``.

    Returns RANK_NOT_FOUND (0) when no row matches.
    """
    ordered = _sorted_by(df, field, ascending=ascending)
    values = safe_numeric_cast(ordered[field]).to_numpy(dtype=float)
    try:
        target = float(value)
    except (TypeError, ValueError):
        return RANK_NOT_FOUND
    hits = np.flatnonzero(values == target)
    if hits.size == 0:
        return RANK_NOT_FOUND
    return int(hits[0]) + 1


# ============================================================================
# COMPARISON
# ============================================================================

def _group_value(df: pd.DataFrame, field: str, operation: str) -> float:
    if operation == "sum":
        return sum_of(df, field)
    if operation == "average":
        return average_of(df, field)
    if operation == "count":
        return count_of(df)
    if operation == "max":
        return max_of(df, field)
    return min_of(df, field)


def compare_groups(group1: pd.DataFrame, group2: pd.DataFrame, field: str, operation: str) -> Dict[str, float]:
    """Compare one aggregate of ``field`` between two row sets.

    Returns {group1, group2, difference, ratio}; ratio is 0 when group2's
    value is 0.
    """
    if operation not in COMPARE_OPERATIONS:
        raise OperationError(
            f"Unsupported comparison: {operation}. Use: {', '.join(sorted(COMPARE_OPERATIONS))}"
        )
    value1 = _group_value(group1, field, operation)
    value2 = _group_value(group2, field, operation)
    return {
        "group1": value1,
        "group2": value2,
        "difference": value1 - value2,
        "ratio": value1 / value2 if value2 != 0 else 0,
    }


def validate_ranking_operation(field: str) -> None:
    if not is_numeric_field(field):
        raise OperationError(f"Cannot perform ranking operation on non-numeric field: {field}")
