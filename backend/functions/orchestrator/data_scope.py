"""
Data scope resolution: which rows an analytics operation runs over.

Scopes: all, filtered, selected, visible, grouped. ``grouped`` resolves to the
filtered rows; iterating individual groups is the caller's job
(see ``get_grouped_data``).
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, Optional

import pandas as pd

from table_state import TableState, filtered_rows, grouped_rows, selected_rows, visible_rows


@dataclass
class ScopeValidation:
    is_valid: bool
    message: Optional[str] = None


@dataclass
class ScopeMetadata:
    scope: str
    count: int
    has_filters: bool
    has_selection: bool
    has_grouping: bool
    has_sorting: bool
    description: str

    def to_dict(self) -> dict:
        d = asdict(self)
        return {
            "scope": d["scope"],
            "count": d["count"],
            "hasFilters": d["has_filters"],
            "hasSelection": d["has_selection"],
            "hasGrouping": d["has_grouping"],
            "hasSorting": d["has_sorting"],
            "description": d["description"],
        }


def validate_scope(scope: str, state: TableState, rows: pd.DataFrame) -> ScopeValidation:
    if scope == "all":
        if rows.empty:
            return ScopeValidation(False, "No data available")
        return ScopeValidation(True)
    if scope == "filtered":
        if filtered_rows(rows, state).empty:
            return ScopeValidation(False, "No data matches current filters")
        return ScopeValidation(True)
    if scope == "selected":
        if selected_rows(rows, state).empty:
            return ScopeValidation(False, "No rows selected")
        return ScopeValidation(True)
    if scope == "visible":
        if visible_rows(rows, state).empty:
            return ScopeValidation(False, "No visible data")
        return ScopeValidation(True)
    if scope == "grouped":
        if not state.grouping:
            return ScopeValidation(False, "No grouping applied")
        return ScopeValidation(True)
    return ScopeValidation(False, "Invalid data scope")


def get_data_by_scope(scope: str, state: TableState, rows: pd.DataFrame) -> pd.DataFrame:
    """Rows for ``scope``. Unknown scopes fall back to all rows."""
    if scope == "filtered" or scope == "grouped":
        return filtered_rows(rows, state)
    if scope == "selected":
        return selected_rows(rows, state)
    if scope == "visible":
        return visible_rows(rows, state)
    return rows.copy()


def get_grouped_data(state: TableState, rows: pd.DataFrame) -> Dict[str, pd.DataFrame]:
    return grouped_rows(rows, state)


_DESCRIPTIONS = {
    "all": "All {n} records",
    "filtered": "{n} filtered records",
    "selected": "{n} selected records",
    "visible": "{n} visible records",
    "grouped": "{n} records in groups",
}


def get_scope_metadata(scope: str, state: TableState, rows: pd.DataFrame) -> ScopeMetadata:
    count = len(get_data_by_scope(scope, state, rows))
    return ScopeMetadata(
        scope=scope,
        count=count,
        has_filters=bool(state.column_filters),
        has_selection=bool(state.row_selection),
        has_grouping=bool(state.grouping),
        has_sorting=bool(state.sorting),
        description=_DESCRIPTIONS.get(scope, "{n} records").format(n=count),
    )
