"""
Live table state and the row models derived from it.

The state mirrors what the dashboard table widget holds (sorting, column
filters, row selection, grouping, expansion, pagination). Row models are
recomputed on demand from the original rows and never cached.

Rows are ingested once into a DataFrame whose index is a stable string row id;
selection and highlighting always refer to those ids.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import numpy as np
import pandas as pd

from analysis_toolkit import (
    OperationError,
    average_of,
    count_of,
    criteria_mask,
    max_of,
    min_of,
    sum_of,
    validate_numeric_operation,
)
from schemas import FilterCriterion, OperationValidationError, Sorting, parse_model

ROW_ID = "row_id"
ROW_ID_KEY = "rowId"


# ============================================================================
# INGESTION
# ============================================================================

def ingest_rows(records: List[Dict[str, Any]], max_rows: Optional[int] = None) -> pd.DataFrame:
    """Build the working DataFrame from a list of row dicts.

    A ``rowId`` key is used as the row id when every record carries a unique
    one; otherwise ids are the positional indices "0".."n-1".
    """
    if not isinstance(records, list) or not all(isinstance(r, dict) for r in records):
        raise OperationValidationError("rows must be a list of objects")
    if max_rows and len(records) > max_rows:
        raise OperationValidationError(f"Too many rows: {len(records)} (max {max_rows})")

    ids = [r.get(ROW_ID_KEY) for r in records]
    has_ids = bool(records) and all(i is not None for i in ids) and len({str(i) for i in ids}) == len(ids)

    df = pd.DataFrame([{k: v for k, v in r.items() if k != ROW_ID_KEY} for r in records])
    if has_ids:
        df.index = pd.Index([str(i) for i in ids], name=ROW_ID)
    else:
        df.index = pd.Index([str(i) for i in range(len(records))], name=ROW_ID)
    return df


def rows_to_records(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """JSON-ready rows (NaN -> None), each carrying its ``rowId``."""
    if df.empty:
        return []
    out = []
    for row_id, row in df.astype(object).iterrows():
        rec = {ROW_ID_KEY: row_id}
        rec.update({k: json_scalar(v) for k, v in row.items()})
        out.append(rec)
    return out


def json_scalar(value: Any) -> Any:
    """Missing cells (NaN, NaT, pd.NA) -> None; numpy scalars -> Python scalars."""
    if value is None:
        return None
    if pd.api.types.is_scalar(value) and pd.isna(value):
        return None
    if isinstance(value, np.generic):
        return value.item()
    return value


# ============================================================================
# STATE
# ============================================================================

@dataclass
class SortSpec:
    field: str
    desc: bool = False


@dataclass
class ColumnFilter:
    field_name: str
    operator: str
    value: Any
    second_value: Any = None

    @classmethod
    def from_criterion(cls, criterion: FilterCriterion) -> "ColumnFilter":
        return cls(
            field_name=criterion.field_name,
            operator=criterion.operator,
            value=criterion.value,
            second_value=criterion.second_value,
        )

    def to_criteria(self) -> Dict[str, Any]:
        out = {"fieldName": self.field_name, "operator": self.operator, "value": self.value}
        if self.second_value is not None:
            out["secondValue"] = self.second_value
        return out


@dataclass
class TableState:
    sorting: List[SortSpec] = field(default_factory=list)
    column_filters: List[ColumnFilter] = field(default_factory=list)
    row_selection: Dict[str, bool] = field(default_factory=dict)
    grouping: List[str] = field(default_factory=list)
    expanded: Union[Dict[str, bool], bool] = field(default_factory=dict)
    page_index: int = 0
    page_size: Optional[int] = None

    def is_selected(self, row_id: str) -> bool:
        return bool(self.row_selection.get(row_id, False))

    def selected_ids(self) -> List[str]:
        return [rid for rid, on in self.row_selection.items() if on]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sorting": [{"id": s.field, "desc": s.desc} for s in self.sorting],
            "columnFilters": [f.to_criteria() for f in self.column_filters],
            "rowSelection": dict(self.row_selection),
            "grouping": list(self.grouping),
            "expanded": self.expanded if isinstance(self.expanded, bool) else dict(self.expanded),
            "pagination": {"pageIndex": self.page_index, "pageSize": self.page_size},
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TableState":
        """Rebuild state sent back by the client. Raises OperationValidationError on bad shapes."""
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise OperationValidationError("state must be an object")

        sorting = []
        for s in data.get("sorting") or []:
            spec = parse_model(Sorting, {
                "fieldName": s.get("id") if isinstance(s, dict) else None,
                "direction": "desc" if isinstance(s, dict) and s.get("desc") else "asc",
            })
            sorting.append(SortSpec(field=spec.field_name, desc=spec.direction == "desc"))

        filters = [
            ColumnFilter.from_criterion(parse_model(FilterCriterion, f))
            for f in data.get("columnFilters") or []
        ]

        selection = data.get("rowSelection") or {}
        if not isinstance(selection, dict):
            raise OperationValidationError("rowSelection must be an object")

        grouping = data.get("grouping") or []
        if not isinstance(grouping, list):
            raise OperationValidationError("grouping must be a list")

        expanded = data.get("expanded", {})
        if expanded is True:
            expanded_state: Union[Dict[str, bool], bool] = True
        elif isinstance(expanded, dict):
            expanded_state = {str(k): bool(v) for k, v in expanded.items()}
        else:
            expanded_state = {}

        pagination = data.get("pagination") or {}
        page_size = pagination.get("pageSize")

        return cls(
            sorting=sorting,
            column_filters=filters,
            row_selection={str(k): bool(v) for k, v in selection.items()},
            grouping=[str(g) for g in grouping],
            expanded=expanded_state,
            page_index=max(0, int(pagination.get("pageIndex") or 0)),
            page_size=int(page_size) if page_size else None,
        )


# ============================================================================
# ROW MODELS
# ============================================================================

def filtered_rows(df: pd.DataFrame, state: TableState) -> pd.DataFrame:
    """Rows passing every column filter (AND)."""
    if df.empty or not state.column_filters:
        return df.copy()
    mask = pd.Series(True, index=df.index)
    for f in state.column_filters:
        mask &= criteria_mask(df, f.to_criteria())
    return df[mask].copy()


def sorted_rows(df: pd.DataFrame, state: TableState) -> pd.DataFrame:
    """Stable multi-key sort following ``state.sorting``."""
    keys = [s for s in state.sorting if s.field in df.columns]
    if df.empty or not keys:
        return df.copy()
    return df.sort_values(
        by=[s.field for s in keys],
        ascending=[not s.desc for s in keys],
        kind="mergesort",
        na_position="last",
    )


def visible_rows(df: pd.DataFrame, state: TableState) -> pd.DataFrame:
    """Rows on screen: filtered, sorted, then paginated."""
    rows = sorted_rows(filtered_rows(df, state), state)
    if state.page_size:
        start = state.page_index * state.page_size
        rows = rows.iloc[start:start + state.page_size]
    return rows.copy()


def selected_rows(df: pd.DataFrame, state: TableState) -> pd.DataFrame:
    """Selected rows in data order. Selection ids unknown to ``df`` are ignored."""
    ids = state.selected_ids()
    return df[df.index.isin(ids)].copy()


def grouped_rows(df: pd.DataFrame, state: TableState) -> Dict[str, pd.DataFrame]:
    """Filtered rows partitioned by the first grouping column."""
    if not state.grouping:
        return {}
    return partition_rows(filtered_rows(df, state), state.grouping[0])


def partition_rows(df: pd.DataFrame, group_field: str) -> Dict[str, pd.DataFrame]:
    """Split ``df`` by ``group_field`` in order of first appearance."""
    if df.empty or group_field not in df.columns:
        return {}
    return {
        str(key): grp.copy()
        for key, grp in df.groupby(group_field, sort=False, dropna=False)
    }


_AGGREGATORS = {
    "sum": sum_of,
    "avg": average_of,
    "min": min_of,
    "max": max_of,
}


def group_aggregates(df: pd.DataFrame, group_by_field: str, aggregations: Optional[list] = None) -> List[Dict[str, Any]]:
    """One summary row per group: the group key, its row count, and each requested aggregate.

    Args:
        aggregations: list of {"field": str, "function": count|sum|avg|min|max}
    """
    if df.empty:
        return []
    if group_by_field not in df.columns:
        raise OperationError(f"Missing required column(s): {group_by_field}")
    for agg in aggregations or []:
        if agg["function"] != "count":
            validate_numeric_operation(agg["field"])

    out = []
    for key, grp in df.groupby(group_by_field, sort=False, dropna=False):
        row: Dict[str, Any] = {group_by_field: json_scalar(key), "count": count_of(grp)}
        for agg in aggregations or []:
            label = f"{agg['function']}({agg['field']})"
            if agg["function"] == "count":
                row[label] = count_of(grp)
            else:
                row[label] = _AGGREGATORS[agg["function"]](grp, agg["field"])
        out.append(row)
    return out
