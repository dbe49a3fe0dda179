"""
State transitions for sort, filter, selection and grouping operations.

Selection helpers return a fresh selection map ``{row_id: True}``; they never
touch the TableState they are given. ``apply_*`` functions on TableState
mutate it in place.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

import config
from analysis_toolkit import OperationError, criteria_mask
from table_state import ColumnFilter, SortSpec, TableState, json_scalar


# ============================================================================
# SORT / FILTER
# ============================================================================

def apply_sorting(state: TableState, sorts: list) -> None:
    """Replace the sort keys. ``sorts`` holds schemas.Sorting models."""
    state.sorting = [SortSpec(field=s.field_name, desc=s.direction == "desc") for s in sorts]


def apply_filters(state: TableState, filters: list) -> None:
    """Upsert one column filter per field. ``filters`` holds schemas.FilterCriterion models."""
    by_field = {f.field_name: f for f in state.column_filters}
    for criterion in filters:
        by_field[criterion.field_name] = ColumnFilter.from_criterion(criterion)
    state.column_filters = list(by_field.values())


def clear_filters(state: TableState) -> None:
    state.column_filters = []


# ============================================================================
# SELECTION
# ============================================================================

def selection_from_rows(rows: pd.DataFrame) -> Dict[str, bool]:
    """Selection map highlighting exactly the rows of ``rows`` (by row id)."""
    return {str(rid): True for rid in rows.index}


def apply_selection_action(
    action: str,
    criteria: Optional[Dict[str, Any]],
    count: Optional[int],
    rows: pd.DataFrame,
    current_selection: Optional[Dict[str, bool]] = None,
    rng: Optional[np.random.Generator] = None,
) -> Dict[str, bool]:
    """Compute the selection map produced by ``action`` over the full dataset.

    Top, bottom and random selections count in data order, not in the current
    sort order.

    Args:
        criteria: wire-form criterion (fieldName/operator/value/secondValue), selectWhere only
        count: rows for selectTop/selectBottom/selectRandom; defaults from config
        current_selection: the map invertSelection flips
        rng: numpy Generator for selectRandom
    """
    ids = [str(rid) for rid in rows.index]

    if action == "selectAll":
        return {rid: True for rid in ids}

    if action == "selectNone":
        return {}

    if action == "selectWhere":
        if not criteria:
            raise OperationError("selectWhere requires criteria")
        if rows.empty:
            return {}
        return selection_from_rows(rows[criteria_mask(rows, criteria)])

    if action == "selectTop":
        n = count or config.DEFAULT_SELECT_COUNT
        return {rid: True for rid in ids[:n]}

    if action == "selectBottom":
        n = count or config.DEFAULT_SELECT_COUNT
        return {rid: True for rid in ids[max(0, len(ids) - n):]}

    if action == "selectRandom":
        n = min(count or config.DEFAULT_RANDOM_COUNT, len(ids))
        if n == 0:
            return {}
        gen = rng if rng is not None else np.random.default_rng()
        picked = gen.choice(len(ids), size=n, replace=False)
        return {ids[i]: True for i in sorted(int(p) for p in picked)}

    if action == "invertSelection":
        current = current_selection or {}
        return {rid: True for rid in ids if not current.get(rid, False)}

    raise OperationError(f"Unknown selection action: {action}")


# ============================================================================
# GROUPING
# ============================================================================

def _key_text(value: Any) -> str:
    """Group value as the dashboard writes it in expansion keys: 3500, null, true."""
    value = json_scalar(value)
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def apply_grouping_action(
    state: TableState,
    action: str,
    group_by_field: Optional[str],
    rows: pd.DataFrame,
) -> None:
    """Apply a grouping action to ``state``.

    groupBy expands every ``field:value`` key observed in the dataset.
    """
    if action == "groupBy":
        if not group_by_field:
            raise OperationError("groupBy requires groupByField")
        state.grouping = [group_by_field]
        values: List[Any] = []
        if group_by_field in rows.columns:
            values = list(pd.unique(rows[group_by_field]))
        state.expanded = {f"{group_by_field}:{_key_text(v)}": True for v in values}
    elif action == "clearGrouping":
        state.grouping = []
        state.expanded = {}
    elif action == "expandAll":
        state.expanded = True
    elif action == "collapseAll":
        state.expanded = {}
    else:
        raise OperationError(f"Unknown grouping action: {action}")
