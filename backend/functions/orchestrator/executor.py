"""
Operation executor: applies validated operations to the live table state and
runs analytics over the resolved data scope.

One executor wraps one dataset. Operations of a batch apply in order; a
failing operation becomes an "Error: ..." message and the batch continues.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import pandas as pd

import config
import ranking
import tools
from analysis_toolkit import (
    OperationError,
    average_of,
    average_where,
    condition_mask,
    count_of,
    max_of,
    min_of,
    sum_of,
    sum_where,
    validate_numeric_operation,
)
from data_scope import get_data_by_scope, get_scope_metadata, validate_scope
from formatting import format_number
from schemas import Analytics, OperationValidationError, parse_model
from table_operations import (
    apply_filters,
    apply_grouping_action,
    apply_selection_action,
    apply_sorting,
    clear_filters,
    selection_from_rows,
)
from table_state import TableState, group_aggregates, ingest_rows, partition_rows, rows_to_records

BUSY_MESSAGE = "Another request is being processed"

# Errors an operation may raise that are reported back to the user.
_USER_ERRORS = (OperationError, ValueError, TypeError, KeyError)


@dataclass
class ExecutorSettings:
    default_scope: str = "filtered"
    default_rank_count: int = 5
    default_percentile: float = 50.0

    @classmethod
    def from_config(cls) -> "ExecutorSettings":
        return cls(
            default_scope=config.DEFAULT_SCOPE,
            default_rank_count=config.DEFAULT_RANK_COUNT,
            default_percentile=config.DEFAULT_PERCENTILE,
        )


@dataclass
class AnalyticsResult:
    type: str
    message: str
    metadata: Dict[str, Any]
    value: Optional[float] = None
    data: Optional[pd.DataFrame] = None
    comparison: Optional[Dict[str, float]] = None

    @property
    def is_error(self) -> bool:
        return self.message.startswith("Error:")

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "type": self.type,
            "message": self.message,
            "metadata": dict(self.metadata),
        }
        if self.value is not None:
            out["value"] = self.value
        if self.data is not None:
            out["data"] = rows_to_records(self.data)
        if self.comparison is not None:
            out["comparison"] = dict(self.comparison)
        return out


def error_result(message: str, operation: Any = None, field_name: Any = None, scope: Any = None) -> AnalyticsResult:
    return AnalyticsResult(
        type="value",
        value=0,
        data=pd.DataFrame(),
        message=f"Error: {message}",
        metadata={"operation": operation, "field": field_name, "scope": scope},
    )


def _analysis_params(analysis: Any, default_scope: str) -> Dict[str, Any]:
    """Validate an Analytics model or a camelCase dict into snake_case params.

    Dicts go through the Analytics model, so a missing scope takes
    ``default_scope`` and malformed values raise OperationValidationError.
    """
    if isinstance(analysis, dict):
        raw = {k: v for k, v in analysis.items() if v is not None}
        if "scope" not in raw:
            raw["scope"] = default_scope
        analysis = parse_model(Analytics, raw)
    if not isinstance(analysis, Analytics):
        raise OperationValidationError("analysis must be an object")
    return analysis.model_dump()


class TableOperationExecutor:
    """Holds the dataset, the live TableState and the last analytics result."""

    def __init__(
        self,
        rows: Union[pd.DataFrame, List[Dict[str, Any]]],
        state: Optional[TableState] = None,
        settings: Optional[ExecutorSettings] = None,
    ):
        self.rows = rows if isinstance(rows, pd.DataFrame) else ingest_rows(rows)
        self.state = state or TableState()
        self.settings = settings or ExecutorSettings.from_config()
        self.last_result: Optional[AnalyticsResult] = None
        self.messages: List[str] = []
        self.group_summary: Optional[List[Dict[str, Any]]] = None
        self.is_processing = False

    @property
    def last_message(self) -> str:
        return "; ".join(self.messages)

    def clear_result(self) -> None:
        self.last_result = None

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------
    def execute_analysis(self, analysis: Any) -> AnalyticsResult:
        """Run one analytics request. Never raises; failures come back as error results."""
        if self.is_processing:
            return error_result(BUSY_MESSAGE)
        self.is_processing = True
        try:
            result = self._run_analysis(analysis)
        finally:
            self.is_processing = False
        self.last_result = result
        return result

    def _run_analysis(self, analysis: Any) -> AnalyticsResult:
        # Error metadata when validation fails before params exist
        params: Dict[str, Any] = dict(analysis) if isinstance(analysis, dict) else {}
        try:
            params = _analysis_params(analysis, self.settings.default_scope)
            return self._compute(**params)
        except _USER_ERRORS as e:
            logging.info(json.dumps({
                "event": "analysis_error",
                "operation": params.get("operation"),
                "detail": str(e)[:200],
            }))
            return error_result(
                str(e),
                operation=params.get("operation"),
                field_name=params.get("field"),
                scope=params.get("scope"),
            )

    def _compute(
        self,
        operation: str,
        field: str,
        scope: str,
        secondary_field: Optional[str] = None,
        value: Any = None,
        count: Optional[int] = None,
        operator: Optional[str] = None,
    ) -> AnalyticsResult:
        validation = validate_scope(scope, self.state, self.rows)
        if not validation.is_valid:
            raise OperationError(validation.message or "Invalid data scope")

        data = get_data_by_scope(scope, self.state, self.rows)
        described = get_scope_metadata(scope, self.state, self.rows).description
        meta = {"operation": operation, "field": field, "scope": described}

        if operation in ("sum", "average", "min", "max"):
            validate_numeric_operation(field)
            fn, label = {
                "sum": (sum_of, f"Sum of {field}"),
                "average": (average_of, f"Average {field}"),
                "min": (min_of, f"Minimum {field}"),
                "max": (max_of, f"Maximum {field}"),
            }[operation]
            v = fn(data, field)
            return AnalyticsResult(type="value", value=v, message=f"{label}: {format_number(v)}", metadata=meta)

        if operation == "count":
            n = count_of(data)
            meta["field"] = "records"
            return AnalyticsResult(type="value", value=n, message=f"Count: {n} records", metadata=meta)

        if operation in ("topN", "bottomN"):
            ranking.validate_ranking_operation(field)
            n = int(count or self.settings.default_rank_count)
            if operation == "topN":
                rows, label = ranking.get_top_n(data, field, n), "Top"
            else:
                rows, label = ranking.get_bottom_n(data, field, n), "Bottom"
            meta["count"] = n
            return AnalyticsResult(type="data", data=rows, message=f"{label} {n} records by {field}", metadata=meta)

        if operation == "percentile":
            ranking.validate_ranking_operation(field)
            p = value if value is not None else self.settings.default_percentile
            v = ranking.get_percentile(data, field, p)
            return AnalyticsResult(
                type="value",
                value=v,
                message=f"{format_number(p)}th percentile of {field}: {format_number(v)}",
                metadata=meta,
            )

        if operation in ("sumWhere", "averageWhere"):
            if not secondary_field or not operator or value is None:
                raise OperationError(f"{operation} requires secondaryField, operator, and value")
            validate_numeric_operation(field)
            if operation == "sumWhere":
                v = sum_where(data, field, secondary_field, operator, value)
                label = f"Sum of {field}"
            else:
                v = average_where(data, field, secondary_field, operator, value)
                label = f"Average {field}"
            return AnalyticsResult(
                type="value",
                value=v,
                message=f"{label} where {secondary_field} {operator} {value}: {format_number(v)}",
                metadata=meta,
            )

        if operation == "compare":
            return self._compare(data, field, secondary_field, value, meta)

        raise OperationError(f"Unknown operation: {operation}")

    def _compare(self, data: pd.DataFrame, field: str, secondary_field: Optional[str], value: Any, meta: dict) -> AnalyticsResult:
        validate_numeric_operation(field)
        if secondary_field and value is not None:
            mask = condition_mask(data, secondary_field, "eq", value)
            group1, group2 = data[mask], data[~mask]
            label1, label2 = f"{secondary_field} = {value}", "others"
        elif self.state.grouping and value is None:
            groups = list(partition_rows(data, self.state.grouping[0]).items())
            if len(groups) < 2:
                raise OperationError("compare requires at least two groups")
            (label1, group1), (label2, group2) = groups[0], groups[1]
        else:
            raise OperationError("compare requires secondaryField and value, or an active grouping")

        cmp = ranking.compare_groups(group1, group2, field, "sum")
        return AnalyticsResult(
            type="comparison",
            comparison=cmp,
            message=(
                f"Sum of {field}: {label1} {format_number(cmp['group1'])} "
                f"vs {label2} {format_number(cmp['group2'])}"
            ),
            metadata=meta,
        )

    # ------------------------------------------------------------------
    # Operation batches
    # ------------------------------------------------------------------
    def execute_operations(self, operations: Any) -> Optional[AnalyticsResult]:
        """Apply a batch of operations in order.

        Accepts an OperationsResult or a plain list of Operation models. Returns
        the last AnalyticsResult produced by the batch, or None.
        """
        if self.is_processing:
            self.messages = [f"Error: {BUSY_MESSAGE}"]
            return error_result(BUSY_MESSAGE)

        ops = getattr(operations, "operations", operations) or []
        self.is_processing = True
        self.messages = []
        produced: Optional[AnalyticsResult] = None
        try:
            for op in ops:
                try:
                    result = self._apply(op)
                except _USER_ERRORS as e:
                    logging.info(json.dumps({
                        "event": "operation_error",
                        "type": getattr(op, "type", None),
                        "detail": str(e)[:200],
                    }))
                    self.messages.append(f"Error: {e}")
                    continue
                if result is not None:
                    produced = result
                    self.last_result = result
                    self.messages.append(result.message)
        finally:
            self.is_processing = False
        return produced

    def _apply(self, op: Any) -> Optional[AnalyticsResult]:
        kind = op.type
        if kind == "sort":
            apply_sorting(self.state, op.sort)
        elif kind == "filter":
            apply_filters(self.state, op.filter)
        elif kind == "clearFilters":
            clear_filters(self.state)
        elif kind == "selection":
            sel = op.selection
            self.state.row_selection = apply_selection_action(
                sel.action,
                sel.criteria.to_wire() if sel.criteria is not None else None,
                sel.count,
                self.rows,
                current_selection=self.state.row_selection,
            )
        elif kind == "clearSelection":
            self.state.row_selection = {}
        elif kind == "group":
            grp = op.group
            summary = self.group_summary
            if grp.action == "groupBy":
                # Summary first: a rejected aggregation must leave the state untouched
                aggs = [a.model_dump() for a in grp.aggregations or []]
                summary = group_aggregates(
                    get_data_by_scope("filtered", self.state, self.rows), grp.group_by_field, aggs
                )
            elif grp.action == "clearGrouping":
                summary = None
            apply_grouping_action(self.state, grp.action, grp.group_by_field, self.rows)
            self.group_summary = summary
        elif kind == "clearGrouping":
            apply_grouping_action(self.state, "clearGrouping", None, self.rows)
            self.group_summary = None
        elif kind == "analytics":
            result = self._run_analysis(op.analytics)
            if result.type == "data" and result.data is not None:
                self.state.row_selection = selection_from_rows(result.data)
            return result
        else:
            raise OperationError(f"Unknown operation type: {kind}")

        self.messages.append(tools.describe_operation(op))
        return None

    def snapshot(self) -> Dict[str, Any]:
        return {
            "state": self.state.to_dict(),
            "result": self.last_result.to_dict() if self.last_result is not None else None,
            "message": self.last_message,
            "groupSummary": self.group_summary,
        }
