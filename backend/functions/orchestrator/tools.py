"""
Tool-call contract between the LLM and the table.

TOOLS_SPEC declares the five tools offered to Gemini. ``execute_tool``
validates a call against the operation models and echoes the arguments back
with a confirmation message; it never touches table state. The executor
applies the resulting operations.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, List

import config
from schemas import (
    AGGREGATION_FUNCTIONS,
    ANALYTICS_OPERATIONS,
    COMPARISON_OPERATORS,
    DATA_SCOPES,
    FIELD_NAMES,
    FILTER_OPERATORS,
    GROUPING_ACTIONS,
    NUMERIC_FIELDS,
    SELECTION_ACTIONS,
    SORT_DIRECTIONS,
    Analytics,
    FilterCriterion,
    Grouping,
    OperationValidationError,
    Selection,
    Sorting,
    parse_model,
    parse_operations,
)

_CRITERION_PROPERTIES = {
    "fieldName": {"type": "string", "enum": FIELD_NAMES, "description": "The field to filter by"},
    "operator": {"type": "string", "enum": FILTER_OPERATORS, "description": "The filter operator to apply"},
    "value": {
        "type": "string",
        "description": "The value to compare against. Numbers as digits; for in/notIn a comma-separated list",
    },
    "secondValue": {"type": "string", "description": "Upper bound for the 'between' operator"},
}

TOOLS_SPEC = [
    {
        "name": "apply_sort",
        "description": "Apply sorting to the data in the table",
        "parameters": {
            "type": "object",
            "properties": {
                "fieldName": {"type": "string", "enum": FIELD_NAMES, "description": "The field to sort by"},
                "direction": {"type": "string", "enum": SORT_DIRECTIONS, "description": "The direction to sort by"},
            },
            "required": ["fieldName", "direction"],
        },
        "examples": [
            "sort by price high to low",
            "order cities alphabetically",
            "sort by population ascending",
        ],
    },
    {
        "name": "apply_filter",
        "description": (
            "Apply filtering to the data in the table based on column values. "
            "Use when the user wants to show, keep, include, exclude, hide or remove rows"
        ),
        "parameters": {
            "type": "object",
            "properties": dict(_CRITERION_PROPERTIES),
            "required": ["fieldName", "operator", "value"],
        },
        "examples": [
            "show only cities with population over 200000",
            "keep rows where the province is Antwerp",
            "hide cities starting with B",
            "price between 2500 and 3500",
        ],
    },
    {
        "name": "apply_selection",
        "description": (
            "Apply row selection to the data table based on criteria or actions. "
            "Use when the user wants to select, pick, choose, highlight, mark, identify or extract rows; "
            "selection never hides rows"
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "action": {"type": "string", "enum": SELECTION_ACTIONS, "description": "The selection action to perform"},
                "criteria": {
                    "type": "object",
                    "properties": dict(_CRITERION_PROPERTIES),
                    "required": ["fieldName", "operator", "value"],
                    "description": "Criteria for conditional selection (required for selectWhere)",
                },
                "count": {
                    "type": "integer",
                    "minimum": 1,
                    "description": "Number of rows to select (for selectTop, selectBottom, selectRandom)",
                },
            },
            "required": ["action"],
        },
        "examples": [
            "select all rows",
            "highlight cities in Flemish Brabant",
            "pick 3 random rows",
            "invert the selection",
        ],
    },
    {
        "name": "apply_grouping",
        "description": "Apply grouping and aggregation to the data table to analyze data by categories",
        "parameters": {
            "type": "object",
            "properties": {
                "action": {"type": "string", "enum": GROUPING_ACTIONS, "description": "The grouping action to perform"},
                "groupByField": {
                    "type": "string",
                    "enum": FIELD_NAMES,
                    "description": "The field to group by (required for groupBy action)",
                },
                "aggregations": {
                    "type": "array",
                    "description": "Aggregation functions to apply to grouped data",
                    "items": {
                        "type": "object",
                        "properties": {
                            "field": {"type": "string", "enum": FIELD_NAMES, "description": "The field to aggregate"},
                            "function": {
                                "type": "string",
                                "enum": AGGREGATION_FUNCTIONS,
                                "description": "The aggregation function to apply",
                            },
                        },
                        "required": ["field", "function"],
                    },
                },
            },
            "required": ["action"],
        },
        "examples": [
            "group by province",
            "group by province with average price",
            "clear grouping",
            "collapse all groups",
        ],
    },
    {
        "name": "analyze_data",
        "description": "Perform data analysis and statistical calculations on table data",
        "parameters": {
            "type": "object",
            "properties": {
                "operation": {"type": "string", "enum": ANALYTICS_OPERATIONS, "description": "The type of analysis to perform"},
                "field": {"type": "string", "enum": FIELD_NAMES, "description": "The primary field to analyze"},
                "secondaryField": {
                    "type": "string",
                    "enum": FIELD_NAMES,
                    "description": "Secondary field for comparisons or conditions",
                },
                "value": {"type": "string", "description": "Value for conditional operations or thresholds"},
                "count": {"type": "integer", "minimum": 1, "description": "Number of items for topN/bottomN operations"},
                "scope": {
                    "type": "string",
                    "enum": DATA_SCOPES,
                    "default": "filtered",
                    "description": "Data scope to analyze",
                },
                "operator": {
                    "type": "string",
                    "enum": COMPARISON_OPERATORS,
                    "description": "Comparison operator for conditional operations",
                },
            },
            "required": ["operation", "field"],
        },
        "examples": [
            "what is the average price in filtered rows?",
            "top 3 most expensive cities",
            "75th percentile of price",
            "total population where price is above 3000",
        ],
    },
]

TOOL_INPUT_MODELS = {
    "apply_sort": Sorting,
    "apply_filter": FilterCriterion,
    "apply_selection": Selection,
    "apply_grouping": Grouping,
    "analyze_data": Analytics,
}

TOOL_NAMES: List[str] = [t["name"] for t in TOOLS_SPEC]

CLEAR_FILTERS_MESSAGE = "Cleared all filters"


# ============================================================================
# ARGUMENT NORMALISATION
# ============================================================================

def _as_number(value: Any) -> Any:
    """'200000' -> 200000, '3.5' -> 3.5, 12.0 -> 12. Anything else unchanged."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        text = value.strip().replace(" ", "")
        try:
            num = float(text)
        except ValueError:
            return value
        return int(num) if num.is_integer() else num
    return value


def _coerce_value(field_name: Any, value: Any, operator: Any = None) -> Any:
    if field_name not in NUMERIC_FIELDS or value is None:
        return value
    if isinstance(value, list):
        return [_as_number(v) for v in value]
    if isinstance(value, str) and "," in value and operator in ("in", "notIn", "between"):
        return [_as_number(v) for v in value.split(",") if v.strip()]
    return _as_number(value)


def _coerce_criterion(crit: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(crit)
    field_name = out.get("fieldName")
    if "value" in out:
        out["value"] = _coerce_value(field_name, out["value"], out.get("operator"))
    if out.get("secondValue") is not None:
        out["secondValue"] = _as_number(out["secondValue"]) if field_name in NUMERIC_FIELDS else out["secondValue"]
    return out


def normalise_args(name: str, args: Dict[str, Any]) -> Dict[str, Any]:
    """Numbers arrive as strings or floats from the model; restore them for numeric fields."""
    args = dict(args or {})
    if name == "apply_filter":
        return _coerce_criterion(args)
    if name == "apply_selection":
        if isinstance(args.get("criteria"), dict):
            args["criteria"] = _coerce_criterion(args["criteria"])
        if args.get("count") is not None:
            args["count"] = _as_number(args["count"])
    elif name == "analyze_data":
        if args.get("count") is not None:
            args["count"] = _as_number(args["count"])
        if args.get("value") is not None:
            target = args.get("secondaryField") or args.get("field")
            if args.get("operation") == "percentile" or target in NUMERIC_FIELDS:
                args["value"] = _as_number(args["value"])
    return args


# ============================================================================
# CONFIRMATION MESSAGES
# ============================================================================

def _fmt(value: Any) -> str:
    if isinstance(value, list):
        return ", ".join(_fmt(v) for v in value)
    if isinstance(value, float):
        return f"{value:g}"
    return str(value)


def sort_message(s: Sorting) -> str:
    return f"Sorted by {s.field_name} in {s.direction}ending order"


_FILTER_PHRASES = {
    "equals": 'equals "{v}"',
    "contains": 'contains "{v}"',
    "startsWith": 'starts with "{v}"',
    "endsWith": 'ends with "{v}"',
    "greaterThan": "greater than {v}",
    "lessThan": "less than {v}",
    "greaterThanOrEqual": "greater than or equal to {v}",
    "lessThanOrEqual": "less than or equal to {v}",
    "between": "between {v} and {w}",
    "in": "in {v}",
    "notIn": "not in {v}",
}


def filter_message(f: FilterCriterion) -> str:
    phrase = _FILTER_PHRASES[f.operator].format(v=_fmt(f.value), w=_fmt(f.second_value))
    return f"Filtered {f.field_name} {phrase}"


def selection_message(s: Selection) -> str:
    action = s.action
    if action == "selectAll":
        return "Selected all rows"
    if action == "selectNone":
        return "Cleared all selections"
    if action == "selectWhere":
        c = s.criteria
        tail = f" and {_fmt(c.second_value)}" if c.second_value is not None else ""
        return f"Selected rows where {c.field_name} {c.operator} {_fmt(c.value)}{tail}"
    if action == "selectTop":
        return f"Selected top {s.count or config.DEFAULT_SELECT_COUNT} rows"
    if action == "selectBottom":
        return f"Selected bottom {s.count or config.DEFAULT_SELECT_COUNT} rows"
    if action == "selectRandom":
        return f"Selected {s.count or config.DEFAULT_RANDOM_COUNT} random rows"
    return "Inverted current selection"


def grouping_message(g: Grouping) -> str:
    if g.action == "groupBy":
        message = f"Grouped data by {g.group_by_field}"
        if g.aggregations:
            described = ", ".join(f"{a.function}({a.field})" for a in g.aggregations)
            message += f" with aggregations: {described}"
        return message
    return {
        "clearGrouping": "Cleared all grouping",
        "expandAll": "Expanded all groups",
        "collapseAll": "Collapsed all groups",
    }[g.action]


def analytics_message(a: Analytics) -> str:
    op, fld, scope = a.operation, a.field, a.scope
    if op == "sum":
        return f"Calculated sum of {fld} for {scope} data"
    if op == "average":
        return f"Calculated average of {fld} for {scope} data"
    if op == "count":
        return f"Counted records in {scope} data"
    if op == "min":
        return f"Found minimum {fld} in {scope} data"
    if op == "max":
        return f"Found maximum {fld} in {scope} data"
    if op == "topN":
        return f"Selected top {a.count or config.DEFAULT_RANK_COUNT} records by {fld} from {scope} data"
    if op == "bottomN":
        return f"Selected bottom {a.count or config.DEFAULT_RANK_COUNT} records by {fld} from {scope} data"
    if op == "percentile":
        p = a.value if a.value is not None else config.DEFAULT_PERCENTILE
        return f"Calculated {_fmt(p)}th percentile of {fld} for {scope} data"
    if op == "sumWhere":
        return f"Calculated sum of {fld} where {a.secondary_field} {a.operator} {_fmt(a.value)}"
    if op == "averageWhere":
        return f"Calculated average of {fld} where {a.secondary_field} {a.operator} {_fmt(a.value)}"
    return f"Compared {fld} between groups"


_TOOL_MESSAGES: Dict[str, Callable[[Any], str]] = {
    "apply_sort": sort_message,
    "apply_filter": filter_message,
    "apply_selection": selection_message,
    "apply_grouping": grouping_message,
    "analyze_data": analytics_message,
}


def describe_operation(op: Any) -> str:
    """Confirmation message for an already-validated Operation."""
    kind = op.type
    if kind == "sort":
        return ", ".join(sort_message(s) for s in op.sort)
    if kind == "filter":
        return ", ".join(filter_message(f) for f in op.filter)
    if kind == "clearFilters":
        return CLEAR_FILTERS_MESSAGE
    if kind == "selection":
        return selection_message(op.selection)
    if kind == "clearSelection":
        return "Cleared all selections"
    if kind == "group":
        return grouping_message(op.group)
    if kind == "clearGrouping":
        return "Cleared all grouping"
    return analytics_message(op.analytics)


# ============================================================================
# EXECUTION
# ============================================================================

def execute_tool(name: str, args: Dict[str, Any]) -> Dict[str, Any]:
    """Validate one tool call and describe it.

    Returns the validated arguments (camelCase) plus ``message``.
    Raises OperationValidationError for unknown tools or malformed arguments.
    """
    model_cls = TOOL_INPUT_MODELS.get(name)
    if model_cls is None:
        raise OperationValidationError(f"Unknown tool: {name}")
    model = parse_model(model_cls, normalise_args(name, args))
    out = model.to_wire()
    out["message"] = _TOOL_MESSAGES[name](model)
    return out


def tool_result_to_operation(name: str, output: Dict[str, Any]):
    """Turn an ``execute_tool`` result into a validated Operation."""
    payload = {k: v for k, v in (output or {}).items() if k != "message"}
    if name == "apply_sort":
        raw = {"type": "sort", "sort": [payload]}
    elif name == "apply_filter":
        raw = {"type": "filter", "filter": [payload]}
    elif name == "apply_selection":
        if payload.get("action") == "selectNone":
            raw = {"type": "clearSelection"}
        else:
            raw = {"type": "selection", "selection": payload}
    elif name == "apply_grouping":
        if payload.get("action") == "clearGrouping":
            raw = {"type": "clearGrouping"}
        else:
            raw = {"type": "group", "group": payload}
    elif name == "analyze_data":
        raw = {"type": "analytics", "analytics": payload}
    else:
        raise OperationValidationError(f"Unknown tool: {name}")
    return parse_operations([raw])[0]
