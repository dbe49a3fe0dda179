"""
Operation algebra for natural-language table operations.

Every operation the LLM tool layer can emit and the executor can apply is
declared here. Wire names are camelCase (``fieldName``, ``secondValue``);
Python attributes are snake_case.

Validation happens once, at the trust boundary (``parse_operations`` /
``parse_model``). Anything past that point is assumed well-formed.
"""
from __future__ import annotations

from typing import Annotated, Any, List, Literal, Optional, Union, get_args

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PositiveInt,
    TypeAdapter,
    ValidationError,
    model_validator,
)
from pydantic.alias_generators import to_camel


# ============================================================================
# VOCABULARY
# ============================================================================

FieldName = Literal["postalCode", "city", "province", "averagePricePerM2", "population"]

# Fields eligible for numeric aggregation and ranking. Shared by the analytics
# and ranking engines.
NUMERIC_FIELDS = frozenset({"postalCode", "averagePricePerM2", "population"})

SortDirection = Literal["asc", "desc"]

FilterOperator = Literal[
    "equals",
    "contains",
    "startsWith",
    "endsWith",
    "greaterThan",
    "lessThan",
    "greaterThanOrEqual",
    "lessThanOrEqual",
    "between",
    "in",
    "notIn",
]

SelectionAction = Literal[
    "selectAll",
    "selectNone",
    "selectWhere",
    "selectTop",
    "selectBottom",
    "selectRandom",
    "invertSelection",
]

GroupingAction = Literal["groupBy", "clearGrouping", "expandAll", "collapseAll"]

AggregationFunction = Literal["count", "sum", "avg", "min", "max"]

AnalyticsOperationName = Literal[
    # Aggregation
    "sum",
    "average",
    "count",
    "min",
    "max",
    # Ranking
    "topN",
    "bottomN",
    "percentile",
    # Conditional
    "sumWhere",
    "averageWhere",
    # Comparison
    "compare",
]

ComparisonOperator = Literal["gt", "lt", "eq", "gte", "lte"]

DataScope = Literal["all", "filtered", "selected", "visible", "grouped"]

FIELD_NAMES: List[str] = list(get_args(FieldName))
SORT_DIRECTIONS: List[str] = list(get_args(SortDirection))
FILTER_OPERATORS: List[str] = list(get_args(FilterOperator))
SELECTION_ACTIONS: List[str] = list(get_args(SelectionAction))
GROUPING_ACTIONS: List[str] = list(get_args(GroupingAction))
AGGREGATION_FUNCTIONS: List[str] = list(get_args(AggregationFunction))
ANALYTICS_OPERATIONS: List[str] = list(get_args(AnalyticsOperationName))
COMPARISON_OPERATORS: List[str] = list(get_args(ComparisonOperator))
DATA_SCOPES: List[str] = list(get_args(DataScope))

Scalar = Union[int, float, str]
FilterValue = Union[Scalar, List[Scalar]]

_LIST_OPERATORS = {"in", "notIn"}


class OperationValidationError(ValueError):
    """Raised when tool output or a request payload does not match the algebra."""

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message)
        self.errors = errors or []


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


# ============================================================================
# OPERATION PARAMETERS
# ============================================================================

class Sorting(_WireModel):
    field_name: FieldName = Field(description="The field to sort by")
    direction: SortDirection = Field(description="The direction to sort by")


class FilterCriterion(_WireModel):
    """One column condition, shared by filters and ``selectWhere`` criteria."""

    field_name: FieldName = Field(description="The field to filter by")
    operator: FilterOperator = Field(description="The filter operator to apply")
    value: FilterValue = Field(description="The value to filter by")
    second_value: Optional[Scalar] = Field(
        default=None, description="Second value for 'between' operator"
    )

    @model_validator(mode="after")
    def _check_operands(self) -> "FilterCriterion":
        if self.operator == "between":
            if isinstance(self.value, list):
                if len(self.value) != 2 or self.second_value is not None:
                    raise ValueError("between expects exactly two bounds")
                # [low, high] form: normalise to value/secondValue
                self.value, self.second_value = self.value[0], self.value[1]
            elif self.second_value is None:
                raise ValueError("between requires secondValue")
        elif isinstance(self.value, list) and self.operator not in _LIST_OPERATORS:
            raise ValueError(f"operator {self.operator} does not accept a list value")
        return self


class Selection(_WireModel):
    action: SelectionAction = Field(description="The selection action to perform")
    criteria: Optional[FilterCriterion] = Field(
        default=None, description="Criteria for conditional selection (required for selectWhere)"
    )
    count: Optional[PositiveInt] = Field(
        default=None, description="Number of rows to select (for selectTop, selectBottom, selectRandom)"
    )

    @model_validator(mode="after")
    def _check_criteria(self) -> "Selection":
        if self.action == "selectWhere" and self.criteria is None:
            raise ValueError("selectWhere requires criteria")
        return self


class Aggregation(_WireModel):
    field: FieldName = Field(description="The field to aggregate")
    function: AggregationFunction = Field(description="The aggregation function to apply")


class Grouping(_WireModel):
    action: GroupingAction = Field(default="groupBy", description="The grouping action to perform")
    group_by_field: Optional[FieldName] = Field(
        default=None, description="The field to group by (required for groupBy action)"
    )
    aggregations: Optional[List[Aggregation]] = Field(
        default=None, description="Aggregation functions to apply to grouped data"
    )

    @model_validator(mode="after")
    def _check_group_field(self) -> "Grouping":
        if self.action == "groupBy" and self.group_by_field is None:
            raise ValueError("groupBy requires groupByField")
        return self


class Analytics(_WireModel):
    operation: AnalyticsOperationName = Field(description="The type of analysis to perform")
    field: FieldName = Field(description="The primary field to analyze")
    secondary_field: Optional[FieldName] = Field(
        default=None, description="Secondary field for comparisons or conditions"
    )
    value: Optional[Scalar] = Field(
        default=None, description="Value for conditional operations or thresholds"
    )
    count: Optional[PositiveInt] = Field(
        default=None, description="Number of items for topN/bottomN operations"
    )
    scope: DataScope = Field(default="filtered", description="Data scope to analyze")
    operator: Optional[ComparisonOperator] = Field(
        default=None, description="Comparison operator for conditional operations"
    )


# ============================================================================
# THE OPERATION UNION
# ============================================================================

class SortOperation(_WireModel):
    type: Literal["sort"] = "sort"
    sort: List[Sorting] = Field(min_length=1)


class FilterOperation(_WireModel):
    type: Literal["filter"] = "filter"
    filter: List[FilterCriterion] = Field(min_length=1)


class ClearFiltersOperation(_WireModel):
    type: Literal["clearFilters"] = "clearFilters"


class SelectionOperation(_WireModel):
    type: Literal["selection"] = "selection"
    selection: Selection


class ClearSelectionOperation(_WireModel):
    type: Literal["clearSelection"] = "clearSelection"


class GroupOperation(_WireModel):
    type: Literal["group"] = "group"
    group: Grouping


class ClearGroupingOperation(_WireModel):
    type: Literal["clearGrouping"] = "clearGrouping"


class AnalyticsOperation(_WireModel):
    type: Literal["analytics"] = "analytics"
    analytics: Analytics


Operation = Annotated[
    Union[
        SortOperation,
        FilterOperation,
        ClearFiltersOperation,
        SelectionOperation,
        ClearSelectionOperation,
        GroupOperation,
        ClearGroupingOperation,
        AnalyticsOperation,
    ],
    Field(discriminator="type"),
]

_OPERATIONS_ADAPTER: TypeAdapter = TypeAdapter(List[Operation])


# ============================================================================
# VALIDATION ENTRY POINTS
# ============================================================================

def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "__root__")
        msg = str(err.get("msg", "invalid value"))
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts) or "invalid operation payload"


def parse_model(model_cls: type, data: Any):
    """Validate ``data`` against one of the models above.

    Raises OperationValidationError with a readable message on failure.
    """
    if not isinstance(data, dict):
        raise OperationValidationError(
            f"{model_cls.__name__} expects an object, got {type(data).__name__}"
        )
    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        raise OperationValidationError(
            f"Invalid {model_cls.__name__}: {_format_validation_error(e)}", e.errors()
        ) from e


def parse_operations(payload: Any) -> list:
    """Validate a batch of operations.

    Accepts either ``{"operations": [...]}`` or a bare list.
    """
    if isinstance(payload, dict) and "operations" in payload:
        payload = payload["operations"]
    if not isinstance(payload, list):
        raise OperationValidationError("operations must be a list")
    try:
        return _OPERATIONS_ADAPTER.validate_python(payload)
    except ValidationError as e:
        raise OperationValidationError(
            f"Invalid operations: {_format_validation_error(e)}", e.errors()
        ) from e


def operations_to_wire(operations: list) -> list[dict]:
    return [op.to_wire() for op in operations]
