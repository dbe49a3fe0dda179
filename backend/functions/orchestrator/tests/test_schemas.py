import json

import pytest

# Temporarily add the parent directory to the path to allow imports
import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# Now, import the module
import schemas
from schemas import (
    Analytics,
    FilterCriterion,
    Grouping,
    OperationValidationError,
    Selection,
    parse_model,
    parse_operations,
)


def test_filter_criterion_wire_names():
    crit = FilterCriterion(field_name="population", operator="between", value=1, second_value=5)
    assert crit.to_wire() == {"fieldName": "population", "operator": "between", "value": 1, "secondValue": 5}

def test_parse_by_alias_and_by_name():
    a = parse_model(FilterCriterion, {"fieldName": "city", "operator": "equals", "value": "Leuven"})
    b = parse_model(FilterCriterion, {"field_name": "city", "operator": "equals", "value": "Leuven"})
    assert a == b

def test_between_list_form_is_normalised():
    crit = parse_model(FilterCriterion, {"fieldName": "population", "operator": "between", "value": [10, 20]})
    assert crit.value == 10
    assert crit.second_value == 20

@pytest.mark.parametrize("data", [
    {"fieldName": "population", "operator": "between", "value": 10},
    {"fieldName": "population", "operator": "between", "value": [1, 2, 3]},
    {"fieldName": "population", "operator": "greaterThan", "value": [1, 2]},
    {"fieldName": "surface", "operator": "equals", "value": 1},
    {"fieldName": "city", "operator": "equals", "value": "x", "extra": True},
])
def test_invalid_criteria(data):
    with pytest.raises(OperationValidationError):
        parse_model(FilterCriterion, data)

def test_in_accepts_list():
    crit = parse_model(FilterCriterion, {"fieldName": "city", "operator": "in", "value": ["Antwerp", "Leuven"]})
    assert crit.value == ["Antwerp", "Leuven"]

def test_parse_model_rejects_non_object():
    with pytest.raises(OperationValidationError, match="expects an object"):
        parse_model(Selection, ["selectAll"])

def test_validation_message_is_readable():
    with pytest.raises(OperationValidationError) as exc:
        parse_model(Selection, {"action": "selectWhere"})
    assert "selectWhere requires criteria" in str(exc.value)
    assert exc.value.errors

def test_grouping_defaults_to_group_by():
    with pytest.raises(OperationValidationError, match="groupByField"):
        parse_model(Grouping, {})
    assert parse_model(Grouping, {"groupByField": "province"}).action == "groupBy"

def test_analytics_defaults():
    a = parse_model(Analytics, {"operation": "count", "field": "city"})
    assert a.scope == "filtered"
    assert a.count is None

def test_parse_operations_discriminates_on_type():
    ops = parse_operations({"operations": [
        {"type": "sort", "sort": [{"fieldName": "city", "direction": "asc"}]},
        {"type": "clearFilters"},
        {"type": "analytics", "analytics": {"operation": "sum", "field": "population", "scope": "all"}},
    ]})
    assert [type(op).__name__ for op in ops] == ["SortOperation", "ClearFiltersOperation", "AnalyticsOperation"]

@pytest.mark.parametrize("payload", [
    "sort",
    [{"type": "truncate"}],
    [{"type": "sort", "sort": []}],
    [{"type": "filter"}],
])
def test_parse_operations_rejects(payload):
    with pytest.raises(OperationValidationError):
        parse_operations(payload)

def test_operations_to_wire_round_trips():
    raw = [
        {"type": "filter", "filter": [{"fieldName": "population", "operator": "greaterThan", "value": 200000}]},
        {"type": "selection", "selection": {"action": "selectTop", "count": 3}},
        {"type": "group", "group": {"action": "groupBy", "groupByField": "province",
                                    "aggregations": [{"field": "population", "function": "avg"}]}},
    ]
    wire = schemas.operations_to_wire(parse_operations(raw))
    assert wire == raw
    json.dumps(wire)

def test_vocabulary_lists():
    assert schemas.FIELD_NAMES == ["postalCode", "city", "province", "averagePricePerM2", "population"]
    assert set(schemas.NUMERIC_FIELDS) < set(schemas.FIELD_NAMES)
    assert "grouped" in schemas.DATA_SCOPES
