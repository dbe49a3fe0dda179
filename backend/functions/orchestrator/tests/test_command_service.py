import pytest

# Temporarily add the parent directory to the path to allow imports
import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# Now, import the module
import command_service
import config
from command_service import generate_operations, heuristic_tool_calls


class FakeClient:
    """Stands in for ToolCallingClient; returns canned tool calls."""

    def __init__(self, calls=None, error=None):
        self.calls = calls or []
        self.error = error
        self.seen = []

    def generate_tool_calls(self, utterance, tool_spec=None):
        self.seen.append(utterance)
        if self.error:
            raise self.error
        return self.calls


# Heuristics
@pytest.mark.parametrize("utterance, expected", [
    ("sort by price descending", {"name": "apply_sort", "args": {"fieldName": "averagePricePerM2", "direction": "desc"}}),
    ("Order by population high to low", {"name": "apply_sort", "args": {"fieldName": "population", "direction": "desc"}}),
    ("sort by city", {"name": "apply_sort", "args": {"fieldName": "city", "direction": "asc"}}),
    ("sort by town alphabetically", {"name": "apply_sort", "args": {"fieldName": "city", "direction": "asc"}}),
    ("group by province", {"name": "apply_grouping", "args": {"action": "groupBy", "groupByField": "province"}}),
    ("ungroup", {"name": "apply_grouping", "args": {"action": "clearGrouping"}}),
    ("expand all", {"name": "apply_grouping", "args": {"action": "expandAll"}}),
    ("collapse all groups", {"name": "apply_grouping", "args": {"action": "collapseAll"}}),
    ("select all", {"name": "apply_selection", "args": {"action": "selectAll"}}),
    ("clear selection", {"name": "apply_selection", "args": {"action": "selectNone"}}),
    ("invert the selection", {"name": "apply_selection", "args": {"action": "invertSelection"}}),
])
def test_heuristic_tool_calls(utterance, expected):
    assert heuristic_tool_calls(utterance) == [expected]

@pytest.mark.parametrize("utterance", ["", "what is the average price?", "sort by surface area", "group by"])
def test_heuristic_tool_calls_no_match(utterance):
    assert heuristic_tool_calls(utterance) == []

@pytest.mark.parametrize("utterance, expected", [
    ("clear filters", True),
    ("Reset all filters", True),
    ("remove the filter", True),
    ("show all rows", True),
    ("filter by province", False),
    ("remove the filter on city", False),
    ("clear the filter for province", False),
    ("remove all filters on the table", True),
])
def test_is_clear_filters_request(utterance, expected):
    assert command_service.is_clear_filters_request(utterance) is expected


# generate_operations
def test_empty_utterance():
    result = generate_operations("   ", client=FakeClient())
    assert not result.success
    assert result.text == command_service.NO_ACTION_MESSAGE

def test_llm_calls_become_operations():
    client = FakeClient([
        {"name": "apply_filter", "args": {"fieldName": "population", "operator": "greaterThan", "value": "200000"}},
        {"name": "apply_sort", "args": {"fieldName": "averagePricePerM2", "direction": "desc"}},
    ])
    result = generate_operations("show cities over 200000 people, most expensive first", client=client)
    assert result.success
    assert result.source == "llm"
    assert [op.type for op in result.operations] == ["filter", "sort"]
    assert result.operations[0].filter[0].value == 200000
    assert result.text == "Filtered population greater than 200000; Sorted by averagePricePerM2 in descending order"

def test_heuristic_fallback_when_llm_returns_nothing():
    result = generate_operations("sort by price desc", client=FakeClient([]))
    assert result.success
    assert result.source == "heuristic"
    assert result.operations[0].sort[0].field_name == "averagePricePerM2"

def test_heuristic_fallback_when_llm_unavailable():
    result = generate_operations("group by province", client=FakeClient(error=RuntimeError("GEMINI_API_KEY not set")))
    assert result.success
    assert result.operations[0].type == "group"

def test_heuristic_fallback_disabled(monkeypatch):
    monkeypatch.setattr(config, "HEURISTIC_FALLBACK_ENABLED", False)
    result = generate_operations("sort by price desc", client=FakeClient([]))
    assert not result.success
    assert result.text == command_service.NOT_UNDERSTOOD_MESSAGE

def test_not_understood():
    result = generate_operations("tell me a joke", client=FakeClient([]))
    assert not result.success
    assert result.source == "none"

def test_clear_filters_prepended():
    client = FakeClient([{"name": "apply_filter", "args": {"fieldName": "city", "operator": "equals", "value": "Leuven"}}])
    result = generate_operations("clear filters and show only Leuven", client=client)
    assert [op.type for op in result.operations] == ["clearFilters", "filter"]
    assert result.messages[0] == "Cleared all filters"

def test_clear_filters_alone():
    result = generate_operations("clear all filters", client=FakeClient([]))
    assert result.success
    assert [op.type for op in result.operations] == ["clearFilters"]

def test_invalid_calls_are_dropped():
    client = FakeClient([
        {"name": "apply_sort", "args": {"fieldName": "surface", "direction": "asc"}},
        {"name": "apply_sort", "args": {"fieldName": "city", "direction": "asc"}},
    ])
    result = generate_operations("sort by city", client=client)
    assert result.success
    assert len(result.operations) == 1

def test_all_calls_invalid():
    client = FakeClient([{"name": "drop_table", "args": {}}])
    result = generate_operations("drop the table", client=client)
    assert not result.success
    assert result.text == "Unknown tool: drop_table"


# Verb reconciliation
def test_selection_verb_rewrites_filter():
    client = FakeClient([{"name": "apply_filter", "args": {"fieldName": "province", "operator": "equals", "value": "Antwerp"}}])
    result = generate_operations("highlight the cities in Antwerp", client=client)
    op = result.operations[0]
    assert op.type == "selection"
    assert op.selection.action == "selectWhere"
    assert op.selection.criteria.value == "Antwerp"
    assert result.text == "Selected rows where province equals Antwerp"

def test_filter_verb_rewrites_select_where():
    client = FakeClient([{
        "name": "apply_selection",
        "args": {"action": "selectWhere", "criteria": {"fieldName": "population", "operator": "lessThan", "value": "150000"}},
    }])
    result = generate_operations("only show small towns under 150000", client=client)
    op = result.operations[0]
    assert op.type == "filter"
    assert op.filter[0].value == 150000

def test_reconciliation_leaves_matching_verbs_alone():
    client = FakeClient([{"name": "apply_filter", "args": {"fieldName": "province", "operator": "equals", "value": "Antwerp"}}])
    result = generate_operations("show Antwerp", client=client)
    assert result.operations[0].type == "filter"

def test_reconciliation_disabled(monkeypatch):
    monkeypatch.setattr(config, "VERB_RECONCILIATION_ENABLED", False)
    client = FakeClient([{"name": "apply_filter", "args": {"fieldName": "province", "operator": "equals", "value": "Antwerp"}}])
    result = generate_operations("highlight Antwerp", client=client)
    assert result.operations[0].type == "filter"

def test_selection_none_becomes_clear_selection():
    result = generate_operations("deselect everything", client=FakeClient([]))
    assert [op.type for op in result.operations] == ["clearSelection"]


def test_operations_result_to_dict():
    client = FakeClient([{"name": "analyze_data", "args": {"operation": "count", "field": "city"}}])
    data = generate_operations("how many cities?", client=client).to_dict()
    assert data["success"] is True
    assert data["operations"] == [
        {"type": "analytics", "analytics": {"operation": "count", "field": "city", "scope": "filtered"}},
    ]
    assert data["messages"] == ["Counted records in filtered data"]
