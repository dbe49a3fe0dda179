import pandas as pd
import pytest

# Temporarily add the parent directory to the path to allow imports
import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# Now, import the module
from executor import AnalyticsResult, error_result
from formatting import format_analytics_result, format_number


@pytest.mark.parametrize("value, expected", [
    (0, "0"),
    (9500, "9 500"),
    (1200000, "1 200 000"),
    (3166.6666, "3 166,667"),
    (3350.0, "3 350"),
    (0.5, "0,5"),
    (-1234.5, "-1 234,5"),
    (None, "None"),
    ("n/a", "n/a"),
    (float("nan"), "nan"),
])
def test_format_number(value, expected):
    assert format_number(value) == expected


def test_value_result():
    result = AnalyticsResult(
        type="value",
        value=9500,
        message="Sum of averagePricePerM2: 9 500",
        metadata={"operation": "sum", "field": "averagePricePerM2", "scope": "All 3 records"},
    )
    assert format_analytics_result(result) == (
        "Sum of averagePricePerM2: 9 500\n\nResult: 9 500\nScope: All 3 records"
    )

def test_data_result():
    data = pd.DataFrame(
        {
            "city": ["Brussels", "Leuven"],
            "province": ["Brussels", "Flemish Brabant"],
            "averagePricePerM2": [3500, 3200],
            "population": [1200000, 100000],
        },
        index=pd.Index(["0", "2"], name="row_id"),
    )
    result = AnalyticsResult(type="data", data=data, message="Top 2 records by averagePricePerM2", metadata={})
    assert format_analytics_result(result) == (
        "Top 2 records by averagePricePerM2\n\nResults:"
        "\n1. Brussels (Brussels): 3 500 €/m², Population: 1 200 000"
        "\n2. Leuven (Flemish Brabant): 3 200 €/m², Population: 100 000"
        "\n\nSelected 2 rows in the table."
    )

def test_data_result_with_display_fields():
    result = {
        "type": "data",
        "message": "Top 1 records by population",
        "data": [{"rowId": "0", "city": "Brussels", "population": 1200000}],
    }
    out = format_analytics_result(result, display_fields=["city", "population"])
    assert "\n1. city: Brussels, population: 1 200 000" in out

def test_comparison_result():
    result = AnalyticsResult(
        type="comparison",
        message="Sum of population: Brussels 1 200 000 vs Antwerp 500 000",
        metadata={},
        comparison={"group1": 1200000, "group2": 500000, "difference": 700000, "ratio": 2.4},
    )
    out = format_analytics_result(result)
    assert out.endswith("Group 1: 1 200 000\nGroup 2: 500 000\nDifference: 700 000\nRatio: 2,4")

def test_error_result_is_message_only():
    result = error_result("No rows selected", operation="sum", field_name="population", scope="selected")
    assert format_analytics_result(result) == "Error: No rows selected"
