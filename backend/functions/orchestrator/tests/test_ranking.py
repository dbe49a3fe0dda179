import pytest
import pandas as pd

# Temporarily add the parent directory to the path to allow imports
import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# Now, import the module
import analysis_toolkit
import ranking
from analysis_toolkit import OperationError
from schemas import FIELD_NAMES


@pytest.fixture
def houses():
    return pd.DataFrame(
        {
            "postalCode": [1000, 2000, 3000],
            "city": ["Brussels", "Antwerp", "Leuven"],
            "province": ["Brussels", "Antwerp", "Flemish Brabant"],
            "averagePricePerM2": [3500, 2800, 3200],
            "population": [1200000, 500000, 100000],
        },
        index=pd.Index(["0", "1", "2"], name="row_id"),
    )


# Top / bottom
def test_top_n(houses):
    top = ranking.get_top_n(houses, "averagePricePerM2", 2)
    assert list(top["city"]) == ["Brussels", "Leuven"]

def test_bottom_n(houses):
    bottom = ranking.get_bottom_n(houses, "averagePricePerM2", 1)
    assert list(bottom["city"]) == ["Antwerp"]

def test_top_n_of_all_rows_is_descending_permutation(houses):
    top = ranking.get_top_n(houses, "population", len(houses))
    assert sorted(top.index) == sorted(houses.index)
    assert list(top["population"]) == sorted(houses["population"], reverse=True)

def test_top_n_keeps_row_ids(houses):
    assert list(ranking.get_top_n(houses, "averagePricePerM2", 3).index) == ["0", "2", "1"]

def test_ties_keep_original_order():
    df = pd.DataFrame({"population": [5, 7, 5, 7]}, index=["a", "b", "c", "d"])
    assert list(ranking.get_top_n(df, "population", 4).index) == ["b", "d", "a", "c"]
    assert list(ranking.get_bottom_n(df, "population", 4).index) == ["a", "c", "b", "d"]

def test_top_n_does_not_mutate(houses):
    before = houses.copy()
    ranking.get_top_n(houses, "population", 2)
    pd.testing.assert_frame_equal(houses, before)


# Percentiles
def test_percentile_interpolates(houses):
    assert ranking.get_percentile(houses, "averagePricePerM2", 75) == pytest.approx(3350)

def test_percentile_bounds_are_min_and_max(houses):
    assert ranking.get_percentile(houses, "averagePricePerM2", 0) == 2800
    assert ranking.get_percentile(houses, "averagePricePerM2", 100) == 3500

def test_percentile_of_empty_rows():
    assert ranking.get_percentile(pd.DataFrame(columns=["population"]), "population", 50) == 0

@pytest.mark.parametrize("p", [-1, 100.5, 150, "abc"])
def test_percentile_out_of_range_rejected(houses, p):
    with pytest.raises(OperationError, match="Percentile must be"):
        ranking.get_percentile(houses, "population", p)

def test_top_and_bottom_percentile(houses):
    assert list(ranking.get_top_percentile(houses, "averagePricePerM2", 50)["city"]) == ["Brussels", "Leuven"]
    assert list(ranking.get_bottom_percentile(houses, "averagePricePerM2", 50)["city"]) == ["Antwerp", "Leuven"]


# Ranks
def test_add_rankings(houses):
    ranked = ranking.add_rankings(houses, "averagePricePerM2")
    assert list(ranked["city"]) == ["Brussels", "Leuven", "Antwerp"]
    assert list(ranked["rank"]) == [1, 2, 3]
    assert "rank" not in houses.columns

def test_add_rankings_ascending(houses):
    ranked = ranking.add_rankings(houses, "population", ascending=True)
    assert list(ranked["city"]) == ["Leuven", "Antwerp", "Brussels"]

def test_rank_of_value(houses):
    assert ranking.get_rank_of_value(houses, "averagePricePerM2", 3200) == 2
    assert ranking.get_rank_of_value(houses, "averagePricePerM2", 3200, ascending=True) == 2
    assert ranking.get_rank_of_value(houses, "averagePricePerM2", 3500, ascending=True) == 3

def test_rank_of_missing_value(houses):
    assert ranking.get_rank_of_value(houses, "averagePricePerM2", 9999) == ranking.RANK_NOT_FOUND == 0


# Comparison
def test_compare_groups(houses):
    out = ranking.compare_groups(houses.iloc[:1], houses.iloc[1:], "population", "sum")
    assert out == {"group1": 1200000, "group2": 600000, "difference": 600000, "ratio": 2.0}

def test_compare_groups_zero_denominator(houses):
    out = ranking.compare_groups(houses, houses.iloc[0:0], "population", "average")
    assert out["group2"] == 0
    assert out["ratio"] == 0

def test_compare_groups_count(houses):
    out = ranking.compare_groups(houses.iloc[:2], houses.iloc[2:], "city", "count")
    assert out["group1"] == 2 and out["group2"] == 1

def test_compare_groups_unknown_operation(houses):
    with pytest.raises(OperationError, match="Unsupported comparison"):
        ranking.compare_groups(houses, houses, "population", "median")


# Both engines agree on which fields are numeric
@pytest.mark.parametrize("field", FIELD_NAMES)
def test_engines_reject_same_fields(field):
    def rejects(fn):
        try:
            fn(field)
        except OperationError:
            return True
        return False

    assert rejects(ranking.validate_ranking_operation) == rejects(analysis_toolkit.validate_numeric_operation)

def test_ranking_rejects_text_field():
    with pytest.raises(OperationError, match="non-numeric field: city"):
        ranking.validate_ranking_operation("city")
