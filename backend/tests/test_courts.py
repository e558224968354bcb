"""Court name parsing and facility normalization."""
import pytest

from courtside.services.errors import ValidationError
from courtside.utils.courts import (
    court_names,
    facility_for_court,
    facility_location,
    flatten_courts,
    normalize_facilities,
    parse_court_names,
)


def test_parse_court_names_string_comma_separated():
    """'1,5,6' parses to ['1','5','6'] (no list('1,5,6') corruption)."""
    assert parse_court_names("1,5,6") == ["1", "5", "6"]


def test_parse_court_names_list_unchanged():
    assert parse_court_names(["1", "5", "6"]) == ["1", "5", "6"]


def test_parse_court_names_none_or_empty():
    assert parse_court_names(None) == []
    assert parse_court_names("") == []
    assert parse_court_names("   ") == []


def test_parse_court_names_string_strips_whitespace():
    assert parse_court_names(" SRC-1 , SRC-2 ") == ["SRC-1", "SRC-2"]


def test_parse_court_names_list_coerces_to_str():
    assert parse_court_names([1, 5, 6]) == ["1", "5", "6"]


FACILITIES = [
    {"name": "SRC", "courts": ["SRC-1", "SRC-2"], "latitude": 36.88, "longitude": -76.30},
    {"name": "Annex", "courts": "A-1, A-2, A-3"},
]


def test_flatten_courts_keeps_facility_then_listed_order():
    refs = flatten_courts(FACILITIES)
    assert [r.name for r in refs] == ["SRC-1", "SRC-2", "A-1", "A-2", "A-3"]
    assert refs[0].facility == "SRC"
    assert refs[0].location == (36.88, -76.30)
    assert refs[2].location is None


def test_court_lookup_helpers():
    assert court_names(FACILITIES)[-1] == "A-3"
    assert facility_for_court(FACILITIES, "A-2") == "Annex"
    assert facility_for_court(FACILITIES, "missing") is None
    assert facility_location(FACILITIES, "SRC") == (36.88, -76.30)
    assert facility_location(FACILITIES, "Annex") is None


def test_normalize_facilities_rejects_duplicate_courts():
    with pytest.raises(ValidationError):
        normalize_facilities([{"name": "One", "courts": ["X"]}, {"name": "Two", "courts": ["X"]}])


def test_normalize_facilities_rejects_bad_location():
    with pytest.raises(ValidationError):
        normalize_facilities([{"name": "One", "courts": ["X"], "latitude": 120, "longitude": 0}])


def test_normalize_facilities_output_shape():
    normalized = normalize_facilities(FACILITIES)
    assert normalized[0] == {"name": "SRC", "courts": ["SRC-1", "SRC-2"], "latitude": 36.88, "longitude": -76.30}
    assert normalized[1] == {"name": "Annex", "courts": ["A-1", "A-2", "A-3"]}
