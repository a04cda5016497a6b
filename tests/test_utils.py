import pytest

from app.casahub.utils import parse_number


@pytest.mark.parametrize("raw, expected", [("2", 2.0), ("0,5", 0.5), (" 1.25 ", 1.25), ("", None), (None, None)])
def test_parse_number_accepts(raw, expected):
    errors = []
    assert parse_number(raw, "Quantity", errors) == expected
    assert errors == []


@pytest.mark.parametrize("raw", ["nan", "NaN", "inf", "-Infinity", "1e999"])
def test_parse_number_rejects_non_finite(raw):
    errors = []
    assert parse_number(raw, "Quantity", errors) is None
    assert errors == ["Quantity must be a finite number."]


def test_parse_number_rejects_garbage():
    errors = []
    assert parse_number("abc", "Servings", errors, integer=True) is None
    assert errors == ["Servings must be a whole number."]
