import pytest

from rxnorm_normalize import NumericFeature
from rxnorm_strength import (
    band_for,
    compare_features,
    format_features,
    parse_strength,
    relative_difference,
    strength_match,
)

AMOXICILLIN = "amoxicillin 500 MG Oral Capsule"


@pytest.mark.parametrize(
    "expected, level",
    [
        ("500 mg", 1.0),
        ("505 mg", 1.0),
        ("550 mg", 0.5),
        ("600 mg", 0.3),
        ("1000 mg", 0.0),
    ],
)
def test_tolerance_bands(expected, level):
    assert strength_match(expected, AMOXICILLIN) == level


@pytest.mark.parametrize("expected", ["0.5 g", "500000 mcg", "500mg", "500 MGS"])
def test_weight_units_are_converted(expected):
    assert strength_match(expected, AMOXICILLIN) == 1.0


def test_international_units_match_unt():
    name = "insulin glargine 100 UNT/ML Pen Injector"
    assert strength_match("100 IU/mL", name) == 1.0
    assert strength_match("100 units/ml", name) == 1.0


def test_missing_strength_is_neutral():
    assert strength_match(None, AMOXICILLIN) == 1.0
    assert strength_match("  ", AMOXICILLIN) == 1.0


def test_unit_kind_mismatch_scores_zero():
    assert strength_match("5 mg/ml", AMOXICILLIN) == 0.0


def test_unparseable_strength_falls_back_to_containment():
    assert strength_match("500", AMOXICILLIN) == 1.0
    assert strength_match("extra strength", "Tylenol Extra Strength 500 MG") == 1.0
    assert strength_match("extra strength", "aspirin 81 MG Oral Tablet") == 0.0


def test_combination_strength_uses_weakest_component():
    name = "amlodipine 5 MG / benazepril 20 MG Oral Capsule"
    assert strength_match("5 mg / 20 mg", name) == 1.0
    expected = [NumericFeature(5.0, "MG"), NumericFeature(20.0, "MG")]
    actual = [NumericFeature(5.0, "MG"), NumericFeature(22.0, "MG")]
    assert compare_features(expected, actual) == 0.5
    assert compare_features(expected, []) == 0.0


def test_custom_bands():
    assert strength_match("550 mg", AMOXICILLIN, bands=((0.1, 1.0),)) == 1.0
    assert band_for(0.25) == 0.0


def test_helpers():
    assert relative_difference(0.0, 0.0) == 0.0
    assert relative_difference(50.0, 100.0) == 0.5
    assert parse_strength("5 mcg/ml") == (NumericFeature(0.005, "MG/ML"),)
    assert parse_strength(None) == ()
    assert format_features(parse_strength("5 mg / 20 mg")) == "5 MG, 20 MG"


@pytest.mark.parametrize(
    "expected, name",
    [
        ("1000 MCG", "cyanocobalamin 1 MG Oral Tablet"),
        ("1 MG", "cyanocobalamin 1000 MCG Oral Tablet"),
        ("1 G", "amoxicillin 1000 MG Oral Tablet"),
        ("1000 MG", "amoxicillin 1 G Oral Tablet"),
    ],
)
def test_unit_conversion_is_symmetric(expected, name):
    assert strength_match(expected, name) == 1.0
