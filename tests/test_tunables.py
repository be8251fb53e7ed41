"""Empirically chosen constants. Changing one of these should be a deliberate act."""

import pytest

import rxnorm_resolution as resolution
from rxnorm_approx import DEFAULT_WEIGHTS, INJECTION_FORM_BONUS
from rxnorm_catalog import ConceptSource, ConceptType, make_concept
from rxnorm_strength import STRENGTH_BANDS


def test_strength_tolerance_bands():
    assert STRENGTH_BANDS == ((0.01, 1.0), (0.10, 0.5), (0.20, 0.3))


def test_type_multipliers():
    assert resolution.BRAND_BOOST == 1.2
    assert resolution.CLINICAL_DEMOTION == 0.8
    assert resolution.INGREDIENT_DEMOTION == 0.7

    multiplier = resolution.type_multiplier
    assert multiplier(ConceptType.SBD, has_brand=True) == 1.2
    assert multiplier(ConceptType.SCD, has_brand=True) == 0.8
    assert multiplier(ConceptType.SBD, has_brand=False) == 0.8
    assert multiplier(ConceptType.SCD, has_brand=False) == 1.2
    assert multiplier(ConceptType.IN, has_brand=True) == 0.7
    assert multiplier(ConceptType.OTHER, has_brand=False) == 1.0


def test_pipeline_thresholds():
    assert resolution.ACCEPTANCE_THRESHOLD == 70.0
    assert resolution.VERIFY_TOP_N == 5
    assert resolution.SYNONYM_MIN_CANDIDATES == 3
    assert resolution.SYNONYM_MAX_VARIANTS == 5
    assert resolution.SYNONYM_DISCOUNT == 0.9
    assert resolution.INGREDIENT_FALLBACK_SCORE == 0.6
    assert resolution.VALIDITY_BONUS == 5.0


def test_verification_profiles_sum_to_one():
    assert sum(resolution.BRANDED_PROFILE.values()) == pytest.approx(1.0)
    assert sum(resolution.GENERIC_PROFILE.values()) == pytest.approx(1.0)
    assert resolution.BRANDED_PROFILE["brand"] == 0.35
    assert resolution.GENERIC_PROFILE["ingredient"] == 0.40


def test_scoring_weights():
    weights = DEFAULT_WEIGHTS
    assert (weights.overlap, weights.jaccard, weights.edit, weights.order) == (
        0.25,
        0.10,
        0.10,
        0.05,
    )
    assert (weights.numeric, weights.tty, weights.brand) == (0.35, 0.10, 0.02)
    assert weights.numeric_penalty == 0.3
    assert weights.strength_veto_ratio == 0.5
    assert weights.attainable == pytest.approx(0.91)
    assert max(bonus for _, bonus in INJECTION_FORM_BONUS) == 0.25


def test_unknown_route_is_neutral():
    concept = make_concept(ConceptSource("1", "IN", "amlodipine"))
    attributes = resolution.StructuredAttributes(ingredient="amlodipine")
    assert resolution.route_match(attributes, concept) == 0.5
