import pytest

from rxnorm_approx import (
    MatchResult,
    ScoringWeights,
    apply_brand_priority,
    approximate_match,
    injection_form_bonus,
    levenshtein,
    numeric_alignment,
    order_ratio,
    prepare_query,
    rank_matches,
    score_candidate,
)
from rxnorm_catalog import ConceptSource, ConceptType, build_index, make_concept
from rxnorm_normalize import NumericFeature


def ids(results):
    return [result.concept_id for result in results]


@pytest.mark.parametrize(
    "a, b, expected",
    [("kitten", "sitting", 3), ("", "abc", 3), ("flaw", "lawn", 2), ("same", "same", 0)],
)
def test_levenshtein(a, b, expected):
    assert levenshtein(a, b) == expected


def test_order_ratio_counts_in_order_hits():
    assert order_ratio(["a", "c", "d"], ["a", "x", "c"]) == pytest.approx(2 / 3)
    assert order_ratio(["c", "a"], ["a", "c"]) == pytest.approx(1 / 2)


def test_numeric_alignment_bands_veto_and_penalty():
    ten = [NumericFeature(10.0, "MG")]
    assert numeric_alignment(ten, ten).value == 1.0
    assert numeric_alignment(ten, [NumericFeature(6.0, "MG")]).value == pytest.approx(0.36)
    assert numeric_alignment(ten, [NumericFeature(4.0, "MG")]).vetoed
    mismatch = numeric_alignment(ten, [NumericFeature(10.0, "MG/ML")])
    assert not mismatch.vetoed
    assert mismatch.value == pytest.approx(-0.3)
    assert numeric_alignment([], ten).value == 0.0


def test_exact_name_comes_first_with_full_score(index):
    results = approximate_match(index, "Amlodipine 10 mg Oral Tablet")
    assert results[0].concept_id == "308135"
    assert results[0].score == 1.0
    assert ids(results).count("308135") == 1


def test_closest_drug_outranks_its_ingredient(index):
    results = approximate_match(index, "amoxicillin 500 mg capsule")
    assert ids(results) == ["197806", "723"]
    assert results[0].score > 0.9
    assert results[1].score < 0.3


def test_ingredient_only_catalog_still_matches_weakly():
    index = build_index([ConceptSource("723", "IN", "amoxicillin")])
    results = approximate_match(index, "amoxicillin 500 mg capsule")
    assert ids(results) == ["723"]
    assert 0.0 < results[0].score < 0.3
    assert results[0].concept_type == ConceptType.IN


def test_strength_units_are_compared_after_conversion(index):
    results = approximate_match(index, "amoxicillin 0.5 g capsule")
    assert results[0].concept_id == "197806"


def test_far_strength_is_vetoed(index):
    results = approximate_match(index, "ibuprofen 500 mg")
    assert "310965" not in ids(results)
    assert ids(results) == ["5640"]


def test_route_hint_excludes_other_routes(index):
    results = approximate_match(index, "epinephrine injection")
    assert results[0].concept_id == "727316"
    assert "900001" not in ids(results)


def test_unrelated_drug_words_score_zero(index):
    query = prepare_query("ibuprofen 10 mg oral tablet")
    assert score_candidate(index, query, index.get("308135")) == 0.0


def test_bracketed_brand_is_lifted(index):
    results = approximate_match(index, "amlodipine 10 mg tablet [Norvasc]")
    assert ids(results)[:2] == ["212549", "58927"]
    assert results[1].score < max(result.score for result in results[2:])


def test_brand_priority_resort_keeps_scores(index):
    results = [
        MatchResult("308135", "amlodipine 10 MG Oral Tablet", 0.5, ConceptType.SCD),
        MatchResult("212549", "amlodipine 10 MG Oral Tablet [Norvasc]", 0.5, ConceptType.SBD),
    ]
    reordered = apply_brand_priority(index, results, "norvasc")
    assert ids(reordered) == ["212549", "308135"]
    assert [result.score for result in reordered] == [0.5, 0.5]
    assert apply_brand_priority(index, results, " ") == results


def test_injection_form_bonus():
    pen = make_concept(ConceptSource("1", "SCD", "epinephrine 0.3 MG Auto-Injector"))
    solution = make_concept(ConceptSource("2", "SCD", "epinephrine 1 MG/ML Injectable Solution"))
    assert injection_form_bonus("injection", pen) == 0.15
    assert injection_form_bonus("injection", solution) == 0.20
    assert injection_form_bonus("oral", pen) == 0.0


def test_ties_break_on_type_then_name_length_then_id(index):
    ranked = rank_matches(index, {"17767": 0.5, "308136": 0.5, "308135": 0.5})
    assert ids(ranked) == ["308135", "308136", "17767"]


def test_results_are_deterministic_and_worker_independent(index):
    first = approximate_match(index, "amlodipine 10 mg")
    assert approximate_match(index, "amlodipine 10 mg") == first
    assert approximate_match(index, "amlodipine 10 mg", workers=4) == first


def test_limit_and_empty_query(index):
    assert len(approximate_match(index, "amlodipine", limit=2)) == 2
    assert approximate_match(index, "amlodipine", limit=0) == []
    assert approximate_match(index, "") == []


def test_custom_weights_change_scores(index):
    query = prepare_query("amoxicillin 500 mg capsule")
    concept = index.get("723")
    harsh = ScoringWeights(numeric_penalty=3.0)
    assert score_candidate(index, query, concept) > 0.0
    assert score_candidate(index, query, concept, harsh) == 0.0


def test_match_result_to_dict_rounds_score():
    result = MatchResult("1", "aspirin", 0.12345, ConceptType.IN)
    assert result.to_dict() == {"rxcui": "1", "name": "aspirin", "score": 0.123, "tty": "IN"}
