import math

import pytest

from conftest import CONSO_LINES, rel, rrf
from rxnorm_catalog import (
    ConceptSource,
    ConceptType,
    LoadError,
    LoadStats,
    build_index,
    extract_ingredients,
    infer_route_and_form,
    iter_rrf_sources,
    load_rrf_sources,
    parse_rrf_line,
    parse_rrf_relation_line,
)
from rxnorm_normalize import normalize


def test_parse_rrf_line_reads_columns():
    source = parse_rrf_line(rrf("197806", "SCD", "amoxicillin 500 MG Oral Capsule"))
    assert source == ConceptSource(
        concept_id="197806",
        concept_type="SCD",
        canonical_name="amoxicillin 500 MG Oral Capsule",
        code="197806",
    )


def test_parse_rrf_line_rejects_other_authorities_and_languages():
    assert parse_rrf_line(rrf("1", "IN", "aspirin", sab="MTHSPL")) is None
    assert parse_rrf_line(rrf("1", "IN", "aspirina", lat="SPA")) is None


def test_parse_rrf_line_raises_on_malformed_records():
    with pytest.raises(LoadError):
        parse_rrf_line("short|line")
    with pytest.raises(LoadError):
        parse_rrf_line(rrf("", "IN", "aspirin"))


def test_loader_skips_bad_lines_and_counts_them():
    stats = LoadStats()
    lines = CONSO_LINES + [rrf("197806", "SCD", "amoxicillin 500 MG Oral Capsule"), ""]
    sources = list(iter_rrf_sources(lines, stats=stats))

    assert stats.malformed == 1
    assert stats.rejected == 2
    assert stats.duplicates == 1
    assert stats.kept == len(sources)
    assert all(source.authority == "RXNORM" for source in sources)


def test_loader_keeps_same_string_under_a_weaker_type():
    lines = [
        rrf("310965", "PSN", "ibuprofen 200 MG Oral Tablet"),
        rrf("310965", "SCD", "ibuprofen 200 MG Oral Tablet"),
    ]
    stats = LoadStats()
    index = build_index(iter_rrf_sources(lines, stats=stats))

    assert stats.duplicates == 0
    assert index.get("310965").concept_type == ConceptType.SCD


def test_same_string_under_another_id_collapses_at_build():
    lines = CONSO_LINES + [rrf("999", "SCD", "amoxicillin 500 MG Oral Capsule")]
    index = build_index(iter_rrf_sources(lines))
    assert index.get("197806") is not None
    assert index.get("999") is None


def test_loader_applies_type_filter():
    sources = list(iter_rrf_sources(CONSO_LINES, type_filter={"IN"}))
    assert {source.concept_type for source in sources} == {"IN"}


def test_load_rrf_sources_requires_the_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_rrf_sources(tmp_path / "RXNCONSO.RRF")


@pytest.mark.parametrize(
    "name, expected",
    [
        ("amlodipine 10 MG Oral Tablet", ("Oral", "Oral Tablet")),
        ("epinephrine 0.3 MG Auto-Injector", ("Injection", "Auto-Injector")),
        ("epinephrine 1 MG/ML Injectable Solution", ("Injection", "Injectable Solution")),
        ("oxygen 99 % Gas for Inhalation", ("for Inhalation", "Gas for Inhalation")),
        ("nicotine 21 MG/24HR Transdermal System", ("Transdermal", "System")),
        ("amlodipine", (None, None)),
    ],
)
def test_route_and_form_inference(name, expected):
    assert infer_route_and_form(name) == expected


def test_ingredients_drop_units_forms_and_brands():
    name = "amlodipine 5 MG / benazepril 20 MG Oral Capsule [Lotrel]"
    assert extract_ingredients(name) == ("amlodipine", "benazepril")
    saline = "sodium chloride 9 MG/ML Injectable Solution"
    assert extract_ingredients(saline) == ("sodium chloride",)


def test_concept_fields(index):
    concept = index.get("212549")
    assert concept.concept_type == ConceptType.SBD
    assert concept.brand == "Norvasc"
    assert concept.route == "Oral"
    assert concept.ingredients == ("amlodipine",)
    assert concept.drug_words == ("amlodipine", "norvasc")
    assert index.get("58927").brand == "Norvasc"


def test_concept_type_table():
    assert ConceptType.parse("scd") == ConceptType.SCD
    assert ConceptType.parse("SY") == ConceptType.OTHER
    assert ConceptType.SBD.is_branded
    assert not ConceptType.SCD.is_branded
    assert ConceptType.SCD.priority > ConceptType.SCDC.priority > ConceptType.IN.priority
    assert ConceptType.IN.priority > ConceptType.DF.priority
    assert ConceptType.SCD.weight > ConceptType.IN.weight > ConceptType.DF.weight


def test_stronger_type_supersedes_weaker_record_for_same_id():
    weak_first = [
        ConceptSource("1", "SY", "amox 500 caps"),
        ConceptSource("1", "SCD", "amoxicillin 500 MG Oral Capsule"),
    ]
    strong_first = list(reversed(weak_first))
    for sources in (weak_first, strong_first):
        index = build_index(sources)
        assert index.get("1").concept_type == ConceptType.SCD
        assert index.get("1").canonical_name == "amoxicillin 500 MG Oral Capsule"


def test_identical_normalized_names_collapse_to_one_concept():
    index = build_index(
        [
            ConceptSource("1", "IN", "Amlodipine"),
            ConceptSource("2", "SCD", "amlodipine"),
        ]
    )
    assert len(index) == 1
    assert index.get("2") is not None
    assert index.check("1").exists


def test_idf_and_term_frequency(index):
    total = len(index)
    df = len(index.postings["amoxicillin"])
    assert index.idf("amoxicillin") == pytest.approx(math.log((total + 1) / (df + 1)) + 1)
    assert index.idf("never-seen") == 1.0

    combo = {posting.concept_id: posting.tf for posting in index.postings["MG"]}
    assert combo["1000001"] == 2
    assert combo["308135"] == 1


def test_build_is_deterministic(sources, edges):
    first = build_index(sources, edges)
    second = build_index(sources, edges)
    assert dict(first.postings) == dict(second.postings)
    assert dict(first.numeric_index) == dict(second.numeric_index)


def test_recall_unions_tokens_and_numeric_keys(index):
    assert index.recall(normalize("zzzz")) == set()
    hits = index.recall(normalize("amoxicillin"))
    assert hits == {"723", "197806"}
    assert "308135" in index.recall(normalize("10 MG"))


def test_exact_match_uses_names_and_aliases(index):
    assert index.exact_match(normalize("Amlodipine 10 mg oral tablet")).concept_id == "308135"
    assert index.exact_match(normalize("Norvasc 10 MG Oral Tablet")).concept_id == "212549"
    assert index.exact_match(normalize("amlodipine 10 MG")) is None
    assert index.aliases("212549") == ("Norvasc 10 MG Oral Tablet",)


def test_check_reports_existence_and_suppression(index):
    found = index.check("308135")
    assert found.exists
    assert found.concept_type == ConceptType.SCD
    assert not found.suppressed

    suppressed = index.check("243670")
    assert suppressed.exists and suppressed.suppressed

    missing = index.check("424242")
    assert not missing.exists
    assert missing.to_dict()["tty"] is None


def test_related_uses_relation_graph(index):
    assert [c.concept_id for c in index.related("308135", {ConceptType.SBD})] == ["212549"]
    assert [c.concept_id for c in index.related("212549", {ConceptType.SCD})] == ["308135"]
    # Suppressed edge to the ingredient was not loaded.
    assert index.related("308135", {ConceptType.IN}) == []


def test_related_walk_skips_dose_form_edges_and_hubs():
    sources = [
        ConceptSource("1", "SBD", "amlodipine 10 MG / atorvastatin 20 MG Oral Tablet [Caduet]"),
        ConceptSource("2", "SCD", "amlodipine 10 MG / atorvastatin 20 MG Oral Tablet"),
        ConceptSource("3", "SCD", "ibuprofen 200 MG Oral Tablet"),
        ConceptSource("4", "IN", "amlodipine"),
        ConceptSource("5", "SCD", "amlodipine 5 MG Oral Tablet"),
        ConceptSource("9", "DF", "Oral Tablet"),
    ]
    lines = [
        rel("1", "2", "tradename_of"),
        rel("1", "9", "has_dose_form"),
        rel("2", "9", "has_dose_form"),
        rel("3", "9", "has_dose_form"),
        rel("2", "4", "has_ingredient"),
        rel("5", "4", "has_ingredient"),
    ]
    index = build_index(sources, [parse_rrf_relation_line(line) for line in lines])

    assert [c.concept_id for c in index.related("1", {ConceptType.SCD})] == ["2"]
    assert [c.concept_id for c in index.related("2")] == ["1", "4"]
    assert [c.concept_id for c in index.related("4")] == ["2", "5", "1"]
    assert index.related("9") == []


def test_related_falls_back_to_signature(plain_index):
    assert not plain_index.has_relations
    assert [c.concept_id for c in plain_index.related("212549", {ConceptType.SCD})] == ["308135"]
    assert [c.concept_id for c in plain_index.related("308135")] == ["212549"]


def test_ingredient_concepts(index):
    assert [c.concept_id for c in index.ingredient_concepts("Amlodipine")] == ["17767"]
    assert index.ingredient_concepts("10 MG") == []
