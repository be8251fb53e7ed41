from pathlib import Path
from typing import List

import pytest

from rxnorm_catalog import build_index, iter_rrf_sources, parse_rrf_relation_line


def rrf(rxcui, tty, name, sab="RXNORM", lat="ENG", suppress="N"):
    cols = [""] * 18
    cols[0] = rxcui
    cols[1] = lat
    cols[11] = sab
    cols[12] = tty
    cols[13] = rxcui
    cols[14] = name
    cols[16] = suppress
    return "|".join(cols) + "|"


def rel(src, dst, rela="has_tradename", sab="RXNORM", suppress="N"):
    cols = [""] * 16
    cols[0] = src
    cols[3] = "RO"
    cols[4] = dst
    cols[7] = rela
    cols[10] = sab
    cols[14] = suppress
    return "|".join(cols) + "|"


CONSO_LINES: List[str] = [
    rrf("723", "IN", "amoxicillin"),
    rrf("197806", "SCD", "amoxicillin 500 MG Oral Capsule"),
    rrf("17767", "IN", "amlodipine"),
    rrf("308135", "SCD", "amlodipine 10 MG Oral Tablet"),
    rrf("308136", "SCD", "amlodipine 2.5 MG Oral Tablet"),
    rrf("212549", "SBD", "amlodipine 10 MG Oral Tablet [Norvasc]"),
    rrf("212549", "SY", "Norvasc 10 MG Oral Tablet"),
    rrf("58927", "BN", "Norvasc"),
    rrf("5640", "IN", "ibuprofen"),
    rrf("310965", "SCD", "ibuprofen 200 MG Oral Tablet"),
    rrf("3992", "IN", "epinephrine"),
    rrf("727316", "SCD", "epinephrine 1 MG/ML Injectable Solution"),
    rrf("900001", "SCD", "epinephrine 0.1 MG/ML Oral Solution"),
    rrf("1000001", "SCD", "amlodipine 5 MG / benazepril 20 MG Oral Capsule"),
    rrf("243670", "SCD", "aspirin 81 MG Oral Tablet", suppress="O"),
    rrf("1191", "IN", "aspirin", sab="MTHSPL"),
    rrf("1192", "IN", "aspirina", lat="SPA"),
    "short|line",
]

REL_LINES: List[str] = [
    rel("308135", "212549", "has_tradename"),
    rel("212549", "308135", "tradename_of"),
    rel("212549", "58927", "has_ingredient"),
    rel("308135", "17767", "has_ingredient", suppress="O"),
]


@pytest.fixture
def sources():
    return list(iter_rrf_sources(CONSO_LINES))


@pytest.fixture
def edges():
    parsed = [parse_rrf_relation_line(line) for line in REL_LINES]
    return [edge for edge in parsed if edge is not None]


@pytest.fixture
def index(sources, edges):
    return build_index(sources, edges)


@pytest.fixture
def plain_index(sources):
    return build_index(sources)


@pytest.fixture
def rrf_dir(tmp_path: Path) -> Path:
    target = tmp_path / "rrf"
    target.mkdir()
    (target / "RXNCONSO.RRF").write_text("\n".join(CONSO_LINES) + "\n", encoding="utf-8")
    (target / "RXNREL.RRF").write_text("\n".join(REL_LINES) + "\n", encoding="utf-8")
    return target
