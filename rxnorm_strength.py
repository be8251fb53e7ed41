"""Strength parsing and unit-normalized comparison."""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple

from rxnorm_normalize import NumericFeature, extract_numeric_features, normalize, tokenize

# Relative difference -> match level. Empirical bands, kept as tunables.
STRENGTH_BANDS: Tuple[Tuple[float, float], ...] = (
    (0.01, 1.0),
    (0.10, 0.5),
    (0.20, 0.3),
)
NO_EXPECTED_STRENGTH = 1.0
TEXT_CONTAINED_STRENGTH = 1.0


def parse_strength(value: Optional[str]) -> Tuple[NumericFeature, ...]:
    """Numeric features of a strength string ("500 mg", "1 G", "5 mg/ml").

    Weights come back in MG, volumes are folded into per-ML
    concentrations and international units are reported as UNIT.
    """
    if not value:
        return ()
    # Undeduplicated tokens keep the unit of every component ("5 MG / 20 MG").
    return extract_numeric_features(tokenize(value))


def relative_difference(expected: float, actual: float) -> float:
    if expected == actual:
        return 0.0
    scale = max(abs(expected), abs(actual))
    return abs(expected - actual) / scale


def band_for(difference: float, bands: Sequence[Tuple[float, float]] = STRENGTH_BANDS) -> float:
    for limit, level in bands:
        if difference <= limit:
            return level
    return 0.0


def compare_features(
    expected: Sequence[NumericFeature],
    actual: Sequence[NumericFeature],
    bands: Sequence[Tuple[float, float]] = STRENGTH_BANDS,
) -> float:
    """Worst per-component match: every expected strength needs a same-unit partner."""
    by_kind: Dict[str, List[float]] = {}
    for feature in actual:
        by_kind.setdefault(feature.unit_kind, []).append(feature.value)

    levels = []
    for feature in expected:
        candidates = by_kind.get(feature.unit_kind)
        if not candidates:
            levels.append(0.0)
            continue
        best = min(relative_difference(feature.value, value) for value in candidates)
        levels.append(band_for(best, bands))
    return min(levels) if levels else 0.0


def strength_match(
    expected: Optional[str],
    concept_name: str,
    concept_features: Optional[Sequence[NumericFeature]] = None,
    bands: Sequence[Tuple[float, float]] = STRENGTH_BANDS,
) -> float:
    if not expected or not expected.strip():
        return NO_EXPECTED_STRENGTH

    wanted = parse_strength(expected)
    if concept_features is None:
        concept_features = normalize(concept_name).numeric_features
    if wanted:
        return compare_features(wanted, concept_features, bands)

    # Unparseable strength: fall back to token containment.
    expected_tokens = normalize(expected).tokens
    name_tokens = set(normalize(concept_name).tokens)
    if expected_tokens and all(token in name_tokens for token in expected_tokens):
        return TEXT_CONTAINED_STRENGTH
    return 0.0


def format_features(features: Sequence[NumericFeature]) -> str:
    return ", ".join(feature.key.replace("|", " ") for feature in features)
