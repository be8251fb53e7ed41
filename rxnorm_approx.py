"""Approximate matching of free-text drug strings against a CatalogIndex."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from rxnorm_catalog import CatalogIndex, Concept, ConceptType
from rxnorm_normalize import (
    NormalizedText,
    NumericFeature,
    detect_route_hint,
    drug_words,
    extract_bracket_brand,
    normalize,
)

DEFAULT_LIMIT = 10

# Form bonus for injection queries, first matching needle wins.
INJECTION_FORM_BONUS: Tuple[Tuple[str, float], ...] = (
    ("injection", 0.25),
    ("injectable solution", 0.20),
    ("cartridge", 0.15),
    ("syringe", 0.15),
    ("vial", 0.15),
    ("auto-injector", 0.15),
    ("pen injector", 0.15),
)


@dataclass(frozen=True)
class ScoringWeights:
    overlap: float = 0.25
    jaccard: float = 0.10
    edit: float = 0.10
    order: float = 0.05
    order_cap: float = 0.2
    numeric: float = 0.35
    tty: float = 0.10
    brand: float = 0.02
    numeric_penalty: float = 0.3
    strength_veto_ratio: float = 0.5

    @property
    def attainable(self) -> float:
        """Largest weighted sum a non-exact candidate can reach before bonuses."""
        return (
            self.overlap
            + self.jaccard
            + self.edit
            + self.order * self.order_cap
            + self.numeric
            + self.tty
        )


DEFAULT_WEIGHTS = ScoringWeights()


@dataclass(frozen=True)
class QueryContext:
    text: str
    normalized: NormalizedText
    drug_words: Tuple[str, ...]
    route_hint: Optional[str]
    brand: Optional[str]

    @property
    def tokens(self) -> Tuple[str, ...]:
        return self.normalized.tokens


@dataclass(frozen=True)
class MatchResult:
    concept_id: str
    canonical_name: str
    score: float
    concept_type: ConceptType

    def to_dict(self) -> Dict[str, object]:
        return {
            "rxcui": self.concept_id,
            "name": self.canonical_name,
            "score": round(self.score, 3),
            "tty": self.concept_type.value,
        }


@dataclass(frozen=True)
class NumericAlignment:
    value: float
    vetoed: bool = False


def prepare_query(text: str) -> QueryContext:
    normalized = normalize(text)
    return QueryContext(
        text=text,
        normalized=normalized,
        drug_words=drug_words(normalized.tokens),
        route_hint=detect_route_hint(normalized.tokens),
        brand=extract_bracket_brand(text),
    )


@lru_cache(maxsize=65536)
def levenshtein(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a or not b:
        return max(len(a), len(b))

    target = np.fromiter((ord(ch) for ch in b), dtype=np.int64, count=len(b))
    offsets = np.arange(len(b) + 1, dtype=np.int64)
    previous = offsets.copy()
    row = np.empty(len(b) + 1, dtype=np.int64)
    for i, ch in enumerate(a, start=1):
        row[0] = i
        row[1:] = np.minimum(previous[:-1] + (target != ord(ch)), previous[1:] + 1)
        # Insertions chain left to right: row[j] = min_k<=j(row[k] + j - k).
        previous = np.minimum.accumulate(row - offsets) + offsets
    return int(previous[-1])


def edit_similarity(a: str, b: str) -> float:
    return 1.0 - levenshtein(a, b) / max(len(a), len(b), 1)


def token_edit_similarity(query: Sequence[str], candidate: Sequence[str]) -> float:
    if not query or not candidate:
        return 0.0
    best = [max(edit_similarity(q, c) for c in candidate) for q in query]
    return float(np.mean(best))


def jaccard(query: Sequence[str], candidate: Sequence[str]) -> float:
    left, right = set(query), set(candidate)
    union = len(left | right)
    return len(left & right) / union if union else 0.0


def weighted_overlap(index: CatalogIndex, query: Sequence[str], candidate: Sequence[str]) -> float:
    candidate_set = set(candidate)
    num = 0.0
    den = 0.0
    for token in dict.fromkeys(query):
        weight = index.idf(token)
        den += weight
        if token in candidate_set:
            num += weight
    return num / den if den > 0 else 0.0


def order_ratio(query: Sequence[str], candidate: Sequence[str]) -> float:
    """Share of query tokens found in order along the candidate."""
    i = j = matches = 0
    while i < len(query) and j < len(candidate):
        if query[i] == candidate[j]:
            matches += 1
            i += 1
        j += 1
    return matches / max(1, len(query))


def strength_similarity(a: float, b: float) -> Tuple[float, float]:
    """Return (similarity, ratio) for two same-kind strengths."""
    if a == 0 and b == 0:
        return 1.0, 1.0
    if a == 0 or b == 0:
        return 0.0, 0.0
    ratio = min(a, b) / max(a, b)
    if ratio >= 0.95:
        return 1.0, ratio
    if ratio >= 0.5:
        return 0.6 * ratio, ratio
    return 0.2 * ratio, ratio


def numeric_alignment(
    query: Sequence[NumericFeature],
    candidate: Sequence[NumericFeature],
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> NumericAlignment:
    if not query:
        return NumericAlignment(0.0)

    total = 0.0
    matched = 0
    best_ratio: Optional[float] = None
    for feature in query:
        best = 0.0
        for other in candidate:
            if other.unit_kind != feature.unit_kind:
                continue
            similarity, ratio = strength_similarity(feature.value, other.value)
            best = max(best, similarity)
            best_ratio = ratio if best_ratio is None else max(best_ratio, ratio)
        if best > 0:
            total += best
            matched += 1

    if best_ratio is not None and best_ratio < weights.strength_veto_ratio:
        return NumericAlignment(0.0, vetoed=True)
    if matched == 0:
        return NumericAlignment(-weights.numeric_penalty)
    return NumericAlignment(total / len(query))


def route_compatible(route_hint: Optional[str], concept: Concept) -> bool:
    if not route_hint or not concept.route:
        return True
    declared = concept.route.lower()
    if route_hint == "for inhalation":
        return "inhalation" in declared
    return route_hint in declared


def injection_form_bonus(route_hint: Optional[str], concept: Concept) -> float:
    if route_hint != "injection" or not concept.form:
        return 0.0
    form = concept.form.lower()
    for needle, bonus in INJECTION_FORM_BONUS:
        if needle in form:
            return bonus
    return 0.0


def score_candidate(
    index: CatalogIndex,
    query: QueryContext,
    concept: Concept,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> float:
    if query.drug_words and not set(query.drug_words) & set(concept.drug_words):
        return 0.0
    if not route_compatible(query.route_hint, concept):
        return 0.0

    alignment = numeric_alignment(
        query.normalized.numeric_features, concept.numeric_features, weights
    )
    if alignment.vetoed:
        return 0.0

    tokens = query.tokens
    base = (
        weights.overlap * weighted_overlap(index, tokens, concept.tokens)
        + weights.jaccard * jaccard(tokens, concept.tokens)
        + weights.edit * token_edit_similarity(tokens, concept.tokens)
        + weights.order * min(order_ratio(tokens, concept.tokens), weights.order_cap)
        + weights.numeric * alignment.value
        + weights.tty * concept.concept_type.weight
    )
    score = base / weights.attainable
    if concept.concept_type.is_branded:
        score += weights.brand
    score += injection_form_bonus(query.route_hint, concept)
    return min(1.0, max(0.0, score))


def score_candidates(
    index: CatalogIndex,
    query: QueryContext,
    candidate_ids: Iterable[str],
    weights: ScoringWeights = DEFAULT_WEIGHTS,
    workers: Optional[int] = None,
) -> Dict[str, float]:
    ordered = sorted(candidate_ids)
    concepts = [index.get(concept_id) for concept_id in ordered]

    def _score(concept: Optional[Concept]) -> float:
        if concept is None:
            return 0.0
        return score_candidate(index, query, concept, weights)

    if workers and workers > 1 and len(concepts) > 1:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            scores = list(executor.map(_score, concepts))
    else:
        scores = [_score(concept) for concept in concepts]

    return {concept_id: score for concept_id, score in zip(ordered, scores) if score > 0}


def rank_matches(index: CatalogIndex, scores: Mapping[str, float]) -> List[MatchResult]:
    results = []
    for concept_id, score in scores.items():
        concept = index.get(concept_id)
        if concept is None:
            continue
        results.append(
            MatchResult(
                concept_id=concept_id,
                canonical_name=concept.canonical_name,
                score=score,
                concept_type=concept.concept_type,
            )
        )
    results.sort(
        key=lambda item: (
            -item.score,
            -item.concept_type.priority,
            len(item.canonical_name),
            item.concept_id,
        )
    )
    return results


def apply_brand_priority(
    index: CatalogIndex, results: Sequence[MatchResult], brand: str
) -> List[MatchResult]:
    """Exact brand first, then names containing the brand; order kept otherwise."""
    wanted = brand.strip().lower()
    if not wanted:
        return list(results)

    def tier(item: MatchResult) -> int:
        concept = index.get(item.concept_id)
        if concept is not None and (concept.brand or "").strip().lower() == wanted:
            return 0
        if wanted in item.canonical_name.lower():
            return 1
        return 2

    return sorted(results, key=tier)


def approximate_match(
    index: CatalogIndex,
    text: str,
    limit: int = DEFAULT_LIMIT,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
    workers: Optional[int] = None,
) -> List[MatchResult]:
    query = prepare_query(text)
    exact = index.exact_match(query.normalized)

    scores = score_candidates(index, query, index.recall(query.normalized), weights, workers)
    if exact is not None:
        scores.pop(exact.concept_id, None)

    ranked = rank_matches(index, scores)
    if query.brand and len(ranked) > 1:
        ranked = apply_brand_priority(index, ranked, query.brand)

    if exact is not None:
        ranked.insert(
            0,
            MatchResult(
                concept_id=exact.concept_id,
                canonical_name=exact.canonical_name,
                score=1.0,
                concept_type=exact.concept_type,
            ),
        )
    return ranked[: max(0, limit)]
