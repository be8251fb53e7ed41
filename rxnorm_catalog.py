"""RxNorm concept catalog: RRF parsing, concept typing and the inverted index."""

from __future__ import annotations

import re
import sys
from collections import Counter, defaultdict, deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

import numpy as np

from rxnorm_normalize import (
    LOW_SIGNAL,
    NormalizedText,
    NumericFeature,
    canonical_unit,
    drug_words,
    extract_bracket_brand,
    fold_text,
    normalize,
    tokenize,
)

CANONICAL_AUTHORITY = "RXNORM"
CANONICAL_LANGUAGE = "ENG"
SUPPRESSED_FLAGS: Set[str] = {"Y", "O", "E"}
DEFAULT_IDF = 1.0
RELATED_MAX_DEPTH = 2

# Product-level relations walked by ``CatalogIndex.related``. Dose-form
# relations (has_dose_form, dose_form_of) are left out so the walk never
# crosses a dose-form hub.
RELATED_RELAS: frozenset = frozenset(
    {
        "consists_of",
        "constitutes",
        "has_tradename",
        "tradename_of",
        "has_ingredient",
        "ingredient_of",
        "has_ingredients",
        "ingredients_of",
        "has_precise_ingredient",
        "precise_ingredient_of",
        "has_part",
        "part_of",
        "contains",
        "contained_in",
        "isa",
        "inverse_isa",
        "has_quantified_form",
        "quantified_form_of",
    }
)


class ConceptType(str, Enum):
    SCD = "SCD"
    SBD = "SBD"
    GPCK = "GPCK"
    BPCK = "BPCK"
    SCDC = "SCDC"
    SBDC = "SBDC"
    SCDF = "SCDF"
    SBDF = "SBDF"
    SCDG = "SCDG"
    SBDG = "SBDG"
    IN = "IN"
    PIN = "PIN"
    MIN = "MIN"
    BN = "BN"
    DF = "DF"
    DFG = "DFG"
    OTHER = "OTHER"

    @classmethod
    def parse(cls, value: str) -> "ConceptType":
        try:
            return cls(value.strip().upper())
        except ValueError:
            return cls.OTHER

    @property
    def weight(self) -> float:
        return TYPE_WEIGHTS[self]

    @property
    def priority(self) -> int:
        return TYPE_PRIORITY[self]

    @property
    def is_branded(self) -> bool:
        return self in BRANDED_TYPES

    @property
    def level(self) -> str:
        return TYPE_LEVELS[self]


# Scorer contribution per concept type (scaled by the tty weight).
TYPE_WEIGHTS: Mapping[ConceptType, float] = MappingProxyType(
    {
        ConceptType.SCD: 1.0,
        ConceptType.SBD: 1.0,
        ConceptType.GPCK: 0.9,
        ConceptType.BPCK: 0.9,
        ConceptType.SCDC: 0.7,
        ConceptType.SBDC: 0.7,
        ConceptType.IN: 0.5,
        ConceptType.PIN: 0.5,
        ConceptType.MIN: 0.5,
        ConceptType.BN: 0.5,
        ConceptType.SCDF: 0.4,
        ConceptType.SBDF: 0.4,
        ConceptType.SCDG: 0.1,
        ConceptType.SBDG: 0.1,
        ConceptType.DF: 0.1,
        ConceptType.DFG: 0.1,
        ConceptType.OTHER: 0.4,
    }
)

# Ranker tie-break: drug-level > component > ingredient/brand name > dose form.
TYPE_PRIORITY: Mapping[ConceptType, int] = MappingProxyType(
    {
        ConceptType.SCD: 3,
        ConceptType.SBD: 3,
        ConceptType.GPCK: 3,
        ConceptType.BPCK: 3,
        ConceptType.SCDC: 2,
        ConceptType.SBDC: 2,
        ConceptType.IN: 1,
        ConceptType.PIN: 1,
        ConceptType.MIN: 1,
        ConceptType.BN: 1,
        ConceptType.SCDF: 1,
        ConceptType.SBDF: 1,
        ConceptType.SCDG: 0,
        ConceptType.SBDG: 0,
        ConceptType.DF: 0,
        ConceptType.DFG: 0,
        ConceptType.OTHER: 0,
    }
)

BRANDED_TYPES: frozenset = frozenset(
    {
        ConceptType.SBD,
        ConceptType.SBDC,
        ConceptType.SBDF,
        ConceptType.SBDG,
        ConceptType.BPCK,
        ConceptType.BN,
    }
)

TYPE_LEVELS: Mapping[ConceptType, str] = MappingProxyType(
    {
        ConceptType.SCD: "clinical",
        ConceptType.GPCK: "clinical",
        ConceptType.SCDC: "clinical",
        ConceptType.SBD: "branded",
        ConceptType.BPCK: "branded",
        ConceptType.SBDC: "branded",
        ConceptType.SBDF: "branded",
        ConceptType.SBDG: "branded",
        ConceptType.BN: "branded",
        ConceptType.SCDF: "dose_form",
        ConceptType.SCDG: "dose_form",
        ConceptType.DF: "dose_form",
        ConceptType.DFG: "dose_form",
        ConceptType.IN: "ingredient",
        ConceptType.PIN: "ingredient",
        ConceptType.MIN: "ingredient",
        ConceptType.OTHER: "other",
    }
)

INGREDIENT_TYPES: frozenset = frozenset({ConceptType.IN, ConceptType.PIN, ConceptType.MIN})

# Shared by every product of an ingredient, brand or dose form. The relation
# walk may reach these but does not continue through them.
RELATED_HUB_TYPES: frozenset = INGREDIENT_TYPES | frozenset(
    {
        ConceptType.BN,
        ConceptType.DF,
        ConceptType.DFG,
        ConceptType.SCDF,
        ConceptType.SBDF,
        ConceptType.SCDG,
        ConceptType.SBDG,
    }
)

ROUTE_RULES: Tuple[Tuple[str, str], ...] = (
    ("gas for inhalation", "for Inhalation"),
    ("for inhalation", "for Inhalation"),
    ("oral", "Oral"),
    ("injection", "Injection"),
    ("injectable", "Injection"),
    ("topical", "Topical"),
    ("transdermal", "Transdermal"),
    ("inhalation", "Inhalation"),
)

FORM_RULES: Tuple[Tuple[str, str], ...] = (
    ("gas for inhalation", "Gas for Inhalation"),
    ("metered dose inhaler", "Metered Dose Inhaler"),
    ("dry powder inhaler", "Dry Powder Inhaler"),
    ("soft mist inhaler", "Soft Mist Inhaler"),
    ("prefilled syringe", "Prefilled Syringe"),
    ("auto-injector", "Auto-Injector"),
    ("pen injector", "Pen Injector"),
    ("cartridge", "Cartridge"),
    ("vial", "Vial"),
    ("injectable solution", "Injectable Solution"),
)

TRAILING_FORM_RULES: Tuple[Tuple[str, str], ...] = (
    ("tablet", "Tablet"),
    ("capsule", "Capsule"),
    ("suspension", "Suspension"),
    ("solution", "Solution"),
    ("cream", "Cream"),
    ("gel", "Gel"),
    ("lotion", "Lotion"),
    ("ointment", "Ointment"),
    ("system", "System"),
)

INJECTION_FORMS: Set[str] = {
    "Cartridge",
    "Prefilled Syringe",
    "Vial",
    "Auto-Injector",
    "Pen Injector",
    "Injectable Solution",
    "Injection",
}

INGREDIENT_STOP_WORDS: Set[str] = set(LOW_SIGNAL) | {"auto-injector", "ml", "mg", "g", "%"}
INGREDIENT_SPLIT_RE = re.compile(r"[/,+]")
PAREN_RE = re.compile(r"\([^)]*\)")


def log(message: str) -> None:
    print(message, file=sys.stderr)


class LoadError(ValueError):
    """A catalog source line that cannot be parsed."""


class CatalogError(ValueError):
    """Raised for invalid use of the catalog or its snapshot."""


@dataclass(frozen=True)
class ConceptSource:
    concept_id: str
    concept_type: str
    canonical_name: str
    authority: str = CANONICAL_AUTHORITY
    language: str = CANONICAL_LANGUAGE
    code: str = ""
    suppressed: bool = False


@dataclass(frozen=True)
class RelationEdge:
    src: str
    dst: str
    rela: str = ""


@dataclass
class LoadStats:
    scanned: int = 0
    kept: int = 0
    malformed: int = 0
    rejected: int = 0
    filtered: int = 0
    duplicates: int = 0

    def summary(self) -> str:
        return (
            f"scanned {self.scanned:,}, kept {self.kept:,}, malformed {self.malformed:,}, "
            f"rejected {self.rejected:,}, filtered {self.filtered:,}, "
            f"duplicates {self.duplicates:,}"
        )


def parse_rrf_line(line: str) -> Optional[ConceptSource]:
    """Parse one RXNCONSO line.

    Returns None for records from another authority or language, raises
    LoadError when the line is too short or misses a required column.
    """
    cols = line.rstrip("\r\n").split("|")
    if len(cols) < 15:
        raise LoadError(f"expected at least 15 columns, got {len(cols)}")

    concept_id = cols[0].strip()
    language = cols[1].strip() or CANONICAL_LANGUAGE
    authority = cols[11].strip() or CANONICAL_AUTHORITY
    tty = cols[12].strip()
    code = cols[13].strip()
    name = cols[14].strip()
    suppress = cols[16].strip() if len(cols) > 16 else ""

    if not concept_id or not tty or not name:
        raise LoadError("missing concept id, type or name")
    if authority != CANONICAL_AUTHORITY or language != CANONICAL_LANGUAGE:
        return None

    return ConceptSource(
        concept_id=concept_id,
        concept_type=tty,
        canonical_name=name,
        authority=authority,
        language=language,
        code=code,
        suppressed=suppress in SUPPRESSED_FLAGS,
    )


def iter_rrf_sources(
    lines: Iterable[str],
    type_filter: Optional[Set[str]] = None,
    stats: Optional[LoadStats] = None,
) -> Iterable[ConceptSource]:
    stats = stats if stats is not None else LoadStats()
    seen: Set[Tuple[str, str, str]] = set()
    for line in lines:
        if not line.strip():
            continue
        stats.scanned += 1
        if stats.scanned % 500000 == 0:
            log(f"[catalog] RXNCONSO lines scanned: {stats.scanned:,}")
        try:
            source = parse_rrf_line(line)
        except LoadError:
            stats.malformed += 1
            continue
        if source is None:
            stats.rejected += 1
            continue
        if type_filter and source.concept_type not in type_filter:
            stats.filtered += 1
            continue
        # Same string under another id or type is left to build_index to collapse.
        record = (source.concept_id, source.concept_type, source.canonical_name)
        if record in seen:
            stats.duplicates += 1
            continue
        seen.add(record)
        stats.kept += 1
        yield source


def load_rrf_sources(
    conso_path: Path, type_filter: Optional[Set[str]] = None
) -> Tuple[List[ConceptSource], LoadStats]:
    if not conso_path.exists():
        raise FileNotFoundError(f"Missing RXNCONSO: {conso_path}")
    stats = LoadStats()
    with conso_path.open("r", encoding="utf-8", errors="ignore") as handle:
        sources = list(iter_rrf_sources(handle, type_filter=type_filter, stats=stats))
    log(f"[catalog] RXNCONSO {stats.summary()}")
    return sources, stats


def parse_rrf_relation_line(line: str) -> Optional[RelationEdge]:
    cols = line.rstrip("\r\n").split("|")
    if len(cols) < 15:
        raise LoadError(f"expected at least 15 columns, got {len(cols)}")

    src = cols[0].strip()
    dst = cols[4].strip()
    rela = cols[7].strip()
    authority = cols[10].strip()
    suppress = cols[14].strip()

    if authority != CANONICAL_AUTHORITY or suppress in SUPPRESSED_FLAGS:
        return None
    if not src or not dst or src == dst:
        return None
    return RelationEdge(src=src, dst=dst, rela=rela)


def load_rrf_relations(
    rel_path: Path, known_ids: Optional[Set[str]] = None
) -> List[RelationEdge]:
    if not rel_path.exists():
        raise FileNotFoundError(f"Missing RXNREL: {rel_path}")
    edges: List[RelationEdge] = []
    malformed = 0
    with rel_path.open("r", encoding="utf-8", errors="ignore") as handle:
        for line_count, line in enumerate(handle, start=1):
            if line_count % 500000 == 0:
                log(f"[catalog] RXNREL lines scanned: {line_count:,}")
            if not line.strip():
                continue
            try:
                edge = parse_rrf_relation_line(line)
            except LoadError:
                malformed += 1
                continue
            if edge is None:
                continue
            if known_ids is not None and (edge.src not in known_ids or edge.dst not in known_ids):
                continue
            edges.append(edge)
    log(f"[catalog] RXNREL kept edges: {len(edges):,}, malformed lines: {malformed:,}")
    return edges


def infer_route_and_form(name: str) -> Tuple[Optional[str], Optional[str]]:
    lower = name.lower()

    route: Optional[str] = None
    for needle, label in ROUTE_RULES:
        if needle in lower:
            route = label
            break

    form: Optional[str] = None
    for needle, label in FORM_RULES:
        if needle in lower:
            form = label
            break
    if form is None:
        if "injection" in lower and "solution" not in lower:
            form = "Injection"
        elif "oral tablet" in lower or lower.endswith(" tablet"):
            form = "Oral Tablet"
        else:
            for needle, label in TRAILING_FORM_RULES:
                if needle in lower:
                    form = label
                    break

    if route is None and form in INJECTION_FORMS:
        route = "Injection"
    return route, form


def extract_ingredients(name: str) -> Tuple[str, ...]:
    """Whitespace runs of the raw name that are not forms, units or numbers."""
    working = re.sub(r"\[[^\]]*\]", " ", name)
    working = PAREN_RE.sub(" ", working)
    working = INGREDIENT_SPLIT_RE.sub(" ", working)

    ingredients: List[str] = []
    current: List[str] = []
    for tok in fold_text(working).split():
        if tok in INGREDIENT_STOP_WORDS or canonical_unit(tok) or tok[0].isdigit():
            if current:
                ingredients.append(" ".join(current))
                current = []
            continue
        current.append(tok)
    if current:
        ingredients.append(" ".join(current))

    unique: List[str] = []
    for ingredient in ingredients:
        if ingredient not in unique:
            unique.append(ingredient)
    return tuple(unique)


@dataclass(frozen=True)
class Concept:
    concept_id: str
    canonical_name: str
    concept_type: ConceptType
    route: Optional[str]
    form: Optional[str]
    ingredients: Tuple[str, ...]
    brand: Optional[str]
    tokens: Tuple[str, ...]
    numeric_features: Tuple[NumericFeature, ...]
    drug_words: Tuple[str, ...]
    suppressed: bool = False

    @property
    def normalized(self) -> NormalizedText:
        return NormalizedText(tokens=self.tokens, numeric_features=self.numeric_features)

    @property
    def key(self) -> str:
        return " ".join(self.tokens)

    def to_dict(self) -> Dict[str, object]:
        return {
            "rxcui": self.concept_id,
            "name": self.canonical_name,
            "tty": self.concept_type.value,
            "route": self.route,
            "form": self.form,
            "ingredients": list(self.ingredients),
            "brand": self.brand,
            "suppressed": self.suppressed,
        }


def make_concept(source: ConceptSource) -> Concept:
    concept_type = ConceptType.parse(source.concept_type)
    normalized = normalize(source.canonical_name)
    route, form = infer_route_and_form(source.canonical_name)
    brand = extract_bracket_brand(source.canonical_name)
    if brand is None and concept_type == ConceptType.BN:
        brand = source.canonical_name.strip()
    return Concept(
        concept_id=source.concept_id,
        canonical_name=source.canonical_name,
        concept_type=concept_type,
        route=route,
        form=form,
        ingredients=extract_ingredients(source.canonical_name),
        brand=brand,
        tokens=normalized.tokens,
        numeric_features=normalized.numeric_features,
        drug_words=drug_words(normalized.tokens),
        suppressed=source.suppressed,
    )


@dataclass(frozen=True)
class Posting:
    concept_id: str
    tf: int


@dataclass(frozen=True)
class ConceptCheck:
    concept_id: str
    exists: bool
    concept_type: Optional[ConceptType] = None
    canonical_name: Optional[str] = None
    suppressed: bool = False
    names: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, object]:
        return {
            "rxcui": self.concept_id,
            "exists": self.exists,
            "tty": self.concept_type.value if self.concept_type else None,
            "name": self.canonical_name,
            "suppressed": self.suppressed,
            "names": list(self.names),
        }


class CatalogIndex:
    """Read-only index over one catalog snapshot. Build a new instance to refresh."""

    def __init__(
        self,
        concepts: Dict[str, Concept],
        postings: Dict[str, Tuple[Posting, ...]],
        numeric_index: Dict[str, Tuple[str, ...]],
        idf: Dict[str, float],
        exact: Dict[str, str],
        names: Dict[str, Tuple[Tuple[str, ConceptType], ...]],
        neighbors: Dict[str, Tuple[str, ...]],
    ) -> None:
        self._concepts = MappingProxyType(concepts)
        self._postings = MappingProxyType(postings)
        self._numeric_index = MappingProxyType(numeric_index)
        self._idf = MappingProxyType(idf)
        self._exact = MappingProxyType(exact)
        self._names = MappingProxyType(names)
        self._neighbors = MappingProxyType(neighbors)

    def __len__(self) -> int:
        return len(self._concepts)

    def __contains__(self, concept_id: object) -> bool:
        return concept_id in self._concepts

    def __iter__(self):
        return iter(self._concepts.values())

    @property
    def postings(self) -> Mapping[str, Tuple[Posting, ...]]:
        return self._postings

    @property
    def numeric_index(self) -> Mapping[str, Tuple[str, ...]]:
        return self._numeric_index

    @property
    def has_relations(self) -> bool:
        return bool(self._neighbors)

    def get(self, concept_id: str) -> Optional[Concept]:
        return self._concepts.get(concept_id)

    def idf(self, token: str) -> float:
        return self._idf.get(token, DEFAULT_IDF)

    def recall(self, query: NormalizedText) -> Set[str]:
        candidates: Set[str] = set()
        for token in query.tokens:
            for posting in self._postings.get(token, ()):
                candidates.add(posting.concept_id)
        for key in query.numeric_keys:
            candidates.update(self._numeric_index.get(key, ()))
        return candidates

    def exact_match(self, query: NormalizedText) -> Optional[Concept]:
        concept_id = self._exact.get(query.render())
        if concept_id is None:
            return None
        return self._concepts[concept_id]

    def aliases(self, concept_id: str) -> Tuple[str, ...]:
        concept = self._concepts.get(concept_id)
        primary = concept.canonical_name if concept else None
        return tuple(name for name, _ in self._names.get(concept_id, ()) if name != primary)

    def check(self, concept_id: str) -> ConceptCheck:
        concept_id = concept_id.strip()
        concept = self._concepts.get(concept_id)
        names = tuple(name for name, _ in self._names.get(concept_id, ()))
        if concept is None and not names:
            return ConceptCheck(concept_id=concept_id, exists=False)
        if concept is None:
            # Record collapsed into another concept with the same normalized name.
            first_name, first_type = self._names[concept_id][0]
            return ConceptCheck(
                concept_id=concept_id,
                exists=True,
                concept_type=first_type,
                canonical_name=first_name,
                names=names,
            )
        return ConceptCheck(
            concept_id=concept_id,
            exists=True,
            concept_type=concept.concept_type,
            canonical_name=concept.canonical_name,
            suppressed=concept.suppressed,
            names=names,
        )

    def ingredient_concepts(self, term: str) -> List[Concept]:
        """Ingredient-level concepts whose drug words cover the words of ``term``."""
        query = normalize(term)
        wanted = set(drug_words(query.tokens))
        if not wanted:
            return []
        hits = []
        for concept_id in sorted(self.recall(query)):
            concept = self._concepts[concept_id]
            if concept.concept_type not in INGREDIENT_TYPES:
                continue
            if wanted <= set(concept.drug_words):
                hits.append(concept)
        return hits

    def related(
        self, concept_id: str, types: Optional[Set[ConceptType]] = None
    ) -> List[Concept]:
        """Concepts linked to ``concept_id``, nearest first, filtered by type.

        Uses the relation graph when one was loaded, otherwise concepts that
        share the same drug words, strengths, route and form.
        """
        origin = self._concepts.get(concept_id)
        if origin is None:
            return []

        if self._neighbors:
            found = self._related_by_graph(concept_id)
        else:
            found = self._related_by_signature(origin)

        related = []
        for other_id in found:
            concept = self._concepts.get(other_id)
            if concept is None:
                continue
            if types is not None and concept.concept_type not in types:
                continue
            related.append(concept)
        return related

    def _related_by_graph(self, concept_id: str) -> List[str]:
        seen = {concept_id}
        ordered: List[str] = []
        frontier = deque([(concept_id, 0)])
        while frontier:
            node, depth = frontier.popleft()
            if depth >= RELATED_MAX_DEPTH:
                continue
            if depth > 0 and self._concepts[node].concept_type in RELATED_HUB_TYPES:
                continue
            for neighbor in self._neighbors.get(node, ()):
                if neighbor in seen:
                    continue
                seen.add(neighbor)
                ordered.append(neighbor)
                frontier.append((neighbor, depth + 1))
        return ordered

    def _related_by_signature(self, origin: Concept) -> List[str]:
        signature = concept_signature(origin)
        matches = []
        for token in signature[0]:
            for posting in self._postings.get(token, ()):
                if posting.concept_id == origin.concept_id or posting.concept_id in matches:
                    continue
                if concept_signature(self._concepts[posting.concept_id]) == signature:
                    matches.append(posting.concept_id)
        return sorted(matches)


def concept_signature(
    concept: Concept,
) -> Tuple[frozenset, frozenset, Optional[str], Optional[str]]:
    brand_tokens = set(normalize(concept.brand).tokens) if concept.brand else set()
    words = frozenset(word for word in concept.drug_words if word not in brand_tokens)
    keys = frozenset(feature.key for feature in concept.numeric_features)
    return words, keys, concept.route, concept.form


def build_index(
    sources: Iterable[ConceptSource], edges: Sequence[RelationEdge] = ()
) -> CatalogIndex:
    by_id: Dict[str, Concept] = {}
    names: Dict[str, List[Tuple[str, ConceptType]]] = defaultdict(list)

    for source in sources:
        concept = make_concept(source)
        names[source.concept_id].append((source.canonical_name, concept.concept_type))
        existing = by_id.get(source.concept_id)
        if existing is None or concept.concept_type.priority > existing.concept_type.priority:
            by_id[source.concept_id] = concept

    # Identical normalized names collapse onto the strongest concept type.
    concepts: Dict[str, Concept] = {}
    exact: Dict[str, str] = {}
    for concept in by_id.values():
        holder_id = exact.get(concept.key)
        if holder_id is not None:
            holder = concepts[holder_id]
            if concept.concept_type.priority <= holder.concept_type.priority:
                continue
            del concepts[holder_id]
        exact[concept.key] = concept.concept_id
        concepts[concept.concept_id] = concept

    # Alternate names of a kept concept also resolve exactly, unless taken.
    for concept_id, records in names.items():
        if concept_id not in concepts:
            continue
        for name, _ in records:
            exact.setdefault(normalize(name).render(), concept_id)

    postings_lists: Dict[str, List[Posting]] = defaultdict(list)
    numeric_lists: Dict[str, List[str]] = defaultdict(list)
    for concept in concepts.values():
        counts = Counter(tokenize(concept.canonical_name))
        for token in concept.tokens:
            postings_lists[token].append(Posting(concept.concept_id, counts.get(token, 1)))
        for key in dict.fromkeys(feature.key for feature in concept.numeric_features):
            numeric_lists[key].append(concept.concept_id)

    token_order = list(postings_lists.keys())
    doc_freq = np.array([len(postings_lists[token]) for token in token_order], dtype=np.float64)
    total = float(len(concepts))
    idf_values = np.log((total + 1.0) / (doc_freq + 1.0)) + 1.0
    idf = {token: float(value) for token, value in zip(token_order, idf_values)}

    adjacency: Dict[str, List[str]] = defaultdict(list)
    for edge in edges:
        if edge.rela not in RELATED_RELAS:
            continue
        if edge.src not in concepts or edge.dst not in concepts:
            continue
        if edge.dst not in adjacency[edge.src]:
            adjacency[edge.src].append(edge.dst)
        if edge.src not in adjacency[edge.dst]:
            adjacency[edge.dst].append(edge.src)

    log(
        f"[catalog] indexed concepts: {len(concepts):,}, tokens: {len(idf):,}, "
        f"numeric keys: {len(numeric_lists):,}, related nodes: {len(adjacency):,}"
    )
    return CatalogIndex(
        concepts=concepts,
        postings={token: tuple(items) for token, items in postings_lists.items()},
        numeric_index={key: tuple(ids) for key, ids in numeric_lists.items()},
        idf=idf,
        exact=exact,
        names={concept_id: tuple(records) for concept_id, records in names.items()},
        neighbors={node: tuple(sorted(items)) for node, items in adjacency.items()},
    )
