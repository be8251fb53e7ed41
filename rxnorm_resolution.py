"""Resolve structured medication attributes to generic and branded RxNorm concepts."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import (
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Set,
    Tuple,
)

from rxnorm_approx import (
    DEFAULT_WEIGHTS,
    ScoringWeights,
    approximate_match,
    prepare_query,
    score_candidate,
)
from rxnorm_catalog import (
    INGREDIENT_TYPES,
    CatalogIndex,
    Concept,
    ConceptType,
    infer_route_and_form,
    log,
)
from rxnorm_normalize import drug_words, fold_text, normalize
from rxnorm_strength import STRENGTH_BANDS, format_features, strength_match

ACCEPTANCE_THRESHOLD = 70.0
VERIFY_TOP_N = 5
CANDIDATE_LIMIT = 20
SYNONYM_MIN_CANDIDATES = 3
SYNONYM_MAX_VARIANTS = 5
SYNONYM_DISCOUNT = 0.9
INGREDIENT_FALLBACK_SCORE = 0.6
VALIDITY_BONUS = 5.0
BRAND_BOOST = 1.2
CLINICAL_DEMOTION = 0.8
INGREDIENT_DEMOTION = 0.7
DEFAULT_TIMEOUT = 5.0
DEFAULT_MAX_CONCURRENCY = 4

BRANDED_PROFILE: Mapping[str, float] = MappingProxyType(
    {
        "brand": 0.35,
        "ingredient": 0.30,
        "form": 0.15,
        "strength": 0.10,
        "route": 0.05,
        "matcher": 0.05,
    }
)

GENERIC_PROFILE: Mapping[str, float] = MappingProxyType(
    {
        "ingredient": 0.40,
        "strength": 0.25,
        "form": 0.15,
        "route": 0.10,
        "matcher": 0.10,
    }
)

# Checked in order; injection and inhaler words must win over "solution".
FORM_GROUPS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("injection", ("injection", "injectable", "syringe", "cartridge", "vial", "injector")),
    ("inhaler", ("inhaler", "inhalation", "aerosol")),
    ("patch", ("patch", "transdermal")),
    ("topical", ("cream", "ointment", "gel", "lotion")),
    ("tablet", ("tablet",)),
    ("capsule", ("capsule",)),
    ("oral liquid", ("solution", "suspension", "syrup", "elixir")),
)

ROUTE_WORDS: Set[str] = {
    "oral",
    "topical",
    "nasal",
    "ophthalmic",
    "otic",
    "rectal",
    "vaginal",
    "sublingual",
}

SHORT_FORMS: Dict[str, str] = {
    "tablet": "tab",
    "capsule": "cap",
    "injection": "inj",
    "solution": "soln",
    "suspension": "susp",
    "ointment": "oint",
}

CLINICAL_TARGETS: Tuple[ConceptType, ...] = (ConceptType.SCD, ConceptType.GPCK, ConceptType.SCDC)
BRANDED_TARGETS: Tuple[ConceptType, ...] = (ConceptType.SBD, ConceptType.BPCK, ConceptType.SBDC)


class CollaboratorUnavailable(RuntimeError):
    """An external collaborator failed or timed out."""


class MatchStatus(str, Enum):
    EXACT = "exact"
    BRAND_EQUIVALENT = "brand-equivalent"
    PARTIAL = "partial"


def _optional_text(payload: Mapping[str, object], key: str) -> Optional[str]:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string, got {type(value).__name__}")
    value = value.strip()
    return value or None


@dataclass(frozen=True)
class StructuredAttributes:
    ingredient: str
    strength: Optional[str] = None
    form: Optional[str] = None
    brand: Optional[str] = None
    route: Optional[str] = None

    FIELDS = ("ingredient", "strength", "form", "brand", "route")

    @property
    def has_brand(self) -> bool:
        return bool(self.brand)

    @classmethod
    def from_payload(cls, payload: object) -> "StructuredAttributes":
        if not isinstance(payload, dict):
            raise ValueError("attributes must be an object")
        unknown = sorted(set(payload) - set(cls.FIELDS))
        if unknown:
            raise ValueError(f"unexpected attribute fields: {', '.join(map(str, unknown))}")
        values = {key: _optional_text(payload, key) for key in cls.FIELDS}
        if not values["ingredient"]:
            raise ValueError("ingredient is required")
        return cls(**values)

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {key: getattr(self, key) for key in self.FIELDS}


@dataclass(frozen=True)
class ValidityInfo:
    active: bool
    concept_type: Optional[str] = None
    canonical_name: Optional[str] = None
    synonyms: Tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, payload: object) -> "ValidityInfo":
        if not isinstance(payload, dict):
            raise ValueError("validity payload must be an object")
        active = payload.get("active")
        if not isinstance(active, bool):
            raise ValueError("active must be a boolean")
        synonyms = payload.get("synonyms") or []
        if not isinstance(synonyms, list) or not all(isinstance(s, str) for s in synonyms):
            raise ValueError("synonyms must be a list of strings")
        return cls(
            active=active,
            concept_type=_optional_text(payload, "concept_type"),
            canonical_name=_optional_text(payload, "canonical_name"),
            synonyms=tuple(s.strip() for s in synonyms if s.strip()),
        )


class ValidityChecker(Protocol):
    async def check_validity(self, concept_id: str) -> ValidityInfo:
        ...


class SynonymExpander(Protocol):
    async def expand(self, attributes: StructuredAttributes) -> List[str]:
        ...


class AttributeNormalizer(Protocol):
    async def normalize_attributes(self, raw_text: str) -> StructuredAttributes:
        ...


class CatalogValidityChecker:
    """Validity collaborator backed by the catalog's own suppress flags."""

    def __init__(self, index: CatalogIndex) -> None:
        self.index = index

    async def check_validity(self, concept_id: str) -> ValidityInfo:
        check = self.index.check(concept_id)
        if not check.exists:
            return ValidityInfo(active=False)
        return ValidityInfo(
            active=not check.suppressed,
            concept_type=check.concept_type.value if check.concept_type else None,
            canonical_name=check.canonical_name,
            synonyms=tuple(name for name in check.names if name != check.canonical_name),
        )


class TemplateSynonymExpander:
    """Rewrites the attributes into a few alternate query strings."""

    async def expand(self, attributes: StructuredAttributes) -> List[str]:
        ingredient = attributes.ingredient
        strength = attributes.strength or ""
        form = attributes.form or ""
        short_form = " ".join(SHORT_FORMS.get(word, word) for word in form.lower().split())

        variants = [
            _join(ingredient, strength, short_form),
            _join(attributes.brand or "", ingredient, strength, form) if attributes.brand else "",
            _join(ingredient, strength),
            _join(ingredient, form),
            ingredient,
        ]
        return _unique([variant for variant in variants if variant])


def _join(*parts: str) -> str:
    return " ".join(part.strip() for part in parts if part and part.strip())


def _unique(values: Sequence[str]) -> List[str]:
    seen: Set[str] = set()
    ordered = []
    for value in values:
        key = value.lower()
        if key in seen:
            continue
        seen.add(key)
        ordered.append(value)
    return ordered


def render_query(attributes: StructuredAttributes, with_brand: bool = True) -> str:
    text = _join(attributes.ingredient, attributes.strength or "", attributes.form or "")
    if with_brand and attributes.brand:
        text = f"{text} [{attributes.brand}]"
    return text


def build_search_terms(attributes: StructuredAttributes) -> List[str]:
    """Primary query first, then brand-less and Oral-toggled variants."""
    forms: List[str] = [attributes.form or ""]
    if attributes.form:
        words = attributes.form.split()
        if any(word.lower() == "oral" for word in words):
            forms.append(" ".join(word for word in words if word.lower() != "oral"))
        elif form_group(attributes.form) in {"tablet", "capsule", "oral liquid"}:
            forms.append(f"Oral {attributes.form}")

    terms = []
    for with_brand in (True, False):
        for form in forms:
            variant = StructuredAttributes(
                ingredient=attributes.ingredient,
                strength=attributes.strength,
                form=form or None,
                brand=attributes.brand,
                route=attributes.route,
            )
            terms.append(render_query(variant, with_brand=with_brand))
    return _unique(terms)


def canonical_form(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    tokens = [tok for tok in normalize(text).tokens if tok not in ROUTE_WORDS]
    return " ".join(tokens) or None


def form_group(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    tokens = set(normalize(text).tokens)
    for group, keywords in FORM_GROUPS:
        if any(keyword in tokens for keyword in keywords):
            return group
    return None


def ingredient_match(
    attributes: StructuredAttributes,
    concept: Concept,
    synonyms: Sequence[str] = (),
) -> float:
    wanted = normalize(attributes.ingredient)
    wanted_words = set(drug_words(wanted.tokens))
    if not wanted_words:
        return 0.0

    for ingredient in concept.ingredients:
        if set(drug_words(normalize(ingredient).tokens)) == wanted_words:
            return 1.0
    brand_tokens = set(normalize(concept.brand).tokens) if concept.brand else set()
    concept_words = set(concept.drug_words) - brand_tokens
    if concept_words == wanted_words:
        return 1.0

    for synonym in synonyms:
        if wanted_words <= set(normalize(synonym).tokens):
            return 0.5

    if fold_text(attributes.ingredient).strip() in fold_text(concept.canonical_name):
        return 0.3
    if wanted_words & set(concept.drug_words):
        return 0.3
    return 0.0


def form_match(attributes: StructuredAttributes, concept: Concept) -> float:
    if not attributes.form:
        return 1.0
    if concept.form and canonical_form(attributes.form) == canonical_form(concept.form):
        return 1.0
    wanted_group = form_group(attributes.form)
    concept_group = form_group(concept.form or concept.canonical_name)
    if wanted_group is not None and wanted_group == concept_group:
        return 0.5
    return 0.0


def route_match(attributes: StructuredAttributes, concept: Concept) -> float:
    wanted = attributes.route
    if not wanted and attributes.form:
        wanted, _ = infer_route_and_form(attributes.form)
    if not wanted or not concept.route:
        return 0.5
    wanted = wanted.strip().lower()
    declared = concept.route.lower()
    if wanted == declared:
        return 1.0
    if wanted in declared or declared in wanted:
        return 0.5
    return 0.0


def brand_match(
    attributes: StructuredAttributes, concept: Concept, synonyms: Sequence[str] = ()
) -> float:
    if not attributes.brand:
        return 0.0
    wanted = attributes.brand.strip().lower()
    if concept.brand and concept.brand.strip().lower() == wanted:
        return 1.0
    if wanted in concept.canonical_name.lower():
        return 0.5
    if any(wanted in synonym.lower() for synonym in synonyms):
        return 0.5
    return 0.0


@dataclass(frozen=True)
class ResolutionConfig:
    acceptance_threshold: float = ACCEPTANCE_THRESHOLD
    verify_top_n: int = VERIFY_TOP_N
    candidate_limit: int = CANDIDATE_LIMIT
    synonym_min_candidates: int = SYNONYM_MIN_CANDIDATES
    synonym_max_variants: int = SYNONYM_MAX_VARIANTS
    synonym_discount: float = SYNONYM_DISCOUNT
    ingredient_fallback_score: float = INGREDIENT_FALLBACK_SCORE
    validity_bonus: float = VALIDITY_BONUS
    brand_boost: float = BRAND_BOOST
    clinical_demotion: float = CLINICAL_DEMOTION
    ingredient_demotion: float = INGREDIENT_DEMOTION
    strength_bands: Tuple[Tuple[float, float], ...] = STRENGTH_BANDS
    timeout: float = DEFAULT_TIMEOUT
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    weights: ScoringWeights = DEFAULT_WEIGHTS
    workers: Optional[int] = None


DEFAULT_CONFIG = ResolutionConfig()


def type_multiplier(
    concept_type: ConceptType, has_brand: bool, config: ResolutionConfig = DEFAULT_CONFIG
) -> float:
    level = concept_type.level
    if level == "ingredient":
        return config.ingredient_demotion
    if level == "branded":
        return config.brand_boost if has_brand else config.clinical_demotion
    if level in {"clinical", "dose_form"}:
        return config.clinical_demotion if has_brand else config.brand_boost
    return 1.0


@dataclass
class Candidate:
    concept: Concept
    score: float
    tier: str


@dataclass(frozen=True)
class VerificationResult:
    concept_id: str
    profile: str
    ingredient_match: float
    strength_match: float
    form_match: float
    brand_match: float
    route_match: float
    matcher_score: float
    type_multiplier: float
    concept_validity_bonus: float
    assurity: float
    details: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, object]:
        return {
            "rxcui": self.concept_id,
            "profile": self.profile,
            "ingredient_match": self.ingredient_match,
            "strength_match": self.strength_match,
            "form_match": self.form_match,
            "brand_match": self.brand_match,
            "route_match": self.route_match,
            "matcher_score": round(self.matcher_score, 3),
            "type_multiplier": self.type_multiplier,
            "concept_validity_bonus": self.concept_validity_bonus,
            "assurity": round(self.assurity, 3),
            "details": list(self.details),
        }


def verify_candidate(
    attributes: StructuredAttributes,
    concept: Concept,
    matcher_score: float,
    validity: Optional[ValidityInfo],
    aliases: Sequence[str] = (),
    branded_profile: Optional[bool] = None,
    config: ResolutionConfig = DEFAULT_CONFIG,
) -> VerificationResult:
    use_branded = attributes.has_brand if branded_profile is None else branded_profile
    synonyms = list(aliases) + list(validity.synonyms if validity else ())

    fields = {
        "ingredient": ingredient_match(attributes, concept, synonyms),
        "strength": strength_match(
            attributes.strength,
            concept.canonical_name,
            concept.numeric_features,
            config.strength_bands,
        ),
        "form": form_match(attributes, concept),
        "brand": brand_match(attributes, concept, synonyms),
        "route": route_match(attributes, concept),
        "matcher": min(1.0, max(0.0, matcher_score)),
    }
    profile = BRANDED_PROFILE if use_branded else GENERIC_PROFILE
    weighted = sum(weight * fields[name] for name, weight in profile.items())
    multiplier = type_multiplier(concept.concept_type, use_branded, config)

    details: List[str] = []
    bonus = 0.0
    if validity is None:
        details.append("validity unknown")
    elif validity.active:
        bonus = config.validity_bonus
    else:
        details.append("concept inactive or suppressed")
    reported_type = validity.concept_type if validity else None
    if reported_type and reported_type != concept.concept_type.value:
        details.append(
            f"validity reports tty {reported_type}, catalog has {concept.concept_type.value}"
        )

    assurity = min(100.0, max(0.0, 100.0 * weighted * multiplier + bonus))
    return VerificationResult(
        concept_id=concept.concept_id,
        profile="branded" if use_branded else "generic",
        ingredient_match=fields["ingredient"],
        strength_match=fields["strength"],
        form_match=fields["form"],
        brand_match=fields["brand"],
        route_match=fields["route"],
        matcher_score=matcher_score,
        type_multiplier=multiplier,
        concept_validity_bonus=bonus,
        assurity=assurity,
        details=tuple(details),
    )


def describe_differences(
    attributes: StructuredAttributes, concept: Concept, result: VerificationResult
) -> List[str]:
    differences = []
    if result.ingredient_match < 1.0:
        found = ", ".join(concept.ingredients) or concept.canonical_name
        differences.append(f"ingredient: expected '{attributes.ingredient}', found '{found}'")
    if attributes.strength and result.strength_match < 1.0:
        found = format_features(concept.numeric_features) or "none"
        differences.append(f"strength: expected '{attributes.strength}', found '{found}'")
    if attributes.form and result.form_match < 1.0:
        differences.append(f"form: expected '{attributes.form}', found '{concept.form or 'none'}'")
    if attributes.brand and concept.concept_type.is_branded and result.brand_match < 1.0:
        found = concept.brand or "none"
        differences.append(f"brand: expected '{attributes.brand}', found '{found}'")
    chewable = "chewable" in concept.canonical_name.lower()
    if chewable and "chewable" not in (attributes.form or "").lower():
        differences.append("form: resolved concept is chewable")
    return differences


@dataclass(frozen=True)
class ResolvedConcept:
    concept: Concept
    assurity: float
    match_status: MatchStatus
    below_threshold: bool
    verification: VerificationResult
    differences: Tuple[str, ...] = ()

    @property
    def concept_id(self) -> str:
        return self.concept.concept_id

    @property
    def canonical_name(self) -> str:
        return self.concept.canonical_name

    @property
    def concept_type(self) -> ConceptType:
        return self.concept.concept_type

    def to_dict(self) -> Dict[str, object]:
        return {
            "rxcui": self.concept_id,
            "name": self.canonical_name,
            "tty": self.concept_type.value,
            "assurity": round(self.assurity, 3),
            "match_status": self.match_status.value,
            "below_threshold": self.below_threshold,
            "differences": list(self.differences),
            "verification": self.verification.to_dict(),
        }


@dataclass
class Resolution:
    attributes: StructuredAttributes
    generic: Optional[ResolvedConcept] = None
    branded: Optional[ResolvedConcept] = None
    selected: Optional[ResolvedConcept] = None
    ingredient_group: Optional[Concept] = None
    attempts_log: List[str] = field(default_factory=list)

    def note(self, message: str) -> None:
        self.attempts_log.append(message)
        log(f"[resolve] {message}")

    def to_dict(self) -> Dict[str, object]:
        return {
            "attributes": self.attributes.to_dict(),
            "generic": self.generic.to_dict() if self.generic else None,
            "branded": self.branded.to_dict() if self.branded else None,
            "selected": self.selected.to_dict() if self.selected else None,
            "ingredient_group": self.ingredient_group.to_dict() if self.ingredient_group else None,
            "attempts_log": list(self.attempts_log),
        }


async def call_collaborator(
    label: str, factory: Callable[[], Awaitable[object]], timeout: float
) -> object:
    try:
        return await asyncio.wait_for(factory(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise CollaboratorUnavailable(f"{label} timed out after {timeout:g}s") from exc
    except CollaboratorUnavailable:
        raise
    except Exception as exc:
        raise CollaboratorUnavailable(f"{label} failed: {exc}") from exc


async def check_validity_many(
    checker: Optional[ValidityChecker],
    concept_ids: Sequence[str],
    resolution: Resolution,
    config: ResolutionConfig = DEFAULT_CONFIG,
) -> Dict[str, Optional[ValidityInfo]]:
    ordered = sorted(set(concept_ids))
    if checker is None:
        return {concept_id: None for concept_id in ordered}

    semaphore = asyncio.Semaphore(max(1, config.max_concurrency))

    async def _one(concept_id: str) -> object:
        async with semaphore:
            return await call_collaborator(
                f"validity check {concept_id}",
                lambda: checker.check_validity(concept_id),
                config.timeout,
            )

    outcomes = await asyncio.gather(*(_one(cid) for cid in ordered), return_exceptions=True)

    merged: Dict[str, Optional[ValidityInfo]] = {}
    for concept_id, outcome in zip(ordered, outcomes):
        if isinstance(outcome, CollaboratorUnavailable):
            resolution.note(str(outcome))
            merged[concept_id] = None
        elif isinstance(outcome, BaseException):
            raise outcome
        elif not isinstance(outcome, ValidityInfo):
            resolution.note(f"validity check {concept_id} returned {type(outcome).__name__}")
            merged[concept_id] = None
        else:
            merged[concept_id] = outcome
    return merged


def _merge(pool: Dict[str, Candidate], candidate: Candidate) -> None:
    current = pool.get(candidate.concept.concept_id)
    if current is None or candidate.score > current.score:
        pool[candidate.concept.concept_id] = candidate


def _ordered(pool: Mapping[str, Candidate]) -> List[Candidate]:
    return sorted(
        pool.values(),
        key=lambda item: (
            -item.score,
            -item.concept.concept_type.priority,
            len(item.concept.canonical_name),
            item.concept.concept_id,
        ),
    )


def _approximate_tier(
    index: CatalogIndex,
    text: str,
    tier: str,
    discount: float,
    config: ResolutionConfig,
) -> List[Candidate]:
    matches = approximate_match(
        index, text, limit=config.candidate_limit, weights=config.weights, workers=config.workers
    )
    candidates = []
    for match in matches:
        concept = index.get(match.concept_id)
        if concept is not None:
            candidates.append(Candidate(concept=concept, score=match.score * discount, tier=tier))
    return candidates


async def gather_candidates(
    index: CatalogIndex,
    attributes: StructuredAttributes,
    resolution: Resolution,
    expander: Optional[SynonymExpander],
    config: ResolutionConfig = DEFAULT_CONFIG,
) -> List[Candidate]:
    terms = build_search_terms(attributes)

    pool: Dict[str, Candidate] = {}
    for term in terms:
        concept = index.exact_match(normalize(term))
        if concept is not None:
            _merge(pool, Candidate(concept=concept, score=1.0, tier="exact"))
    if pool:
        resolution.note(f"exact tier: {len(pool)} candidate(s) for {terms[0]!r}")
        return _ordered(pool)

    for candidate in _approximate_tier(index, terms[0], "approximate", 1.0, config):
        _merge(pool, candidate)
    resolution.note(f"approximate tier: {len(pool)} candidate(s) for {terms[0]!r}")

    for candidate in pool.values():
        candidate.score *= type_multiplier(
            candidate.concept.concept_type, attributes.has_brand, config
        )

    if len(pool) < config.synonym_min_candidates:
        variants: List[str] = []
        if expander is None:
            resolution.note("synonym tier skipped: no expander")
        else:
            try:
                expanded = await call_collaborator(
                    "synonym expansion", lambda: expander.expand(attributes), config.timeout
                )
                variants = [v for v in list(expanded or []) if isinstance(v, str) and v.strip()]
            except CollaboratorUnavailable as exc:
                resolution.note(str(exc))
        variants = [v for v in _unique(variants) if v.lower() != terms[0].lower()]
        variants = variants[: config.synonym_max_variants]
        before = len(pool)
        for variant in variants:
            for candidate in _approximate_tier(
                index, variant, "synonym", config.synonym_discount, config
            ):
                candidate.score *= type_multiplier(
                    candidate.concept.concept_type, attributes.has_brand, config
                )
                _merge(pool, candidate)
        if variants:
            resolution.note(
                f"synonym tier: {len(variants)} variant(s), {len(pool) - before} new candidate(s)"
            )

    if not pool:
        for concept in index.ingredient_concepts(attributes.ingredient):
            _merge(
                pool,
                Candidate(
                    concept=concept, score=config.ingredient_fallback_score, tier="ingredient"
                ),
            )
        resolution.note(f"ingredient tier: {len(pool)} candidate(s) for {attributes.ingredient!r}")

    return _ordered(pool)


def classify(
    verification: VerificationResult,
    attributes: StructuredAttributes,
    concept: Concept,
    tier: str,
    via_related: bool,
) -> MatchStatus:
    if tier == "exact" and not via_related:
        return MatchStatus.EXACT
    complete = (
        verification.ingredient_match == 1.0
        and verification.strength_match == 1.0
        and verification.form_match == 1.0
    )
    if attributes.has_brand and concept.concept_type.is_branded:
        complete = complete and verification.brand_match == 1.0
    if not complete:
        return MatchStatus.PARTIAL
    return MatchStatus.BRAND_EQUIVALENT if via_related else MatchStatus.EXACT


def _resolved(
    attributes: StructuredAttributes,
    concept: Concept,
    verification: VerificationResult,
    tier: str,
    via_related: bool,
    config: ResolutionConfig,
) -> ResolvedConcept:
    return ResolvedConcept(
        concept=concept,
        assurity=verification.assurity,
        match_status=classify(verification, attributes, concept, tier, via_related),
        below_threshold=verification.assurity < config.acceptance_threshold,
        verification=verification,
        differences=tuple(describe_differences(attributes, concept, verification)),
    )


def _best(
    results: Sequence[Tuple[Concept, VerificationResult]]
) -> Optional[Tuple[Concept, VerificationResult]]:
    best = None
    for item in results:
        if best is None or item[1].assurity > best[1].assurity:
            best = item
    return best


async def _resolve_related(
    index: CatalogIndex,
    attributes: StructuredAttributes,
    base: Concept,
    targets: Sequence[ConceptType],
    branded_slot: bool,
    checker: Optional[ValidityChecker],
    resolution: Resolution,
    config: ResolutionConfig,
) -> Optional[ResolvedConcept]:
    related = index.related(base.concept_id, set(targets))
    if not related:
        return None
    # Prefer the most specific target type available.
    for concept_type in targets:
        of_type = [concept for concept in related if concept.concept_type == concept_type]
        if of_type:
            related = of_type
            break

    query = prepare_query(render_query(attributes, with_brand=branded_slot))
    validity = await check_validity_many(
        checker, [concept.concept_id for concept in related], resolution, config
    )
    use_branded = branded_slot and attributes.has_brand
    scored = []
    for concept in related:
        verification = verify_candidate(
            attributes,
            concept,
            score_candidate(index, query, concept, config.weights),
            validity.get(concept.concept_id),
            aliases=index.aliases(concept.concept_id),
            branded_profile=use_branded,
            config=config,
        )
        scored.append((concept, verification))
    best = _best(scored)
    if best is None:
        return None
    return _resolved(attributes, best[0], best[1], "related", True, config)


async def resolve(
    index: CatalogIndex,
    attributes: StructuredAttributes,
    validity_checker: Optional[ValidityChecker] = None,
    expander: Optional[SynonymExpander] = None,
    config: ResolutionConfig = DEFAULT_CONFIG,
) -> Resolution:
    resolution = Resolution(attributes=attributes)
    candidates = await gather_candidates(index, attributes, resolution, expander, config)
    if not candidates:
        resolution.note("no candidates found")
        return resolution

    for candidate in candidates:
        if candidate.concept.concept_type in INGREDIENT_TYPES:
            resolution.ingredient_group = candidate.concept
            break
    if resolution.ingredient_group is None:
        groups = index.ingredient_concepts(attributes.ingredient)
        resolution.ingredient_group = groups[0] if groups else None

    top = candidates[: max(1, config.verify_top_n)]
    validity = await check_validity_many(
        validity_checker, [c.concept.concept_id for c in top], resolution, config
    )
    verified = []
    for candidate in top:
        verification = verify_candidate(
            attributes,
            candidate.concept,
            candidate.score,
            validity.get(candidate.concept.concept_id),
            aliases=index.aliases(candidate.concept.concept_id),
            config=config,
        )
        verified.append((candidate, verification))

    chosen, chosen_verification = verified[0]
    for candidate, verification in verified[1:]:
        if verification.assurity > chosen_verification.assurity:
            chosen, chosen_verification = candidate, verification

    selected = _resolved(
        attributes, chosen.concept, chosen_verification, chosen.tier, False, config
    )
    resolution.selected = selected
    if selected.below_threshold:
        resolution.note(
            f"best candidate {selected.concept_id} below threshold: "
            f"{selected.assurity:.1f} < {config.acceptance_threshold:g}"
        )
    else:
        resolution.note(f"selected {selected.concept_id} with assurity {selected.assurity:.1f}")

    base = chosen.concept
    if base.concept_type.level == "branded":
        resolution.branded = selected
        resolution.generic = await _resolve_related(
            index, attributes, base, CLINICAL_TARGETS, False, validity_checker, resolution, config
        )
    elif base.concept_type.level in {"clinical", "dose_form"}:
        resolution.generic = selected
        resolution.branded = await _resolve_related(
            index, attributes, base, BRANDED_TARGETS, True, validity_checker, resolution, config
        )
    return resolution


async def resolve_text(
    index: CatalogIndex,
    raw_text: str,
    normalizer: AttributeNormalizer,
    validity_checker: Optional[ValidityChecker] = None,
    expander: Optional[SynonymExpander] = None,
    config: ResolutionConfig = DEFAULT_CONFIG,
) -> Resolution:
    attributes = await call_collaborator(
        "attribute normalization",
        lambda: normalizer.normalize_attributes(raw_text),
        config.timeout,
    )
    if not isinstance(attributes, StructuredAttributes):
        attributes = StructuredAttributes.from_payload(attributes)
    return await resolve(index, attributes, validity_checker, expander, config)


def resolve_sync(
    index: CatalogIndex,
    attributes: StructuredAttributes,
    validity_checker: Optional[ValidityChecker] = None,
    expander: Optional[SynonymExpander] = None,
    config: ResolutionConfig = DEFAULT_CONFIG,
) -> Resolution:
    return asyncio.run(resolve(index, attributes, validity_checker, expander, config))
