"""Normalize drug strings and queries into comparable token streams."""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set, Tuple

ABBREVIATIONS: Dict[str, str] = {
    "tab": "tablet",
    "tabs": "tablet",
    "cap": "capsule",
    "caps": "capsule",
    "inj": "injection",
    "inject": "injection",
    "soln": "solution",
    "sol": "solution",
    "susp": "suspension",
    "oint": "ointment",
    "sr": "extended release",
    "er": "extended release",
    "xr": "extended release",
    "dr": "delayed release",
    "mdi": "metered dose inhaler",
    "dpi": "dry powder inhaler",
    "hctz": "hydrochlorothiazide",
    "apap": "acetaminophen",
    "asa": "aspirin",
}

UNIT_CANON: Dict[str, str] = {
    "mg": "MG",
    "mgs": "MG",
    "mcg": "MCG",
    "ug": "MCG",
    "g": "G",
    "gm": "G",
    "gram": "G",
    "grams": "G",
    "ml": "ML",
    "l": "L",
    "liter": "L",
    "meq": "MEQ",
    "mmol": "MMOL",
    "unit": "UNIT",
    "units": "UNIT",
    "unt": "UNIT",
    "iu": "UNIT",
    "%": "%",
    "pct": "%",
    "percent": "%",
    "hr": "HR",
    "actuat": "ACTUAT",
}

CANONICAL_UNITS: Set[str] = set(UNIT_CANON.values())

# Units a numeric feature may carry, after conversion to a canonical kind.
WEIGHT_UNITS: Dict[str, float] = {"G": 1000.0, "MG": 1.0, "MCG": 0.001}
VOLUME_UNITS: Dict[str, float] = {"L": 1000.0, "ML": 1.0}
SPECIAL_UNITS: Set[str] = {"UNIT", "MEQ", "MMOL", "%"}
FEATURE_DENOMINATORS: Set[str] = {"ML", "L", "G", "MG", "HR", "ACTUAT"}

LOW_SIGNAL_WORDS: Tuple[str, ...] = (
    "tablet",
    "tablets",
    "capsule",
    "capsules",
    "solution",
    "suspension",
    "cream",
    "gel",
    "lotion",
    "ointment",
    "oral",
    "injection",
    "injectable",
    "inhalation",
    "inhaler",
    "topical",
    "transdermal",
    "system",
    "for",
    "gas",
    "release",
    "extended",
    "delayed",
    "chewable",
    "disintegrating",
    "coated",
    "film",
    "metered",
    "dose",
    "dry",
    "powder",
    "spray",
    "nasal",
    "ophthalmic",
    "otic",
    "rectal",
    "vaginal",
    "sublingual",
    "patch",
    "cartridge",
    "cartridges",
    "syringe",
    "syringes",
    "prefilled",
    "vial",
    "vials",
    "auto",
    "injector",
    "pen",
    "pack",
    "kit",
    "syrup",
    "elixir",
    "and",
    "with",
    "per",
    "each",
)

ROUTE_HINTS: Tuple[str, ...] = ("oral", "injection", "inhalation", "topical", "transdermal")

STEM_SUFFIX_RE = re.compile(r"(ing|ed|ly|es|s)$")
NUMBER_RE = re.compile(r"^\d+(?:\.\d+)?$")
GLUED_STRENGTH_RE = re.compile(r"^(\d+(?:\.\d+)?)([a-z%]+(?:/[a-z]+)?)$")
BRACKET_RE = re.compile(r"\[([^\]]+)\]")
PUNCT_RE = re.compile(r"[^a-z0-9/\[\]%.]+")


@dataclass(frozen=True)
class NumericFeature:
    value: float
    unit_kind: str

    @property
    def key(self) -> str:
        return f"{canonical_number(self.value)}|{self.unit_kind}"


@dataclass(frozen=True)
class NormalizedText:
    tokens: Tuple[str, ...]
    numeric_features: Tuple[NumericFeature, ...]

    def render(self) -> str:
        return " ".join(self.tokens)

    @property
    def numeric_keys(self) -> Tuple[str, ...]:
        return tuple(feature.key for feature in self.numeric_features)


def canonical_number(value: float) -> str:
    parsed = float(value)
    if parsed.is_integer():
        return str(int(parsed))
    return f"{parsed:.6g}"


def fold_text(value: str) -> str:
    # NFKD turns the micro sign into a Greek mu, which the ASCII fold would drop.
    value = value.replace("µ", "u").replace("μ", "u")
    decomposed = unicodedata.normalize("NFKD", value)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.encode("ascii", "ignore").decode("ascii").lower()


def simple_stem(token: str) -> str:
    stemmed = token
    while len(stemmed) >= 4 and stemmed.isalpha():
        shorter = STEM_SUFFIX_RE.sub("", stemmed)
        if shorter == stemmed:
            break
        stemmed = shorter
    if stemmed != token and stemmed in ABBREVIATIONS:
        return token
    return stemmed


LOW_SIGNAL: Set[str] = set(LOW_SIGNAL_WORDS) | {simple_stem(word) for word in LOW_SIGNAL_WORDS}


def canonical_unit(token: str) -> Optional[str]:
    lowered = token.lower()
    if lowered in UNIT_CANON:
        return UNIT_CANON[lowered]
    if "/" in lowered:
        parts = lowered.split("/")
        if all(part in UNIT_CANON for part in parts):
            return "/".join(UNIT_CANON[part] for part in parts)
    return None


def is_unit_token(token: str) -> bool:
    if token in CANONICAL_UNITS:
        return True
    return "/" in token and all(part in CANONICAL_UNITS for part in token.split("/"))


def _explode(tok: str) -> List[str]:
    if not NUMBER_RE.match(tok):
        tok = tok.strip(".")
    if not tok or tok == "/":
        return []
    glued = GLUED_STRENGTH_RE.match(tok)
    if glued and canonical_unit(glued.group(2)):
        return [glued.group(1), glued.group(2)]
    if "/" in tok and canonical_unit(tok) is None:
        parts: List[str] = []
        for part in tok.split("/"):
            parts.extend(_explode(part))
        return parts
    return [tok]


def _split_raw(value: str) -> List[str]:
    cleaned = PUNCT_RE.sub(" ", fold_text(value))
    cleaned = cleaned.replace("[", " ").replace("]", " ")
    raw_tokens: List[str] = []
    for tok in cleaned.split():
        raw_tokens.extend(_explode(tok))
    return raw_tokens


def tokenize(value: str) -> List[str]:
    """Canonical tokens in source order, duplicates kept (term frequencies need them)."""
    tokens: List[str] = []
    for raw in _split_raw(value):
        expanded = ABBREVIATIONS.get(raw, raw)
        for tok in expanded.split():
            unit = canonical_unit(tok)
            if unit is None and tok.isalpha():
                tok = simple_stem(tok)
                unit = canonical_unit(tok)
            tokens.append(unit if unit is not None else tok)
    return tokens


def dedupe(tokens: Sequence[str]) -> Tuple[str, ...]:
    seen: Set[str] = set()
    ordered: List[str] = []
    for tok in tokens:
        if tok in seen:
            continue
        seen.add(tok)
        ordered.append(tok)
    return tuple(ordered)


def to_unit_kind(value: float, unit: str) -> Optional[Tuple[float, str]]:
    if unit in WEIGHT_UNITS:
        return _round_value(value * WEIGHT_UNITS[unit]), "MG"
    if unit in SPECIAL_UNITS:
        return _round_value(value), unit
    if "/" not in unit:
        return None

    numerator, _, denominator = unit.partition("/")
    if denominator not in FEATURE_DENOMINATORS:
        return None
    if denominator in VOLUME_UNITS:
        value /= VOLUME_UNITS[denominator]
        denominator = "ML"
    if numerator in WEIGHT_UNITS:
        return _round_value(value * WEIGHT_UNITS[numerator]), f"MG/{denominator}"
    if numerator in SPECIAL_UNITS:
        return _round_value(value), f"{numerator}/{denominator}"
    return None


def _round_value(value: float) -> float:
    return float(f"{value:.9g}")


def extract_numeric_features(tokens: Sequence[str]) -> Tuple[NumericFeature, ...]:
    features: List[NumericFeature] = []
    last_unit: Optional[str] = None
    i = 0
    while i < len(tokens):
        tok = tokens[i]
        if not NUMBER_RE.match(tok):
            i += 1
            continue

        nxt = tokens[i + 1] if i + 1 < len(tokens) else None
        if nxt is not None and is_unit_token(nxt):
            converted = to_unit_kind(float(tok), nxt)
            if converted is not None:
                features.append(NumericFeature(value=converted[0], unit_kind=converted[1]))
                last_unit = nxt
            i += 2
            continue

        # Deduplication drops the repeated unit of a combination product
        # ("a 5 MG / b 20 MG" -> "a 5 MG b 20"): a bare number right after an
        # ingredient word reuses the last unit.
        prev = tokens[i - 1] if i > 0 else ""
        ingredient_before = prev.isalpha() and prev.islower() and prev not in LOW_SIGNAL
        if last_unit is not None and ingredient_before:
            converted = to_unit_kind(float(tok), last_unit)
            if converted is not None:
                features.append(NumericFeature(value=converted[0], unit_kind=converted[1]))
        i += 1

    unique: List[NumericFeature] = []
    for feature in features:
        if feature not in unique:
            unique.append(feature)
    return tuple(unique)


def normalize(value: str) -> NormalizedText:
    tokens = dedupe(tokenize(value))
    return NormalizedText(tokens=tokens, numeric_features=extract_numeric_features(tokens))


def drug_words(tokens: Sequence[str]) -> Tuple[str, ...]:
    words: List[str] = []
    for tok in tokens:
        if tok in LOW_SIGNAL or is_unit_token(tok):
            continue
        if re.fullmatch(r"[0-9.%/]+", tok):
            continue
        words.append(tok)
    return tuple(words)


def detect_route_hint(tokens: Sequence[str]) -> Optional[str]:
    token_set = set(tokens)
    if "for" in token_set and "inhalation" in token_set:
        return "for inhalation"
    for hint in ROUTE_HINTS:
        if hint in token_set:
            return hint
    return None


def extract_bracket_brand(value: str) -> Optional[str]:
    match = BRACKET_RE.search(value)
    if not match:
        return None
    brand = match.group(1).strip()
    return brand or None


def strip_brackets(value: str) -> str:
    return re.sub(r"\s+", " ", BRACKET_RE.sub(" ", value)).strip()
