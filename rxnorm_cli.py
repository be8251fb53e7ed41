#!/usr/bin/env python3
"""RxNorm approximate matching: build a catalog snapshot, match and resolve drug text."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Optional, Sequence, Set

from rxnorm_approx import ScoringWeights, approximate_match
from rxnorm_catalog import (
    CatalogError,
    CatalogIndex,
    ConceptType,
    build_index,
    load_rrf_relations,
    load_rrf_sources,
    log,
)
from rxnorm_resolution import (
    CatalogValidityChecker,
    ResolutionConfig,
    StructuredAttributes,
    TemplateSynonymExpander,
    resolve_sync,
)
from rxnorm_store import build_snapshot_from_rrf, load_index

DEFAULT_INDEX_DIR = "artifacts/rxnorm_index"


def parse_type_filter(values: Optional[Sequence[str]]) -> Optional[Set[str]]:
    if not values:
        return None
    ttys: Set[str] = set()
    for value in values:
        for item in value.split(","):
            item = item.strip().upper()
            if not item:
                continue
            if ConceptType.parse(item) == ConceptType.OTHER:
                raise argparse.ArgumentTypeError(f"Unknown TTY: {item}")
            ttys.add(item)
    return ttys or None


def open_index(args: argparse.Namespace) -> CatalogIndex:
    if getattr(args, "rrf_dir", None):
        rrf_dir = Path(args.rrf_dir).expanduser().resolve()
        sources, _ = load_rrf_sources(rrf_dir / "RXNCONSO.RRF", parse_type_filter(args.tty))
        rel_path = rrf_dir / "RXNREL.RRF"
        edges = []
        if rel_path.exists():
            edges = load_rrf_relations(rel_path, {source.concept_id for source in sources})
        return build_index(sources, edges)
    if getattr(args, "tty", None):
        raise argparse.ArgumentTypeError(
            "--tty only applies with --rrf-dir; filter a snapshot at build-index time"
        )
    return load_index(Path(args.index_dir).expanduser().resolve())


def cmd_build_index(args: argparse.Namespace) -> int:
    rrf_dir = Path(args.rrf_dir).expanduser().resolve()
    out_dir = Path(args.out_dir).expanduser().resolve()
    build_snapshot_from_rrf(
        rrf_dir,
        out_dir,
        type_filter=parse_type_filter(args.tty),
        with_relations=not args.no_relations,
    )
    log("[build-index] done")
    return 0


def cmd_approximate(args: argparse.Namespace) -> int:
    index = open_index(args)
    weights = ScoringWeights()
    results = approximate_match(
        index, args.text, limit=args.top_k, weights=weights, workers=args.workers
    )
    output = {
        "query": args.text,
        "results": [result.to_dict() for result in results],
    }
    print(json.dumps(output, indent=2))
    return 0


def read_attributes(args: argparse.Namespace) -> StructuredAttributes:
    if args.attributes_json:
        payload_text = args.attributes_json
        if payload_text.startswith("@"):
            payload_path = Path(payload_text[1:]).expanduser()
            if not payload_path.exists():
                raise FileNotFoundError(f"Missing attributes file: {payload_path}")
            payload_text = payload_path.read_text(encoding="utf-8")
        return StructuredAttributes.from_payload(json.loads(payload_text))
    return StructuredAttributes.from_payload(
        {
            "ingredient": args.ingredient,
            "strength": args.strength,
            "form": args.form,
            "brand": args.brand,
            "route": args.route,
        }
    )


def cmd_resolve(args: argparse.Namespace) -> int:
    try:
        attributes = read_attributes(args)
    except (ValueError, json.JSONDecodeError) as exc:
        log(f"[resolve] invalid attributes: {exc}")
        return 2

    index = open_index(args)
    config = ResolutionConfig(
        acceptance_threshold=args.threshold,
        candidate_limit=args.top_k,
        timeout=args.timeout,
        max_concurrency=args.max_concurrency,
        workers=args.workers,
    )
    expander = None if args.no_synonyms else TemplateSynonymExpander()
    resolution = resolve_sync(
        index,
        attributes,
        validity_checker=CatalogValidityChecker(index),
        expander=expander,
        config=config,
    )
    print(json.dumps(resolution.to_dict(), indent=2))
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    index = open_index(args)
    checks = [index.check(rxcui).to_dict() for rxcui in args.rxcui]
    print(json.dumps(checks if len(checks) > 1 else checks[0], indent=2))
    return 0 if all(check["exists"] for check in checks) else 1


def add_index_arguments(cmd: argparse.ArgumentParser) -> None:
    source = cmd.add_mutually_exclusive_group()
    source.add_argument(
        "--index-dir",
        default=DEFAULT_INDEX_DIR,
        help="Directory containing the snapshot written by build-index.",
    )
    source.add_argument(
        "--rrf-dir",
        default=None,
        help="Read RXNCONSO.RRF (and RXNREL.RRF when present) directly instead of a snapshot.",
    )
    cmd.add_argument(
        "--tty",
        action="append",
        default=None,
        help="Keep only these TTYs when reading --rrf-dir (repeat or comma-separate).",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="RxNorm approximate matching and generic/branded resolution."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    build_cmd = subparsers.add_parser(
        "build-index",
        help="Parse RXNCONSO/RXNREL into a sqlite snapshot.",
    )
    build_cmd.add_argument(
        "--rrf-dir",
        required=True,
        help="Directory containing RXNCONSO.RRF and optionally RXNREL.RRF.",
    )
    build_cmd.add_argument(
        "--out-dir",
        default=DEFAULT_INDEX_DIR,
        help="Directory to write the snapshot.",
    )
    build_cmd.add_argument(
        "--tty",
        action="append",
        default=None,
        help="Keep only these TTYs (repeat or comma-separate, e.g. SCD,SBD,IN).",
    )
    build_cmd.add_argument(
        "--no-relations",
        action="store_true",
        help="Skip RXNREL even when present.",
    )
    build_cmd.set_defaults(func=cmd_build_index)

    approx_cmd = subparsers.add_parser(
        "approximate",
        help="Rank catalog concepts against free text.",
    )
    add_index_arguments(approx_cmd)
    approx_cmd.add_argument("--text", required=True, help="Query text to match.")
    approx_cmd.add_argument(
        "--top-k",
        type=int,
        default=10,
        help="Number of ranked results to print.",
    )
    approx_cmd.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Score candidates on this many threads.",
    )
    approx_cmd.set_defaults(func=cmd_approximate)

    resolve_cmd = subparsers.add_parser(
        "resolve",
        help="Resolve structured attributes to generic and branded concepts.",
    )
    add_index_arguments(resolve_cmd)
    resolve_cmd.add_argument("--ingredient", help="Ingredient name.")
    resolve_cmd.add_argument("--strength", help='Strength, e.g. "10 MG".')
    resolve_cmd.add_argument("--form", help='Dose form, e.g. "Oral Tablet".')
    resolve_cmd.add_argument("--brand", help="Brand name.")
    resolve_cmd.add_argument("--route", help="Route, e.g. Oral.")
    resolve_cmd.add_argument(
        "--attributes-json",
        default=None,
        help="Attributes as a JSON object, or @path to a JSON file. Overrides the field flags.",
    )
    resolve_cmd.add_argument(
        "--top-k",
        type=int,
        default=20,
        help="Approximate candidates gathered per query.",
    )
    resolve_cmd.add_argument(
        "--threshold",
        type=float,
        default=70.0,
        help="Assurity needed to accept a concept (0-100).",
    )
    resolve_cmd.add_argument(
        "--timeout",
        type=float,
        default=5.0,
        help="Seconds allowed per collaborator call.",
    )
    resolve_cmd.add_argument(
        "--max-concurrency",
        type=int,
        default=4,
        help="Concurrent collaborator calls.",
    )
    resolve_cmd.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Score candidates on this many threads.",
    )
    resolve_cmd.add_argument(
        "--no-synonyms",
        action="store_true",
        help="Disable the synonym-expansion fallback tier.",
    )
    resolve_cmd.set_defaults(func=cmd_resolve)

    check_cmd = subparsers.add_parser(
        "check",
        help="Report whether RXCUIs exist, with type, name and suppress flag.",
    )
    add_index_arguments(check_cmd)
    check_cmd.add_argument("--rxcui", action="append", required=True, help="RXCUI to check.")
    check_cmd.set_defaults(func=cmd_check)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return int(args.func(args))
    except (FileNotFoundError, CatalogError) as exc:
        log(f"error: {exc}")
        return 2
    except argparse.ArgumentTypeError as exc:
        parser.error(str(exc))
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
