#!/usr/bin/env python3
"""Local JSON API over an in-process RxNorm catalog index."""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Dict, Optional, Sequence
from urllib.parse import parse_qs, urlparse

from rxnorm_approx import approximate_match
from rxnorm_catalog import CatalogIndex, log
from rxnorm_resolution import (
    ACCEPTANCE_THRESHOLD,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_TIMEOUT,
    CatalogValidityChecker,
    ResolutionConfig,
    StructuredAttributes,
    TemplateSynonymExpander,
    resolve_sync,
)
from rxnorm_store import DB_NAME, load_index

DEFAULT_LIMIT = 20
MAX_LIMIT = 200


@dataclass(frozen=True)
class AppConfig:
    index_dir: Path
    top_k: int = DEFAULT_LIMIT
    threshold: float = ACCEPTANCE_THRESHOLD
    timeout: float = DEFAULT_TIMEOUT
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    workers: Optional[int] = None

    def resolution_config(self) -> ResolutionConfig:
        return ResolutionConfig(
            acceptance_threshold=self.threshold,
            candidate_limit=self.top_k,
            timeout=self.timeout,
            max_concurrency=self.max_concurrency,
            workers=self.workers,
        )


def parse_limit(raw: Optional[str]) -> int:
    if raw is None or not raw.strip():
        return DEFAULT_LIMIT
    limit = int(raw)
    if limit < 1:
        raise ValueError("limit must be positive")
    return min(limit, MAX_LIMIT)


def build_handler(config: AppConfig, index: CatalogIndex):
    validity_checker = CatalogValidityChecker(index)
    expander = TemplateSynonymExpander()

    class Handler(BaseHTTPRequestHandler):
        server_version = "RxNormApprox/1.0"

        def _send_json(self, status: int, payload: Dict[str, object]) -> None:
            body = json.dumps(payload).encode("utf-8")
            self.send_response(status)
            self.send_header("Content-Type", "application/json; charset=utf-8")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def _load_json_body(self) -> Optional[object]:
            try:
                content_length = int(self.headers.get("Content-Length", "0"))
            except ValueError:
                return None
            if content_length <= 0:
                return None
            raw = self.rfile.read(content_length)
            try:
                return json.loads(raw.decode("utf-8"))
            except (json.JSONDecodeError, UnicodeDecodeError):
                return None

        def do_GET(self) -> None:  # noqa: N802
            parsed = urlparse(self.path)
            params = parse_qs(parsed.query)
            if parsed.path == "/health":
                self._send_json(
                    HTTPStatus.OK,
                    {
                        "ok": True,
                        "index_dir": str(config.index_dir),
                        "concept_count": len(index),
                    },
                )
                return
            if parsed.path == "/api/approximate":
                search = (params.get("search") or [""])[0].strip()
                if not search:
                    self._send_json(
                        HTTPStatus.BAD_REQUEST,
                        {"matches": [], "error": "Search term is required"},
                    )
                    return
                try:
                    limit = parse_limit((params.get("limit") or [None])[0])
                except ValueError:
                    self._send_json(
                        HTTPStatus.BAD_REQUEST,
                        {"matches": [], "error": "Field `limit` must be a positive integer."},
                    )
                    return
                matches = approximate_match(index, search, limit=limit, workers=config.workers)
                self._send_json(
                    HTTPStatus.OK,
                    {
                        "input": search,
                        "matches": [match.to_dict() for match in matches],
                        "count": len(matches),
                    },
                )
                return
            if parsed.path == "/api/check":
                rxcui = (params.get("rxcui") or [""])[0].strip()
                if not rxcui:
                    self._send_json(
                        HTTPStatus.BAD_REQUEST,
                        {"exists": False, "error": "RxCUI is required"},
                    )
                    return
                self._send_json(HTTPStatus.OK, index.check(rxcui).to_dict())
                return
            self.send_error(HTTPStatus.NOT_FOUND, "Not found")

        def do_POST(self) -> None:  # noqa: N802
            parsed = urlparse(self.path)
            if parsed.path != "/api/resolve":
                self.send_error(HTTPStatus.NOT_FOUND, "Not found")
                return

            payload = self._load_json_body()
            if payload is None:
                self._send_json(
                    HTTPStatus.BAD_REQUEST,
                    {"error": "Expected JSON payload with structured attributes."},
                )
                return

            try:
                attributes = StructuredAttributes.from_payload(payload)
            except ValueError as exc:
                self._send_json(HTTPStatus.BAD_REQUEST, {"error": str(exc)})
                return

            resolution = resolve_sync(
                index,
                attributes,
                validity_checker=validity_checker,
                expander=expander,
                config=config.resolution_config(),
            )
            self._send_json(HTTPStatus.OK, resolution.to_dict())

        def log_message(self, fmt: str, *args: object) -> None:
            log(f"[rxnorm-web] {fmt % args}")

    return Handler


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a local JSON API for RxNorm matching.")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind.")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind.")
    parser.add_argument(
        "--index-dir",
        default="artifacts/rxnorm_index",
        help="Index dir generated by rxnorm_cli.py build-index.",
    )
    parser.add_argument("--top-k", type=int, default=DEFAULT_LIMIT, help="Candidates per query.")
    parser.add_argument("--threshold", type=float, default=ACCEPTANCE_THRESHOLD)
    parser.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT)
    parser.add_argument("--max-concurrency", type=int, default=DEFAULT_MAX_CONCURRENCY)
    parser.add_argument("--workers", type=int, default=None, help="Scoring threads.")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    index_dir = Path(args.index_dir).expanduser().resolve()
    if not (index_dir / DB_NAME).exists():
        raise FileNotFoundError(f"Index not found. Expected: {index_dir / DB_NAME}")

    config = AppConfig(
        index_dir=index_dir,
        top_k=args.top_k,
        threshold=args.threshold,
        timeout=args.timeout,
        max_concurrency=args.max_concurrency,
        workers=args.workers,
    )
    index = load_index(index_dir)

    handler = build_handler(config, index)
    server = ThreadingHTTPServer((args.host, args.port), handler)
    log(
        f"RxNorm API running at http://{args.host}:{args.port} "
        f"(index: {index_dir}, concepts: {len(index):,})"
    )
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
