"""sqlite snapshot of parsed RXNCONSO/RXNREL records."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from rxnorm_catalog import (
    CatalogError,
    CatalogIndex,
    ConceptSource,
    RelationEdge,
    build_index,
    load_rrf_relations,
    load_rrf_sources,
    log,
)

SNAPSHOT_VERSION = "1"
DB_NAME = "rxnorm_index.sqlite"
META_NAME = "metadata.json"
BATCH_SIZE = 15000


def ensure_parent(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def init_db(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        PRAGMA journal_mode = WAL;
        PRAGMA synchronous = OFF;
        PRAGMA temp_store = MEMORY;
        DROP TABLE IF EXISTS concepts;
        DROP TABLE IF EXISTS edges;
        DROP TABLE IF EXISTS metadata;

        CREATE TABLE concepts (
            seq INTEGER PRIMARY KEY,
            rxcui TEXT NOT NULL,
            tty TEXT NOT NULL,
            str TEXT NOT NULL,
            sab TEXT NOT NULL,
            lat TEXT NOT NULL,
            code TEXT NOT NULL,
            suppressed INTEGER NOT NULL
        );

        CREATE TABLE edges (
            src TEXT NOT NULL,
            dst TEXT NOT NULL,
            rela TEXT
        );

        CREATE TABLE metadata (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        );
        """
    )
    conn.commit()


def _batched(rows: Iterable[Tuple], size: int = BATCH_SIZE) -> Iterable[List[Tuple]]:
    batch: List[Tuple] = []
    for row in rows:
        batch.append(row)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch


def persist_sources(conn: sqlite3.Connection, sources: Sequence[ConceptSource]) -> int:
    rows = (
        (
            seq,
            source.concept_id,
            source.concept_type,
            source.canonical_name,
            source.authority,
            source.language,
            source.code,
            1 if source.suppressed else 0,
        )
        for seq, source in enumerate(sources)
    )
    for batch in _batched(rows):
        conn.executemany(
            "INSERT INTO concepts(seq, rxcui, tty, str, sab, lat, code, suppressed) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            batch,
        )
        conn.commit()
    return len(sources)


def persist_edges(conn: sqlite3.Connection, edges: Sequence[RelationEdge]) -> int:
    rows = ((edge.src, edge.dst, edge.rela) for edge in edges)
    for batch in _batched(rows):
        conn.executemany("INSERT INTO edges(src, dst, rela) VALUES (?, ?, ?)", batch)
        conn.commit()
    return len(edges)


def create_indexes(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE INDEX idx_concepts_rxcui ON concepts(rxcui);
        CREATE INDEX idx_edges_src ON edges(src);
        """
    )
    conn.commit()


def write_snapshot(
    out_dir: Path,
    sources: Sequence[ConceptSource],
    edges: Sequence[RelationEdge] = (),
    extra: Optional[Dict[str, object]] = None,
) -> Path:
    ensure_parent(out_dir)
    db_path = out_dir / DB_NAME
    meta_path = out_dir / META_NAME

    metadata: Dict[str, object] = {
        "snapshot_version": SNAPSHOT_VERSION,
        "created_at_utc": datetime.now(timezone.utc).isoformat(),
        "source_count": len(sources),
        "concept_count": len({source.concept_id for source in sources}),
        "edge_count": len(edges),
    }
    metadata.update(extra or {})

    conn = sqlite3.connect(str(db_path))
    try:
        init_db(conn)
        persist_sources(conn, sources)
        persist_edges(conn, edges)
        create_indexes(conn)
        conn.executemany(
            "INSERT INTO metadata(key, value) VALUES (?, ?)",
            [(key, json.dumps(value)) for key, value in sorted(metadata.items())],
        )
        conn.commit()
    finally:
        conn.close()

    with meta_path.open("w", encoding="utf-8") as handle:
        json.dump(metadata, handle, indent=2)

    log(f"[build-index] sqlite: {db_path}")
    log(f"[build-index] metadata: {meta_path}")
    return db_path


def read_snapshot(
    index_dir: Path,
) -> Tuple[List[ConceptSource], List[RelationEdge], Dict[str, object]]:
    db_path = index_dir / DB_NAME
    if not db_path.exists():
        raise FileNotFoundError(f"Missing index sqlite file: {db_path}")

    conn = sqlite3.connect(str(db_path))
    try:
        metadata = {
            key: json.loads(value)
            for key, value in conn.execute("SELECT key, value FROM metadata")
        }
        version = metadata.get("snapshot_version")
        if version != SNAPSHOT_VERSION:
            raise CatalogError(
                f"Unsupported snapshot version {version!r} in {db_path}, "
                f"expected {SNAPSHOT_VERSION!r}; rebuild with build-index"
            )

        sources = [
            ConceptSource(
                concept_id=rxcui,
                concept_type=tty,
                canonical_name=name,
                authority=sab,
                language=lat,
                code=code,
                suppressed=bool(suppressed),
            )
            for rxcui, tty, name, sab, lat, code, suppressed in conn.execute(
                "SELECT rxcui, tty, str, sab, lat, code, suppressed FROM concepts ORDER BY seq"
            )
        ]
        edges = [
            RelationEdge(src=src, dst=dst, rela=rela or "")
            for src, dst, rela in conn.execute("SELECT src, dst, rela FROM edges ORDER BY rowid")
        ]
    finally:
        conn.close()

    log(f"[catalog] snapshot {db_path}: {len(sources):,} records, {len(edges):,} edges")
    return sources, edges, metadata


def load_index(index_dir: Path) -> CatalogIndex:
    sources, edges, _ = read_snapshot(index_dir)
    return build_index(sources, edges)


def build_snapshot_from_rrf(
    rrf_dir: Path,
    out_dir: Path,
    type_filter: Optional[Set[str]] = None,
    with_relations: bool = True,
) -> Path:
    conso_path = rrf_dir / "RXNCONSO.RRF"
    rel_path = rrf_dir / "RXNREL.RRF"

    log(f"[build-index] writing index to: {out_dir}")
    sources, stats = load_rrf_sources(conso_path, type_filter=type_filter)
    edges: List[RelationEdge] = []
    if with_relations and rel_path.exists():
        edges = load_rrf_relations(rel_path, {source.concept_id for source in sources})
    elif with_relations:
        log(f"[build-index] no RXNREL at {rel_path}; related concepts use name signatures")

    return write_snapshot(
        out_dir,
        sources,
        edges,
        extra={
            "rrf_dir": str(rrf_dir),
            "type_filter": sorted(type_filter) if type_filter else None,
            "malformed_lines": stats.malformed,
            "duplicate_names": stats.duplicates,
        },
    )
