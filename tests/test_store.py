import json
import sqlite3

import pytest

from rxnorm_catalog import CatalogError
from rxnorm_store import (
    DB_NAME,
    META_NAME,
    SNAPSHOT_VERSION,
    build_snapshot_from_rrf,
    load_index,
    read_snapshot,
    write_snapshot,
)


def test_snapshot_round_trip(tmp_path, sources, edges):
    db_path = write_snapshot(tmp_path / "index", sources, edges, extra={"release": "test"})
    assert db_path == tmp_path / "index" / DB_NAME

    loaded_sources, loaded_edges, metadata = read_snapshot(tmp_path / "index")
    assert loaded_sources == sources
    assert loaded_edges == edges
    assert metadata["snapshot_version"] == SNAPSHOT_VERSION
    assert metadata["release"] == "test"

    on_disk = json.loads((tmp_path / "index" / META_NAME).read_text(encoding="utf-8"))
    assert on_disk["source_count"] == len(sources)
    assert on_disk["concept_count"] == len({source.concept_id for source in sources})
    assert on_disk["edge_count"] == len(edges)


def test_missing_snapshot(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_snapshot(tmp_path)


def test_incompatible_snapshot_version_is_rejected(tmp_path, sources):
    db_path = write_snapshot(tmp_path, sources)
    conn = sqlite3.connect(str(db_path))
    conn.execute(
        "UPDATE metadata SET value = ? WHERE key = 'snapshot_version'", (json.dumps("0"),)
    )
    conn.commit()
    conn.close()

    with pytest.raises(CatalogError, match="rebuild"):
        read_snapshot(tmp_path)


def test_build_from_rrf_and_load(tmp_path, rrf_dir, index):
    out_dir = tmp_path / "index"
    build_snapshot_from_rrf(rrf_dir, out_dir)

    loaded = load_index(out_dir)
    assert len(loaded) == len(index)
    assert loaded.has_relations
    assert [c.concept_id for c in loaded.related("308135")] == ["212549", "58927"]

    metadata = json.loads((out_dir / META_NAME).read_text(encoding="utf-8"))
    assert metadata["malformed_lines"] == 1
    assert metadata["edge_count"] == 3


def test_type_filter_limits_records_and_edges(tmp_path, rrf_dir):
    out_dir = tmp_path / "index"
    build_snapshot_from_rrf(rrf_dir, out_dir, type_filter={"IN"})

    sources, edges, metadata = read_snapshot(out_dir)
    assert {source.concept_type for source in sources} == {"IN"}
    assert edges == []
    assert metadata["type_filter"] == ["IN"]


def test_relations_can_be_skipped(tmp_path, rrf_dir):
    build_snapshot_from_rrf(rrf_dir, tmp_path, with_relations=False)
    assert not load_index(tmp_path).has_relations
