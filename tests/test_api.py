"""
Integration tests for hierarag.api.HierarchicalIndex

End-to-end passes over a temporary project with the hash embedder and an
on-disk SQLite store.
"""

from __future__ import annotations

import textwrap

import pytest


@pytest.fixture()
def project(tmp_path):
    root = tmp_path / "app"
    (root / "lib").mkdir(parents=True)
    (root / "lib" / "format.ts").write_text(textwrap.dedent("""\
        import { pad } from './pad';

        export interface Formatter {
          format(value: string): string;
        }

        export function formatDate(d: Date): string {
          return pad(d.getDate());
        }
    """), encoding="utf-8")
    (root / "README.md").write_text("# App\n\nSetup guide.\n", encoding="utf-8")
    return root


@pytest.fixture()
def index(tmp_path):
    from hierarag import Config, HierarchicalIndex
    config = Config({
        "db_path": str(tmp_path / "db" / "index.db"),
        "embedding": {"provider": "hash", "dimensions": 128},
    })
    with HierarchicalIndex(config) as idx:
        yield idx


def test_build_hierarchy_summary(index, project):
    summary = index.build_hierarchy(str(project))
    assert summary["by_kind"] == {"directory": 2, "file": 2, "function": 1, "interface": 1}
    assert summary["node_count"] == 6
    assert "nodes" not in summary


def test_build_hierarchy_with_nodes(index, project):
    summary = index.build_hierarchy(str(project), include_nodes=True)
    names = {n["name"] for n in summary["nodes"]}
    assert {"app", "lib", "format.ts", "Formatter", "formatDate", "README.md"} == names
    fmt = [n for n in summary["nodes"] if n["name"] == "formatDate"][0]
    assert fmt["metadata"]["line_start"] == 7


def test_index_search_status_clear(index, project):
    summary = index.index_collection(
        "app", codebase_path=str(project), external_doc_paths=[str(project / "README.md")],
    )
    # 2 files + 2 elements from the codebase, plus the README as a document
    assert summary["vector_count"] == 5
    assert summary["structural_count"] == 4
    assert summary["error_count"] == 0

    results = index.search("formatDate", collection_id="app", threshold=0.1)
    assert results
    assert results[0]["metadata"]["hierarchy"][-1] == "formatDate"
    assert isinstance(results[0]["score"], float)

    docs = index.search("setup", collection_id="app", type="document", threshold=0.0)
    assert {r["kind"] for r in docs} == {"external_doc"}

    status = index.status("app")
    assert status["vectors"] == 5
    assert status["by_kind"] == {"codebase": 4, "external_doc": 1}
    assert index.collections() == ["app"]

    removed = index.clear("app")
    assert removed["vectors"] == 5
    assert index.status("app")["vectors"] == 0


def test_add_reference_and_search(index):
    rid = index.add_reference("notes", "Prefer composition over inheritance.", "adr-7", ["adr"])
    results = index.search(
        "Prefer composition over inheritance.", collection_id="notes",
        type="guidance", threshold=0.3,
    )
    assert [r["id"] for r in results] == [rid]


def test_instances_are_isolated(tmp_path):
    from hierarag import Config, HierarchicalIndex
    cfg = {"embedding": {"provider": "hash", "dimensions": 32}}
    with HierarchicalIndex(Config({**cfg, "db_path": str(tmp_path / "a.db")})) as a, \
            HierarchicalIndex(Config({**cfg, "db_path": str(tmp_path / "b.db")})) as b:
        a.add_reference("c", "text", "src")
        assert a.status("c")["vectors"] == 1
        assert b.status("c")["vectors"] == 0


def test_validation_errors_surface(index):
    from hierarag import ValidationError
    with pytest.raises(ValidationError):
        index.index_collection("")
    with pytest.raises(ValidationError):
        index.search("")
