"""
Unit tests for hierarag.core.searcher

A small collection is indexed with the hash embedder; scores are then
checked against the fusion rules (weighted maximum, threshold, limit).
"""

from __future__ import annotations

import sqlite3
import textwrap
from unittest.mock import patch

import pytest

DIMS = 256


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def config():
    from hierarag.config import Config
    return Config({"embedding": {"provider": "hash", "dimensions": DIMS}})


@pytest.fixture()
def indexed(tmp_path, config):
    """(store, engine, indexer) over a tiny indexed project plus references."""
    from hierarag.core.embedder import HashEmbedder
    from hierarag.core.indexer import Indexer
    from hierarag.core.searcher import QueryEngine
    from hierarag.core.store import RecordStore

    root = tmp_path / "shop"
    (root / "src").mkdir(parents=True)
    (root / "src" / "cart.js").write_text(textwrap.dedent("""\
        export function addItem(cart, item) {
          return [...cart, item];
        }

        export function checkout(cart) {
          if (cart.length === 0) { return null; }
          return cart;
        }
    """), encoding="utf-8")

    store = RecordStore(":memory:", DIMS)
    embedder = HashEmbedder(DIMS)
    indexer = Indexer(store, embedder, config)
    indexer.index_collection("shop", codebase_path=str(root))
    indexer.add_reference("shop", "Checkout must validate the cart.", "rules")
    indexer.add_reference("shop", "Checkout must validate the cart.", "rules-copy")
    indexer.rebuild_graph("shop")
    yield store, QueryEngine(store, embedder, config), indexer
    store.close()


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class TestSearchValidation:

    @pytest.mark.parametrize("kwargs", [
        {"query": ""},
        {"query": "   "},
        {"query": "x", "limit": 0},
        {"query": "x", "threshold": 1.5},
        {"query": "x", "threshold": -0.1},
        {"query": "x", "kind": "images"},
    ])
    def test_bad_arguments(self, indexed, kwargs):
        from hierarag.errors import ValidationError
        _store, engine, _ = indexed
        with pytest.raises(ValidationError):
            engine.search(**kwargs)

    def test_kind_aliases(self):
        from hierarag.core.searcher import resolve_kind
        assert resolve_kind("code") == "codebase"
        assert resolve_kind("document") == "external_doc"
        assert resolve_kind("guidance") == "reference"
        assert resolve_kind("all") is None
        assert resolve_kind("reference") == "reference"
        assert resolve_kind(None) is None


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------

class TestSearchRanking:

    def test_no_match_above_high_threshold(self, indexed):
        _store, engine, _ = indexed
        assert engine.search("nonexistent-term-xyz", threshold=0.9) == []

    def test_default_threshold_exceeds_best_score(self, indexed):
        _store, engine, _ = indexed
        assert engine.search("checkout", collection_id="shop") == []

    def test_structural_match_scores(self, indexed):
        _store, engine, _ = indexed
        results = engine.search("checkout", collection_id="shop", kind="code", threshold=0.0)
        top = results[0]
        assert top.metadata["hierarchy"][-1] == "checkout"
        assert "structural_match" in top.metadata["relevance"]
        # name + path(label) + content hits, weighted 0.3
        assert top.score == pytest.approx(0.3)

    def test_exact_text_is_best_vector_hit(self, indexed):
        _store, engine, _ = indexed
        results = engine.search(
            "Checkout must validate the cart.", collection_id="shop", threshold=0.0,
        )
        assert results[0].kind == "reference"
        assert results[0].score == pytest.approx(0.4)
        assert "vector_similarity" in results[0].metadata["relevance"]

    def test_sorted_and_limited(self, indexed):
        _store, engine, _ = indexed
        results = engine.search("cart", collection_id="shop", threshold=0.0, limit=3)
        assert len(results) <= 3
        keys = [(-r.score, r.id) for r in results]
        assert keys == sorted(keys)

    def test_threshold_monotonic(self, indexed):
        _store, engine, _ = indexed
        loose = {r.id for r in engine.search("cart", threshold=0.0, limit=50)}
        strict = {r.id for r in engine.search("cart", threshold=0.2, limit=50)}
        assert strict <= loose

    def test_kind_filter(self, indexed):
        _store, engine, _ = indexed
        results = engine.search("cart", threshold=0.0, kind="guidance", limit=50)
        assert results
        assert {r.kind for r in results} == {"reference"}

    def test_collection_filter(self, indexed):
        _store, engine, _ = indexed
        assert engine.search("cart", collection_id="other", threshold=0.0) == []

    def test_scores_within_unit_interval(self, indexed):
        _store, engine, _ = indexed
        for r in engine.search("cart", threshold=0.0, limit=50):
            assert 0.0 <= r.score <= 1.0

    def test_graph_relation_reaches_duplicate(self, indexed, config):
        from hierarag.core.embedder import HashEmbedder
        from hierarag.core.searcher import QueryEngine
        store, _engine, _indexer = indexed
        engine = QueryEngine(store, HashEmbedder(DIMS), config)
        # one seed only; its twin is reachable through the graph alone
        with patch.object(engine, "_vector_candidates") as vec:
            ref = store.get_vectors("shop", "reference")
            vec.return_value = [(1.0, ref[0])]
            results = engine.search("anything", collection_id="shop", threshold=0.0)
        by_id = {r.id: r for r in results}
        twin = by_id[ref[1].id]
        assert twin.metadata["relevance"] == ["graph_relation"]
        assert twin.score == pytest.approx(0.3)

    def test_result_to_dict(self, indexed):
        _store, engine, _ = indexed
        result = engine.search("checkout", threshold=0.0)[0]
        data = result.to_dict()
        assert set(data) == {"id", "kind", "content", "score", "metadata"}
        assert set(data["metadata"]) >= {"source", "path", "hierarchy", "tags", "relevance"}


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

class TestSearchFailures:

    def test_embedding_failure_raises_search_error(self, indexed, config):
        from hierarag.core.embedder import HashEmbedder
        from hierarag.core.searcher import QueryEngine
        from hierarag.errors import SearchError

        class _Down(HashEmbedder):
            def embed(self, text):
                raise RuntimeError("offline")

        store, _engine, _ = indexed
        with pytest.raises(SearchError):
            QueryEngine(store, _Down(DIMS), config).search("cart", threshold=0.0)

    def test_store_failure_raises_search_error(self, indexed):
        from hierarag.errors import SearchError
        store, engine, _ = indexed
        with patch.object(store, "find_structural", side_effect=sqlite3.OperationalError("locked")):
            with pytest.raises(SearchError):
                engine.search("cart", threshold=0.0)

    def test_empty_store_returns_empty_list(self, config):
        from hierarag.core.embedder import HashEmbedder
        from hierarag.core.searcher import QueryEngine
        from hierarag.core.store import RecordStore
        with RecordStore(":memory:", DIMS) as store:
            engine = QueryEngine(store, HashEmbedder(DIMS), config)
            assert engine.search("anything", threshold=0.0) == []
