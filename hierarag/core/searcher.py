"""
Hybrid search over a :class:`~hierarag.core.store.RecordStore`.

Three strategies each produce scored candidates:

* **vector**     — cosine similarity of the query embedding
* **structural** — substring hits on hierarchy path / tags, weighted
  name 10, path 5, content 3, normalised by 18
* **graph**      — bounded expansion along ``similar`` edges from the
  candidates of the other two

Fusion merges candidates by record id.  Each strategy's score is
multiplied by its weight and the record keeps the *maximum* weighted
score, never the sum, so a fused score stays within [0, 1] and always
comes from a single strategy.  ``relevance`` lists every strategy that
found the record.  With the default weights the best attainable score
is 0.4, below the default threshold of 0.5; callers tune one or both.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Optional

from ..errors import HierarAGError, SearchError, ValidationError
from .embedder import Embedder, embed_with_timeout
from .graph import expand_neighbors, to_networkx
from .store import RECORD_KINDS, RELATION_SIMILAR, RecordStore, VectorRecord

if TYPE_CHECKING:
    from ..config import Config

logger = logging.getLogger(__name__)

VECTOR = "vector"
STRUCTURAL = "structural"
GRAPH = "graph"

RELEVANCE_TAGS: dict[str, str] = {
    VECTOR: "vector_similarity",
    STRUCTURAL: "structural_match",
    GRAPH: "graph_relation",
}

KIND_ALIASES: dict[str, Optional[str]] = {
    "code": "codebase",
    "document": "external_doc",
    "guidance": "reference",
    "all": None,
}

_NAME_WEIGHT = 10
_PATH_WEIGHT = 5
_CONTENT_WEIGHT = 3
_MAX_STRUCTURAL = _NAME_WEIGHT + _PATH_WEIGHT + _CONTENT_WEIGHT


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class SearchResult:
    """
    A single ranked hit.

    Attributes
    ----------
    id:
        Vector record id.
    kind:
        ``"codebase"`` | ``"external_doc"`` | ``"reference"``
    content:
        Stored text of the record.
    score:
        Fused score in [0, 1].
    metadata:
        ``source``, ``path``, ``line_range``, ``hierarchy``, ``tags`` and
        ``relevance`` (strategy tags that produced the hit).
    """

    id: str
    kind: str
    content: str
    score: float
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


def resolve_kind(kind: Optional[str]) -> Optional[str]:
    """Map a record kind or alias to a record kind; ``None`` means no filter."""
    if kind is None:
        return None
    if kind in RECORD_KINDS:
        return kind
    if kind in KIND_ALIASES:
        return KIND_ALIASES[kind]
    raise ValidationError(
        f"Unknown kind {kind!r} (expected one of "
        f"{', '.join(RECORD_KINDS + tuple(KIND_ALIASES))})"
    )


def structural_score(query: str, name: str, path: str, content: str, labels: str = "") -> float:
    """
    Normalised name / path / content hit score of a lower-cased *query*.

    *labels* (hierarchy path and tags) count towards the path component.
    """
    q = query.lower()
    hits = 0
    if q in name.lower():
        hits += _NAME_WEIGHT
    if q in path.lower() or q in labels.lower():
        hits += _PATH_WEIGHT
    if q in content.lower():
        hits += _CONTENT_WEIGHT
    return hits / _MAX_STRUCTURAL


# ---------------------------------------------------------------------------
# QueryEngine
# ---------------------------------------------------------------------------

class QueryEngine:
    """
    Stateless hybrid search; the store is only read.

    Parameters
    ----------
    store:
        Record store to search.
    embedder:
        Must be the provider the collection was indexed with.
    config:
        Weights, graph budgets, defaults for *limit* and *threshold*.
    """

    def __init__(self, store: RecordStore, embedder: Embedder, config: "Config") -> None:
        if embedder.dimensions != store.dimensions:
            raise ValidationError(
                f"Embedder produces {embedder.dimensions}-dimensional vectors, "
                f"store expects {store.dimensions}"
            )
        self._store = store
        self._embedder = embedder
        self._config = config

    def search(
        self,
        query: str,
        collection_id: Optional[str] = None,
        kind: Optional[str] = None,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> list[SearchResult]:
        """
        Rank stored records against *query*.

        Parameters
        ----------
        query:
            Free-text query; must not be empty.
        collection_id:
            Restrict to one collection (``None`` searches all).
        kind:
            Record kind or alias (``code``, ``document``, ``guidance``, ``all``).
        limit:
            Maximum results, >= 1.
        threshold:
            Minimum fused score in [0, 1].

        Returns
        -------
        list[SearchResult]
            Sorted by score descending, ties by id.  May be empty.

        Raises
        ------
        ValidationError
            Bad arguments (raised before touching the store).
        SearchError
            The store or the embedding provider failed.
        """
        if limit is None:
            limit = self._config.SEARCH_LIMIT
        if threshold is None:
            threshold = self._config.SEARCH_THRESHOLD
        if not isinstance(query, str) or not query.strip():
            raise ValidationError("query is required")
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValidationError("limit must be an integer >= 1")
        if not 0.0 <= threshold <= 1.0:
            raise ValidationError("threshold must be between 0 and 1")
        record_kind = resolve_kind(kind)

        t0 = time.perf_counter()
        try:
            candidates = self._gather(query, collection_id, record_kind, limit * 2)
        except SearchError:
            raise
        except (HierarAGError, sqlite3.Error) as exc:
            raise SearchError(f"Search failed: {exc}") from exc

        weights = self._config.WEIGHTS
        results: list[SearchResult] = []
        for record, scores in candidates.values():
            fused = max(weights[strategy] * score for strategy, score in scores.items())
            if fused < threshold:
                continue
            meta = record.metadata
            results.append(SearchResult(
                id=record.id,
                kind=record.kind,
                content=record.content,
                score=fused,
                metadata={
                    "source": meta.get("source"),
                    "path": meta.get("path"),
                    "line_range": meta.get("line_range"),
                    "hierarchy": meta.get("hierarchy", []),
                    "tags": meta.get("tags", []),
                    "relevance": [RELEVANCE_TAGS[s] for s in (VECTOR, STRUCTURAL, GRAPH)
                                  if s in scores],
                },
            ))
        results.sort(key=lambda r: (-r.score, r.id))
        results = results[:limit]
        logger.info(
            "Search %r returned %d of %d candidates in %.1fms",
            query, len(results), len(candidates), (time.perf_counter() - t0) * 1000,
        )
        return results

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _gather(
        self,
        query: str,
        collection_id: Optional[str],
        kind: Optional[str],
        top_k: int,
    ) -> dict[str, tuple[VectorRecord, dict[str, float]]]:
        """Record id → (record, strategy → raw score)."""
        candidates: dict[str, tuple[VectorRecord, dict[str, float]]] = {}

        for score, record in self._vector_candidates(query, collection_id, kind, top_k):
            candidates[record.id] = (record, {VECTOR: score})
        for score, record in self._structural_candidates(query, collection_id, kind, top_k):
            candidates.setdefault(record.id, (record, {}))[1][STRUCTURAL] = score

        seeds = {rid: max(scores.values()) for rid, (_rec, scores) in candidates.items()}
        for score, record in self._graph_candidates(seeds, collection_id, kind):
            candidates.setdefault(record.id, (record, {}))[1][GRAPH] = score
        return candidates

    def _vector_candidates(self, query, collection_id, kind, top_k):
        try:
            query_vector = embed_with_timeout(
                self._embedder, query, self._config.EMBEDDING_TIMEOUT
            )
        except HierarAGError as exc:
            raise SearchError(f"Cannot embed query: {exc}") from exc
        hits = self._store.similarity_search(query_vector, collection_id, kind, top_k)
        return [(max(0.0, score), record) for score, record in hits]

    def _structural_candidates(self, query, collection_id, kind, top_k):
        matches = self._store.find_structural(query, collection_id)
        if not matches:
            return []
        records = self._store.get_vectors_by_ids(m.id for m in matches)
        scored = []
        for match in matches:
            record = records.get(match.id)
            if record is None or (kind is not None and record.kind != kind):
                continue
            name = match.hierarchy_path.rsplit("/", 1)[-1]
            labels = " ".join([match.hierarchy_path] + match.tags)
            score = structural_score(
                query, name, record.metadata.get("path") or "", record.content, labels,
            )
            scored.append((score, record))
        scored.sort(key=lambda item: (-item[0], item[1].id))
        return scored[:top_k]

    def _graph_candidates(self, seeds, collection_id, kind):
        if not seeds:
            return []
        edges = self._store.get_edges(collection_id, RELATION_SIMILAR)
        if not edges:
            return []
        reached = expand_neighbors(
            to_networkx(edges),
            seeds,
            max_depth=self._config.GRAPH_MAX_DEPTH,
            max_fanout=self._config.GRAPH_MAX_FANOUT,
            max_visited=self._config.GRAPH_MAX_VISITED,
            decay=self._config.GRAPH_DECAY,
        )
        records = self._store.get_vectors_by_ids(reached)
        out = []
        for rid, score in reached.items():
            record = records.get(rid)
            if record is None:
                continue
            if collection_id is not None and record.collection_id != collection_id:
                continue
            if kind is not None and record.kind != kind:
                continue
            out.append((score, record))
        return out
