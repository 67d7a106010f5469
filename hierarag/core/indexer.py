"""
Indexer — turns a codebase and external documents into stored records.

One pass over a collection:
  1. Build the directory → file → element hierarchy of the codebase
  2. Embed every node that carries content; write a vector record and a
     structural record per node
  3. Extract, tag and embed each external document
  4. Rebuild the collection's similarity graph from all its vectors

Per-item failures (unreadable file, unsupported document, embedding
error) are logged and counted; the pass carries on with the next item.
"""

from __future__ import annotations

import hashlib
import logging
import os
import threading
import time
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Callable, Iterable, Optional

from ..cancellation import CancelToken, check
from ..errors import EmbeddingError, ExtractionError, FileSystemError, ValidationError
from .documents import extract_document_content, extract_document_tags
from .embedder import Embedder, embed_with_timeout
from .extractors import complexity_band
from .graph import build_similarity_edges
from .hierarchy import Hierarchy, HierarchyBuilder, HierarchyNode
from .store import (
    KIND_CODEBASE,
    KIND_EXTERNAL_DOC,
    KIND_REFERENCE,
    RecordStore,
    StructuralRecord,
    VectorRecord,
    make_record_id,
)

if TYPE_CHECKING:
    from ..config import Config

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]

_ITEM_ERRORS = (FileSystemError, ExtractionError, EmbeddingError)


@dataclass
class IndexSummary:
    collection_id: str
    node_count: int = 0
    vector_count: int = 0
    structural_count: int = 0
    document_count: int = 0
    edge_count: int = 0
    error_count: int = 0
    elapsed_seconds: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Record derivation
# ---------------------------------------------------------------------------

def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8", errors="replace")).hexdigest()


def node_tags(node: HierarchyNode) -> list[str]:
    """``lang:``, ``type:`` and ``complexity:`` tags of a hierarchy node."""
    tags: list[str] = []
    if node.metadata.language:
        tags.append(f"lang:{node.metadata.language}")
    tags.append(f"type:{node.kind}")
    band = complexity_band(node.metadata.complexity)
    if band:
        tags.append(f"complexity:{band}")
    return tags


def _line_range(node: HierarchyNode) -> Optional[list[int]]:
    if node.metadata.line_start is None:
        return None
    return [node.metadata.line_start, node.metadata.line_end]


# ---------------------------------------------------------------------------
# Indexer
# ---------------------------------------------------------------------------

class Indexer:
    """
    Orchestrates indexing passes into a :class:`RecordStore`.

    Parameters
    ----------
    store:
        Destination store; its dimensionality must match the embedder's.
    embedder:
        Text → vector provider.
    config:
        Supplies the embedding timeout, graph threshold and ignore patterns.
    """

    def __init__(self, store: RecordStore, embedder: Embedder, config: "Config") -> None:
        if embedder.dimensions != store.dimensions:
            raise ValidationError(
                f"Embedder produces {embedder.dimensions}-dimensional vectors, "
                f"store expects {store.dimensions}"
            )
        self.store = store
        self.embedder = embedder
        self.config = config
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _collection_lock(self, collection_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(collection_id, threading.Lock())

    def _embed(self, text: str) -> list[float]:
        return embed_with_timeout(self.embedder, text, self.config.EMBEDDING_TIMEOUT)

    # ------------------------------------------------------------------
    # Full pass
    # ------------------------------------------------------------------

    def index_collection(
        self,
        collection_id: str,
        codebase_path: Optional[str] = None,
        external_doc_paths: Optional[Iterable[str]] = None,
        cancel_token: Optional[CancelToken] = None,
        reset: bool = False,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> IndexSummary:
        """
        Index a codebase and/or documents into *collection_id*.

        With neither source given only the graph pass runs.  Passes over
        the same collection are serialised.

        Parameters
        ----------
        collection_id:
            Owning collection; required.
        codebase_path:
            Root directory of the source tree.
        external_doc_paths:
            Document files (``.md .markdown .txt .rst .json .yaml .yml``).
        cancel_token:
            Checked between items; cancelling raises ``OperationCancelled``.
        reset:
            Clear the collection before indexing.
        progress_callback:
            Called with ``(current, total, label)`` per item.

        Raises
        ------
        ValidationError
            Missing collection id or codebase path that is not a directory.
        """
        if not collection_id or not isinstance(collection_id, str):
            raise ValidationError("collection_id is required")
        if codebase_path is not None and not os.path.isdir(codebase_path):
            raise ValidationError(f"Not a directory: {codebase_path}")
        if isinstance(external_doc_paths, str):
            external_doc_paths = [external_doc_paths]
        doc_paths = list(external_doc_paths or [])

        with self._collection_lock(collection_id):
            start_time = time.time()
            summary = IndexSummary(collection_id=collection_id)
            if reset:
                self.store.clear_collection(collection_id)

            if codebase_path is not None:
                hierarchy = HierarchyBuilder(self.config, cancel_token).build(codebase_path)
                summary.node_count = len(hierarchy)
                self._index_hierarchy(
                    collection_id, hierarchy, summary, cancel_token, progress_callback,
                )

            for idx, path in enumerate(doc_paths):
                check(cancel_token)
                if progress_callback:
                    progress_callback(idx + 1, len(doc_paths), path)
                try:
                    self._index_document(collection_id, path)
                    summary.document_count += 1
                    summary.vector_count += 1
                except _ITEM_ERRORS as exc:
                    logger.warning("Skipping document %s: %s", path, exc)
                    summary.error_count += 1

            check(cancel_token)
            summary.edge_count = self.rebuild_graph(collection_id)

            summary.elapsed_seconds = round(time.time() - start_time, 2)
        logger.info(
            "Indexed %s: %d vectors, %d structural, %d edges, %d errors in %.1fs",
            collection_id, summary.vector_count, summary.structural_count,
            summary.edge_count, summary.error_count, summary.elapsed_seconds,
        )
        return summary

    # ------------------------------------------------------------------
    # Codebase
    # ------------------------------------------------------------------

    def _index_hierarchy(
        self,
        collection_id: str,
        hierarchy: Hierarchy,
        summary: IndexSummary,
        cancel_token: Optional[CancelToken],
        progress_callback: Optional[ProgressCallback],
    ) -> None:
        nodes = [n for n in hierarchy if n.has_content]
        total = len(nodes)
        for idx, node in enumerate(nodes):
            check(cancel_token)
            if progress_callback:
                progress_callback(idx + 1, total, f"{node.name} ({node.kind})")
            try:
                embedding = self._embed(node.content)
            except EmbeddingError as exc:
                logger.warning("Skipping %s %s: %s", node.kind, node.path, exc)
                summary.error_count += 1
                continue

            record_id = make_record_id(collection_id, node.id)
            hierarchy_names = hierarchy.ancestor_names(node.id)
            tags = node_tags(node)
            self.store.upsert_vectors([VectorRecord(
                id=record_id,
                collection_id=collection_id,
                kind=KIND_CODEBASE,
                content=node.content,
                embedding=embedding,
                metadata={
                    "source": node.path,
                    "path": node.path,
                    "line_range": _line_range(node),
                    "hierarchy": hierarchy_names,
                    "tags": tags,
                    "node_id": node.id,
                    "node_kind": node.kind,
                },
            )])
            self.store.upsert_structural([StructuralRecord(
                id=record_id,
                collection_id=collection_id,
                node_id=node.id,
                hierarchy_path="/".join(hierarchy_names),
                tags=tags,
                content_hash=content_hash(node.content),
            )])
            summary.vector_count += 1
            summary.structural_count += 1

    # ------------------------------------------------------------------
    # Documents and references
    # ------------------------------------------------------------------

    def _index_document(self, collection_id: str, path: str) -> str:
        abs_path = os.path.abspath(path)
        content = extract_document_content(abs_path)
        if not content.strip():
            raise ExtractionError(f"Empty document: {abs_path}")
        tags = extract_document_tags(content)
        record_id = make_record_id(collection_id, "doc", abs_path)
        self.store.upsert_vectors([VectorRecord(
            id=record_id,
            collection_id=collection_id,
            kind=KIND_EXTERNAL_DOC,
            content=content,
            embedding=self._embed(content),
            metadata={
                "source": abs_path,
                "path": abs_path,
                "hierarchy": [os.path.basename(abs_path)],
                "tags": tags,
            },
        )])
        logger.debug("Indexed document %s (%d chars)", abs_path, len(content))
        return record_id

    def add_reference(
        self,
        collection_id: str,
        content: str,
        source: str,
        tags: Optional[list[str]] = None,
    ) -> str:
        """
        Store a free-text reference record and return its id.

        The id derives from *collection_id* and *source*, so adding the
        same source again replaces the earlier record.  The similarity
        graph is not rebuilt; the next indexing pass picks it up.
        """
        if not collection_id:
            raise ValidationError("collection_id is required")
        if not content or not content.strip():
            raise ValidationError("content is required")
        if not source:
            raise ValidationError("source is required")
        record_id = make_record_id(collection_id, "ref", source)
        with self._collection_lock(collection_id):
            self.store.upsert_vectors([VectorRecord(
                id=record_id,
                collection_id=collection_id,
                kind=KIND_REFERENCE,
                content=content,
                embedding=self._embed(content),
                metadata={
                    "source": source,
                    "hierarchy": [source],
                    "tags": list(tags or []),
                },
            )])
        return record_id

    # ------------------------------------------------------------------
    # Graph pass
    # ------------------------------------------------------------------

    def rebuild_graph(self, collection_id: str) -> int:
        """Replace the collection's similarity edges; return the edge count."""
        t0 = time.perf_counter()
        records = self.store.get_vectors(collection_id)
        edges = build_similarity_edges(records, self.config.SIMILARITY_THRESHOLD)
        self.store.clear_edges(collection_id)
        self.store.upsert_edges(edges)
        logger.info(
            "Similarity graph for %s: %d records, %d edges in %.1fms",
            collection_id, len(records), len(edges), (time.perf_counter() - t0) * 1000,
        )
        return len(edges)
