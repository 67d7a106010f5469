"""
Programmatic API for hierarag — use as a library from Python code.

Example usage::

    from hierarag import HierarchicalIndex

    with HierarchicalIndex.open() as index:
        index.index_collection("my-project", codebase_path="./src",
                               external_doc_paths=["README.md"])
        for hit in index.search("parse config", collection_id="my-project",
                                threshold=0.2):
            print(hit["score"], hit["metadata"]["path"])

Each instance owns its store connection; nothing is shared between
instances.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from .cancellation import CancelToken
from .config import Config
from .core.embedder import Embedder, create_embedder
from .core.hierarchy import HierarchyBuilder
from .core.indexer import Indexer, ProgressCallback
from .core.searcher import QueryEngine
from .core.store import RecordStore

_logger = logging.getLogger(__name__)


class HierarchicalIndex:
    """
    Facade over hierarchy building, indexing and search.

    Parameters
    ----------
    config:
        Settings; loaded with :meth:`Config.load` when omitted.
    store:
        Record store; defaults to ``RecordStore(config.DB_PATH, ...)``.
    embedder:
        Embedding provider; defaults to ``create_embedder(config)``.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        store: Optional[RecordStore] = None,
        embedder: Optional[Embedder] = None,
    ) -> None:
        self.config = config or Config.load()
        self.embedder = embedder or create_embedder(self.config)
        self.store = store or RecordStore(self.config.DB_PATH, self.config.EMBEDDING_DIMENSIONS)
        self._indexer = Indexer(self.store, self.embedder, self.config)
        self._engine = QueryEngine(self.store, self.embedder, self.config)

    @classmethod
    def open(
        cls,
        config_path: Optional[str] = None,
        db_path: Optional[str] = None,
    ) -> "HierarchicalIndex":
        """Load configuration from *config_path* (or the usual locations)."""
        config = Config.load(config_path)
        if db_path:
            config.DB_PATH = db_path
        return cls(config)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def build_hierarchy(
        self,
        root_path: str,
        include_nodes: bool = False,
        cancel_token: Optional[CancelToken] = None,
    ) -> dict:
        """Build (but do not index) the hierarchy of *root_path*; return its summary."""
        hierarchy = HierarchyBuilder(self.config, cancel_token).build(root_path)
        summary = hierarchy.summary()
        if include_nodes:
            summary["nodes"] = [node.to_dict() for node in hierarchy]
        return summary

    def index_collection(
        self,
        collection_id: str,
        codebase_path: Optional[str] = None,
        external_doc_paths: Optional[Iterable[str]] = None,
        reset: bool = False,
        cancel_token: Optional[CancelToken] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> dict:
        summary = self._indexer.index_collection(
            collection_id,
            codebase_path=codebase_path,
            external_doc_paths=external_doc_paths,
            cancel_token=cancel_token,
            reset=reset,
            progress_callback=progress_callback,
        )
        return summary.to_dict()

    def add_reference(
        self,
        collection_id: str,
        content: str,
        source: str,
        tags: Optional[list[str]] = None,
    ) -> str:
        return self._indexer.add_reference(collection_id, content, source, tags)

    def search(
        self,
        query: str,
        collection_id: Optional[str] = None,
        type: Optional[str] = None,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> list[dict]:
        """
        Hybrid search; see :meth:`QueryEngine.search`.

        Returns
        -------
        list[dict]
            ``SearchResult.to_dict()`` of each hit, best first.
        """
        results = self._engine.search(
            query, collection_id=collection_id, kind=type, limit=limit, threshold=threshold,
        )
        return [r.to_dict() for r in results]

    def status(self, collection_id: str) -> dict:
        return self.store.collection_stats(collection_id)

    def clear(self, collection_id: str) -> dict:
        return self.store.clear_collection(collection_id)

    def collections(self) -> list[str]:
        return self.store.list_collections()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        self.store.close()

    def __enter__(self) -> "HierarchicalIndex":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
