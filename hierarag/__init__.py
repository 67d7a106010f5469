"""
hierarag — hierarchical code indexing and hybrid retrieval.

Public API for library usage::

    from hierarag import HierarchicalIndex

    with HierarchicalIndex.open() as index:
        index.index_collection("docs", codebase_path="src")
        hits = index.search("tokenizer", collection_id="docs", threshold=0.2)
"""

__version__ = "0.1.0"

from .api import HierarchicalIndex
from .cancellation import CancelToken
from .config import Config
from .errors import (
    EmbeddingError,
    ExtractionError,
    FileSystemError,
    HierarAGError,
    OperationCancelled,
    SearchError,
    ValidationError,
)

__all__ = [
    "HierarchicalIndex",
    "CancelToken",
    "Config",
    "HierarAGError",
    "FileSystemError",
    "ValidationError",
    "ExtractionError",
    "EmbeddingError",
    "SearchError",
    "OperationCancelled",
]
