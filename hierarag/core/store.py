"""
SQLite-backed record store.

Holds the three record families of a hierarag index, all scoped by an
owning collection id:

* ``vectors``          — embedding + content + provenance metadata
* ``structural_index`` — hierarchy path + tags + content hash per node
* ``knowledge_graph``  — weighted similarity edges between vector records

Embeddings are stored as float32 blobs and compared with numpy.  Writes
are insert-or-replace by primary key, so re-indexing the same logical
record overwrites it.  Pass ``":memory:"`` as *db_path* for an isolated,
throwaway store.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional

import numpy as np

from ..errors import ValidationError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

VECTOR_SIZE = 1536  # OpenAI text-embedding-3-small dimension

KIND_CODEBASE = "codebase"
KIND_EXTERNAL_DOC = "external_doc"
KIND_REFERENCE = "reference"
RECORD_KINDS: tuple[str, ...] = (KIND_CODEBASE, KIND_EXTERNAL_DOC, KIND_REFERENCE)

RELATION_SIMILAR = "similar"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS vectors (
    id            TEXT PRIMARY KEY,
    collection_id TEXT NOT NULL,
    kind          TEXT NOT NULL,
    content       TEXT NOT NULL,
    embedding     BLOB NOT NULL,
    metadata      TEXT NOT NULL DEFAULT '{}',
    created_at    TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_vectors_collection ON vectors(collection_id);
CREATE INDEX IF NOT EXISTS idx_vectors_kind ON vectors(kind);

CREATE TABLE IF NOT EXISTS structural_index (
    id             TEXT PRIMARY KEY,
    collection_id  TEXT NOT NULL,
    node_id        TEXT NOT NULL,
    hierarchy_path TEXT NOT NULL,
    tags           TEXT NOT NULL DEFAULT '',
    content_hash   TEXT NOT NULL,
    created_at     TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_structural_collection ON structural_index(collection_id);
CREATE INDEX IF NOT EXISTS idx_structural_path ON structural_index(hierarchy_path);
CREATE INDEX IF NOT EXISTS idx_structural_tags ON structural_index(tags);

CREATE TABLE IF NOT EXISTS knowledge_graph (
    id            TEXT PRIMARY KEY,
    source_id     TEXT NOT NULL,
    target_id     TEXT NOT NULL,
    relation_type TEXT NOT NULL,
    weight        REAL NOT NULL DEFAULT 1.0,
    created_at    TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_graph_source ON knowledge_graph(source_id);
CREATE INDEX IF NOT EXISTS idx_graph_target ON knowledge_graph(target_id);
CREATE INDEX IF NOT EXISTS idx_graph_relation ON knowledge_graph(relation_type);
"""

_COLLECTION_EDGES = (
    "source_id IN (SELECT id FROM vectors WHERE collection_id = ?)"
)

# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass
class VectorRecord:
    id: str
    collection_id: str
    kind: str
    content: str
    embedding: np.ndarray
    metadata: dict = field(default_factory=dict)
    created_at: str = ""


@dataclass
class StructuralRecord:
    id: str
    collection_id: str
    node_id: str
    hierarchy_path: str
    tags: list[str] = field(default_factory=list)
    content_hash: str = ""
    created_at: str = ""


@dataclass
class GraphEdge:
    id: str
    source_id: str
    target_id: str
    relation_type: str
    weight: float
    created_at: str = ""


# ---------------------------------------------------------------------------
# Vector helpers
# ---------------------------------------------------------------------------

def _vec_to_bytes(vec) -> bytes:
    """Serialise a vector to compact float32 bytes."""
    return np.asarray(vec, dtype=np.float32).tobytes()


def _bytes_to_vec(buf: bytes) -> np.ndarray:
    """Deserialise float32 bytes back to a float64 vector."""
    return np.frombuffer(buf, dtype=np.float32).astype(np.float64)


def cosine_similarity_batch(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity between *query* (1-D) and each row of *matrix*."""
    query_norm = np.linalg.norm(query)
    if query_norm == 0:
        return np.zeros(matrix.shape[0])
    row_norms = np.linalg.norm(matrix, axis=1)
    row_norms[row_norms == 0] = 1.0
    return np.clip((matrix @ query) / (row_norms * query_norm), -1.0, 1.0)


def cosine_similarity_matrix(matrix: np.ndarray) -> np.ndarray:
    """Pairwise cosine similarity between the rows of *matrix*."""
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    unit = matrix / norms
    return np.clip(unit @ unit.T, -1.0, 1.0)


def make_record_id(*parts: str) -> str:
    """
    Deterministic UUID5 over ``":"``-joined *parts*.

    Re-indexing the same logical item yields the same id, so writes
    replace instead of duplicating.
    """
    return str(uuid.uuid5(uuid.NAMESPACE_URL, ":".join(parts)))


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


# ---------------------------------------------------------------------------
# RecordStore
# ---------------------------------------------------------------------------

class RecordStore:
    """Durable storage for vector, structural and graph records.

    Parameters
    ----------
    db_path:
        SQLite database file, or ``":memory:"``.
    dimensions:
        Fixed embedding length.  Every stored vector must have it.
    """

    def __init__(self, db_path: str = ":memory:", dimensions: int = VECTOR_SIZE) -> None:
        if dimensions <= 0:
            raise ValidationError("dimensions must be positive")
        self._db_path = db_path
        self.dimensions = dimensions
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None
        self._init_db()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _init_db(self) -> None:
        """Create the database and tables if missing."""
        if self._db_path != ":memory:":
            os.makedirs(os.path.dirname(self._db_path) or ".", exist_ok=True)
        with self._lock:
            conn = self._get_conn()
            conn.executescript(_SCHEMA)
            conn.commit()
            row = conn.execute("SELECT length(embedding) FROM vectors LIMIT 1").fetchone()
        if row is not None and row[0] // 4 != self.dimensions:
            raise ValidationError(
                f"Store {self._db_path} holds {row[0] // 4}-dimensional vectors, "
                f"not {self.dimensions}"
            )

    def _get_conn(self) -> sqlite3.Connection:
        """Lazy connection shared across threads (guarded by ``_lock``)."""
        if self._conn is None:
            self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
            if self._db_path != ":memory:":
                self._conn.execute("PRAGMA journal_mode=WAL")
                self._conn.execute("PRAGMA synchronous=NORMAL")
        return self._conn

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            try:
                self._conn.close()
            except sqlite3.Error:
                pass
            self._conn = None

    def __enter__(self) -> "RecordStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert_vectors(self, records: Iterable[VectorRecord]) -> None:
        """Insert or replace vector records.

        Raises
        ------
        ValidationError
            If an embedding does not have the store's dimensionality.
        """
        rows = []
        for rec in records:
            if len(rec.embedding) != self.dimensions:
                raise ValidationError(
                    f"Embedding for {rec.id} has {len(rec.embedding)} dimensions, "
                    f"expected {self.dimensions}"
                )
            rec.created_at = _now()
            rows.append((
                rec.id, rec.collection_id, rec.kind, rec.content,
                _vec_to_bytes(rec.embedding),
                json.dumps(rec.metadata, default=str),
                rec.created_at,
            ))
        if not rows:
            return
        with self._lock:
            conn = self._get_conn()
            conn.executemany(
                "INSERT OR REPLACE INTO vectors "
                "(id, collection_id, kind, content, embedding, metadata, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                rows,
            )
            conn.commit()
        logger.debug("[RecordStore] Upserted %d vectors", len(rows))

    def upsert_structural(self, records: Iterable[StructuralRecord]) -> None:
        """Insert or replace structural records."""
        rows = []
        for rec in records:
            rec.created_at = _now()
            rows.append((
                rec.id, rec.collection_id, rec.node_id, rec.hierarchy_path,
                ",".join(rec.tags), rec.content_hash, rec.created_at,
            ))
        if not rows:
            return
        with self._lock:
            conn = self._get_conn()
            conn.executemany(
                "INSERT OR REPLACE INTO structural_index "
                "(id, collection_id, node_id, hierarchy_path, tags, content_hash, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                rows,
            )
            conn.commit()
        logger.debug("[RecordStore] Upserted %d structural records", len(rows))

    def upsert_edges(self, edges: Iterable[GraphEdge]) -> None:
        """Insert or replace graph edges."""
        rows = []
        for edge in edges:
            if edge.source_id == edge.target_id:
                raise ValidationError(f"Self-edge on {edge.source_id}")
            edge.created_at = _now()
            rows.append((
                edge.id, edge.source_id, edge.target_id,
                edge.relation_type, float(edge.weight), edge.created_at,
            ))
        if not rows:
            return
        with self._lock:
            conn = self._get_conn()
            conn.executemany(
                "INSERT OR REPLACE INTO knowledge_graph "
                "(id, source_id, target_id, relation_type, weight, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                rows,
            )
            conn.commit()
        logger.debug("[RecordStore] Upserted %d edges", len(rows))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _query(self, sql: str, params: tuple = ()) -> list[tuple]:
        with self._lock:
            return self._get_conn().execute(sql, params).fetchall()

    @staticmethod
    def _to_vector(row: tuple) -> VectorRecord:
        rid, cid, kind, content, emb, meta, created = row
        try:
            metadata = json.loads(meta)
        except (json.JSONDecodeError, TypeError):
            metadata = {}
        return VectorRecord(
            id=rid, collection_id=cid, kind=kind, content=content,
            embedding=_bytes_to_vec(emb), metadata=metadata, created_at=created,
        )

    @staticmethod
    def _to_structural(row: tuple) -> StructuralRecord:
        rid, cid, node_id, hpath, tags, chash, created = row
        return StructuralRecord(
            id=rid, collection_id=cid, node_id=node_id, hierarchy_path=hpath,
            tags=[t for t in tags.split(",") if t], content_hash=chash, created_at=created,
        )

    def get_vectors(
        self,
        collection_id: Optional[str] = None,
        kind: Optional[str] = None,
    ) -> list[VectorRecord]:
        """Vector records, optionally filtered by collection and kind, ordered by id."""
        sql = "SELECT * FROM vectors WHERE 1=1"
        params: list = []
        if collection_id is not None:
            sql += " AND collection_id = ?"
            params.append(collection_id)
        if kind is not None:
            sql += " AND kind = ?"
            params.append(kind)
        sql += " ORDER BY id"
        return [self._to_vector(r) for r in self._query(sql, tuple(params))]

    def get_vectors_by_ids(self, ids: Iterable[str]) -> dict[str, VectorRecord]:
        """Map of id → record for the ids that exist."""
        id_list = list(dict.fromkeys(ids))
        found: dict[str, VectorRecord] = {}
        # stay under SQLite's bound-parameter limit
        for start in range(0, len(id_list), 500):
            chunk = id_list[start:start + 500]
            placeholders = ",".join("?" for _ in chunk)
            rows = self._query(
                f"SELECT * FROM vectors WHERE id IN ({placeholders})", tuple(chunk)
            )
            for row in rows:
                rec = self._to_vector(row)
                found[rec.id] = rec
        return found

    def similarity_search(
        self,
        query_vector,
        collection_id: Optional[str] = None,
        kind: Optional[str] = None,
        top_k: Optional[int] = None,
    ) -> list[tuple[float, VectorRecord]]:
        """Cosine-similarity ranking of stored vectors against *query_vector*.

        Returns
        -------
        list[tuple[float, VectorRecord]]
            Sorted by score descending, at most *top_k* entries.
        """
        records = self.get_vectors(collection_id, kind)
        if not records:
            return []
        query = np.asarray(query_vector, dtype=np.float64)
        if query.shape[0] != self.dimensions:
            raise ValidationError(
                f"Query vector has {query.shape[0]} dimensions, expected {self.dimensions}"
            )
        matrix = np.stack([r.embedding for r in records])
        scores = cosine_similarity_batch(query, matrix)
        order = np.argsort(-scores, kind="stable")
        if top_k is not None:
            order = order[:top_k]
        return [(float(scores[i]), records[i]) for i in order]

    def find_structural(
        self,
        pattern: str,
        collection_id: Optional[str] = None,
    ) -> list[StructuralRecord]:
        """Structural records whose hierarchy path or tags contain *pattern*.

        Matching is a case-insensitive substring match.
        """
        like = f"%{_escape_like(pattern.lower())}%"
        sql = (
            "SELECT * FROM structural_index WHERE "
            "(lower(hierarchy_path) LIKE ? ESCAPE '\\' OR lower(tags) LIKE ? ESCAPE '\\')"
        )
        params: list = [like, like]
        if collection_id is not None:
            sql += " AND collection_id = ?"
            params.append(collection_id)
        return [self._to_structural(r) for r in self._query(sql, tuple(params))]

    def get_structural(self, collection_id: Optional[str] = None) -> list[StructuralRecord]:
        sql = "SELECT * FROM structural_index"
        params: tuple = ()
        if collection_id is not None:
            sql += " WHERE collection_id = ?"
            params = (collection_id,)
        return [self._to_structural(r) for r in self._query(sql + " ORDER BY id", params)]

    def get_edges(
        self,
        collection_id: Optional[str] = None,
        relation_type: Optional[str] = None,
    ) -> list[GraphEdge]:
        """Edges whose source record belongs to *collection_id*."""
        sql = "SELECT * FROM knowledge_graph WHERE 1=1"
        params: list = []
        if collection_id is not None:
            sql += f" AND {_COLLECTION_EDGES}"
            params.append(collection_id)
        if relation_type is not None:
            sql += " AND relation_type = ?"
            params.append(relation_type)
        sql += " ORDER BY id"
        return [
            GraphEdge(id=r[0], source_id=r[1], target_id=r[2],
                      relation_type=r[3], weight=r[4], created_at=r[5])
            for r in self._query(sql, tuple(params))
        ]

    # ------------------------------------------------------------------
    # Deletion (whole collection only)
    # ------------------------------------------------------------------

    def clear_edges(self, collection_id: str) -> int:
        """Delete every edge of *collection_id*; return the number removed."""
        with self._lock:
            conn = self._get_conn()
            cur = conn.execute(
                f"DELETE FROM knowledge_graph WHERE {_COLLECTION_EDGES}",
                (collection_id,),
            )
            conn.commit()
        return cur.rowcount

    def clear_collection(self, collection_id: str) -> dict:
        """Delete all records of *collection_id*.

        Returns
        -------
        dict
            Keys: ``vectors``, ``structural``, ``edges`` (rows removed).
        """
        with self._lock:
            conn = self._get_conn()
            edges = conn.execute(
                f"DELETE FROM knowledge_graph WHERE {_COLLECTION_EDGES} "
                "OR target_id IN (SELECT id FROM vectors WHERE collection_id = ?)",
                (collection_id, collection_id),
            ).rowcount
            structural = conn.execute(
                "DELETE FROM structural_index WHERE collection_id = ?", (collection_id,)
            ).rowcount
            vectors = conn.execute(
                "DELETE FROM vectors WHERE collection_id = ?", (collection_id,)
            ).rowcount
            conn.commit()
        logger.info(
            "Cleared collection %s: %d vectors, %d structural, %d edges",
            collection_id, vectors, structural, edges,
        )
        return {"vectors": vectors, "structural": structural, "edges": edges}

    # ------------------------------------------------------------------
    # Info
    # ------------------------------------------------------------------

    def collection_stats(self, collection_id: str) -> dict:
        """Record counts for *collection_id*."""
        by_kind = dict(self._query(
            "SELECT kind, COUNT(*) FROM vectors WHERE collection_id = ? GROUP BY kind",
            (collection_id,),
        ))
        structural = self._query(
            "SELECT COUNT(*) FROM structural_index WHERE collection_id = ?",
            (collection_id,),
        )[0][0]
        edges = self._query(
            f"SELECT COUNT(*) FROM knowledge_graph WHERE {_COLLECTION_EDGES}",
            (collection_id,),
        )[0][0]
        return {
            "collection_id": collection_id,
            "vectors": sum(by_kind.values()),
            "by_kind": by_kind,
            "structural": structural,
            "edges": edges,
        }

    def list_collections(self) -> list[str]:
        rows = self._query(
            "SELECT DISTINCT collection_id FROM vectors "
            "UNION SELECT DISTINCT collection_id FROM structural_index ORDER BY 1"
        )
        return [r[0] for r in rows]
