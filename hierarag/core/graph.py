"""
Similarity graph over vector records.

Edges are built exhaustively: every pair of records in a collection is
compared, and an undirected ``similar`` edge is kept when the cosine
similarity exceeds the threshold.  This is O(n²) in the number of
records; large collections should move to an approximate
nearest-neighbour index instead.

At query time the stored edges are loaded into a :mod:`networkx` graph
and expanded breadth-first from the candidate records, with depth,
fan-out and visit budgets.
"""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

import networkx as nx
import numpy as np

from .store import (
    RELATION_SIMILAR,
    GraphEdge,
    VectorRecord,
    cosine_similarity_matrix,
    make_record_id,
)

logger = logging.getLogger(__name__)


def make_edge_id(source_id: str, target_id: str, relation_type: str = RELATION_SIMILAR) -> str:
    return make_record_id(source_id, target_id, relation_type)


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------

def build_similarity_edges(
    records: Sequence[VectorRecord],
    threshold: float,
) -> list[GraphEdge]:
    """
    Pairwise similarity edges between *records*.

    Parameters
    ----------
    records:
        Vector records of a single collection.
    threshold:
        An edge is created when similarity is strictly greater than this.

    Returns
    -------
    list[GraphEdge]
        One edge per unordered pair; ``source_id`` is the smaller id.
    """
    if len(records) < 2:
        return []
    matrix = np.stack([np.asarray(r.embedding, dtype=np.float64) for r in records])
    sims = cosine_similarity_matrix(matrix)
    rows, cols = np.nonzero(np.triu(sims > threshold, k=1))

    edges: list[GraphEdge] = []
    for i, j in zip(rows.tolist(), cols.tolist()):
        a, b = records[i].id, records[j].id
        if a == b:
            continue
        source, target = (a, b) if a < b else (b, a)
        edges.append(GraphEdge(
            id=make_edge_id(source, target),
            source_id=source,
            target_id=target,
            relation_type=RELATION_SIMILAR,
            weight=round(float(sims[i, j]), 6),
        ))
    logger.debug("Similarity pass: %d records, %d edges", len(records), len(edges))
    return edges


def to_networkx(edges: Iterable[GraphEdge]) -> nx.Graph:
    """Undirected weighted graph of *edges* (heaviest edge wins on duplicates)."""
    g = nx.Graph()
    for edge in edges:
        if g.has_edge(edge.source_id, edge.target_id):
            if g[edge.source_id][edge.target_id]["weight"] >= edge.weight:
                continue
        g.add_edge(edge.source_id, edge.target_id,
                   weight=float(edge.weight), relation=edge.relation_type)
    return g


# ---------------------------------------------------------------------------
# Expansion
# ---------------------------------------------------------------------------

def expand_neighbors(
    graph: nx.Graph,
    seeds: dict[str, float],
    max_depth: int = 2,
    max_fanout: int = 5,
    max_visited: int = 200,
    decay: float = 0.5,
) -> dict[str, float]:
    """
    Propagate seed scores along graph edges.

    A record reached at hop *h* scores ``seed_score × Π edge_weight ×
    decay^(h-1)``; the best path wins.  Seeds themselves are not returned.

    Parameters
    ----------
    graph:
        Weighted graph from :func:`to_networkx`.
    seeds:
        Record id → starting score.
    max_depth:
        Number of hops to traverse.
    max_fanout:
        Heaviest edges followed per node.
    max_visited:
        Upper bound on distinct nodes touched, seeds included.
    """
    visited: set[str] = set(seeds)
    frontier = {nid: score for nid, score in seeds.items() if nid in graph}
    reached: dict[str, float] = {}

    for hop in range(1, max_depth + 1):
        factor = decay ** (hop - 1)
        next_frontier: dict[str, float] = {}
        for nid, carried in frontier.items():
            neighbours = sorted(
                graph[nid].items(),
                key=lambda item: (-item[1]["weight"], item[0]),
            )[:max_fanout]
            for nbr, attrs in neighbours:
                if nbr in visited and nbr not in next_frontier:
                    continue
                if nbr not in next_frontier and len(visited) >= max_visited:
                    continue
                value = carried * attrs["weight"]
                if value > next_frontier.get(nbr, 0.0):
                    next_frontier[nbr] = value
                visited.add(nbr)
        for nid, value in next_frontier.items():
            reached[nid] = max(reached.get(nid, 0.0), value * factor)
        if not next_frontier:
            break
        frontier = next_frontier

    return reached
