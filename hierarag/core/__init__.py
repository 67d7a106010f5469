"""
Indexing and retrieval core.

Hierarchy builder → indexer → record store ← query engine, with the
embedding provider as a pluggable collaborator.
"""
