"""
Hierarchy builder — directory → file → code-element tree.

Walks a root directory depth-first and produces one node per directory,
one per recognised source file and one per extracted code element.  The
tree is rebuilt from scratch on every call; nothing is cached between
builds.
"""

from __future__ import annotations

import fnmatch
import hashlib
import logging
import os
import time
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Iterator, Optional

from ..cancellation import CancelToken, check
from ..errors import FileSystemError, ValidationError
from .extractors import (
    calculate_complexity,
    detect_language,
    extract_dependencies,
    extract_elements,
)

if TYPE_CHECKING:
    from ..config import Config

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Node kinds
# ---------------------------------------------------------------------------

class NodeKind:
    DIRECTORY = "directory"
    FILE = "file"
    FUNCTION = "function"
    CLASS = "class"
    INTERFACE = "interface"

    ALL = ("directory", "file", "function", "class", "interface")


# ---------------------------------------------------------------------------
# Directory / file exclusion rules
# ---------------------------------------------------------------------------

_SKIP_DIRS: frozenset[str] = frozenset({
    "node_modules", "dist", "build", "__pycache__",
    ".git", "vendor", ".hierarag",
    ".venv", "venv", "env", ".env",
    ".tox", ".mypy_cache", ".pytest_cache",
    "target",           # Rust/Java build output
    "bin", "obj",       # C# build output
    "coverage",
    ".next", ".nuxt",   # JS frameworks
    "eggs", ".eggs",
    ".cache",
})


def _load_gitignore_patterns(root: str) -> list[str]:
    """Read .gitignore from *root* and return glob patterns."""
    gi_path = os.path.join(root, ".gitignore")
    patterns: list[str] = []
    if not os.path.exists(gi_path):
        return patterns
    try:
        with open(gi_path, encoding="utf-8", errors="replace") as fh:
            for line in fh:
                line = line.strip()
                if line and not line.startswith("#") and not line.startswith("!"):
                    patterns.append(line.rstrip("/"))
    except OSError as exc:
        logger.warning("Cannot read %s: %s", gi_path, exc)
    return patterns


def _is_ignored(rel_path: str, patterns: list[str]) -> bool:
    """Return True if *rel_path* (or its basename) matches any pattern."""
    name = os.path.basename(rel_path)
    for pattern in patterns:
        if fnmatch.fnmatch(name, pattern) or fnmatch.fnmatch(rel_path, pattern):
            return True
    return False


# ---------------------------------------------------------------------------
# Node ids
# ---------------------------------------------------------------------------

def node_id_for_path(path: str) -> str:
    """Deterministic node id for an absolute *path* (not a security hash)."""
    return hashlib.sha256(path.encode("utf-8", errors="replace")).hexdigest()[:16]


def element_id(file_id: str, name: str, ordinal: int = 1) -> str:
    """
    Id of a code element.

    The first element called *name* in a file gets ``"{file_id}:{name}"``;
    later ones get an ``":{ordinal}"`` suffix.  Line numbers stay out of
    the id so that edits above an element keep its records in place.
    """
    if ordinal == 1:
        return f"{file_id}:{name}"
    return f"{file_id}:{name}:{ordinal}"


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class NodeMetadata:
    size: Optional[int] = None
    language: Optional[str] = None
    complexity: Optional[int] = None
    dependencies: list[str] = field(default_factory=list)
    line_start: Optional[int] = None
    line_end: Optional[int] = None


@dataclass
class HierarchyNode:
    """One entry of the directory → file → element tree."""
    id: str
    kind: str
    name: str
    path: str
    parent_id: Optional[str] = None
    child_ids: list[str] = field(default_factory=list)
    content: Optional[str] = None
    metadata: NodeMetadata = field(default_factory=NodeMetadata)

    @property
    def has_content(self) -> bool:
        return bool(self.content)

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Hierarchy (query surface over one build)
# ---------------------------------------------------------------------------

class Hierarchy:
    """
    The result of one :meth:`HierarchyBuilder.build` call.

    Nodes are kept in discovery order.  Lookups are by node id.
    """

    def __init__(self, root_path: str) -> None:
        self.root_path = root_path
        self.root_id: Optional[str] = None
        self._nodes: dict[str, HierarchyNode] = {}

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[HierarchyNode]:
        return iter(self._nodes.values())

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def add_node(self, node: HierarchyNode) -> None:
        """Insert *node* and link it under its parent."""
        if node.parent_id is None:
            self.root_id = node.id
        elif node.parent_id not in self._nodes:
            raise ValueError(f"Parent {node.parent_id} of {node.path} is not in the hierarchy")
        self._nodes[node.id] = node
        if node.parent_id is not None:
            self._nodes[node.parent_id].child_ids.append(node.id)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_node(self, node_id: str) -> Optional[HierarchyNode]:
        return self._nodes.get(node_id)

    def get_children(self, node_id: str) -> list[HierarchyNode]:
        node = self._nodes.get(node_id)
        if node is None:
            return []
        return [self._nodes[c] for c in node.child_ids if c in self._nodes]

    def get_parent(self, node_id: str) -> Optional[HierarchyNode]:
        node = self._nodes.get(node_id)
        if node is None or node.parent_id is None:
            return None
        return self._nodes.get(node.parent_id)

    def all_nodes(self) -> list[HierarchyNode]:
        return list(self._nodes.values())

    def ancestor_names(self, node_id: str) -> list[str]:
        """Names from the root down to and including *node_id*."""
        names: list[str] = []
        current = self._nodes.get(node_id)
        while current is not None:
            names.append(current.name)
            current = self.get_parent(current.id)
        names.reverse()
        return names

    def hierarchy_path(self, node_id: str) -> str:
        """Slash-joined ancestor-to-self name chain."""
        return "/".join(self.ancestor_names(node_id))

    # ------------------------------------------------------------------
    # Linear fallback search
    # ------------------------------------------------------------------

    @staticmethod
    def relevance_score(node: HierarchyNode, query: str) -> int:
        """Name match 10, path match 5, content match 3 (substring, case-insensitive)."""
        q = query.lower()
        score = 0
        if q in node.name.lower():
            score += 10
        if q in node.path.lower():
            score += 5
        if node.content and q in node.content.lower():
            score += 3
        return score

    def search_hierarchical(
        self,
        query: str,
        start_level: Optional[str] = NodeKind.DIRECTORY,
    ) -> list[HierarchyNode]:
        """
        Return nodes of kind *start_level* matching *query*, best first.

        Independent of the query engine: a linear scan over this build
        only.  ``start_level=None`` searches every kind.

        Parameters
        ----------
        query:
            Substring to look for in node names, paths and content.
        start_level:
            One of :attr:`NodeKind.ALL`, or None.
        """
        if start_level is not None and start_level not in NodeKind.ALL:
            raise ValidationError(f"Unknown node kind {start_level!r}")
        scored: list[tuple[int, HierarchyNode]] = []
        for node in self._nodes.values():
            if start_level is not None and node.kind != start_level:
                continue
            score = self.relevance_score(node, query)
            if score > 0:
                scored.append((score, node))
        scored.sort(key=lambda item: item[0], reverse=True)
        return [node for _score, node in scored]

    def summary(self) -> dict:
        """Node count, per-kind counts and the root id."""
        by_kind: dict[str, int] = {}
        for node in self._nodes.values():
            by_kind[node.kind] = by_kind.get(node.kind, 0) + 1
        return {
            "root_path": self.root_path,
            "root_id": self.root_id,
            "node_count": len(self._nodes),
            "by_kind": by_kind,
        }


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

class HierarchyBuilder:
    """
    Walks a directory tree and builds a :class:`Hierarchy`.

    Parameters
    ----------
    config:
        Optional :class:`~hierarag.config.Config`; supplies extra ignore
        patterns.
    cancel_token:
        Checked once per directory and once per file.
    """

    def __init__(
        self,
        config: Optional["Config"] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> None:
        self._extra_ignores: list[str] = list(config.IGNORE_PATTERNS) if config else []
        self._cancel = cancel_token
        self._root = ""
        self._ignores: list[str] = []

    def build(self, root_path: str) -> Hierarchy:
        """
        Build the hierarchy rooted at *root_path*.

        Raises
        ------
        ValidationError
            If *root_path* is empty or not a directory.
        FileSystemError
            If the root directory itself cannot be listed.
        OperationCancelled
            If the cancel token fires during the walk.
        """
        if not root_path or not isinstance(root_path, str):
            raise ValidationError("root_path is required")
        root = os.path.abspath(root_path)
        if not os.path.isdir(root):
            raise ValidationError(f"Not a directory: {root}")

        t0 = time.perf_counter()
        self._root = root
        self._ignores = _load_gitignore_patterns(root) + [
            p.rstrip("/") for p in self._extra_ignores
        ]
        hierarchy = Hierarchy(root)
        self._add_directory(hierarchy, root, None)
        logger.info(
            "Hierarchy built for %s: %d nodes in %.1fms",
            root, len(hierarchy), (time.perf_counter() - t0) * 1000,
        )
        return hierarchy

    # ------------------------------------------------------------------
    # Walk
    # ------------------------------------------------------------------

    def _skip_dir(self, name: str, abs_path: str) -> bool:
        if name in _SKIP_DIRS or name.startswith("."):
            return True
        return _is_ignored(os.path.relpath(abs_path, self._root), self._ignores)

    def _add_directory(
        self,
        hierarchy: Hierarchy,
        dir_path: str,
        parent_id: Optional[str],
    ) -> Optional[int]:
        """
        Add *dir_path* and its subtree.

        Returns the byte size of the directory, the sum over the file nodes
        beneath it (unrecognised files and pruned directories count for
        nothing), or None when the directory cannot be listed.
        """
        check(self._cancel)
        try:
            with os.scandir(dir_path) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as exc:
            if parent_id is None:
                raise FileSystemError(dir_path, str(exc)) from exc
            logger.warning("Skipping unreadable directory %s: %s", dir_path, exc)
            return None

        name = os.path.basename(dir_path) or dir_path
        node = HierarchyNode(
            id=node_id_for_path(dir_path),
            kind=NodeKind.DIRECTORY,
            name=name,
            path=dir_path,
            parent_id=parent_id,
        )
        hierarchy.add_node(node)

        size = 0
        for entry in entries:
            try:
                is_dir = entry.is_dir(follow_symlinks=False)
                is_file = not is_dir and entry.is_file()
            except OSError:
                continue
            if is_dir:
                if self._skip_dir(entry.name, entry.path):
                    continue
                sub_size = self._add_directory(hierarchy, entry.path, node.id)
                if sub_size is not None:
                    size += sub_size
            elif is_file:
                language = detect_language(entry.name)
                if language is None:
                    continue
                if _is_ignored(os.path.relpath(entry.path, self._root), self._ignores):
                    continue
                try:
                    file_size = entry.stat().st_size
                except OSError:
                    file_size = 0
                size += file_size
                self._add_file(hierarchy, entry.path, node.id, language, file_size)

        node.metadata.size = size
        return size

    def _add_file(
        self,
        hierarchy: Hierarchy,
        file_path: str,
        parent_id: str,
        language: str,
        size: int,
    ) -> None:
        check(self._cancel)
        file_node = HierarchyNode(
            id=node_id_for_path(file_path),
            kind=NodeKind.FILE,
            name=os.path.basename(file_path),
            path=file_path,
            parent_id=parent_id,
            metadata=NodeMetadata(size=size, language=language),
        )
        hierarchy.add_node(file_node)

        try:
            with open(file_path, encoding="utf-8", errors="replace") as fh:
                content = fh.read()
        except OSError as exc:
            logger.warning("Cannot read %s: %s", file_path, exc)
            return

        file_node.content = content
        file_node.metadata.dependencies = extract_dependencies(content)

        seen: dict[str, int] = {}
        for element in extract_elements(content, language):
            seen[element.name] = seen.get(element.name, 0) + 1
            el_id = element_id(file_node.id, element.name, seen[element.name])
            hierarchy.add_node(HierarchyNode(
                id=el_id,
                kind=element.kind,
                name=element.name,
                path=file_path,
                parent_id=file_node.id,
                content=element.content,
                metadata=NodeMetadata(
                    language=language,
                    complexity=calculate_complexity(element.content),
                    dependencies=extract_dependencies(element.content),
                    line_start=element.line_start,
                    line_end=element.line_end,
                ),
            ))
        logger.debug("Parsed %s: %d elements", file_path, len(file_node.child_ids))
