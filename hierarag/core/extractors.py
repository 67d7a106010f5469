"""
Code-element extraction for the hierarchy builder.

Identifies named top-level constructs (functions, classes, interfaces) in
source text.  Each supported grammar sits behind :class:`ElementExtractor`
so an implementation can be swapped without touching the indexer or the
query engine:

* JavaScript / TypeScript — regex headers plus brace matching
  (:class:`RegexElementExtractor`).
* Python, Java, C, C++, C#, Go, Rust, Ruby, PHP — tree-sitter queries
  (:class:`TreeSitterElementExtractor`), using tree-sitter >= 0.25 with the
  individual language packages.  A grammar that is not installed yields no
  elements.

Markup and config formats are recognised as files but have no extractor.
"""

from __future__ import annotations

import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Language mapping
# ---------------------------------------------------------------------------

EXTENSION_TO_LANGUAGE: dict[str, str] = {
    ".py": "python",
    ".js": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".java": "java",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".cxx": "cpp",
    ".hpp": "cpp",
    ".go": "go",
    ".rs": "rust",
    ".rb": "ruby",
    ".php": "php",
    ".cs": "c_sharp",
    # markup / config
    ".md": "markdown",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
    ".html": "html",
    ".css": "css",
    ".xml": "xml",
    ".sql": "sql",
    ".sh": "shell",
}

FUNCTION = "function"
CLASS = "class"
INTERFACE = "interface"


def detect_language(file_path: str) -> Optional[str]:
    """
    Return the language name for *file_path*, or None if unrecognised.

    Parameters
    ----------
    file_path:
        Any file path; only the extension is examined.
    """
    ext = os.path.splitext(file_path)[1].lower()
    return EXTENSION_TO_LANGUAGE.get(ext)


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class CodeElement:
    """A named construct found in a source file."""
    name: str
    kind: str           # "function" | "class" | "interface"
    content: str
    line_start: int
    line_end: int


# ---------------------------------------------------------------------------
# Complexity and dependency heuristics
# ---------------------------------------------------------------------------

_COMPLEXITY_WORDS = ("if", "else", "for", "while", "switch", "case", "catch")
_COMPLEXITY_OPERATORS = ("&&", "||")
_COMPLEXITY_RE = re.compile(r"\b(?:" + "|".join(_COMPLEXITY_WORDS) + r")\b")

_IMPORT_FROM_RE = re.compile(r"""\bimport\s+[^;]*?\s+from\s+['"]([^'"]+)['"]""")


def calculate_complexity(content: str) -> int:
    """
    Approximate cyclomatic complexity of *content*.

    Starts at 1 and adds one per whole-word occurrence of a control-flow
    keyword and per literal ``&&`` / ``||``.  This is a text proxy, not an
    AST walk: keywords inside strings and comments are counted too.
    """
    complexity = 1
    complexity += len(_COMPLEXITY_RE.findall(content))
    for op in _COMPLEXITY_OPERATORS:
        complexity += content.count(op)
    return complexity


def complexity_band(complexity: Optional[int]) -> Optional[str]:
    """Bucket a complexity score into ``low`` / ``medium`` / ``high``."""
    if not complexity:
        return None
    if complexity > 10:
        return "high"
    if complexity > 5:
        return "medium"
    return "low"


def extract_dependencies(content: str) -> list[str]:
    """
    Return the module path of every ``import ... from '<path>'`` statement.

    Paths are returned as written (relative paths are not resolved) and
    de-duplicated in order of first appearance.
    """
    seen: set[str] = set()
    deps: list[str] = []
    for match in _IMPORT_FROM_RE.finditer(content):
        mod = match.group(1)
        if mod not in seen:
            seen.add(mod)
            deps.append(mod)
    return deps


def _line_of(text: str, offset: int) -> int:
    return text.count("\n", 0, offset) + 1


# ---------------------------------------------------------------------------
# Extractor interface
# ---------------------------------------------------------------------------

class ElementExtractor(ABC):
    """Finds named top-level constructs in the source text of one grammar."""

    @abstractmethod
    def extract(self, content: str, language: str) -> list[CodeElement]:
        """Return elements of *content* in source order."""


# ---------------------------------------------------------------------------
# Regex extractor (C-family / JS / TS syntax)
# ---------------------------------------------------------------------------

_JS_PATTERNS: list[tuple[str, re.Pattern]] = [
    (FUNCTION, re.compile(
        r"(?:\bexport\s+(?:default\s+)?)?(?:\basync\s+)?\bfunction\b\s*\*?\s*(\w+)"
        r"\s*(?:<[^>]*>)?\s*\([^)]*\)[^{;]*\{"
    )),
    (FUNCTION, re.compile(
        r"(?:\bexport\s+)?\b(?:const|let|var)\s+(\w+)\s*(?::[^=]+)?=\s*(?:async\s+)?"
        r"(?:\([^)]*\)|\w+)\s*(?::[^=]+?)?=>\s*\{"
    )),
    (CLASS, re.compile(
        r"(?:\bexport\s+(?:default\s+)?)?(?:\babstract\s+)?\bclass\s+(\w+)[^{]*\{"
    )),
    (INTERFACE, re.compile(
        r"(?:\bexport\s+)?\binterface\s+(\w+)[^{]*\{"
    )),
]


def _match_brace(text: str, open_idx: int) -> int:
    """
    Return the index just past the brace that closes ``text[open_idx]``.

    Skips string literals and comments.  An unbalanced block runs to the
    end of *text*.
    """
    depth = 0
    i = open_idx
    n = len(text)
    while i < n:
        ch = text[i]
        if ch in ("'", '"', "`"):
            i += 1
            while i < n and text[i] != ch:
                if text[i] == "\\":
                    i += 1
                i += 1
        elif ch == "/" and i + 1 < n and text[i + 1] == "/":
            nl = text.find("\n", i)
            i = n if nl == -1 else nl
        elif ch == "/" and i + 1 < n and text[i + 1] == "*":
            end = text.find("*/", i + 2)
            i = n if end == -1 else end + 1
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
        i += 1
    return n


class RegexElementExtractor(ElementExtractor):
    """Pattern-based extraction for JavaScript and TypeScript sources."""

    def __init__(self, patterns: Optional[list[tuple[str, re.Pattern]]] = None) -> None:
        self._patterns = patterns or _JS_PATTERNS

    def extract(self, content: str, language: str) -> list[CodeElement]:
        found: dict[int, CodeElement] = {}
        for kind, pattern in self._patterns:
            for match in pattern.finditer(content):
                start = match.start()
                if start in found:
                    continue
                end = _match_brace(content, match.end() - 1)
                found[start] = CodeElement(
                    name=match.group(1),
                    kind=kind,
                    content=content[start:end],
                    line_start=_line_of(content, start),
                    line_end=_line_of(content, max(start, end - 1)),
                )
        return [found[k] for k in sorted(found)]


# ---------------------------------------------------------------------------
# Tree-sitter extractor
# ---------------------------------------------------------------------------

def _get_lang_func(language: str):
    """Return the tree-sitter language() function for *language*, or None."""
    try:
        if language == "python":
            import tree_sitter_python as m  # type: ignore
            return m.language
        elif language == "java":
            import tree_sitter_java as m  # type: ignore
            return m.language
        elif language == "c":
            import tree_sitter_c as m  # type: ignore
            return m.language
        elif language == "cpp":
            import tree_sitter_cpp as m  # type: ignore
            return m.language
        elif language == "go":
            import tree_sitter_go as m  # type: ignore
            return m.language
        elif language == "rust":
            import tree_sitter_rust as m  # type: ignore
            return m.language
        elif language == "ruby":
            import tree_sitter_ruby as m  # type: ignore
            return m.language
        elif language == "php":
            import tree_sitter_php as m  # type: ignore
            return m.language_php
        elif language == "c_sharp":
            import tree_sitter_c_sharp as m  # type: ignore
            return m.language
    except ImportError:
        logger.debug("No tree-sitter grammar installed for %s", language)
    return None


# Cache Language / Parser objects to avoid repeated construction
_LANG_CACHE: dict[str, object] = {}
_PARSER_CACHE: dict[str, object] = {}


def _get_ts_language(language: str):
    """Return the cached tree_sitter.Language for *language*, or None."""
    if language in _LANG_CACHE:
        return _LANG_CACHE[language]
    import tree_sitter as ts  # type: ignore
    func = _get_lang_func(language)
    if func is None:
        return None
    try:
        lang_obj = ts.Language(func())
    except (TypeError, ValueError) as exc:
        logger.warning("Cannot load tree-sitter language %s: %s", language, exc)
        return None
    _LANG_CACHE[language] = lang_obj
    return lang_obj


def _get_ts_parser(language: str):
    """Return a cached tree-sitter Parser for *language*, or None."""
    if language in _PARSER_CACHE:
        return _PARSER_CACHE[language]
    import tree_sitter as ts  # type: ignore
    lang_obj = _get_ts_language(language)
    if lang_obj is None:
        return None
    parser = ts.Parser(lang_obj)
    _PARSER_CACHE[language] = parser
    return parser


# One (kind, query) per construct.  Every query captures @name and @def.
_QUERIES: dict[str, list[tuple[str, str]]] = {
    "python": [
        (FUNCTION, "(function_definition name: (identifier) @name) @def"),
        (CLASS, "(class_definition name: (identifier) @name) @def"),
    ],
    "java": [
        (FUNCTION, "(method_declaration name: (identifier) @name) @def"),
        (CLASS, "(class_declaration name: (identifier) @name) @def"),
        (INTERFACE, "(interface_declaration name: (identifier) @name) @def"),
    ],
    "c": [
        (FUNCTION, """(function_definition
  declarator: (function_declarator declarator: (identifier) @name)) @def"""),
        (CLASS, """(struct_specifier
  name: (type_identifier) @name
  body: (field_declaration_list)) @def"""),
    ],
    "cpp": [
        (FUNCTION, """(function_definition
  declarator: (function_declarator declarator: (identifier) @name)) @def"""),
        (CLASS, """(class_specifier
  name: (type_identifier) @name
  body: (field_declaration_list)) @def"""),
        (CLASS, """(struct_specifier
  name: (type_identifier) @name
  body: (field_declaration_list)) @def"""),
    ],
    "c_sharp": [
        (FUNCTION, "(method_declaration name: (identifier) @name) @def"),
        (CLASS, "(class_declaration name: (identifier) @name) @def"),
        (CLASS, "(struct_declaration name: (identifier) @name) @def"),
        (INTERFACE, "(interface_declaration name: (identifier) @name) @def"),
    ],
    "go": [
        (FUNCTION, "(function_declaration name: (identifier) @name) @def"),
        (FUNCTION, "(method_declaration name: (field_identifier) @name) @def"),
        (CLASS, "(type_spec name: (type_identifier) @name type: (struct_type)) @def"),
        (INTERFACE, "(type_spec name: (type_identifier) @name type: (interface_type)) @def"),
    ],
    "rust": [
        (FUNCTION, "(function_item name: (identifier) @name) @def"),
        (CLASS, "(struct_item name: (type_identifier) @name) @def"),
        (INTERFACE, "(trait_item name: (type_identifier) @name) @def"),
    ],
    "ruby": [
        (FUNCTION, "(method name: (identifier) @name) @def"),
        (CLASS, "(class name: (constant) @name) @def"),
        (CLASS, "(module name: (constant) @name) @def"),
    ],
    "php": [
        (FUNCTION, "(function_definition name: (name) @name) @def"),
        (FUNCTION, "(method_declaration name: (name) @name) @def"),
        (CLASS, "(class_declaration name: (name) @name) @def"),
        (INTERFACE, "(interface_declaration name: (name) @name) @def"),
    ],
}

TREE_SITTER_LANGUAGES: frozenset[str] = frozenset(_QUERIES)


def _text(node) -> str:
    """Decode a tree-sitter Node's text as UTF-8."""
    if node is None or not node.text:
        return ""
    return node.text.decode("utf-8", errors="replace")


def _query_captures(lang_obj, query_src: str, root) -> list[dict]:
    """
    Run *query_src* on *root*, returning one ``{capture: [Node]}`` per match.

    A query that does not compile against the installed grammar version
    yields no matches.
    """
    import tree_sitter as ts  # type: ignore
    try:
        query = ts.Query(lang_obj, query_src)
    except (SyntaxError, NameError, ValueError, TypeError) as exc:
        logger.debug("Skipping tree-sitter query: %s", exc)
        return []
    cursor = ts.QueryCursor(query)
    return [caps for _idx, caps in cursor.matches(root)]


class TreeSitterElementExtractor(ElementExtractor):
    """Query-based extraction using the tree-sitter grammar for *language*."""

    def extract(self, content: str, language: str) -> list[CodeElement]:
        queries = _QUERIES.get(language)
        if not queries:
            return []
        parser = _get_ts_parser(language)
        if parser is None:
            return []
        lang_obj = _get_ts_language(language)
        tree = parser.parse(content.encode("utf-8"))
        root = tree.root_node

        found: dict[tuple[int, int], CodeElement] = {}
        for kind, query_src in queries:
            for caps in _query_captures(lang_obj, query_src, root):
                def_nodes = caps.get("def")
                name_nodes = caps.get("name")
                if not def_nodes or not name_nodes:
                    continue
                def_node = def_nodes[0]
                name = _text(name_nodes[0])
                key = (def_node.start_byte, def_node.end_byte)
                if not name or key in found:
                    continue
                found[key] = CodeElement(
                    name=name,
                    kind=kind,
                    content=_text(def_node),
                    line_start=def_node.start_point[0] + 1,
                    line_end=def_node.end_point[0] + 1,
                )
        return [found[k] for k in sorted(found)]


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_REGEX_EXTRACTOR = RegexElementExtractor()
_TREE_SITTER_EXTRACTOR = TreeSitterElementExtractor()

_REGISTRY: dict[str, ElementExtractor] = {
    "javascript": _REGEX_EXTRACTOR,
    "typescript": _REGEX_EXTRACTOR,
}
for _lang in TREE_SITTER_LANGUAGES:
    _REGISTRY[_lang] = _TREE_SITTER_EXTRACTOR


def get_extractor(language: Optional[str]) -> Optional[ElementExtractor]:
    """Return the extractor registered for *language*, or None."""
    if not language:
        return None
    return _REGISTRY.get(language)


def register_extractor(language: str, extractor: ElementExtractor) -> None:
    """Install *extractor* for *language*, replacing any existing one."""
    _REGISTRY[language] = extractor


def extract_elements(content: str, language: Optional[str]) -> list[CodeElement]:
    """
    Extract code elements from *content*.

    Languages without an extractor yield an empty list.  Extractor failures
    are logged and also yield an empty list so the file node still stands.
    """
    extractor = get_extractor(language)
    if extractor is None:
        return []
    try:
        return extractor.extract(content, language or "")
    except (ValueError, RuntimeError, UnicodeError) as exc:
        logger.warning("Element extraction failed for %s source: %s", language, exc)
        return []
