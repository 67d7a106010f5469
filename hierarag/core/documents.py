"""
External document ingestion — text extraction and tag derivation.

Plain text and markdown are taken as-is; structured data (JSON, YAML) is
parsed and re-serialised to indented JSON so the same data always yields
the same text, whatever its original formatting.
"""

from __future__ import annotations

import json
import logging
import os
import re

import yaml

from ..errors import ExtractionError, FileSystemError

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS: frozenset[str] = frozenset({".md", ".markdown", ".txt", ".rst"})
STRUCTURED_EXTENSIONS: frozenset[str] = frozenset({".json", ".yaml", ".yml"})
SUPPORTED_EXTENSIONS = TEXT_EXTENSIONS | STRUCTURED_EXTENSIONS

DOC_KEYWORDS: tuple[str, ...] = (
    "api", "function", "class", "interface", "config", "setup", "guide",
)


def is_supported_document(path: str) -> bool:
    return os.path.splitext(path)[1].lower() in SUPPORTED_EXTENSIONS


def extract_document_content(path: str) -> str:
    """
    Return the indexable text of the document at *path*.

    Raises
    ------
    ExtractionError
        Unsupported extension, or structured data that does not parse.
    FileSystemError
        The file is missing or unreadable.
    """
    ext = os.path.splitext(path)[1].lower()
    if not is_supported_document(path):
        raise ExtractionError(f"Unsupported document type {ext or '(none)'}: {path}")
    try:
        with open(path, encoding="utf-8", errors="replace") as fh:
            raw = fh.read()
    except OSError as exc:
        raise FileSystemError(path, str(exc)) from exc

    if ext in TEXT_EXTENSIONS:
        return raw

    try:
        data = json.loads(raw) if ext == ".json" else yaml.safe_load(raw)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ExtractionError(f"Cannot parse {path}: {exc}") from exc
    return json.dumps(data, indent=2, default=str)


def extract_document_tags(content: str) -> list[str]:
    """Markdown / fenced-code markers plus keyword hits from :data:`DOC_KEYWORDS`."""
    tags: list[str] = []
    if "# " in content:
        tags.append("type:markdown")
    if "```" in content:
        tags.append("type:code-documentation")
    lowered = content.lower()
    for keyword in DOC_KEYWORDS:
        if re.search(rf"\b{keyword}\b", lowered):
            tags.append(f"keyword:{keyword}")
    return tags
