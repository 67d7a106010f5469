"""
Configuration — loads settings from .hierarag.yaml, environment variables,
and built-in defaults (in that priority order: CLI args > env > YAML > defaults).
"""

from __future__ import annotations

import logging
import os

import yaml

from .errors import ValidationError


_DEFAULTS = {
    "db_path": ".hierarag/index.db",
    "log_level": "WARNING",
    "embedding_provider": "hash",
    "embedding_model": "text-embedding-3-small",
    "embedding_dimensions": 1536,
    "embedding_timeout_seconds": 30.0,
    "embedding_max_retries": 3,
    "embedding_retry_delay": 2.0,
    "ollama_base_url": "http://localhost:11434",
    "openai_api_key": "",
    "similarity_threshold": 0.7,
    "graph_max_depth": 2,
    "graph_max_fanout": 5,
    "graph_max_visited": 200,
    "graph_decay": 0.5,
    "search_limit": 10,
    "search_threshold": 0.5,
    "weights": {"vector": 0.4, "structural": 0.3, "graph": 0.3},
    "ignore_patterns": [],
}

# Config file search locations
_CONFIG_FILENAMES = [".hierarag.yaml", ".hierarag.yml"]

_PROVIDERS = ("hash", "openai", "ollama")


def _find_config_file(explicit_path: str | None = None) -> str | None:
    """Find the config file. Checks explicit path, CWD, then user home."""
    if explicit_path:
        if os.path.isfile(explicit_path):
            return explicit_path
        return None

    search_dirs = [os.getcwd(), os.path.expanduser("~")]
    for d in search_dirs:
        for name in _CONFIG_FILENAMES:
            path = os.path.join(d, name)
            if os.path.isfile(path):
                return path
    return None


def _load_yaml(path: str) -> dict:
    """Load YAML file, returns empty dict on failure."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError) as exc:
        logging.getLogger(__name__).warning("Ignoring config file %s: %s", path, exc)
        return {}


def _section(yd: dict, name: str) -> dict:
    value = yd.get(name)
    return value if isinstance(value, dict) else {}


class Config:
    """Engine configuration.

    Settings are resolved in priority order:
    1. CLI arguments (handled by caller)
    2. Environment variables (``HIERARAG_*``)
    3. .hierarag.yaml config file
    4. Built-in defaults

    The YAML file groups keys into ``embedding``, ``graph`` and ``search``
    sections; top-level keys are ``db_path``, ``log_level``,
    ``ollama_base_url`` and ``ignore_patterns``.
    """

    def __init__(self, yaml_data: dict | None = None):
        yd = yaml_data or {}
        emb = _section(yd, "embedding")
        graph = _section(yd, "graph")
        search = _section(yd, "search")

        # Helper: env var > yaml > default
        def _get(env_key: str, section: dict, yaml_key: str, default, cast=str):
            env_val = os.getenv(env_key)
            raw = env_val if env_val is not None else section.get(yaml_key)
            if raw is None:
                return default
            try:
                return cast(raw)
            except (TypeError, ValueError) as exc:
                raise ValidationError(f"{env_key}/{yaml_key}: {exc}") from exc

        self.DB_PATH = _get("HIERARAG_DB_PATH", yd, "db_path", _DEFAULTS["db_path"])
        self.LOG_LEVEL = _get("HIERARAG_LOG_LEVEL", yd, "log_level",
                              _DEFAULTS["log_level"]).upper()

        # Embedding provider
        self.EMBEDDING_PROVIDER = _get("HIERARAG_EMBEDDING_PROVIDER", emb, "provider",
                                       _DEFAULTS["embedding_provider"]).lower()
        self.EMBEDDING_MODEL = _get("HIERARAG_EMBEDDING_MODEL", emb, "model",
                                    _DEFAULTS["embedding_model"])
        self.EMBEDDING_DIMENSIONS = _get("HIERARAG_EMBEDDING_DIMENSIONS", emb, "dimensions",
                                         _DEFAULTS["embedding_dimensions"], cast=int)
        self.EMBEDDING_TIMEOUT = _get("HIERARAG_EMBEDDING_TIMEOUT", emb, "timeout_seconds",
                                      _DEFAULTS["embedding_timeout_seconds"], cast=float)
        self.EMBEDDING_MAX_RETRIES = _get("HIERARAG_EMBEDDING_MAX_RETRIES", emb, "max_retries",
                                          _DEFAULTS["embedding_max_retries"], cast=int)
        self.EMBEDDING_RETRY_DELAY = _get("HIERARAG_EMBEDDING_RETRY_DELAY", emb, "retry_delay",
                                          _DEFAULTS["embedding_retry_delay"], cast=float)
        self.OLLAMA_BASE_URL = _get("OLLAMA_BASE_URL", yd, "ollama_base_url",
                                    _DEFAULTS["ollama_base_url"])
        self.OPENAI_API_KEY = os.getenv("OPENAI_API_KEY") or emb.get(
            "api_key", _DEFAULTS["openai_api_key"])

        # Similarity graph
        self.SIMILARITY_THRESHOLD = _get("HIERARAG_SIMILARITY_THRESHOLD", graph,
                                         "similarity_threshold",
                                         _DEFAULTS["similarity_threshold"], cast=float)
        self.GRAPH_MAX_DEPTH = _get("HIERARAG_GRAPH_MAX_DEPTH", graph, "max_depth",
                                    _DEFAULTS["graph_max_depth"], cast=int)
        self.GRAPH_MAX_FANOUT = _get("HIERARAG_GRAPH_MAX_FANOUT", graph, "max_fanout",
                                     _DEFAULTS["graph_max_fanout"], cast=int)
        self.GRAPH_MAX_VISITED = _get("HIERARAG_GRAPH_MAX_VISITED", graph, "max_visited",
                                      _DEFAULTS["graph_max_visited"], cast=int)
        self.GRAPH_DECAY = _get("HIERARAG_GRAPH_DECAY", graph, "decay",
                                _DEFAULTS["graph_decay"], cast=float)

        # Search defaults
        self.SEARCH_LIMIT = _get("HIERARAG_SEARCH_LIMIT", search, "limit",
                                 _DEFAULTS["search_limit"], cast=int)
        self.SEARCH_THRESHOLD = _get("HIERARAG_SEARCH_THRESHOLD", search, "threshold",
                                     _DEFAULTS["search_threshold"], cast=float)
        self.WEIGHTS: dict[str, float] = dict(_DEFAULTS["weights"])
        weights_section = search.get("weights", {})
        if isinstance(weights_section, dict):
            for strategy in self.WEIGHTS:
                if strategy in weights_section:
                    try:
                        self.WEIGHTS[strategy] = float(weights_section[strategy])
                    except (TypeError, ValueError) as exc:
                        raise ValidationError(f"search.weights.{strategy}: {exc}") from exc

        # Extra ignore patterns for the hierarchy walk
        self.IGNORE_PATTERNS: list[str] = yd.get("ignore_patterns", _DEFAULTS["ignore_patterns"])
        if not isinstance(self.IGNORE_PATTERNS, list):
            self.IGNORE_PATTERNS = []

        self.validate()

    def validate(self) -> None:
        """Raise :class:`ValidationError` for settings that cannot work."""
        if self.EMBEDDING_PROVIDER not in _PROVIDERS:
            raise ValidationError(
                f"Unknown embedding provider {self.EMBEDDING_PROVIDER!r} "
                f"(expected one of {', '.join(_PROVIDERS)})"
            )
        if self.EMBEDDING_DIMENSIONS <= 0:
            raise ValidationError("embedding.dimensions must be positive")
        if not 0.0 <= self.SIMILARITY_THRESHOLD < 1.0:
            raise ValidationError("graph.similarity_threshold must be in [0, 1)")
        if self.GRAPH_MAX_DEPTH < 0 or self.GRAPH_MAX_FANOUT < 1:
            raise ValidationError("graph.max_depth must be >= 0 and graph.max_fanout >= 1")
        for strategy, weight in self.WEIGHTS.items():
            if not 0.0 <= weight <= 1.0:
                raise ValidationError(f"search.weights.{strategy} must be in [0, 1]")

    @classmethod
    def load(cls, config_path: str | None = None) -> "Config":
        """Load config from YAML file (if found) + env vars + defaults."""
        path = _find_config_file(config_path)
        yaml_data = _load_yaml(path) if path else {}
        return cls(yaml_data)
