"""
Unit tests for hierarag.config.Config
"""

from __future__ import annotations

import os

import pytest


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Drop any HIERARAG_* settings inherited from the environment."""
    for key in list(os.environ):
        if key.startswith("HIERARAG_") or key in ("OPENAI_API_KEY", "OLLAMA_BASE_URL"):
            monkeypatch.delenv(key, raising=False)


def test_defaults():
    from hierarag.config import Config
    config = Config()
    assert config.DB_PATH == ".hierarag/index.db"
    assert config.EMBEDDING_PROVIDER == "hash"
    assert config.EMBEDDING_DIMENSIONS == 1536
    assert config.EMBEDDING_TIMEOUT == 30.0
    assert config.SIMILARITY_THRESHOLD == 0.7
    assert config.GRAPH_MAX_DEPTH == 2
    assert config.SEARCH_LIMIT == 10
    assert config.SEARCH_THRESHOLD == 0.5
    assert config.WEIGHTS == {"vector": 0.4, "structural": 0.3, "graph": 0.3}
    assert config.LOG_LEVEL == "WARNING"


def test_yaml_sections():
    from hierarag.config import Config
    config = Config({
        "db_path": "/tmp/x.db",
        "embedding": {"provider": "Ollama", "model": "nomic-embed-text", "dimensions": 768},
        "graph": {"similarity_threshold": 0.8, "max_fanout": 3},
        "search": {"threshold": 0.2, "weights": {"graph": 0.1}},
        "ignore_patterns": ["*.min.js"],
    })
    assert config.DB_PATH == "/tmp/x.db"
    assert config.EMBEDDING_PROVIDER == "ollama"
    assert config.EMBEDDING_DIMENSIONS == 768
    assert config.SIMILARITY_THRESHOLD == 0.8
    assert config.GRAPH_MAX_FANOUT == 3
    assert config.SEARCH_THRESHOLD == 0.2
    assert config.WEIGHTS["graph"] == 0.1
    assert config.WEIGHTS["vector"] == 0.4
    assert config.IGNORE_PATTERNS == ["*.min.js"]


def test_env_overrides_yaml(monkeypatch):
    from hierarag.config import Config
    monkeypatch.setenv("HIERARAG_EMBEDDING_DIMENSIONS", "64")
    monkeypatch.setenv("HIERARAG_SEARCH_LIMIT", "3")
    config = Config({"embedding": {"dimensions": 768}})
    assert config.EMBEDDING_DIMENSIONS == 64
    assert config.SEARCH_LIMIT == 3


def test_invalid_provider_rejected():
    from hierarag.config import Config
    from hierarag.errors import ValidationError
    with pytest.raises(ValidationError):
        Config({"embedding": {"provider": "magic"}})


def test_invalid_threshold_rejected():
    from hierarag.config import Config
    from hierarag.errors import ValidationError
    with pytest.raises(ValidationError):
        Config({"graph": {"similarity_threshold": 1.5}})


def test_invalid_weight_rejected():
    from hierarag.config import Config
    from hierarag.errors import ValidationError
    with pytest.raises(ValidationError):
        Config({"search": {"weights": {"vector": 2}}})


def test_load_explicit_file(tmp_path):
    from hierarag.config import Config
    path = tmp_path / "custom.yaml"
    path.write_text("log_level: debug\nsearch:\n  limit: 4\n", encoding="utf-8")
    config = Config.load(str(path))
    assert config.LOG_LEVEL == "DEBUG"
    assert config.SEARCH_LIMIT == 4


def test_load_finds_file_in_cwd(tmp_path, monkeypatch):
    from hierarag.config import Config
    (tmp_path / ".hierarag.yaml").write_text("graph:\n  max_depth: 4\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    assert Config.load().GRAPH_MAX_DEPTH == 4


def test_broken_yaml_falls_back_to_defaults(tmp_path, caplog):
    from hierarag.config import Config
    path = tmp_path / "broken.yaml"
    path.write_text("search: [unclosed\n", encoding="utf-8")
    config = Config.load(str(path))
    assert config.SEARCH_LIMIT == 10
    assert "Ignoring config file" in caplog.text


def test_missing_explicit_file_uses_defaults(tmp_path):
    from hierarag.config import Config
    config = Config.load(str(tmp_path / "absent.yaml"))
    assert config.EMBEDDING_PROVIDER == "hash"


def test_malformed_env_value_rejected(monkeypatch):
    from hierarag.config import Config
    from hierarag.errors import ValidationError
    monkeypatch.setenv("HIERARAG_SEARCH_LIMIT", "abc")
    with pytest.raises(ValidationError, match="HIERARAG_SEARCH_LIMIT"):
        Config()


def test_malformed_yaml_values_rejected():
    from hierarag.config import Config
    from hierarag.errors import ValidationError
    with pytest.raises(ValidationError, match="dimensions"):
        Config({"embedding": {"dimensions": "wide"}})
    with pytest.raises(ValidationError, match="search.weights.graph"):
        Config({"search": {"weights": {"graph": "high"}}})
