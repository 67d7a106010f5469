"""
Tests for the `hierarag` command line (hierarag.cli.main).
"""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest


@pytest.fixture()
def cli_env(tmp_path, monkeypatch):
    """A config file, a database path and a one-file project."""
    for key in ("HIERARAG_DB_PATH", "HIERARAG_EMBEDDING_PROVIDER",
                "HIERARAG_EMBEDDING_DIMENSIONS", "HIERARAG_SEARCH_THRESHOLD"):
        monkeypatch.delenv(key, raising=False)
    cfg = tmp_path / "hierarag.yaml"
    cfg.write_text("embedding:\n  provider: hash\n  dimensions: 64\n", encoding="utf-8")
    project = tmp_path / "proj"
    project.mkdir()
    (project / "main.js").write_text(
        "function greet(name) {\n  return 'hi ' + name;\n}\n", encoding="utf-8",
    )
    base = ["--config", str(cfg), "--db", str(tmp_path / "index.db")]
    return base, project


def _run(argv):
    from hierarag.cli import main
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
        raise SystemExit(0)
    return exc_info.value.code


def test_hierarchy_command(cli_env, capsys):
    base, project = cli_env
    assert _run(base + ["hierarchy", str(project), "--json"]) == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["by_kind"] == {"directory": 1, "file": 1, "function": 1}


def test_index_then_search_json(cli_env, capsys):
    base, project = cli_env
    assert _run(base + ["index", "demo", "--codebase", str(project)]) == 0
    out = capsys.readouterr().out
    assert "Vectors:    2" in out

    assert _run(base + ["search", "greet", "--collection", "demo",
                        "--threshold", "0.1", "--json"]) == 0
    results = json.loads(capsys.readouterr().out)
    assert results[0]["metadata"]["hierarchy"][-1] == "greet"


def test_search_text_output_when_empty(cli_env, capsys):
    base, _project = cli_env
    assert _run(base + ["search", "nothing-here", "--collection", "demo"]) == 0
    assert "no results" in capsys.readouterr().out


def test_status_and_clear(cli_env, capsys):
    base, project = cli_env
    _run(base + ["index", "demo", "--codebase", str(project)])
    capsys.readouterr()
    assert _run(base + ["status", "demo"]) == 0
    assert "vectors" in capsys.readouterr().out
    assert _run(base + ["clear", "demo"]) == 0
    assert "Cleared demo: 2 vectors" in capsys.readouterr().out


def test_validation_error_exit_code(cli_env, capsys):
    base, _project = cli_env
    assert _run(base + ["search", "x", "--limit", "0"]) == 2
    assert "Error: limit" in capsys.readouterr().err


def test_missing_codebase_exit_code(cli_env, tmp_path):
    base, _project = cli_env
    assert _run(base + ["index", "demo", "--codebase", str(tmp_path / "nope")]) == 2


def test_search_failure_exit_code(cli_env, capsys):
    from hierarag.errors import SearchError
    base, _project = cli_env
    with patch("hierarag.api.HierarchicalIndex.search", side_effect=SearchError("store down")):
        assert _run(base + ["search", "x"]) == 1
    assert "store down" in capsys.readouterr().err


def test_malformed_config_exit_code(cli_env, monkeypatch, capsys):
    base, _project = cli_env
    monkeypatch.setenv("HIERARAG_SEARCH_LIMIT", "abc")
    assert _run(base + ["status", "demo"]) == 2
    assert "Error: HIERARAG_SEARCH_LIMIT" in capsys.readouterr().err
