"""
Unit tests for hierarag.core.extractors

Language detection, the complexity / dependency heuristics, the regex
extractor for JavaScript / TypeScript and the tree-sitter extractor.
"""

from __future__ import annotations

import textwrap

import pytest


# ---------------------------------------------------------------------------
# Language detection
# ---------------------------------------------------------------------------

class TestDetectLanguage:

    def test_code_extensions(self):
        from hierarag.core.extractors import detect_language
        assert detect_language("src/app.ts") == "typescript"
        assert detect_language("lib/util.py") == "python"
        assert detect_language("Main.JAVA") == "java"
        assert detect_language("prog.cs") == "c_sharp"

    def test_markup_extensions(self):
        from hierarag.core.extractors import detect_language
        assert detect_language("README.md") == "markdown"
        assert detect_language("config.yml") == "yaml"
        assert detect_language("run.sh") == "shell"

    def test_unrecognised(self):
        from hierarag.core.extractors import detect_language
        assert detect_language("image.png") is None
        assert detect_language("Makefile") is None


# ---------------------------------------------------------------------------
# Heuristics
# ---------------------------------------------------------------------------

class TestComplexity:

    def test_base_is_one(self):
        from hierarag.core.extractors import calculate_complexity
        assert calculate_complexity("return 1;") == 1

    def test_keywords_and_operators(self):
        from hierarag.core.extractors import calculate_complexity
        src = "if (a && b) { x(); } else if (c || d) { y(); }"
        # if, else, if, &&, ||
        assert calculate_complexity(src) == 6

    def test_whole_word_only(self):
        from hierarag.core.extractors import calculate_complexity
        assert calculate_complexity("const iffy = format(forEach);") == 1

    def test_counts_keywords_in_strings(self):
        from hierarag.core.extractors import calculate_complexity
        assert calculate_complexity('log("if this while that")') == 3

    def test_bands(self):
        from hierarag.core.extractors import complexity_band
        assert complexity_band(None) is None
        assert complexity_band(1) == "low"
        assert complexity_band(5) == "low"
        assert complexity_band(6) == "medium"
        assert complexity_band(10) == "medium"
        assert complexity_band(11) == "high"


class TestDependencies:

    def test_import_from(self):
        from hierarag.core.extractors import extract_dependencies
        src = textwrap.dedent("""\
            import fs from 'fs';
            import { join, resolve } from "path";
            import * as utils from './utils';
            import fs2 from 'fs';
        """)
        assert extract_dependencies(src) == ["fs", "path", "./utils"]

    def test_bare_import_is_not_a_dependency(self):
        from hierarag.core.extractors import extract_dependencies
        assert extract_dependencies("import './x';") == []


# ---------------------------------------------------------------------------
# Regex extractor
# ---------------------------------------------------------------------------

JS_SOURCE = textwrap.dedent("""\
    import { helper } from './helper';

    export async function loadUser(id) {
      if (!id) {
        throw new Error("missing id }");
      }
      return helper(id);
    }

    const double = (x) => {
      return x * 2;
    };

    class Repo extends Base {
      find(id) {
        return this.items[id];
      }
    }
""")

TS_SOURCE = textwrap.dedent("""\
    export interface Shape {
      area(): number;
    }

    export default class Circle implements Shape {
      constructor(private r: number) {}
      area(): number { return Math.PI * this.r * this.r; }
    }
""")


class TestRegexExtractor:

    def test_javascript_elements(self):
        from hierarag.core.extractors import extract_elements
        elements = extract_elements(JS_SOURCE, "javascript")
        assert [(e.name, e.kind) for e in elements] == [
            ("loadUser", "function"),
            ("double", "function"),
            ("Repo", "class"),
        ]

    def test_brace_matching_ignores_braces_in_strings(self):
        from hierarag.core.extractors import extract_elements
        load_user = extract_elements(JS_SOURCE, "javascript")[0]
        assert load_user.content.startswith("export async function loadUser")
        assert load_user.content.rstrip().endswith("return helper(id);\n}")
        assert load_user.line_start == 3
        assert load_user.line_end == 8

    def test_class_body_included(self):
        from hierarag.core.extractors import extract_elements
        repo = [e for e in extract_elements(JS_SOURCE, "javascript") if e.name == "Repo"][0]
        assert "find(id)" in repo.content
        assert repo.content.endswith("}")

    def test_typescript_interface_and_class(self):
        from hierarag.core.extractors import extract_elements
        elements = extract_elements(TS_SOURCE, "typescript")
        assert [(e.name, e.kind) for e in elements] == [
            ("Shape", "interface"),
            ("Circle", "class"),
        ]

    def test_markup_has_no_elements(self):
        from hierarag.core.extractors import extract_elements
        assert extract_elements("# Title\n\nfunction foo() {}", "markdown") == []
        assert extract_elements("anything", None) == []


# ---------------------------------------------------------------------------
# Tree-sitter extractor
# ---------------------------------------------------------------------------

class TestTreeSitterExtractor:

    def test_python_functions_and_classes(self):
        pytest.importorskip("tree_sitter")
        pytest.importorskip("tree_sitter_python")
        from hierarag.core.extractors import extract_elements
        src = textwrap.dedent("""\
            class Animal:
                def speak(self):
                    return "..."


            def standalone(x, y):
                return x + y
        """)
        elements = extract_elements(src, "python")
        names = {(e.name, e.kind) for e in elements}
        assert ("Animal", "class") in names
        assert ("speak", "function") in names
        assert ("standalone", "function") in names
        standalone = [e for e in elements if e.name == "standalone"][0]
        assert standalone.line_start == 6
        assert standalone.line_end == 7
        assert standalone.content.startswith("def standalone")

    def test_rust_trait_is_interface(self):
        pytest.importorskip("tree_sitter")
        pytest.importorskip("tree_sitter_rust")
        from hierarag.core.extractors import extract_elements
        src = "trait Speak { fn speak(&self); }\nstruct Dog;\nfn main() {}\n"
        kinds = {e.name: e.kind for e in extract_elements(src, "rust")}
        assert kinds["Speak"] == "interface"
        assert kinds["Dog"] == "class"
        assert kinds["main"] == "function"


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

def test_register_extractor_replaces_default():
    from hierarag.core import extractors
    from hierarag.core.extractors import CodeElement, ElementExtractor

    class _Fixed(ElementExtractor):
        def extract(self, content, language):
            return [CodeElement("fixed", "function", content, 1, 1)]

    original = extractors.get_extractor("javascript")
    try:
        extractors.register_extractor("javascript", _Fixed())
        elements = extractors.extract_elements("x", "javascript")
        assert [e.name for e in elements] == ["fixed"]
    finally:
        extractors.register_extractor("javascript", original)


def test_failing_extractor_yields_no_elements():
    from hierarag.core import extractors
    from hierarag.core.extractors import ElementExtractor

    class _Broken(ElementExtractor):
        def extract(self, content, language):
            raise ValueError("boom")

    original = extractors.get_extractor("javascript")
    try:
        extractors.register_extractor("javascript", _Broken())
        assert extractors.extract_elements("function a() {}", "javascript") == []
    finally:
        extractors.register_extractor("javascript", original)
