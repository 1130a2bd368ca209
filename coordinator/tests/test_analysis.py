"""Tests for language analyzers, the registry and the dependency graph."""

import pytest

from coordinator.analysis import (
    AnalyzerRegistry,
    DependencyGraph,
    JsonAnalyzer,
    PythonAnalyzer,
    build_code_context,
)
from coordinator.models import CodeContext, SymbolReference

_PYTHON = """\
import os
from .util import helper as h

CONSTANT = 1

class Foo:
    def bar(self):
        pass

async def baz():
    pass
"""


class TestPythonAnalyzer:
    def test_structure(self):
        found = [(s.type, s.name, s.start_line, s.end_line) for s in PythonAnalyzer().analyze_structure(_PYTHON)]
        assert found == [
            ("variable", "CONSTANT", 4, 4),
            ("class", "Foo", 6, 8),
            ("method", "Foo.bar", 7, 8),
            ("function", "baz", 10, 11),
        ]

    def test_imports(self):
        analyzer = PythonAnalyzer()
        assert analyzer.analyze_imports(_PYTHON) == ["os", ".util"]
        assert analyzer.imported_names(_PYTHON) == [(".util", "helper")]

    def test_defined_names_include_imports(self):
        assert PythonAnalyzer().defined_names(_PYTHON) == {"CONSTANT", "Foo", "baz", "os", "h"}

    def test_syntax_error_reported_with_line(self):
        issues = PythonAnalyzer().detect_syntax_errors("x = 1\ndef f(:\n    pass\n")
        assert len(issues) == 1
        assert issues[0].line == 2

    def test_invalid_source_has_no_structure(self):
        analyzer = PythonAnalyzer()
        assert analyzer.analyze_structure("def f(:") == []
        assert not analyzer.validate_syntax("def f(:")
        assert analyzer.validate_syntax(_PYTHON)


class TestJsonAnalyzer:
    def test_keys_as_structure(self):
        assert [s.name for s in JsonAnalyzer().analyze_structure('{"a": 1, "b": 2}')] == ["a", "b"]

    def test_syntax_error(self):
        issues = JsonAnalyzer().detect_syntax_errors('{"a": }')
        assert len(issues) == 1
        assert issues[0].line == 1


class TestRegistry:
    def test_lookup_by_extension_and_language(self):
        registry = AnalyzerRegistry.default()
        assert isinstance(registry.for_path("pkg/mod.PY"), PythonAnalyzer)
        assert isinstance(registry.for_path("data.json"), JsonAnalyzer)
        assert registry.for_path("main.rs") is None
        assert isinstance(registry.for_language("json"), JsonAnalyzer)
        assert registry.for_language("rust") is None


@pytest.fixture
def project(tmp_path):
    (tmp_path / "pkg").mkdir()
    (tmp_path / "pkg" / "__init__.py").write_text("")
    (tmp_path / "pkg" / "util.py").write_text("def helper():\n    return 1\n")
    (tmp_path / "pkg" / "rel.py").write_text("from .util import helper\n")
    (tmp_path / "main.py").write_text("from pkg.util import helper\n")
    (tmp_path / "notes.txt").write_text("import pkg.util\n")
    return tmp_path


class TestDependencyGraph:
    def test_dependents(self, project):
        graph = DependencyGraph(project, AnalyzerRegistry.default()).build()
        dependents = graph.dependents_of(project / "pkg" / "util.py")
        assert dependents == sorted([(project / "main.py").resolve(), (project / "pkg" / "rel.py").resolve()])

    def test_resolve_package_module(self, project):
        graph = DependencyGraph(project, AnalyzerRegistry.default())
        assert graph.resolve_module("pkg", project / "main.py") == (project / "pkg" / "__init__.py").resolve()
        assert graph.resolve_module("requests", project / "main.py") is None

    def test_removed_name_breaks_dependents(self, project):
        graph = DependencyGraph(project, AnalyzerRegistry.default()).build()
        errors = graph.impact_errors(
            project / "pkg" / "util.py",
            "def other():\n    return 2\n",
            "def helper():\n    return 1\n",
        )
        assert len(errors) == 2
        assert all("'helper'" in e for e in errors)

    def test_compatible_change_has_no_impact(self, project):
        graph = DependencyGraph(project, AnalyzerRegistry.default()).build()
        assert graph.impact_errors(project / "pkg" / "util.py", "def helper():\n    return 2\n") == []

    def test_names_missing_before_the_change_are_not_blamed_on_it(self, project):
        graph = DependencyGraph(project, AnalyzerRegistry.default()).build()
        errors = graph.impact_errors(
            project / "pkg" / "util.py", "def other():\n    pass\n", "def unrelated():\n    pass\n"
        )
        assert errors == []


@pytest.fixture
def workspace(tmp_path):
    (tmp_path / "wc.py").write_text(
        "import re\n\n\ndef count_words(text):\n    return len(re.findall(r'\\w+', text))\n"
    )
    (tmp_path / "pkg").mkdir()
    (tmp_path / "pkg" / "parser.py").write_text(
        "class Parser:\n    def parse(self, text):\n        return text\n"
    )
    (tmp_path / ".venv").mkdir()
    (tmp_path / ".venv" / "lib.py").write_text("def count_words():\n    pass\n")
    (tmp_path / "config.json").write_text('{"count_words": 1}')
    return tmp_path


class TestCodeContext:
    def test_mentioned_file_and_symbols(self, workspace):
        context = build_code_context(
            workspace, AnalyzerRegistry.default(), "Fix count_words in wc.py so Parser handles tabs"
        )
        assert context.file_path == "wc.py"
        assert context.language == "python"
        assert context.imports == ["re"]
        assert context.structure == ["function count_words (lines 4-5)"]
        assert context.symbol_references == [
            SymbolReference("Parser", "type", "pkg/parser.py", 1),
            SymbolReference("count_words", "function", "wc.py", 4),
        ]

    def test_methods_matched_by_their_own_name(self, workspace):
        context = build_code_context(workspace, AnalyzerRegistry.default(), "rename parse to parse_text")
        assert context.file_path is None
        assert context.symbol_references == [SymbolReference("Parser.parse", "function", "pkg/parser.py", 2)]

    def test_unknown_file_and_symbols_give_nothing(self, workspace):
        assert build_code_context(workspace, AnalyzerRegistry.default(), "write a haiku about main.py") is None

    def test_files_outside_root_ignored(self, workspace):
        (workspace / "pkg" / "inner").mkdir()
        context = build_code_context(workspace / "pkg" / "inner", AnalyzerRegistry.default(), "look at ../parser.py")
        assert context is None

    def test_describe(self):
        context = CodeContext(
            file_path="wc.py",
            language="python",
            imports=["re"],
            structure=["function count_words (lines 4-5)"],
            symbol_references=[SymbolReference("count_words", "function", "wc.py", 4)],
        )
        assert context.describe().splitlines() == [
            "File: wc.py (python)",
            "Imports: re",
            "Defines: function count_words (lines 4-5)",
            "Symbol count_words (function) at wc.py:4",
        ]
