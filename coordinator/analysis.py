"""Per-language file analyzers and the workspace dependency graph.

Analyzers are looked up by file extension or language id.  A file with no
registered analyzer cannot be validated and is treated as valid.
"""

from __future__ import annotations

import ast
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .classifier import classify_symbol, extract_symbols
from .models import CodeContext, SymbolReference

_log = logging.getLogger(__name__)


@dataclass
class CodeStructure:
    type: str
    name: str
    start_line: int
    end_line: int


@dataclass
class SyntaxIssue:
    line: int
    column: int
    message: str


class LanguageAnalyzer(ABC):
    """Parses one language and reports structure, imports and syntax errors."""

    language_id: str = ""
    file_extensions: tuple[str, ...] = ()

    @abstractmethod
    def analyze_structure(self, content: str) -> list[CodeStructure]:
        ...

    @abstractmethod
    def analyze_imports(self, content: str) -> list[str]:
        ...

    @abstractmethod
    def detect_syntax_errors(self, content: str) -> list[SyntaxIssue]:
        ...

    def imported_names(self, content: str) -> list[tuple[str, str]]:
        """``(module, name)`` pairs for names pulled out of other modules."""
        return []

    def defined_names(self, content: str) -> set[str]:
        return {s.name for s in self.analyze_structure(content)}

    def validate_syntax(self, content: str) -> bool:
        return not self.detect_syntax_errors(content)

    def validate_imports(self, content: str) -> bool:
        return self.validate_syntax(content)

    def validate_structure(self, content: str) -> bool:
        return self.validate_syntax(content)


class PythonAnalyzer(LanguageAnalyzer):
    language_id = "python"
    file_extensions = (".py", ".pyi")

    def _parse(self, content: str) -> Optional[ast.Module]:
        try:
            return ast.parse(content)
        except (SyntaxError, ValueError):
            return None

    def analyze_structure(self, content: str) -> list[CodeStructure]:
        tree = self._parse(content)
        if tree is None:
            return []
        found = []
        for node in tree.body:
            if isinstance(node, ast.ClassDef):
                found.append(CodeStructure("class", node.name, node.lineno, node.end_lineno or node.lineno))
                for item in node.body:
                    if isinstance(item, (ast.FunctionDef, ast.AsyncFunctionDef)):
                        found.append(CodeStructure(
                            "method", f"{node.name}.{item.name}",
                            item.lineno, item.end_lineno or item.lineno,
                        ))
            elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
                found.append(CodeStructure("function", node.name, node.lineno, node.end_lineno or node.lineno))
            elif isinstance(node, (ast.Assign, ast.AnnAssign)):
                targets = node.targets if isinstance(node, ast.Assign) else [node.target]
                for target in targets:
                    if isinstance(target, ast.Name):
                        found.append(CodeStructure(
                            "variable", target.id, node.lineno, node.end_lineno or node.lineno,
                        ))
        return found

    def analyze_imports(self, content: str) -> list[str]:
        tree = self._parse(content)
        if tree is None:
            return []
        modules = []
        for node in ast.walk(tree):
            if isinstance(node, ast.Import):
                modules.extend(alias.name for alias in node.names)
            elif isinstance(node, ast.ImportFrom):
                modules.append("." * node.level + (node.module or ""))
        return modules

    def imported_names(self, content: str) -> list[tuple[str, str]]:
        tree = self._parse(content)
        if tree is None:
            return []
        return [
            ("." * node.level + (node.module or ""), alias.name)
            for node in ast.walk(tree)
            if isinstance(node, ast.ImportFrom)
            for alias in node.names
            if alias.name != "*"
        ]

    def defined_names(self, content: str) -> set[str]:
        tree = self._parse(content)
        if tree is None:
            return set()
        names = {s.name for s in self.analyze_structure(content) if "." not in s.name}
        for node in tree.body:
            if isinstance(node, (ast.Import, ast.ImportFrom)):
                names.update((a.asname or a.name).split(".")[0] for a in node.names)
        return names

    def detect_syntax_errors(self, content: str) -> list[SyntaxIssue]:
        try:
            ast.parse(content)
        except SyntaxError as exc:
            return [SyntaxIssue(exc.lineno or 1, exc.offset or 0, exc.msg)]
        except ValueError as exc:
            return [SyntaxIssue(1, 0, str(exc))]
        return []


class JsonAnalyzer(LanguageAnalyzer):
    language_id = "json"
    file_extensions = (".json",)

    def analyze_structure(self, content: str) -> list[CodeStructure]:
        try:
            data = json.loads(content)
        except json.JSONDecodeError:
            return []
        if not isinstance(data, dict):
            return []
        return [CodeStructure("key", key, 1, 1) for key in data]

    def analyze_imports(self, content: str) -> list[str]:
        return []

    def detect_syntax_errors(self, content: str) -> list[SyntaxIssue]:
        try:
            json.loads(content)
        except json.JSONDecodeError as exc:
            return [SyntaxIssue(exc.lineno, exc.colno, exc.msg)]
        return []


class AnalyzerRegistry:
    def __init__(self, analyzers: Optional[list[LanguageAnalyzer]] = None) -> None:
        self._by_extension: dict[str, LanguageAnalyzer] = {}
        self._by_language: dict[str, LanguageAnalyzer] = {}
        for analyzer in analyzers or []:
            self.register(analyzer)

    @classmethod
    def default(cls) -> AnalyzerRegistry:
        return cls([PythonAnalyzer(), JsonAnalyzer()])

    def register(self, analyzer: LanguageAnalyzer) -> None:
        self._by_language[analyzer.language_id] = analyzer
        for ext in analyzer.file_extensions:
            self._by_extension[ext.lower()] = analyzer

    def for_path(self, path: str | Path) -> Optional[LanguageAnalyzer]:
        return self._by_extension.get(Path(path).suffix.lower())

    def for_language(self, language_id: str) -> Optional[LanguageAnalyzer]:
        return self._by_language.get(language_id)


# ── dependency graph ──────────────────────────────────────────────────────────


class DependencyGraph:
    """Which workspace files import which, for Python sources.

    Built by scanning *root* once; call ``build()`` again after large changes.
    """

    def __init__(self, root: str | Path, registry: AnalyzerRegistry) -> None:
        self._root = Path(root).resolve()
        self._registry = registry
        self._imports: dict[Path, set[Path]] = {}

    def build(self) -> DependencyGraph:
        self._imports.clear()
        for path in sorted(self._root.rglob("*")):
            if not path.is_file():
                continue
            analyzer = self._registry.for_path(path)
            if analyzer is None:
                continue
            try:
                content = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                _log.warning("Skipping %s: %s", path, exc)
                continue
            targets = (self.resolve_module(m, path) for m in analyzer.analyze_imports(content))
            self._imports[path.resolve()] = {t for t in targets if t is not None}
        return self

    def resolve_module(self, module: str, importer: Path) -> Optional[Path]:
        """Map an import string to a file under the root, if there is one."""
        level = len(module) - len(module.lstrip("."))
        name = module[level:]
        if level:
            base = importer.parent
            for _ in range(level - 1):
                base = base.parent
        else:
            base = self._root
        parts = [p for p in name.split(".") if p]
        candidate = base.joinpath(*parts) if parts else base
        for option in (candidate.with_suffix(".py"), candidate / "__init__.py"):
            if parts and option.is_file():
                return option.resolve()
        if not parts and (candidate / "__init__.py").is_file():
            return (candidate / "__init__.py").resolve()
        return None

    def dependents_of(self, path: str | Path) -> list[Path]:
        target = Path(path).resolve()
        return sorted(p for p, deps in self._imports.items() if target in deps)

    def impact_errors(
        self, changed: str | Path, new_content: str, old_content: Optional[str] = None
    ) -> list[str]:
        """Errors a change to *changed* newly causes in the files importing it.

        Reports syntax errors in dependents and names a dependent imports from
        *changed* that the new content no longer defines.
        """
        changed_path = Path(changed).resolve()
        analyzer = self._registry.for_path(changed_path)
        if analyzer is None:
            return []
        defined = analyzer.defined_names(new_content)
        previously = analyzer.defined_names(old_content) if old_content is not None else None

        errors = []
        for dependent in self.dependents_of(changed_path):
            dep_analyzer = self._registry.for_path(dependent)
            if dep_analyzer is None:
                continue
            try:
                content = dependent.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                errors.append(f"{dependent}: unreadable ({exc})")
                continue
            for issue in dep_analyzer.detect_syntax_errors(content):
                errors.append(f"{dependent}:{issue.line}: {issue.message}")
            for module, name in dep_analyzer.imported_names(content):
                if self.resolve_module(module, dependent) != changed_path:
                    continue
                if name in defined:
                    continue
                if previously is not None and name not in previously:
                    continue
                errors.append(
                    f"{dependent}: imports '{name}' from {changed_path.name}, "
                    "which no longer defines it"
                )
        return errors


# ── code context ──────────────────────────────────────────────────────────────

MAX_CONTEXT_FILES = 200

_PATH_RE = re.compile(r"[\w./-]+\.\w+")


def _read(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        _log.warning("Skipping %s: %s", path, exc)
        return None


def _source_files(root: Path, registry: AnalyzerRegistry, limit: int) -> list[Path]:
    found = []
    for path in sorted(root.rglob("*")):
        rel = path.relative_to(root)
        if any(part.startswith(".") for part in rel.parts) or not path.is_file():
            continue
        if registry.for_path(path) is None:
            continue
        found.append(path)
        if len(found) >= limit:
            break
    return found


def build_code_context(
    root: str | Path,
    registry: AnalyzerRegistry,
    text: str,
    max_files: int = MAX_CONTEXT_FILES,
) -> Optional[CodeContext]:
    """Gather workspace facts for the files and symbols *text* mentions.

    The first mentioned file that exists under *root* and has an analyzer
    supplies the language, imports and top-level structure.  Identifiers in
    *text* that name a definition in any analyzed file (hidden directories
    skipped, at most *max_files* scanned) become symbol references.
    Returns None when *text* mentions nothing the workspace knows about.
    """
    root = Path(root).resolve()
    file_path = language = None
    imports: list[str] = []
    structure: list[str] = []
    for candidate in _PATH_RE.findall(text):
        path = (root / candidate).resolve()
        analyzer = registry.for_path(path)
        if analyzer is None or not path.is_file() or root not in path.parents:
            continue
        content = _read(path)
        if content is None:
            continue
        file_path, language = candidate, analyzer.language_id
        imports = analyzer.analyze_imports(content)
        structure = [
            f"{s.type} {s.name} (lines {s.start_line}-{s.end_line})"
            for s in analyzer.analyze_structure(content)
        ]
        break

    wanted = set(extract_symbols(text))
    references = []
    for path in _source_files(root, registry, max_files) if wanted else []:
        content = _read(path)
        if content is None:
            continue
        for item in registry.for_path(path).analyze_structure(content):
            name = item.name.rsplit(".", 1)[-1]
            if item.type == "key" or name not in wanted:
                continue
            references.append(SymbolReference(
                name=item.name,
                kind=classify_symbol(name, content),
                file_path=path.relative_to(root).as_posix(),
                line=item.start_line,
            ))

    if file_path is None and not references:
        return None
    return CodeContext(
        file_path=file_path,
        language=language,
        imports=imports,
        structure=structure,
        symbol_references=references,
    )
