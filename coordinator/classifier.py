"""Keyword-based task classification and routing.

Everything here is a pure function of its input string.  Keywords are
matched as whole words so that short entries such as ``go`` do not fire
inside longer words.
"""

from __future__ import annotations

import keyword
import logging
import re
from functools import lru_cache

from .models import Role, StepType, TaskAnalysis, TaskKind

_log = logging.getLogger(__name__)

CODE_KEYWORDS = (
    # languages
    "javascript", "typescript", "python", "java", "c++", "c#", "ruby", "golang",
    "rust", "php", "swift", "kotlin", "scala", "html", "css", "sql",
    # concepts
    "function", "class", "method", "variable", "api", "database", "algorithm",
    "code", "program", "script", "compile", "debug", "bug", "exception", "syntax",
    # development tasks
    "implement", "refactor", "optimize", "test", "deploy", "build", "develop",
    # directory operations
    "directory", "folder", "file", "mkdir",
)

VISION_KEYWORDS = (
    "image", "picture", "photo", "visualization", "diagram", "graph", "plot",
    "visual", "display",
)

_SCOPE_KEYWORDS = ("game", "application", "system")
_BREADTH_KEYWORDS = ("full", "complete", "comprehensive")
_TECHNICAL_KEYWORDS = (
    "optimize", "refactor", "architecture", "async", "concurrent", "parallel",
    "distributed", "scale", "security", "encryption", "authentication",
    "database", "api", "integration", "deploy",
)
_FRAMEWORK_KEYWORDS = (
    "react", "angular", "vue", "django", "flask", "spring", "express",
    "tensorflow", "pytorch",
)

_STEP_CODE_KEYWORDS = ("code", "function", "class", "implement", "write", "create", "fix")
_STEP_ANALYSIS_KEYWORDS = ("analyze", "analyse", "review", "inspect")
_STEP_VALIDATION_KEYWORDS = ("validate", "verify", "test", "check")

_COMMAND_PREFIX = "$"

MAX_COMPLEXITY = 10
CODE_ANALYSIS_COMPLEXITY = 4
VALIDATION_COMPLEXITY = 7


@lru_cache(maxsize=None)
def _word_pattern(words: tuple[str, ...]) -> re.Pattern:
    alternatives = "|".join(re.escape(w) for w in sorted(words, key=len, reverse=True))
    return re.compile(rf"(?<![\w+#])(?:{alternatives})(?![\w+#])", re.IGNORECASE)


def find_keywords(text: str, words: tuple[str, ...]) -> set[str]:
    """Return the entries of *words* present in *text* as whole words."""
    return {m.group(0).lower() for m in _word_pattern(words).finditer(text)}


def contains_any(text: str, words: tuple[str, ...]) -> bool:
    return _word_pattern(words).search(text) is not None


def estimate_complexity(text: str) -> int:
    """Score *text* from 1 to 10 by length, scope and technical vocabulary."""
    score = 1
    score += min(3, len(text) // 100)
    if contains_any(text, _SCOPE_KEYWORDS):
        score += 3
    if contains_any(text, _BREADTH_KEYWORDS):
        score += 2
    score += len(find_keywords(text, _TECHNICAL_KEYWORDS))
    if contains_any(text, _FRAMEWORK_KEYWORDS):
        score += 2
    return max(1, min(MAX_COMPLEXITY, score))


def _fallback() -> TaskAnalysis:
    return TaskAnalysis(
        kind=TaskKind.GENERAL,
        target_backend=Role.CHAT,
        requires_switch=False,
        validation_required=False,
        complexity=1,
    )


def classify(text: str) -> TaskAnalysis:
    """Classify free text into a task kind and the model role that serves it.

    Never raises; anything unexpected yields a plain general task.
    """
    try:
        if text.lstrip().startswith(_COMMAND_PREFIX):
            return TaskAnalysis(
                kind=TaskKind.COMMAND,
                target_backend=Role.CHAT,
                requires_switch=False,
                validation_required=True,
                complexity=1,
            )

        complexity = estimate_complexity(text)
        validation_required = complexity > VALIDATION_COMPLEXITY

        if contains_any(text, CODE_KEYWORDS):
            kind = (
                TaskKind.CODE_ANALYSIS
                if complexity > CODE_ANALYSIS_COMPLEXITY
                else TaskKind.CODE
            )
            return TaskAnalysis(kind, Role.CODE, True, validation_required, complexity)

        if contains_any(text, VISION_KEYWORDS):
            return TaskAnalysis(TaskKind.IMAGE, Role.VISION, True, validation_required, complexity)

        return TaskAnalysis(TaskKind.GENERAL, Role.CHAT, False, validation_required, complexity)
    except Exception:  # noqa: BLE001
        _log.exception("Classification failed; treating input as a general task")
        return _fallback()


def classify_step(description: str) -> tuple[StepType, Role]:
    """Assign a step type and the model role that should execute it."""
    if contains_any(description, _STEP_CODE_KEYWORDS):
        return StepType.CODE, Role.CODE
    if contains_any(description, _STEP_ANALYSIS_KEYWORDS):
        return StepType.ANALYSIS, Role.CODE
    if contains_any(description, _STEP_VALIDATION_KEYWORDS):
        return StepType.VALIDATION, Role.CHAT
    return StepType.GENERAL, Role.CHAT


# ── symbol heuristics ─────────────────────────────────────────────────────────
#
# Rules, applied in order to an identifier:
#   1. ALL_CAPS (letters, digits, underscores, at least two chars) -> "constant"
#   2. Leading capital followed by a lowercase letter (CamelCase)   -> "type"
#   3. Immediately followed by "(" where it appears in the code     -> "function"
#   4. anything else                                                -> "variable"

_IDENTIFIER_RE = re.compile(r"\b[A-Za-z_][A-Za-z0-9_]*\b")
_CONSTANT_RE = re.compile(r"^[A-Z][A-Z0-9_]+$")
_TYPE_RE = re.compile(r"^[A-Z][a-z]")


def extract_symbols(code: str) -> list[str]:
    """Return distinct non-keyword identifiers in *code*, in first-seen order."""
    seen: dict[str, None] = {}
    for name in _IDENTIFIER_RE.findall(code or ""):
        if keyword.iskeyword(name) or name in seen:
            continue
        seen[name] = None
    return list(seen)


def classify_symbol(name: str, code: str = "") -> str:
    if _CONSTANT_RE.match(name):
        return "constant"
    if _TYPE_RE.match(name):
        return "type"
    if code and re.search(rf"\b{re.escape(name)}\s*\(", code):
        return "function"
    return "variable"
