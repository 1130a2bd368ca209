"""Generate, rank, apply, verify and roll back corrective edits.

Candidate corrections come from two places: strategies replayed from
similar stored patterns, and fixes freshly proposed by the coding model.
Candidates are grouped by similarity and ranked; each is then tried fix by
fix, rolling the workspace back whenever verification fails.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Optional

from .analysis import AnalyzerRegistry
from .classifier import classify_symbol, extract_symbols
from .memory import MemoryStore
from .models import (
    ErrorContext,
    ErrorCorrection,
    ErrorKind,
    FileEdit,
    FileOperation,
    OperationType,
    Severity,
    SuggestedFix,
)
from .patterns import PatternStore, fixes_similar
from .planner import parse_json
from .thresholds import ThresholdManager, context_key
from .workspace import Workspace

_log = logging.getLogger(__name__)

GROUP_OVERLAP = 0.7

_FIX_PROMPT = """\
You are fixing an error in a software project.

Error kind: {kind}
Error: {message}
File: {file}
Line: {line}
Code:
{code}

Propose up to three alternative fixes. Respond with a JSON array only:
[{{"description": "...", "fixes": [{{"type": "edit", "file": "<path>",
  "changes": [{{"line": <line number>, "content": "<replacement line>"}}]}}]}}]

Use "type": "create" with a "content" field to write a whole file.
"""

_FILE_RE = re.compile(r"file[:\s]+(\S+)", re.IGNORECASE)
_LINE_RE = re.compile(r"line[:\s]+(\d+)", re.IGNORECASE)
_LOCATION_RE = re.compile(r"^\s*([^\s:]+):(\d+)(?::\d+)?:")


# ── error description helpers ─────────────────────────────────────────────────


def classify_error(message: str) -> ErrorKind:
    text = message.lower()
    if "syntax" in text or "unexpected token" in text or "parse" in text:
        return ErrorKind.SYNTAX
    if "import" in text or "module" in text or "dependency" in text or "cannot find" in text:
        return ErrorKind.DEPENDENCY
    if "memory" in text or "conflict" in text:
        return ErrorKind.MEMORY
    if "impact" in text or "depends on" in text:
        return ErrorKind.IMPACT
    return ErrorKind.SEMANTIC


def assess_severity(message: str) -> Severity:
    text = message.lower()
    if "fatal" in text or "crash" in text or "critical" in text:
        return Severity.CRITICAL
    if "error" in text or "failed" in text:
        return Severity.HIGH
    if "warning" in text:
        return Severity.MEDIUM
    return Severity.LOW


def build_error_context(
    message: str, code: Optional[str] = None, default_file: Optional[str] = None
) -> ErrorContext:
    """Pull the file and line an error message points at.

    Understands a leading ``path:line[:column]:`` as analyzers print it, and
    otherwise ``file: x`` and ``line N`` phrases.  *default_file* is used
    when the message names no file.
    """
    location = _LOCATION_RE.match(message)
    if location:
        file, line = location.group(1), int(location.group(2))
    else:
        file_match = _FILE_RE.search(message)
        line_match = _LINE_RE.search(message)
        file = file_match.group(1).strip("'\",") if file_match else None
        line = int(line_match.group(1)) if line_match else None
    return ErrorContext(
        file=file or default_file,
        line=line,
        code=code,
        related_symbols=related_symbols(code or ""),
    )


def related_symbols(code: str) -> list[str]:
    """Identifiers in *code* that name functions or types."""
    return [s for s in extract_symbols(code) if classify_symbol(s, code) in ("function", "type")]


def error_from_message(
    message: str,
    code: Optional[str] = None,
    *,
    kind: Optional[ErrorKind] = None,
    severity: Optional[Severity] = None,
    default_file: Optional[str] = None,
) -> ErrorCorrection:
    """Describe a failure message as an ErrorCorrection with no fixes yet.

    *kind* and *severity* are inferred from the wording unless the caller
    already knows them.
    """
    return ErrorCorrection(
        error_kind=kind or classify_error(message),
        severity=severity or assess_severity(message),
        context=build_error_context(message, code, default_file),
        message=message,
    )


def calculate_confidence(fix: SuggestedFix, context: ErrorContext) -> float:
    """Base 0.5, plus 0.1 for a single operation, 0.2 when an edit lands on
    the error line of the error file, and 0.1 when every operation is an edit.
    """
    confidence = 0.5
    if len(fix.changes) == 1:
        confidence += 0.1
    if context.line is not None and any(
        op.file_path == context.file and any(e.start_line == context.line for e in op.edits)
        for op in fix.changes
    ):
        confidence += 0.2
    if fix.changes and all(op.type is OperationType.EDIT for op in fix.changes):
        confidence += 0.1
    return min(1.0, confidence)


def _operation_from_reply(item: dict, default_file: Optional[str]) -> Optional[FileOperation]:
    path = item.get("file") or item.get("file_path") or default_file
    kind = str(item.get("type", "edit"))
    if not path:
        return None
    if kind == "create":
        return FileOperation(OperationType.CREATE, file_path=path, content=item.get("content", ""))
    edits = []
    for change in item.get("changes", []):
        try:
            line = int(change["line"])
        except (KeyError, TypeError, ValueError):
            continue
        end = int(change.get("end_line", line))
        edits.append(FileEdit(start_line=line, end_line=end, new_content=str(change.get("content", ""))))
    if not edits:
        return None
    return FileOperation(OperationType.EDIT, file_path=path, edits=edits)


class AutoCorrectEngine:
    """Turns a validation failure into applied, verified edits.

    Args:
        generate: Sends a prompt to the coding model and returns its reply,
                  or None to rely on stored patterns only.  The caller owns
                  model switching, so the coding model is active first.
        patterns: Correction pattern store (shared, process-wide).
        thresholds: Threshold manager (shared, process-wide).
        workspace: Where fixes are applied.
        registry: Analyzers used by the default verification.
        memory: Optional store receiving correction outcomes; also the
                source of historical success rates.
    """

    def __init__(
        self,
        generate: Optional[Callable[[str], str]],
        *,
        patterns: PatternStore,
        thresholds: ThresholdManager,
        workspace: Workspace,
        registry: Optional[AnalyzerRegistry] = None,
        memory: Optional[MemoryStore] = None,
    ) -> None:
        self._generate = generate
        self._patterns = patterns
        self._thresholds = thresholds
        self._workspace = workspace
        self._registry = registry or AnalyzerRegistry.default()
        self._memory = memory

    # ── generation ────────────────────────────────────────────────────────────

    def generate_corrections(self, error: ErrorCorrection) -> list[ErrorCorrection]:
        """Candidate corrections for *error*, most promising first."""
        candidates = self._pattern_corrections(error) + self._synthesized_corrections(error)
        if not candidates:
            return []

        groups: list[list[ErrorCorrection]] = []
        for candidate in candidates:
            group = next((g for g in groups if self._similar(g[0], candidate)), None)
            if group is None:
                groups.append([candidate])
            else:
                group.append(candidate)

        scored = []
        for group in groups:
            members = sorted(
                ((self._score(c, error), c) for c in group), key=lambda m: m[0], reverse=True
            )
            mean = sum(s for s, _ in members) / len(members)
            scored.append((mean, [c for _, c in members]))
        scored.sort(key=lambda g: g[0], reverse=True)
        return [c for _, members in scored for c in members]

    def _pattern_corrections(self, error: ErrorCorrection) -> list[ErrorCorrection]:
        return [
            ErrorCorrection(
                error_kind=error.error_kind,
                severity=error.severity,
                context=error.context,
                suggested_fixes=match.fixes,
                message=error.message,
                pattern_id=match.pattern.id,
            )
            for match in self._patterns.suggest(error)
        ]

    def _synthesized_corrections(self, error: ErrorCorrection) -> list[ErrorCorrection]:
        if self._generate is None:
            return []
        prompt = _FIX_PROMPT.format(
            kind=error.error_kind.value,
            message=error.message or "(none)",
            file=error.context.file or "(unknown)",
            line=error.context.line if error.context.line is not None else "(unknown)",
            code=error.context.code or "(unavailable)",
        )
        try:
            raw = self._generate(prompt)
        except Exception as exc:  # noqa: BLE001
            _log.warning("Fix synthesis failed: %s", exc)
            return []

        corrections = []
        for item in parse_json(raw, list) or []:
            if not isinstance(item, dict):
                continue
            ops = [
                op for op in (
                    _operation_from_reply(f, error.context.file)
                    for f in item.get("fixes", []) if isinstance(f, dict)
                )
                if op is not None
            ]
            if not ops:
                continue
            fix = SuggestedFix(description=str(item.get("description", "")), changes=ops)
            fix.confidence = calculate_confidence(fix, error.context)
            corrections.append(ErrorCorrection(
                error_kind=error.error_kind,
                severity=error.severity,
                context=error.context,
                suggested_fixes=[fix],
                message=error.message,
            ))
        return corrections

    @staticmethod
    def _similar(a: ErrorCorrection, b: ErrorCorrection) -> bool:
        if a.error_kind is not b.error_kind:
            return False
        if not a.suggested_fixes or not b.suggested_fixes:
            return not a.suggested_fixes and not b.suggested_fixes
        matched = sum(
            1 for fa in a.suggested_fixes
            if any(fixes_similar(fa, fb) for fb in b.suggested_fixes)
        )
        return matched / len(a.suggested_fixes) >= GROUP_OVERLAP

    def historical_success_rate(self, correction: ErrorCorrection) -> float:
        if correction.pattern_id is not None:
            rate = self._patterns.success_rate(correction.pattern_id)
            if rate is not None:
                return rate
        if self._memory is not None:
            return self._memory.historical_success_rate(correction.error_kind)
        return 0.5

    def _score(self, correction: ErrorCorrection, error: ErrorCorrection) -> float:
        if not correction.suggested_fixes:
            return 0.0
        historical = self.historical_success_rate(correction)
        total = 0.0
        for fix in correction.suggested_fixes:
            paths = {op.path for op in fix.changes if op.path}
            if error.context.file is None or not paths:
                similarity = 1.0
            else:
                similarity = sum(1 for p in paths if p == error.context.file) / len(paths)
            impact = 1.0 / len(paths) if paths else 0.5
            total += fix.confidence + 2 * historical + similarity + impact
        return total / len(correction.suggested_fixes)

    # ── application ───────────────────────────────────────────────────────────

    def correct(self, error: ErrorCorrection, verify: Optional[Callable[[], bool]] = None) -> bool:
        """Generate candidates for *error* and apply them until one verifies."""
        for correction in self.generate_corrections(error):
            if self.apply_correction(correction, verify):
                return True
        _log.info("No correction resolved %s error: %s", error.error_kind.value, error.message)
        return False

    def apply_correction(
        self, correction: ErrorCorrection, verify: Optional[Callable[[], bool]] = None
    ) -> bool:
        """Try each eligible fix of *correction*; keep the first that verifies.

        *verify* re-runs the check that originally failed.  When omitted the
        touched files are re-checked for syntax errors.  Raises OSError if a
        failed fix cannot be rolled back.
        """
        key = context_key(correction.context.file, correction.context.line)
        threshold = self._thresholds.get_threshold(correction.error_kind, key)
        eligible = sorted(
            (f for f in correction.suggested_fixes if f.confidence >= threshold),
            key=lambda f: f.confidence,
            reverse=True,
        )
        if not eligible:
            _log.debug(
                "No fix for %s clears threshold %.2f", correction.error_kind.value, threshold
            )
            return False

        for fix in eligible:
            paths = self._workspace.touched_paths(fix.changes)
            snapshot = self._workspace.snapshot(paths)
            try:
                self._workspace.apply_all(fix.changes)
                passed = verify() if verify is not None else self.verify_correction(fix)
            except Exception as exc:  # noqa: BLE001
                _log.warning("Fix %r could not be applied: %s", fix.description, exc)
                passed = False

            if passed:
                self._record(correction, fix, key, True)
                for path in paths:
                    if self._memory is not None:
                        self._memory.add_file_change(str(path), "auto-correct", self._workspace.read(path))
                _log.info(
                    "Auto-corrected %s error in %s: %s",
                    correction.error_kind.value, correction.context.file or "workspace",
                    fix.description,
                )
                return True

            try:
                self._workspace.restore(snapshot)
            except OSError:
                _log.exception("Rollback of fix %r failed", fix.description)
                raise
            self._record(correction, fix, key, False)
        return False

    def _record(self, correction: ErrorCorrection, fix: SuggestedFix, key: str, success: bool) -> None:
        self._patterns.record_outcome(correction, fix, success, key)
        self._thresholds.adjust_threshold(correction.error_kind, key, success)
        if self._memory is not None:
            applied = ErrorCorrection(
                error_kind=correction.error_kind,
                severity=correction.severity,
                context=correction.context,
                suggested_fixes=[fix],
                message=correction.message,
                pattern_id=correction.pattern_id,
            )
            self._memory.add_correction(applied, success)

    def verify_correction(self, fix: SuggestedFix) -> bool:
        """Re-check every file *fix* touched with its language analyzer."""
        for op in fix.changes:
            if op.type in (OperationType.DELETE, OperationType.CREATE_DIRECTORY) or not op.file_path:
                continue
            analyzer = self._registry.for_path(op.file_path)
            if analyzer is None:
                continue
            content = self._workspace.read(op.file_path)
            if content is None:
                return False
            if not analyzer.validate_syntax(content) or not analyzer.validate_imports(content):
                return False
        return True
