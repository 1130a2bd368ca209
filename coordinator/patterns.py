"""Correction pattern store.

A pattern is keyed by the fingerprint of an error (its kind and code
snippet).  Every time a fix is applied for that error the outcome is
recorded against a *strategy*: a group of similar fixes with a running
success rate.  Strategies that worked are replayed, adapted to the new
file, when a sufficiently similar error shows up again.
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Iterator, Optional

import pendulum

from .models import (
    ErrorContext,
    ErrorCorrection,
    ErrorKind,
    FileOperation,
    OperationType,
    SuggestedFix,
)

_log = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.7
MAX_REPLAYED_STRATEGIES = 3

_KIND_WEIGHT = 5
_PATH_WEIGHT = 3
_CODE_WEIGHT = 4
_SYMBOL_WEIGHT = 2
_TOTAL_WEIGHT = _KIND_WEIGHT + _PATH_WEIGHT + _CODE_WEIGHT + _SYMBOL_WEIGHT

_OP_OVERLAP = 0.7
_EDIT_LINE_TOLERANCE = 2
_TOKEN_RE = re.compile(r"\w+")


# ── similarity helpers ────────────────────────────────────────────────────────


def jaccard(a: set, b: set) -> float:
    if not a and not b:
        return 1.0
    return len(a & b) / len(a | b)


def tokens(text: Optional[str]) -> set[str]:
    return set(_TOKEN_RE.findall(text or ""))


def path_similarity(a: Optional[str], b: Optional[str]) -> float:
    if a is None and b is None:
        return 1.0
    if a is None or b is None:
        return 0.0
    if a == b:
        return 1.0
    return jaccard(set(PurePath(a).parts), set(PurePath(b).parts))


def code_similarity(a: Optional[str], b: Optional[str]) -> float:
    if a is None and b is None:
        return 1.0
    if a is None or b is None:
        return 0.0
    return jaccard(tokens(a), tokens(b))


def error_similarity(
    kind: ErrorKind, context: ErrorContext, other_kind: ErrorKind, other: ErrorContext
) -> float:
    """Weighted similarity of two error fingerprints in ``[0, 1]``."""
    score = (
        _KIND_WEIGHT * (1.0 if kind is other_kind else 0.0)
        + _PATH_WEIGHT * path_similarity(context.file, other.file)
        + _CODE_WEIGHT * code_similarity(context.code, other.code)
        + _SYMBOL_WEIGHT * jaccard(set(context.related_symbols), set(other.related_symbols))
    )
    return score / _TOTAL_WEIGHT


def operations_similar(a: FileOperation, b: FileOperation) -> bool:
    if a.type is not b.type or a.path != b.path:
        return False
    if a.type is OperationType.EDIT:
        if not a.edits or not b.edits:
            return not a.edits and not b.edits
        return all(
            any(
                abs(ea.start_line - eb.start_line) <= _EDIT_LINE_TOLERANCE
                and jaccard(tokens(ea.new_content), tokens(eb.new_content)) > _OP_OVERLAP
                for eb in b.edits
            )
            for ea in a.edits
        )
    if a.type is OperationType.CREATE:
        return jaccard(tokens(a.content), tokens(b.content)) > _OP_OVERLAP
    return True


def fixes_similar(a: SuggestedFix, b: SuggestedFix) -> bool:
    """Two fixes are similar when most of their operations line up."""
    if abs(len(a.changes) - len(b.changes)) > 1:
        return False
    if not a.changes:
        return not b.changes
    matched = sum(1 for op in a.changes if any(operations_similar(op, o) for o in b.changes))
    return matched / len(a.changes) >= _OP_OVERLAP


def adapt_fix(fix: SuggestedFix, source: ErrorContext, target: ErrorContext) -> SuggestedFix:
    """Retarget a stored fix from the file/line it was learned on to a new one."""
    adapted = copy.deepcopy(fix)
    offset = 0
    if source.line is not None and target.line is not None:
        offset = target.line - source.line
    for op in adapted.changes:
        if target.file and op.file_path is not None and op.file_path == source.file:
            op.file_path = target.file
        for edit in op.edits:
            edit.start_line = max(1, edit.start_line + offset)
            edit.end_line = max(edit.start_line - 1, edit.end_line + offset)
    return adapted


# ── store ─────────────────────────────────────────────────────────────────────


@dataclass
class Strategy:
    fix: SuggestedFix
    success_count: int = 0
    failure_count: int = 0
    contexts: set[str] = field(default_factory=set)

    @property
    def success_rate(self) -> float:
        total = self.success_count + self.failure_count
        return self.success_count / total if total else 0.0


@dataclass
class PatternStats:
    success_count: int = 0
    failure_count: int = 0
    last_used: Optional[str] = None
    contexts: set[str] = field(default_factory=set)


@dataclass
class Pattern:
    id: str
    error_kind: ErrorKind
    context: ErrorContext
    stats: PatternStats = field(default_factory=PatternStats)
    successful: list[Strategy] = field(default_factory=list)
    failed: list[Strategy] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        total = self.stats.success_count + self.stats.failure_count
        return self.stats.success_count / total if total else 0.0


@dataclass
class PatternMatch:
    pattern: Pattern
    similarity: float
    fixes: list[SuggestedFix]


class PatternStore:
    """In-process store of correction patterns.  Patterns are never deleted."""

    def __init__(self) -> None:
        self._patterns: dict[str, Pattern] = {}

    def __len__(self) -> int:
        return len(self._patterns)

    def __iter__(self) -> Iterator[Pattern]:
        return iter(self._patterns.values())

    def get(self, pattern_id: str) -> Optional[Pattern]:
        return self._patterns.get(pattern_id)

    def success_rate(self, pattern_id: str) -> Optional[float]:
        pattern = self._patterns.get(pattern_id)
        if pattern is None or not (pattern.stats.success_count + pattern.stats.failure_count):
            return None
        return pattern.success_rate

    def record_outcome(
        self,
        correction: ErrorCorrection,
        fix: SuggestedFix,
        success: bool,
        context: str,
    ) -> Pattern:
        """Record that *fix* succeeded or failed for *correction*'s error."""
        key = correction.fingerprint
        pattern = self._patterns.get(key)
        if pattern is None:
            pattern = self._patterns[key] = Pattern(
                id=key,
                error_kind=correction.error_kind,
                context=copy.deepcopy(correction.context),
            )

        stats = pattern.stats
        if success:
            stats.success_count += 1
        else:
            stats.failure_count += 1
        stats.last_used = pendulum.now("UTC").to_iso8601_string()
        stats.contexts.add(context)

        target, other = (
            (pattern.successful, pattern.failed) if success else (pattern.failed, pattern.successful)
        )
        for strategies, is_target in ((target, True), (other, False)):
            strategy = next((s for s in strategies if fixes_similar(s.fix, fix)), None)
            if strategy is None:
                if not is_target:
                    continue
                strategy = Strategy(fix=copy.deepcopy(fix))
                strategies.append(strategy)
            if success:
                strategy.success_count += 1
            else:
                strategy.failure_count += 1
            strategy.contexts.add(context)
        return pattern

    def find_similar(
        self, correction: ErrorCorrection, threshold: float = SIMILARITY_THRESHOLD
    ) -> list[tuple[Pattern, float]]:
        """Patterns whose fingerprint similarity to *correction* exceeds *threshold*."""
        matches = []
        for pattern in self._patterns.values():
            score = error_similarity(
                correction.error_kind, correction.context, pattern.error_kind, pattern.context
            )
            if score > threshold:
                matches.append((pattern, score))
        matches.sort(key=lambda m: m[1], reverse=True)
        return matches

    def suggest(
        self, correction: ErrorCorrection, limit: int = MAX_REPLAYED_STRATEGIES
    ) -> list[PatternMatch]:
        """Replay the best successful strategies of every similar pattern."""
        suggestions = []
        for pattern, score in self.find_similar(correction):
            best = sorted(
                (s for s in pattern.successful if s.success_count),
                key=lambda s: s.success_rate,
                reverse=True,
            )[:limit]
            if not best:
                continue
            fixes = []
            for strategy in best:
                fix = adapt_fix(strategy.fix, pattern.context, correction.context)
                fix.confidence = strategy.success_rate
                fixes.append(fix)
            suggestions.append(PatternMatch(pattern=pattern, similarity=score, fixes=fixes))
        _log.debug("%d stored patterns match %s", len(suggestions), correction.fingerprint)
        return suggestions
