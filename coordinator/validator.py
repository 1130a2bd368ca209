"""Pre- and post-execution validation of plan steps.

Checks run in a fixed order and stop at the first failure:

  1. objective alignment: enough objective words appear in the step
  2. code validity: syntax of pending changes, then their impact on
     files that import them (code steps only)
  3. dependency state: every prerequisite step has completed
  4. memory conflicts: the last ten code analyses report errors or
     conflicts

A failure is first handed to the auto-correct engine.  If a correction
verifies, validation starts over, at most ``MAX_REVALIDATION_DEPTH`` times.
Otherwise the result asks for a plan revision.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Callable, Optional

from .analysis import AnalyzerRegistry, DependencyGraph
from .autocorrect import AutoCorrectEngine, error_from_message
from .memory import MemoryStore
from .models import (
    CodeChange,
    ErrorContext,
    ErrorCorrection,
    ErrorKind,
    ExecutionPlan,
    PlanRevision,
    PlanStep,
    PlanValidationResult,
    RevisionType,
    Severity,
    StepType,
)
from .workspace import Workspace

_log = logging.getLogger(__name__)

ALIGNMENT_THRESHOLD = 0.3
MAX_REVALIDATION_DEPTH = 3

_CONFLICT_RE = re.compile(r"\b(error|errors|conflict|conflicts)\b", re.IGNORECASE)


def _words(text: str) -> list[str]:
    return [w for w in (t.strip(".,;:!?\"'()[]{}").lower() for t in text.split()) if w]


def alignment_score(objective: str, description: str) -> float:
    """Fraction of the objective's words that appear as words in *description*."""
    objective_words = _words(objective)
    if not objective_words:
        return 1.0
    present = set(_words(description))
    return sum(1 for w in objective_words if w in present) / len(objective_words)


@dataclass
class PlanValidationContext:
    plan: ExecutionPlan
    step: PlanStep
    code_changes: list[CodeChange] = field(default_factory=list)
    phase: str = "pre"

    @property
    def objective(self) -> str:
        return self.plan.objective


@dataclass
class _Failure:
    errors: list[str]
    revision: PlanRevision
    error: ErrorCorrection
    check: Callable[[PlanValidationContext], Optional[_Failure]]


class PlanValidator:
    """Validates plan steps and drives auto-correction of failures.

    Args:
        engine: Auto-correct engine, or None to only report failures.
        registry: Language analyzers for code validity checks.
        workspace: Workspace code changes live in.  Impact analysis is
                   skipped without one.
        memory: Source of recent analyses for the conflict check.
    """

    def __init__(
        self,
        engine: Optional[AutoCorrectEngine] = None,
        registry: Optional[AnalyzerRegistry] = None,
        workspace: Optional[Workspace] = None,
        memory: Optional[MemoryStore] = None,
    ) -> None:
        self._engine = engine
        self._registry = registry or AnalyzerRegistry.default()
        self._workspace = workspace
        self._memory = memory

    def validate_step(
        self, context: PlanValidationContext, depth: int = 0
    ) -> PlanValidationResult:
        failure = self._first_failure(context)
        if failure is None:
            return PlanValidationResult(is_valid=True)

        if self._engine is not None and depth < MAX_REVALIDATION_DEPTH:
            def verify() -> bool:
                return failure.check(self._refreshed(context)) is None

            if self._engine.correct(failure.error, verify):
                _log.info(
                    "Step %s corrected (%s); re-validating", context.step.id,
                    failure.error.error_kind.value,
                )
                return self.validate_step(self._refreshed(context), depth + 1)
        elif depth >= MAX_REVALIDATION_DEPTH:
            _log.warning(
                "Step %s still invalid after %d corrections", context.step.id, depth
            )

        return PlanValidationResult(
            is_valid=False,
            errors=failure.errors,
            suggestions=[failure.revision.reason],
            requires_plan_revision=True,
            suggested_revisions=[failure.revision],
        )

    def _first_failure(self, context: PlanValidationContext) -> Optional[_Failure]:
        for check in (
            self._check_alignment,
            self._check_code,
            self._check_dependencies,
            self._check_memory,
        ):
            failure = check(context)
            if failure is not None:
                return failure
        return None

    def _refreshed(self, context: PlanValidationContext) -> PlanValidationContext:
        """Re-read pending changes that a correction may have rewritten on disk."""
        if self._workspace is None:
            return context
        changes = []
        for change in context.code_changes:
            on_disk = self._workspace.read(change.file_path)
            if on_disk is not None and on_disk != change.content:
                change = replace(change, content=None)
            changes.append(change)
        return replace(context, code_changes=changes)

    # ── checks ────────────────────────────────────────────────────────────────

    def _check_alignment(self, context: PlanValidationContext) -> Optional[_Failure]:
        score = alignment_score(context.objective, context.step.description)
        if score >= ALIGNMENT_THRESHOLD:
            return None
        message = (
            f"Step '{context.step.description}' is not aligned with the objective "
            f"(score {score:.2f} < {ALIGNMENT_THRESHOLD})"
        )
        return _Failure(
            errors=[message],
            revision=PlanRevision(
                type=RevisionType.MODIFY,
                step=context.step.id,
                reason="Step does not align with the objective",
            ),
            error=ErrorCorrection(ErrorKind.SEMANTIC, Severity.MEDIUM, message=message),
            check=self._check_alignment,
        )

    def _content(self, change: CodeChange) -> Optional[str]:
        if change.content is not None:
            return change.content
        if self._workspace is None:
            return None
        return self._workspace.read(change.file_path)

    def _check_code(self, context: PlanValidationContext) -> Optional[_Failure]:
        if context.step.type is not StepType.CODE:
            return None
        for change in context.code_changes:
            analyzer = self._registry.for_path(change.file_path)
            if analyzer is None:
                continue
            content = self._content(change)
            if content is None:
                continue

            issues = analyzer.detect_syntax_errors(content)
            if issues:
                first = issues[0]
                lines = content.splitlines()
                code = lines[first.line - 1] if 0 < first.line <= len(lines) else None
                errors = [f"{change.file_path}:{i.line}:{i.column}: {i.message}" for i in issues]
                return _Failure(
                    errors=errors,
                    revision=PlanRevision(
                        type=RevisionType.MODIFY,
                        step=context.step.id,
                        reason=f"Fix syntax errors in {change.file_path}",
                    ),
                    error=error_from_message(
                        errors[0], code, kind=ErrorKind.SYNTAX, severity=Severity.HIGH,
                        default_file=change.file_path,
                    ),
                    check=self._check_code,
                )

            if self._workspace is None:
                continue
            graph = DependencyGraph(self._workspace.root, self._registry).build()
            impact = graph.impact_errors(
                self._workspace.resolve(change.file_path), content, change.previous_content
            )
            if impact:
                return _Failure(
                    errors=impact,
                    revision=PlanRevision(
                        type=RevisionType.MODIFY,
                        step=context.step.id,
                        reason=f"Change to {change.file_path} breaks files that depend on it",
                    ),
                    error=ErrorCorrection(
                        ErrorKind.IMPACT,
                        Severity.HIGH,
                        context=ErrorContext(file=change.file_path),
                        message=impact[0],
                    ),
                    check=self._check_code,
                )
        return None

    def _check_dependencies(self, context: PlanValidationContext) -> Optional[_Failure]:
        unmet = context.plan.unmet_dependencies(context.step)
        if not unmet:
            return None
        errors = [f"Dependency {d} of step {context.step.id} is not completed" for d in unmet]
        return _Failure(
            errors=errors,
            revision=PlanRevision(
                type=RevisionType.INSERT,
                step=None,
                reason="Missing dependency resolution step",
            ),
            error=error_from_message(errors[0], severity=Severity.HIGH),
            check=self._check_dependencies,
        )

    def _check_memory(self, context: PlanValidationContext) -> Optional[_Failure]:
        if self._memory is None:
            return None
        recent = self._memory.recent_context()["code_analyses"]
        conflicts = [e["analysis"] for e in recent if _CONFLICT_RE.search(e["analysis"])]
        if not conflicts:
            return None
        errors = [f"Recent analysis reports a problem: {c}" for c in conflicts]
        return _Failure(
            errors=errors,
            revision=PlanRevision(
                type=RevisionType.MODIFY,
                step=context.step.id,
                reason="Step conflicts with recent analysis results",
            ),
            error=error_from_message(errors[0], kind=ErrorKind.MEMORY, severity=Severity.MEDIUM),
            check=self._check_memory,
        )
