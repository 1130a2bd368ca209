"""Learns from finished plans and proposes edits to new ones."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from .classifier import classify
from .models import (
    ExecutionPlan,
    PlanRevision,
    PlanRisk,
    PlanSuggestions,
    RevisionType,
    Severity,
    StepStatus,
    StepType,
)
from .plan_patterns import PlanPattern, PlanPatternStore, sequence_of

_log = logging.getLogger(__name__)

MATCH_THRESHOLD = 0.7
RISKY_FAILURE_RATE = 0.3
_HIGH_RISK = 0.7
_MEDIUM_RISK = 0.4
_SEVERITY_RANK = {Severity.HIGH: 3, Severity.MEDIUM: 2, Severity.LOW: 1}
_WINDOW_SIZES = (2, 3)


def context_signature(plan: ExecutionPlan) -> str:
    objective_type = classify(plan.objective).kind.value
    return "_".join([objective_type] + [s.type.value for s in plan.steps])


def signature_similarity(a: str, b: str) -> float:
    ta, tb = set(a.split("_")), set(b.split("_"))
    if not ta and not tb:
        return 1.0
    return len(ta & tb) / len(ta | tb)


def align(
    pattern: Sequence[tuple[str, str]], plan: Sequence[tuple[str, str]]
) -> tuple[float, int]:
    """Place a ``(type, description)`` pattern at its best offset in *plan*.

    Returns the fraction of the pattern's steps whose type matches the plan
    step beside it, and the plan index the pattern starts at.  Offsets that
    tie on types are split by matching descriptions, then by position.
    """
    if not pattern:
        return 1.0, 0
    best = (-1, -1, 0)
    for offset in range(max(1, len(plan) - len(pattern) + 1)):
        window = plan[offset:offset + len(pattern)]
        types = sum(1 for (pt, _), (t, _) in zip(pattern, window) if pt == t)
        descriptions = sum(1 for (_, pd), (_, d) in zip(pattern, window) if pd == d)
        best = max(best, (types, descriptions, -offset))
    return best[0] / len(pattern), -best[2]


def sequence_similarity(pattern: Sequence[str], plan: Sequence[str]) -> float:
    """Fraction of *pattern*'s step types matched at its best offset in *plan*."""
    return align([(t, "") for t in pattern], [(t, "") for t in plan])[0]


def risk_severity(failure_rate: float) -> Severity:
    if failure_rate > _HIGH_RISK:
        return Severity.HIGH
    if failure_rate > _MEDIUM_RISK:
        return Severity.MEDIUM
    return Severity.LOW


class PlanAdapter:
    """Suggests plan edits from historical plan patterns.

    Args:
        store: Plan pattern store to learn into and read from.  A private
               store is created when omitted.
    """

    def __init__(self, store: Optional[PlanPatternStore] = None) -> None:
        self._store = store if store is not None else PlanPatternStore()

    @property
    def store(self) -> PlanPatternStore:
        return self._store

    def learn_from_plan_execution(self, plan: ExecutionPlan, success: bool) -> None:
        """Record the full step sequence and every 2- and 3-step window."""
        sequence = sequence_of(plan.steps)
        if not sequence:
            return
        signature = context_signature(plan)
        chains = [sequence]
        for size in _WINDOW_SIZES:
            if size >= len(sequence):
                continue
            chains.extend(sequence[i:i + size] for i in range(len(sequence) - size + 1))
        for chain in chains:
            self._store.record(chain, signature, success)
        self._store.record_transitions([t for t, _ in sequence], success)
        _log.info(
            "Learned %d plan patterns from %s plan %s",
            len(chains), "successful" if success else "failed", plan.id,
        )

    def _matching_patterns(self, plan: ExecutionPlan) -> list[tuple[PlanPattern, int]]:
        """Patterns that fit *plan*, with their offsets, best and longest first."""
        sequence = sequence_of(plan.steps)
        signature = context_signature(plan)
        matches = []
        for pattern in self._store:
            score, offset = align(pattern.sequence, sequence)
            if score <= MATCH_THRESHOLD:
                continue
            if not any(
                signature_similarity(signature, c) > MATCH_THRESHOLD for c in pattern.contexts
            ):
                continue
            matches.append((score, len(pattern.sequence), pattern, offset))
        matches.sort(key=lambda m: (m[0], m[1]), reverse=True)
        return [(pattern, offset) for _, _, pattern, offset in matches]

    def suggest_plan_modifications(self, plan: ExecutionPlan) -> PlanSuggestions:
        suggestions = PlanSuggestions()
        present = {s.description.strip().lower() for s in plan.steps}
        open_steps = [
            s for i, s in enumerate(plan.steps)
            if i >= plan.current_step_index and s.status is not StepStatus.COMPLETED
        ]
        proposed: dict[tuple, PlanRevision] = {}

        def propose(key: tuple, revision: PlanRevision) -> None:
            current = proposed.get(key)
            if current is None or revision.confidence > current.confidence:
                proposed[key] = revision

        for pattern, offset in self._matching_patterns(plan):
            rate = pattern.success_rate
            if rate > 0.5:
                for position, (step_type, description) in enumerate(pattern.sequence):
                    if description in present:
                        continue
                    index = min(offset + position, len(plan.steps)) - 1
                    propose((RevisionType.INSERT, description), PlanRevision(
                        type=RevisionType.INSERT,
                        step=plan.steps[index].id if index >= 0 else None,
                        reason="Step present in historically successful plans",
                        confidence=rate,
                        description=description,
                        step_type=StepType(step_type),
                    ))
            elif pattern.failure_count:
                failing = set(pattern.descriptions)
                for step in open_steps:
                    if step.description.strip().lower() in failing:
                        propose((RevisionType.REMOVE, step.id), PlanRevision(
                            type=RevisionType.REMOVE,
                            step=step.id,
                            reason="Step historically correlated with plan failure",
                            confidence=1.0 - rate,
                        ))

        suggestions.modifications = sorted(
            proposed.values(), key=lambda r: r.confidence, reverse=True
        )
        suggestions.risks = self._transition_risks(plan) + self._sequence_risks(plan)
        suggestions.risks.sort(key=lambda r: _SEVERITY_RANK[r.severity], reverse=True)
        return suggestions

    def _transition_risks(self, plan: ExecutionPlan) -> list[PlanRisk]:
        risks = []
        for prev, nxt in zip(plan.steps, plan.steps[1:]):
            stats = self._store.transition(prev.type.value, nxt.type.value)
            if stats is None or stats.failure_rate <= RISKY_FAILURE_RATE:
                continue
            risks.append(PlanRisk(
                description=(
                    f"Transition {prev.type.value} -> {nxt.type.value} "
                    f"({prev.id} -> {nxt.id}) fails {stats.failure_rate:.0%} of the time"
                ),
                severity=risk_severity(stats.failure_rate),
                transition=(prev.id, nxt.id),
                failure_rate=stats.failure_rate,
            ))
        return risks

    def _sequence_risks(self, plan: ExecutionPlan) -> list[PlanRisk]:
        """Runs of steps that repeat, verbatim, a sequence that tends to fail.

        A run already covered by a longer reported sequence is not repeated.
        """
        sequence = sequence_of(plan.steps)
        failing = sorted(
            (
                p for p in self._store
                if len(p.sequence) > 1 and p.failure_rate > RISKY_FAILURE_RATE
            ),
            key=lambda p: len(p.sequence),
            reverse=True,
        )
        spans: list[tuple[int, int]] = []
        risks = []
        for pattern in failing:
            size = len(pattern.sequence)
            for start in range(len(sequence) - size + 1):
                end = start + size - 1
                if sequence[start:end + 1] != pattern.sequence:
                    continue
                if any(s <= start and end <= e for s, e in spans):
                    continue
                spans.append((start, end))
                first, last = plan.steps[start], plan.steps[end]
                risks.append(PlanRisk(
                    description=(
                        f"Steps {first.id} to {last.id} repeat a sequence that failed "
                        f"{pattern.failure_rate:.0%} of the time"
                    ),
                    severity=risk_severity(pattern.failure_rate),
                    transition=(first.id, last.id),
                    failure_rate=pattern.failure_rate,
                    kind="sequence",
                ))
        return risks
