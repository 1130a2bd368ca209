"""Plan pattern store: which step sequences and transitions tend to work."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Iterator, Optional, Sequence

from .models import PlanStep


@dataclass
class TransitionStats:
    success_count: int = 0
    failure_count: int = 0

    @property
    def total(self) -> int:
        return self.success_count + self.failure_count

    @property
    def success_rate(self) -> float:
        return self.success_count / self.total if self.total else 0.0

    @property
    def failure_rate(self) -> float:
        return self.failure_count / self.total if self.total else 0.0

    def record(self, success: bool) -> None:
        if success:
            self.success_count += 1
        else:
            self.failure_count += 1


@dataclass
class PlanPattern:
    """A step sequence seen in a finished plan, with its outcomes."""

    id: str
    sequence: list[tuple[str, str]]  # (step type, description)
    success_count: int = 0
    failure_count: int = 0
    contexts: set[str] = field(default_factory=set)

    @property
    def step_types(self) -> list[str]:
        return [t for t, _ in self.sequence]

    @property
    def descriptions(self) -> list[str]:
        return [d for _, d in self.sequence]

    @property
    def total(self) -> int:
        return self.success_count + self.failure_count

    @property
    def success_rate(self) -> float:
        return self.success_count / self.total if self.total else 0.0

    @property
    def failure_rate(self) -> float:
        return self.failure_count / self.total if self.total else 0.0


def sequence_of(steps: Sequence[PlanStep]) -> list[tuple[str, str]]:
    return [(s.type.value, s.description.strip().lower()) for s in steps]


def pattern_key(sequence: Sequence[tuple[str, str]]) -> str:
    raw = "|".join(f"{t}:{d}" for t, d in sequence)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


class PlanPatternStore:
    def __init__(self) -> None:
        self._patterns: dict[str, PlanPattern] = {}
        self._transitions: dict[tuple[str, str], TransitionStats] = {}

    def __len__(self) -> int:
        return len(self._patterns)

    def __iter__(self) -> Iterator[PlanPattern]:
        return iter(self._patterns.values())

    def get(self, pattern_id: str) -> Optional[PlanPattern]:
        return self._patterns.get(pattern_id)

    def record(
        self, sequence: Sequence[tuple[str, str]], context: str, success: bool
    ) -> PlanPattern:
        key = pattern_key(sequence)
        pattern = self._patterns.get(key)
        if pattern is None:
            pattern = self._patterns[key] = PlanPattern(id=key, sequence=list(sequence))
        if success:
            pattern.success_count += 1
        else:
            pattern.failure_count += 1
        pattern.contexts.add(context)
        return pattern

    def record_transitions(self, step_types: Sequence[str], success: bool) -> None:
        """Update the store-wide statistics for each adjacent step-type pair."""
        for pair in zip(step_types, step_types[1:]):
            self._transitions.setdefault(pair, TransitionStats()).record(success)

    def transition(self, from_type: str, to_type: str) -> Optional[TransitionStats]:
        return self._transitions.get((from_type, to_type))
