"""Adaptive confidence thresholds for auto-correction.

Each error kind keeps a base threshold plus one threshold per context
(usually ``"<file>:<line>"``).  A context's threshold moves toward the upper
bound while fixes there keep succeeding and toward the lower bound while
they keep failing.  Every value handed out lies in ``[MIN_THRESHOLD,
MAX_THRESHOLD]``.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Optional

from .models import ErrorKind

_log = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.7
MIN_THRESHOLD = 0.3
MAX_THRESHOLD = 0.9
HISTORY_SIZE = 1000
RECOMPUTE_EVERY = 100

_RAISE_ABOVE = 0.8
_LOWER_BELOW = 0.6


def _clamp(value: float) -> float:
    return max(MIN_THRESHOLD, min(MAX_THRESHOLD, value))


def context_key(file: Optional[str], line: Optional[int] = None) -> str:
    return f"{file or ''}:{line if line is not None else ''}"


def learning_rate(sample_size: int) -> float:
    """Larger steps while a context has few samples."""
    return 0.1 * (1 + 5 / max(sample_size, 5))


@dataclass
class ContextThreshold:
    threshold: float
    success_rate: float = 0.0
    sample_size: int = 0


@dataclass
class ThresholdData:
    base_threshold: float = DEFAULT_THRESHOLD
    contexts: dict[str, ContextThreshold] = field(default_factory=dict)
    history: deque = field(default_factory=lambda: deque(maxlen=HISTORY_SIZE))
    total_samples: int = 0


class ThresholdManager:
    """Holds per-(error kind, context) thresholds.  One instance per process."""

    def __init__(self, default: float = DEFAULT_THRESHOLD) -> None:
        self._default = _clamp(default)
        self._data: dict[ErrorKind, ThresholdData] = {}

    def _kind_data(self, kind: ErrorKind) -> ThresholdData:
        data = self._data.get(kind)
        if data is None:
            data = self._data[kind] = ThresholdData(base_threshold=self._default)
        return data

    def get_threshold(self, kind: ErrorKind, context: Optional[str] = None) -> float:
        data = self._data.get(kind)
        if data is None:
            return self._default
        entry = data.contexts.get(context) if context is not None else None
        return _clamp(entry.threshold if entry else data.base_threshold)

    def base_threshold(self, kind: ErrorKind) -> float:
        data = self._data.get(kind)
        return data.base_threshold if data else self._default

    def history(self, kind: ErrorKind) -> list[tuple[str, bool]]:
        data = self._data.get(kind)
        return list(data.history) if data else []

    def adjust_threshold(self, kind: ErrorKind, context: str, success: bool) -> float:
        """Record one correction outcome and return the context's new threshold."""
        data = self._kind_data(kind)
        entry = data.contexts.get(context)
        if entry is None:
            entry = data.contexts[context] = ContextThreshold(threshold=data.base_threshold)

        entry.sample_size += 1
        outcome = 1.0 if success else 0.0
        entry.success_rate += (outcome - entry.success_rate) / entry.sample_size

        rate = learning_rate(entry.sample_size)
        if entry.success_rate > _RAISE_ABOVE:
            entry.threshold += rate * (MAX_THRESHOLD - entry.threshold)
        elif entry.success_rate < _LOWER_BELOW:
            entry.threshold -= rate * (entry.threshold - MIN_THRESHOLD)
        entry.threshold = _clamp(entry.threshold)

        data.history.append((context, success))
        data.total_samples += 1
        if data.total_samples % RECOMPUTE_EVERY == 0:
            self._recompute_base(kind, data)
        return entry.threshold

    def _recompute_base(self, kind: ErrorKind, data: ThresholdData) -> None:
        weight = sum(c.sample_size for c in data.contexts.values())
        if weight == 0:
            return
        weighted = sum(c.threshold * c.sample_size for c in data.contexts.values())
        data.base_threshold = _clamp(weighted / weight)
        _log.info(
            "Base threshold for %s recomputed to %.3f over %d samples",
            kind.value, data.base_threshold, weight,
        )
