"""Memory store: plan snapshots, correction outcomes and workspace history.

Plans are stored as plain dicts so that a restored plan is a fresh object
and the JSON-backed store can resume an interrupted plan after a restart.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

import pendulum

from .models import ErrorCorrection, ErrorKind, ExecutionPlan, PlanStatus

_log = logging.getLogger(__name__)

_SUCCESS_SCALE = 1.1
_FAILURE_SCALE = 0.9
HIGH_CONFIDENCE = 0.8


def _now() -> str:
    return pendulum.now("UTC").to_iso8601_string()


def _plan_state(plan: ExecutionPlan) -> str:
    if plan.status is PlanStatus.COMPLETED:
        return "completed"
    if plan.status is PlanStatus.FAILED:
        return "failed"
    return "active"


class MemoryStore(ABC):
    """Interface the coordinator persists its state through."""

    @abstractmethod
    def save_plan_state(self, plan: ExecutionPlan) -> None:
        ...

    @abstractmethod
    def get_active_plan(self) -> Optional[ExecutionPlan]:
        ...

    @abstractmethod
    def add_correction(self, correction: ErrorCorrection, success: bool) -> None:
        ...

    @abstractmethod
    def get_corrections(self, kind: Optional[ErrorKind] = None) -> list[ErrorCorrection]:
        ...

    @abstractmethod
    def add_step_context(self, plan_id: str, step_id: str, context: dict[str, Any]) -> None:
        ...

    @abstractmethod
    def add_file_change(self, path: str, operation: str, content: Optional[str] = None) -> None:
        ...

    @abstractmethod
    def add_code_analysis(self, path: str, analysis: str) -> None:
        ...

    @abstractmethod
    def recent_context(self, limit: int = 10) -> dict[str, list[dict]]:
        """The last *limit* file changes, code analyses and terminal logs."""

    @abstractmethod
    def add_terminal_log(self, command: str, output: str, exit_code: Optional[int]) -> None:
        ...

    def historical_success_rate(self, kind: ErrorKind) -> float:
        """Share of past corrections of *kind* that ended with a high-confidence fix."""
        history = self.get_corrections(kind)
        if not history:
            return 0.5
        good = sum(
            1 for c in history
            if any(f.confidence > HIGH_CONFIDENCE for f in c.suggested_fixes)
        )
        return good / len(history)


class InMemoryStore(MemoryStore):
    """Process-lifetime store."""

    def __init__(self) -> None:
        self.plans: dict[str, dict] = {}
        self.corrections: list[dict] = []
        self.file_changes: list[dict] = []
        self.code_analyses: list[dict] = []
        self.terminal_logs: list[dict] = []

    def _changed(self) -> None:
        """Hook called after every mutation."""

    def save_plan_state(self, plan: ExecutionPlan) -> None:
        record = plan.to_dict()
        record["state"] = _plan_state(plan)
        record["updated_at"] = _now()
        if plan.id in self.plans:
            for step in record["steps"]:
                old = next(
                    (s for s in self.plans[plan.id]["steps"] if s["id"] == step["id"]), None
                )
                if old and old.get("context"):
                    step["context"] = {**old["context"], **step["context"]}
        if record["state"] == "active":
            for other in self.plans.values():
                if other["id"] != plan.id and other["state"] == "active":
                    other["state"] = "superseded"
        self.plans[plan.id] = record
        self._changed()

    def get_active_plan(self) -> Optional[ExecutionPlan]:
        for record in self.plans.values():
            if record["state"] == "active":
                return ExecutionPlan.from_dict(record)
        return None

    def add_correction(self, correction: ErrorCorrection, success: bool) -> None:
        record = correction.to_dict()
        scale = _SUCCESS_SCALE if success else _FAILURE_SCALE
        for fix in record["suggested_fixes"]:
            fix["confidence"] = min(1.0, fix["confidence"] * scale)
        self.corrections.append({"correction": record, "success": success, "timestamp": _now()})
        self._changed()

    def get_corrections(self, kind: Optional[ErrorKind] = None) -> list[ErrorCorrection]:
        return [
            ErrorCorrection.from_dict(entry["correction"])
            for entry in self.corrections
            if kind is None or entry["correction"]["error_kind"] == kind.value
        ]

    def add_step_context(self, plan_id: str, step_id: str, context: dict[str, Any]) -> None:
        record = self.plans.get(plan_id)
        if record is None:
            _log.warning("No stored plan %s to attach step context to", plan_id)
            return
        for step in record["steps"]:
            if step["id"] == step_id:
                step.setdefault("context", {}).update(context)
                self._changed()
                return
        _log.warning("Plan %s has no step %s", plan_id, step_id)

    def add_file_change(self, path: str, operation: str, content: Optional[str] = None) -> None:
        self.file_changes.append(
            {"path": path, "operation": operation, "content": content, "timestamp": _now()}
        )
        self._changed()

    def add_code_analysis(self, path: str, analysis: str) -> None:
        self.code_analyses.append({"path": path, "analysis": analysis, "timestamp": _now()})
        self._changed()

    def recent_context(self, limit: int = 10) -> dict[str, list[dict]]:
        def tail(entries: list[dict]) -> list[dict]:
            return [dict(e) for e in entries[-limit:]] if limit > 0 else []

        return {
            "file_changes": tail(self.file_changes),
            "code_analyses": tail(self.code_analyses),
            "terminal_logs": tail(self.terminal_logs),
        }

    def add_terminal_log(self, command: str, output: str, exit_code: Optional[int]) -> None:
        self.terminal_logs.append(
            {"command": command, "output": output, "exit_code": exit_code, "timestamp": _now()}
        )
        self._changed()


class JsonFileMemoryStore(InMemoryStore):
    """InMemoryStore persisted to ``memory.json`` and ``corrections.json``.

    Args:
        directory: Where the two files live.  Created if missing.
    """

    def __init__(self, directory: str | Path) -> None:
        super().__init__()
        self._dir = Path(directory)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._memory_path = self._dir / "memory.json"
        self._corrections_path = self._dir / "corrections.json"
        self._load()

    def _load(self) -> None:
        if self._memory_path.is_file():
            data = json.loads(self._memory_path.read_text(encoding="utf-8"))
            self.plans = {p["id"]: p for p in data.get("plans", [])}
            self.file_changes = data.get("file_changes", [])
            self.code_analyses = data.get("code_analyses", [])
            self.terminal_logs = data.get("terminal_logs", [])
        if self._corrections_path.is_file():
            self.corrections = json.loads(self._corrections_path.read_text(encoding="utf-8"))
        _log.info(
            "Loaded memory from %s (%d plans, %d corrections)",
            self._dir, len(self.plans), len(self.corrections),
        )

    def _changed(self) -> None:
        memory = {
            "plans": list(self.plans.values()),
            "file_changes": self.file_changes,
            "code_analyses": self.code_analyses,
            "terminal_logs": self.terminal_logs,
        }
        self._memory_path.write_text(json.dumps(memory, indent=2), encoding="utf-8")
        self._corrections_path.write_text(
            json.dumps(self.corrections, indent=2), encoding="utf-8"
        )
