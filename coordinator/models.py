"""Data models for the model coordinator."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


# ── enums ─────────────────────────────────────────────────────────────────────


class TaskKind(str, Enum):
    CODE = "code"
    IMAGE = "image"
    GENERAL = "general"
    CODE_ANALYSIS = "codeAnalysis"
    COMMAND = "command"


class Role(str, Enum):
    """Which specialised model a task or step needs."""

    CHAT = "chat"
    CODE = "code"
    VISION = "vision"


class StepType(str, Enum):
    CODE = "code"
    ANALYSIS = "analysis"
    VALIDATION = "validation"
    GENERAL = "general"


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"


class PlanStatus(str, Enum):
    PLANNING = "planning"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"


class RevisionType(str, Enum):
    MODIFY = "modify"
    INSERT = "insert"
    REMOVE = "remove"
    REORDER = "reorder"


class ErrorKind(str, Enum):
    SYNTAX = "syntax"
    SEMANTIC = "semantic"
    DEPENDENCY = "dependency"
    MEMORY = "memory"
    IMPACT = "impact"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class OperationType(str, Enum):
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"
    CREATE_DIRECTORY = "createDirectory"


# ── errors ────────────────────────────────────────────────────────────────────


class CoordinatorError(Exception):
    """Base class for errors raised by the coordinator."""


class NoActivePlanError(CoordinatorError):
    def __init__(self, message: str = "no execution plan available") -> None:
        super().__init__(message)


class DependencyNotSatisfiedError(CoordinatorError):
    """A step was asked to run before all of its prerequisites completed."""


class BackendSwitchError(CoordinatorError):
    """The backend could not be switched to the model a step requires."""


# ── tasks ─────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SymbolReference:
    """A workspace definition of a symbol named in a request."""

    name: str
    kind: str  # constant | type | function | variable
    file_path: str
    line: int


@dataclass(frozen=True)
class CodeContext:
    """What the workspace says about the files and symbols a request names."""

    file_path: Optional[str] = None
    language: Optional[str] = None
    imports: list[str] = field(default_factory=list)
    structure: list[str] = field(default_factory=list)
    symbol_references: list[SymbolReference] = field(default_factory=list)

    def describe(self) -> str:
        lines = []
        if self.file_path:
            lines.append(f"File: {self.file_path} ({self.language or 'unknown language'})")
        if self.imports:
            lines.append("Imports: " + ", ".join(self.imports))
        if self.structure:
            lines.append("Defines: " + "; ".join(self.structure))
        for ref in self.symbol_references:
            lines.append(f"Symbol {ref.name} ({ref.kind}) at {ref.file_path}:{ref.line}")
        return "\n".join(lines)


@dataclass(frozen=True)
class CommandOperation:
    """A shell command requested by the user."""

    command: str
    type: str = "execute"  # execute | validate | analyze
    working_directory: Optional[str] = None
    environment: dict[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None
    requires_sudo: bool = False
    expected_exit_code: int = 0


@dataclass(frozen=True)
class Task:
    """One unit of work handed to the orchestrator."""

    id: str
    kind: TaskKind
    prompt: str
    objective: str = ""
    requires_backend_switch: bool = False
    code_context: Optional[CodeContext] = None
    command_operation: Optional[CommandOperation] = None


@dataclass(frozen=True)
class TaskAnalysis:
    kind: TaskKind
    target_backend: Role
    requires_switch: bool
    validation_required: bool
    complexity: int


@dataclass
class TaskResult:
    task_id: str
    output: str = ""
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


# ── plans ─────────────────────────────────────────────────────────────────────


@dataclass
class PlanStep:
    """A single step in an execution plan."""

    id: str
    description: str
    type: StepType = StepType.GENERAL
    requires_backend: Role = Role.CHAT
    dependencies: list[str] = field(default_factory=list)
    status: StepStatus = StepStatus.PENDING
    retry_count: int = 0
    result: Optional[str] = None
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "type": self.type.value,
            "requires_backend": self.requires_backend.value,
            "dependencies": list(self.dependencies),
            "status": self.status.value,
            "retry_count": self.retry_count,
            "result": self.result,
            "context": dict(self.context),
        }

    @classmethod
    def from_dict(cls, data: dict) -> PlanStep:
        return cls(
            id=data["id"],
            description=data["description"],
            type=StepType(data.get("type", "general")),
            requires_backend=Role(data.get("requires_backend", "chat")),
            dependencies=list(data.get("dependencies", [])),
            status=StepStatus(data.get("status", "pending")),
            retry_count=data.get("retry_count", 0),
            result=data.get("result"),
            context=dict(data.get("context", {})),
        )


@dataclass
class ExecutionPlan:
    """An objective decomposed into ordered steps."""

    id: str
    objective: str
    steps: list[PlanStep]
    current_step_index: int = 0
    status: PlanStatus = PlanStatus.PLANNING

    def get_step(self, step_id: str) -> Optional[PlanStep]:
        return next((s for s in self.steps if s.id == step_id), None)

    def index_of(self, step_id: str) -> int:
        return next((i for i, s in enumerate(self.steps) if s.id == step_id), -1)

    @property
    def current_step(self) -> Optional[PlanStep]:
        if 0 <= self.current_step_index < len(self.steps):
            return self.steps[self.current_step_index]
        return None

    @property
    def is_finished(self) -> bool:
        return self.status in (PlanStatus.COMPLETED, PlanStatus.FAILED)

    def completed_ids(self) -> set[str]:
        return {s.id for s in self.steps if s.status is StepStatus.COMPLETED}

    def unmet_dependencies(self, step: PlanStep) -> list[str]:
        done = self.completed_ids()
        return [d for d in step.dependencies if d not in done]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "objective": self.objective,
            "steps": [s.to_dict() for s in self.steps],
            "current_step_index": self.current_step_index,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ExecutionPlan:
        return cls(
            id=data["id"],
            objective=data["objective"],
            steps=[PlanStep.from_dict(s) for s in data.get("steps", [])],
            current_step_index=data.get("current_step_index", 0),
            status=PlanStatus(data.get("status", "planning")),
        )


@dataclass
class PlanRevision:
    """A proposed edit to a plan.

    ``step`` names the step being modified, removed or reordered, or the
    step after which an inserted step goes (``None`` appends).
    """

    type: RevisionType
    reason: str
    step: Optional[str] = None
    confidence: float = 0.0
    description: str = ""
    step_type: Optional[StepType] = None


@dataclass
class PlanRisk:
    """A transition or step sequence in a plan that has tended to fail.

    ``transition`` holds the ids of the first and last steps involved.
    """

    description: str
    severity: Severity
    transition: tuple[str, str]
    failure_rate: float
    kind: str = "transition"  # transition | sequence


@dataclass
class PlanSuggestions:
    modifications: list[PlanRevision] = field(default_factory=list)
    risks: list[PlanRisk] = field(default_factory=list)


# ── validation ────────────────────────────────────────────────────────────────


@dataclass
class ValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)


@dataclass
class PlanValidationResult(ValidationResult):
    requires_plan_revision: bool = False
    suggested_revisions: list[PlanRevision] = field(default_factory=list)


@dataclass
class CodeChange:
    """A file a step wants to write (``content``) or has written (``None``)."""

    file_path: str
    content: Optional[str] = None
    previous_content: Optional[str] = None


# ── corrections ───────────────────────────────────────────────────────────────


@dataclass
class FileEdit:
    """Replace lines ``start_line..end_line`` (1-based, inclusive)."""

    start_line: int
    end_line: int
    new_content: str
    old_content: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "start_line": self.start_line,
            "end_line": self.end_line,
            "new_content": self.new_content,
            "old_content": self.old_content,
        }

    @classmethod
    def from_dict(cls, data: dict) -> FileEdit:
        return cls(
            start_line=int(data["start_line"]),
            end_line=int(data.get("end_line", data["start_line"])),
            new_content=data.get("new_content", ""),
            old_content=data.get("old_content"),
        )


@dataclass
class FileOperation:
    type: OperationType
    file_path: Optional[str] = None
    target_directory: Optional[str] = None
    content: Optional[str] = None
    language: Optional[str] = None
    edits: list[FileEdit] = field(default_factory=list)

    @property
    def path(self) -> Optional[str]:
        return self.file_path or self.target_directory

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "file_path": self.file_path,
            "target_directory": self.target_directory,
            "content": self.content,
            "language": self.language,
            "edits": [e.to_dict() for e in self.edits],
        }

    @classmethod
    def from_dict(cls, data: dict) -> FileOperation:
        return cls(
            type=OperationType(data["type"]),
            file_path=data.get("file_path"),
            target_directory=data.get("target_directory"),
            content=data.get("content"),
            language=data.get("language"),
            edits=[FileEdit.from_dict(e) for e in data.get("edits", [])],
        )


@dataclass
class SuggestedFix:
    description: str
    changes: list[FileOperation] = field(default_factory=list)
    confidence: float = 0.5

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "changes": [c.to_dict() for c in self.changes],
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: dict) -> SuggestedFix:
        return cls(
            description=data.get("description", ""),
            changes=[FileOperation.from_dict(c) for c in data.get("changes", [])],
            confidence=float(data.get("confidence", 0.5)),
        )


@dataclass
class ErrorContext:
    file: Optional[str] = None
    line: Optional[int] = None
    code: Optional[str] = None
    related_symbols: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "file": self.file,
            "line": self.line,
            "code": self.code,
            "related_symbols": list(self.related_symbols),
        }

    @classmethod
    def from_dict(cls, data: dict) -> ErrorContext:
        return cls(
            file=data.get("file"),
            line=data.get("line"),
            code=data.get("code"),
            related_symbols=list(data.get("related_symbols", [])),
        )


@dataclass
class ErrorCorrection:
    """An error together with the candidate fixes proposed for it.

    ``pattern_id`` is set when the fixes were replayed from a stored
    correction pattern.
    """

    error_kind: ErrorKind
    severity: Severity
    context: ErrorContext = field(default_factory=ErrorContext)
    suggested_fixes: list[SuggestedFix] = field(default_factory=list)
    message: str = ""
    pattern_id: Optional[str] = None

    @property
    def fingerprint(self) -> str:
        return fingerprint(self.error_kind, self.context.code)

    def to_dict(self) -> dict:
        return {
            "error_kind": self.error_kind.value,
            "severity": self.severity.value,
            "context": self.context.to_dict(),
            "suggested_fixes": [f.to_dict() for f in self.suggested_fixes],
            "message": self.message,
            "pattern_id": self.pattern_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ErrorCorrection:
        return cls(
            error_kind=ErrorKind(data["error_kind"]),
            severity=Severity(data.get("severity", "medium")),
            context=ErrorContext.from_dict(data.get("context", {})),
            suggested_fixes=[SuggestedFix.from_dict(f) for f in data.get("suggested_fixes", [])],
            message=data.get("message", ""),
            pattern_id=data.get("pattern_id"),
        )


def fingerprint(kind: ErrorKind, code: Optional[str]) -> str:
    """Stable identity of an error: hash of its kind and code snippet."""
    raw = f"{kind.value}:{code or ''}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


# ── results ───────────────────────────────────────────────────────────────────


@dataclass
class StepResult:
    """Result of one attempt at a plan step."""

    step_id: str
    description: str
    model: str
    response: str
    error: Optional[str] = None
    attempt: int = 1
    revisions: list[PlanRevision] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class OrchestratorResult:
    """Final result of running a plan to completion or failure."""

    objective: str
    plan: ExecutionPlan
    history: list[StepResult]

    @property
    def success(self) -> bool:
        return self.plan.status is PlanStatus.COMPLETED
