"""Orchestrator: task routing, the execution-plan state machine and model switching.

Usage::

    from backends import OllamaBackend
    from coordinator import Orchestrator

    orchestrator = Orchestrator(OllamaBackend(), workspace="./project")
    print(await orchestrator.handle_task("Create a CLI that counts words in a file"))
    print(await orchestrator.handle_task("continue"))

Work submitted through ``handle_task``/``submit`` is processed one item at a
time by a single consumer.  The backend hosts one warm model at a time; a
step that needs a different model waits for the switch to finish first.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import pendulum

from backends import ModelBackend
from .adapter import PlanAdapter
from .analysis import AnalyzerRegistry, build_code_context
from .autocorrect import AutoCorrectEngine
from .classifier import classify, classify_step
from .commands import CommandRunner
from .memory import InMemoryStore, MemoryStore
from .models import (
    BackendSwitchError,
    CodeChange,
    CodeContext,
    CommandOperation,
    CoordinatorError,
    DependencyNotSatisfiedError,
    ExecutionPlan,
    FileOperation,
    NoActivePlanError,
    OperationType,
    OrchestratorResult,
    PlanRevision,
    PlanStatus,
    PlanStep,
    RevisionType,
    Role,
    Severity,
    StepResult,
    StepStatus,
    StepType,
    Task,
    TaskKind,
    TaskResult,
)
from .patterns import PatternStore
from .plan_patterns import PlanPatternStore
from .planner import Planner, parse_json
from .thresholds import ThresholdManager
from .validator import PlanValidationContext, PlanValidator
from .workspace import Snapshot, Workspace

_log = logging.getLogger(__name__)

MAX_RETRIES = 3
AUTO_APPLY_CONFIDENCE = 0.8

_EDIT_INTENT_RE = re.compile(r"\b(create|edit)\b", re.IGNORECASE)
_TOOL_CALL_RE = re.compile(r"<tool_call>(.*?)</tool_call>", re.DOTALL)
_STEP_ID_RE = re.compile(r"^step_(\d+)$")

_STEP_PROMPT = """\
You are carrying out one step of a larger plan.

Objective: {objective}

Completed steps:
{completed}

Current step: {description}
{context}{instructions}"""

_CODE_INSTRUCTIONS = """
If this step changes files, end your answer with a JSON object listing them:
{"operations": [{"type": "create", "file_path": "<relative path>", "content": "<full file>"}]}
Supported types: create, edit (with "content" replacing the file), delete, createDirectory.
"""

_REVISE_PROMPT = """\
A plan step needs to be rewritten.

Objective: {objective}
Step: {description}
Reason: {reason}

Reply with the new step description only, on a single line.
"""


@dataclass
class ModelRoster:
    """Model names serving each role."""

    chat: str = "hermes3:8b"
    code: str = "qwen2.5-coder:7b"
    vision: str = "llama3.2-vision:11b"

    @classmethod
    def from_env(cls) -> ModelRoster:
        defaults = cls()
        return cls(
            chat=os.environ.get("COORDINATOR_CHAT_MODEL", defaults.chat),
            code=os.environ.get("COORDINATOR_CODE_MODEL", defaults.code),
            vision=os.environ.get("COORDINATOR_VISION_MODEL", defaults.vision),
        )

    def model_for(self, role: Role) -> str:
        return {Role.CHAT: self.chat, Role.CODE: self.code, Role.VISION: self.vision}[role]


@dataclass
class ModelState:
    is_running: bool = False
    last_used: Optional[str] = None
    successful_tasks: int = 0
    failed_tasks: int = 0


class _StepInvalid(CoordinatorError):
    def __init__(self, phase: str, errors: list[str], revisions: list[PlanRevision]) -> None:
        super().__init__(f"{phase}-validation failed: " + "; ".join(errors))
        self.revisions = revisions


# ── step output parsing ───────────────────────────────────────────────────────


def parse_operations(raw: str) -> list[FileOperation]:
    """File operations a model reply asks for, from ``{"operations": [...]}``."""
    candidates = [m.group(1) for m in _TOOL_CALL_RE.finditer(raw)] + [raw]
    for text in candidates:
        items = (parse_json(text) or {}).get("operations")
        if not isinstance(items, list):
            continue
        operations = []
        for item in items:
            if not isinstance(item, dict):
                continue
            item = {**item, "file_path": item.get("file_path") or item.get("path")}
            try:
                operations.append(FileOperation.from_dict(item))
            except (KeyError, TypeError, ValueError) as exc:
                _log.warning("Ignoring malformed file operation %r: %s", item, exc)
        return operations
    return []


def _now() -> str:
    return pendulum.now("UTC").to_iso8601_string()


class Orchestrator:
    """Routes tasks to models and drives execution plans step by step.

    The correction pattern store, plan pattern store and threshold manager
    are injected so that several orchestrators (or tests) can share or
    isolate them; fresh ones are created when omitted.

    Args:
        backend: Service hosting the chat, code and vision models.
        roster: Model names per role.  Defaults to ``ModelRoster.from_env()``.
        workspace: Directory (or Workspace) that code steps write to.
                   Defaults to the current directory.
        memory: Memory store for plan snapshots and correction history.
    """

    def __init__(
        self,
        backend: ModelBackend,
        *,
        roster: Optional[ModelRoster] = None,
        workspace: Workspace | str | Path | None = None,
        memory: Optional[MemoryStore] = None,
        patterns: Optional[PatternStore] = None,
        plan_patterns: Optional[PlanPatternStore] = None,
        thresholds: Optional[ThresholdManager] = None,
        registry: Optional[AnalyzerRegistry] = None,
        command_runner: Optional[CommandRunner] = None,
    ) -> None:
        self._backend = backend
        self._roster = roster or ModelRoster.from_env()
        if not isinstance(workspace, Workspace):
            workspace = Workspace(workspace if workspace is not None else Path.cwd())
        self._workspace = workspace
        self._memory = memory if memory is not None else InMemoryStore()
        self.patterns = patterns if patterns is not None else PatternStore()
        self.thresholds = thresholds if thresholds is not None else ThresholdManager()
        self.adapter = PlanAdapter(plan_patterns)
        registry = registry or AnalyzerRegistry.default()
        self._registry = registry
        self.engine = AutoCorrectEngine(
            lambda prompt: self._generate_on(Role.CODE, prompt),
            patterns=self.patterns,
            thresholds=self.thresholds,
            workspace=self._workspace,
            registry=registry,
            memory=self._memory,
        )
        self.validator = PlanValidator(self.engine, registry, self._workspace, self._memory)
        self._planner = Planner(backend, self._roster.chat)
        self._commands = command_runner or CommandRunner(self._memory)

        self._plan: Optional[ExecutionPlan] = None
        self._code_context: Optional[CodeContext] = None
        self._adapted: set[str] = set()
        self._current_model: Optional[str] = None
        self._states: dict[str, ModelState] = {}

        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self.current_task: Optional[Task] = None

    # ── state accessors ───────────────────────────────────────────────────────

    @property
    def plan(self) -> Optional[ExecutionPlan]:
        return self._plan

    @property
    def roster(self) -> ModelRoster:
        return self._roster

    def get_current_model(self) -> Optional[str]:
        return self._current_model

    def get_model_state(self, model: str) -> ModelState:
        return self._states.setdefault(model, ModelState())

    # ── model switching ───────────────────────────────────────────────────────

    async def switch_backend(self, model: str) -> None:
        """Make *model* the single active model.  Raises BackendSwitchError."""
        self._activate(model)

    def _activate(self, model: str) -> None:
        if model == self._current_model:
            return
        previous = self._current_model
        try:
            ok = self._backend.switch(model)
        except Exception as exc:  # noqa: BLE001
            _log.warning("Switching to %s raised: %s", model, exc)
            ok = False
        if not ok:
            raise BackendSwitchError(f"backend switch failed: could not load {model}")
        if previous is not None:
            self.get_model_state(previous).is_running = False
        state = self.get_model_state(model)
        state.is_running = True
        state.last_used = _now()
        self._current_model = model
        _log.info("Switched model %s -> %s", previous or "(none)", model)

    async def _generate(self, role: Role, prompt: str) -> str:
        return self._generate_on(role, prompt)

    def _generate_on(self, role: Role, prompt: str) -> str:
        """Switch to the model serving *role*, then generate with it."""
        model = self._roster.model_for(role)
        self._activate(model)
        state = self.get_model_state(model)
        try:
            response = self._backend.generate(model, prompt)
        except Exception:
            state.failed_tasks += 1
            raise
        state.successful_tasks += 1
        state.last_used = _now()
        return response

    # ── plans ─────────────────────────────────────────────────────────────────

    async def create_plan(
        self, objective: str, code_context: Optional[CodeContext] = None
    ) -> ExecutionPlan:
        """Ask the chat model to decompose *objective* and make it the active plan.

        *code_context* is shown to the planner and to every step of the plan.
        """
        await self.switch_backend(self._roster.chat)
        plan = self._planner.create_plan(
            objective, code_context.describe() if code_context is not None else ""
        )
        self._plan = plan
        self._code_context = code_context
        self._adapted.clear()
        self._memory.save_plan_state(plan)
        _log.info("Created plan %s with %d steps", plan.id, len(plan.steps))
        return plan

    async def execute_next_step(self) -> StepResult:
        """Attempt the current step of the active plan once.

        Raises NoActivePlanError when there is no unfinished plan.  Every
        other failure is recorded on the step and returned in the result.
        """
        plan = self._plan
        if plan is None or plan.is_finished:
            raise NoActivePlanError()
        plan.status = PlanStatus.EXECUTING
        self._adapt(plan)

        step = plan.current_step
        model = self._roster.model_for(step.requires_backend)
        attempt = step.retry_count + 1
        _log.info(
            "Step %d/%d [%s] attempt %d: %s",
            plan.current_step_index + 1, len(plan.steps), step.type.value, attempt,
            step.description,
        )

        snapshot: Optional[Snapshot] = None
        try:
            unmet = plan.unmet_dependencies(step)
            if unmet:
                raise DependencyNotSatisfiedError(
                    f"dependency not satisfied: {', '.join(unmet)}"
                )
            step.status = StepStatus.IN_PROGRESS
            await self.switch_backend(model)

            pre = self.validator.validate_step(PlanValidationContext(plan, step, phase="pre"))
            if not pre.is_valid:
                raise _StepInvalid("pre", pre.errors, pre.suggested_revisions)

            response = await self._generate(step.requires_backend, self._step_prompt(plan, step))
            changes, snapshot = self._apply_step_output(step, response)

            post = self.validator.validate_step(
                PlanValidationContext(plan, step, code_changes=changes, phase="post")
            )
            if not post.is_valid:
                raise _StepInvalid("post", post.errors, post.suggested_revisions)
        except Exception as exc:  # noqa: BLE001
            if snapshot is not None:
                try:
                    self._workspace.restore(snapshot)
                except OSError:
                    _log.exception("Could not roll back files written by step %s", step.id)
                    raise
            revisions = exc.revisions if isinstance(exc, _StepInvalid) else []
            return self._fail_step(plan, step, model, attempt, str(exc), revisions)
        return self._complete_step(plan, step, model, attempt, response)

    def _step_prompt(self, plan: ExecutionPlan, step: PlanStep) -> str:
        completed = "\n".join(
            f"- {s.description}: {(s.result or '')[:300]}"
            for s in plan.steps if s.status is StepStatus.COMPLETED
        )
        return _STEP_PROMPT.format(
            objective=plan.objective,
            completed=completed or "(none)",
            description=step.description,
            instructions=_CODE_INSTRUCTIONS if step.type is StepType.CODE else "",
            context=(
                f"\nWorkspace context:\n{self._code_context.describe()}\n"
                if self._code_context is not None else ""
            ),
        )

    def _apply_step_output(
        self, step: PlanStep, response: str
    ) -> tuple[list[CodeChange], Optional[Snapshot]]:
        if step.type is not StepType.CODE:
            return [], None
        operations = parse_operations(response)
        if not operations:
            return [], None
        paths = self._workspace.touched_paths(operations)
        previous = {p: self._workspace.read(p) if p.is_file() else None for p in paths}
        snapshot = self._workspace.snapshot(paths)
        try:
            self._workspace.apply_all(operations)
        except Exception:
            self._workspace.restore(snapshot)
            raise
        changes = []
        for op in operations:
            if op.type not in (OperationType.CREATE, OperationType.EDIT) or not op.file_path:
                continue
            path = self._workspace.resolve(op.file_path)
            changes.append(CodeChange(str(path), previous_content=previous.get(path)))
            self._memory.add_file_change(str(path), op.type.value, self._workspace.read(path))
        return changes, snapshot

    def _complete_step(
        self, plan: ExecutionPlan, step: PlanStep, model: str, attempt: int, response: str
    ) -> StepResult:
        step.status = StepStatus.COMPLETED
        step.result = response
        plan.current_step_index += 1
        if plan.current_step_index >= len(plan.steps):
            plan.status = PlanStatus.COMPLETED
            _log.info("Plan %s completed", plan.id)
            self.adapter.learn_from_plan_execution(plan, True)
        self._memory.save_plan_state(plan)
        self._memory.add_step_context(plan.id, step.id, {"model": model, "attempt": attempt})
        _log.info("Step %s OK.", step.id)
        return StepResult(step.id, step.description, model, response, attempt=attempt)

    def _fail_step(
        self,
        plan: ExecutionPlan,
        step: PlanStep,
        model: str,
        attempt: int,
        error: str,
        revisions: list[PlanRevision],
    ) -> StepResult:
        step.retry_count += 1
        if step.retry_count >= MAX_RETRIES:
            step.status = StepStatus.FAILED
            plan.status = PlanStatus.FAILED
            _log.warning("Step %s FAILED permanently: %s", step.id, error)
            self.adapter.learn_from_plan_execution(plan, False)
        else:
            step.status = StepStatus.PENDING
            plan.status = PlanStatus.RETRYING
            _log.warning("Step %s FAILED (attempt %d): %s", step.id, attempt, error)
        self._memory.save_plan_state(plan)
        return StepResult(
            step.id, step.description, model, "", error=error, attempt=attempt,
            revisions=list(revisions),
        )

    async def run_plan(self, objective: str) -> OrchestratorResult:
        """Create a plan for *objective* and execute it until it finishes."""
        plan = await self.create_plan(objective)
        history = []
        while not plan.is_finished:
            history.append(await self.execute_next_step())
        return OrchestratorResult(objective=objective, plan=plan, history=history)

    # ── revisions ─────────────────────────────────────────────────────────────

    def _adapt(self, plan: ExecutionPlan) -> None:
        """Apply high-confidence historical suggestions before a step first runs."""
        step = plan.current_step
        if step.id in self._adapted:
            return
        self._adapted.add(step.id)
        suggestions = self.adapter.suggest_plan_modifications(plan)
        for risk in suggestions.risks:
            level = logging.WARNING if risk.severity is Severity.HIGH else logging.INFO
            _log.log(level, "Plan risk (%s, %s): %s", risk.kind, risk.severity.value, risk.description)
        for revision in suggestions.modifications:
            if revision.confidence > AUTO_APPLY_CONFIDENCE:
                if self._apply_revision(plan, revision, revision.description):
                    _log.info(
                        "Applied %s revision (confidence %.2f): %s",
                        revision.type.value, revision.confidence, revision.reason,
                    )
        if plan.current_step is not None:
            self._adapted.add(plan.current_step.id)

    async def handle_plan_revision(self, revision: PlanRevision) -> bool:
        """Apply *revision* to the active plan.  Completed steps are never touched."""
        plan = self._plan
        if plan is None or plan.is_finished:
            raise NoActivePlanError()
        description = revision.description
        if revision.type in (RevisionType.MODIFY, RevisionType.INSERT) and not description:
            target = plan.get_step(revision.step) if revision.step else None
            reply = await self._generate(Role.CODE, _REVISE_PROMPT.format(
                objective=plan.objective,
                description=target.description if target else "(new step)",
                reason=revision.reason,
            ))
            description = reply.strip().splitlines()[0].strip() if reply.strip() else ""
            if not description:
                return False
        if not self._apply_revision(plan, revision, description):
            return False
        plan.status = PlanStatus.RETRYING
        self._memory.save_plan_state(plan)
        return True

    def _mutable_index(self, plan: ExecutionPlan, step_id: Optional[str]) -> int:
        if step_id is None:
            return -1
        index = plan.index_of(step_id)
        if index < plan.current_step_index or plan.steps[index].status is StepStatus.COMPLETED:
            return -1
        return index

    def _apply_revision(
        self, plan: ExecutionPlan, revision: PlanRevision, description: str
    ) -> bool:
        if revision.type is RevisionType.INSERT:
            if not description:
                return False
            anchor = plan.index_of(revision.step) if revision.step else -1
            position = anchor + 1 if anchor >= 0 else len(plan.steps)
            position = max(position, plan.current_step_index)
            if revision.step_type is None:
                step_type, role = classify_step(description)
            else:
                step_type = revision.step_type
                role = Role.CODE if step_type in (StepType.CODE, StepType.ANALYSIS) else Role.CHAT
            plan.steps.insert(position, PlanStep(
                id=self._new_step_id(plan),
                description=description,
                type=step_type,
                requires_backend=role,
            ))
            return True

        index = self._mutable_index(plan, revision.step)
        if index < 0:
            return False
        step = plan.steps[index]

        if revision.type is RevisionType.MODIFY:
            if not description:
                return False
            step.description = description
            step.status = StepStatus.PENDING
        elif revision.type is RevisionType.REMOVE:
            remaining = [
                s for i, s in enumerate(plan.steps)
                if i >= plan.current_step_index and s.status is not StepStatus.COMPLETED
            ]
            if len(remaining) <= 1:
                return False
            del plan.steps[index]
            for other in plan.steps:
                if step.id in other.dependencies:
                    other.dependencies.remove(step.id)
        elif revision.type is RevisionType.REORDER:
            plan.steps.append(plan.steps.pop(index))
        return True

    @staticmethod
    def _new_step_id(plan: ExecutionPlan) -> str:
        numbers = [int(m.group(1)) for m in (_STEP_ID_RE.match(s.id) for s in plan.steps) if m]
        return f"step_{max(numbers, default=0) + 1}"

    # ── task queue ────────────────────────────────────────────────────────────

    async def handle_task(self, text: str) -> str:
        """Route free text and return a one-line status for display."""
        result = await self.submit(self.make_task(text))
        return result.output if result.success else f"Error: {result.error}"

    def make_task(self, text: str) -> Task:
        analysis = classify(text)
        operation = None
        if analysis.kind is TaskKind.COMMAND:
            operation = CommandOperation(
                command=text.lstrip()[1:].strip(),
                working_directory=str(self._workspace.root),
            )
        code_context = None
        if analysis.kind in (TaskKind.CODE, TaskKind.CODE_ANALYSIS):
            code_context = build_code_context(self._workspace.root, self._registry, text)
        return Task(
            id=uuid.uuid4().hex,
            kind=analysis.kind,
            prompt=text,
            objective=text,
            requires_backend_switch=analysis.requires_switch,
            code_context=code_context,
            command_operation=operation,
        )

    async def submit(self, task: Task) -> TaskResult:
        """Queue *task* and wait for the single consumer to process it."""
        if self._worker is None or self._worker.done():
            self._queue = asyncio.Queue()
            self._worker = asyncio.create_task(self._consume())
        future = asyncio.get_running_loop().create_future()
        await self._queue.put((task, future))
        return await future

    async def close(self) -> None:
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None

    async def _consume(self) -> None:
        while True:
            task, future = await self._queue.get()
            self.current_task = task
            try:
                result = await self._process(task)
            except Exception as exc:  # noqa: BLE001
                _log.warning("Task %s failed: %s", task.id, exc)
                result = TaskResult(task.id, error=str(exc))
            finally:
                self.current_task = None
                self._queue.task_done()
            if not future.done():
                future.set_result(result)

    async def _process(self, task: Task) -> TaskResult:
        if task.kind is TaskKind.COMMAND and task.command_operation is not None:
            outcome = self._commands.run(task.command_operation)
            if outcome.success:
                return TaskResult(task.id, output=outcome.stdout)
            return TaskResult(task.id, output=outcome.stdout, error=outcome.stderr or f"exit code {outcome.exit_code}")

        if self._plan is None or self._plan.is_finished:
            restored = self._memory.get_active_plan()
            if restored is not None:
                _log.info("Resuming plan %s at step %d", restored.id, restored.current_step_index + 1)
                self._plan = restored
                self._code_context = None
                self._adapted.clear()

        if self._plan is not None and not self._plan.is_finished:
            result = await self.execute_next_step()
            return TaskResult(task.id, output=self._status(self._plan, result))

        if task.kind in (TaskKind.CODE, TaskKind.CODE_ANALYSIS) or _EDIT_INTENT_RE.search(task.prompt):
            plan = await self.create_plan(task.objective or task.prompt, task.code_context)
            result = await self.execute_next_step()
            return TaskResult(
                task.id,
                output=f"Created new plan with {len(plan.steps)} steps. " + self._status(plan, result),
            )

        role = {TaskKind.IMAGE: Role.VISION}.get(task.kind, Role.CHAT)
        return TaskResult(task.id, output=await self._generate(role, task.prompt))

    @staticmethod
    def _status(plan: ExecutionPlan, result: StepResult) -> str:
        number = plan.index_of(result.step_id) + 1
        total = len(plan.steps)
        if result.success:
            tail = "Plan completed!" if plan.status is PlanStatus.COMPLETED else "More steps remaining."
            return f"Executed step {number} of {total}. {tail}"
        if plan.status is PlanStatus.FAILED:
            tail = "Plan failed."
        else:
            tail = f"Will retry (attempt {result.attempt} of {MAX_RETRIES} used)."
        status = f"Step {number} of {total} failed: {result.error}. {tail}"
        if result.revisions:
            suggested = "; ".join(
                f"{r.type.value} {r.step or 'plan'} ({r.reason})" for r in result.revisions
            )
            status += f" Suggested revisions: {suggested}"
        return status
