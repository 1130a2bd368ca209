"""Tests for PlanValidator."""

import json

import pytest

from coordinator.autocorrect import AutoCorrectEngine
from coordinator.memory import InMemoryStore
from coordinator.models import (
    CodeChange,
    ErrorKind,
    ExecutionPlan,
    PlanStep,
    RevisionType,
    Severity,
    StepStatus,
    StepType,
)
from coordinator.patterns import PatternStore
from coordinator.thresholds import ThresholdManager
from coordinator.validator import (
    MAX_REVALIDATION_DEPTH,
    PlanValidationContext,
    PlanValidator,
    alignment_score,
)
from coordinator.workspace import Workspace

_OBJECTIVE = "write the parser module"

_FIX_REPLY = json.dumps([
    {
        "description": "close the parenthesis",
        "fixes": [{"type": "edit", "file": "app.py", "changes": [{"line": 1, "content": "x = (1)"}]}],
    }
])


def _context(description=_OBJECTIVE, step_type=StepType.GENERAL, changes=(), dependencies=()):
    step = PlanStep(id="step_2", description=description, type=step_type, dependencies=list(dependencies))
    plan = ExecutionPlan(
        id="plan",
        objective=_OBJECTIVE,
        steps=[PlanStep(id="step_1", description="write the lexer"), step],
        current_step_index=1,
    )
    return PlanValidationContext(plan=plan, step=step, code_changes=list(changes))


class _AlwaysCorrects:
    """Claims every correction succeeded without changing anything."""

    def __init__(self):
        self.calls = 0

    def correct(self, error, verify=None):
        self.calls += 1
        return True


class _Records:
    """Keeps every error handed over and corrects none of them."""

    def __init__(self):
        self.errors = []

    def correct(self, error, verify=None):
        self.errors.append(error)
        return False


class TestAlignment:
    def test_score_counts_objective_words(self):
        score = alignment_score("refactor the login module for security", "add input validation to login form")
        assert score == pytest.approx(1 / 6)

    def test_punctuation_and_case_ignored(self):
        assert alignment_score("Write the parser.", "write THE parser, then stop") == 1.0

    def test_misaligned_step_needs_modification(self):
        result = PlanValidator().validate_step(_context(description="bake a cake"))
        assert not result.is_valid
        assert result.requires_plan_revision
        assert result.suggested_revisions[0].type is RevisionType.MODIFY
        assert result.suggested_revisions[0].step == "step_2"

    def test_aligned_step_is_valid(self):
        result = PlanValidator().validate_step(_context())
        assert result.is_valid
        assert result.errors == []


class TestCodeValidity:
    def test_syntax_error_in_pending_change(self):
        ctx = _context(step_type=StepType.CODE, changes=[CodeChange("parser.py", content="def parse(:\n")])
        result = PlanValidator().validate_step(ctx)
        assert not result.is_valid
        assert result.errors[0].startswith("parser.py:1:")
        assert result.suggested_revisions[0].type is RevisionType.MODIFY

    def test_syntax_error_handed_over_with_location(self):
        ctx = _context(step_type=StepType.CODE, changes=[CodeChange("parser.py", content="def parse(:\n")])
        engine = _Records()
        PlanValidator(engine=engine).validate_step(ctx)
        error = engine.errors[0]
        assert error.error_kind is ErrorKind.SYNTAX
        assert error.severity is Severity.HIGH
        assert error.context.file == "parser.py"
        assert error.context.line == 1
        assert error.context.code == "def parse(:"
        assert error.context.related_symbols == ["parse"]

    def test_non_code_steps_skip_code_checks(self):
        ctx = _context(changes=[CodeChange("parser.py", content="def parse(:\n")])
        assert PlanValidator().validate_step(ctx).is_valid

    def test_unknown_languages_are_not_checked(self):
        ctx = _context(step_type=StepType.CODE, changes=[CodeChange("parser.rs", content="fn (")])
        assert PlanValidator().validate_step(ctx).is_valid

    def test_change_breaking_dependents(self, tmp_path):
        (tmp_path / "pkg").mkdir()
        (tmp_path / "pkg" / "__init__.py").write_text("")
        (tmp_path / "pkg" / "util.py").write_text("def helper():\n    return 1\n")
        (tmp_path / "main.py").write_text("from pkg.util import helper\n")
        change = CodeChange(
            "pkg/util.py",
            content="def other():\n    return 1\n",
            previous_content="def helper():\n    return 1\n",
        )
        validator = PlanValidator(workspace=Workspace(tmp_path))
        result = validator.validate_step(_context(step_type=StepType.CODE, changes=[change]))
        assert not result.is_valid
        assert "'helper'" in result.errors[0]
        assert "breaks" in result.suggestions[0]


class TestDependencies:
    def test_unmet_dependency_asks_for_insert(self):
        result = PlanValidator().validate_step(_context(dependencies=["step_1"]))
        assert not result.is_valid
        revision = result.suggested_revisions[0]
        assert revision.type is RevisionType.INSERT
        assert revision.step is None
        assert revision.reason == "Missing dependency resolution step"

    def test_unmet_dependency_classified_from_message(self):
        engine = _Records()
        PlanValidator(engine=engine).validate_step(_context(dependencies=["step_1"]))
        assert engine.errors[0].error_kind is ErrorKind.DEPENDENCY
        assert engine.errors[0].severity is Severity.HIGH

    def test_met_dependency(self):
        ctx = _context(dependencies=["step_1"])
        ctx.plan.steps[0].status = StepStatus.COMPLETED
        assert PlanValidator().validate_step(ctx).is_valid


class TestMemoryConflicts:
    def test_recent_analysis_with_errors(self):
        memory = InMemoryStore()
        memory.add_code_analysis("parser.py", "Found 2 errors in the parser")
        result = PlanValidator(memory=memory).validate_step(_context())
        assert not result.is_valid
        assert result.suggested_revisions[0].type is RevisionType.MODIFY

    def test_only_recent_analyses_count(self):
        memory = InMemoryStore()
        memory.add_code_analysis("parser.py", "merge conflict in parser.py")
        for _ in range(10):
            memory.add_code_analysis("parser.py", "all good")
        assert PlanValidator(memory=memory).validate_step(_context()).is_valid

    def test_conflict_within_last_ten_analyses(self):
        memory = InMemoryStore()
        memory.add_code_analysis("parser.py", "merge conflict in parser.py")
        for _ in range(9):
            memory.add_code_analysis("parser.py", "all good")
        engine = _Records()
        result = PlanValidator(engine=engine, memory=memory).validate_step(_context())
        assert not result.is_valid
        assert engine.errors[0].error_kind is ErrorKind.MEMORY
        assert engine.errors[0].severity is Severity.MEDIUM

    def test_clean_analyses(self):
        memory = InMemoryStore()
        memory.add_code_analysis("parser.py", "no problems found")
        assert PlanValidator(memory=memory).validate_step(_context()).is_valid


class TestAutoCorrection:
    def _engine(self, tmp_path, backend):
        return AutoCorrectEngine(
            lambda prompt: backend.generate("coder", prompt),
            patterns=PatternStore(),
            thresholds=ThresholdManager(),
            workspace=Workspace(tmp_path),
        )

    def test_corrected_step_revalidates_clean(self, tmp_path, mock_backend):
        (tmp_path / "app.py").write_text("x = (1\n")
        backend = mock_backend(_FIX_REPLY)
        validator = PlanValidator(engine=self._engine(tmp_path, backend), workspace=Workspace(tmp_path))
        ctx = _context(step_type=StepType.CODE, changes=[CodeChange("app.py")])

        result = validator.validate_step(ctx)
        assert result.is_valid
        assert (tmp_path / "app.py").read_text() == "x = (1)\n"

        # already valid: no second round trip to the model
        calls = len(backend.prompts)
        assert validator.validate_step(ctx).is_valid
        assert len(backend.prompts) == calls

    def test_uncorrectable_step_requests_revision(self, tmp_path, mock_backend):
        (tmp_path / "app.py").write_text("x = (1\n")
        validator = PlanValidator(
            engine=self._engine(tmp_path, mock_backend("no idea")), workspace=Workspace(tmp_path)
        )
        result = validator.validate_step(_context(step_type=StepType.CODE, changes=[CodeChange("app.py")]))
        assert not result.is_valid
        assert result.requires_plan_revision
        assert (tmp_path / "app.py").read_text() == "x = (1\n"

    def test_revalidation_depth_is_bounded(self):
        engine = _AlwaysCorrects()
        result = PlanValidator(engine=engine).validate_step(_context(description="bake a cake"))
        assert not result.is_valid
        assert engine.calls == MAX_REVALIDATION_DEPTH
