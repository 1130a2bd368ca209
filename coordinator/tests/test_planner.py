"""Tests for the Planner and parse_plan()."""

from coordinator.models import PlanStatus, Role, StepType
from coordinator.planner import Planner, parse_json, parse_plan

_TWO_STEP = """\
#Step1: Write the tokenizer function for the parser
#Dependency1: None

#Step2: Review the parser output
#Dependency2: #S1"""

_MULTI_DEP = """\
#Step1: Write the lexer
#Dependency1: None

#Step2: Write the grammar
#Dependency2: None

#Step3: Verify the lexer and grammar agree
#Dependency3: #S1, #S2"""

_JSON_PLAN = '{"steps": [{"description": "Write the config loader", "dependencies": []}, {"description": "Check the loader", "dependencies": [1]}]}'


class TestParsePlan:
    def test_two_steps_parsed(self):
        plan = parse_plan(_TWO_STEP, "build a parser")
        assert [s.id for s in plan.steps] == ["step_1", "step_2"]
        assert plan.objective == "build a parser"
        assert plan.status is PlanStatus.PLANNING
        assert plan.current_step_index == 0

    def test_step_types_and_backends(self):
        plan = parse_plan(_TWO_STEP, "build a parser")
        assert plan.steps[0].type is StepType.CODE
        assert plan.steps[0].requires_backend is Role.CODE
        assert plan.steps[1].type is StepType.ANALYSIS

    def test_dependencies(self):
        plan = parse_plan(_TWO_STEP, "x")
        assert plan.steps[0].dependencies == []
        assert plan.steps[1].dependencies == ["step_1"]

    def test_multiple_dependencies(self):
        plan = parse_plan(_MULTI_DEP, "x")
        assert plan.steps[2].dependencies == ["step_1", "step_2"]
        assert plan.steps[2].type is StepType.VALIDATION
        assert plan.steps[2].requires_backend is Role.CHAT

    def test_json_fallback(self):
        plan = parse_plan(_JSON_PLAN, "load config")
        assert [s.description for s in plan.steps] == ["Write the config loader", "Check the loader"]
        assert plan.steps[1].dependencies == ["step_1"]

    def test_unparseable_reply_gives_single_objective_step(self):
        plan = parse_plan("I am not sure how to help.", "summarise the meeting notes")
        assert len(plan.steps) == 1
        assert plan.steps[0].description == "summarise the meeting notes"
        assert plan.steps[0].type is StepType.GENERAL

    def test_each_plan_gets_unique_id(self):
        assert parse_plan(_TWO_STEP, "x").id != parse_plan(_TWO_STEP, "x").id


class TestParseJson:
    def test_fenced_list(self):
        assert parse_json("Fixes:\n```json\n[{\"a\": 1}]\n```", list) == [{"a": 1}]

    def test_object_inside_prose(self):
        assert parse_json('Sure. {"operations": []} Done.') == {"operations": []}

    def test_wrong_type_is_rejected(self):
        assert parse_json("[1, 2]") is None
        assert parse_json('{"a": 1}', list) is None

    def test_garbage(self):
        assert parse_json("no json here", list) is None


class TestPlanner:
    def test_create_plan_uses_chat_model(self, mock_backend):
        backend = mock_backend(_TWO_STEP)
        plan = Planner(backend, "hermes3:8b").create_plan("build a parser")
        assert len(plan.steps) == 2
        model, prompt = backend.prompts[0]
        assert model == "hermes3:8b"
        assert "build a parser" in prompt
        assert "Workspace context" not in prompt

    def test_create_plan_shows_workspace_context(self, mock_backend):
        backend = mock_backend(_TWO_STEP)
        Planner(backend, "hermes3:8b").create_plan("build a parser", "File: parser.py (python)")
        _, prompt = backend.prompts[0]
        assert "Workspace context:\nFile: parser.py (python)\n" in prompt
