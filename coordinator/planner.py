"""LLM-based plan generation for the coordinator.

The conversational model decomposes an objective into numbered steps.
Each parsed step is typed and routed with the same keyword vocabulary the
task classifier uses.
"""

from __future__ import annotations

import json
import re
import uuid
from typing import Any

from backends import ModelBackend
from .classifier import classify_step
from .models import ExecutionPlan, PlanStep, PlanStatus

_PLAN_PROMPT = """\
You are a planning assistant for a software development workspace.

Decompose the objective below into a short sequence of concrete steps.
Each step is carried out by exactly one model: a coding model for writing,
fixing or reviewing code, or a conversational model for everything else.

Output format, one block per step, exactly:

#Step1: <step description>
#Dependency1: None

#Step2: <step description>
#Dependency2: #S1

Rules:
- Dependencies use #S<N> notation (e.g., #S1, #S2). Use "None" if none.
- A step may only depend on earlier steps.
- Reuse the wording of the objective so each step is recognisably part of it.
- Keep steps specific and actionable.

Objective: {objective}
{context}
Plan:
"""

_STEP_RE = re.compile(r"#Step(\d+):\s*(.+)")
_DEP_RE = re.compile(r"#Dependency(\d+):\s*(.+)")
_DEP_NUM_RE = re.compile(r"#S(\d+)")


def _step_id(n: int) -> str:
    return f"step_{n}"


def _make_step(n: int, description: str, deps: list[int]) -> PlanStep:
    step_type, role = classify_step(description)
    return PlanStep(
        id=_step_id(n),
        description=description,
        type=step_type,
        requires_backend=role,
        dependencies=[_step_id(d) for d in deps if d != n],
    )


def parse_json(raw: str, expected: type = dict) -> Any:
    """Extract a JSON value of type *expected* from an LLM response.

    Tries a markdown-fenced block, then the whole reply, then the outermost
    bracketed span.  Returns None when nothing of that type parses.
    """
    text = raw.strip()
    candidates = []
    fence = text.find("```")
    if fence != -1:
        closing = text.find("```", fence + 3)
        inner = text[fence + 3:closing if closing != -1 else None]
        if inner.startswith("json"):
            inner = inner[4:]
        candidates.append(inner.strip())
    candidates.append(text)
    opener, closer = ("[", "]") if expected is list else ("{", "}")
    start, end = text.find(opener), text.rfind(closer) + 1
    if start != -1 and end > start:
        candidates.append(text[start:end])
    for candidate in candidates:
        try:
            result = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(result, expected):
            return result
    return None


def _parse_json_steps(raw: str) -> list[PlanStep]:
    data = parse_json(raw)
    items = data.get("steps", []) if data else []
    steps = []
    for n, item in enumerate(items, start=1):
        if isinstance(item, str):
            steps.append(_make_step(n, item.strip(), []))
        elif isinstance(item, dict) and item.get("description"):
            deps = [int(d) for d in item.get("dependencies", []) if str(d).isdigit()]
            steps.append(_make_step(n, str(item["description"]).strip(), deps))
    return steps


def parse_plan(raw: str, objective: str) -> ExecutionPlan:
    """Parse an LLM-generated plan string into an ExecutionPlan.

    Accepts the ``#StepN`` block format, falls back to a JSON object with a
    ``steps`` list, and finally to a single step carrying the objective.
    """
    descriptions = {int(m.group(1)): m.group(2).strip() for m in _STEP_RE.finditer(raw)}
    deps_raw = {int(m.group(1)): m.group(2).strip() for m in _DEP_RE.finditer(raw)}

    steps = [
        _make_step(
            n,
            descriptions[n],
            []
            if deps_raw.get(n, "None").strip().lower() == "none"
            else [int(x) for x in _DEP_NUM_RE.findall(deps_raw.get(n, ""))],
        )
        for n in sorted(descriptions)
    ]
    if not steps:
        steps = _parse_json_steps(raw)
    if not steps:
        steps = [_make_step(1, objective.strip(), [])]

    return ExecutionPlan(
        id=uuid.uuid4().hex,
        objective=objective,
        steps=steps,
        status=PlanStatus.PLANNING,
    )


class Planner:
    """Decomposes an objective into an execution plan using the chat model."""

    def __init__(self, backend: ModelBackend, model: str) -> None:
        self._backend = backend
        self._model = model

    def create_plan(self, objective: str, context: str = "") -> ExecutionPlan:
        """Ask the model for a plan.  *context* describes relevant workspace code."""
        prompt = _PLAN_PROMPT.format(
            objective=objective,
            context=f"\nWorkspace context:\n{context}\n" if context else "",
        )
        raw = self._backend.generate(self._model, prompt)
        return parse_plan(raw, objective)
