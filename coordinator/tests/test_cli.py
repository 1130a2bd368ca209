"""Tests for the coordinate CLI."""

import json
from unittest.mock import patch

import pytest

from conftest import ScriptedBackend, failing_reply
from coordinator.cli import _build_parser, _run

_PLAN = """\
#Step1: Write the word count function
#Dependency1: None"""


def test_parser_defaults():
    args = _build_parser().parse_args(["hello"])
    assert args.objective == "hello"
    assert args.platform == "ollama"
    assert args.workspace == "."
    assert not args.run_plan


@pytest.mark.anyio
async def test_single_turn_prints_reply(tmp_path, capsys):
    args = _build_parser().parse_args(["--workspace", str(tmp_path), "Tell me a joke"])
    backend = ScriptedBackend(_PLAN, lambda m, p: "Why did the chicken cross the road?")
    with patch("coordinator.cli._build_backend", return_value=backend):
        assert await _run(args) == 0
    assert "chicken" in capsys.readouterr().out


@pytest.mark.anyio
async def test_plan_json_output(tmp_path, capsys):
    args = _build_parser().parse_args(
        ["--workspace", str(tmp_path), "--plan", "--json", "write the word count function"]
    )
    backend = ScriptedBackend(_PLAN, lambda m, p: "done")
    with patch("coordinator.cli._build_backend", return_value=backend):
        assert await _run(args) == 0
    output = json.loads(capsys.readouterr().out)
    assert output["plan"]["status"] == "completed"
    assert output["history"][0]["success"] is True


@pytest.mark.anyio
async def test_failed_plan_exit_code(tmp_path, capsys):
    args = _build_parser().parse_args(
        ["--workspace", str(tmp_path), "--plan", "write the word count function"]
    )
    with patch("coordinator.cli._build_backend", return_value=ScriptedBackend(_PLAN, failing_reply)):
        assert await _run(args) == 1
    assert "model unavailable" in capsys.readouterr().out
