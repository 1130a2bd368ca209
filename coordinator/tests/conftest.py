"""Shared fixtures for coordinator unit tests."""

from typing import Callable

import pytest

from backends.base import BackendError, ModelBackend


class MockBackend(ModelBackend):
    """Deterministic backend that returns a canned response; no network calls."""

    def __init__(self, response: str = "", models: list[str] | None = None) -> None:
        self._response = response
        self.models = models
        self.prompts: list[tuple[str, str]] = []
        self.switches: list[str] = []

    def generate(self, model: str, prompt: str, temperature: float = 0.0) -> str:
        self.prompts.append((model, prompt))
        return self._response

    def switch(self, model: str) -> bool:
        self.switches.append(model)
        return self.models is None or model in self.models

    def list_available(self) -> list[str]:
        return list(self.models or [])


class SequentialMockBackend(MockBackend):
    """Returns responses in order across successive generate() calls."""

    def __init__(self, responses: list[str]) -> None:
        super().__init__()
        self._responses = iter(responses)

    def generate(self, model: str, prompt: str, temperature: float = 0.0) -> str:
        self.prompts.append((model, prompt))
        return next(self._responses, "")


class ScriptedBackend(MockBackend):
    """Answers the planning prompt with *plan*; every other prompt via *reply*.

    *reply* may return a string or raise (e.g. BackendError) to simulate a
    failing model.
    """

    def __init__(self, plan: str, reply: Callable[[str, str], str]) -> None:
        super().__init__()
        self._plan = plan
        self._reply = reply

    def generate(self, model: str, prompt: str, temperature: float = 0.0) -> str:
        self.prompts.append((model, prompt))
        if prompt.startswith("You are a planning assistant"):
            return self._plan
        return self._reply(model, prompt)


def failing_reply(model: str, prompt: str) -> str:
    raise BackendError("model unavailable")


@pytest.fixture
def mock_backend():
    """Factory fixture: MockBackend(response='')."""

    def _factory(response: str = "", models: list[str] | None = None) -> MockBackend:
        return MockBackend(response, models)

    return _factory


@pytest.fixture
def sequential_backend():
    """Factory fixture: SequentialMockBackend(responses=[...])."""

    def _factory(responses: list[str]) -> SequentialMockBackend:
        return SequentialMockBackend(responses)

    return _factory


@pytest.fixture
def scripted_backend():
    """Factory fixture: ScriptedBackend(plan, reply)."""

    def _factory(plan: str, reply: Callable[[str, str], str] = lambda m, p: "done") -> ScriptedBackend:
        return ScriptedBackend(plan, reply)

    return _factory


@pytest.fixture
def anyio_backend():
    """The orchestrator is built on asyncio primitives; run async tests on asyncio."""
    return "asyncio"
