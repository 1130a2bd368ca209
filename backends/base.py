"""Abstract model backend interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterator


class BackendError(Exception):
    """Raised when a backend request fails (network error or non-2xx reply)."""


@dataclass
class StreamChunk:
    """One newline-delimited JSON chunk of a streamed generation."""

    response: str
    done: bool = False


class ModelBackend(ABC):
    """Abstract interface for a service hosting several models.

    Only one model is considered warm at a time; ``switch`` moves the
    service from the current model to another one.
    """

    @abstractmethod
    def generate(self, model: str, prompt: str, temperature: float = 0.0) -> str:
        """Generate text with *model* given a prompt."""
        ...

    def stream(
        self, model: str, prompt: str, temperature: float = 0.0
    ) -> Iterator[StreamChunk]:
        """Yield the response in chunks.  Defaults to a single final chunk."""
        yield StreamChunk(response=self.generate(model, prompt, temperature), done=True)

    @abstractmethod
    def switch(self, model: str) -> bool:
        """Make *model* the active model.  Returns False when it cannot be loaded."""
        ...

    @abstractmethod
    def list_available(self) -> list[str]:
        """Return the names of the models this backend can serve."""
        ...
