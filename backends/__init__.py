"""Model backend implementations for the coordinator."""

from .base import BackendError, ModelBackend, StreamChunk
from .litellm import LiteLLMBackend
from .ollama import OllamaBackend

__all__ = [
    "BackendError",
    "ModelBackend",
    "StreamChunk",
    "LiteLLMBackend",
    "OllamaBackend",
]
