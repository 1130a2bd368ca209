"""Ollama backend over its local REST API."""

from __future__ import annotations

import json
import logging
import os
from typing import Iterator, Optional

from .base import BackendError, ModelBackend, StreamChunk

_log = logging.getLogger(__name__)

_DEFAULT_HOST = "http://localhost:11434"


class OllamaBackend(ModelBackend):
    """Ollama backend using the ``/api/generate`` and ``/api/tags`` endpoints.

    Reads the server location from the environment:
        OLLAMA_HOST   (optional, defaults to http://localhost:11434)

    Switching is two-phase: the current model is unloaded
    (``keep_alive: 0``) before the target is loaded with an empty prompt,
    so at most one model is resident at a time.

    Args:
        host: Override for OLLAMA_HOST.
        timeout: Per-request timeout in seconds.
    """

    def __init__(self, host: Optional[str] = None, timeout: float = 120) -> None:
        base_url = host or os.environ.get("OLLAMA_HOST", _DEFAULT_HOST)
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._current: Optional[str] = None

    @property
    def current_model(self) -> Optional[str]:
        return self._current

    def generate(self, model: str, prompt: str, temperature: float = 0.0) -> str:
        data = self._post(
            "/api/generate",
            {
                "model": model,
                "prompt": prompt,
                "stream": False,
                "options": {"temperature": temperature},
            },
        )
        return data.get("response", "")

    def stream(
        self, model: str, prompt: str, temperature: float = 0.0
    ) -> Iterator[StreamChunk]:
        import requests

        try:
            resp = requests.post(
                self._base_url + "/api/generate",
                json={
                    "model": model,
                    "prompt": prompt,
                    "stream": True,
                    "options": {"temperature": temperature},
                },
                stream=True,
                timeout=self._timeout,
            )
            resp.raise_for_status()
            for line in resp.iter_lines(decode_unicode=True):
                if not line or not line.strip():
                    continue
                payload = json.loads(line)
                chunk = StreamChunk(
                    response=payload.get("response", ""),
                    done=bool(payload.get("done", False)),
                )
                yield chunk
                if chunk.done:
                    break
        except (requests.RequestException, json.JSONDecodeError) as exc:
            raise BackendError(f"streaming from {model} failed: {exc}") from exc

    def list_available(self) -> list[str]:
        import requests

        try:
            resp = requests.get(self._base_url + "/api/tags", timeout=self._timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise BackendError(f"listing models failed: {exc}") from exc
        return [m["name"] for m in data.get("models", [])]

    def switch(self, model: str) -> bool:
        if model == self._current:
            return True
        try:
            if model not in self.list_available():
                _log.warning("Model %s is not available on %s", model, self._base_url)
                return False
            if self._current is not None:
                _log.info("Unloading model %s", self._current)
                self._post(
                    "/api/generate",
                    {"model": self._current, "prompt": "", "keep_alive": 0},
                )
            _log.info("Loading model %s", model)
            self._post("/api/generate", {"model": model, "prompt": "", "stream": False})
        except BackendError as exc:
            _log.warning("Switch to %s failed: %s", model, exc)
            return False
        self._current = model
        return True

    def _post(self, path: str, body: dict) -> dict:
        import requests

        try:
            resp = requests.post(self._base_url + path, json=body, timeout=self._timeout)
            resp.raise_for_status()
            return resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise BackendError(f"POST {path} failed: {exc}") from exc
