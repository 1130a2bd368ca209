"""LiteLLM backend via Anthropic Messages API endpoint."""

from __future__ import annotations

import os
from typing import Optional

from .base import BackendError, ModelBackend


class LiteLLMBackend(ModelBackend):
    """LiteLLM proxy backend using the Anthropic Messages API endpoint.

    The proxy routes by model name, so switching only checks that the
    target model is served.

    Reads credentials from environment variables:
        LITELLM_API_KEY    (required)
        LITELLM_BASE_URL   (required, e.g. https://your-litellm-host.example.com)
    """

    def __init__(self, max_tokens: int = 2048) -> None:
        self._api_key = os.environ["LITELLM_API_KEY"]
        base_url = os.environ["LITELLM_BASE_URL"].rstrip("/")
        self._messages_url = base_url + "/v1/messages"
        self._models_url = base_url + "/v1/models"
        self._max_tokens = max_tokens
        self._current: Optional[str] = None

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def generate(self, model: str, prompt: str, temperature: float = 0.0) -> str:
        import requests

        try:
            resp = requests.post(
                self._messages_url,
                headers=self._headers(),
                json={
                    "model": model,
                    "max_tokens": self._max_tokens,
                    "temperature": temperature,
                    "messages": [{"role": "user", "content": prompt}],
                },
                timeout=120,
            )
            resp.raise_for_status()
            return resp.json()["content"][0]["text"]
        except (requests.RequestException, ValueError, KeyError, IndexError) as exc:
            raise BackendError(f"generation with {model} failed: {exc}") from exc

    def list_available(self) -> list[str]:
        import requests

        try:
            resp = requests.get(self._models_url, headers=self._headers(), timeout=30)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise BackendError(f"listing models failed: {exc}") from exc
        return [m["id"] for m in data.get("data", [])]

    def switch(self, model: str) -> bool:
        try:
            available = self.list_available()
        except BackendError:
            return False
        if model not in available:
            return False
        self._current = model
        return True
