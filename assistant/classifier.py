"""Natural-language classification capability used by planners and resolvers."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from collections import deque
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any, Iterator

import httpx

from assistant.core.errors import ClassificationError

OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"


@dataclass
class ClassifierCallCount:
    """Classifier calls made inside one :func:`classifier_call_scope`."""

    count: int = 0


_CALL_COUNT: ContextVar[ClassifierCallCount | None] = ContextVar("classifier_call_count", default=None)


@contextmanager
def classifier_call_scope() -> Iterator[ClassifierCallCount]:
    """Count classifier calls made by nested code in the current task."""

    counter = ClassifierCallCount()
    token = _CALL_COUNT.set(counter)
    try:
        yield counter
    finally:
        _CALL_COUNT.reset(token)


def record_classifier_call() -> None:
    counter = _CALL_COUNT.get()
    if counter is not None:
        counter.count += 1


class Classifier(ABC):
    """Turns free text into a structured JSON payload."""

    @abstractmethod
    async def classify(self, system_context: str, user_context: str) -> dict[str, Any]:
        """Return the structured payload or raise :class:`ClassificationError`."""


class OpenRouterClassifier(Classifier):
    """JSON-mode chat completion against OpenRouter."""

    def __init__(
        self,
        api_key: str,
        model: str = "minimax/minimax-m2:free",
        *,
        referer: str | None = None,
        title: str | None = None,
        timeout: float = 15.0,
        rate_limit_per_sec: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._referer = referer
        self._title = title or "Assistant Orchestrator"
        self._timeout = timeout
        self._min_interval = 1.0 / rate_limit_per_sec if rate_limit_per_sec > 0 else 0.0
        self._last_call = 0.0
        self._rate_lock = asyncio.Lock()
        self._transport = transport
        self._logger = logging.getLogger("assistant.classifier")

    def _headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        if self._referer:
            headers["HTTP-Referer"] = self._referer
        if self._title:
            headers["X-Title"] = self._title
        return headers

    async def classify(self, system_context: str, user_context: str) -> dict[str, Any]:
        async with self._rate_lock:
            now = time.monotonic()
            wait_for = self._min_interval - (now - self._last_call)
            if wait_for > 0:
                await asyncio.sleep(wait_for)
            self._last_call = time.monotonic()

        payload = {
            "model": self._model,
            "temperature": 0.1,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": system_context},
                {"role": "user", "content": user_context},
            ],
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(OPENROUTER_URL, headers=self._headers(), json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            self._logger.warning("OpenRouter classification failed: %s", exc)
            raise ClassificationError(f"Classifier request failed: {exc}") from exc

        content = data.get("choices", [{}])[0].get("message", {}).get("content", "")
        return parse_json_payload(content)


class StaticClassifier(Classifier):
    """Replays canned payloads in order. Used for tests and offline runs.

    An exception instance in the queue is raised instead of returned. Once the
    queue is exhausted the last payload keeps being returned.
    """

    def __init__(self, *responses: dict[str, Any] | Exception) -> None:
        self._responses: deque[dict[str, Any] | Exception] = deque(responses)
        self._last: dict[str, Any] | Exception | None = None
        self.calls: list[tuple[str, str]] = []

    async def classify(self, system_context: str, user_context: str) -> dict[str, Any]:
        self.calls.append((system_context, user_context))
        if self._responses:
            self._last = self._responses.popleft()
        if self._last is None:
            raise ClassificationError("No canned classification available")
        if isinstance(self._last, Exception):
            raise self._last
        return dict(self._last)


def parse_json_payload(content: str) -> dict[str, Any]:
    """Decode a model reply into a JSON object, tolerating markdown fences."""

    text = (content or "").strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ClassificationError(f"Classifier returned invalid JSON: {exc.msg}") from exc
    if not isinstance(parsed, dict):
        raise ClassificationError("Classifier payload must be a JSON object")
    return parsed
