"""Shared test helpers and stub classes.

Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

import json
from typing import Any, Callable

import httpx


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeHost:
    """In-memory transcript host that counts save requests."""

    def __init__(self, chat: list[Any] | None = None, *, fail_save: bool = False) -> None:
        self.chat: list[Any] = chat if chat is not None else []
        self.saves = 0
        self.fail_save = fail_save

    def save_chat(self) -> None:
        self.saves += 1
        if self.fail_save:
            raise RuntimeError("disk full")


class RecordingSink:
    def __init__(self) -> None:
        self.refreshed: list[tuple[int, str]] = []

    def refresh_message(self, index: int, text: str) -> None:
        self.refreshed.append((index, text))


class RecordingHandler:
    """``httpx.MockTransport`` handler that records requests and replays a response."""

    def __init__(self, responder: Callable[[httpx.Request], httpx.Response]) -> None:
        self._responder = responder
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._responder(request)

    def json_bodies(self) -> list[Any]:
        return [json.loads(request.content) for request in self.requests]


def json_responder(payload: Any, status_code: int = 200) -> Callable[[httpx.Request], httpx.Response]:
    return lambda _request: httpx.Response(status_code, json=payload)


def text_responder(body: str, status_code: int = 200) -> Callable[[httpx.Request], httpx.Response]:
    return lambda _request: httpx.Response(status_code, text=body)


def chat_completion(content: str) -> dict[str, Any]:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}
