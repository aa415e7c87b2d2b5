"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from tests.helpers import FakeClock, FakeHost


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock(start=100.0)


@pytest.fixture
def host() -> FakeHost:
    return FakeHost(
        chat=[
            {"is_user": True, "mes": "Hello there"},
            {"is_user": False, "mes": "Hi! How can I help?"},
            {"is_user": True, "mes": "Summarize our chat"},
        ]
    )


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory) -> None:
    for name in (
        "SECONDARY_ASSISTANT_SETTINGS",
        "SECONDARY_ASSISTANT_API_URL",
        "SECONDARY_ASSISTANT_API_KEY",
        "SECONDARY_ASSISTANT_MODEL",
        "SECONDARY_ASSISTANT_DEBUG",
        "SECONDARY_ASSISTANT_DEBUG_LOGGING",
        "SECONDARY_ASSISTANT_TEMPERATURE",
        "SECONDARY_ASSISTANT_CONTEXT_COUNT",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SECONDARY_ASSISTANT_LOG_DIR", str(tmp_path_factory.mktemp("logs")))
