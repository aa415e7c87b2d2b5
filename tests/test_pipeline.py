"""End-to-end tests for the host-facing pipeline."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

import httpx
import pytest

from secondary_assistant.ai.ai_types import CallInput, CallOutcome
from secondary_assistant.ai.errors import CallError, ConfigurationError, PersistenceError, TransformError
from secondary_assistant.ai.orchestration.orchestrator import SecondaryCallOrchestrator
from secondary_assistant.ai.orchestration.pipeline import SecondaryPipeline
from secondary_assistant.ai.orchestration.trigger import Trigger, TriggerSource
from secondary_assistant.services import telemetry
from secondary_assistant.services.settings import Settings
from tests.helpers import (
    FakeClock,
    FakeHost,
    RecordingHandler,
    RecordingSink,
    chat_completion,
    json_responder,
    text_responder,
)


class _CountingOrchestrator(SecondaryCallOrchestrator):
    def __init__(self, result: str = "") -> None:
        super().__init__()
        self.calls = 0
        self.result = result

    async def call(self, settings: Settings, transcript: Sequence[Any] | None) -> CallOutcome | None:
        self.calls += 1
        if not self.result:
            return None
        return CallOutcome(result=self.result, input=CallInput(system_prompt=""), model="stub")


def _settings(**overrides: object) -> Settings:
    base: dict[str, object] = {
        "api_url": "https://llm.local/v1/chat/completions",
        "settle_delay_seconds": 0.0,
    }
    base.update(overrides)
    return Settings(**base)  # type: ignore[arg-type]


def _pipeline(
    host: FakeHost,
    *,
    settings: Settings | None = None,
    handler: RecordingHandler | None = None,
    orchestrator: SecondaryCallOrchestrator | None = None,
    clock: FakeClock | None = None,
    **kwargs: Any,
) -> SecondaryPipeline:
    if orchestrator is None:
        handler = handler or RecordingHandler(json_responder(chat_completion("X")))
        orchestrator = SecondaryCallOrchestrator(transport=httpx.MockTransport(handler))
    return SecondaryPipeline(
        settings or _settings(),
        host,
        orchestrator=orchestrator,
        clock=clock or FakeClock(),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_trigger_records_and_injects_result(host: FakeHost) -> None:
    saves: list[str] = []
    sink = RecordingSink()
    handler = RecordingHandler(json_responder(chat_completion("Insight")))
    pipeline = _pipeline(host, handler=handler, sink=sink, save_settings=lambda: saves.append("x"))

    record = await pipeline.handle_trigger(Trigger(TriggerSource.EVENT))

    assert record is not None
    assert record.output == "Insight"
    assert record.model == "gpt-4o-mini"
    assert '"systemPrompt"' in record.input
    assert len(pipeline.ledger) == 1
    assert host.chat[2]["mes"] == "Summarize our chat\n\nInsight"
    assert sink.refreshed == [(2, "Summarize our chat\n\nInsight")]
    assert saves == ["x"]
    assert len(handler.requests) == 1


@pytest.mark.asyncio
async def test_duplicate_triggers_within_cooldown_reach_orchestrator_once(host: FakeHost) -> None:
    clock = FakeClock()
    orchestrator = _CountingOrchestrator()
    pipeline = _pipeline(host, orchestrator=orchestrator, clock=clock)

    await pipeline.handle_trigger(Trigger(TriggerSource.EVENT))
    clock.advance(1.0)
    await pipeline.handle_trigger(Trigger(TriggerSource.ENTER))

    assert orchestrator.calls == 1


@pytest.mark.asyncio
async def test_triggers_outside_cooldown_reach_orchestrator_twice(host: FakeHost) -> None:
    clock = FakeClock()
    orchestrator = _CountingOrchestrator()
    pipeline = _pipeline(host, orchestrator=orchestrator, clock=clock)

    await pipeline.handle_trigger(Trigger(TriggerSource.EVENT))
    clock.advance(3.5)
    await pipeline.handle_trigger(Trigger(TriggerSource.EVENT))

    assert orchestrator.calls == 2


@pytest.mark.asyncio
async def test_configured_cooldown_is_honoured(host: FakeHost) -> None:
    clock = FakeClock()
    orchestrator = _CountingOrchestrator()
    pipeline = _pipeline(host, settings=_settings(cooldown_seconds=10.0), orchestrator=orchestrator, clock=clock)

    await pipeline.handle_trigger(Trigger(TriggerSource.EVENT))
    clock.advance(5.0)
    await pipeline.handle_trigger(Trigger(TriggerSource.EVENT))

    assert orchestrator.calls == 1


@pytest.mark.asyncio
async def test_http_failure_creates_no_entry_and_no_injection(host: FakeHost) -> None:
    failures: list[dict[str, Any]] = []
    telemetry.register_event_listener("secondary_call.failed", failures.append)
    handler = RecordingHandler(text_responder("oops", status_code=500))
    pipeline = _pipeline(host, handler=handler)

    try:
        record = await pipeline.handle_trigger(Trigger(TriggerSource.EVENT))
    finally:
        telemetry.unregister_event_listener("secondary_call.failed", failures.append)

    assert record is None
    assert len(pipeline.ledger) == 0
    assert host.chat[2]["mes"] == "Summarize our chat"
    assert host.saves == 0
    assert failures[0]["details"]["status"] == 500
    assert "oops" in failures[0]["message"]


@pytest.mark.asyncio
async def test_unexpected_errors_never_escape(host: FakeHost) -> None:
    class _Exploding(SecondaryCallOrchestrator):
        async def call(self, settings: Settings, transcript: Sequence[Any] | None) -> CallOutcome | None:
            raise RuntimeError("kaboom")

    pipeline = _pipeline(host, orchestrator=_Exploding())

    assert await pipeline.handle_trigger(Trigger(TriggerSource.EVENT)) is None


@pytest.mark.asyncio
async def test_no_user_turn_drops_trigger_silently() -> None:
    orchestrator = _CountingOrchestrator()
    pipeline = _pipeline(FakeHost(chat=[{"is_user": False, "mes": "greeting"}]), orchestrator=orchestrator)

    assert await pipeline.handle_trigger(Trigger(TriggerSource.EVENT)) is None
    assert orchestrator.calls == 0


@pytest.mark.asyncio
async def test_disabled_pipeline_does_nothing(host: FakeHost) -> None:
    orchestrator = _CountingOrchestrator()
    pipeline = _pipeline(host, settings=_settings(enabled=False), orchestrator=orchestrator)

    assert await pipeline.handle_trigger(Trigger(TriggerSource.EVENT)) is None
    assert orchestrator.calls == 0
    assert pipeline.deduplicator.last_signature is None


@pytest.mark.asyncio
async def test_settle_delay_uses_injected_sleep(host: FakeHost) -> None:
    delays: list[float] = []

    async def _sleep(seconds: float) -> None:
        delays.append(seconds)

    pipeline = _pipeline(
        host,
        settings=_settings(settle_delay_seconds=0.8),
        orchestrator=_CountingOrchestrator(),
        sleep=_sleep,
    )

    await pipeline.handle_trigger(Trigger(TriggerSource.EVENT))
    await pipeline.handle_trigger(Trigger(TriggerSource.MANUAL))

    assert delays == [0.8]


@pytest.mark.asyncio
async def test_message_event_aliases_trigger_calls(host: FakeHost) -> None:
    clock = FakeClock()
    orchestrator = _CountingOrchestrator()
    pipeline = _pipeline(host, orchestrator=orchestrator, clock=clock)

    for name in ("message_sent", "user_message_rendered", "messageSent", "userMessageSent", "sendUserMessage"):
        await pipeline.on_host_event(name, {"id": 1})
        clock.advance(5.0)
    await pipeline.on_host_event("generation_started")

    assert orchestrator.calls == 5


@pytest.mark.asyncio
async def test_message_events_respect_trigger_on_send(host: FakeHost) -> None:
    orchestrator = _CountingOrchestrator()
    pipeline = _pipeline(host, settings=_settings(trigger_on_send=False), orchestrator=orchestrator)

    await pipeline.on_host_event("message_sent")

    assert orchestrator.calls == 0


@pytest.mark.asyncio
async def test_chat_change_resets_dedup_and_cursor(host: FakeHost) -> None:
    pipeline = _pipeline(host, orchestrator=_CountingOrchestrator(result="R"))
    await pipeline.handle_trigger(Trigger(TriggerSource.EVENT))
    assert pipeline.merger.cursor == 2

    await pipeline.on_host_event("chat_id_changed", {"chat": "other"})

    assert pipeline.deduplicator.last_signature is None
    assert pipeline.merger.cursor is None


@pytest.mark.asyncio
async def test_enter_and_button_sources_are_gated(host: FakeHost) -> None:
    clock = FakeClock()
    orchestrator = _CountingOrchestrator()
    pipeline = _pipeline(host, orchestrator=orchestrator, clock=clock)

    await pipeline.on_enter_key("hello")
    await pipeline.on_send_button("hello")
    assert orchestrator.calls == 0

    pipeline.settings.trigger_on_enter = True
    pipeline.settings.trigger_on_button = True
    await pipeline.on_enter_key("hello", shift=True)
    await pipeline.on_enter_key("")
    assert orchestrator.calls == 0

    await pipeline.on_enter_key("hello")
    clock.advance(5.0)
    await pipeline.on_send_button("hello")
    assert orchestrator.calls == 2


@pytest.mark.asyncio
async def test_manual_test_call_records_without_injecting(host: FakeHost) -> None:
    pipeline = _pipeline(host, handler=RecordingHandler(json_responder({"response": "Y"})))

    notice = await pipeline.test_call()

    assert notice.ok is True
    assert [entry.output for entry in pipeline.ledger.entries()] == ["Y"]
    assert host.chat[2]["mes"] == "Summarize our chat"


@pytest.mark.asyncio
async def test_manual_test_call_reports_failures(host: FakeHost) -> None:
    failing = _pipeline(host, handler=RecordingHandler(text_responder("oops", status_code=500)))
    unconfigured = _pipeline(host, settings=_settings(api_url=""))

    failed = await failing.test_call()
    skipped = await unconfigured.test_call()

    assert failed.ok is False
    assert "oops" in failed.message
    assert skipped.ok is False
    assert "not configured" in skipped.message
    assert len(failing.ledger) == 0


@pytest.mark.asyncio
async def test_fetch_models_updates_cache(host: FakeHost) -> None:
    saves: list[str] = []
    handler = RecordingHandler(json_responder({"models": [{"name": "llama3"}, "qwen"]}))
    pipeline = _pipeline(host, handler=handler, save_settings=lambda: saves.append("x"))

    notice = await pipeline.fetch_models()

    assert notice.ok is True
    assert pipeline.settings.models_cache == ["llama3", "qwen"]
    assert str(handler.requests[0].url) == "https://llm.local/v1/chat/completions/models"
    assert saves == ["x"]


@pytest.mark.asyncio
async def test_fetch_models_requires_configuration(host: FakeHost) -> None:
    handler = RecordingHandler(json_responder([]))
    pipeline = _pipeline(host, settings=_settings(model_endpoint=""), handler=handler)

    notice = await pipeline.fetch_models()

    assert notice.ok is False
    assert handler.requests == []


@pytest.mark.asyncio
async def test_fetch_models_failure_keeps_cache(host: FakeHost) -> None:
    settings = _settings(models_cache=["kept"])
    pipeline = _pipeline(host, settings=settings, handler=RecordingHandler(text_responder("no", status_code=403)))

    notice = await pipeline.fetch_models()

    assert notice.ok is False
    assert settings.models_cache == ["kept"]


def test_call_error_is_importable_from_package() -> None:
    from secondary_assistant.ai import CallError as exported

    assert exported is CallError


@pytest.mark.asyncio
async def test_simultaneous_triggers_reach_orchestrator_once(host: FakeHost) -> None:
    async def _yielding_sleep(seconds: float) -> None:
        await asyncio.sleep(0)

    orchestrator = _CountingOrchestrator()
    pipeline = _pipeline(
        host,
        settings=_settings(settle_delay_seconds=0.8),
        orchestrator=orchestrator,
        sleep=_yielding_sleep,
    )

    await asyncio.gather(
        pipeline.handle_trigger(Trigger(TriggerSource.EVENT)),
        pipeline.handle_trigger(Trigger(TriggerSource.ENTER)),
    )

    assert orchestrator.calls == 1


@pytest.mark.asyncio
async def test_call_failures_are_logged_at_error_level(host: FakeHost, caplog: pytest.LogCaptureFixture) -> None:
    pipeline = _pipeline(host, handler=RecordingHandler(text_responder("oops", status_code=500)))

    with caplog.at_level(logging.INFO):
        await pipeline.handle_trigger(Trigger(TriggerSource.EVENT))

    failures = [record for record in caplog.records if "Error calling secondary API" in record.message]
    assert [record.levelno for record in failures] == [logging.ERROR]


def test_error_log_levels_follow_severity() -> None:
    assert ConfigurationError().log_level == logging.INFO
    assert TransformError(pattern="(").log_level == logging.WARNING
    assert CallError.from_status(500, "oops").log_level == logging.ERROR
    assert PersistenceError(index=1).log_level == logging.WARNING
    assert CallError.from_status(500, "oops").to_dict()["severity"] == "error"
