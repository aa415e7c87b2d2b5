"""Host-facing boundary that wires triggers to calls, the ledger and injection.

Every failure on the automatic path is caught here: a malfunctioning secondary
call must never break the host's primary chat flow. Manual actions return a
single :class:`~secondary_assistant.ai.ai_types.Notice` instead of raising.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping

from ...chat.injection import InjectionMerger
from ...services import telemetry
from ...services.ledger import CallResult, ResultLedger
from ...services.settings import Settings
from ..ai_types import Clock, Notice, PresentationSink, TranscriptHost
from ..errors import CallError, ConfigurationError, SecondaryAPIError
from .orchestrator import SecondaryCallOrchestrator, ensure_configured
from .trigger import Trigger, TriggerDeduplicator, TriggerSource

__all__ = ["SecondaryPipeline", "MESSAGE_EVENTS", "RESET_EVENTS"]

LOGGER = logging.getLogger(__name__)

# Current host event names plus the aliases older hosts emit.
MESSAGE_EVENTS = frozenset(
    {
        "message_sent",
        "user_message_rendered",
        "messageSent",
        "userMessageSent",
        "sendUserMessage",
    }
)
RESET_EVENTS = frozenset({"chat_id_changed", "chat_changed", "chatChanged"})

Sleep = Callable[[float], Awaitable[Any]]


class SecondaryPipeline:
    """Runs the secondary call pipeline for one host chat application."""

    def __init__(
        self,
        settings: Settings,
        host: TranscriptHost,
        *,
        sink: PresentationSink | None = None,
        orchestrator: SecondaryCallOrchestrator | None = None,
        ledger: ResultLedger | None = None,
        save_settings: Callable[[], None] | None = None,
        clock: Clock | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._host = host
        self._save_settings = save_settings
        self._orchestrator = orchestrator or SecondaryCallOrchestrator()
        self._ledger = ledger or ResultLedger(settings, on_change=self._request_save)
        self._merger = InjectionMerger(host, sink=sink)
        self._dedup = TriggerDeduplicator(cooldown_seconds=settings.cooldown_seconds, clock=clock)
        self._sleep = sleep

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def ledger(self) -> ResultLedger:
        return self._ledger

    @property
    def merger(self) -> InjectionMerger:
        return self._merger

    @property
    def deduplicator(self) -> TriggerDeduplicator:
        return self._dedup

    # ------------------------------------------------------------------
    # Host signals
    # ------------------------------------------------------------------
    async def on_host_event(self, name: str, payload: Mapping[str, Any] | None = None) -> CallResult | None:
        """Route a raw host event name to a trigger or a reset."""

        if name in RESET_EVENTS:
            LOGGER.info("Chat changed: %s", payload)
            self.reset()
            return None
        if name not in MESSAGE_EVENTS:
            return None
        if not self._settings.trigger_on_send:
            return None
        return await self.handle_trigger(Trigger(TriggerSource.EVENT, dict(payload or {})))

    async def on_enter_key(self, message: str, *, shift: bool = False) -> CallResult | None:
        if shift or not message:
            return None
        if not self._settings.enabled or not self._settings.trigger_on_enter:
            return None
        LOGGER.debug("Detected Enter key with message: %s", message)
        return await self.handle_trigger(Trigger(TriggerSource.ENTER, {"message": message}))

    async def on_send_button(self, message: str) -> CallResult | None:
        if not message:
            return None
        if not self._settings.enabled or not self._settings.trigger_on_button:
            return None
        LOGGER.debug("Detected send button click with message: %s", message)
        return await self.handle_trigger(Trigger(TriggerSource.BUTTON, {"message": message}))

    def reset(self) -> None:
        """Forget per-conversation state after the host switches chats."""

        self._dedup.reset()
        self._merger.reset()

    # ------------------------------------------------------------------
    # Automatic path
    # ------------------------------------------------------------------
    async def handle_trigger(self, trigger: Trigger) -> CallResult | None:
        """Run the full pipeline for ``trigger``; never raises."""

        source = trigger.source.value
        LOGGER.debug("Message event received from %s", source)
        if not self._settings.enabled:
            LOGGER.debug("Extension is disabled")
            return None

        try:
            delay = self._settings.settle_delay_seconds
            if delay > 0 and trigger.source is not TriggerSource.MANUAL:
                # The host appends the user turn shortly after signalling.
                await self._sleep(delay)

            self._dedup.cooldown_seconds = self._settings.cooldown_seconds
            signature = self._dedup.admit(self._host.chat, source=trigger.source)
            if signature is None:
                return None

            chat = self._host.chat
            if not chat:
                LOGGER.debug("No messages in chat")
                return None
            LOGGER.debug(
                "Current chat length: %s; will fetch last %s message(s)",
                len(chat),
                self._settings.context_count,
            )

            outcome = await self._orchestrator.call(self._settings, chat)
            if outcome is None or not outcome.result:
                return None

            record = self._ledger.add(outcome.input.to_dict(), outcome.result, outcome.model)
            injected = await self._merger.inject(outcome.result)
            telemetry.emit(
                "secondary_call.completed",
                {"source": source, "model": outcome.model, "injected": injected, "signature": str(signature)},
            )
            return record
        except CallError as exc:
            LOGGER.log(exc.log_level, "Error calling secondary API: %s", exc)
            telemetry.emit("secondary_call.failed", {"source": source, **exc.to_dict()})
        except Exception:
            LOGGER.exception("Error processing message from %s", source)
        return None

    # ------------------------------------------------------------------
    # Manual actions
    # ------------------------------------------------------------------
    async def test_call(self) -> Notice:
        """Run one call on demand and record (but do not inject) its result."""

        try:
            ensure_configured(self._settings)
            outcome = await self._orchestrator.call(self._settings, self._host.chat)
        except ConfigurationError as exc:
            return Notice(False, f"{exc.message}.")
        except SecondaryAPIError as exc:
            LOGGER.log(exc.log_level, "Manual secondary call failed: %s", exc)
            return Notice(False, f"API call failed: {exc.message}")
        except Exception as exc:
            LOGGER.exception("Manual secondary call failed")
            return Notice(False, f"API call failed: {exc}")

        if outcome is None or not outcome.result:
            return Notice(False, "API call failed or returned empty result.")
        self._ledger.add(outcome.input.to_dict(), outcome.result, outcome.model)
        return Notice(True, "API call succeeded.")

    async def fetch_models(self) -> Notice:
        """Refresh :attr:`Settings.models_cache` from the listing endpoint."""

        if not self._settings.api_url or not self._settings.model_endpoint:
            return Notice(False, "Please configure API URL and Model Endpoint first.")
        try:
            models = await self._orchestrator.list_models(self._settings)
        except Exception as exc:
            LOGGER.error("Error fetching models: %s", exc)
            return Notice(False, "Failed to fetch models. See log for details.")

        self._settings.models_cache = models
        self._request_save()
        return Notice(True, f"Models fetched successfully ({len(models)} found).")

    def _request_save(self) -> None:
        if self._save_settings is not None:
            self._save_settings()
