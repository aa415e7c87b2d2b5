"""Builds, sends and post-processes a single secondary API call."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Sequence

import httpx

from ...chat.context_window import build_context
from ...chat.message_model import ContextMessage
from ...services.settings import Settings, current_model
from ...utils.transform import apply_transform
from ..ai_types import CallInput, CallOutcome
from ..client import ClientSettings, SecondaryAPIClient
from ..errors import ConfigurationError
from ..extractors import RESPONSE_EXTRACTORS, Extractor, extract_text

__all__ = ["SecondaryCallOrchestrator", "client_settings_from", "ensure_configured"]

LOGGER = logging.getLogger(__name__)

ClientFactory = Callable[[ClientSettings], SecondaryAPIClient]


def ensure_configured(settings: Settings) -> None:
    """Raise :class:`ConfigurationError` when calls should not be attempted."""

    if not settings.enabled:
        raise ConfigurationError(message="Secondary API is disabled")
    if not settings.api_url:
        raise ConfigurationError(message="Secondary API URL is not configured")


def client_settings_from(settings: Settings) -> ClientSettings:
    return ClientSettings(
        api_url=settings.api_url,
        api_key=settings.api_key,
        model_endpoint=settings.model_endpoint,
        request_timeout=settings.request_timeout,
        debug_logging=settings.debug_logging,
    )


class SecondaryCallOrchestrator:
    """Turns the current transcript into one request and one extracted result."""

    def __init__(
        self,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        client_factory: ClientFactory | None = None,
        extractors: Sequence[Extractor] = RESPONSE_EXTRACTORS,
    ) -> None:
        self._transport = transport
        self._client_factory = client_factory
        self._extractors = tuple(extractors)

    def build_payload(self, settings: Settings, context: Sequence[ContextMessage]) -> Dict[str, Any]:
        return {
            "model": current_model(settings),
            "messages": [
                {"role": "system", "content": settings.system_prompt or ""},
                *(message.to_dict() for message in context),
            ],
            "temperature": settings.temperature,
            "max_tokens": settings.max_tokens,
        }

    async def call(self, settings: Settings, transcript: Sequence[Any] | None) -> CallOutcome | None:
        """Run one call; returns ``None`` when the feature is off or unconfigured.

        Raises :class:`~secondary_assistant.ai.errors.CallError` on HTTP or
        transport failures. No retry is attempted.
        """

        try:
            ensure_configured(settings)
        except ConfigurationError as exc:
            LOGGER.info("%s; skipping call", exc.message)
            return None

        context = build_context(
            transcript,
            settings.context_count,
            pattern=settings.input_regex_pattern,
            replacement=settings.input_regex_replace,
        )
        payload = self.build_payload(settings, context)
        LOGGER.debug("System prompt: %s", settings.system_prompt)
        LOGGER.debug("Context message count: %s", len(context))

        async with self._make_client(settings) as client:
            body = await client.complete(payload)

        raw = extract_text(body, self._extractors)
        result = apply_transform(raw, settings.output_regex_pattern, settings.output_regex_replace)
        LOGGER.debug("Final result: %s", result)
        return CallOutcome(
            result=result,
            input=CallInput(system_prompt=settings.system_prompt or "", messages=list(context)),
            model=payload["model"],
            full_context=list(context),
        )

    async def list_models(self, settings: Settings) -> list[str]:
        async with self._make_client(settings) as client:
            return await client.list_models()

    def _make_client(self, settings: Settings) -> SecondaryAPIClient:
        client_settings = client_settings_from(settings)
        if self._client_factory is not None:
            return self._client_factory(client_settings)
        return SecondaryAPIClient(client_settings, transport=self._transport)
