"""Appends secondary results to the latest user turn exactly once."""

from __future__ import annotations

import inspect
import logging
from typing import Any

from ..ai.ai_types import PresentationSink, TranscriptHost
from ..ai.errors import PersistenceError
from .message_model import find_last_user_index, read_text, write_text

__all__ = ["InjectionMerger", "INJECTION_SEPARATOR"]

LOGGER = logging.getLogger(__name__)
INJECTION_SEPARATOR = "\n\n"


class InjectionMerger:
    """Merges a result into the host transcript and tracks the injection cursor.

    The in-memory append is never rolled back: if saving or refreshing fails
    afterwards the transcript and its persisted copy may briefly disagree
    until the host saves again.
    """

    def __init__(self, host: TranscriptHost, *, sink: PresentationSink | None = None) -> None:
        self._host = host
        self._sink = sink
        self._cursor: int | None = None

    @property
    def cursor(self) -> int | None:
        return self._cursor

    def reset(self) -> None:
        self._cursor = None

    async def inject(self, result_text: str) -> bool:
        """Append ``result_text`` to the most recent user turn.

        Returns ``True`` when the transcript was modified.
        """

        if not result_text:
            LOGGER.debug("Empty result, skip injection")
            return False

        chat = self._host.chat
        target_index = find_last_user_index(chat)
        if target_index is None:
            LOGGER.debug("No user message found for injection")
            return False

        record = chat[target_index]
        original = read_text(record)
        original_text = original if isinstance(original, str) else ""
        if result_text in original_text and self._cursor == target_index:
            LOGGER.debug("Result already injected into message %s, skipping", target_index)
            return False

        updated = original_text + INJECTION_SEPARATOR + result_text
        write_text(record, updated)

        try:
            await self._persist(target_index, updated)
        except PersistenceError as exc:
            LOGGER.log(exc.log_level, "%s", exc)

        self._cursor = target_index
        LOGGER.info("Result injected into last user message at index %s", target_index)
        return True

    async def _persist(self, index: int, text: str) -> None:
        errors: list[str] = []
        try:
            outcome: Any = self._host.save_chat()
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:  # host hooks may raise anything
            errors.append(f"save failed: {exc}")
        if self._sink is not None:
            try:
                self._sink.refresh_message(index, text)
            except Exception as exc:  # presentation layer is best-effort
                errors.append(f"refresh failed: {exc}")
        if errors:
            raise PersistenceError(
                message=f"Injected result at index {index} not fully persisted: {'; '.join(errors)}",
                index=index,
            )
