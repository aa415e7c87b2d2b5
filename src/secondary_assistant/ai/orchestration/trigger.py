"""Trigger normalization and duplicate suppression."""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from ...chat.message_model import TranscriptEntry, find_last_user_index
from ..ai_types import Clock

__all__ = [
    "DedupState",
    "Trigger",
    "TriggerSignature",
    "TriggerSource",
    "TriggerDeduplicator",
    "compute_signature",
]

LOGGER = logging.getLogger(__name__)
_SIGNATURE_TAIL_CHARS = 32
DEFAULT_COOLDOWN_SECONDS = 3.0


class TriggerSource(str, enum.Enum):
    """Where a trigger originated; used for logging only."""

    EVENT = "event"
    ENTER = "enter"
    BUTTON = "button"
    MANUAL = "manual"


@dataclass(slots=True, frozen=True)
class Trigger:
    """A normalized "user message may need a secondary call" signal."""

    source: TriggerSource
    payload: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class TriggerSignature:
    """Fingerprint of the most recent user turn."""

    index: int
    length: int
    tail: str

    @classmethod
    def from_entry(cls, entry: TranscriptEntry) -> "TriggerSignature":
        text = entry.text
        return cls(index=entry.index, length=len(text), tail=text[-_SIGNATURE_TAIL_CHARS:])

    def __str__(self) -> str:
        return f"{self.index}:{self.length}:{self.tail}"


def compute_signature(chat: Sequence[Any] | None) -> TriggerSignature | None:
    """Return the signature of the latest user turn, or ``None`` if there is none."""

    index = find_last_user_index(chat)
    if index is None or chat is None:
        return None
    return TriggerSignature.from_entry(TranscriptEntry.from_record(index, chat[index]))


class DedupState(str, enum.Enum):
    IDLE = "idle"
    COOLDOWN = "cooldown"


class TriggerDeduplicator:
    """Lets one trigger per user turn through within the cooldown window.

    Several host signals (message events, the enter key, the send button) can
    fire for the same user action; an identical signature seen again inside
    the window is treated as the same action and suppressed.
    """

    def __init__(self, *, cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS, clock: Clock | None = None) -> None:
        self.cooldown_seconds = max(0.0, float(cooldown_seconds))
        self._clock = clock or time.monotonic
        self._signature: TriggerSignature | None = None
        self._recorded_at = 0.0

    @property
    def state(self) -> DedupState:
        if self._signature is None:
            return DedupState.IDLE
        if self._clock() - self._recorded_at < self.cooldown_seconds:
            return DedupState.COOLDOWN
        return DedupState.IDLE

    @property
    def last_signature(self) -> TriggerSignature | None:
        return self._signature

    def admit(self, chat: Sequence[Any] | None, *, source: TriggerSource | str = "") -> TriggerSignature | None:
        """Return the signature when the call should proceed, else ``None``."""

        signature = compute_signature(chat)
        if signature is None:
            LOGGER.debug("No last user message for signature (source=%s)", _source_name(source))
            return None

        now = self._clock()
        if signature == self._signature and now - self._recorded_at < self.cooldown_seconds:
            LOGGER.debug("Duplicate trigger detected, skipping (source=%s)", _source_name(source))
            return None

        self._signature = signature
        self._recorded_at = now
        return signature

    def reset(self) -> None:
        self._signature = None
        self._recorded_at = 0.0


def _source_name(source: TriggerSource | str) -> str:
    return source.value if isinstance(source, TriggerSource) else str(source or "unknown")
