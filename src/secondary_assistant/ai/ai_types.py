"""Shared typing contracts for the secondary API pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, MutableSequence, Protocol

from ..chat.message_model import ContextMessage

Clock = Callable[[], float]


class TranscriptHost(Protocol):
    """Host chat application seen from the pipeline."""

    chat: MutableSequence[Any]

    def save_chat(self) -> Awaitable[None] | None:
        """Persist the host transcript after a mutation."""
        ...


class PresentationSink(Protocol):
    """Receives display refresh requests after the transcript changes."""

    def refresh_message(self, index: int, text: str) -> None:
        ...


@dataclass(slots=True)
class CallInput:
    """Prompt material sent with a secondary call."""

    system_prompt: str
    messages: List[ContextMessage] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "systemPrompt": self.system_prompt,
            "messages": [message.to_dict() for message in self.messages],
        }


@dataclass(slots=True)
class CallOutcome:
    """Result of one secondary call after the output transform."""

    result: str
    input: CallInput
    model: str
    full_context: List[ContextMessage] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class Notice:
    """Single user-facing message produced by a manual action."""

    ok: bool
    message: str
