"""Bounded conversation window extraction."""

from __future__ import annotations

import logging
from typing import Any, List, Sequence

from ..utils.transform import apply_transform
from .message_model import ContextMessage, is_user_record, read_text

__all__ = ["build_context"]

LOGGER = logging.getLogger(__name__)


def build_context(
    transcript: Sequence[Any] | None,
    window_size: int,
    *,
    pattern: str = "",
    replacement: str = "",
) -> List[ContextMessage]:
    """Return the last ``window_size`` non-blank turns as context messages.

    Roles are normalized to ``user``/``assistant`` and the input transform is
    applied to each surviving turn. Chronological order is preserved.
    """

    messages: List[ContextMessage] = []
    if not transcript:
        LOGGER.debug("Transcript is empty; no context to build")
        return messages
    if window_size <= 0:
        return messages

    start = max(0, len(transcript) - window_size)
    for record in transcript[start:]:
        text = read_text(record)
        if not isinstance(text, str) or not text.strip():
            continue
        role = "user" if is_user_record(record) else "assistant"
        content = apply_transform(text, pattern, replacement)
        messages.append(ContextMessage(role=role, content=content))

    LOGGER.debug("Context messages prepared: %s", len(messages))
    return messages
