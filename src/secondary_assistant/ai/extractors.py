"""Response extractors for the dialects of the chat completion contract.

OpenAI-compatible servers answer with ``choices[0].message.content``, legacy
completion servers with ``choices[0].text`` and Ollama-style servers with a
top-level ``response`` field. Each strategy is a pure function returning the
text or ``None``; the first strategy that succeeds wins.
"""

from __future__ import annotations

import json
from typing import Any, Callable, List, Optional, Sequence

__all__ = [
    "Extractor",
    "RESPONSE_EXTRACTORS",
    "extract_text",
    "extract_model_names",
]

Extractor = Callable[[Any], Optional[str]]


def _first_choice(payload: Any) -> Any:
    if not isinstance(payload, dict):
        return None
    choices = payload.get("choices")
    if isinstance(choices, list) and choices:
        return choices[0]
    return None


def from_chat_message(payload: Any) -> Optional[str]:
    choice = _first_choice(payload)
    if not isinstance(choice, dict):
        return None
    message = choice.get("message")
    if isinstance(message, dict):
        content = message.get("content")
        if isinstance(content, str) and content:
            return content
    return None


def from_completion_text(payload: Any) -> Optional[str]:
    choice = _first_choice(payload)
    if not isinstance(choice, dict):
        return None
    text = choice.get("text")
    if isinstance(text, str) and text:
        return text
    return None


def from_empty_choices(payload: Any) -> Optional[str]:
    # Choices present but without text: the server answered, just with nothing.
    if _first_choice(payload) is not None:
        return ""
    return None


def from_response_field(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    value = payload.get("response")
    if not value:
        return None
    return value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)


def from_raw_string(payload: Any) -> Optional[str]:
    if isinstance(payload, str):
        return payload
    return None


def from_json_dump(payload: Any) -> Optional[str]:
    return json.dumps(payload, ensure_ascii=False)


RESPONSE_EXTRACTORS: Sequence[Extractor] = (
    from_chat_message,
    from_completion_text,
    from_empty_choices,
    from_response_field,
    from_raw_string,
    from_json_dump,
)


def extract_text(payload: Any, extractors: Sequence[Extractor] = RESPONSE_EXTRACTORS) -> str:
    """Return the generated text from ``payload`` using the first matching extractor."""

    for extractor in extractors:
        value = extractor(payload)
        if value is not None:
            return value
    return ""


def extract_model_names(payload: Any) -> List[str]:
    """Normalize a model listing response into a list of model identifiers."""

    if isinstance(payload, list):
        items = payload
    elif isinstance(payload, dict) and isinstance(payload.get("data"), list):
        items = payload["data"]
    elif isinstance(payload, dict) and isinstance(payload.get("models"), list):
        items = payload["models"]
    else:
        items = []

    names: List[str] = []
    for item in items:
        if isinstance(item, str):
            names.append(item)
        elif isinstance(item, dict) and item.get("id"):
            names.append(str(item["id"]))
        elif isinstance(item, dict) and item.get("name"):
            names.append(str(item["name"]))
        else:
            names.append(json.dumps(item, ensure_ascii=False))
    return names
