"""Transcript and context message data models."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Literal, Mapping, MutableMapping, Sequence

ChatRole = Literal["user", "assistant", "system"]

__all__ = [
    "ChatRole",
    "ContextMessage",
    "TranscriptEntry",
    "find_last_user_index",
    "is_user_record",
    "read_text",
    "write_text",
]


@dataclass(slots=True, frozen=True)
class ContextMessage:
    """One ``{role, content}`` pair sent to the secondary endpoint."""

    role: ChatRole
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(slots=True, frozen=True)
class TranscriptEntry:
    """Read-only view of a host transcript record at a given position."""

    index: int
    role: ChatRole
    text: str

    @classmethod
    def from_record(cls, index: int, record: Any) -> "TranscriptEntry":
        role: ChatRole = "user" if is_user_record(record) else "assistant"
        text = read_text(record)
        return cls(index=index, role=role, text=text if isinstance(text, str) else "")


def _field(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def is_user_record(record: Any) -> bool:
    """Return ``True`` when a host record was authored by the user.

    Hosts flag user turns either with ``is_user`` or with ``role == "user"``.
    """

    if record is None:
        return False
    return bool(_field(record, "is_user")) or _field(record, "role") == "user"


def read_text(record: Any) -> Any:
    """Return the raw body of a host record (``mes`` first, then ``text``)."""

    if record is None:
        return None
    value = _field(record, "mes")
    if value is None:
        value = _field(record, "text")
    return value


def write_text(record: Any, text: str) -> None:
    """Store ``text`` back into the body field the record already uses."""

    if isinstance(record, MutableMapping):
        key = "text" if "mes" not in record and "text" in record else "mes"
        record[key] = text
        return
    if hasattr(record, "mes") or not hasattr(record, "text"):
        setattr(record, "mes", text)
    else:
        setattr(record, "text", text)


def find_last_user_index(chat: Sequence[Any] | None) -> int | None:
    """Scan backward for the most recent user turn."""

    if not chat:
        return None
    for index in range(len(chat) - 1, -1, -1):
        if is_user_record(chat[index]):
            return index
    return None
