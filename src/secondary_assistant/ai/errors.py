"""Error hierarchy for the secondary API pipeline.

Every error raised by the pipeline derives from :class:`SecondaryAPIError` and
shares a consistent ``to_dict`` shape so failures can be logged or surfaced to
the user without special casing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar

__all__ = [
    "ErrorCode",
    "SecondaryAPIError",
    "ConfigurationError",
    "TransformError",
    "CallError",
    "PersistenceError",
]


_LOG_LEVELS: dict[str, int] = {
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class ErrorCode:
    """Constants for machine-readable error codes."""

    NOT_CONFIGURED = "not_configured"
    PATTERN_INVALID = "pattern_invalid"
    HTTP_STATUS = "http_status"
    TRANSPORT = "transport"
    PERSISTENCE = "persistence"


@dataclass
class SecondaryAPIError(Exception):
    """Base exception for the secondary API pipeline.

    Attributes:
        error_code: Machine-readable error identifier.
        message: Human-readable error description.
        details: Additional structured error information.
    """

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    severity: ClassVar[str] = "error"

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    @property
    def log_level(self) -> int:
        return _LOG_LEVELS.get(self.severity, logging.ERROR)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
            "severity": self.severity,
        }
        if self.details:
            result["details"] = dict(self.details)
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


@dataclass
class ConfigurationError(SecondaryAPIError):
    """The feature is disabled or no endpoint is configured.

    This is an expected outcome rather than a failure; callers abort silently.
    """

    error_code: str = ErrorCode.NOT_CONFIGURED
    message: str = "Secondary API is disabled or not configured"

    severity: ClassVar[str] = "info"


@dataclass
class TransformError(SecondaryAPIError):
    """A user-supplied regex pattern failed to compile."""

    error_code: str = ErrorCode.PATTERN_INVALID
    message: str = "Invalid transform pattern"
    pattern: str = ""

    severity: ClassVar[str] = "warning"

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.pattern:
            self.details.setdefault("pattern", self.pattern)


@dataclass
class CallError(SecondaryAPIError):
    """The remote endpoint answered with a non-success status or was unreachable."""

    error_code: str = ErrorCode.HTTP_STATUS
    message: str = "API request failed"
    status: int | None = None
    body: str = ""

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.status is not None:
            self.details.setdefault("status", self.status)
        if self.body:
            self.details.setdefault("body", self.body)

    @classmethod
    def from_status(cls, status: int, body: str) -> "CallError":
        return cls(
            message=f"API request failed: {status} - {body}",
            status=status,
            body=body,
        )

    @classmethod
    def from_transport(cls, exc: BaseException) -> "CallError":
        return cls(
            error_code=ErrorCode.TRANSPORT,
            message=f"API request failed: {exc}",
        )


@dataclass
class PersistenceError(SecondaryAPIError):
    """Saving the host transcript or refreshing its presentation failed."""

    error_code: str = ErrorCode.PERSISTENCE
    message: str = "Failed to persist injected result"
    index: int | None = None

    severity: ClassVar[str] = "warning"

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.index is not None:
            self.details.setdefault("index", self.index)
