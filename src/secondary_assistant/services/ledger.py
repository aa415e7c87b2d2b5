"""Chronological history of secondary API results."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, List, Mapping

from ..utils.file_io import write_text
from .settings import Settings

__all__ = ["CallResult", "ResultLedger", "export_filename"]

LOGGER = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def export_filename(timestamp_ms: int) -> str:
    return f"secondary-api-results-{timestamp_ms}.json"


@dataclass(slots=True, frozen=True)
class CallResult:
    """One recorded secondary call; immutable once created."""

    timestamp: int
    input: str
    output: str
    model: str

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "CallResult":
        return cls(
            timestamp=int(payload.get("timestamp") or 0),
            input=str(payload.get("input") or ""),
            output=str(payload.get("output") or ""),
            model=str(payload.get("model") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ResultLedger:
    """Append-only result history stored inside :attr:`Settings.results`.

    Positions passed to :meth:`remove` are chronological (oldest first). Views
    that list newest first should use :meth:`remove_display`.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        on_change: Callable[[], None] | None = None,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._settings = settings
        self._on_change = on_change
        self._clock = clock
        if not isinstance(settings.results, list):
            settings.results = []

    def __len__(self) -> int:
        return len(self._settings.results)

    def entries(self) -> List[CallResult]:
        return [CallResult.from_dict(item) for item in self._settings.results if isinstance(item, Mapping)]

    def newest_first(self) -> List[CallResult]:
        return list(reversed(self.entries()))

    def add(self, input: Any, output: str, model: str) -> CallResult:
        serialized = input if isinstance(input, str) else json.dumps(input, indent=2, ensure_ascii=False)
        entry = CallResult(timestamp=self._clock(), input=serialized, output=output, model=model)
        self._settings.results.append(entry.to_dict())
        LOGGER.debug("Recorded secondary result #%s (model=%s)", len(self._settings.results), model)
        self._changed()
        return entry

    def remove(self, index: int) -> CallResult:
        results = self._settings.results
        if index < 0 or index >= len(results):
            raise IndexError(f"Result index {index} is out of range")
        removed = CallResult.from_dict(results.pop(index))
        self._changed()
        return removed

    def remove_display(self, position: int) -> CallResult:
        """Remove the entry shown at ``position`` in a newest-first listing."""

        return self.remove(len(self._settings.results) - 1 - position)

    def clear(self) -> int:
        count = len(self._settings.results)
        self._settings.results = []
        self._changed()
        return count

    def export(self) -> str:
        return json.dumps(list(self._settings.results), indent=2, ensure_ascii=False)

    def export_to(self, directory: Path | str) -> Path:
        target = Path(directory) / export_filename(self._clock())
        write_text(target, self.export())
        LOGGER.info("Exported %s result(s) to %s", len(self), target)
        return target

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()
