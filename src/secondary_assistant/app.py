"""Command-line bootstrap for the secondary assistant.

The browser host normally drives :class:`SecondaryPipeline` through its event
bus. This module exposes the same manual actions (test call, model refresh,
result management) against a transcript stored as JSON on disk.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, get_args, get_origin, get_type_hints

from .ai.ai_types import Notice
from .ai.orchestration.orchestrator import SecondaryCallOrchestrator
from .ai.orchestration.pipeline import SecondaryPipeline
from .ai.orchestration.trigger import Trigger, TriggerSource
from .services.ledger import ResultLedger
from .services.settings import DebouncedSaver, Settings, SettingsStore, redact_secret
from .utils import logging as logging_utils
from .utils.file_io import read_json, write_text

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    level = logging.DEBUG if debug else logging.INFO
    logging_utils.setup_logging(level, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return Settings()


@dataclass(slots=True)
class FileTranscriptHost:
    """Transcript host backed by a JSON file holding a list of turns."""

    path: Path
    chat: List[Dict[str, Any]] = field(default_factory=list)
    wrapped: bool = False

    @classmethod
    def open(cls, path: Path) -> "FileTranscriptHost":
        payload = read_json(path)
        if isinstance(payload, Mapping):
            records = payload.get("chat")
            wrapped = True
        else:
            records = payload
            wrapped = False
        if not isinstance(records, list):
            raise ValueError(f"{path} does not contain a chat transcript list")
        invalid = [position for position, item in enumerate(records) if not isinstance(item, Mapping)]
        if invalid:
            raise ValueError(f"{path} has non-object chat entries at positions {invalid}")
        return cls(path=path, chat=[dict(item) for item in records], wrapped=wrapped)

    def save_chat(self) -> None:
        payload: Any = {"chat": self.chat} if self.wrapped else self.chat
        write_text(self.path, json.dumps(payload, indent=2, ensure_ascii=False))


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the ``secondary-assistant`` console script."""

    parser = _build_parser()
    args = parser.parse_args(argv)

    debug = bool(args.debug) or _env_flag("SECONDARY_ASSISTANT_DEBUG", default=False)
    configure_logging(debug)

    resolved_path = Path(args.settings_path).expanduser() if args.settings_path else None
    store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return 2

    settings = load_settings(store=store, overrides=cli_overrides or None)
    if settings.debug_logging and not debug:
        configure_logging(True, force=True)

    if args.dump_settings:
        _dump_settings(settings, store, overrides=cli_overrides)
        return 0
    if not args.command:
        parser.print_help()
        return 1

    saver = DebouncedSaver.for_store(store, settings)
    try:
        if args.command == "results":
            return _run_results(args, settings, saver)
        return asyncio.run(_run_async(args, settings, saver))
    finally:
        if saver.pending:
            saver.flush()


async def _run_async(args: argparse.Namespace, settings: Settings, saver: DebouncedSaver) -> int:
    if args.command == "models":
        pipeline = SecondaryPipeline(
            settings,
            FileTranscriptHost(path=Path(os.devnull)),
            orchestrator=SecondaryCallOrchestrator(),
            save_settings=saver.request,
        )
        notice = await pipeline.fetch_models()
        if notice.ok:
            for name in settings.models_cache:
                print(name)
        return _report(notice)

    try:
        host = FileTranscriptHost.open(Path(args.transcript))
    except (OSError, ValueError) as exc:
        print(f"Unable to read transcript: {exc}", file=sys.stderr)
        return 2

    pipeline = SecondaryPipeline(
        settings,
        host,
        orchestrator=SecondaryCallOrchestrator(),
        save_settings=saver.request,
    )
    if not args.inject:
        return _report(await pipeline.test_call())

    record = await pipeline.handle_trigger(Trigger(TriggerSource.MANUAL))
    if record is None:
        return _report(Notice(False, "API call failed or returned empty result. See log for details."))
    print(record.output)
    return _report(Notice(True, "Result recorded and injected."))


def _run_results(args: argparse.Namespace, settings: Settings, saver: DebouncedSaver) -> int:
    ledger = ResultLedger(settings, on_change=saver.request)
    action = args.results_action
    if action == "list":
        for position, entry in enumerate(ledger.newest_first()):
            print(f"[{position}] {entry.timestamp} {entry.model}: {entry.output}")
        return 0
    if action == "export":
        target = ledger.export_to(args.output_dir)
        print(target)
        return 0
    if action == "remove":
        try:
            if args.newest_first:
                ledger.remove_display(args.index)
            else:
                ledger.remove(args.index)
        except IndexError as exc:
            print(str(exc), file=sys.stderr)
            return 1
        return 0
    if action == "clear":
        count = ledger.clear()
        print(f"Cleared {count} result(s).")
        return 0
    return 1


def _report(notice: Notice) -> int:
    stream = sys.stdout if notice.ok else sys.stderr
    print(notice.message, file=stream)
    return 0 if notice.ok else 1


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="secondary-assistant",
        description="Run secondary API calls against a chat transcript and manage their results.",
    )
    parser.add_argument("--settings-path", metavar="PATH", help="Override the default settings file path.")
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    commands = parser.add_subparsers(dest="command")

    call = commands.add_parser("call", help="Run one secondary call against a transcript file.")
    call.add_argument("transcript", help="JSON file holding the chat turns.")
    call.add_argument(
        "--inject",
        action="store_true",
        help="Append the result to the last user turn and save the transcript.",
    )

    commands.add_parser("models", help="Fetch and cache the model list.")

    results = commands.add_parser("results", help="Inspect or edit the result history.")
    result_actions = results.add_subparsers(dest="results_action", required=True)
    result_actions.add_parser("list", help="List results, newest first.")
    export = result_actions.add_parser("export", help="Write all results to a JSON file.")
    export.add_argument("--output-dir", default=".", help="Directory for the export file.")
    remove = result_actions.add_parser("remove", help="Delete one result.")
    remove.add_argument("index", type=int)
    remove.add_argument(
        "--newest-first",
        action="store_true",
        help="Interpret INDEX as a position in the newest-first listing.",
    )
    result_actions.add_parser("clear", help="Delete every result.")
    return parser


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _dump_settings(settings: Settings, store: SettingsStore, *, overrides: Mapping[str, Any]) -> None:
    payload = asdict(settings)
    payload["api_key"] = redact_secret(settings.api_key)
    payload["results"] = f"<{len(settings.results)} result(s)>"
    payload["_settings_path"] = str(store.path)
    if overrides:
        payload["_cli_overrides"] = sorted(overrides)
    if store.overridden_fields:
        payload["_not_persisted"] = store.overridden_fields
    print(json.dumps(payload, indent=2, sort_keys=True))


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        overrides[key] = _coerce_value(type_hints.get(key, fields[key].type), raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = _resolve_annotation(annotation)
    normalized = raw_value.strip()

    if normalized.lower() in {"none", "null"} and target is not str:
        return None
    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    if target is list:
        try:
            return json.loads(normalized or "[]")
        except json.JSONDecodeError as exc:
            raise ValueError("List overrides must be valid JSON arrays") from exc
    return normalized


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin in {list, dict}:
        return origin
    # Optional[X] / X | None resolve to X
    candidates = [arg for arg in get_args(annotation) if arg is not type(None)]
    if len(candidates) == 1:
        return _resolve_annotation(candidates[0])
    return Any


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot interpret '{value}' as a boolean")


if __name__ == "__main__":  # pragma: no cover - manual invocation
    raise SystemExit(main())
