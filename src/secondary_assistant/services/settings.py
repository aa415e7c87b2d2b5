"""Settings dataclass and persistence helpers."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

__all__ = [
    "Settings",
    "SettingsStore",
    "SecretVault",
    "DebouncedSaver",
    "DEFAULT_MODEL",
    "current_model",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".secondary_assistant"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_PATH_ENV = "SECONDARY_ASSISTANT_SETTINGS"
_SETTINGS_VERSION = 2
_ENV_OVERRIDES: Mapping[str, str] = {
    "SECONDARY_ASSISTANT_API_URL": "api_url",
    "SECONDARY_ASSISTANT_API_KEY": "api_key",
    "SECONDARY_ASSISTANT_MODEL": "selected_model",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "SECONDARY_ASSISTANT_DEBUG_LOGGING": "debug_logging",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "SECONDARY_ASSISTANT_TEMPERATURE": "temperature",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "SECONDARY_ASSISTANT_CONTEXT_COUNT": "context_count",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_API_KEY_FIELD = "api_key_ciphertext"
# legacy single-pattern field -> pattern field it seeds
_LEGACY_PATTERN_FIELDS: Mapping[str, str] = {
    "input_regex": "input_regex_pattern",
    "output_regex": "output_regex_pattern",
}
DEFAULT_MODEL = "gpt-4o-mini"


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions."""

    enabled: bool = True
    api_url: str = ""
    api_key: str = ""
    model_endpoint: str = "/models"
    selected_model: str = ""
    custom_model: str = ""
    use_custom_model: bool = False
    system_prompt: str = "You are a helpful assistant analyzing the conversation."
    context_count: int = 10
    temperature: float = 0.7
    max_tokens: int = 500
    input_regex_pattern: str = ""
    input_regex_replace: str = ""
    output_regex_pattern: str = ""
    output_regex_replace: str = ""
    input_regex: str = ""
    output_regex: str = ""
    trigger_on_send: bool = True
    trigger_on_enter: bool = False
    trigger_on_button: bool = False
    cooldown_seconds: float = 3.0
    settle_delay_seconds: float = 0.8
    request_timeout: float | None = None
    save_debounce_seconds: float = 1.0
    debug_logging: bool = False
    models_cache: list[str] = field(default_factory=list)
    results: list[dict[str, Any]] = field(default_factory=list)


def current_model(settings: Settings) -> str:
    """Resolve the model name sent with each request."""

    if settings.use_custom_model and settings.custom_model:
        return settings.custom_model
    if settings.selected_model:
        return settings.selected_model
    return DEFAULT_MODEL


class SecretProvider(ABC):
    """Interface for encrypting and decrypting sensitive strings."""

    name: str = "unknown"

    @abstractmethod
    def encrypt(self, secret: str) -> str:
        """Return an encoded representation of ``secret`` suitable for storage."""

    @abstractmethod
    def decrypt(self, token: str) -> str:
        """Return the plaintext representation of ``token``."""


class FernetSecretProvider(SecretProvider):
    """Secret provider that uses a symmetric Fernet key stored on disk."""

    name = "fernet"

    def __init__(self, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._fernet: Fernet | None = None

    def encrypt(self, secret: str) -> str:
        token = self._get_fernet().encrypt(secret.encode("utf-8"))
        return token.decode("ascii")

    def decrypt(self, token: str) -> str:
        raw = self._get_fernet().decrypt(token.encode("ascii"))
        return raw.decode("utf-8")

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._load_or_create_key())
        return self._fernet

    def _load_or_create_key(self) -> bytes:
        path = self._key_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            return path.read_bytes().strip()
        key = Fernet.generate_key()
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_bytes(key)
        if os.name != "nt":  # pragma: no cover - depends on OS
            os.chmod(tmp_path, 0o600)
        tmp_path.replace(path)
        return key


class SecretVault:
    """Encrypts and decrypts the API key for settings persistence."""

    def __init__(
        self,
        *,
        key_path: Path | None = None,
        provider: SecretProvider | None = None,
    ) -> None:
        self._provider = provider or FernetSecretProvider(key_path)

    @property
    def strategy(self) -> str:
        return self._provider.name

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        return f"{self._provider.name}:{self._provider.encrypt(secret)}"

    def decrypt(self, token: str | None) -> str:
        if not token:
            return ""
        prefix, payload = self._split_token(token)
        if prefix not in (None, self._provider.name):
            LOGGER.warning("Unknown secret token prefix %s; returning ciphertext.", prefix)
            return token
        try:
            return self._provider.decrypt(payload)
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc

    @staticmethod
    def _split_token(token: str) -> tuple[str | None, str]:
        if ":" not in token:
            return None, token
        prefix, payload = token.split(":", 1)
        return (prefix or None), payload


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        env_path = os.environ.get(_SETTINGS_PATH_ENV)
        self._path = path or (Path(env_path).expanduser() if env_path else _DEFAULT_SETTINGS_PATH)
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))
        # field -> (persisted value, override value) for the last load()
        self._runtime_overrides: Dict[str, tuple[Any, Any]] = {}

    @property
    def path(self) -> Path:
        return self._path

    @property
    def overridden_fields(self) -> list[str]:
        """Fields whose current value came from a CLI or environment override."""

        return sorted(self._runtime_overrides)

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, migrating legacy fields and applying overrides."""

        payload = self._read_payload()
        settings = Settings()
        needs_migration = False
        self._runtime_overrides = {}

        if payload:
            plaintext_key, key_migrated = self._decrypt_api_key(
                payload.pop(_API_KEY_FIELD, None),
                payload.pop("api_key", None) or payload.pop("apiKey", None),
            )
            data = _filter_fields(payload)
            patterns_migrated = _migrate_legacy_patterns(data)
            needs_migration = key_migrated or patterns_migrated
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
            if plaintext_key:
                settings = replace(settings, api_key=plaintext_key)

        LOGGER.debug(
            "Settings loaded from %s: %d result(s), %d cached model(s)",
            self._path,
            len(settings.results),
            len(settings.models_cache),
        )

        version_mismatch = bool(payload) and payload.get("version") != _SETTINGS_VERSION
        if needs_migration or version_mismatch:
            try:
                self.save(settings)
            except OSError as exc:  # pragma: no cover - depends on filesystem
                LOGGER.warning("Failed to migrate settings payload: %s", exc)

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")
        return self._apply_env_overrides(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        body = json.dumps(self._serialize(settings), indent=2, sort_keys=True, ensure_ascii=False)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s: %d result(s)", self._path, len(settings.results))
        return self._path

    def _serialize(self, settings: Settings) -> Dict[str, Any]:
        data = asdict(settings)
        # Overrides last one run; fields still holding them are saved as loaded.
        for name, (persisted, runtime) in self._runtime_overrides.items():
            if data.get(name) == runtime:
                data[name] = persisted
        api_key = data.pop("api_key", "") or ""
        ciphertext = self._encrypt_api_key(api_key)
        if ciphertext:
            data[_API_KEY_FIELD] = ciphertext
        for legacy, current in _LEGACY_PATTERN_FIELDS.items():
            data[legacy] = data.get(current, "")
        data["version"] = _SETTINGS_VERSION
        data["secret_backend"] = self._vault.strategy
        return data

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(data, dict):
            LOGGER.warning("Settings file %s does not hold an object; ignoring it", self._path)
            return {}
        return data

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        allowed = {item.name for item in fields(Settings)}
        filtered = {key: value for key, value in overrides.items() if key in allowed and value is not None}
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            for name, value in filtered.items():
                persisted = self._runtime_overrides.get(name, (getattr(settings, name), None))[0]
                self._runtime_overrides[name] = (persisted, value)
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid integer", env_name, value)
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid float", env_name, value)
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings

    def _encrypt_api_key(self, api_key: str) -> str | None:
        if not api_key:
            return None
        try:
            return self._vault.encrypt(api_key)
        except (OSError, ValueError) as exc:  # pragma: no cover - extremely rare
            LOGGER.warning("Failed to encrypt API key: %s", exc)
            return None

    def _decrypt_api_key(
        self, ciphertext: str | None, legacy_plaintext: str | None
    ) -> tuple[str, bool]:
        if ciphertext:
            try:
                return self._vault.decrypt(ciphertext), False
            except ValueError as exc:
                LOGGER.warning("Unable to decrypt API key: %s", exc)
                return "", False
        if legacy_plaintext:
            LOGGER.info("Detected legacy plaintext API key; migrating to encrypted storage.")
            return legacy_plaintext, True
        return "", False


class DebouncedSaver:
    """Coalesces bursts of settings mutations into a single save.

    When an event loop is running the save is scheduled ``delay`` seconds after
    the most recent request; without a loop the save happens immediately.
    """

    def __init__(self, save: Callable[[], Any], *, delay: float = 1.0) -> None:
        self._save = save
        self._delay = max(0.0, delay)
        self._handle: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def request(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.flush()
            return
        if self._handle is not None:
            self._handle.cancel()
        self._handle = loop.call_later(self._delay, self._fire)

    def flush(self) -> None:
        """Cancel any pending timer and save now."""

        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._run()

    def _fire(self) -> None:
        self._handle = None
        self._run()

    def _run(self) -> None:
        try:
            self._save()
        except OSError as exc:
            LOGGER.warning("Debounced settings save failed: %s", exc)

    @classmethod
    def for_store(cls, store: SettingsStore, settings: Settings) -> "DebouncedSaver":
        return cls(lambda: store.save(settings), delay=settings.save_debounce_seconds)


def _camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


# Browser builds of the extension stored camelCase keys.
_CAMEL_CASE_ALIASES: Mapping[str, str] = {
    _camel_case(item.name): item.name for item in fields(Settings) if "_" in item.name
}


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {item.name for item in fields(Settings)} - {"api_key"}
    result: Dict[str, Any] = {}
    for key, value in payload.items():
        name = key if key in allowed else _CAMEL_CASE_ALIASES.get(key)
        if name is None or name not in allowed:
            continue
        if name != key and name in payload:
            continue
        result[name] = value
    return result


def _migrate_legacy_patterns(data: Dict[str, Any]) -> bool:
    migrated = False
    for legacy, current in _LEGACY_PATTERN_FIELDS.items():
        legacy_value = data.get(legacy)
        if legacy_value and not data.get(current):
            data[current] = legacy_value
            migrated = True
    return migrated


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
