"""Settings dataclasses and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

from ..suggest.options import SuggestionOptions

__all__ = [
    "Settings",
    "SettingsStore",
    "SecretVault",
    "SuggestionSettings",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".wisp"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_API_KEY_FIELD = "api_key_ciphertext"


def _env_bool(value: str) -> bool:
    return value.strip().lower() in _TRUE_VALUES


# Dotted targets address fields of the nested suggestion settings.
_ENV_OVERRIDES: tuple[tuple[str, str, Callable[[str], Any]], ...] = (
    ("WISP_API_KEY", "api_key", str),
    ("WISP_BASE_URL", "base_url", str),
    ("WISP_MODEL", "model", str),
    ("WISP_ORGANIZATION", "organization", str),
    ("WISP_DEBUG_LOGGING", "debug_logging", _env_bool),
    ("WISP_REQUEST_TIMEOUT", "request_timeout", float),
    ("WISP_SUGGESTIONS_ENABLED", "suggestions.enabled", _env_bool),
    ("WISP_IDLE_DELAY_MS", "suggestions.idle_delay_ms", int),
    ("WISP_SUGGESTION_MAX_TOKENS", "suggestions.max_tokens", int),
    ("WISP_SUGGESTION_TIMEOUT_MS", "suggestions.timeout_ms", int),
    ("WISP_SUGGESTION_TEMPERATURE", "suggestions.temperature", float),
)

_MIN_IDLE_DELAY_MS = 50
_MAX_SUGGESTION_TOKENS = 512
_MIN_TIMEOUT_MS = 1_000


@dataclass(slots=True)
class SuggestionSettings:
    """Inline suggestion preferences surfaced to users."""

    enabled: bool = True
    idle_delay_ms: int = 800
    min_prefix_chars: int = 24
    max_prefix_chars: int = 4_000
    max_suffix_chars: int = 2_000
    max_tokens: int = 48
    temperature: float = 0.4
    timeout_ms: int = 15_000
    stop_sequences: list[str] = field(default_factory=lambda: ["\n\n"])
    accept_key: str = "Tab"
    dismiss_key: str = "Escape"

    def to_options(self) -> SuggestionOptions:
        """Clamp persisted values into a valid :class:`SuggestionOptions`."""

        accept_key = (self.accept_key or "Tab").strip() or "Tab"
        dismiss_key = (self.dismiss_key or "Escape").strip() or "Escape"
        if accept_key == dismiss_key:
            LOGGER.warning("Accept and dismiss keys are both %s; using defaults.", accept_key)
            accept_key, dismiss_key = "Tab", "Escape"
        return SuggestionOptions(
            enabled=bool(self.enabled),
            idle_delay_ms=max(_MIN_IDLE_DELAY_MS, _as_int(self.idle_delay_ms, 800)),
            min_prefix_chars=max(0, _as_int(self.min_prefix_chars, 24)),
            max_prefix_chars=max(0, _as_int(self.max_prefix_chars, 4_000)),
            max_suffix_chars=max(0, _as_int(self.max_suffix_chars, 2_000)),
            max_tokens=max(1, min(_as_int(self.max_tokens, 48), _MAX_SUGGESTION_TOKENS)),
            temperature=max(0.0, min(_as_float(self.temperature, 0.4), 2.0)),
            timeout_ms=max(_MIN_TIMEOUT_MS, _as_int(self.timeout_ms, 15_000)),
            stop_sequences=tuple(str(stop) for stop in (self.stop_sequences or []) if stop),
            accept_key=accept_key,
            dismiss_key=dismiss_key,
        )


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions."""

    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    organization: str | None = None
    request_timeout: float = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    font_family: str = "JetBrains Mono"
    font_size: int = 13
    debug_logging: bool = False
    suggestions: SuggestionSettings = field(default_factory=SuggestionSettings)


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH
        key_path = self._path.with_suffix(".key")
        self._vault = vault or SecretVault(key_path=key_path)

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, applying CLI/environment overrides when present."""

        payload = self._read_payload()
        settings = Settings()
        needs_migration = False

        if payload:
            plaintext_key, migrated = self._decrypt_api_key(
                payload.pop(_API_KEY_FIELD, None), payload.pop("api_key", None)
            )
            needs_migration = migrated
            data = _filter_fields(payload)
            suggestion_payload = data.get("suggestions")
            if isinstance(suggestion_payload, Mapping):
                data["suggestions"] = _coerce_suggestions(suggestion_payload)
            elif "suggestions" in data:
                data["suggestions"] = SuggestionSettings()
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
            if plaintext_key:
                settings = replace(settings, api_key=plaintext_key)

        version_mismatch = bool(payload) and payload.get("version") != _SETTINGS_VERSION
        if needs_migration or version_mismatch:
            try:
                self.save(settings)
            except Exception as exc:  # pragma: no cover - defensive guard
                LOGGER.warning("Failed to migrate settings payload: %s", exc)

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")

        return self._apply_env_overrides(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        payload = self._serialize(settings)
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _serialize(self, settings: Settings) -> Dict[str, Any]:
        data = asdict(settings)
        api_key = data.pop("api_key", "") or ""
        ciphertext = self._encrypt_api_key(api_key)
        if ciphertext:
            data[_API_KEY_FIELD] = ciphertext
        data["version"] = _SETTINGS_VERSION
        return data

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            text = self._path.read_text(encoding="utf-8")
            payload = json.loads(text)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s does not contain an object", self._path)
            return {}
        return payload

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        allowed = {item.name for item in fields(Settings)}
        filtered: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in allowed or value is None:
                continue
            filtered[key] = value
        suggestion_override = filtered.get("suggestions")
        if isinstance(suggestion_override, Mapping):
            merged = asdict(settings.suggestions)
            merged.update(suggestion_override)
            filtered["suggestions"] = _coerce_suggestions(merged)
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, target, parse in _ENV_OVERRIDES:
            raw = os.environ.get(env_name)
            if raw is None:
                continue
            try:
                value = parse(raw)
            except ValueError:
                LOGGER.warning("Ignoring environment override %s=%r", env_name, raw)
                continue
            section, _, name = target.rpartition(".")
            bucket = overrides.setdefault(section, {}) if section else overrides
            bucket[name] = value
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings

    def _encrypt_api_key(self, api_key: str) -> str | None:
        if not api_key:
            return None
        try:
            return self._vault.encrypt(api_key)
        except Exception as exc:  # pragma: no cover - extremely rare
            LOGGER.warning("Failed to encrypt API key: %s", exc)
            return None

    def _decrypt_api_key(
        self, ciphertext: str | None, legacy_plaintext: str | None
    ) -> tuple[str, bool]:
        if ciphertext:
            try:
                return self._vault.decrypt(ciphertext), False
            except Exception as exc:  # pragma: no cover - defensive guard
                LOGGER.warning("Unable to decrypt API key: %s", exc)
                return "", False
        if legacy_plaintext:
            LOGGER.info("Detected legacy plaintext API key; migrating to encrypted storage.")
            return legacy_plaintext, True
        return "", False


class SecretVault:
    """Encrypts and decrypts the API key with a Fernet key stored beside the settings."""

    name = "fernet"

    def __init__(self, *, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._fernet: Fernet | None = None

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        token = self._get_fernet().encrypt(secret.encode("utf-8")).decode("ascii")
        return f"{self.name}:{token}"

    def decrypt(self, token: str | None) -> str:
        if not token:
            return ""
        prefix, _, payload = token.partition(":")
        if not payload:
            prefix, payload = self.name, token
        if prefix != self.name:
            raise ValueError(f"Unknown secret token prefix {prefix!r}")
        try:
            return self._get_fernet().decrypt(payload.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc

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


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {item.name for item in fields(Settings)} - {"api_key"}
    return {key: value for key, value in payload.items() if key in allowed}


def _coerce_suggestions(payload: Mapping[str, Any]) -> SuggestionSettings:
    allowed = {item.name for item in fields(SuggestionSettings)}
    data = {key: value for key, value in payload.items() if key in allowed}
    try:
        return SuggestionSettings(**data)
    except TypeError:
        LOGGER.warning("Ignoring malformed suggestion settings payload")
        return SuggestionSettings()


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
