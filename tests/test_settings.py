"""Tests for the settings persistence layer."""

from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path

import pytest

from wisp.services.settings import SecretVault, Settings, SettingsStore, SuggestionSettings, redact_secret
from wisp.suggest.options import SuggestionOptions


def _store(tmp_path: Path) -> SettingsStore:
    return SettingsStore(tmp_path / "settings.json", vault=SecretVault(key_path=tmp_path / "settings.key"))


def test_load_returns_defaults_when_file_missing(tmp_path: Path) -> None:
    assert _store(tmp_path).load() == Settings()


def test_save_and_load_roundtrip(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    original = Settings(
        base_url="https://example.com/v1",
        api_key="super-secret",
        model="gpt-4.1-mini",
        organization="acme",
        default_headers={"X-Test": "1"},
        metadata={"env": "dev"},
        suggestions=SuggestionSettings(idle_delay_ms=500, stop_sequences=["\n", "###"], accept_key="End"),
    )

    SettingsStore(path).save(original)
    reloaded = SettingsStore(path).load()

    assert reloaded == original


def test_api_key_is_encrypted_on_disk(tmp_path: Path) -> None:
    store = _store(tmp_path)

    store.save(Settings(api_key="super-secret"))
    payload = json.loads(store.path.read_text(encoding="utf-8"))

    assert "api_key" not in payload
    assert payload["api_key_ciphertext"].startswith("fernet:")
    assert "super-secret" not in store.path.read_text(encoding="utf-8")
    assert payload["version"] == 1


def test_load_legacy_plaintext_api_key_migrates(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.path.write_text(json.dumps({"base_url": "https://old", "api_key": "legacy-key"}), encoding="utf-8")

    settings = store.load()
    payload = json.loads(store.path.read_text(encoding="utf-8"))

    assert settings.api_key == "legacy-key"
    assert settings.base_url == "https://old"
    assert "api_key" not in payload
    assert "api_key_ciphertext" in payload


def test_invalid_json_falls_back_to_defaults(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.path.write_text("{not json", encoding="utf-8")

    assert store.load() == Settings()


def test_unknown_fields_and_bad_suggestions_are_ignored(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.path.write_text(
        json.dumps({"version": 1, "model": "m", "theme": "dark", "suggestions": {"idle_delay_ms": 300, "bogus": 1}}),
        encoding="utf-8",
    )

    settings = store.load()

    assert settings.model == "m"
    assert settings.suggestions.idle_delay_ms == 300


def test_cli_overrides_merge_nested_suggestions(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.save(Settings(suggestions=SuggestionSettings(idle_delay_ms=500, max_tokens=32)))

    settings = store.load(overrides={"model": "override", "suggestions": {"max_tokens": 64}, "unknown": 1})

    assert settings.model == "override"
    assert settings.suggestions.idle_delay_ms == 500
    assert settings.suggestions.max_tokens == 64


def test_environment_overrides_take_precedence(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    store = _store(tmp_path)
    store.save(Settings(model="saved"))
    monkeypatch.setenv("WISP_MODEL", "from-env")
    monkeypatch.setenv("WISP_API_KEY", "env-key")
    monkeypatch.setenv("WISP_DEBUG_LOGGING", "yes")
    monkeypatch.setenv("WISP_SUGGESTIONS_ENABLED", "off")
    monkeypatch.setenv("WISP_IDLE_DELAY_MS", "250")
    monkeypatch.setenv("WISP_SUGGESTION_TEMPERATURE", "0.9")

    settings = store.load(overrides={"model": "cli"})

    assert settings.model == "from-env"
    assert settings.api_key == "env-key"
    assert settings.debug_logging is True
    assert settings.suggestions.enabled is False
    assert settings.suggestions.idle_delay_ms == 250
    assert settings.suggestions.temperature == 0.9


def test_malformed_numeric_environment_override_is_ignored(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WISP_IDLE_DELAY_MS", "soon")
    monkeypatch.setenv("WISP_REQUEST_TIMEOUT", "forever")

    settings = _store(tmp_path).load()

    assert settings.suggestions.idle_delay_ms == SuggestionSettings().idle_delay_ms
    assert settings.request_timeout == Settings().request_timeout


def test_to_options_matches_defaults() -> None:
    assert SuggestionSettings().to_options() == SuggestionOptions()


def test_to_options_clamps_out_of_range_values() -> None:
    raw = SuggestionSettings(
        idle_delay_ms=0,
        min_prefix_chars=-5,
        max_tokens=10_000,
        temperature=7.5,
        timeout_ms=10,
        stop_sequences=["", "\n"],
    )

    options = raw.to_options()

    assert options.idle_delay_ms == 50
    assert options.min_prefix_chars == 0
    assert options.max_tokens == 512
    assert options.temperature == 2.0
    assert options.timeout_ms == 1_000
    assert options.stop_sequences == ("\n",)


def test_to_options_rejects_conflicting_keys() -> None:
    options = replace(SuggestionSettings(), accept_key="Escape", dismiss_key="Escape").to_options()

    assert (options.accept_key, options.dismiss_key) == ("Tab", "Escape")


def test_vault_reuses_key_between_instances(tmp_path: Path) -> None:
    token = SecretVault(key_path=tmp_path / "k").encrypt("hello")

    assert SecretVault(key_path=tmp_path / "k").decrypt(token) == "hello"
    with pytest.raises(ValueError):
        SecretVault(key_path=tmp_path / "other").decrypt(token)


@pytest.mark.parametrize(
    ("value", "expected"),
    [("", ""), ("abc", "***"), ("sk-123456", "sk*****56")],
)
def test_redact_secret(value: str, expected: str) -> None:
    assert redact_secret(value) == expected
