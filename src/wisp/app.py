"""Application bootstrap helpers for the Wisp desktop editor."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import os
import sys
from dataclasses import asdict, dataclass, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, cast, get_args, get_origin, get_type_hints

from .ai.client import ClientSettings, CompletionBackend
from .services.settings import Settings, SettingsStore, SuggestionSettings, redact_secret
from .suggest.registry import SuggestionRegistry
from .suggest.state import SuggestionState
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_SUGGESTION_PREFIX = "suggestions."
_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class QtRuntime:
    """Container returned by :func:`create_qapp`."""

    app: Any
    loop: asyncio.AbstractEventLoop


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    """Configure structured logging for the application."""

    level = logging.DEBUG if debug else logging.INFO
    logging_utils.setup_logging(level, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))
    _install_qt_message_handler()


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        settings = active_store.load(overrides=overrides)
    except Exception as exc:  # pragma: no cover - defensive path
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        settings = Settings()
    return settings


def build_client_settings(settings: Settings, *, debug_logging: bool = False) -> ClientSettings:
    return ClientSettings(
        base_url=settings.base_url,
        api_key=settings.api_key,
        model=settings.model,
        organization=settings.organization,
        request_timeout=settings.request_timeout,
        max_retries=settings.max_retries,
        retry_min_seconds=settings.retry_min_seconds,
        retry_max_seconds=settings.retry_max_seconds,
        default_headers=settings.default_headers,
        metadata=settings.metadata,
        debug_logging=debug_logging or settings.debug_logging,
    )


def create_qapp(settings: Settings) -> QtRuntime:
    """Create a qasync-powered QApplication instance."""

    from PySide6.QtWidgets import QApplication
    from qasync import QEventLoop

    os.environ.setdefault("QT_ENABLE_HIGHDPI_SCALING", "1")
    app = cast(Any, QApplication.instance() or QApplication(sys.argv))
    app.setApplicationName("Wisp")
    app.setApplicationDisplayName("Wisp")

    loop = QEventLoop(app)
    asyncio.set_event_loop(loop)
    app.aboutToQuit.connect(loop.stop)
    _LOGGER.debug("Qt runtime ready (model=%s)", settings.model)
    return QtRuntime(app=app, loop=loop)


def create_window(settings: Settings, registry: SuggestionRegistry | None) -> Any:
    """Build the main window: one ghost-text editor with suggestions attached."""

    from PySide6.QtGui import QAction, QFont, QKeySequence
    from PySide6.QtWidgets import QMainWindow

    from .editor.qt_editor import GhostTextEdit, QtEditorSurface

    window = QMainWindow()
    window.setWindowTitle("Wisp")
    window.resize(900, 640)
    editor = GhostTextEdit(window)
    editor.setFont(QFont(settings.font_family, settings.font_size))
    window.setCentralWidget(editor)
    surface = QtEditorSurface(editor)
    status = window.statusBar()

    if registry is None:
        status.showMessage("Inline suggestions unavailable")
        return window

    engine = registry.attach(surface)

    def _show_state(state: SuggestionState) -> None:
        if state.pending:
            status.showMessage("Suggesting…")
        elif state.suggestion_text:
            status.showMessage("Tab to accept, Esc to dismiss")
        else:
            status.clearMessage()

    engine.add_state_listener(_show_state)

    toggle = QAction("Inline Suggestions", window)
    toggle.setCheckable(True)
    toggle.setChecked(engine.enabled)
    toggle.setShortcut(QKeySequence("Ctrl+Shift+Space"))
    toggle.toggled.connect(registry.set_enabled)
    window.addAction(toggle)
    window.menuBar().addMenu("&Edit").addAction(toggle)
    return window


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point invoked by the `wisp` console script."""

    args, passthrough = _parse_cli_args(argv)
    _rewrite_sys_argv(passthrough)

    debug = _env_flag("WISP_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("WISP_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return

    if settings.debug_logging and not debug:
        logging_utils.set_level(logging.DEBUG)
        debug = True

    backend = _build_backend(settings, debug_logging=debug)
    runtime = create_qapp(settings)
    registry = None
    if backend is not None:
        registry = SuggestionRegistry(backend, settings.suggestions.to_options(), loop=runtime.loop)
    window = create_window(settings, registry)
    window.show()

    loop = runtime.loop
    try:
        loop.run_forever()
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Shutdown requested by user.")
    finally:
        if registry is not None:
            registry.close()
        with contextlib.suppress(RuntimeError):
            loop.run_until_complete(_shutdown_backend(backend))
        _drain_event_loop(loop)
        loop.close()


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _build_backend(settings: Settings, *, debug_logging: bool = False) -> CompletionBackend | None:
    """Construct the completion backend, or ``None`` when the client cannot be built."""

    if not settings.api_key:
        _LOGGER.info("No API key configured; requests go to %s unauthenticated.", settings.base_url)
    try:
        return CompletionBackend(build_client_settings(settings, debug_logging=debug_logging))
    except Exception as exc:  # pragma: no cover - dependency/config errors
        _LOGGER.warning("Completion backend unavailable: %s", exc)
        return None


def _drain_event_loop(loop: asyncio.AbstractEventLoop) -> None:
    """Cancel outstanding tasks and shutdown async machinery before closing."""

    if loop.is_closed():
        return

    async def _cleanup() -> None:
        current_task = asyncio.current_task()
        tasks = [task for task in asyncio.all_tasks(loop) if not task.done() and task is not current_task]
        if tasks:
            _LOGGER.debug("Canceling %s pending asyncio task(s) before shutdown.", len(tasks))
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        with contextlib.suppress(RuntimeError, NotImplementedError):
            await loop.shutdown_asyncgens()

    try:
        loop.run_until_complete(_cleanup())
    except RuntimeError as exc:  # pragma: no cover - defensive guard
        _LOGGER.debug("Unable to drain asyncio loop: %s", exc)


async def _shutdown_backend(backend: CompletionBackend | None) -> None:
    """Close the completion backend to release network resources."""

    if backend is None:
        return
    try:
        await backend.aclose()
    except Exception as exc:  # pragma: no cover - defensive logging
        _LOGGER.debug("Completion backend shutdown failed: %s", exc)


def _install_qt_message_handler() -> None:
    """Redirect Qt warnings to the Python logging stack."""

    from PySide6.QtCore import QtMsgType, qInstallMessageHandler

    level_map = {
        QtMsgType.QtDebugMsg: logging.DEBUG,
        QtMsgType.QtInfoMsg: logging.INFO,
        QtMsgType.QtWarningMsg: logging.WARNING,
        QtMsgType.QtCriticalMsg: logging.ERROR,
        QtMsgType.QtFatalMsg: logging.CRITICAL,
    }

    def _handler(mode, context, message):  # type: ignore[no-untyped-def]
        del context
        logging.getLogger("PySide6").log(level_map.get(mode, logging.INFO), message)

    qInstallMessageHandler(_handler)


def _parse_cli_args(argv: Sequence[str] | None) -> tuple[argparse.Namespace, list[str]]:
    parser = argparse.ArgumentParser(
        prog="wisp",
        add_help=True,
        description="Launch the Wisp editor with inline suggestions or inspect its configuration.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.wisp/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings before launch (repeatable; use suggestions.<field> for suggestion options).",
    )
    return parser.parse_known_args(argv)


def _rewrite_sys_argv(passthrough: Sequence[str]) -> None:
    program = sys.argv[0] if sys.argv else "wisp"
    sys.argv = [program, *passthrough]


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    settings_hints = get_type_hints(Settings)
    suggestion_hints = get_type_hints(SuggestionSettings)
    settings_fields = {item.name for item in fields(Settings)}
    suggestion_fields = {item.name for item in fields(SuggestionSettings)}
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key.startswith(_SUGGESTION_PREFIX):
            name = key[len(_SUGGESTION_PREFIX):]
            if name not in suggestion_fields:
                raise ValueError(f"Unknown suggestion setting '{name}'.")
            nested = overrides.setdefault("suggestions", {})
            if not isinstance(nested, dict):
                raise ValueError("Cannot combine 'suggestions' with 'suggestions.<field>' overrides.")
            nested[name] = _coerce_value(suggestion_hints[name], raw_value)
            continue
        if key not in settings_fields:
            raise ValueError(f"Unknown setting '{key}'.")
        if key == "suggestions" and key in overrides:
            raise ValueError("Cannot combine 'suggestions' with 'suggestions.<field>' overrides.")
        overrides[key] = _coerce_value(settings_hints[key], raw_value)
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = _resolve_annotation(annotation)
    normalized = raw_value.strip()
    optional = type(None) in get_args(annotation)

    if optional and normalized.lower() in {"none", "null"}:
        return None
    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    if is_dataclass(target) or target in {list, dict}:
        default = "[]" if target is list else "{}"
        try:
            payload = json.loads(normalized or default)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Override for {getattr(target, '__name__', target)} must be valid JSON") from exc
        expected = dict if is_dataclass(target) else target
        if not isinstance(payload, expected):
            raise ValueError(f"Override must be a JSON {expected.__name__}")
        return payload
    return normalized


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin in {list, dict}:
        return origin
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return args[0]


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = asdict(settings)
    payload["api_key"] = redact_secret(settings.api_key)
    metadata = {
        "path": str(store.path),
        "secret_backend": store.vault.name,
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": sorted(name for name in os.environ if name.startswith("WISP_")),
        "effective_suggestion_options": _options_payload(settings),
    }
    json.dump({"settings": payload, "meta": metadata}, destination, indent=2)
    destination.write("\n")


def _options_payload(settings: Settings) -> Dict[str, Any]:
    payload = asdict(settings.suggestions.to_options())
    payload["stop_sequences"] = list(payload["stop_sequences"])
    return payload
