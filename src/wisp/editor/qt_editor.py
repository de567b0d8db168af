"""PySide6 editor widget that renders ghost text and adapts to :class:`EditorSurface`.

Importing this module requires PySide6; the headless :mod:`editor_view` covers
every non-Qt host.
"""

from __future__ import annotations

from typing import Any, Hashable

from PySide6.QtCore import Qt, QTimer
from PySide6.QtGui import QColor, QKeyEvent, QPainter, QTextCursor
from PySide6.QtWidgets import QPlainTextEdit, QWidget

from ..suggest.types import GhostText
from .surface import ChangeListener, ClickListener, FocusListener, KeyHandler, RemoveListener

__all__ = ["GhostTextEdit", "QtEditorSurface", "key_name"]

_KEY_NAMES: dict[Any, str] = {
    Qt.Key.Key_Tab: "Tab",
    Qt.Key.Key_Escape: "Escape",
    Qt.Key.Key_Return: "Enter",
    Qt.Key.Key_Enter: "Enter",
    Qt.Key.Key_Backspace: "Backspace",
    Qt.Key.Key_Delete: "Delete",
    Qt.Key.Key_Left: "ArrowLeft",
    Qt.Key.Key_Right: "ArrowRight",
    Qt.Key.Key_Up: "ArrowUp",
    Qt.Key.Key_Down: "ArrowDown",
    Qt.Key.Key_Home: "Home",
    Qt.Key.Key_End: "End",
    Qt.Key.Key_PageUp: "PageUp",
    Qt.Key.Key_PageDown: "PageDown",
}
_GHOST_COLOR = QColor(140, 140, 140)


def key_name(event: QKeyEvent) -> str:
    """Translate a Qt key event into the names used by :class:`SuggestionOptions`."""

    name = _KEY_NAMES.get(event.key())
    if name is not None:
        return name
    return event.text()


def _remover(bucket: list, item: object) -> RemoveListener:
    def _remove() -> None:
        if item in bucket:
            bucket.remove(item)

    return _remove


class GhostTextEdit(QPlainTextEdit):
    """``QPlainTextEdit`` that paints a dimmed suggestion after the caret.

    Key handlers run before Qt's default handling so an accept or dismiss key
    can be consumed without reaching the document.
    """

    def __init__(self, parent: QWidget | None = None) -> None:
        super().__init__(parent)
        self._ghost: GhostText | None = None
        self._key_handlers: list[KeyHandler] = []
        self._click_listeners: list[ClickListener] = []
        self._focus_listeners: list[FocusListener] = []
        self.setTabChangesFocus(False)

    @property
    def ghost(self) -> GhostText | None:
        return self._ghost

    def set_ghost_text(self, ghost: GhostText | None) -> None:
        if ghost == self._ghost:
            return
        self._ghost = ghost
        self.viewport().update()

    def add_key_handler(self, handler: KeyHandler) -> RemoveListener:
        self._key_handlers.append(handler)
        return _remover(self._key_handlers, handler)

    def add_click_listener(self, listener: ClickListener) -> RemoveListener:
        self._click_listeners.append(listener)
        return _remover(self._click_listeners, listener)

    def add_focus_listener(self, listener: FocusListener) -> RemoveListener:
        self._focus_listeners.append(listener)
        return _remover(self._focus_listeners, listener)

    # ------------------------------------------------------------------
    # Qt event overrides
    # ------------------------------------------------------------------
    def keyPressEvent(self, event: QKeyEvent) -> None:  # noqa: N802 - Qt override
        name = key_name(event)
        if name:
            for handler in list(self._key_handlers):
                if handler(name):
                    event.accept()
                    return
        super().keyPressEvent(event)

    def mousePressEvent(self, event: Any) -> None:  # noqa: N802 - Qt override
        position = self.cursorForPosition(event.position().toPoint()).position()
        for listener in list(self._click_listeners):
            listener(position)
        super().mousePressEvent(event)

    def focusInEvent(self, event: Any) -> None:  # noqa: N802 - Qt override
        super().focusInEvent(event)
        for listener in list(self._focus_listeners):
            listener(True)

    def focusOutEvent(self, event: Any) -> None:  # noqa: N802 - Qt override
        super().focusOutEvent(event)
        for listener in list(self._focus_listeners):
            listener(False)

    def paintEvent(self, event: Any) -> None:  # noqa: N802 - Qt override
        super().paintEvent(event)
        ghost = self._ghost
        if ghost is None or not ghost.text:
            return
        cursor = QTextCursor(self.document())
        cursor.setPosition(min(ghost.position, self.document().characterCount() - 1))
        rect = self.cursorRect(cursor)
        metrics = self.fontMetrics()
        left_margin = int(self.contentOffset().x() + self.document().documentMargin())

        painter = QPainter(self.viewport())
        try:
            painter.setPen(_GHOST_COLOR)
            painter.setFont(self.font())
            x = rect.left()
            baseline = rect.top() + metrics.ascent()
            for index, line in enumerate(ghost.text.split("\n")):
                if index:
                    x = left_margin
                    baseline += metrics.lineSpacing()
                painter.drawText(x, baseline, line)
        finally:
            painter.end()


class QtEditorSurface:
    """:class:`~wisp.editor.surface.EditorSurface` over a :class:`GhostTextEdit`.

    Qt emits ``textChanged`` and ``cursorPositionChanged`` separately for one
    keystroke, so notifications are coalesced to one per event-loop turn: an
    edit notifies text listeners only, a pure caret move notifies selection
    listeners.
    """

    def __init__(self, editor: GhostTextEdit) -> None:
        self._editor = editor
        self._revision = 0
        self._text_dirty = False
        self._selection_dirty = False
        self._flush_scheduled = False
        self._text_listeners: list[ChangeListener] = []
        self._selection_listeners: list[ChangeListener] = []
        editor.textChanged.connect(self._on_text_changed)
        editor.cursorPositionChanged.connect(self._on_selection_changed)
        editor.selectionChanged.connect(self._on_selection_changed)

    @property
    def editor(self) -> GhostTextEdit:
        return self._editor

    def document_signature(self) -> Hashable:
        return (id(self._editor.document()), self._revision)

    def text_length(self) -> int:
        return len(self._editor.toPlainText())

    def text_between(self, start: int, end: int) -> str:
        return self._editor.toPlainText()[max(0, start) : max(0, end)]

    def selection_span(self) -> tuple[int, int]:
        cursor = self._editor.textCursor()
        return cursor.selectionStart(), cursor.selectionEnd()

    def has_focus(self) -> bool:
        return self._editor.hasFocus()

    def insert_text(self, text: str, position: int | None = None) -> None:
        cursor = self._editor.textCursor()
        if position is not None:
            cursor.setPosition(max(0, min(position, self.text_length())))
        cursor.insertText(text)
        self._editor.setTextCursor(cursor)

    def set_ghost_text(self, ghost: GhostText | None) -> None:
        self._editor.set_ghost_text(ghost)

    def add_text_listener(self, listener: ChangeListener) -> RemoveListener:
        self._text_listeners.append(listener)
        return _remover(self._text_listeners, listener)

    def add_selection_listener(self, listener: ChangeListener) -> RemoveListener:
        self._selection_listeners.append(listener)
        return _remover(self._selection_listeners, listener)

    def add_key_handler(self, handler: KeyHandler) -> RemoveListener:
        return self._editor.add_key_handler(handler)

    def add_click_listener(self, listener: ClickListener) -> RemoveListener:
        return self._editor.add_click_listener(listener)

    def add_focus_listener(self, listener: FocusListener) -> RemoveListener:
        return self._editor.add_focus_listener(listener)

    def flush(self) -> None:
        """Deliver any pending change notification immediately."""

        self._flush_scheduled = False
        text_dirty, selection_dirty = self._text_dirty, self._selection_dirty
        self._text_dirty = self._selection_dirty = False
        if text_dirty:
            for listener in list(self._text_listeners):
                listener()
        elif selection_dirty:
            for listener in list(self._selection_listeners):
                listener()

    def _on_text_changed(self) -> None:
        self._revision += 1
        self._text_dirty = True
        self._schedule_flush()

    def _on_selection_changed(self) -> None:
        self._selection_dirty = True
        self._schedule_flush()

    def _schedule_flush(self) -> None:
        if self._flush_scheduled:
            return
        self._flush_scheduled = True
        QTimer.singleShot(0, self.flush)
