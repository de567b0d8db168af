"""Headless editor view implementing :class:`~wisp.editor.surface.EditorSurface`.

The view keeps the logical pieces of an editor (text buffer, selection, focus,
undo history and the ghost-text overlay) without any toolkit so the suggestion
engine can be driven from tests, scripts or non-Qt hosts. Key presses run the
registered handlers first and fall back to default caret navigation when no
handler consumes them, mirroring how a real widget dispatches input.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Hashable

from ..suggest.types import GhostText
from .document_model import DocumentState, SelectionRange
from .surface import ChangeListener, ClickListener, FocusListener, KeyHandler, RemoveListener


@dataclass(slots=True)
class _UndoEntry:
    """Represents a text + caret snapshot for undo/redo bookkeeping."""

    text: str
    caret: int


def _remover(bucket: list, item: object) -> RemoveListener:
    def _remove() -> None:
        try:
            bucket.remove(item)
        except ValueError:
            pass

    return _remove


class EditorView:
    """In-memory editor surface with listener hooks."""

    MAX_HISTORY = 50

    def __init__(self, text: str = "", *, focused: bool = True) -> None:
        self._state = DocumentState(text=text)
        self._selection = SelectionRange(len(text), len(text))
        self._focused = focused
        self._ghost: GhostText | None = None
        self._text_listeners: list[ChangeListener] = []
        self._selection_listeners: list[ChangeListener] = []
        self._key_handlers: list[KeyHandler] = []
        self._click_listeners: list[ClickListener] = []
        self._focus_listeners: list[FocusListener] = []
        self._undo_stack: list[_UndoEntry] = []
        self._redo_stack: list[_UndoEntry] = []

    # ------------------------------------------------------------------
    # EditorSurface
    # ------------------------------------------------------------------
    def document_signature(self) -> Hashable:
        return self._state.signature()

    def text_length(self) -> int:
        return len(self._state.text)

    def text_between(self, start: int, end: int) -> str:
        begin, finish = self._clamp_range(start, end)
        return self._state.text[begin:finish]

    def selection_span(self) -> tuple[int, int]:
        return self._selection.as_tuple()

    def has_focus(self) -> bool:
        return self._focused

    def insert_text(self, text: str, position: int | None = None) -> None:
        """Insert ``text`` at ``position`` (default: caret) as one undoable edit."""

        start = self._selection.start if position is None else position
        start = max(0, min(int(start), len(self._state.text)))
        buffer = self._state.text
        self._commit(buffer[:start] + text + buffer[start:], start + len(text))

    def set_ghost_text(self, ghost: GhostText | None) -> None:
        self._ghost = ghost

    def add_text_listener(self, listener: ChangeListener) -> RemoveListener:
        self._text_listeners.append(listener)
        return _remover(self._text_listeners, listener)

    def add_selection_listener(self, listener: ChangeListener) -> RemoveListener:
        self._selection_listeners.append(listener)
        return _remover(self._selection_listeners, listener)

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
    # Document accessors
    # ------------------------------------------------------------------
    @property
    def text(self) -> str:
        return self._state.text

    @property
    def ghost_text(self) -> GhostText | None:
        """The overlay most recently requested by the engine."""

        return self._ghost

    def to_document(self) -> DocumentState:
        return self._state

    def load_document(self, document: DocumentState) -> None:
        """Swap in a different document; listeners see it as an edit."""

        self._state = document
        self._undo_stack.clear()
        self._redo_stack.clear()
        caret = len(document.text)
        self._selection = SelectionRange(caret, caret)
        self._emit_text_changed()

    # ------------------------------------------------------------------
    # User-level input simulation
    # ------------------------------------------------------------------
    def type_text(self, text: str) -> None:
        """Replace the selection with ``text`` the way keyboard typing would."""

        start, end = self._selection.as_tuple()
        buffer = self._state.text
        self._commit(buffer[:start] + text + buffer[end:], start + len(text))

    def backspace(self) -> None:
        start, end = self._selection.as_tuple()
        if start == end:
            if start == 0:
                return
            start -= 1
        buffer = self._state.text
        self._commit(buffer[:start] + buffer[end:], start)

    def press_key(self, key: str) -> bool:
        """Dispatch ``key``; returns ``True`` when a handler consumed it."""

        for handler in list(self._key_handlers):
            if handler(key):
                return True
        self._default_key_action(key)
        return False

    def click(self, position: int) -> None:
        for listener in list(self._click_listeners):
            listener(position)
        self.set_selection(position, position)

    def focus(self) -> None:
        self._set_focus(True)

    def blur(self) -> None:
        self._set_focus(False)

    def set_selection(self, start: int, end: int | None = None) -> None:
        begin, finish = self._clamp_range(start, start if end is None else end)
        resolved = SelectionRange(begin, finish)
        if resolved == self._selection:
            return
        self._selection = resolved
        for listener in list(self._selection_listeners):
            listener()

    # ------------------------------------------------------------------
    # Undo/redo support
    # ------------------------------------------------------------------
    def undo(self) -> None:
        if not self._undo_stack:
            return
        entry = self._undo_stack.pop()
        self._redo_stack.append(_UndoEntry(self._state.text, self._selection.end))
        self._apply(entry.text, entry.caret)

    def redo(self) -> None:
        if not self._redo_stack:
            return
        entry = self._redo_stack.pop()
        self._undo_stack.append(_UndoEntry(self._state.text, self._selection.end))
        self._apply(entry.text, entry.caret)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _commit(self, new_text: str, caret: int) -> None:
        self._undo_stack.append(_UndoEntry(self._state.text, self._selection.end))
        if len(self._undo_stack) > self.MAX_HISTORY:
            self._undo_stack.pop(0)
        self._redo_stack.clear()
        self._apply(new_text, caret)

    def _apply(self, new_text: str, caret: int) -> None:
        self._state.update_text(new_text)
        caret = max(0, min(int(caret), len(new_text)))
        self._selection = SelectionRange(caret, caret)
        self._emit_text_changed()

    def _emit_text_changed(self) -> None:
        for listener in list(self._text_listeners):
            listener()

    def _set_focus(self, focused: bool) -> None:
        if self._focused == focused:
            return
        self._focused = focused
        for listener in list(self._focus_listeners):
            listener(focused)

    def _default_key_action(self, key: str) -> None:
        start, end = self._selection.as_tuple()
        length = len(self._state.text)
        if key == "ArrowLeft":
            caret = start - 1 if start == end else start
            self.set_selection(max(0, caret))
        elif key == "ArrowRight":
            caret = end + 1 if start == end else end
            self.set_selection(min(length, caret))
        elif key in {"Home", "PageUp", "ArrowUp"}:
            line_start = self._state.text.rfind("\n", 0, start) + 1
            self.set_selection(0 if key == "PageUp" else line_start)
        elif key in {"End", "PageDown", "ArrowDown"}:
            line_end = self._state.text.find("\n", end)
            if key == "PageDown" or line_end == -1:
                line_end = length
            self.set_selection(line_end)
        elif key == "Tab":
            self.type_text("\t")

    def _clamp_range(self, start: int, end: int) -> tuple[int, int]:
        length = len(self._state.text)
        start = max(0, min(int(start), length))
        end = max(0, min(int(end), length))
        if end < start:
            start, end = end, start
        return start, end
