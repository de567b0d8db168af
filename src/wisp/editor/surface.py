"""Host editor capabilities required by the suggestion engine."""

from __future__ import annotations

from typing import Callable, Hashable, Protocol

from ..suggest.types import GhostText

__all__ = [
    "ChangeListener",
    "ClickListener",
    "EditorSurface",
    "FocusListener",
    "KeyHandler",
    "RemoveListener",
]

RemoveListener = Callable[[], None]


class ChangeListener(Protocol):
    """Callback fired after a document edit or a pure caret/selection move."""

    def __call__(self) -> None:
        ...


class KeyHandler(Protocol):
    """Callback invoked before default key handling; ``True`` consumes the key."""

    def __call__(self, key: str) -> bool:
        ...


class ClickListener(Protocol):
    def __call__(self, position: int) -> None:
        ...


class FocusListener(Protocol):
    def __call__(self, focused: bool) -> None:
        ...


class EditorSurface(Protocol):
    """Minimal view of a text editor as seen by :class:`InlineSuggestionEngine`.

    Edits must notify text listeners once, with the selection already updated;
    selection listeners fire only for moves that did not change the document.
    """

    def document_signature(self) -> Hashable:
        ...

    def text_length(self) -> int:
        ...

    def text_between(self, start: int, end: int) -> str:
        ...

    def selection_span(self) -> tuple[int, int]:
        ...

    def has_focus(self) -> bool:
        ...

    def insert_text(self, text: str, position: int | None = None) -> None:
        ...

    def set_ghost_text(self, ghost: GhostText | None) -> None:
        ...

    def add_text_listener(self, listener: ChangeListener) -> RemoveListener:
        ...

    def add_selection_listener(self, listener: ChangeListener) -> RemoveListener:
        ...

    def add_key_handler(self, handler: KeyHandler) -> RemoveListener:
        ...

    def add_click_listener(self, listener: ClickListener) -> RemoveListener:
        ...

    def add_focus_listener(self, listener: FocusListener) -> RemoveListener:
        ...
