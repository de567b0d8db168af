"""Inline suggestion engine bound to one editor view.

The engine owns the view's :class:`SuggestionState` and translates host input
(keys, clicks, edits, caret moves, focus) into reducer transitions, arming the
idle scheduler after edits and issuing best-effort cancels whenever an
outstanding run or visible suggestion is abandoned.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import TYPE_CHECKING, Any, Callable, Protocol, TypeVar

from .cancellation import CancellationCoordinator
from .client import SuggestionClient
from .correlator import StreamCorrelator
from .options import NAVIGATION_KEYS, SuggestionOptions
from .scheduler import IdleScheduler
from .state import IDLE, Reset, SuggestionState, Transition, apply
from .types import CancelReason, GhostText

if TYPE_CHECKING:  # pragma: no cover
    from ..editor.surface import EditorSurface, RemoveListener

__all__ = ["InlineSuggestionEngine", "StateListener"]

LOGGER = logging.getLogger(__name__)

_F = TypeVar("_F", bound=Callable[..., Any])


class StateListener(Protocol):
    """Callback fired after every transition that changed the state."""

    def __call__(self, state: SuggestionState) -> None:
        ...


def _host_boundary(default: Any) -> Callable[[_F], _F]:
    """Keep engine failures from reaching the host editor's event handlers."""

    def decorator(func: _F) -> _F:
        @functools.wraps(func)
        def wrapper(self: "InlineSuggestionEngine", *args: Any, **kwargs: Any) -> Any:
            if self._destroyed:
                return default
            try:
                return func(self, *args, **kwargs)
            except Exception:
                LOGGER.exception("Inline suggestion handler %s failed; resetting", func.__name__)
                self._recover()
                return default

        return wrapper  # type: ignore[return-value]

    return decorator


class InlineSuggestionEngine:
    """Coordinates scheduling, stream correlation and cancellation for a view."""

    def __init__(
        self,
        surface: EditorSurface,
        client: SuggestionClient,
        options: SuggestionOptions | None = None,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._surface = surface
        self._client = client
        self._options = options or SuggestionOptions()
        self._state: SuggestionState = IDLE
        self._enabled = self._options.enabled
        self._destroyed = False
        self._attached = False
        self._state_listeners: list[StateListener] = []
        self._removers: list[RemoveListener] = []
        self._canceller = CancellationCoordinator(client, loop=loop)
        self._scheduler = IdleScheduler(
            surface,
            client,
            self._options,
            read_state=lambda: self._state,
            propose=self._dispatch,
            canceller=self._canceller,
            is_enabled=lambda: self._enabled and not self._destroyed,
            loop=loop,
        )
        self._correlator = StreamCorrelator(client, read_state=lambda: self._state, propose=self._dispatch)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def state(self) -> SuggestionState:
        return self._state

    @property
    def options(self) -> SuggestionOptions:
        return self._options

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def scheduler(self) -> IdleScheduler:
        return self._scheduler

    @property
    def surface(self) -> EditorSurface:
        return self._surface

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------
    def attach(self) -> "InlineSuggestionEngine":
        """Subscribe to the backend stream and to the view's input hooks."""

        if self._attached or self._destroyed:
            return self
        self._attached = True
        self._correlator.attach()
        surface = self._surface
        self._removers = [
            surface.add_key_handler(self.handle_key),
            surface.add_click_listener(lambda _position: self.handle_click()),
            surface.add_text_listener(self.handle_document_changed),
            surface.add_selection_listener(self.handle_selection_changed),
            surface.add_focus_listener(self._handle_focus),
        ]
        LOGGER.debug("Inline suggestion engine attached (idle=%sms)", self._options.idle_delay_ms)
        return self

    def add_state_listener(self, listener: StateListener) -> Callable[[], None]:
        self._state_listeners.append(listener)

        def _remove() -> None:
            try:
                self._state_listeners.remove(listener)
            except ValueError:
                pass

        return _remove

    # ------------------------------------------------------------------
    # Host input
    # ------------------------------------------------------------------
    @_host_boundary(False)
    def handle_key(self, key: str) -> bool:
        """Return ``True`` when the key was consumed by accept or dismiss."""

        options = self._options
        if key == options.accept_key:
            return self._accept()
        if key == options.dismiss_key:
            return self._abandon("user")
        if key in NAVIGATION_KEYS:
            self._abandon("input")
        return False

    @_host_boundary(None)
    def handle_click(self) -> None:
        self._abandon("input")

    @_host_boundary(None)
    def handle_document_changed(self) -> None:
        self._abandon("input")
        self._scheduler.schedule_if_eligible()

    @_host_boundary(None)
    def handle_selection_changed(self) -> None:
        self._abandon("input")

    @_host_boundary(None)
    def handle_focus_lost(self) -> None:
        self._abandon("input")

    @_host_boundary(False)
    def accept(self) -> bool:
        """Insert the visible suggestion at the caret; ``False`` if none."""

        return self._accept()

    @_host_boundary(False)
    def dismiss(self) -> bool:
        return self._abandon("user")

    @_host_boundary(None)
    def set_enabled(self, enabled: bool) -> None:
        self._enabled = bool(enabled)
        if not self._enabled:
            self._abandon("input")

    def destroy(self) -> None:
        """Tear down timers, hooks and the stream subscription for good."""

        if self._destroyed:
            return
        self._scheduler.cancel_pending()
        self._correlator.detach()
        for remove in self._removers:
            try:
                remove()
            except Exception as exc:  # pragma: no cover - host teardown bug
                LOGGER.debug("Failed to remove editor hook: %s", exc)
        self._removers = []
        self._canceller.cancel(self._state.run_id, "user")
        try:
            self._dispatch(Reset())
        finally:
            self._destroyed = True
        LOGGER.debug("Inline suggestion engine destroyed")

    # ------------------------------------------------------------------
    # Rendering contract
    # ------------------------------------------------------------------
    def ghost_text(self) -> GhostText | None:
        """Overlay to paint, or ``None`` when nothing should be visible."""

        text = self._state.suggestion_text
        if not text:
            return None
        start, end = self._surface.selection_span()
        if start != end:
            return None
        return GhostText(position=end, text=text)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _accept(self) -> bool:
        current = self._state
        if not current.suggestion_text:
            return False
        _, caret = self._surface.selection_span()
        self._scheduler.cancel_pending()
        self._canceller.cancel(current.run_id, "user")
        self._dispatch(Reset())
        # The insertion reaches handle_document_changed, which sees an idle
        # state and only re-arms the scheduler.
        self._surface.insert_text(current.suggestion_text, caret)
        LOGGER.debug("Accepted %d suggested chars at %d", len(current.suggestion_text), caret)
        return True

    def _abandon(self, reason: CancelReason) -> bool:
        # A complete() still in flight belongs to the old caret, even while idle.
        self._scheduler.cancel_pending()
        current = self._state
        if not current.is_active:
            return False
        self._canceller.cancel(current.run_id, reason)
        self._dispatch(Reset())
        return True

    def _handle_focus(self, focused: bool) -> None:
        if not focused:
            self.handle_focus_lost()

    def _dispatch(self, transition: Transition) -> None:
        if self._destroyed:
            return
        previous = self._state
        updated = apply(previous, transition)
        if updated == previous:
            return
        self._state = updated
        try:
            self._sync_ghost()
        except Exception:
            LOGGER.exception("Ghost text render failed")
        for listener in list(self._state_listeners):
            try:
                listener(updated)
            except Exception:
                LOGGER.exception("Suggestion state listener failed")

    def _sync_ghost(self) -> None:
        self._surface.set_ghost_text(self.ghost_text())

    def _recover(self) -> None:
        run_id = self._state.run_id
        self._dispatch(Reset())
        try:
            self._scheduler.cancel_pending()
            self._canceller.cancel(run_id, "input")
            self._surface.set_ghost_text(None)
        except Exception:  # pragma: no cover - host is already failing
            LOGGER.debug("Engine recovery could not clear the overlay", exc_info=True)
