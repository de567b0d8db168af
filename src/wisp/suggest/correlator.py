"""Matches backend stream events to the engine's active run."""

from __future__ import annotations

import logging
from typing import Callable

from .client import SuggestionClient, Unsubscribe
from .state import Delta, Done, Error, SuggestionState, Transition
from .types import StreamEvent

__all__ = ["StreamCorrelator"]

LOGGER = logging.getLogger(__name__)


class StreamCorrelator:
    """Folds events for the current run into reducer transitions.

    The run id is read from state when each event arrives, never captured at
    subscription time, so late events from a canceled or superseded run are
    dropped even after a newer run has started.
    """

    def __init__(
        self,
        client: SuggestionClient,
        *,
        read_state: Callable[[], SuggestionState],
        propose: Callable[[Transition], None],
    ) -> None:
        self._client = client
        self._read_state = read_state
        self._propose = propose
        self._unsubscribe: Unsubscribe | None = None

    @property
    def subscribed(self) -> bool:
        return self._unsubscribe is not None

    def attach(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self._client.on_stream(self.handle_event)

    def detach(self) -> None:
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is None:
            return
        try:
            unsubscribe()
        except Exception as exc:  # pragma: no cover - backend teardown bug
            LOGGER.debug("Stream unsubscribe failed: %s", exc)

    def handle_event(self, event: StreamEvent) -> None:
        current = self._read_state().run_id
        if current is None or event.run_id != current:
            LOGGER.debug("Discarding stale %s event for run %s (active=%s)", event.kind, event.run_id, current)
            return
        transition = self._transition_for(event)
        if transition is not None:
            self._propose(transition)

    @staticmethod
    def _transition_for(event: StreamEvent) -> Transition | None:
        if event.kind == "delta":
            return Delta(event.delta_text)
        if event.kind == "done":
            return Done()
        if event.kind == "error":
            error = event.error
            LOGGER.debug(
                "Run %s failed (%s): %s",
                event.run_id,
                error.code if error else "UNKNOWN",
                error.message if error else "",
            )
            return Error()
        return None
