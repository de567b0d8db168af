"""Backend client contract consumed by the suggestion engine."""

from __future__ import annotations

import logging
from typing import Callable, Protocol

from .types import CancelRequest, CompletionRequest, CompletionResult, StreamEvent

__all__ = ["StreamHandler", "StreamHub", "SuggestionClient", "Unsubscribe"]

LOGGER = logging.getLogger(__name__)

StreamHandler = Callable[[StreamEvent], None]
Unsubscribe = Callable[[], None]


class SuggestionClient(Protocol):
    """Capabilities a completion backend must expose to the engine.

    ``complete`` must return a fresh run id promptly; tokens are delivered later
    through the handlers registered with ``on_stream``. ``cancel`` is idempotent
    and may be called for runs that already finished.
    """

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        ...

    async def cancel(self, request: CancelRequest) -> None:
        ...

    def on_stream(self, handler: StreamHandler) -> Unsubscribe:
        ...


class StreamHub:
    """Fan-out of stream events to every subscribed handler."""

    def __init__(self) -> None:
        self._handlers: list[StreamHandler] = []

    def subscribe(self, handler: StreamHandler) -> Unsubscribe:
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            try:
                self._handlers.remove(handler)
            except ValueError:
                pass

        return _unsubscribe

    def publish(self, event: StreamEvent) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:  # pragma: no cover - subscriber bugs must not stop the stream
                LOGGER.exception("Stream handler failed for run %s", event.run_id)

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)
