"""Single-slot idle debounce that decides when to ask for a completion."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Hashable

from .cancellation import CancellationCoordinator
from .client import SuggestionClient
from .options import SuggestionOptions
from .state import Run, SuggestionState, Transition
from .types import CompletionRequest

if TYPE_CHECKING:  # pragma: no cover
    from ..editor.surface import EditorSurface

__all__ = ["IdleScheduler", "ScheduleSnapshot"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ScheduleSnapshot:
    """Document identity and selection captured when the timer was armed."""

    signature: Hashable
    selection: tuple[int, int]


class IdleScheduler:
    """Arms one timer per edit and issues a request once typing pauses.

    Everything is re-checked when the timer fires because the user may have
    kept typing, moved the caret or left the editor in the meantime. Requests
    whose ``complete`` call resolves after the view moved on are not adopted;
    the returned run is canceled instead so that at most one run is active.
    """

    def __init__(
        self,
        surface: EditorSurface,
        client: SuggestionClient,
        options: SuggestionOptions,
        *,
        read_state: Callable[[], SuggestionState],
        propose: Callable[[Transition], None],
        canceller: CancellationCoordinator,
        is_enabled: Callable[[], bool] | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._surface = surface
        self._client = client
        self._options = options
        self._read_state = read_state
        self._propose = propose
        self._canceller = canceller
        self._is_enabled = is_enabled or (lambda: options.enabled)
        self._loop = loop
        self._timer: asyncio.TimerHandle | None = None
        self._generation = 0
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def armed(self) -> bool:
        """True while an unfired idle timer exists."""

        return self._timer is not None

    @property
    def requests_in_flight(self) -> int:
        return len(self._tasks)

    def cancel_pending(self) -> None:
        """Drop the armed timer and orphan any ``complete`` call in flight."""

        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def schedule_if_eligible(self) -> bool:
        """Restart the idle countdown; returns ``True`` when a timer was armed."""

        self.cancel_pending()
        if not self._eligible():
            return False
        snapshot = ScheduleSnapshot(
            signature=self._surface.document_signature(),
            selection=self._surface.selection_span(),
        )
        loop = self._loop or asyncio.get_running_loop()
        self._timer = loop.call_later(self._options.idle_delay_seconds, self._fire, snapshot)
        return True

    def build_request(self, caret: int) -> CompletionRequest | None:
        """Return the request for ``caret`` or ``None`` below the prefix threshold."""

        options = self._options
        start = max(0, caret - options.max_prefix_chars)
        end = min(self._surface.text_length(), caret + options.max_suffix_chars)
        prefix = self._surface.text_between(start, caret)
        suffix = self._surface.text_between(caret, end)
        if len(prefix.strip()) < options.min_prefix_chars:
            return None
        return CompletionRequest(
            prefix_text=prefix,
            suffix_text=suffix,
            max_tokens=options.max_tokens,
            temperature=options.temperature,
            timeout_ms=options.timeout_ms,
            stop_sequences=tuple(options.stop_sequences),
        )

    def _eligible(self) -> bool:
        if not self._is_enabled():
            return False
        if not self._surface.has_focus():
            return False
        start, end = self._surface.selection_span()
        return start == end

    def _fire(self, snapshot: ScheduleSnapshot) -> None:
        self._timer = None
        try:
            if not self._eligible():
                return
            if self._surface.document_signature() != snapshot.signature:
                return
            if self._surface.selection_span() != snapshot.selection:
                return
            if not self._read_state().is_idle:
                return
            request = self.build_request(snapshot.selection[1])
            if request is None:
                LOGGER.debug("Prefix below %s chars; skipping completion", self._options.min_prefix_chars)
                return
            loop = self._loop or asyncio.get_running_loop()
            task = loop.create_task(self._issue(request, self._generation))
        except Exception:
            LOGGER.exception("Idle completion trigger failed")
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _issue(self, request: CompletionRequest, generation: int) -> None:
        LOGGER.debug(
            "Requesting completion (prefix=%d chars, suffix=%d chars)",
            len(request.prefix_text),
            len(request.suffix_text),
        )
        try:
            result = await self._client.complete(request)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.debug("Completion request failed; staying idle: %s", exc)
            return
        if generation != self._generation or not self._read_state().is_idle:
            LOGGER.debug("Completion %s resolved after the view moved on; canceling", result.run_id)
            self._canceller.cancel(result.run_id, "input")
            return
        self._propose(Run(result.run_id))
