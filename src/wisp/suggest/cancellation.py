"""Best-effort "stop producing" requests for abandoned runs."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .client import SuggestionClient
from .types import CancelReason, CancelRequest

__all__ = ["CancellationCoordinator"]

LOGGER = logging.getLogger(__name__)


class CancellationCoordinator:
    """Fire-and-forget wrapper around ``client.cancel``.

    The caller has already reset its local state by the time the backend hears
    about the cancellation, so nothing here is ever awaited by the engine and
    delivery failures are dropped.
    """

    def __init__(self, client: SuggestionClient, *, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._client = client
        self._loop = loop
        self._tasks: set[asyncio.Task[Any]] = set()

    def cancel(self, run_id: str | None, reason: CancelReason) -> None:
        if not run_id:
            return
        try:
            request = CancelRequest(run_id=run_id, reason=reason)
            loop = self._loop or asyncio.get_running_loop()
            task = loop.create_task(self._deliver(request))
        except Exception as exc:
            LOGGER.debug("Unable to dispatch cancel for run %s: %s", run_id, exc)
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, request: CancelRequest) -> None:
        try:
            await self._client.cancel(request)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.debug("Cancel for run %s failed (ignored): %s", request.run_id, exc)

    @property
    def in_flight(self) -> int:
        """Number of cancel calls not yet settled (primarily for tests)."""

        return len(self._tasks)
