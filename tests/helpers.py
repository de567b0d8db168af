"""Shared test helpers and stub classes.

Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

import asyncio
import itertools
from typing import Callable

from wisp.editor.editor_view import EditorView
from wisp.suggest.client import StreamHandler, StreamHub, Unsubscribe
from wisp.suggest.engine import InlineSuggestionEngine
from wisp.suggest.options import SuggestionOptions
from wisp.suggest.types import CancelRequest, CompletionRequest, CompletionResult, StreamEvent

FAST_OPTIONS = SuggestionOptions(idle_delay_ms=20, min_prefix_chars=24)
LONG_ENOUGH = "The quick brown fox jumps over"


class FakeSuggestionClient:
    """In-memory backend that records calls and lets tests push stream events.

    Run ids are handed out as ``r1``, ``r2``, ... in call order. Set ``gate`` to
    an :class:`asyncio.Event` to hold ``complete`` until the test releases it.
    """

    def __init__(self) -> None:
        self.hub = StreamHub()
        self.requests: list[CompletionRequest] = []
        self.cancels: list[CancelRequest] = []
        self.complete_error: Exception | None = None
        self.cancel_error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self._ids = itertools.count(1)

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        self.requests.append(request)
        run_id = f"r{next(self._ids)}"
        if self.gate is not None:
            await self.gate.wait()
        if self.complete_error is not None:
            raise self.complete_error
        return CompletionResult(run_id=run_id)

    async def cancel(self, request: CancelRequest) -> None:
        self.cancels.append(request)
        if self.cancel_error is not None:
            raise self.cancel_error

    def on_stream(self, handler: StreamHandler) -> Unsubscribe:
        return self.hub.subscribe(handler)

    def delta(self, run_id: str, text: str) -> None:
        self.hub.publish(StreamEvent.delta(run_id, text))

    def done(self, run_id: str, result: str = "") -> None:
        self.hub.publish(StreamEvent.done(run_id, result, duration_ms=5))

    def error(self, run_id: str, code: str = "UPSTREAM") -> None:
        self.hub.publish(StreamEvent.failed(run_id, code, "boom"))

    def cancel_pairs(self) -> list[tuple[str, str]]:
        return [(item.run_id, item.reason) for item in self.cancels]


async def settle(turns: int = 5) -> None:
    """Let scheduled callbacks and fire-and-forget tasks run."""

    for _ in range(turns):
        await asyncio.sleep(0)


async def wait_until(predicate: Callable[[], bool], *, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(0.005)


def make_engine(
    text: str = "",
    *,
    options: SuggestionOptions | None = None,
    client: FakeSuggestionClient | None = None,
) -> tuple[EditorView, FakeSuggestionClient, InlineSuggestionEngine]:
    view = EditorView(text)
    backend = client or FakeSuggestionClient()
    engine = InlineSuggestionEngine(view, backend, options or FAST_OPTIONS).attach()
    return view, backend, engine


async def start_run(
    view: EditorView,
    client: FakeSuggestionClient,
    engine: InlineSuggestionEngine,
    text: str = LONG_ENOUGH,
) -> str:
    """Type ``text`` and wait until the engine adopts a run id."""

    view.type_text(text)
    await wait_until(lambda: engine.state.run_id is not None)
    run_id = engine.state.run_id
    assert run_id is not None
    return run_id
