"""Streaming completion backend built around OpenAI-compatible endpoints."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

import httpx
from openai import AsyncOpenAI, APIConnectionError, APIError, APIStatusError, RateLimitError
from openai.lib.streaming.chat import ChatCompletionStreamEvent
from openai.types.chat import ChatCompletionMessageParam
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..suggest.client import StreamHandler, StreamHub, Unsubscribe
from ..suggest.types import CancelRequest, CompletionRequest, CompletionResult, StreamEvent

LOGGER = logging.getLogger(__name__)

CURSOR_MARKER = "<CURSOR>"
_SYSTEM_PROMPT = (
    "You are an inline writing assistant embedded in a text editor. The user's document is "
    f"shown with {CURSOR_MARKER} marking the caret. Reply with only the text that should be "
    "inserted at the caret: no quotes, no commentary, and never repeat text that already "
    "surrounds the caret."
)
# The chat completions API accepts at most four stop sequences.
_MAX_STOP_SEQUENCES = 4


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the completion backend."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: Mapping[str, str] | None = None
    metadata: Mapping[str, str] | None = None
    debug_logging: bool = False


class _PartialStreamError(Exception):
    """Raised when a transport error happens after text was already emitted."""


@dataclass(slots=True)
class _ActiveRun:
    run_id: str
    request: CompletionRequest
    started_at: float
    started_monotonic: float
    buffer: str = ""
    emitted: int = 0
    holdback: int = 0
    task: asyncio.Task[Any] | None = field(default=None, repr=False)


class CompletionBackend:
    """:class:`~wisp.suggest.client.SuggestionClient` over the chat completions API.

    ``complete`` returns a run id immediately and streams the completion in a
    background task. Deltas, the final result and failures are published to
    every handler registered through ``on_stream``. Canceled runs publish
    nothing further.
    """

    def __init__(
        self,
        settings: ClientSettings,
        *,
        client: AsyncOpenAI | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)
        self._loop = loop
        self._hub = StreamHub()
        self._runs: Dict[str, _ActiveRun] = {}

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    @property
    def active_runs(self) -> List[str]:
        return list(self._runs)

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        """Start streaming a completion for ``request`` and return its run id."""

        run = _ActiveRun(
            run_id=uuid.uuid4().hex,
            request=request,
            started_at=time.time(),
            started_monotonic=time.monotonic(),
            holdback=_holdback_for(request.stop_sequences),
        )
        loop = self._loop or asyncio.get_running_loop()
        self._runs[run.run_id] = run
        run.task = loop.create_task(self._run_stream(run))
        LOGGER.debug("Started completion run %s via %s", run.run_id, self._settings.model)
        return CompletionResult(run_id=run.run_id, started_at=run.started_at)

    async def cancel(self, request: CancelRequest) -> None:
        """Stop the run if it is still producing; unknown ids are ignored."""

        run = self._runs.pop(request.run_id, None)
        if run is None:
            return
        LOGGER.debug("Canceling completion run %s (%s)", request.run_id, request.reason)
        if run.task is not None and not run.task.done():
            run.task.cancel()

    def on_stream(self, handler: StreamHandler) -> Unsubscribe:
        return self._hub.subscribe(handler)

    async def aclose(self) -> None:
        """Cancel outstanding runs and close the underlying OpenAI client."""

        tasks = [run.task for run in self._runs.values() if run.task is not None and not run.task.done()]
        self._runs.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        close = getattr(self._client, "close", None)
        if close is None:
            return
        try:
            result = close()
        except Exception as exc:  # pragma: no cover - defensive guard
            LOGGER.debug("Completion client close failed to start: %s", exc)
            return
        if inspect.isawaitable(result):
            await result

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------
    async def _run_stream(self, run: _ActiveRun) -> None:
        payload = self._build_payload(run.request)
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)
        timeout = max(0.001, run.request.timeout_ms / 1000.0)
        try:
            async with asyncio.timeout(timeout):
                async for attempt in self._retrying():
                    with attempt:
                        await self._stream_once(run, payload)
        except asyncio.CancelledError:
            if run.run_id in self._runs:
                # Not canceled through ``cancel``: the loop is shutting down.
                self._runs.pop(run.run_id, None)
            raise
        except TimeoutError:
            self._finish_with_error(run, "TIMEOUT", f"Completion exceeded {run.request.timeout_ms} ms")
            return
        except _PartialStreamError as exc:
            self._finish_with_error(run, "UPSTREAM", str(exc.__cause__ or exc))
            return
        except Exception as exc:
            self._finish_with_error(run, "UPSTREAM", str(exc))
            return
        self._finish(run)

    async def _stream_once(self, run: _ActiveRun, payload: Mapping[str, Any]) -> None:
        try:
            async with self._client.chat.completions.stream(**payload) as stream:
                async for event in stream:
                    text = self._delta_text(event)
                    if text and self._advance(run, text):
                        return
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if run.emitted or run.buffer:
                raise _PartialStreamError(str(exc)) from exc
            raise

    def _advance(self, run: _ActiveRun, text: str) -> bool:
        """Buffer ``text`` and publish what is safe; ``True`` once a stop sequence hit."""

        run.buffer += text
        cut = _find_stop(run.buffer, run.request.stop_sequences)
        if cut is not None:
            run.buffer = run.buffer[:cut]
            self._publish_pending(run, len(run.buffer))
            return True
        self._publish_pending(run, len(run.buffer) - run.holdback)
        return False

    def _publish_pending(self, run: _ActiveRun, upto: int) -> None:
        if upto <= run.emitted or run.run_id not in self._runs:
            return
        chunk = run.buffer[run.emitted:upto]
        run.emitted = upto
        self._hub.publish(StreamEvent.delta(run.run_id, chunk))

    def _finish(self, run: _ActiveRun) -> None:
        self._publish_pending(run, len(run.buffer))
        if self._runs.pop(run.run_id, None) is None:
            return
        duration_ms = int((time.monotonic() - run.started_monotonic) * 1000)
        LOGGER.debug("Completion run %s finished in %sms (%d chars)", run.run_id, duration_ms, len(run.buffer))
        self._hub.publish(StreamEvent.done(run.run_id, run.buffer, duration_ms))

    def _finish_with_error(self, run: _ActiveRun, code: str, message: str) -> None:
        if self._runs.pop(run.run_id, None) is None:
            return
        LOGGER.debug("Completion run %s failed (%s): %s", run.run_id, code, message)
        self._hub.publish(StreamEvent.failed(run.run_id, code, message, retryable=code == "TIMEOUT"))

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------
    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            default_headers=headers,
        )

    def _build_payload(self, request: CompletionRequest) -> Dict[str, Any]:
        messages: List[ChatCompletionMessageParam] = [
            {"role": "system", "content": _SYSTEM_PROMPT},
            {"role": "user", "content": f"{request.prefix_text}{CURSOR_MARKER}{request.suffix_text}"},
        ]
        payload: Dict[str, Any] = {
            "model": self._settings.model,
            "messages": messages,
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }
        stops = [stop for stop in request.stop_sequences if stop][:_MAX_STOP_SEQUENCES]
        if stops:
            payload["stop"] = stops
        if self._settings.metadata:
            payload["metadata"] = dict(self._settings.metadata)
        return payload

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(
                (
                    APIError,
                    APIStatusError,
                    APIConnectionError,
                    RateLimitError,
                    httpx.TimeoutException,
                )
            ),
        )

    @staticmethod
    def _delta_text(event: ChatCompletionStreamEvent[Any]) -> str:
        if getattr(event, "type", None) != "content.delta":
            return ""
        delta = getattr(event, "delta", None)
        return str(delta) if delta else ""

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("Completion payload (unserializable): %s", payload)
        else:
            LOGGER.debug("Completion payload:\n%s", serialized)


def _holdback_for(stop_sequences: tuple[str, ...]) -> int:
    lengths = [len(stop) for stop in stop_sequences if stop]
    return max(lengths) - 1 if lengths else 0


def _find_stop(text: str, stop_sequences: tuple[str, ...]) -> int | None:
    hits = [index for index in (text.find(stop) for stop in stop_sequences if stop) if index >= 0]
    return min(hits) if hits else None
