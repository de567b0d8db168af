"""Value types exchanged between the suggestion engine and its backend."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Literal, Mapping

__all__ = [
    "CANCEL_REASONS",
    "CancelReason",
    "CancelRequest",
    "CompletionRequest",
    "CompletionResult",
    "GhostText",
    "StreamError",
    "StreamEvent",
    "StreamEventKind",
]

StreamEventKind = Literal["delta", "done", "error"]
CancelReason = Literal["user", "input", "timeout"]
CANCEL_REASONS: tuple[str, ...] = ("user", "input", "timeout")
_EVENT_KINDS: tuple[str, ...] = ("delta", "done", "error")


@dataclass(slots=True, frozen=True)
class CompletionRequest:
    """Bounded text windows around the caret plus sampling parameters."""

    prefix_text: str
    suffix_text: str
    max_tokens: int
    temperature: float
    timeout_ms: int
    stop_sequences: tuple[str, ...] = ()

    def to_payload(self) -> Dict[str, Any]:
        """Return the wire mapping understood by completion backends."""

        return {
            "prefix": self.prefix_text,
            "suffix": self.suffix_text,
            "maxTokens": self.max_tokens,
            "temperature": self.temperature,
            "timeoutMs": self.timeout_ms,
            "stop": list(self.stop_sequences),
        }


@dataclass(slots=True, frozen=True)
class CompletionResult:
    """Acknowledgement returned by ``complete`` before any tokens arrive."""

    run_id: str
    started_at: float = 0.0


@dataclass(slots=True, frozen=True)
class StreamError:
    code: str
    message: str = ""
    retryable: bool = False


@dataclass(slots=True, frozen=True)
class StreamEvent:
    """A single delta/done/error notification for one run."""

    run_id: str
    kind: StreamEventKind
    delta_text: str = ""
    result: str | None = None
    duration_ms: int | None = None
    error: StreamError | None = None

    @classmethod
    def delta(cls, run_id: str, text: str) -> "StreamEvent":
        return cls(run_id=run_id, kind="delta", delta_text=text)

    @classmethod
    def done(cls, run_id: str, result: str = "", duration_ms: int | None = None) -> "StreamEvent":
        return cls(run_id=run_id, kind="done", result=result, duration_ms=duration_ms)

    @classmethod
    def failed(cls, run_id: str, code: str, message: str = "", *, retryable: bool = False) -> "StreamEvent":
        return cls(run_id=run_id, kind="error", error=StreamError(code, message, retryable))

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "StreamEvent":
        """Build an event from the ``{type, runId, ...}`` wire mapping."""

        kind = str(payload.get("type") or payload.get("kind") or "")
        if kind not in _EVENT_KINDS:
            raise ValueError(f"Unsupported stream event type: {kind!r}")
        run_id = payload.get("runId") or payload.get("run_id")
        if not run_id:
            raise ValueError("Stream events require a runId")
        if kind == "delta":
            return cls.delta(str(run_id), str(payload.get("text") or ""))
        if kind == "done":
            duration = payload.get("durationMs")
            return cls.done(
                str(run_id),
                str(payload.get("result") or ""),
                int(duration) if duration is not None else None,
            )
        error_payload = payload.get("error")
        if isinstance(error_payload, Mapping):
            return cls.failed(
                str(run_id),
                str(error_payload.get("code") or "UNKNOWN"),
                str(error_payload.get("message") or ""),
                retryable=bool(error_payload.get("retryable", False)),
            )
        return cls.failed(str(run_id), "UNKNOWN")


@dataclass(slots=True, frozen=True)
class CancelRequest:
    run_id: str
    reason: CancelReason = "user"

    def __post_init__(self) -> None:
        if self.reason not in CANCEL_REASONS:
            raise ValueError(f"Unsupported cancel reason: {self.reason!r}")

    def to_payload(self) -> Dict[str, str]:
        return {"runId": self.run_id, "reason": self.reason}


@dataclass(slots=True, frozen=True)
class GhostText:
    """Non-editable overlay the host should paint at ``position``."""

    position: int
    text: str
