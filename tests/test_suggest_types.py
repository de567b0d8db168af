"""Tests for the request and stream value types."""

from __future__ import annotations

import pytest

from wisp.suggest.types import CancelRequest, CompletionRequest, StreamEvent


def test_completion_request_payload_uses_wire_names() -> None:
    request = CompletionRequest(
        prefix_text="The quick",
        suffix_text=" dog",
        max_tokens=48,
        temperature=0.4,
        timeout_ms=15_000,
        stop_sequences=("\n\n",),
    )

    assert request.to_payload() == {
        "prefix": "The quick",
        "suffix": " dog",
        "maxTokens": 48,
        "temperature": 0.4,
        "timeoutMs": 15_000,
        "stop": ["\n\n"],
    }


def test_stream_event_from_payload_parses_each_kind() -> None:
    delta = StreamEvent.from_payload({"type": "delta", "runId": "r1", "text": "lazy"})
    done = StreamEvent.from_payload({"type": "done", "runId": "r1", "result": "lazy dog", "durationMs": 12})
    error = StreamEvent.from_payload(
        {"type": "error", "runId": "r1", "error": {"code": "TIMEOUT", "message": "slow", "retryable": True}}
    )

    assert delta == StreamEvent.delta("r1", "lazy")
    assert done.result == "lazy dog" and done.duration_ms == 12
    assert error.kind == "error"
    assert error.error is not None
    assert (error.error.code, error.error.retryable) == ("TIMEOUT", True)


def test_error_payload_without_details_defaults_to_unknown() -> None:
    event = StreamEvent.from_payload({"type": "error", "runId": "r9"})

    assert event.error is not None
    assert event.error.code == "UNKNOWN"


@pytest.mark.parametrize(
    "payload",
    [
        {"type": "progress", "runId": "r1"},
        {"type": "delta", "text": "orphan"},
    ],
)
def test_stream_event_from_payload_rejects_malformed_input(payload) -> None:
    with pytest.raises(ValueError):
        StreamEvent.from_payload(payload)


def test_cancel_request_validates_reason() -> None:
    assert CancelRequest("r1", "input").to_payload() == {"runId": "r1", "reason": "input"}
    with pytest.raises(ValueError):
        CancelRequest("r1", "bored")  # type: ignore[arg-type]
