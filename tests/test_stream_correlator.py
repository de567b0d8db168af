"""Tests for matching stream events to the active run."""

from __future__ import annotations

from wisp.suggest.correlator import StreamCorrelator
from wisp.suggest.state import IDLE, Run, SuggestionState, Transition, apply

from tests.helpers import FakeSuggestionClient


class _Box:
    def __init__(self, state: SuggestionState = IDLE) -> None:
        self.state = state
        self.proposed: list[Transition] = []

    def propose(self, transition: Transition) -> None:
        self.proposed.append(transition)
        self.state = apply(self.state, transition)


def _correlator(box: _Box, client: FakeSuggestionClient) -> StreamCorrelator:
    correlator = StreamCorrelator(client, read_state=lambda: box.state, propose=box.propose)
    correlator.attach()
    return correlator


def test_events_for_active_run_fold_into_state() -> None:
    client = FakeSuggestionClient()
    box = _Box(apply(IDLE, Run("r1")))
    _correlator(box, client)

    client.delta("r1", "lazy ")
    client.delta("r1", "dog")
    client.done("r1", "lazy dog")

    assert box.state == SuggestionState(run_id=None, pending=False, suggestion_text="lazy dog")


def test_events_while_idle_are_discarded() -> None:
    client = FakeSuggestionClient()
    box = _Box()
    _correlator(box, client)

    client.delta("r1", "ghost")
    client.done("r1")

    assert box.proposed == []
    assert box.state == IDLE


def test_late_delta_from_superseded_run_is_discarded() -> None:
    client = FakeSuggestionClient()
    box = _Box(apply(IDLE, Run("r1")))
    _correlator(box, client)
    client.delta("r1", "old ")

    box.propose(Run("r2"))
    client.delta("r1", "stale")
    client.delta("r2", "lazy")
    client.error("r1")

    assert box.state == SuggestionState(run_id="r2", pending=True, suggestion_text="lazy")


def test_error_for_active_run_resets() -> None:
    client = FakeSuggestionClient()
    box = _Box(apply(IDLE, Run("r1")))
    _correlator(box, client)
    client.delta("r1", "half")

    client.error("r1", "TIMEOUT")

    assert box.state == IDLE


def test_events_after_done_are_ignored() -> None:
    client = FakeSuggestionClient()
    box = _Box(apply(IDLE, Run("r1")))
    _correlator(box, client)
    client.delta("r1", "lazy dog")
    client.done("r1")

    client.delta("r1", " again")

    assert box.state.suggestion_text == "lazy dog"


def test_attach_is_idempotent_and_detach_unsubscribes() -> None:
    client = FakeSuggestionClient()
    box = _Box(apply(IDLE, Run("r1")))
    correlator = _correlator(box, client)
    correlator.attach()

    assert client.hub.subscriber_count == 1
    correlator.detach()
    correlator.detach()
    assert not correlator.subscribed
    assert client.hub.subscriber_count == 0

    client.delta("r1", "unseen")
    assert box.state.suggestion_text == ""
