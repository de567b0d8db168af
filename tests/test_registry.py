"""Tests for per-view engine bookkeeping."""

from __future__ import annotations

import pytest

from wisp.editor.editor_view import EditorView
from wisp.suggest.options import SuggestionOptions
from wisp.suggest.registry import SuggestionRegistry
from wisp.suggest.state import IDLE

from tests.helpers import FAST_OPTIONS, LONG_ENOUGH, FakeSuggestionClient, settle, wait_until


@pytest.mark.asyncio
async def test_each_view_gets_independent_state() -> None:
    client = FakeSuggestionClient()
    registry = SuggestionRegistry(client, FAST_OPTIONS)
    first, second = EditorView(), EditorView()
    first_engine = registry.attach(first)
    second_engine = registry.attach(second)

    first.type_text(LONG_ENOUGH)
    await wait_until(lambda: first_engine.state.run_id == "r1")
    second.type_text("Pack my box with five dozen jugs")
    await wait_until(lambda: second_engine.state.run_id == "r2")

    client.delta("r1", " the dog")
    client.delta("r2", " of wine")

    assert first_engine.state.suggestion_text == " the dog"
    assert second_engine.state.suggestion_text == " of wine"
    assert len(registry) == 2


@pytest.mark.asyncio
async def test_attach_twice_returns_same_engine() -> None:
    registry = SuggestionRegistry(FakeSuggestionClient(), FAST_OPTIONS)
    view = EditorView()

    assert registry.attach(view) is registry.attach(view)
    assert registry.get(view) is registry.attach(view)
    assert registry.get(EditorView()) is None


@pytest.mark.asyncio
async def test_detach_destroys_only_that_engine() -> None:
    client = FakeSuggestionClient()
    registry = SuggestionRegistry(client, FAST_OPTIONS)
    kept, dropped = EditorView(), EditorView()
    kept_engine = registry.attach(kept)
    dropped_engine = registry.attach(dropped)

    assert registry.detach(dropped) is True
    assert registry.detach(dropped) is False

    assert dropped_engine.destroyed
    assert not kept_engine.destroyed
    assert client.hub.subscriber_count == 1
    assert list(registry) == [kept_engine]


@pytest.mark.asyncio
async def test_set_enabled_and_close_apply_to_every_engine() -> None:
    client = FakeSuggestionClient()
    registry = SuggestionRegistry(client, FAST_OPTIONS)
    view = EditorView()
    engine = registry.attach(view)
    view.type_text(LONG_ENOUGH)
    await wait_until(lambda: engine.state.run_id == "r1")

    registry.set_enabled(False)
    await settle()
    assert engine.state == IDLE
    assert client.cancel_pairs() == [("r1", "input")]

    registry.close()
    assert len(registry) == 0
    assert engine.destroyed
    assert client.hub.subscriber_count == 0


@pytest.mark.asyncio
async def test_per_view_options_override_defaults() -> None:
    registry = SuggestionRegistry(FakeSuggestionClient(), FAST_OPTIONS)
    custom = SuggestionOptions(idle_delay_ms=5, min_prefix_chars=2, accept_key="Enter")

    engine = registry.attach(EditorView(), custom)

    assert engine.options.accept_key == "Enter"
    assert registry.attach(EditorView()).options == FAST_OPTIONS
