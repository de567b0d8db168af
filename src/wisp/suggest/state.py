"""Suggestion state record and the pure reducer that advances it.

Every change to an engine's :class:`SuggestionState` goes through :func:`apply`.
Components that talk to timers, the network or the host editor only *propose*
transitions; they never patch the record themselves.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Union

__all__ = [
    "IDLE",
    "Delta",
    "Done",
    "Error",
    "Reset",
    "Run",
    "SuggestionState",
    "Transition",
    "apply",
]


@dataclass(slots=True, frozen=True)
class SuggestionState:
    """Snapshot of one engine's suggestion lifecycle."""

    run_id: str | None = None
    pending: bool = False
    suggestion_text: str = ""

    @property
    def is_idle(self) -> bool:
        """True when there is neither an outstanding run nor visible text."""

        return self.run_id is None and not self.suggestion_text

    @property
    def is_active(self) -> bool:
        """True when something exists that a cancel/dismiss would abandon."""

        return self.run_id is not None or bool(self.suggestion_text)


IDLE = SuggestionState()


@dataclass(slots=True, frozen=True)
class Reset:
    pass


@dataclass(slots=True, frozen=True)
class Run:
    run_id: str


@dataclass(slots=True, frozen=True)
class Delta:
    text: str


@dataclass(slots=True, frozen=True)
class Done:
    pass


@dataclass(slots=True, frozen=True)
class Error:
    pass


Transition = Union[Reset, Run, Delta, Done, Error]


def apply(state: SuggestionState, transition: Transition) -> SuggestionState:
    """Return the state that results from applying ``transition`` to ``state``."""

    if isinstance(transition, Reset):
        return IDLE
    if isinstance(transition, Run):
        return SuggestionState(run_id=transition.run_id, pending=True, suggestion_text="")
    if isinstance(transition, Delta):
        if state.run_id is None:
            return state
        return replace(state, pending=True, suggestion_text=state.suggestion_text + transition.text)
    if isinstance(transition, Done):
        # Text is kept so the finished suggestion stays visible and acceptable.
        return replace(state, run_id=None, pending=False)
    if isinstance(transition, Error):
        return IDLE
    raise TypeError(f"Unsupported suggestion transition: {transition!r}")
