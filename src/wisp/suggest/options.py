"""Tunable parameters for one suggestion engine instance."""

from __future__ import annotations

from dataclasses import dataclass

__all__ = ["NAVIGATION_KEYS", "SuggestionOptions"]

NAVIGATION_KEYS: frozenset[str] = frozenset(
    {
        "ArrowLeft",
        "ArrowRight",
        "ArrowUp",
        "ArrowDown",
        "Home",
        "End",
        "PageUp",
        "PageDown",
    }
)


@dataclass(slots=True, frozen=True)
class SuggestionOptions:
    """Trigger thresholds and request parameters.

    Defaults match the desktop editor: an 800 ms quiet period, at least 24
    non-blank characters before the caret, and a 4000/2000 character window
    around it.
    """

    enabled: bool = True
    idle_delay_ms: int = 800
    min_prefix_chars: int = 24
    max_prefix_chars: int = 4_000
    max_suffix_chars: int = 2_000
    max_tokens: int = 48
    temperature: float = 0.4
    timeout_ms: int = 15_000
    stop_sequences: tuple[str, ...] = ("\n\n",)
    accept_key: str = "Tab"
    dismiss_key: str = "Escape"

    def __post_init__(self) -> None:
        if self.idle_delay_ms < 0:
            raise ValueError("idle_delay_ms must be non-negative")
        if self.min_prefix_chars < 0:
            raise ValueError("min_prefix_chars must be non-negative")
        if self.max_prefix_chars < 0 or self.max_suffix_chars < 0:
            raise ValueError("Context windows must be non-negative")
        if self.max_tokens <= 0:
            raise ValueError("max_tokens must be positive")
        if self.accept_key == self.dismiss_key:
            raise ValueError("accept_key and dismiss_key must differ")

    @property
    def idle_delay_seconds(self) -> float:
        return self.idle_delay_ms / 1000.0
