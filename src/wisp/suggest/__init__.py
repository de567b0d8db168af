"""Inline ghost-text suggestion engine."""

from .client import StreamHub, SuggestionClient
from .engine import InlineSuggestionEngine
from .options import SuggestionOptions
from .registry import SuggestionRegistry
from .state import IDLE, SuggestionState, apply
from .types import CancelRequest, CompletionRequest, CompletionResult, GhostText, StreamEvent

__all__ = [
    "IDLE",
    "CancelRequest",
    "CompletionRequest",
    "CompletionResult",
    "GhostText",
    "InlineSuggestionEngine",
    "StreamEvent",
    "StreamHub",
    "SuggestionClient",
    "SuggestionOptions",
    "SuggestionRegistry",
    "SuggestionState",
    "apply",
]
