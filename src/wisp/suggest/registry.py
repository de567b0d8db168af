"""Per-view engine bookkeeping so open documents never share suggestion state."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Dict, Iterator

from .client import SuggestionClient
from .engine import InlineSuggestionEngine
from .options import SuggestionOptions

if TYPE_CHECKING:  # pragma: no cover
    from ..editor.surface import EditorSurface

__all__ = ["SuggestionRegistry"]

LOGGER = logging.getLogger(__name__)


class SuggestionRegistry:
    """Owns one :class:`InlineSuggestionEngine` per attached editor view."""

    def __init__(
        self,
        client: SuggestionClient,
        options: SuggestionOptions | None = None,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._client = client
        self._options = options or SuggestionOptions()
        self._loop = loop
        self._engines: Dict[int, tuple[EditorSurface, InlineSuggestionEngine]] = {}

    def attach(self, surface: EditorSurface, options: SuggestionOptions | None = None) -> InlineSuggestionEngine:
        """Return the view's engine, creating and wiring it on first use."""

        key = id(surface)
        entry = self._engines.get(key)
        if entry is not None and entry[0] is surface:
            return entry[1]
        engine = InlineSuggestionEngine(surface, self._client, options or self._options, loop=self._loop)
        engine.attach()
        self._engines[key] = (surface, engine)
        LOGGER.debug("Attached inline suggestions to view %s (%d active)", key, len(self._engines))
        return engine

    def get(self, surface: EditorSurface) -> InlineSuggestionEngine | None:
        entry = self._engines.get(id(surface))
        if entry is None or entry[0] is not surface:
            return None
        return entry[1]

    def detach(self, surface: EditorSurface) -> bool:
        """Destroy the view's engine; returns ``False`` when none was attached."""

        entry = self._engines.get(id(surface))
        if entry is None or entry[0] is not surface:
            return False
        del self._engines[id(surface)]
        entry[1].destroy()
        return True

    def set_enabled(self, enabled: bool) -> None:
        for engine in self:
            engine.set_enabled(enabled)

    def close(self) -> None:
        for surface, _engine in list(self._engines.values()):
            self.detach(surface)

    def __iter__(self) -> Iterator[InlineSuggestionEngine]:
        return iter([engine for _surface, engine in self._engines.values()])

    def __len__(self) -> int:
        return len(self._engines)
