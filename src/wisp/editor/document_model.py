"""Dataclasses representing editor document state."""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)


def _hash_text(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


@dataclass(slots=True)
class DocumentMetadata:
    """Metadata describing the currently loaded document."""

    path: Optional[Path] = None
    language: str = "markdown"
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)


@dataclass(slots=True)
class SelectionRange:
    """Represents the current selection inside the editor."""

    start: int = 0
    end: int = 0

    @property
    def collapsed(self) -> bool:
        return self.start == self.end

    def as_tuple(self) -> tuple[int, int]:
        """Return the selection as a tuple for serialization."""

        return (self.start, self.end)


@dataclass(slots=True)
class DocumentState:
    """Text plus a monotonically increasing version used as document identity."""

    text: str = ""
    metadata: DocumentMetadata = field(default_factory=DocumentMetadata)
    dirty: bool = False
    document_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    version_id: int = 1
    content_hash: str = field(default_factory=str)

    def __post_init__(self) -> None:
        if not self.content_hash:
            self.content_hash = _hash_text(self.text)

    def update_text(self, new_text: str) -> None:
        """Update the document text, bump the version and mark it dirty."""

        self.text = new_text
        self.dirty = True
        self.metadata.updated_at = _utcnow()
        self.version_id += 1
        self.content_hash = _hash_text(new_text)

    def signature(self) -> tuple[str, int]:
        """Identity that changes on every edit, even when the text repeats."""

        return (self.document_id, self.version_id)

    def snapshot(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "text": self.text,
            "language": self.metadata.language,
            "dirty": self.dirty,
            "document_id": self.document_id,
            "version_id": self.version_id,
            "content_hash": self.content_hash,
        }
        if self.metadata.path:
            payload["path"] = str(self.metadata.path)
        return payload
