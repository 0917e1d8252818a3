"""
Feed descriptor as handed to the ingest pipeline.

Subscription management (adding, moderating, disabling feeds) lives
elsewhere; the pipeline only reads an already-approved descriptor.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple
from uuid import UUID


@dataclass(frozen=True)
class FeedDescriptor:
    """Single RSS/Atom feed definition."""

    id: UUID
    link: str
    languages: Tuple[str, ...] = field(default_factory=tuple)
    enabled: bool = True
    title: Optional[str] = None

    @property
    def default_language(self) -> Optional[str]:
        for lang in self.languages:
            if isinstance(lang, str) and lang.strip():
                return lang.strip().lower()
        return None
