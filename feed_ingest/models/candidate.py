from __future__ import annotations

from datetime import datetime
from typing import List

from pydantic import BaseModel, Field


class CandidateEntry(BaseModel):
    """
    Normalized representation of a single feed entry, produced by the
    feed fetcher and consumed by the cursor resolver and enricher.
    Lives for one pipeline run only and is never persisted.
    """

    link: str
    title: str = ""
    description: str = ""
    content: str = ""
    published_at: datetime
    authors: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)


class NormalizedFeed(BaseModel):
    """Parsed feed with entries sorted ascending by ``published_at``."""

    link: str
    title: str = ""
    entries: List[CandidateEntry] = Field(default_factory=list)
