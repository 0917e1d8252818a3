from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SourceKind(str, Enum):
    FEED = "feed"


class MediaType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"


class Media(BaseModel):
    url: str
    type: MediaType
    meta: Optional[Dict[str, Any]] = None


class ArticleDraft(BaseModel):
    """
    Enriched article content, before the persister assigns identity and
    source back-reference.
    """

    model_config = ConfigDict(frozen=True)

    lang: str
    title: str
    link: str
    pub_date: datetime
    short_desc: Optional[str] = None
    long_desc: Optional[str] = None
    authors: Optional[List[str]] = None
    categories: Optional[List[str]] = None
    media: Optional[List[Media]] = None

    @field_validator("title", "lang")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value


class Article(ArticleDraft):
    """Persisted article. Created once, never updated by the pipeline."""

    id: UUID = Field(default_factory=uuid4)
    source_id: UUID
    source: SourceKind = SourceKind.FEED

    @classmethod
    def from_draft(cls, draft: ArticleDraft, *, source_id: UUID) -> "Article":
        return cls(**draft.model_dump(), source_id=source_id, source=SourceKind.FEED)

    def to_message(self) -> Dict[str, Any]:
        """JSON-ready payload for downstream consumers; absent optionals are omitted."""
        return self.model_dump(mode="json", exclude_none=True)
