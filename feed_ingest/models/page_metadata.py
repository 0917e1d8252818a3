from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class PageImage(BaseModel):
    url: str
    width: Optional[int] = None
    height: Optional[int] = None
    alt: Optional[str] = None


class PageVideo(BaseModel):
    url: str
    width: Optional[int] = None
    height: Optional[int] = None
    duration: Optional[int] = None


class PageAudio(BaseModel):
    url: str


class PageMetadata(BaseModel):
    """
    Open Graph style metadata scraped from an entry's linked page.
    Title and description are raw (may still contain markup).
    """

    url: str
    title: str = ""
    description: str = ""
    images: List[PageImage] = Field(default_factory=list)
    videos: List[PageVideo] = Field(default_factory=list)
    audios: List[PageAudio] = Field(default_factory=list)
