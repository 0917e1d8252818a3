"""
Per-entry enrichment: page metadata, description/title/language fallback
chains, authors, categories and media.

Every fallback chain is an ordered tuple of strategies; the first one that
yields a non-empty value wins. Enrichment never raises for a bad entry, it
returns ``(None, EnrichmentSkipped)`` and the pipeline moves on.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from feed_ingest.models.article import ArticleDraft, Media, MediaType
from feed_ingest.models.candidate import CandidateEntry
from feed_ingest.models.feed import FeedDescriptor
from feed_ingest.models.page_metadata import PageMetadata
from feed_ingest.services.language_service import LangDetectLanguageDetector, LanguageDetector
from feed_ingest.services.text_normalization import strip_html, truncate_runes


MIN_SHORT_DESC = 20
MAX_SHORT_DESC = 500
MAX_TITLE = 100
MIN_STORED_DESC = 50


class PageMetadataFetcher(Protocol):
    async def fetch_page_metadata(self, link: str) -> PageMetadata:
        ...


class EnrichmentSkipped(Exception):
    """
    Non-fatal: the entry cannot become an article. Logged, not retried,
    the run continues with the next entry.
    """

    def __init__(self, reason: str, *, link: str, detail: str | None = None):
        super().__init__(f"{reason}: {detail}" if detail else reason)
        self.reason = reason
        self.link = link
        self.detail = detail


@dataclass(frozen=True)
class EnrichmentContext:
    entry: CandidateEntry
    page: PageMetadata
    feed: FeedDescriptor
    description: str = ""
    short_desc: str = ""
    title: str = ""


Strategy = Callable[[EnrichmentContext], Optional[str]]


def first_non_empty(strategies: Sequence[Strategy], ctx: EnrichmentContext) -> str:
    for strategy in strategies:
        value = strategy(ctx)
        if value and value.strip():
            return value.strip()
    return ""


# -------- Description --------------------------------------------------------

def _entry_description(ctx: EnrichmentContext) -> str:
    return strip_html(ctx.entry.description)

def _entry_content(ctx: EnrichmentContext) -> str:
    return strip_html(ctx.entry.content)

def _page_description(ctx: EnrichmentContext) -> str:
    return strip_html(ctx.page.description)

DESCRIPTION_STRATEGIES: Tuple[Strategy, ...] = (
    _entry_description,
    _entry_content,
    _page_description,
)


# -------- Short description --------------------------------------------------

def _page_short_description(ctx: EnrichmentContext) -> str:
    value = strip_html(ctx.page.description)
    return value if len(value) >= MIN_SHORT_DESC else ""

def _truncated_description(ctx: EnrichmentContext) -> str:
    return truncate_runes(ctx.description, MAX_SHORT_DESC)

SHORT_DESC_STRATEGIES: Tuple[Strategy, ...] = (
    _page_short_description,
    _truncated_description,
)


# -------- Title --------------------------------------------------------------

def _entry_title(ctx: EnrichmentContext) -> str:
    return strip_html(ctx.entry.title)

def _page_title(ctx: EnrichmentContext) -> str:
    return strip_html(ctx.page.title)

def _short_desc_title(ctx: EnrichmentContext) -> str:
    return truncate_runes(ctx.short_desc, MAX_TITLE)

TITLE_STRATEGIES: Tuple[Strategy, ...] = (
    _entry_title,
    _page_title,
    _short_desc_title,
)


# -------- Language -----------------------------------------------------------

def language_strategies(detector: LanguageDetector) -> Tuple[Strategy, ...]:
    def _detected(ctx: EnrichmentContext) -> Optional[str]:
        text = " ".join((ctx.title, ctx.short_desc, ctx.description))
        return detector.detect(text)

    def _feed_default(ctx: EnrichmentContext) -> Optional[str]:
        return ctx.feed.default_language

    return (_detected, _feed_default)


# -------- Lists & media ------------------------------------------------------

def clean_values(values: Sequence[str]) -> Optional[List[str]]:
    cleaned = [value for value in (strip_html(raw) for raw in values) if value]
    return cleaned or None


def _compact_meta(meta: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    compact = {key: value for key, value in meta.items() if value not in (None, "")}
    return compact or None


def build_media(page: PageMetadata) -> Optional[List[Media]]:
    media: List[Media] = []
    for image in page.images:
        media.append(Media(
            url=image.url,
            type=MediaType.IMAGE,
            meta=_compact_meta({"width": image.width, "height": image.height, "alt": image.alt}),
        ))
    for video in page.videos:
        media.append(Media(
            url=video.url,
            type=MediaType.VIDEO,
            meta=_compact_meta({"width": video.width, "height": video.height, "duration": video.duration}),
        ))
    for audio in page.audios:
        media.append(Media(url=audio.url, type=MediaType.AUDIO))
    return media or None


# -------- Enricher -----------------------------------------------------------

class ArticleEnricher:
    def __init__(
        self,
        page_metadata: PageMetadataFetcher,
        language_detector: Optional[LanguageDetector] = None,
    ) -> None:
        self._page_metadata = page_metadata
        self._language_strategies = language_strategies(
            language_detector or LangDetectLanguageDetector()
        )

    async def enrich(
        self,
        entry: CandidateEntry,
        feed: FeedDescriptor,
    ) -> Tuple[ArticleDraft | None, EnrichmentSkipped | None]:
        """
        Enrich one candidate entry.
        Returns:
            (ArticleDraft, None) on success
            (None, EnrichmentSkipped) when the entry has to be dropped
        """
        try:
            page = await self._page_metadata.fetch_page_metadata(entry.link)
        except Exception as exc:
            return None, EnrichmentSkipped("page_metadata_failed", link=entry.link, detail=str(exc))
        return self.build_draft(entry, feed, page)

    def build_draft(
        self,
        entry: CandidateEntry,
        feed: FeedDescriptor,
        page: PageMetadata,
    ) -> Tuple[ArticleDraft | None, EnrichmentSkipped | None]:
        ctx = EnrichmentContext(entry=entry, page=page, feed=feed)
        ctx = replace(ctx, description=first_non_empty(DESCRIPTION_STRATEGIES, ctx))
        ctx = replace(ctx, short_desc=first_non_empty(SHORT_DESC_STRATEGIES, ctx))
        ctx = replace(ctx, title=first_non_empty(TITLE_STRATEGIES, ctx))

        if not ctx.title:
            return None, EnrichmentSkipped("title_not_found", link=entry.link)

        lang = first_non_empty(self._language_strategies, ctx).lower()
        if not lang:
            return None, EnrichmentSkipped("language_not_detected", link=entry.link)

        draft = ArticleDraft(
            lang=lang,
            title=ctx.title,
            link=entry.link,
            pub_date=entry.published_at,
            short_desc=ctx.short_desc if len(ctx.short_desc) >= MIN_STORED_DESC else None,
            long_desc=ctx.description if len(ctx.description) >= MIN_STORED_DESC else None,
            authors=clean_values(entry.authors),
            categories=clean_values(entry.categories),
            media=build_media(page),
        )
        return draft, None
