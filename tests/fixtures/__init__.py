# tests/fixtures/__init__.py
"""
Test fixtures for the feed ingest pipeline.

Factory functions:
- make_feed()
- make_entry() / make_entries()
- make_page()

In-memory fakes for the store, publisher, feed parser, page metadata
fetcher and language detector.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence
from uuid import UUID, uuid4

from feed_ingest.models.article import Article
from feed_ingest.models.candidate import CandidateEntry, NormalizedFeed
from feed_ingest.models.feed import FeedDescriptor
from feed_ingest.models.page_metadata import PageMetadata
from feed_ingest.services.repositories import DuplicateKeyError, EntityNotFoundError

BASE_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_feed(
    *,
    feed_id: Optional[UUID] = None,
    link: str = "https://news.example.com/rss",
    languages: Sequence[str] = ("fr",),
    enabled: bool = True,
) -> FeedDescriptor:
    return FeedDescriptor(
        id=feed_id or uuid4(),
        link=link,
        languages=tuple(languages),
        enabled=enabled,
        title="Example News",
    )


def make_entry(
    n: int,
    *,
    title: Optional[str] = None,
    description: Optional[str] = None,
    content: str = "",
    authors: Sequence[str] = (),
    categories: Sequence[str] = (),
) -> CandidateEntry:
    return CandidateEntry(
        link=f"https://news.example.com/articles/{n}",
        title=f"Article number {n}" if title is None else title,
        description=(
            f"Description of article number {n}, long enough to be stored as a description."
            if description is None
            else description
        ),
        content=content,
        published_at=BASE_TIME + timedelta(minutes=n),
        authors=list(authors),
        categories=list(categories),
    )


def make_entries(count: int) -> List[CandidateEntry]:
    return [make_entry(n) for n in range(1, count + 1)]


def make_page(url: str = "https://news.example.com/articles/1", **kwargs) -> PageMetadata:
    return PageMetadata(url=url, **kwargs)


def make_article(entry: CandidateEntry, *, source_id: Optional[UUID] = None) -> Article:
    return Article(
        source_id=source_id or uuid4(),
        lang="en",
        title=entry.title or "stored",
        link=entry.link,
        pub_date=entry.published_at,
    )


class InMemoryFeedRepository:
    def __init__(self, feeds: Iterable[FeedDescriptor] = ()) -> None:
        self.feeds: Dict[UUID, FeedDescriptor] = {feed.id: feed for feed in feeds}

    async def find_feed_by_id(self, feed_id: UUID) -> FeedDescriptor:
        try:
            return self.feeds[feed_id]
        except KeyError:
            raise EntityNotFoundError(f"feed {feed_id} not found") from None


class InMemoryArticleRepository:
    """
    Stores articles by link. ``saved`` keeps insertion order of successful
    saves; ``scans_closed`` counts scans whose context was left.
    """

    def __init__(self, articles: Iterable[Article] = ()) -> None:
        self.articles: Dict[str, Article] = {}
        self.saved: List[Article] = []
        self.scans_opened = 0
        self.scans_closed = 0
        self.find_error: Optional[Exception] = None
        self.save_errors: Dict[str, BaseException] = {}
        self.on_save: Optional[Callable[[Article], None]] = None
        for article in articles:
            self.articles[article.link] = article

    @asynccontextmanager
    async def find_articles_by_links(self, links, *, sort_desc_by_pub_date=True, limit):
        if self.find_error is not None:
            raise self.find_error
        wanted = set(links)
        matches = sorted(
            (a for a in self.articles.values() if a.link in wanted),
            key=lambda a: a.pub_date,
            reverse=sort_desc_by_pub_date,
        )[:limit]

        async def _iter():
            for article in matches:
                yield article

        self.scans_opened += 1
        try:
            yield _iter()
        finally:
            self.scans_closed += 1

    async def save_article(self, article: Article) -> None:
        error = self.save_errors.get(article.link)
        if error is not None:
            raise error
        if article.link in self.articles or any(a.id == article.id for a in self.articles.values()):
            raise DuplicateKeyError("duplicate key", key=article.link)
        self.articles[article.link] = article
        self.saved.append(article)
        if self.on_save is not None:
            self.on_save(article)


class RecordingPublisher:
    def __init__(self, *, error: Optional[Exception] = None) -> None:
        self.published: List[Article] = []
        self.error = error

    async def publish_articles(self, articles: Sequence[Article]) -> None:
        if self.error is not None:
            raise self.error
        self.published.extend(articles)


class FakeFeedParser:
    def __init__(self, entries: Sequence[CandidateEntry] = (), *, error: Optional[Exception] = None) -> None:
        self.entries = list(entries)
        self.error = error
        self.calls: List[str] = []

    async def parse_feed(self, link: str) -> NormalizedFeed:
        self.calls.append(link)
        if self.error is not None:
            raise self.error
        return NormalizedFeed(link=link, entries=list(self.entries))


class FakePageMetadata:
    """Returns a page with an og:title per link; links in ``failing`` raise."""

    def __init__(
        self,
        pages: Optional[Dict[str, PageMetadata]] = None,
        *,
        failing: Iterable[str] = (),
        delay_s: float = 0.0,
    ) -> None:
        self.pages = pages or {}
        self.failing = set(failing)
        self.delay_s = delay_s
        self.calls: List[str] = []

    async def fetch_page_metadata(self, link: str) -> PageMetadata:
        self.calls.append(link)
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if link in self.failing:
            raise RuntimeError(f"boom for {link}")
        return self.pages.get(link) or PageMetadata(url=link)


class FixedLanguageDetector:
    def __init__(self, code: Optional[str] = "en") -> None:
        self.code = code
        self.texts: List[str] = []

    def detect(self, text: str) -> Optional[str]:
        self.texts.append(text)
        return self.code
