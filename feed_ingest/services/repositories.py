"""
Store and publication boundaries consumed by the ingest pipeline.

The pipeline only talks to these protocols; ``services.pg_store`` holds the
asyncpg-backed implementation and the tests use in-memory fakes.
"""

from __future__ import annotations

from typing import AsyncContextManager, AsyncIterator, Protocol, Sequence
from uuid import UUID

from feed_ingest.models.article import Article
from feed_ingest.models.feed import FeedDescriptor


class EntityNotFoundError(Exception):
    """Requested entity does not exist in the store."""


class DuplicateKeyError(Exception):
    """Uniqueness violation on save (duplicate link or id)."""

    def __init__(self, message: str, *, key: str | None = None):
        super().__init__(message)
        self.key = key


class ArticleStoreError(Exception):
    """Any store failure that is neither a duplicate nor a missing entity."""


class FeedRepository(Protocol):
    async def find_feed_by_id(self, feed_id: UUID) -> FeedDescriptor:
        ...


class ArticleRepository(Protocol):
    def find_articles_by_links(
        self,
        links: Sequence[str],
        *,
        sort_desc_by_pub_date: bool = True,
        limit: int,
    ) -> AsyncContextManager[AsyncIterator[Article]]:
        """
        Scan articles whose link is in ``links``. Leaving the context
        closes the underlying scan, also when iteration stopped early.
        """
        ...

    async def save_article(self, article: Article) -> None:
        ...


class ArticlePublisher(Protocol):
    async def publish_articles(self, articles: Sequence[Article]) -> None:
        ...
