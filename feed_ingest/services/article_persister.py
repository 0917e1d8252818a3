from __future__ import annotations

import asyncio
from enum import Enum
from typing import Optional, Set, Tuple

from feed_ingest.core.logging import get_logger
from feed_ingest.models.article import Article, ArticleDraft
from feed_ingest.models.feed import FeedDescriptor
from feed_ingest.services.repositories import (
    ArticlePublisher,
    ArticleRepository,
    ArticleStoreError,
    DuplicateKeyError,
)

logger = get_logger().bind(module="article_persister")


class PersistOutcome(str, Enum):
    SAVED = "saved"
    DUPLICATE = "duplicate"
    ABORTED = "aborted"


class ArticlePersister:
    """
    Dedup-safe article write followed by a fire-and-forget publish.

    A duplicate key is an expected outcome. A store timeout is swallowed
    (the run is ending). Anything else is raised as ``ArticleStoreError``.
    """

    def __init__(
        self,
        articles: ArticleRepository,
        publisher: Optional[ArticlePublisher] = None,
    ) -> None:
        self._articles = articles
        self._publisher = publisher
        self._pending: Set[asyncio.Task] = set()

    async def persist(
        self,
        draft: ArticleDraft,
        feed: FeedDescriptor,
    ) -> Tuple[PersistOutcome, Article]:
        article = Article.from_draft(draft, source_id=feed.id)
        try:
            await self._articles.save_article(article)
        except DuplicateKeyError:
            logger.debug(
                "feed_ingest_article_duplicate",
                link=article.link,
                article_id=str(article.id),
            )
            return PersistOutcome.DUPLICATE, article
        except TimeoutError:
            logger.debug("feed_ingest_article_save_aborted", link=article.link)
            return PersistOutcome.ABORTED, article
        except Exception as exc:
            raise ArticleStoreError(f"error due to save article {article.link}: {exc}") from exc

        logger.debug(
            "feed_ingest_article_saved",
            link=article.link,
            article_id=str(article.id),
            lang=article.lang,
        )
        self._schedule_publish(article)
        return PersistOutcome.SAVED, article

    def _schedule_publish(self, article: Article) -> None:
        if self._publisher is None:
            return
        task = asyncio.create_task(self._publish(article))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _publish(self, article: Article) -> None:
        try:
            await self._publisher.publish_articles([article])
        except Exception as exc:
            logger.warning(
                "feed_ingest_publish_failed",
                link=article.link,
                article_id=str(article.id),
                error=str(exc),
            )

    async def wait_published(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight publications (worker shutdown, tests)."""
        if not self._pending:
            return
        pending = list(self._pending)
        done, not_done = await asyncio.wait(pending, timeout=timeout)
        if not_done:
            logger.warning("feed_ingest_publish_pending", pending=len(not_done))
