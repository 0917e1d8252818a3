"""
asyncpg-backed feed/article repositories and the pg_notify publisher.

Tables (see ``ARTICLES_DDL``): ``feeds`` is owned by subscription
management and only read here; ``articles`` has a unique index on ``link``
so re-ingesting a link surfaces as ``DuplicateKeyError``.
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Sequence
from uuid import UUID

import asyncpg

from feed_ingest.core.config import settings
from feed_ingest.core.logging import get_logger
from feed_ingest.models.article import Article
from feed_ingest.models.feed import FeedDescriptor
from feed_ingest.services import db_service
from feed_ingest.services.repositories import DuplicateKeyError, EntityNotFoundError

logger = get_logger().bind(module="pg_store")

ARTICLES_DDL = """
CREATE TABLE IF NOT EXISTS articles (
    id          UUID PRIMARY KEY,
    source_id   UUID NOT NULL,
    source      TEXT NOT NULL,
    lang        TEXT NOT NULL,
    title       TEXT NOT NULL,
    short_desc  TEXT,
    long_desc   TEXT,
    link        TEXT NOT NULL,
    pub_date    TIMESTAMPTZ NOT NULL,
    authors     TEXT[],
    categories  TEXT[],
    media       JSONB,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE UNIQUE INDEX IF NOT EXISTS articles_link_uidx ON articles (link);
CREATE INDEX IF NOT EXISTS articles_pub_date_idx ON articles (pub_date DESC);
"""

_ARTICLE_COLUMNS = (
    "id, source_id, source, lang, title, short_desc, long_desc, link, "
    "pub_date, authors, categories, media"
)

# NOTIFY payloads are capped at 8000 bytes by Postgres.
_MAX_NOTIFY_PAYLOAD = 7900


def record_to_article(row: Any) -> Article:
    data: Dict[str, Any] = dict(row)
    media = data.get("media")
    if isinstance(media, str):
        data["media"] = json.loads(media)
    for key in ("authors", "categories"):
        if data.get(key) is not None:
            data[key] = list(data[key])
    return Article(**data)


class PgFeedRepository:
    async def find_feed_by_id(self, feed_id: UUID) -> FeedDescriptor:
        row = await db_service.fetchrow(
            """
            SELECT id, link, languages, enabled, title
            FROM feeds
            WHERE id = $1
            """,
            feed_id,
        )
        if not row:
            raise EntityNotFoundError(f"feed {feed_id} not found")
        return FeedDescriptor(
            id=row["id"],
            link=row["link"],
            languages=tuple(row["languages"] or ()),
            enabled=bool(row["enabled"]),
            title=row["title"],
        )


class PgArticleRepository:
    @asynccontextmanager
    async def find_articles_by_links(
        self,
        links: Sequence[str],
        *,
        sort_desc_by_pub_date: bool = True,
        limit: int,
    ) -> AsyncIterator[AsyncIterator[Article]]:
        order = "DESC" if sort_desc_by_pub_date else "ASC"
        query = (
            f"SELECT {_ARTICLE_COLUMNS} FROM articles "
            f"WHERE link = ANY($1::text[]) ORDER BY pub_date {order} LIMIT $2"
        )
        # Server-side cursor; closed together with the read-only transaction.
        async with db_service.run_in_transaction(readonly=True) as conn:
            rows = conn.cursor(query, list(links), limit)

            async def _articles() -> AsyncIterator[Article]:
                async for row in rows:
                    yield record_to_article(row)

            iterator = _articles()
            try:
                yield iterator
            finally:
                await iterator.aclose()

    async def save_article(self, article: Article) -> None:
        media = (
            json.dumps([m.model_dump(mode="json", exclude_none=True) for m in article.media])
            if article.media
            else None
        )
        try:
            await db_service.execute(
                f"""
                INSERT INTO articles ({_ARTICLE_COLUMNS})
                VALUES ($1,$2,$3,$4,$5,$6,$7,$8,$9,$10,$11,CAST($12 AS JSONB))
                """,
                article.id,
                article.source_id,
                article.source.value,
                article.lang,
                article.title,
                article.short_desc,
                article.long_desc,
                article.link,
                article.pub_date,
                article.authors,
                article.categories,
                media,
            )
        except asyncpg.UniqueViolationError as exc:
            raise DuplicateKeyError(str(exc), key=article.link) from exc

    async def ensure_schema(self) -> None:
        await db_service.execute(ARTICLES_DDL)


def notify_payload(article: Article) -> str:
    message = article.to_message()
    payload = json.dumps(message, ensure_ascii=False)
    for key in ("long_desc", "media", "short_desc"):
        if len(payload.encode("utf-8")) <= _MAX_NOTIFY_PAYLOAD:
            break
        message.pop(key, None)
        payload = json.dumps(message, ensure_ascii=False)
    return payload


class PgNotifyPublisher:
    """Publishes saved articles on a Postgres NOTIFY channel, one message per article."""

    def __init__(self, channel: str = settings.ARTICLES_NOTIFY_CHANNEL) -> None:
        self.channel = channel

    async def publish_articles(self, articles: Sequence[Article]) -> None:
        for article in articles:
            await db_service.execute("SELECT pg_notify($1, $2)", self.channel, notify_payload(article))
            logger.debug("feed_ingest_article_published", channel=self.channel, article_id=str(article.id))
