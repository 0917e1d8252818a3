from __future__ import annotations

import argparse
import asyncio
import signal
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

import httpx

from feed_ingest.core.config import settings
from feed_ingest.core.logging import configure_logging, get_logger
from feed_ingest.core.request_id import with_run_id
from feed_ingest.services import db_service
from feed_ingest.services.article_enricher import ArticleEnricher
from feed_ingest.services.article_persister import ArticlePersister
from feed_ingest.services.feed_fetch_service import FeedFetchService
from feed_ingest.services.feed_ingest_service import FeedIngestService, ingest_feeds
from feed_ingest.services.page_metadata_service import PageMetadataService
from feed_ingest.services.pg_store import PgArticleRepository, PgFeedRepository, PgNotifyPublisher

logger = get_logger().bind(worker="feed_ingest_bot")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Pull feeds, enrich new entries, then store and publish articles.")
    parser.add_argument(
        "--feed-id",
        dest="feed_ids",
        action="append",
        required=True,
        help="Feed UUID to ingest. Repeat for multiple feeds.",
    )
    parser.add_argument(
        "--deadline",
        type=float,
        default=None,
        help="Optional per-feed run deadline in seconds.",
    )
    parser.add_argument(
        "--max-concurrency",
        type=int,
        default=settings.INGEST_MAX_CONCURRENCY,
        help="Maximum number of feeds processed at the same time.",
    )
    parser.add_argument(
        "--init-schema",
        action="store_true",
        help="Create the articles table and indexes before ingesting.",
    )
    return parser.parse_args(argv)


@asynccontextmanager
async def build_service() -> AsyncIterator[FeedIngestService]:
    """Wire one shared HTTP client and the Postgres store into the pipeline."""
    async with httpx.AsyncClient(follow_redirects=True) as client:
        feed_parser = FeedFetchService(client=client, timeout_s=settings.FEED_FETCH_TIMEOUT_S)
        page_metadata = PageMetadataService(client=client, timeout_s=settings.PAGE_METADATA_TIMEOUT_S)
        articles = PgArticleRepository()
        service = FeedIngestService(
            feeds=PgFeedRepository(),
            articles=articles,
            feed_parser=feed_parser,
            enricher=ArticleEnricher(page_metadata),
            persister=ArticlePersister(articles, PgNotifyPublisher()),
        )
        try:
            yield service
        finally:
            await service.wait_published(timeout=settings.PAGE_METADATA_TIMEOUT_S)


def _install_stop_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Windows / non-main thread
            pass


async def run_ingest(args: argparse.Namespace) -> int:
    stop = asyncio.Event()
    _install_stop_handlers(stop)
    try:
        if args.init_schema:
            await PgArticleRepository().ensure_schema()
        async with build_service() as service:
            summary = await ingest_feeds(
                service,
                args.feed_ids,
                max_concurrency=args.max_concurrency,
                deadline_s=args.deadline,
                stop=stop,
            )
        logger.info(
            "feed_ingest_bot_finished",
            total_feeds=summary["total_feeds"],
            total_saved=summary["total_saved"],
            failed_feeds=len(summary["failed_feeds"]),
        )
        return 1 if summary["failed_feeds"] else 0
    except Exception as exc:
        logger.error("feed_ingest_bot_failed", error=str(exc))
        return 1
    finally:
        await db_service.close_pool()


async def main_async(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    with with_run_id():
        return await run_ingest(args)


def main() -> None:
    configure_logging(service_name="worker", level=settings.LOG_LEVEL)
    exit_code = asyncio.run(main_async())
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
