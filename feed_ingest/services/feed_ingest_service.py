from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union
from uuid import UUID

from feed_ingest.core.logging import get_logger
from feed_ingest.core.request_id import with_run_id
from feed_ingest.models.candidate import CandidateEntry, NormalizedFeed
from feed_ingest.models.feed import FeedDescriptor
from feed_ingest.services.article_enricher import ArticleEnricher
from feed_ingest.services.article_persister import ArticlePersister, PersistOutcome
from feed_ingest.services.cursor_resolver import CursorResolver
from feed_ingest.services.feed_fetch_service import FeedFetchError, FeedParseError
from feed_ingest.services.repositories import (
    ArticleRepository,
    ArticleStoreError,
    EntityNotFoundError,
    FeedRepository,
)

logger = get_logger().bind(module="feed_ingest_service")


class FeedParser(Protocol):
    async def parse_feed(self, link: str) -> NormalizedFeed:
        ...


class ItemOutcome(str, Enum):
    SAVED = "saved"
    DUPLICATE = "duplicate"
    SKIPPED = "skipped"
    FAILED = "failed"
    ABORTED = "aborted"


@dataclass
class FeedRunResult:
    feed_id: str
    ignored: bool = False
    candidates: int = 0
    new_entries: int = 0
    saved: int = 0
    duplicates: int = 0
    skipped: int = 0
    failed: int = 0
    cancelled: bool = False

    def record(self, outcome: ItemOutcome) -> None:
        if outcome is ItemOutcome.SAVED:
            self.saved += 1
        elif outcome is ItemOutcome.DUPLICATE:
            self.duplicates += 1
        elif outcome is ItemOutcome.SKIPPED:
            self.skipped += 1
        elif outcome is ItemOutcome.FAILED:
            self.failed += 1

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def parse_feed_id(payload: Union[str, bytes, UUID, None]) -> Optional[UUID]:
    if isinstance(payload, UUID):
        return payload
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8", "ignore")
    if not payload or not payload.strip():
        logger.warning("feed_ingest_payload_empty")
        return None
    try:
        return UUID(payload.strip())
    except ValueError:
        logger.error("feed_ingest_payload_invalid", payload=payload[:100])
        return None


class FeedIngestService:
    """
    One pipeline run per feed: FetchFeed → ResolveCursor → ProcessEntry*.

    Entries of one feed are processed strictly sequentially in ascending
    publish order. Only fetch and cursor failures end the run with an
    error; a bad entry is logged and skipped.
    """

    def __init__(
        self,
        *,
        feeds: FeedRepository,
        articles: ArticleRepository,
        feed_parser: FeedParser,
        enricher: ArticleEnricher,
        persister: ArticlePersister,
    ) -> None:
        self._feeds = feeds
        self._feed_parser = feed_parser
        self._cursor = CursorResolver(articles)
        self._enricher = enricher
        self._persister = persister

    async def process_feed(
        self,
        payload: Union[str, bytes, UUID, None],
        *,
        deadline_s: Optional[float] = None,
        stop: Optional[asyncio.Event] = None,
    ) -> FeedRunResult:
        """
        Run the pipeline for one feed id. Deadline expiry and ``stop`` end the
        run without error; saved articles stay saved.
        Raises FeedFetchError / FeedParseError / CursorResolutionError.
        """
        feed_id = parse_feed_id(payload)
        if feed_id is None:
            return FeedRunResult(feed_id=str(payload or ""), ignored=True)

        result = FeedRunResult(feed_id=str(feed_id))
        with with_run_id(feed_id=str(feed_id)):
            deadline = asyncio.timeout(deadline_s)
            try:
                async with deadline:
                    await self._run(feed_id, result, stop)
            except TimeoutError:
                if not deadline.expired():
                    raise
                result.cancelled = True
                logger.info("feed_ingest_run_deadline", deadline_s=deadline_s)

            logger.info("feed_ingest_run_finished", **result.as_dict())
        return result

    async def _run(
        self,
        feed_id: UUID,
        result: FeedRunResult,
        stop: Optional[asyncio.Event],
    ) -> None:
        if self._stopped(stop, result):
            return

        try:
            feed = await self._feeds.find_feed_by_id(feed_id)
        except EntityNotFoundError:
            logger.error("feed_ingest_feed_not_found", feed_id=str(feed_id))
            result.ignored = True
            return

        if not feed.enabled:
            logger.info("feed_ingest_feed_disabled", link=feed.link)
            result.ignored = True
            return

        if self._stopped(stop, result):
            return

        try:
            parsed = await self._feed_parser.parse_feed(feed.link)
        except (FeedFetchError, FeedParseError) as exc:
            logger.error(
                "feed_ingest_feed_fetch_failed",
                link=feed.link,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            raise
        result.candidates = len(parsed.entries)
        if self._stopped(stop, result):
            return


        new_entries = await self._cursor.resolve_new_entries(parsed.entries)
        result.new_entries = len(new_entries)
        if not new_entries:
            logger.debug("feed_ingest_no_new_entries", link=feed.link)
            return

        for index, entry in enumerate(new_entries):
            if self._stopped(stop, result, remaining=len(new_entries) - index):
                return
            outcome = await self._process_entry(feed, entry)
            result.record(outcome)

    @staticmethod
    def _stopped(stop: Optional[asyncio.Event], result: FeedRunResult, **context: Any) -> bool:
        if stop is None or not stop.is_set():
            return False
        result.cancelled = True
        logger.info("feed_ingest_run_stopped", **context)
        return True

    async def _process_entry(self, feed: FeedDescriptor, entry: CandidateEntry) -> ItemOutcome:
        try:
            draft, skipped = await self._enricher.enrich(entry, feed)
            if skipped is not None:
                logger.warning(
                    "feed_ingest_entry_skipped",
                    link=entry.link,
                    reason=skipped.reason,
                    detail=skipped.detail,
                )
                return ItemOutcome.SKIPPED

            outcome, _ = await self._persister.persist(draft, feed)
        except ArticleStoreError as exc:
            logger.error("feed_ingest_article_save_failed", link=entry.link, error=str(exc))
            return ItemOutcome.FAILED
        except Exception as exc:
            logger.error(
                "feed_ingest_entry_failed",
                link=entry.link,
                error=str(exc),
                exc_info=True,
            )
            return ItemOutcome.FAILED

        if outcome is PersistOutcome.SAVED:
            return ItemOutcome.SAVED
        if outcome is PersistOutcome.DUPLICATE:
            return ItemOutcome.DUPLICATE
        return ItemOutcome.ABORTED

    async def wait_published(self, timeout: Optional[float] = None) -> None:
        await self._persister.wait_published(timeout=timeout)


async def ingest_feeds(
    service: FeedIngestService,
    feed_ids: Sequence[Union[str, UUID]],
    *,
    max_concurrency: int,
    deadline_s: Optional[float] = None,
    stop: Optional[asyncio.Event] = None,
) -> Dict[str, Any]:
    """
    Run several feeds concurrently (bounded); entries within each feed stay
    sequential. A failing feed does not affect the others.
    """
    sem = asyncio.Semaphore(max(1, max_concurrency))

    async def _one(feed_id: Union[str, UUID]) -> FeedRunResult:
        async with sem:
            return await service.process_feed(feed_id, deadline_s=deadline_s, stop=stop)

    outcomes = await asyncio.gather(*(_one(fid) for fid in feed_ids), return_exceptions=True)

    results: List[FeedRunResult] = []
    failed_feeds: List[Dict[str, str]] = []
    for feed_id, outcome in zip(feed_ids, outcomes):
        if isinstance(outcome, asyncio.CancelledError):
            raise outcome
        if isinstance(outcome, BaseException):
            failed_feeds.append({"feed_id": str(feed_id), "error": str(outcome)})
            logger.error(
                "feed_ingest_feed_failed",
                feed_id=str(feed_id),
                error=str(outcome),
                error_type=outcome.__class__.__name__,
            )
            continue
        results.append(outcome)

    summary = {
        "total_feeds": len(feed_ids),
        "total_saved": sum(r.saved for r in results),
        "total_duplicates": sum(r.duplicates for r in results),
        "total_skipped": sum(r.skipped for r in results),
        "total_failed_items": sum(r.failed for r in results),
        "failed_feeds": failed_feeds,
        "cancelled": any(r.cancelled for r in results),
    }
    logger.info(
        "feed_ingest_summary",
        total_feeds=summary["total_feeds"],
        total_saved=summary["total_saved"],
        failed_feeds=len(failed_feeds),
        cancelled=summary["cancelled"],
    )
    return summary
