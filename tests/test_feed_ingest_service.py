from __future__ import annotations

import asyncio
from uuid import uuid4

import httpx
import pytest

from feed_ingest.services.article_enricher import ArticleEnricher
from feed_ingest.services.article_persister import ArticlePersister
from feed_ingest.services.cursor_resolver import CursorResolutionError
from feed_ingest.services.feed_fetch_service import FeedFetchError, FeedFetchService, FeedParseError
from feed_ingest.services.feed_ingest_service import FeedIngestService, ingest_feeds
from tests.fixtures import (
    FakeFeedParser,
    FakePageMetadata,
    FixedLanguageDetector,
    InMemoryArticleRepository,
    InMemoryFeedRepository,
    RecordingPublisher,
    make_article,
    make_entries,
    make_entry,
    make_feed,
)


def _build(entries, *, feed=None, articles=None, page_metadata=None, parser=None, lang="en"):
    feed = feed or make_feed()
    articles = articles if articles is not None else InMemoryArticleRepository()
    publisher = RecordingPublisher()
    service = FeedIngestService(
        feeds=InMemoryFeedRepository([feed]),
        articles=articles,
        feed_parser=parser or FakeFeedParser(entries),
        enricher=ArticleEnricher(
            page_metadata or FakePageMetadata(),
            language_detector=FixedLanguageDetector(lang),
        ),
        persister=ArticlePersister(articles, publisher),
    )
    return service, feed, articles, publisher


@pytest.mark.asyncio
async def test_run_saves_and_publishes_all_new_entries_in_order():
    entries = make_entries(3)
    service, feed, articles, publisher = _build(entries)

    result = await service.process_feed(str(feed.id))
    await service.wait_published()

    assert result.saved == 3
    assert result.candidates == 3
    assert [a.link for a in articles.saved] == [e.link for e in entries]
    assert {a.link for a in publisher.published} == {e.link for e in entries}
    assert all(a.source_id == feed.id for a in articles.saved)


@pytest.mark.asyncio
async def test_second_run_on_unchanged_feed_saves_nothing():
    entries = make_entries(4)
    service, feed, articles, publisher = _build(entries)

    await service.process_feed(feed.id)
    first_ids = {a.id for a in articles.articles.values()}
    second = await service.process_feed(feed.id)
    await service.wait_published()

    assert second.new_entries == 0
    assert second.saved == 0
    assert {a.id for a in articles.articles.values()} == first_ids
    assert len(publisher.published) == 4


@pytest.mark.asyncio
async def test_resumes_with_entries_after_previous_run():
    entries = make_entries(10)
    articles = InMemoryArticleRepository(make_article(e) for e in entries[:6])
    service, feed, articles, _ = _build(entries, articles=articles)

    result = await service.process_feed(feed.id)

    assert result.new_entries == 4
    assert [a.link for a in articles.saved] == [e.link for e in entries[6:]]


@pytest.mark.asyncio
async def test_entry_without_title_is_dropped_without_error():
    entries = [make_entry(1), make_entry(2, title="", description=""), make_entry(3)]
    service, feed, articles, _ = _build(entries)

    result = await service.process_feed(feed.id)

    assert result.saved == 2
    assert result.skipped == 1
    assert entries[1].link not in articles.articles


@pytest.mark.asyncio
async def test_page_metadata_failure_is_isolated_per_entry():
    entries = make_entries(3)
    page_metadata = FakePageMetadata(failing=[entries[1].link])
    service, feed, articles, _ = _build(entries, page_metadata=page_metadata)

    result = await service.process_feed(feed.id)

    assert result.saved == 2
    assert result.skipped == 1
    assert page_metadata.calls == [e.link for e in entries]


@pytest.mark.asyncio
async def test_store_failure_on_one_entry_does_not_abort_run():
    entries = make_entries(3)
    articles = InMemoryArticleRepository()
    articles.save_errors[entries[0].link] = ConnectionError("db hiccup")
    service, feed, articles, _ = _build(entries, articles=articles)

    result = await service.process_feed(feed.id)

    assert result.failed == 1
    assert result.saved == 2


class _BlindArticleRepository(InMemoryArticleRepository):
    """Scan never sees stored articles (outage larger than the scan window)."""

    def find_articles_by_links(self, links, *, sort_desc_by_pub_date=True, limit):
        return super().find_articles_by_links([], sort_desc_by_pub_date=sort_desc_by_pub_date, limit=limit)


@pytest.mark.asyncio
async def test_duplicate_save_does_not_fail_or_republish():
    entries = make_entries(2)
    articles = _BlindArticleRepository([make_article(entries[0])])
    service, feed, articles, publisher = _build(entries, articles=articles)

    result = await service.process_feed(feed.id)
    await service.wait_published()

    assert result.duplicates == 1
    assert result.saved == 1
    assert [a.link for a in publisher.published] == [entries[1].link]


@pytest.mark.asyncio
async def test_language_falls_back_to_feed_language():
    service, feed, articles, _ = _build(make_entries(1), feed=make_feed(languages=["fr"]), lang=None)

    await service.process_feed(feed.id)

    assert articles.saved[0].lang == "fr"


@pytest.mark.asyncio
async def test_unknown_feed_is_a_no_op():
    service, _, articles, _ = _build(make_entries(2))

    result = await service.process_feed(uuid4())

    assert result.ignored is True
    assert articles.saved == []


@pytest.mark.asyncio
async def test_disabled_feed_is_a_no_op():
    parser = FakeFeedParser(make_entries(2))
    service, feed, articles, _ = _build([], feed=make_feed(enabled=False), parser=parser)

    result = await service.process_feed(feed.id)

    assert result.ignored is True
    assert parser.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [None, "", b"", "not-a-uuid"])
async def test_invalid_payload_is_ignored(payload):
    service, _, articles, _ = _build(make_entries(1))

    result = await service.process_feed(payload)

    assert result.ignored is True
    assert articles.saved == []


@pytest.mark.asyncio
async def test_bytes_payload_is_accepted():
    service, feed, articles, _ = _build(make_entries(1))

    result = await service.process_feed(str(feed.id).encode())

    assert result.saved == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        FeedFetchError("timeout", link="https://news.example.com/rss"),
        FeedParseError("garbage", link="https://news.example.com/rss"),
    ],
)
async def test_fetch_failure_is_surfaced(error):
    service, feed, _, _ = _build([], parser=FakeFeedParser(error=error))

    with pytest.raises(type(error)):
        await service.process_feed(feed.id)


@pytest.mark.asyncio
async def test_cursor_failure_is_surfaced():
    articles = InMemoryArticleRepository()
    articles.find_error = ConnectionError("db down")
    service, feed, _, _ = _build(make_entries(2), articles=articles)

    with pytest.raises(CursorResolutionError):
        await service.process_feed(feed.id)


@pytest.mark.asyncio
async def test_stop_signal_is_checked_between_entries():
    entries = make_entries(4)
    stop = asyncio.Event()
    articles = InMemoryArticleRepository()
    articles.on_save = lambda article: stop.set()
    service, feed, articles, _ = _build(entries, articles=articles)

    result = await service.process_feed(feed.id, stop=stop)

    assert result.cancelled is True
    assert [a.link for a in articles.saved] == [entries[0].link]


@pytest.mark.asyncio
async def test_deadline_ends_run_without_error_and_keeps_saved_articles():
    entries = make_entries(3)

    class _SlowAfterFirst(FakePageMetadata):
        async def fetch_page_metadata(self, link):
            if link != entries[0].link:
                await asyncio.sleep(5)
            return await super().fetch_page_metadata(link)

    service, feed, articles, _ = _build(entries, page_metadata=_SlowAfterFirst())

    result = await service.process_feed(feed.id, deadline_s=0.2)

    assert result.cancelled is True
    assert [a.link for a in articles.saved] == [entries[0].link]


@pytest.mark.asyncio
async def test_ingest_feeds_isolates_failing_feed():
    good = make_feed()
    bad = make_feed(link="https://broken.example.com/rss")
    articles = InMemoryArticleRepository()

    class _Parser(FakeFeedParser):
        async def parse_feed(self, link):
            if link == bad.link:
                raise FeedFetchError("down", link=link)
            return await super().parse_feed(link)

    service = FeedIngestService(
        feeds=InMemoryFeedRepository([good, bad]),
        articles=articles,
        feed_parser=_Parser(make_entries(2)),
        enricher=ArticleEnricher(FakePageMetadata(), language_detector=FixedLanguageDetector("en")),
        persister=ArticlePersister(articles),
    )

    summary = await ingest_feeds(service, [str(good.id), str(bad.id)], max_concurrency=2)

    assert summary["total_feeds"] == 2
    assert summary["total_saved"] == 2
    assert [f["feed_id"] for f in summary["failed_feeds"]] == [str(bad.id)]


@pytest.mark.asyncio
async def test_stop_before_run_skips_fetch_and_store():
    parser = FakeFeedParser(make_entries(3))
    articles = InMemoryArticleRepository()
    service, feed, articles, _ = _build([], articles=articles, parser=parser)
    stop = asyncio.Event()
    stop.set()

    result = await service.process_feed(feed.id, stop=stop)

    assert result.cancelled is True
    assert parser.calls == []
    assert articles.scans_opened == 0


@pytest.mark.asyncio
async def test_stop_during_fetch_skips_cursor_scan():
    stop = asyncio.Event()

    class _StopWhileFetching(FakeFeedParser):
        async def parse_feed(self, link):
            stop.set()
            return await super().parse_feed(link)

    service, feed, articles, _ = _build([], parser=_StopWhileFetching(make_entries(2)))

    result = await service.process_feed(feed.id, stop=stop)

    assert result.cancelled is True
    assert result.candidates == 2
    assert articles.scans_opened == 0
    assert articles.saved == []


@pytest.mark.asyncio
async def test_queued_feeds_do_no_work_after_stop():
    feeds = [make_feed(link=f"https://news{n}.example.com/rss") for n in range(3)]
    parser = FakeFeedParser(make_entries(2))
    articles = InMemoryArticleRepository()
    service = FeedIngestService(
        feeds=InMemoryFeedRepository(feeds),
        articles=articles,
        feed_parser=parser,
        enricher=ArticleEnricher(FakePageMetadata(), language_detector=FixedLanguageDetector("en")),
        persister=ArticlePersister(articles),
    )
    stop = asyncio.Event()
    stop.set()

    summary = await ingest_feeds(service, [str(f.id) for f in feeds], max_concurrency=1, stop=stop)

    assert summary["cancelled"] is True
    assert summary["failed_feeds"] == []
    assert parser.calls == []
    assert articles.scans_opened == 0


GUID_FEED = """<?xml version="1.0"?>
<rss version="2.0">
  <channel>
    <title>Example News</title>
    <item>
      <title>Relative link, absolute guid</title>
      <guid>https://news.example.com/articles/guid-1</guid>
      <link>/articles/guid-1?utm_source=rss</link>
      <description>A description that is long enough to be stored with the article body.</description>
      <pubDate>Mon, 01 Jan 2024 10:00:00 GMT</pubDate>
    </item>
  </channel>
</rss>
"""


@pytest.mark.asyncio
async def test_stored_link_is_the_guid_when_entry_link_is_relative():
    feed = make_feed()

    def handler(request: httpx.Request) -> httpx.Response:
        assert str(request.url) == feed.link
        return httpx.Response(200, text=GUID_FEED, headers={"Content-Type": "application/rss+xml"})

    articles = InMemoryArticleRepository()
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        service = FeedIngestService(
            feeds=InMemoryFeedRepository([feed]),
            articles=articles,
            feed_parser=FeedFetchService(client=client),
            enricher=ArticleEnricher(FakePageMetadata(), language_detector=FixedLanguageDetector("en")),
            persister=ArticlePersister(articles),
        )
        result = await service.process_feed(feed.id)

    assert result.saved == 1
    assert [a.link for a in articles.saved] == ["https://news.example.com/articles/guid-1"]
