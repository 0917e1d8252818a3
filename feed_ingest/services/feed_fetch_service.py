from __future__ import annotations

import asyncio
import calendar
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import feedparser
import httpx

from feed_ingest.core.config import settings
from feed_ingest.core.logging import get_logger
from feed_ingest.models.candidate import CandidateEntry, NormalizedFeed

logger = get_logger().bind(module="feed_fetch_service")

_ABSOLUTE_SCHEMES = {"http", "https"}


class FeedFetchError(Exception):
    """Network, timeout or HTTP status failure while fetching a feed."""

    def __init__(self, message: str, *, link: str, status_code: int | None = None):
        super().__init__(message)
        self.link = link
        self.status_code = status_code


class FeedParseError(Exception):
    """Feed document could not be parsed as RSS/Atom."""

    def __init__(self, message: str, *, link: str):
        super().__init__(message)
        self.link = link


class EntryNormalizationError(Exception):
    """
    Recoverable normalization failure for a single feed entry.
    Logged and counted, never aborts the fetch.
    """

    def __init__(self, message: str, entry_raw: Dict[str, Any] | None = None):
        super().__init__(message)
        self.entry_raw = entry_raw or {}


def is_absolute_url(value: Any) -> bool:
    if not isinstance(value, str) or not value.strip():
        return False
    try:
        parsed = urlparse(value.strip())
    except ValueError:
        return False
    return parsed.scheme.lower() in _ABSOLUTE_SCHEMES and bool(parsed.netloc)


def _struct_time_to_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    try:
        timestamp = calendar.timegm(value)
        return datetime.fromtimestamp(timestamp, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _get_first_content_value(entry: Dict[str, Any]) -> str:
    content = entry.get("content")
    if isinstance(content, list):
        for block in content:
            if isinstance(block, dict):
                val = block.get("value")
                if isinstance(val, str) and val.strip():
                    return val
    if isinstance(content, dict):
        val = content.get("value")
        if isinstance(val, str):
            return val
    return ""


def _first_alternate_link(entry: Dict[str, Any]) -> str:
    links = entry.get("links")
    if not isinstance(links, list):
        return ""
    for link_entry in links:
        if not isinstance(link_entry, dict):
            continue
        rel = str(link_entry.get("rel") or "alternate").lower()
        href = link_entry.get("href")
        if rel == "alternate" and isinstance(href, str) and href.strip():
            return href.strip()
    return ""


def resolve_entry_link(entry: Dict[str, Any]) -> str | None:
    """
    Canonical link: the GUID when it is an absolute URL, else the primary
    link, else the first alternate link. ``None`` when nothing absolute is
    left.
    """
    guid = entry.get("id")
    if is_absolute_url(guid):
        return guid.strip()

    link = entry.get("link")
    if not isinstance(link, str) or not link.strip():
        link = _first_alternate_link(entry)
    if is_absolute_url(link):
        return link.strip()
    return None


def resolve_entry_published_at(entry: Dict[str, Any], fetched_at: datetime) -> datetime:
    return (
        _struct_time_to_datetime(entry.get("published_parsed"))
        or _struct_time_to_datetime(entry.get("updated_parsed"))
        or fetched_at
    )


def _extract_authors(entry: Dict[str, Any]) -> List[str]:
    authors: List[str] = []
    raw_authors = entry.get("authors")
    if isinstance(raw_authors, list):
        for author in raw_authors:
            name = author.get("name") if isinstance(author, dict) else None
            if isinstance(name, str):
                authors.append(name)
    if not authors:
        author = entry.get("author")
        if isinstance(author, str):
            authors.append(author)
    return authors


def _extract_categories(entry: Dict[str, Any]) -> List[str]:
    categories: List[str] = []
    tags = entry.get("tags")
    if isinstance(tags, list):
        for tag in tags:
            term = tag.get("term") if isinstance(tag, dict) else None
            if isinstance(term, str):
                categories.append(term)
    return categories


def _extract_str(entry: Dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = entry.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def normalize_entry(
    entry: Dict[str, Any],
    fetched_at: datetime,
) -> Tuple[CandidateEntry | None, EntryNormalizationError | None]:
    """
    Normalize a single feedparser entry into a CandidateEntry.
    Returns:
        (CandidateEntry, None) on success
        (None, EntryNormalizationError) on failure
    """
    try:
        link = resolve_entry_link(entry)
        if link is None:
            return None, EntryNormalizationError("unresolvable_link", entry_raw=entry)
        item = CandidateEntry(
            link=link,
            title=_extract_str(entry, "title"),
            description=_extract_str(entry, "summary", "description"),
            content=_get_first_content_value(entry),
            published_at=resolve_entry_published_at(entry, fetched_at),
            authors=_extract_authors(entry),
            categories=_extract_categories(entry),
        )
        return item, None
    except Exception as exc:
        return None, EntryNormalizationError(str(exc), entry_raw=entry if isinstance(entry, dict) else {})


def normalize_feed_entries(
    parsed_feed: Any,
    fetched_at: datetime,
) -> Tuple[List[CandidateEntry], List[EntryNormalizationError]]:
    """
    Normalize every entry of a parsed feed and sort the survivors ascending
    by publish time. The ordering is what the cursor resolver relies on.
    """
    items: List[CandidateEntry] = []
    errors: List[EntryNormalizationError] = []
    if isinstance(parsed_feed, dict):
        entries = parsed_feed.get("entries") or []
    else:
        entries = getattr(parsed_feed, "entries", []) or []
    for entry in entries:
        item, err = normalize_entry(entry, fetched_at)
        if item is not None:
            items.append(item)
        elif err is not None:
            errors.append(err)
    items.sort(key=lambda item: item.published_at)
    return items, errors


class FeedFetchService:
    """Fetches a feed over HTTP and normalizes it (``ParseFeed``)."""

    def __init__(
        self,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout_s: float = settings.FEED_FETCH_TIMEOUT_S,
        user_agent: str = settings.INGEST_USER_AGENT,
    ) -> None:
        self.timeout_s = timeout_s
        self.user_agent = user_agent
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "FeedFetchService":
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_s, follow_redirects=True)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _fetch_feed(self, link: str) -> bytes:
        if not self._client:
            raise RuntimeError("FeedFetchService client not initialized")
        try:
            async with asyncio.timeout(self.timeout_s):
                response = await self._client.get(
                    link,
                    headers={"User-Agent": self.user_agent},
                    follow_redirects=True,
                )
        except TimeoutError as exc:
            raise FeedFetchError(f"timeout after {self.timeout_s}s", link=link) from exc
        except httpx.HTTPError as exc:
            raise FeedFetchError(str(exc) or exc.__class__.__name__, link=link) from exc

        if response.status_code >= 400:
            raise FeedFetchError(
                f"unexpected status code {response.status_code}",
                link=link,
                status_code=response.status_code,
            )
        return response.content

    async def parse_feed(self, link: str) -> NormalizedFeed:
        fetched_at = datetime.now(timezone.utc)
        raw_feed = await self._fetch_feed(link)

        parsed = feedparser.parse(raw_feed)
        entries = getattr(parsed, "entries", None) or []
        # No recognised RSS/Atom version and nothing salvageable: not a feed.
        if not entries and not getattr(parsed, "version", ""):
            reason = getattr(parsed, "bozo_exception", None) or "not an RSS/Atom document"
            raise FeedParseError(str(reason), link=link)

        items, norm_errors = normalize_feed_entries(parsed, fetched_at)
        for err in norm_errors:
            entry_raw = err.entry_raw or {}
            logger.warning(
                "feed_ingest_entry_dropped",
                link=link,
                entry_id=entry_raw.get("id"),
                entry_link=entry_raw.get("link"),
                error=str(err),
            )

        feed_meta = getattr(parsed, "feed", {}) or {}
        title = feed_meta.get("title") if isinstance(feed_meta, dict) else None
        logger.debug(
            "feed_ingest_feed_parsed",
            link=link,
            items=len(items),
            dropped=len(norm_errors),
        )
        return NormalizedFeed(link=link, title=title or "", entries=items)
