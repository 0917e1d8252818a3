from __future__ import annotations

from typing import Dict, List, Sequence

from feed_ingest.core.logging import get_logger
from feed_ingest.models.candidate import CandidateEntry
from feed_ingest.services.repositories import ArticleRepository

logger = get_logger().bind(module="cursor_resolver")


class CursorResolutionError(Exception):
    """Store failure while looking up already-ingested links. Retryable."""


def build_link_positions(entries: Sequence[CandidateEntry]) -> Dict[str, int]:
    """Map each candidate link to its position; a repeated link keeps its last position."""
    return {entry.link: index for index, entry in enumerate(entries)}


def entries_after(entries: Sequence[CandidateEntry], cursor: int) -> List[CandidateEntry]:
    """New list with every entry strictly after ``cursor`` (-1 means all)."""
    return [entry for index, entry in enumerate(entries) if index > cursor]


class CursorResolver:
    """
    Decides which candidates of the current fetch window are new.

    The newest already-stored article (by publish date) whose link is in
    the window marks the cursor; everything after it in the ascending
    candidate order is new. The lookback is bounded by the window size.
    """

    def __init__(self, articles: ArticleRepository) -> None:
        self._articles = articles

    async def find_cursor(self, entries: Sequence[CandidateEntry]) -> int:
        positions = build_link_positions(entries)
        if not positions:
            return -1

        try:
            async with self._articles.find_articles_by_links(
                list(positions),
                sort_desc_by_pub_date=True,
                limit=len(entries),
            ) as articles:
                async for article in articles:
                    position = positions.get(article.link)
                    if position is not None:
                        return position
        except Exception as exc:
            raise CursorResolutionError(f"error due to find article last index: {exc}") from exc
        return -1

    async def resolve_new_entries(self, entries: Sequence[CandidateEntry]) -> List[CandidateEntry]:
        cursor = await self.find_cursor(entries)
        new_entries = entries_after(entries, cursor)
        logger.debug(
            "feed_ingest_cursor_resolved",
            candidates=len(entries),
            cursor=cursor,
            new_entries=len(new_entries),
        )
        return new_entries
