# feed_ingest/services/page_metadata_service.py
"""
Open Graph metadata fetcher for feed entry links.

Fetches the linked page with a browser-like User-Agent and scrapes
og:title / og:description and og:image / og:video / og:audio (with their
structured properties). Only text/html responses below status 400 are
accepted.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup

from feed_ingest.core.config import settings
from feed_ingest.core.logging import get_logger
from feed_ingest.models.page_metadata import PageAudio, PageImage, PageMetadata, PageVideo

logger = get_logger().bind(module="page_metadata_service")


class PageMetadataError(Exception):
    """Page metadata could not be fetched or parsed for a link."""

    def __init__(self, message: str, *, link: str, status_code: int | None = None):
        super().__init__(message)
        self.link = link
        self.status_code = status_code


def _to_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return None


def _set_url(records: List[Dict[str, Any]], media_url: str) -> None:
    # ":url" / ":secure_url" refine the last parent tag; without one they start a record.
    if records:
        records[-1]["url"] = media_url
    else:
        records.append({"url": media_url})


def _meta_key(tag: Any) -> str:
    key = tag.get("property") or tag.get("name") or ""
    return str(key).strip().lower()


def parse_page_metadata(html_text: str, url: str) -> PageMetadata:
    """
    Parse Open Graph tags out of an HTML document.

    Structured properties (``og:image:width`` etc.) belong to the most
    recent ``og:image`` / ``og:video`` tag before them. Relative media
    URLs are resolved against ``url``.
    """
    soup = BeautifulSoup(html_text, "html.parser")

    title = ""
    description = ""
    images: List[Dict[str, Any]] = []
    videos: List[Dict[str, Any]] = []
    audios: List[Dict[str, Any]] = []

    for meta in soup.find_all("meta"):
        key = _meta_key(meta)
        content = (meta.get("content") or "").strip()
        if not key or not content:
            continue

        if key == "og:title":
            title = title or content
        elif key == "og:description":
            description = description or content
        elif key == "og:image":
            images.append({"url": urljoin(url, content)})
        elif key in ("og:image:url", "og:image:secure_url"):
            _set_url(images, urljoin(url, content))
        elif key == "og:image:width" and images:
            images[-1]["width"] = _to_int(content)
        elif key == "og:image:height" and images:
            images[-1]["height"] = _to_int(content)
        elif key == "og:image:alt" and images:
            images[-1]["alt"] = content
        elif key == "og:video":
            videos.append({"url": urljoin(url, content)})
        elif key in ("og:video:url", "og:video:secure_url"):
            _set_url(videos, urljoin(url, content))
        elif key == "og:video:width" and videos:
            videos[-1]["width"] = _to_int(content)
        elif key == "og:video:height" and videos:
            videos[-1]["height"] = _to_int(content)
        elif key == "og:video:duration" and videos:
            videos[-1]["duration"] = _to_int(content)
        elif key == "og:audio":
            audios.append({"url": urljoin(url, content)})
        elif key in ("og:audio:url", "og:audio:secure_url"):
            _set_url(audios, urljoin(url, content))

    # Fallback to standard tags
    if not title:
        title_tag = soup.find("title")
        if title_tag:
            title = title_tag.get_text().strip()

    if not description:
        meta_desc = soup.find("meta", attrs={"name": "description"})
        if meta_desc:
            description = (meta_desc.get("content") or "").strip()

    return PageMetadata(
        url=url,
        title=title,
        description=description,
        images=[PageImage(**image) for image in images],
        videos=[PageVideo(**video) for video in videos],
        audios=[PageAudio(**audio) for audio in audios],
    )


class PageMetadataService:
    """``FetchPageMetadata``: GET an entry link and scrape its Open Graph tags."""

    def __init__(
        self,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout_s: float = settings.PAGE_METADATA_TIMEOUT_S,
        user_agent: str = settings.INGEST_USER_AGENT,
    ) -> None:
        self.timeout_s = timeout_s
        self.user_agent = user_agent
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "PageMetadataService":
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_s, follow_redirects=True)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _get_headers(self) -> Dict[str, str]:
        return {
            "User-Agent": self.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        }

    async def fetch_page_metadata(self, link: str) -> PageMetadata:
        if not self._client:
            raise RuntimeError("PageMetadataService client not initialized")
        try:
            async with asyncio.timeout(self.timeout_s):
                response = await self._client.get(
                    link,
                    headers=self._get_headers(),
                    follow_redirects=True,
                )
        except TimeoutError as exc:
            raise PageMetadataError(f"timeout after {self.timeout_s}s", link=link) from exc
        except httpx.HTTPError as exc:
            raise PageMetadataError(str(exc) or exc.__class__.__name__, link=link) from exc

        content_type = response.headers.get("Content-Type", "").lower()
        if not content_type.startswith("text/html"):
            raise PageMetadataError(
                f"content type must be text/html, got {content_type or 'none'}",
                link=link,
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise PageMetadataError(
                f"unexpected status code {response.status_code}",
                link=link,
                status_code=response.status_code,
            )

        metadata = parse_page_metadata(response.text, str(response.url))
        logger.debug(
            "feed_ingest_page_parsed",
            link=link,
            title=metadata.title[:100],
            images=len(metadata.images),
            videos=len(metadata.videos),
            audios=len(metadata.audios),
        )
        return metadata
