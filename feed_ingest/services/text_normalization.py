from __future__ import annotations

import re
import warnings

from bs4 import BeautifulSoup, MarkupResemblesLocatorWarning

_WHITESPACE_RE = re.compile(r"\s+")
_TRAILING_PUNCTUATION = " .,;:"

ELLIPSIS = "..."

# Short feed values ("https://...", "index.html") look like locators to bs4.
warnings.filterwarnings("ignore", category=MarkupResemblesLocatorWarning)


def strip_html(value: str | None) -> str:
    """
    Plain text of an HTML fragment. Entities are decoded after tags are
    removed, so escaped ``&lt;``/``&gt;`` and bare ``<`` in text survive.
    """
    text = value or ""
    if "<" in text or "&" in text:
        text = BeautifulSoup(text, "html.parser").get_text(" ")
    return _WHITESPACE_RE.sub(" ", text).strip()


def truncate_runes(value: str, max_runes: int) -> str:
    """
    Cut ``value`` to at most ``max_runes`` code points. When cut, trailing
    punctuation is trimmed and ``...`` appended, the result included in
    the limit.
    """
    if len(value) <= max_runes:
        return value
    head = value[: max(0, max_runes - len(ELLIPSIS))]
    return head.rstrip(_TRAILING_PUNCTUATION) + ELLIPSIS
