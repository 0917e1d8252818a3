# feed_ingest/core/request_id.py
from __future__ import annotations

import uuid
from contextlib import contextmanager
from typing import Iterator, Optional
import contextvars

_run_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("run_id", default=None)
_feed_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("feed_id", default=None)

# -------- Run ID (Workers) ---------------------------------------------------

def get_run_id() -> Optional[str]:
    return _run_id_ctx.get()

def get_feed_id() -> Optional[str]:
    return _feed_id_ctx.get()

@contextmanager
def with_run_id(run_id: Optional[str] = None, *, feed_id: Optional[str] = None) -> Iterator[str]:
    """
    Gebruik per pipeline-run:
        with with_run_id(feed_id=str(feed_id)):
            ... doe werk ...
    """
    previous_run = _run_id_ctx.get()
    previous_feed = _feed_id_ctx.get()
    rid = run_id or uuid.uuid4().hex
    _run_id_ctx.set(rid)
    if feed_id is not None:
        _feed_id_ctx.set(feed_id)
    try:
        yield rid
    finally:
        # restore vorige waarden (kunnen None zijn)
        _run_id_ctx.set(previous_run)
        _feed_id_ctx.set(previous_feed)
