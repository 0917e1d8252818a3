from __future__ import annotations

from feed_ingest.core.logging import _add_run_ids, _pii_guard
from feed_ingest.core.request_id import get_feed_id, get_run_id, with_run_id


def test_run_and_feed_ids_are_scoped():
    assert get_run_id() is None

    with with_run_id(feed_id="feed-1") as outer:
        with with_run_id("inner-run") as inner:
            assert inner == "inner-run"
            assert get_feed_id() == "feed-1"
        assert get_run_id() == outer

    assert get_run_id() is None
    assert get_feed_id() is None


def test_run_ids_are_added_to_log_events():
    with with_run_id("run-1", feed_id="feed-1"):
        event = _add_run_ids(None, "info", {"event": "feed_ingest_run_finished"})

    assert event["run_id"] == "run-1"
    assert event["feed_id"] == "feed-1"


def test_secret_keys_are_redacted():
    event = _pii_guard(None, "info", {"event": "x", "Authorization": "Bearer abc", "link": "https://a"})

    assert event["Authorization"] == "***redacted***"
    assert event["link"] == "https://a"
