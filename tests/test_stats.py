import logging
from datetime import datetime, timedelta, timezone

from pipelines.stats import (
    CrawlProgress,
    CrawlStats,
    FetchProgress,
    FetchStats,
    PageOutcome,
    notify_progress,
)


def test_record_counts_each_outcome():
    stats = CrawlStats()
    for outcome in (PageOutcome.NEW, PageOutcome.NEW, PageOutcome.UPDATED,
                    PageOutcome.SKIPPED, PageOutcome.FAILED):
        stats.record(outcome)

    assert (stats.new_pages, stats.updated_pages, stats.skipped_pages, stats.errors) == (2, 1, 1, 1)
    assert stats.total_pages == 5


def test_duration_requires_both_timestamps():
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    stats = CrawlStats(start_time=start)
    assert stats.duration is None

    stats.end_time = start + timedelta(seconds=90)
    assert stats.duration == timedelta(seconds=90)


def test_finish_sets_end_time():
    stats = FetchStats()
    stats.finish()
    assert stats.end_time >= stats.start_time
    assert stats.duration is not None


def test_to_dict_is_json_friendly():
    stats = CrawlStats()
    stats.record(PageOutcome.NEW)
    stats.finish()
    data = stats.to_dict()

    assert data["new_pages"] == 1
    assert isinstance(data["start_time"], str)
    assert isinstance(data["end_time"], str)


def test_crawl_progress_percentage_uses_queue_and_budget():
    assert CrawlProgress("u", visited=5, queued=15, max_pages=100, outcome=PageOutcome.NEW).percentage == 25.0
    # The page budget caps the estimate
    assert CrawlProgress("u", visited=5, queued=500, max_pages=10, outcome=PageOutcome.NEW).percentage == 50.0
    assert CrawlProgress("u", visited=0, queued=0, max_pages=10, outcome=PageOutcome.FAILED).percentage == 100.0


def test_crawl_progress_never_exceeds_100():
    progress = CrawlProgress("u", visited=12, queued=0, max_pages=10, outcome=PageOutcome.NEW)
    assert progress.percentage == 100.0


def test_fetch_progress_percentage():
    assert FetchProgress(current=1, total=4, item_name="a/b").percentage == 25.0
    assert FetchProgress(current=0, total=0, item_name="").percentage == 100.0


def test_notify_progress_swallows_callback_errors(caplog):
    def broken(progress):
        raise ValueError("nope")

    with caplog.at_level(logging.WARNING):
        notify_progress(broken, FetchProgress(current=1, total=1, item_name="a/b"))

    assert "Progress callback failed" in caplog.text


def test_notify_progress_without_callback_is_a_no_op():
    notify_progress(None, object())
