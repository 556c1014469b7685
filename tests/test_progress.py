"""Tests for ProgressTracker."""

import pytest

from ebook_publisher.models import PublishStep
from ebook_publisher.progress import ProgressTracker


class TestProgressTracker:
    """Test ProgressTracker."""

    def test_initial_state(self):
        tracker = ProgressTracker(remote_url="https://books.example.com")

        assert tracker.state.step is PublishStep.PREPARING
        assert tracker.state.remote_url == "https://books.example.com"
        assert tracker.finished is False

    def test_advance_rounds_percentage(self):
        """Progress is processed/total rounded to the nearest percent."""
        tracker = ProgressTracker()
        tracker.start(3)

        tracker.advance(PublishStep.BOOK, "Book")
        assert tracker.state.progress == 33
        tracker.advance(PublishStep.CHAPTERS, "Chapter 1")
        assert tracker.state.progress == 67
        assert tracker.state.processed_items == 2
        assert tracker.state.current_item == "Chapter 1"

    def test_start_only_once(self):
        """The total is fixed when the run starts."""
        tracker = ProgressTracker()
        tracker.start(4)

        with pytest.raises(RuntimeError):
            tracker.start(5)
        assert tracker.state.total_items == 4

    def test_start_requires_items(self):
        with pytest.raises(ValueError):
            ProgressTracker().start(0)

    def test_advance_before_start(self):
        with pytest.raises(RuntimeError):
            ProgressTracker().advance(PublishStep.BOOK, "Book")

    def test_processed_never_exceeds_total(self):
        tracker = ProgressTracker()
        tracker.start(2)

        tracker.advance(PublishStep.BOOK, "Book")
        tracker.skip(5, "parent failed")

        assert tracker.state.processed_items == 2
        assert tracker.state.progress == 100
        assert tracker.state.debug["skippedItems"] == 5

    def test_skip_zero_is_noop(self):
        tracker = ProgressTracker()
        tracker.start(2)
        tracker.skip(0, "nothing")

        assert tracker.state.processed_items == 0
        assert "skippedItems" not in tracker.state.debug

    def test_update_does_not_count(self):
        tracker = ProgressTracker()
        tracker.start(2)
        tracker.update(message="Working", current_item="Topic", step=PublishStep.TOPICS)

        assert tracker.state.processed_items == 0
        assert tracker.state.message == "Working"
        assert tracker.state.step is PublishStep.TOPICS

    def test_aborting_is_sticky(self):
        """Once aborting, only a terminal state replaces it."""
        tracker = ProgressTracker()
        tracker.start(3)
        tracker.mark_aborting()

        tracker.advance(PublishStep.LESSONS, "Lesson")
        assert tracker.state.step is PublishStep.ABORTING

        tracker.abort(abortedAt="now")
        assert tracker.state.step is PublishStep.ABORTED
        assert tracker.state.message == "Publishing process was cancelled by user"
        assert tracker.state.debug["abortedAt"] == "now"
        assert tracker.finished is True

    def test_mark_aborting_after_finish(self):
        tracker = ProgressTracker()
        tracker.start(1)
        tracker.complete()
        tracker.mark_aborting()

        assert tracker.state.step is PublishStep.COMPLETE

    def test_complete(self):
        tracker = ProgressTracker()
        tracker.start(4)
        tracker.advance(PublishStep.BOOK, "Book")
        tracker.complete("Done")

        assert tracker.state.step is PublishStep.COMPLETE
        assert tracker.state.processed_items == 4
        assert tracker.state.progress == 100
        assert tracker.state.current_item == ""
        assert tracker.state.message == "Done"

    def test_fail(self):
        tracker = ProgressTracker()
        tracker.fail("boom", error="boom")

        assert tracker.state.step is PublishStep.ERROR
        assert tracker.state.message == "Error: boom"
        assert tracker.state.debug["error"] == "boom"

    def test_subscribers_get_snapshots(self):
        """Subscribers receive copies that later updates do not change."""
        tracker = ProgressTracker()
        seen = []
        unsubscribe = tracker.subscribe(seen.append)

        tracker.start(2)
        tracker.advance(PublishStep.BOOK, "Book")
        unsubscribe()
        tracker.advance(PublishStep.CHAPTERS, "Chapter")

        assert [state.processed_items for state in seen] == [0, 1]
        assert seen[1] is not tracker.state

    def test_failing_subscriber_is_ignored(self):
        tracker = ProgressTracker()
        seen = []

        def broken(state):
            raise RuntimeError("subscriber bug")

        tracker.subscribe(broken)
        tracker.subscribe(seen.append)
        tracker.start(1)

        assert len(seen) == 1

    def test_append_debug(self):
        tracker = ProgressTracker()
        tracker.append_debug("lessonFlags", {"key": "lesson-0-0-0"})
        tracker.append_debug("lessonFlags", {"key": "lesson-0-0-1"})

        assert [entry["key"] for entry in tracker.state.debug["lessonFlags"]] == [
            "lesson-0-0-0",
            "lesson-0-0-1",
        ]
