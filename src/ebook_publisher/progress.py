"""Progress tracking for publish runs."""

import logging
import math
from collections.abc import Callable
from typing import Any

from .models import TERMINAL_STEPS, ProgressState, PublishStep

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressState], Any]


class ProgressTracker:
    """Counts visited nodes and notifies subscribers after every change.

    ``processed_items`` tracks nodes visited, not nodes successfully created,
    so a traversal that runs to the end always reports 100%.
    """

    def __init__(self, remote_url: str = ""):
        self.state = ProgressState(
            step=PublishStep.PREPARING,
            message="Preparing to publish ebook to WordPress...",
            remote_url=remote_url,
        )
        self._started = False
        self._subscribers: list[ProgressCallback] = []

    def subscribe(self, callback: ProgressCallback) -> Callable[[], None]:
        """Register a subscriber; returns a function that unregisters it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def snapshot(self) -> ProgressState:
        return self.state.model_copy(deep=True)

    @property
    def finished(self) -> bool:
        return self.state.step in TERMINAL_STEPS

    def start(
        self,
        total_items: int,
        step: PublishStep = PublishStep.BOOK,
        message: str = "",
        current_item: str = "",
    ) -> None:
        """Fix the total item count for the run. May only be called once."""
        if self._started:
            raise RuntimeError("Progress total already set for this run")
        if total_items < 1:
            raise ValueError("total_items must be at least 1")

        self._started = True
        self.state.total_items = total_items
        self.state.processed_items = 0
        self.state.progress = 0
        self._set_step(step)
        self.state.message = message
        self.state.current_item = current_item
        self.state.debug["totalItems"] = total_items
        self._notify()

    def advance(
        self,
        step: PublishStep,
        current_item: str,
        message: str | None = None,
    ) -> None:
        """Count exactly one visited node."""
        self._increment(1)
        self._set_step(step)
        self.state.current_item = current_item
        if message is not None:
            self.state.message = message
        self._notify()

    def skip(self, count: int, reason: str) -> None:
        """Credit nodes that will never be visited because an ancestor failed."""
        if count <= 0:
            return
        self._increment(count)
        logger.info(f"Skipping {count} item(s): {reason}")
        skipped = self.state.debug.setdefault("skippedItems", 0)
        self.state.debug["skippedItems"] = skipped + count
        self._notify()

    def update(
        self,
        message: str | None = None,
        current_item: str | None = None,
        step: PublishStep | None = None,
    ) -> None:
        """Change labels without touching the counters."""
        if message is not None:
            self.state.message = message
        if current_item is not None:
            self.state.current_item = current_item
        if step is not None:
            self._set_step(step)
        self._notify()

    def set_debug(self, **entries: Any) -> None:
        self.state.debug.update(entries)
        self._notify()

    def append_debug(self, key: str, entry: Any) -> None:
        self.state.debug.setdefault(key, []).append(entry)

    def mark_aborting(self) -> None:
        if self.finished:
            return
        self.state.step = PublishStep.ABORTING
        self.state.message = "Stopping content generation..."
        self._notify()

    def complete(self, message: str = "Publishing completed successfully!") -> None:
        self.state.step = PublishStep.COMPLETE
        self.state.processed_items = self.state.total_items
        self.state.progress = 100
        self.state.current_item = ""
        self.state.message = message
        self._notify()

    def fail(self, message: str, **debug: Any) -> None:
        self.state.step = PublishStep.ERROR
        self.state.message = f"Error: {message}"
        self.state.debug.update(debug)
        self._notify()

    def abort(self, **debug: Any) -> None:
        self.state.step = PublishStep.ABORTED
        self.state.message = "Publishing process was cancelled by user"
        self.state.debug.update(debug)
        self._notify()

    def _set_step(self, step: PublishStep) -> None:
        # Aborting sticks until the run reaches a terminal state.
        if self.state.step is PublishStep.ABORTING and step not in TERMINAL_STEPS:
            return
        self.state.step = step

    def _increment(self, count: int) -> None:
        if not self._started:
            raise RuntimeError("Progress total not set; call start() first")
        total = self.state.total_items
        processed = min(self.state.processed_items + count, total)
        self.state.processed_items = processed
        self.state.progress = min(100, math.floor(processed / total * 100 + 0.5))

    def _notify(self) -> None:
        if not self._subscribers:
            return
        snapshot = self.snapshot()
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception as e:
                logger.warning(f"Progress callback failed: {e}")
