"""Cooperative cancellation for publish runs."""

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from .models import PublishAborted

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """One-directional abort flag plus a transport-level abort signal.

    ``cancel()`` may be called from any thread. Once set the flag is never
    reset; every publish run creates its own token.
    """

    def __init__(self):
        self._cancelled = False
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._event: asyncio.Event | None = None
        self._callbacks: list[Callable[[], Any]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def bind(self) -> None:
        """Attach the token to the running event loop."""
        self._loop = asyncio.get_running_loop()
        self._event = asyncio.Event()
        if self._cancelled:
            self._event.set()

    def on_cancel(self, callback: Callable[[], Any]) -> None:
        """Register a callback run on the event loop when the token fires."""
        self._callbacks.append(callback)

    def cancel(self) -> bool:
        """Request cancellation. Returns False if already cancelled."""
        with self._lock:
            if self._cancelled:
                return False
            self._cancelled = True

        logger.warning("🛑 Abort requested - no new remote calls will be started")

        if self._loop is None or self._loop.is_closed():
            self._fire()
            return True

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self._loop:
            self._fire()
        else:
            self._loop.call_soon_threadsafe(self._fire)
        return True

    def _fire(self) -> None:
        if self._event is not None:
            self._event.set()
        for callback in self._callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning(f"Cancellation callback failed: {e}")

    def raise_if_cancelled(self) -> None:
        """Cancellation checkpoint."""
        if self._cancelled:
            raise PublishAborted()

    async def run(self, call: Awaitable[T]) -> T:
        """Await a remote call, rejecting promptly if the token fires.

        The call is checked against the flag before it starts and cancelled
        at the transport level if the token fires while it is in flight.
        """
        if self._cancelled:
            if asyncio.iscoroutine(call):
                call.close()
            raise PublishAborted()

        if self._event is None:
            self.bind()

        task = asyncio.ensure_future(call)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise

        if task in done:
            waiter.cancel()
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info("In-flight remote call aborted")
        raise PublishAborted()
