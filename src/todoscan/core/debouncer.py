"""
Debouncer component for per-file and workspace-wide rescans.

Provides trailing debouncing keyed by an identity: each new request for
the same key cancels and restarts that key's timer, so a burst of edits
results in a single rescan once the quiet period elapses.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Hashable
from typing import Union

logger = logging.getLogger(__name__)

DebounceCallback = Callable[[], Union[Awaitable[None], None]]


class Debouncer:
    """
    Keyed trailing debouncer backed by asyncio tasks.

    Attributes:
        delay_ms: Quiet period in milliseconds before a callback fires
    """

    def __init__(self, delay_ms: int = 300, name: str = "debouncer"):
        """
        Initialize the debouncer.

        Args:
            delay_ms: Debounce delay in milliseconds (default: 300)
            name: Label used in log messages
        """
        self._delay_ms = delay_ms
        self._name = name
        self._timers: dict[Hashable, asyncio.Task[None]] = {}

    @property
    def delay_ms(self) -> int:
        """Quiet period, in milliseconds."""
        return self._delay_ms

    def schedule(self, key: Hashable, callback: DebounceCallback) -> None:
        """
        Schedule ``callback`` for ``key``, restarting any pending timer for it.

        Must be called from a running event loop.

        Args:
            key: Identity the timer is keyed by
            callback: Sync or async callable invoked after the delay
        """
        self.cancel(key)
        self._timers[key] = asyncio.create_task(self._timer_callback(key, callback))

    async def _timer_callback(self, key: Hashable, callback: DebounceCallback) -> None:
        """Sleep out the quiet period, then run the action for ``key``."""
        try:
            await asyncio.sleep(self._delay_ms / 1000.0)
        except asyncio.CancelledError:
            # Timer was restarted or cancelled
            return

        if self._timers.get(key) is asyncio.current_task():
            del self._timers[key]

        try:
            result = callback()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in {self._name} callback for {key}: {e}", exc_info=True)

    def cancel(self, key: Hashable) -> bool:
        """
        Cancel the pending timer for ``key``.

        Returns:
            True if a pending timer was cancelled
        """
        timer = self._timers.pop(key, None)
        if timer is None or timer.done():
            return False
        timer.cancel()
        return True

    def cancel_all(self) -> None:
        """Cancel every pending timer."""
        for key in list(self._timers):
            self.cancel(key)

    def has_pending(self, key: Hashable | None = None) -> bool:
        """Check for a pending timer, for one key or for any key."""
        if key is None:
            return any(not timer.done() for timer in self._timers.values())
        timer = self._timers.get(key)
        return timer is not None and not timer.done()

    def get_pending_count(self) -> int:
        """Get the number of pending timers."""
        return sum(1 for timer in self._timers.values() if not timer.done())
