"""
Cooperative cancellation primitives.

CancellationToken is checked at coarse boundaries by long-running scans.
TaskSlot holds at most one logical task; starting a new one cancels the
predecessor's token and waits for it to unwind before running, which gives
single-flight semantics for full rescans.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class CancellationToken:
    """A one-way cancellation flag shared between a scan and its owner."""

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


class TaskSlot:
    """
    Single-slot holder for an asyncio task.

    start() supersedes the occupying task cooperatively: its token is
    cancelled and the new task only begins once the old one has returned,
    so two occupants never mutate shared state at the same time.
    cancel() is the hard variant used on shutdown.

    Attributes:
        name: Label used in log messages
    """

    def __init__(self, name: str = "task"):
        self.name = name
        self._task: asyncio.Task[None] | None = None
        self._token: CancellationToken | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def task(self) -> asyncio.Task[None] | None:
        return self._task

    def start(self, factory: Callable[[CancellationToken], Awaitable[None]]) -> asyncio.Task[None]:
        """
        Supersede the occupying task and start a new one.

        Args:
            factory: Called with a fresh CancellationToken, returns the awaitable to run

        Returns:
            The newly created task
        """
        previous = self._task
        if self._token is not None:
            self._token.cancel()

        token = CancellationToken()
        self._token = token
        self._task = asyncio.create_task(self._run(factory, token, previous))
        return self._task

    async def _run(
        self,
        factory: Callable[[CancellationToken], Awaitable[None]],
        token: CancellationToken,
        previous: asyncio.Task[None] | None,
    ) -> None:
        if previous is not None and not previous.done():
            try:
                await previous
            except asyncio.CancelledError:
                if asyncio.current_task().cancelling():
                    raise
            except Exception:
                # Already logged by the previous occupant
                pass

        try:
            await factory(token)
        except asyncio.CancelledError:
            logger.debug(f"{self.name} cancelled")
            raise
        except Exception as e:
            logger.error(f"Error in {self.name}: {e}", exc_info=True)

    def cancel(self) -> None:
        """Cancel the occupying task immediately, if any."""
        if self._token is not None:
            self._token.cancel()
            self._token = None
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait(self) -> None:
        """Wait for the occupying task to finish; cancellation is not an error."""
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            if asyncio.current_task().cancelling():
                raise
