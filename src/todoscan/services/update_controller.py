"""
Incremental update controller.

Keeps the diagnostic store and tracked scope set consistent with editor
events (open, change, save, close), filesystem events (create, change,
delete) and configuration changes. Per-file rescans are debounced, full
rescans are single-flight, and every per-file operation is fault-isolated.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from todoscan.core.cancellation import CancellationToken, TaskSlot
from todoscan.core.config import TodoScanError
from todoscan.core.debouncer import Debouncer
from todoscan.core.file_events import FileEvent, FileEventType
from todoscan.core.line_scanner import scan_buffer
from todoscan.core.models import ScanConfig, TextBuffer
from todoscan.core.pattern_compiler import CompiledMatcher, MatcherCache
from todoscan.core.scope import FILE_SCHEME, is_resource_enabled, matches_scope
from todoscan.core.state import DiagnosticStore, RecentlySavedSet, TrackedScopeSet
from todoscan.infrastructure.file_watcher import FileWatcherInterface
from todoscan.infrastructure.sinks import LoggingSink
from todoscan.infrastructure.workspace import WorkspaceInterface
from todoscan.services.workspace_scanner import (
    DEFAULT_CONCURRENCY,
    ScanSummary,
    is_binary_result,
    read_and_scan,
    scan_workspace,
)

logger = logging.getLogger(__name__)

_WORKSPACE_KEY = "<workspace>"


@dataclass
class ControllerStats:
    """
    Statistics for the update controller.

    Tracks events received, scans performed and per-file failures for
    monitoring and debugging.
    """

    started_at: datetime = field(default_factory=datetime.now)
    events_received: int = 0
    file_scans: int = 0
    full_scans: int = 0
    suppressed_events: int = 0
    last_full_scan_at: datetime | None = None
    last_full_scan_duration_ms: float = 0.0
    errors: int = 0

    def to_dict(self) -> dict:
        """Plain-dict form, used for structured log records."""
        return {
            "started_at": self.started_at.isoformat(),
            "events_received": self.events_received,
            "file_scans": self.file_scans,
            "full_scans": self.full_scans,
            "suppressed_events": self.suppressed_events,
            "last_full_scan_at": (
                self.last_full_scan_at.isoformat() if self.last_full_scan_at else None
            ),
            "last_full_scan_duration_ms": self.last_full_scan_duration_ms,
            "errors": self.errors,
        }


class ControllerError(TodoScanError):
    """Raised for controller lifecycle misuse."""

    pass


class UpdateController:
    """
    Owns the scan state for one workspace and reacts to change events.

    State per file moves Unscanned -> Scanned -> Stale (on edit) ->
    Scanned (on debounce or save) -> Removed (on delete). All mutable state
    (store, scope set, timers, recently saved set) lives on this instance and
    is torn down by stop().
    """

    def __init__(
        self,
        workspace: WorkspaceInterface,
        config: Union[ScanConfig, Callable[[], ScanConfig]],
        store: DiagnosticStore | None = None,
        scope_set: TrackedScopeSet | None = None,
        *,
        file_watcher: Optional[FileWatcherInterface] = None,
        change_debounce_ms: int = 300,
        config_debounce_ms: int = 400,
        save_suppression_ms: int = 1000,
        max_concurrency: int = DEFAULT_CONCURRENCY,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the controller.

        Args:
            workspace: Workspace to enumerate, read and query open buffers from
            config: Current ScanConfig, or a provider returning the current one
            store: Diagnostic store (a fresh one logging through LoggingSink when omitted)
            scope_set: Tracked scope set (a fresh one when omitted)
            file_watcher: Optional watcher started and stopped with the controller
            change_debounce_ms: Quiet period before rescanning an edited buffer
            config_debounce_ms: Quiet period before a full rescan on config change
            save_suppression_ms: Window in which watcher changes after a save are ignored
            max_concurrency: Batch size for full workspace scans
            clock: Monotonic clock used for the save suppression window
        """
        if isinstance(config, ScanConfig):
            initial = config
            self._config_provider: Callable[[], ScanConfig] = lambda: initial
        else:
            self._config_provider = config
        self._config = self._config_provider()

        self._workspace = workspace
        self._store = store if store is not None else DiagnosticStore(sink=LoggingSink())
        self._scope_set = scope_set if scope_set is not None else TrackedScopeSet()
        self._file_watcher = file_watcher
        self._max_concurrency = max_concurrency

        self._matchers = MatcherCache()
        self._recently_saved = RecentlySavedSet(window_ms=save_suppression_ms, clock=clock)
        self._change_debouncer = Debouncer(delay_ms=change_debounce_ms, name="change rescan")
        self._config_debouncer = Debouncer(delay_ms=config_debounce_ms, name="config rescan")
        self._scan_slot = TaskSlot(name="workspace scan")

        self._stats = ControllerStats()
        self._last_summary: ScanSummary | None = None
        self._running = False
        self._event_loop: asyncio.AbstractEventLoop | None = None

    @property
    def config(self) -> ScanConfig:
        return self._config

    @property
    def store(self) -> DiagnosticStore:
        return self._store

    @property
    def scope_set(self) -> TrackedScopeSet:
        return self._scope_set

    @property
    def last_summary(self) -> ScanSummary | None:
        return self._last_summary

    def get_stats(self) -> ControllerStats:
        """Get current controller statistics."""
        return self._stats

    def is_running(self) -> bool:
        return self._running

    def has_pending_rescan(self, path: Path) -> bool:
        """Check whether a debounced rescan is pending for a file."""
        return self._change_debouncer.has_pending(path)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """
        Start the controller: kick off the initial full scan and the watcher.

        The initial scan runs in the background; use wait_for_scan() to wait.

        Raises:
            ControllerError: If the controller is already running
        """
        if self._running:
            raise ControllerError("Update controller is already running")

        self._event_loop = asyncio.get_running_loop()
        self._running = True
        self._stats = ControllerStats()

        self.request_full_scan()

        if self._file_watcher is not None:
            self._file_watcher.start(self._workspace.root, self.on_file_event_threadsafe)

        logger.info(
            "Update controller started",
            extra={"root": str(self._workspace.root)},
        )

    async def stop(self) -> None:
        """
        Stop the controller.

        Cancels every pending debounce timer and any in-flight scan, so no
        timer fires after this returns.
        """
        if not self._running:
            logger.debug("Update controller is not running, nothing to stop")
            return

        self._running = False

        if self._file_watcher is not None:
            self._file_watcher.stop()

        self._change_debouncer.cancel_all()
        self._config_debouncer.cancel_all()
        self._scan_slot.cancel()
        await self._scan_slot.wait()
        self._recently_saved.clear()
        self._event_loop = None

        logger.info(
            "Update controller stopped",
            extra={"stats": self._stats.to_dict()},
        )

    # ------------------------------------------------------------------
    # Full scans
    # ------------------------------------------------------------------

    def _matcher(self) -> CompiledMatcher:
        return self._matchers.get(self._config)

    def request_full_scan(self) -> asyncio.Task[None]:
        """
        Start a full workspace scan, superseding any scan in flight.

        Returns:
            The task running the scan
        """
        return self._scan_slot.start(self._run_full_scan)

    async def _run_full_scan(self, token: CancellationToken) -> None:
        summary = await scan_workspace(
            self._store,
            self._config,
            self._scope_set,
            self._workspace,
            token,
            matcher=self._matcher(),
            concurrency=self._max_concurrency,
        )
        self._last_summary = summary
        if not summary.cancelled:
            self._stats.full_scans += 1
            self._stats.last_full_scan_at = datetime.now()
            self._stats.last_full_scan_duration_ms = summary.duration_ms

    async def wait_for_scan(self) -> None:
        """Wait for the current full scan, if any, to finish."""
        await self._scan_slot.wait()

    def on_config_changed(self, config: ScanConfig | None = None) -> None:
        """
        Swap in a new configuration and debounce a full rescan.

        Args:
            config: The new configuration; re-read from the provider when omitted
        """
        self._config = config if config is not None else self._config_provider()
        self._matchers.invalidate()
        logger.debug("Configuration changed, scheduling full rescan")
        self._config_debouncer.schedule(_WORKSPACE_KEY, self._debounced_full_scan)

    def _debounced_full_scan(self) -> None:
        if self._running:
            self.request_full_scan()

    # ------------------------------------------------------------------
    # Editor events
    # ------------------------------------------------------------------

    def _publish_buffer(self, buffer: TextBuffer) -> None:
        if not is_resource_enabled(buffer.path, self._config, self._workspace.root):
            self._store.delete(buffer.path)
            return
        self._store.set(buffer.path, scan_buffer(self._matcher(), buffer))
        self._stats.file_scans += 1

    def _isolated(self, action: str, path: Path, operation: Callable[[], None]) -> None:
        """Run a per-file operation so that its failure never escapes."""
        try:
            operation()
        except Exception as e:
            self._stats.errors += 1
            logger.error(
                "Error handling %s for %s: %s",
                action,
                path,
                e,
                extra={"action": action, "file_path": str(path), "error_type": type(e).__name__},
                exc_info=True,
            )

    def on_open(self, buffer: TextBuffer) -> None:
        """Scan a newly opened document immediately, without debouncing."""
        if buffer.scheme != FILE_SCHEME:
            return
        self._stats.events_received += 1
        self._isolated("open", buffer.path, lambda: self._publish_buffer(buffer))

    def on_change(self, buffer: TextBuffer, content_changes: int = 1) -> None:
        """
        Schedule a debounced rescan of an edited document.

        Args:
            buffer: The edited document
            content_changes: Number of content deltas in the edit; 0 is ignored
        """
        if buffer.scheme != FILE_SCHEME or content_changes == 0:
            return
        self._stats.events_received += 1
        self._change_debouncer.schedule(
            buffer.path,
            lambda: self._isolated("change", buffer.path, lambda: self._publish_buffer(buffer)),
        )

    def on_save(self, buffer: TextBuffer) -> None:
        """Cancel any pending rescan and scan the saved document now."""
        if buffer.scheme != FILE_SCHEME:
            return
        self._stats.events_received += 1
        self._recently_saved.add(buffer.path)
        self._change_debouncer.cancel(buffer.path)
        self._isolated("save", buffer.path, lambda: self._publish_buffer(buffer))

    def on_close(self, buffer: TextBuffer) -> None:
        """Drop diagnostics of closed documents that are outside the tracked scope."""
        if buffer.scheme != FILE_SCHEME:
            return
        self._stats.events_received += 1
        self._change_debouncer.cancel(buffer.path)
        if buffer.path not in self._scope_set:
            self._store.delete(buffer.path)

    # ------------------------------------------------------------------
    # Filesystem events
    # ------------------------------------------------------------------

    async def on_file_created(self, path: Path) -> None:
        """Track and scan a newly created file when it is in scope and not binary."""
        self._stats.events_received += 1
        try:
            config = self._config
            if not matches_scope(path, config, self._workspace.root):
                return

            matcher = self._matcher()
            result = await read_and_scan(self._workspace, matcher, path)
            if result is None or is_binary_result(result):
                return
            if config is not self._config:
                # Superseded by a config change; the pending full rescan covers it
                return

            self._scope_set.add(path)
            buffer = self._workspace.get_open_buffer(path)
            if buffer is not None:
                self._publish_buffer(buffer)
            elif is_resource_enabled(path, config, self._workspace.root):
                self._store.set(path, result)
                self._stats.file_scans += 1
        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Error handling create for {path}: {e}", exc_info=True)

    async def on_file_changed(self, path: Path) -> None:
        """Rescan a tracked file changed outside the editor."""
        self._stats.events_received += 1
        if path in self._recently_saved:
            self._stats.suppressed_events += 1
            logger.debug(f"Ignoring change right after save: {path}")
            return
        if path not in self._scope_set:
            return

        try:
            result = await read_and_scan(self._workspace, self._matcher(), path)
            if path not in self._scope_set:
                # Deleted while the read was in flight
                return
            if is_binary_result(result):
                self._store.delete(path)
                return

            buffer = self._workspace.get_open_buffer(path)
            if buffer is not None:
                self._publish_buffer(buffer)
            elif result is not None:
                if is_resource_enabled(path, self._config, self._workspace.root):
                    self._store.set(path, result)
                    self._stats.file_scans += 1
                else:
                    self._store.delete(path)
        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Error handling change for {path}: {e}", exc_info=True)

    def on_file_deleted(self, path: Path) -> None:
        """Drop a deleted file, or every tracked file under a deleted directory."""
        self._stats.events_received += 1
        if path in self._scope_set:
            self._store.delete(path)
            self._scope_set.discard(path)
            self._change_debouncer.cancel(path)
            return

        for removed in self._scope_set.remove_under(path):
            self._store.delete(removed)
            self._change_debouncer.cancel(removed)

    async def handle_file_event(self, event: FileEvent) -> None:
        """Dispatch a watcher event to the matching handler."""
        if not self._running:
            return

        logger.debug(
            "File change detected: %s - %s",
            event.event_type.value,
            event.file_path,
            extra={
                "event_type": event.event_type.value,
                "file_path": str(event.file_path),
                "timestamp": event.timestamp,
            },
        )

        if event.event_type == FileEventType.CREATED:
            await self.on_file_created(event.file_path)
        elif event.event_type == FileEventType.MODIFIED:
            await self.on_file_changed(event.file_path)
        elif event.event_type == FileEventType.DELETED:
            self.on_file_deleted(event.file_path)

    def on_file_event_threadsafe(self, event: FileEvent) -> None:
        """
        Synchronous callback for file events from the watchdog thread.

        Schedules the async handler on the controller's event loop.
        """
        if self._event_loop is None or not self._running:
            return

        asyncio.run_coroutine_threadsafe(self.handle_file_event(event), self._event_loop)
