"""
Fake implementations for testing.

Provides in-memory implementations of infrastructure interfaces
for use in unit and integration tests without touching the filesystem.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING

from todoscan.core.models import Diagnostic, TextBuffer
from todoscan.core.scope import is_path_in_scope, relative_to_root
from todoscan.infrastructure.workspace import WorkspaceInterface

if TYPE_CHECKING:
    from todoscan.core.cancellation import CancellationToken
    from todoscan.core.file_events import FileEvent


class InMemoryWorkspace(WorkspaceInterface):
    """
    In-memory workspace for testing.

    Files are stored as raw bytes keyed by absolute path. Reads can be made
    to fail per path, and enumeration can run a hook (for example to cancel
    a scan mid-flight).
    """

    def __init__(self, root: Path | str = "/workspace", files: dict[str, bytes | str] | None = None):
        """
        Initialize the workspace.

        Args:
            root: Absolute root path
            files: Optional mapping of root-relative path -> content
        """
        self._root = Path(root)
        self._files: dict[Path, bytes] = {}
        self._buffers: dict[Path, TextBuffer] = {}
        self._failing: set[Path] = set()
        self.read_calls: list[Path] = []
        self.prefix_reads: list[Path] = []
        self.bytes_read = 0
        self.enumerate_calls = 0
        self.on_enumerate: Callable[[], None] | None = None
        for relative, content in (files or {}).items():
            self.write(relative, content)

    @property
    def root(self) -> Path:
        return self._root

    def path(self, relative: str) -> Path:
        """Absolute path for a root-relative path."""
        return self._root / relative

    def write(self, relative: str, content: bytes | str) -> Path:
        """Create or replace a file."""
        path = self.path(relative)
        self._files[path] = content.encode("utf-8") if isinstance(content, str) else content
        return path

    def delete(self, relative: str) -> Path:
        """Delete a file, or every file under a directory."""
        path = self.path(relative)
        self._files.pop(path, None)
        for existing in list(self._files):
            if existing.parts[: len(path.parts)] == path.parts and existing != path:
                del self._files[existing]
        return path

    def fail_reads(self, relative: str) -> Path:
        """Make reads of a file raise PermissionError."""
        path = self.path(relative)
        self._failing.add(path)
        return path

    async def enumerate_files(
        self,
        include_globs: Sequence[str],
        exclude_globs: Sequence[str],
        token: CancellationToken | None = None,
    ) -> list[Path]:
        self.enumerate_calls += 1
        await asyncio.sleep(0)
        if self.on_enumerate is not None:
            self.on_enumerate()
        results = []
        for path in sorted(self._files):
            relative = relative_to_root(path, self._root)
            if relative is not None and is_path_in_scope(relative, include_globs, exclude_globs):
                results.append(path)
        return results

    def _content(self, path: Path) -> bytes:
        if path in self._failing:
            raise PermissionError(f"Permission denied: {path}")
        if path not in self._files:
            raise FileNotFoundError(f"No such file: {path}")
        return self._files[path]

    async def read_file_bytes(self, path: Path) -> bytes:
        self.read_calls.append(path)
        await asyncio.sleep(0)
        data = self._content(path)
        self.bytes_read += len(data)
        return data

    async def read_file_prefix(self, path: Path, size: int) -> bytes:
        self.prefix_reads.append(path)
        await asyncio.sleep(0)
        data = self._content(path)[:size]
        self.bytes_read += len(data)
        return data

    def open_buffer(self, relative: str, text: str | None = None, scheme: str = "file") -> TextBuffer:
        """Open a document, from the given text or the stored file content."""
        path = self.path(relative)
        if text is None:
            text = self._files.get(path, b"").decode("utf-8")
        buffer = TextBuffer.from_text(path, text, scheme=scheme)
        self._buffers[path] = buffer
        return buffer

    def close_buffer(self, path: Path) -> TextBuffer | None:
        return self._buffers.pop(path, None)

    def get_open_buffers(self) -> list[TextBuffer]:
        return list(self._buffers.values())

    def get_open_buffer(self, path: Path) -> TextBuffer | None:
        return self._buffers.get(path)


class RecordingSink:
    """Diagnostic sink that records every call for assertions."""

    def __init__(self) -> None:
        self.published: dict[Path, tuple[Diagnostic, ...]] = {}
        self.publish_calls: list[Path] = []
        self.cleared: list[Path] = []
        self.clear_all_calls = 0

    def publish(self, path: Path, diagnostics: Sequence[Diagnostic]) -> None:
        self.published[path] = tuple(diagnostics)
        self.publish_calls.append(path)

    def clear(self, path: Path) -> None:
        self.published.pop(path, None)
        self.cleared.append(path)

    def clear_all(self) -> None:
        self.published.clear()
        self.clear_all_calls += 1


class FakeFileWatcher:
    """
    Fake file watcher for testing.

    Allows manual triggering of file events without actual file system monitoring.
    Implements the same interface as FileWatcher for use in tests.
    """

    def __init__(self, ignore_globs: Sequence[str] | None = None):
        """
        Initialize the fake file watcher.

        Args:
            ignore_globs: Globs to ignore (ignored in fake)
        """
        self._ignore_globs = list(ignore_globs or [])
        self._callback: Callable[[FileEvent], None] | None = None
        self._watch_path: Path | None = None
        self._running = False
        self._events: list[FileEvent] = []

    def start(self, path: Path, callback: Callable[[FileEvent], None]) -> None:
        """
        Start the fake watcher.

        Args:
            path: Directory path to watch
            callback: Function to call when events are triggered
        """
        if self._running:
            raise RuntimeError("File watcher is already running")

        self._watch_path = Path(path)
        self._callback = callback
        self._running = True

    def stop(self) -> None:
        """Stop the fake watcher."""
        self._running = False
        self._callback = None
        self._watch_path = None

    def is_running(self) -> bool:
        """Check if the fake watcher is running."""
        return self._running

    def trigger_event(self, event: FileEvent) -> None:
        """
        Manually trigger a file event.

        Args:
            event: The FileEvent to trigger
        """
        if not self._running:
            raise RuntimeError("File watcher is not running")

        self._events.append(event)
        if self._callback is not None:
            self._callback(event)

    def get_triggered_events(self) -> list[FileEvent]:
        """Get all events that have been triggered."""
        return list(self._events)
