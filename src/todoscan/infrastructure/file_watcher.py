"""
Filesystem watching backed by watchdog.

Translates watchdog notifications into FileEvent values for the update
controller. Directory creations and modifications are dropped (the files
inside report their own events); directory deletions are forwarded so
tracked descendants can be pruned. A move becomes a deletion of the
source followed by a creation of the target.
"""

import logging
import threading
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Protocol

from watchdog.events import (
    DirCreatedEvent,
    DirModifiedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from todoscan.core.file_events import FileEvent, FileEventType
from todoscan.core.scope import GlobSet, get_glob_set

logger = logging.getLogger(__name__)

EventCallback = Callable[[FileEvent], None]


class FileWatcherInterface(Protocol):
    """Anything that can report filesystem changes under a root directory."""

    def start(self, path: Path, callback: EventCallback) -> None:
        """Begin delivering events for ``path`` to ``callback``."""
        ...

    def stop(self) -> None:
        """Stop delivering events."""
        ...

    def is_running(self) -> bool:
        ...


class FileWatcher(FileWatcherInterface):
    """
    Recursive watchdog observer for one workspace root.

    The callback is invoked on the observer thread; consumers that live on
    an event loop must hop back onto it themselves.
    """

    def __init__(self, ignore_globs: Sequence[str] | None = None):
        """
        Args:
            ignore_globs: Root-relative globs whose events are never delivered
        """
        self._ignore_globs = tuple(ignore_globs or ())
        self._observer: Observer | None = None
        self._callback: EventCallback | None = None
        self._root: Path | None = None
        self._handler: _WatchdogEventHandler | None = None
        self._guard = threading.Lock()

    @property
    def root(self) -> Path | None:
        return self._root

    def start(self, path: Path, callback: EventCallback) -> None:
        """
        Start observing ``path`` recursively.

        Raises:
            ValueError: If path is missing or not a directory
            RuntimeError: If this watcher is already observing
        """
        with self._guard:
            if self._observer is not None and self._observer.is_alive():
                raise RuntimeError("File watcher is already running")

            root = Path(path).resolve()
            if not root.exists():
                raise ValueError(f"Path does not exist: {root}")
            if not root.is_dir():
                raise ValueError(f"Path is not a directory: {root}")

            self._root = root
            self._callback = callback

            self._handler = _WatchdogEventHandler(
                self._deliver, get_glob_set(self._ignore_globs), root
            )
            observer = Observer()
            observer.schedule(self._handler, str(root), recursive=True)
            observer.start()
            self._observer = observer

            logger.info("Watching %s", root, extra={"root": str(root)})

    def stop(self) -> None:
        with self._guard:
            observer, self._observer = self._observer, None
            if observer is not None:
                observer.stop()
                observer.join(timeout=5.0)
                logger.info("Stopped watching %s", self._root, extra={"root": str(self._root)})
            self._callback = None
            self._handler = None
            self._root = None

    @property
    def ignore_globs(self) -> tuple[str, ...]:
        return self._ignore_globs

    def set_ignore_globs(self, ignore_globs: Sequence[str]) -> None:
        """Replace the ignore globs; a running observer applies them to its next event."""
        with self._guard:
            globs = tuple(ignore_globs)
            if globs == self._ignore_globs:
                return
            self._ignore_globs = globs
            if self._handler is not None:
                self._handler.set_ignore(get_glob_set(globs))
        logger.debug(f"Watcher ignore globs updated: {list(globs)}")

    def is_running(self) -> bool:
        with self._guard:
            return self._observer is not None and self._observer.is_alive()

    def _deliver(self, event: FileEvent) -> None:
        callback = self._callback
        if callback is None:
            return
        try:
            callback(event)
        except Exception as e:
            # An exception here would kill the observer thread
            logger.error(f"File event callback failed for {event.file_path}: {e}", exc_info=True)


class _WatchdogEventHandler(FileSystemEventHandler):
    """Maps raw watchdog events to FileEvents, dropping ignored paths."""

    def __init__(self, deliver: EventCallback, ignore: GlobSet, root: Path):
        super().__init__()
        self._deliver = deliver
        self._ignore = ignore
        self._root = root

    def set_ignore(self, ignore: GlobSet) -> None:
        self._ignore = ignore

    def _ignored(self, path: Path, is_directory: bool) -> bool:
        if not self._ignore:
            return False
        try:
            relative = path.relative_to(self._root).as_posix()
        except ValueError:
            return True
        return self._ignore.matches(relative + "/" if is_directory else relative)

    def _emit(self, event_type: FileEventType, raw_path: str, is_directory: bool = False) -> None:
        path = Path(raw_path)
        if self._ignored(path, is_directory):
            return
        logger.debug(f"{event_type.value}: {path}")
        self._deliver(FileEvent(event_type=event_type, file_path=path, is_directory=is_directory))

    def on_created(self, event: FileSystemEvent) -> None:
        if not isinstance(event, DirCreatedEvent):
            self._emit(FileEventType.CREATED, event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not isinstance(event, DirModifiedEvent):
            self._emit(FileEventType.MODIFIED, event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._emit(FileEventType.DELETED, event.src_path, event.is_directory)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._emit(FileEventType.DELETED, event.src_path, event.is_directory)
        if not event.is_directory:
            self._emit(FileEventType.CREATED, event.dest_path)
